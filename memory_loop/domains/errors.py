"""
Error taxonomy shared by the capture client and the processing server.
"""
from typing import Optional

__all__ = [
    "MemoryLoopError",
    "APIError",
    "InvalidConfigurationError",
    "InvalidResponseError",
    "BadRequestError",
    "TooLargeError",
    "ServerError",
    "TransportError",
    "DecodingError",
    "AudioCaptureError",
    "SessionBusyError",
    "StartFailedError",
    "NoActiveSessionError",
    "ProcessingTimeoutError",
    "ProcessingError",
    "TranscoderError",
    "ModelUnavailableError",
]


class MemoryLoopError(Exception):
    """Base class for all Memory Loop errors."""

    default_message = "Something went wrong."

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def __eq__(self, other: object) -> bool:
        return type(self) is type(other) and self.message == other.message

    def __hash__(self) -> int:
        return hash((type(self), self.message))

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r})"


# Client-visible processing errors


class APIError(MemoryLoopError):
    """Failure of a round trip to the processing endpoint."""


class InvalidConfigurationError(APIError):
    default_message = (
        "Missing API_BASE_URL configuration. Set API_BASE_URL in the config file "
        "or environment."
    )


class InvalidResponseError(APIError):
    default_message = "Invalid server response."


class BadRequestError(APIError):
    default_message = "Could not process audio"


class TooLargeError(APIError):
    default_message = "Recording was too long. Please keep it under 60 seconds."


class ServerError(APIError):
    default_message = "Failed to process memory. Please try again."


class TransportError(APIError):
    default_message = "Network error."


class DecodingError(APIError):
    default_message = "Invalid response payload."


# Microphone capture errors


class AudioCaptureError(MemoryLoopError):
    """Failure of the microphone session."""


class SessionBusyError(AudioCaptureError):
    default_message = "Audio session is already active."


class StartFailedError(AudioCaptureError):
    default_message = "Failed to start recording."


class NoActiveSessionError(AudioCaptureError):
    default_message = "No active recorder found."


class ProcessingTimeoutError(MemoryLoopError):
    default_message = "Processing took too long. Please try again."


# Server pipeline errors


class ProcessingError(MemoryLoopError):
    """Request-level rejection carrying the HTTP status to answer with."""

    def __init__(self, status: int, message: Optional[str] = None):
        self.status = status
        super().__init__(message)

    def __eq__(self, other: object) -> bool:
        return (
            type(self) is type(other)
            and self.status == other.status
            and self.message == other.message
        )

    def __hash__(self) -> int:
        return hash((type(self), self.status, self.message))


class TranscoderError(MemoryLoopError):
    default_message = "ffmpeg failed to transcode audio"


class ModelUnavailableError(MemoryLoopError):
    default_message = "No available model."
