"""
Memory Loop - capture a spoken memo, transcribe and structure it, keep it.

This package provides the capture session controller, the processing
client and server pipeline, and the pinned-first memory store.
"""

# Core services
from memory_loop.services.audio_capture import AudioCapture
from memory_loop.services.capture_session import CaptureSessionController
from memory_loop.services.memory_store import MemoryStore
from memory_loop.services.processing_client import MemoryProcessingClient
from memory_loop.services.transcription import TranscriptionStructuringService

# Factory for wiring from configuration
from memory_loop.factories.memory_loop_factory import MemoryLoopFactory

# Domain types
from memory_loop.domains.memory import Memory, ProcessingResult, sort_memories
from memory_loop.domains.session import CaptureSnapshot, CaptureState

# Package metadata
__all__ = [
    # Services
    "AudioCapture",
    "CaptureSessionController",
    "MemoryStore",
    "MemoryProcessingClient",
    "TranscriptionStructuringService",
    # Factories
    "MemoryLoopFactory",
    # Domain
    "Memory",
    "ProcessingResult",
    "sort_memories",
    "CaptureSnapshot",
    "CaptureState",
]
