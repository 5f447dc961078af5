"""
Server-side transcription and structuring pipeline.

Decode and validate the upload, normalize its format, transcribe it, then
ask a generative model for structured fields. Each model-backed stage walks
an ordered candidate list and only moves on when a model is unavailable.
"""
import base64
import binascii
import json
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple, TypeVar

from openai import APIConnectionError

from memory_loop.domains.errors import (
    ModelUnavailableError,
    ProcessingError,
    TranscoderError,
)
from memory_loop.domains.memory import (
    DEFAULT_CATEGORY,
    DEFAULT_MOOD,
    DEFAULT_TITLE,
    ProcessingResult,
)
from memory_loop.interfaces.providers.audio import AudioTranscoder
from memory_loop.interfaces.providers.llm import SpeechModelProvider

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_AUDIO_BYTES = 25 * 1024 * 1024

DEFAULT_TRANSCRIPTION_MODELS = ["gpt-4o-mini-transcribe", "whisper-1"]
DEFAULT_STRUCTURING_MODELS = ["gpt-5-mini", "gpt-4o-mini"]

MISSING_CREDENTIALS_MESSAGE = (
    "Server is missing OpenAI credentials. Set OPENAI_API_KEY "
    "(or AI_INTEGRATIONS_OPENAI_API_KEY) and restart."
)
AUDIO_REQUIRED_MESSAGE = "Audio data (base64) is required"
INVALID_AUDIO_MESSAGE = "Invalid audio data. Could not decode base64 payload."
TOO_LARGE_MESSAGE = "Recording is too large. Please keep recordings under 60 seconds."
TRANSCRIBE_FAILED_MESSAGE = "Could not transcribe audio. Please try again."

MEMORY_STRUCTURING_PROMPT = """You are an intelligent memory structuring assistant. Your job is to take a raw voice transcript-often messy, casual, full of filler words, hesitations, repetitions, and background noise artifacts-and extract clean, structured, useful information.

Clean and structure this casual voice ramble into concise, useful output. Ignore ums, ahs, likes, you knows, repetitions, and stutters. Focus on key ideas, tasks, people, and references mentioned.

You must respond with ONLY valid JSON in this exact format:
{
  "title": "a short, poetic 2-5 word summary that captures the essence",
  "category": "one of: Shopping, Learning, Meeting, Personal, Ideas, Health, Work, Travel, Other",
  "action_items": ["array of specific, actionable tasks extracted from the speech"],
  "mood": "a single sentiment word like: reflective, excited, urgent, calm, curious, grateful, determined, nostalgic, creative, neutral"
}

Rules:
- Title should be evocative and concise, not a dry summary
- Category should be auto-detected from context
- Action items should be specific and actionable, not vague
- If no clear action items, return an empty array
- Mood should combine basic sentiment analysis with contextual flavor
- Handle noisy transcripts gracefully - extract intent even from messy speech
- Never include filler words or repetitions in your output"""

_MODEL_UNAVAILABLE_STATUSES = (400, 403, 404)
_MODEL_UNAVAILABLE_PHRASES = (
    "not found",
    "does not exist",
    "not available",
    "unsupported",
    "access",
    "permission",
)


class FailureKind(str, Enum):
    """How a candidate loop treats a capability failure."""
    MODEL_UNAVAILABLE = "model_unavailable"
    FATAL = "fatal"


def build_model_candidates(
    override: Optional[str], fallbacks: Iterable[str]
) -> List[str]:
    """Override first, then fallbacks; blanks dropped, first occurrence kept."""
    candidates: List[str] = []
    for model in [override, *fallbacks]:
        if not model or not model.strip():
            continue
        if model not in candidates:
            candidates.append(model)
    return candidates


def error_status(error: BaseException) -> Optional[int]:
    for attr in ("status_code", "status"):
        value = getattr(error, attr, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    return None


def error_message(error: BaseException) -> str:
    body = getattr(error, "body", None)
    if isinstance(body, dict):
        if isinstance(body.get("message"), str):
            return body["message"]
        nested = body.get("error")
        if isinstance(nested, dict) and isinstance(nested.get("message"), str):
            return nested["message"]

    message = getattr(error, "message", None)
    if isinstance(message, str) and message:
        return message

    return str(error) or "Unknown error"


def classify_failure(error: BaseException) -> FailureKind:
    """A model-unavailable failure needs both a matching status and text."""
    status = error_status(error)
    lowered = error_message(error).lower()
    is_model_issue = "model" in lowered and any(
        phrase in lowered for phrase in _MODEL_UNAVAILABLE_PHRASES
    )
    if is_model_issue and status in _MODEL_UNAVAILABLE_STATUSES:
        return FailureKind.MODEL_UNAVAILABLE
    return FailureKind.FATAL


def map_processing_error(error: BaseException) -> Tuple[int, str]:
    """Translate a pipeline failure into the (status, message) sent to clients."""
    if isinstance(error, ProcessingError):
        return error.status, error.message

    status = error_status(error)
    message = error_message(error)
    lowered = message.lower()

    if status == 401 or any(
        s in lowered for s in ("missing api key", "incorrect api key", "invalid api key")
    ):
        return (
            500,
            "Server OpenAI API key is missing or invalid. Set OPENAI_API_KEY "
            "(or AI_INTEGRATIONS_OPENAI_API_KEY) and restart the server.",
        )

    if status == 429 or "rate limit" in lowered:
        return 503, "OpenAI rate limit reached. Please try again in a moment."

    if "insufficient_quota" in lowered or "quota" in lowered:
        return (
            503,
            "OpenAI quota exceeded for this key. Add billing/credits or use a "
            "different key.",
        )

    if isinstance(error, TranscoderError) or any(
        s in lowered for s in ("ffmpeg", "exited with code", "enoent")
    ):
        return (
            500,
            "Audio conversion failed on the server. Install ffmpeg or use "
            "wav/mp3/webm/mp4/m4a audio.",
        )

    if status == 400 and ("audio" in lowered or "transcrib" in lowered):
        return 400, TRANSCRIBE_FAILED_MESSAGE

    if isinstance(error, APIConnectionError) or any(
        s in lowered
        for s in (
            "fetch failed",
            "enotfound",
            "econnrefused",
            "etimedout",
            "network",
            "connection error",
        )
    ):
        return (
            503,
            "Backend could not reach OpenAI. Check internet connectivity and "
            "firewall/proxy settings.",
        )

    return 500, f"Failed to process memory. {message}"


def decode_audio(audio: Any) -> bytes:
    """Validate and decode the base64 payload of a request."""
    if not isinstance(audio, str) or not audio:
        raise ProcessingError(400, AUDIO_REQUIRED_MESSAGE)
    try:
        raw = base64.b64decode("".join(audio.split()), validate=True)
    except (binascii.Error, ValueError):
        raise ProcessingError(400, INVALID_AUDIO_MESSAGE)
    if not raw:
        raise ProcessingError(400, INVALID_AUDIO_MESSAGE)
    return raw


def parse_structure(content: Optional[str]) -> Dict[str, Any]:
    """Parse model output, back-filling every missing or empty field."""
    try:
        structured = json.loads(content or "")
    except (TypeError, ValueError):
        logger.warning("Structuring output was not valid JSON; using defaults")
        structured = {}
    if not isinstance(structured, dict):
        logger.warning("Structuring output was not a JSON object; using defaults")
        structured = {}

    def _text(key: str, default: str) -> str:
        value = structured.get(key)
        return value if isinstance(value, str) and value else default

    items = structured.get("action_items")
    if not isinstance(items, list):
        items = []

    return {
        "title": _text("title", DEFAULT_TITLE),
        "category": _text("category", DEFAULT_CATEGORY),
        "action_items": [str(item) for item in items if item is not None],
        "mood": _text("mood", DEFAULT_MOOD),
    }


class TranscriptionStructuringService:
    """Turns raw uploaded audio into a ProcessingResult.

    The service keeps no per-request state, so concurrent requests are
    independent.
    """

    def __init__(
        self,
        provider: Optional[SpeechModelProvider],
        transcoder: AudioTranscoder,
        transcription_models: Optional[List[str]] = None,
        structuring_models: Optional[List[str]] = None,
        max_audio_bytes: int = MAX_AUDIO_BYTES,
    ):
        self.provider = provider
        self.transcoder = transcoder
        self.transcription_models = transcription_models or list(
            DEFAULT_TRANSCRIPTION_MODELS
        )
        self.structuring_models = structuring_models or list(
            DEFAULT_STRUCTURING_MODELS
        )
        self.max_audio_bytes = max_audio_bytes

    async def handle(self, payload: Any) -> Tuple[int, Dict[str, Any]]:
        """Process a decoded JSON request body into (status, response body)."""
        audio = payload.get("audio") if isinstance(payload, dict) else None
        try:
            result = await self.process(audio)
        except ProcessingError as e:
            logger.warning("Rejected memory request (%d): %s", e.status, e.message)
            return e.status, {"error": e.message}
        except Exception as e:
            logger.exception(f"Error processing memory: {e}")
            status, message = map_processing_error(e)
            return status, {"error": message}
        return 200, result.model_dump()

    async def process(self, audio: Any) -> ProcessingResult:
        if self.provider is None:
            raise ProcessingError(500, MISSING_CREDENTIALS_MESSAGE)

        raw = decode_audio(audio)
        detected = self.transcoder.detect_format(raw)
        logger.info("Received audio: %d KB (%s)", round(len(raw) / 1024), detected)

        if len(raw) > self.max_audio_bytes:
            raise ProcessingError(413, TOO_LARGE_MESSAGE)

        audio_bytes, input_format = await self.transcoder.ensure_compatible(raw)
        logger.info(
            "After compatibility step: %d KB (%s)",
            round(len(audio_bytes) / 1024),
            input_format,
        )

        transcript = await self.transcribe(audio_bytes, input_format)
        if not transcript or not transcript.strip():
            raise ProcessingError(400, TRANSCRIBE_FAILED_MESSAGE)

        structured = await self.structure(transcript)
        return ProcessingResult(transcript=transcript, **structured)

    async def transcribe(self, audio_bytes: bytes, input_format: str) -> str:
        filename = f"audio.{input_format}"
        return await self._with_fallback(
            "transcription",
            self.transcription_models,
            lambda model: self.provider.transcribe(audio_bytes, filename, model),
        )

    async def structure(self, transcript: str) -> Dict[str, Any]:
        content = await self._with_fallback(
            "structuring",
            self.structuring_models,
            lambda model: self.provider.complete_json(
                MEMORY_STRUCTURING_PROMPT, transcript, model
            ),
        )
        return parse_structure(content)

    async def _with_fallback(
        self,
        stage: str,
        candidates: List[str],
        call: Callable[[str], Awaitable[T]],
    ) -> T:
        last_error: Optional[BaseException] = None
        for model in candidates:
            try:
                return await call(model)
            except Exception as e:
                if classify_failure(e) is FailureKind.FATAL:
                    raise
                logger.warning(
                    "Model unavailable for %s: %s. Trying fallback.", stage, model
                )
                last_error = e

        if last_error is not None:
            raise last_error
        raise ModelUnavailableError(f"No available {stage} model.")
