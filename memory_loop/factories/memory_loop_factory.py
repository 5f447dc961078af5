"""
Factory for creating and wiring components of the Memory Loop system.

Configuration is a plain dictionary (optionally loaded from JSON);
environment variables override the keys the deployment reads from the
environment.
"""

import json
import logging
import os
from typing import Any, Callable, Dict, Mapping, Optional

from flask import Flask

from memory_loop.adapters.ffmpeg_transcoder import FFmpegTranscoder
from memory_loop.adapters.memory_file_storage import MemoryFileStorage
from memory_loop.adapters.openai_adapter import OpenAIAdapter
from memory_loop.interfaces.providers.audio import AudioDevice
from memory_loop.server import create_app
from memory_loop.services.audio_capture import AudioCapture
from memory_loop.services.capture_session import CaptureSessionController
from memory_loop.services.memory_store import MemoryStore
from memory_loop.services.processing_client import (
    DEFAULT_TIMEOUT_SECONDS,
    MemoryProcessingClient,
    resolve_base_url,
)
from memory_loop.services.transcription import (
    DEFAULT_STRUCTURING_MODELS,
    DEFAULT_TRANSCRIPTION_MODELS,
    TranscriptionStructuringService,
    build_model_candidates,
)

# Setup logger for this module
logger = logging.getLogger(__name__)

_TRUTHY = ("1", "true", "yes", "on")


def _first(*values: Optional[str]) -> Optional[str]:
    for value in values:
        if value and value.strip():
            return value.strip()
    return None


class MemoryLoopFactory:
    """Factory for creating and wiring components of the Memory Loop system."""

    @staticmethod
    def load_config(
        config_path: Optional[str] = None, config: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Load configuration from a JSON file or return the given dict.

        A missing config_path is not an error: everything can come from
        the environment.
        """
        if config is not None:
            return config
        if config_path and os.path.exists(config_path):
            with open(config_path, "r") as f:
                loaded = json.load(f)
            if not isinstance(loaded, dict):
                raise ValueError("Configuration file must contain a JSON object.")
            return loaded
        return {}

    @staticmethod
    def is_debug(
        config: Dict[str, Any], environ: Optional[Mapping[str, str]] = None
    ) -> bool:
        environ = os.environ if environ is None else environ
        flag = environ.get("MEMORY_LOOP_DEBUG")
        if flag is not None:
            return flag.strip().lower() in _TRUTHY
        return bool(config.get("debug", False))

    @staticmethod
    def create_processing_service(
        config: Dict[str, Any], environ: Optional[Mapping[str, str]] = None
    ) -> TranscriptionStructuringService:
        """Create the server-side pipeline.

        Without credentials the service is still created; it answers every
        request with the missing-credentials error.
        """
        environ = os.environ if environ is None else environ
        openai_config = config.get("openai") or {}

        api_key = _first(
            environ.get("AI_INTEGRATIONS_OPENAI_API_KEY"),
            environ.get("OPENAI_API_KEY"),
            openai_config.get("api_key"),
        )
        base_url = _first(
            environ.get("AI_INTEGRATIONS_OPENAI_BASE_URL"),
            environ.get("OPENAI_BASE_URL"),
            openai_config.get("base_url"),
        )

        provider = None
        if api_key:
            logfire_key = None
            logfire_config = config.get("logfire")
            if logfire_config is not None:
                if not isinstance(logfire_config, dict) or "api_key" not in logfire_config:
                    raise ValueError("Pydantic Logfire API key is required.")
                logfire_key = logfire_config["api_key"]
            provider = OpenAIAdapter(
                api_key=api_key, base_url=base_url, logfire_api_key=logfire_key
            )
        else:
            logger.warning("No OpenAI credentials configured; requests will fail")

        transcription_models = build_model_candidates(
            _first(
                environ.get("MEMORY_TRANSCRIPTION_MODEL"),
                openai_config.get("transcription_model"),
            ),
            DEFAULT_TRANSCRIPTION_MODELS,
        )
        structuring_models = build_model_candidates(
            _first(
                environ.get("MEMORY_STRUCTURING_MODEL"),
                openai_config.get("structuring_model"),
            ),
            DEFAULT_STRUCTURING_MODELS,
        )
        logger.info(
            f"Transcription candidates: {transcription_models}; "
            f"structuring candidates: {structuring_models}"
        )

        ffmpeg_binary = (config.get("ffmpeg") or {}).get("binary", "ffmpeg")
        return TranscriptionStructuringService(
            provider=provider,
            transcoder=FFmpegTranscoder(binary=ffmpeg_binary),
            transcription_models=transcription_models,
            structuring_models=structuring_models,
        )

    @staticmethod
    def create_server(
        config: Dict[str, Any], environ: Optional[Mapping[str, str]] = None
    ) -> Flask:
        service = MemoryLoopFactory.create_processing_service(config, environ)
        return create_app(service)

    @staticmethod
    def create_store(config: Dict[str, Any]) -> MemoryStore:
        storage_path = (config.get("storage") or {}).get("path")
        return MemoryStore(storage=MemoryFileStorage(storage_path))

    @staticmethod
    def create_processing_client(
        config: Dict[str, Any], environ: Optional[Mapping[str, str]] = None
    ) -> MemoryProcessingClient:
        """Resolve the base URL once and build the client.

        Raises:
            InvalidConfigurationError: no base URL outside debug mode
        """
        timeout = (config.get("api") or {}).get("timeout", DEFAULT_TIMEOUT_SECONDS)
        debug = MemoryLoopFactory.is_debug(config, environ)
        base_url = resolve_base_url(config, environ=environ, debug=debug)
        return MemoryProcessingClient(base_url=base_url, timeout=float(timeout))

    @staticmethod
    def create_capture_controller(
        config: Dict[str, Any],
        store: MemoryStore,
        device: Optional[AudioDevice] = None,
        on_memory_created: Optional[Callable[[str], None]] = None,
    ) -> CaptureSessionController:
        """Wire a capture session.

        The processing client is built lazily when the first recording is
        processed, so a configuration problem surfaces as a session error.
        """
        if device is None:
            from memory_loop.adapters.sounddevice_recorder import SoundDeviceRecorder

            device = SoundDeviceRecorder()

        return CaptureSessionController(
            capture=AudioCapture(device),
            processor=lambda: MemoryLoopFactory.create_processing_client(config),
            store=store,
            on_memory_created=on_memory_created,
        )
