"""
Transport client for the memory processing endpoint.

One POST per memo; the HTTP status decides which error is raised.
"""
import json
import logging
import os
import re
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlparse

import httpx
from pydantic import ValidationError

from memory_loop.domains.errors import (
    BadRequestError,
    DecodingError,
    InvalidConfigurationError,
    InvalidResponseError,
    ServerError,
    TooLargeError,
    TransportError,
)
from memory_loop.domains.memory import ProcessingResult, ProcessMemoryRequest
from memory_loop.interfaces.services.processing import MemoryProcessor

logger = logging.getLogger(__name__)

BASE_URL_ENV = "API_BASE_URL"
DEV_BASE_URL = "http://127.0.0.1:5000"
PROCESS_MEMORY_PATH = "api/process-memory"
DEFAULT_TIMEOUT_SECONDS = 30.0
MAX_ERROR_MESSAGE_LENGTH = 220

BAD_REQUEST_FALLBACK = "Could not process audio"
TOO_LARGE_FALLBACK = "Recording was too long. Please keep it under 60 seconds."
SERVER_ERROR_FALLBACK = "Failed to process memory. Please try again."

_TAG_RE = re.compile(r"<[^>]+>")
_WHITESPACE_RE = re.compile(r"\s+")


def _valid_url(value: Any) -> Optional[str]:
    if not isinstance(value, str) or not value.strip():
        return None
    value = value.strip()
    if not urlparse(value).scheme:
        return None
    return value


def resolve_base_url(
    config: Optional[Dict[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
    debug: bool = False,
) -> str:
    """Environment override, then configuration, then the dev default.

    Raises:
        InvalidConfigurationError: no usable URL outside debug mode
    """
    environ = os.environ if environ is None else environ
    config = config or {}

    url = _valid_url(environ.get(BASE_URL_ENV))
    if url:
        return url

    url = _valid_url((config.get("api") or {}).get("base_url"))
    if url:
        return url

    if debug:
        return DEV_BASE_URL

    raise InvalidConfigurationError(
        "Missing API_BASE_URL configuration. Set api.base_url in the config file "
        "or the API_BASE_URL environment variable."
    )


def extract_error_message(data: bytes, fallback: str) -> str:
    """Best human-readable message from an error response body."""
    if not data:
        return fallback

    try:
        payload = json.loads(data)
    except ValueError:
        payload = None

    if isinstance(payload, dict):
        for key in ("error", "message"):
            message = payload.get(key)
            if isinstance(message, str):
                if message:
                    return message
                break

    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError:
        return fallback

    without_tags = _TAG_RE.sub(" ", text)
    normalized = _WHITESPACE_RE.sub(" ", without_tags).strip()
    if normalized:
        return normalized[:MAX_ERROR_MESSAGE_LENGTH]
    return fallback


class MemoryProcessingClient(MemoryProcessor):
    """HTTP client for POST /api/process-memory."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        config: Optional[Dict[str, Any]] = None,
        debug: bool = False,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url or resolve_base_url(config, debug=debug)
        self.timeout = timeout
        self._transport = transport

    @property
    def endpoint(self) -> str:
        return f"{self.base_url.rstrip('/')}/{PROCESS_MEMORY_PATH}"

    async def process_memory(self, audio_base64: str) -> ProcessingResult:
        body = ProcessMemoryRequest(audio=audio_base64).model_dump()

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.post(
                    self.endpoint,
                    json=body,
                    headers={"Content-Type": "application/json"},
                )
        except httpx.RemoteProtocolError as e:
            # The peer answered with something that is not an HTTP response.
            logger.error("Malformed response from %s: %s", self.endpoint, e)
            raise InvalidResponseError() from e
        except httpx.HTTPError as e:
            host = urlparse(self.base_url).hostname or self.base_url
            detail = str(e) or type(e).__name__
            if isinstance(e, httpx.TimeoutException) and "timed out" not in detail:
                detail = f"The request timed out ({detail})"
            elif isinstance(e, httpx.ConnectError):
                detail = f"Could not connect to the server ({detail})"
            logger.error("Transport error contacting %s: %s", host, detail)
            raise TransportError(f"Network error connecting to {host}: {detail}") from e

        status = response.status_code
        logger.info("Processing endpoint answered %d", status)

        if status == 200:
            try:
                return ProcessingResult.model_validate_json(response.content)
            except (ValidationError, ValueError) as e:
                logger.error("Undecodable processing response: %s", e)
                raise DecodingError("Invalid response payload.") from e
        if status == 400:
            raise BadRequestError(
                extract_error_message(response.content, BAD_REQUEST_FALLBACK)
            )
        if status == 413:
            raise TooLargeError(
                extract_error_message(response.content, TOO_LARGE_FALLBACK)
            )
        raise ServerError(extract_error_message(response.content, SERVER_ERROR_FALLBACK))
