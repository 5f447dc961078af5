import json

import httpx
import pytest

from memory_loop.domains.errors import (
    BadRequestError,
    DecodingError,
    InvalidConfigurationError,
    InvalidResponseError,
    ServerError,
    TooLargeError,
    TransportError,
)
from memory_loop.services.capture_session import (
    BACKEND_UNREACHABLE_MESSAGE,
    PROCESS_FAILED_MESSAGE,
    map_process_error,
)
from memory_loop.services.processing_client import (
    DEV_BASE_URL,
    MemoryProcessingClient,
    extract_error_message,
    resolve_base_url,
)

RESULT = {
    "transcript": "buy milk",
    "title": "Milk Run",
    "category": "Shopping",
    "action_items": ["Buy milk"],
    "mood": "calm",
}


def _client(handler):
    return MemoryProcessingClient(
        base_url="http://memory.test/", transport=httpx.MockTransport(handler)
    )


@pytest.mark.asyncio
async def test_success_posts_audio_and_decodes_result():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        seen["content_type"] = request.headers["content-type"]
        return httpx.Response(200, json=RESULT)

    result = await _client(handler).process_memory("QUJD")

    assert seen["url"] == "http://memory.test/api/process-memory"
    assert seen["body"] == {"audio": "QUJD"}
    assert seen["content_type"].startswith("application/json")
    assert result.model_dump() == RESULT


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status, body, expected",
    [
        (400, {"error": "bad audio"}, BadRequestError("bad audio")),
        (400, b"", BadRequestError("Could not process audio")),
        (413, {"message": "too big"}, TooLargeError("too big")),
        (
            413,
            b"",
            TooLargeError("Recording was too long. Please keep it under 60 seconds."),
        ),
        (500, {"error": "oops"}, ServerError("oops")),
        (
            500,
            b"<html><body><h1>500 Server Error</h1></body></html>",
            ServerError("500 Server Error"),
        ),
        (502, b"\xff\xfe\xfd", ServerError("Failed to process memory. Please try again.")),
    ],
)
async def test_status_mapping(status, body, expected):
    def handler(request):
        if isinstance(body, dict):
            return httpx.Response(status, json=body)
        return httpx.Response(status, content=body)

    with pytest.raises(type(expected)) as exc:
        await _client(handler).process_memory("QUJD")
    assert exc.value == expected


@pytest.mark.asyncio
async def test_undecodable_success_payload():
    def handler(request):
        return httpx.Response(200, json={"transcript": "only"})

    with pytest.raises(DecodingError) as exc:
        await _client(handler).process_memory("QUJD")
    assert exc.value.message == "Invalid response payload."


@pytest.mark.asyncio
async def test_transport_error_names_host():
    def handler(request):
        raise httpx.ConnectError("Connection refused", request=request)

    with pytest.raises(TransportError) as exc:
        await _client(handler).process_memory("QUJD")
    assert exc.value.message.startswith("Network error connecting to memory.test:")
    assert "Connection refused" in exc.value.message


@pytest.mark.asyncio
async def test_refused_connection_reads_as_unreachable_backend():
    def handler(request):
        raise httpx.ConnectError("[Errno 111] Connection refused", request=request)

    client = MemoryProcessingClient(
        base_url="http://127.0.0.1:5000", transport=httpx.MockTransport(handler)
    )
    with pytest.raises(TransportError) as exc:
        await client.process_memory("QUJD")

    assert exc.value.message == (
        "Network error connecting to 127.0.0.1: "
        "Could not connect to the server ([Errno 111] Connection refused)"
    )
    assert map_process_error(exc.value) == BACKEND_UNREACHABLE_MESSAGE


@pytest.mark.asyncio
async def test_timeout_reads_as_unreachable_backend():
    def handler(request):
        raise httpx.ConnectTimeout("", request=request)

    with pytest.raises(TransportError) as exc:
        await _client(handler).process_memory("QUJD")
    assert map_process_error(exc.value) == BACKEND_UNREACHABLE_MESSAGE


@pytest.mark.asyncio
async def test_malformed_reply_is_invalid_response():
    def handler(request):
        raise httpx.RemoteProtocolError(
            "Server disconnected without sending a response.", request=request
        )

    with pytest.raises(InvalidResponseError) as exc:
        await _client(handler).process_memory("QUJD")
    assert exc.value.message == "Invalid server response."
    assert map_process_error(exc.value) == PROCESS_FAILED_MESSAGE


@pytest.mark.asyncio
async def test_timeout_mentions_timed_out():
    def handler(request):
        raise httpx.ReadTimeout("", request=request)

    with pytest.raises(TransportError) as exc:
        await _client(handler).process_memory("QUJD")
    assert "timed out" in exc.value.message.lower()


def test_extract_error_message_truncates_text():
    text = ("word " * 100).encode()
    message = extract_error_message(text, "fallback")
    assert len(message) == 220
    assert message.startswith("word word")


def test_extract_error_message_empty_error_falls_to_text():
    assert extract_error_message(b'{"error": ""}', "fallback") == '{"error": ""}'


def test_resolve_base_url_precedence():
    config = {"api": {"base_url": "https://config.example"}}
    env = {"API_BASE_URL": "https://env.example"}
    assert resolve_base_url(config, environ=env) == "https://env.example"
    assert resolve_base_url(config, environ={}) == "https://config.example"
    assert resolve_base_url({}, environ={}, debug=True) == DEV_BASE_URL


def test_resolve_base_url_rejects_missing_or_invalid():
    with pytest.raises(InvalidConfigurationError):
        resolve_base_url({}, environ={})
    with pytest.raises(InvalidConfigurationError):
        resolve_base_url({"api": {"base_url": "not a url"}}, environ={"API_BASE_URL": " "})
