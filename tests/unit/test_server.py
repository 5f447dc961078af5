from unittest.mock import AsyncMock, Mock

import pytest

from memory_loop.server import create_app
from memory_loop.services.transcription import TOO_LARGE_MESSAGE


@pytest.fixture
def mock_service():
    service = Mock()
    service.handle = AsyncMock(
        return_value=(
            200,
            {
                "transcript": "hi",
                "title": "Hello",
                "category": "Other",
                "action_items": [],
                "mood": "neutral",
            },
        )
    )
    return service


@pytest.fixture
def client(mock_service):
    return create_app(mock_service).test_client()


def test_process_memory_passes_body_to_service(client, mock_service):
    response = client.post("/api/process-memory", json={"audio": "QUJD"})

    assert response.status_code == 200
    assert response.get_json()["title"] == "Hello"
    mock_service.handle.assert_awaited_once_with({"audio": "QUJD"})


def test_service_status_is_returned(client, mock_service):
    mock_service.handle.return_value = (400, {"error": "Audio data (base64) is required"})

    response = client.post("/api/process-memory", json={})

    assert response.status_code == 400
    assert response.get_json() == {"error": "Audio data (base64) is required"}


def test_non_json_body_reaches_service_as_none(client, mock_service):
    client.post("/api/process-memory", data="garbage", content_type="text/plain")
    mock_service.handle.assert_awaited_once_with(None)


def test_oversized_body_is_rejected(mock_service):
    app = create_app(mock_service)
    app.config["MAX_CONTENT_LENGTH"] = 16

    response = app.test_client().post(
        "/api/process-memory", json={"audio": "A" * 100}
    )

    assert response.status_code == 413
    assert response.get_json() == {"error": TOO_LARGE_MESSAGE}
    mock_service.handle.assert_not_awaited()


def test_only_post_is_routed(client):
    assert client.get("/api/process-memory").status_code == 405
