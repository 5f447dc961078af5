"""
Tests for the MemoryLoopFactory.

This module tests configuration loading and wiring of the server
pipeline, the memory store and the capture session.
"""
import json
from unittest.mock import MagicMock, patch

import pytest
from flask import Flask

from memory_loop.adapters.memory_file_storage import MemoryFileStorage
from memory_loop.domains.errors import InvalidConfigurationError
from memory_loop.factories.memory_loop_factory import MemoryLoopFactory
from memory_loop.services.capture_session import CaptureSessionController
from memory_loop.services.processing_client import DEV_BASE_URL


# ---------------------
# Fixtures
# ---------------------


@pytest.fixture
def base_config():
    return {
        "openai": {"api_key": "sk-config", "structuring_model": "gpt-custom"},
        "api": {"base_url": "https://memory.example", "timeout": 12},
    }


@pytest.fixture
def config_file(tmp_path, base_config):
    path = tmp_path / "config.json"
    path.write_text(json.dumps(base_config))
    return str(path)


# ---------------------
# Configuration
# ---------------------


def test_load_config_from_file(config_file, base_config):
    assert MemoryLoopFactory.load_config(config_path=config_file) == base_config


def test_load_config_missing_file_is_empty(tmp_path):
    assert MemoryLoopFactory.load_config(config_path=str(tmp_path / "nope.json")) == {}


def test_load_config_rejects_non_object(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("[]")
    with pytest.raises(ValueError):
        MemoryLoopFactory.load_config(config_path=str(path))


def test_load_config_prefers_dict(config_file):
    assert MemoryLoopFactory.load_config(config_path=config_file, config={"a": 1}) == {
        "a": 1
    }


@pytest.mark.parametrize(
    "environ, config, expected",
    [
        ({"MEMORY_LOOP_DEBUG": "1"}, {}, True),
        ({"MEMORY_LOOP_DEBUG": "false"}, {"debug": True}, False),
        ({}, {"debug": True}, True),
        ({}, {}, False),
    ],
)
def test_is_debug(environ, config, expected):
    assert MemoryLoopFactory.is_debug(config, environ) is expected


# ---------------------
# Server pipeline
# ---------------------


@patch("memory_loop.factories.memory_loop_factory.OpenAIAdapter")
def test_create_processing_service(mock_adapter, base_config):
    service = MemoryLoopFactory.create_processing_service(base_config, environ={})

    mock_adapter.assert_called_once_with(
        api_key="sk-config", base_url=None, logfire_api_key=None
    )
    assert service.provider is mock_adapter.return_value
    assert service.structuring_models == ["gpt-custom", "gpt-5-mini", "gpt-4o-mini"]
    assert service.transcription_models == ["gpt-4o-mini-transcribe", "whisper-1"]
    assert service.transcoder.binary == "ffmpeg"


@patch("memory_loop.factories.memory_loop_factory.OpenAIAdapter")
def test_environment_overrides_config(mock_adapter, base_config):
    environ = {
        "AI_INTEGRATIONS_OPENAI_API_KEY": "sk-integration",
        "OPENAI_API_KEY": "sk-env",
        "OPENAI_BASE_URL": "https://proxy.example/v1",
        "MEMORY_TRANSCRIPTION_MODEL": "whisper-1",
    }
    service = MemoryLoopFactory.create_processing_service(base_config, environ=environ)

    mock_adapter.assert_called_once_with(
        api_key="sk-integration",
        base_url="https://proxy.example/v1",
        logfire_api_key=None,
    )
    assert service.transcription_models == ["whisper-1", "gpt-4o-mini-transcribe"]


def test_missing_credentials_still_builds_service():
    service = MemoryLoopFactory.create_processing_service({}, environ={})
    assert service.provider is None


@patch("memory_loop.factories.memory_loop_factory.OpenAIAdapter")
def test_logfire_requires_api_key(mock_adapter, base_config):
    base_config["logfire"] = {}
    with pytest.raises(ValueError, match="Logfire API key is required"):
        MemoryLoopFactory.create_processing_service(base_config, environ={})


@patch("memory_loop.factories.memory_loop_factory.OpenAIAdapter")
def test_null_logfire_section_is_ignored(mock_adapter, base_config):
    base_config["logfire"] = None
    MemoryLoopFactory.create_processing_service(base_config, environ={})
    assert mock_adapter.call_args.kwargs["logfire_api_key"] is None


@patch("memory_loop.factories.memory_loop_factory.OpenAIAdapter")
def test_logfire_key_is_passed(mock_adapter, base_config):
    base_config["logfire"] = {"api_key": "lf-key"}
    MemoryLoopFactory.create_processing_service(base_config, environ={})
    assert mock_adapter.call_args.kwargs["logfire_api_key"] == "lf-key"


def test_create_server_returns_flask_app():
    app = MemoryLoopFactory.create_server({}, environ={})
    assert isinstance(app, Flask)
    assert any(r.rule == "/api/process-memory" for r in app.url_map.iter_rules())


# ---------------------
# Client side
# ---------------------


def test_create_store_uses_configured_path(tmp_path):
    store = MemoryLoopFactory.create_store({"storage": {"path": str(tmp_path / "m.json")}})
    assert isinstance(store.storage, MemoryFileStorage)
    assert store.storage.path == tmp_path / "m.json"


def test_create_processing_client(base_config):
    client = MemoryLoopFactory.create_processing_client(base_config, environ={})
    assert client.endpoint == "https://memory.example/api/process-memory"
    assert client.timeout == 12.0


def test_create_processing_client_debug_default():
    client = MemoryLoopFactory.create_processing_client({"debug": True}, environ={})
    assert client.base_url == DEV_BASE_URL


def test_create_processing_client_requires_url():
    with pytest.raises(InvalidConfigurationError):
        MemoryLoopFactory.create_processing_client({}, environ={})


def test_create_capture_controller_with_device(tmp_path):
    store = MemoryLoopFactory.create_store({"storage": {"path": str(tmp_path / "m.json")}})
    device = MagicMock()

    controller = MemoryLoopFactory.create_capture_controller({}, store, device=device)

    assert isinstance(controller, CaptureSessionController)
    assert controller.capture.device is device
    assert controller.store is store
