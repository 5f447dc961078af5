from unittest.mock import MagicMock, patch

import numpy as np
import pytest

try:
    from memory_loop.adapters import sounddevice_recorder
except OSError:  # PortAudio is not installed on this machine
    pytest.skip("PortAudio library not available", allow_module_level=True)

from memory_loop.adapters.sounddevice_recorder import SILENCE_DB, SoundDeviceRecorder


@pytest.fixture
def recorder():
    return SoundDeviceRecorder(samplerate=16000, channels=1)


@pytest.mark.asyncio
async def test_permission_reflects_input_device(recorder):
    with patch.object(sounddevice_recorder, "sd") as mock_sd:
        assert await recorder.request_permission() is True
        mock_sd.query_devices.side_effect = ValueError("No input device")
        assert await recorder.request_permission() is False


def test_begin_writes_to_file_and_end_closes(recorder, tmp_path):
    with patch.object(sounddevice_recorder, "sd") as mock_sd, patch.object(
        sounddevice_recorder, "sf"
    ) as mock_sf:
        assert recorder.begin(str(tmp_path / "a.wav")) is True
        assert recorder.begin(str(tmp_path / "b.wav")) is False

        mock_sf.SoundFile.assert_called_once()
        stream = mock_sd.InputStream.return_value
        stream.start.assert_called_once()

        recorder.end()
        stream.close.assert_called_once()
        mock_sf.SoundFile.return_value.close.assert_called_once()
        assert recorder.stream is None


def test_begin_failure_reports_false(recorder, tmp_path):
    with patch.object(sounddevice_recorder, "sd") as mock_sd, patch.object(
        sounddevice_recorder, "sf"
    ):
        mock_sd.InputStream.side_effect = RuntimeError("device busy")
        assert recorder.begin(str(tmp_path / "a.wav")) is False
        assert recorder.stream is None
        assert recorder.sndfile is None


def test_audio_callback_tracks_power(recorder):
    recorder.sndfile = MagicMock()

    block = np.full((160, 1), 0.1, dtype="float32")
    recorder._on_audio(block, 160, None, None)
    assert recorder.average_power() == pytest.approx(-20.0, abs=0.01)
    recorder.sndfile.write.assert_called_once()

    recorder._on_audio(np.zeros((160, 1), dtype="float32"), 160, None, None)
    assert recorder.average_power() == SILENCE_DB
