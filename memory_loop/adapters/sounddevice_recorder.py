from __future__ import annotations

import asyncio
import contextlib
import logging
import math
from typing import Optional

import numpy as np
import sounddevice as sd
import soundfile as sf

from memory_loop.interfaces.providers.audio import AudioDevice

logger = logging.getLogger(__name__)

SAMPLE_RATE = 16000
CHANNELS = 1
SILENCE_DB = -160.0


class SoundDeviceRecorder(AudioDevice):
    """Records the default (or given) input device to a 16-bit WAV file."""

    def __init__(
        self,
        device: Optional[int] = None,
        samplerate: int = SAMPLE_RATE,
        channels: int = CHANNELS,
    ) -> None:
        self.device = device
        self.samplerate = samplerate
        self.channels = channels
        self.stream: Optional[sd.InputStream] = None
        self.sndfile: Optional[sf.SoundFile] = None
        self._power_db = SILENCE_DB

    async def request_permission(self) -> bool:
        def _probe() -> bool:
            try:
                sd.query_devices(self.device, kind="input")
                return True
            except Exception as e:
                logger.warning("No usable input device: %s", e)
                return False

        return await asyncio.to_thread(_probe)

    async def activate_session(self) -> None:
        # Raises if the device cannot be opened with these settings.
        await asyncio.to_thread(
            sd.check_input_settings,
            device=self.device,
            channels=self.channels,
            samplerate=self.samplerate,
            dtype="float32",
        )

    def deactivate_session(self) -> None:
        self._close()

    def begin(self, file_path: str) -> bool:
        if self.stream is not None:
            logger.warning("Input stream already open; refusing to start")
            return False
        self._power_db = SILENCE_DB
        self.sndfile = sf.SoundFile(
            file_path,
            mode="w",
            samplerate=self.samplerate,
            channels=self.channels,
            subtype="PCM_16",
            format="WAV",
        )
        try:
            self.stream = sd.InputStream(
                samplerate=self.samplerate,
                channels=self.channels,
                dtype="float32",
                callback=self._on_audio,
                blocksize=0,
                device=self.device,
            )
            self.stream.start()
        except Exception as e:
            logger.error("Failed to open input stream: %s", e)
            self._close()
            return False
        return True

    def end(self) -> None:
        self._close()

    def average_power(self) -> float:
        return self._power_db

    def _on_audio(self, indata, frames, time_info, status) -> None:
        if status:
            logger.debug("Input stream status: %s", status)
        if self.sndfile is None:
            return
        self.sndfile.write(indata.copy())
        rms = float(np.sqrt(np.mean(np.square(indata)))) if frames else 0.0
        self._power_db = 20 * math.log10(rms) if rms > 0 else SILENCE_DB

    def _close(self) -> None:
        try:
            if self.stream is not None:
                with contextlib.suppress(Exception):
                    self.stream.stop()
                with contextlib.suppress(Exception):
                    self.stream.close()
        finally:
            self.stream = None
        if self.sndfile is not None:
            with contextlib.suppress(Exception):
                self.sndfile.close()
            self.sndfile = None
