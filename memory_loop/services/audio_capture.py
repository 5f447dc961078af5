from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import tempfile
import uuid
from pathlib import Path
from typing import Optional, Sequence

from memory_loop.domains.errors import (
    NoActiveSessionError,
    SessionBusyError,
    StartFailedError,
)
from memory_loop.interfaces.providers.audio import AudioDevice

logger = logging.getLogger(__name__)

POWER_FLOOR_DB = -60.0
METER_INTERVAL_SECONDS = 0.1
DURATION_TICK_SECONDS = 1.0
# The audio session may still be settling from a prior deactivation.
START_RETRY_DELAYS = (0.1, 0.3)


def normalize_power(power_db: float) -> float:
    """Rescale a dBFS level from [-60, 0] to [0, 1], clamped."""
    return max(0.0, min(1.0, (power_db - POWER_FLOOR_DB) / -POWER_FLOOR_DB))


class AudioCapture:
    """Owns one exclusive microphone recording session at a time.

    While recording, ``amplitude`` and ``duration`` are refreshed on a fixed
    tick for observers; they have no effect on the recorded bytes.
    """

    def __init__(
        self,
        device: AudioDevice,
        scratch_dir: Optional[str] = None,
        retry_delays: Sequence[float] = START_RETRY_DELAYS,
        meter_interval: float = METER_INTERVAL_SECONDS,
        duration_tick: float = DURATION_TICK_SECONDS,
    ) -> None:
        self.device = device
        self.scratch_dir = scratch_dir or tempfile.gettempdir()
        self.retry_delays = tuple(retry_delays)
        self.meter_interval = meter_interval
        self.duration_tick = duration_tick

        self.is_recording = False
        self.amplitude = 0.0
        self.duration = 0.0

        self._file_path: Optional[str] = None
        self._meter_task: Optional[asyncio.Task] = None
        self._duration_task: Optional[asyncio.Task] = None

    async def request_permission(self) -> bool:
        return await self.device.request_permission()

    async def start(self) -> None:
        """Start a new recording, discarding any session left behind.

        Raises:
            SessionBusyError: the previous session could not be torn down
            StartFailedError: both start attempts failed
        """
        self._stop_timers()
        await self._stop_if_needed()

        last_error: Optional[Exception] = None
        for attempt, delay in enumerate(self.retry_delays, start=1):
            try:
                await self._start_with_session_reset(delay)
                logger.info("Recording started on attempt %d", attempt)
                return
            except Exception as e:
                logger.warning("Start attempt %d failed: %s", attempt, e)
                last_error = e

        if isinstance(last_error, StartFailedError):
            raise last_error
        raise StartFailedError(
            f"Failed to start recording: {last_error}"
        ) from last_error

    async def stop(self) -> bytes:
        """Stop recording and return the complete payload.

        Raises:
            NoActiveSessionError: nothing was recording
        """
        self._stop_timers()

        if not self.is_recording or self._file_path is None:
            raise NoActiveSessionError()

        self.device.end()
        file_path = self._file_path
        self._reset()
        self.device.deactivate_session()

        try:
            data = await asyncio.to_thread(Path(file_path).read_bytes)
        finally:
            self._remove_scratch(file_path)
        logger.info("Recording stopped, payload_len=%d", len(data))
        return data

    def cancel(self) -> None:
        """Best-effort teardown used on abandonment. Never raises."""
        self._stop_timers()
        with contextlib.suppress(Exception):
            self.device.end()
        if self._file_path:
            self._remove_scratch(self._file_path)
        self._reset()
        with contextlib.suppress(Exception):
            self.device.deactivate_session()

    async def _start_with_session_reset(self, delay: float) -> None:
        self.device.deactivate_session()
        await asyncio.sleep(delay)
        await self.device.activate_session()

        file_path = os.path.join(self.scratch_dir, f"{uuid.uuid4()}.wav")
        if not self.device.begin(file_path):
            self._remove_scratch(file_path)
            raise StartFailedError()

        self._file_path = file_path
        self.is_recording = True
        self.amplitude = 0.0
        self.duration = 0.0
        self._start_timers()

    async def _stop_if_needed(self) -> None:
        if not self.is_recording:
            return
        logger.info("Discarding previous recording session before starting")
        try:
            await self.stop()
        except Exception as e:
            raise SessionBusyError(
                f"Audio session is already active and could not be stopped: {e}"
            ) from e

    def _start_timers(self) -> None:
        self._meter_task = asyncio.create_task(self._meter_loop())
        self._duration_task = asyncio.create_task(self._duration_loop())

    def _stop_timers(self) -> None:
        for task in (self._meter_task, self._duration_task):
            if task is not None and not task.done():
                task.cancel()
        self._meter_task = None
        self._duration_task = None

    async def _meter_loop(self) -> None:
        while self.is_recording:
            await asyncio.sleep(self.meter_interval)
            self.amplitude = normalize_power(self.device.average_power())

    async def _duration_loop(self) -> None:
        while self.is_recording:
            await asyncio.sleep(self.duration_tick)
            self.duration += 1

    def _reset(self) -> None:
        self._file_path = None
        self.is_recording = False
        self.amplitude = 0.0
        self.duration = 0.0

    @staticmethod
    def _remove_scratch(file_path: str) -> None:
        with contextlib.suppress(OSError):
            os.remove(file_path)
