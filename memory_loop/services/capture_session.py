"""
Capture session controller.

Drives one recording attempt from microphone to stored memory:
Idle -> Recording -> Processing -> Done | Error. All state lives on one
event loop; background work is three cancellable tasks (auto-stop,
processing guard, in-flight processing) owned by the session.
"""
from __future__ import annotations

import asyncio
import base64
import contextlib
import logging
from typing import Callable, List, Optional, Union

from memory_loop.domains.errors import (
    APIError,
    InvalidResponseError,
    ProcessingTimeoutError,
    TransportError,
)
from memory_loop.domains.memory import Memory
from memory_loop.domains.session import CaptureSnapshot, CaptureState
from memory_loop.interfaces.services.processing import MemoryProcessor
from memory_loop.services.audio_capture import AudioCapture
from memory_loop.services.memory_store import MemoryStore

logger = logging.getLogger(__name__)

MAX_RECORDING_SECONDS = 60.0
PROCESSING_TIMEOUT_SECONDS = 30.0

PERMISSION_MESSAGE = "Microphone permission is required. Please enable it in Settings."
SESSION_CONFLICT_MESSAGE = (
    "Audio session conflict. Please close the app fully and reopen it."
)
MODE_DISABLED_MESSAGE = (
    "Could not enable recording mode. Please restart the app and try again."
)
START_FAILED_MESSAGE = "Failed to start recording. Please try again."
TIMEOUT_MESSAGE = "Processing took too long. Please try again."
BACKEND_UNREACHABLE_MESSAGE = (
    "Could not reach the backend. Start the server and set API_BASE_URL if needed."
)
PROCESS_FAILED_MESSAGE = "Failed to process your memory. Please try again."

SnapshotListener = Callable[[CaptureSnapshot], None]
ProcessorSource = Union[MemoryProcessor, Callable[[], MemoryProcessor]]


def map_start_error(error: BaseException) -> str:
    text = str(error).lower()
    if "permission" in text:
        return PERMISSION_MESSAGE
    if "prepare" in text or "session" in text or "already" in text:
        return SESSION_CONFLICT_MESSAGE
    if "mode" in text or "disabled" in text:
        return MODE_DISABLED_MESSAGE
    return START_FAILED_MESSAGE


def map_process_error(error: BaseException) -> str:
    if isinstance(error, InvalidResponseError):
        return PROCESS_FAILED_MESSAGE
    if isinstance(error, TransportError):
        lowered = error.message.lower()
        if any(s in lowered for s in ("timed out", "offline", "could not connect")):
            return BACKEND_UNREACHABLE_MESSAGE
        return error.message
    if isinstance(error, APIError):
        return error.message

    message = str(error).strip()
    if message and message != "None":
        return message
    return PROCESS_FAILED_MESSAGE


class CaptureSessionController:
    """State machine for one capture session.

    ``stop()`` may be triggered repeatedly (button mashing, auto-stop);
    only the first trigger while recording starts processing.
    """

    def __init__(
        self,
        capture: AudioCapture,
        processor: ProcessorSource,
        store: MemoryStore,
        on_memory_created: Optional[Callable[[str], None]] = None,
        max_recording_seconds: float = MAX_RECORDING_SECONDS,
        processing_timeout: float = PROCESSING_TIMEOUT_SECONDS,
    ) -> None:
        self.capture = capture
        self.store = store
        self.on_memory_created = on_memory_created
        self.max_recording_seconds = max_recording_seconds
        self.processing_timeout = processing_timeout
        self._processor = processor

        self.state = CaptureState.IDLE
        self.error_message: Optional[str] = None
        self.last_error: Optional[BaseException] = None
        self.memory_id: Optional[str] = None

        self._is_processing = False
        self._closed = False
        self._auto_stop_task: Optional[asyncio.Task] = None
        self._guard_task: Optional[asyncio.Task] = None
        self._process_task: Optional[asyncio.Task] = None
        self._listeners: List[SnapshotListener] = []

    async def __aenter__(self) -> "CaptureSessionController":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # --- Observation ---

    @property
    def is_processing(self) -> bool:
        return self._is_processing

    @property
    def is_closed(self) -> bool:
        return self._closed

    def snapshot(self) -> CaptureSnapshot:
        return CaptureSnapshot(
            state=self.state,
            duration=self.capture.duration,
            amplitude=self.capture.amplitude,
            error_message=self.error_message,
            memory_id=self.memory_id,
        )

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        """Register a state-change listener; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._listeners.remove(listener)

        return _unsubscribe

    # --- Transitions ---

    async def start(self) -> None:
        """Idle/Error -> Recording, or Error when permission or start fails."""
        if self._closed or self._is_processing:
            return
        if self.state in (CaptureState.RECORDING, CaptureState.DONE):
            return

        granted = await self.capture.request_permission()
        if self._closed:
            return
        if not granted:
            self._fail(PERMISSION_MESSAGE)
            return

        try:
            await self.capture.start()
        except Exception as e:
            logger.error(f"Failed to start recording: {e}")
            self.last_error = e
            self._fail(map_start_error(e))
            return

        if self._closed:
            self.capture.cancel()
            return

        self.error_message = None
        self.last_error = None
        self._set_state(CaptureState.RECORDING)
        self._schedule_auto_stop()

    def stop(self) -> Optional[asyncio.Task]:
        """Recording -> Processing. Redundant triggers return None."""
        if self._closed or self._is_processing:
            return None
        if self.state != CaptureState.RECORDING:
            return None

        self._is_processing = True
        self._set_state(CaptureState.PROCESSING)
        self._cancel_auto_stop()
        self._start_processing_guard()

        self._process_task = asyncio.create_task(self._process())
        return self._process_task

    def retry(self) -> None:
        """Error -> Idle on explicit user action."""
        if self._closed or self.state != CaptureState.ERROR:
            return
        self._is_processing = False
        self.error_message = None
        self.last_error = None
        self._set_state(CaptureState.IDLE)

    async def close(self) -> None:
        """Abandon the session: cancel every pending task, discard audio."""
        if self._closed:
            return
        self._closed = True
        tasks = self._cancel_all_tasks()
        self.capture.cancel()
        self._is_processing = False
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._listeners.clear()
        logger.info("Capture session closed in state %s", self.state.value)

    # --- Processing ---

    async def _process(self) -> None:
        try:
            audio = await self.capture.stop()
            audio_base64 = await asyncio.to_thread(
                lambda: base64.b64encode(audio).decode("ascii")
            )
            processor = self._resolve_processor()
            result = await processor.process_memory(audio_base64)

            # The result is in; the guard must not fire while it is stored.
            self._cancel_processing_guard()
            memory = Memory.from_processing_result(result)
            await self.store.add(memory)
        except asyncio.CancelledError:
            # Teardown and the timeout guard detach this task before cancelling
            # it and own the transition; anything else leaves it attached.
            if self._process_task is asyncio.current_task():
                self._cancel_processing_guard()
                self._is_processing = False
                self._process_task = None
            raise
        except Exception as e:
            logger.error(f"Failed to process memory: {e}")
            self._cancel_processing_guard()
            self._is_processing = False
            self._process_task = None
            self.last_error = e
            self._fail(map_process_error(e))
            return

        self._is_processing = False
        self._process_task = None
        self.memory_id = memory.id
        logger.info("Memory %s created", memory.id)
        self._set_state(CaptureState.DONE)
        if self.on_memory_created is not None:
            self.on_memory_created(memory.id)

    def _resolve_processor(self) -> MemoryProcessor:
        if isinstance(self._processor, MemoryProcessor):
            return self._processor
        return self._processor()

    # --- Guards ---

    def _schedule_auto_stop(self) -> None:
        self._cancel_auto_stop()
        self._auto_stop_task = asyncio.create_task(self._auto_stop())

    async def _auto_stop(self) -> None:
        await asyncio.sleep(self.max_recording_seconds)
        self._auto_stop_task = None
        if self.state == CaptureState.RECORDING:
            logger.info("Recording ceiling reached; stopping automatically")
            self.stop()

    def _cancel_auto_stop(self) -> None:
        if self._auto_stop_task is not None:
            self._auto_stop_task.cancel()
            self._auto_stop_task = None

    def _start_processing_guard(self) -> None:
        self._cancel_processing_guard()
        self._guard_task = asyncio.create_task(self._processing_guard())

    async def _processing_guard(self) -> None:
        await asyncio.sleep(self.processing_timeout)
        self._guard_task = None
        if not self._is_processing:
            return
        logger.warning(
            "Processing exceeded %.0fs; cancelling", self.processing_timeout
        )
        self._is_processing = False
        task, self._process_task = self._process_task, None
        if task is not None:
            task.cancel()
        self.capture.cancel()
        self.last_error = ProcessingTimeoutError()
        self._fail(TIMEOUT_MESSAGE)

    def _cancel_processing_guard(self) -> None:
        if self._guard_task is not None:
            self._guard_task.cancel()
            self._guard_task = None

    def _cancel_all_tasks(self) -> List[asyncio.Task]:
        tasks = [
            t
            for t in (self._auto_stop_task, self._guard_task, self._process_task)
            if t is not None and t is not asyncio.current_task()
        ]
        self._cancel_auto_stop()
        self._cancel_processing_guard()
        if self._process_task is not None:
            self._process_task.cancel()
            self._process_task = None
        return tasks

    # --- State ---

    def _fail(self, message: str) -> None:
        self.error_message = message
        self._set_state(CaptureState.ERROR)

    def _set_state(self, state: CaptureState) -> None:
        self.state = state
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Capture session listener failed")
