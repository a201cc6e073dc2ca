#!/usr/bin/env python3
"""
Face Scan Controller
Runs one scan session (register or verify) from camera open to close.

Register:
    INITIALIZING -> READY -> (capture) CAPTURING -> REGISTER_PREVIEW
                 -> (retake) READY  |  (confirm) CONFIRMED -> CLOSED
Verify:
    INITIALIZING -> READY -> (auto-capture) CAPTURING -> VERIFYING
                 -> CONFIRMED -> (auto-close) CLOSED
                 -> RETRY_READY -> (auto-capture) CAPTURING -> ...

Model-load and camera failures put the controller in ERROR, which is
terminal: automatic actions stop and the caller has to close it and create
a new one.

Usage:
    controller = FaceScanController(VerifyMode(reference), on_result=print)
    await controller.open()
    await controller.wait_closed()
"""

import asyncio
import time
import logging
from enum import Enum
from typing import Callable, Optional, Set

from .auto_capture import AutoCaptureTimer
from .camera_manager import CameraConstraints, CameraManager, CameraSession
from .detection_loop import DetectionLoop
from .errors import (
    CameraError,
    CameraErrorKind,
    ComparisonError,
    CropError,
    FrameUnavailableError,
    ModelLoadError,
)
from .face_comparison import Diagnostic, FaceComparator, VerificationResult
from .face_detector import FaceDetector, InsightFaceDetector, YuNetDetector
from .frame_capture import StillImage, capture_still, read_frame
from .image_normalizer import crop_to_aspect_ratio
from .modes import ModeKind, RegisterMode, ScanMode, VerifyMode
from .settings import EngineSettings
from .validation import ValidationResult, ValidationStatus

logger = logging.getLogger(__name__)

IMAGE_PROCESSING_FAILED = "Image processing failed."

# =============================================================================
# STATES
# =============================================================================

class EngineState(Enum):
    INITIALIZING = "initializing"
    READY = "ready"
    CAPTURING = "capturing"
    REGISTER_PREVIEW = "register_preview"
    VERIFYING = "verifying"
    CONFIRMED = "confirmed"
    RETRY_READY = "retry_ready"
    ERROR = "error"
    CLOSED = "closed"


S = EngineState

REGISTER_TRANSITIONS = {
    S.INITIALIZING: {S.READY, S.ERROR, S.CLOSED},
    S.READY: {S.CAPTURING, S.ERROR, S.CLOSED},
    S.CAPTURING: {S.REGISTER_PREVIEW, S.READY, S.ERROR, S.CLOSED},
    S.REGISTER_PREVIEW: {S.READY, S.CONFIRMED, S.CLOSED},
    S.CONFIRMED: {S.CLOSED},
    S.ERROR: {S.CLOSED},
    S.CLOSED: set(),
}

VERIFY_TRANSITIONS = {
    S.INITIALIZING: {S.READY, S.ERROR, S.CLOSED},
    S.READY: {S.CAPTURING, S.ERROR, S.CLOSED},
    S.CAPTURING: {S.VERIFYING, S.RETRY_READY, S.ERROR, S.CLOSED},
    S.VERIFYING: {S.CONFIRMED, S.RETRY_READY, S.ERROR, S.CLOSED},
    S.RETRY_READY: {S.CAPTURING, S.ERROR, S.CLOSED},
    S.CONFIRMED: {S.CLOSED},
    S.ERROR: {S.CLOSED},
    S.CLOSED: set(),
}

# States in which the verify-mode auto-capture may fire
_CAPTURE_READY = (S.READY, S.RETRY_READY)


def _transitions_for(mode: ScanMode):
    if isinstance(mode, RegisterMode):
        return REGISTER_TRANSITIONS
    if isinstance(mode, VerifyMode):
        return VERIFY_TRANSITIONS
    raise TypeError(f"Unknown scan mode: {mode!r}")


# =============================================================================
# CONTROLLER
# =============================================================================

class FaceScanController:
    """
    Orchestrates camera, detection loop, capture and verification for a
    single scan session.

    Args:
        mode: RegisterMode() or VerifyMode(reference_image)
        camera_manager: Source of the camera session
        detector: Detector for the live loop (YuNet by default)
        comparator: Verify mode only (InsightFace by default)
        settings: Engine settings (built-in defaults if omitted)
        on_confirm: Register mode, called once with the confirmed image
        on_result: Verify mode, called with (success, score) per attempt
        on_status: Called with every ValidationResult from the loop
        on_state: Called with every new EngineState
        clock: Monotonic clock for the auto-capture dwell
    """

    def __init__(
        self,
        mode: ScanMode,
        camera_manager: Optional[CameraManager] = None,
        detector: Optional[FaceDetector] = None,
        comparator: Optional[FaceComparator] = None,
        settings: Optional[EngineSettings] = None,
        on_confirm: Optional[Callable[[StillImage], None]] = None,
        on_result: Optional[Callable[[bool, float], None]] = None,
        on_status: Optional[Callable[[ValidationResult], None]] = None,
        on_state: Optional[Callable[[EngineState], None]] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.mode = mode
        self._transitions = _transitions_for(mode)
        self.settings = settings or EngineSettings()

        det = self.settings.detection
        cmp = self.settings.comparison
        self.camera_manager = camera_manager or CameraManager()
        self.detector = detector or YuNetDetector(det.yunet_model_path, det.min_confidence)

        if self.mode.kind is ModeKind.VERIFY and comparator is None:
            comparator = FaceComparator(
                InsightFaceDetector(cmp.model_name, cmp.model_dir),
                similarity_threshold=cmp.similarity_threshold,
                min_detection_score=cmp.min_detection_score,
            )
        self.comparator = comparator

        self.on_confirm = on_confirm
        self.on_result = on_result
        self.on_status = on_status
        self.on_state = on_state

        self.state = EngineState.INITIALIZING
        self.status = ValidationStatus.IDLE
        self.message: Optional[str] = None
        self.captured_image: Optional[StillImage] = None
        self.last_result: Optional[VerificationResult] = None
        self.error_message: Optional[str] = None

        self._auto_capture = AutoCaptureTimer(self.settings.capture.auto_capture_delay, clock=clock)
        self._session: Optional[CameraSession] = None
        self._loop: Optional[DetectionLoop] = None
        self._active = False
        self._attempt = 0
        self._tasks: Set[asyncio.Task] = set()
        self._closed = asyncio.Event()

    # =========================================================================
    # STATE HELPERS
    # =========================================================================

    def _transition(self, new_state: EngineState) -> None:
        if new_state not in self._transitions[self.state]:
            raise RuntimeError(f"Illegal {self.mode.kind.value} transition "
                               f"{self.state.name} -> {new_state.name}")
        logger.info(f"[{self.mode.kind.value}] {self.state.name} -> {new_state.name}")
        self.state = new_state
        self._notify(self.on_state, new_state)

    def _notify(self, callback: Optional[Callable], *args) -> None:
        """Call a caller-supplied callback, logging anything it raises."""
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as e:
            logger.error(f"Callback {getattr(callback, '__name__', callback)!r} raised: {e}")

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _is_current(self, attempt: int) -> bool:
        """False once the controller closed or a newer attempt started."""
        return self._active and attempt == self._attempt

    def _fail(self, message: str) -> None:
        """Enter the terminal ERROR state and release everything."""
        logger.error(f"Face scan failed: {message}")
        if self._loop is not None:
            self._loop.stop()
        self._auto_capture.reset()
        self._release_camera()
        self.status = ValidationStatus.ERROR
        self.message = message
        self.error_message = message
        self._transition(EngineState.ERROR)

    def _release_camera(self) -> None:
        session, self._session = self._session, None
        if session is not None:
            self.camera_manager.release(session)

    @property
    def is_terminal(self) -> bool:
        return self.state in (EngineState.ERROR, EngineState.CLOSED)

    # =========================================================================
    # OPEN / CLOSE
    # =========================================================================

    async def open(self) -> None:
        """
        Load models, acquire the camera and start the detection loop.

        On failure the controller ends up in ERROR with a user-facing message
        instead of raising.
        """
        if self.state is not EngineState.INITIALIZING:
            raise RuntimeError(f"open() called in state {self.state.name}")
        self._active = True
        self.message = "Loading face detection models..."

        try:
            await self.detector.load()
            if self.comparator is not None:
                await self.comparator.load()
        except ModelLoadError as e:
            if self._active:
                self._fail(e.user_message)
            return

        if not self._active:
            return

        cam = self.settings.camera
        constraints = CameraConstraints(
            source=cam.source,
            width=cam.preferred_width,
            height=cam.preferred_height,
            buffer_size=cam.buffer_size,
        )
        try:
            session = await self.camera_manager.acquire(constraints)
        except CameraError as e:
            if self._active:
                self._fail(e.user_message)
            return

        if not self._active:
            # Closed while the camera was opening
            self.camera_manager.release(session)
            return

        self._session = session
        det = self.settings.detection
        self._loop = DetectionLoop(
            detector=self.detector,
            frame_source=self._read_frame,
            on_status=self._handle_status,
            mode=self.mode,
            interval=det.interval,
            min_confidence=det.min_confidence,
            tolerance_x=det.center_tolerance_x,
            tolerance_y=det.center_tolerance_y,
            is_streaming=self._is_streaming,
            on_stream_lost=self._handle_stream_lost,
        )
        self.message = None
        self._transition(EngineState.READY)
        self._loop.start()

    async def close(self) -> None:
        """Tear down the session. Safe to call from any state, any number of times."""
        if self.state is EngineState.CLOSED:
            return
        self._active = False
        self._attempt += 1
        try:
            if self._loop is not None:
                self._loop.stop()
            self._auto_capture.reset()
            current = asyncio.current_task()
            for task in list(self._tasks):
                if task is not current:
                    task.cancel()
            self._tasks.clear()
        finally:
            self._release_camera()
            self._transition(EngineState.CLOSED)
            self._closed.set()

    async def wait_closed(self) -> None:
        await self._closed.wait()

    # =========================================================================
    # LOOP CALLBACKS
    # =========================================================================

    async def _read_frame(self) -> Optional[StillImage]:
        session = self._session
        if session is None:
            return None
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, read_frame, session)

    def _is_streaming(self) -> bool:
        return self._session is not None and self._session.is_streaming

    def _handle_stream_lost(self) -> None:
        if self._active and not self.is_terminal:
            self._fail(CameraError(CameraErrorKind.UNKNOWN, "stream lost").user_message)

    def _handle_status(self, result: ValidationResult) -> None:
        if not self._active:
            return
        self.status = result.status
        self.message = result.message
        self._notify(self.on_status, result)

        if self.mode.kind is not ModeKind.VERIFY:
            return

        busy = self.state not in _CAPTURE_READY
        if self._auto_capture.observe(result.status, verification_in_progress=busy):
            self._attempt += 1
            self._transition(EngineState.CAPTURING)
            self._loop.suspend()
            self._spawn(self._capture_and_verify(self._attempt))

    # =========================================================================
    # CAPTURE
    # =========================================================================

    def _grab_normalized(self) -> StillImage:
        still = capture_still(self._session)
        return crop_to_aspect_ratio(still, self.settings.capture.target_aspect_ratio)

    async def _grab(self) -> StillImage:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._grab_normalized)

    def _back_to_ready(self, message: str) -> None:
        self.message = message
        self.status = ValidationStatus.IDLE
        self._transition(EngineState.READY)
        self._loop.start()

    async def capture(self) -> Optional[StillImage]:
        """
        Manual capture (register mode). Only allowed while READY with a VALID
        face in view.

        Returns:
            The normalized image shown for preview, or None if nothing was captured
        """
        if self.mode.kind is not ModeKind.REGISTER:
            raise RuntimeError("Manual capture is only available in register mode")
        if self.state is not EngineState.READY or self.status is not ValidationStatus.VALID:
            logger.info(f"Capture ignored (state={self.state.name}, status={self.status.name})")
            return None

        self._attempt += 1
        attempt = self._attempt
        self._transition(EngineState.CAPTURING)
        self._loop.stop()

        try:
            image = await self._grab()
        except (FrameUnavailableError, CropError) as e:
            if self._is_current(attempt):
                logger.warning(f"Capture failed: {e}")
                self._back_to_ready(str(e) if isinstance(e, FrameUnavailableError) else IMAGE_PROCESSING_FAILED)
            return None
        except Exception as e:
            if self._is_current(attempt):
                logger.error(f"Unexpected error during capture: {e}")
                self._back_to_ready(IMAGE_PROCESSING_FAILED)
            return None

        if not self._is_current(attempt):
            return None

        self.captured_image = image
        self.message = None
        self._transition(EngineState.REGISTER_PREVIEW)
        logger.info(f"Captured {image.width}x{image.height} for registration")
        return image

    def retake(self) -> bool:
        """Discard the preview and go back to live detection (register mode)."""
        if self.state is not EngineState.REGISTER_PREVIEW:
            return False
        self.captured_image = None
        self.status = ValidationStatus.IDLE
        self.message = None
        self._transition(EngineState.READY)
        self._loop.start()
        return True

    async def confirm(self) -> bool:
        """Hand the previewed image to on_confirm and close (register mode)."""
        if self.state is not EngineState.REGISTER_PREVIEW or self.captured_image is None:
            return False
        image = self.captured_image
        self._transition(EngineState.CONFIRMED)
        try:
            if self.on_confirm is not None:
                self.on_confirm(image)
        finally:
            await self.close()
        return True

    # =========================================================================
    # VERIFY
    # =========================================================================

    def _retry(self, message: str) -> None:
        self.captured_image = None
        self.message = message
        self._auto_capture.reset()
        self._transition(EngineState.RETRY_READY)
        self._loop.resume()

    async def _capture_and_verify(self, attempt: int) -> None:
        try:
            image = await self._grab()
        except (FrameUnavailableError, CropError) as e:
            if self._is_current(attempt):
                logger.warning(f"Verification capture failed: {e}")
                self._retry(IMAGE_PROCESSING_FAILED)
            return
        except Exception as e:
            if self._is_current(attempt):
                logger.error(f"Unexpected error during verification capture: {e}")
                self._retry(IMAGE_PROCESSING_FAILED)
            return

        if not self._is_current(attempt):
            return
        self.captured_image = image
        self._transition(EngineState.VERIFYING)
        self.message = "Verifying..."

        try:
            result = await self.comparator.compare(self.mode.reference_image, image)
        except ComparisonError as e:
            logger.warning(f"Comparison failed: {e}")
            result = VerificationResult.failure(Diagnostic.COMPARISON_ERROR)
        except Exception as e:
            logger.error(f"Unexpected error during comparison: {e}")
            result = VerificationResult.failure(Diagnostic.COMPARISON_ERROR)

        if not self._is_current(attempt):
            logger.debug("Discarding late verification result")
            return

        self.last_result = result
        self._notify(self.on_result, result.success, result.score)

        if result.success:
            self.message = result.message
            self._transition(EngineState.CONFIRMED)
            self._loop.stop()
            self._spawn(self._auto_close(self.settings.capture.auto_close_delay))
        else:
            logger.info(f"Verification failed: {result.diagnostic.name} (score {result.score:.3f})")
            self._retry(result.message)

    async def _auto_close(self, delay: float) -> None:
        await asyncio.sleep(delay)
        await self.close()
