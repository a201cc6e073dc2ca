#!/usr/bin/env python3
"""
Detection Loop Scheduler
Polls the live stream at a fixed interval, runs the detector on the newest
frame and publishes a ValidationResult for the guidance overlay.

Phases:
    STOPPED    no timer running
    ARMED      timer running, next tick may start
    DETECTING  one tick in flight
    SUSPENDED  timer running, ticks skipped (verification in progress)

A tick is only ever launched from ARMED with no earlier tick still running,
so overlapping ticks cannot happen, even across stop() and start().
Every stop()/suspend() bumps a generation counter; results of a tick that
started under an older generation are dropped.
"""

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, Optional

from . import config as cfg
from .errors import DetectionError
from .face_detector import FaceDetector
from .frame_capture import StillImage
from .modes import ScanMode
from .validation import MESSAGES, ValidationResult, ValidationStatus, classify

logger = logging.getLogger(__name__)

WAITING_FOR_VIDEO = "Waiting for video data..."


class LoopPhase(Enum):
    STOPPED = "stopped"
    ARMED = "armed"
    DETECTING = "detecting"
    SUSPENDED = "suspended"


_TRANSITIONS = {
    LoopPhase.STOPPED: {LoopPhase.ARMED},
    LoopPhase.ARMED: {LoopPhase.DETECTING, LoopPhase.SUSPENDED, LoopPhase.STOPPED},
    LoopPhase.DETECTING: {LoopPhase.ARMED, LoopPhase.SUSPENDED, LoopPhase.STOPPED},
    LoopPhase.SUSPENDED: {LoopPhase.ARMED, LoopPhase.STOPPED},
}


class DetectionLoop:
    """
    Periodic detect -> classify -> publish loop.

    Args:
        detector: Loaded FaceDetector
        frame_source: Coroutine function returning the newest frame, or None if nothing is buffered
        on_status: Called with every published ValidationResult
        mode: Scan mode (selects the VALID message)
        interval: Seconds between ticks
        is_streaming: Returns False once the camera stream is gone
        on_stream_lost: Called once when a tick finds the stream gone
    """

    def __init__(
        self,
        detector: FaceDetector,
        frame_source: Callable[[], Awaitable[Optional[StillImage]]],
        on_status: Callable[[ValidationResult], None],
        mode: ScanMode,
        interval: float = cfg.DETECTION_INTERVAL_SEC,
        min_confidence: Optional[float] = None,
        tolerance_x: float = cfg.FACE_CENTER_TOLERANCE_X,
        tolerance_y: float = cfg.FACE_CENTER_TOLERANCE_Y,
        is_streaming: Callable[[], bool] = lambda: True,
        on_stream_lost: Optional[Callable[[], None]] = None
    ):
        self.detector = detector
        self.mode = mode
        self.interval = interval
        self.min_confidence = min_confidence
        self.tolerance_x = tolerance_x
        self.tolerance_y = tolerance_y

        self._frame_source = frame_source
        self._on_status = on_status
        self._is_streaming = is_streaming
        self._on_stream_lost = on_stream_lost

        self.phase = LoopPhase.STOPPED
        self._generation = 0
        self._timer_task: Optional[asyncio.Task] = None
        self._tick_task: Optional[asyncio.Task] = None

    # =========================================================================
    # PHASE CONTROL
    # =========================================================================

    def _set_phase(self, phase: LoopPhase) -> None:
        if phase not in _TRANSITIONS[self.phase]:
            raise RuntimeError(f"Illegal loop transition {self.phase.name} -> {phase.name}")
        logger.debug(f"Detection loop {self.phase.name} -> {phase.name}")
        self.phase = phase

    @property
    def running(self) -> bool:
        return self.phase is not LoopPhase.STOPPED

    def start(self) -> None:
        """Start polling. No-op unless STOPPED. Must be called from the event loop."""
        if self.phase is not LoopPhase.STOPPED:
            return
        self._set_phase(LoopPhase.ARMED)
        self._timer_task = asyncio.ensure_future(self._run_timer())
        logger.info(f"Detection loop started (every {self.interval * 1000:.0f}ms)")

    def suspend(self) -> None:
        """Skip ticks until resume(). An in-flight tick's result is discarded."""
        if self.phase not in (LoopPhase.ARMED, LoopPhase.DETECTING):
            return
        self._generation += 1
        self._set_phase(LoopPhase.SUSPENDED)

    def resume(self) -> None:
        if self.phase is LoopPhase.SUSPENDED:
            self._set_phase(LoopPhase.ARMED)

    def stop(self) -> None:
        """Stop polling. Idempotent. An in-flight tick's result is discarded."""
        if self.phase is LoopPhase.STOPPED:
            return
        self._generation += 1
        self._set_phase(LoopPhase.STOPPED)
        if self._timer_task is not None and self._timer_task is not asyncio.current_task():
            self._timer_task.cancel()
        self._timer_task = None
        logger.info("Detection loop stopped")

    # =========================================================================
    # TICKS
    # =========================================================================

    def _tick_in_flight(self) -> bool:
        return self._tick_task is not None and not self._tick_task.done()

    def _launch_tick(self) -> asyncio.Task:
        self._set_phase(LoopPhase.DETECTING)
        self._tick_task = asyncio.ensure_future(self._tick(self._generation))
        return self._tick_task

    async def _run_timer(self) -> None:
        try:
            while self.phase is not LoopPhase.STOPPED:
                await asyncio.sleep(self.interval)
                # A tick abandoned by suspend()/stop() may still be running
                if self.phase is LoopPhase.ARMED and not self._tick_in_flight():
                    self._launch_tick()
        except asyncio.CancelledError:
            pass

    async def run_tick(self) -> bool:
        """
        Run one tick now and wait for it.

        Returns:
            False if the loop was not ARMED (tick skipped)
        """
        if self.phase is not LoopPhase.ARMED or self._tick_in_flight():
            return False
        await self._launch_tick()
        return True

    async def _tick(self, generation: int) -> None:
        try:
            if not self._is_streaming():
                logger.error("Camera stream lost, stopping detection")
                self.stop()
                if self._on_stream_lost is not None:
                    self._on_stream_lost()
                return

            try:
                image = await self._frame_source()
            except Exception as e:
                logger.warning(f"Frame read failed: {e}")
                self._publish(generation, ValidationResult(ValidationStatus.ERROR, MESSAGES[ValidationStatus.ERROR]))
                return
            if image is None:
                self._publish(generation, ValidationResult(ValidationStatus.DETECTING, WAITING_FOR_VIDEO))
                return

            try:
                result = await self.detector.detect(image, self.min_confidence)
            except DetectionError as e:
                logger.warning(f"Detection tick failed: {e}")
                self._publish(generation, ValidationResult(ValidationStatus.ERROR, MESSAGES[ValidationStatus.ERROR]))
                return

            logger.debug(f"Tick: {result.face_count} face(s) in {image.width}x{image.height}")
            self._publish(generation, classify(
                result, image.width, image.height, self.mode,
                tolerance_x=self.tolerance_x, tolerance_y=self.tolerance_y
            ))
        finally:
            if generation == self._generation and self.phase is LoopPhase.DETECTING:
                self._set_phase(LoopPhase.ARMED)

    def _publish(self, generation: int, result: ValidationResult) -> None:
        if generation != self._generation:
            logger.debug(f"Discarding stale detection result ({result.status.name})")
            return
        self._on_status(result)
