#!/usr/bin/env python3
"""
Camera Manager Module
Acquires and releases the camera device used by the scanner.

One CameraSession wraps one OpenCV capture handle. The manager tries the
preferred constraints first (720p, low-latency buffer) and falls back to a
plain open of the same device before reporting a CameraError.
"""

import asyncio
import os
import sys
import logging
from enum import Enum
from typing import Callable, Optional, Union
from dataclasses import dataclass, replace

import cv2
import numpy as np

from .errors import CameraError, CameraErrorKind

logger = logging.getLogger(__name__)

# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass(frozen=True)
class CameraConstraints:
    """Requested device and resolution. width/height of None means "don't care"."""
    source: Union[int, str] = 0
    width: Optional[int] = 1280
    height: Optional[int] = 720
    buffer_size: int = 1

    @property
    def is_minimal(self) -> bool:
        return self.width is None and self.height is None

    def minimal(self) -> "CameraConstraints":
        """Same device, no resolution request."""
        return replace(self, width=None, height=None)


class SessionState(Enum):
    UNINITIALIZED = "uninitialized"
    ACTIVE = "active"
    STOPPED = "stopped"


class CameraSession:
    """A single open camera stream. Owned by CameraManager."""

    def __init__(self, constraints: CameraConstraints):
        self.constraints = constraints
        self.state = SessionState.UNINITIALIZED
        self._capture = None

    def _attach(self, capture) -> None:
        self._capture = capture
        self.state = SessionState.ACTIVE

    @property
    def is_streaming(self) -> bool:
        """True while the session is active and the device handle is open."""
        return (
            self.state is SessionState.ACTIVE
            and self._capture is not None
            and self._capture.isOpened()
        )

    @property
    def resolution(self) -> Optional[tuple]:
        if self._capture is None:
            return None
        w = int(self._capture.get(cv2.CAP_PROP_FRAME_WIDTH))
        h = int(self._capture.get(cv2.CAP_PROP_FRAME_HEIGHT))
        return (w, h)

    def read(self) -> Optional[np.ndarray]:
        """Read the current frame, or None if no frame is buffered."""
        capture = self._capture
        if self.state is not SessionState.ACTIVE or capture is None:
            return None
        ret, frame = capture.read()
        if not ret or frame is None:
            return None
        return frame

    def stop(self) -> None:
        """Release the device handle. Safe to call any number of times."""
        if self.state is SessionState.STOPPED:
            return
        capture, self._capture = self._capture, None
        self.state = SessionState.STOPPED
        if capture is None:
            return
        try:
            capture.release()
            logger.debug(f"Camera {self.constraints.source} released")
        except Exception as e:
            logger.warning(f"Error while releasing camera {self.constraints.source}: {e}")


# =============================================================================
# ERROR CLASSIFICATION
# =============================================================================

def probe_open_failure(source: Union[int, str]) -> CameraErrorKind:
    """
    Work out why a device failed to open.

    OpenCV only reports "not opened", so we look at the device node
    (Linux) or the file path to tell the cases apart.
    """
    if isinstance(source, int):
        if not sys.platform.startswith("linux"):
            return CameraErrorKind.UNKNOWN
        device = f"/dev/video{source}"
        if not os.path.exists(device):
            return CameraErrorKind.DEVICE_NOT_FOUND
        if not os.access(device, os.R_OK | os.W_OK):
            return CameraErrorKind.PERMISSION_DENIED
        return CameraErrorKind.DEVICE_BUSY

    if "://" not in source and not os.path.exists(source):
        return CameraErrorKind.DEVICE_NOT_FOUND
    return CameraErrorKind.UNKNOWN


# =============================================================================
# CAMERA MANAGER
# =============================================================================

class CameraManager:
    """Hands out at most one active CameraSession at a time."""

    def __init__(
        self,
        capture_factory: Optional[Callable] = None,
        probe: Callable[[Union[int, str]], CameraErrorKind] = probe_open_failure
    ):
        self._capture_factory = capture_factory or cv2.VideoCapture
        self._probe = probe
        self._active: Optional[CameraSession] = None

    @property
    def active_session(self) -> Optional[CameraSession]:
        return self._active

    async def acquire(self, constraints: CameraConstraints) -> CameraSession:
        """
        Open the camera.

        Args:
            constraints: Preferred device/resolution

        Returns:
            Active CameraSession

        Raises:
            CameraError: if neither the preferred nor the minimal request works
        """
        if self._active is not None and self._active.state is SessionState.ACTIVE:
            raise CameraError(CameraErrorKind.DEVICE_BUSY, "a camera session is already active")

        loop = asyncio.get_running_loop()
        try:
            capture = await loop.run_in_executor(None, self._open, constraints)
        except CameraError as e:
            if constraints.is_minimal:
                raise
            logger.warning(f"Preferred camera constraints failed ({e.kind.value}: {e.detail}), "
                           f"retrying without resolution request")
            constraints = constraints.minimal()
            capture = await loop.run_in_executor(None, self._open, constraints)

        session = CameraSession(constraints)
        session._attach(capture)
        self._active = session

        res = session.resolution
        logger.info(f"Camera {constraints.source} streaming"
                    + (f" at {res[0]}x{res[1]}" if res else ""))
        return session

    def release(self, session: Optional[CameraSession]) -> None:
        """Stop the session's stream. Idempotent; None is ignored."""
        if session is None:
            return
        session.stop()
        if self._active is session:
            self._active = None

    def _open(self, constraints: CameraConstraints):
        """Blocking open + first read. Never leaves a half-open handle behind."""
        source = constraints.source
        try:
            capture = self._capture_factory(source)
        except PermissionError as e:
            raise CameraError(CameraErrorKind.PERMISSION_DENIED, str(e)) from e
        except FileNotFoundError as e:
            raise CameraError(CameraErrorKind.DEVICE_NOT_FOUND, str(e)) from e
        except (cv2.error, OSError) as e:
            raise CameraError(CameraErrorKind.UNKNOWN, str(e)) from e

        try:
            if not capture.isOpened():
                raise CameraError(self._probe(source), f"device {source} did not open")

            capture.set(cv2.CAP_PROP_BUFFERSIZE, constraints.buffer_size)
            if constraints.width is not None and not capture.set(cv2.CAP_PROP_FRAME_WIDTH, constraints.width):
                raise CameraError(CameraErrorKind.UNKNOWN, f"width {constraints.width} not supported")
            if constraints.height is not None and not capture.set(cv2.CAP_PROP_FRAME_HEIGHT, constraints.height):
                raise CameraError(CameraErrorKind.UNKNOWN, f"height {constraints.height} not supported")

            ret, _ = capture.read()
            if not ret:
                raise CameraError(CameraErrorKind.DEVICE_BUSY, f"device {source} opened but returned no frame")
        except Exception:
            capture.release()
            raise

        return capture
