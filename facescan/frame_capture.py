#!/usr/bin/env python3
"""
Frame Capture Module
Pulls still images out of a live CameraSession and converts images between
the encodings used at the engine boundary (JPEG bytes, data URIs,
serialized Node buffers).
"""

import base64
import time
import logging
from typing import Any, Dict, Optional, Union
from dataclasses import dataclass, field

import cv2
import numpy as np

from .camera_manager import CameraSession
from .errors import FrameUnavailableError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class StillImage:
    """A single BGR frame (OpenCV layout) plus when it was taken."""
    pixels: np.ndarray
    captured_at: float = field(default_factory=time.time)

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def aspect_ratio(self) -> float:
        return self.width / self.height

    def to_jpeg(self, quality: int = 80) -> bytes:
        """Encode as JPEG bytes."""
        ok, buffer = cv2.imencode('.jpg', self.pixels, [cv2.IMWRITE_JPEG_QUALITY, quality])
        if not ok:
            raise ValueError("JPEG encoding failed")
        return buffer.tobytes()

    def to_data_uri(self, quality: int = 80) -> str:
        """Encode as a data:image/jpeg;base64 URI (browser-friendly)."""
        b64 = base64.b64encode(self.to_jpeg(quality)).decode('utf-8')
        return f"data:image/jpeg;base64,{b64}"

    @classmethod
    def from_bytes(cls, data: bytes) -> "StillImage":
        """Decode JPEG/PNG bytes."""
        array = np.frombuffer(data, dtype=np.uint8)
        pixels = cv2.imdecode(array, cv2.IMREAD_COLOR) if array.size else None
        if pixels is None:
            raise ValueError("Image data could not be decoded")
        return cls(pixels=pixels)


# =============================================================================
# REFERENCE DECODING
# =============================================================================

def decode_image(source: Union["StillImage", np.ndarray, bytes, str, Dict[str, Any]]) -> StillImage:
    """
    Decode an externally supplied image.

    Accepts a StillImage, a BGR array, raw encoded bytes, a data URI or
    plain base64 string, or a serialized Node buffer
    ({"type": "Buffer", "data": [...]}) as returned by the visits API.
    """
    if isinstance(source, StillImage):
        return source
    if isinstance(source, np.ndarray):
        return StillImage(pixels=source)
    if isinstance(source, (bytes, bytearray)):
        return StillImage.from_bytes(bytes(source))
    if isinstance(source, dict):
        if source.get('type') != 'Buffer' or not isinstance(source.get('data'), list):
            raise ValueError("Unsupported serialized buffer")
        return StillImage.from_bytes(bytes(source['data']))
    if isinstance(source, str):
        # Strip the "data:image/...;base64," prefix if present
        payload = source.split(',', 1)[1] if source.startswith('data:') else source
        try:
            data = base64.b64decode(payload, validate=True)
        except ValueError as e:
            raise ValueError(f"Invalid base64 image data: {e}") from e
        return StillImage.from_bytes(data)
    raise TypeError(f"Cannot decode image from {type(source).__name__}")


# =============================================================================
# CAPTURE
# =============================================================================

def read_frame(session: CameraSession) -> Optional[StillImage]:
    """Current frame of the stream, or None when nothing is buffered yet."""
    frame = session.read()
    if frame is None:
        return None
    return StillImage(pixels=frame)


def capture_still(session: CameraSession) -> StillImage:
    """
    Capture the current frame at the stream's native resolution.

    Raises:
        FrameUnavailableError: if the stream has no decoded frame
    """
    still = read_frame(session)
    if still is None:
        raise FrameUnavailableError("Video not ready for capture")
    logger.debug(f"Captured still {still.width}x{still.height}")
    return still
