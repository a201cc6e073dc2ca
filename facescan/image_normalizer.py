#!/usr/bin/env python3
"""
Image Normalizer
Center-crops captured frames to the canonical aspect ratio (3:4 portrait by
default) so stored and compared faces share the same geometry.
"""

import math
import logging
from dataclasses import dataclass

from . import config as cfg
from .errors import CropError
from .frame_capture import StillImage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CropBox:
    """Source rectangle in pixels."""
    sx: int
    sy: int
    width: int
    height: int


def _round(value: float) -> int:
    """Round half up (2.5 -> 3), not Python's half-to-even."""
    return int(math.floor(value + 0.5))


def compute_crop_box(source_width: int, source_height: int, target_aspect_ratio: float) -> CropBox:
    """
    Compute a centered crop box with the target width:height ratio.

    Wider source: keep full height, trim left/right equally.
    Taller source: keep full width, trim top/bottom equally.

    Raises:
        CropError: if the box would have a non-positive side
    """
    if source_width <= 0 or source_height <= 0 or target_aspect_ratio <= 0:
        raise CropError(f"Invalid crop input: {source_width}x{source_height} @ {target_aspect_ratio}")

    source_aspect_ratio = source_width / source_height
    sx, sy = 0.0, 0.0
    s_width, s_height = float(source_width), float(source_height)

    if source_aspect_ratio > target_aspect_ratio:
        s_width = source_height * target_aspect_ratio
        sx = (source_width - s_width) / 2
    elif source_aspect_ratio < target_aspect_ratio:
        s_height = source_width / target_aspect_ratio
        sy = (source_height - s_height) / 2

    box = CropBox(sx=_round(sx), sy=_round(sy), width=_round(s_width), height=_round(s_height))

    if box.width <= 0 or box.height <= 0:
        raise CropError(f"Invalid crop dimensions calculated: {box}")

    return box


def crop_to_aspect_ratio(image: StillImage, target_aspect_ratio: float = cfg.TARGET_ASPECT_RATIO) -> StillImage:
    """
    Crop an image to the target aspect ratio.

    Never falls back to the uncropped image: a bad crop raises CropError and
    the caller must abort the attempt.
    """
    box = compute_crop_box(image.width, image.height, target_aspect_ratio)

    logger.debug(f"Cropping [{image.width}x{image.height}] -> "
                 f"({box.sx},{box.sy} {box.width}x{box.height})")

    pixels = image.pixels[box.sy:box.sy + box.height, box.sx:box.sx + box.width]
    if pixels.size == 0:
        raise CropError(f"Crop produced an empty image: {box}")

    # Copy so the normalized image does not keep the full frame alive
    return StillImage(pixels=pixels.copy(), captured_at=image.captured_at)
