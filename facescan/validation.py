#!/usr/bin/env python3
"""
Validation Classifier
Turns one detection result into a discrete status for the live guidance
overlay. Stateless: same input, same answer.

Rules:
1. No face            -> NO_FACE
2. More than one face -> MULTIPLE_FACES
3. One face whose center is off the frame center by more than the
   tolerance (fraction of width / height) -> OFF_CENTER, else VALID
4. Anything that blows up while classifying -> ERROR
"""

import logging
from enum import Enum
from typing import Optional
from dataclasses import dataclass

from . import config as cfg
from .face_detector import DetectionFrameResult
from .modes import ModeKind, ScanMode

logger = logging.getLogger(__name__)


class ValidationStatus(Enum):
    IDLE = "idle"
    DETECTING = "detecting"
    NO_FACE = "no_face"
    MULTIPLE_FACES = "multiple_faces"
    OFF_CENTER = "off_center"
    VALID = "valid"
    ERROR = "error"


@dataclass(frozen=True)
class ValidationResult:
    status: ValidationStatus
    message: Optional[str] = None

    @property
    def is_valid(self) -> bool:
        return self.status is ValidationStatus.VALID


MESSAGES = {
    ValidationStatus.NO_FACE: "No face detected.",
    ValidationStatus.MULTIPLE_FACES: "Multiple faces detected.",
    ValidationStatus.OFF_CENTER: "Please center your face.",
    ValidationStatus.ERROR: "Detection error occurred.",
}

VALID_MESSAGES = {
    ModeKind.REGISTER: "Ready to capture!",
    ModeKind.VERIFY: "Hold still...",
}


def classify(
    result: DetectionFrameResult,
    frame_width: int,
    frame_height: int,
    mode: ScanMode,
    tolerance_x: float = cfg.FACE_CENTER_TOLERANCE_X,
    tolerance_y: float = cfg.FACE_CENTER_TOLERANCE_Y
) -> ValidationResult:
    """
    Classify a detection result.

    Args:
        result: Faces found in the frame (normalized coordinates)
        frame_width: Frame width in pixels
        frame_height: Frame height in pixels
        mode: Current scan mode (only changes the VALID message)
        tolerance_x: Max horizontal offset of the face center from 0.5
        tolerance_y: Max vertical offset of the face center from 0.5

    Returns:
        ValidationResult with status and user-facing message
    """
    try:
        count = len(result.faces)
        if count == 0:
            return ValidationResult(ValidationStatus.NO_FACE, MESSAGES[ValidationStatus.NO_FACE])
        if count > 1:
            return ValidationResult(ValidationStatus.MULTIPLE_FACES, MESSAGES[ValidationStatus.MULTIPLE_FACES])

        if frame_width <= 0 or frame_height <= 0:
            raise ValueError(f"invalid frame size {frame_width}x{frame_height}")

        center_x, center_y = result.faces[0].center
        offset_x = abs(center_x - 0.5)
        offset_y = abs(center_y - 0.5)

        if offset_x > tolerance_x or offset_y > tolerance_y:
            return ValidationResult(ValidationStatus.OFF_CENTER, MESSAGES[ValidationStatus.OFF_CENTER])

        return ValidationResult(ValidationStatus.VALID, VALID_MESSAGES[mode.kind])

    except Exception as e:
        logger.warning(f"Classification failed: {e}")
        return ValidationResult(ValidationStatus.ERROR, MESSAGES[ValidationStatus.ERROR])
