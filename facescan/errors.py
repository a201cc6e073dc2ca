#!/usr/bin/env python3
"""
Error taxonomy for the face scan engine.

Terminal (session-level):
    CameraError, ModelLoadError
Recoverable (attempt-level):
    DetectionError, FrameUnavailableError, CropError, ComparisonError
"""

from enum import Enum


class FaceScanError(Exception):
    """Base class for all engine errors."""

    terminal: bool = False


class CameraErrorKind(Enum):
    PERMISSION_DENIED = "permission_denied"
    DEVICE_NOT_FOUND = "device_not_found"
    DEVICE_BUSY = "device_busy"
    UNKNOWN = "unknown"


CAMERA_ERROR_MESSAGES = {
    CameraErrorKind.PERMISSION_DENIED: "Camera access denied. Please allow camera access and try again.",
    CameraErrorKind.DEVICE_NOT_FOUND: "No camera found. Please connect a camera and try again.",
    CameraErrorKind.DEVICE_BUSY: "Camera is in use by another application.",
    CameraErrorKind.UNKNOWN: "Could not start camera.",
}


class CameraError(FaceScanError):
    """Camera could not be acquired or the stream was lost."""

    terminal = True

    def __init__(self, kind: CameraErrorKind, detail: str = ""):
        self.kind = kind
        self.detail = detail
        super().__init__(CAMERA_ERROR_MESSAGES[kind])

    @property
    def user_message(self) -> str:
        return CAMERA_ERROR_MESSAGES[self.kind]


class ModelLoadError(FaceScanError):
    """Face detection / recognition model failed to load."""

    terminal = True

    user_message = "Failed to load face models. Please close and reopen the scanner."


class DetectionError(FaceScanError):
    """A single detection call failed. Only affects the current tick."""


class FrameUnavailableError(FaceScanError):
    """No decoded frame is available from the stream yet."""


class CropError(FaceScanError):
    """Captured image could not be normalized. The attempt must be aborted."""


class ComparisonError(FaceScanError):
    """Face comparison failed for a reason other than the faces themselves."""
