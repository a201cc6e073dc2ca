#!/usr/bin/env python3
"""
Configuration file for the face scan engine.
All tunables for capture, detection and verification in one place.

Values here are defaults. A facescan.yaml file (see settings.py) can
override most of them per deployment.
"""

import logging
import os

# =============================================================================
# CAMERA SETTINGS
# =============================================================================

CAMERA_SOURCE: int = 0  # Device index (0 = first webcam) or stream URL

# Preferred constraints (front-facing webcam, 720p). If the device refuses
# them we retry with a plain open before giving up.
CAMERA_PREFERRED_WIDTH: int = 1280
CAMERA_PREFERRED_HEIGHT: int = 720
CAMERA_BUFFER_SIZE: int = 1  # Keep only the newest frame in the driver buffer

# =============================================================================
# DETECTION LOOP SETTINGS
# =============================================================================

DETECTION_INTERVAL_SEC: float = 0.15  # Time between detection ticks
DETECTION_MIN_CONFIDENCE: float = 0.5  # Detector score threshold for live frames

# =============================================================================
# VALIDATION SETTINGS
# =============================================================================

# Maximum offset of the face-box center from the frame center, as a fraction
# of frame width / height. An offset equal to the tolerance still counts as
# centered; only a larger offset is OFF_CENTER.
FACE_CENTER_TOLERANCE_X: float = 0.20  # Center must lie in the central 40% horizontally
FACE_CENTER_TOLERANCE_Y: float = 0.10  # Center must lie in the central 20% vertically

# =============================================================================
# CAPTURE SETTINGS
# =============================================================================

TARGET_ASPECT_RATIO: float = 3 / 4  # Portrait width:height for stored/compared faces
AUTO_CAPTURE_DELAY_SEC: float = 1.5  # How long a face must stay VALID before auto-capture (verify)
AUTO_CLOSE_DELAY_SEC: float = 1.5  # Delay before closing after a successful verification
JPEG_QUALITY: int = 80  # Encoding quality for images handed to the caller

# =============================================================================
# VERIFICATION SETTINGS
# =============================================================================

SIMILARITY_THRESHOLD: float = 0.50  # Cosine similarity needed for a match
                                     # Lower = more lenient (risk: wrong person accepted)
                                     # Higher = stricter (risk: genuine visitor rejected)

MIN_DETECTION_SCORE: float = 0.70  # Minimum detector confidence on both images for a match

# =============================================================================
# MODEL SETTINGS
# =============================================================================

INSIGHTFACE_MODEL: str = "buffalo_s"  # "buffalo_s" (fast) or "buffalo_l" (accurate)
MODEL_DIR: str = os.path.join(os.path.expanduser("~"), ".insightface/models")

YUNET_MODEL_PATH: str = os.path.join(
    os.path.dirname(os.path.abspath(__file__)), "models", "face_detection_yunet_2023mar.onnx"
)
YUNET_MODEL_URL: str = (
    "https://github.com/opencv/opencv_zoo/raw/main/models/face_detection_yunet/"
    "face_detection_yunet_2023mar.onnx"
)

# =============================================================================
# API SETTINGS (visits collaborator, used by the CLI only)
# =============================================================================

API_BASE_URL: str = "http://localhost:3000"
API_SESSION_TOKEN: str = ""  # next-auth session cookie of a security user
API_TIMEOUT_SEC: int = 10

# =============================================================================
# LOGGING
# =============================================================================

LOG_LEVEL: int = logging.INFO  # Set to logging.DEBUG to see every detection tick
