#!/usr/bin/env python3
"""
Settings Module
Loads and validates engine configuration from facescan.yaml.
Provides typed access to settings, falling back to config.py defaults.
"""

import os
import yaml
import logging
from typing import Any, Dict, List, Optional, Union
from dataclasses import dataclass, field

from . import config as cfg

logger = logging.getLogger(__name__)

# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass
class CameraSettings:
    """Camera device and preferred constraints."""
    source: Union[int, str] = cfg.CAMERA_SOURCE
    preferred_width: int = cfg.CAMERA_PREFERRED_WIDTH
    preferred_height: int = cfg.CAMERA_PREFERRED_HEIGHT
    buffer_size: int = cfg.CAMERA_BUFFER_SIZE


@dataclass
class DetectionSettings:
    """Live detection loop and validation settings."""
    interval: float = cfg.DETECTION_INTERVAL_SEC
    min_confidence: float = cfg.DETECTION_MIN_CONFIDENCE
    center_tolerance_x: float = cfg.FACE_CENTER_TOLERANCE_X
    center_tolerance_y: float = cfg.FACE_CENTER_TOLERANCE_Y
    yunet_model_path: str = cfg.YUNET_MODEL_PATH


@dataclass
class CaptureSettings:
    """Capture timing and normalization."""
    target_aspect_ratio: float = cfg.TARGET_ASPECT_RATIO
    auto_capture_delay: float = cfg.AUTO_CAPTURE_DELAY_SEC
    auto_close_delay: float = cfg.AUTO_CLOSE_DELAY_SEC
    jpeg_quality: int = cfg.JPEG_QUALITY


@dataclass
class ComparisonSettings:
    """Verification thresholds and recognition model."""
    similarity_threshold: float = cfg.SIMILARITY_THRESHOLD
    min_detection_score: float = cfg.MIN_DETECTION_SCORE
    model_name: str = cfg.INSIGHTFACE_MODEL
    model_dir: str = cfg.MODEL_DIR


@dataclass
class ApiSettings:
    """Visits API configuration (CLI only)."""
    base_url: str = cfg.API_BASE_URL
    session_token: str = cfg.API_SESSION_TOKEN
    timeout: int = cfg.API_TIMEOUT_SEC


@dataclass
class EngineSettings:
    """Complete engine configuration."""
    camera: CameraSettings = field(default_factory=CameraSettings)
    detection: DetectionSettings = field(default_factory=DetectionSettings)
    capture: CaptureSettings = field(default_factory=CaptureSettings)
    comparison: ComparisonSettings = field(default_factory=ComparisonSettings)
    api: ApiSettings = field(default_factory=ApiSettings)


# =============================================================================
# CONFIGURATION LOADING
# =============================================================================

_settings: Optional[EngineSettings] = None
_settings_path: Optional[str] = None


def find_config_file() -> Optional[str]:
    """Find the facescan.yaml config file, or None if there is none."""
    search_paths = [
        os.path.join(os.path.dirname(os.path.abspath(__file__)), "facescan.yaml"),
        os.path.join(os.getcwd(), "facescan.yaml"),
        os.path.expanduser("~/facescan.yaml"),
        "/etc/facescan/facescan.yaml",
    ]

    for path in search_paths:
        if os.path.exists(path):
            return path

    return None


def _section(cls, data: Dict[str, Any]):
    """Build a settings dataclass from a YAML section, ignoring unknown keys."""
    known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
    unknown = set(data) - set(known)
    if unknown:
        logger.warning(f"Ignoring unknown {cls.__name__} keys: {sorted(unknown)}")
    return cls(**known)


def parse_settings(raw: Optional[Dict[str, Any]]) -> EngineSettings:
    """Build EngineSettings from an already-parsed YAML document."""
    raw = raw or {}
    camera = _section(CameraSettings, raw.get('camera') or {})

    # Device indices come back from YAML as int, but "0" from env/CLI is common
    if isinstance(camera.source, str) and camera.source.isdigit():
        camera.source = int(camera.source)

    return EngineSettings(
        camera=camera,
        detection=_section(DetectionSettings, raw.get('detection') or {}),
        capture=_section(CaptureSettings, raw.get('capture') or {}),
        comparison=_section(ComparisonSettings, raw.get('comparison') or {}),
        api=_section(ApiSettings, raw.get('api') or {}),
    )


def load_settings(config_path: Optional[str] = None) -> EngineSettings:
    """
    Load settings from facescan.yaml.

    Args:
        config_path: Optional path to config file. If None, searches default locations
                     and falls back to config.py defaults when no file exists.

    Returns:
        EngineSettings object with all settings
    """
    global _settings, _settings_path

    if config_path is None:
        config_path = find_config_file()

    if config_path is None:
        logger.info("No facescan.yaml found, using built-in defaults")
        raw = {}
    else:
        logger.info(f"Loading configuration from: {config_path}")
        with open(config_path, 'r') as f:
            raw = yaml.safe_load(f)

    _settings = parse_settings(raw)
    _settings_path = config_path

    logger.debug(f"Camera: {_settings.camera.source} "
                 f"({_settings.camera.preferred_width}x{_settings.camera.preferred_height})")
    logger.debug(f"Similarity threshold: {_settings.comparison.similarity_threshold}")

    return _settings


def get_settings() -> EngineSettings:
    """Get the loaded settings (loads if not already loaded)."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def reload_settings() -> EngineSettings:
    """Reload settings from file."""
    global _settings
    _settings = None
    return load_settings(_settings_path)


# =============================================================================
# VALIDATION
# =============================================================================

def validate_settings(settings: EngineSettings) -> List[str]:
    """
    Validate settings and return list of errors.

    Returns:
        List of error messages (empty if valid)
    """
    errors = []

    if settings.camera.preferred_width <= 0 or settings.camera.preferred_height <= 0:
        errors.append("camera: preferred resolution must be positive")

    det = settings.detection
    if det.interval <= 0:
        errors.append("detection: interval must be positive")
    if not 0.0 <= det.min_confidence <= 1.0:
        errors.append("detection: min_confidence must be within [0, 1]")
    for name in ("center_tolerance_x", "center_tolerance_y"):
        value = getattr(det, name)
        if not 0.0 < value <= 0.5:
            errors.append(f"detection: {name} must be within (0, 0.5]")

    cap = settings.capture
    if cap.target_aspect_ratio <= 0:
        errors.append("capture: target_aspect_ratio must be positive")
    if cap.auto_capture_delay < 0 or cap.auto_close_delay < 0:
        errors.append("capture: delays must not be negative")
    if not 1 <= cap.jpeg_quality <= 100:
        errors.append("capture: jpeg_quality must be within [1, 100]")

    cmp = settings.comparison
    if not -1.0 <= cmp.similarity_threshold <= 1.0:
        errors.append("comparison: similarity_threshold must be within [-1, 1]")
    if not 0.0 <= cmp.min_detection_score <= 1.0:
        errors.append("comparison: min_detection_score must be within [0, 1]")

    return errors
