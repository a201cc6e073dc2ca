"""Tests for YAML settings loading and validation."""

import pytest

from facescan import config as cfg
from facescan import settings as settings_module
from facescan.settings import EngineSettings, load_settings, parse_settings, validate_settings


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "facescan.yaml"
    path.write_text(
        "camera:\n"
        "  source: 1\n"
        "  preferred_width: 640\n"
        "detection:\n"
        "  interval: 0.2\n"
        "  center_tolerance_x: 0.25\n"
        "capture:\n"
        "  auto_capture_delay: 2.0\n"
        "comparison:\n"
        "  similarity_threshold: 0.45\n"
        "api:\n"
        "  base_url: https://visits.example.com\n"
    )
    return path


def test_load_from_file(config_file):
    settings = load_settings(str(config_file))

    assert settings.camera.source == 1
    assert settings.camera.preferred_width == 640
    assert settings.camera.preferred_height == cfg.CAMERA_PREFERRED_HEIGHT
    assert settings.detection.interval == 0.2
    assert settings.detection.center_tolerance_x == 0.25
    assert settings.detection.center_tolerance_y == cfg.FACE_CENTER_TOLERANCE_Y
    assert settings.capture.auto_capture_delay == 2.0
    assert settings.comparison.similarity_threshold == 0.45
    assert settings.api.base_url == "https://visits.example.com"


def test_defaults_without_file(monkeypatch):
    monkeypatch.setattr(settings_module, "find_config_file", lambda: None)
    settings = load_settings()

    assert settings == EngineSettings()
    assert settings.detection.interval == cfg.DETECTION_INTERVAL_SEC
    assert settings.capture.target_aspect_ratio == pytest.approx(0.75)


def test_empty_file(tmp_path):
    path = tmp_path / "facescan.yaml"
    path.write_text("")
    assert load_settings(str(path)) == EngineSettings()


def test_unknown_keys_are_ignored(caplog):
    settings = parse_settings({"camera": {"source": 0, "fps": 30}})
    assert settings.camera.source == 0
    assert "fps" in caplog.text


def test_numeric_string_source():
    assert parse_settings({"camera": {"source": "2"}}).camera.source == 2
    assert parse_settings({"camera": {"source": "rtsp://cam/1"}}).camera.source == "rtsp://cam/1"


def test_get_and_reload(config_file, monkeypatch):
    monkeypatch.setattr(settings_module, "_settings", None)
    load_settings(str(config_file))
    assert settings_module.get_settings().camera.source == 1

    config_file.write_text("camera:\n  source: 3\n")
    assert settings_module.reload_settings().camera.source == 3


class TestValidate:

    def test_defaults_are_valid(self):
        assert validate_settings(EngineSettings()) == []

    @pytest.mark.parametrize("section, key, value", [
        ("detection", "interval", 0),
        ("detection", "min_confidence", 1.5),
        ("detection", "center_tolerance_x", 0.0),
        ("detection", "center_tolerance_y", 0.6),
        ("capture", "target_aspect_ratio", -1),
        ("capture", "auto_capture_delay", -0.1),
        ("capture", "jpeg_quality", 0),
        ("comparison", "similarity_threshold", 1.2),
        ("comparison", "min_detection_score", -0.1),
        ("camera", "preferred_width", 0),
    ])
    def test_invalid_values(self, section, key, value):
        settings = EngineSettings()
        setattr(getattr(settings, section), key, value)
        errors = validate_settings(settings)
        assert len(errors) == 1
        assert errors[0].startswith(section)
