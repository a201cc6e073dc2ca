"""Shared pytest configuration and fixtures for the facescan test suite."""

import sys
from pathlib import Path

import pytest

# Ensure the project root is in the path for imports
PROJECT_ROOT = Path(__file__).parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from facescan.camera_manager import CameraManager  # noqa: E402
from facescan.errors import CameraErrorKind  # noqa: E402
from facescan.modes import RegisterMode, VerifyMode  # noqa: E402
from facescan.settings import EngineSettings  # noqa: E402
from tests.fakes import (  # noqa: E402
    CaptureFactory,
    FakeCapture,
    ScriptedComparator,
    ScriptedDetector,
    make_face,
    make_still,
)


# =============================================================================
# Pytest Configuration
# =============================================================================

def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "hardware: mark test as requiring a physical camera"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running (downloads models)"
    )


def pytest_addoption(parser):
    """Add custom command-line options."""
    parser.addoption(
        "--run-hardware",
        action="store_true",
        default=False,
        help="Run tests that require a physical camera or model downloads",
    )


def pytest_collection_modifyitems(config, items):
    """Skip hardware tests unless --run-hardware is specified."""
    if config.getoption("--run-hardware"):
        return

    skip_hardware = pytest.mark.skip(reason="Need --run-hardware option to run")
    for item in items:
        if "hardware" in item.keywords:
            item.add_marker(skip_hardware)


# =============================================================================
# Shared Fixtures
# =============================================================================

@pytest.fixture
def fast_settings() -> EngineSettings:
    """Default settings with timings shrunk so controller tests run quickly."""
    settings = EngineSettings()
    settings.detection.interval = 0.01
    settings.capture.auto_capture_delay = 0.05
    settings.capture.auto_close_delay = 0.05
    return settings


@pytest.fixture
def fake_capture() -> FakeCapture:
    return FakeCapture()


@pytest.fixture
def capture_factory(fake_capture) -> CaptureFactory:
    return CaptureFactory(fake_capture)


@pytest.fixture
def camera_manager(capture_factory) -> CameraManager:
    """CameraManager backed by fake captures; probing always says 'busy'."""
    return CameraManager(capture_factory=capture_factory, probe=lambda source: CameraErrorKind.DEVICE_BUSY)


@pytest.fixture
def centered_detector() -> ScriptedDetector:
    """Detector that always sees one centered face."""
    return ScriptedDetector(faces=[make_face()])


@pytest.fixture
def comparator() -> ScriptedComparator:
    return ScriptedComparator()


@pytest.fixture
def register_mode() -> RegisterMode:
    return RegisterMode()


@pytest.fixture
def verify_mode() -> VerifyMode:
    return VerifyMode(reference_image=make_still(480, 640))
