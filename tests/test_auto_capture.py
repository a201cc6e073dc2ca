"""Tests for the verify-mode auto-capture timer."""

from facescan.auto_capture import AutoCaptureTimer
from facescan.validation import ValidationStatus

VALID = ValidationStatus.VALID


class FakeClock:

    def __init__(self, now: float = 100.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def make_timer(dwell=1.5):
    clock = FakeClock()
    return AutoCaptureTimer(dwell=dwell, clock=clock), clock


def test_first_valid_starts_countdown():
    timer, clock = make_timer()
    assert timer.observe(VALID) is False
    assert timer.valid_since == clock.now


def test_fires_after_dwell_then_restarts():
    timer, clock = make_timer()
    fired = []
    for _ in range(40):  # 40 ticks of 125ms = 5s of continuous VALID
        fired.append(timer.observe(VALID))
        clock.now += 0.125
    # each firing clears the clock; the next VALID tick starts a new countdown
    assert [i for i, f in enumerate(fired) if f] == [12, 25, 38]


def test_exactly_at_dwell_fires():
    timer, clock = make_timer()
    timer.observe(VALID)
    clock.now += 1.5
    assert timer.observe(VALID) is True
    assert timer.valid_since is None


def test_never_fires_before_dwell():
    timer, clock = make_timer()
    timer.observe(VALID)
    clock.now += 1.49
    assert timer.observe(VALID) is False


def test_non_valid_restarts_countdown():
    timer, clock = make_timer()
    timer.observe(VALID)
    clock.now += 1.0
    assert timer.observe(ValidationStatus.OFF_CENTER) is False
    assert timer.valid_since is None

    timer.observe(VALID)
    clock.now += 1.0
    assert timer.observe(VALID) is False
    clock.now += 0.5
    assert timer.observe(VALID) is True


def test_suppressed_while_verifying():
    timer, clock = make_timer()
    timer.observe(VALID)
    clock.now += 5.0
    assert timer.observe(VALID, verification_in_progress=True) is False
    assert timer.valid_since is None


def test_zero_fires_when_never_valid():
    timer, clock = make_timer()
    for status in (ValidationStatus.NO_FACE, ValidationStatus.MULTIPLE_FACES, ValidationStatus.ERROR):
        clock.now += 2.0
        assert timer.observe(status) is False


def test_reset():
    timer, clock = make_timer()
    timer.observe(VALID)
    timer.reset()
    clock.now += 2.0
    assert timer.observe(VALID) is False
