#!/usr/bin/env python3
"""
Auto-Capture Timer (verify mode)
Fires a capture once the live status has stayed VALID for a dwell period.
"""

import time
import logging
from typing import Callable, Optional

from . import config as cfg
from .validation import ValidationStatus

logger = logging.getLogger(__name__)


class AutoCaptureTimer:
    """
    Tracks a single "valid since" timestamp.

    - VALID, no timestamp          -> start the clock
    - VALID, held for >= dwell     -> fire once, clear the clock
    - anything else                -> clear the clock
    - verification in progress     -> never fire, clear the clock
    """

    def __init__(self, dwell: float = cfg.AUTO_CAPTURE_DELAY_SEC, clock: Callable[[], float] = time.monotonic):
        self.dwell = dwell
        self._clock = clock
        self.valid_since: Optional[float] = None

    def observe(self, status: ValidationStatus, verification_in_progress: bool = False) -> bool:
        """
        Feed one published status.

        Returns:
            True exactly when a capture should be triggered
        """
        if verification_in_progress or status is not ValidationStatus.VALID:
            self.valid_since = None
            return False

        now = self._clock()
        if self.valid_since is None:
            self.valid_since = now
            logger.debug("Face valid, auto-capture countdown started")
            return False

        if now - self.valid_since >= self.dwell:
            self.valid_since = None
            logger.debug(f"Face valid for {self.dwell:.1f}s, triggering capture")
            return True

        return False

    def reset(self) -> None:
        self.valid_since = None
