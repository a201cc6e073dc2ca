#!/usr/bin/env python3
"""
Scan modes.

A scanner instance runs in exactly one mode for its whole lifetime:

    RegisterMode()                 capture a reference face (manual capture)
    VerifyMode(reference_image)    match a live face against a stored one
"""

from enum import Enum
from typing import Union
from dataclasses import dataclass

from .frame_capture import StillImage


class ModeKind(Enum):
    REGISTER = "register"
    VERIFY = "verify"


@dataclass(frozen=True)
class RegisterMode:
    kind = ModeKind.REGISTER


@dataclass(frozen=True, eq=False)
class VerifyMode:
    reference_image: StillImage
    kind = ModeKind.VERIFY


ScanMode = Union[RegisterMode, VerifyMode]
