"""
core/clock.py -- Injectable time source.

Every component that compares timestamps (token expiry, OTP expiry) takes a
Clock in its constructor instead of calling datetime.now() inline, so tests
can freeze and advance time deterministically.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """Wall-clock time, always timezone-aware UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)
