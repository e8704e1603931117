from __future__ import annotations

import time
from typing import Protocol


class Clock(Protocol):
    """Clock abstraction.

    Core logic depends on this interface rather than calling real time directly.
    """

    def now(self) -> float:
        """Return seconds."""


class RealClock:
    """Production clock backed by time.monotonic().

    Used for stimulus onset and reaction times.
    """

    def now(self) -> float:
        return time.monotonic()


class WallClock:
    """Epoch clock backed by time.time().

    Used for session start timestamps and snapshot staleness.
    """

    def now(self) -> float:
        return time.time()
