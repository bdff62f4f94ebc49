"""Trusted time source for capsule operations."""

import time
from abc import ABC, abstractmethod


class Clock(ABC):
    """Source of the current time in whole seconds since the epoch."""

    @abstractmethod
    def now(self) -> int:
        pass


class SystemClock(Clock):
    """Wall-clock time from the host."""

    def now(self) -> int:
        return int(time.time())
