"""Request pacing strategies shared by the source and destination clients."""

import logging
import time
from abc import ABC, abstractmethod
from typing import Callable, Optional


class PacingStrategy(ABC):
    """Decides how long to block before the next remote call."""

    @abstractmethod
    def wait_before_next_call(self) -> None:
        """Block until the next call may be issued."""
        pass


class FixedIntervalPacer(PacingStrategy):
    """
    Keeps at least ``interval`` seconds between consecutive calls.

    The first call goes out immediately; later calls sleep for whatever
    remains of the interval since the previous one.
    """

    def __init__(self, interval: float,
                 sleep: Callable[[float], None] = time.sleep,
                 clock: Callable[[], float] = time.monotonic):
        if interval < 0:
            raise ValueError(f"Pacing interval must not be negative: {interval}")
        self.interval = interval
        self._sleep = sleep
        self._clock = clock
        self._last_call: Optional[float] = None

    def wait_before_next_call(self) -> None:
        if self._last_call is not None:
            remaining = self.interval - (self._clock() - self._last_call)
            if remaining > 0:
                logging.debug(f"Pacing: sleeping {remaining:.3f}s")
                self._sleep(remaining)
        self._last_call = self._clock()


class NoPacing(PacingStrategy):
    """Never waits. Used for in-memory collaborators."""

    def wait_before_next_call(self) -> None:
        return None
