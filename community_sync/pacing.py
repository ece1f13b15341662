from __future__ import annotations

import time
from typing import Callable

ClockFn = Callable[[], float]
SleepFn = Callable[[float], None]


class RequestPacer:
    """
    Enforces a minimum wall-clock gap between the starts of consecutive requests.

    One pacer is shared by everything that talks to the same rate-limited API;
    it holds the only copy of the last-request timestamp.
    """

    def __init__(
        self,
        min_interval_seconds: float,
        *,
        clock: ClockFn | None = None,
        sleep_fn: SleepFn | None = None,
    ) -> None:
        if min_interval_seconds < 0:
            raise ValueError("min_interval_seconds must be >= 0")
        self.min_interval_seconds = float(min_interval_seconds)
        self._clock = clock or time.monotonic
        self._sleep = sleep_fn or time.sleep
        self._last_request_at: float | None = None

    @property
    def last_request_at(self) -> float | None:
        return self._last_request_at

    def wait(self) -> float:
        """Block until the next request may start, stamp it, and return the time slept."""
        slept = 0.0
        if self._last_request_at is not None:
            remaining = self._last_request_at + self.min_interval_seconds - self._clock()
            if remaining > 0:
                self._sleep(remaining)
                slept = remaining
        self._last_request_at = self._clock()
        return slept
