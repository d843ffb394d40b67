"""Wall clocks driving the tick loop."""

from __future__ import annotations

import time
from typing import Iterable, Iterator, Optional


class MonotonicClock:
    """Real clock pacing ticks at ``rate`` per second."""

    def __init__(self, rate: float = 60.0) -> None:
        self.period = 1.0 / rate
        self._origin = time.perf_counter()
        self._next = self.period

    def now(self) -> float:
        return time.perf_counter() - self._origin

    def wait_frame(self) -> None:
        """Sleep until the next frame boundary; late frames are not made up."""

        remaining = self._next - self.now()
        if remaining > 0:
            time.sleep(remaining)
            self._next += self.period
        else:
            self._next = self.now() + self.period


class ManualClock:
    """Deterministic clock for headless runs and tests.

    Each call to :meth:`wait_frame` advances time by ``period``. When
    ``jitter`` is given, successive frames are delayed by the next value from
    that iterable (cycled), emulating a host that misses frame boundaries.
    """

    def __init__(
        self, period: float = 1.0 / 60.0, jitter: Optional[Iterable[float]] = None
    ) -> None:
        self.period = period
        self.frames = 0
        self._extra = 0.0
        self._jitter: Optional[Iterator[float]] = None
        if jitter is not None:
            values = list(jitter)
            if values:
                self._jitter = _cycle(values)

    def now(self) -> float:
        return self.frames * self.period + self._extra

    def wait_frame(self) -> None:
        self.frames += 1
        if self._jitter is not None:
            self._extra += next(self._jitter)

    def advance(self, seconds: float) -> None:
        """Shift the clock by ``seconds`` without counting a frame."""
        self._extra += seconds


def _cycle(values: list) -> Iterator[float]:
    while True:
        yield from values
