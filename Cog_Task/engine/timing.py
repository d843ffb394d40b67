"""Timing policy helpers and the drift ledger.

Under ``respect_intervals`` every item is anchored at the tick on which it
actually started. Under ``respect_boundaries`` an item is anchored at the
nominal end of its predecessor, so a late tick shortens the next item instead
of pushing every following boundary back. The ledger keeps the lateness of
each activation so the block can report it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List

import numpy as np

from ..config import TimePrecision

# Tolerance for comparing float timestamps against deadlines.
EPSILON = 1e-9


def is_due(now: float, deadline: float) -> bool:
    """Return ``True`` once ``now`` has reached ``deadline``."""

    return now + EPSILON >= deadline


def resolve_anchor(precision: TimePrecision, intended: float, now: float) -> float:
    """Return the anchor an activation should count its durations from."""

    if precision is TimePrecision.RESPECT_INTERVALS:
        return now
    return min(intended, now)


@dataclass(frozen=True)
class Lateness:
    """Gap between an activation's intended and actual start."""

    node: int
    kind: str
    tick: int
    intended: float
    actual: float

    @property
    def delay(self) -> float:
        return self.actual - self.intended


class TimingLedger:
    """Collect activation lateness for one block run."""

    def __init__(self, tolerance: float = EPSILON) -> None:
        self.tolerance = tolerance
        self.entries: List[Lateness] = []
        self._samples: List[float] = []

    def observe(
        self, node: int, kind: str, tick: int, intended: float, actual: float
    ) -> Lateness | None:
        """Record one activation and return it if it started late."""

        delay = actual - intended
        self._samples.append(max(delay, 0.0))
        if delay <= self.tolerance:
            return None
        entry = Lateness(node, kind, tick, intended, actual)
        self.entries.append(entry)
        return entry

    def summary(self) -> Dict[str, float]:
        """Return count, mean, max and 95th percentile of activation delay."""

        if not self._samples:
            return {"count": 0, "late": 0, "mean": 0.0, "max": 0.0, "p95": 0.0}
        arr = np.asarray(self._samples, dtype=float)
        return {
            "count": int(arr.size),
            "late": len(self.entries),
            "mean": float(arr.mean()),
            "max": float(arr.max()),
            "p95": float(np.percentile(arr, 95)),
        }
