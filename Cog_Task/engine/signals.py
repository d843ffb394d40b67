"""Per-block signal bus.

The bus maps numeric signal identifiers to typed values. Every write is
stamped with the tick index and a global write sequence number so readers can
ask which inputs changed since they last looked. Writes within one tick are
kept in order in a journal that the recorder drains once the tick finishes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

import numpy as np

Value = Union[bool, int, float, str]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Signal:
    """Latest value held for one identifier."""

    id: int
    value: Value
    tick: int
    seq: int


@dataclass(frozen=True)
class Write:
    """One entry of the per-tick write journal."""

    id: int
    value: Value
    tick: int
    time: float


@dataclass(frozen=True)
class SignalConflict:
    """Two writes to the same identifier within one tick."""

    id: int
    tick: int
    previous: Value
    value: Value


def coerce_value(value: Any) -> Value:
    """Return ``value`` as one of the four bus value types.

    NumPy scalars are unwrapped. ``None`` and containers are rejected.
    """

    if isinstance(value, np.generic):
        value = value.item()
    if isinstance(value, (bool, int, float, str)):
        return value
    raise TypeError(f"unsupported signal value {value!r} ({type(value).__name__})")


class BusSnapshot(Dict[int, Value]):
    """Plain mapping of signal values handed to loggers or the next block."""


class SignalBus:
    """Tick-scoped mapping from signal ids to values.

    Parameters
    ----------
    initial:
        Optional starting values written before the first tick.
    strict:
        Record a :class:`SignalConflict` when an id is written twice in the
        same tick. The last write still wins.
    """

    def __init__(
        self, initial: Optional[Mapping[int, Any]] = None, *, strict: bool = False
    ) -> None:
        self.strict = strict
        self.tick = -1
        self.time = 0.0
        self._seq = 0
        self._values: Dict[int, Signal] = {}
        self._journal: List[Write] = []
        self.conflicts: List[SignalConflict] = []
        for sid, value in (initial or {}).items():
            self.write(int(sid), value)
        self._journal.clear()

    # ------------------------------------------------------------------
    def begin_tick(self, tick: int, now: float) -> None:
        """Start a new tick; the previous journal is discarded."""

        self.tick = tick
        self.time = now
        self._journal.clear()

    def write(self, sid: int, value: Any, tick: Optional[int] = None) -> None:
        """Store ``value`` for ``sid`` stamped with ``tick``.

        A second write to ``sid`` within the same tick overwrites the first.
        """

        if sid < 1:
            raise ValueError(f"signal ids start at 1, got {sid}")
        value = coerce_value(value)
        if tick is None:
            tick = self.tick
        previous = self._values.get(sid)
        if previous is not None and previous.tick == tick and tick >= 0:
            if self.strict:
                conflict = SignalConflict(sid, tick, previous.value, value)
                self.conflicts.append(conflict)
                logger.warning(
                    "signal %d written twice in tick %d (%r -> %r)",
                    sid,
                    tick,
                    previous.value,
                    value,
                )
        self._seq += 1
        self._values[sid] = Signal(sid, value, tick, self._seq)
        self._journal.append(Write(sid, value, tick, self.time))

    def read(self, sid: int, default: Any = None) -> Any:
        """Return the latest value of ``sid`` or ``default`` if never written."""

        sig = self._values.get(sid)
        return default if sig is None else sig.value

    def get(self, sid: int) -> Optional[Signal]:
        return self._values.get(sid)

    def __contains__(self, sid: object) -> bool:
        return sid in self._values

    @property
    def seq(self) -> int:
        """Sequence number of the most recent write."""
        return self._seq

    def changed(self, ids: Iterable[int], since: int) -> List[int]:
        """Return the ids in ``ids`` written after sequence number ``since``.

        Ids are returned in write order.
        """

        hits = [
            self._values[sid]
            for sid in set(ids)
            if sid in self._values and self._values[sid].seq > since
        ]
        return [sig.id for sig in sorted(hits, key=lambda s: s.seq)]

    def journal(self) -> List[Write]:
        """Return the writes performed during the current tick, in order."""
        return list(self._journal)

    def take_journal(self) -> List[Write]:
        """Return and clear the writes not yet handed to the recorder."""
        out, self._journal = self._journal, []
        return out

    def take_conflicts(self) -> List[SignalConflict]:
        out, self.conflicts = self.conflicts, []
        return out

    def snapshot(self) -> BusSnapshot:
        """Return a copy of all current values keyed by id."""
        return BusSnapshot({sid: sig.value for sid, sig in self._values.items()})
