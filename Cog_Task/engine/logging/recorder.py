"""Block recorder.

The recorder turns bus writes and action events into validated entries and
hands them to a sink. Signal entries are produced for every active
subscription whose mapping names the written id; events are written
directly under their group.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Mapping, Optional

from pydantic import ValidationError

from ..signals import Write
from .models import BlockInfo, BlockOutcome, EventEntry, SignalEntry
from .sinks import MemorySink, RecordSink

logger = logging.getLogger(__name__)


class Recorder:
    """Collect block records into ``sink``.

    Parameters
    ----------
    sink:
        Destination for entries. Defaults to a :class:`MemorySink`.
    all_signals:
        Also write every bus write to the ``signals`` group.
    """

    def __init__(self, sink: Optional[RecordSink] = None, *, all_signals: bool = False) -> None:
        self.sink: RecordSink = sink if sink is not None else MemorySink()
        self.all_signals = all_signals
        self._subs: Dict[int, tuple] = {}
        self.counts: Dict[str, int] = {}
        self.closed = False

    # ------------------------------------------------------------------
    def subscribe(self, owner: int, group: str, mapping: Mapping[int, str]) -> None:
        """Start logging the ids in ``mapping`` under ``group``."""

        self._subs[owner] = (group, dict(mapping))

    def unsubscribe(self, owner: int) -> None:
        self._subs.pop(owner, None)

    @property
    def subscriptions(self) -> Dict[int, tuple]:
        return dict(self._subs)

    # ------------------------------------------------------------------
    def collect(self, writes: Iterable[Write]) -> None:
        """Write one signal entry per subscribed write, in bus order."""

        for w in writes:
            if self.all_signals:
                self._emit("signals", SignalEntry(tick=w.tick, time=w.time, signal=w.id, name="", value=w.value))
            for group, mapping in self._subs.values():
                name = mapping.get(w.id)
                if name is None:
                    continue
                entry = SignalEntry(tick=w.tick, time=w.time, signal=w.id, name=name, value=w.value)
                self._emit(group, entry)

    def event(self, group: str, name: str, value: Any, *, tick: int, time: float) -> None:
        try:
            entry = EventEntry(tick=tick, time=time, name=name, value=value)
        except ValidationError as exc:
            logger.error("dropping invalid %s event %s: %s", group, name, exc)
            return
        self._emit(group, entry)

    def header(self, info: BlockInfo) -> None:
        self._write("info", {"event": "header", **info.model_dump(mode="json")})

    def outcome(self, outcome: BlockOutcome) -> None:
        self._write("info", {"event": "outcome", **outcome.model_dump(mode="json")})

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.sink.close()

    # ------------------------------------------------------------------
    def _emit(self, group: str, entry: Any) -> None:
        self._write(group, entry.model_dump(mode="json"))

    def _write(self, group: str, data: Dict[str, Any]) -> None:
        if self.closed:
            raise RuntimeError("recorder is closed")
        self.counts[group] = self.counts.get(group, 0) + 1
        self.sink.write(group, data)
