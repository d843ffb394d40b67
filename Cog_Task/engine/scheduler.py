"""Single-threaded tick loop over the active subset of a tree.

Each call to :meth:`Scheduler.tick` walks the active nodes depth first in
declaration order. Children are visited before their container so the
container sees completions of the current tick and can chain the next child
immediately. Nodes activated during the walk get their first update inside
the activation, and every node is updated at most once per tick.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable, List, Mapping, Optional

from ..config import LogWhen, TimePrecision
from ..errors import ActionError, DefinitionError
from .actions.base import Action, State
from .clock import ManualClock
from .media import MediaBackend, get_backend
from .render import HeadlessRenderer, Renderer
from .signals import SignalBus
from .timing import TimingLedger, resolve_anchor
from .tree import Tree

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InputEvent:
    """User input delivered to the tick on which it is processed.

    ``kind`` is ``"key"``, ``"click"``, ``"answer"`` or ``"submit"``. Clicks
    carry coordinates relative to the clicked item; answers carry the
    question id in ``key`` and the answer in ``value``.
    """

    kind: str
    key: str
    time: float
    x: float = 0.0
    y: float = 0.0
    value: Any = None


class TickContext:
    """Handle passed to action hooks.

    Exposes the bus and tick timing, and the operations containers use to
    drive their children.
    """

    __slots__ = ("_sched",)

    def __init__(self, sched: "Scheduler") -> None:
        self._sched = sched

    @property
    def bus(self) -> SignalBus:
        return self._sched.bus

    @property
    def now(self) -> float:
        return self._sched.now

    @property
    def tick(self) -> int:
        return self._sched.index

    @property
    def dt(self) -> float:
        return self._sched.dt

    @property
    def events(self) -> List[InputEvent]:
        return self._sched.events

    @property
    def precision(self) -> TimePrecision:
        return self._sched.precision

    @property
    def renderer(self) -> Renderer:
        return self._sched.renderer

    @property
    def media(self) -> MediaBackend:
        return self._sched.media

    @property
    def volume(self) -> float:
        return self._sched.volume

    @property
    def use_trigger(self) -> bool:
        return self._sched.use_trigger

    def node(self, index: int) -> Action:
        return self._sched.tree[index]

    def activate(self, index: int, intended: Optional[float] = None) -> None:
        self._sched.activate(index, self.now if intended is None else intended)

    def cancel(self, index: int) -> None:
        self._sched.cancel(index)

    def reset(self, index: int) -> None:
        self._sched.tree.reset(index)

    def finish(
        self, node: Action, *, at: Optional[float] = None, error: Optional[str] = None
    ) -> None:
        self._sched.finish(node, at=at, error=error)

    def write(self, sid: int, value: Any) -> None:
        """Write ``value`` to ``sid``; values the bus rejects raise ``ActionError``."""

        if sid:
            try:
                self._sched.bus.write(sid, value)
            except (TypeError, ValueError) as exc:
                raise ActionError(str(exc)) from exc

    def record(self, group: str, name: str, value: Any) -> None:
        self._sched.record(group, name, value)

    def subscribe(self, owner: int, group: str, mapping: Mapping[int, str]) -> None:
        if self._sched.recorder is not None:
            self._sched.recorder.subscribe(owner, group, mapping)

    def unsubscribe(self, owner: int) -> None:
        if self._sched.recorder is not None:
            self._sched.recorder.unsubscribe(owner)


class Scheduler:
    """Drive one tree and its bus until the root is done.

    Parameters
    ----------
    tree:
        Validated arena with a root.
    bus:
        Signal bus owned by this block run.
    precision:
        Timing policy applied to every activation.
    recorder:
        Optional :class:`~Cog_Task.engine.logging.recorder.Recorder`.
    use_trigger:
        When ``False`` media actions never send their trigger.
    log_when:
        Default flow logging for actions that do not set ``log_when``.
    """

    def __init__(
        self,
        tree: Tree,
        bus: Optional[SignalBus] = None,
        *,
        precision: TimePrecision = TimePrecision.RESPECT_BOUNDARIES,
        recorder: Any = None,
        renderer: Optional[Renderer] = None,
        media: Optional[MediaBackend] = None,
        volume: float = 0.5,
        use_trigger: bool = True,
        log_when: LogWhen = LogWhen.NONE,
    ) -> None:
        if tree.root is None:
            raise DefinitionError("tree has no root")
        self.tree = tree
        self.bus = bus if bus is not None else SignalBus()
        self.precision = TimePrecision(precision)
        self.recorder = recorder
        self.renderer = renderer if renderer is not None else HeadlessRenderer()
        self.media = media if media is not None else get_backend("silent")
        self.volume = volume
        self.use_trigger = use_trigger
        self.log_when = LogWhen(log_when)
        self.ledger = TimingLedger()
        self.ctx = TickContext(self)
        self.index = -1
        self.now = 0.0
        self.dt = 0.0
        self.start_time: Optional[float] = None
        self.events: List[InputEvent] = []
        self.done = False

    @property
    def root(self) -> Action:
        return self.tree[self.tree.root]

    # ------------------------------------------------------------------
    def tick(self, now: float, events: Iterable[InputEvent] = ()) -> bool:
        """Advance the active subset once and return ``True`` when done."""

        if self.done:
            return True
        self.index += 1
        if self.start_time is None:
            self.start_time = now
            self.dt = 0.0
        else:
            self.dt = now - self.now
        self.now = now
        self.events = list(events)
        self.bus.begin_tick(self.index, now)

        root = self.root
        if root.state is State.PENDING:
            self.activate(root.index, now)
        else:
            self._visit(root.index)

        self.flush()
        if root.state is State.DONE:
            self.done = True
        return self.done

    def run(
        self,
        clock: Any = None,
        *,
        max_ticks: int = 0,
        poll: Optional[Callable[[], Iterable[InputEvent]]] = None,
    ) -> int:
        """Tick until the root is done and return the number of ticks run."""

        clock = clock if clock is not None else ManualClock()
        while not self.done:
            events = poll() if poll is not None else ()
            self.tick(clock.now(), events)
            if self.done:
                break
            if max_ticks and self.index + 1 >= max_ticks:
                logger.warning("block stopped after %d ticks", max_ticks)
                self.abort()
                break
            clock.wait_frame()
        return self.index + 1

    def abort(self) -> None:
        """Cancel every active node and mark the run as done."""

        root = self.root
        if root.state is State.ACTIVE:
            self.cancel(root.index)
            self.flush()
        self.done = True

    @property
    def elapsed(self) -> float:
        return 0.0 if self.start_time is None else self.now - self.start_time

    # ------------------------------------------------------------------
    def _visit(self, index: int) -> None:
        node = self.tree[index]
        if node.state is not State.ACTIVE or node.last_tick == self.index:
            return
        for child in list(node.children):
            if self.tree[child].state is State.ACTIVE:
                self._visit(child)
        if node.state is State.ACTIVE and node.last_tick != self.index:
            node.last_tick = self.index
            self._call(node, node.update)

    def activate(self, index: int, intended: float) -> None:
        """Move a pending node to ``Active`` and give it its first update."""

        node = self.tree[index]
        if node.state is not State.PENDING:
            raise RuntimeError(f"{node.label} activated twice without reset")
        anchor = resolve_anchor(self.precision, intended, self.now)
        late = self.ledger.observe(index, node.kind, self.index, anchor, self.now)
        if late is not None:
            self.record(
                "timing",
                "late",
                {"node": index, "kind": node.kind, "delay": late.delay},
            )
        node.state = State.ACTIVE
        node.anchor = anchor
        node.started_at = self.now
        node.since = self.bus.seq
        node.last_tick = self.index
        if (node.log_when or self.log_when).on_start:
            self.record("flow", "start", self._flow_value(node))
        self._call(node, node.start)
        if node.state is State.ACTIVE:
            self._call(node, node.update)

    def finish(
        self, node: Action, *, at: Optional[float] = None, error: Optional[str] = None
    ) -> None:
        """Mark ``node`` done, tearing down any children still active."""

        if node.state is not State.ACTIVE:
            return
        node.state = State.DONE
        self._teardown(node)
        if at is not None and self.precision is TimePrecision.RESPECT_BOUNDARIES:
            node.finished_at = min(at, self.now)
        else:
            node.finished_at = self.now
        if error is not None:
            node.error = error
            if node.out_error:
                self.bus.write(node.out_error, error)
            self.record("error", node.label, error)
        if (node.log_when or self.log_when).on_stop:
            self.record("flow", "stop", self._flow_value(node))

    def cancel(self, index: int) -> None:
        """Stop an active node before its own completion condition holds."""

        node = self.tree[index]
        if node.state is not State.ACTIVE:
            return
        node.state = State.DONE
        node.cancelled = True
        node.finished_at = self.now
        self._teardown(node)
        if (node.log_when or self.log_when).on_stop:
            self.record("flow", "cancel", self._flow_value(node))

    def _teardown(self, node: Action) -> None:
        for child in node.children:
            self.cancel(child)
        try:
            node.stop(self.ctx)
        except ActionError as err:
            logger.warning("%s failed to stop cleanly: %s", node.label, err)
            self.record("error", node.label, str(err))

    def _call(self, node: Action, hook: Callable[[TickContext], None]) -> None:
        try:
            hook(self.ctx)
        except ActionError as err:
            logger.warning("%s failed: %s", node.label, err)
            if node.state is State.ACTIVE:
                self.finish(node, error=str(err) or type(err).__name__)

    # ------------------------------------------------------------------
    def record(self, group: str, name: str, value: Any) -> None:
        if self.recorder is not None:
            self.recorder.event(group, name, value, tick=self.index, time=self.now)

    def flush(self) -> None:
        conflicts = self.bus.take_conflicts()
        if self.recorder is None:
            return
        for c in conflicts:
            self.record(
                "conflict",
                str(c.id),
                {"tick": c.tick, "previous": c.previous, "value": c.value},
            )
        self.recorder.collect(self.bus.take_journal())

    @staticmethod
    def _flow_value(node: Action) -> dict:
        value = {"node": node.index, "kind": node.kind}
        if node.name:
            value["name"] = node.name
        return value
