"""Leaves driven only by the clock."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Set

from ...errors import DefinitionError
from ..timing import is_due
from .base import Action, check_duration, check_signal

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from ..scheduler import TickContext
    from ..tree import Tree

MIN_CLOCK_STEP = 0.010


class Nil(Action):
    """Finish on the tick it is activated."""

    kind = "nil"

    def start(self, ctx: "TickContext") -> None:
        ctx.finish(self, at=self.anchor)


class Wait(Action):
    """Finish once ``duration`` seconds have elapsed."""

    kind = "wait"

    def __init__(self, duration: float, **common: Any) -> None:
        self.duration = check_duration(self.kind, duration)
        super().__init__(**common)

    def update(self, ctx: "TickContext") -> None:
        deadline = self.anchor + self.duration
        if is_due(ctx.now, deadline):
            ctx.finish(self, at=deadline)


class Clock(Action):
    """Write an increasing tic count to ``out_tic`` every ``step`` seconds.

    At most one tic is written per tick; a late tick is made up on the
    following ticks so no count is skipped.
    """

    kind = "clock"

    def __init__(self, step: float = 1.0, out_tic: int = 0, **common: Any) -> None:
        self.step = check_duration(self.kind, step, "step")
        if self.step < MIN_CLOCK_STEP:
            raise DefinitionError(
                f"{self.kind}: `step` must be at least {MIN_CLOCK_STEP}s, got {self.step}"
            )
        self.out_tic = check_signal(self.kind, out_tic, "out_tic")
        if not self.out_tic:
            raise DefinitionError(f"{self.kind}: `out_tic` is required")
        super().__init__(**common)

    def reset(self) -> None:
        super().reset()
        self.tics = 0

    def out_signals(self) -> Set[int]:
        return super().out_signals() | {self.out_tic}

    def is_infinite(self, tree: "Tree") -> bool:
        return True

    def update(self, ctx: "TickContext") -> None:
        if is_due(ctx.now, self.anchor + (self.tics + 1) * self.step):
            self.tics += 1
            ctx.write(self.out_tic, self.tics)


class Timer(Action):
    """Measure how long it stayed active.

    The elapsed time is written to ``sig_duration`` and, for named timers,
    to the ``timer`` record group when the action stops.
    """

    kind = "timer"

    def __init__(self, sig_duration: int = 0, **common: Any) -> None:
        self.sig_duration = check_signal(self.kind, sig_duration, "sig_duration")
        super().__init__(**common)

    def out_signals(self) -> Set[int]:
        out = super().out_signals()
        if self.sig_duration:
            out.add(self.sig_duration)
        return out

    def is_infinite(self, tree: "Tree") -> bool:
        return True

    def stop(self, ctx: "TickContext") -> None:
        start = self.started_at if self.started_at is not None else ctx.now
        elapsed = ctx.now - start
        if self.name:
            ctx.record("timer", self.name, elapsed)
        ctx.write(self.sig_duration, elapsed)


class Event(Action):
    """Mark a point in time in the ``event`` group and finish."""

    kind = "event"

    def __init__(self, label: str = "", out_event: int = 0, **common: Any) -> None:
        self.text = str(label)
        self.out_event = check_signal(self.kind, out_event, "out_event")
        super().__init__(**common)
        if not (self.text or self.name):
            raise DefinitionError(f"{self.kind}: requires a label")

    def out_signals(self) -> Set[int]:
        out = super().out_signals()
        if self.out_event:
            out.add(self.out_event)
        return out

    def start(self, ctx: "TickContext") -> None:
        ctx.record("event", self.text or self.name, ctx.now)
        ctx.write(self.out_event, True)
        ctx.finish(self, at=self.anchor)
