"""Container actions.

Containers own child indices and decide when to activate, cancel or restart
them. Timing follows the block policy: the intended start handed to a child
is the nominal end of whatever preceded it, which the scheduler turns into an
anchor according to ``respect_boundaries`` or ``respect_intervals``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional, Sequence, Set

from ...errors import DefinitionError
from ..timing import is_due
from .base import Container, State, check_duration, check_signal

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from ..scheduler import TickContext
    from ..tree import Tree


def _end(ctx: "TickContext", index: int) -> float:
    end = ctx.node(index).finished_at
    return ctx.now if end is None else end


class Seq(Container):
    """Run children one at a time in declaration order."""

    kind = "seq"
    CHILDREN = ("children",)

    def __init__(self, children: Sequence[int], **common: Any) -> None:
        self.items = list(children)
        super().__init__(**common)

    def reset(self) -> None:
        super().reset()
        self.position = 0

    def shift(self, offset: int) -> None:
        super().shift(offset)
        self.items = [i + offset for i in self.items]

    def is_infinite(self, tree: "Tree") -> bool:
        return any(
            tree[i].is_infinite(tree) and not tree[i].background for i in self.items
        )

    def validate(self, tree: "Tree") -> None:
        for i in self.items[:-1]:
            if tree[i].is_infinite(tree) and not tree[i].background:
                raise DefinitionError(
                    f"{self.label}: only the last child may run forever; "
                    f"{tree[i].label} makes the following children unreachable"
                )

    def start(self, ctx: "TickContext") -> None:
        if not self.items:
            ctx.finish(self)
            return
        ctx.activate(self.items[0], self.anchor)

    def update(self, ctx: "TickContext") -> None:
        while self.position < len(self.items):
            current = ctx.node(self.items[self.position])
            if not current.settled:
                return
            if self.escalated(ctx, [current.index]):
                return
            intended = _end(ctx, current.index) if current.state is State.DONE else ctx.now
            self.position += 1
            if self.position < len(self.items):
                ctx.activate(self.items[self.position], intended)
            else:
                ctx.finish(self, at=intended)
                return


class Par(Container):
    """Run the primary children together.

    ``mode="all"`` finishes when every primary child settled, ``mode="any"``
    on the first one. Secondary children run alongside and are cancelled
    when the primary set completes.
    """

    kind = "par"
    CHILDREN = ("primary", "secondary")

    def __init__(
        self,
        primary: Sequence[int],
        secondary: Sequence[int] = (),
        mode: str = "all",
        **common: Any,
    ) -> None:
        if mode not in ("all", "any"):
            raise DefinitionError(f"{self.kind}: mode must be 'all' or 'any', got {mode!r}")
        self.primary = list(primary)
        self.secondary = list(secondary)
        self.mode = mode
        super().__init__(**common)

    def shift(self, offset: int) -> None:
        super().shift(offset)
        self.primary = [i + offset for i in self.primary]
        self.secondary = [i + offset for i in self.secondary]

    def is_infinite(self, tree: "Tree") -> bool:
        flags = [tree[i].is_infinite(tree) and not tree[i].background for i in self.primary]
        if not flags:
            return False
        return all(flags) if self.mode == "any" else any(flags)

    def start(self, ctx: "TickContext") -> None:
        for i in self.primary + self.secondary:
            if self.state is not State.ACTIVE:
                return
            ctx.activate(i, self.anchor)

    def update(self, ctx: "TickContext") -> None:
        if self.escalated(ctx, self.primary + self.secondary):
            return
        nodes = [ctx.node(i) for i in self.primary]
        if not nodes:
            ctx.finish(self)
            return
        if self.mode == "any":
            settled = [n for n in nodes if n.settled]
            if settled:
                ends = [_end(ctx, n.index) for n in settled if n.state is State.DONE]
                ctx.finish(self, at=min(ends) if ends else None)
        elif all(n.settled for n in nodes):
            ends = [_end(ctx, n.index) for n in nodes if n.state is State.DONE]
            ctx.finish(self, at=max(ends) if ends else None)


class Stack(Par):
    """Par whose children share the screen in ``proportions``."""

    kind = "stack"
    CHILDREN = ("children",)

    def __init__(
        self,
        children: Sequence[int],
        proportions: Optional[Sequence[float]] = None,
        mode: str = "all",
        **common: Any,
    ) -> None:
        children = list(children)
        if proportions is None:
            proportions = [1.0 / len(children)] * len(children) if children else []
        proportions = [float(p) for p in proportions]
        if len(proportions) != len(children):
            raise DefinitionError(
                f"{self.kind}: {len(proportions)} proportions for {len(children)} children"
            )
        if any(p < 0 for p in proportions) or sum(proportions) > 1.0 + 1e-9:
            raise DefinitionError(
                f"{self.kind}: proportions must be non-negative and sum to at most 1"
            )
        self.proportions = proportions
        super().__init__(children, (), mode, **common)


class Horizontal(Stack):
    kind = "horizontal"


class Vertical(Stack):
    kind = "vertical"


class Repeat(Container):
    """Restart the inner child each time it finishes."""

    kind = "repeat"
    CHILDREN = ("inner",)

    def __init__(self, inner: int, iters: Optional[int] = None, **common: Any) -> None:
        if iters is not None and (isinstance(iters, bool) or int(iters) != iters or iters < 0):
            raise DefinitionError(f"{self.kind}: `iters` must be a non-negative integer")
        self.inner = inner
        self.iters = None if iters is None else int(iters)
        super().__init__(**common)

    def reset(self) -> None:
        super().reset()
        self.count = 0

    def shift(self, offset: int) -> None:
        super().shift(offset)
        self.inner += offset

    def is_infinite(self, tree: "Tree") -> bool:
        return self.iters is None or tree[self.inner].is_infinite(tree)

    def validate(self, tree: "Tree") -> None:
        if tree[self.inner].background:
            raise DefinitionError(f"{self.label}: cannot repeat a background action")

    def start(self, ctx: "TickContext") -> None:
        if self.iters == 0:
            ctx.finish(self, at=self.anchor)
            return
        ctx.activate(self.inner, self.anchor)

    def update(self, ctx: "TickContext") -> None:
        restarted = False
        while ctx.node(self.inner).state is State.DONE:
            if self.escalated(ctx, [self.inner]):
                return
            # unbounded repeat of an instantaneous child: one restart per tick
            if self.iters is None and restarted:
                return
            self.count += 1
            end = _end(ctx, self.inner)
            if self.iters is not None and self.count >= self.iters:
                ctx.finish(self, at=end)
                return
            ctx.reset(self.inner)
            ctx.activate(self.inner, end)
            restarted = True


class Until(Container):
    """Run the inner child until it finishes or a signal fires.

    ``in_event`` fires on any write after activation, ``in_condition`` when
    the signal holds a truthy value.
    """

    kind = "until"
    CHILDREN = ("inner",)

    def __init__(
        self,
        inner: int,
        in_event: int = 0,
        in_condition: int = 0,
        **common: Any,
    ) -> None:
        self.inner = inner
        self.in_event = check_signal(self.kind, in_event, "in_event")
        self.in_condition = check_signal(self.kind, in_condition, "in_condition")
        if not (self.in_event or self.in_condition):
            raise DefinitionError(f"{self.kind}: requires `in_event` or `in_condition`")
        super().__init__(**common)

    def shift(self, offset: int) -> None:
        super().shift(offset)
        self.inner += offset

    def in_signals(self) -> Set[int]:
        return {i for i in (self.in_event, self.in_condition) if i}

    def _fired(self, ctx: "TickContext") -> bool:
        if self.in_event and ctx.bus.changed([self.in_event], self.since):
            return True
        return bool(self.in_condition and ctx.bus.read(self.in_condition, False))

    def start(self, ctx: "TickContext") -> None:
        if self._fired(ctx):
            ctx.finish(self)
            return
        ctx.activate(self.inner, self.anchor)

    def update(self, ctx: "TickContext") -> None:
        inner = ctx.node(self.inner)
        if inner.state is State.DONE:
            if not self.escalated(ctx, [self.inner]):
                ctx.finish(self, at=_end(ctx, self.inner))
        elif self._fired(ctx):
            ctx.finish(self)


class Switch(Container):
    """Pick one of two branches from ``in_control`` on activation."""

    kind = "switch"
    CHILDREN = ("if_true", "if_false")

    def __init__(
        self,
        if_true: int,
        if_false: int,
        in_control: int,
        default: bool = False,
        **common: Any,
    ) -> None:
        self.branches = [if_true, if_false]
        self.in_control = check_signal(self.kind, in_control, "in_control")
        if not self.in_control:
            raise DefinitionError(f"{self.kind}: `in_control` is required")
        self.default = bool(default)
        super().__init__(**common)

    def reset(self) -> None:
        super().reset()
        self.chosen: Optional[int] = None

    def shift(self, offset: int) -> None:
        super().shift(offset)
        self.branches = [i + offset for i in self.branches]

    def in_signals(self) -> Set[int]:
        return {self.in_control}

    def is_infinite(self, tree: "Tree") -> bool:
        return any(tree[i].is_infinite(tree) for i in self.branches)

    def choose(self, ctx: "TickContext") -> int:
        value = ctx.bus.read(self.in_control, self.default)
        return self.branches[0] if value else self.branches[1]

    def start(self, ctx: "TickContext") -> None:
        self.chosen = self.choose(ctx)
        ctx.activate(self.chosen, self.anchor)

    def update(self, ctx: "TickContext") -> None:
        if self.chosen is None:
            return
        if ctx.node(self.chosen).state is State.DONE:
            if not self.escalated(ctx, [self.chosen]):
                ctx.finish(self, at=_end(ctx, self.chosen))


class Branch(Switch):
    """Pick one of many children by the integer in ``in_control``.

    Values outside the child range select ``default``.
    """

    kind = "branch"
    CHILDREN = ("children",)

    def __init__(
        self,
        children: Sequence[int],
        in_control: int,
        default: int = 0,
        **common: Any,
    ) -> None:
        children = list(children)
        if not children:
            raise DefinitionError(f"{self.kind}: requires at least one child")
        if not 0 <= int(default) < len(children):
            raise DefinitionError(f"{self.kind}: default {default} is out of range")
        super().__init__(children[0], children[0], in_control, **common)
        self.branches = children
        self.default_index = int(default)

    def choose(self, ctx: "TickContext") -> int:
        value = ctx.bus.read(self.in_control)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            index = self.default_index
        else:
            index = int(value)
            if not 0 <= index < len(self.branches):
                index = self.default_index
        return self.branches[index]


class Timeout(Container):
    """Finish exactly ``duration`` after activation, cancelling the inner child."""

    kind = "timeout"
    CHILDREN = ("inner",)

    def __init__(self, duration: float, inner: int, **common: Any) -> None:
        self.duration = check_duration(self.kind, duration)
        self.inner = inner
        super().__init__(**common)

    def shift(self, offset: int) -> None:
        super().shift(offset)
        self.inner += offset

    @property
    def deadline(self) -> float:
        return self.anchor + self.duration

    def start(self, ctx: "TickContext") -> None:
        if is_due(ctx.now, self.deadline):
            ctx.finish(self, at=self.deadline)
            return
        ctx.activate(self.inner, self.anchor)

    def update(self, ctx: "TickContext") -> None:
        if is_due(ctx.now, self.deadline):
            ctx.finish(self, at=self.deadline)
        else:
            self.escalated(ctx, [self.inner])


class Delayed(Container):
    """Activate the inner child ``duration`` after own activation."""

    kind = "delayed"
    CHILDREN = ("inner",)

    def __init__(self, duration: float, inner: int, **common: Any) -> None:
        self.duration = check_duration(self.kind, duration)
        self.inner = inner
        super().__init__(**common)

    def shift(self, offset: int) -> None:
        super().shift(offset)
        self.inner += offset

    def is_infinite(self, tree: "Tree") -> bool:
        return tree[self.inner].is_infinite(tree)

    def update(self, ctx: "TickContext") -> None:
        inner = ctx.node(self.inner)
        if inner.state is State.PENDING:
            release = self.anchor + self.duration
            if not is_due(ctx.now, release):
                return
            ctx.activate(self.inner, release)
        if inner.state is State.DONE and self.state is State.ACTIVE:
            if not self.escalated(ctx, [self.inner]):
                ctx.finish(self, at=_end(ctx, self.inner))

