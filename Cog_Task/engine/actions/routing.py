"""Background actions that route or record signals."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Sequence, Set

from ...errors import ActionError, DefinitionError
from .base import Action, check_signal, signal_map

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from ..scheduler import TickContext


def _latest(values: List[Any]) -> Any:
    return values[-1]


COMBINERS: Dict[str, Callable[[List[Any]], Any]] = {
    "latest": _latest,
    "sum": sum,
    "min": min,
    "max": max,
    "any": lambda values: any(bool(v) for v in values),
    "all": lambda values: all(bool(v) for v in values),
}


class Merge(Action):
    """Combine several input signals into ``out_one``.

    Merge settles as soon as it is activated so it never holds up its
    container, but it keeps routing every tick until the container finishes.
    ``combine="latest"`` forwards the most recently written input; the other
    combiners reduce the latest value of every input written so far.
    """

    kind = "merge"
    background = True

    def __init__(
        self,
        in_many: Sequence[int],
        out_one: int,
        combine: str = "latest",
        **common: Any,
    ) -> None:
        ids = [check_signal(self.kind, i, "in_many") for i in in_many]
        if not ids:
            raise DefinitionError(f"{self.kind}: `in_many` cannot be empty")
        self.out_one = check_signal(self.kind, out_one, "out_one")
        if not self.out_one:
            raise DefinitionError(f"{self.kind}: `out_one` cannot be 0")
        if self.out_one in ids:
            raise DefinitionError(f"{self.kind}: `out_one` cannot be one of `in_many`")
        if combine not in COMBINERS:
            raise DefinitionError(f"{self.kind}: unknown combine {combine!r}")
        self.in_many = ids
        self.combine = combine
        super().__init__(**common)

    def in_signals(self) -> Set[int]:
        return set(self.in_many)

    def out_signals(self) -> Set[int]:
        return super().out_signals() | {self.out_one}

    def update(self, ctx: "TickContext") -> None:
        changed = ctx.bus.changed(self.in_many, self.since)
        if not changed:
            return
        self.since = ctx.bus.seq
        if self.combine == "latest":
            ctx.write(self.out_one, ctx.bus.read(changed[-1]))
            return
        values = [ctx.bus.read(i) for i in self.in_many if i in ctx.bus]
        try:
            combined = COMBINERS[self.combine](values)
        except (TypeError, ValueError) as exc:
            raise ActionError(f"{self.kind}: cannot {self.combine} {values!r}: {exc}") from exc
        ctx.write(self.out_one, combined)


class Logger(Action):
    """Subscribe the recorder to ``in_mapping`` while active."""

    kind = "logger"
    background = True

    def __init__(
        self,
        group: str,
        in_mapping: Optional[Dict[int, str]] = None,
        **common: Any,
    ) -> None:
        if not group:
            raise DefinitionError(f"{self.kind}: `group` cannot be empty")
        self.group = str(group)
        self.in_mapping = signal_map(self.kind, in_mapping, "in_mapping")
        if not self.in_mapping:
            raise DefinitionError(f"{self.kind}: `in_mapping` cannot be empty")
        super().__init__(**common)

    def in_signals(self) -> Set[int]:
        return set(self.in_mapping)

    def start(self, ctx: "TickContext") -> None:
        ctx.subscribe(self.index, self.group, self.in_mapping)

    def stop(self, ctx: "TickContext") -> None:
        ctx.unsubscribe(self.index)
