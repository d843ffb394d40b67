"""Common machinery for action variants.

An action is configured once by the tree builder and then driven by the
scheduler through three hooks: :meth:`Action.start` on activation,
:meth:`Action.update` once per tick while active and :meth:`Action.stop` when
it finishes or is cancelled. Containers never call their children directly;
they ask the tick context to activate, cancel or reset child indices.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Set, Tuple

from ...config import LogWhen
from ...errors import DefinitionError

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from ..scheduler import TickContext
    from ..tree import Tree


class State(Enum):
    PENDING = "pending"
    ACTIVE = "active"
    DONE = "done"


def check_duration(kind: str, value: Any, field: str = "duration") -> float:
    """Return ``value`` as a non-negative float or raise ``DefinitionError``."""

    try:
        seconds = float(value)
    except (TypeError, ValueError):
        raise DefinitionError(f"{kind}: `{field}` must be a number, got {value!r}")
    if seconds < 0:
        raise DefinitionError(f"{kind}: `{field}` cannot be negative ({seconds})")
    return seconds


def check_signal(kind: str, value: Any, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise DefinitionError(f"{kind}: `{field}` must be a signal id, got {value!r}")
    return value


class Action:
    """Base class of every node in the tree arena."""

    kind = "action"
    #: Constructor fields holding child actions, in declaration order.
    CHILDREN: Tuple[str, ...] = ()
    #: Settles on activation so containers do not wait for it.
    background = False
    container = False

    def __init__(
        self,
        *,
        name: Optional[str] = None,
        log_when: Optional[str] = None,
        out_error: int = 0,
    ) -> None:
        self.name = name
        try:
            self.log_when = LogWhen(log_when) if log_when is not None else None
        except ValueError:
            raise DefinitionError(f"{self.kind}: unknown log_when {log_when!r}")
        self.out_error = check_signal(self.kind, out_error, "out_error")
        self.index = -1
        self.children: List[int] = []
        self.reset()

    def reset(self) -> None:
        """Return the runtime state to ``Pending``."""

        self.state = State.PENDING
        self.anchor = 0.0
        self.started_at: Optional[float] = None
        self.finished_at: Optional[float] = None
        self.error: Optional[str] = None
        self.cancelled = False
        self.last_tick = -1
        self.since = 0

    # ------------------------------------------------------------------
    def in_signals(self) -> Set[int]:
        """Signal ids this action reads."""
        return set()

    def out_signals(self) -> Set[int]:
        """Signal ids this action writes."""
        return {self.out_error} if self.out_error else set()

    def is_infinite(self, tree: "Tree") -> bool:
        """Whether the action can only end by being cancelled."""
        return False

    def validate(self, tree: "Tree") -> None:
        """Structural checks that need the rest of the tree."""

    def shift(self, offset: int) -> None:
        """Move this node and its child references by ``offset`` arena slots."""

        self.index += offset
        self.children = [c + offset for c in self.children]

    @property
    def settled(self) -> bool:
        """``True`` once the owning container may stop waiting for this node."""

        if self.state is State.DONE:
            return True
        return self.background and self.state is State.ACTIVE

    @property
    def label(self) -> str:
        return self.name or f"{self.kind}#{self.index}"

    # ------------------------------------------------------------------
    def start(self, ctx: "TickContext") -> None:
        """Called once on activation, before the first update."""

    def update(self, ctx: "TickContext") -> None:
        """Called once per tick while active."""

    def stop(self, ctx: "TickContext") -> None:
        """Release resources; called on completion and on cancellation."""

    def __repr__(self) -> str:  # pragma: no cover - debugging aid
        return f"<{type(self).__name__} #{self.index} {self.state.value}>"


class Container(Action):
    """Action owning an ordered list of child indices.

    ``on_error`` selects what happens when a child finishes with an error:
    ``"continue"`` treats it as a normal completion while ``"escalate"``
    finishes this container with the same error.
    """

    container = True

    def __init__(self, *, on_error: str = "continue", **common: Any) -> None:
        super().__init__(**common)
        if on_error not in ("continue", "escalate"):
            raise DefinitionError(f"{self.kind}: unknown on_error {on_error!r}")
        self.on_error = on_error

    def escalated(self, ctx: "TickContext", indices: Iterable[int]) -> bool:
        """Finish with a child's error if escalation applies."""

        if self.on_error != "escalate":
            return False
        for i in indices:
            child = ctx.node(i)
            if child.state is State.DONE and child.error and not child.cancelled:
                ctx.finish(self, error=child.error)
                return True
        return False


def signal_map(kind: str, mapping: Optional[Dict[Any, Any]], field: str) -> Dict[int, str]:
    """Validate an ``{id: name}`` mapping."""

    if mapping is None:
        return {}
    if not isinstance(mapping, dict):
        raise DefinitionError(f"{kind}: `{field}` must be a mapping of id to name")
    out: Dict[int, str] = {}
    for sid, name in mapping.items():
        out[check_signal(kind, sid, field)] = str(name)
    return out
