"""Exception hierarchy shared by the tree builder, scheduler and driver."""

from __future__ import annotations


class CogTaskError(Exception):
    """Base class for all errors raised by :mod:`Cog_Task`."""


class DefinitionError(CogTaskError):
    """A task or tree description cannot be turned into a runnable block.

    Raised before any tick executes: unknown constructors, malformed fields,
    negative durations, unresolved signal names, inputs without a writer and
    unreachable actions.
    """


class TemplateRecursionError(DefinitionError):
    """Template expansion nested deeper than the configured limit."""

    def __init__(self, src: str, depth: int) -> None:
        super().__init__(
            f"template '{src}' exceeds the maximum expansion depth of {depth}"
        )
        self.src = src
        self.depth = depth


class ActionError(CogTaskError):
    """Recoverable failure raised by a leaf while the block is running.

    The scheduler converts it into a ``Done`` transition carrying the error
    instead of letting it unwind past the owning container.
    """


class EvalError(ActionError):
    """An interpreter could not evaluate an expression."""


class ResourceError(ActionError):
    """An external process, media file or collaborator is unavailable."""


class ChecksumError(CogTaskError):
    """The task description does not match its recorded SHA-256 hash."""
