"""Closed registry of action variants keyed by constructor name."""

from __future__ import annotations

from typing import Dict, Type

from ...errors import DefinitionError
from .base import Action, Container, State
from .containers import (
    Branch,
    Delayed,
    Horizontal,
    Par,
    Repeat,
    Seq,
    Stack,
    Switch,
    Timeout,
    Until,
    Vertical,
)
from .function import Function
from .media import Audio, Stream, Video
from .process import Process
from .routing import Logger, Merge
from .stimuli import (
    Counter,
    Fixation,
    Image,
    Instruction,
    KeyLogger,
    Pointer,
    Question,
    Reaction,
)
from .timed import Clock, Event, Nil, Timer, Wait

ACTIONS: Dict[str, Type[Action]] = {
    cls.kind: cls
    for cls in (
        Seq,
        Par,
        Stack,
        Horizontal,
        Vertical,
        Repeat,
        Until,
        Switch,
        Branch,
        Timeout,
        Delayed,
        Nil,
        Wait,
        Clock,
        Timer,
        Event,
        Merge,
        Logger,
        Instruction,
        Fixation,
        Image,
        Counter,
        KeyLogger,
        Reaction,
        Pointer,
        Question,
        Function,
        Process,
        Audio,
        Video,
        Stream,
    )
}

ALIASES = {"fn": "function", "keylogger": "key_logger"}


def lookup(name: str) -> Type[Action]:
    """Return the action class registered under ``name``."""

    key = ALIASES.get(name, name)
    try:
        return ACTIONS[key]
    except KeyError:
        raise DefinitionError(f"unknown action '{name}'") from None


__all__ = ["ACTIONS", "Action", "Container", "State", "lookup"]
