"""Renderer collaborator contract.

Visual leaves announce what should be on screen; drawing it is left to the
host. :class:`HeadlessRenderer` keeps the current scene in memory, which is
all a headless run or a test needs.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Protocol, Tuple

logger = logging.getLogger(__name__)


class Renderer(Protocol):
    def show(self, node: int, kind: str, payload: Dict[str, Any]) -> None: ...

    def hide(self, node: int) -> None: ...


class HeadlessRenderer:
    """Track visible items without drawing anything."""

    def __init__(self, background: str = "black") -> None:
        self.background = background
        self.visible: Dict[int, Tuple[str, Dict[str, Any]]] = {}

    def show(self, node: int, kind: str, payload: Dict[str, Any]) -> None:
        logger.debug("show %s #%d %s", kind, node, payload)
        self.visible[node] = (kind, dict(payload))

    def hide(self, node: int) -> None:
        self.visible.pop(node, None)
