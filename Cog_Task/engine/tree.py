"""Arena of action nodes addressed by stable integer indices.

Children are referenced by index, never by object, so subtrees built
elsewhere (templates) are attached by appending their nodes and shifting
their child indices by a recorded offset.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, Iterator, List, Optional, Set, Tuple

import networkx as nx

from ..errors import DefinitionError
from .actions.base import Action

logger = logging.getLogger(__name__)


class Tree:
    """Ownership tree of actions with a designated root."""

    def __init__(self) -> None:
        self.nodes: List[Optional[Action]] = []
        self.parents: List[Optional[int]] = []
        self.root: Optional[int] = None
        self.grafts: List[Tuple[int, int]] = []

    # ------------------------------------------------------------------
    def reserve(self) -> int:
        """Allocate an index to be filled later by :meth:`place`."""

        self.nodes.append(None)
        self.parents.append(None)
        return len(self.nodes) - 1

    def place(self, index: int, action: Action, children: Iterable[int] = ()) -> int:
        """Store ``action`` at ``index`` and take ownership of ``children``."""

        if self.nodes[index] is not None:
            raise DefinitionError(f"arena slot {index} is already occupied")
        children = list(children)
        for child in children:
            if child == index or self.parents[child] is not None:
                raise DefinitionError(
                    f"{action.kind}: node {child} already has an owner"
                )
        for child in children:
            self.parents[child] = index
        action.index = index
        action.children = children
        self.nodes[index] = action
        return index

    def add(self, action: Action, children: Iterable[int] = ()) -> int:
        return self.place(self.reserve(), action, children)

    def graft(self, other: "Tree") -> int:
        """Append ``other``'s nodes and return the new index of its root."""

        if other.root is None:
            raise DefinitionError("cannot graft a tree without a root")
        offset = len(self.nodes)
        for node, parent in zip(other.nodes, other.parents):
            if node is None:
                raise DefinitionError("cannot graft a tree with empty slots")
            node.shift(offset)
            self.nodes.append(node)
            self.parents.append(None if parent is None else parent + offset)
        self.grafts.append((offset, len(other.nodes)))
        return other.root + offset

    def set_root(self, index: int) -> None:
        if self.parents[index] is not None:
            raise DefinitionError(f"node {index} is owned and cannot be the root")
        self.root = index

    # ------------------------------------------------------------------
    def __getitem__(self, index: int) -> Action:
        node = self.nodes[index]
        if node is None:
            raise IndexError(f"arena slot {index} is empty")
        return node

    def __len__(self) -> int:
        return len(self.nodes)

    def walk(self, start: Optional[int] = None) -> Iterator[int]:
        """Yield indices depth first in declaration order."""

        if start is None:
            start = self.root
        if start is None:
            return
        stack = [start]
        while stack:
            index = stack.pop()
            yield index
            stack.extend(reversed(self[index].children))

    def reset(self, start: int) -> None:
        """Reset the runtime state of the subtree rooted at ``start``."""

        for index in self.walk(start):
            self[index].reset()

    # ------------------------------------------------------------------
    def bindings(self) -> Dict[int, Tuple[Set[int], Set[int]]]:
        """Return ``{index: (in, out)}`` for every reachable node."""

        return {
            i: (self[i].in_signals(), self[i].out_signals()) for i in self.walk()
        }

    def dataflow(self, initial: Iterable[int] = ()) -> nx.MultiDiGraph:
        """Build a writer -> reader graph keyed by signal id.

        Initial block state is represented by the pseudo node ``"state"``.
        """

        graph = nx.MultiDiGraph()
        order = list(self.walk())
        bindings = self.bindings()
        writers: Dict[int, List[object]] = {}
        for sid in initial:
            writers.setdefault(sid, []).append("state")
        graph.add_node("state", order=-1)
        for pos, i in enumerate(order):
            graph.add_node(i, order=pos, kind=self[i].kind)
            for sid in bindings[i][1]:
                writers.setdefault(sid, []).append(i)
        for i in order:
            for sid in bindings[i][0]:
                for w in writers.get(sid, []):
                    graph.add_edge(w, i, signal=sid)
        return graph

    def validate(
        self,
        initial: Iterable[int] = (),
        *,
        consumers: Iterable[int] = (),
        strict: bool = False,
    ) -> nx.MultiDiGraph:
        """Check structure and signal coverage before the first tick.

        Every input id must be written by some node or by the block's initial
        state. ``consumers`` are ids read outside the tree (recorded ids).
        """

        if self.root is None:
            raise DefinitionError("tree has no root")
        for i in self.walk():
            self[i].validate(self)

        initial = set(initial)
        graph = self.dataflow(initial)
        bindings = self.bindings()
        written: Set[int] = set(initial)
        read: Set[int] = set(consumers)
        for ins, outs in bindings.values():
            written |= outs
            read |= ins

        for i, (ins, _) in bindings.items():
            missing = sorted(ins - written)
            if missing:
                raise DefinitionError(
                    f"{self[i].label}: input signal(s) {missing} have no writer"
                )
            for sid in sorted(ins):
                sources = [
                    w
                    for w, _, data in graph.in_edges(i, data=True)
                    if data["signal"] == sid
                ]
                if sources and all(
                    w != "state" and graph.nodes[w]["order"] > graph.nodes[i]["order"]
                    for w in sources
                ):
                    logger.warning(
                        "%s reads signal %d before any writer in traversal order",
                        self[i].label,
                        sid,
                    )

        unused = sorted(written - read - initial)
        if unused:
            if strict:
                raise DefinitionError(f"output signal(s) {unused} are never consumed")
            logger.warning("output signal(s) %s are never consumed", unused)
        return graph
