"""Expression evaluation leaf.

``function`` keeps a variable scope seeded from ``vars`` and refreshed from
the signals in ``in_mapping``. It evaluates on activation (``on_start``),
whenever a mapped input changes (``on_change``) and whenever ``in_update`` is
written. The reserved variable ``self`` holds the previous result.

With ``lo_response`` set the evaluation runs on a worker thread; the result
is written to ``lo_response`` and ``out_result`` on the tick it becomes
available.
"""

from __future__ import annotations

import re
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Optional, Set

from ...config import Config
from ...errors import DefinitionError, EvalError
from ..interpreter import get_interpreter
from .base import Action, check_signal, signal_map

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from ..scheduler import TickContext
    from ..tree import Tree

VAR_NAME = re.compile(r"^[A-Za-z]\w*$")


def _read_source(kind: str, src: str) -> str:
    try:
        return Path(src).read_text()
    except OSError as exc:
        raise DefinitionError(f"{kind}: cannot read '{src}': {exc}") from None


class Function(Action):
    kind = "function"

    def __init__(
        self,
        expr: Optional[str] = None,
        src: Optional[str] = None,
        init_expr: Optional[str] = None,
        init_src: Optional[str] = None,
        vars: Optional[Dict[str, Any]] = None,
        interpreter: Optional[str] = None,
        on_start: bool = True,
        on_change: bool = True,
        once: bool = False,
        persistent: Optional[bool] = None,
        in_mapping: Optional[Dict[int, str]] = None,
        in_update: int = 0,
        lo_response: int = 0,
        out_result: int = 0,
        **common: Any,
    ) -> None:
        kind = self.kind
        if (expr is None) == (src is None):
            raise DefinitionError(f"{kind}: exactly one of `expr` and `src` must be set")
        if init_expr is not None and init_src is not None:
            raise DefinitionError(f"{kind}: only one of `init_expr` and `init_src` may be set")
        if persistent is not None and once and persistent:
            raise DefinitionError(f"{kind}: `once` and `persistent` contradict each other")

        self.in_mapping = signal_map(kind, in_mapping, "in_mapping")
        self.in_update = check_signal(kind, in_update, "in_update")
        self.lo_response = check_signal(kind, lo_response, "lo_response")
        self.out_result = check_signal(kind, out_result, "out_result")
        for var in self.in_mapping.values():
            if var == "self":
                raise DefinitionError(f"{kind}: reserved variable 'self' cannot be mapped")
            if not VAR_NAME.match(var):
                raise DefinitionError(f"{kind}: invalid variable name {var!r} in `in_mapping`")
        if self.out_result and (
            self.out_result in self.in_mapping or self.out_result == self.in_update
        ):
            raise DefinitionError(f"{kind}: recursive expression not allowed")
        if self.in_update and self.in_update in self.in_mapping:
            raise DefinitionError(f"{kind}: `in_update` cannot overlap with `in_mapping`")

        self.initial_vars: Dict[str, Any] = dict(vars or {})
        self.initial_vars.setdefault("self", None)
        for var in self.in_mapping.values():
            if var not in self.initial_vars:
                raise DefinitionError(f"{kind}: undefined variable {var!r} in `in_mapping`")

        self.interpreter = get_interpreter(interpreter or Config.interpreter)
        text = expr if expr is not None else _read_source(kind, src)
        if not text.strip():
            raise DefinitionError(f"{kind}: expression cannot be empty")
        self.code = self.interpreter.compile(text)
        init = init_expr if init_src is None else _read_source(kind, init_src)
        self.init_code = self.interpreter.compile(init) if init and init.strip() else None

        self.on_start = bool(on_start)
        self.on_change = bool(on_change)
        self.once = bool(once) if persistent is None else not persistent
        super().__init__(**common)

    def reset(self) -> None:
        super().reset()
        self.vars: Dict[str, Any] = dict(getattr(self, "initial_vars", {}))
        self.pending: Optional[Future] = None
        self._scope: Dict[str, Any] = {}
        self._executor: Optional[ThreadPoolExecutor] = None

    def in_signals(self) -> Set[int]:
        ids = set(self.in_mapping)
        if self.in_update:
            ids.add(self.in_update)
        return ids

    def out_signals(self) -> Set[int]:
        return super().out_signals() | {i for i in (self.lo_response, self.out_result) if i}

    def is_infinite(self, tree: "Tree") -> bool:
        return not self.once

    # ------------------------------------------------------------------
    def start(self, ctx: "TickContext") -> None:
        if self.init_code is not None:
            self.interpreter.evaluate(self.init_code, self.vars)
        for sid, var in self.in_mapping.items():
            if sid in ctx.bus:
                self.vars[var] = ctx.bus.read(sid)
        if self.on_start:
            self.evaluate(ctx)

    def update(self, ctx: "TickContext") -> None:
        if self.pending is not None:
            self.poll(ctx)
            return
        changed = ctx.bus.changed(self.in_signals(), self.since)
        if not changed:
            return
        self.since = ctx.bus.seq
        mapped = False
        for sid in changed:
            var = self.in_mapping.get(sid)
            if var is not None:
                self.vars[var] = ctx.bus.read(sid)
                mapped = True
        if (mapped and self.on_change) or self.in_update in changed:
            self.evaluate(ctx)

    def stop(self, ctx: "TickContext") -> None:
        if self._executor is not None:
            if self.pending is not None:
                self.pending.cancel()
            self._executor.shutdown(wait=False)
            self._executor = None
        self.pending = None

    # ------------------------------------------------------------------
    def evaluate(self, ctx: "TickContext") -> None:
        if self.lo_response:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=1, thread_name_prefix=f"function-{self.index}"
                )
            scope = dict(self.vars)
            self.pending = self._executor.submit(
                self.interpreter.evaluate, self.code, scope
            )
            self._scope = scope
            self.poll(ctx)
            return
        self.respond(ctx, self.interpreter.evaluate(self.code, self.vars))

    def poll(self, ctx: "TickContext") -> None:
        future = self.pending
        if future is None or not future.done():
            return
        self.pending = None
        exc = future.exception()
        if exc is not None:
            if isinstance(exc, EvalError):
                raise exc
            raise EvalError(f"{type(exc).__name__}: {exc}") from exc
        self.vars.update(self._scope)
        result = future.result()
        if result is not None:
            ctx.write(self.lo_response, result)
        self.respond(ctx, result)

    def respond(self, ctx: "TickContext", result: Any) -> None:
        self.vars["self"] = result
        if result is not None:
            if self.name:
                ctx.record("math", self.name, result)
            ctx.write(self.out_result, result)
        if self.once:
            ctx.finish(self)
