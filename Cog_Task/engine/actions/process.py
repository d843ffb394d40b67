"""External program leaf.

The child process receives its inputs on stdin as::

    with <N>
    <name> <value>        (N lines; value is nil, true, false, i64 x, f64 x or str s)
    go

and answers with one line per result: ``nil``, ``true``, ``false``,
``i64 <x>``, ``f64 <x>``, ``str <s>``, ``err <message>`` or ``end``. A reader
thread parses stdout into a mailbox that the action drains once per tick, so
the tick loop never waits on the pipe unless ``blocking_wait`` opts into it.
"""

from __future__ import annotations

import logging
import subprocess
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence, Set, Tuple

from ...errors import ActionError, DefinitionError, ResourceError
from ..mailbox import Mailbox, Worker
from .base import Action, State, check_duration, check_signal, signal_map
from .function import VAR_NAME

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from ..scheduler import TickContext
    from ..tree import Tree

logger = logging.getLogger(__name__)

RESPONSE_TYPES = ("value", "raw", "raw_all")

Response = Tuple[str, Any]  # ("result" | "error" | "end" | "exit", payload)


def encode_value(value: Any) -> str:
    if value is None:
        return "nil"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return f"i64 {value}"
    if isinstance(value, float):
        return f"f64 {value!r}"
    if isinstance(value, str):
        return "str " + value.replace("\n", "\\n")
    raise ActionError(f"cannot send value {value!r} to a child process")


def encode_request(variables: Dict[str, Any]) -> str:
    """Return the stdin block for one evaluation request."""

    lines: List[str] = []
    if variables:
        lines.append(f"with {len(variables)}")
        for name, value in variables.items():
            lines.append(f"{name} {encode_value(value)}")
    lines.append("go")
    return "\n".join(lines) + "\n"


def parse_response(line: str) -> Response:
    """Decode one typed response line."""

    line = line.rstrip("\n")
    typ, _, value = line.partition(" ")
    if typ == "nil":
        return ("result", None)
    if typ == "true":
        return ("result", True)
    if typ == "false":
        return ("result", False)
    if typ == "i64":
        try:
            return ("result", int(value))
        except ValueError:
            return ("error", f"malformed i64 response {value!r}")
    if typ == "f64":
        try:
            return ("result", float(value))
        except ValueError:
            return ("error", f"malformed f64 response {value!r}")
    if typ == "str":
        return ("result", value.replace("\\n", "\n"))
    if typ == "err":
        return ("error", value.replace("\\n", "\n"))
    if typ == "end":
        return ("end", None)
    return ("error", f"unknown response type {typ!r}")


class Process(Action):
    """Run an external program and exchange values with it.

    Parameters
    ----------
    src:
        Executable to launch; ``args`` are appended to the command line.
    passive:
        Never send requests, only read what the program prints.
    response_type:
        ``"value"`` parses typed lines, ``"raw"`` forwards each line as text
        and ``"raw_all"`` collects the whole output into one text value.
    blocking:
        Hold back further requests until the previous one was answered.
    blocking_wait:
        Seconds the tick may wait for an answer right after a request. A
        non-zero value trades dropped frames for same-tick results.
    drop_early:
        Keep only the newest of several answers waiting in the mailbox;
        otherwise answers are consumed one per tick in arrival order.
    lo_incoming:
        Signal bumped with the number of answers consumed so far.
    """

    kind = "process"

    def __init__(
        self,
        src: str,
        args: Sequence[str] = (),
        passive: bool = False,
        response_type: str = "value",
        vars: Optional[Dict[str, Any]] = None,
        on_start: bool = True,
        on_change: bool = True,
        once: bool = False,
        blocking: bool = True,
        blocking_wait: float = 0.0,
        drop_early: bool = False,
        in_mapping: Optional[Dict[int, str]] = None,
        in_update: int = 0,
        lo_incoming: int = 0,
        out_result: int = 0,
        **common: Any,
    ) -> None:
        kind = self.kind
        if not src:
            raise DefinitionError(f"{kind}: `src` cannot be empty")
        if response_type not in RESPONSE_TYPES:
            raise DefinitionError(f"{kind}: unknown response_type {response_type!r}")
        self.lo_incoming = check_signal(kind, lo_incoming, "lo_incoming")
        if not self.lo_incoming:
            raise DefinitionError(f"{kind}: `lo_incoming` cannot be 0")
        self.in_mapping = signal_map(kind, in_mapping, "in_mapping")
        self.vars_init: Dict[str, Any] = dict(vars or {})
        if passive and (self.in_mapping or self.vars_init):
            raise DefinitionError(f"{kind}: a passive process takes no `vars` or `in_mapping`")
        if drop_early and response_type == "raw_all":
            raise DefinitionError(f"{kind}: `drop_early` cannot be used with raw_all")
        for var in list(self.vars_init) + list(self.in_mapping.values()):
            if not VAR_NAME.match(var):
                raise DefinitionError(f"{kind}: invalid variable name {var!r}")
        for var in self.in_mapping.values():
            if var not in self.vars_init:
                raise DefinitionError(f"{kind}: undefined variable {var!r} in `in_mapping`")

        self.command = [str(src), *[str(a) for a in args]]
        self.passive = bool(passive)
        self.response_type = response_type
        self.on_start = bool(on_start)
        self.on_change = bool(on_change)
        self.once = bool(once) or response_type == "raw_all"
        self.blocking = bool(blocking)
        self.blocking_wait = check_duration(kind, blocking_wait, "blocking_wait")
        self.drop_early = bool(drop_early)
        self.in_update = check_signal(kind, in_update, "in_update")
        self.out_result = check_signal(kind, out_result, "out_result")
        super().__init__(**common)

    def reset(self) -> None:
        super().reset()
        self.vars: Dict[str, Any] = dict(getattr(self, "vars_init", {}))
        self.proc: Optional[subprocess.Popen] = None
        self.reader: Optional[Worker] = None
        self.awaiting = False
        self.dirty = False
        self.received = 0

    def in_signals(self) -> Set[int]:
        ids = set(self.in_mapping)
        if self.in_update:
            ids.add(self.in_update)
        return ids

    def out_signals(self) -> Set[int]:
        out = super().out_signals() | {self.lo_incoming}
        if self.out_result:
            out.add(self.out_result)
        return out

    def is_infinite(self, tree: "Tree") -> bool:
        return not self.once

    # ------------------------------------------------------------------
    def start(self, ctx: "TickContext") -> None:
        try:
            self.proc = subprocess.Popen(
                self.command,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                text=True,
                bufsize=1,
            )
        except OSError as exc:
            raise ResourceError(f"cannot launch {self.command[0]}: {exc}") from exc
        logger.debug("%s launched pid %s", self.label, self.proc.pid)
        self.reader = Worker(self._read, name=f"process-{self.index}")
        self.reader.start()
        for sid, var in self.in_mapping.items():
            if sid in ctx.bus:
                self.vars[var] = ctx.bus.read(sid)
        if self.on_start:
            self.request(ctx)

    def update(self, ctx: "TickContext") -> None:
        changed = ctx.bus.changed(self.in_signals(), self.since)
        if changed:
            self.since = ctx.bus.seq
            mapped = False
            for sid in changed:
                var = self.in_mapping.get(sid)
                if var is not None:
                    self.vars[var] = ctx.bus.read(sid)
                    mapped = True
            if (mapped and self.on_change) or self.in_update in changed:
                self.dirty = True
        self.consume(ctx)
        if self.dirty and not (self.blocking and self.awaiting):
            self.request(ctx)

    def stop(self, ctx: "TickContext") -> None:
        proc, self.proc = self.proc, None
        if proc is None:
            return
        try:
            if proc.stdin is not None:
                proc.stdin.close()
        except OSError:
            pass
        if proc.poll() is None:
            proc.kill()
        proc.wait(timeout=5)
        if self.reader is not None:
            self.reader.join(timeout=1.0)
            self.reader = None
        if proc.stdout is not None:
            proc.stdout.close()

    # ------------------------------------------------------------------
    def request(self, ctx: "TickContext") -> None:
        self.dirty = False
        if not self.passive:
            if self.proc is None or self.proc.stdin is None:
                raise ResourceError(f"{self.label}: child process is not running")
            try:
                self.proc.stdin.write(encode_request(self.vars))
                self.proc.stdin.flush()
            except (BrokenPipeError, OSError) as exc:
                raise ResourceError(f"{self.label}: child process closed its input") from exc
        self.awaiting = True
        if self.blocking_wait and self.reader is not None:
            first = self.reader.mailbox.wait(self.blocking_wait)
            if first is not None:
                self.handle(ctx, first)
                return
        self.consume(ctx)

    def consume(self, ctx: "TickContext") -> None:
        if self.reader is None or self.state is not State.ACTIVE:
            return
        mailbox: Mailbox = self.reader.mailbox
        if self.drop_early:
            items = mailbox.drain()
            results = [r for r in items if r[0] == "result"]
            final = [r for r in items if r[0] != "result"]
            for item in results[-1:] + final[:1]:
                self.handle(ctx, item)
                if self.state is not State.ACTIVE:
                    return
            return
        item = mailbox.poll()
        if item is not None:
            self.handle(ctx, item)

    def handle(self, ctx: "TickContext", item: Response) -> None:
        kind, payload = item
        self.awaiting = False
        if kind == "error":
            raise ActionError(f"{self.label}: child process reported: {payload}")
        if kind == "exit":
            if self.response_type == "value":
                raise ResourceError(f"{self.label}: child process exited unexpectedly")
            ctx.finish(self)
            return
        if kind == "end":
            ctx.finish(self)
            return
        self.received += 1
        if payload is not None:
            if self.name:
                ctx.record("process", self.name, payload)
            ctx.write(self.out_result, payload)
        ctx.write(self.lo_incoming, self.received)
        if self.once:
            ctx.finish(self)

    def _read(self, mailbox: Mailbox) -> None:
        proc = self.proc
        if proc is None or proc.stdout is None:
            return
        stdout = proc.stdout
        if self.response_type == "raw_all":
            mailbox.put(("result", stdout.read()))
            return
        for line in stdout:
            if self.response_type == "raw":
                mailbox.put(("result", line.rstrip("\n")))
                continue
            response = parse_response(line)
            mailbox.put(response)
            if response[0] in ("end", "error"):
                return
        mailbox.put(("exit", proc.poll()))
