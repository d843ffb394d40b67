"""Record sinks.

A sink receives ``(group, entry)`` pairs from the recorder and owns the
serialisation format. Directory sinks write one file per group.
"""

from __future__ import annotations

import json
import logging
import queue
import threading
from pathlib import Path
from typing import IO, Any, Dict, Iterator, List, Optional, Protocol

import msgpack  # type: ignore[import-untyped]
import yaml

from ...config import LogFormat

logger = logging.getLogger(__name__)

ENTRY_VERSION = 1


class RecordSink(Protocol):
    def write(self, group: str, entry: Dict[str, Any]) -> None: ...

    def close(self) -> None: ...


class MemorySink:
    """Keep entries in memory, grouped by record group."""

    def __init__(self) -> None:
        self.groups: Dict[str, List[Dict[str, Any]]] = {}
        self.closed = False

    def write(self, group: str, entry: Dict[str, Any]) -> None:
        self.groups.setdefault(group, []).append(entry)

    def close(self) -> None:
        self.closed = True

    def entries(self, group: str) -> List[Dict[str, Any]]:
        return list(self.groups.get(group, []))


class _DirectorySink:
    suffix = ""
    mode = "a"

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self._files: Dict[str, IO[Any]] = {}

    def _file(self, group: str) -> IO[Any]:
        fh = self._files.get(group)
        if fh is None:
            fh = (self.directory / f"{group}{self.suffix}").open(self.mode)
            self._files[group] = fh
        return fh

    def close(self) -> None:
        for fh in self._files.values():
            fh.close()
        self._files.clear()


class JsonLinesSink(_DirectorySink):
    """Append each entry as one JSON document per line."""

    suffix = ".jsonl"

    def write(self, group: str, entry: Dict[str, Any]) -> None:
        fh = self._file(group)
        fh.write(json.dumps(entry) + "\n")
        fh.flush()


def pack_entry(group: str, entry: Dict[str, Any]) -> bytes:
    """Return a msgpack-encoded, versioned record frame."""
    payload = {"type": "Entry", "v": ENTRY_VERSION, "group": group, **entry}
    return msgpack.packb(payload, use_bin_type=True)


def unpack_entry(msg: Dict[str, Any]) -> Dict[str, Any]:
    """Validate a decoded frame and strip its envelope."""
    if msg.get("type") != "Entry":
        raise ValueError("expected type 'Entry'")
    if "v" not in msg:
        raise ValueError("missing 'v' field")
    if msg["v"] != ENTRY_VERSION:
        raise ValueError(f"unsupported Entry version: {msg['v']}")
    msg = dict(msg)
    for key in ("type", "v", "group"):
        msg.pop(key, None)
    return msg


class MsgpackSink(_DirectorySink):
    """Append msgpack frames, one stream per group."""

    suffix = ".msgpack"
    mode = "ab"

    def write(self, group: str, entry: Dict[str, Any]) -> None:
        fh = self._file(group)
        fh.write(pack_entry(group, entry))
        fh.flush()


def read_msgpack(path: Path) -> Iterator[Dict[str, Any]]:
    """Yield the entries stored in a :class:`MsgpackSink` file."""

    with Path(path).open("rb") as fh:
        for msg in msgpack.Unpacker(fh, raw=False, strict_map_key=False):
            yield unpack_entry(msg)


class YamlSink:
    """Buffer entries and dump one YAML list per group on close."""

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self._groups: Dict[str, List[Dict[str, Any]]] = {}

    def write(self, group: str, entry: Dict[str, Any]) -> None:
        self._groups.setdefault(group, []).append(entry)

    def close(self) -> None:
        for group, entries in self._groups.items():
            with (self.directory / f"{group}.yaml").open("w") as fh:
                yaml.safe_dump(entries, fh, sort_keys=False)
        self._groups.clear()


_STOP = object()


class AsyncSink:
    """Forward entries to ``inner`` from a background thread."""

    def __init__(self, inner: RecordSink) -> None:
        self.inner = inner
        self._queue: "queue.Queue[Any]" = queue.Queue()
        self._thread = threading.Thread(target=self._run, name="record-sink", daemon=True)
        self._thread.start()

    def write(self, group: str, entry: Dict[str, Any]) -> None:
        self._queue.put((group, entry))

    def close(self) -> None:
        self._queue.put(_STOP)
        self._thread.join()
        self.inner.close()

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                return
            group, entry = item
            try:
                self.inner.write(group, entry)
            except (OSError, ValueError, TypeError):
                logger.exception("failed to write %s entry", group)


def make_sink(
    directory: Path, fmt: str = LogFormat.JSON.value, *, threaded: bool = False
) -> RecordSink:
    """Return the directory sink for ``fmt``, optionally threaded."""

    fmt = LogFormat(fmt)
    sink: RecordSink
    if fmt is LogFormat.JSON:
        sink = JsonLinesSink(directory)
    elif fmt is LogFormat.MSGPACK:
        sink = MsgpackSink(directory)
    else:
        sink = YamlSink(directory)
    return AsyncSink(sink) if threaded else sink


def read_entries(directory: Path, group: str, fmt: Optional[str] = None) -> List[Dict[str, Any]]:
    """Load the entries of ``group`` written by a directory sink."""

    directory = Path(directory)
    fmt = LogFormat(fmt or LogFormat.JSON.value)
    if fmt is LogFormat.JSON:
        with (directory / f"{group}.jsonl").open() as fh:
            return [json.loads(line) for line in fh if line.strip()]
    if fmt is LogFormat.MSGPACK:
        return list(read_msgpack(directory / f"{group}.msgpack"))
    with (directory / f"{group}.yaml").open() as fh:
        return yaml.safe_load(fh) or []
