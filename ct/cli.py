"""Console entrypoint for the ``ct`` command."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional

import yaml

from Cog_Task.engine.logging.sinks import read_entries
from Cog_Task.errors import CogTaskError, DefinitionError
from Cog_Task.task.block import BlockRunner
from Cog_Task.task.description import load_task, task_file


def _validate(path: Path) -> int:
    task = load_task(path)
    root_dir = path if path.is_dir() else path.parent
    failures = 0
    for block in task.blocks:
        try:
            tree, _ = BlockRunner(task, block, root_dir=root_dir).build()
        except DefinitionError as exc:
            failures += 1
            print(f"{block.name}: FAILED\n  {exc}")
            continue
        print(f"{block.name}: ok ({len(tree)} actions)")
    return 1 if failures else 0


def _hash(path: Path, write: bool) -> int:
    task = load_task(path, verify=False)
    digest = task.hash()
    print(digest)
    if write:
        Path(str(task_file(path)) + ".sha256").write_text(digest + "\n")
    return 0


def _records(directory: Path, group: str, fmt: str) -> int:
    entries = read_entries(directory, group, fmt)
    if fmt == "yaml":
        yaml.safe_dump(entries, sys.stdout, sort_keys=False)
    else:
        for entry in entries:
            print(json.dumps(entry))
    return 0


def main(argv: Optional[List[str]] = None) -> None:
    """Parse ``ct`` CLI arguments and dispatch to the runner."""

    parser = argparse.ArgumentParser(prog="ct")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("run", help="Run a task (see `ct run -h`)", add_help=False)
    val_p = sub.add_parser("validate", help="Build every block without running it")
    val_p.add_argument("task", help="Task file or directory")
    hash_p = sub.add_parser("hash", help="Print the SHA-256 hash of a task")
    hash_p.add_argument("task", help="Task file or directory")
    hash_p.add_argument(
        "--write", action="store_true", help="Write the hash to the checksum file"
    )
    rec_p = sub.add_parser("records", help="Print the records of one group")
    rec_p.add_argument("directory", help="Block output directory")
    rec_p.add_argument("group", help="Record group, e.g. flow or timing")
    rec_p.add_argument("--format", choices=["json", "yaml", "msgpack"], default="json")

    args, rest = parser.parse_known_args(argv)
    if args.command == "run":
        from Cog_Task.main import MainService

        sys.exit(MainService(argv=rest).run())
    if rest:
        parser.error(f"unrecognized arguments: {' '.join(rest)}")
    try:
        if args.command == "validate":
            code = _validate(Path(args.task))
        elif args.command == "hash":
            code = _hash(Path(args.task), args.write)
        else:
            code = _records(Path(args.directory), args.group, args.format)
    except CogTaskError as exc:
        print(f"error: {exc}", file=sys.stderr)
        code = 2
    sys.exit(code)


if __name__ == "__main__":
    main()
