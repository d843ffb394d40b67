# main.py

"""Entry point for running a task headlessly from the command line."""

from __future__ import annotations

import argparse
import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from Cog_Task.config import Config, _read_mapping

# Internal Config attributes that should not be exposed as CLI flags
_PRIVATE_KEYS = {
    "base_dir",
    "input_dir",
    "config_file",
    "output_root",
    "output_dir",
    "log_files",
}


def _configure_logging(level: int = logging.INFO) -> None:
    """Configure application logging and capture uncaught exceptions."""

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    def _log_excepthook(exc_type, exc, tb) -> None:
        logging.getLogger(__name__).exception(
            "Uncaught exception", exc_info=(exc_type, exc, tb)
        )

    sys.excepthook = _log_excepthook


def _add_config_args(
    parser: argparse.ArgumentParser, data: dict[str, Any], prefix: str = ""
) -> None:
    """Recursively add CLI flags based on ``data`` keys."""
    for key, value in data.items():
        if key in _PRIVATE_KEYS:
            continue
        arg_name = f"--{prefix}{key}"
        names = [arg_name] if "_" not in key else [arg_name, arg_name.replace("_", "-")]
        dest = f"{prefix}{key}".replace(".", "_")
        if isinstance(value, dict):
            _add_config_args(parser, value, prefix=f"{prefix}{key}.")
            continue
        if isinstance(value, bool):
            parser.add_argument(*names, type=lambda x: x.lower() == "true", dest=dest)
        else:
            parser.add_argument(*names, type=type(value), dest=dest)


def _config_defaults() -> dict[str, Any]:
    """Return a dictionary of all attributes defined on :class:`Config`."""
    defaults: dict[str, Any] = {}
    for key, value in Config.__dict__.items():
        if key.startswith("_") or callable(value) or key in _PRIVATE_KEYS:
            continue
        if isinstance(value, (classmethod, staticmethod)):
            continue
        defaults[key] = value
    return defaults


def _merge_configs(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge ``override`` into ``base`` returning a new dict."""
    result: dict[str, Any] = {}
    keys = set(base) | set(override)
    for key in keys:
        if isinstance(base.get(key), dict) and isinstance(override.get(key), dict):
            result[key] = _merge_configs(base[key], override[key])
        elif key in override:
            result[key] = override[key]
        else:
            result[key] = base[key]
    return result


def _apply_overrides(args: argparse.Namespace, data: dict[str, Any]) -> None:
    """Apply CLI overrides back onto :class:`Config`."""
    for key in data:
        override = getattr(args, key, None)
        if override is not None and hasattr(Config, key):
            setattr(Config, key, override)


@dataclass
class MainService:
    """Handle CLI parsing and run the requested task."""

    argv: list[str] | None = None

    def run(self) -> int:
        args, cfg = self._parse_args()
        _configure_logging(logging.DEBUG if args.verbose else logging.INFO)
        _apply_overrides(args, cfg)
        if args.output:
            Config.output_dir = os.path.abspath(args.output)
        self._apply_log_overrides(args)
        return self._run_task(args)

    # ------------------------------------------------------------------
    @staticmethod
    def _apply_log_overrides(args: argparse.Namespace) -> None:
        """Update :class:`Config.log_files` based on CLI flags."""

        for flag, enabled in ((args.enable_logs, True), (args.disable_logs, False)):
            for label in flag.split(","):
                label = label.strip()
                if label:
                    category = label.rsplit("_", 1)[0]
                    Config.log_files.setdefault(category, {})[label] = enabled

    # ------------------------------------------------------------------
    def _parse_args(self) -> tuple[argparse.Namespace, dict[str, Any]]:
        initial = argparse.ArgumentParser(add_help=False)
        initial.add_argument(
            "--config",
            default=Config.input_path("config.json"),
            help="Path to JSON or YAML configuration file",
        )
        known, _ = initial.parse_known_args(self.argv)

        config_data: dict[str, Any] = {}
        if known.config and os.path.exists(known.config):
            config_data = _read_mapping(known.config)
            Config.load_from_file(known.config)

        parser = argparse.ArgumentParser(
            parents=[initial], description="Run a Cog Task description"
        )
        parser.add_argument("task", help="Task file or directory holding task.yaml")
        defaults = _merge_configs(_config_defaults(), config_data)
        _add_config_args(parser, defaults)
        parser.add_argument("--subject", default="anonymous", help="Participant id")
        parser.add_argument(
            "--block",
            action="append",
            dest="blocks",
            help="Block to run; repeat for several (default: all blocks)",
        )
        parser.add_argument("--output", default=None, help="Output directory")
        parser.add_argument(
            "--keep-going",
            action="store_true",
            help="Continue with the next block after a failed block",
        )
        parser.add_argument(
            "--realtime",
            action="store_true",
            help="Pace ticks with the wall clock instead of a simulated clock",
        )
        parser.add_argument(
            "--enable-logs", default="", help="Comma-separated log labels to enable"
        )
        parser.add_argument(
            "--disable-logs", default="", help="Comma-separated log labels to disable"
        )
        parser.add_argument("-v", "--verbose", action="store_true")
        args = parser.parse_args(self.argv)
        return args, defaults

    # ------------------------------------------------------------------
    @staticmethod
    def _run_task(args: argparse.Namespace) -> int:
        from Cog_Task.engine.clock import ManualClock, MonotonicClock
        from Cog_Task.errors import CogTaskError
        from Cog_Task.task.driver import run_task

        rate = float(Config.tick_rate)
        if args.realtime:
            factory = lambda: MonotonicClock(rate)  # noqa: E731
        else:
            factory = lambda: ManualClock(Config.tick_period())  # noqa: E731
        log = logging.getLogger(__name__)
        try:
            results = run_task(
                Path(args.task),
                subject=args.subject,
                blocks=args.blocks,
                keep_going=args.keep_going,
                clock_factory=factory,
                runner_options={"max_ticks": int(Config.max_ticks), "tick_rate": rate},
            )
        except CogTaskError as exc:
            log.error("%s", exc)
            return 2
        except KeyboardInterrupt:
            log.warning("interrupted")
            return 130
        for result in results:
            log.info(
                "%s: %s (%d ticks, %.3fs)",
                result.block,
                result.status,
                result.ticks,
                result.duration,
            )
        return 0 if results and all(r.ok for r in results) else 1


def main() -> None:
    sys.exit(MainService().run())


if __name__ == "__main__":
    main()
