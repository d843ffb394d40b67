# config.py

import os
from enum import Enum


class TimePrecision(str, Enum):
    """How containers compute the intended start of scheduled items."""

    RESPECT_INTERVALS = "respect_intervals"
    RESPECT_BOUNDARIES = "respect_boundaries"


class LogFormat(str, Enum):
    """On-disk serialisation used by the recorder sinks."""

    JSON = "json"
    YAML = "yaml"
    MSGPACK = "msgpack"


class LogWhen(str, Enum):
    """When an action's activation is written to the ``flow`` group."""

    NONE = "none"
    START = "start"
    STOP = "stop"
    START_AND_STOP = "start_and_stop"

    @property
    def on_start(self) -> bool:
        return self in (LogWhen.START, LogWhen.START_AND_STOP)

    @property
    def on_stop(self) -> bool:
        return self in (LogWhen.STOP, LogWhen.START_AND_STOP)


class Config:
    """Process-wide defaults loaded from ``input/config.json``.

    Attributes
    ----------
    output_dir:
        Root directory for recorder output and engine JSON-line logs.
    tick_rate:
        Ticks per second driven by the block runner's clock.
    max_ticks:
        Hard stop for a single block; ``0`` runs until the root is done.
    strict_signals:
        When ``True`` same-tick write conflicts are reported and outputs that
        nothing consumes fail tree construction.
    template_depth:
        Maximum nesting of template expansion before a
        :class:`~Cog_Task.errors.TemplateRecursionError` is raised.
    log_format:
        Serialisation for recorder sinks: ``"json"``, ``"yaml"`` or
        ``"msgpack"``.
    log_when:
        Default flow logging condition for actions that do not set one.
    time_precision:
        Default timing policy, ``"respect_boundaries"`` or
        ``"respect_intervals"``.
    interpreter:
        Name of the default expression interpreter used by ``function``.
    media_backend:
        Name of the media collaborator used by ``audio`` and ``video``.
    async_sink:
        Write recorder entries on a background thread.
    carry_state:
        Pass the final bus snapshot of a block to the next block's bus.
    """

    # Base directories for package resources
    base_dir = os.path.abspath(os.path.dirname(__file__))
    input_dir = os.path.join(base_dir, "input")
    config_file = os.path.join(input_dir, "config.json")
    output_root = os.path.join(base_dir, "output")
    output_dir = output_root

    @staticmethod
    def input_path(*parts: str) -> str:
        """Return absolute path under the ``input`` directory."""
        return os.path.join(Config.input_dir, *parts)

    @staticmethod
    def output_path(*parts: str) -> str:
        """Return absolute path under the current output directory."""
        return os.path.join(Config.output_dir, *parts)

    tick_rate = 60.0
    max_ticks = 0
    strict_signals = False
    template_depth = 16
    log_format = LogFormat.JSON.value
    log_when = LogWhen.START_AND_STOP.value
    time_precision = TimePrecision.RESPECT_BOUNDARIES.value
    interpreter = "python"
    media_backend = "silent"
    async_sink = True
    carry_state = False

    # Keys written to the engine JSON-line log per category
    log_files = {
        "block": {"block_log": True},
        "definition": {"definition_log": True},
    }

    @classmethod
    def is_log_enabled(cls, category: str, label: str | None = None) -> bool:
        """Return ``True`` if logging for ``category``/``label`` is enabled."""

        files = cls.log_files.get(category)
        if files is None:
            return False
        if label is None:
            return any(files.values())
        return bool(files.get(label, False))

    @classmethod
    def tick_period(cls) -> float:
        """Return the wall time between ticks in seconds."""

        return 1.0 / float(cls.tick_rate)

    @classmethod
    def load_from_file(cls, path: str) -> None:
        """Load configuration values from a JSON or YAML file.

        Only keys that already exist as attributes on ``Config`` will be
        assigned. Nested dictionaries are merged recursively when the existing
        attribute is also a ``dict``. A relative ``output_dir`` is resolved
        against the directory containing ``path``.

        Parameters
        ----------
        path:
            Path to the configuration file. ``.yaml``/``.yml`` files are read
            with PyYAML, anything else as JSON.
        """

        if not os.path.exists(path):
            raise FileNotFoundError(path)
        data = _read_mapping(path)
        cls.config_file = os.path.abspath(path)
        base_dir = os.path.dirname(cls.config_file)

        for key, value in data.items():
            if not hasattr(cls, key) or key.startswith("_"):
                continue
            if key == "output_dir" and not os.path.isabs(value):
                value = os.path.join(base_dir, value)
            current = getattr(cls, key)
            if isinstance(current, dict) and isinstance(value, dict):
                _merge_into(current, value)
            else:
                setattr(cls, key, value)


def _merge_into(target: dict, data: dict) -> None:
    for key, value in data.items():
        if isinstance(target.get(key), dict) and isinstance(value, dict):
            _merge_into(target[key], value)
        else:
            target[key] = value


def _read_mapping(path: str) -> dict:
    with open(path) as f:
        if path.endswith((".yaml", ".yml")):
            import yaml

            data = yaml.safe_load(f) or {}
        else:
            import json

            data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"configuration file {path} must contain a mapping")
    return data


def load_config(path: str | None = None) -> dict:
    """Load configuration from ``path`` and return the data."""
    if path is None:
        path = Config.input_path("config.json")
    Config.load_from_file(path)
    return _read_mapping(path)
