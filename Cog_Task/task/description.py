"""Pydantic models for task description files.

A task file is YAML or JSON::

    name: Stroop
    version: "1.0"
    config: {time_precision: respect_boundaries}
    blocks:
      - name: Practice
        signals: {tic: 1, count: 2}
        state: {2: 0}
        tree: "seq([wait(0.5), timeout(0.5, fixation)])"
"""

from __future__ import annotations

import hashlib
import json
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from ..config import Config, LogFormat, LogWhen, TimePrecision
from ..errors import ChecksumError, DefinitionError

BLOCK_NAME = re.compile(r"^[A-Za-z0-9+\-_ ]+$")


def canonical_hash(data: Any) -> str:
    """Return the SHA-256 hex digest of ``data`` as canonical JSON."""

    text = json.dumps(data, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


class BlockConfig(BaseModel):
    """Settings shared by the task and overridable per block.

    ``None`` means unset; :meth:`fill_blanks` takes the value from a parent
    config and :meth:`resolved` falls back to :class:`~Cog_Task.config.Config`.
    """

    model_config = ConfigDict(extra="forbid")

    time_precision: Optional[TimePrecision] = None
    background: Optional[str] = None
    use_trigger: Optional[bool] = None
    verify_sha2: Optional[Union[bool, str]] = None
    blocks_per_row: Optional[int] = Field(default=None, ge=1)
    volume: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    interpreter: Optional[str] = None
    media_backend: Optional[str] = None
    log_format: Optional[LogFormat] = None
    log_when: Optional[LogWhen] = None
    strict_signals: Optional[bool] = None
    record: Optional[List[int]] = None

    def fill_blanks(self, parent: "BlockConfig") -> "BlockConfig":
        """Return a copy with unset fields taken from ``parent``."""

        data = parent.model_dump()
        data.update({k: v for k, v in self.model_dump().items() if v is not None})
        return BlockConfig(**data)

    def resolved(self) -> "BlockConfig":
        """Return a copy with every field set, using process defaults."""

        defaults = BlockConfig(
            time_precision=TimePrecision(Config.time_precision),
            background="transparent",
            use_trigger=True,
            verify_sha2=False,
            blocks_per_row=3,
            volume=0.5,
            interpreter=Config.interpreter,
            media_backend=Config.media_backend,
            log_format=LogFormat(Config.log_format),
            log_when=LogWhen(Config.log_when),
            strict_signals=bool(Config.strict_signals),
            record=[],
        )
        return self.fill_blanks(defaults)


class BlockModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str
    config: BlockConfig = Field(default_factory=BlockConfig)
    state: Dict[int, Any] = Field(default_factory=dict)
    signals: Dict[str, int] = Field(default_factory=dict)
    tree: Union[str, Dict[str, Any]]

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("block name cannot be empty")
        if not BLOCK_NAME.match(value):
            raise ValueError(
                f"invalid block name {value!r}: only alphanumerics and '+-_ ' are allowed"
            )
        return value

    @field_validator("config")
    @classmethod
    def _check_config(cls, value: BlockConfig) -> BlockConfig:
        if value.verify_sha2 is not None:
            raise ValueError("verify_sha2 can only be set in the task config")
        return value

    @field_validator("signals")
    @classmethod
    def _check_signals(cls, value: Dict[str, int]) -> Dict[str, int]:
        for name, sid in value.items():
            if sid < 1:
                raise ValueError(f"signal {name!r} must map to an id >= 1, got {sid}")
        return value

    @field_validator("state")
    @classmethod
    def _check_state(cls, value: Dict[int, Any]) -> Dict[int, Any]:
        for sid, item in value.items():
            if sid < 1:
                raise ValueError(f"initial state id must be >= 1, got {sid}")
            if not isinstance(item, (bool, int, float, str)):
                raise ValueError(f"initial state {sid} has unsupported value {item!r}")
        return value

    def hash(self) -> str:
        return canonical_hash(self.model_dump(mode="json"))


class TaskModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str
    version: str = ""
    description: str = ""
    config: BlockConfig = Field(default_factory=BlockConfig)
    blocks: List[BlockModel]

    @field_validator("version", mode="before")
    @classmethod
    def _version_text(cls, value: Any) -> str:
        return "" if value is None else str(value)

    @model_validator(mode="after")
    def _unique_blocks(self) -> "TaskModel":
        if not self.blocks:
            raise ValueError("a task needs at least one block")
        seen = set()
        for block in self.blocks:
            if block.name in seen:
                raise ValueError(f"block names have to be unique ('{block.name}' is repeated)")
            seen.add(block.name)
        return self

    # ------------------------------------------------------------------
    def hash(self) -> str:
        """Hash over the block hashes, in order."""
        return canonical_hash([b.hash() for b in self.blocks])

    def block(self, name: str) -> BlockModel:
        for block in self.blocks:
            if block.name == name:
                return block
        raise KeyError(name)

    def block_names(self) -> List[str]:
        return [b.name for b in self.blocks]

    def block_config(self, block: BlockModel) -> BlockConfig:
        return block.config.fill_blanks(self.config).resolved()

    def verify_checksum(self, path: Optional[Path] = None) -> None:
        """Compare :meth:`hash` with the checksum recorded in ``verify_sha2``.

        ``verify_sha2: true`` reads the checksum from ``<task file>.sha256``.
        """

        expected = self.config.verify_sha2
        if not expected:
            return
        if expected is True:
            if path is None:
                raise ChecksumError("verify_sha2 is set but the task file location is unknown")
            sidecar = Path(str(path) + ".sha256")
            try:
                expected = sidecar.read_text().split()[0]
            except (OSError, IndexError) as exc:
                raise ChecksumError(f"cannot read checksum file {sidecar}") from exc
        current = self.hash()
        if current != expected:
            raise ChecksumError(
                "checksum of this task does not match the one on file\n"
                f"current: {current}\non file: {expected}"
            )


def _read(path: Path) -> Dict[str, Any]:
    with path.open() as fh:
        if path.suffix in (".yaml", ".yml"):
            data = yaml.safe_load(fh)
        else:
            data = json.load(fh)
    if not isinstance(data, dict):
        raise DefinitionError(f"task file {path} must contain a mapping")
    return data


def task_file(path: Union[str, Path]) -> Path:
    """Return the task file for ``path``, looking inside directories."""

    path = Path(path)
    if not path.is_dir():
        return path
    for candidate in ("task.yaml", "task.yml", "task.json"):
        if (path / candidate).exists():
            return path / candidate
    raise DefinitionError(f"no task file found in {path}")


def parse_task(data: Dict[str, Any]) -> TaskModel:
    try:
        return TaskModel.model_validate(data)
    except ValidationError as exc:
        raise DefinitionError(f"invalid task description:\n{exc}") from exc


def load_task(path: Union[str, Path], *, verify: bool = True) -> TaskModel:
    """Load and validate the task file at ``path``.

    ``path`` may be a directory holding ``task.yaml``, ``task.yml`` or
    ``task.json``. An empty description is read from ``description.txt``
    beside the task file when present.
    """

    path = task_file(path)
    try:
        data = _read(path)
    except (OSError, yaml.YAMLError, json.JSONDecodeError) as exc:
        raise DefinitionError(f"failed to read task description file {path}: {exc}") from exc
    task = parse_task(data)
    if not task.description:
        extra = path.parent / "description.txt"
        if extra.exists():
            task.description = extra.read_text()
    if verify:
        task.verify_checksum(path)
    return task
