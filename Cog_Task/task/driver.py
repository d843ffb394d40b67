"""Sequence the blocks of a task and keep their output apart."""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from ..config import Config, LogFormat
from ..engine.logging.logger import MetricAggregator, log_record
from ..engine.logging.recorder import Recorder
from ..engine.logging.sinks import RecordSink, make_sink
from ..errors import ChecksumError, DefinitionError
from .block import CRASHED, INTERRUPTED, INVALID, BlockResult, BlockRunner
from .description import BlockModel, TaskModel, load_task

logger = logging.getLogger(__name__)


class TaskDriver:
    """Run blocks of ``task`` one after another.

    Each block gets a fresh tree, bus and recorder. With ``carry_state`` the
    final bus snapshot of a completed block seeds the next block's bus.

    Parameters
    ----------
    task:
        Validated task description.
    root_dir:
        Directory holding the task file and its resources.
    subject:
        Participant identifier used in output paths and block headers.
    output_root:
        Base output directory, ``Config.output_dir`` by default.
    clock_factory:
        Called once per block to create its clock; ``None`` lets the block
        runner choose.
    sink_factory:
        Called with the block output directory to create the record sink.
    """

    def __init__(
        self,
        task: TaskModel,
        *,
        root_dir: Optional[Path] = None,
        subject: str = "anonymous",
        output_root: Optional[Path] = None,
        carry_state: Optional[bool] = None,
        clock_factory: Optional[Callable[[], Any]] = None,
        sink_factory: Optional[Callable[[Path], RecordSink]] = None,
        runner_options: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.task = task
        self.root_dir = Path(root_dir) if root_dir is not None else Path.cwd()
        self.subject = subject
        self.output_root = Path(output_root or Config.output_dir)
        self.carry_state = Config.carry_state if carry_state is None else carry_state
        self.clock_factory = clock_factory
        self.sink_factory = sink_factory
        self.runner_options = dict(runner_options or {})
        self.results: List[BlockResult] = []
        self.metrics = MetricAggregator(self.output_root / "metrics.csv")
        self._carry: Dict[int, Any] = {}

    # ------------------------------------------------------------------
    def block_dir(self, block: BlockModel, when: Optional[datetime] = None) -> Path:
        """Return ``<output>/<subject>/<date>/<block>/<time>``."""

        when = when or datetime.now()
        return (
            self.output_root
            / self.subject
            / when.strftime("%Y-%m-%d")
            / block.name
            / when.strftime("%H-%M-%S-%f")
        )

    def _sink(self, block: BlockModel, directory: Path) -> RecordSink:
        if self.sink_factory is not None:
            return self.sink_factory(directory)
        cfg = self.task.block_config(block)
        fmt = LogFormat(cfg.log_format or Config.log_format)
        return make_sink(directory, fmt.value, threaded=bool(Config.async_sink))

    def run_block(self, block: BlockModel | str) -> BlockResult:
        """Run one block and return its result.

        Definition problems and unexpected exceptions are logged and turned
        into a result; ``KeyboardInterrupt`` is logged and re-raised.
        """

        if isinstance(block, str):
            try:
                block = self.task.block(block)
            except KeyError:
                raise DefinitionError(f"task has no block named '{block}'") from None
        carry = self._carry if self.carry_state else None
        runner_log = {"task": self.task.name, "block": block.name, "subject": self.subject}

        try:
            runner = BlockRunner(self.task, block, root_dir=self.root_dir, carry=carry)
            runner.build()
        except DefinitionError as exc:
            logger.error("block %s definition failed: %s", block.name, exc)
            log_record("definition", "definition_failed", value=runner_log, error=str(exc))
            result = BlockResult(block=block.name, status=INVALID, error=str(exc))
            return self._finish(result)

        directory = self.block_dir(block)
        recorder = Recorder(self._sink(block, directory))
        clock = self.clock_factory() if self.clock_factory is not None else None
        log_record("block", "block_started", value=runner_log, output=str(directory))
        try:
            result = runner.run(
                recorder,
                subject=self.subject,
                clock=clock,
                **self.runner_options,
            )
        except KeyboardInterrupt:
            log_record("block", "block_interrupted", value=runner_log)
            self._finish(BlockResult(block=block.name, status=INTERRUPTED, output_dir=directory))
            raise
        except DefinitionError as exc:
            recorder.close()
            logger.error("block %s definition failed: %s", block.name, exc)
            log_record("definition", "definition_failed", value=runner_log, error=str(exc))
            return self._finish(BlockResult(block=block.name, status=INVALID, error=str(exc)))
        except Exception as exc:  # noqa: BLE001
            logger.exception("block %s crashed", block.name)
            if not recorder.closed:
                recorder.close()
            log_record("block", "block_crashed", value=runner_log, error=repr(exc))
            return self._finish(
                BlockResult(block=block.name, status=CRASHED, error=repr(exc), output_dir=directory)
            )

        result.output_dir = directory
        log_record(
            "block",
            "block_finished",
            value=runner_log,
            status=result.status,
            ticks=result.ticks,
            duration=result.duration,
            error=result.error,
        )
        if result.ok:
            self._carry = dict(result.snapshot)
        return self._finish(result)

    def _finish(self, result: BlockResult) -> BlockResult:
        self.results.append(result)
        self.metrics.add(result.status)
        return result

    def run(
        self,
        blocks: Optional[Sequence[str]] = None,
        *,
        keep_going: bool = False,
    ) -> List[BlockResult]:
        """Run ``blocks`` (all by default) in order.

        Stops after the first block that did not complete unless
        ``keep_going`` is set. Returns the results of this call.
        """

        names: Iterable[str] = blocks if blocks is not None else self.task.block_names()
        start = len(self.results)
        try:
            for name in names:
                result = self.run_block(name)
                if not result.ok and not keep_going:
                    logger.warning("stopping after block %s (%s)", name, result.status)
                    break
        finally:
            self.metrics.flush(self.task.name)
        return self.results[start:]


def run_task(
    path: Path | str,
    *,
    subject: str = "anonymous",
    blocks: Optional[Sequence[str]] = None,
    keep_going: bool = False,
    **options: Any,
) -> List[BlockResult]:
    """Load the task at ``path`` and run it."""

    path = Path(path)
    try:
        task = load_task(path)
    except ChecksumError as exc:
        log_record("definition", "checksum_failed", value={"task": str(path)}, error=str(exc))
        raise
    root_dir = path if path.is_dir() else path.parent
    driver = TaskDriver(task, root_dir=root_dir, subject=subject, **options)
    return driver.run(blocks, keep_going=keep_going)
