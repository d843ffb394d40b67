"""Run a single block: build its tree and bus, tick to completion, record."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Tuple

from ..config import LogWhen
from ..engine.actions import State
from ..engine.clock import ManualClock, MonotonicClock
from ..engine.logging.models import BlockInfo, BlockOutcome
from ..engine.logging.recorder import Recorder
from ..engine.media import MediaBackend, get_backend
from ..engine.render import HeadlessRenderer, Renderer
from ..engine.scheduler import InputEvent, Scheduler
from ..engine.signals import BusSnapshot, SignalBus
from ..engine.tree import Tree
from ..errors import DefinitionError, ResourceError
from .builder import TreeBuilder
from .description import BlockConfig, BlockModel, TaskModel

logger = logging.getLogger(__name__)

COMPLETED = "completed"
FAILED = "failed"
ABORTED = "aborted"
INTERRUPTED = "interrupted"
INVALID = "invalid"
CRASHED = "crashed"


@dataclass
class BlockResult:
    """Outcome of one block run."""

    block: str
    status: str
    ticks: int = 0
    duration: float = 0.0
    error: Optional[str] = None
    snapshot: BusSnapshot = field(default_factory=BusSnapshot)
    timing: Dict[str, float] = field(default_factory=dict)
    output_dir: Optional[Path] = None

    @property
    def ok(self) -> bool:
        return self.status == COMPLETED


class BlockRunner:
    """Build and run one block of ``task``.

    Parameters
    ----------
    task:
        Task the block belongs to; supplies the inherited configuration.
    block:
        Block description.
    root_dir:
        Directory that relative resource paths are resolved against.
    carry:
        Final bus values of a previous block, written before ``block.state``.
    """

    def __init__(
        self,
        task: TaskModel,
        block: BlockModel,
        *,
        root_dir: Optional[Path] = None,
        carry: Optional[Mapping[int, Any]] = None,
    ) -> None:
        self.task = task
        self.block = block
        self.root_dir = Path(root_dir) if root_dir is not None else Path.cwd()
        self.config: BlockConfig = task.block_config(block)
        self.initial: Dict[int, Any] = {**dict(carry or {}), **block.state}
        self.prepared: Optional[Tuple[Tree, SignalBus]] = None

    def build(self) -> Tuple[Tree, SignalBus]:
        """Return a validated tree and a fresh bus holding the initial state.

        The pair is kept for the next :meth:`run`, which builds again otherwise.
        """

        cfg = self.config
        builder = TreeBuilder(
            self.block.signals,
            root_dir=self.root_dir,
            defaults={"interpreter": cfg.interpreter},
        )
        tree = builder.build(self.block.tree)
        tree.validate(self.initial, consumers=cfg.record or (), strict=bool(cfg.strict_signals))
        bus = SignalBus(self.initial, strict=bool(cfg.strict_signals))
        self.prepared = (tree, bus)
        return tree, bus

    def info(self, subject: str, correlation_id: Optional[str] = None) -> BlockInfo:
        return BlockInfo(
            subject=subject,
            task=self.task.name,
            task_version=self.task.version,
            task_hash=self.task.hash(),
            block=self.block.name,
            block_hash=self.block.hash(),
            config=self.config.model_dump(mode="json"),
            state=self.initial,
            correlation_id=correlation_id,
        )

    def run(
        self,
        recorder: Optional[Recorder] = None,
        *,
        subject: str = "anonymous",
        clock: Any = None,
        renderer: Optional[Renderer] = None,
        media: Optional[MediaBackend] = None,
        poll: Optional[Callable[[], Iterable[InputEvent]]] = None,
        max_ticks: int = 0,
        tick_rate: float = 60.0,
    ) -> BlockResult:
        """Tick the block until its root is done.

        Raises :class:`~Cog_Task.errors.DefinitionError` before the first
        tick when the tree cannot be built. ``KeyboardInterrupt`` aborts the
        block, records the outcome and is re-raised.
        """

        cfg = self.config
        tree, bus = self.prepared or self.build()
        self.prepared = None
        recorder = recorder if recorder is not None else Recorder()
        if media is None:
            try:
                media = get_backend(cfg.media_backend or "silent")
            except ResourceError as exc:
                raise DefinitionError(str(exc)) from exc
        if clock is None:
            clock = MonotonicClock(tick_rate) if poll is not None else ManualClock(1.0 / tick_rate)

        sched = Scheduler(
            tree,
            bus,
            precision=cfg.time_precision,
            recorder=recorder,
            renderer=renderer if renderer is not None else HeadlessRenderer(cfg.background or "black"),
            media=media,
            volume=float(cfg.volume if cfg.volume is not None else 0.5),
            use_trigger=cfg.use_trigger is not False,
            log_when=cfg.log_when or LogWhen.NONE,
        )
        recorder.header(self.info(subject))
        if cfg.record:
            names = {sid: name for name, sid in self.block.signals.items()}
            recorder.subscribe(-1, "record", {sid: names.get(sid, str(sid)) for sid in cfg.record})

        root = tree[tree.root]
        interrupted = False
        ticks = 0
        try:
            ticks = sched.run(clock, max_ticks=max_ticks, poll=poll)
        except KeyboardInterrupt:
            interrupted = True
            ticks = sched.index + 1
        finally:
            if root.state is State.ACTIVE:
                sched.abort()

        if interrupted:
            status = INTERRUPTED
        elif root.cancelled or root.state is not State.DONE:
            status = ABORTED
        elif root.error:
            status = FAILED
        else:
            status = COMPLETED
        timing = sched.ledger.summary()
        sched.record("timing", "summary", timing)
        result = BlockResult(
            block=self.block.name,
            status=status,
            ticks=ticks,
            duration=sched.elapsed,
            error=root.error,
            snapshot=bus.snapshot(),
            timing=timing,
        )
        recorder.outcome(
            BlockOutcome(
                status=status,
                ticks=ticks,
                duration=result.duration,
                error=result.error,
                timing=timing,
            )
        )
        recorder.close()
        logger.info("block %s %s after %d ticks", self.block.name, status, ticks)
        if interrupted:
            raise KeyboardInterrupt
        return result
