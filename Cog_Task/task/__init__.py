"""Task descriptions, tree construction and block sequencing."""

from .block import BlockResult, BlockRunner
from .builder import TreeBuilder, build_tree
from .description import BlockConfig, BlockModel, TaskModel, load_task
from .driver import TaskDriver, run_task

__all__ = [
    "BlockConfig",
    "BlockModel",
    "BlockResult",
    "BlockRunner",
    "TaskDriver",
    "TaskModel",
    "TreeBuilder",
    "build_tree",
    "load_task",
    "run_task",
]
