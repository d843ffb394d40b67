import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, Field, StrictBool, StrictFloat, StrictInt, StrictStr

SignalValue = Union[StrictBool, StrictInt, StrictFloat, StrictStr]


def new_log_id() -> str:
    """Return a unique identifier for a block log."""
    return f"log_{uuid.uuid4()}"


class BaseEntry(BaseModel):
    """Tick index and block-relative time shared by all entries."""

    tick: int
    time: float


class SignalEntry(BaseEntry):
    signal: int
    name: str
    value: SignalValue


class EventEntry(BaseEntry):
    name: str
    value: Any = None


class BlockInfo(BaseModel):
    """Header written once at the start of every block run."""

    log_id: str = Field(default_factory=new_log_id)
    subject: str
    task: str
    task_version: str = ""
    task_hash: str = ""
    block: str
    block_hash: str = ""
    config: Dict[str, Any] = Field(default_factory=dict)
    state: Dict[int, Any] = Field(default_factory=dict)
    started: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    correlation_id: Optional[str] = None


class BlockOutcome(BaseModel):
    """Footer written when a block run ends."""

    status: str
    ticks: int
    duration: float
    error: Optional[str] = None
    timing: Dict[str, float] = Field(default_factory=dict)
