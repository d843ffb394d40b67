"""Audio and video leaves backed by the media collaborator."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional

from ...config import TimePrecision
from ...errors import DefinitionError
from ..timing import is_due
from .base import Action, check_duration

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from ..scheduler import TickContext


class Audio(Action):
    """Play ``src`` and finish when playback ends.

    Under ``respect_boundaries`` a late activation starts playback at the
    offset it should already have reached, shortening the item so following
    boundaries stay in place. The skipped time is recorded.
    """

    kind = "audio"

    def __init__(
        self,
        src: str,
        volume: Optional[float] = None,
        trigger: bool = False,
        duration: Optional[float] = None,
        **common: Any,
    ) -> None:
        if not src:
            raise DefinitionError(f"{self.kind}: `src` cannot be empty")
        if volume is not None and not 0.0 <= float(volume) <= 1.0:
            raise DefinitionError(f"{self.kind}: `volume` must be within [0, 1]")
        self.src = str(src)
        self.volume = None if volume is None else float(volume)
        self.trigger = bool(trigger)
        self.duration = None if duration is None else check_duration(self.kind, duration)
        super().__init__(**common)

    def reset(self) -> None:
        super().reset()
        self.handle = None
        self.length: Optional[float] = None

    def start(self, ctx: "TickContext") -> None:
        offset = 0.0
        if ctx.precision is TimePrecision.RESPECT_BOUNDARIES:
            offset = max(ctx.now - self.anchor, 0.0)
        volume = ctx.volume if self.volume is None else self.volume
        self.handle = ctx.media.play(
            self.src,
            volume=volume,
            trigger=self.trigger and ctx.use_trigger,
            offset=offset,
            duration=self.duration,
        )
        remaining = getattr(self.handle, "duration", None)
        if remaining is not None:
            self.length = offset + remaining
        if offset > 0:
            ctx.record("timing", "skipped", {"node": self.index, "offset": offset})

    def update(self, ctx: "TickContext") -> None:
        if self.length is not None:
            end = self.anchor + self.length
            if is_due(ctx.now, end):
                ctx.finish(self, at=end)
        elif self.handle is not None and self.handle.is_done():
            ctx.finish(self)

    def stop(self, ctx: "TickContext") -> None:
        if self.handle is not None:
            self.handle.stop()
            self.handle = None


class Video(Audio):
    """Play a video through the media collaborator and show its surface."""

    kind = "video"

    def __init__(self, src: str, width: Optional[float] = None, **kwargs: Any) -> None:
        self.width = width
        super().__init__(src, **kwargs)

    def start(self, ctx: "TickContext") -> None:
        super().start(ctx)
        ctx.renderer.show(self.index, self.kind, {"src": self.src, "width": self.width})

    def stop(self, ctx: "TickContext") -> None:
        super().stop(ctx)
        ctx.renderer.hide(self.index)


class Stream(Video):
    kind = "stream"
