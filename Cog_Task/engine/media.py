"""Media collaborator contract and the built-in silent backend.

A backend turns ``play(src, volume, trigger, offset)`` into a handle that the
audio and video actions poll once per tick. Decoding happens wherever the
backend wants; the tick loop only calls :meth:`MediaHandle.is_done`.
"""

from __future__ import annotations

import contextlib
import time
import wave
from pathlib import Path
from typing import Callable, Dict, Optional, Protocol

from ..errors import ResourceError


class MediaHandle(Protocol):
    def is_done(self) -> bool: ...

    def stop(self) -> None: ...


class MediaBackend(Protocol):
    def play(
        self,
        src: str,
        *,
        volume: float,
        trigger: bool = False,
        offset: float = 0.0,
        duration: Optional[float] = None,
    ) -> MediaHandle: ...


class TimedHandle:
    """Handle that completes once ``duration`` seconds have passed."""

    def __init__(self, duration: float, clock: Callable[[], float]) -> None:
        self.duration = duration
        self._clock = clock
        self._start = clock()
        self.stopped = False

    def is_done(self) -> bool:
        return self.stopped or self._clock() - self._start >= self.duration

    def stop(self) -> None:
        self.stopped = True


def wav_duration(path: Path) -> float:
    """Return the length of a WAV file in seconds."""

    try:
        with contextlib.closing(wave.open(str(path), "rb")) as fh:
            return fh.getnframes() / float(fh.getframerate())
    except (OSError, wave.Error) as exc:
        raise ResourceError(f"cannot read audio file {path}: {exc}") from exc


class SilentBackend:
    """Backend that plays nothing but keeps the nominal duration.

    The duration comes from the action's ``duration`` field or, for ``.wav``
    files, from the file header.
    """

    def __init__(self, clock: Callable[[], float] = time.perf_counter) -> None:
        self.clock = clock
        self.played: list = []

    def play(
        self,
        src: str,
        *,
        volume: float,
        trigger: bool = False,
        offset: float = 0.0,
        duration: Optional[float] = None,
    ) -> TimedHandle:
        if duration is None:
            path = Path(src)
            if path.suffix.lower() != ".wav":
                raise ResourceError(f"no duration known for media '{src}'")
            if not path.exists():
                raise ResourceError(f"media file '{src}' not found")
            duration = wav_duration(path)
        self.played.append((src, volume, trigger, offset))
        return TimedHandle(max(duration - offset, 0.0), self.clock)


_BACKENDS: Dict[str, Callable[[], MediaBackend]] = {"silent": SilentBackend}


def register_backend(name: str, factory: Callable[[], MediaBackend]) -> None:
    """Make a media backend available under ``name``."""

    _BACKENDS[name] = factory


def get_backend(name: str) -> MediaBackend:
    try:
        factory = _BACKENDS[name]
    except KeyError:
        raise ResourceError(f"unknown media backend '{name}'") from None
    return factory()
