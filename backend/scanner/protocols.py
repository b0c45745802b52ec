"""
Service contracts consumed by the scanner core.

Implementations are in-process collaborators; errors are raised as exceptions.
"""
from __future__ import annotations

from typing import Callable, Iterable, Protocol

from scanner.types import (
    CaptureArtifact,
    DetectedMarker,
    DetectedObject,
    Frame,
    NormalizedInput,
)

FrameCallback = Callable[[Frame], None]
StreamEndCallback = Callable[[Exception], None]


class FrameSource(Protocol):
    """Push producer of raw frames. May be stopped and restarted.

    ``on_end`` is called once if the stream stops on its own; never after stop().
    """

    def start(self, on_frame: FrameCallback, on_end: StreamEndCallback | None = None) -> None:
        ...

    def stop(self) -> None:
        ...

    def is_active(self) -> bool:
        ...


class ObjectDetector(Protocol):
    def detect(self, image: NormalizedInput) -> Iterable[DetectedObject]:
        ...

    def close(self) -> None:
        ...


class MarkerDetector(Protocol):
    def detect(self, image: NormalizedInput) -> Iterable[DetectedMarker]:
        ...

    def close(self) -> None:
        ...


class CaptureSink(Protocol):
    """Produces a still. The frame source must be stopped before calling capture()."""

    def capture(self) -> CaptureArtifact:
        ...


class StatusReporter(Protocol):
    """Best-effort status side channel; must not block."""

    def report(self, message: str) -> None:
        ...
