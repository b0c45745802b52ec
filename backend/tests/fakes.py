"""Shared test doubles for scanner tests.

Provides a scripted frame source, detectors, capture sink and status
reporter so controller tests run without a camera, OpenCV models or
ultralytics weights. InlineExecutor runs worker jobs on the calling
thread for deterministic ordering.
"""
from __future__ import annotations

import threading
import time
from collections import deque
from concurrent.futures import Executor, Future
from pathlib import Path

from scanner.exceptions import AcquisitionError, CaptureError, FrameSourceError
from scanner.types import (
    Box,
    CaptureArtifact,
    DetectedMarker,
    DetectedObject,
    Frame,
    MarkerKind,
    PixelFormat,
    Plane,
)


def make_frame(index: int = 1, width: int = 4, height: int = 2) -> Frame:
    """Tiny BGRA frame; detectors are fakes so pixel content is irrelevant."""
    return Frame(
        planes=(Plane(data=bytes(width * height * 4), bytes_per_row=width * 4),),
        width=width,
        height=height,
        pixel_format=PixelFormat.BGRA8888,
        frame_index=index,
    )


def obj(left: float, top: float, right: float, bottom: float, label: str | None = None) -> DetectedObject:
    return DetectedObject(box=Box(left, top, right, bottom), label=label, confidence=0.9)


def marker(
    left: float,
    top: float,
    right: float,
    bottom: float,
    kind: MarkerKind = MarkerKind.QR_CODE,
) -> DetectedMarker:
    return DetectedMarker(box=Box(left, top, right, bottom), kind=kind, value="payload")


class InlineExecutor(Executor):
    """Runs submitted callables immediately on the submitting thread."""

    def __init__(self):
        self._shutdown = False

    def submit(self, fn, /, *args, **kwargs):
        if self._shutdown:
            raise RuntimeError("cannot schedule new futures after shutdown")
        future: Future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except BaseException as exc:
            future.set_exception(exc)
        return future

    def shutdown(self, wait=True, *, cancel_futures=False):
        self._shutdown = True


class FakeFrameSource:
    """Frame source that only emits frames when a test calls emit()."""

    def __init__(self, fail_start: bool = False, fail_start_after: int | None = None):
        self.fail_start = fail_start
        self.fail_start_after = fail_start_after
        self.start_calls = 0
        self.stop_calls = 0
        self.on_frame = None
        self.on_end = None
        self._active = False

    def start(self, on_frame, on_end=None):
        self.start_calls += 1
        if self.fail_start or (
            self.fail_start_after is not None and self.start_calls > self.fail_start_after
        ):
            raise AcquisitionError("camera permission denied")
        self.on_frame = on_frame
        self.on_end = on_end
        self._active = True

    def stop(self):
        self.stop_calls += 1
        self._active = False

    def is_active(self) -> bool:
        return self._active

    def emit(self, frame: Frame | None = None, index: int = 1):
        if not self._active or self.on_frame is None:
            return
        self.on_frame(frame or make_frame(index))

    def end_stream(self, error: Exception | None = None):
        """Simulate the camera going away without stop() being called."""
        self._active = False
        if self.on_end is not None:
            self.on_end(error or FrameSourceError("read failed on 0"))


class ScriptedDetector:
    """Returns scripted results in order; an Exception entry is raised instead.

    Once the script is exhausted the default result is returned.
    """

    def __init__(self, script=None, default=None, delay: float = 0.0):
        self._script = deque(script or [])
        self.default = list(default or [])
        self.delay = delay
        self.calls = 0
        self.inputs = []
        self.closed = False
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()
        self.during_detect = None  # optional hook(detector) run inside detect()

    def detect(self, image):
        with self._lock:
            self.calls += 1
            self.active += 1
            self.max_active = max(self.max_active, self.active)
            self.inputs.append(image)
            result = self._script.popleft() if self._script else self.default
        try:
            if self.during_detect is not None:
                self.during_detect(self)
            if self.delay:
                time.sleep(self.delay)
            if isinstance(result, Exception):
                raise result
            return list(result)
        finally:
            with self._lock:
                self.active -= 1

    def close(self):
        self.closed = True


class FakeCaptureSink:
    def __init__(self, fail: bool = False, path: Path | None = None):
        self.fail = fail
        self.path = path or Path("/tmp/capture-test.jpg")
        self.calls = 0
        self.source_active_at_capture: list[bool] = []
        self.frame_source = None  # set to assert producer/sink exclusion

    def capture(self) -> CaptureArtifact:
        self.calls += 1
        if self.frame_source is not None:
            self.source_active_at_capture.append(self.frame_source.is_active())
        if self.fail:
            raise CaptureError("sensor busy")
        return CaptureArtifact(path=self.path.with_name(f"capture-{self.calls}.jpg"), width=1920, height=1080)


class RecordingReporter:
    def __init__(self):
        self.messages: list[str] = []
        self._lock = threading.Lock()

    def report(self, message: str) -> None:
        with self._lock:
            self.messages.append(message)

    def clear(self):
        with self._lock:
            self.messages.clear()


class ExplodingReporter:
    def __init__(self):
        self.calls = 0

    def report(self, message: str) -> None:
        self.calls += 1
        raise RuntimeError("display gone")


def wait_until(predicate, timeout: float = 2.0, interval: float = 0.005) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()
