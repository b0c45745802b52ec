"""
OpenCV camera frame source for the capture scanner.
"""
from __future__ import annotations

import logging
import threading
import time

import cv2

from cv.utils import bgr_to_planes
from scanner.exceptions import AcquisitionError, FrameSourceError
from scanner.protocols import FrameCallback, StreamEndCallback
from scanner.types import Frame, PixelFormat, Plane

logger = logging.getLogger(__name__)

STOP_JOIN_TIMEOUT_SECONDS = 2.0


def parse_source(source: str | int) -> str | int:
    """Camera indices arrive as strings from the environment."""
    if isinstance(source, str) and source.strip().isdigit():
        return int(source.strip())
    return source


class CameraFrameSource:
    """
    Push producer: one reader thread per streaming session.

    ``start`` opens the device synchronously so acquisition failures surface
    to the caller. The device is released when the reader thread exits, so a
    capture sink may open it right after ``stop`` returns. If reading fails
    without ``stop`` having been called, ``on_end`` receives a
    FrameSourceError.

    For file and URL sources ``position`` tracks the next frame number so a
    capture sink can reopen the file at the scene that was being scanned.
    """

    def __init__(
        self,
        source: str | int,
        pixel_format: PixelFormat = PixelFormat.NV21,
        sensor_orientation: int = 0,
        width: int | None = None,
        height: int | None = None,
        loop: bool = False,
    ) -> None:
        self.source = parse_source(source)
        self.pixel_format = pixel_format
        self.sensor_orientation = sensor_orientation
        self.width = width
        self.height = height
        self.loop = loop
        self._lock = threading.Lock()
        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()
        self._frame_index = 0
        self.position: int | None = None

    def start(self, on_frame: FrameCallback, on_end: StreamEndCallback | None = None) -> None:
        with self._lock:
            if (
                self._thread is not None
                and self._thread.is_alive()
                and not self._stop_event.is_set()
            ):
                return

            cap = cv2.VideoCapture(self.source)
            if not cap.isOpened():
                cap.release()
                raise AcquisitionError(f"Could not open camera source {self.source!r}")
            if self.width:
                cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
            if self.height:
                cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
            if self.position and isinstance(self.source, str):
                # Files resume where the previous session left off.
                cap.set(cv2.CAP_PROP_POS_FRAMES, self.position)

            self._stop_event = threading.Event()
            self._thread = threading.Thread(
                target=self._run,
                args=(cap, on_frame, on_end, self._stop_event),
                name="camera-frame-source",
                daemon=True,
            )
            self._thread.start()
        logger.info("[camera] Streaming from %r (%s)", self.source, self.pixel_format.value)

    def stop(self) -> None:
        with self._lock:
            thread = self._thread
            self._thread = None
            self._stop_event.set()

        if thread is None or thread is threading.current_thread():
            return
        thread.join(timeout=STOP_JOIN_TIMEOUT_SECONDS)
        if thread.is_alive():
            raise FrameSourceError(f"Camera reader for {self.source!r} did not stop")
        logger.info("[camera] Stream stopped")

    def is_active(self) -> bool:
        with self._lock:
            return (
                self._thread is not None
                and self._thread.is_alive()
                and not self._stop_event.is_set()
            )

    def _to_frame(self, image) -> Frame:
        planes, width, height = bgr_to_planes(image, self.pixel_format)
        self._frame_index += 1
        return Frame(
            planes=tuple(Plane(data=data, bytes_per_row=stride) for data, stride in planes),
            width=width,
            height=height,
            pixel_format=self.pixel_format,
            sensor_orientation=self.sensor_orientation,
            frame_index=self._frame_index,
        )

    def _run(
        self,
        cap: cv2.VideoCapture,
        on_frame: FrameCallback,
        on_end: StreamEndCallback | None,
        stop_event: threading.Event,
    ) -> None:
        fps = cap.get(cv2.CAP_PROP_FPS)
        # Pace file sources at their native rate; live cameras block in read().
        paced = isinstance(self.source, str) and fps and fps > 1
        frame_interval = (1.0 / fps) if paced else None
        next_frame_time = time.monotonic()
        track_position = isinstance(self.source, str)
        ended: Exception | None = None

        try:
            while not stop_event.is_set():
                ret, image = cap.read()
                if not ret:
                    if self.loop and isinstance(self.source, str):
                        cap.set(cv2.CAP_PROP_POS_FRAMES, 0)
                        continue
                    logger.warning("[camera] Read failed for %r; stream ended", self.source)
                    ended = FrameSourceError(f"read failed on {self.source!r}")
                    self.position = None
                    break

                if track_position:
                    self.position = int(cap.get(cv2.CAP_PROP_POS_FRAMES))

                try:
                    on_frame(self._to_frame(image))
                except Exception:
                    logger.exception("[camera] Frame callback failed")

                if frame_interval is not None:
                    next_frame_time += frame_interval
                    sleep_time = next_frame_time - time.monotonic()
                    if sleep_time > 0:
                        stop_event.wait(sleep_time)
        finally:
            cap.release()
            # A stop() that raced the failed read wins; no end callback then.
            requested = stop_event.is_set()
            stop_event.set()

        if ended is not None and not requested and on_end is not None:
            try:
                on_end(ended)
            except Exception:
                logger.exception("[camera] Stream end callback failed")
