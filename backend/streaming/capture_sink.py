"""High-resolution still capture written to local JPEG files."""
from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path

import cv2

from scanner.exceptions import CaptureError
from scanner.types import CaptureArtifact
from streaming.frame_source import CameraFrameSource, parse_source

logger = logging.getLogger(__name__)


class CameraCaptureSink:
    """
    Opens the camera at still resolution, grabs one frame and saves it.

    The frame source must have released the device before ``capture`` runs.
    When the source is a video file, pass the streaming ``frame_source`` so
    the still is read at the frame that was being scanned instead of the
    start of the file.
    """

    def __init__(
        self,
        source: str | int,
        output_dir: Path,
        width: int | None = None,
        height: int | None = None,
        jpeg_quality: int = 95,
        warmup_frames: int = 3,
        frame_source: CameraFrameSource | None = None,
    ):
        self.source = parse_source(source)
        self.output_dir = Path(output_dir)
        self.width = width
        self.height = height
        self.jpeg_quality = jpeg_quality
        self.warmup_frames = warmup_frames
        self.frame_source = frame_source

    def _next_path(self) -> Path:
        stamp = datetime.now().strftime("%Y%m%d-%H%M%S-%f")
        return self.output_dir / f"capture-{stamp}.jpg"

    def capture(self) -> CaptureArtifact:
        cap = cv2.VideoCapture(self.source)
        if not cap.isOpened():
            cap.release()
            raise CaptureError(f"Could not open camera source {self.source!r} for capture")

        try:
            if self.width:
                cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
            if self.height:
                cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
            position = self.frame_source.position if self.frame_source is not None else None
            if position:
                # position is the next frame; step back to the one last scanned.
                cap.set(cv2.CAP_PROP_POS_FRAMES, position - 1)
            else:
                # Let exposure settle after the resolution switch.
                for _ in range(self.warmup_frames):
                    cap.grab()
            ok, image = cap.read()
        finally:
            cap.release()

        if not ok or image is None:
            raise CaptureError("Camera returned no frame for capture")

        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise CaptureError(f"Cannot create capture directory {self.output_dir}: {exc}") from exc

        path = self._next_path()
        if not cv2.imwrite(str(path), image, [cv2.IMWRITE_JPEG_QUALITY, self.jpeg_quality]):
            raise CaptureError(f"Failed to write capture to {path}")

        height, width = image.shape[:2]
        logger.info("[capture] Saved %dx%d still to %s", width, height, path)
        return CaptureArtifact(path=path, width=width, height=height)
