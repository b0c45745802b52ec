"""Types for the frame scanner and capture state machine."""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterable

from pydantic import BaseModel, Field


class PixelFormat(str, Enum):
    BGRA8888 = "bgra8888"
    NV21 = "nv21"


class InputRotation(int, Enum):
    ROTATION_0 = 0
    ROTATION_90 = 90
    ROTATION_180 = 180
    ROTATION_270 = 270


class MarkerKind(str, Enum):
    QR_CODE = "qr_code"
    DATA_MATRIX = "data_matrix"
    AZTEC = "aztec"
    PDF417 = "pdf417"
    LINEAR = "linear"


class CaptureDecision(str, Enum):
    NO_OBJECT = "no_object"
    OBJECT_ONLY = "object_only"
    OBJECT_WITH_UNALIGNED_MARKER = "object_with_unaligned_marker"
    OBJECT_WITH_ALIGNED_MARKER = "object_with_aligned_marker"


class PipelineState(str, Enum):
    STOPPED = "stopped"
    STREAMING = "streaming"
    CAPTURING = "capturing"
    COOLING_DOWN = "cooling_down"


@dataclass(frozen=True)
class Plane:
    """One image plane as delivered by the camera."""

    data: bytes
    bytes_per_row: int


@dataclass(frozen=True)
class Frame:
    """One raw sample from the video stream."""

    planes: tuple[Plane, ...]
    width: int
    height: int
    pixel_format: PixelFormat
    sensor_orientation: int = 0
    frame_index: int = 0
    timestamp: float = field(default_factory=time.monotonic)

    def __repr__(self) -> str:
        return (
            f"Frame(frame_index={self.frame_index}, size={self.width}x{self.height}, "
            f"format={self.pixel_format.value}, planes={len(self.planes)})"
        )


@dataclass(frozen=True)
class NormalizedInput:
    """Frame repackaged into the single buffer both detectors consume."""

    data: bytes
    width: int
    height: int
    rotation: InputRotation
    pixel_format: PixelFormat
    bytes_per_row: int  # first plane's stride
    plane_bytes_per_row: tuple[int, ...] = ()

    def __repr__(self) -> str:
        return (
            f"NormalizedInput(size={self.width}x{self.height}, rotation={self.rotation.value}, "
            f"format={self.pixel_format.value}, bytes={len(self.data)})"
        )


@dataclass(frozen=True)
class Box:
    """Axis-aligned rectangle in normalized-input pixel coordinates."""

    left: float
    top: float
    right: float
    bottom: float

    @property
    def width(self) -> float:
        return self.right - self.left

    @property
    def height(self) -> float:
        return self.bottom - self.top

    def overlaps(self, other: Box) -> bool:
        # Shared edges have zero area and do not count.
        if self.right <= other.left or other.right <= self.left:
            return False
        if self.bottom <= other.top or other.bottom <= self.top:
            return False
        return True

    @classmethod
    def from_points(cls, points: Iterable[tuple[float, float]]) -> Box:
        xs: list[float] = []
        ys: list[float] = []
        for x, y in points:
            xs.append(float(x))
            ys.append(float(y))
        if not xs:
            raise ValueError("Cannot build a box from zero points")
        return cls(left=min(xs), top=min(ys), right=max(xs), bottom=max(ys))


@dataclass(frozen=True)
class DetectedObject:
    box: Box
    label: str | None = None
    confidence: float | None = None


@dataclass(frozen=True)
class DetectedMarker:
    box: Box
    kind: MarkerKind
    value: str | None = None


@dataclass(frozen=True)
class DecisionOutcome:
    """Observable behaviour mapped from one capture decision."""

    show_preview: bool
    trigger_capture: bool
    status: str


@dataclass(frozen=True)
class CaptureArtifact:
    """Handle to a still produced by the capture sink."""

    path: Path
    width: int = 0
    height: int = 0
    captured_at: float = field(default_factory=time.time)


@dataclass(frozen=True)
class DetectionRound:
    """Result of one detection round: a decision or the error that ended it."""

    decision: CaptureDecision | None = None
    error: Exception | None = None
    object_count: int = 0
    marker_count: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None and self.decision is not None


@dataclass
class ScanStats:
    frames_received: int = 0
    frames_processed: int = 0
    frames_dropped_busy: int = 0
    frames_dropped_not_streaming: int = 0
    detection_errors: int = 0
    captures: int = 0
    capture_failures: int = 0
    resume_failures: int = 0
    stream_failures: int = 0

    def to_dict(self) -> dict:
        return {
            "frames_received": self.frames_received,
            "frames_processed": self.frames_processed,
            "frames_dropped_busy": self.frames_dropped_busy,
            "frames_dropped_not_streaming": self.frames_dropped_not_streaming,
            "detection_errors": self.detection_errors,
            "captures": self.captures,
            "capture_failures": self.capture_failures,
            "resume_failures": self.resume_failures,
            "stream_failures": self.stream_failures,
        }


@dataclass(frozen=True)
class ScannerSnapshot:
    """Read-only view of the controller for presentation layers."""

    state: PipelineState
    status: str
    show_preview: bool
    last_decision: CaptureDecision | None
    last_artifact: CaptureArtifact | None
    stats: ScanStats

    def to_dict(self) -> dict:
        artifact = self.last_artifact
        return {
            "state": self.state.value,
            "status": self.status,
            "show_preview": self.show_preview,
            "last_decision": self.last_decision.value if self.last_decision else None,
            "last_capture": (
                {
                    "path": str(artifact.path),
                    "width": artifact.width,
                    "height": artifact.height,
                    "captured_at": artifact.captured_at,
                }
                if artifact
                else None
            ),
            "stats": self.stats.to_dict(),
        }


class ScannerConfig(BaseModel):
    """Runtime configuration for one scanner pipeline."""

    source: str = Field("0", min_length=1)
    pixel_format: PixelFormat = PixelFormat.NV21
    sensor_orientation: int = 0
    frame_width: int = Field(640, gt=0)
    frame_height: int = Field(480, gt=0)
    loop_source: bool = False  # replay video files from the start when they run out
    capture_width: int = Field(1920, gt=0)
    capture_height: int = Field(1080, gt=0)
    cooldown_seconds: float = Field(0.8, gt=0)
    capture_dir: Path = Path("captures")
    jpeg_quality: int = Field(95, ge=1, le=100)
    marker_kind: MarkerKind = MarkerKind.QR_CODE
    model_path: str | None = None
    confidence: float = Field(0.35, ge=0, le=1)
    classify_objects: bool = True
    multiple_objects: bool = True
