"""Frame scanner and capture state machine package."""

from .adapter import normalize, platform_pixel_format, rotation_from_orientation
from .controller import ScanController
from .exceptions import (
    AcquisitionError,
    AdapterError,
    CaptureError,
    DetectionError,
    FrameSourceError,
    ScannerError,
)
from .fusion import decide, outcome_for
from .types import (
    Box,
    CaptureArtifact,
    CaptureDecision,
    DetectedMarker,
    DetectedObject,
    Frame,
    InputRotation,
    MarkerKind,
    NormalizedInput,
    PipelineState,
    PixelFormat,
    Plane,
    ScannerConfig,
    ScannerSnapshot,
)

__all__ = [
    "AcquisitionError",
    "AdapterError",
    "Box",
    "CaptureArtifact",
    "CaptureDecision",
    "CaptureError",
    "DetectedMarker",
    "DetectedObject",
    "DetectionError",
    "Frame",
    "FrameSourceError",
    "InputRotation",
    "MarkerKind",
    "NormalizedInput",
    "PipelineState",
    "PixelFormat",
    "Plane",
    "ScanController",
    "ScannerConfig",
    "ScannerError",
    "ScannerSnapshot",
    "decide",
    "normalize",
    "outcome_for",
    "platform_pixel_format",
    "rotation_from_orientation",
]
