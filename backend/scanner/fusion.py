"""Fuse same-frame object and marker detections into a capture decision."""
from __future__ import annotations

from typing import Iterable

from scanner.types import (
    CaptureDecision,
    DecisionOutcome,
    DetectedMarker,
    DetectedObject,
    MarkerKind,
)

STATUS_SEARCHING = "searching"
STATUS_MARKER_MISSING = "marker missing"
STATUS_ALIGN_MARKER = "align marker"
STATUS_CAPTURING = "capturing"
STATUS_CAPTURED = "captured"
STATUS_CAPTURE_FAILED = "capture failed"
STATUS_RESUME_FAILED = "resume failed"
STATUS_CAMERA_UNAVAILABLE = "camera unavailable"
STATUS_STREAM_ENDED = "stream ended"
STATUS_STOPPED = "stopped"

OUTCOMES: dict[CaptureDecision, DecisionOutcome] = {
    CaptureDecision.NO_OBJECT: DecisionOutcome(
        show_preview=False, trigger_capture=False, status=STATUS_SEARCHING,
    ),
    CaptureDecision.OBJECT_ONLY: DecisionOutcome(
        show_preview=True, trigger_capture=False, status=STATUS_MARKER_MISSING,
    ),
    CaptureDecision.OBJECT_WITH_UNALIGNED_MARKER: DecisionOutcome(
        show_preview=True, trigger_capture=False, status=STATUS_ALIGN_MARKER,
    ),
    CaptureDecision.OBJECT_WITH_ALIGNED_MARKER: DecisionOutcome(
        show_preview=True, trigger_capture=True, status=STATUS_CAPTURING,
    ),
}

# Human-readable text for each status category, used by the API layer.
STATUS_MESSAGES: dict[str, str] = {
    STATUS_SEARCHING: "Move an object into view...",
    STATUS_MARKER_MISSING: "QR code not found. Show a QR on the object.",
    STATUS_ALIGN_MARKER: "Align the QR with the object.",
    STATUS_CAPTURING: "Object with QR detected. Capturing...",
    STATUS_CAPTURED: "Captured!",
    STATUS_CAPTURE_FAILED: "Capture failed.",
    STATUS_RESUME_FAILED: "Scanning could not restart. Trigger a rescan.",
    STATUS_CAMERA_UNAVAILABLE: "Camera unavailable.",
    STATUS_STREAM_ENDED: "Camera stopped delivering frames. Trigger a rescan.",
    STATUS_STOPPED: "Scanner stopped.",
}


def filter_markers(
    markers: Iterable[DetectedMarker],
    marker_kind: MarkerKind = MarkerKind.QR_CODE,
) -> list[DetectedMarker]:
    return [m for m in markers if m.kind == marker_kind]


def any_overlap(
    objects: Iterable[DetectedObject],
    markers: Iterable[DetectedMarker],
) -> bool:
    markers = list(markers)
    for obj in objects:
        for marker in markers:
            if obj.box.overlaps(marker.box):
                return True
    return False


def decide(
    objects: Iterable[DetectedObject],
    markers: Iterable[DetectedMarker],
    marker_kind: MarkerKind = MarkerKind.QR_CODE,
) -> CaptureDecision:
    """Pure capture decision for one frame's detections."""
    objects = list(objects)
    if not objects:
        return CaptureDecision.NO_OBJECT

    wanted = filter_markers(markers, marker_kind)
    if not wanted:
        return CaptureDecision.OBJECT_ONLY

    if any_overlap(objects, wanted):
        return CaptureDecision.OBJECT_WITH_ALIGNED_MARKER
    return CaptureDecision.OBJECT_WITH_UNALIGNED_MARKER


def outcome_for(decision: CaptureDecision) -> DecisionOutcome:
    return OUTCOMES[decision]


def status_message(status: str) -> str:
    """Human-readable text for a status report.

    Failure reports carry their error after a colon; the category decides the text.
    """
    category, _, detail = status.partition(": ")
    message = STATUS_MESSAGES.get(category, status)
    if detail:
        return f"{message} ({detail})"
    return message
