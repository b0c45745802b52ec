"""
Pydantic models for API responses.

Read-only views of the scanner for the status display.
"""
from pydantic import BaseModel

from scanner.fusion import status_message
from scanner.types import ScannerSnapshot


class CaptureInfo(BaseModel):
    """
    The still produced by the most recent successful capture.
    """
    path: str
    width: int
    height: int
    captured_at: float  # UNIX timestamp


class ScanStatsInfo(BaseModel):
    frames_received: int = 0
    frames_processed: int = 0
    frames_dropped_busy: int = 0
    frames_dropped_not_streaming: int = 0
    detection_errors: int = 0
    captures: int = 0
    capture_failures: int = 0
    resume_failures: int = 0
    stream_failures: int = 0


class ScannerStatus(BaseModel):
    """
    Current scanner state as shown to the user.
    """
    state: str                       # stopped | streaming | capturing | cooling_down
    status: str                      # status category, e.g. "align marker"
    message: str                     # human-readable text for the category
    show_preview: bool               # camera preview visible (object in view)
    last_decision: str | None = None
    last_capture: CaptureInfo | None = None
    stats: ScanStatsInfo

    @classmethod
    def from_snapshot(cls, snapshot: ScannerSnapshot) -> "ScannerStatus":
        data = snapshot.to_dict()
        return cls(message=status_message(snapshot.status), **data)
