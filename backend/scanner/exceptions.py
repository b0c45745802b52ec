"""Custom exceptions for the capture scanner."""


class ScannerError(Exception):
    """Base scanner exception."""


class AcquisitionError(ScannerError):
    """Raised when the camera cannot be opened or accessed."""


class FrameSourceError(ScannerError):
    """Raised when a frame source fails to start or stop."""


class AdapterError(ScannerError):
    """Raised when a frame cannot be converted to detector input."""


class DetectionError(ScannerError):
    """Raised when a detector fails on a single frame."""


class CaptureError(ScannerError):
    """Raised when the capture sink fails to produce a still."""
