"""Scanner pipeline configuration from the environment."""
from __future__ import annotations

import os
from pathlib import Path

from common.config.paths import BASE_DIR, DEFAULT_CAPTURE_DIR
from scanner.adapter import platform_pixel_format
from scanner.types import PixelFormat, ScannerConfig


def _truthy(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _optional(value: str | None) -> str | None:
    if value is None or not value.strip():
        return None
    return value.strip()


def _resolve_dir(value: str | None, default: Path) -> Path:
    if not value or not value.strip():
        return default
    path = Path(value.strip())
    return path if path.is_absolute() else (BASE_DIR / path)


SCANNER_AUTOSTART = _truthy(os.getenv("SCANNER_AUTOSTART"), default=True)
SCANNER_LOG_LEVEL = os.getenv("SCANNER_LOG_LEVEL", "INFO").strip().upper()


def load_scanner_config() -> ScannerConfig:
    """Build a validated ScannerConfig from SCANNER_* environment variables.

    Raises:
        pydantic.ValidationError: if a value is out of range.
    """
    pixel_format = _optional(os.getenv("SCANNER_PIXEL_FORMAT"))
    return ScannerConfig(
        source=os.getenv("SCANNER_SOURCE", "0").strip() or "0",
        pixel_format=PixelFormat(pixel_format.lower()) if pixel_format else platform_pixel_format(),
        sensor_orientation=int(os.getenv("SCANNER_SENSOR_ORIENTATION", "0")),
        frame_width=int(os.getenv("SCANNER_FRAME_WIDTH", "640")),
        frame_height=int(os.getenv("SCANNER_FRAME_HEIGHT", "480")),
        loop_source=_truthy(os.getenv("SCANNER_LOOP"), default=False),
        capture_width=int(os.getenv("SCANNER_CAPTURE_WIDTH", "1920")),
        capture_height=int(os.getenv("SCANNER_CAPTURE_HEIGHT", "1080")),
        cooldown_seconds=int(os.getenv("SCANNER_COOLDOWN_MS", "800")) / 1000.0,
        capture_dir=_resolve_dir(os.getenv("SCANNER_CAPTURE_DIR"), DEFAULT_CAPTURE_DIR),
        jpeg_quality=int(os.getenv("SCANNER_JPEG_QUALITY", "95")),
        model_path=_optional(os.getenv("SCANNER_MODEL_PATH")),
        confidence=float(os.getenv("SCANNER_CONFIDENCE", "0.35")),
        classify_objects=_truthy(os.getenv("SCANNER_CLASSIFY_OBJECTS"), default=True),
        multiple_objects=_truthy(os.getenv("SCANNER_MULTIPLE_OBJECTS"), default=True),
    )
