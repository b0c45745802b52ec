"""Convert raw camera frames into the input shape both detectors consume."""
from __future__ import annotations

import platform

from scanner.exceptions import AdapterError
from scanner.types import Frame, InputRotation, NormalizedInput, PixelFormat

_ROTATIONS = {rotation.value: rotation for rotation in InputRotation}


def rotation_from_orientation(sensor_orientation: int) -> InputRotation:
    """Map a sensor orientation in degrees to a rotation class.

    Unknown values fall back to no rotation.
    """
    return _ROTATIONS.get(sensor_orientation, InputRotation.ROTATION_0)


def platform_pixel_format(system: str | None = None) -> PixelFormat:
    """Preferred streaming format for the host platform.

    Apple cameras stream BGRA most efficiently; everything else delivers NV21.
    """
    system = system if system is not None else platform.system()
    if system in {"Darwin", "iOS"}:
        return PixelFormat.BGRA8888
    return PixelFormat.NV21


def normalize(
    frame: Frame,
    sensor_orientation: int,
    pixel_format: PixelFormat,
) -> NormalizedInput:
    """
    Flatten a frame's planes into one detector input.

    Planes are concatenated in order with their native layout untouched.
    The stride reported in ``bytes_per_row`` is the first plane's, which is
    exact for packed formats (BGRA8888) and an approximation for planar ones
    (NV21) that the detectors tolerate. Per-plane strides are kept in
    ``plane_bytes_per_row`` for consumers that need them.

    Raises:
        AdapterError: if the frame carries no planes.
    """
    if not frame.planes:
        raise AdapterError(f"Frame {frame.frame_index} has no pixel planes")

    data = b"".join(plane.data for plane in frame.planes)

    return NormalizedInput(
        data=data,
        width=frame.width,
        height=frame.height,
        rotation=rotation_from_orientation(sensor_orientation),
        pixel_format=pixel_format,
        bytes_per_row=frame.planes[0].bytes_per_row,
        plane_bytes_per_row=tuple(plane.bytes_per_row for plane in frame.planes),
    )
