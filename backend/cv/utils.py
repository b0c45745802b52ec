"""
Computer vision utility functions.
"""
from __future__ import annotations

import threading

import cv2
import numpy as np

from scanner.exceptions import DetectionError
from scanner.types import InputRotation, NormalizedInput, PixelFormat

_ROTATE_CODES = {
    InputRotation.ROTATION_90: cv2.ROTATE_90_CLOCKWISE,
    InputRotation.ROTATION_180: cv2.ROTATE_180,
    InputRotation.ROTATION_270: cv2.ROTATE_90_COUNTERCLOCKWISE,
}


def _bgra_to_bgr(buf: np.ndarray, image: NormalizedInput) -> np.ndarray:
    stride = image.bytes_per_row or image.width * 4
    needed = stride * image.height
    if stride < image.width * 4 or buf.size < needed:
        raise DetectionError(
            f"BGRA buffer too small: {buf.size} bytes for {image.width}x{image.height} "
            f"(stride {stride})"
        )
    rows = buf[:needed].reshape(image.height, stride)
    bgra = rows[:, : image.width * 4].reshape(image.height, image.width, 4)
    return cv2.cvtColor(bgra, cv2.COLOR_BGRA2BGR)


def _nv21_to_bgr(buf: np.ndarray, image: NormalizedInput) -> np.ndarray:
    width, height = image.width, image.height
    if width % 2 or height % 2:
        raise DetectionError(f"NV21 requires even dimensions, got {width}x{height}")

    # Use the true per-plane strides when the source provided them.
    strides = image.plane_bytes_per_row or (image.bytes_per_row,)
    y_stride = strides[0] or width
    vu_stride = strides[1] if len(strides) > 1 else y_stride
    y_size = y_stride * height
    vu_rows = height // 2
    vu_size = vu_stride * vu_rows
    if y_stride < width or vu_stride < width or buf.size < y_size + vu_size:
        raise DetectionError(
            f"NV21 buffer too small: {buf.size} bytes for {width}x{height} "
            f"(strides {y_stride}/{vu_stride})"
        )

    y = buf[:y_size].reshape(height, y_stride)[:, :width]
    vu = buf[y_size:y_size + vu_size].reshape(vu_rows, vu_stride)[:, :width]
    yuv = np.ascontiguousarray(np.vstack([y, vu]))
    return cv2.cvtColor(yuv, cv2.COLOR_YUV2BGR_NV21)


def to_bgr_image(image: NormalizedInput) -> np.ndarray:
    """
    Decode a normalized input into an upright BGR image.

    Args:
        image: Flattened camera buffer with size, stride and rotation metadata.

    Returns:
        HxWx3 uint8 array, rotated so detector coordinates are upright.

    Raises:
        DetectionError: if the buffer does not match its metadata.
    """
    buf = np.frombuffer(image.data, dtype=np.uint8)
    if image.pixel_format is PixelFormat.BGRA8888:
        bgr = _bgra_to_bgr(buf, image)
    elif image.pixel_format is PixelFormat.NV21:
        bgr = _nv21_to_bgr(buf, image)
    else:
        raise DetectionError(f"Unsupported pixel format: {image.pixel_format}")

    code = _ROTATE_CODES.get(image.rotation)
    if code is not None:
        bgr = cv2.rotate(bgr, code)
    return bgr


_last_decoded_lock = threading.Lock()
_last_decoded: tuple[NormalizedInput, np.ndarray] | None = None


def decode_shared(image: NormalizedInput) -> np.ndarray:
    """
    Like to_bgr_image, but reuses the result for the input decoded last.

    Both detectors of a round receive the same NormalizedInput object, so the
    second one gets the already decoded image. The returned array is shared
    and must not be modified in place.
    """
    global _last_decoded
    with _last_decoded_lock:
        last = _last_decoded
    if last is not None and last[0] is image:
        return last[1]

    bgr = to_bgr_image(image)
    with _last_decoded_lock:
        _last_decoded = (image, bgr)
    return bgr


def bgr_to_planes(
    frame: np.ndarray,
    pixel_format: PixelFormat,
) -> tuple[list[tuple[bytes, int]], int, int]:
    """
    Encode a BGR image into camera-style planes.

    NV21 needs even dimensions, so odd frames lose their last row/column.

    Returns:
        ``(planes, width, height)`` where each plane is ``(data, bytes_per_row)``:
        one packed plane for BGRA8888, a Y plane and an interleaved VU plane
        for NV21.
    """
    height, width = frame.shape[:2]
    if pixel_format is PixelFormat.BGRA8888:
        bgra = cv2.cvtColor(frame, cv2.COLOR_BGR2BGRA)
        return [(bgra.tobytes(), width * 4)], width, height

    if pixel_format is PixelFormat.NV21:
        if width % 2 or height % 2:
            frame = np.ascontiguousarray(frame[: height - height % 2, : width - width % 2])
            height, width = frame.shape[:2]
        i420 = cv2.cvtColor(frame, cv2.COLOR_BGR2YUV_I420).reshape(-1)
        y_size = width * height
        chroma_size = y_size // 4
        y = i420[:y_size]
        u = i420[y_size:y_size + chroma_size]
        v = i420[y_size + chroma_size:y_size + 2 * chroma_size]
        vu = np.empty(chroma_size * 2, dtype=np.uint8)
        vu[0::2] = v
        vu[1::2] = u
        return [(y.tobytes(), width), (vu.tobytes(), width)], width, height

    raise ValueError(f"Unsupported pixel format: {pixel_format}")
