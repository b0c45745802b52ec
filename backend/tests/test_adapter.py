"""Tests for the detection adapter: plane flattening, rotation classes and strides."""
from __future__ import annotations

import pytest

from scanner.adapter import normalize, platform_pixel_format, rotation_from_orientation
from scanner.exceptions import AdapterError
from scanner.types import Frame, InputRotation, PixelFormat, Plane


def _nv21_frame(width: int = 4, height: int = 2, orientation: int = 90) -> Frame:
    y = Plane(data=bytes(range(width * height)), bytes_per_row=width)
    vu = Plane(data=b"\xaa\xbb" * (width * height // 4), bytes_per_row=width + 2)
    return Frame(
        planes=(y, vu),
        width=width,
        height=height,
        pixel_format=PixelFormat.NV21,
        sensor_orientation=orientation,
    )


class TestNormalize:
    def test_planes_concatenated_in_order(self):
        frame = _nv21_frame()
        result = normalize(frame, 90, PixelFormat.NV21)
        assert result.data == frame.planes[0].data + frame.planes[1].data

    def test_single_plane_preserved(self):
        data = bytes([1, 2, 3, 4] * 8)
        frame = Frame(
            planes=(Plane(data=data, bytes_per_row=16),),
            width=4,
            height=2,
            pixel_format=PixelFormat.BGRA8888,
        )
        result = normalize(frame, 0, PixelFormat.BGRA8888)
        assert result.data == data
        assert result.bytes_per_row == 16

    def test_size_and_format_carried(self):
        result = normalize(_nv21_frame(width=8, height=6), 0, PixelFormat.NV21)
        assert (result.width, result.height) == (8, 6)
        assert result.pixel_format is PixelFormat.NV21

    def test_first_plane_stride_used(self):
        result = normalize(_nv21_frame(width=4), 0, PixelFormat.NV21)
        assert result.bytes_per_row == 4

    def test_all_plane_strides_kept(self):
        result = normalize(_nv21_frame(width=4), 0, PixelFormat.NV21)
        assert result.plane_bytes_per_row == (4, 6)

    def test_orientation_argument_wins_over_frame(self):
        result = normalize(_nv21_frame(orientation=90), 270, PixelFormat.NV21)
        assert result.rotation is InputRotation.ROTATION_270

    def test_frame_without_planes_raises(self):
        frame = Frame(planes=(), width=4, height=2, pixel_format=PixelFormat.NV21)
        with pytest.raises(AdapterError):
            normalize(frame, 0, PixelFormat.NV21)

    def test_frame_not_mutated(self):
        frame = _nv21_frame()
        before = frame.planes
        normalize(frame, 0, PixelFormat.NV21)
        assert frame.planes is before


class TestRotation:
    @pytest.mark.parametrize("degrees", [0, 90, 180, 270])
    def test_known_values(self, degrees):
        assert rotation_from_orientation(degrees).value == degrees

    @pytest.mark.parametrize("degrees", [-90, 45, 360, 1000])
    def test_unknown_values_fail_closed(self, degrees):
        assert rotation_from_orientation(degrees) is InputRotation.ROTATION_0


class TestPlatformPixelFormat:
    def test_apple_uses_bgra(self):
        assert platform_pixel_format("Darwin") is PixelFormat.BGRA8888

    def test_linux_uses_nv21(self):
        assert platform_pixel_format("Linux") is PixelFormat.NV21

    def test_windows_uses_nv21(self):
        assert platform_pixel_format("Windows") is PixelFormat.NV21
