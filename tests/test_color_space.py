import numpy as np
import pytest

from color_space import (
    SRGB_TO_LINEAR,
    from_working,
    rgb_to_working,
    to_working,
    working_to_rgb,
)


def test_srgb_table_endpoints_and_linear_segment():
    assert SRGB_TO_LINEAR.shape == (256,)
    assert SRGB_TO_LINEAR[0] == 0.0
    assert SRGB_TO_LINEAR[255] == pytest.approx(1.0)
    # Code value 10 sits below the 0.04045 breakpoint
    assert SRGB_TO_LINEAR[10] == pytest.approx(10 / 255 / 12.92)
    assert SRGB_TO_LINEAR[128] == pytest.approx(0.2158605, abs=1e-6)


def test_srgb_table_is_read_only():
    with pytest.raises(ValueError):
        SRGB_TO_LINEAR[0] = 1.0


def test_round_trip_every_gray_level():
    for v in range(256):
        assert from_working(*to_working(v, v, v)) == (v, v, v)


def test_round_trip_color_cube():
    axis = np.arange(0, 256, 3, dtype=np.uint8)
    r, g, b = np.meshgrid(axis, axis, axis, indexing='ij')
    rgb = np.stack([r, g, b], axis=-1).reshape(-1, 3)
    assert np.array_equal(working_to_rgb(rgb_to_working(rgb)), rgb)


def test_round_trip_primaries_and_extremes():
    for rgb in [(255, 0, 0), (0, 255, 0), (0, 0, 255), (255, 255, 0), (1, 0, 0), (0, 0, 1), (254, 255, 253)]:
        assert from_working(*to_working(*rgb)) == rgb


def test_white_black_and_mid_gray():
    L, a, b = to_working(255, 255, 255)
    assert L == pytest.approx(1.0, abs=1e-6)
    assert abs(a) < 1e-6 and abs(b) < 1e-6

    L, a, b = to_working(0, 0, 0)
    assert 0.0 < L < 1e-3

    L, _, _ = to_working(128, 128, 128)
    assert L == pytest.approx(0.59987, abs=1e-3)


def test_grays_have_no_chroma():
    levels = np.arange(256, dtype=np.uint8)
    lab = rgb_to_working(np.stack([levels] * 3, axis=-1))
    assert np.all(np.abs(lab[:, 1:]) < 1e-6)
    assert np.all(np.diff(lab[:, 0]) > 0)


def test_from_working_clamps_out_of_range():
    assert from_working(2.0, 0.0, 0.0) == (255, 255, 255)
    assert from_working(-1.0, 0.0, 0.0) == (0, 0, 0)
    for channel in from_working(0.5, 5.0, -5.0):
        assert 0 <= channel <= 255


def test_array_conversion_keeps_shape():
    rgb = np.zeros((4, 5, 3), dtype=np.uint8)
    lab = rgb_to_working(rgb)
    assert lab.shape == (4, 5, 3)
    assert lab.dtype == np.float64
    out = working_to_rgb(lab)
    assert out.shape == (4, 5, 3)
    assert out.dtype == np.uint8
