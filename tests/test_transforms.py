import numpy as np
import pytest

from buildgltf.transforms import (
    FEET_TO_METERS,
    CoordinateTransform,
    as_matrix,
    is_identity,
    make_quaternion,
    to_column_major,
)


def test_point_swaps_axes_and_scales_feet():
    t = CoordinateTransform()
    assert t.point((1.0, 2.0, 3.0)) == pytest.approx((0.3048, 0.9144, -0.6096))


def test_points_without_baking_are_untouched():
    t = CoordinateTransform(bake=False)
    out = t.points([[1.0, 2.0, 3.0]])
    assert out.dtype == np.float32
    assert out.tolist() == [[1.0, 2.0, 3.0]]


def test_directions_are_not_scaled():
    t = CoordinateTransform()
    assert t.directions([[0.0, 0.0, 1.0]])[0].tolist() == pytest.approx([0.0, 1.0, 0.0])


def test_translation_matrix_is_converted_column_major():
    t = CoordinateTransform()
    host = np.eye(4)
    host[:3, 3] = (1.0, 2.0, 3.0)
    m = t.matrix(host)
    assert len(m) == 16
    assert m[:12] == pytest.approx([1, 0, 0, 0, 0, 1, 0, 0, 0, 0, 1, 0], abs=1e-7)
    assert m[12:15] == pytest.approx([1 * FEET_TO_METERS, 3 * FEET_TO_METERS, -2 * FEET_TO_METERS], rel=1e-6)
    assert m[15] == 1.0


def test_rotation_matrix_matches_basis_rewrite():
    # 90 degrees about host Z
    host = np.array(
        [
            [0.0, -1.0, 0.0, 0.0],
            [1.0, 0.0, 0.0, 0.0],
            [0.0, 0.0, 1.0, 0.0],
            [0.0, 0.0, 0.0, 1.0],
        ]
    )
    m = CoordinateTransform().matrix(host)
    bx, by, bz = host[:3, 0], host[:3, 1], host[:3, 2]
    expected = [
        bx[0], bx[2], -bx[1], 0.0,
        bz[0], bz[2], -bz[1], 0.0,
        -by[0], -by[2], by[1], 0.0,
        0.0, 0.0, 0.0, 1.0,
    ]
    assert m == pytest.approx(expected, abs=1e-6)


def test_conversion_matrix_maps_up_axis():
    conv = np.array(CoordinateTransform(unit_scale=1.0).conversion_matrix()).reshape(4, 4).T
    assert (conv @ np.array([0.0, 0.0, 1.0, 1.0]))[:3].tolist() == pytest.approx([0.0, 1.0, 0.0])


def test_camera_looking_down_host_y_has_identity_rotation():
    q = CoordinateTransform().camera_rotation((0.0, 1.0, 0.0), (0.0, 0.0, 1.0))
    assert q == pytest.approx([0.0, 0.0, 0.0, 1.0], abs=1e-7)


def test_make_quaternion_is_unit_length_on_degenerate_trace():
    q = make_quaternion((-1.0, 0.0, 0.0), (0.0, -1.0, 0.0))
    assert np.linalg.norm(q) == pytest.approx(1.0)
    assert q == pytest.approx([0.0, 0.0, 1.0, 0.0], abs=1e-7)


def test_matrix_helpers():
    assert is_identity(None)
    assert is_identity(list(range(16))) is False
    assert as_matrix(list(range(16)))[0, 3] == 3.0
    with pytest.raises(ValueError):
        as_matrix([1, 2, 3])
    assert to_column_major(np.arange(16).reshape(4, 4))[:4] == [0.0, 4.0, 8.0, 12.0]


def test_unit_scale_must_be_positive():
    with pytest.raises(ValueError):
        CoordinateTransform(unit_scale=0.0)
