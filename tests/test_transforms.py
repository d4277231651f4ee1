import numpy as np
import pytest

from cadmatch.geometry.transforms import (
    camera_center,
    look_at,
    perspective,
    rotation_y,
    scale_matrix,
)


def test_look_at_maps_eye_to_origin():
    V = look_at((0, 0, 5), (0, 0, 0), (0, 1, 0))

    np.testing.assert_allclose(V @ [0, 0, 5, 1], [0, 0, 0, 1], atol=1e-12)
    # Target ends up in front of the camera, on -Z.
    np.testing.assert_allclose(V @ [0, 0, 0, 1], [0, 0, -5, 1], atol=1e-12)
    np.testing.assert_allclose(camera_center(V), [0, 0, 5], atol=1e-12)


def test_look_at_rejects_degenerate_input():
    with pytest.raises(ValueError):
        look_at((0, 0, 0), (0, 0, 0), (0, 1, 0))
    with pytest.raises(ValueError):
        look_at((0, 5, 0), (0, 0, 0), (0, 1, 0))


def test_perspective_depth_range():
    P = perspective(45.0, 1.0, 1.0, 10.0)

    near = P @ [0, 0, -1, 1]
    far = P @ [0, 0, -10, 1]
    assert near[2] / near[3] == pytest.approx(-1.0)
    assert far[2] / far[3] == pytest.approx(1.0)


@pytest.mark.parametrize("args", [(45, 1, 0, 10), (45, 1, 5, 1), (0, 1, 1, 10), (45, 0, 1, 10)])
def test_perspective_rejects_degenerate_frustum(args):
    with pytest.raises(ValueError):
        perspective(*args)


def test_rotation_y_quarter_turn():
    R = rotation_y(90.0)

    np.testing.assert_allclose(R @ [1, 0, 0, 1], [0, 0, -1, 1], atol=1e-12)
    np.testing.assert_allclose(R @ [0, 1, 0, 1], [0, 1, 0, 1], atol=1e-12)


def test_scale_matrix():
    np.testing.assert_allclose(scale_matrix(0.01) @ [100, 200, -300, 1], [1, 2, -3, 1])
