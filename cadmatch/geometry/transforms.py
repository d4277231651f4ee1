"""
4x4 transform builders for the offscreen renderer.

All matrices use the column-vector convention (x' = M @ x) and the OpenGL
clip-space layout, so ``P @ V @ M`` is the usual MVP.
"""

from __future__ import annotations

from typing import Sequence

import numpy as np
from scipy.spatial.transform import Rotation


def look_at(
    eye: Sequence[float],
    target: Sequence[float],
    up: Sequence[float],
) -> np.ndarray:
    """
    View matrix placing the camera at `eye` looking towards `target`.

    Args:
        eye: Camera position (3,).
        target: Point the camera looks at (3,).
        up: Approximate up direction (3,).

    Returns:
        View matrix (4x4), dtype=float64.

    Raises:
        ValueError: If eye == target or up is parallel to the viewing direction.
    """
    eye = np.asarray(eye, dtype=np.float64)
    target = np.asarray(target, dtype=np.float64)
    up = np.asarray(up, dtype=np.float64)

    forward = target - eye
    norm = np.linalg.norm(forward)
    if norm == 0:
        raise ValueError("eye and target coincide")
    forward /= norm

    side = np.cross(forward, up)
    side_norm = np.linalg.norm(side)
    if side_norm == 0:
        raise ValueError("up vector is parallel to the viewing direction")
    side /= side_norm
    true_up = np.cross(side, forward)

    V = np.eye(4)
    V[0, :3] = side
    V[1, :3] = true_up
    V[2, :3] = -forward
    V[:3, 3] = -V[:3, :3] @ eye
    return V


def perspective(fov_y_deg: float, aspect: float, near: float, far: float) -> np.ndarray:
    """
    OpenGL perspective projection (maps view-space depth [-near, -far] to NDC [-1, 1]).

    Raises:
        ValueError: If the frustum parameters are degenerate.
    """
    if not (0 < near < far):
        raise ValueError(f"need 0 < near < far, got near={near}, far={far}")
    if aspect <= 0 or not (0 < fov_y_deg < 180):
        raise ValueError(f"invalid fov_y={fov_y_deg} or aspect={aspect}")

    f = 1.0 / np.tan(np.radians(fov_y_deg) / 2.0)
    P = np.zeros((4, 4))
    P[0, 0] = f / aspect
    P[1, 1] = f
    P[2, 2] = (far + near) / (near - far)
    P[2, 3] = 2.0 * far * near / (near - far)
    P[3, 2] = -1.0
    return P


def scale_matrix(s: float) -> np.ndarray:
    """Isotropic scale (4x4)."""
    S = np.eye(4)
    S[0, 0] = S[1, 1] = S[2, 2] = s
    return S


def rotation_y(angle_deg: float) -> np.ndarray:
    """Rotation about the Y axis (4x4), counter-clockwise looking down -Y."""
    R = np.eye(4)
    R[:3, :3] = Rotation.from_euler("y", angle_deg, degrees=True).as_matrix()
    return R


def camera_center(view_matrix: np.ndarray) -> np.ndarray:
    """World-space camera position of a view matrix: C = -R^T @ t."""
    R = view_matrix[:3, :3]
    t = view_matrix[:3, 3]
    return -R.T @ t


__all__ = ["look_at", "perspective", "scale_matrix", "rotation_y", "camera_center"]
