"""
Deterministic offscreen rasteriser for diffuse-shaded triangle meshes.

Follows OpenGL conventions end to end: clip space from ``P @ V @ M``,
perspective divide, viewport transform with the origin in the bottom-left
corner, a 16-bit depth attachment with a LESS test and no face culling.
The readback flips the colour target once so row 0 of the returned image
is the top row, as OpenCV expects.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from cadmatch.config.config import MatchConfig
from cadmatch.core.data_structures import Mesh, Viewpoint
from cadmatch.core.errors import RenderError, RenderErrorKind

logger = logging.getLogger(__name__)

DEPTH_MAX = np.iinfo(np.uint16).max
# Vertices this close to the camera plane are not rasterised.
MIN_CLIP_W = 1e-6


class DiffuseProgram:
    """
    Two-light Lambert shading: ``ambient + sum(max(n . l, 0)) * kd``.

    Normals reach the fragment stage untransformed, so the lights live in
    model space.
    """

    def __init__(
        self,
        ambient: Sequence[float],
        diffuse: Sequence[float],
        light_directions: Sequence[Sequence[float]],
    ) -> None:
        ambient = np.asarray(ambient, dtype=np.float64)
        diffuse = np.asarray(diffuse, dtype=np.float64)
        lights = np.asarray(light_directions, dtype=np.float64)

        problems = []
        if ambient.shape != (3,) or not np.all(np.isfinite(ambient)):
            problems.append(f"ambient must be 3 finite floats, got {ambient.tolist()}")
        if diffuse.shape != (3,) or not np.all(np.isfinite(diffuse)):
            problems.append(f"diffuse must be 3 finite floats, got {diffuse.tolist()}")
        if lights.ndim != 2 or lights.shape[1] != 3 or len(lights) == 0:
            problems.append(f"light directions must be (L, 3), got shape {lights.shape}")
        else:
            lengths = np.linalg.norm(lights, axis=1)
            if not np.all(np.isfinite(lengths)) or np.any(lengths == 0):
                problems.append("light directions must be finite and non-zero")

        if problems:
            log = "\n".join(problems)
            raise RenderError(RenderErrorKind.SHADER_COMPILE, "invalid shading parameters", log)

        self.ambient = ambient
        self.diffuse = diffuse
        self.lights = lights / np.linalg.norm(lights, axis=1, keepdims=True)

    def link(self, buffers: "MeshBuffers") -> None:
        """
        Check that the vertex attributes can feed this program.

        Raises:
            RenderError: (SHADER_LINK) with the mismatch details in ``log``.
        """
        problems = []
        if buffers.positions.ndim != 2 or buffers.positions.shape[1] != 4:
            problems.append(f"position attribute has shape {buffers.positions.shape}")
        if buffers.normals.shape != (buffers.positions.shape[0], 3):
            problems.append(
                f"normal attribute has shape {buffers.normals.shape}, "
                f"expected ({buffers.positions.shape[0]}, 3)"
            )
        if problems:
            raise RenderError(
                RenderErrorKind.SHADER_LINK, "vertex attributes do not match program", "\n".join(problems)
            )

    def shade(self, normals: np.ndarray) -> np.ndarray:
        """
        Args:
            normals: Interpolated normals (N, 3); normalised here.

        Returns:
            Linear RGB colours (N, 3) clamped to [0, 1].
        """
        lengths = np.linalg.norm(normals, axis=1, keepdims=True)
        lengths[lengths == 0] = 1.0
        n = normals / lengths
        lambert = np.clip(n @ self.lights.T, 0.0, None).sum(axis=1, keepdims=True)
        color = self.ambient[None, :] + lambert * self.diffuse[None, :]
        return np.clip(color, 0.0, 1.0)


@dataclass
class MeshBuffers:
    """Vertex data packed once for every subsequent draw."""

    # (V, 4) float32 homogeneous positions.
    positions: np.ndarray
    # (V, 3) float32 normals.
    normals: np.ndarray
    # (T, 3) int32 indices, used exactly as stored in the mesh.
    indices: np.ndarray

    @classmethod
    def upload(cls, mesh: Mesh) -> "MeshBuffers":
        positions = np.ones((mesh.num_vertices, 4), dtype=np.float32)
        positions[:, :3] = mesh.positions
        return cls(
            positions=positions,
            normals=np.ascontiguousarray(mesh.normals, dtype=np.float32),
            indices=np.ascontiguousarray(mesh.triangles, dtype=np.int32),
        )


class Framebuffer:
    """RGBA8 colour target with a 16-bit depth attachment, bottom row first."""

    def __init__(self, width: int, height: int) -> None:
        if width <= 0 or height <= 0:
            raise RenderError(
                RenderErrorKind.FRAMEBUFFER_INCOMPLETE,
                f"framebuffer needs positive size, got {width}x{height}",
            )
        try:
            self.color = np.zeros((height, width, 4), dtype=np.uint8)
            self.depth = np.full((height, width), DEPTH_MAX, dtype=np.uint16)
        except MemoryError as e:
            raise RenderError(
                RenderErrorKind.SURFACE_UNAVAILABLE,
                f"could not allocate {width}x{height} framebuffer",
            ) from e
        self.width = width
        self.height = height

    def clear(self, color: Sequence[float] = (0.0, 0.0, 0.0, 1.0)) -> None:
        self.color[...] = np.rint(np.clip(color, 0.0, 1.0) * 255).astype(np.uint8)
        self.depth.fill(DEPTH_MAX)

    def read_pixels(self) -> np.ndarray:
        """RGB copy of the colour target, flipped so row 0 is the top row."""
        return np.ascontiguousarray(self.color[::-1, :, :3])


class OffscreenRenderer:
    """
    Renders one mesh into an offscreen framebuffer from arbitrary viewpoints.

    Resources are created program → buffers → framebuffer and released in
    the reverse order.
    """

    def __init__(self, mesh: Mesh, config: Optional[MatchConfig] = None) -> None:
        config = config or MatchConfig()
        self.width = config.render_width
        self.height = config.render_height

        self._program: Optional[DiffuseProgram] = DiffuseProgram(
            config.ambient, config.diffuse, config.light_directions
        )
        self._buffers: Optional[MeshBuffers] = MeshBuffers.upload(mesh)
        self._program.link(self._buffers)
        self._framebuffer: Optional[Framebuffer] = Framebuffer(self.width, self.height)

        logger.info(
            "[render] offscreen target %dx%d ready for %d triangles",
            self.width,
            self.height,
            len(self._buffers.indices),
        )

    @property
    def is_released(self) -> bool:
        return self._framebuffer is None and self._buffers is None and self._program is None

    def _require_live(self) -> None:
        if self._framebuffer is None or self._buffers is None or self._program is None:
            raise RenderError(RenderErrorKind.SURFACE_UNAVAILABLE, "renderer has been released")

    def render(
        self,
        view_matrix: np.ndarray,
        projection_matrix: np.ndarray,
        model_matrix: Optional[np.ndarray] = None,
    ) -> np.ndarray:
        """
        Render the mesh and read the result back.

        Args:
            view_matrix: View matrix (4x4).
            projection_matrix: Projection matrix (4x4).
            model_matrix: Model matrix (4x4), identity if None.

        Returns:
            Rendered image (H, W, 3), dtype=uint8, RGB, top row first.

        Raises:
            RenderError: (SURFACE_UNAVAILABLE) after release().
        """
        self._require_live()
        if model_matrix is None:
            model_matrix = np.eye(4)

        mvp = np.asarray(projection_matrix, dtype=np.float64) @ np.asarray(
            view_matrix, dtype=np.float64
        ) @ np.asarray(model_matrix, dtype=np.float64)

        fb = self._framebuffer
        fb.clear()
        self._draw(mvp)
        return fb.read_pixels()

    def render_viewpoint(self, viewpoint: Viewpoint) -> np.ndarray:
        return self.render(
            viewpoint.view_matrix, viewpoint.projection_matrix, viewpoint.model_matrix
        )

    def _draw(self, mvp: np.ndarray) -> None:
        buffers = self._buffers
        program = self._program
        fb = self._framebuffer
        W, H = fb.width, fb.height

        # Vertex stage.
        clip = buffers.positions.astype(np.float64) @ mvp.T
        w = clip[:, 3]
        safe_w = np.where(np.abs(w) < MIN_CLIP_W, MIN_CLIP_W, w)
        ndc = clip[:, :3] / safe_w[:, None]
        win_x = (ndc[:, 0] + 1.0) * 0.5 * W
        win_y = (ndc[:, 1] + 1.0) * 0.5 * H
        win_z = ndc[:, 2]
        inv_w = 1.0 / safe_w
        normals = buffers.normals.astype(np.float64)

        drawn = 0
        for tri in buffers.indices:
            if np.any(w[tri] <= MIN_CLIP_W):
                continue

            x = win_x[tri]
            y = win_y[tri]
            area = (x[1] - x[0]) * (y[2] - y[0]) - (x[2] - x[0]) * (y[1] - y[0])
            if area == 0:
                continue

            x_min = max(int(np.floor(x.min())), 0)
            x_max = min(int(np.ceil(x.max())), W - 1)
            y_min = max(int(np.floor(y.min())), 0)
            y_max = min(int(np.ceil(y.max())), H - 1)
            if x_min > x_max or y_min > y_max:
                continue

            # Sample at pixel centres.
            px, py = np.meshgrid(
                np.arange(x_min, x_max + 1, dtype=np.float64) + 0.5,
                np.arange(y_min, y_max + 1, dtype=np.float64) + 0.5,
            )
            b0 = ((x[1] - px) * (y[2] - py) - (x[2] - px) * (y[1] - py)) / area
            b1 = ((x[2] - px) * (y[0] - py) - (x[0] - px) * (y[2] - py)) / area
            b2 = ((x[0] - px) * (y[1] - py) - (x[1] - px) * (y[0] - py)) / area
            inside = (b0 >= 0) & (b1 >= 0) & (b2 >= 0)
            if not np.any(inside):
                continue

            rows, cols = np.nonzero(inside)
            b0, b1, b2 = b0[inside], b1[inside], b2[inside]

            z = b0 * win_z[tri[0]] + b1 * win_z[tri[1]] + b2 * win_z[tri[2]]
            in_depth_range = (z >= -1.0) & (z <= 1.0)
            depth16 = np.rint((np.clip(z, -1.0, 1.0) * 0.5 + 0.5) * DEPTH_MAX).astype(np.uint16)

            fy = rows + y_min
            fx = cols + x_min
            passed = in_depth_range & (depth16 < fb.depth[fy, fx])
            if not np.any(passed):
                continue

            fy, fx = fy[passed], fx[passed]
            b0, b1, b2 = b0[passed], b1[passed], b2[passed]

            # Perspective-correct interpolation of the normal varying.
            p0 = b0 * inv_w[tri[0]]
            p1 = b1 * inv_w[tri[1]]
            p2 = b2 * inv_w[tri[2]]
            norm = p0 + p1 + p2
            frag_normals = (
                p0[:, None] * normals[tri[0]]
                + p1[:, None] * normals[tri[1]]
                + p2[:, None] * normals[tri[2]]
            ) / norm[:, None]

            colors = program.shade(frag_normals)
            fb.color[fy, fx, :3] = np.rint(colors * 255).astype(np.uint8)
            fb.color[fy, fx, 3] = 255
            fb.depth[fy, fx] = depth16[passed]
            drawn += 1

        logger.debug("[render] rasterised %d/%d triangles", drawn, len(buffers.indices))

    def release_framebuffer(self) -> None:
        self._framebuffer = None

    def release_buffers(self) -> None:
        self._buffers = None

    def release_program(self) -> None:
        self._program = None

    def release(self) -> None:
        """Drop framebuffer, buffers and program, in that order. Idempotent."""
        self.release_framebuffer()
        self.release_buffers()
        self.release_program()
        logger.debug("[render] offscreen renderer released")


__all__ = ["DiffuseProgram", "MeshBuffers", "Framebuffer", "OffscreenRenderer"]
