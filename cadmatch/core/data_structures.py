"""
Shared core data structures for the CAD matching pipeline.

These dataclasses are intentionally simple containers used across:
- mesh loading and offscreen rendering
- feature extraction and the feature bank
- matching and the pipeline coordinator
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import cv2
import numpy as np

from cadmatch.core.errors import MeshErrorKind, MeshLoadError


@dataclass
class Mesh:
    """Triangle mesh stored as three parallel arrays."""

    # (V, 3) float32 vertex positions in model units.
    positions: np.ndarray
    # (V, 3) float32 per-vertex normals, aligned with `positions` by row.
    normals: np.ndarray
    # (T, 3) int32 zero-based vertex indices.
    triangles: np.ndarray

    @property
    def num_vertices(self) -> int:
        return int(self.positions.shape[0])

    @property
    def num_triangles(self) -> int:
        return int(self.triangles.shape[0])

    def validate(self) -> None:
        """
        Check the mesh invariants.

        Raises:
            MeshLoadError: (FORMAT) if there are fewer than 3 vertices, no
                triangles, misaligned normals or an out-of-range index.
        """
        if self.num_vertices < 3:
            raise MeshLoadError(
                MeshErrorKind.FORMAT, f"mesh needs >= 3 vertices, got {self.num_vertices}"
            )
        if self.num_triangles < 1:
            raise MeshLoadError(MeshErrorKind.FORMAT, "mesh has no triangles")
        if self.normals.shape != self.positions.shape:
            raise MeshLoadError(
                MeshErrorKind.FORMAT,
                f"normals {self.normals.shape} do not match positions {self.positions.shape}",
            )
        if self.triangles.min() < 0 or self.triangles.max() >= self.num_vertices:
            raise MeshLoadError(MeshErrorKind.FORMAT, "triangle index out of range")


@dataclass(frozen=True)
class Viewpoint:
    """One baked camera placement around the model."""

    # Azimuth around the model Y axis, in degrees.
    azimuth_deg: float
    # 4x4 float matrices, column-vector convention (clip = P @ V @ M @ x).
    model_matrix: np.ndarray
    view_matrix: np.ndarray
    projection_matrix: np.ndarray

    @property
    def mvp(self) -> np.ndarray:
        return self.projection_matrix @ self.view_matrix @ self.model_matrix


@dataclass(frozen=True)
class RenderedView:
    """A rasterisation of the mesh from one viewpoint, top row first."""

    view_index: int
    # (H, W, 3) uint8 RGB.
    image: np.ndarray
    viewpoint: Optional[Viewpoint] = None


@dataclass(frozen=True)
class KeypointSet:
    """
    Ordered 2D keypoints, stored as arrays so they can be copied across
    threads without dragging OpenCV objects along.
    """

    # (N, 2) float32 subpixel (x, y) in pixel coordinates.
    points: np.ndarray
    # (N,) float32 keypoint diameters.
    sizes: np.ndarray
    # (N,) float32 orientations in degrees (-1 when undefined).
    angles: np.ndarray
    # (N,) float32 detector responses.
    responses: np.ndarray
    # (N,) int32 pyramid octaves.
    octaves: np.ndarray

    def __len__(self) -> int:
        return int(self.points.shape[0])

    @classmethod
    def empty(cls) -> "KeypointSet":
        return cls(
            points=np.zeros((0, 2), dtype=np.float32),
            sizes=np.zeros((0,), dtype=np.float32),
            angles=np.zeros((0,), dtype=np.float32),
            responses=np.zeros((0,), dtype=np.float32),
            octaves=np.zeros((0,), dtype=np.int32),
        )

    @classmethod
    def from_cv(cls, keypoints: Sequence[cv2.KeyPoint]) -> "KeypointSet":
        if len(keypoints) == 0:
            return cls.empty()
        return cls(
            points=np.array([kp.pt for kp in keypoints], dtype=np.float32),
            sizes=np.array([kp.size for kp in keypoints], dtype=np.float32),
            angles=np.array([kp.angle for kp in keypoints], dtype=np.float32),
            responses=np.array([kp.response for kp in keypoints], dtype=np.float32),
            octaves=np.array([kp.octave for kp in keypoints], dtype=np.int32),
        )

    def to_cv(self) -> List[cv2.KeyPoint]:
        return [
            cv2.KeyPoint(
                x=float(pt[0]),
                y=float(pt[1]),
                size=float(size),
                angle=float(angle),
                response=float(response),
                octave=int(octave),
            )
            for pt, size, angle, response, octave in zip(
                self.points, self.sizes, self.angles, self.responses, self.octaves
            )
        ]

    def copy(self) -> "KeypointSet":
        return KeypointSet(
            points=self.points.copy(),
            sizes=self.sizes.copy(),
            angles=self.angles.copy(),
            responses=self.responses.copy(),
            octaves=self.octaves.copy(),
        )


@dataclass(frozen=True)
class Features:
    """Keypoints and their descriptor block, aligned by row index."""

    keypoints: KeypointSet
    # (N, D) uint8 binary descriptors; rows == len(keypoints).
    descriptors: np.ndarray

    def __post_init__(self) -> None:
        if self.descriptors.shape[0] != len(self.keypoints):
            raise ValueError(
                f"descriptor rows {self.descriptors.shape[0]} != "
                f"keypoints {len(self.keypoints)}"
            )

    def __len__(self) -> int:
        return len(self.keypoints)

    @property
    def is_empty(self) -> bool:
        return len(self.keypoints) == 0

    @classmethod
    def empty(cls, descriptor_size: int = 0) -> "Features":
        return cls(KeypointSet.empty(), np.zeros((0, descriptor_size), dtype=np.uint8))

    def copy(self) -> "Features":
        return Features(self.keypoints.copy(), self.descriptors.copy())


@dataclass(frozen=True)
class BankEntry:
    """Reference features of one baked view. Immutable once in a bank."""

    view_index: int
    view: RenderedView
    features: Features

    @property
    def keypoints(self) -> KeypointSet:
        return self.features.keypoints

    @property
    def descriptors(self) -> np.ndarray:
        return self.features.descriptors


@dataclass
class EntryMatch:
    """Matching outcome for a single bank entry."""

    view_index: int
    candidate_matches: int = 0
    inlier_matches: int = 0
    # True when the entry had no descriptors and was not evaluated.
    skipped: bool = False
    # Message of a recovered vision failure, if any.
    error: Optional[str] = None


@dataclass
class MatchReport:
    """Aggregated result of one compute request."""

    total_candidate_matches: int = 0
    inlier_matches: int = 0
    per_entry: List[EntryMatch] = field(default_factory=list)

    @property
    def match_percentage(self) -> float:
        if self.total_candidate_matches == 0:
            return 0.0
        return 100.0 * self.inlier_matches / self.total_candidate_matches

    def best_entry(self) -> Optional[EntryMatch]:
        """Entry with the most inliers (first one wins ties), or None."""
        evaluated = [e for e in self.per_entry if not e.skipped]
        if not evaluated:
            return None
        return max(evaluated, key=lambda e: e.inlier_matches)


@dataclass(frozen=True)
class Intrinsics:
    """Pinhole intrinsics of the camera that produced a frame."""

    fx: float
    fy: float
    cx: float
    cy: float

    def camera_matrix(self) -> np.ndarray:
        return np.array(
            [[self.fx, 0.0, self.cx], [0.0, self.fy, self.cy], [0.0, 0.0, 1.0]],
            dtype=np.float64,
        )

    @staticmethod
    def dist_coeffs() -> np.ndarray:
        # Device distortion is not modelled.
        return np.zeros(5, dtype=np.float64)


@dataclass
class Frame:
    """
    A camera frame handed over by a FrameSource.

    `image` is either a YuvImage (YUV_420_888 planes) or an already
    converted (H, W, 3) uint8 RGB array.
    """

    image: object
    width: int
    height: int
    intrinsics: Intrinsics
    pose: np.ndarray = field(default_factory=lambda: np.eye(4))
    # Capture time in time.monotonic() seconds.
    timestamp: float = field(default_factory=time.monotonic)


__all__ = [
    "Mesh",
    "Viewpoint",
    "RenderedView",
    "KeypointSet",
    "Features",
    "BankEntry",
    "EntryMatch",
    "MatchReport",
    "Intrinsics",
    "Frame",
]
