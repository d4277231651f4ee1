from __future__ import annotations

from typing import List, Sequence, Tuple

import numpy as np
import pytest

from cadmatch.config.config import MatchConfig
from cadmatch.core.data_structures import Features, KeypointSet

Box = Tuple[Sequence[float], Sequence[float]]

# Asymmetric stack of boxes; every azimuth shows a different outline.
STEPPED_BOXES: List[Box] = [
    ((-110, -90, -70), (110, -30, 70)),
    ((-110, -30, -70), (-30, 90, 10)),
    ((20, -30, 0), (90, 30, 70)),
    ((40, 30, -60), (70, 60, -20)),
]

# Corner order per face, counter-clockwise seen from outside.
_FACES = [
    ((1, 0, 0), [(1, 0, 0), (1, 1, 0), (1, 1, 1), (1, 0, 1)]),
    ((-1, 0, 0), [(0, 0, 0), (0, 0, 1), (0, 1, 1), (0, 1, 0)]),
    ((0, 1, 0), [(0, 1, 0), (0, 1, 1), (1, 1, 1), (1, 1, 0)]),
    ((0, -1, 0), [(0, 0, 0), (1, 0, 0), (1, 0, 1), (0, 0, 1)]),
    ((0, 0, 1), [(0, 0, 1), (1, 0, 1), (1, 1, 1), (0, 1, 1)]),
    ((0, 0, -1), [(0, 0, 0), (0, 1, 0), (1, 1, 0), (1, 0, 0)]),
]


def boxes_obj(boxes: Sequence[Box]) -> str:
    """Flat-shaded OBJ text for axis-aligned boxes given as (min, max) corners."""
    lines: List[str] = ["# generated boxes"]
    v_count = 0
    for lo, hi in boxes:
        lo = np.asarray(lo, dtype=float)
        hi = np.asarray(hi, dtype=float)
        for normal, corners in _FACES:
            for corner in corners:
                p = lo + (hi - lo) * np.asarray(corner, dtype=float)
                lines.append(f"v {p[0]:.4f} {p[1]:.4f} {p[2]:.4f}")
                lines.append(f"vn {normal[0]} {normal[1]} {normal[2]}")
            a, b, c, d = (v_count + i for i in range(1, 5))
            lines.append(f"f {a}//{a} {b}//{b} {c}//{c}")
            lines.append(f"f {a}//{a} {c}//{c} {d}//{d}")
            v_count += 4
    return "\n".join(lines) + "\n"


@pytest.fixture
def cube_obj() -> str:
    return boxes_obj([((-100, -100, -100), (100, 100, 100))])


@pytest.fixture
def stepped_obj() -> str:
    return boxes_obj(STEPPED_BOXES)


@pytest.fixture
def triangle_obj() -> str:
    return "v 0 0 0\nv 1 0 0\nv 0 1 0\nf 1 2 3\n"


@pytest.fixture
def small_config() -> MatchConfig:
    """Lower resolution keeps pipeline tests fast."""
    cfg = MatchConfig()
    cfg.render_width = 256
    cfg.render_height = 256
    return cfg


def make_features(points: np.ndarray, descriptors: np.ndarray) -> Features:
    n = len(points)
    keypoints = KeypointSet(
        points=np.asarray(points, dtype=np.float32).reshape(-1, 2),
        sizes=np.full(n, 12.0, dtype=np.float32),
        angles=np.zeros(n, dtype=np.float32),
        responses=np.ones(n, dtype=np.float32),
        octaves=np.zeros(n, dtype=np.int32),
    )
    return Features(keypoints, np.asarray(descriptors, dtype=np.uint8))


@pytest.fixture
def random_descriptors():
    def _make(n: int, seed: int = 0, size: int = 61) -> np.ndarray:
        rng = np.random.default_rng(seed)
        return rng.integers(0, 256, size=(n, size), dtype=np.uint8)

    return _make
