"""Pipeline configuration and named detector presets."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple


@dataclass
class MatchConfig:
    """Configuration data class for the CAD matching pipeline."""

    # offscreen rendering
    render_width: int = 1024
    render_height: int = 1024
    ambient: Tuple[float, float, float] = (0.2, 0.2, 0.2)
    diffuse: Tuple[float, float, float] = (0.4, 0.4, 0.4)
    light_directions: Tuple[Tuple[float, float, float], ...] = (
        (0.0, 0.0, 1.0),
        (1.0, 1.0, 1.0),
    )

    # viewpoint ring
    azimuths_deg: Tuple[float, ...] = (0.0, 45.0, 90.0, 135.0, 180.0, 225.0, 270.0, 315.0)
    eye: Tuple[float, float, float] = (0.0, 0.0, 5.0)
    target: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    up: Tuple[float, float, float] = (0.0, 1.0, 0.0)
    model_scale: float = 0.01
    fov_y_deg: float = 45.0
    aspect: float = 1.0
    near: float = 1.0
    far: float = 10.0

    # preprocessing
    blur_kernel: Tuple[int, int] = (5, 5)
    canny_low: float = 50.0
    canny_high: float = 150.0

    # detection
    detector: str = "akaze"  # "akaze" or "orb"
    reference_threshold: float = 0.001  # AKAZE threshold for baked views
    live_threshold: float | None = None  # None keeps the OpenCV default
    orb_nfeatures: int = 2000

    # matching
    ratio: float = 0.75
    min_homography_matches: int = 4
    ransac_reproj_threshold: float = 3.0
    match_workers: int = 1

    # pipeline
    compute_in_worker: bool = False
    frame_rate_hz: float = 30.0


def get_config(preset: str = "akaze") -> MatchConfig:
    """
    Return the configuration for a named detector preset.

    Args:
        preset: One of "akaze", "orb-1000", "orb-2000", "orb-5000".

    Returns:
        The configuration object with preset-specific overrides.

    Raises:
        ValueError: If the preset is unknown.
    """
    cfg = MatchConfig()

    if preset == "akaze":
        cfg.detector = "akaze"

    elif preset.startswith("orb-"):
        try:
            nfeatures = int(preset.split("-", 1)[1])
        except ValueError:
            raise ValueError(f"Unknown preset: {preset}") from None
        if nfeatures not in (1000, 2000, 5000):
            raise ValueError(f"Unknown preset: {preset}")
        cfg.detector = "orb"
        cfg.orb_nfeatures = nfeatures

    else:
        raise ValueError(f"Unknown preset: {preset}")

    return cfg


__all__ = ["MatchConfig", "get_config"]
