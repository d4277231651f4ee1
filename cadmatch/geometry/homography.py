"""
Homography estimation with RANSAC for geometric verification of matches.
"""

from __future__ import annotations

from typing import Optional, Tuple

import cv2
import numpy as np

from cadmatch.core.errors import VisionError, VisionErrorKind

MIN_HOMOGRAPHY_POINTS = 4


def homography_ransac(
    pts1: np.ndarray,
    pts2: np.ndarray,
    reproj_threshold: float = 3.0,
) -> Tuple[Optional[np.ndarray], np.ndarray]:
    """
    Estimate the homography mapping pts1 onto pts2 using RANSAC.

    Args:
        pts1: Points in first image (N, 2).
        pts2: Points in second image (N, 2).
        reproj_threshold: Maximum reprojection error in pixels for a
                          correspondence to count as an inlier.

    Returns:
        Tuple of (H, inlier_mask) where:
        - H: Homography (3x3), or None when it could not be estimated.
        - inlier_mask: Boolean array (N,) indicating inlier correspondences;
          all False when H is None.

    Raises:
        VisionError: (HOMOGRAPHY_FAILURE) if OpenCV raises during estimation.
    """
    if len(pts1) < MIN_HOMOGRAPHY_POINTS:
        return None, np.zeros(len(pts1), dtype=bool)

    try:
        H, inlier_mask = cv2.findHomography(
            pts1.reshape(-1, 1, 2).astype(np.float32),
            pts2.reshape(-1, 1, 2).astype(np.float32),
            cv2.RANSAC,
            reproj_threshold,
        )
    except cv2.error as e:
        raise VisionError(VisionErrorKind.HOMOGRAPHY_FAILURE, str(e)) from e

    if H is None or inlier_mask is None:
        return None, np.zeros(len(pts1), dtype=bool)

    # OpenCV returns a uint8 mask; convert before boolean indexing.
    return H, inlier_mask.ravel().astype(bool)


__all__ = ["homography_ransac", "MIN_HOMOGRAPHY_POINTS"]
