"""
Descriptor matching utilities: brute-force k-NN plus Lowe's ratio test.
"""

from __future__ import annotations

from typing import List, Tuple

import cv2
import numpy as np


def match_keypoints(
    descriptors1: np.ndarray,
    descriptors2: np.ndarray,
    k: int = 2,
) -> List[List[cv2.DMatch]]:
    """
    Match keypoint descriptors between two images using k-NN matching.

    Args:
        descriptors1: Query descriptors (N1, D).
        descriptors2: Train descriptors (N2, D).
        k: Number of nearest neighbours per query descriptor.

    Returns:
        List of k-NN match candidates. Each element is a list of cv2.DMatch
        objects, possibly shorter than k when the train set is small.
    """
    if len(descriptors1) == 0 or len(descriptors2) == 0:
        return []

    # Binary descriptors (AKAZE/ORB) are compared bitwise.
    norm_type = cv2.NORM_HAMMING if descriptors1.dtype == np.uint8 else cv2.NORM_L2
    matcher = cv2.BFMatcher(norm_type, crossCheck=False)

    knn_matches = matcher.knnMatch(descriptors1, descriptors2, k=k)

    return [list(pair) for pair in knn_matches]


def filter_matches_ratio_test(
    points1: np.ndarray,
    points2: np.ndarray,
    knn_matches: List[List[cv2.DMatch]],
    ratio: float = 0.75,
) -> Tuple[np.ndarray, np.ndarray, List[cv2.DMatch]]:
    """
    Filter matches using Lowe's ratio test.

    Args:
        points1: Keypoint coordinates of the query image (N1, 2).
        points2: Keypoint coordinates of the train image (N2, 2).
        knn_matches: List of k-NN match candidates (typically k=2).
        ratio: Ratio threshold for Lowe's test (default: 0.75).

    Returns:
        Tuple of (pts1, pts2, good_matches) where:
        - pts1: Array of matched points from first image (N, 2).
        - pts2: Array of matched points from second image (N, 2).
        - good_matches: List of filtered cv2.DMatch objects.
    """
    good_matches = []

    for match_pair in knn_matches:
        if len(match_pair) < 2:
            continue

        m, n = match_pair[0], match_pair[1]

        # Lowe's ratio test: keep if distance ratio is strictly below threshold
        if m.distance < ratio * n.distance:
            good_matches.append(m)

    if len(good_matches) == 0:
        pts1 = np.zeros((0, 2), dtype=np.float32)
        pts2 = np.zeros((0, 2), dtype=np.float32)
    else:
        pts1 = np.array([points1[m.queryIdx] for m in good_matches], dtype=np.float32)
        pts2 = np.array([points2[m.trainIdx] for m in good_matches], dtype=np.float32)

    return pts1, pts2, good_matches


__all__ = ["match_keypoints", "filter_matches_ratio_test"]
