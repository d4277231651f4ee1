"""
Keypoint detection and descriptor extraction.

The same extractor serves the baked reference views and the live camera
frames, so both pixel sources go through an identical edge-map
preprocessing before detection.
"""

from __future__ import annotations

import logging
from typing import Optional, Tuple

import cv2
import numpy as np

from cadmatch.config.config import MatchConfig
from cadmatch.core.data_structures import Features, KeypointSet
from cadmatch.core.errors import VisionError, VisionErrorKind

logger = logging.getLogger(__name__)


def preprocess_image(
    image: np.ndarray,
    blur_kernel: Tuple[int, int] = (5, 5),
    canny_low: float = 50.0,
    canny_high: float = 150.0,
) -> np.ndarray:
    """
    Turn an image into the edge map features are detected on.

    Steps: luminance -> min-max normalise to [0, 255] -> Gaussian blur
    (sigma derived from the kernel) -> Canny edges.

    Args:
        image: Input image (H, W, 3) RGB or (H, W), dtype=uint8.
        blur_kernel: Gaussian kernel size.
        canny_low: Lower Canny hysteresis threshold.
        canny_high: Upper Canny hysteresis threshold.

    Returns:
        Binary edge image (H, W), dtype=uint8.
    """
    # Convert to grayscale if needed
    if image.ndim == 3 and image.shape[2] > 1:
        code = cv2.COLOR_RGBA2GRAY if image.shape[2] == 4 else cv2.COLOR_RGB2GRAY
        gray = cv2.cvtColor(image, code)
    elif image.ndim == 3:
        gray = image[:, :, 0]
    else:
        gray = image

    gray = cv2.normalize(gray, None, 0, 255, cv2.NORM_MINMAX).astype(np.uint8)
    gray = cv2.GaussianBlur(gray, blur_kernel, 0)
    return cv2.Canny(gray, canny_low, canny_high)


def create_detector(config: MatchConfig, threshold: Optional[float] = None) -> cv2.Feature2D:
    """
    Create the configured binary detector-descriptor.

    Args:
        config: Pipeline configuration (`detector` is "akaze" or "orb").
        threshold: AKAZE detector response threshold; OpenCV default if None.

    Raises:
        ValueError: If the detector type is not supported.
    """
    if config.detector == "akaze":
        if threshold is None:
            return cv2.AKAZE_create()
        return cv2.AKAZE_create(threshold=threshold)
    if config.detector == "orb":
        return cv2.ORB_create(nfeatures=config.orb_nfeatures)
    raise ValueError(f"Unsupported detector type: {config.detector}")


def detect_keypoints(
    image: np.ndarray,
    config: Optional[MatchConfig] = None,
    threshold: Optional[float] = None,
) -> Features:
    """
    Detect keypoints and compute descriptors in an image.

    Args:
        image: Input image (H, W, 3) RGB or (H, W), dtype=uint8.
        config: Pipeline configuration.
        threshold: AKAZE threshold override (ignored for ORB).

    Returns:
        Features whose descriptor rows align with the keypoints; empty
        (0 keypoints, (0, D) descriptors) when nothing is detected.

    Raises:
        VisionError: (EXTRACT_FAILURE) if the detector cannot be created or
            OpenCV rejects the input.
    """
    config = config or MatchConfig()

    try:
        detector = create_detector(config, threshold)
    except (AttributeError, ValueError, cv2.error) as e:
        # Unknown detector name, or an OpenCV build without it.
        raise VisionError(VisionErrorKind.EXTRACT_FAILURE, f"cannot create detector: {e}") from e

    try:
        edges = preprocess_image(
            image,
            blur_kernel=config.blur_kernel,
            canny_low=config.canny_low,
            canny_high=config.canny_high,
        )
        keypoints, descriptors = detector.detectAndCompute(edges, None)
    except cv2.error as e:
        raise VisionError(VisionErrorKind.EXTRACT_FAILURE, str(e)) from e

    if descriptors is None or len(keypoints) == 0:
        return Features.empty(detector.descriptorSize())

    return Features(KeypointSet.from_cv(keypoints), np.ascontiguousarray(descriptors))


class FeatureExtractor:
    """
    Extractor bound to one configuration and detector threshold.

    Use ``for_reference`` for baked views and ``for_live`` for camera frames.
    """

    def __init__(self, config: Optional[MatchConfig] = None, threshold: Optional[float] = None) -> None:
        self.config = config or MatchConfig()
        self.threshold = threshold

    @classmethod
    def for_reference(cls, config: Optional[MatchConfig] = None) -> "FeatureExtractor":
        config = config or MatchConfig()
        return cls(config, threshold=config.reference_threshold)

    @classmethod
    def for_live(cls, config: Optional[MatchConfig] = None) -> "FeatureExtractor":
        config = config or MatchConfig()
        return cls(config, threshold=config.live_threshold)

    def extract(self, image: np.ndarray) -> Features:
        features = detect_keypoints(image, self.config, self.threshold)
        logger.debug("[features] %d keypoints extracted", len(features))
        return features

    __call__ = extract


__all__ = ["preprocess_image", "create_detector", "detect_keypoints", "FeatureExtractor"]
