"""
YUV_420_888 camera images and their conversion to RGB.
"""

from __future__ import annotations

from dataclasses import dataclass

import cv2
import numpy as np

from cadmatch.core.errors import FrameError, FrameErrorKind


@dataclass
class YuvImage:
    """
    Three-plane YUV 4:2:0 image as handed over by a camera runtime.

    Plane buffers are flat uint8 arrays. With ``uv_pixel_stride == 2`` the
    chroma planes are the interleaved views used by most Android devices
    (the V buffer reads V U V U ...); with ``uv_pixel_stride == 1`` they are
    fully planar.
    """

    y: np.ndarray
    u: np.ndarray
    v: np.ndarray
    width: int
    height: int
    y_row_stride: int
    uv_row_stride: int
    uv_pixel_stride: int

    @classmethod
    def from_rgb(cls, rgb: np.ndarray) -> "YuvImage":
        """Planar YUV image from an (H, W, 3) RGB array with even dimensions."""
        h, w = rgb.shape[:2]
        if h % 2 or w % 2:
            raise FrameError(FrameErrorKind.UNSUPPORTED_FORMAT, f"odd image size {w}x{h}")
        i420 = cv2.cvtColor(rgb, cv2.COLOR_RGB2YUV_I420).ravel()
        y_size = w * h
        c_size = y_size // 4
        return cls(
            y=i420[:y_size].copy(),
            u=i420[y_size : y_size + c_size].copy(),
            v=i420[y_size + c_size :].copy(),
            width=w,
            height=h,
            y_row_stride=w,
            uv_row_stride=w // 2,
            uv_pixel_stride=1,
        )


def _plane(buffer: np.ndarray, rows: int, cols: int, row_stride: int) -> np.ndarray:
    flat = np.asarray(buffer, dtype=np.uint8).ravel()
    needed = (rows - 1) * row_stride + cols
    if flat.size < needed:
        raise FrameError(
            FrameErrorKind.UNSUPPORTED_FORMAT,
            f"plane has {flat.size} bytes, need {needed}",
        )
    padded = np.zeros(rows * row_stride, dtype=np.uint8)
    padded[: min(flat.size, padded.size)] = flat[: padded.size]
    return padded.reshape(rows, row_stride)[:, :cols]


def to_nv21(image: YuvImage) -> np.ndarray:
    """
    Pack a YuvImage into an NV21 buffer: the Y plane followed by interleaved V/U.

    Returns:
        NV21 image (H * 3 / 2, W), dtype=uint8.

    Raises:
        FrameError: (UNSUPPORTED_FORMAT) for odd sizes, short planes or
            pixel strides other than 1 and 2.
    """
    w, h = image.width, image.height
    if w <= 0 or h <= 0 or w % 2 or h % 2:
        raise FrameError(FrameErrorKind.UNSUPPORTED_FORMAT, f"unsupported size {w}x{h}")

    y = _plane(image.y, h, w, image.y_row_stride)

    if image.uv_pixel_stride == 2:
        # The V buffer already reads V U V U ... but stops one byte short of
        # the final U sample, which is the last byte of the U buffer.
        v = np.asarray(image.v, dtype=np.uint8).ravel()
        u = np.asarray(image.u, dtype=np.uint8).ravel()
        vu = _plane(np.concatenate([v, u[-1:]]), h // 2, w, image.uv_row_stride)
    elif image.uv_pixel_stride == 1:
        v = _plane(image.v, h // 2, w // 2, image.uv_row_stride)
        u = _plane(image.u, h // 2, w // 2, image.uv_row_stride)
        vu = np.empty((h // 2, w), dtype=np.uint8)
        vu[:, 0::2] = v
        vu[:, 1::2] = u
    else:
        raise FrameError(
            FrameErrorKind.UNSUPPORTED_FORMAT,
            f"unsupported chroma pixel stride {image.uv_pixel_stride}",
        )

    return np.vstack([y, vu])


def yuv_to_rgb(image: object) -> np.ndarray:
    """
    Convert a camera image to (H, W, 3) uint8 RGB.

    Args:
        image: A YuvImage, or an RGB / grayscale ndarray passed through.

    Raises:
        FrameError: (UNSUPPORTED_FORMAT) for anything else.
    """
    if isinstance(image, YuvImage):
        return cv2.cvtColor(to_nv21(image), cv2.COLOR_YUV2RGB_NV21)

    if isinstance(image, np.ndarray) and image.dtype == np.uint8:
        if image.ndim == 3 and image.shape[2] == 3:
            return image
        if image.ndim == 2:
            return cv2.cvtColor(image, cv2.COLOR_GRAY2RGB)

    raise FrameError(
        FrameErrorKind.UNSUPPORTED_FORMAT, f"cannot convert {type(image).__name__} to RGB"
    )


__all__ = ["YuvImage", "to_nv21", "yuv_to_rgb"]
