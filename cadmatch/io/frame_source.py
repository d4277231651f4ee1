"""
Camera-side collaborators of the pipeline.

``FrameSource`` and ``DisplaySurface`` describe what the AR runtime and the
graphics layer must provide. ``LatestFrameSlot`` is the bounded,
latest-wins hand-off a producer thread publishes into, and
``VideoFrameSource`` replays a video file through the same interface.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Optional, Protocol

import cv2
import numpy as np

from cadmatch.core.data_structures import Frame, Intrinsics
from cadmatch.core.errors import FrameNotReadyError
from cadmatch.io.yuv import YuvImage

logger = logging.getLogger(__name__)


class FrameSource(Protocol):
    def set_camera_texture(self, texture_id: int) -> None:
        """Bind the display's external camera texture."""

    def acquire_latest(self) -> Frame:
        """Return the newest frame or raise FrameNotReadyError; never blocks."""


class DisplaySurface(Protocol):
    width: int
    height: int

    def acquire_camera_texture(self) -> int:
        """Create the external-image texture the camera stream is sampled from."""

    def resize(self, width: int, height: int) -> None:
        ...

    def blit(self, frame: Frame) -> None:
        """Draw the camera frame full-screen."""

    def release(self) -> None:
        ...


def default_intrinsics(width: int, height: int) -> Intrinsics:
    """Pinhole guess for sources without calibration: f = max(w, h), centred."""
    f = float(max(width, height))
    return Intrinsics(fx=f, fy=f, cx=width / 2.0, cy=height / 2.0)


class LatestFrameSlot:
    """
    Single-slot mailbox between the camera thread and the render thread.

    ``publish`` overwrites any frame not yet consumed; ``acquire_latest``
    takes the frame out of the slot.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._frame: Optional[Frame] = None
        self.camera_texture: Optional[int] = None
        self.published = 0
        self.dropped = 0

    def set_camera_texture(self, texture_id: int) -> None:
        with self._lock:
            self.camera_texture = texture_id

    def publish(self, frame: Frame) -> None:
        with self._lock:
            if self._frame is not None:
                self.dropped += 1
            self._frame = frame
            self.published += 1

    def acquire_latest(self) -> Frame:
        with self._lock:
            frame, self._frame = self._frame, None
        if frame is None:
            raise FrameNotReadyError()
        return frame


class VideoFrameSource:
    """
    FrameSource replaying a video file, one decoded frame per acquire.

    Args:
        video_path: Path to the input video file.
        every_n: Deliver every Nth decoded frame.
        as_yuv: Deliver YuvImage frames the way a camera runtime would,
            instead of RGB arrays.
        intrinsics: Camera intrinsics; a centred pinhole guess if None.
    """

    def __init__(
        self,
        video_path: str,
        every_n: int = 1,
        as_yuv: bool = False,
        intrinsics: Optional[Intrinsics] = None,
    ) -> None:
        self._cap = cv2.VideoCapture(video_path)
        if not self._cap.isOpened():
            raise ValueError(f"Could not open video file: {video_path}")
        self.every_n = max(1, every_n)
        self.as_yuv = as_yuv
        self.intrinsics = intrinsics
        self.camera_texture: Optional[int] = None
        self._frame_count = 0

    def set_camera_texture(self, texture_id: int) -> None:
        self.camera_texture = texture_id

    def acquire_latest(self) -> Frame:
        if self._cap is None:
            raise FrameNotReadyError("video source released")

        while True:
            ret, frame = self._cap.read()
            if not ret:
                raise FrameNotReadyError("end of video")
            self._frame_count += 1
            # Subsample by every_n
            if (self._frame_count - 1) % self.every_n == 0:
                break

        # Convert BGR to RGB
        rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB).astype(np.uint8)
        h, w = rgb.shape[:2]
        if self.as_yuv:
            # 4:2:0 needs even dimensions.
            rgb = np.ascontiguousarray(rgb[: h - h % 2, : w - w % 2])
            h, w = rgb.shape[:2]
            image: object = YuvImage.from_rgb(rgb)
        else:
            image = rgb

        return Frame(
            image=image,
            width=w,
            height=h,
            intrinsics=self.intrinsics or default_intrinsics(w, h),
            timestamp=time.monotonic(),
        )

    def release(self) -> None:
        if self._cap is not None:
            self._cap.release()
            self._cap = None


class NullDisplaySurface:
    """Headless DisplaySurface that only counts what it is asked to draw."""

    def __init__(self, width: int = 0, height: int = 0) -> None:
        self.width = width
        self.height = height
        self.blit_count = 0
        self.last_frame: Optional[Frame] = None
        self.released = False
        self._next_texture = 1
        self.texture_id: Optional[int] = None

    def acquire_camera_texture(self) -> int:
        self.texture_id = self._next_texture
        self._next_texture += 1
        return self.texture_id

    def resize(self, width: int, height: int) -> None:
        self.width = width
        self.height = height

    def blit(self, frame: Frame) -> None:
        self.blit_count += 1
        self.last_frame = frame

    def release(self) -> None:
        self.texture_id = None
        self.released = True


__all__ = [
    "FrameSource",
    "DisplaySurface",
    "default_intrinsics",
    "LatestFrameSlot",
    "VideoFrameSource",
    "NullDisplaySurface",
]
