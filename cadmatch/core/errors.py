"""
Error hierarchy for the CAD-to-camera matching pipeline.

Every failure the pipeline can report derives from ``CadMatchError``. The
``kind`` enums distinguish sub-cases without multiplying exception classes.
"""

from __future__ import annotations

from enum import Enum


class MeshErrorKind(Enum):
    """Why a mesh could not be loaded."""

    IO = "io"
    FORMAT = "format"


class RenderErrorKind(Enum):
    """Failure points of the offscreen renderer."""

    SHADER_COMPILE = "shader_compile"
    SHADER_LINK = "shader_link"
    FRAMEBUFFER_INCOMPLETE = "framebuffer_incomplete"
    SURFACE_UNAVAILABLE = "surface_unavailable"


class VisionErrorKind(Enum):
    """Failure points inside the vision toolkit calls."""

    EXTRACT_FAILURE = "extract_failure"
    MATCH_FAILURE = "match_failure"
    HOMOGRAPHY_FAILURE = "homography_failure"


class FrameErrorKind(Enum):
    """Why a camera frame could not be used."""

    NOT_READY = "not_ready"
    UNSUPPORTED_FORMAT = "unsupported_format"


class CadMatchError(Exception):
    """Base class for all pipeline errors."""


class MeshLoadError(CadMatchError):
    def __init__(self, kind: MeshErrorKind, message: str) -> None:
        super().__init__(f"{kind.value}: {message}")
        self.kind = kind


class RenderError(CadMatchError):
    """
    Raised by the offscreen renderer.

    Args:
        kind: Which stage failed.
        message: Human readable summary.
        log: Diagnostic log of the failing stage, preserved verbatim.
    """

    def __init__(self, kind: RenderErrorKind, message: str, log: str = "") -> None:
        super().__init__(f"{kind.value}: {message}")
        self.kind = kind
        self.log = log


class VisionError(CadMatchError):
    def __init__(self, kind: VisionErrorKind, message: str) -> None:
        super().__init__(f"{kind.value}: {message}")
        self.kind = kind


class FrameError(CadMatchError):
    def __init__(self, kind: FrameErrorKind, message: str) -> None:
        super().__init__(f"{kind.value}: {message}")
        self.kind = kind


class FrameNotReadyError(FrameError):
    """No new frame is available yet; the caller should skip this refresh."""

    def __init__(self, message: str = "no frame available") -> None:
        super().__init__(FrameErrorKind.NOT_READY, message)


class LifecycleError(CadMatchError):
    """An operation was invoked in a state that does not allow it."""


class BootstrapError(CadMatchError):
    """
    Bootstrap failed; ``__cause__`` holds the underlying mesh or render error.
    """


__all__ = [
    "MeshErrorKind",
    "RenderErrorKind",
    "VisionErrorKind",
    "FrameErrorKind",
    "CadMatchError",
    "MeshLoadError",
    "RenderError",
    "VisionError",
    "FrameError",
    "FrameNotReadyError",
    "LifecycleError",
    "BootstrapError",
]
