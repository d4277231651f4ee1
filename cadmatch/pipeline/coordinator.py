"""
Lifecycle owner of the matching pipeline.

Wires the one-time reference path (mesh -> bake -> extract -> bank) and
the per-frame path (frame -> preview blit -> on request: extract ->
match -> listener), and enforces the state machine::

    UNINIT --bootstrap--> IDLE --surface ready--> READY <--> COMPUTING
       any state --release--> TORN_DOWN

Threading: ``on_frame`` runs on the render thread; ``request_compute``,
``subscribe`` and ``release`` may be called from the UI thread (or any
other); listener callbacks are posted to the UI dispatcher.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from enum import Enum
from typing import Callable, Optional

from cadmatch.config.config import MatchConfig
from cadmatch.core.data_structures import Features, Frame, Mesh, MatchReport
from cadmatch.core.errors import (
    BootstrapError,
    FrameError,
    FrameNotReadyError,
    LifecycleError,
    MeshLoadError,
    RenderError,
    VisionError,
)
from cadmatch.features.bank import FeatureBank
from cadmatch.features.keypoints import FeatureExtractor
from cadmatch.features.matcher import Matcher
from cadmatch.io.frame_source import DisplaySurface, FrameSource
from cadmatch.io.yuv import yuv_to_rgb
from cadmatch.mesh.obj_loader import load_obj_bytes
from cadmatch.pipeline.dispatch import QueueDispatcher, UiDispatcher
from cadmatch.render.offscreen import OffscreenRenderer
from cadmatch.render.viewpoints import bake, generate_viewpoints

logger = logging.getLogger(__name__)

MatchListener = Callable[[float], None]


class PipelineState(Enum):
    UNINIT = "uninit"
    IDLE = "idle"
    READY = "ready"
    COMPUTING = "computing"
    TORN_DOWN = "torn_down"


class PipelineCoordinator:
    """
    Owns the renderer, the feature bank and the preview/compute loop.

    Args:
        frame_source: Provider of camera frames.
        dispatcher: Where listener callbacks run. When None the coordinator
            starts (and later stops) its own QueueDispatcher thread.
        config: Pipeline configuration.
    """

    def __init__(
        self,
        frame_source: FrameSource,
        dispatcher: Optional[UiDispatcher] = None,
        config: Optional[MatchConfig] = None,
    ) -> None:
        self.config = config or MatchConfig()
        self._frame_source = frame_source

        self._owns_dispatcher = dispatcher is None
        self._dispatcher: UiDispatcher = dispatcher or QueueDispatcher().start()

        self._lock = threading.RLock()
        self._state = PipelineState.UNINIT
        self._listener: Optional[MatchListener] = None

        self._mesh: Optional[Mesh] = None
        self._renderer: Optional[OffscreenRenderer] = None
        self._bank: Optional[FeatureBank] = None
        self._surface: Optional[DisplaySurface] = None
        self._worker: Optional[ThreadPoolExecutor] = None

        self._live_extractor = FeatureExtractor.for_live(self.config)
        self._matcher = Matcher(self.config)

        self._requested_at: Optional[float] = None
        self._match_in_flight = False
        self._in_frame = False
        self._resources_dropped = False
        self._last_report: Optional[MatchReport] = None
        self.frames_drawn = 0

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------
    @property
    def state(self) -> PipelineState:
        with self._lock:
            return self._state

    @property
    def bank(self) -> Optional[FeatureBank]:
        return self._bank

    @property
    def last_report(self) -> Optional[MatchReport]:
        with self._lock:
            return self._last_report

    def _report_lifecycle(self, operation: str) -> None:
        error = LifecycleError(f"{operation} not allowed in state {self._state.value}")
        logger.warning("[pipeline] %s; ignored", error)

    # ------------------------------------------------------------------
    # Bootstrap
    # ------------------------------------------------------------------
    def bootstrap(self, mesh_bytes: bytes) -> None:
        """
        Load the mesh, bake the reference views and build the feature bank.

        Synchronous; nothing is retained when it fails.

        Raises:
            BootstrapError: If the mesh cannot be loaded or rendered, or the
                reference features cannot be extracted.
        """
        with self._lock:
            if self._state is not PipelineState.UNINIT:
                self._report_lifecycle("bootstrap")
                return

        renderer: Optional[OffscreenRenderer] = None
        try:
            mesh = load_obj_bytes(mesh_bytes)
            renderer = OffscreenRenderer(mesh, self.config)
            views = bake(mesh, generate_viewpoints(self.config), renderer, self.config)
            bank = FeatureBank.build(views, FeatureExtractor.for_reference(self.config))
        except (MeshLoadError, RenderError, VisionError) as e:
            if renderer is not None:
                renderer.release()
            logger.error("[pipeline] bootstrap failed: %s", e)
            raise BootstrapError(f"bootstrap failed: {e}") from e

        with self._lock:
            if self._state is PipelineState.TORN_DOWN:
                # Released while bootstrapping; discard everything.
                renderer.release()
                return
            self._mesh = mesh
            self._renderer = renderer
            self._bank = bank
            if self.config.compute_in_worker:
                self._worker = ThreadPoolExecutor(
                    max_workers=1, thread_name_prefix="cadmatch-match"
                )
            self._state = PipelineState.IDLE
            logger.info("[pipeline] bootstrap complete: %d bank entries", len(bank))
            if self._surface is not None and self._bind_surface():
                self._maybe_become_ready()

    # ------------------------------------------------------------------
    # Surface lifecycle
    # ------------------------------------------------------------------
    def on_surface_ready(self, surface: DisplaySurface) -> None:
        """
        Bind a display surface: acquire its camera texture, hand it to the
        frame source, then start previewing.

        A surface arriving before bootstrap is kept and bound once the bank
        exists.
        """
        with self._lock:
            if self._state is PipelineState.TORN_DOWN:
                self._report_lifecycle("on_surface_ready")
                return
            self._surface = surface
            if self._state is PipelineState.UNINIT:
                logger.info("[pipeline] surface ready before bootstrap; binding deferred")
                return
            if self._bind_surface():
                self._maybe_become_ready()
            elif self._state in (PipelineState.READY, PipelineState.COMPUTING):
                # No surface to draw on; a pending request is dropped.
                self._state = PipelineState.IDLE
                self._requested_at = None
                logger.warning("[pipeline] surface lost; preview paused until rebound")

    def _bind_surface(self) -> bool:
        try:
            texture_id = self._surface.acquire_camera_texture()
        except RenderError as e:
            logger.error("[pipeline] camera texture unavailable: %s", e)
            self._surface = None
            return False
        self._frame_source.set_camera_texture(texture_id)
        logger.info("[pipeline] camera texture %d bound", texture_id)
        return True

    def _maybe_become_ready(self) -> None:
        if self._state is PipelineState.IDLE and self._surface is not None:
            self._state = PipelineState.READY
            logger.info("[pipeline] preview armed")

    def on_surface_resized(self, width: int, height: int) -> None:
        with self._lock:
            if self._surface is None or self._state is PipelineState.TORN_DOWN:
                self._report_lifecycle("on_surface_resized")
                return
            if width <= 0 or height <= 0:
                logger.error("[pipeline] invalid surface size %dx%d", width, height)
                return
            self._surface.resize(width, height)

    # ------------------------------------------------------------------
    # Listener
    # ------------------------------------------------------------------
    def subscribe(self, listener: MatchListener) -> None:
        with self._lock:
            self._listener = listener

    def unsubscribe(self) -> None:
        with self._lock:
            self._listener = None

    # ------------------------------------------------------------------
    # Compute requests
    # ------------------------------------------------------------------
    def request_compute(self) -> None:
        """
        Ask for a match percentage on the next captured frame.

        Non-blocking. Requests made while one is in flight collapse into it.
        """
        with self._lock:
            if self._state is PipelineState.COMPUTING:
                logger.debug("[pipeline] compute already pending; request collapsed")
                return
            if self._state is not PipelineState.READY:
                self._report_lifecycle("request_compute")
                return
            self._state = PipelineState.COMPUTING
            self._requested_at = time.monotonic()
            logger.info("[pipeline] compute requested")

    # ------------------------------------------------------------------
    # Per-frame work (render thread)
    # ------------------------------------------------------------------
    def on_frame(self) -> bool:
        """
        Service one display refresh.

        Returns:
            True if a frame was drawn, False if the refresh was skipped.
        """
        with self._lock:
            if self._state not in (PipelineState.READY, PipelineState.COMPUTING):
                return False
            if self._surface is None:
                return False
            self._in_frame = True
            surface = self._surface

        try:
            return self._draw_frame(surface)
        finally:
            with self._lock:
                self._in_frame = False
                if self._state is PipelineState.TORN_DOWN:
                    self._drop_resources()

    def _draw_frame(self, surface: DisplaySurface) -> bool:
        try:
            frame = self._frame_source.acquire_latest()
        except FrameNotReadyError:
            logger.debug("[pipeline] camera frame not yet available")
            return False
        except FrameError as e:
            logger.warning("[pipeline] frame skipped: %s", e)
            return False

        try:
            surface.blit(frame)
        except RenderError as e:
            logger.warning("[pipeline] preview blit failed, frame skipped: %s", e)
            return False
        self.frames_drawn += 1

        with self._lock:
            due = (
                self._state is PipelineState.COMPUTING
                and not self._match_in_flight
                and self._requested_at is not None
                and frame.timestamp >= self._requested_at
            )
            bank = self._bank
        if due:
            self._service_compute(frame, bank)
        return True

    def _service_compute(self, frame: Frame, bank: FeatureBank) -> None:
        try:
            rgb = yuv_to_rgb(frame.image)
        except FrameError as e:
            logger.warning("[pipeline] cannot convert frame for matching, retrying: %s", e)
            return

        try:
            live = self._live_extractor.extract(rgb)
        except VisionError as e:
            logger.warning("[pipeline] live extraction failed: %s", e)
            live = Features.empty()
        logger.info("[pipeline] %d live keypoints", len(live))

        with self._lock:
            worker = self._worker
            if self._state is not PipelineState.COMPUTING:
                return
            self._match_in_flight = True

        if worker is None:
            try:
                report = self._matcher.match(live, bank)
            except Exception as e:
                logger.error("[pipeline] match failed: %s", e)
                report = MatchReport()
            self._finish(report)
            return

        # Only the live features cross threads; the bank is immutable.
        future: Future = worker.submit(self._matcher.match, live.copy(), bank)
        future.add_done_callback(self._on_match_done)

    def _on_match_done(self, future: Future) -> None:
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.error("[pipeline] background match failed: %s", error)
            self._finish(MatchReport())
            return
        self._finish(future.result())

    def _finish(self, report: MatchReport) -> None:
        with self._lock:
            self._match_in_flight = False
            if self._state is not PipelineState.COMPUTING:
                return
            self._state = PipelineState.READY
            self._requested_at = None
            self._last_report = report

        percentage = report.match_percentage
        logger.info("[pipeline] match percentage %.2f%%", percentage)
        self._dispatcher.post(lambda: self._deliver(percentage))

    def _deliver(self, percentage: float) -> None:
        # Runs on the UI thread. Holding the lock keeps release() from
        # returning while a callback is mid-flight.
        with self._lock:
            if self._state is PipelineState.TORN_DOWN:
                return
            listener = self._listener
            if listener is not None:
                listener(percentage)

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------
    def release(self) -> None:
        """
        Tear the pipeline down. Terminal and idempotent.

        Resources are dropped immediately when no frame is being drawn,
        otherwise by the render thread at the end of the current frame.
        """
        with self._lock:
            if self._state is PipelineState.TORN_DOWN:
                return
            self._state = PipelineState.TORN_DOWN
            self._requested_at = None
            if not self._in_frame:
                self._drop_resources()
        logger.info("[pipeline] released")

        if self._owns_dispatcher:
            self._dispatcher.stop()

    def _drop_resources(self) -> None:
        """Reverse creation order: framebuffer, textures, buffers, shaders, mesh."""
        if self._resources_dropped:
            return
        self._resources_dropped = True

        renderer = self._renderer
        if renderer is not None:
            renderer.release_framebuffer()
        if self._surface is not None:
            self._surface.release()
        if renderer is not None:
            renderer.release_buffers()
            renderer.release_program()
        if self._worker is not None:
            self._worker.shutdown(wait=False)

        self._renderer = None
        self._surface = None
        self._worker = None
        self._bank = None
        self._mesh = None
        logger.debug("[pipeline] resources dropped")


__all__ = ["PipelineState", "PipelineCoordinator", "MatchListener"]
