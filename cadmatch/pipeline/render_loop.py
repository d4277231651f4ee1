"""
Dedicated render thread driving ``PipelineCoordinator.on_frame``.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Optional

from cadmatch.pipeline.coordinator import PipelineCoordinator, PipelineState

logger = logging.getLogger(__name__)


class RenderLoop:
    """
    Calls ``on_frame`` at a fixed refresh rate until stopped or until the
    coordinator is released. Each frame runs to completion before the next.

    Args:
        coordinator: Pipeline to drive.
        frame_rate_hz: Target refresh rate; the coordinator's configured
            rate when None.
    """

    def __init__(
        self, coordinator: PipelineCoordinator, frame_rate_hz: Optional[float] = None
    ) -> None:
        self.coordinator = coordinator
        rate = frame_rate_hz or coordinator.config.frame_rate_hz
        self.period = 1.0 / rate
        self.error: Optional[BaseException] = None
        self.frames = 0
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._run, name="cadmatch-render", daemon=True)

    @property
    def thread(self) -> threading.Thread:
        return self._thread

    def start(self) -> "RenderLoop":
        self._thread.start()
        return self

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if threading.current_thread() is not self._thread:
            self._thread.join(timeout)

    def is_running(self) -> bool:
        return self._thread.is_alive()

    def _run(self) -> None:
        logger.info("[pipeline] render loop started at %.1f Hz", 1.0 / self.period)
        try:
            while not self._stop.is_set():
                if self.coordinator.state is PipelineState.TORN_DOWN:
                    break
                start = time.monotonic()
                self.coordinator.on_frame()
                self.frames += 1
                remaining = self.period - (time.monotonic() - start)
                if remaining > 0:
                    self._stop.wait(remaining)
        except BaseException as e:
            self.error = e
            logger.error("[pipeline] render loop stopped by error: %s", e)
            raise
        finally:
            logger.info("[pipeline] render loop exited after %d frames", self.frames)


__all__ = ["RenderLoop"]
