"""
Hand-off of callbacks to the thread the host designates as UI-safe.
"""

from __future__ import annotations

import logging
import queue
import threading
from typing import Callable, Optional, Protocol

logger = logging.getLogger(__name__)


class UiDispatcher(Protocol):
    def post(self, callback: Callable[[], None]) -> None:
        """Schedule `callback` on the UI thread; must not block."""


class QueueDispatcher:
    """
    UI loop stand-in: a daemon thread draining a FIFO of callbacks.

    Hosts with a real event loop pass their own UiDispatcher instead
    (e.g. one that forwards to ``loop.call_soon_threadsafe``).
    """

    def __init__(self, name: str = "cadmatch-ui") -> None:
        self._queue: "queue.Queue[Optional[Callable[[], None]]]" = queue.Queue()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)
        self._started = False

    @property
    def thread(self) -> threading.Thread:
        return self._thread

    def start(self) -> "QueueDispatcher":
        if not self._started:
            self._thread.start()
            self._started = True
        return self

    def post(self, callback: Callable[[], None]) -> None:
        self._queue.put(callback)

    def flush(self, timeout: Optional[float] = None) -> bool:
        """Wait until every callback posted so far has run."""
        done = threading.Event()
        self.post(done.set)
        return done.wait(timeout)

    def stop(self, timeout: Optional[float] = None) -> None:
        if self._started and self._thread.is_alive():
            self._queue.put(None)
            if threading.current_thread() is not self._thread:
                self._thread.join(timeout)

    def _run(self) -> None:
        while True:
            callback = self._queue.get()
            if callback is None:
                break
            try:
                callback()
            except Exception:
                # A faulty listener must not take the UI loop down with it.
                logger.exception("[pipeline] UI callback raised")


__all__ = ["UiDispatcher", "QueueDispatcher"]
