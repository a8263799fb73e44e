from __future__ import annotations

import logging
import threading
from typing import Callable, Protocol

from bitcoinlatte.geo import Viewport

logger = logging.getLogger(__name__)

SETTLE_DELAY_SECONDS = 0.5

UNINITIALIZED = "uninitialized"
SETTLED = "settled"


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class ThreadingScheduler:
    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        timer = threading.Timer(delay, callback)
        timer.daemon = True
        timer.start()
        return timer


class ViewportDebouncer:
    """Delivers map settle events to ``callback``.

    The first settle after creation fires at once so the map gets its
    initial data. Later settles restart a ``delay_seconds`` timer and only
    the last viewport of a burst is delivered. ``close`` cancels anything
    pending.
    """

    def __init__(
        self,
        callback: Callable[[Viewport], None],
        delay_seconds: float = SETTLE_DELAY_SECONDS,
        scheduler=None,
    ) -> None:
        self.callback = callback
        self.delay_seconds = delay_seconds
        self.scheduler = scheduler or ThreadingScheduler()
        self.state = UNINITIALIZED
        self.closed = False
        self._pending: TimerHandle | None = None
        self._generation = 0
        self._lock = threading.Lock()

    def settle(self, viewport: Viewport) -> None:
        with self._lock:
            if self.closed:
                return
            if self.state == UNINITIALIZED:
                self.state = SETTLED
                fire_now = True
            else:
                fire_now = False
                self._cancel_pending()
                self._generation += 1
                generation = self._generation
                self._pending = self.scheduler.call_later(
                    self.delay_seconds, lambda: self._fire(viewport, generation)
                )

        if fire_now:
            self.callback(viewport)

    def _fire(self, viewport: Viewport, generation: int) -> None:
        # A timer may run after cancel() if it had already finished waiting.
        with self._lock:
            if self.closed or generation != self._generation:
                logger.debug(f"Dropping superseded settle timer #{generation}")
                return
            self._pending = None
        self.callback(viewport)

    def _cancel_pending(self) -> None:
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None

    def close(self) -> None:
        with self._lock:
            self.closed = True
            self._generation += 1
            self._cancel_pending()
        logger.debug("Viewport debouncer closed")
