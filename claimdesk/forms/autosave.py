"""Debounced save scheduler: one timer per independent persistence unit."""

import contextvars
import logging
import threading
from functools import partial
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)


class SaveScheduler:
    """
    Coalesce rapid edits into one save per key after a quiet period.

    Each key ("standard", "sections", "assessment:spare", ...) owns
    at most one pending timer. Scheduling a key again cancels and restarts
    its timer with the new callback. After dispose() nothing fires.

    Callbacks run while holding ``guard``, the lock that also serializes
    the owner's edits, so a timer thread never reads state that a request
    is changing. They run in the logging context they were scheduled from.
    """

    def __init__(
        self,
        default_delay: float = 2.0,
        timer_factory=threading.Timer,
        guard=None,
        on_error: Optional[Callable[[str, Exception], None]] = None,
    ):
        """
        Initialize the scheduler.

        Args:
            default_delay: Delay in seconds used when schedule() is given none
            timer_factory: Callable(delay, fn) returning a startable, cancellable timer
            guard: Re-entrant lock held around every callback; a private
                RLock when omitted
            on_error: Called with (key, exception) when a timer-fired save raises
        """
        self.default_delay = default_delay
        self._timer_factory = timer_factory
        self._guard = guard if guard is not None else threading.RLock()
        self._on_error = on_error
        self._timers: Dict[str, threading.Timer] = {}
        self._callbacks: Dict[str, Callable[[], None]] = {}
        self._lock = threading.Lock()
        self._disposed = False

    def schedule(self, key: str, callback: Callable[[], None], delay: Optional[float] = None) -> None:
        """Arm (or re-arm) the timer for key."""
        with self._lock:
            if self._disposed:
                logger.debug(f"Scheduler disposed; ignoring save for {key}")
                return
            existing = self._timers.pop(key, None)
            if existing is not None:
                existing.cancel()
            timer = self._timer_factory(
                self.default_delay if delay is None else delay,
                lambda: self._fire(key, timer),
            )
            timer.daemon = True
            self._timers[key] = timer
            self._callbacks[key] = partial(contextvars.copy_context().run, callback)
            timer.start()

    def _fire(self, key: str, timer) -> None:
        with self._guard:
            with self._lock:
                # A timer replaced or cancelled while waiting for the guard is stale
                if self._disposed or self._timers.get(key) is not timer:
                    return
                del self._timers[key]
                callback = self._callbacks.pop(key, None)
            if callback is None:
                return
            try:
                callback()
            except Exception as e:
                # Timer threads have no caller to propagate to
                logger.error(f"Scheduled save {key} failed: {str(e)}")
                if self._on_error is not None:
                    self._on_error(key, e)

    def cancel(self, key: str) -> bool:
        """Cancel a pending save; returns True if one was pending."""
        with self._lock:
            timer = self._timers.pop(key, None)
            self._callbacks.pop(key, None)
        if timer is None:
            return False
        timer.cancel()
        return True

    def pending(self, key: Optional[str] = None) -> bool:
        with self._lock:
            if key is None:
                return bool(self._timers)
            return key in self._timers

    def flush(self, key: Optional[str] = None) -> None:
        """Run pending callbacks now instead of waiting for their timers."""
        with self._guard:
            with self._lock:
                keys = [key] if key is not None else list(self._timers)
                due = []
                for k in keys:
                    timer = self._timers.pop(k, None)
                    callback = self._callbacks.pop(k, None)
                    if timer is not None:
                        timer.cancel()
                    if callback is not None:
                        due.append((k, callback))
            for k, callback in due:
                logger.debug(f"Flushing scheduled save {k}")
                callback()

    def dispose(self) -> None:
        """Cancel every pending timer; later schedule() calls are ignored."""
        with self._lock:
            self._disposed = True
            timers = list(self._timers.values())
            self._timers.clear()
            self._callbacks.clear()
        for timer in timers:
            timer.cancel()
        logger.debug(f"Disposed scheduler ({len(timers)} pending saves cancelled)")
