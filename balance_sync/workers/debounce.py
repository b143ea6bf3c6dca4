"""Coalescing of recomputation requests per account."""

import threading
from collections.abc import Callable

from balance_sync.core.utils import get_logger

logger = get_logger("balance-sync.debounce")


class Debouncer:
    """Runs an action once per key for all requests arriving within a window.

    The first request for a key arms a timer; later requests for the same key
    are absorbed until the timer fires. The action reads the ledger when it
    runs, so one run covers every request absorbed before it.
    """

    def __init__(self, window_seconds: float, action: Callable[[str], object]) -> None:
        """Initialize the debouncer with a window length and the action to run per key."""
        self.window_seconds = window_seconds
        self.action = action
        self._lock = threading.Lock()
        self._timers: dict[str, threading.Timer] = {}

    def submit(self, key: str) -> bool:
        """Request a run for ``key``; return False if it was coalesced into a pending run."""
        with self._lock:
            if key in self._timers:
                logger.debug(f"Coalesced request for {key}")
                return False
            timer = threading.Timer(self.window_seconds, self._fire, args=(key,))
            timer.daemon = True
            self._timers[key] = timer
            timer.start()
            return True

    def pending(self) -> set[str]:
        """Keys with a run scheduled but not started yet."""
        with self._lock:
            return set(self._timers)

    def flush(self) -> None:
        """Run every pending action now, in the calling thread."""
        with self._lock:
            timers = dict(self._timers)
            self._timers.clear()
        for key, timer in timers.items():
            timer.cancel()
            self._run(key)

    def _fire(self, key: str) -> None:
        with self._lock:
            if self._timers.pop(key, None) is None:
                return
        self._run(key)

    def _run(self, key: str) -> None:
        try:
            self.action(key)
        except Exception:
            logger.exception(f"Deferred run for {key} failed")
