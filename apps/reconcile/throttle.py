# ============================================================================
# apps/reconcile/throttle.py - Minimum interval gate for the auto reconcile pass
# ============================================================================

import threading
import time
from datetime import datetime
from typing import Callable, Optional


class Throttle:
    """Atomic check-and-set on the last run timestamp.

    `try_acquire()` returns True for exactly one caller per interval; callers
    arriving inside the window get False.
    """

    def __init__(self, interval: float, clock: Callable[[], float] = time.monotonic):
        self.interval = interval
        self.clock = clock
        self._lock = threading.Lock()
        self._last_run: Optional[float] = None
        self.last_run_at: Optional[datetime] = None

    def try_acquire(self) -> bool:
        with self._lock:
            now = self.clock()
            if self._last_run is not None and now - self._last_run < self.interval:
                return False
            self._last_run = now
            self.last_run_at = datetime.now()
            return True

    def mark(self) -> None:
        """Record a run that bypassed the gate, starting a new window"""
        with self._lock:
            self._last_run = self.clock()
            self.last_run_at = datetime.now()

    def reset(self) -> None:
        with self._lock:
            self._last_run = None
            self.last_run_at = None

    @property
    def last_run(self) -> Optional[float]:
        return self._last_run

    def remaining(self) -> float:
        """Seconds until the next pass may run"""
        with self._lock:
            if self._last_run is None:
                return 0.0
            return max(0.0, self.interval - (self.clock() - self._last_run))
