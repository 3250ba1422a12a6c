"""Periodic insight checks.

The same idempotent run function serves the background ticker and on-demand
triggers, so a manual run and a scheduled run never disagree about results.
"""

import logging
import threading
from typing import Any, Callable, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class InsightCheckScheduler(Generic[T]):
    """Runs `run_checks` every `interval_seconds` on a daemon thread.

    At most one run is in flight per scheduler. A `trigger_now` that arrives
    while a tick is running waits for it, then runs again so its caller gets
    a report computed after the trigger.
    """

    def __init__(self, run_checks: Callable[..., T], interval_seconds: float,
                 on_error: Optional[Callable[[Exception], None]] = None, name: str = "insight-check"):
        self.run_checks = run_checks
        self.name = name
        self.interval_seconds = interval_seconds
        self.on_error = on_error
        self._run_lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.runs = 0
        self.failures = 0
        self.last_result: Optional[T] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run_locked(self, *args: Any, **kwargs: Any) -> T:
        try:
            result = self.run_checks(*args, **kwargs)
            self.last_result = result
            return result
        except Exception as e:
            self.failures += 1
            logger.error(f"{self.name} run failed: {type(e).__name__}: {str(e)}")
            if self.on_error is not None:
                self.on_error(e)
            raise
        finally:
            self.runs += 1

    def tick(self) -> Optional[T]:
        """One scheduled run; skipped if a run is already in flight."""
        if not self._run_lock.acquire(blocking=False):
            logger.debug(f"{self.name} already running, skipping tick")
            return None
        try:
            return self._run_locked()
        except Exception:
            # Counted and logged in _run_locked; the ticker keeps going.
            return None
        finally:
            self._run_lock.release()

    def trigger_now(self, *args: Any, **kwargs: Any) -> T:
        """Run immediately and return the result; waits for an in-flight run first.

        Arguments go to `run_checks`; ticks call it with none.
        """
        with self._run_lock:
            return self._run_locked(*args, **kwargs)

    def _loop(self) -> None:
        logger.info(f"{self.name} scheduler started (every {self.interval_seconds}s)")
        while not self._stop.wait(self.interval_seconds):
            self.tick()
        logger.info(f"{self.name} scheduler stopped")

    def start(self) -> None:
        if self.interval_seconds <= 0:
            logger.info(f"{self.name} scheduler disabled (interval <= 0)")
            return
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name=f"{self.name}-scheduler", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
