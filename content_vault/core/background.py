"""
Background work dispatcher for propagation and sync fan-out.

Tasks run on a bounded thread pool, detached from the caller. Every task's
duration is logged and its exceptions are caught and logged here.
"""

import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Dict, Optional

from . import config
from ..util.logging import logger


class BackgroundDispatcher:
    """Bounded pool for fire-and-forget vault work."""

    def __init__(self, max_workers: Optional[int] = None):
        self.max_workers = max_workers or config.get_background_workers()
        self._executor: Optional[ThreadPoolExecutor] = None
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._pending = 0
        self._completed = 0
        self._failed = 0

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=self.max_workers,
                                                thread_name_prefix="vault-bg")
        return self._executor

    def _run(self, name: str, func: Callable, args, kwargs) -> Any:
        start_time = time.time()
        try:
            result = func(*args, **kwargs)
            logger.log_background_task(name, start_time, time.time(), "success")
            with self._lock:
                self._completed += 1
            return result
        except Exception as e:
            logger.log_background_task(name, start_time, time.time(), "failed", {"error": str(e)})
            logger.error(f"Background task {name} failed: {e}")
            with self._lock:
                self._failed += 1
            return None
        finally:
            with self._idle:
                self._pending -= 1
                if self._pending == 0:
                    self._idle.notify_all()

    def submit(self, name: str, func: Callable, *args, **kwargs) -> Future:
        """Run func in the background. The returned future never raises."""
        with self._lock:
            executor = self._get_executor()
            self._pending += 1
        try:
            return executor.submit(self._run, name, func, args, kwargs)
        except RuntimeError:
            with self._idle:
                self._pending -= 1
                if self._pending == 0:
                    self._idle.notify_all()
            raise

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until no task is pending. Returns False on timeout."""
        deadline = None if timeout is None else time.time() + timeout
        with self._idle:
            while self._pending > 0:
                remaining = None if deadline is None else deadline - time.time()
                if remaining is not None and remaining <= 0:
                    return False
                self._idle.wait(remaining)
        return True

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=wait)
            logger.info("Background dispatcher shut down")

    def get_status(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "max_workers": self.max_workers,
                "running": self._executor is not None,
                "pending": self._pending,
                "completed": self._completed,
                "failed": self._failed,
            }


# Global dispatcher instance
dispatcher = BackgroundDispatcher()
