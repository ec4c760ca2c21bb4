"""Best-effort side channel for feedback and analytics calls."""

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any

logger = logging.getLogger(__name__)


class BestEffortChannel:
    """Runs calls in the background and never reports their outcome.

    ``submit`` returns immediately. When ``max_pending`` calls are already
    queued the new call is dropped. A call that raises is logged and
    forgotten; callers never see the exception.
    """

    def __init__(self, max_workers: int = 2, max_pending: int = 32):
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="side-channel")
        self._slots = threading.BoundedSemaphore(max_pending)

    def submit(self, label: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> bool:
        """Queue ``fn(*args, **kwargs)``. Returns False when the call was dropped."""
        if not self._slots.acquire(blocking=False):
            logger.warning("Side channel full, dropping %s", label)
            return False
        try:
            future = self._executor.submit(self._call, label, fn, args, kwargs)
        except RuntimeError:
            # Executor already shut down
            self._slots.release()
            logger.warning("Side channel closed, dropping %s", label)
            return False
        future.add_done_callback(self._release)
        return True

    def close(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def _release(self, _future: Future) -> None:
        self._slots.release()

    @staticmethod
    def _call(label: str, fn: Callable[..., Any], args: tuple, kwargs: dict[str, Any]) -> None:
        try:
            fn(*args, **kwargs)
        except Exception as exc:
            logger.warning("Best-effort %s failed: %s", label, exc)
