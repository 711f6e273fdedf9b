"""Fire-and-forget execution of side effects.

Logging and learning writes must never block a response or change its
outcome. ``BestEffortExecutor.submit`` dispatches the write to a thread pool,
returns immediately, and logs any failure instead of raising it.
"""

import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait as wait_futures
from typing import Any, Callable, Optional, Set
from ..config import settings
from .logger import setup_logger

logger = setup_logger(__name__)


class BestEffortExecutor:
    """Dispatches callables in the background and swallows their failures."""

    def __init__(
        self,
        max_workers: Optional[int] = None,
        synchronous: bool = False,
        name: str = "best-effort",
    ):
        """Initialize the executor.

        Args:
            max_workers: Thread pool size (defaults to background.max_workers)
            synchronous: Run callables inline (deterministic, used in tests)
            name: Thread name prefix
        """
        self.synchronous = synchronous
        self.max_workers = max_workers or int(settings.get("background.max_workers", 4))
        self.name = name
        self._pool: Optional[ThreadPoolExecutor] = None
        self._pending: Set[Future] = set()
        self._lock = threading.Lock()

    def _get_pool(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._pool is None:
                self._pool = ThreadPoolExecutor(
                    max_workers=self.max_workers,
                    thread_name_prefix=self.name,
                )
            return self._pool

    def submit(
        self,
        fn: Callable[..., Any],
        *args: Any,
        label: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        """Run ``fn(*args, **kwargs)`` without blocking the caller.

        Args:
            fn: Callable to run
            *args: Positional arguments for fn
            label: Short description used in failure logs
            **kwargs: Keyword arguments for fn
        """
        label = label or getattr(fn, "__name__", "task")

        if self.synchronous:
            try:
                fn(*args, **kwargs)
            except Exception as e:
                logger.warning(f"Background task '{label}' failed: {e}")
            return

        try:
            future = self._get_pool().submit(fn, *args, **kwargs)
        except RuntimeError as e:
            # Pool already shut down
            logger.warning(f"Could not dispatch background task '{label}': {e}")
            return

        with self._lock:
            self._pending.add(future)

        def _on_done(done: Future) -> None:
            with self._lock:
                self._pending.discard(done)
            error = done.exception()
            if error is not None:
                logger.warning(f"Background task '{label}' failed: {error}")

        future.add_done_callback(_on_done)

    def wait(self, timeout: Optional[float] = None) -> None:
        """Block until currently pending tasks finish."""
        with self._lock:
            pending = list(self._pending)
        if pending:
            wait_futures(pending, timeout=timeout)

    def shutdown(self, wait: bool = True) -> None:
        """Stop the worker pool."""
        with self._lock:
            pool, self._pool = self._pool, None
        if pool is not None:
            pool.shutdown(wait=wait)


# Global executor for components that are not given their own
best_effort = BestEffortExecutor()
