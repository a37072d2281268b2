"""Worker pool for blocking network operations.

SSH handshakes can block for the full dial timeout, so they are submitted
here instead of running on the caller's (UI) thread.
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, TypeVar

T = TypeVar("T")


class NetworkExecutor:
    """Runs blocking network calls on background threads.

    Usage:
        future = executor.submit(service.open, conn.id, conn.config)
        path = future.result(timeout=10)

        # Async usage (in async context)
        path = await executor.run_async(service.open, conn.id, conn.config)
    """

    def __init__(self, max_workers: int = 4):
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="dbdock-net-",
        )
        self._lock = threading.Lock()
        self._shutdown = False

    @property
    def is_shutdown(self) -> bool:
        """Check if the executor has been shut down."""
        return self._shutdown

    def submit(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> Future[T]:
        """Submit an operation to the pool.

        Raises:
            RuntimeError: If the executor has been shut down.
        """
        with self._lock:
            if self._shutdown:
                raise RuntimeError("Executor has been shut down")
            return self._executor.submit(fn, *args, **kwargs)

    async def run_async(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Submit an operation and await its result from an event loop."""
        future = self.submit(fn, *args, **kwargs)
        return await asyncio.wrap_future(future)

    def shutdown(self, wait: bool = True) -> None:
        """Shutdown the executor.

        Args:
            wait: If True, wait for pending operations to complete.
                  If False, cancel pending operations immediately.
        """
        with self._lock:
            if self._shutdown:
                return
            self._shutdown = True

        self._executor.shutdown(wait=wait, cancel_futures=not wait)
