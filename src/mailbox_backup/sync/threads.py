"""Bounded execution of blocking provider calls in worker threads."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor

logger = logging.getLogger(__name__)


class BoundedThreadRunner:
    """Runs blocking calls in threads, never more than `limit` at once.

    `asyncio.wait_for` only stops waiting when a timeout fires; the thread keeps
    running. A slot is therefore released when the thread returns, not when the
    caller gives up, so a retry waits behind an abandoned call instead of
    running next to it.
    """

    def __init__(self, limit: int, *, name: str = "worker") -> None:
        """Initialize the runner.

        Args:
            limit: Maximum number of blocking calls running at the same time.
            name: Thread name prefix.
        """
        if limit < 1:
            raise ValueError(f"limit must be >= 1, got {limit}")
        self._limit = limit
        self._executor = ThreadPoolExecutor(max_workers=limit, thread_name_prefix=name)
        self._slots = asyncio.Semaphore(limit)

    async def call[T](self, fn: Callable[..., T], *args: object, timeout_s: float) -> T:
        """Run `fn(*args)` in a thread once a slot is free.

        Args:
            fn: Blocking callable.
            *args: Positional arguments for fn.
            timeout_s: How long to wait for the call once it has started.

        Returns:
            Result of the callable.

        Raises:
            TimeoutError: If the call did not finish within timeout_s.
        """
        await self._slots.acquire()
        loop = asyncio.get_running_loop()
        try:
            future: Future[T] = self._executor.submit(fn, *args)
        except BaseException:
            self._slots.release()
            raise

        def _release(_done: Future[T]) -> None:
            # The loop may already be closed when an abandoned call returns late.
            with contextlib.suppress(RuntimeError):
                loop.call_soon_threadsafe(self._slots.release)

        future.add_done_callback(_release)
        return await asyncio.wait_for(asyncio.wrap_future(future), timeout=timeout_s)

    async def drain(self) -> None:
        """Wait until every started call, abandoned ones included, has returned."""
        for _ in range(self._limit):
            await self._slots.acquire()
        for _ in range(self._limit):
            self._slots.release()

    async def close(self) -> None:
        """Drain outstanding calls and shut the thread pool down."""
        await self.drain()
        self._executor.shutdown(wait=False)
        logger.debug("Thread runner closed")
