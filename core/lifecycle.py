"""Event-loop ownership and background task bookkeeping.

All store mutations, timer callbacks and gateway calls run on a single asyncio
loop. Synchronous callers (the CLI) reach that loop through `LoopRunner`;
coroutines already on the loop spawn follow-up work through `AsyncTaskOwner`.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Coroutine
from concurrent.futures import TimeoutError
from typing import Any, TypeVar

L = logging.getLogger("roast_monitor.runtime")

T = TypeVar("T")


class LoopRunner:
    """Owns a background asyncio loop and bridges synchronous callers onto it."""

    def __init__(self, *, logger: logging.Logger | None = None):
        self._logger = logger or L
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._stopped = False
        self._lock = threading.Lock()
        self._loop_thread_ident: int | None = None

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        return self._ensure_loop()

    def _ensure_loop(self) -> asyncio.AbstractEventLoop:
        with self._lock:
            if self._stopped:
                raise RuntimeError("Async loop already stopped")
            if self._loop and self._thread and self._thread.is_alive():
                return self._loop
            loop = asyncio.new_event_loop()
            ready = threading.Event()

            def _runner():
                asyncio.set_event_loop(loop)
                self._loop_thread_ident = threading.get_ident()
                ready.set()
                loop.run_forever()

            self._loop = loop
            self._thread = threading.Thread(
                target=_runner, name="roast-monitor-loop", daemon=True
            )
            self._thread.start()
            ready.wait(timeout=1.0)
            return loop

    def _on_loop_thread(self) -> bool:
        return (
            self._loop_thread_ident is not None
            and threading.get_ident() == self._loop_thread_ident
        )

    def run_async(
        self, coro: Coroutine[Any, Any, T], timeout: float | None = 10.0
    ) -> T:
        """Submit `coro` to the loop from another thread and wait for its result."""
        loop = self._ensure_loop()
        if self._on_loop_thread():
            coro.close()
            raise RuntimeError(
                "run_async must not be called from the loop thread; await directly"
            )
        fut = asyncio.run_coroutine_threadsafe(coro, loop)
        try:
            return fut.result(timeout=timeout)
        except TimeoutError:
            fut.cancel()
            self._logger.warning("run_async timeout after %.2fs", timeout or 0)
            raise

    def shutdown_loop(self, timeout: float = 2.0):
        """Cancel whatever is still pending and stop the loop thread."""
        if self._on_loop_thread():
            raise RuntimeError("shutdown_loop must not be called from the loop thread")
        with self._lock:
            loop = self._loop
            thread = self._thread
            self._stopped = True
            if not loop or not thread or loop.is_closed():
                return

        async def _cancel_pending():
            current = asyncio.current_task()
            pending = [
                t for t in asyncio.all_tasks() if t is not current and not t.done()
            ]
            self._logger.debug("shutdown_loop pending_tasks=%d", len(pending))
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
            await loop.shutdown_asyncgens()

        fut = asyncio.run_coroutine_threadsafe(_cancel_pending(), loop)
        try:
            fut.result(timeout=timeout)
        except TimeoutError:
            fut.cancel()
            self._logger.warning("shutdown_loop gave up waiting for pending tasks")
        finally:
            loop.call_soon_threadsafe(loop.stop)
            thread.join(timeout=timeout)
            if thread.is_alive():
                self._logger.warning(
                    "shutdown_loop thread did not exit within %.2fs; loop not closed",
                    timeout,
                )
            else:
                loop.close()
            self._loop = None
            self._thread = None
            self._loop_thread_ident = None


class AsyncTaskOwner:
    """Tracks fire-and-forget tasks spawned on the running loop.

    Finished tasks drop out of the set; `drain()` waits for the rest and
    `cancel_all()` is the teardown path.
    """

    def __init__(self, *, owner_name: str = "async_service"):
        self._owner_name = owner_name
        self._tasks: set[asyncio.Task[Any]] = set()
        self._spawn_seq = 0

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        self._spawn_seq += 1
        task = asyncio.get_running_loop().create_task(
            coro, name=f"{self._owner_name}.{self._spawn_seq}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self):
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def cancel_all(self):
        for task in list(self._tasks):
            task.cancel()


__all__ = ["LoopRunner", "AsyncTaskOwner"]
