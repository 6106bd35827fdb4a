"""Background event loop for translation I/O.

The game host runs its simulation on one thread that must never wait on the
network. ``TranslationWorker`` gives the pipeline its own asyncio loop on a
daemon thread: the dispatcher, the provider clients and their httpx
connection pools all live there.

Usage:
    worker = TranslationWorker()
    worker.start()
    future = worker.submit(dispatcher.request_translation(key))
    future.add_done_callback(on_done)   # runs on the worker thread
    ...
    worker.stop(dispatcher.aclose())
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import threading
from collections.abc import Coroutine
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class WorkerNotRunning(RuntimeError):
    """Raised when work is submitted to a worker that is not running."""


class TranslationWorker:
    """An asyncio event loop running on a dedicated daemon thread."""

    def __init__(self, name: str = "chat-relay-worker") -> None:
        self._name = name
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._ready = threading.Event()

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            raise WorkerNotRunning("worker has not been started")
        return self._loop

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and self._loop is not None

    def start(self) -> None:
        """Start the loop thread and wait until it accepts work."""
        if self.running:
            return
        self._ready.clear()
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(
            target=self._run, args=(self._loop,), name=self._name, daemon=True
        )
        self._thread.start()
        self._ready.wait()
        logger.info("Translation worker %s started", self._name)

    def _run(self, loop: asyncio.AbstractEventLoop) -> None:
        asyncio.set_event_loop(loop)
        loop.call_soon(self._ready.set)
        try:
            loop.run_forever()
        finally:
            loop.close()

    def submit(self, coro: Coroutine[Any, Any, T]) -> concurrent.futures.Future[T]:
        """Schedule ``coro`` on the worker loop from any thread.

        Returns a ``concurrent.futures.Future``; its done-callbacks run on
        the worker thread, so callers that need the main context must
        marshal from there (see ``MainContext.call_soon``).
        """
        if not self.running:
            coro.close()
            raise WorkerNotRunning("translation worker is not running")
        return asyncio.run_coroutine_threadsafe(coro, self.loop)

    def stop(
        self, shutdown: Coroutine[Any, Any, Any] | None = None, *, timeout: float = 5.0
    ) -> None:
        """Run ``shutdown`` on the loop (if given), then stop the thread.

        Args:
            shutdown: Optional cleanup coroutine, e.g. ``dispatcher.aclose()``.
            timeout:  Seconds to wait for the cleanup and for the thread.
        """
        thread = self._thread
        if thread is None or not self.running:
            if shutdown is not None:
                shutdown.close()
            return
        loop = self.loop
        if shutdown is not None:
            future = asyncio.run_coroutine_threadsafe(shutdown, loop)
            try:
                future.result(timeout=timeout)
            except concurrent.futures.TimeoutError:
                logger.warning("Translation worker shutdown did not finish in %.1fs", timeout)
                future.cancel()
            except Exception as exc:
                logger.error("Error during translation worker shutdown: %s", exc, exc_info=True)
        loop.call_soon_threadsafe(loop.stop)
        thread.join(timeout=timeout)
        self._thread = None
        self._loop = None
        logger.info("Translation worker %s stopped", self._name)
