"""A background thread that runs an asyncio event loop."""

from __future__ import annotations

import asyncio
import concurrent.futures
import threading
import traceback
from collections.abc import Callable, Coroutine
from typing import Any


class EventThread:
    """Runs an event loop on its own thread.

    Work may be scheduled before :meth:`start`; it runs once the loop does.
    """

    def __init__(self) -> None:
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._run, name="yrpc-io", daemon=True)
        self._started = False
        self._start_lock = threading.Lock()

    def __enter__(self) -> EventThread:
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()
        self.join()

    @property
    def is_running(self) -> bool:
        return self._thread.is_alive()

    def start(self) -> None:
        """Start the loop thread; a thread can be started only once."""
        with self._start_lock:
            if self._started:
                raise RuntimeError("event thread already started")
            self._started = True
        self._thread.start()

    def _run(self) -> None:
        asyncio.set_event_loop(self._loop)
        try:
            self._loop.run_forever()
        finally:
            pending = asyncio.all_tasks(self._loop)
            for task in pending:
                task.cancel()
            if pending:
                self._loop.run_until_complete(
                    asyncio.gather(*pending, return_exceptions=True)
                )
            self._loop.run_until_complete(self._loop.shutdown_asyncgens())
            self._loop.close()

    def stop(self) -> None:
        """Ask the loop to stop; pending tasks are cancelled."""
        with self._start_lock:
            started = self._started
        if self._loop.is_closed():
            return
        if not started:
            self._loop.close()
            return
        try:
            self._loop.call_soon_threadsafe(self._loop.stop)
        except RuntimeError:
            pass

    def join(self, timeout: float | None = None) -> None:
        """Wait for the loop thread to finish."""
        if self._started:
            self._thread.join(timeout)

    def call_soon(self, fn: Callable[..., Any], *args: Any) -> asyncio.Handle:
        """Run ``fn(*args)`` on the loop thread; safe from any thread."""
        return self._loop.call_soon_threadsafe(fn, *args)

    def submit(self, coro: Coroutine[Any, Any, Any]) -> concurrent.futures.Future:
        """Run a coroutine on the loop and return a future for its result."""
        try:
            return asyncio.run_coroutine_threadsafe(coro, self._loop)
        except RuntimeError:
            coro.close()
            raise

    def call_every(self, interval: float, fn: Callable[[], Any]) -> concurrent.futures.Future:
        """Call ``fn`` every ``interval`` milliseconds until the future is cancelled."""
        seconds = interval / 1000.0

        async def _tick() -> None:
            while True:
                await asyncio.sleep(seconds)
                try:
                    fn()
                except Exception:
                    traceback.print_exc()

        return self.submit(_tick())