import asyncio
import logging
import threading
from concurrent.futures import Future
from typing import Any, Callable, Coroutine, Optional

logger = logging.getLogger(__name__)


class BackgroundLoop:
    """An asyncio loop on a daemon thread.

    The UI thread hands coroutines over with ``submit`` and pokes running
    work (e.g. ``Workspace.stop``) with ``call``. Store writes then happen on
    the loop thread, one callback at a time.
    """

    def __init__(self, name: str = "workspace-loop") -> None:
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)
        self._thread.start()

    @property
    def running(self) -> bool:
        return self._thread.is_alive() and not self._loop.is_closed()

    def submit(self, coro: Coroutine[Any, Any, Any]) -> Future:
        if not self.running:
            coro.close()
            raise RuntimeError("Background loop is not running.")
        return asyncio.run_coroutine_threadsafe(coro, self._loop)

    def call(self, fn: Callable[..., Any], *args: Any) -> Future:
        """Run ``fn(*args)`` on the loop thread and return its result as a future."""
        future: Future = Future()

        def invoke() -> None:
            if not future.set_running_or_notify_cancel():
                return
            try:
                future.set_result(fn(*args))
            except Exception as exc:
                logger.error("Background call %s failed: %s", getattr(fn, "__name__", fn), exc)
                future.set_exception(exc)

        self._loop.call_soon_threadsafe(invoke)
        return future

    def close(self, timeout: Optional[float] = 5.0) -> None:
        if self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join(timeout)
        if not self._thread.is_alive():
            self._loop.close()

    def _run(self) -> None:
        asyncio.set_event_loop(self._loop)
        self._loop.run_forever()
