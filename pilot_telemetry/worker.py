from __future__ import annotations

import asyncio
import logging
import threading

logger = logging.getLogger(__name__)


class UploadWorker:
    """A daemon thread running a private asyncio loop for uploads.

    Producers may be plain threads with no loop of their own; sends are
    scheduled here with `asyncio.run_coroutine_threadsafe`.
    """

    def __init__(self, *, name: str = "analytics-upload") -> None:
        self._name = name
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._ready = threading.Event()

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            raise RuntimeError("UploadWorker not started. Call start() first.")
        return self._loop

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> asyncio.AbstractEventLoop:
        if self.running:
            return self.loop

        self._ready.clear()
        self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
        self._thread.start()
        self._ready.wait()
        logger.info("Upload worker started (%s)", self._name)
        return self.loop

    def _run(self) -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        self._loop = loop
        self._ready.set()
        try:
            loop.run_forever()
        finally:
            # Give callbacks queued before stop() a turn so their tasks are cancelled below.
            loop.run_until_complete(asyncio.sleep(0))
            pending = asyncio.all_tasks(loop)
            for task in pending:
                task.cancel()
            if pending:
                loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
            loop.close()

    def stop(self, timeout: float = 5.0) -> None:
        if not self.running or self._loop is None:
            return
        self._loop.call_soon_threadsafe(self._loop.stop)
        assert self._thread is not None
        self._thread.join(timeout=timeout)
        self._thread = None
        self._loop = None
        logger.info("Upload worker stopped (%s)", self._name)
