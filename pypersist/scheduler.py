"""Recurring background tasks owned by a store instance.

Two flavours exist, matching the two calling conventions of the store:
- AsyncRecurringTask runs on the event loop that was running when it started. It is cancelled with the loop, so it
never keeps a program alive on its own.
- ThreadedRecurringTask runs on a daemon thread, for stores initialised with `init_sync` outside of any event loop.

In both cases a failing run is logged and the task keeps its schedule.
"""

import asyncio
import logging
import threading
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


class RecurringTask:
    def __init__(self, name: str, interval_ms: int):
        self.name = name
        self.interval_ms = interval_ms

    @property
    def interval(self) -> float:
        return self.interval_ms / 1000

    @property
    def is_running(self) -> bool:
        raise NotImplementedError

    def start(self) -> None:
        raise NotImplementedError

    def stop(self) -> None:
        raise NotImplementedError


class AsyncRecurringTask(RecurringTask):
    def __init__(
        self, name: str, interval_ms: int, callback: Callable[[], Awaitable]
    ):
        super().__init__(name=name, interval_ms=interval_ms)
        self.callback = callback
        self._task: asyncio.Task or None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.callback()
            except Exception:
                logger.exception("recurring task %s failed", self.name)

    def start(self) -> None:
        """Must be called while an event loop is running"""
        self.stop()
        self._task = asyncio.get_running_loop().create_task(self._run(), name=self.name)

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None


class ThreadedRecurringTask(RecurringTask):
    def __init__(self, name: str, interval_ms: int, callback: Callable[[], object]):
        super().__init__(name=name, interval_ms=interval_ms)
        self.callback = callback
        self._thread: threading.Thread or None = None
        self._stopped = threading.Event()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run(self, stopped: threading.Event) -> None:
        while not stopped.wait(self.interval):
            try:
                self.callback()
            except Exception:
                logger.exception("recurring task %s failed", self.name)

    def start(self) -> None:
        self.stop()
        self._stopped = threading.Event()
        self._thread = threading.Thread(
            target=self._run, args=(self._stopped,), name=self.name, daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        if self._thread is not None:
            self._stopped.set()
            self._thread = None
