"""Coalescing write queue.

Writes (and deletions) of storage files are not performed when requested: they are queued per file path, and the
queue flushes every `interval_ms`. When flushing a path, only ONE of the pending operations is actually performed:
- a deletion supersedes everything that was queued before it for that path,
- among the writes queued after the last deletion, the latest wins (`write_only_last=True`, default) or the earliest
wins (`write_only_last=False`),
- if nothing was written after the last deletion, the deletion is performed.
Every caller waiting on that path then receives the result of that one operation (or its error), so all of them see
what is actually on disk.

Deletions, and every operation when the queue is disabled, has no interval or is not started, are flushed right away.
When the queue is disabled, operations are still performed one at a time per path, in order, so that two writes to
the same file never overlap.

A path being flushed is never flushed a second time concurrently: operations arriving meanwhile wait for the next
tick (or for the end of the current flush if they must be flushed right away).
"""

import asyncio
import logging
import threading
from collections import namedtuple
from typing import Union

from pypersist.io_handling import DeleteResult, DirectoryStore, WriteResult
from pypersist.item import Datum
from pypersist.scheduler import (
    AsyncRecurringTask,
    RecurringTask,
    ThreadedRecurringTask,
)

logger = logging.getLogger(__name__)

# `datum` is None for a deletion. `future` is None for blocking callers, who get the result directly.
PendingOperation = namedtuple("PendingOperation", ["datum", "future"])


def _settle(future: asyncio.Future or None, result=None, error: BaseException or None = None) -> None:
    if future is None or future.done():
        return
    if error is not None:
        future.set_exception(error)
    else:
        future.set_result(result)


def _settle_threadsafe(future: asyncio.Future or None, result=None, error: BaseException or None = None) -> None:
    """Settles a future from any thread, on the loop it belongs to"""
    if future is None:
        return
    loop = future.get_loop()
    if loop.is_closed():
        return
    loop.call_soon_threadsafe(_settle, future, result, error)


class WriteQueue:
    DEFAULT_INTERVAL_MS = 1000
    DRAIN_POLL_INTERVAL = 0.01

    Result = Union[WriteResult, DeleteResult]

    def __init__(
        self,
        directory_store: DirectoryStore,
        enabled: bool = True,
        interval_ms: int = DEFAULT_INTERVAL_MS,
        write_only_last: bool = True,
    ):
        self.directory_store = directory_store
        self.enabled = enabled
        self.interval_ms = interval_ms
        self.write_only_last = write_only_last
        self._pending: dict[str, list[PendingOperation]] = {}
        # Paths being flushed, with the task flushing them (None when flushed by a blocking call)
        self._flushing: dict[str, asyncio.Task or None] = {}
        self._immediate: set[str] = set()
        self._lock = threading.Lock()
        self._task: RecurringTask or None = None

    def __len__(self) -> int:
        """Number of operations waiting to be flushed"""
        with self._lock:
            return sum(len(operations) for operations in self._pending.values())

    @property
    def has_pending(self) -> bool:
        with self._lock:
            return bool(self._pending) or bool(self._flushing)

    @property
    def flushes_on_tick(self) -> bool:
        return bool(self.enabled and self.interval_ms and self.interval_ms > 0)

    def _requires_immediate_flush(self, datum: Datum or None) -> bool:
        # Without a running flush timer, nothing would ever flush the path
        return datum is None or not self.flushes_on_tick or not self.is_running

    def _select(self, batch: list[PendingOperation]) -> PendingOperation:
        """Picks the one operation of the batch that is actually performed"""
        last_deletion = max(
            (index for index, operation in enumerate(batch) if operation.datum is None),
            default=-1,
        )
        writes = batch[last_deletion + 1 :]
        if not writes:
            return batch[last_deletion]
        return writes[-1] if self.write_only_last else writes[0]

    def _take_batch(self, file_path: str) -> list[PendingOperation]:
        """Pops the operations to flush for a path. Must be called with the lock held."""
        pending = self._pending.get(file_path, [])
        if self.enabled:
            batch, remaining = pending, []
        else:
            batch, remaining = pending[:1], pending[1:]

        if remaining:
            self._pending[file_path] = remaining
        else:
            self._pending.pop(file_path, None)
            self._immediate.discard(file_path)
        return batch

    # ~~~~~~~~~~~~~~~~~~~
    # ~~~ Async flush
    # ~~~~~~~~~~~~~~~~~~~

    async def _perform(self, file_path: str, datum: Datum or None) -> Result:
        if datum is None:
            return await self.directory_store.delete_file(file_path)
        return await self.directory_store.write_file(file_path, datum)

    async def _flush_batch(self, file_path: str, batch: list[PendingOperation]) -> None:
        operation = self._select(batch)
        try:
            result = await self._perform(file_path, operation.datum)
        except asyncio.CancelledError:
            for pending in batch:
                if pending.future is not None:
                    pending.future.cancel()
            raise
        except Exception as error:
            logger.warning("flush of %s failed: %s", file_path, error)
            for pending in batch:
                _settle(pending.future, error=error)
        else:
            for pending in batch:
                _settle(pending.future, result=result)

    async def _flush_path(self, file_path: str) -> None:
        try:
            while True:
                with self._lock:
                    batch = self._take_batch(file_path)
                if not batch:
                    break
                await self._flush_batch(file_path, batch)
                with self._lock:
                    if file_path not in self._immediate:
                        break
        finally:
            with self._lock:
                self._flushing.pop(file_path, None)

    def _start_flush(self, file_path: str) -> asyncio.Task or None:
        """Starts flushing a path, unless it is already being flushed.
        Returns the task flushing the path, if any.
        """
        with self._lock:
            if file_path in self._flushing or not self._pending.get(file_path):
                return self._flushing.get(file_path)
            task = asyncio.get_running_loop().create_task(self._flush_path(file_path))
            self._flushing[file_path] = task
            return task

    # ~~~~~~~~~~~~~~~~~~~
    # ~~~ Blocking flush
    # ~~~~~~~~~~~~~~~~~~~

    def _perform_sync(self, file_path: str, datum: Datum or None) -> Result:
        if datum is None:
            return self.directory_store.delete_file_sync(file_path)
        return self.directory_store.write_file_sync(file_path, datum)

    def _flush_batch_sync(self, file_path: str, batch: list[PendingOperation]) -> Result:
        operation = self._select(batch)
        try:
            result = self._perform_sync(file_path, operation.datum)
        except Exception as error:
            for pending in batch:
                _settle_threadsafe(pending.future, error=error)
            raise
        for pending in batch:
            _settle_threadsafe(pending.future, result=result)
        return result

    def _flush_now_sync(self, file_path: str, operation: PendingOperation) -> Result:
        with self._lock:
            batch = self._pending.pop(file_path, []) + [operation]
            self._immediate.discard(file_path)
        return self._flush_batch_sync(file_path, batch)

    # ~~~~~~~~~~~~~~~~~~~
    # ~~~ API
    # ~~~~~~~~~~~~~~~~~~~

    def submit(self, file_path: str, datum: Datum or None) -> asyncio.Future:
        """Queues the write of `datum` to `file_path` (or the deletion of the file if `datum` is None).
        Returns a future resolved once the path has been flushed.
        """
        future = asyncio.get_running_loop().create_future()
        flush_now = self._requires_immediate_flush(datum)
        with self._lock:
            self._pending.setdefault(file_path, []).append(
                PendingOperation(datum=datum, future=future)
            )
            if flush_now:
                self._immediate.add(file_path)
        if flush_now:
            self._start_flush(file_path)
        return future

    async def flush(self) -> int:
        """Flushes every queued path that is not already being flushed, and waits until the writes in flight are done.
        Returns the number of flushes waited for.
        """
        with self._lock:
            paths = list(self._pending) + list(self._flushing)
        tasks = {self._start_flush(file_path) for file_path in paths}
        tasks.discard(None)
        if tasks:
            # `wait` rather than `gather`: cancelling a tick must not cancel the writes it started
            await asyncio.wait(tasks)
        return len(tasks)

    async def drain(self) -> None:
        """Flushes until nothing is queued or in flight anymore"""
        while self.has_pending:
            if not await self.flush():
                await asyncio.sleep(self.DRAIN_POLL_INTERVAL)

    def write_sync(self, file_path: str, datum: Datum) -> Result:
        """Writes now, blocking. Operations already queued for the path are flushed along with this one."""
        return self._flush_now_sync(file_path, PendingOperation(datum=datum, future=None))

    def delete_sync(self, file_path: str) -> Result:
        return self._flush_now_sync(file_path, PendingOperation(datum=None, future=None))

    def flush_sync(self) -> None:
        """Blocking tick, for stores driven from threads rather than from an event loop"""
        with self._lock:
            paths = [path for path in self._pending if path not in self._flushing]
            for file_path in paths:
                self._flushing[file_path] = None

        for file_path in paths:
            try:
                while True:
                    with self._lock:
                        batch = self._take_batch(file_path)
                    if not batch:
                        break
                    try:
                        self._flush_batch_sync(file_path, batch)
                    except Exception as error:
                        # The waiters received the error, the other paths still get flushed
                        logger.warning("flush of %s failed: %s", file_path, error)
                    if self.enabled:
                        break
            finally:
                with self._lock:
                    self._flushing.pop(file_path, None)

    # ~~~~~~~~~~~~~~~~~~~
    # ~~~ Schedule
    # ~~~~~~~~~~~~~~~~~~~

    @property
    def is_running(self) -> bool:
        return self._task is not None and self._task.is_running

    def start(self, threaded: bool = False) -> None:
        """Starts flushing every `interval_ms`. Nothing to schedule when every operation is flushed right away."""
        self.stop()
        if not self.flushes_on_tick:
            return
        if threaded:
            self._task = ThreadedRecurringTask(
                name="pypersist-write-queue", interval_ms=self.interval_ms, callback=self.flush_sync
            )
        else:
            self._task = AsyncRecurringTask(
                name="pypersist-write-queue", interval_ms=self.interval_ms, callback=self.flush
            )
        self._task.start()

    def stop(self) -> None:
        if self._task is not None:
            self._task.stop()
            self._task = None
