"""Expiry of the datums of a store.

- is_expired / calc_ttl hold the TTL policy: a datum carries an absolute expiration date (ms since epoch), computed
from the duration given to `set` or, when none is given, from the store default.
- sweep removes every expired datum (memory and disk). It runs every `interval_ms` on a recurring task owned by the
worker, so that expired datums are evicted even if nobody reads them.

Reads do not rely on the sweep: the store checks `is_expired` on every `get`.
"""

import math
from datetime import datetime
from time import time
from typing import TYPE_CHECKING

from pypersist.item import Datum
from pypersist.scheduler import (
    AsyncRecurringTask,
    RecurringTask,
    ThreadedRecurringTask,
)

if TYPE_CHECKING:
    from pypersist.storage import Storage

DEFAULT_TTL_MS = 24 * 60 * 60 * 1000


def now_ms() -> int:
    return int(time() * 1000)


def resolve_duration(ttl) -> int or float or bool:
    """Normalizes a TTL duration: falsy means no expiration, and a truthy value that is not a positive finite number
    falls back to 24 hours.
    """
    if not ttl:
        return False
    if isinstance(ttl, bool) or not isinstance(ttl, (int, float)):
        return DEFAULT_TTL_MS
    if isinstance(ttl, float) and not math.isfinite(ttl):
        return DEFAULT_TTL_MS
    if ttl <= 0:
        return DEFAULT_TTL_MS
    return ttl


class ExpiryWorker:
    DEFAULT_INTERVAL_MS = 2 * 60 * 1000

    def __init__(
        self,
        storage: "Storage",
        default_ttl=False,
        interval_ms: int = DEFAULT_INTERVAL_MS,
    ):
        self.storage = storage
        self.default_ttl = resolve_duration(default_ttl)
        self.interval_ms = interval_ms
        self._task: RecurringTask or None = None

    @staticmethod
    def is_expired(datum: Datum) -> bool:
        return bool(datum.ttl) and datum.ttl < now_ms()

    @staticmethod
    def is_not_expired(datum: Datum) -> bool:
        return not ExpiryWorker.is_expired(datum)

    def calc_ttl(self, ttl=None) -> Datum.TTL or None:
        """Returns the absolute expiration date of a datum written now.

        `ttl` is None when the caller did not give any: the store default applies. Otherwise it is a duration in ms
        (False or 0 for no expiration) or a datetime at which the datum expires.
        """
        if ttl is None:
            duration = self.default_ttl
        elif isinstance(ttl, datetime):
            expires_at = int(ttl.timestamp() * 1000)
            if expires_at > now_ms():
                return expires_at
            duration = DEFAULT_TTL_MS
        else:
            duration = resolve_duration(ttl)

        return now_ms() + int(duration) if duration else None

    async def sweep(self) -> list[Datum.Key]:
        removed_keys = []
        for key, datum in self.storage.key_dir:
            # The datum may have been replaced or removed while a previous removal was being awaited
            if self.is_expired(datum) and self.storage.key_dir.get(key) is datum:
                await self.storage.remove(key)
                removed_keys.append(key)
        if removed_keys:
            self.storage.log(f"removed {len(removed_keys)} expired item(s)")
        return removed_keys

    def sweep_sync(self) -> list[Datum.Key]:
        removed_keys = []
        for key, datum in self.storage.key_dir:
            with self.storage.lock:
                if self.is_expired(datum) and self.storage.key_dir.get(key) is datum:
                    self.storage.remove_sync(key)
                    removed_keys.append(key)
        if removed_keys:
            self.storage.log(f"removed {len(removed_keys)} expired item(s)")
        return removed_keys

    # ~~~~~~~~~~~~~~~~~~~
    # ~~~ Schedule
    # ~~~~~~~~~~~~~~~~~~~

    @property
    def is_running(self) -> bool:
        return self._task is not None and self._task.is_running

    def start(self, threaded: bool = False) -> None:
        """Starts sweeping every `interval_ms`. A falsy interval disables the sweep."""
        self.stop()
        if not self.interval_ms:
            return
        if threaded:
            self._task = ThreadedRecurringTask(
                name="pypersist-expiry", interval_ms=self.interval_ms, callback=self.sweep_sync
            )
        else:
            self._task = AsyncRecurringTask(
                name="pypersist-expiry", interval_ms=self.interval_ms, callback=self.sweep
            )
        self._task.start()

    def stop(self) -> None:
        if self._task is not None:
            self._task.stop()
            self._task = None
