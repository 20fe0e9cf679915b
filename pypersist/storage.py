import asyncio
import logging
import re
import threading
from collections import namedtuple
from typing import Callable

from pypersist.codec import DatumCodec
from pypersist.expiry_worker import ExpiryWorker, resolve_duration
from pypersist.io_handling import DatumFile, DirectoryStore, WriteResult
from pypersist.item import Datum
from pypersist.key_dir import KeyDir
from pypersist.options import StorageOptions
from pypersist.write_queue import WriteQueue

logger = logging.getLogger(__name__)

RemovedItem = namedtuple("RemovedItem", ["key", "value", "removed", "existed"])


class Storage:
    """File-backed key-value store: one file per key, named after the hash of the key.

    Reads are served from memory (the key_dir), which is loaded from the directory by `init`. Writes update the memory
    right away and reach the disk through the write queue.

    Every operation touching the disk is a coroutine, with a blocking `*_sync` twin. The blocking twins are meant for
    code without an event loop: a store initialised with `init_sync` runs its background tasks on daemon threads, and
    its state is guarded by `lock`.
    """

    def __init__(self, options: StorageOptions or None = None, **overrides):
        self.options = StorageOptions()
        self.key_dir = KeyDir()
        self.lock = threading.RLock()
        self.codec = DatumCodec()
        self.directory_store = DirectoryStore(
            directory=self.options.absolute_dir, codec=self.codec, log=self.log
        )
        self.write_queue = WriteQueue(directory_store=self.directory_store)
        self.expiry_worker = ExpiryWorker(storage=self)
        self.set_options(options, **overrides)

    def __len__(self) -> int:
        return self.length()

    def __contains__(self, key: Datum.Key) -> bool:
        return self.get_datum(key) is not None

    def _apply_options(self) -> None:
        options = self.options
        self.codec = DatumCodec(encode=options.encode, decode=options.decode)
        self.directory_store.directory = options.dir
        self.directory_store.codec = self.codec
        self.directory_store.encoding = options.encoding
        self.directory_store.forgive_parse_errors = options.forgive_parse_errors
        self.write_queue.enabled = options.write_queue
        self.write_queue.interval_ms = options.write_queue_interval_ms
        self.write_queue.write_only_last = options.write_queue_write_only_last
        self.expiry_worker.default_ttl = resolve_duration(options.ttl)
        self.expiry_worker.interval_ms = options.expired_interval

    def _new_datum(self, key: Datum.Key, value: Datum.Value, ttl: Datum.TTL or None) -> Datum:
        if not isinstance(key, str) or not key:
            raise ValueError(f"keys must be non-empty strings, got {key!r}")
        datum = Datum(key=key, value=self.codec.copy(value), ttl=ttl)
        self.log(f"set ({key!r}: {datum.value!r})")
        return datum

    def _adopt_persisted(self, datum: Datum, result: WriteQueue.Result) -> Datum or None:
        """Returns the datum that reached the disk for a write of `datum`.

        When another write to the same key won (first write wins), memory takes the persisted datum so that memory
        and disk agree, unless a more recent write already replaced `datum` in memory.
        """
        if not isinstance(result, WriteResult):
            # A removal queued after this write won
            return None
        if result.datum is not datum and self.key_dir.get(datum.key) is datum:
            self.key_dir.update(result.datum)
        return result.datum

    @staticmethod
    def _removed_item(key: Datum.Key, previous: Datum or None, result: WriteQueue.Result) -> RemovedItem:
        value = previous.value if previous is not None else None
        if isinstance(result, WriteResult):
            # A write queued after this removal won: the key is stored again
            return RemovedItem(key=key, value=value, removed=False, existed=previous is not None)
        return RemovedItem(
            key=key,
            value=value,
            removed=result.removed,
            existed=result.existed or previous is not None,
        )

    def _start_timers(self, threaded: bool) -> None:
        self.expiry_worker.start(threaded=threaded)
        self.write_queue.start(threaded=threaded)

    def log(self, message: str) -> None:
        if not self.options.logging:
            logger.debug(message)
        elif self.options.log_sink is not None:
            self.options.log_sink(message)
        else:
            logger.info(message)

    # ~~~~~~~~~~~~~~~~~~~
    # ~~~ Lifecycle
    # ~~~~~~~~~~~~~~~~~~~

    def set_options(self, options: StorageOptions or None = None, **overrides) -> StorageOptions:
        """Merges `overrides` on top of `options` (or of the current options).
        A new directory is only loaded by the next `init`.
        """
        options = (options or self.options).merge(**overrides)
        self.options = options.merge(dir=options.absolute_dir)
        self._apply_options()
        return self.options

    async def init(self, options: StorageOptions or None = None, **overrides) -> StorageOptions:
        """Loads the directory in memory (creating it if needed) and starts the background tasks on the running loop.
        Raises StorageFileParseError if the directory holds an invalid file, unless parse errors are forgiven.
        """
        if options is not None or overrides:
            self.set_options(options, **overrides)
        await self.write_queue.drain()
        await self.directory_store.ensure_directory()
        self.key_dir.rebuild(await self.directory_store.read_directory())
        self.log(f"loaded {len(self.key_dir)} item(s) from {self.options.dir}")
        self._start_timers(threaded=False)
        return self.options

    def init_sync(self, options: StorageOptions or None = None, **overrides) -> StorageOptions:
        if options is not None or overrides:
            self.set_options(options, **overrides)
        self.write_queue.flush_sync()
        self.directory_store.ensure_directory_sync()
        with self.lock:
            self.key_dir.rebuild(self.directory_store.read_directory_sync())
        self.log(f"loaded {len(self.key_dir)} item(s) from {self.options.dir}")
        self._start_timers(threaded=True)
        return self.options

    async def flush(self) -> None:
        """Waits until every queued write has reached the disk"""
        await self.write_queue.drain()

    def stop(self) -> None:
        """Cancels the background tasks. Queued writes are left to a later flush."""
        self.expiry_worker.stop()
        self.write_queue.stop()

    async def close(self) -> None:
        await self.flush()
        self.stop()

    def close_sync(self) -> None:
        self.write_queue.flush_sync()
        self.stop()

    # ~~~~~~~~~~~~~~~~~~~
    # ~~~ API
    # ~~~~~~~~~~~~~~~~~~~

    async def get(self, key: Datum.Key) -> Datum.Value or None:
        """Returns the value of the key, or None if the key was never set or has expired.
        An expired key is removed on the spot.
        """
        datum = self.key_dir.get(key)
        if datum is None:
            return None
        if self.expiry_worker.is_expired(datum):
            self.log(f"{key} has expired")
            await self.remove(key)
            return None
        return datum.value

    def get_sync(self, key: Datum.Key) -> Datum.Value or None:
        with self.lock:
            datum = self.key_dir.get(key)
            if datum is None:
                return None
            if self.expiry_worker.is_expired(datum):
                self.log(f"{key} has expired")
                self.remove_sync(key)
                return None
            return datum.value

    def get_datum(self, key: Datum.Key) -> Datum or None:
        datum = self.key_dir.get(key)
        if datum is None or self.expiry_worker.is_expired(datum):
            return None
        return datum

    async def get_raw_datum(self, key: Datum.Key) -> str or None:
        """Returns the content of the storage file of the key, as last flushed"""
        return await self.directory_store.read_raw_file(self.directory_store.datum_path(key))

    def get_raw_datum_sync(self, key: Datum.Key) -> str or None:
        return self.directory_store.read_raw_file_sync(self.directory_store.datum_path(key))

    async def set(self, key: Datum.Key, value: Datum.Value, ttl=None) -> Datum or None:
        """Stores a copy of `value`. `ttl` is a duration in ms, a datetime, or False for no expiration; when None,
        the default TTL of the store applies.

        Returns once the write was flushed, with the datum that reached the disk.
        """
        datum = self._new_datum(key, value, ttl=self.expiry_worker.calc_ttl(ttl))
        self.key_dir.update(datum)
        result = await self.write_queue.submit(self.directory_store.datum_path(key), datum)
        return self._adopt_persisted(datum, result)

    def set_sync(self, key: Datum.Key, value: Datum.Value, ttl=None) -> Datum or None:
        datum = self._new_datum(key, value, ttl=self.expiry_worker.calc_ttl(ttl))
        with self.lock:
            self.key_dir.update(datum)
            result = self.write_queue.write_sync(self.directory_store.datum_path(key), datum)
            return self._adopt_persisted(datum, result)

    def _updated_ttl(self, key: Datum.Key, ttl) -> Datum.TTL or None:
        """Without an explicit TTL, an update keeps the expiration date of the live datum it replaces"""
        previous = self.get_datum(key)
        if previous is not None and ttl is None:
            return previous.ttl
        return self.expiry_worker.calc_ttl(ttl)

    async def update(self, key: Datum.Key, value: Datum.Value, ttl=None) -> Datum or None:
        datum = self._new_datum(key, value, ttl=self._updated_ttl(key, ttl))
        self.key_dir.update(datum)
        result = await self.write_queue.submit(self.directory_store.datum_path(key), datum)
        return self._adopt_persisted(datum, result)

    def update_sync(self, key: Datum.Key, value: Datum.Value, ttl=None) -> Datum or None:
        with self.lock:
            datum = self._new_datum(key, value, ttl=self._updated_ttl(key, ttl))
            self.key_dir.update(datum)
            result = self.write_queue.write_sync(self.directory_store.datum_path(key), datum)
            return self._adopt_persisted(datum, result)

    async def remove(self, key: Datum.Key) -> RemovedItem:
        """Removes the key from memory and disk. Removing a missing key is not an error: `existed` is then False."""
        previous = self.key_dir.pop(key)
        self.log(f"removing {key}")
        result = await self.write_queue.submit(self.directory_store.datum_path(key), None)
        return self._removed_item(key, previous, result)

    def remove_sync(self, key: Datum.Key) -> RemovedItem:
        with self.lock:
            previous = self.key_dir.pop(key)
            self.log(f"removing {key}")
            result = self.write_queue.delete_sync(self.directory_store.datum_path(key))
            return self._removed_item(key, previous, result)

    delete = remove
    delete_sync = remove_sync

    def _unknown_files(self, files: list[DatumFile]) -> list[DatumFile]:
        """Storage files of the directory that no key in memory points to (written by another instance)"""
        known_paths = {self.directory_store.datum_path(key) for key, _ in self.key_dir}
        return [file for file in files if file.path not in known_paths]

    async def clear(self) -> list[RemovedItem]:
        """Removes every item, as well as the storage files of the directory that were never loaded"""
        removed_items = list(await asyncio.gather(*(self.remove(key) for key, _ in self.key_dir)))
        try:
            files = self._unknown_files(await self.directory_store.list_files())
        except FileNotFoundError:
            files = []
        await asyncio.gather(*(self.write_queue.submit(file.path, None) for file in files))
        if files:
            self.log(f"removed {len(files)} unknown file(s) from {self.options.dir}")
        return removed_items

    def clear_sync(self) -> list[RemovedItem]:
        with self.lock:
            removed_items = [self.remove_sync(key) for key, _ in self.key_dir]
            try:
                files = self._unknown_files(self.directory_store.list_files_sync())
            except FileNotFoundError:
                files = []
            for file in files:
                self.write_queue.delete_sync(file.path)
        if files:
            self.log(f"removed {len(files)} unknown file(s) from {self.options.dir}")
        return removed_items

    async def remove_expired_items(self) -> list[Datum.Key]:
        return await self.expiry_worker.sweep()

    def remove_expired_items_sync(self) -> list[Datum.Key]:
        return self.expiry_worker.sweep_sync()

    # ~~~~~~~~~~~~~~~~~~~
    # ~~~ In-memory views
    # ~~~~~~~~~~~~~~~~~~~

    def data(self, predicate: KeyDir.Predicate or None = None) -> list[Datum]:
        """Live (not expired) datums, optionally filtered. Their order is not specified."""
        return [
            datum
            for datum in self.key_dir.datums(self.expiry_worker.is_not_expired)
            if predicate is None or predicate(datum)
        ]

    def keys(self, predicate: KeyDir.Predicate or None = None) -> list[Datum.Key]:
        return [datum.key for datum in self.data(predicate)]

    def values(self, predicate: KeyDir.Predicate or None = None) -> list[Datum.Value]:
        return [datum.value for datum in self.data(predicate)]

    def length(self, predicate: KeyDir.Predicate or None = None) -> int:
        return len(self.data(predicate))

    def for_each(self, callback: Callable[[Datum.Key, Datum.Value], object]) -> None:
        for datum in self.data():
            callback(datum.key, datum.value)

    def values_with_key_match(self, match: str or re.Pattern or None = None) -> list[Datum.Value]:
        """Values of the keys containing `match` (a string), or in which `match` (a compiled regex) is found"""
        if match is None:
            return self.values()
        if isinstance(match, re.Pattern):
            return self.values(lambda datum: match.search(datum.key) is not None)
        return self.values(lambda datum: match in datum.key)
