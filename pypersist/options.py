import dataclasses
import json
import os
from dataclasses import dataclass
from typing import Any, Callable, Optional

from pypersist.io_utils import ENCODING

DEFAULT_DIRECTORY = ".pypersist/storage"


@dataclass(frozen=True)
class StorageOptions:
    """Configuration of a Storage.

    - dir: storage directory (relative paths are resolved against the current working directory)
    - encode/decode: serialization of the stored records
    - encoding: text encoding of the storage files
    - logging: when True, operation messages go to `log_sink`, or to the `pypersist.storage` logger at INFO level
    - log_sink: custom receiver of the operation messages
    - ttl: default time to live of the datums in ms (False: never expire)
    - expired_interval: period of the expired datums sweep in ms (False: no sweep)
    - forgive_parse_errors: skip invalid storage files when loading the directory instead of failing
    - write_queue: coalesce writes to a same file
    - write_queue_interval_ms: period of the write queue flushes in ms
    - write_queue_write_only_last: when coalescing, the last write wins (True) or the first one wins (False)
    """

    dir: str = DEFAULT_DIRECTORY
    encode: Callable[[Any], str] = json.dumps
    decode: Callable[[str], Any] = json.loads
    encoding: str = ENCODING
    logging: bool = False
    log_sink: Optional[Callable[[str], None]] = None
    ttl: Any = False
    expired_interval: Optional[int] = 2 * 60 * 1000
    forgive_parse_errors: bool = False
    write_queue: bool = True
    write_queue_interval_ms: int = 1000
    write_queue_write_only_last: bool = True

    @property
    def absolute_dir(self) -> str:
        return os.path.abspath(os.path.normpath(self.dir))

    def merge(self, **overrides) -> "StorageOptions":
        """Returns a copy of the options with `overrides` on top. Unknown option names raise a TypeError."""
        return dataclasses.replace(self, **overrides)
