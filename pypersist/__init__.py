from pypersist.errors import PersistError, StorageFileParseError
from pypersist.io_handling import DeleteResult, WriteResult
from pypersist.item import Datum
from pypersist.options import StorageOptions
from pypersist.storage import RemovedItem, Storage


def create(options: StorageOptions or None = None, **overrides) -> Storage:
    """Creates a store. It still has to be initialised with `init` or `init_sync`."""
    return Storage(options, **overrides)
