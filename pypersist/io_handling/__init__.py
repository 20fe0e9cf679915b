from pypersist.io_handling.datum_file import DatumFile
from pypersist.io_handling.directory_store import (
    DeleteResult,
    DirectoryStore,
    WriteResult,
)
