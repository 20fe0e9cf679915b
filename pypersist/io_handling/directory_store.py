import logging
import os
from collections import namedtuple
from typing import Callable

import aiofiles.os

from pypersist.codec import DatumCodec, ParseFailure
from pypersist.errors import StorageFileParseError
from pypersist.io_handling.datum_file import DatumFile
from pypersist.io_utils import ENCODING, hash_key
from pypersist.item import Datum

logger = logging.getLogger(__name__)

WriteResult = namedtuple("WriteResult", ["file_path", "datum"])
DeleteResult = namedtuple("DeleteResult", ["file_path", "removed", "existed"])


class DirectoryStore:
    Log = Callable[[str], None]

    def __init__(
        self,
        directory: str,
        codec: DatumCodec,
        encoding: str = ENCODING,
        forgive_parse_errors: bool = False,
        log: Log = logger.debug,
    ):
        self.directory = directory
        self.codec = codec
        self.encoding = encoding
        self.forgive_parse_errors = forgive_parse_errors
        self.log = log

    def datum_path(self, key: Datum.Key) -> str:
        return os.path.join(self.directory, hash_key(key, encoding=self.encoding))

    def _file(self, path: str) -> DatumFile:
        return DatumFile(path=path, encoding=self.encoding)

    def _reject(self, file_path: str, reason: str) -> None:
        """Invalid content either raises (strict mode) or is skipped (when forgiving parse errors)"""
        if not self.forgive_parse_errors:
            raise StorageFileParseError(file_path=file_path, reason=reason)
        self.log(f"skipping {file_path}: not a valid storage file ({reason})")

    def _to_datum(self, file_path: str, text: str or None) -> Datum or None:
        if text is None:
            return None
        datum = self.codec.decode(text)
        if isinstance(datum, ParseFailure):
            self._reject(file_path=file_path, reason=datum.reason)
            return None
        return datum

    # ~~~~~~~~~~~~~~~~~~~
    # ~~~ Directory
    # ~~~~~~~~~~~~~~~~~~~

    async def ensure_directory(self) -> str:
        if not await aiofiles.os.path.isdir(self.directory):
            await aiofiles.os.makedirs(self.directory, exist_ok=True)
            self.log(f"created {self.directory}")
        return self.directory

    def ensure_directory_sync(self) -> str:
        if not os.path.isdir(self.directory):
            os.makedirs(self.directory, exist_ok=True)
            self.log(f"created {self.directory}")
        return self.directory

    async def list_files(self) -> list[DatumFile]:
        files = []
        for filename in await aiofiles.os.listdir(self.directory):
            file = self._file(os.path.join(self.directory, filename))
            if not file.is_hidden and await aiofiles.os.path.isfile(file.path):
                files.append(file)
        return files

    def list_files_sync(self) -> list[DatumFile]:
        files = [
            self._file(os.path.join(self.directory, filename))
            for filename in os.listdir(self.directory)
        ]
        return [file for file in files if not file.is_hidden and os.path.isfile(file.path)]

    async def read_directory(self) -> list[Datum]:
        """Reads and decodes every storage file of the directory.
        Raises FileNotFoundError if the directory does not exist.
        """
        data = []
        for file in await self.list_files():
            datum = await self.read_file(file.path)
            if datum is not None:
                data.append(datum)
        return data

    def read_directory_sync(self) -> list[Datum]:
        data = []
        for file in self.list_files_sync():
            datum = self.read_file_sync(file.path)
            if datum is not None:
                data.append(datum)
        return data

    # ~~~~~~~~~~~~~~~~~~~
    # ~~~ Files
    # ~~~~~~~~~~~~~~~~~~~

    async def read_file(self, file_path: str) -> Datum or None:
        """Returns the datum stored in the file, or None if there is no such file"""
        try:
            text = await self.read_raw_file(file_path)
        except UnicodeDecodeError as error:
            # Binary content is as invalid as any other garbage
            self._reject(file_path=file_path, reason=str(error))
            return None
        return self._to_datum(file_path=file_path, text=text)

    def read_file_sync(self, file_path: str) -> Datum or None:
        try:
            text = self.read_raw_file_sync(file_path)
        except UnicodeDecodeError as error:
            self._reject(file_path=file_path, reason=str(error))
            return None
        return self._to_datum(file_path=file_path, text=text)

    async def read_raw_file(self, file_path: str) -> str or None:
        text = await self._file(file_path).read()
        if text is None:
            self.log(f"{file_path} does not exist, returning None")
        return text

    def read_raw_file_sync(self, file_path: str) -> str or None:
        text = self._file(file_path).read_sync()
        if text is None:
            self.log(f"{file_path} does not exist, returning None")
        return text

    async def write_file(self, file_path: str, datum: Datum) -> WriteResult:
        await self._file(file_path).write(self.codec.encode(datum))
        self.log(f"wrote: {file_path}")
        return WriteResult(file_path=file_path, datum=datum)

    def write_file_sync(self, file_path: str, datum: Datum) -> WriteResult:
        self._file(file_path).write_sync(self.codec.encode(datum))
        self.log(f"wrote: {file_path}")
        return WriteResult(file_path=file_path, datum=datum)

    async def delete_file(self, file_path: str) -> DeleteResult:
        removed = await self._file(file_path).discard()
        self._log_deletion(file_path=file_path, removed=removed)
        return DeleteResult(file_path=file_path, removed=removed, existed=removed)

    def delete_file_sync(self, file_path: str) -> DeleteResult:
        removed = self._file(file_path).discard_sync()
        self._log_deletion(file_path=file_path, removed=removed)
        return DeleteResult(file_path=file_path, removed=removed, existed=removed)

    def _log_deletion(self, file_path: str, removed: bool) -> None:
        if removed:
            self.log(f"removed file: {file_path}")
        else:
            self.log(f"not removing file: {file_path} because it doesn't exist")
