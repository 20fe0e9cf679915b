import os

import aiofiles
import aiofiles.os

from pypersist.io_utils import ENCODING


class DatumFile:
    """One storage file, holding the encoded datum of a single key.

    Every operation comes in two flavours: a coroutine relying on `aiofiles` so that the event loop is not blocked
    while the filesystem works, and a `*_sync` twin blocking the calling thread.
    """

    def __init__(self, path: str, encoding: str = ENCODING):
        self.path = path
        self.encoding = encoding

    def __repr__(self) -> str:
        return f"DatumFile({self.path})"

    @property
    def name(self) -> str:
        return os.path.basename(self.path)

    @property
    def is_hidden(self) -> bool:
        """Hidden files (lock files, editor files...) are never storage files"""
        return self.name.startswith(".")

    async def read(self) -> str or None:
        """Returns the raw content of the file, or None if the file does not exist"""
        try:
            async with aiofiles.open(self.path, mode="r", encoding=self.encoding) as file:
                return await file.read()
        except FileNotFoundError:
            return None

    def read_sync(self) -> str or None:
        try:
            with open(self.path, mode="r", encoding=self.encoding) as file:
                return file.read()
        except FileNotFoundError:
            return None

    async def write(self, content: str) -> None:
        async with aiofiles.open(self.path, mode="w", encoding=self.encoding) as file:
            await file.write(content)

    def write_sync(self, content: str) -> None:
        with open(self.path, mode="w", encoding=self.encoding) as file:
            file.write(content)

    async def discard(self) -> bool:
        """Deletes the file. Returns False if there was no file to delete."""
        try:
            await aiofiles.os.remove(self.path)
        except FileNotFoundError:
            return False
        return True

    def discard_sync(self) -> bool:
        try:
            os.remove(self.path)
        except FileNotFoundError:
            return False
        return True
