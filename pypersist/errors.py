class PersistError(Exception):
    pass


class StorageFileParseError(PersistError):
    def __init__(self, file_path: str, reason: str or None = None):
        self.file_path = file_path
        self.reason = reason
        message = f"{file_path} does not look like a valid storage file!"
        if reason:
            message += f" ({reason})"
        super().__init__(message)
