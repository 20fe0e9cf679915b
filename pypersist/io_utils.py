import hashlib

ENCODING = "utf-8"


def hash_key(key: str, encoding=ENCODING) -> str:
    """Returns the filename under which the datum of `key` is stored."""
    return hashlib.md5(key.encode(encoding)).hexdigest()
