import json
import logging
from typing import Any, Callable

from pypersist.item import Datum

logger = logging.getLogger(__name__)


class ParseFailure:
    """Returned instead of a datum when stored text cannot be decoded."""

    def __init__(self, reason: str):
        self.reason = reason

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return f"ParseFailure({self.reason!r})"


class DatumCodec:
    Encoder = Callable[[Any], str]
    Decoder = Callable[[str], Any]

    def __init__(self, encode: Encoder = json.dumps, decode: Decoder = json.loads):
        self._encode = encode
        self._decode = decode

    def encode(self, datum: Datum) -> str:
        return self._encode(datum.to_dict())

    def decode(self, text: str or None) -> Datum or ParseFailure:
        if text is None:
            return ParseFailure("no content")
        try:
            content = self._decode(text)
        except Exception as error:
            logger.debug("parse error: %r for: %r", error, text)
            return ParseFailure(str(error))
        if not Datum.is_valid_content(content):
            return ParseFailure("missing key")
        return Datum.from_dict(content)

    def copy(self, value: Datum.Value) -> Datum.Value:
        """Deep-copies a value by sending it through the serializer.
        Literals are immutable, so they are returned untouched.
        """
        if value is None or isinstance(value, (str, int, float, bool)):
            return value
        return self._decode(self._encode(value))
