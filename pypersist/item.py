from typing import Any


class Datum:
    Key = str
    Value = Any
    TTL = int  # Absolute expiration date, in milliseconds since epoch

    def __init__(self, key: Key, value: Value, ttl: TTL or None = None):
        self.key = key
        self.value = value
        self.ttl = ttl

    def __eq__(self, other) -> bool:
        if not isinstance(other, Datum):
            return NotImplemented
        return (
            self.key == other.key
            and self.value == other.value
            and self.ttl == other.ttl
        )

    def __repr__(self) -> str:
        return f"Datum({self.key!r}: {self.value!r} (ttl={self.ttl}))"

    def to_dict(self) -> dict:
        # A datum that never expires is stored without its `ttl` field
        if self.ttl is None:
            return {"key": self.key, "value": self.value}
        return {"key": self.key, "value": self.value, "ttl": self.ttl}

    @classmethod
    def from_dict(cls, content: dict) -> "Datum":
        return cls(
            key=content["key"], value=content.get("value"), ttl=content.get("ttl")
        )

    @staticmethod
    def is_valid_content(content: Any) -> bool:
        """Only a mapping with a non-empty `key` qualifies as a stored datum."""
        return (
            isinstance(content, dict)
            and isinstance(content.get("key"), str)
            and content["key"] != ""
        )
