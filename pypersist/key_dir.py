from typing import Callable, Iterator

from pypersist.item import Datum


class KeyDir:
    """In-memory index of the store: maps every known key to its datum.

    Between a write and the next flush of the write queue, the key_dir is ahead of the disk, so it is the one to trust
    for reads.
    """

    Predicate = Callable[[Datum], bool]

    def __init__(self):
        self.entries: dict[Datum.Key, Datum] = {}

    def __iter__(self) -> Iterator[tuple[Datum.Key, Datum]]:
        # Iterate on a snapshot: entries may be removed while iterating (expiry sweep)
        return iter(list(self.entries.items()))

    def __len__(self) -> int:
        return len(self.entries)

    def __contains__(self, key: Datum.Key) -> bool:
        return key in self.entries

    def _clear(self):
        self.entries = {}

    def update(self, datum: Datum) -> None:
        self.entries[datum.key] = datum

    def get(self, key: Datum.Key) -> Datum or None:
        return self.entries.get(key)

    def pop(self, key: Datum.Key) -> Datum or None:
        return self.entries.pop(key, None)

    def datums(self, predicate: Predicate or None = None) -> list[Datum]:
        return [
            datum
            for _, datum in self
            if predicate is None or predicate(datum)
        ]

    def rebuild(self, data: list[Datum]) -> None:
        self._clear()
        for datum in data:
            self.update(datum)
