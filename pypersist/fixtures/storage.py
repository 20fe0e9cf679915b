import shutil

import pytest

from pypersist.storage import Storage

stored_items = [
    ("item1", 1),
    ("item2", {"a": 1}),
    ("item3a", "3a"),
    ("item3b", [3, "b"]),
]


class FakeClock:
    """Replaces `pypersist.expiry_worker.now_ms`, in milliseconds since epoch"""

    def __init__(self, now: int = 1_700_000_000_000):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, duration_ms: int) -> None:
        self.now += duration_ms


@pytest.fixture
def clock(monkeypatch):
    fake_clock = FakeClock()
    monkeypatch.setattr("pypersist.expiry_worker.now_ms", fake_clock)
    return fake_clock


@pytest.fixture
def storage(request):
    """A store on a clean directory, not initialised yet: `init` must run on the event loop of the test"""
    directory = request.param
    shutil.rmtree(directory, ignore_errors=True)
    storage = Storage(dir=directory, write_queue_interval_ms=10)
    yield storage
    storage.stop()
    shutil.rmtree(directory, ignore_errors=True)


@pytest.fixture
def storage_with_items(request):
    """A directory holding `stored_items`, written by a store that is already stopped"""
    directory = request.param
    shutil.rmtree(directory, ignore_errors=True)
    storage = Storage(dir=directory)
    storage.init_sync()
    for key, value in stored_items:
        storage.set_sync(key=key, value=value)
    storage.stop()
    yield storage
    shutil.rmtree(directory, ignore_errors=True)
