import asyncio
import os
import shutil

import pytest

from pypersist.codec import DatumCodec
from pypersist.errors import StorageFileParseError
from pypersist.io_handling import DatumFile, DirectoryStore
from pypersist.item import Datum

TEST_DIRECTORY = "./datafiles/test_io_handling"


@pytest.fixture
def directory_store():
    shutil.rmtree(TEST_DIRECTORY, ignore_errors=True)
    directory_store = DirectoryStore(directory=TEST_DIRECTORY, codec=DatumCodec())
    yield directory_store
    shutil.rmtree(TEST_DIRECTORY, ignore_errors=True)


def test_ensure_directory_is_idempotent(directory_store):
    # WHEN
    asyncio.run(directory_store.ensure_directory())
    asyncio.run(directory_store.ensure_directory())
    directory_store.ensure_directory_sync()

    # THEN
    assert os.path.isdir(TEST_DIRECTORY)


def test_can_write_and_read_back_a_datum(directory_store):
    # GIVEN
    directory_store.ensure_directory_sync()
    datum = Datum(key="key1", value=["value", 1])
    path = directory_store.datum_path("key1")

    # WHEN
    result = asyncio.run(directory_store.write_file(path, datum))

    # THEN
    assert result.file_path == path
    assert asyncio.run(directory_store.read_file(path)) == datum
    assert directory_store.read_file_sync(path) == datum


def test_datum_path_is_named_after_the_key_hash(directory_store):
    # WHEN
    path = directory_store.datum_path("key1")

    # THEN
    assert os.path.dirname(path) == TEST_DIRECTORY
    assert path != directory_store.datum_path("key2")


def test_reading_a_missing_file_returns_none(directory_store):
    # GIVEN
    directory_store.ensure_directory_sync()
    path = directory_store.datum_path("never_set")

    # WHEN/THEN
    assert asyncio.run(directory_store.read_file(path)) is None
    assert directory_store.read_file_sync(path) is None
    assert directory_store.read_raw_file_sync(path) is None


def test_deleting_a_missing_file_is_not_an_error(directory_store):
    # GIVEN
    directory_store.ensure_directory_sync()
    path = directory_store.datum_path("key1")
    directory_store.write_file_sync(path, Datum(key="key1", value=1))

    # WHEN
    first = asyncio.run(directory_store.delete_file(path))
    second = asyncio.run(directory_store.delete_file(path))
    third = directory_store.delete_file_sync(path)

    # THEN
    assert first.removed is True and first.existed is True
    assert second.removed is False and second.existed is False
    assert third.removed is False and third.existed is False


def test_read_directory_skips_hidden_files(directory_store):
    # GIVEN
    directory_store.ensure_directory_sync()
    directory_store.write_file_sync(directory_store.datum_path("key1"), Datum(key="key1", value=1))
    directory_store.write_file_sync(directory_store.datum_path("key2"), Datum(key="key2", value=2))
    with open(os.path.join(TEST_DIRECTORY, ".lock"), "w") as file:
        file.write("not a datum")

    # WHEN
    data = asyncio.run(directory_store.read_directory())

    # THEN
    assert sorted(datum.key for datum in data) == ["key1", "key2"]
    assert sorted(datum.key for datum in directory_store.read_directory_sync()) == ["key1", "key2"]


def test_read_directory_fails_on_invalid_file(directory_store):
    # GIVEN
    directory_store.ensure_directory_sync()
    directory_store.write_file_sync(directory_store.datum_path("key1"), Datum(key="key1", value=1))
    garbage_path = os.path.join(TEST_DIRECTORY, "foo.bar")
    with open(garbage_path, "w") as file:
        file.write("nothing that makes sense")

    # WHEN/THEN
    with pytest.raises(StorageFileParseError) as error:
        asyncio.run(directory_store.read_directory())
    assert error.value.file_path == garbage_path
    assert "does not look like a valid storage file" in str(error.value)
    with pytest.raises(StorageFileParseError):
        directory_store.read_directory_sync()


def test_read_directory_skips_invalid_file_when_forgiving(directory_store):
    # GIVEN
    directory_store.forgive_parse_errors = True
    directory_store.ensure_directory_sync()
    directory_store.write_file_sync(directory_store.datum_path("key1"), Datum(key="key1", value=1))
    with open(os.path.join(TEST_DIRECTORY, "foo.bar"), "w") as file:
        file.write('{"not": "a datum"}')

    # WHEN
    data = asyncio.run(directory_store.read_directory())

    # THEN
    assert [datum.key for datum in data] == ["key1"]


def test_read_directory_of_missing_directory_fails(directory_store):
    # WHEN/THEN
    with pytest.raises(FileNotFoundError):
        directory_store.read_directory_sync()


def test_binary_file_is_an_invalid_file(directory_store):
    # GIVEN
    directory_store.ensure_directory_sync()
    binary_path = os.path.join(TEST_DIRECTORY, "garbage")
    with open(binary_path, "wb") as file:
        file.write(b"\xff\xfe\x00binary")

    # WHEN/THEN
    with pytest.raises(StorageFileParseError) as error:
        asyncio.run(directory_store.read_directory())
    assert error.value.file_path == binary_path
    with pytest.raises(StorageFileParseError):
        directory_store.read_file_sync(binary_path)


def test_binary_file_is_skipped_when_forgiving(directory_store):
    # GIVEN
    directory_store.forgive_parse_errors = True
    directory_store.ensure_directory_sync()
    directory_store.write_file_sync(directory_store.datum_path("key1"), Datum(key="key1", value=1))
    with open(os.path.join(TEST_DIRECTORY, "garbage"), "wb") as file:
        file.write(b"\xff\xfe\x00binary")

    # WHEN
    data = asyncio.run(directory_store.read_directory())

    # THEN
    assert [datum.key for datum in data] == ["key1"]
    assert [datum.key for datum in directory_store.read_directory_sync()] == ["key1"]


def test_datum_file_knows_hidden_files():
    # WHEN/THEN
    assert DatumFile(path="/tmp/store/.lock").is_hidden is True
    assert DatumFile(path="/tmp/store/5d41402abc4b2a76b9719d911017c592").is_hidden is False
