import json

from pypersist.codec import DatumCodec, ParseFailure
from pypersist.io_utils import hash_key
from pypersist.item import Datum


def test_key_hash_is_a_stable_filename():
    # GIVEN
    key = "some/key with spaces & ünicode"

    # WHEN
    filename = hash_key(key)

    # THEN
    assert filename == hash_key(key)
    assert filename != hash_key(key + "!")
    assert len(filename) == 32
    assert all(character in "0123456789abcdef" for character in filename)


def test_can_decode_encoded_datum():
    # GIVEN
    codec = DatumCodec()
    in_datum = Datum(key="key", value={"nested": [1, 2, {"a": None}]}, ttl=1234)

    # WHEN
    out_datum = codec.decode(codec.encode(in_datum))

    # THEN
    assert out_datum == in_datum


def test_datum_without_ttl_is_encoded_without_ttl_field():
    # GIVEN
    codec = DatumCodec()

    # WHEN
    text = codec.encode(Datum(key="item1", value=1))

    # THEN
    assert json.loads(text) == {"key": "item1", "value": 1}


def test_malformed_text_is_a_parse_failure():
    # GIVEN
    codec = DatumCodec()

    # WHEN
    result = codec.decode("nothing that makes sense")

    # THEN
    assert isinstance(result, ParseFailure)
    assert not result


def test_record_without_key_is_a_parse_failure():
    # GIVEN
    codec = DatumCodec()

    # WHEN/THEN
    assert isinstance(codec.decode('{"value": 1}'), ParseFailure)
    assert isinstance(codec.decode('{"key": "", "value": 1}'), ParseFailure)
    assert isinstance(codec.decode("[1, 2, 3]"), ParseFailure)
    assert isinstance(codec.decode(None), ParseFailure)


def test_copy_is_independent_from_original():
    # GIVEN
    codec = DatumCodec()
    original = {"scores": [1, 2, 3]}

    # WHEN
    copy = codec.copy(original)
    original["scores"].append(4)

    # THEN
    assert copy == {"scores": [1, 2, 3]}


def test_custom_serializer_is_used():
    # GIVEN
    codec = DatumCodec(
        encode=lambda content: json.dumps(content, sort_keys=True, indent=2),
        decode=json.loads,
    )

    # WHEN
    text = codec.encode(Datum(key="k", value={"b": 1, "a": 2}))

    # THEN
    assert text.startswith("{\n")
    assert codec.decode(text).value == {"a": 2, "b": 1}
