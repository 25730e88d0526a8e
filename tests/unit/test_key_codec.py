import base64

import pytest

from langsync.errors import EncodingError
from langsync.key_codec import ENCODED_PREFIX, decode_segment, encode_segment, needs_encoding


def test_segment_with_hyphen_is_encoded():
    assert encode_segment("allow-multiple") == "__encoded__YWxsb3ctbXVsdGlwbGU="


def test_safe_segments_pass_through():
    for segment in ("title", "welcome_message", "Button2", "", "ключ"):
        assert encode_segment(segment) == segment
        assert decode_segment(segment) == segment


@pytest.mark.parametrize("segment", [
    "a.b", "with space", "tab\there", "[0]", "x,y", "path/to", "<tag>", "why?", "k:v", "wild*",
    "ключ-1", "emoji 🎉",
])
def test_unsafe_segments_round_trip(segment):
    encoded = encode_segment(segment)
    assert encoded.startswith(ENCODED_PREFIX)
    assert decode_segment(encoded) == segment


def test_segment_that_looks_encoded_is_encoded_again():
    literal = "__encoded__Zm9v"
    assert needs_encoding(literal)
    encoded = encode_segment(literal)
    assert encoded != literal
    assert decode_segment(encoded) == literal


def test_encoding_is_deterministic():
    assert encode_segment("a-b") == encode_segment("a-b")
    assert encode_segment("a-b") != encode_segment("a_b")


def test_payload_is_standard_base64_of_utf8():
    encoded = encode_segment("é-è")
    payload = encoded[len(ENCODED_PREFIX):]
    assert base64.b64decode(payload).decode("utf-8") == "é-è"


def test_corrupted_payload_raises_encoding_error():
    with pytest.raises(EncodingError):
        decode_segment("__encoded__!!not-base64!!")


def test_non_utf8_payload_raises_encoding_error():
    with pytest.raises(EncodingError):
        decode_segment(ENCODED_PREFIX + base64.b64encode(b"\xff\xfe").decode("ascii"))
