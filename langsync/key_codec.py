import base64
import binascii
import re

from langsync.errors import EncodingError

ENCODED_PREFIX = "__encoded__"

# Characters that would collide with the "." / "[i]" composite key grammar,
# plus a few that tend to break downstream tooling.
_UNSAFE_SEGMENT = re.compile(r"[.\-\s\[\],/<>?:*]")


def needs_encoding(segment: str) -> bool:
    """Return True when a key segment cannot be used verbatim in a composite key."""
    if not segment:
        return False
    return bool(_UNSAFE_SEGMENT.search(segment)) or segment.startswith(ENCODED_PREFIX)


def encode_segment(segment: str) -> str:
    """
    Encode a single key segment.

    Safe segments are returned unchanged so typical keys stay readable. Anything
    else becomes the marker followed by the base64 of its UTF-8 bytes. Segments
    that already start with the marker are encoded as well, otherwise a literal
    key such as ``__encoded__Zm9v`` would decode to ``foo``.

    Args:
        segment: The raw key segment.

    Returns:
        str: The segment as it appears inside a composite key.
    """
    if not needs_encoding(segment):
        return segment
    payload = base64.b64encode(segment.encode("utf-8")).decode("ascii")
    return f"{ENCODED_PREFIX}{payload}"


def decode_segment(token: str) -> str:
    """Reverse :func:`encode_segment`."""
    if not token.startswith(ENCODED_PREFIX):
        return token
    payload = token[len(ENCODED_PREFIX):]
    try:
        return base64.b64decode(payload, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as exc:
        raise EncodingError(f"Corrupted encoded key segment '{token}': {exc}") from exc
