"""
Conversion between nested translation documents and flat composite-key maps.

A document is a mapping whose leaves are strings. Arrays may hold strings or
mappings. Composite keys join object keys with ``.`` and address array items
with ``name[index]``; every object key is passed through the key codec so that
keys containing delimiter characters survive the round trip.
"""
import re
import warnings
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple, Union

from langsync.errors import InvalidValueError, MergeConflictWarning
from langsync.key_codec import decode_segment, encode_segment


@dataclass(frozen=True)
class TextNode:
    value: str


@dataclass(frozen=True)
class ObjectNode:
    entries: Tuple[Tuple[str, "Node"], ...]


@dataclass(frozen=True)
class ArrayNode:
    items: Tuple["Node", ...]


Node = Union[TextNode, ObjectNode, ArrayNode]

KeyToken = Union[str, int]

_SEGMENT_PATTERN = re.compile(r"^(?P<name>[^\[\]]*)(?P<indices>(?:\[\d+\])*)$")
_INDEX_PATTERN = re.compile(r"\[(\d+)\]")


def _join(path: Optional[str], segment: str) -> str:
    return segment if path is None else f"{path}.{segment}"


def to_node(value: Any, path: str = "") -> Node:
    """
    Classify a parsed value into the closed set of translatable shapes.

    Raises:
        InvalidValueError: For numbers, booleans, nulls and arrays nested
            directly inside arrays.
    """
    if isinstance(value, str):
        return TextNode(value)
    if isinstance(value, dict):
        entries = []
        for key, child in value.items():
            key = str(key)
            entries.append((key, to_node(child, _join(path or None, encode_segment(key)))))
        return ObjectNode(tuple(entries))
    if isinstance(value, list):
        items = []
        for index, item in enumerate(value):
            item_path = f"{path}[{index}]"
            if not isinstance(item, (str, dict)):
                raise InvalidValueError(item_path, item)
            items.append(to_node(item, item_path))
        return ArrayNode(tuple(items))
    raise InvalidValueError(path, value)


def _flatten_node(node: Node, path: Optional[str], result: Dict[str, str]) -> None:
    if isinstance(node, TextNode):
        result[path or ""] = node.value
    elif isinstance(node, ObjectNode):
        for key, child in node.entries:
            _flatten_node(child, _join(path, encode_segment(key)), result)
    elif isinstance(node, ArrayNode):
        for index, child in enumerate(node.items):
            _flatten_node(child, f"{path or ''}[{index}]", result)
    else:
        raise TypeError(f"Unknown node type: {type(node).__name__}")


def flatten(document: Dict[str, Any], prefix: str = "") -> Dict[str, str]:
    """
    Flatten a nested document into an ordered composite-key map.

    Args:
        document: A mapping of strings, mappings and arrays.
        prefix: Optional composite key to nest every produced key under.

    Returns:
        Dict[str, str]: Composite keys in document order mapped to their text.

    Raises:
        InvalidValueError: If any leaf is not a string.
    """
    if not isinstance(document, dict):
        raise InvalidValueError(prefix, document)
    result: Dict[str, str] = {}
    _flatten_node(to_node(document, prefix), prefix or None, result)
    return result


def split_key(composite_key: str) -> List[KeyToken]:
    """
    Split a composite key into decoded object keys (str) and array indices (int).

    Segment boundaries are found on the raw key, before decoding, so an encoded
    segment that logically contains dots or brackets is never split.
    """
    tokens: List[KeyToken] = []
    for raw in composite_key.split("."):
        match = _SEGMENT_PATTERN.match(raw)
        if not match:
            # Brackets that do not form an index suffix belong to the name.
            tokens.append(decode_segment(raw))
            continue
        tokens.append(decode_segment(match.group("name")))
        tokens.extend(int(index) for index in _INDEX_PATTERN.findall(match.group("indices")))
    return tokens


class _Slots(dict):
    """An array under construction, keyed by index so order does not matter."""


def _conflict(key: str, detail: str) -> None:
    warnings.warn(f"Key '{key}' {detail}; keeping the later value", MergeConflictWarning, stacklevel=4)


def _assign(root: Dict, tokens: List[KeyToken], value: str, key: str) -> None:
    container: Dict = root
    for token, next_token in zip(tokens, tokens[1:]):
        factory = _Slots if isinstance(next_token, int) else dict
        child = container.get(token)
        if type(child) is not factory:
            if child is not None:
                _conflict(key, "changes the shape of an earlier entry")
            child = factory()
            container[token] = child
        container = child

    last = tokens[-1]
    if isinstance(container.get(last), dict):
        _conflict(key, "replaces a nested structure with text")
    container[last] = value


def _finalize(value: Any) -> Any:
    if isinstance(value, _Slots):
        return [_finalize(value[index]) for index in sorted(value)]
    if isinstance(value, dict):
        return {key: _finalize(child) for key, child in value.items()}
    return value


def unflatten(flat: Dict[str, str]) -> Dict[str, Any]:
    """
    Rebuild the nested document described by a composite-key map.

    Array items are placed by index, not by arrival order; missing indices are
    compacted. When two keys disagree on the shape at a path the later key
    wins and a :class:`MergeConflictWarning` is emitted.
    """
    root: Dict[str, Any] = {}
    for key, value in flat.items():
        _assign(root, split_key(key), value, key)
    return _finalize(root)
