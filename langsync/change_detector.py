"""Decide which keys of a source document need (re)translation."""
import difflib
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from langsync.code_strings import StringLiteral


@dataclass
class ChangeSet:
    changed: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.changed or self.removed)


def detect_changed_keys(previous: Optional[Dict[str, str]], current: Dict[str, str]) -> List[str]:
    """
    Keys of ``current`` that are new or whose text differs from ``previous``.

    The result follows the order of ``current``. With no previous snapshot every
    key counts as changed.
    """
    if not previous:
        return list(current)
    return [key for key, value in current.items() if previous.get(key) != value]


def detect_removed_keys(previous: Optional[Dict[str, str]], current: Dict[str, str]) -> List[str]:
    if not previous:
        return []
    return [key for key in previous if key not in current]


def detect_changes(previous: Optional[Dict[str, str]], current: Dict[str, str], force: bool = False) -> ChangeSet:
    """Build the change set of a flat map; ``force`` selects every current key."""
    changed = list(current) if force else detect_changed_keys(previous, current)
    return ChangeSet(changed=changed, removed=detect_removed_keys(previous, current))


def document_changed(previous: Optional[str], current: str, force: bool = False) -> bool:
    return force or previous != current


def _line_offsets(lines: List[str]) -> List[int]:
    offsets = [0]
    for line in lines:
        offsets.append(offsets[-1] + len(line))
    return offsets


def detect_changed_literals(previous_text: Optional[str], current_text: str,
                            literals: List[StringLiteral]) -> List[int]:
    """
    Ordinals of the literals that overlap an inserted or replaced line.

    Args:
        previous_text: The last translated version of the source, if any.
        current_text: The current source.
        literals: Translatable literals of ``current_text`` in source order.

    Returns:
        List[int]: Literal ordinals in source order.
    """
    if previous_text is None:
        return list(range(len(literals)))

    previous_lines = previous_text.splitlines(keepends=True)
    current_lines = current_text.splitlines(keepends=True)
    offsets = _line_offsets(current_lines)
    matcher = difflib.SequenceMatcher(None, previous_lines, current_lines, autojunk=False)

    ranges = [
        (offsets[j1], offsets[j2])
        for tag, _, _, j1, j2 in matcher.get_opcodes()
        if tag in ("insert", "replace")
    ]
    return [
        ordinal
        for ordinal, literal in enumerate(literals)
        if any(literal.index < end and literal.end > start for start, end in ranges)
    ]


def align_unchanged_literals(previous_text: str, current_text: str,
                             previous_literals: List[StringLiteral],
                             current_literals: List[StringLiteral]) -> Dict[int, int]:
    """
    Map ordinals of current literals on unchanged lines to the ordinal of the
    same literal in the previous source.
    """
    previous_lines = previous_text.splitlines(keepends=True)
    current_lines = current_text.splitlines(keepends=True)
    previous_offsets = _line_offsets(previous_lines)
    current_offsets = _line_offsets(current_lines)
    previous_by_index = {literal.index: ordinal for ordinal, literal in enumerate(previous_literals)}

    matcher = difflib.SequenceMatcher(None, previous_lines, current_lines, autojunk=False)
    alignment: Dict[int, int] = {}
    for tag, i1, _, j1, j2 in matcher.get_opcodes():
        if tag != "equal":
            continue
        shift = previous_offsets[i1] - current_offsets[j1]
        start, end = current_offsets[j1], current_offsets[j2]
        for ordinal, literal in enumerate(current_literals):
            if start <= literal.index < end:
                previous_ordinal = previous_by_index.get(literal.index + shift)
                if previous_ordinal is not None and previous_literals[previous_ordinal].content == literal.content:
                    alignment[ordinal] = previous_ordinal
    return alignment
