"""
String literals embedded in JavaScript/TypeScript source.

Literals are located by scanning the text, never by evaluating it, and are
replaced by splicing new text between the untouched slices of the original so
that everything outside the translated literals stays byte-identical.
"""
import re
from dataclasses import dataclass, field
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional

from langsync.errors import InvalidStructureError

_LITERAL_PATTERN = re.compile(
    r'"(?:\\.|[^"\\\n])*"'
    r"|'(?:\\.|[^'\\\n])*'"
    r"|`(?:\\.|[^`\\])*`"
)
_ATTRIBUTE_BEFORE = re.compile(r"([A-Za-z_][\w:-]*)\s*=\s*\{?\s*$")
_MODULE_BEFORE = re.compile(r"(?:\bfrom|\bimport|\brequire\s*\(|\bimport\s*\()\s*$")

# Attributes whose values are identifiers, URLs or styling rather than prose.
SKIP_ATTRIBUTES: FrozenSet[str] = frozenset({
    "href", "src", "id", "className", "class", "key", "name", "type", "value",
    "for", "role", "target", "rel", "aria-labelledby", "aria-describedby",
    "data-testid", "style", "width", "height", "size", "maxLength", "min",
    "max", "pattern", "tabIndex",
})

DEFAULT_SKIP_CHARACTERS = ".#"
_DIRECTIVES = frozenset({"use client", "use server", "use strict"})


@dataclass(frozen=True)
class StringLiteral:
    index: int
    content: str  # including the quotes

    @property
    def quote(self) -> str:
        return self.content[0]

    @property
    def text(self) -> str:
        return self.content[1:-1]

    @property
    def end(self) -> int:
        return self.index + len(self.content)


@dataclass(frozen=True)
class LiteralFilter:
    """
    Decides whether a literal is user-facing text.

    A literal is skipped when it contains any of ``skip_characters`` (keys,
    selectors and paths usually do), when it is blank, or when it is the value
    of one of ``skip_attributes``.
    """
    skip_characters: str = DEFAULT_SKIP_CHARACTERS
    skip_attributes: FrozenSet[str] = SKIP_ATTRIBUTES

    def __call__(self, code: str, literal: StringLiteral) -> bool:
        if not literal.text.strip():
            return False
        if literal.text in _DIRECTIVES:
            return False
        if any(char in literal.text for char in self.skip_characters):
            return False
        if _MODULE_BEFORE.search(code, max(0, literal.index - 16), literal.index):
            return False
        attribute = _ATTRIBUTE_BEFORE.search(code, max(0, literal.index - 64), literal.index)
        if attribute and attribute.group(1) in self.skip_attributes:
            return False
        return True


LiteralPredicate = Callable[[str, StringLiteral], bool]


def find_string_literals(code: str, predicate: Optional[LiteralPredicate] = None) -> List[StringLiteral]:
    """Return the translatable literals of ``code`` in source order."""
    predicate = predicate or LiteralFilter()
    literals = []
    for match in _LITERAL_PATTERN.finditer(code):
        literal = StringLiteral(match.start(), match.group(0))
        if predicate(code, literal):
            literals.append(literal)
    return literals


def quote_literal(text: str, quote: str) -> str:
    """Wrap ``text`` in ``quote``, escaping what would terminate the literal."""
    if len(text) >= 2 and text[0] == quote and text[-1] == quote:
        text = text[1:-1]
    text = re.sub(r"(?<!\\)" + re.escape(quote), lambda _: "\\" + quote, text)
    if quote != "`":
        text = text.replace("\n", "\\n")
    return f"{quote}{text}{quote}"


def replace_string_literals(code: str, literals: List[StringLiteral], replacements: Dict[int, str]) -> str:
    """
    Replace literals by ordinal.

    Args:
        code: The source text the literals were found in.
        literals: Literals of ``code`` in source order.
        replacements: New unquoted text per literal ordinal; ordinals that are
            missing keep their original literal.

    Returns:
        str: The new source text.
    """
    pieces = []
    cursor = 0
    for ordinal, literal in enumerate(literals):
        if ordinal not in replacements:
            continue
        pieces.append(code[cursor:literal.index])
        pieces.append(quote_literal(replacements[ordinal], literal.quote))
        cursor = literal.end
    pieces.append(code[cursor:])
    return "".join(pieces)


class CodeStringsParser:
    """
    Source files where translatable text lives in quoted literals.

    Keys are literal ordinals (``"0"``, ``"1"``, ...), so serializing needs the
    original source to know where each literal sits.
    """
    family = "code"

    def __init__(self, predicate: Optional[LiteralPredicate] = None):
        self.predicate = predicate or LiteralFilter()

    def literals(self, code: str) -> List[StringLiteral]:
        return find_string_literals(code, self.predicate)

    def parse(self, text: str) -> Dict[str, str]:
        return {str(ordinal): literal.text for ordinal, literal in enumerate(self.literals(text))}

    def serialize(self, locale: str, data: Dict[str, str], original: Optional[str] = None) -> str:
        if original is None:
            raise InvalidStructureError("Source-code formats can only be serialized against the original source")
        literals = self.literals(original)
        replacements = {}
        for key, value in data.items():
            if not key.isdigit() or int(key) >= len(literals):
                raise InvalidStructureError(f"Unknown string literal ordinal '{key}'")
            if value != literals[int(key)].text:
                replacements[int(key)] = value
        return replace_string_literals(original, literals, replacements)


# --- JSX string extraction ---------------------------------------------------

_JSX_TEXT = re.compile(r"<([A-Za-z][\w.]*)(?:\s[^<>]*)?>([^<>{}]+)(?=<|\{)")
_JSX_TAG = re.compile(r"<([A-Za-z][\w.]*)\s([^<>]*?)/?>", re.DOTALL)
_JSX_ATTRIBUTE = re.compile(r"([A-Za-z_][\w-]*)\s*=\s*(\"[^\"]*\"|'[^']*')")
_COMPONENT_NAME = re.compile(r"(?:function\s+([A-Z]\w*)|(?:const|let)\s+([A-Z]\w*)\s*=)")


def _clean_text(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


@dataclass
class ExtractionAccumulator:
    """
    Strings collected from components, keyed ``component -> key -> text``.

    Keys are the element (or attribute) name, numbered from the second
    occurrence within a component: ``h1``, ``p``, ``p_2``, ``placeholder``.
    """
    translations: Dict[str, Dict[str, str]] = field(default_factory=dict)
    counts: Dict[str, Dict[str, int]] = field(default_factory=dict)

    def next_key(self, component: str, kind: str) -> str:
        component_counts = self.counts.setdefault(component, {})
        component_counts[kind] = component_counts.get(kind, 0) + 1
        count = component_counts[kind]
        return kind if count == 1 else f"{kind}_{count}"

    def add(self, component: str, kind: str, text: str) -> str:
        key = self.next_key(component, kind)
        self.translations.setdefault(component, {})[key] = text
        return f"{component}.{key}"

    def merge_into(self, existing: Dict[str, Dict[str, str]]) -> Dict[str, Dict[str, str]]:
        """Overlay the collected strings on a persisted store; collected components win."""
        merged = dict(existing)
        merged.update(self.translations)
        return merged


def component_name_for(code: str, fallback: str) -> str:
    match = _COMPONENT_NAME.search(code)
    if match:
        name = match.group(1) or match.group(2)
    else:
        name = fallback
    return name[:1].lower() + name[1:]


def extract_component_strings(code: str, component_name: str, accumulator: ExtractionAccumulator,
                              skip_attributes: Iterable[str] = SKIP_ATTRIBUTES) -> List[str]:
    """
    Collect JSX text and prose attribute values of one component.

    Returns:
        List[str]: The composite keys added, in source order.
    """
    skip = set(skip_attributes)
    found = []
    for match in _JSX_TEXT.finditer(code):
        text = _clean_text(match.group(2))
        if text and re.search(r"[^\W\d_]", text):
            found.append((match.start(2), match.group(1).lower(), text))
    for tag in _JSX_TAG.finditer(code):
        for attribute in _JSX_ATTRIBUTE.finditer(tag.group(2)):
            name = attribute.group(1)
            value = _clean_text(attribute.group(2)[1:-1])
            if name in skip or name.startswith("on") or not value:
                continue
            found.append((tag.start(2) + attribute.start(), name.lower(), value))

    keys = []
    for _, kind, text in sorted(found, key=lambda item: item[0]):
        keys.append(accumulator.add(component_name, kind, text))
    return keys
