"""Lookup of parser/serializer pairs by format identifier."""
from typing import Callable, Dict, Optional, Protocol

from langsync.catalog_formats import PoParser
from langsync.code_strings import CodeStringsParser, LiteralPredicate
from langsync.errors import UnsupportedFormatError
from langsync.models import DOCUMENT_KEY
from langsync.properties_parser import PropertiesParser
from langsync.structured_formats import (
    AndroidXmlParser,
    ArbParser,
    CsvParser,
    JsonParser,
    StringsDictParser,
    TypeScriptParser,
    YamlParser,
)

FAMILIES = ("structural", "catalog", "document", "code")


class Parser(Protocol):
    family: str

    def parse(self, text: str) -> Dict[str, str]:
        ...

    def serialize(self, locale: str, data: Dict[str, str], original: Optional[str] = None) -> str:
        ...


class DocumentParser:
    """Markdown-like files translated as a single unit under ``content``."""
    family = "document"

    def parse(self, text: str) -> Dict[str, str]:
        return {DOCUMENT_KEY: text} if text else {}

    def serialize(self, locale: str, data: Dict[str, str], original: Optional[str] = None) -> str:
        return data.get(DOCUMENT_KEY, "")


_PARSERS: Dict[str, Callable[[], Parser]] = {
    "json": JsonParser,
    "yaml": YamlParser,
    "ts": TypeScriptParser,
    "arb": ArbParser,
    "csv": CsvParser,
    "android": AndroidXmlParser,
    "xcode-stringsdict": StringsDictParser,
    "po": PoParser,
    "properties": PropertiesParser,
    "md": DocumentParser,
    "mdx": DocumentParser,
    "js": CodeStringsParser,
    "jsx": CodeStringsParser,
    "tsx": CodeStringsParser,
}


def supported_formats():
    return sorted(_PARSERS)


def create_parser(format_id: str, literal_predicate: Optional[LiteralPredicate] = None) -> Parser:
    """
    Build the parser registered for ``format_id``.

    Args:
        format_id: A format identifier such as ``json`` or ``po``.
        literal_predicate: Literal filter for source-code formats.

    Raises:
        UnsupportedFormatError: If no parser is registered for the identifier.
    """
    factory = _PARSERS.get(format_id)
    if factory is None:
        raise UnsupportedFormatError(
            f"Unsupported format '{format_id}'. Supported formats: {', '.join(supported_formats())}"
        )
    if factory is CodeStringsParser:
        return CodeStringsParser(literal_predicate)
    return factory()
