import pytest

from langsync.catalog_formats import PoParser
from langsync.code_strings import CodeStringsParser, StringLiteral
from langsync.errors import UnsupportedFormatError
from langsync.parser_registry import FAMILIES, DocumentParser, create_parser, supported_formats
from langsync.structured_formats import JsonParser


def test_supported_formats():
    assert supported_formats() == sorted([
        "android", "arb", "csv", "js", "json", "jsx", "md", "mdx", "po", "properties", "ts", "tsx",
        "xcode-stringsdict", "yaml",
    ])


@pytest.mark.parametrize("format_id", supported_formats())
def test_every_parser_declares_a_family(format_id):
    assert create_parser(format_id).family in FAMILIES


def test_create_parser_returns_new_instances():
    assert isinstance(create_parser("json"), JsonParser)
    assert isinstance(create_parser("po"), PoParser)
    assert create_parser("json") is not create_parser("json")


def test_unknown_format_lists_supported_ones():
    with pytest.raises(UnsupportedFormatError, match="Unsupported format 'xliff'.*json"):
        create_parser("xliff")


def test_code_parsers_take_the_literal_predicate():
    def only_shouting(code: str, literal: StringLiteral) -> bool:
        return literal.text.isupper()

    parser = create_parser("tsx", only_shouting)
    assert isinstance(parser, CodeStringsParser)
    assert parser.parse('const a = "HEY"; const b = "quiet";') == {"0": "HEY"}


def test_document_parser_uses_a_single_content_key():
    parser = DocumentParser()
    assert parser.parse("# Title\n\nBody\n") == {"content": "# Title\n\nBody\n"}
    assert parser.parse("") == {}
    assert parser.serialize("fr", {"content": "# Titre\n"}) == "# Titre\n"
