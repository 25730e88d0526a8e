"""
Parsers for formats whose content is a nested document.

Each parser turns the document into a flat composite-key map with
:func:`langsync.flatten.flatten` and rebuilds it with
:func:`langsync.flatten.unflatten`, so the shape rules live in one place.
"""
import csv
import io
import json
import logging
import plistlib
import re
from typing import Any, Dict, List, Optional, Tuple
from xml.parsers.expat import ExpatError

import yaml
from lxml import etree
from ruamel.yaml import YAML
from ruamel.yaml.comments import CommentedMap, CommentedSeq
from ruamel.yaml.error import YAMLError as RuamelYAMLError
from ruamel.yaml.scalarstring import ScalarString

from langsync.errors import InvalidStructureError
from langsync.flatten import flatten, unflatten
from langsync.key_codec import encode_segment

logger = logging.getLogger(__name__)

_JSON_INDENT = re.compile(r"^\{[ \t]*\r?\n([ \t]+)\S")


def _load_object_literal(text: str, kind: str) -> Dict[str, Any]:
    """
    Load a JSON object, falling back to a YAML flow-mapping parse.

    YAML is a superset of JSON that also accepts unquoted keys, single-quoted
    strings and trailing commas, which covers most hand-edited locale files.
    """
    if not text.strip():
        return {}
    try:
        data = json.loads(text)
    except json.JSONDecodeError as json_exc:
        logger.debug(f"Strict {kind} parse failed ({json_exc}); attempting repair")
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as yaml_exc:
            raise InvalidStructureError(f"Failed to parse {kind}: {json_exc}") from yaml_exc
    if not isinstance(data, dict):
        raise InvalidStructureError(f"Translation file must contain a {kind} object")
    return data


def _detect_indent(original: Optional[str], default: int = 2) -> int:
    if original:
        match = _JSON_INDENT.match(original.lstrip("\ufeff"))
        if match and "\t" not in match.group(1):
            return len(match.group(1))
    return default


class JsonParser:
    family = "structural"

    def parse(self, text: str) -> Dict[str, str]:
        return flatten(_load_object_literal(text, "JSON"))

    def serialize(self, locale: str, data: Dict[str, str], original: Optional[str] = None) -> str:
        document = unflatten(data)
        return json.dumps(document, indent=_detect_indent(original), ensure_ascii=False) + "\n"


def _round_trip_yaml() -> YAML:
    round_trip = YAML()
    round_trip.preserve_quotes = True
    round_trip.width = 1000
    round_trip.indent(mapping=2, sequence=4, offset=2)
    return round_trip


def _merge_yaml_node(node: Any, value: Any) -> Any:
    """
    Make the round-trip ``node`` hold ``value`` and return what to store.

    Mappings and sequences are updated in place so comments attached to
    surviving keys stay where they were; replaced strings keep the quoting
    style of the string they replace.
    """
    if isinstance(value, dict) and isinstance(node, CommentedMap):
        for key in [key for key in node if key not in value]:
            del node[key]
        for position, (key, item) in enumerate(value.items()):
            if key in node:
                node[key] = _merge_yaml_node(node[key], item)
            else:
                node.insert(position, key, item)
        return node
    if isinstance(value, list) and isinstance(node, CommentedSeq):
        del node[len(value):]
        for index, item in enumerate(value):
            if index < len(node):
                node[index] = _merge_yaml_node(node[index], item)
            else:
                node.append(item)
        return node
    if isinstance(value, str) and isinstance(node, ScalarString):
        return type(node)(value)
    return value


class YamlParser:
    family = "structural"

    def parse(self, text: str) -> Dict[str, str]:
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise InvalidStructureError(f"Failed to parse YAML: {exc}") from exc
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise InvalidStructureError("Translation file must contain a YAML mapping")
        return flatten(data)

    def serialize(self, locale: str, data: Dict[str, str], original: Optional[str] = None) -> str:
        if not data:
            return "{}\n"
        document = unflatten(data)
        if original and original.strip():
            round_trip = _round_trip_yaml()
            try:
                tree = round_trip.load(original)
            except RuamelYAMLError as exc:
                logger.warning(f"Could not keep the layout of the original YAML: {exc}")
                tree = None
            if isinstance(tree, CommentedMap):
                stream = io.StringIO()
                round_trip.dump(_merge_yaml_node(tree, document), stream)
                return stream.getvalue()
        return yaml.safe_dump(document, allow_unicode=True, sort_keys=False,
                              default_flow_style=False, width=1000)


_TS_EXPORT = re.compile(r"\bexport\s+default\s+")
_TS_IDENTIFIER = re.compile(r"[A-Za-z_$][\w$]*")


def _blank_comments(code: str) -> str:
    """Replace ``//`` and ``/* */`` comments outside string literals with spaces, keeping offsets."""
    chars = list(code)
    quote = None
    index = 0
    while index < len(code):
        char = code[index]
        if quote:
            if char == "\\":
                index += 2
                continue
            if char == quote:
                quote = None
        elif char in "'\"`":
            quote = char
        elif code.startswith("//", index):
            end = code.find("\n", index)
            end = len(code) if end == -1 else end
            chars[index:end] = " " * (end - index)
            index = end
            continue
        elif code.startswith("/*", index):
            end = code.find("*/", index + 2)
            end = len(code) if end == -1 else end + 2
            chars[index:end] = [c if c == "\n" else " " for c in code[index:end]]
            index = end
            continue
        index += 1
    return "".join(chars)


def _object_span(code: str, start: int) -> Tuple[int, int]:
    if not code.startswith("{", start):
        raise InvalidStructureError("Locale module must export an object literal")
    depth = 0
    quote = None
    index = start
    while index < len(code):
        char = code[index]
        if quote:
            if char == "\\":
                index += 2
                continue
            if char == quote:
                quote = None
        elif char in "'\"`":
            quote = char
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return start, index + 1
        index += 1
    raise InvalidStructureError("Unbalanced braces in locale module")


def _exported_object_span(code: str) -> Tuple[int, int]:
    """
    Offsets of the object literal a module exports by default.

    Both ``export default { ... }`` and ``const messages = { ... };
    export default messages;`` are understood. ``code`` must already have its
    comments blanked.
    """
    match = _TS_EXPORT.search(code)
    if not match:
        raise InvalidStructureError("Locale module must contain 'export default { ... }' or 'export default <name>'")
    start = match.end()
    if not code.startswith("{", start):
        name = _TS_IDENTIFIER.match(code, start)
        if not name:
            raise InvalidStructureError("Locale module must export an object literal")
        declaration = re.search(rf"\b(?:const|let|var)\s+{re.escape(name.group(0))}\b[^=]*=\s*", code)
        if not declaration:
            raise InvalidStructureError(f"Cannot find the object exported as '{name.group(0)}'")
        start = declaration.end()
    return _object_span(code, start)


class TypeScriptParser:
    """
    Locale modules that default-export an object literal, either directly or
    through a named constant. Imports, type annotations and ``as const`` around
    the object are kept when an original is supplied; comments inside it are not.
    """
    family = "structural"

    def parse(self, text: str) -> Dict[str, str]:
        if not text.strip():
            return {}
        code = _blank_comments(text)
        start, end = _exported_object_span(code)
        return flatten(_load_object_literal(code[start:end], "TypeScript"))

    def serialize(self, locale: str, data: Dict[str, str], original: Optional[str] = None) -> str:
        body = json.dumps(unflatten(data), indent=2, ensure_ascii=False)
        if original and original.strip():
            try:
                start, end = _exported_object_span(_blank_comments(original))
            except InvalidStructureError as exc:
                logger.warning(f"Writing a fresh locale module: {exc}")
            else:
                return original[:start] + body + original[end:]
        return f"export default {body} as const;\n"


class ArbParser:
    """Flutter Application Resource Bundle files."""
    family = "structural"

    def parse(self, text: str) -> Dict[str, str]:
        data = _load_object_literal(text, "ARB")
        messages = {key: value for key, value in data.items() if not key.startswith("@")}
        return flatten(messages)

    def serialize(self, locale: str, data: Dict[str, str], original: Optional[str] = None) -> str:
        metadata: Dict[str, Any] = {}
        if original:
            try:
                metadata = {
                    key: value
                    for key, value in _load_object_literal(original, "ARB").items()
                    if key.startswith("@")
                }
            except InvalidStructureError as exc:
                logger.warning(f"Ignoring unreadable ARB metadata: {exc}")

        document: Dict[str, Any] = {"@@locale": locale}
        for key, value in metadata.items():
            if key.startswith("@@") and key != "@@locale":
                document[key] = value
        for key, value in unflatten(data).items():
            document[key] = value
            if f"@{key}" in metadata:
                document[f"@{key}"] = metadata[f"@{key}"]
        return json.dumps(document, indent=_detect_indent(original), ensure_ascii=False) + "\n"


class CsvParser:
    """Two-column ``key,value`` tables with an optional header row."""
    family = "structural"

    _HEADER = ["key", "value"]

    def _rows(self, text: str) -> List[List[str]]:
        return [row for row in csv.reader(io.StringIO(text)) if row]

    def _has_header(self, rows: List[List[str]]) -> bool:
        return bool(rows) and [cell.strip().lower() for cell in rows[0][:2]] == self._HEADER

    def parse(self, text: str) -> Dict[str, str]:
        rows = self._rows(text)
        if self._has_header(rows):
            rows = rows[1:]
        result: Dict[str, str] = {}
        for line_number, row in enumerate(rows, start=1):
            if len(row) < 2:
                raise InvalidStructureError(f"CSV row {line_number} must have a key and a value")
            result[row[0]] = row[1]
        return result

    def serialize(self, locale: str, data: Dict[str, str], original: Optional[str] = None) -> str:
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        if original is None or self._has_header(self._rows(original)):
            writer.writerow(self._HEADER)
        for key, value in data.items():
            writer.writerow([key, value])
        return buffer.getvalue()


# --- Android strings.xml -----------------------------------------------------

_XML_DECLARATION = '<?xml version="1.0" encoding="utf-8"?>'
_DEFAULT_INDENT = "    "


def _secure_parser() -> etree.XMLParser:
    return etree.XMLParser(
        remove_blank_text=False,
        resolve_entities=False,
        no_network=True,
        dtd_validation=False,
        load_dtd=False,
    )


def _inner_xml(element) -> str:
    """Serialize the inner XML of an element, keeping nested markup."""
    segments: List[str] = []
    if element.text:
        segments.append(element.text)
    for child in element:
        segments.append(etree.tostring(child, encoding="unicode", with_tail=False))
        if child.tail:
            segments.append(child.tail)
    return "".join(segments)


def _set_inner_xml(element, content: str) -> None:
    for child in list(element):
        element.remove(child)
    if not content:
        element.text = content
        return
    try:
        wrapper = etree.fromstring(f"<__wrapper__>{content}</__wrapper__>", parser=_secure_parser())
    except etree.XMLSyntaxError:
        element.text = content
        return
    element.text = wrapper.text
    for child in wrapper:
        element.append(child)


def _append_child(parent, child, indent: str) -> None:
    """Append ``child`` keeping the parent's one-element-per-line layout."""
    if len(parent):
        last = parent[-1]
        child.tail = last.tail
        last.tail = "\n" + indent
    else:
        parent.text = "\n" + indent
        child.tail = "\n"
    parent.append(child)


def _remove_child(parent, child) -> None:
    previous = child.getprevious()
    if child.getnext() is None and previous is not None:
        previous.tail = child.tail
    parent.remove(child)


def _is_resource(element) -> bool:
    return isinstance(element.tag, str) and element.tag in ("string", "string-array", "plurals")


def _is_translatable(element) -> bool:
    return element.get("translatable", "true").lower() != "false"


class AndroidXmlParser:
    """
    Android ``strings.xml`` resources.

    ``<string>`` maps to ``name``, ``<string-array>`` items to ``name[i]`` and
    ``<plurals>`` quantities to ``name.quantity``. Resources marked
    ``translatable="false"`` are never extracted and are left untouched.
    """
    family = "structural"

    def _load(self, text: str):
        try:
            return etree.fromstring(text.encode("utf-8"), parser=_secure_parser())
        except etree.XMLSyntaxError as exc:
            raise InvalidStructureError(f"Failed to parse Android XML: {exc}") from exc

    def parse(self, text: str) -> Dict[str, str]:
        if not text.strip():
            return {}
        root = self._load(text)
        if root.tag != "resources":
            raise InvalidStructureError("Android resource file must have a <resources> root")
        result: Dict[str, str] = {}
        for element in root:
            if not _is_resource(element) or not _is_translatable(element):
                continue
            name = element.get("name")
            if not name:
                continue
            key = encode_segment(name)
            if element.tag == "string":
                result[key] = _inner_xml(element)
            elif element.tag == "string-array":
                for index, item in enumerate(element.findall("item")):
                    result[f"{key}[{index}]"] = _inner_xml(item)
            else:
                for item in element.findall("item"):
                    quantity = item.get("quantity")
                    if quantity:
                        result[f"{key}.{encode_segment(quantity)}"] = _inner_xml(item)
        return result

    def serialize(self, locale: str, data: Dict[str, str], original: Optional[str] = None) -> str:
        resources = unflatten(data)
        if original and original.strip():
            root = self._load(original)
            first_line = original.lstrip("\ufeff").split("\n", 1)[0].rstrip("\r")
            declaration = first_line if first_line.startswith("<?xml") else _XML_DECLARATION
            trailing_newline = original.endswith("\n")
        else:
            root = etree.Element("resources")
            declaration = _XML_DECLARATION
            trailing_newline = True

        indent = _DEFAULT_INDENT
        match = re.match(r"\n([ \t]+)", root.text or "")
        if match:
            indent = match.group(1)

        existing = {
            element.get("name"): element
            for element in root
            if _is_resource(element) and _is_translatable(element)
        }
        for name, element in existing.items():
            if name not in resources:
                _remove_child(root, element)

        for name, value in resources.items():
            element = existing.get(name)
            if isinstance(value, str):
                tag = "string"
            elif isinstance(value, list):
                tag = "string-array"
            else:
                tag = "plurals"
            if element is not None and element.tag != tag:
                _remove_child(root, element)
                element = None
            if element is None:
                element = etree.Element(tag, name=name)
                _append_child(root, element, indent)

            if tag == "string":
                _set_inner_xml(element, value)
            elif tag == "string-array":
                self._update_array(element, value, indent)
            else:
                self._update_plurals(element, value, indent)

        body = etree.tostring(root.getroottree(), encoding="unicode")
        text = f"{declaration}\n{body}"
        return text + "\n" if trailing_newline else text

    def _update_array(self, element, values: List[Any], indent: str) -> None:
        items = element.findall("item")
        for item in items[len(values):]:
            _remove_child(element, item)
        for index, value in enumerate(values):
            if index < len(items):
                item = items[index]
            else:
                item = etree.Element("item")
                _append_child(element, item, indent * 2)
            _set_inner_xml(item, value if isinstance(value, str) else "")
        if len(element):
            element[-1].tail = "\n" + indent

    def _update_plurals(self, element, quantities: Dict[str, Any], indent: str) -> None:
        items = {item.get("quantity"): item for item in element.findall("item")}
        for quantity, item in items.items():
            if quantity not in quantities:
                _remove_child(element, item)
        for quantity, value in quantities.items():
            item = items.get(quantity)
            if item is None:
                item = etree.Element("item", quantity=quantity)
                _append_child(element, item, indent * 2)
            _set_inner_xml(item, value if isinstance(value, str) else "")
        if len(element):
            element[-1].tail = "\n" + indent


# --- Apple stringsdict -------------------------------------------------------

FORMAT_SPEC_KEYS = ("NSStringFormatSpecTypeKey", "NSStringFormatValueTypeKey")
_PLURAL_CATEGORIES = {"zero", "one", "two", "few", "many", "other"}


def _strip_format_specs(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            key: _strip_format_specs(child)
            for key, child in value.items()
            if key not in FORMAT_SPEC_KEYS
        }
    return value


def _restore_format_specs(value: Any, original: Any) -> Any:
    """Put the format-spec keys of ``original`` back in front of each variable dict."""
    if not isinstance(value, dict):
        return value
    original = original if isinstance(original, dict) else {}
    restored: Dict[str, Any] = {}
    specs = [key for key in FORMAT_SPEC_KEYS if key in original]
    if not specs and _PLURAL_CATEGORIES.intersection(value):
        restored["NSStringFormatSpecTypeKey"] = "NSStringPluralRuleType"
        restored["NSStringFormatValueTypeKey"] = "d"
    for key in specs:
        restored[key] = original[key]
    for key, child in value.items():
        restored[key] = _restore_format_specs(child, original.get(key))
    return restored


class StringsDictParser:
    """Apple ``.stringsdict`` plural rule dictionaries."""
    family = "structural"

    def _load(self, text: str) -> Dict[str, Any]:
        if not text.strip():
            return {}
        try:
            data = plistlib.loads(text.encode("utf-8"))
        except (plistlib.InvalidFileException, ValueError, ExpatError) as exc:
            raise InvalidStructureError(f"Invalid .stringsdict format: {exc}") from exc
        if not isinstance(data, dict):
            raise InvalidStructureError("Invalid .stringsdict format: top level must be a dictionary")
        return data

    def parse(self, text: str) -> Dict[str, str]:
        return flatten(_strip_format_specs(self._load(text)))

    def serialize(self, locale: str, data: Dict[str, str], original: Optional[str] = None) -> str:
        original_document = self._load(original) if original else {}
        document = _restore_format_specs(unflatten(data), original_document)
        return plistlib.dumps(document, sort_keys=False).decode("utf-8")
