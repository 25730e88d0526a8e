import re
from typing import Dict, List, Optional, Tuple

_KEY_ESCAPE = re.compile(r'([:=\s])')
_KEY_UNESCAPE = re.compile(r'\\([:=\s\\])')
_TRAILING_BACKSLASHES = re.compile(r'(\\+)$')
_VALUE_ESCAPE = re.compile(r'\\(u[0-9a-fA-F]{4}|.)', re.DOTALL)
_CONTROL_ESCAPES = {'n': '\n', 't': '\t', 'r': '\r', 'f': '\f'}


def _continues(text: str) -> bool:
    """True when ``text`` ends in an odd run of backslashes, i.e. a line continuation."""
    match = _TRAILING_BACKSLASHES.search(text)
    return bool(match) and len(match.group(1)) % 2 == 1


def _unescape_value(raw: str) -> str:
    """Resolve ``\\n``, ``\\t``, ``\\uXXXX`` and escaped characters the way java.util.Properties does."""
    def replace(match):
        escape = match.group(1)
        if len(escape) == 5:
            return chr(int(escape[1:], 16))
        return _CONTROL_ESCAPES.get(escape, escape)
    return _VALUE_ESCAPE.sub(replace, raw)


def _escape_value(value: str) -> str:
    escaped = value.replace('\\', '\\\\').replace('\n', '\\n').replace('\t', '\\t').replace('\r', '\\r')
    # A leading space would be eaten as separator padding.
    if escaped.startswith(' '):
        escaped = '\\' + escaped
    return escaped


def _separator_index(line: str) -> int:
    escaped = False
    for index, char in enumerate(line):
        if escaped:
            escaped = False
        elif char == '\\':
            escaped = True
        elif char in ':=':
            return index
    return -1


def _split_entry(line: str) -> Tuple[str, str, str]:
    """Split a logical line into raw key, separator with its padding, and raw value."""
    index = _separator_index(line)
    if index == -1:
        return line.strip(), '=', ''
    key_end = len(line[:index].rstrip())
    value_start = len(line) - len(line[index + 1:].lstrip())
    return line[:key_end], line[key_end:value_start], line[value_start:]


def parse_properties_text(text: str) -> Tuple[List[Dict], Dict[str, str]]:
    """
    Parse the content of a .properties file.

    Every physical line ends up in exactly one record: comments and blanks as
    ``comment_or_blank``, key/value pairs (continuations included) as ``entry``
    records that remember their raw text for lossless reassembly.

    Returns:
        The line records and the key -> value mapping in file order.
    """
    lines = text.splitlines(keepends=True)
    records: List[Dict] = []
    translations: Dict[str, str] = {}

    position = 0
    while position < len(lines):
        start = position
        line = lines[position].rstrip('\r\n')
        body = line.lstrip()
        position += 1

        if not body or body[0] in '#!':
            records.append({'type': 'comment_or_blank', 'content': lines[start]})
            continue

        key_raw, separator, value = _split_entry(body)
        was_multiline = False
        while _continues(value) and position < len(lines):
            was_multiline = True
            value = value[:-1] + lines[position].rstrip('\r\n').lstrip()
            position += 1
        if _continues(value):
            value = value[:-1]

        key = _KEY_UNESCAPE.sub(r'\1', key_raw)
        value = _unescape_value(value)
        translations[key] = value
        records.append({
            'type': 'entry',
            'key': key,
            'key_raw': key_raw,
            'value': value,
            'separator_group': separator,
            'indent': line[:len(line) - len(body)],
            'was_multiline': was_multiline,
            'raw': ''.join(lines[start:position]),
        })
    return records, translations


def reassemble_file(parsed_lines: List[Dict]) -> str:
    """
    Turn line records back into file content.

    Entries that still carry their ``raw`` text are written untouched; edited or
    new entries are written on one line with value escapes written back.
    """
    output = []
    for item in parsed_lines:
        if item['type'] != 'entry':
            text = item['content']
        elif item.get('raw'):
            text = item['raw']
        else:
            key = item.get('key_raw') or _KEY_ESCAPE.sub(r'\\\1', item['key'])
            value = _escape_value(item['value'])
            text = f"{item.get('indent', '')}{key}{item.get('separator_group', '=')}{value}"
        output.append(text if text.endswith('\n') else text + '\n')
    return ''.join(output)


class PropertiesParser:
    """
    Java ``.properties`` catalogs.

    Comments, blank lines, separators and indentation of the original file are
    kept; entries are updated in place, dropped when absent from the data and
    new keys are appended at the end.
    """
    family = "catalog"

    def parse(self, text: str) -> Dict[str, str]:
        return parse_properties_text(text)[1]

    def serialize(self, locale: str, data: Dict[str, str], original: Optional[str] = None) -> str:
        records, _ = parse_properties_text(original or '')

        kept: List[Dict] = []
        seen = set()
        for record in records:
            if record['type'] == 'entry':
                key = record['key']
                if key not in data or key in seen:
                    continue
                seen.add(key)
                if data[key] != record['value']:
                    record = dict(record, value=data[key], raw=None)
            kept.append(record)

        kept.extend(
            {'type': 'entry', 'key': key, 'value': value}
            for key, value in data.items()
            if key not in seen
        )
        return reassemble_file(kept)
