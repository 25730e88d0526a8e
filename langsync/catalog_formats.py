"""gettext PO catalogs, read and written with polib."""
import logging
import re
from typing import Dict, List, Optional

import polib

from langsync.errors import InvalidStructureError

logger = logging.getLogger(__name__)

CONTEXT_SEPARATOR = "\x04"

_HEADER_ENTRY = re.compile(r'^msgid ""[ \t]*\r?\nmsgstr ', re.MULTILINE)
_LANGUAGE_LINE = re.compile(r'^"Language: *([^\\"]*)\\n"$', re.MULTILINE)


def entry_key(entry: polib.POEntry) -> str:
    """Catalog key of an entry; ids that carry a context are ``ctxt\\x04msgid``."""
    if entry.msgctxt is not None:
        return f"{entry.msgctxt}{CONTEXT_SEPARATOR}{entry.msgid}"
    return entry.msgid


def _entry_value(entry: polib.POEntry) -> str:
    if entry.msgid_plural:
        # Only the first plural form is exposed for translation.
        return entry.msgstr_plural.get(0, "")
    return entry.msgstr


def _set_entry_value(entry: polib.POEntry, value: str) -> None:
    if entry.msgid_plural:
        forms = dict(entry.msgstr_plural)
        forms[0] = value
        entry.msgstr_plural = forms
    else:
        entry.msgstr = value


def _new_entry(key: str, value: str) -> polib.POEntry:
    msgctxt = None
    msgid = key
    if CONTEXT_SEPARATOR in key:
        msgctxt, msgid = key.split(CONTEXT_SEPARATOR, 1)
    return polib.POEntry(msgctxt=msgctxt, msgid=msgid, msgstr=value)


def extract_header_block(text: str) -> Optional[str]:
    """
    Return the leading comment and metadata block of a PO document exactly as
    written, or None when the document has no metadata entry.
    """
    match = _HEADER_ENTRY.search(text)
    if not match:
        return None
    preamble = text[:match.start()]
    if any(line.strip() and not line.lstrip().startswith("#") for line in preamble.splitlines()):
        # The first msgid "" belongs to a later entry, not to the header.
        return None
    end = re.search(r"\r?\n[ \t]*\r?\n", text[match.end():])
    header = text if end is None else text[:match.end() + end.start()]
    return header.rstrip("\r\n")


def _load(text: str) -> polib.POFile:
    try:
        return polib.pofile(text)
    except (OSError, ValueError) as exc:
        raise InvalidStructureError(f"Failed to parse PO: {exc}") from exc


class PoParser:
    """
    Entry-list catalog: existing entries are updated in place, new ids are
    appended, ids absent from the data are dropped. The header block of the
    original document is re-emitted byte for byte, except for the ``Language``
    value which names the locale being written.
    """
    family = "catalog"

    def parse(self, text: str) -> Dict[str, str]:
        if not text.strip():
            return {}
        result: Dict[str, str] = {}
        for entry in _load(text):
            if entry.obsolete or not entry.msgid:
                continue
            result[entry_key(entry)] = _entry_value(entry)
        return result

    def serialize(self, locale: str, data: Dict[str, str], original: Optional[str] = None) -> str:
        catalog = _load(original) if original and original.strip() else polib.POFile()
        existing = {entry_key(entry): entry for entry in catalog if not entry.obsolete and entry.msgid}

        entries: List[polib.POEntry] = []
        for key, value in data.items():
            entry = existing.get(key)
            if entry is None:
                entry = _new_entry(key, value)
            else:
                _set_entry_value(entry, value)
            entries.append(entry)
        entries.extend(entry for entry in catalog if entry.obsolete)

        header = extract_header_block(original) if original else None
        if header is None:
            fresh = polib.POFile(wrapwidth=catalog.wrapwidth)
            fresh.header = catalog.header
            fresh.metadata = dict(catalog.metadata)
            fresh.metadata["Language"] = locale
            fresh.extend(entries)
            return str(fresh)

        header = self._with_language(header, locale)
        if not entries:
            return header + "\n"
        body = "\n".join(str(entry) for entry in entries)
        return f"{header}\n\n{body}"

    @staticmethod
    def _with_language(header: str, locale: str) -> str:
        match = _LANGUAGE_LINE.search(header)
        if match is None or match.group(1) == locale:
            return header
        logger.debug(f"Setting PO Language header from '{match.group(1)}' to '{locale}'")
        return header[:match.start(1)] + locale + header[match.end(1):]
