"""
Persistent record of each source file as it was last translated into each locale.

The ledger is a JSON document::

    {"updated_at": "2024-01-01T00:00:00Z",
     "files": {"locales/en.json": {"fr": {"sha256": "...", "content": "..."}}}}

Change detection for a (source, locale) pair diffs the current source against
that pair's ``content``, so a run limited to some locales leaves the others
with the snapshot they were last translated from. ``sha256`` is kept so a
reader can tell at a glance whether a source moved on.
"""
import hashlib
import json
import logging
import os
from datetime import datetime, timezone
from typing import Dict, Optional

logger = logging.getLogger(__name__)


def compute_content_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def load_snapshot_ledger(ledger_path: str) -> Dict[str, Dict[str, Dict[str, str]]]:
    """Load the per-file snapshots; a missing or unreadable ledger is empty."""
    if not os.path.exists(ledger_path):
        return {}
    try:
        with open(ledger_path, "r", encoding="utf-8") as ledger_file:
            payload = json.load(ledger_file)
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning(f"Could not read snapshot ledger '{ledger_path}': {exc}. Treating every source as new.")
        return {}
    files = payload.get("files", {}) if isinstance(payload, dict) else {}
    return files if isinstance(files, dict) else {}


def save_snapshot_ledger(ledger_path: str, files: Dict[str, Dict[str, Dict[str, str]]]) -> None:
    ledger_dir = os.path.dirname(ledger_path)
    if ledger_dir:
        os.makedirs(ledger_dir, exist_ok=True)
    payload = {
        "updated_at": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
        "files": files,
    }
    temp_path = f"{ledger_path}.tmp"
    with open(temp_path, "w", encoding="utf-8") as ledger_file:
        json.dump(payload, ledger_file, ensure_ascii=False, indent=2, sort_keys=True)
        ledger_file.write("\n")
    os.replace(temp_path, ledger_path)


class SnapshotLedger:
    """In-memory view of the ledger; changes are written once with :meth:`save`."""

    def __init__(self, ledger_path: str):
        self.ledger_path = ledger_path
        self.files = load_snapshot_ledger(ledger_path)
        self._dirty = False

    def previous_content(self, source_path: str, locale: str) -> Optional[str]:
        locales = self.files.get(source_path)
        entry = locales.get(locale) if isinstance(locales, dict) else None
        if not isinstance(entry, dict):
            return None
        return entry.get("content")

    def record(self, source_path: str, locale: str, content: str) -> None:
        locales = self.files.get(source_path)
        if not isinstance(locales, dict):
            locales = self.files[source_path] = {}
        locales[locale] = {"sha256": compute_content_hash(content), "content": content}
        self._dirty = True

    def save(self) -> bool:
        if not self._dirty:
            return False
        save_snapshot_ledger(self.ledger_path, self.files)
        self._dirty = False
        logger.info(f"Snapshot ledger updated: {self.ledger_path}")
        return True
