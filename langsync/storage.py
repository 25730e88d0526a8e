"""Where the orchestrator records finished translations."""
import asyncio
import json
import logging
import os
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List

logger = logging.getLogger(__name__)


class TranslationStore(ABC):

    @abstractmethod
    async def create_translations(self, records: List[Dict[str, Any]]) -> None:
        """Persist keyed translations; each record carries its provenance."""

    @abstractmethod
    async def create_document(self, record: Dict[str, Any]) -> None:
        """Persist one translated document."""


class InMemoryTranslationStore(TranslationStore):

    def __init__(self):
        self.translations: List[Dict[str, Any]] = []
        self.documents: List[Dict[str, Any]] = []

    async def create_translations(self, records):
        self.translations.extend(records)

    async def create_document(self, record):
        self.documents.append(record)


class JsonLinesTranslationStore(TranslationStore):
    """Appends one JSON object per translation to a history file."""

    def __init__(self, history_path: str):
        self.history_path = history_path
        self._lock = asyncio.Lock()

    def _append(self, lines: List[str]) -> None:
        history_dir = os.path.dirname(self.history_path)
        if history_dir:
            os.makedirs(history_dir, exist_ok=True)
        with open(self.history_path, "a", encoding="utf-8") as history_file:
            history_file.writelines(lines)

    async def _write(self, kind: str, records: List[Dict[str, Any]]) -> None:
        if not records:
            return
        created_at = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        lines = [
            json.dumps({"kind": kind, "created_at": created_at, **record}, ensure_ascii=False) + "\n"
            for record in records
        ]
        async with self._lock:
            await asyncio.to_thread(self._append, lines)
        logger.debug(f"Recorded {len(records)} {kind} entries in {self.history_path}")

    async def create_translations(self, records):
        await self._write("translation", records)

    async def create_document(self, record):
        await self._write("document", [record])
