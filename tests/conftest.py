import json
import logging
import os

import pytest

from langsync.orchestrator import TranslationOrchestrator
from langsync.snapshots import SnapshotLedger
from tests.fakes import PrefixBackend


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch):
    """Keep the developer's langsync/OpenAI environment out of the tests."""
    for name in ("LANGSYNC_CONFIG_FILE", "LANGSYNC_MODEL", "LANGSYNC_CHUNK_MAX_SIZE",
                 "OPENAI_BASE_URL", "OLLAMA_BASE_URL"):
        monkeypatch.delenv(name, raising=False)
    yield
    # setup_logger() disables propagation; give caplog its records back.
    logging.getLogger("langsync").propagate = True


@pytest.fixture
def project_dir(tmp_path):
    """A project with an English JSON source and an existing French target."""
    locales = tmp_path / "locales"
    locales.mkdir()
    (locales / "en.json").write_text(json.dumps({"a": {"b": "hello", "c": "world"}}, indent=2) + "\n",
                                     encoding="utf-8")
    (locales / "fr.json").write_text(json.dumps({"a": {"b": "bonjour"}}, indent=2) + "\n", encoding="utf-8")
    return tmp_path


@pytest.fixture
def prefix_backend():
    return PrefixBackend()


@pytest.fixture
def orchestrator(prefix_backend):
    return TranslationOrchestrator(prefix_backend, show_progress=False)


@pytest.fixture
def ledger(tmp_path):
    return SnapshotLedger(os.path.join(str(tmp_path), ".langsync", "snapshots.json"))
