"""Data structures shared by the planner, the orchestrator and the file pipeline."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from langsync.errors import TranslationChunkFailure, TranslationUnresolvedError

DOCUMENT_KEY = "content"


@dataclass(frozen=True)
class TranslationUnit:
    """One translatable string; identity is (source_file, key)."""
    key: str
    source_text: str
    source_file: str = ""

    @property
    def identity(self):
        return (self.source_file, self.key)


@dataclass(frozen=True)
class TranslationResult:
    key: str
    translated_text: Optional[str]


class ChunkState(Enum):
    PENDING = "pending"
    REQUESTED = "requested"
    PARTIALLY_COMPLETE = "partially_complete"
    RETRY_REQUESTED = "retry_requested"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass
class ChunkOutcome:
    """What one (locale, chunk) pair produced once its state machine settled."""
    locale: str
    source_file: str
    chunk_index: int
    state: ChunkState
    translations: Dict[str, str] = field(default_factory=dict)
    unresolved: List[TranslationUnresolvedError] = field(default_factory=list)
    failure: Optional[TranslationChunkFailure] = None
    attempts: int = 0

    @property
    def progressed(self) -> bool:
        return self.state is ChunkState.COMPLETE and bool(self.translations)


@dataclass
class RunRequest:
    """
    A request to translate extracted units into a set of locales.

    The provenance fields are stored alongside every persisted translation and
    are never interpreted by the engine.
    """
    project_id: str
    source_format: str
    source_language: str
    target_locales: List[str]
    content: List[TranslationUnit]
    organization_id: Optional[str] = None
    branch: Optional[str] = None
    commit: Optional[str] = None
    commit_message: Optional[str] = None
    commit_link: Optional[str] = None
    source_provider: Optional[str] = None
    user_id: Optional[str] = None

    def provenance(self) -> Dict[str, Optional[str]]:
        return {
            "project_id": self.project_id,
            "organization_id": self.organization_id,
            "source_format": self.source_format,
            "source_language": self.source_language,
            "branch": self.branch,
            "commit": self.commit,
            "commit_message": self.commit_message,
            "commit_link": self.commit_link,
            "source_provider": self.source_provider,
            "user_id": self.user_id,
        }


@dataclass
class RunResult:
    translations: Dict[str, List[TranslationResult]] = field(default_factory=dict)
    outcomes: List[ChunkOutcome] = field(default_factory=list)

    @property
    def failures(self) -> List[TranslationChunkFailure]:
        return [outcome.failure for outcome in self.outcomes if outcome.failure is not None]

    @property
    def unresolved(self) -> List[TranslationUnresolvedError]:
        return [error for outcome in self.outcomes for error in outcome.unresolved]

    @property
    def succeeded(self) -> bool:
        """A run succeeds when at least one chunk made progress."""
        return any(outcome.progressed for outcome in self.outcomes)


@dataclass
class FileResult:
    """Outcome of localizing one source file into one locale."""
    source_path: str
    target_path: str
    locale: str
    translated_keys: List[str] = field(default_factory=list)
    removed_keys: List[str] = field(default_factory=list)
    unresolved: List[TranslationUnresolvedError] = field(default_factory=list)
    failures: List[TranslationChunkFailure] = field(default_factory=list)
    error: Optional[str] = None
    written: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None and not self.failures
