"""
Drive model calls for planned chunks.

Each (locale, chunk) pair walks an explicit state machine held in
:class:`ChunkProgress`::

    PENDING -> REQUESTED -> COMPLETE
                         -> PARTIALLY_COMPLETE -> RETRY_REQUESTED -> COMPLETE
                         -> FAILED                                 -> FAILED

Keys the model did not return (or returned invalid) get exactly one retry that
only carries those keys. A chunk whose request raised or timed out is FAILED and
never affects other chunks or locales.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from tqdm.asyncio import tqdm

from langsync.chunk_planner import ChunkThresholds, plan_for_locale
from langsync.errors import TranslationBackendError, TranslationChunkFailure, TranslationUnresolvedError
from langsync.models import (
    DOCUMENT_KEY,
    ChunkOutcome,
    ChunkState,
    RunRequest,
    RunResult,
    TranslationResult,
    TranslationUnit,
)
from langsync.parser_registry import create_parser
from langsync.storage import TranslationStore
from langsync.translation_backend import TranslationBackend, TranslationContext
from langsync.translation_validator import validate_translation

logger = logging.getLogger(__name__)

Requester = Callable[[List[TranslationUnit]], Awaitable[Dict[str, Optional[str]]]]

_TRANSITIONS = {
    ChunkState.PENDING: {ChunkState.REQUESTED},
    ChunkState.REQUESTED: {ChunkState.COMPLETE, ChunkState.PARTIALLY_COMPLETE, ChunkState.FAILED},
    ChunkState.PARTIALLY_COMPLETE: {ChunkState.RETRY_REQUESTED},
    ChunkState.RETRY_REQUESTED: {ChunkState.COMPLETE, ChunkState.FAILED},
    ChunkState.COMPLETE: set(),
    ChunkState.FAILED: set(),
}


@dataclass
class ChunkProgress:
    """State of one chunk for one locale."""
    locale: str
    source_file: str
    chunk_index: int
    units: List[TranslationUnit]
    state: ChunkState = ChunkState.PENDING
    attempts: int = 0
    resolved: Dict[str, str] = field(default_factory=dict)
    pending: List[TranslationUnit] = field(default_factory=list)
    unresolved: List[TranslationUnresolvedError] = field(default_factory=list)
    failure: Optional[TranslationChunkFailure] = None

    MAX_ATTEMPTS = 2  # the initial request and one retry

    def __post_init__(self):
        if not self.pending:
            self.pending = list(self.units)

    def advance(self, state: ChunkState) -> None:
        if state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"Invalid chunk transition {self.state.name} -> {state.name}")
        if state in (ChunkState.REQUESTED, ChunkState.RETRY_REQUESTED):
            self.attempts += 1
        self.state = state

    def record(self, results: Dict[str, Optional[str]]) -> None:
        """Accept valid results and decide whether a retry is due."""
        still_pending = []
        reasons: Dict[str, str] = {}
        for unit in self.pending:
            value = results.get(unit.key)
            if value is None or (not value.strip() and unit.source_text.strip()):
                reasons[unit.key] = "no translation returned"
                still_pending.append(unit)
                continue
            errors = validate_translation(unit.source_text, value, unit.key)
            if errors:
                for error in errors:
                    logger.warning(f"[{self.locale}] {error}")
                reasons[unit.key] = "; ".join(errors)
                still_pending.append(unit)
                continue
            self.resolved[unit.key] = value
        self.pending = still_pending

        if not self.pending:
            self.advance(ChunkState.COMPLETE)
        elif self.attempts < self.MAX_ATTEMPTS:
            self.advance(ChunkState.PARTIALLY_COMPLETE)
        else:
            self._give_up(reasons)

    def fail(self, cause: str) -> None:
        """The request itself failed; keys resolved by an earlier attempt are kept."""
        if self.state is ChunkState.RETRY_REQUESTED and self.resolved:
            self._give_up({unit.key: cause for unit in self.pending})
            return
        self.failure = TranslationChunkFailure(
            self.locale, self.source_file, self.chunk_index, [unit.key for unit in self.units], cause
        )
        self.advance(ChunkState.FAILED)

    def _give_up(self, reasons: Dict[str, str]) -> None:
        self.unresolved = [
            TranslationUnresolvedError(unit.key, reasons.get(unit.key, "no translation returned"))
            for unit in self.pending
        ]
        self.advance(ChunkState.COMPLETE)

    def outcome(self) -> ChunkOutcome:
        return ChunkOutcome(
            locale=self.locale,
            source_file=self.source_file,
            chunk_index=self.chunk_index,
            state=self.state,
            translations=dict(self.resolved),
            unresolved=list(self.unresolved),
            failure=self.failure,
            attempts=self.attempts,
        )


async def _request(requester: Requester, units: List[TranslationUnit],
                   timeout: Optional[float]) -> Dict[str, Optional[str]]:
    if timeout:
        return await asyncio.wait_for(requester(units), timeout)
    return await requester(units)


async def translate_chunk(progress: ChunkProgress, requester: Requester,
                          timeout: Optional[float] = None) -> ChunkOutcome:
    """
    Run the request/retry cycle of one chunk to completion.

    Cancellation is not caught; everything the backend raises marks the
    chunk as failed.
    """
    label = f"chunk {progress.chunk_index} of '{progress.source_file}' ({progress.locale})"
    while progress.state not in (ChunkState.COMPLETE, ChunkState.FAILED):
        if progress.state is ChunkState.PENDING:
            progress.advance(ChunkState.REQUESTED)
        elif progress.state is ChunkState.PARTIALLY_COMPLETE:
            logger.info(f"Retrying {len(progress.pending)} unresolved keys of {label}")
            progress.advance(ChunkState.RETRY_REQUESTED)

        try:
            results = await _request(requester, progress.pending, timeout)
        except asyncio.TimeoutError:
            logger.error(f"Timed out translating {label} after {timeout} seconds")
            progress.fail(f"timed out after {timeout} seconds")
        except TranslationBackendError as exc:
            logger.error(f"Backend failed for {label}: {exc}")
            progress.fail(str(exc))
        except Exception as exc:
            logger.error(f"An unexpected error occurred for {label}: {exc}", exc_info=True)
            progress.fail(f"{exc.__class__.__name__}: {exc}")
        else:
            progress.record(results)

    for error in progress.unresolved:
        logger.warning(f"[{progress.locale}] {error}")
    return progress.outcome()


class TranslationOrchestrator:
    """
    Translate extracted units into target locales.

    The orchestrator imposes no concurrency limit of its own: every chunk of
    every locale is started at once and the backend's rate limiter decides
    how fast they actually run.
    """

    def __init__(self, backend: TranslationBackend, store: Optional[TranslationStore] = None,
                 thresholds: Optional[ChunkThresholds] = None,
                 measure: Callable[[str], int] = len,
                 chunk_timeout: Optional[float] = None,
                 instructions: Optional[str] = None,
                 show_progress: bool = True):
        self.backend = backend
        self.store = store
        self.thresholds = thresholds or ChunkThresholds()
        self.measure = measure
        self.chunk_timeout = chunk_timeout
        self.instructions = instructions
        self.show_progress = show_progress

    def context(self, source_locale: str, locale: str, format_id: str) -> TranslationContext:
        return TranslationContext(source_locale, locale, format_id, self.instructions)

    async def translate_units(self, units: List[TranslationUnit], source_locale: str, locale: str,
                              format_id: str, source_file: str = "") -> Tuple[Dict[str, str], List[ChunkOutcome]]:
        """Translate keyed units for one locale; returns resolved translations and chunk outcomes."""
        context = self.context(source_locale, locale, format_id)

        async def requester(batch: List[TranslationUnit]) -> Dict[str, Optional[str]]:
            return await self.backend.translate_keys(batch, context)

        return await self._run_chunks(units, locale, source_file, requester)

    async def translate_literals(self, texts: List[str], source_locale: str, locale: str,
                                 format_id: str, source_file: str = "") -> Tuple[List[Optional[str]], List[ChunkOutcome]]:
        """Translate code literals as lists; results are aligned with ``texts``."""
        context = self.context(source_locale, locale, format_id)
        units = [TranslationUnit(str(index), text, source_file) for index, text in enumerate(texts)]

        async def requester(batch: List[TranslationUnit]) -> Dict[str, Optional[str]]:
            translated = await self.backend.translate_strings([unit.source_text for unit in batch], context)
            return {unit.key: value for unit, value in zip(batch, translated)}

        resolved, outcomes = await self._run_chunks(units, locale, source_file, requester)
        return [resolved.get(unit.key) for unit in units], outcomes

    async def translate_document(self, text: str, source_locale: str, locale: str,
                                 format_id: str, source_file: str = "") -> Tuple[Optional[str], ChunkOutcome]:
        """Translate a whole document in one call; ``None`` means nothing was produced."""
        context = self.context(source_locale, locale, format_id)
        unit = TranslationUnit(DOCUMENT_KEY, text, source_file)

        async def requester(batch: List[TranslationUnit]) -> Dict[str, Optional[str]]:
            return {DOCUMENT_KEY: await self.backend.translate_document(text, context)}

        progress = ChunkProgress(locale, source_file, 0, [unit])
        outcome = await translate_chunk(progress, requester, self.chunk_timeout)
        return outcome.translations.get(DOCUMENT_KEY), outcome

    async def _run_chunks(self, units: List[TranslationUnit], locale: str, source_file: str,
                          requester: Requester) -> Tuple[Dict[str, str], List[ChunkOutcome]]:
        chunks = plan_for_locale(units, self.thresholds, locale, self.measure)
        if not chunks:
            return {}, []
        logger.info(f"[{locale}] Translating {len(units)} keys of '{source_file}' in {len(chunks)} chunk(s)")
        outcomes = await asyncio.gather(*[
            translate_chunk(ChunkProgress(locale, source_file, index, chunk), requester, self.chunk_timeout)
            for index, chunk in enumerate(chunks)
        ])
        resolved: Dict[str, str] = {}
        for outcome in outcomes:
            resolved.update(outcome.translations)
        return resolved, list(outcomes)

    async def _run_locale_file(self, request: RunRequest, locale: str, source_file: str,
                               units: List[TranslationUnit]) -> List[ChunkOutcome]:
        family = create_parser(request.source_format).family
        provenance = request.provenance()

        if family == "document":
            outcomes = []
            for unit in units:
                content, outcome = await self.translate_document(
                    unit.source_text, request.source_language, locale, request.source_format, source_file
                )
                outcomes.append(outcome)
                if content and self.store is not None:
                    await self.store.create_document({
                        **provenance,
                        "target_language": locale,
                        "source_file": source_file,
                        "source_text": unit.source_text,
                        "translated_text": content,
                    })
            return outcomes

        if family == "code":
            translated, outcomes = await self.translate_literals(
                [unit.source_text for unit in units], request.source_language, locale,
                request.source_format, source_file
            )
            resolved = {unit.key: value for unit, value in zip(units, translated) if value is not None}
            for outcome in outcomes:
                outcome.translations = {
                    units[int(key)].key: value for key, value in outcome.translations.items()
                }
        else:
            resolved, outcomes = await self.translate_units(
                units, request.source_language, locale, request.source_format, source_file
            )

        if resolved and self.store is not None:
            await self.store.create_translations([
                {
                    **provenance,
                    "target_language": locale,
                    "source_file": source_file,
                    "key": unit.key,
                    "source_text": unit.source_text,
                    "translated_text": resolved[unit.key],
                }
                for unit in units
                if unit.key in resolved
            ])
        return outcomes

    async def run(self, request: RunRequest) -> RunResult:
        """
        Translate every unit of ``request`` into every target locale.

        All (locale, source file) pairs run concurrently. Results are persisted
        through the store as soon as a pair completes.
        """
        by_file: Dict[str, List[TranslationUnit]] = {}
        for unit in request.content:
            by_file.setdefault(unit.source_file, []).append(unit)

        jobs = [
            (locale, source_file, units)
            for locale in request.target_locales
            for source_file, units in by_file.items()
        ]
        if not jobs:
            return RunResult(translations={locale: [] for locale in request.target_locales})

        results = await tqdm.gather(
            *[self._run_locale_file(request, locale, source_file, units) for locale, source_file, units in jobs],
            desc="Translating",
            disable=not self.show_progress,
        )

        run_result = RunResult(translations={locale: [] for locale in request.target_locales})
        for (locale, source_file, units), outcomes in zip(jobs, results):
            run_result.outcomes.extend(outcomes)
            resolved: Dict[str, str] = {}
            for outcome in outcomes:
                resolved.update(outcome.translations)
            run_result.translations[locale].extend(
                TranslationResult(unit.key, resolved.get(unit.key)) for unit in units
            )

        failures = len(run_result.failures)
        unresolved = len(run_result.unresolved)
        logger.info(
            f"Run for project '{request.project_id}' finished: {len(run_result.outcomes)} chunk(s), "
            f"{failures} failed, {unresolved} unresolved key(s)"
        )
        return run_result
