"""
File-level pipeline: find sources, translate what changed, merge and write targets.

One task handles one (source file, locale) pair. Every task runs concurrently;
the snapshot ledger is updated once, after all of them finished, and only for
the pairs that were localized without failures or unresolved keys.

Without a snapshot for a pair the existing target is the baseline: only keys it
lacks are translated, unless a full re-translation is forced.
"""
import asyncio
import glob
import json
import logging
import os
import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Pattern, Tuple

from tqdm.asyncio import tqdm

from langsync.change_detector import (
    align_unchanged_literals,
    detect_changed_literals,
    detect_changes,
    document_changed,
)
from langsync.code_strings import (
    SKIP_ATTRIBUTES,
    CodeStringsParser,
    ExtractionAccumulator,
    LiteralPredicate,
    component_name_for,
    extract_component_strings,
)
from langsync.errors import InvalidStructureError, LangsyncError
from langsync.merge import HookFunction, merge_document, merge_translations, run_after_translate_hook
from langsync.models import DOCUMENT_KEY, FileResult, RunRequest, TranslationUnit
from langsync.orchestrator import TranslationOrchestrator
from langsync.parser_registry import Parser, create_parser
from langsync.snapshots import SnapshotLedger
from langsync.translation_validator import check_key_coverage

logger = logging.getLogger(__name__)

LOCALE_PLACEHOLDER = "[locale]"


@dataclass(frozen=True)
class LocalizationTask:
    format_id: str
    source_path: str  # relative to the project root, '/'-separated
    target_path: str
    locale: str


def _pattern_regex(pattern: str, source_locale: str) -> Pattern:
    """Regex matching source paths of ``pattern``; each locale occurrence is its own group."""
    parts = []
    position = 0
    for match in re.finditer(r"\[locale\]|\*\*/?|\*|\?", pattern):
        parts.append(re.escape(pattern[position:match.start()]))
        token = match.group(0)
        if token == LOCALE_PLACEHOLDER:
            parts.append(f"({re.escape(source_locale)})")
        elif token.startswith("**"):
            parts.append("(?:.*/)?" if token.endswith("/") else ".*")
        elif token == "*":
            parts.append("[^/]*")
        else:
            parts.append("[^/]")
        position = match.end()
    parts.append(re.escape(pattern[position:]))
    return re.compile("^" + "".join(parts) + "$")


def resolve_source_files(project_root: str, pattern: str, source_locale: str) -> List[str]:
    """Source files matching an include pattern, relative to the project root."""
    source_pattern = pattern.replace(LOCALE_PLACEHOLDER, source_locale)
    matches = glob.glob(os.path.join(project_root, source_pattern), recursive=True)
    return sorted(
        os.path.relpath(path, project_root).replace(os.sep, "/")
        for path in matches
        if os.path.isfile(path)
    )


def target_path_for(pattern: str, source_path: str, source_locale: str, locale: str) -> str:
    """
    Substitute ``locale`` wherever ``pattern`` places ``[locale]`` in ``source_path``.

    Raises:
        InvalidStructureError: If the pattern has no locale placeholder, since
            the target would overwrite the source.
    """
    if LOCALE_PLACEHOLDER not in pattern:
        raise InvalidStructureError(f"Include pattern '{pattern}' has no {LOCALE_PLACEHOLDER} placeholder")
    match = _pattern_regex(pattern, source_locale).match(source_path)
    if match is None:
        raise InvalidStructureError(f"'{source_path}' does not match include pattern '{pattern}'")
    target = source_path
    for group in range(match.lastindex or 0, 0, -1):
        target = target[:match.start(group)] + locale + target[match.end(group):]
    return target


def plan_tasks(project_root: str, files: Dict[str, List[str]], source_locale: str,
               locales: Iterable[str]) -> List[LocalizationTask]:
    tasks = []
    seen = set()
    for format_id, patterns in files.items():
        for pattern in patterns:
            sources = resolve_source_files(project_root, pattern, source_locale)
            if not sources:
                logger.warning(f"No source files match '{pattern}' for locale '{source_locale}'")
            for source_path in sources:
                for locale in locales:
                    target_path = target_path_for(pattern, source_path, source_locale, locale)
                    if (source_path, target_path) in seen:
                        continue
                    seen.add((source_path, target_path))
                    tasks.append(LocalizationTask(format_id, source_path, target_path, locale))
    return tasks


def _read_text(path: str) -> Optional[str]:
    if not os.path.exists(path):
        return None
    with open(path, "r", encoding="utf-8", newline="") as file:
        return file.read()


def _write_text(path: str, content: str) -> None:
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(path, "w", encoding="utf-8", newline="") as file:
        file.write(content)


class LocalizationPipeline:
    """Localize every configured source file into the target locales."""

    def __init__(self, project_root: str, project_id: str, source_locale: str, target_locales: List[str],
                 files: Dict[str, List[str]], orchestrator: TranslationOrchestrator, ledger: SnapshotLedger,
                 array_policy: str = "truncate", literal_predicate: Optional[LiteralPredicate] = None,
                 hook: Optional[HookFunction] = None, force: bool = False, dry_run: bool = False,
                 show_progress: bool = True):
        self.project_root = project_root
        self.project_id = project_id
        self.source_locale = source_locale
        self.target_locales = target_locales
        self.files = files
        self.orchestrator = orchestrator
        self.ledger = ledger
        self.array_policy = array_policy
        self.literal_predicate = literal_predicate
        self.hook = hook
        self.force = force
        self.dry_run = dry_run
        self.show_progress = show_progress

    def _abs(self, relative_path: str) -> str:
        return os.path.join(self.project_root, *relative_path.split("/"))

    def _previous_source(self, task: LocalizationTask) -> Optional[str]:
        if self.force:
            return None
        return self.ledger.previous_content(task.source_path, task.locale)

    async def _translate(self, task: LocalizationTask, units: List[TranslationUnit],
                         result: FileResult) -> Dict[str, str]:
        """Send units through the orchestrator and record failures on ``result``."""
        if not units:
            return {}
        request = RunRequest(
            project_id=self.project_id,
            source_format=task.format_id,
            source_language=self.source_locale,
            target_locales=[task.locale],
            content=units,
        )
        run_result = await self.orchestrator.run(request)
        result.failures.extend(run_result.failures)
        result.unresolved.extend(run_result.unresolved)
        return {
            translation.key: translation.translated_text
            for translation in run_result.translations.get(task.locale, [])
            if translation.translated_text is not None
        }

    async def _localize_keyed(self, task: LocalizationTask, parser: Parser, source_text: str,
                              target_text: Optional[str], result: FileResult) -> str:
        source_map = parser.parse(source_text)
        previous_text = self._previous_source(task)
        previous_map = None
        if previous_text is not None:
            try:
                previous_map = parser.parse(previous_text)
            except LangsyncError as exc:
                logger.warning(f"Ignoring unreadable snapshot of '{task.source_path}': {exc}")

        target_map = parser.parse(target_text) if target_text else {}
        if previous_map is None and not self.force:
            changed: List[str] = []
        else:
            changed = detect_changes(previous_map, source_map, self.force).changed
        missing, _ = check_key_coverage(set(source_map), set(target_map))
        pending = set(changed) | missing

        translated: Dict[str, str] = {}
        units = []
        for key, text in source_map.items():
            if key not in pending:
                continue
            if not text.strip():
                translated[key] = text
            else:
                units.append(TranslationUnit(key, text, task.source_path))
        translated.update(await self._translate(task, units, result))

        result.translated_keys = [key for key in source_map if key in translated]
        result.removed_keys = [key for key in target_map if key not in source_map]
        merged = merge_translations(source_map, target_map, translated, self.array_policy)
        return parser.serialize(task.locale, merged, original=target_text or source_text)

    async def _localize_code(self, task: LocalizationTask, parser: CodeStringsParser, source_text: str,
                             target_text: Optional[str], result: FileResult) -> str:
        literals = parser.literals(source_text)
        previous_text = self._previous_source(task)

        reused: Dict[str, str] = {}
        if target_text is not None and not self.force:
            target_literals = parser.literals(target_text)
            if previous_text is None:
                # No snapshot: a target with the same literal layout is taken as translated.
                if len(target_literals) == len(literals):
                    reused = {str(ordinal): literal.text for ordinal, literal in enumerate(target_literals)}
            else:
                changed = set(detect_changed_literals(previous_text, source_text, literals))
                previous_literals = parser.literals(previous_text)
                if len(previous_literals) == len(target_literals):
                    alignment = align_unchanged_literals(previous_text, source_text, previous_literals, literals)
                    for ordinal, previous_ordinal in alignment.items():
                        if ordinal not in changed:
                            reused[str(ordinal)] = target_literals[previous_ordinal].text
                else:
                    logger.warning(
                        f"'{task.target_path}' no longer lines up with the last translated source; "
                        f"translating every literal"
                    )

        units = [
            TranslationUnit(str(ordinal), literal.text, task.source_path)
            for ordinal, literal in enumerate(literals)
            if str(ordinal) not in reused
        ]
        translated = await self._translate(task, units, result)
        result.translated_keys = sorted(translated, key=int)
        return parser.serialize(task.locale, {**reused, **translated}, original=source_text)

    async def _localize_document(self, task: LocalizationTask, source_text: str,
                                 target_text: Optional[str], result: FileResult) -> Optional[str]:
        previous_text = self._previous_source(task)
        if target_text is not None and not self.force:
            if previous_text is None or not document_changed(previous_text, source_text):
                return target_text
        unit = TranslationUnit(DOCUMENT_KEY, source_text, task.source_path)
        translated = await self._translate(task, [unit] if source_text else [], result)
        if DOCUMENT_KEY in translated:
            result.translated_keys = [DOCUMENT_KEY]
        return merge_document(target_text, translated.get(DOCUMENT_KEY))

    async def localize(self, task: LocalizationTask, source_text: str) -> FileResult:
        """Localize one source file into one locale; errors are recorded, not raised."""
        result = FileResult(task.source_path, task.target_path, task.locale)
        target_abs = self._abs(task.target_path)
        try:
            parser = create_parser(task.format_id, self.literal_predicate)
            target_text = await asyncio.to_thread(_read_text, target_abs)

            if parser.family == "document":
                content = await self._localize_document(task, source_text, target_text, result)
            elif parser.family == "code":
                content = await self._localize_code(task, parser, source_text, target_text, result)
            else:
                content = await self._localize_keyed(task, parser, source_text, target_text, result)

            if content is None or (result.failures and not result.translated_keys):
                return result
            content = await run_after_translate_hook(self.hook, content, target_abs)
            if content == target_text:
                logger.debug(f"[{task.locale}] '{task.target_path}' is up to date")
                return result

            if self.dry_run:
                logger.info(f"[Dry Run] Would write translated content to '{task.target_path}'.")
            else:
                await asyncio.to_thread(_write_text, target_abs, content)
                result.written = True
                logger.info(f"[{task.locale}] Wrote '{task.target_path}' ({len(result.translated_keys)} translated)")
        except (LangsyncError, OSError, UnicodeDecodeError) as exc:
            result.error = str(exc)
            logger.error(f"[{task.locale}] Failed to localize '{task.source_path}': {exc}")
        return result

    async def run(self, locales: Optional[List[str]] = None) -> List[FileResult]:
        locales = locales or self.target_locales
        tasks = plan_tasks(self.project_root, self.files, self.source_locale, locales)
        if not tasks:
            logger.info("No files to localize.")
            return []

        source_paths = sorted({task.source_path for task in tasks})
        source_texts = await asyncio.gather(*[
            asyncio.to_thread(_read_text, self._abs(path)) for path in source_paths
        ])
        sources = dict(zip(source_paths, source_texts))

        results = await tqdm.gather(
            *[self.localize(task, sources[task.source_path] or "") for task in tasks],
            desc="Localizing",
            disable=not self.show_progress,
        )

        if not self.dry_run:
            self._update_snapshots(sources, results)
        return list(results)

    def _update_snapshots(self, sources: Dict[str, Optional[str]], results: List[FileResult]) -> None:
        complete: Dict[Tuple[str, str], bool] = {}
        for result in results:
            pair = (result.source_path, result.locale)
            complete[pair] = complete.get(pair, True) and result.ok and not result.unresolved
        for (source_path, locale), ok in complete.items():
            if not ok:
                logger.info(f"[{locale}] Keeping previous snapshot of '{source_path}' until it localizes cleanly")
            elif sources.get(source_path) is not None:
                self.ledger.record(source_path, locale, sources[source_path])
        self.ledger.save()


def summarize(results: List[FileResult]) -> Tuple[int, int, int]:
    """(files written, files with errors or failed chunks, unresolved keys)."""
    written = sum(1 for result in results if result.written)
    failed = sum(1 for result in results if not result.ok)
    unresolved = sum(len(result.unresolved) for result in results)
    return written, failed, unresolved


def extract_project_strings(directory: str, output_path: str,
                            skip_attributes: Iterable[str] = SKIP_ATTRIBUTES) -> Dict[str, Dict[str, str]]:
    """
    Collect JSX strings of every component under ``directory`` into a JSON store.

    Components already in the store but not found again are kept; components
    found again are replaced with what was collected.
    """
    accumulator = ExtractionAccumulator()
    pattern = os.path.join(directory, "**", "*.[jt]sx")
    for path in sorted(glob.glob(pattern, recursive=True)):
        with open(path, "r", encoding="utf-8") as file:
            code = file.read()
        fallback = os.path.splitext(os.path.basename(path))[0]
        keys = extract_component_strings(code, component_name_for(code, fallback), accumulator, skip_attributes)
        if keys:
            logger.info(f"Extracted {len(keys)} strings from '{path}'")

    existing: Dict[str, Dict[str, str]] = {}
    if os.path.exists(output_path):
        with open(output_path, "r", encoding="utf-8") as file:
            try:
                existing = json.load(file)
            except json.JSONDecodeError as exc:
                raise InvalidStructureError(f"Failed to parse '{output_path}': {exc}") from exc
        if not isinstance(existing, dict):
            raise InvalidStructureError(f"'{output_path}' must contain a JSON object")

    merged = accumulator.merge_into(existing)
    _write_text(output_path, json.dumps(merged, indent=2, ensure_ascii=False) + "\n")
    return merged
