"""Command line interface: ``langsync translate`` and ``langsync extract``."""
import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from langsync.app_config import (
    AppConfig,
    build_backend,
    build_literal_filter,
    build_measure,
    build_thresholds,
    load_app_config,
)
from langsync.errors import LangsyncError
from langsync.localize import LocalizationPipeline, extract_project_strings, summarize
from langsync.merge import load_hook
from langsync.orchestrator import TranslationOrchestrator
from langsync.snapshots import SnapshotLedger
from langsync.storage import JsonLinesTranslationStore

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="langsync",
        description="Incrementally translate localization files with a language model.",
    )
    parser.add_argument(
        "--project-root",
        help="Directory holding langsync.yaml (default: the current directory).",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    translate = subparsers.add_parser("translate", help="Translate changed keys into the target locales.")
    translate.add_argument(
        "-l",
        "--locale",
        action="append",
        help="Only translate into this configured target locale (may be repeated).",
    )
    translate.add_argument(
        "-f",
        "--force",
        action="store_true",
        help="Translate every key, ignoring the last snapshot.",
    )

    extract = subparsers.add_parser("extract", help="Collect JSX strings into a JSON translation store.")
    extract.add_argument("directory", help="Directory to scan for .jsx/.tsx components.")
    extract.add_argument(
        "-o",
        "--output",
        default="translations.json",
        help="JSON store to merge the strings into (default: translations.json).",
    )
    return parser


def build_pipeline(app_config: AppConfig, force: bool = False) -> LocalizationPipeline:
    store = JsonLinesTranslationStore(app_config.history_file) if app_config.history_file else None
    orchestrator = TranslationOrchestrator(
        backend=build_backend(app_config),
        store=store,
        thresholds=build_thresholds(app_config),
        measure=build_measure(app_config),
        chunk_timeout=app_config.chunk_timeout,
        instructions=app_config.instructions,
        show_progress=False,
    )
    hook = load_hook(app_config.after_translate_hook, app_config.project_root) if app_config.after_translate_hook else None
    return LocalizationPipeline(
        project_root=app_config.project_root,
        project_id=app_config.project_id,
        source_locale=app_config.source_locale,
        target_locales=app_config.target_locales,
        files=app_config.files,
        orchestrator=orchestrator,
        ledger=SnapshotLedger(app_config.snapshot_file),
        array_policy=app_config.array_policy,
        literal_predicate=build_literal_filter(app_config),
        hook=hook,
        force=force,
        dry_run=app_config.dry_run,
    )


async def run_translate(app_config: AppConfig, locales: Optional[List[str]], force: bool) -> int:
    if not app_config.files:
        logger.error("No files configured. Add a 'files' section to langsync.yaml.")
        return 1
    unknown = [locale for locale in locales or [] if locale not in app_config.target_locales]
    if unknown:
        available = ", ".join(app_config.target_locales) or "none"
        logger.error(f"Invalid target locale(s): {', '.join(unknown)}. Available locales: {available}")
        return 1
    targets = locales or app_config.target_locales
    if not targets:
        logger.error("No target locales configured. Set locale.targets in langsync.yaml.")
        return 1

    pipeline = build_pipeline(app_config, force)
    results = await pipeline.run(targets)
    written, failed, unresolved = summarize(results)

    logger.info(f"Localized {len(results)} file(s): {written} written, {failed} failed, {unresolved} unresolved key(s)")
    for result in results:
        if result.error:
            logger.error(f"  - {result.target_path}: {result.error}")
        for failure in result.failures:
            logger.error(f"  - {result.target_path}: {failure}")
    return 1 if failed else 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        app_config = load_app_config(args.project_root, create_client=args.command == "translate")
        if args.command == "extract":
            merged = extract_project_strings(
                args.directory, args.output, skip_attributes=app_config.skip_attributes
            )
            logger.info(f"Translation store '{args.output}' now holds {len(merged)} component(s)")
            return 0
        return asyncio.run(run_translate(app_config, args.locale, args.force))
    except LangsyncError as exc:
        logger.error(str(exc))
        return 1
    except KeyboardInterrupt:
        logger.error("Interrupted by user.")
        return 130


if __name__ == "__main__":
    sys.exit(main())
