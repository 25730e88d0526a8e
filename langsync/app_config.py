"""Application configuration for langsync runs."""
import logging
import os
import sys
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, List, Optional

import yaml
from dotenv import load_dotenv
from openai import AsyncOpenAI

from langsync.chunk_planner import DEFAULT_LOCALE_FACTORS, ChunkThresholds
from langsync.code_strings import DEFAULT_SKIP_CHARACTERS, SKIP_ATTRIBUTES, LiteralFilter
from langsync.errors import ConfigurationError
from langsync.logging_config import setup_logger
from langsync.merge import ARRAY_POLICIES
from langsync.parser_registry import supported_formats
from langsync.translation_backend import (
    EchoTranslationBackend,
    OpenAITranslationBackend,
    TranslationBackend,
    count_tokens,
)

CONFIG_FILE_NAME = "langsync.yaml"
PROVIDERS = ("openai", "ollama")
CHUNK_UNITS = ("characters", "tokens")
DEFAULT_OLLAMA_BASE_URL = "http://localhost:11434/v1"


@dataclass
class AppConfig:
    """Application configuration dataclass."""
    # Core paths
    project_root: str
    project_id: str
    snapshot_file: str
    history_file: Optional[str]

    # Locales and files
    source_locale: str
    target_locales: List[str]
    files: Dict[str, List[str]]

    # Model configuration
    provider: str
    model_name: str
    large_model_name: Optional[str]
    large_model_threshold: int
    temperature: float
    instructions: Optional[str]

    # Processing settings
    dry_run: bool
    max_attempts: int
    max_concurrent_api_calls: int
    requests_per_minute: int
    chunk_max_size: int
    chunk_max_keys: Optional[int]
    chunk_unit: str
    chunk_timeout: Optional[float]
    locale_factors: Dict[str, float]
    array_policy: str
    skip_characters: str
    skip_attributes: FrozenSet[str]
    after_translate_hook: Optional[str]

    # OpenAI-compatible client; None in dry-run mode
    openai_client: Optional[AsyncOpenAI] = field(default=None, repr=False)


def _compute_project_root(project_root: Optional[str]) -> str:
    """The project root is the working directory unless given explicitly."""
    return os.path.abspath(project_root or os.getcwd())


def _load_dotenv_files(project_root: str) -> Optional[str]:
    """Load the project's .env file, if any; returns its path."""
    dotenv_path = os.path.join(project_root, '.env')
    if os.path.exists(dotenv_path):
        load_dotenv(dotenv_path)
        return dotenv_path
    return None


def _load_yaml_config(project_root: str) -> Dict[str, Any]:
    """Load the YAML configuration file, falling back to defaults on any problem."""
    # LANGSYNC_CONFIG_FILE (possibly from .env) overrides langsync.yaml in the project root.
    default_config_path = os.path.join(project_root, CONFIG_FILE_NAME)
    config_file = os.environ.get('LANGSYNC_CONFIG_FILE', default_config_path)

    if not os.path.isabs(config_file):
        config_file = os.path.join(project_root, config_file)

    config = {}
    try:
        if not os.path.exists(config_file):
            print(f"Warning: Configuration file '{config_file}' not found. Using default configuration.",
                  file=sys.stderr)
            print(f"Tip: Create a {CONFIG_FILE_NAME} file in '{project_root}' or set LANGSYNC_CONFIG_FILE.",
                  file=sys.stderr)
            return config

        if not os.access(config_file, os.R_OK):
            print(f"Error: Configuration file '{config_file}' exists but is not readable. Check file permissions.",
                  file=sys.stderr)
            return config

        with open(config_file, 'r', encoding='utf-8') as config_file_stream:
            loaded_config = yaml.safe_load(config_file_stream)
            if loaded_config is None:
                print(f"Warning: Configuration file '{config_file}' is empty. Using default configuration.",
                      file=sys.stderr)
            elif isinstance(loaded_config, dict):
                config = loaded_config
                print(f"Successfully loaded configuration from: {config_file}", file=sys.stderr)
            else:
                print(f"Error: Configuration file '{config_file}' must contain a YAML dictionary. Using defaults.",
                      file=sys.stderr)

    except yaml.YAMLError as e:
        print(f"Error: Invalid YAML in configuration file '{config_file}': {e}", file=sys.stderr)
        print("Please check your YAML syntax. Using default configuration.", file=sys.stderr)
    except OSError as e:
        print(f"Error: Could not read configuration file '{config_file}': {e}", file=sys.stderr)
        print("Using default configuration.", file=sys.stderr)

    return config


def _setup_logger_from_config(config: Dict[str, Any], project_root: str) -> logging.Logger:
    log_config = config.get('logging') or {}
    log_level_str = str(log_config.get('log_level', 'INFO')).upper()
    log_file_path = log_config.get('log_file_path')
    if log_file_path and not os.path.isabs(log_file_path):
        log_file_path = os.path.join(project_root, log_file_path)
    log_to_console = log_config.get('log_to_console', True)
    return setup_logger(log_level_str, log_file_path, log_to_console)


def _section(config: Dict[str, Any], name: str) -> Dict[str, Any]:
    section = config.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigurationError(f"Configuration section '{name}' must be a mapping")
    return section


def _parse_files(files_config: Dict[str, Any]) -> Dict[str, List[str]]:
    """
    Normalize ``files`` to ``format -> include patterns``.

    Both ``json: {include: [...]}`` and the shorthand ``json: [...]`` are accepted.
    """
    known = set(supported_formats())
    files: Dict[str, List[str]] = {}
    for format_id, entry in files_config.items():
        if format_id not in known:
            raise ConfigurationError(
                f"Unsupported format '{format_id}' in files. Supported formats: {', '.join(sorted(known))}"
            )
        include = entry.get('include', []) if isinstance(entry, dict) else entry
        if isinstance(include, str):
            include = [include]
        if not isinstance(include, list) or not all(isinstance(pattern, str) for pattern in include):
            raise ConfigurationError(f"files.{format_id}.include must be a list of path patterns")
        files[format_id] = include
    return files


def _parse_targets(targets: Any) -> List[str]:
    if isinstance(targets, str):
        targets = [targets]
    if not isinstance(targets, list):
        raise ConfigurationError("locale.targets must be a list of locale codes")
    return [str(target) for target in targets]


def _optional_int(value: Any, name: str) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}") from exc


def _create_openai_client(provider: str, dry_run: bool, logger: logging.Logger) -> Optional[AsyncOpenAI]:
    """Create the OpenAI-compatible client unless running dry."""
    if dry_run:
        logger.info("Running in dry-run mode, the model client will not be initialized")
        return None

    if provider == "ollama":
        base_url = os.environ.get('OLLAMA_BASE_URL', DEFAULT_OLLAMA_BASE_URL)
        logger.info("Using Ollama at %s", base_url)
        # Ollama ignores the key but the client requires one.
        return AsyncOpenAI(base_url=base_url, api_key="ollama")

    api_key_from_env = os.environ.get('OPENAI_API_KEY')
    if not api_key_from_env:
        logger.critical("CRITICAL: OPENAI_API_KEY environment variable not found.")
        logger.critical("Please set OPENAI_API_KEY or enable dry_run mode in configuration.")
        logger.critical("For dry-run mode, set 'dry_run: true' in your config file.")
        sys.exit(1)

    if not api_key_from_env.startswith('sk-'):
        logger.warning("Warning: OPENAI_API_KEY does not start with 'sk-'. This may be invalid.")

    try:
        client = AsyncOpenAI(api_key=api_key_from_env, base_url=os.environ.get('OPENAI_BASE_URL') or None)
        logger.info("OpenAI client initialized successfully")
        return client
    except Exception as e:
        logger.critical("Failed to initialize OpenAI client: %s", str(e))
        logger.critical("Please check your OPENAI_API_KEY and network connectivity.")
        sys.exit(1)


def load_app_config(project_root: Optional[str] = None, create_client: bool = True) -> AppConfig:
    """
    Load application configuration from YAML file and environment variables.

    Commands that never call the model pass ``create_client=False``.

    Raises:
        ConfigurationError: If a value is present but unusable.
    """
    project_root = _compute_project_root(project_root)
    dotenv_path = _load_dotenv_files(project_root)
    config = _load_yaml_config(project_root)
    logger = _setup_logger_from_config(config, project_root)

    if dotenv_path:
        logger.info("Loaded environment variables from: %s", dotenv_path)
    else:
        logger.info("No .env file found in '%s'. Relying on system environment variables if any.", project_root)

    locale_config = _section(config, 'locale')
    llm_config = _section(config, 'llm')
    chunk_config = _section(config, 'chunk')
    merge_config = _section(config, 'merge')
    code_config = _section(config, 'code_strings')
    state_config = _section(config, 'state')
    hooks_config = _section(config, 'hooks')

    provider = str(llm_config.get('provider', 'openai')).lower()
    if provider not in PROVIDERS:
        raise ConfigurationError(f"Unknown llm.provider '{provider}'. Expected one of {', '.join(PROVIDERS)}")

    chunk_unit = str(chunk_config.get('unit', 'characters')).lower()
    if chunk_unit not in CHUNK_UNITS:
        raise ConfigurationError(f"Unknown chunk.unit '{chunk_unit}'. Expected one of {', '.join(CHUNK_UNITS)}")

    array_policy = str(merge_config.get('array_policy', 'truncate')).lower()
    if array_policy not in ARRAY_POLICIES:
        raise ConfigurationError(
            f"Unknown merge.array_policy '{array_policy}'. Expected one of {', '.join(ARRAY_POLICIES)}"
        )

    default_chunk_size = chunk_config.get('max_size', 6000)
    chunk_max_size = _optional_int(os.environ.get('LANGSYNC_CHUNK_MAX_SIZE', default_chunk_size), 'chunk.max_size')
    if chunk_max_size <= 0:
        raise ConfigurationError(f"chunk.max_size must be positive, got {chunk_max_size}")

    locale_factors = dict(DEFAULT_LOCALE_FACTORS)
    locale_factors.update({str(k): float(v) for k, v in (chunk_config.get('locale_factors') or {}).items()})

    timeout = chunk_config.get('timeout_seconds')
    dry_run = bool(config.get('dry_run', False))
    default_model = 'llama3.1' if provider == 'ollama' else 'gpt-4o-mini'

    return AppConfig(
        project_root=project_root,
        project_id=str(config.get('project_id') or os.path.basename(project_root)),
        snapshot_file=os.path.join(project_root, state_config.get('snapshot_file', '.langsync/snapshots.json')),
        history_file=(
            os.path.join(project_root, state_config['history_file'])
            if state_config.get('history_file') else None
        ),
        source_locale=str(locale_config.get('source', 'en')),
        target_locales=_parse_targets(locale_config.get('targets', [])),
        files=_parse_files(_section(config, 'files')),
        provider=provider,
        model_name=os.environ.get('LANGSYNC_MODEL', llm_config.get('model', default_model)),
        large_model_name=llm_config.get('large_model'),
        large_model_threshold=_optional_int(llm_config.get('large_model_threshold', 200), 'llm.large_model_threshold'),
        temperature=float(llm_config.get('temperature', 0.0)),
        instructions=config.get('instructions'),
        dry_run=dry_run,
        max_attempts=_optional_int(config.get('max_attempts', 4), 'max_attempts'),
        max_concurrent_api_calls=_optional_int(config.get('max_concurrent_api_calls', 4), 'max_concurrent_api_calls'),
        requests_per_minute=_optional_int(config.get('requests_per_minute', 60), 'requests_per_minute'),
        chunk_max_size=chunk_max_size,
        chunk_max_keys=_optional_int(chunk_config.get('max_keys'), 'chunk.max_keys'),
        chunk_unit=chunk_unit,
        chunk_timeout=float(timeout) if timeout else None,
        locale_factors=locale_factors,
        array_policy=array_policy,
        skip_characters=str(code_config.get('skip_characters', DEFAULT_SKIP_CHARACTERS)),
        skip_attributes=frozenset(code_config.get('skip_attributes', SKIP_ATTRIBUTES)),
        after_translate_hook=hooks_config.get('after_translate'),
        openai_client=_create_openai_client(provider, dry_run, logger) if create_client else None,
    )


def build_backend(app_config: AppConfig) -> TranslationBackend:
    if app_config.dry_run or app_config.openai_client is None:
        return EchoTranslationBackend()
    return OpenAITranslationBackend(
        client=app_config.openai_client,
        model_name=app_config.model_name,
        large_model_name=app_config.large_model_name,
        large_model_threshold=app_config.large_model_threshold,
        temperature=app_config.temperature,
        max_attempts=app_config.max_attempts,
        max_concurrent_api_calls=app_config.max_concurrent_api_calls,
        requests_per_minute=app_config.requests_per_minute,
    )


def build_thresholds(app_config: AppConfig) -> ChunkThresholds:
    return ChunkThresholds(
        max_size=app_config.chunk_max_size,
        max_keys=app_config.chunk_max_keys,
        locale_factors=dict(app_config.locale_factors),
    )


def build_measure(app_config: AppConfig) -> Callable[[str], int]:
    """Size function used by the chunk planner."""
    if app_config.chunk_unit == "tokens":
        model_name = app_config.model_name
        return lambda text: count_tokens(text, model_name)
    return len


def build_literal_filter(app_config: AppConfig) -> LiteralFilter:
    return LiteralFilter(app_config.skip_characters, app_config.skip_attributes)
