"""
Model backends that turn source strings into translations.

A backend owns everything about talking to the model: prompts, response
validation, placeholder protection, rate limiting and its own retry budget for
transport errors. It reports keys it could not translate as ``None`` and raises
:class:`TranslationBackendError` only when the whole call failed.
"""
import asyncio
import json
import logging
import random
import re
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import jsonschema
import tiktoken
from aiolimiter import AsyncLimiter
from openai import (
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    AsyncOpenAI,
    OpenAIError,
    RateLimitError,
)
from openai.types.chat import (
    ChatCompletionSystemMessageParam,
    ChatCompletionUserMessageParam,
)

from langsync.errors import TranslationBackendError
from langsync.models import TranslationUnit

logger = logging.getLogger(__name__)

# Responses must name every requested key; a null value means "not translated".
KEYS_RESPONSE_SCHEMA = {
    "type": "object",
    "properties": {
        "translations": {
            "type": "object",
            "additionalProperties": {"type": ["string", "null"]},
        }
    },
    "required": ["translations"],
}

STRINGS_RESPONSE_SCHEMA = {
    "type": "object",
    "properties": {
        "items": {
            "type": "array",
            "items": {"type": ["string", "null"]},
        }
    },
    "required": ["items"],
}

BASE_REQUIREMENTS = """
- **Do not translate or modify placeholder tokens**: Any text enclosed within double underscores `__` (e.g., `__PH_abc123__`) must remain exactly as is.
- **Preserve variables and formatting**: Keep printf-style variables (`%s`, `%1$@`, `%d`), ICU arguments, HTML tags and escape sequences such as `\\n` unchanged.
- **Do not add** quotation marks, brackets, explanations or any other characters that are not part of the translation.
- **Keep the meaning and tone** of the source; use the terminology that is usual for software in the target language.
"""

FORMAT_RULES: Dict[str, str] = {
    "po": "- Entries come from a gettext catalog; keep ICU and python-format placeholders intact.",
    "properties": "- Entries come from a Java .properties file; keep MessageFormat arguments such as `{0}` and do not escape single quotes.",
    "android": "- Entries come from Android strings.xml; keep `\\'` and `\\\"` escapes and XLIFF `<xliff:g>` tags as they are.",
    "xcode-stringsdict": "- Entries are plural variants; translate each category on its own and keep `%#@var@` references intact.",
    "arb": "- Entries use ICU MessageFormat; translate only the text inside plural/select branches.",
    "md": "- The text is a Markdown document; keep headings, links, code blocks, front matter keys and inline code unchanged.",
    "mdx": "- The text is an MDX document; additionally keep JSX components, imports and exports unchanged.",
    "js": "- Strings come from JavaScript source; keep template expressions like `${name}` unchanged.",
    "jsx": "- Strings come from JSX source; keep template expressions like `${name}` and inline markup unchanged.",
    "tsx": "- Strings come from TSX source; keep template expressions like `${name}` and inline markup unchanged.",
}


@dataclass(frozen=True)
class TranslationContext:
    source_locale: str
    target_locale: str
    format_id: str = "json"
    instructions: Optional[str] = None


def count_tokens(text: str, model_name: str = 'gpt-3.5-turbo') -> int:
    """Count the number of tokens in ``text`` for ``model_name``.

    ``tiktoken.encoding_for_model`` occasionally attempts a network request to
    download model data if it is not already cached. If obtaining the encoding
    for the requested model fails, the function falls back to ``gpt2`` which
    ships with ``tiktoken``. As a last resort, a simple whitespace split is used.
    """
    try:
        encoding = tiktoken.encoding_for_model(model_name)
    except Exception:
        try:
            encoding = tiktoken.get_encoding("gpt2")
        except Exception:
            return len(text.split())

    try:
        return len(encoding.encode(text))
    except Exception:
        return len(text.split())


def extract_placeholders(text: str) -> Tuple[str, Dict[str, str]]:
    """
    Replace placeholders and HTML-like tags with unique tokens.

    Args:
        text (str): The text to process.

    Returns:
        Tuple[str, Dict[str, str]]: The processed text and placeholder mapping.
    """
    if not isinstance(text, str):
        raise ValueError("Input text must be a string.")

    # `{0}` / `{name}`, HTML-like tags and printf-style specifiers
    pattern = re.compile(r'(<[^<>]+>)|(\{[^{}]+\})|(%(?:\d+\$)?[-+#0]*\d*(?:\.\d+)?(?:l|ll|h)?[@dDiuxXfFeEgGsScp])')
    placeholder_mapping = {}

    def replace_placeholder(match):
        placeholder_token = f"__PH_{uuid.uuid4().hex}__"
        placeholder_mapping[placeholder_token] = match.group(0)
        return placeholder_token

    return pattern.sub(replace_placeholder, text), placeholder_mapping


def restore_placeholders(text: str, placeholder_mapping: Dict[str, str]) -> str:
    for token, placeholder in placeholder_mapping.items():
        text = text.replace(token, placeholder)
    return text


def clean_translated_text(translated_text: str, original_text: str) -> str:
    """
    Remove quotes or square brackets the model wrapped around the translation
    when the original text was not wrapped in them.
    """
    if translated_text.startswith('"') and translated_text.endswith('"') and len(translated_text) > 1 and not (
            original_text.startswith('"') and original_text.endswith('"')):
        translated_text = translated_text[1:-1]
    if translated_text.startswith('[') and translated_text.endswith(']') and not (
            original_text.startswith('[') and original_text.endswith(']')):
        translated_text = translated_text[1:-1]
    return translated_text


def _retry_after_seconds(api_exc: Optional[Exception]) -> Optional[float]:
    if not isinstance(api_exc, OpenAIError):
        return None
    headers = getattr(api_exc, "headers", None)
    if headers is None:
        headers = getattr(getattr(api_exc, "response", None), "headers", None) or {}
    retry_after_header = headers.get("Retry-After")
    if not retry_after_header:
        return None
    if retry_after_header.isdigit():
        return float(retry_after_header)
    if retry_after_header.endswith("ms"):
        return float(retry_after_header[:-2]) / 1000
    return None


async def _handle_retry(attempt: int, max_retries: int, base_delay: float, label: str,
                        api_exc: Optional[Exception] = None) -> bool:
    """
    Handle the retry mechanism with exponential backoff and jitter.

    Args:
        attempt (int): The current attempt number.
        max_retries (int): The maximum number of attempts.
        base_delay (float): The base delay in seconds.
        label (str): What is being requested, for logging.
        api_exc (Optional[Exception]): The exception raised by the API, if any.

    Returns:
        bool: True if the operation should retry, False otherwise.
    """
    if attempt >= max_retries:
        logger.error(f"Request for {label} failed after {max_retries} attempts.")
        return False
    try:
        delay = _retry_after_seconds(api_exc)
    except (AttributeError, ValueError) as exc:
        logger.warning(f"Failed to parse Retry-After header: {exc}. Falling back to exponential backoff.")
        delay = None
    if delay is None:
        delay = base_delay * (2 ** (attempt - 1)) + random.uniform(0, 1)
    logger.info(f"Retrying request for {label} in {delay:.2f} seconds (Attempt {attempt}/{max_retries})")
    await asyncio.sleep(delay)
    return True


def build_system_prompt(context: TranslationContext) -> str:
    rules = FORMAT_RULES.get(context.format_id, "")
    instructions = f"\n**Project Instructions**:\n{context.instructions.strip()}\n" if context.instructions else ""
    return f"""
You are an expert translator specializing in software localization. Translate the provided content from {context.source_locale} to {context.target_locale}.

**Requirements**:
{BASE_REQUIREMENTS.strip()}
{rules}
{instructions}"""


class TranslationBackend(ABC):
    """Interface the orchestrator uses to reach a model."""

    @abstractmethod
    async def translate_keys(self, units: List[TranslationUnit],
                             context: TranslationContext) -> Dict[str, Optional[str]]:
        """Translate a batch of keyed units; missing or null keys map to None."""

    @abstractmethod
    async def translate_strings(self, texts: List[str], context: TranslationContext) -> List[Optional[str]]:
        """Translate a list of strings; the result is aligned by position."""

    @abstractmethod
    async def translate_document(self, text: str, context: TranslationContext) -> Optional[str]:
        """Translate a whole document; None or "" means nothing was produced."""


class EchoTranslationBackend(TranslationBackend):
    """Returns every source text unchanged. Used for dry runs."""

    async def translate_keys(self, units, context):
        return {unit.key: unit.source_text for unit in units}

    async def translate_strings(self, texts, context):
        return list(texts)

    async def translate_document(self, text, context):
        return text


class OpenAITranslationBackend(TranslationBackend):
    """Chat-completions backend with JSON responses, rate limiting and backoff."""

    def __init__(self, client: AsyncOpenAI, model_name: str, large_model_name: Optional[str] = None,
                 large_model_threshold: int = 200, temperature: float = 0.0, max_attempts: int = 4,
                 max_concurrent_api_calls: int = 4, requests_per_minute: int = 60,
                 request_timeout: float = 120.0, base_delay: float = 1.0):
        self.client = client
        self.model_name = model_name
        self.large_model_name = large_model_name
        self.large_model_threshold = large_model_threshold
        self.temperature = temperature
        self.max_attempts = max_attempts
        self.request_timeout = request_timeout
        self.base_delay = base_delay
        self.semaphore = asyncio.Semaphore(max_concurrent_api_calls)
        self.rate_limiter = AsyncLimiter(requests_per_minute, 60)

    def model_for(self, unit_count: int) -> str:
        if self.large_model_name and unit_count > self.large_model_threshold:
            return self.large_model_name
        return self.model_name

    async def _complete(self, model: str, system_prompt: str, user_prompt: str,
                        label: str, schema: Optional[Dict[str, Any]] = None) -> Any:
        """
        Run one chat completion with the backend's retry budget.

        With a ``schema`` the response must be a JSON object matching it;
        otherwise the raw message text is returned.

        Raises:
            TranslationBackendError: Once every attempt failed.
        """
        async with self.semaphore, self.rate_limiter:
            last_error: Optional[Exception] = None
            for attempt in range(1, self.max_attempts + 1):
                response_text = ""
                try:
                    kwargs: Dict[str, Any] = {}
                    if schema is not None:
                        kwargs["response_format"] = {"type": "json_object"}
                    response = await self.client.chat.completions.create(
                        model=model,
                        messages=[
                            ChatCompletionSystemMessageParam(role="system", content=system_prompt),
                            ChatCompletionUserMessageParam(role="user", content=user_prompt),
                        ],
                        temperature=self.temperature,
                        timeout=self.request_timeout,
                        **kwargs,
                    )
                    response_text = (response.choices[0].message.content or "").strip()
                    if schema is None:
                        return response_text
                    parsed = json.loads(response_text)
                    jsonschema.validate(instance=parsed, schema=schema)
                    return parsed

                except json.JSONDecodeError as json_exc:
                    logger.error(f"Request for {label} failed: model did not return valid JSON. Error: {json_exc}")
                    logger.debug(f"Invalid model response (JSON Decode Error):\n---\n{response_text}\n---")
                    last_error = json_exc
                    should_retry = await _handle_retry(attempt, self.max_attempts, self.base_delay, label)
                except jsonschema.ValidationError as schema_exc:
                    logger.error(f"Request for {label} failed: response did not match the schema. Error: {schema_exc.message}")
                    logger.debug(f"Invalid model response (Schema Error):\n---\n{response_text}\n---")
                    last_error = schema_exc
                    should_retry = await _handle_retry(attempt, self.max_attempts, self.base_delay, label)
                except (RateLimitError, APITimeoutError, APIConnectionError, APIStatusError, OpenAIError) as api_exc:
                    logger.error(f"API error occurred: {api_exc.__class__.__name__} - {api_exc}")
                    last_error = api_exc
                    should_retry = await _handle_retry(attempt, self.max_attempts, self.base_delay, label, api_exc)

                if not should_retry:
                    break
            raise TranslationBackendError(f"Request for {label} failed: {last_error}") from last_error

    async def translate_keys(self, units: List[TranslationUnit],
                             context: TranslationContext) -> Dict[str, Optional[str]]:
        protected: Dict[str, str] = {}
        mappings: Dict[str, Dict[str, str]] = {}
        for unit in units:
            protected[unit.key], mappings[unit.key] = extract_placeholders(unit.source_text)

        user_prompt = (
            "Translate the values of this JSON object. Return a JSON object of the form "
            '{"translations": {"<key>": "<translation>"}} containing every key exactly as given; '
            "use null for a value you cannot translate.\n\n"
            + json.dumps(protected, ensure_ascii=False, indent=2)
        )
        label = f"{len(units)} keys ({context.target_locale})"
        parsed = await self._complete(self.model_for(len(units)), build_system_prompt(context),
                                      user_prompt, label, KEYS_RESPONSE_SCHEMA)

        translations = parsed["translations"]
        results: Dict[str, Optional[str]] = {}
        for unit in units:
            value = translations.get(unit.key)
            if value is None:
                results[unit.key] = None
                continue
            value = restore_placeholders(value.strip(), mappings[unit.key])
            results[unit.key] = clean_translated_text(value, unit.source_text)
        return results

    async def translate_strings(self, texts: List[str], context: TranslationContext) -> List[Optional[str]]:
        protected = []
        mappings = []
        for text in texts:
            processed, mapping = extract_placeholders(text)
            protected.append(processed)
            mappings.append(mapping)

        user_prompt = (
            "Translate each string of this JSON array. Return a JSON object of the form "
            '{"items": ["<translation>", ...]} with exactly one entry per input string, in the same order; '
            "use null for a string you cannot translate.\n\n"
            + json.dumps(protected, ensure_ascii=False, indent=2)
        )
        label = f"{len(texts)} strings ({context.target_locale})"
        parsed = await self._complete(self.model_for(len(texts)), build_system_prompt(context),
                                      user_prompt, label, STRINGS_RESPONSE_SCHEMA)

        items = parsed["items"]
        if len(items) != len(texts):
            logger.warning(f"Expected {len(texts)} translated strings, got {len(items)}")
        results: List[Optional[str]] = []
        for index, text in enumerate(texts):
            value = items[index] if index < len(items) else None
            if value is not None:
                value = clean_translated_text(restore_placeholders(value, mappings[index]), text)
            results.append(value)
        return results

    async def translate_document(self, text: str, context: TranslationContext) -> Optional[str]:
        user_prompt = (
            "Translate the following document. Return only the translated document, "
            "without surrounding code fences or commentary.\n\n" + text
        )
        label = f"document ({context.target_locale})"
        translated = await self._complete(self.model_for(1), build_system_prompt(context), user_prompt, label)
        if not translated:
            return None
        if text.endswith("\n"):
            translated += "\n"
        return translated
