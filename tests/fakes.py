"""In-process translation backends used across the test suite."""
import asyncio
from typing import Dict, List, Optional

from langsync.errors import TranslationBackendError
from langsync.translation_backend import TranslationBackend


def fake_translation(locale: str, text: str) -> str:
    return f"[{locale}] {text}"


class PrefixBackend(TranslationBackend):
    """
    Translates by prefixing the target locale.

    Keys in ``drop_once`` are left out of the first response that contains
    them; keys in ``drop_always`` are returned as null every time; locales in
    ``fail_locales`` raise like a backend whose retry budget is exhausted.
    """

    def __init__(self, drop_once=(), drop_always=(), fail_locales=(), delay: float = 0.0):
        self.drop_once = set(drop_once)
        self.drop_always = set(drop_always)
        self.fail_locales = set(fail_locales)
        self.delay = delay
        self.calls: List[tuple] = []
        self._dropped = set()

    async def _before_call(self, kind: str, locale: str, payload):
        self.calls.append((kind, locale, payload))
        if self.delay:
            await asyncio.sleep(self.delay)
        if locale in self.fail_locales:
            raise TranslationBackendError(f"{kind} request for {locale} failed after 4 attempts")

    def _translate(self, key: str, text: str, locale: str) -> Optional[str]:
        if key in self.drop_always:
            return None
        if key in self.drop_once and key not in self._dropped:
            self._dropped.add(key)
            return None
        return fake_translation(locale, text)

    async def translate_keys(self, units, context) -> Dict[str, Optional[str]]:
        await self._before_call("keys", context.target_locale, [unit.key for unit in units])
        results = {}
        for unit in units:
            value = self._translate(unit.key, unit.source_text, context.target_locale)
            if value is not None:
                results[unit.key] = value
        return results

    async def translate_strings(self, texts, context) -> List[Optional[str]]:
        await self._before_call("strings", context.target_locale, list(texts))
        return [self._translate(text, text, context.target_locale) for text in texts]

    async def translate_document(self, text, context) -> Optional[str]:
        await self._before_call("document", context.target_locale, text)
        return fake_translation(context.target_locale, text)

    def keys_requested(self, locale: Optional[str] = None) -> List[List[str]]:
        return [payload for kind, call_locale, payload in self.calls
                if kind == "keys" and (locale is None or call_locale == locale)]


class ScriptedBackend(TranslationBackend):
    """Returns queued responses for ``translate_keys``; queued exceptions are raised."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests: List[List[str]] = []

    async def translate_keys(self, units, context):
        self.requests.append([unit.key for unit in units])
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        if callable(response):
            return await response(units)
        return response

    async def translate_strings(self, texts, context):
        raise NotImplementedError

    async def translate_document(self, text, context):
        raise NotImplementedError
