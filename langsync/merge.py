"""Reconcile new translations with the existing target and run the after-translate hook."""
import importlib
import inspect
import logging
import re
import sys
import warnings
from typing import Callable, Dict, List, Optional

from langsync.errors import ConfigurationError, MergeConflictWarning

logger = logging.getLogger(__name__)

ARRAY_POLICIES = ("truncate", "retain")

_ARRAY_ELEMENT = re.compile(r"^(?P<prefix>.*)\[(?P<index>\d+)\]$")

HookFunction = Callable[..., object]


def _case_index(keys) -> Dict[str, str]:
    index = {}
    for key in keys:
        index.setdefault(key.lower(), key)
    return index


def _retained_array_elements(source_map: Dict[str, str], previous_target: Dict[str, str]) -> Dict[str, List[str]]:
    """Previous array elements beyond the current source length, grouped by the source key they follow."""
    last_element: Dict[str, str] = {}
    for key in source_map:
        match = _ARRAY_ELEMENT.match(key)
        if match:
            last_element[match.group("prefix")] = key

    retained: Dict[str, List[str]] = {}
    for key in previous_target:
        if key in source_map:
            continue
        match = _ARRAY_ELEMENT.match(key)
        if match and match.group("prefix") in last_element:
            retained.setdefault(last_element[match.group("prefix")], []).append(key)
    for keys in retained.values():
        keys.sort(key=lambda k: int(_ARRAY_ELEMENT.match(k).group("index")))
    return retained


def merge_translations(source_map: Dict[str, str], previous_target: Optional[Dict[str, str]],
                       translated: Dict[str, str], array_policy: str = "truncate") -> Dict[str, str]:
    """
    Build the new target map for one file and locale.

    Keys come out in source order and keys removed from the source are gone.
    Keys that were not translated this run keep their previous value, or stay
    absent when there is none. With ``array_policy="retain"`` previous array
    elements past the end of a shrunk source array are kept.
    """
    if array_policy not in ARRAY_POLICIES:
        raise ConfigurationError(f"Unknown array policy '{array_policy}'. Expected one of {', '.join(ARRAY_POLICIES)}")
    previous_target = previous_target or {}
    previous_by_case = _case_index(previous_target)
    retained = _retained_array_elements(source_map, previous_target) if array_policy == "retain" else {}

    merged: Dict[str, str] = {}
    for key in source_map:
        previous_key = key
        if key not in previous_target:
            other = previous_by_case.get(key.lower())
            if other is not None and other != key:
                warnings.warn(
                    f"Key '{key}' differs only in case from existing key '{other}'; keeping '{key}'",
                    MergeConflictWarning,
                    stacklevel=2,
                )
                previous_key = other

        if key in translated:
            merged[key] = translated[key]
        elif previous_key in previous_target:
            merged[key] = previous_target[previous_key]

        for extra in retained.get(key, []):
            merged[extra] = previous_target[extra]
    return merged


def merge_document(previous_text: Optional[str], translated_text: Optional[str]) -> Optional[str]:
    """Documents are replaced wholesale; no content produced keeps the previous text."""
    if translated_text:
        return translated_text
    return previous_text


def load_hook(hook_spec: str, search_path: Optional[str] = None) -> HookFunction:
    """Resolve ``package.module:function`` to a callable, also looking in ``search_path``."""
    module_name, _, function_name = hook_spec.partition(":")
    if not module_name or not function_name:
        raise ConfigurationError(f"Invalid hook '{hook_spec}'. Expected 'module:function'")
    if search_path and search_path not in sys.path:
        sys.path.append(search_path)
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise ConfigurationError(f"Could not import hook module '{module_name}': {exc}") from exc
    hook = getattr(module, function_name, None)
    if not callable(hook):
        raise ConfigurationError(f"Hook '{hook_spec}' is not a callable")
    return hook


async def run_after_translate_hook(hook: Optional[HookFunction], content: str, file_path: str) -> str:
    """Run a sync or async ``(content, file_path) -> content`` hook on serialized output."""
    if hook is None:
        return content
    result = hook(content=content, file_path=file_path)
    if inspect.isawaitable(result):
        result = await result
    if not isinstance(result, str):
        logger.warning(f"After-translate hook returned {type(result).__name__} for '{file_path}'; keeping original content")
        return content
    return result
