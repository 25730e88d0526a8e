from typing import Set, Tuple, List
import re
from collections import Counter

# {0}, {name}, {count, plural, ...} heads, and printf-style %s, %1$@, %.2f, %d
_BRACE_PLACEHOLDER = re.compile(r"\{\s*([A-Za-z_][\w.]*|\d+)\s*[,}]")
_PRINTF_PLACEHOLDER = re.compile(r'%(?:\d+\$)?[-+#0]*\d*(?:\.\d+)?(?:hh|h|ll|l|L|z|j|t)?[@dDiuUoOxXfFeEgGaAcCsSp]')
_MOJIBAKE = re.compile(r'Ã[\x80-\xff]')


def check_key_coverage(base_keys: Set[str], target_keys: Set[str]) -> Tuple[Set[str], Set[str]]:
    """
    Compares the keys of a target locale against the source locale.

    Args:
        base_keys: Keys present in the source document.
        target_keys: Keys present in the target document.

    Returns:
        A tuple containing two sets:
        - missing_keys: Keys present in the source but missing from the target.
        - extra_keys: Keys present in the target but absent from the source.
    """
    missing_keys = base_keys - target_keys
    extra_keys = target_keys - base_keys
    return missing_keys, extra_keys


def _placeholders(text: str) -> Counter:
    names = _BRACE_PLACEHOLDER.findall(text)
    return Counter(names) + Counter(_PRINTF_PLACEHOLDER.findall(text))


def check_placeholder_parity(base_string: str, target_string: str) -> bool:
    """
    Checks if the placeholders are identical between a source and a target string.

    Brace placeholders ({0}, {name}) and printf-style ones (%s, %1$@, %d) are
    compared as multisets, so reordering is allowed.

    Args:
        base_string: The source string.
        target_string: The translated string.

    Returns:
        True if both strings carry the same placeholders, False otherwise.
    """
    return _placeholders(base_string) == _placeholders(target_string)


def check_encoding_and_mojibake(text: str, label: str = "text") -> List[str]:
    """
    Checks text for common mojibake patterns.

    Args:
        text: The text to check.
        label: How to refer to the text in error messages.

    Returns:
        A list of string error messages. An empty list means the text is valid.
    """
    errors = []

    # 'Ã' followed by a character in 0x80-0xFF is a strong indicator of UTF-8
    # text decoded as latin-1 or cp1252.
    if _MOJIBAKE.search(text):
        errors.append(f"Potential mojibake detected in {label}. Found patterns like 'Ã¼', 'Ã¤', etc.")

    if '\uFFFD' in text:
        errors.append(f"{label} contains the Unicode replacement character (\uFFFD), indicating an encoding error.")

    return errors


def validate_translation(source_text: str, translated_text: str, key: str = "") -> List[str]:
    """Per-key checks run on every model result before it is accepted."""
    label = f"translation of '{key}'" if key else "translation"
    errors = check_encoding_and_mojibake(translated_text, label)
    if not check_placeholder_parity(source_text, translated_text):
        errors.append(f"Placeholder mismatch in {label}.")
    return errors
