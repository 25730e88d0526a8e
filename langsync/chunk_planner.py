"""
Split the units of one request into chunks that fit a single model call.

Planning is a pure function of its inputs: the same units and thresholds always
produce the same chunks.
"""
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from langsync.models import TranslationUnit

Chunk = List[TranslationUnit]

# Locales whose translations usually need more output tokens than the source.
DEFAULT_LOCALE_FACTORS: Dict[str, float] = {
    "ja": 0.5,
    "zh": 0.5,
    "ko": 0.5,
    "th": 0.5,
    "ar": 0.75,
    "hi": 0.75,
    "ru": 0.75,
}


@dataclass
class ChunkThresholds:
    max_size: int = 6000
    max_keys: Optional[int] = None
    locale_factors: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_LOCALE_FACTORS))

    def max_size_for(self, locale: Optional[str]) -> int:
        """Size threshold for ``locale``, matching the full tag first, then the language."""
        if locale is None:
            return self.max_size
        factor = self.locale_factors.get(locale)
        if factor is None:
            factor = self.locale_factors.get(locale.replace("_", "-").split("-")[0], 1.0)
        return max(1, int(self.max_size * factor))


def unit_size(unit: TranslationUnit, measure: Callable[[str], int] = len) -> int:
    return measure(unit.key) + measure(unit.source_text)


def plan_chunks(units: List[TranslationUnit], max_size: int,
                measure: Callable[[str], int] = len,
                max_keys: Optional[int] = None) -> List[Chunk]:
    """
    Greedily pack units, in order, into chunks under ``max_size``.

    A unit larger than the threshold forms a chunk of its own. A unit whose
    identity was already planned is dropped, so the chunks partition the
    distinct units exactly.

    Raises:
        ValueError: If ``max_size`` or ``max_keys`` is not positive.
    """
    if max_size <= 0:
        raise ValueError(f"Chunk size threshold must be positive, got {max_size}")
    if max_keys is not None and max_keys <= 0:
        raise ValueError(f"Chunk key limit must be positive, got {max_keys}")

    chunks: List[Chunk] = []
    current: Chunk = []
    current_size = 0
    seen = set()
    for unit in units:
        if unit.identity in seen:
            continue
        seen.add(unit.identity)

        size = unit_size(unit, measure)
        full = current and (current_size + size > max_size or (max_keys is not None and len(current) >= max_keys))
        if full:
            chunks.append(current)
            current, current_size = [], 0
        current.append(unit)
        current_size += size
        if size > max_size:
            chunks.append(current)
            current, current_size = [], 0
    if current:
        chunks.append(current)
    return chunks


def plan_for_locale(units: List[TranslationUnit], thresholds: ChunkThresholds, locale: Optional[str] = None,
                    measure: Callable[[str], int] = len, whole_documents: bool = False) -> List[Chunk]:
    """Plan chunks for one locale; each whole-document unit always forms one chunk."""
    if whole_documents:
        seen = set()
        chunks = []
        for unit in units:
            if unit.identity not in seen:
                seen.add(unit.identity)
                chunks.append([unit])
        return chunks
    return plan_chunks(units, thresholds.max_size_for(locale), measure, thresholds.max_keys)
