import pytest

from langsync.chunk_planner import ChunkThresholds, plan_chunks, plan_for_locale, unit_size
from langsync.models import TranslationUnit


def _unit(key, size, source_file="en.json"):
    # unit_size counts the key too
    return TranslationUnit(key=key, source_text="x" * (size - len(key)), source_file=source_file)


def test_unit_size_counts_key_and_text():
    assert unit_size(TranslationUnit("ab", "cde")) == 5
    assert unit_size(TranslationUnit("ab", "cde"), measure=lambda text: 1) == 2


def test_units_are_packed_greedily_in_order():
    units = [_unit("k1", 10), _unit("k2", 10), _unit("k3", 10)]
    chunks = plan_chunks(units, max_size=25)
    assert [[unit.key for unit in chunk] for chunk in chunks] == [["k1", "k2"], ["k3"]]


def test_oversized_unit_forms_its_own_chunk():
    units = [_unit("k1", 10), _unit("big", 50), _unit("k3", 10)]
    chunks = plan_chunks(units, max_size=25)
    assert [[unit.key for unit in chunk] for chunk in chunks] == [["k1"], ["big"], ["k3"]]


def test_key_limit():
    units = [_unit(f"k{i}", 3) for i in range(5)]
    chunks = plan_chunks(units, max_size=1000, max_keys=2)
    assert [len(chunk) for chunk in chunks] == [2, 2, 1]


def test_chunks_partition_distinct_units():
    units = [_unit("a", 5), _unit("a", 5), _unit("a", 5, source_file="other.json"), _unit("b", 5)]
    chunks = plan_chunks(units, max_size=12)
    planned = [unit.identity for chunk in chunks for unit in chunk]
    assert planned == [("en.json", "a"), ("other.json", "a"), ("en.json", "b")]


def test_planning_is_deterministic():
    units = [_unit(f"k{i}", 7 + i) for i in range(20)]
    assert plan_chunks(units, 30) == plan_chunks(list(units), 30)


def test_empty_input():
    assert plan_chunks([], 10) == []


@pytest.mark.parametrize("max_size, max_keys", [(0, None), (-5, None), (10, 0)])
def test_non_positive_thresholds_are_rejected(max_size, max_keys):
    with pytest.raises(ValueError):
        plan_chunks([_unit("a", 5)], max_size, max_keys=max_keys)


def test_locale_factors():
    thresholds = ChunkThresholds(max_size=6000)
    assert thresholds.max_size_for(None) == 6000
    assert thresholds.max_size_for("fr") == 6000
    assert thresholds.max_size_for("ja") == 3000
    assert thresholds.max_size_for("zh-TW") == 3000
    assert thresholds.max_size_for("ru_RU") == 4500

    custom = ChunkThresholds(max_size=100, locale_factors={"pt-BR": 0.5})
    assert custom.max_size_for("pt-BR") == 50
    assert custom.max_size_for("pt") == 100


def test_plan_for_locale_uses_the_locale_threshold():
    units = [_unit(f"k{i}", 40) for i in range(4)]
    thresholds = ChunkThresholds(max_size=100)
    assert len(plan_for_locale(units, thresholds, "fr")) == 2
    assert len(plan_for_locale(units, thresholds, "ja")) == 4


def test_whole_documents_are_never_combined():
    units = [_unit("content", 10, "a.md"), _unit("content", 10, "b.md"), _unit("content", 10, "a.md")]
    chunks = plan_for_locale(units, ChunkThresholds(max_size=1000), "fr", whole_documents=True)
    assert [[unit.source_file for unit in chunk] for chunk in chunks] == [["a.md"], ["b.md"]]
