import pytest

from engine.fuzzer import (
    fuzzy_score,
    normalize_title_key,
    query_variants,
    split_multi_target,
    transliterate,
)


def test_split_multi_target_on_semicolons():
    assert split_multi_target("Task A; Task B") == ["Task A", "Task B"]


def test_split_multi_target_keeps_single_comma_phrase_together():
    assert split_multi_target("buy milk, call mom") == ["buy milk, call mom"]


def test_split_multi_target_plural_list_strips_leading_verbs():
    assert split_multi_target("delete tasks: milk, bread and eggs") == ["milk", "bread", "eggs"]


def test_split_multi_target_dedupes_and_handles_empty():
    assert split_multi_target("milk; milk") == ["milk"]
    assert split_multi_target("   ") == []


def test_query_variants_strip_quotes_and_spaces():
    variants = query_variants('"Buy milk"')
    assert variants[0] == '"Buy milk"'
    assert "Buy milk" in variants
    assert "Buymilk" in variants
    assert len(variants) <= 5
    assert query_variants("") == []


def test_query_variants_add_transliteration():
    assert "moloko" in query_variants("молоко")


def test_transliterate_and_title_key():
    assert transliterate("Привет") == "privet"
    assert normalize_title_key("  Dark   Mode! ") == "dark mode"
    assert normalize_title_key("dark_mode") == "darkmode"


def test_fuzzy_score_exact_token_is_full_match():
    assert fuzzy_score("milk", "Buy milk") == pytest.approx(1.0)


def test_fuzzy_score_ignores_filler_and_short_tokens():
    assert fuzzy_score("Task A", "Task B") == 0.0
    assert fuzzy_score("", "Buy milk") == 0.0


def test_fuzzy_score_tolerates_typos():
    assert fuzzy_score("molko", "Buy milk") > fuzzy_score("molko", "Plan trip")
