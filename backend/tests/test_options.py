import asyncio

import pytest

from engine.fields import split_long_title
from engine.options import (
    UNSET,
    FieldPolicy,
    match_many,
    match_option,
    merge_values,
    normalize_option_key,
    resolve_field,
)
from engine.phrases import PRIORITY_ALIASES, SOCIAL_PLATFORM_ALIASES, SOCIAL_STATUS_ALIASES, TASK_STATUS_ALIASES

PRIORITIES = ["Low", "Med", "High"]


def test_match_option_exact_key_and_alias():
    assert match_option("high", PRIORITIES).value == "High"
    assert match_option("In-Progress", ["Idle", "In progress", "Done"]).value == "In progress"
    assert match_option("medium", PRIORITIES, PRIORITY_ALIASES).value == "Med"
    assert match_option("facebook", ["TG", "FB"], SOCIAL_PLATFORM_ALIASES).value == "FB"


def test_match_option_unknown_and_empty():
    result = match_option("Unknown", ["Alpha"])
    assert result.value is None
    assert result.unknown == "Unknown"
    assert match_option("x", []).unknown == "x"
    assert match_option(None, PRIORITIES) == (None, None)
    assert match_option("  ", PRIORITIES) == (None, None)


def test_match_many_collects_unknowns_without_duplicates():
    result = match_many(["dev", "Nope", "DEV"], ["Dev", "Design"])
    assert result.values == ["Dev"]
    assert result.unknown == ["Nope"]


def test_merge_values_is_case_insensitive():
    assert merge_values(["Design", "Dev"], ["dev", "Ops"]) == ["Design", "Dev", "Ops"]
    assert normalize_option_key("Post Idea!") == "postidea"


def test_resolve_field_drop_policy():
    async def _run():
        options = ["Dev", "Design"]
        assert await resolve_field({"tags": ["Dev", "Unknown"]}, "tags", options, multi=True) == ["Dev"]
        assert await resolve_field({"tags": ["Unknown"]}, "tags", options, multi=True) is UNSET
        assert await resolve_field({"tags": None}, "tags", options, multi=True) is None
        assert await resolve_field({"tags": []}, "tags", options, multi=True) == []
        assert await resolve_field({}, "tags", options, multi=True) is UNSET

    asyncio.run(_run())


def test_resolve_field_free_text_and_create_policies():
    async def _run():
        assert await resolve_field({"project": "New"}, "project", ["Bot"], policy=FieldPolicy.free_text) == "New"

        created = []

        async def _create(names):
            created.extend(names)
            return [n.title() for n in names]

        value = await resolve_field(
            {"tags": ["Dev", "urgent"]}, "tags", ["Dev"], multi=True,
            policy=FieldPolicy.create, create_options=_create,
        )
        assert value == ["Dev", "Urgent"]
        assert created == ["urgent"]

    asyncio.run(_run())


@pytest.mark.parametrize(
    "options, aliases",
    [
        (PRIORITIES, PRIORITY_ALIASES),
        (["Low", "Medium", "High", "Urgent"], PRIORITY_ALIASES),
        (["Idle", "In progress", "Done", "Deprecated"], TASK_STATUS_ALIASES),
        (["Not started", "Draft", "Scheduled", "Published"], SOCIAL_STATUS_ALIASES),
        (["TG", "FB", "Instagram", "YouTube", "X (Twitter)"], SOCIAL_PLATFORM_ALIASES),
    ],
)
def test_match_option_keeps_canonical_values(options, aliases):
    for option in options:
        assert match_option(option, options, aliases) == (option, None)
        assert match_option(option, options) == (option, None)
    assert match_many(options, options, aliases).values == options


def test_split_long_title():
    assert split_long_title("Buy milk", 120) == ("Buy milk", None)
    assert split_long_title("Write the quarterly report for finance", 20) == (
        "Write the quarterly…",
        "Write the quarterly report for finance",
    )
    assert split_long_title("x" * 30, 10) == ("x" * 9 + "…", "x" * 30)
