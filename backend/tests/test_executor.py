import asyncio
from unittest.mock import AsyncMock

import httpx

from common.notion import NotionAPIError
from engine.autofill import (
    build_autofill_patch,
    clamp_rating,
    infer_context,
    infer_energy,
    infer_journal_fields,
    infer_mood,
    infer_topics,
    infer_type,
)
from engine.errors import DomainMutationFailure
from engine.executor import ActionExecutor
from engine.kinds import ActionKind, Domain, PendingAction


def _seed(store, *records):
    for record in records:
        store.records[record["id"]] = {"active": True, **record}


def _updates(store):
    return [c for c in store.calls if c[0] == "update"]


def _execute(stores, kind, payload, follow_up_queue=None, debug=False):
    action = PendingAction(kind=kind, payload=payload, action_id="act_1", follow_up_queue=follow_up_queue)
    return asyncio.run(ActionExecutor(stores, debug).execute(action))


def test_infer_journal_fields_from_text():
    assert infer_type("Great day at work") == "Daily summary"
    assert infer_type("just a thought") == "Thought"
    assert infer_topics("Great day at work") == ["Daily summary", "Work"]
    assert infer_topics("nothing special") == ["Daily summary"]
    assert infer_context("worked from home") == ["home"]
    assert infer_context("nothing special") == ["unspecified"]
    assert infer_mood("Great day at work") == 4
    assert infer_mood("terrible, awful evening") == 1
    assert infer_energy("so tired today") == 2
    assert infer_energy("nothing special") == 3


def test_clamp_rating():
    assert clamp_rating(7) == 5
    assert clamp_rating("0") == 1
    assert clamp_rating(3.4) == 3
    assert clamp_rating("high") is None
    assert clamp_rating(True) is None
    assert clamp_rating(None) is None


def test_build_autofill_patch_fills_only_empty_fields():
    entry = {"type": "Thought", "topics": [], "context": None, "mood": 2, "energy": None}
    inferred = infer_journal_fields("Great day at work")

    patch = build_autofill_patch(entry, inferred, overwrite=False)
    assert set(patch) == {"topics", "context", "energy"}

    assert build_autofill_patch(entry, inferred, overwrite=True) == inferred


def test_create_appends_description(stores):
    result = _execute(
        stores,
        ActionKind.create_task,
        {"fields": {"title": "Write report", "status": "Idle"}, "title": "Write report", "description": "Q3 numbers"},
    )
    assert result.ok is True
    assert result.message == 'Created: "Write report".'
    assert stores[Domain.task].calls == [
        ("create", {"title": "Write report", "status": "Idle"}),
        ("append_description", "new_1", "Q3 numbers"),
    ]


def test_create_applies_option_requests_first(stores):
    result = _execute(
        stores,
        ActionKind.create_idea,
        {"fields": {"title": "Voice notes", "tags": ["Voice"]}, "title": "Voice notes", "ensure_options": {"tags": ["Voice"]}},
    )
    assert result.ok is True
    calls = stores[Domain.idea].calls
    assert calls[0] == ("ensure_options", "tags", ["Voice"])
    assert calls[1] == ("create", {"title": "Voice notes", "tags": ["Voice"]})
    assert "Voice" in stores[Domain.idea].options["tags"]


def test_update_idea_merges_tags(stores):
    store = stores[Domain.idea]
    _seed(store, {"id": "idea_1", "title": "Bot ideas", "tags": ["Design"]})
    _execute(
        stores,
        ActionKind.update_idea,
        {"page_id": "idea_1", "title": "Bot ideas", "patch": {"tags": ["Dev", "design"]}, "merge": {"tags": True}},
    )
    assert _updates(store) == [("update", "idea_1", {"tags": ["Design", "Dev"]})]


def test_update_idea_replaces_tags_without_merge_flag(stores):
    store = stores[Domain.idea]
    _seed(store, {"id": "idea_1", "title": "Bot ideas", "tags": ["Design"]})
    _execute(stores, ActionKind.update_idea, {"page_id": "idea_1", "title": "Bot ideas", "patch": {"tags": ["Dev"]}})
    assert _updates(store) == [("update", "idea_1", {"tags": ["Dev"]})]


def test_update_journal_autofill_fills_empty_fields(stores):
    store = stores[Domain.journal]
    _seed(
        store,
        {"id": "j1", "title": "Great day at work", "type": "Thought", "topics": [], "context": [], "mood": None, "energy": None},
    )
    result = _execute(
        stores,
        ActionKind.update_journal_entry,
        {"page_id": "j1", "title": "Great day at work", "patch": {}, "autofill": True, "overwrite": False, "source_text": ""},
    )
    assert result.ok is True
    assert _updates(store) == [
        (
            "update",
            "j1",
            {"topics": ["Daily summary", "Work"], "context": ["unspecified"], "mood": 4, "energy": 3},
        )
    ]
    assert ("ensure_options", "context", ["unspecified"]) in store.calls


def test_update_journal_autofill_overwrite_keeps_explicit_patch(stores):
    store = stores[Domain.journal]
    _seed(
        store,
        {"id": "j1", "title": "Great day at work", "type": "Thought", "topics": ["Work"], "context": ["office"], "mood": 2, "energy": 2},
    )
    _execute(
        stores,
        ActionKind.update_journal_entry,
        {"page_id": "j1", "title": "Great day at work", "patch": {"energy": 5}, "autofill": True, "overwrite": True},
    )
    (_, _, patch), = _updates(store)
    assert patch["type"] == "Daily summary"
    assert patch["mood"] == 4
    assert patch["energy"] == 5


def test_mark_done_and_move_to_deprecated(stores):
    store = stores[Domain.task]
    _seed(store, {"id": "t1", "title": "Buy milk"}, {"id": "t2", "title": "Old task"})

    done = _execute(stores, ActionKind.mark_done, {"page_id": "t1", "title": "Buy milk"})
    assert done.message == 'Done: "Buy milk".'
    assert done.record_id == "t1"

    moved = _execute(stores, ActionKind.move_to_deprecated, {"page_id": "t2", "title": "Old task"})
    assert moved.message == 'Moved to Deprecated: "Old task".'
    assert store.calls == [("mark_done", "t1"), ("move_to_deprecated", "t2")]


def test_follow_up_queue_only_for_batch_kinds(stores):
    _seed(stores[Domain.task], {"id": "t1", "title": "Buy milk"})
    _seed(stores[Domain.idea], {"id": "i1", "title": "Dark mode"})

    batch = _execute(stores, ActionKind.mark_done, {"page_id": "t1", "title": "Buy milk"}, ["Beta"])
    assert batch.follow_up_queue == ["Beta"]

    other = _execute(stores, ActionKind.archive_idea, {"page_id": "i1", "title": "Dark mode"}, ["Beta"])
    assert other.message == 'Archived: "Dark mode".'
    assert other.follow_up_queue == []


def test_store_failure_is_reported_not_raised(stores):
    stores[Domain.task].mark_done = AsyncMock(
        side_effect=NotionAPIError(404, "object_not_found", "Could not find page", "req_1")
    )
    result = _execute(stores, ActionKind.mark_done, {"page_id": "t1", "title": "Buy milk"})
    assert result.ok is False
    assert result.message == "Could not complete the action: the record was not found."

    debug = _execute(stores, ActionKind.mark_done, {"page_id": "t1", "title": "Buy milk"}, debug=True)
    assert "status=404" in debug.message
    assert "request_id=req_1" in debug.message


def test_missing_target_is_a_failure(stores):
    result = _execute(stores, ActionKind.archive_idea, {"title": "Dark mode"})
    assert result.ok is False
    assert stores[Domain.idea].calls == []


def test_domain_mutation_failure_from_httpx_errors():
    request = httpx.Request("PATCH", "https://api.notion.com/v1/pages/t1")
    response = httpx.Response(429, request=request, headers={"x-request-id": "req_9"})
    failure = DomainMutationFailure.from_exception(
        httpx.HTTPStatusError("rate limited", request=request, response=response)
    )
    assert failure.status == 429
    assert failure.request_id == "req_9"
    assert failure.short_reason == "the record store is busy, try again"

    timeout = DomainMutationFailure.from_exception(httpx.ReadTimeout("slow", request=request))
    assert timeout.message == "timeout"
    assert timeout.user_message() == "Could not complete the action: the record store is unavailable."
