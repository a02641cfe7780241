"""Tests for answer autosave."""
import asyncio
from dataclasses import replace

import pytest

from homework_sync.errors import InvalidInput, PersistFailure
from homework_sync.responses import RESPONSE_KEY, RESPONSES, ResponseKey, ResponseSynchronizer, SaveState


@pytest.fixture
def sync(gateway, policy):
    return ResponseSynchronizer(gateway, policy)


@pytest.fixture
def mc(assignment):
    return assignment.get_question("q1")


@pytest.fixture
def tick(assignment):
    return assignment.get_question("q3")


KEY = ResponseKey("stu", "q1", 1)


async def test_save_stores_graded_response(sync, backend, mc):
    ack = await sync.save("stu", "q1", 1, "water and sunlight", mc, session_id="s1")
    assert ack.grade.is_correct is True
    assert ack.grade.points_earned == 5
    assert not ack.superseded
    rows = backend.rows(RESPONSES)
    assert len(rows) == 1
    assert rows[0]["is_correct"] == 1
    assert rows[0]["points_earned"] == 5
    assert rows[0]["session_id"] == "s1"
    assert sync.status(KEY) is SaveState.SAVED


async def test_tickbox_stored_as_json_selection(sync, backend, tick):
    await sync.save("stu", "q3", 1, ["Tree", "Flower"], tick)
    row = backend.rows(RESPONSES)[0]
    assert row["response_text"] == '["Tree", "Flower"]'
    assert row["answer_kind"] == "selection"
    assert row["is_correct"] == 0


async def test_tickbox_with_unusable_key_is_saved_incorrect(sync, backend, tick):
    keyed_by_objects = replace(tick, correct_answer=[{"text": "Tree"}, {"text": "Dog"}])
    ack = await sync.save("stu", "q3", 1, ["Tree", "Dog"], keyed_by_objects)
    assert ack.grade.is_correct is False
    assert backend.rows(RESPONSES)[0]["points_earned"] == 0


async def test_short_answer_stored_ungraded(sync, backend, assignment):
    await sync.save("stu", "q2", 1, "Fish", assignment.get_question("q2"))
    row = backend.rows(RESPONSES)[0]
    assert row["is_correct"] is None
    assert row["points_earned"] == 0


async def test_replayed_save_leaves_one_row(sync, backend, mc):
    await sync.save("stu", "q1", 1, "Only water", mc)
    await sync.save("stu", "q1", 1, "Only water", mc)
    rows = backend.rows(RESPONSES)
    assert len(rows) == 1
    assert rows[0]["response_text"] == "Only water"


async def test_later_answer_overwrites(sync, backend, mc):
    await sync.save("stu", "q1", 1, "Only water", mc)
    await sync.save("stu", "q1", 1, "Water and sunlight", mc)
    rows = backend.rows(RESPONSES)
    assert len(rows) == 1
    assert rows[0]["response_text"] == "Water and sunlight"
    assert rows[0]["is_correct"] == 1


async def test_slow_first_write_does_not_clobber_later_answer(sync, backend, mc):
    backend.delay("upsert", 0.1)
    first = asyncio.create_task(sync.save("stu", "q1", 1, "Only water", mc))
    await asyncio.sleep(0.01)
    second = await sync.save("stu", "q1", 1, "Water and sunlight", mc)
    await first
    assert second.revision > (await first).revision
    assert backend.rows(RESPONSES)[0]["response_text"] == "Water and sunlight"


async def test_queued_intermediate_answer_is_superseded(sync, backend, mc):
    backend.delay("upsert", 0.1)
    first = asyncio.create_task(sync.save("stu", "q1", 1, "Only water", mc))
    await asyncio.sleep(0.01)
    middle = asyncio.create_task(sync.save("stu", "q1", 1, "Only soil", mc))
    await asyncio.sleep(0.01)
    last = await sync.save("stu", "q1", 1, "Nothing", mc)
    assert (await middle).superseded
    assert not last.superseded
    await first
    assert backend.count("upsert") == 2
    assert backend.rows(RESPONSES)[0]["response_text"] == "Nothing"


async def test_failing_write_is_superseded_by_newer_answer(sync, backend, mc):
    backend.delay("upsert", 0.05)
    backend.fail("upsert")
    first = asyncio.create_task(sync.save("stu", "q1", 1, "Only water", mc))
    await asyncio.sleep(0.01)
    last = await sync.save("stu", "q1", 1, "Nothing", mc)
    assert (await first).superseded
    assert not last.superseded
    assert sync.status(KEY) is SaveState.SAVED
    assert backend.rows(RESPONSES)[0]["response_text"] == "Nothing"


async def test_older_revision_cannot_overwrite(sync, backend, mc):
    await sync.save("stu", "q1", 1, "Only water", mc)
    stale = dict(backend.rows(RESPONSES)[0])
    await sync.save("stu", "q1", 1, "Nothing", mc)
    stale.pop("id")
    landed = await backend.upsert(RESPONSES, stale, RESPONSE_KEY, version_field="revision")
    assert not landed
    assert backend.rows(RESPONSES)[0]["response_text"] == "Nothing"


async def test_lost_ack_is_retried_without_duplicates(sync, backend, mc):
    backend.lose_ack("upsert")
    ack = await sync.save("stu", "q1", 1, "Nothing", mc)
    assert not ack.superseded
    assert backend.count("upsert") == 2
    assert len(backend.rows(RESPONSES)) == 1


async def test_recovers_within_retry_bound(sync, backend, mc):
    backend.fail("upsert", times=2)
    await sync.save("stu", "q1", 1, "Nothing", mc)
    assert backend.count("upsert") == 3
    assert sync.status(KEY) is SaveState.SAVED


async def test_exhausted_retries_surface_failure(sync, backend, mc):
    seen = []
    sync.add_listener(lambda key, state, error: seen.append(state))
    backend.fail("upsert", times=3)
    with pytest.raises(PersistFailure) as exc_info:
        await sync.save("stu", "q1", 1, "Nothing", mc)
    assert exc_info.value.key == KEY
    assert backend.count("upsert") == 3
    assert sync.status(KEY) is SaveState.FAILED
    assert sync.failed_keys() == [KEY]
    assert seen == [SaveState.SAVING, SaveState.FAILED]


async def test_retry_failed_resends_latest_value(sync, backend, mc):
    backend.fail("upsert", times=3)
    with pytest.raises(PersistFailure):
        await sync.save("stu", "q1", 1, "Water and sunlight", mc)
    acks = await sync.retry_failed()
    assert len(acks) == 1
    assert sync.status(KEY) is SaveState.SAVED
    assert sync.failed_keys() == []
    row = backend.rows(RESPONSES)[0]
    assert row["response_text"] == "Water and sunlight"
    assert row["points_earned"] == 5


async def test_retry_failed_limited_to_keys(sync, backend, mc, tick):
    backend.fail("upsert", times=6)
    with pytest.raises(PersistFailure):
        await sync.save("stu", "q1", 1, "Nothing", mc)
    with pytest.raises(PersistFailure):
        await sync.save("stu", "q3", 1, ["Tree"], tick)
    await sync.retry_failed([KEY])
    assert sync.failed_keys() == [ResponseKey("stu", "q3", 1)]


async def test_new_save_clears_failed_state(sync, backend, mc):
    backend.fail("upsert", times=3)
    with pytest.raises(PersistFailure):
        await sync.save("stu", "q1", 1, "Only water", mc)
    await sync.save("stu", "q1", 1, "Nothing", mc)
    assert sync.status(KEY) is SaveState.SAVED


async def test_listener_errors_do_not_break_saves(sync, mc):
    def broken(key, state, error):
        raise RuntimeError("listener bug")

    sync.add_listener(broken)
    ack = await sync.save("stu", "q1", 1, "Nothing", mc)
    assert not ack.superseded


async def test_malformed_answer_is_invalid_input(sync, backend, tick):
    with pytest.raises(InvalidInput):
        await sync.save("stu", "q3", 1, 42, tick)
    assert backend.calls == []


async def test_question_mismatch_is_invalid_input(sync, backend, mc):
    with pytest.raises(InvalidInput):
        await sync.save("stu", "q3", 1, "Nothing", mc)
    assert backend.calls == []


@pytest.mark.parametrize("student, question, assignment_id", [
    ("", "q1", 1), ("stu", "", 1), ("stu", "q1", -1), ("stu", "q1", "x"),
])
async def test_bad_ids_are_invalid_input(sync, backend, mc, student, question, assignment_id):
    with pytest.raises(InvalidInput):
        await sync.save(student, question, assignment_id, "Nothing", mc)
    assert backend.calls == []


async def test_get_responses_decodes_by_kind(sync, assignment):
    await sync.save("stu", "q1", 1, "Nothing", assignment.get_question("q1"))
    await sync.save("stu", "q2", 1, '["not", "a", "list"]', assignment.get_question("q2"))
    await sync.save("stu", "q3", 1, ["Dog", "Tree"], assignment.get_question("q3"))
    responses = await sync.get_responses("stu", 1)
    assert responses == {
        "q1": "Nothing",
        "q2": '["not", "a", "list"]',
        "q3": ["Dog", "Tree"],
    }


async def test_get_responses_scoped_to_student(sync, mc):
    await sync.save("stu", "q1", 1, "Nothing", mc)
    await sync.save("other", "q1", 1, "Only soil", mc)
    assert await sync.get_responses("other", 1) == {"q1": "Only soil"}


async def test_load_answers_skips_unreadable_rows(sync, backend):
    await backend.insert(RESPONSES, {
        "student_id": "stu", "question_id": "q3", "assignment_id": 1,
        "response_text": "not json", "answer_kind": "selection",
    })
    assert await sync.load_answers("stu", 1) == {}


async def test_settle_waits_for_queued_writes(sync, backend, mc):
    backend.delay("upsert", 0.05)
    task = asyncio.create_task(sync.save("stu", "q1", 1, "Nothing", mc))
    await asyncio.sleep(0)
    await sync.settle()
    assert backend.rows(RESPONSES)[0]["response_text"] == "Nothing"
    await task
