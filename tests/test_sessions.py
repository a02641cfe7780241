"""Tests for session get-or-create."""
import asyncio

import pytest

from homework_sync.errors import InvalidInput, TransientFailure
from homework_sync.gateway import StoreGateway
from homework_sync.sessions import SESSIONS, SessionManager


@pytest.fixture
def manager(gateway, policy, tasks):
    return SessionManager(gateway, policy, tasks)


async def test_creates_session_on_first_access(manager, backend):
    session = await manager.get_or_create("stu", 1)
    assert session.current_question_index == 0
    assert session.is_completed is False
    assert [r["id"] for r in backend.rows(SESSIONS)] == [session.id]


async def test_resumes_existing_session(manager, backend, tasks):
    first = await manager.get_or_create("stu", 1)
    await backend.update(SESSIONS, {"id": first.id}, {"current_question_index": 2})
    again = await manager.get_or_create("stu", "1")
    await tasks.drain()
    assert again.id == first.id
    assert again.current_question_index == 2
    assert len(backend.rows(SESSIONS)) == 1


async def test_resume_touches_last_activity(manager, backend, tasks):
    first = await manager.get_or_create("stu", 1)
    await backend.update(SESSIONS, {"id": first.id}, {"last_activity": "2000-01-01T00:00:00+00:00"})
    await manager.get_or_create("stu", 1)
    await tasks.drain()
    assert backend.rows(SESSIONS)[0]["last_activity"] != "2000-01-01T00:00:00+00:00"


async def test_concurrent_calls_share_one_session(manager, backend):
    backend.delay("fetch_one", 0.05)
    sessions = await asyncio.gather(*(manager.get_or_create("stu", 1) for _ in range(5)))
    assert len({s.id for s in sessions}) == 1
    assert len(backend.rows(SESSIONS)) == 1
    assert backend.count("fetch_one", SESSIONS) == 1


async def test_separate_managers_converge_on_one_session(backend, policy, tasks):
    backend.delay("fetch_one", 0.05, 0.05)
    gateway = StoreGateway(backend, timeout=1.0)
    a = SessionManager(gateway, policy, tasks)
    b = SessionManager(gateway, policy, tasks)
    first, second = await asyncio.gather(a.get_or_create("stu", 1), b.get_or_create("stu", 1))
    assert first.id == second.id
    assert len(backend.rows(SESSIONS)) == 1


async def test_lost_create_ack_does_not_duplicate(manager, backend):
    backend.lose_ack("upsert")
    session = await manager.get_or_create("stu", 1)
    rows = backend.rows(SESSIONS)
    assert len(rows) == 1
    assert rows[0]["id"] == session.id


async def test_lookup_failure_creates_nothing(manager, backend):
    backend.fail("fetch_one", times=3)
    with pytest.raises(TransientFailure):
        await manager.get_or_create("stu", 1)
    assert backend.rows(SESSIONS) == []
    assert backend.count("upsert") == 0


async def test_lookup_recovers_within_retry_bound(manager, backend):
    backend.fail("fetch_one", times=2)
    session = await manager.get_or_create("stu", 1)
    assert session.student_id == "stu"


@pytest.mark.parametrize("student, assignment", [("", 1), (None, 1), ("stu", 0), ("stu", "abc")])
async def test_invalid_ids_rejected(manager, backend, student, assignment):
    with pytest.raises(InvalidInput):
        await manager.get_or_create(student, assignment)
    assert backend.calls == []


async def test_touch_failure_is_not_raised(manager, backend, tasks):
    await manager.get_or_create("stu", 1)
    backend.fail("update", times=3)
    session = await manager.get_or_create("stu", 1)
    await tasks.drain()
    assert session.student_id == "stu"


async def test_find_never_creates(manager, backend):
    assert await manager.find("stu", 1) is None
    assert backend.rows(SESSIONS) == []
    created = await manager.get_or_create("stu", 1)
    found = await manager.find("stu", "1")
    assert found.id == created.id
