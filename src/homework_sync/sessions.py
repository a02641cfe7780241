"""Homework session resumption and creation."""
import asyncio
import logging
from uuid import uuid4

from homework_sync.errors import TransientFailure
from homework_sync.gateway import RetryPolicy, StoreGateway
from homework_sync.models import Session, session_from_record, utc_now
from homework_sync.tasks import BackgroundTasks
from homework_sync.validation import parse_assignment_id, require_id

logger = logging.getLogger(__name__)

SESSIONS = "homework_sessions"
SESSION_KEY = ("student_id", "assignment_id")


class SessionManager:
    """Get-or-create for the single session of each (student, assignment) pair."""

    def __init__(self, gateway: StoreGateway, policy: RetryPolicy, tasks: BackgroundTasks) -> None:
        self.gateway = gateway
        self.policy = policy
        self.tasks = tasks
        self._inflight: dict[tuple[str, int], asyncio.Task] = {}

    async def get_or_create(self, student_id: str, assignment_id: int | str) -> Session:
        """Return the student's session for the assignment, creating it on first access.

        Concurrent calls for the same pair share one lookup. A lookup that
        keeps failing raises ``TransientFailure`` rather than creating a fresh
        session that would shadow an existing one.
        """
        student_id = require_id(student_id, "student ID")
        number = parse_assignment_id(assignment_id)
        key = (student_id, number)
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._get_or_create(student_id, number))
            self._inflight[key] = task
            task.add_done_callback(lambda _: self._inflight.pop(key, None))
        return await asyncio.shield(task)

    async def find(self, student_id: str, assignment_id: int | str) -> Session | None:
        """Return the existing session for the pair, or ``None``. Never creates one."""
        student_id = require_id(student_id, "student ID")
        number = parse_assignment_id(assignment_id)
        row = await self._lookup({"student_id": student_id, "assignment_id": number})
        if row is None:
            return None
        self.tasks.spawn(self._touch(row["id"]), name=f"touch-session:{row['id']}")
        return session_from_record(row)

    async def _lookup(self, filters: dict) -> dict | None:
        async for attempt in self.policy.retrying():
            with attempt:
                row = await self.gateway.fetch_one(SESSIONS, filters)
        return row

    async def _get_or_create(self, student_id: str, assignment_id: int) -> Session:
        filters = {"student_id": student_id, "assignment_id": assignment_id}
        row = await self._lookup(filters)
        if row is not None:
            self.tasks.spawn(self._touch(row["id"]), name=f"touch-session:{row['id']}")
            return session_from_record(row)

        now = utc_now()
        record = {
            "id": str(uuid4()),
            "student_id": student_id,
            "assignment_id": assignment_id,
            "current_question_index": 0,
            "is_completed": 0,
            "started_at": now,
            "last_activity": now,
            "completed_at": None,
        }
        async for attempt in self.policy.retrying():
            with attempt:
                created = await self.gateway.upsert(SESSIONS, record, SESSION_KEY, ignore_duplicates=True)
        if created:
            logger.info("Created session %s for %s on assignment %s", record["id"], student_id, assignment_id)
            return session_from_record(record)

        # Someone else created it first (or an earlier attempt of ours landed); use the stored row.
        row = await self._lookup(filters)
        if row is None:
            raise TransientFailure(f"Session for assignment {assignment_id} could not be read back")
        return session_from_record(row)

    async def _touch(self, session_id: str) -> None:
        try:
            async for attempt in self.policy.retrying():
                with attempt:
                    await self.gateway.update(SESSIONS, {"id": session_id}, {"last_activity": utc_now()})
        except TransientFailure as exc:
            logger.warning("Could not update last activity for session %s: %s", session_id, exc)
