"""Throttled, non-blocking persistence of the current question index."""
import asyncio
import logging
from dataclasses import dataclass

from homework_sync.errors import InvalidInput, TransientFailure
from homework_sync.gateway import RetryPolicy, StoreGateway
from homework_sync.models import utc_now
from homework_sync.sessions import SESSIONS
from homework_sync.tasks import BackgroundTasks
from homework_sync.validation import require_id

logger = logging.getLogger(__name__)


@dataclass
class _Progress:
    target: int = -1     # furthest index requested
    persisted: int = -1  # furthest index known to be durable
    flushing: bool = False
    lagging: bool = False


class ProgressTracker:
    """Records navigation immediately and writes it to the session record in the background.

    The persisted index is a high-water mark: going back a question does not
    lower it. Indexes requested within ``throttle`` seconds of each other
    collapse into a single write of the latest one, and each session has at
    most one write in flight.
    """

    def __init__(
        self,
        gateway: StoreGateway,
        policy: RetryPolicy,
        tasks: BackgroundTasks,
        throttle: float = 0.5,
    ) -> None:
        self.gateway = gateway
        self.policy = policy
        self.tasks = tasks
        self.throttle = throttle
        self._sessions: dict[str, _Progress] = {}

    def advance(self, session_id: str, new_index: int) -> None:
        session_id = require_id(session_id, "session ID")
        if isinstance(new_index, bool) or not isinstance(new_index, int) or new_index < 0:
            raise InvalidInput(f"Invalid question index: {new_index!r}")
        progress = self._sessions.setdefault(session_id, _Progress())
        progress.target = max(progress.target, new_index)
        if progress.target > progress.persisted and not progress.flushing:
            progress.flushing = True
            self.tasks.spawn(self._flush(session_id, progress), name=f"progress:{session_id}")

    def record_durable(self, session_id: str, index: int) -> None:
        """Note an index read back from the store, so it is not written again."""
        progress = self._sessions.setdefault(session_id, _Progress())
        progress.persisted = max(progress.persisted, index)

    def known_index(self, session_id: str) -> int | None:
        progress = self._sessions.get(session_id)
        if progress is None:
            return None
        index = max(progress.target, progress.persisted)
        return index if index >= 0 else None

    def is_lagging(self, session_id: str) -> bool:
        progress = self._sessions.get(session_id)
        return bool(progress and progress.lagging)

    async def _flush(self, session_id: str, progress: _Progress) -> None:
        try:
            while True:
                await asyncio.sleep(self.throttle)
                index = progress.target
                try:
                    async for attempt in self.policy.retrying():
                        with attempt:
                            await self.gateway.update(
                                SESSIONS,
                                {"id": session_id},
                                {"current_question_index": index, "last_activity": utc_now()},
                                monotonic_field="current_question_index",
                            )
                except TransientFailure as exc:
                    progress.lagging = True
                    logger.warning("Progress for session %s stuck at %d (wanted %d): %s",
                                   session_id, progress.persisted, index, exc)
                    return
                progress.persisted = max(progress.persisted, index)
                progress.lagging = False
                if progress.target <= index:
                    return
        finally:
            progress.flushing = False
