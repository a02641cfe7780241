"""Final submission of a homework assignment."""
import logging
from dataclasses import dataclass

from homework_sync.assignments import AssignmentLoader
from homework_sync.errors import InvalidInput, PartialFailure, TransientFailure
from homework_sync.gateway import RetryPolicy, StoreGateway
from homework_sync.models import Submission, submission_from_record, submission_to_record, utc_now
from homework_sync.responses import fetch_responses
from homework_sync.sessions import SESSIONS
from homework_sync.tasks import BackgroundTasks
from homework_sync.validation import parse_assignment_id, require_id

logger = logging.getLogger(__name__)

SUBMISSIONS = "submissions"
SUBMISSION_KEY = ("student_id", "assignment_id")

STEP_SUBMISSION = "submission"
STEP_SESSION = "session"


@dataclass(frozen=True)
class SubmissionResult:
    submission: Submission
    session_completed: bool  # False while the completion flag is still being retried


class SubmissionCoordinator:
    """Writes the submission record, then marks the session complete.

    The score-bearing submission record goes first. If it cannot be written
    the session is left open and ``PartialFailure(step="submission")`` is
    raised so the student can retry. Once it is written the submission
    stands; a failure to flag the session complete is retried in the
    background instead of being reported as a failed submission.
    """

    def __init__(
        self,
        gateway: StoreGateway,
        policy: RetryPolicy,
        tasks: BackgroundTasks,
        loader: AssignmentLoader,
        background_attempts: int = 5,
    ) -> None:
        self.gateway = gateway
        self.policy = policy
        self.tasks = tasks
        self.loader = loader
        self.background_attempts = background_attempts

    async def submit(
        self,
        student_id: str,
        assignment_id: int | str,
        session_id: str,
        current_index: int,
        *,
        total_points: int | None = None,
    ) -> SubmissionResult:
        student_id = require_id(student_id, "student ID")
        session_id = require_id(session_id, "session ID")
        number = parse_assignment_id(assignment_id)
        if isinstance(current_index, bool) or not isinstance(current_index, int) or current_index < 0:
            raise InvalidInput(f"Invalid question index: {current_index!r}")

        try:
            if total_points is None:
                total_points = (await self.loader.load(number)).total_points
            responses = await fetch_responses(self.gateway, self.policy, student_id, number)
        except TransientFailure as exc:
            raise PartialFailure(STEP_SUBMISSION, (), exc) from exc

        earned = sum(r.points_earned for r in responses)
        submission = Submission(
            student_id=student_id,
            assignment_id=number,
            score=round(earned / total_points, 4) if total_points else 0.0,
            points_earned=earned,
            total_points=total_points,
            submitted_at=utc_now(),
        )
        try:
            async for attempt in self.policy.retrying():
                with attempt:
                    await self.gateway.upsert(SUBMISSIONS, submission_to_record(submission), SUBMISSION_KEY)
        except TransientFailure as exc:
            logger.error("Submission for assignment %s by %s not recorded: %s", number, student_id, exc)
            raise PartialFailure(STEP_SUBMISSION, (), exc) from exc

        patch = {
            "is_completed": 1,
            "completed_at": submission.submitted_at,
            "current_question_index": current_index,
            "last_activity": submission.submitted_at,
        }
        try:
            completed = await self._complete_session(session_id, patch, self.policy.attempts)
        except TransientFailure as exc:
            logger.warning("Session %s not marked complete yet, retrying in background: %s", session_id, exc)
            self.tasks.spawn(self._complete_in_background(session_id, patch), name=f"complete-session:{session_id}")
            completed = False
        return SubmissionResult(submission=submission, session_completed=completed)

    async def _complete_session(self, session_id: str, patch: dict, attempts: int) -> bool:
        async for attempt in self.policy.retrying(attempts=attempts):
            with attempt:
                updated = await self.gateway.update(SESSIONS, {"id": session_id}, patch)
        if not updated:
            logger.warning("Session %s not found while marking it complete", session_id)
        return updated

    async def _complete_in_background(self, session_id: str, patch: dict) -> None:
        try:
            await self._complete_session(session_id, patch, self.background_attempts)
        except TransientFailure as exc:
            logger.error("Giving up marking session %s complete: %s", session_id, exc)

    async def get_submission(self, student_id: str, assignment_id: int | str) -> Submission | None:
        student_id = require_id(student_id, "student ID")
        number = parse_assignment_id(assignment_id)
        async for attempt in self.policy.retrying():
            with attempt:
                row = await self.gateway.fetch_one(SUBMISSIONS, {"student_id": student_id, "assignment_id": number})
        return submission_from_record(row) if row else None
