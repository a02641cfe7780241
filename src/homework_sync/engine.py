"""Engine facade used by the presentation layer, and the client-side view of one attempt."""
import asyncio
import logging
from pathlib import Path

from homework_sync.analytics import ASSIGNMENT_COMPLETED, ASSIGNMENT_STARTED, Analytics, EventSink
from homework_sync.answers import (
    Answer,
    GridAnswer,
    MalformedAnswer,
    SelectionAnswer,
    is_answered,
    set_grid_cell,
    to_answer,
    toggle_selection,
)
from homework_sync.assignments import AssignmentLoader
from homework_sync.backends import FlakyBackend, MemoryBackend, SqliteBackend, StoreBackend
from homework_sync.config import EngineConfig, load_config
from homework_sync.errors import InvalidInput, PersistFailure, TransientFailure
from homework_sync.gateway import RetryPolicy, StoreGateway
from homework_sync.models import Assignment, Question, QuestionType, Session
from homework_sync.progress import ProgressTracker
from homework_sync.responses import Ack, ResponseKey, ResponseSynchronizer, SaveState
from homework_sync.sessions import SessionManager
from homework_sync.submission import SubmissionCoordinator, SubmissionResult
from homework_sync.tasks import BackgroundTasks
from homework_sync.validation import parse_assignment_id, require_id

logger = logging.getLogger(__name__)


def open_store(config: EngineConfig) -> StoreBackend:
    if config.backend == "memory":
        return MemoryBackend()
    return SqliteBackend(config.db_path)


def build_backend(config: EngineConfig, store: StoreBackend | None = None) -> StoreBackend:
    """The configured store, behind simulated network conditions when enabled."""
    backend = store if store is not None else open_store(config)
    if config.simulate_network:
        backend = FlakyBackend(
            backend,
            min_latency=config.min_latency,
            max_latency=config.max_latency,
            failure_rate=config.failure_rate,
        )
    return backend


class HomeworkEngine:
    """Wires the store, retry policy and components together for one client.

    Everything the engine caches or queues belongs to the instance, so two
    engines in one process never share state.
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        backend: StoreBackend | None = None,
        analytics_sink: EventSink | None = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.backend = backend if backend is not None else build_backend(self.config)
        self.gateway = StoreGateway(self.backend, timeout=self.config.call_timeout)
        self.policy = RetryPolicy(
            attempts=self.config.retry_attempts,
            base_delay=self.config.retry_base_delay,
            max_delay=self.config.retry_max_delay,
        )
        self.tasks = BackgroundTasks()
        self.analytics = Analytics(self.tasks, analytics_sink)
        self.loader = AssignmentLoader(self.gateway, self.policy)
        self.sessions = SessionManager(self.gateway, self.policy, self.tasks)
        self.responses = ResponseSynchronizer(self.gateway, self.policy)
        self.progress = ProgressTracker(self.gateway, self.policy, self.tasks, self.config.progress_throttle)
        self.submissions = SubmissionCoordinator(
            self.gateway, self.policy, self.tasks, self.loader, self.config.background_attempts
        )

    @classmethod
    def from_config(cls, path: str | Path | None = None, **kwargs) -> "HomeworkEngine":
        return cls(load_config(path), **kwargs)

    async def __aenter__(self) -> "HomeworkEngine":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Let queued writes and background work finish."""
        await self.responses.settle()
        await self.tasks.drain()

    async def load_assignment(self, assignment_id: int | str) -> Assignment:
        return await self.loader.load(assignment_id)

    async def get_or_create_session(self, student_id: str, assignment_id: int | str) -> Session:
        return await self.sessions.get_or_create(student_id, assignment_id)

    async def save_response(
        self,
        student_id: str,
        question_id: str,
        assignment_id: int | str,
        raw_answer,
        question: Question | None = None,
        session_id: str | None = None,
    ) -> Ack:
        if question is None:
            question_id = require_id(question_id, "question ID")
            question = (await self.loader.load(assignment_id)).get_question(question_id)
            if question is None:
                raise InvalidInput(f"Question {question_id!r} is not part of assignment {assignment_id}")
        return await self.responses.save(student_id, question_id, assignment_id, raw_answer, question, session_id)

    def advance_progress(self, session_id: str, new_index: int) -> None:
        self.progress.advance(session_id, new_index)

    async def submit(
        self,
        student_id: str,
        assignment_id: int | str,
        session_id: str,
        current_index: int,
        *,
        total_points: int | None = None,
    ) -> SubmissionResult:
        """Submit once every pending answer for the assignment is durable.

        Failed saves for this student and assignment are retried first; if
        one still fails, ``PersistFailure`` is raised and nothing is submitted.
        """
        student_id = require_id(student_id, "student ID")
        number = parse_assignment_id(assignment_id)
        await self.responses.settle()
        failed = [
            key for key in self.responses.failed_keys()
            if key.student_id == student_id and key.assignment_id == number
        ]
        if failed:
            await self.responses.retry_failed(failed)
        known = self.progress.known_index(session_id)
        if known is not None and not isinstance(current_index, bool) and isinstance(current_index, int):
            current_index = max(current_index, known)
        return await self.submissions.submit(
            student_id, number, session_id, current_index, total_points=total_points
        )

    async def get_responses(self, student_id: str, assignment_id: int | str) -> dict:
        return await self.responses.get_responses(student_id, assignment_id)


class AssignmentRun:
    """Optimistic client cache of one student's attempt at one assignment.

    Answers are recorded locally first and saved in the background; the store
    stays the source of truth and is read back when the run is opened.
    """

    def __init__(
        self,
        engine: HomeworkEngine,
        assignment: Assignment,
        session: Session,
        answers: dict[str, Answer],
        fast_forward_to: int | None = None,
    ) -> None:
        self.engine = engine
        self.assignment = assignment
        self.session = session
        self.answers = answers
        self.current_index = self._clamp(session.current_question_index)
        self.fast_forward_to = fast_forward_to
        self.completed = session.is_completed
        self._pending: dict[str, set[asyncio.Task]] = {}

    @classmethod
    async def open(cls, engine: HomeworkEngine, student_id: str, assignment_id: int | str) -> "AssignmentRun":
        # Reads run together; a session is only created once the assignment is known to exist.
        assignment, session = await asyncio.gather(
            engine.load_assignment(assignment_id),
            engine.sessions.find(student_id, assignment_id),
            return_exceptions=True,
        )
        for result in (assignment, session):
            if isinstance(result, BaseException):
                raise result
        if session is None:
            session = await engine.get_or_create_session(student_id, assignment.id)
        try:
            answers = await engine.responses.load_answers(session.student_id, assignment.id)
        except TransientFailure as exc:
            logger.warning("Could not load earlier answers for assignment %s: %s", assignment.id, exc)
            answers = {}

        durable = session.current_question_index
        known = engine.progress.known_index(session.id)
        fast_forward_to = known if known is not None and known > durable else None
        engine.progress.record_durable(session.id, durable)

        run = cls(engine, assignment, session, answers, fast_forward_to)
        if not session.is_completed:
            engine.analytics.track(ASSIGNMENT_STARTED, session.student_id)
        return run

    @property
    def student_id(self) -> str:
        return self.session.student_id

    @property
    def question(self) -> Question | None:
        if not self.assignment.questions:
            return None
        return self.assignment.questions[self.current_index]

    def _clamp(self, index: int) -> int:
        last = max(len(self.assignment.questions) - 1, 0)
        return min(max(index, 0), last)

    def _question(self, question_id: str) -> Question:
        question = self.assignment.get_question(question_id)
        if question is None:
            raise InvalidInput(f"Question {question_id!r} is not part of assignment {self.assignment.id}")
        return question

    # -- answers --------------------------------------------------------

    def answer(self, question_id: str, raw) -> asyncio.Task:
        """Record an answer locally and start saving it.

        Returns the save task; awaiting it gives the ``Ack`` or raises
        ``PersistFailure``.
        """
        question = self._question(question_id)
        try:
            answer = to_answer(question, raw)
        except MalformedAnswer as exc:
            raise InvalidInput(str(exc)) from exc
        self.answers[question_id] = answer
        task = self.engine.tasks.spawn(
            self.engine.responses.save(
                self.student_id, question_id, self.assignment.id, answer, question, self.session.id
            ),
            name=f"save:{question_id}",
        )
        pending = self._pending.setdefault(question_id, set())
        pending.add(task)
        task.add_done_callback(pending.discard)
        return task

    def toggle(self, question_id: str, option_text: str) -> asyncio.Task:
        question = self._question(question_id)
        if question.question_type is not QuestionType.TICKBOX:
            raise InvalidInput(f"Question {question_id!r} is not a tickbox question")
        current = self.answers.get(question_id)
        if not isinstance(current, SelectionAnswer):
            current = None
        return self.answer(question_id, toggle_selection(current, option_text))

    def set_cell(self, question_id: str, row: int, column: int) -> asyncio.Task:
        question = self._question(question_id)
        if question.question_type is not QuestionType.GRID:
            raise InvalidInput(f"Question {question_id!r} is not a grid question")
        current = self.answers.get(question_id)
        if not isinstance(current, GridAnswer):
            current = None
        return self.answer(question_id, set_grid_cell(current, row, column))

    def save_state(self, question_id: str) -> SaveState | None:
        return self.engine.responses.status(ResponseKey(self.student_id, question_id, self.assignment.id))

    def unsaved_questions(self) -> list[str]:
        return [
            q.id for q in self.assignment.questions
            if self._pending.get(q.id) or self.save_state(q.id) in (SaveState.SAVING, SaveState.FAILED)
        ]

    def unanswered_questions(self) -> list[str]:
        return [q.id for q in self.assignment.questions if not is_answered(q, self.answers.get(q.id))]

    def all_answered(self) -> bool:
        return not self.unanswered_questions()

    async def retry_failed(self) -> list[Ack]:
        keys = [ResponseKey(self.student_id, q.id, self.assignment.id) for q in self.assignment.questions]
        return await self.engine.responses.retry_failed(keys)

    # -- navigation -----------------------------------------------------

    def go_to(self, index: int) -> int:
        self.current_index = self._clamp(index)
        self.engine.advance_progress(self.session.id, self.current_index)
        return self.current_index

    def next(self) -> int:
        return self.go_to(self.current_index + 1)

    def previous(self) -> int:
        return self.go_to(self.current_index - 1)

    def accept_fast_forward(self) -> int:
        target = self.fast_forward_to
        self.fast_forward_to = None
        if target is None:
            return self.current_index
        return self.go_to(target)

    # -- submission -----------------------------------------------------

    async def submit(self) -> SubmissionResult:
        missing = self.unanswered_questions()
        if missing:
            raise InvalidInput(f"Answer every question before submitting ({len(missing)} left)")
        pending = [task for tasks in self._pending.values() for task in tasks]
        if pending:
            await asyncio.wait(pending)
        try:
            result = await self.engine.submit(
                self.student_id,
                self.assignment.id,
                self.session.id,
                self.current_index,
                total_points=self.assignment.total_points,
            )
        except PersistFailure:
            logger.error("Submission blocked: an answer for assignment %s is not saved", self.assignment.id)
            raise
        self.completed = True
        self.engine.analytics.track(ASSIGNMENT_COMPLETED, self.student_id)
        return result
