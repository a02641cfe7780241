"""Autosave of individual answers.

Each (student, question, assignment) key has at most one write in flight.
A save that arrives while an earlier one is still being written queues
behind it; if yet another save arrives before it gets its turn, the queued
one is skipped. The store only ever receives the latest value last, and the
``revision`` guard on the upsert stops a slow earlier write that landed
after its timeout from overwriting a newer one.
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, NamedTuple

from homework_sync.answers import Answer, MalformedAnswer, answer_payload, deserialize_answer, serialize_answer, to_answer
from homework_sync.errors import InvalidInput, PersistFailure, TransientFailure
from homework_sync.gateway import RetryPolicy, StoreGateway
from homework_sync.grader import GradeResult, grade
from homework_sync.models import Question, Response, response_from_record, response_to_record, utc_now
from homework_sync.validation import parse_assignment_id, require_id

logger = logging.getLogger(__name__)

RESPONSES = "homework_responses"
RESPONSE_KEY = ("student_id", "question_id", "assignment_id")


class ResponseKey(NamedTuple):
    student_id: str
    question_id: str
    assignment_id: int


class SaveState(str, Enum):
    SAVING = "saving"
    SAVED = "saved"
    FAILED = "failed"


@dataclass(frozen=True)
class Ack:
    key: ResponseKey
    revision: int
    grade: GradeResult
    superseded: bool = False  # a newer answer for the same key replaced this one


StatusListener = Callable[[ResponseKey, SaveState, "Exception | None"], None]


class _Slot:
    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.generation = 0
        self.state: SaveState | None = None
        self.latest: dict | None = None
        self.error: Exception | None = None


async def fetch_responses(
    gateway: StoreGateway, policy: RetryPolicy, student_id: str, assignment_id: int
) -> list[Response]:
    async for attempt in policy.retrying():
        with attempt:
            rows = await gateway.fetch_all(
                RESPONSES, {"student_id": student_id, "assignment_id": assignment_id}
            )
    return [response_from_record(row) for row in rows]


class ResponseSynchronizer:
    def __init__(self, gateway: StoreGateway, policy: RetryPolicy) -> None:
        self.gateway = gateway
        self.policy = policy
        self._slots: dict[ResponseKey, _Slot] = {}
        self._listeners: list[StatusListener] = []
        self._revision = time.time_ns()

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def add_listener(self, listener: StatusListener) -> None:
        self._listeners.append(listener)

    def status(self, key: ResponseKey) -> SaveState | None:
        slot = self._slots.get(key)
        return slot.state if slot else None

    def failed_keys(self) -> list[ResponseKey]:
        return [key for key, slot in self._slots.items() if slot.state is SaveState.FAILED]

    def _set_state(self, key: ResponseKey, slot: _Slot, state: SaveState, error: Exception | None = None) -> None:
        slot.state = state
        slot.error = error
        for listener in self._listeners:
            try:
                listener(key, state, error)
            except Exception:
                logger.exception("Save status listener failed")

    def _next_revision(self) -> int:
        self._revision = max(self._revision + 1, time.time_ns())
        return self._revision

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def save(
        self,
        student_id: str,
        question_id: str,
        assignment_id: int | str,
        raw_answer,
        question: Question,
        session_id: str | None = None,
    ) -> Ack:
        """Grade and persist one answer.

        Returns an ``Ack`` once the value is durable (or once a newer answer
        for the same question has taken its place). Raises ``InvalidInput``
        for bad identifiers or an answer that does not fit the question, and
        ``PersistFailure`` when every retry failed; the key's status is then
        ``FAILED`` until ``retry_failed`` or a new save succeeds.
        """
        student_id = require_id(student_id, "student ID")
        question_id = require_id(question_id, "question ID")
        number = parse_assignment_id(assignment_id)
        if question.id != question_id:
            raise InvalidInput(f"Question {question.id!r} does not match question ID {question_id!r}")
        try:
            answer = to_answer(question, raw_answer)
        except MalformedAnswer as exc:
            raise InvalidInput(str(exc)) from exc

        result = grade(question, answer)
        response = Response(
            student_id=student_id,
            question_id=question_id,
            assignment_id=number,
            response_text=serialize_answer(answer),
            answer_kind=answer.kind,
            is_correct=result.is_correct,
            points_earned=result.points_earned,
            session_id=session_id,
        )
        return await self._enqueue(ResponseKey(student_id, question_id, number), response, result)

    async def _enqueue(self, key: ResponseKey, response: Response, result: GradeResult) -> Ack:
        response.revision = self._next_revision()
        response.updated_at = utc_now()
        record = response_to_record(response)

        slot = self._slots.setdefault(key, _Slot())
        slot.generation += 1
        generation = slot.generation
        slot.latest = record
        self._set_state(key, slot, SaveState.SAVING)

        async with slot.lock:
            if slot.generation != generation:
                return Ack(key, response.revision, result, superseded=True)
            return await self._write(key, slot, record, generation, result)

    async def _write(self, key: ResponseKey, slot: _Slot, record: dict, generation: int, result: GradeResult) -> Ack:
        superseded = Ack(key, record["revision"], result, superseded=True)
        try:
            async for attempt in self.policy.retrying():
                with attempt:
                    if slot.generation != generation:
                        return superseded
                    await self.gateway.upsert(RESPONSES, record, RESPONSE_KEY, version_field="revision")
        except TransientFailure as exc:
            if slot.generation != generation:
                return superseded
            self._set_state(key, slot, SaveState.FAILED, exc)
            logger.error("Response for question %s not saved after %d attempts: %s",
                         key.question_id, self.policy.attempts, exc)
            raise PersistFailure(key, exc) from exc

        if slot.generation == generation:
            self._set_state(key, slot, SaveState.SAVED)
        return Ack(key, record["revision"], result)

    async def retry_failed(self, keys: list[ResponseKey] | None = None) -> list[Ack]:
        """Re-send the latest value of every key whose save failed.

        Limited to ``keys`` when given. Raises ``PersistFailure`` for the
        first key that fails again.
        """
        acks = []
        for key in self.failed_keys():
            if keys is not None and key not in keys:
                continue
            latest = response_from_record(self._slots[key].latest)
            result = GradeResult(is_correct=latest.is_correct, points_earned=latest.points_earned)
            acks.append(await self._enqueue(key, latest, result))
        return acks

    async def settle(self) -> None:
        """Wait until every write queued so far has finished."""
        for slot in list(self._slots.values()):
            async with slot.lock:
                pass

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def load_answers(self, student_id: str, assignment_id: int | str) -> dict[str, Answer]:
        """Stored answers for an assignment, decoded by their answer kind."""
        student_id = require_id(student_id, "student ID")
        number = parse_assignment_id(assignment_id)
        answers = {}
        for response in await fetch_responses(self.gateway, self.policy, student_id, number):
            try:
                answers[response.question_id] = deserialize_answer(response.response_text, response.answer_kind)
            except MalformedAnswer as exc:
                logger.warning("Skipping unreadable response for question %s: %s", response.question_id, exc)
        return answers

    async def get_responses(self, student_id: str, assignment_id: int | str) -> dict[str, str | list[str] | dict[str, int]]:
        """Mapping of question id -> plain answer payload."""
        answers = await self.load_answers(student_id, assignment_id)
        return {question_id: answer_payload(answer) for question_id, answer in answers.items()}
