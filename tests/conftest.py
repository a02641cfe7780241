import asyncio

import pytest

from homework_sync.backends import MemoryBackend
from homework_sync.config import EngineConfig
from homework_sync.engine import HomeworkEngine
from homework_sync.gateway import RetryPolicy, StoreGateway
from homework_sync.importer import write_assignment
from homework_sync.models import Assignment, GridOptions, Option, Question, QuestionType
from homework_sync.tasks import BackgroundTasks


@pytest.fixture
def tmp_db(tmp_path):
    """Provide a temporary SQLite database path for tests."""
    db_path = str(tmp_path / "test_homework.db")
    return db_path


class ScriptedBackend(MemoryBackend):
    """MemoryBackend that can fail or stall calls on demand.

    ``fail(op, times)`` makes the next ``times`` calls of ``op`` raise before
    touching the data; ``lose_ack(op, times)`` applies the call and then
    raises. ``delays`` holds per-call sleeps consumed in order.
    """

    def __init__(self):
        super().__init__()
        self.failures = {}
        self.lost_acks = {}
        self.delays = {}
        self.calls = []

    def fail(self, op, times=1):
        self.failures[op] = self.failures.get(op, 0) + times

    def lose_ack(self, op, times=1):
        self.lost_acks[op] = self.lost_acks.get(op, 0) + times

    def delay(self, op, *seconds):
        self.delays.setdefault(op, []).extend(seconds)

    async def _run(self, op, table, call):
        self.calls.append((op, table))
        pending = self.delays.get(op)
        if pending:
            await asyncio.sleep(pending.pop(0))
        if self.failures.get(op):
            self.failures[op] -= 1
            call.close()
            raise ConnectionError(f"scripted {op} failure")
        result = await call
        if self.lost_acks.get(op):
            self.lost_acks[op] -= 1
            raise ConnectionError(f"scripted {op} lost ack")
        return result

    def count(self, op, table=None):
        return sum(1 for o, t in self.calls if o == op and (table is None or t == table))

    async def fetch_one(self, table, filters):
        return await self._run("fetch_one", table, super().fetch_one(table, filters))

    async def fetch_all(self, table, filters, order_by=None):
        return await self._run("fetch_all", table, super().fetch_all(table, filters, order_by))

    async def insert(self, table, record):
        return await self._run("insert", table, super().insert(table, record))

    async def update(self, table, filters, patch, monotonic_field=None):
        return await self._run("update", table, super().update(table, filters, patch, monotonic_field))

    async def upsert(self, table, record, conflict_key, ignore_duplicates=False, version_field=None):
        return await self._run(
            "upsert", table, super().upsert(table, record, conflict_key, ignore_duplicates, version_field)
        )


def make_assignment() -> Assignment:
    questions = (
        Question(
            id="q1", assignment_id=1, question_type=QuestionType.MULTIPLE_CHOICE,
            question_text="What do plants need to grow?", points=5, question_order=0,
            options=(Option("Water and sunlight"), Option("Only water"), Option("Only soil"), Option("Nothing")),
            correct_answer="Water and sunlight",
        ),
        Question(
            id="q2", assignment_id=1, question_type=QuestionType.SHORT_ANSWER,
            question_text="Name one animal that lives in water.", points=5, question_order=1,
            correct_answer="Fish", sample_answer="Examples: Fish, Dolphin, Whale, Octopus",
        ),
        Question(
            id="q3", assignment_id=1, question_type=QuestionType.TICKBOX,
            question_text="Select all living things from the list below:", points=10, question_order=2,
            options=tuple(Option(t) for t in ("Tree", "Rock", "Dog", "Car", "Flower", "Cloud")),
            correct_answer=["Tree", "Dog", "Flower"],
        ),
    )
    return Assignment(id=1, title="Science Quiz - Living Things", questions=questions,
                      total_points=20, class_code="SCI-101")


def make_grid_question() -> Question:
    return Question(
        id="g1", assignment_id=1, question_type=QuestionType.GRID,
        question_text="Match each animal to its habitat", points=4,
        options=GridOptions(rows=("Fish", "Camel"), columns=("Sea", "Desert")),
        correct_answer={"0": 0, "1": 1},
    )


@pytest.fixture
def assignment():
    return make_assignment()


@pytest.fixture
def grid_question():
    return make_grid_question()


@pytest.fixture
def policy():
    return RetryPolicy(attempts=3, base_delay=0, max_delay=0)


@pytest.fixture
def backend():
    return ScriptedBackend()


@pytest.fixture
async def seeded_backend(backend, assignment):
    await write_assignment(backend, assignment)
    backend.calls.clear()
    return backend


@pytest.fixture
def gateway(backend):
    return StoreGateway(backend, timeout=1.0)


@pytest.fixture
async def tasks():
    queue = BackgroundTasks()
    yield queue
    await queue.cancel_all()


@pytest.fixture
def fast_config():
    return EngineConfig(
        backend="memory",
        retry_base_delay=0,
        retry_max_delay=0,
        progress_throttle=0,
        call_timeout=1.0,
    )


@pytest.fixture
async def engine(fast_config, seeded_backend):
    engine = HomeworkEngine(fast_config, backend=seeded_backend)
    yield engine
    await engine.aclose()
