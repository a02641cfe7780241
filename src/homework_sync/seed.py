"""Seed the store with the bundled sample assignment."""
from pathlib import Path

from homework_sync.backends import StoreBackend
from homework_sync.importer import import_assignment
from homework_sync.models import Assignment

CONTENT_DIR = Path(__file__).parent / "content"
SAMPLE_ASSIGNMENT = CONTENT_DIR / "science_quiz.yaml"
SAMPLE_ASSIGNMENT_ID = 1
SAMPLE_STUDENT_ID = "student-user-123"


async def is_seeded(backend: StoreBackend) -> bool:
    """Check whether the sample assignment is already in the store."""
    return await backend.fetch_one("assignments", {"id": SAMPLE_ASSIGNMENT_ID}) is not None


async def seed_sample_assignment(backend: StoreBackend) -> Assignment | None:
    """Insert "Science Quiz - Living Things" unless it is already there."""
    if await is_seeded(backend):
        return None
    return await import_assignment(backend, SAMPLE_ASSIGNMENT)
