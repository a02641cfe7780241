"""Assignment loading."""
import asyncio
import logging

from homework_sync.errors import NotFound
from homework_sync.gateway import RetryPolicy, StoreGateway
from homework_sync.models import Assignment, assignment_from_record
from homework_sync.validation import parse_assignment_id

logger = logging.getLogger(__name__)


class AssignmentLoader:
    """Read-only access to assignments and their ordered questions."""

    def __init__(self, gateway: StoreGateway, policy: RetryPolicy) -> None:
        self.gateway = gateway
        self.policy = policy

    async def load(self, assignment_id: int | str) -> Assignment:
        """Fetch an assignment with its questions in one logical round trip.

        Raises ``InvalidInput`` before touching the store, ``NotFound`` if the
        assignment does not exist, and ``TransientFailure`` once retries are
        exhausted.
        """
        number = parse_assignment_id(assignment_id)
        async for attempt in self.policy.retrying():
            with attempt:
                row, question_rows = await asyncio.gather(
                    self.gateway.fetch_one("assignments", {"id": number}),
                    self.gateway.fetch_all("questions", {"assignment_id": number}, order_by="question_order"),
                )
        if row is None:
            raise NotFound(f"No assignment found with ID {number}")
        assignment = assignment_from_record(row, question_rows)
        logger.debug("Loaded assignment %s with %d questions", number, len(assignment.questions))
        return assignment
