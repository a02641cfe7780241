"""Fire-and-forget usage analytics."""
import logging
from typing import Awaitable, Callable

from homework_sync.tasks import BackgroundTasks

logger = logging.getLogger(__name__)

ASSIGNMENT_STARTED = "homework_assignment_started"
ASSIGNMENT_COMPLETED = "homework_assignment_completed"

EventSink = Callable[[str, "str | None"], Awaitable[None]]


async def log_sink(event: str, user_id: str | None) -> None:
    """Default sink: record the event in the log."""
    if user_id:
        logger.info("Analytics: %s by user %s...", event, user_id[:8])
    else:
        logger.info("Analytics: %s", event)


class Analytics:
    """Queues events on the background task queue; ``track`` never blocks."""

    def __init__(self, tasks: BackgroundTasks, sink: EventSink | None = None) -> None:
        self.tasks = tasks
        self.sink = sink or log_sink

    def track(self, event: str, user_id: str | None = None) -> None:
        self.tasks.spawn(self.sink(event, user_id), name=f"analytics:{event}")
