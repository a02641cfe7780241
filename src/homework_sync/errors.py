"""Exception types raised by the synchronization engine."""


class HomeworkError(Exception):
    """Base class for every error the engine surfaces to callers."""


class InvalidInput(HomeworkError):
    """A caller passed a bad identifier or an answer of the wrong shape. Never retried."""


class NotFound(HomeworkError):
    """The requested entity does not exist."""


class TransientFailure(HomeworkError):
    """A store call failed or timed out; safe to retry."""


class PersistFailure(HomeworkError):
    """A response could not be saved after all retry attempts."""

    def __init__(self, key, cause: Exception | None = None):
        self.key = key
        self.cause = cause
        super().__init__(f"Response for question {key.question_id!r} was not saved: {cause}")


class PartialFailure(HomeworkError):
    """A multi-step operation stopped at ``step``; ``completed`` lists the steps that landed."""

    def __init__(self, step: str, completed: tuple[str, ...] = (), cause: Exception | None = None):
        self.step = step
        self.completed = completed
        self.cause = cause
        super().__init__(f"Step {step!r} failed (completed: {list(completed)}): {cause}")
