"""Store gateway: bounded, failure-normalizing access to a storage backend."""
import asyncio
import logging
from dataclasses import dataclass

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from homework_sync.backends import StoreBackend
from homework_sync.errors import TransientFailure

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff shared by every component that writes through the gateway."""
    attempts: int = 3
    base_delay: float = 0.25
    max_delay: float = 2.0

    def retrying(self, attempts: int | None = None) -> AsyncRetrying:
        """Return a tenacity controller that retries ``TransientFailure`` only.

        Use as::

            async for attempt in policy.retrying():
                with attempt:
                    await gateway.upsert(...)

        The last ``TransientFailure`` is re-raised once attempts run out.
        """
        return AsyncRetrying(
            stop=stop_after_attempt(attempts or self.attempts),
            wait=wait_exponential(multiplier=self.base_delay, max=self.max_delay),
            retry=retry_if_exception_type(TransientFailure),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )


class StoreGateway:
    """Thin wrapper over a backend.

    Each call is bounded by ``timeout`` seconds. A timeout, and any exception
    the backend raises, surfaces as ``TransientFailure``; ``None`` from
    ``fetch_one`` means "not found" and is never an error.
    """

    def __init__(self, backend: StoreBackend, timeout: float = 5.0) -> None:
        self.backend = backend
        self.timeout = timeout

    async def _call(self, op: str, table: str, coro):
        try:
            return await asyncio.wait_for(coro, self.timeout)
        except asyncio.TimeoutError as exc:
            logger.debug("%s on %s timed out after %.1fs", op, table, self.timeout)
            raise TransientFailure(f"{op} on {table} timed out") from exc
        except TransientFailure:
            raise
        except Exception as exc:
            logger.debug("%s on %s failed: %s", op, table, exc)
            raise TransientFailure(f"{op} on {table} failed: {exc}") from exc

    async def fetch_one(self, table: str, filters: dict) -> dict | None:
        return await self._call("fetch_one", table, self.backend.fetch_one(table, filters))

    async def fetch_all(self, table: str, filters: dict, order_by: str | None = None) -> list[dict]:
        return await self._call("fetch_all", table, self.backend.fetch_all(table, filters, order_by))

    async def insert(self, table: str, record: dict) -> dict:
        return await self._call("insert", table, self.backend.insert(table, record))

    async def update(
        self, table: str, filters: dict, patch: dict, *, monotonic_field: str | None = None
    ) -> bool:
        """Apply ``patch`` to matching rows.

        With ``monotonic_field`` only rows whose stored value is below the
        patched one change, so a late write cannot move it backwards.
        """
        return await self._call(
            "update", table, self.backend.update(table, filters, patch, monotonic_field)
        )

    async def upsert(
        self,
        table: str,
        record: dict,
        conflict_key: tuple[str, ...],
        *,
        ignore_duplicates: bool = False,
        version_field: str | None = None,
    ) -> bool:
        """Insert ``record`` or overwrite the row matching ``conflict_key``.

        With ``ignore_duplicates`` an existing row is left untouched. With
        ``version_field`` the overwrite only happens when the incoming value
        is not older than the stored one. Returns whether the write landed.
        """
        return await self._call(
            "upsert",
            table,
            self.backend.upsert(table, record, conflict_key, ignore_duplicates, version_field),
        )
