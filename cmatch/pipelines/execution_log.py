"""Best-effort execution logging for pipeline runs."""
from __future__ import annotations

import logging

from cmatch.config import settings
from cmatch.domain import ExecutionLogEntry
from cmatch.errors import ValidationError
from cmatch.interfaces import ExecutionLogStore

logger = logging.getLogger(__name__)


class ExecutionLogger:
    """Writes one entry per run; a failed write never fails the run."""

    def __init__(self, store: ExecutionLogStore) -> None:
        self.store = store
        self.failures = 0

    async def record(self, entry: ExecutionLogEntry) -> bool:
        """Append ``entry``. Returns False (and counts the failure) instead of raising."""
        try:
            await self.store.append(entry)
        except Exception as e:
            self.failures += 1
            logger.warning(f"Failed to write execution log entry ({self.failures} failures so far): {e}")
            return False
        return True

    async def recent(self, limit: int | None = None) -> list[ExecutionLogEntry]:
        """Most recent entries, newest first.

        Raises:
            ValidationError: If limit is out of range
            UpstreamError: If the store fails
        """
        limit = settings.execution_log.recent_limit if limit is None else limit
        if limit < 1 or limit > 1000:
            raise ValidationError("limit must be between 1 and 1000")
        entries = await self.store.recent(limit)
        return sorted(entries, key=lambda e: e.created_at, reverse=True)[:limit]
