"""Execution log persistence."""
from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cmatch import models
from cmatch.domain import ExecutionLogEntry
from cmatch.errors import UpstreamError

logger = logging.getLogger(__name__)


class SqlExecutionLogStore:
    """Append-only ``execution_logs`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def append(self, entry: ExecutionLogEntry) -> None:
        row = models.ExecutionLog(
            request_payload=entry.request_payload,
            query=entry.query,
            retrieved_documents=entry.retrieved_documents,
            prompt=entry.prompt,
            result=entry.result,
            error=entry.error,
            created_at=entry.created_at,
        )
        try:
            async with self.session_factory() as session:
                session.add(row)
                await session.commit()
        except (SQLAlchemyError, OSError) as e:
            raise UpstreamError(f"Failed to write execution log: {e}", stage="log") from e
        entry.id = row.id

    async def recent(self, limit: int) -> list[ExecutionLogEntry]:
        stmt = select(models.ExecutionLog).order_by(models.ExecutionLog.created_at.desc(), models.ExecutionLog.id.desc()).limit(limit)
        try:
            async with self.session_factory() as session:
                rows = (await session.execute(stmt)).scalars().all()
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Failed to read execution logs: {e}")
            raise UpstreamError(f"Failed to read execution logs: {e}", stage="log") from e

        return [
            ExecutionLogEntry(
                id=row.id,
                request_payload=row.request_payload,
                query=row.query,
                retrieved_documents=row.retrieved_documents,
                prompt=row.prompt,
                result=row.result,
                error=row.error,
                created_at=row.created_at,
            )
            for row in rows
        ]
