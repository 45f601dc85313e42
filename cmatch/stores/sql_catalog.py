"""Catalog store: candidate filtering plus challenge/profile/match persistence."""
from __future__ import annotations

import logging
from dataclasses import asdict
from typing import Sequence

from sqlalchemy import case, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cmatch import models
from cmatch.domain import CandidateKind, CandidateRecord, ChallengeRecord, CompanyInfo, MatchResult
from cmatch.errors import DuplicateRecordError, UpstreamError

logger = logging.getLogger(__name__)

Entry = models.CatalogEntry

FREE_TEXT_COLUMNS = (Entry.symptom, Entry.challenge_name, Entry.description, Entry.strengths)


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _contains(column, value: str):
    """Case-insensitive substring predicate."""
    return column.ilike(f"%{_escape_like(value)}%", escape="\\")


def _to_record(row: models.CatalogEntry) -> CandidateRecord:
    return CandidateRecord(
        id=row.id,
        kind=CandidateKind(row.kind),
        name=row.name or "",
        business_tag=row.business_tag,
        department=row.department,
        size_band=row.size_band,
        industry=row.industry,
        region=row.region,
        prefecture=row.prefecture,
        employee_count=row.employee_count,
        description=row.description or "",
        strengths=row.strengths or "",
        challenge_name=row.challenge_name or "",
        symptom=row.symptom or "",
        recommended_play=row.recommended_play or "",
        primary_kpi=row.primary_kpi or "",
        tags=list(row.tags or []),
    )


class SqlCatalogStore:
    """CatalogStore backed by SQLAlchemy (PostgreSQL in production, SQLite in tests)."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def filter_records(
        self,
        *,
        business_tag: str | None = None,
        department: str | None = None,
        size_band: str | None = None,
        symptoms: Sequence[str] = (),
        kind: CandidateKind | None = None,
        limit: int = 100,
    ) -> list[CandidateRecord]:
        """Conjunctive filter; symptom keywords are ORed among themselves."""
        stmt = select(Entry)
        if kind is not None:
            stmt = stmt.where(Entry.kind == kind.value)
        if business_tag:
            stmt = stmt.where(_contains(Entry.business_tag, business_tag))
        if department:
            stmt = stmt.where(_contains(Entry.department, department))
        if size_band:
            stmt = stmt.where(Entry.size_band == size_band)

        keywords = [s for s in symptoms if s and s.strip()]
        order = []
        if keywords:
            stmt = stmt.where(
                or_(*(_contains(column, keyword) for keyword in keywords for column in FREE_TEXT_COLUMNS))
            )
            first = keywords[0]
            order.append(
                case(
                    (_contains(Entry.symptom, first), 0),
                    (_contains(Entry.challenge_name, first), 1),
                    else_=2,
                )
            )
        order += [Entry.business_tag, Entry.department, Entry.size_band, Entry.id]
        stmt = stmt.order_by(*order).limit(limit)

        try:
            async with self.session_factory() as session:
                rows = (await session.execute(stmt)).scalars().all()
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Catalog filter failed: {e}")
            raise UpstreamError(f"Catalog search failed: {e}", stage="search") from e

        return [_to_record(row) for row in rows]

    async def list_records(
        self,
        *,
        kind: CandidateKind | None = None,
        limit: int = 200,
    ) -> list[CandidateRecord]:
        stmt = select(Entry)
        if kind is not None:
            stmt = stmt.where(Entry.kind == kind.value)
        stmt = stmt.order_by(Entry.id).limit(limit)
        try:
            async with self.session_factory() as session:
                rows = (await session.execute(stmt)).scalars().all()
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Catalog snapshot failed: {e}")
            raise UpstreamError(f"Catalog snapshot failed: {e}", stage="match") from e
        return [_to_record(row) for row in rows]

    async def save_challenge(self, record: ChallengeRecord) -> int:
        row = models.CompanyChallenge(
            company_name=record.company_name,
            source_url=record.source_url,
            conversation_data=record.conversation_data,
            extracted_challenges=list(record.extracted_challenges),
            challenge_analysis=record.analysis_payload(),
            created_at=record.created_at,
        )
        try:
            async with self.session_factory() as session:
                session.add(row)
                await session.commit()
                return row.id
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Failed to save challenge for {record.company_name}: {e}")
            raise UpstreamError(f"Failed to save challenge: {e}", stage="persist") from e

    async def save_company_profile(self, info: CompanyInfo, *, source_url: str, challenges: list[dict]) -> int:
        """Insert a company profile.

        Raises:
            DuplicateRecordError: If a profile with the same company name exists
            UpstreamError: On any other database error
        """
        try:
            async with self.session_factory() as session:
                existing = await session.scalar(
                    select(models.CompanyProfile.id).where(models.CompanyProfile.company_name == info.company_name)
                )
                if existing is not None:
                    raise DuplicateRecordError(f"Company profile already exists: {info.company_name}", stage="persist")

                row = models.CompanyProfile(source_url=source_url, challenges=challenges, **asdict(info))
                session.add(row)
                await session.commit()
                return row.id
        except IntegrityError as e:
            raise DuplicateRecordError(f"Company profile already exists: {info.company_name}", stage="persist") from e
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Failed to save company profile for {info.company_name}: {e}")
            raise UpstreamError(f"Failed to save company profile: {e}", stage="persist") from e

    async def save_match(self, match: MatchResult) -> MatchResult:
        row = models.CompanyMatching(
            challenge_id=match.challenge_ref,
            candidate_ref=str(match.candidate_ref) if match.candidate_ref is not None else None,
            candidate_name=match.candidate_name,
            match_score=match.score,
            match_reason=match.reason,
            match_details=match.details,
        )
        try:
            async with self.session_factory() as session:
                session.add(row)
                await session.commit()
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Failed to save match {match.candidate_name}: {e}")
            raise UpstreamError(f"Failed to save match: {e}", stage="match") from e
        return match
