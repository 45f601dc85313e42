"""Core SQLAlchemy models (2.x style) for the matching schema.

Using PostgreSQL with pgvector for knowledge-chunk embeddings.
"""

from __future__ import annotations

from datetime import datetime

from pgvector.sqlalchemy import Vector
from sqlalchemy import JSON, DateTime, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from .config import settings
from .domain import utcnow


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class KnowledgeDocument(Base):
    """Ingested knowledge chunks with embeddings."""
    __tablename__ = "knowledge_documents"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    chunk: Mapped[str] = mapped_column(Text, nullable=False)
    source: Mapped[str] = mapped_column(String(512), nullable=False, index=True)
    embedding: Mapped[list[float]] = mapped_column(Vector(settings.embeddings.dim), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class CatalogEntry(Base):
    """Solution providers and persona patterns (read-only for the pipeline)."""
    __tablename__ = "catalog_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    kind: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    business_tag: Mapped[str | None] = mapped_column(String(255), index=True)
    department: Mapped[str | None] = mapped_column(String(255), index=True)
    size_band: Mapped[str | None] = mapped_column(String(64), index=True)
    industry: Mapped[str | None] = mapped_column(String(255))
    region: Mapped[str | None] = mapped_column(String(255))
    prefecture: Mapped[str | None] = mapped_column(String(255))
    employee_count: Mapped[int | None] = mapped_column(Integer)
    description: Mapped[str | None] = mapped_column(Text)
    strengths: Mapped[str | None] = mapped_column(Text)
    challenge_name: Mapped[str | None] = mapped_column(Text)
    symptom: Mapped[str | None] = mapped_column(Text)
    recommended_play: Mapped[str | None] = mapped_column(Text)
    primary_kpi: Mapped[str | None] = mapped_column(String(255))
    tags: Mapped[list[str] | None] = mapped_column(JSON)

    __table_args__ = (
        Index("ix_catalog_entries_tag_dept_size", "business_tag", "department", "size_band"),
    )


class CompanyProfile(Base):
    """Company information extracted from conversations."""
    __tablename__ = "company_profiles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    company_name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    industry: Mapped[str | None] = mapped_column(String(255))
    business_description: Mapped[str | None] = mapped_column(Text)
    strengths: Mapped[list | None] = mapped_column(JSON)
    business_tags: Mapped[list[str] | None] = mapped_column(JSON)
    original_tags: Mapped[list[str] | None] = mapped_column(JSON)
    region: Mapped[str | None] = mapped_column(String(255))
    prefecture: Mapped[str | None] = mapped_column(String(255))
    source_url: Mapped[str] = mapped_column(String(1024), nullable=False)
    challenges: Mapped[list | None] = mapped_column(JSON)
    processed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class CompanyChallenge(Base):
    """Extracted challenges, one row per extraction call."""
    __tablename__ = "company_challenges"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    company_name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    source_url: Mapped[str] = mapped_column(String(1024), nullable=False)
    conversation_data: Mapped[str | None] = mapped_column(Text)
    extracted_challenges: Mapped[list[str]] = mapped_column(JSON, nullable=False)
    challenge_analysis: Mapped[dict] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_company_challenges_created_at", "created_at"),
    )


class CompanyMatching(Base):
    """Persisted match results."""
    __tablename__ = "company_matchings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    challenge_id: Mapped[int | None] = mapped_column(
        ForeignKey("company_challenges.id", ondelete="CASCADE"),
        index=True,
    )
    candidate_ref: Mapped[str | None] = mapped_column(String(255), index=True)
    candidate_name: Mapped[str] = mapped_column(String(255), nullable=False)
    match_score: Mapped[float] = mapped_column(Float, nullable=False, index=True)
    match_reason: Mapped[str] = mapped_column(Text, nullable=False)
    match_details: Mapped[dict | None] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class ExecutionLog(Base):
    """Append-only record of every pipeline run."""
    __tablename__ = "execution_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    request_payload: Mapped[dict | None] = mapped_column(JSON)
    query: Mapped[str | None] = mapped_column(Text)
    retrieved_documents: Mapped[list | None] = mapped_column(JSON)
    prompt: Mapped[str | None] = mapped_column(Text)
    result: Mapped[dict | None] = mapped_column(JSON)
    error: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
