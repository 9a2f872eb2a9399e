"""SQLAlchemy models for the error pattern corpus and consensus telemetry."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import uuid4

from sqlalchemy import (
    ARRAY,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql import func


class Base(DeclarativeBase):
    """Base class for all models."""

    type_annotation_map = {
        dict[str, Any]: JSONB,
        list[str]: ARRAY(String),
        list[int]: ARRAY(Integer),
        list[float]: ARRAY(Float),
    }


# =============================================================================
# ERROR PATTERN CORPUS
# =============================================================================


class ErrorPattern(Base):
    """A canonicalized error, deduplicated by signature."""

    __tablename__ = "error_patterns"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), primary_key=True, default=lambda: str(uuid4())
    )
    signature: Mapped[str] = mapped_column(String(16), unique=True, nullable=False)
    error_type: Mapped[str] = mapped_column(String, nullable=False, index=True)
    error_message: Mapped[str] = mapped_column(Text, nullable=False)
    normalized_stack: Mapped[str] = mapped_column(Text, default="")
    key_frames: Mapped[list[str]] = mapped_column(ARRAY(String), default=list)
    language: Mapped[str] = mapped_column(String, nullable=False, index=True)
    framework: Mapped[str | None] = mapped_column(String, nullable=True)
    category: Mapped[str] = mapped_column(String, nullable=False, index=True)
    severity: Mapped[str] = mapped_column(String, nullable=False)
    tags: Mapped[list[str]] = mapped_column(ARRAY(String), default=list)
    occurrence_count: Mapped[int] = mapped_column(Integer, default=1)
    resolution_count: Mapped[int] = mapped_column(Integer, default=0)
    success_rate: Mapped[float] = mapped_column(Float, default=0.0)
    avg_time_to_fix: Mapped[float | None] = mapped_column(Float, nullable=True)  # ms
    first_seen: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    last_seen: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    occurrences: Mapped[list[ErrorOccurrence]] = relationship(back_populates="pattern")
    resolutions: Mapped[list[ErrorResolution]] = relationship(back_populates="pattern")


class ErrorOccurrence(Base):
    """A single reported instance of a pattern."""

    __tablename__ = "error_occurrences"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), primary_key=True, default=lambda: str(uuid4())
    )
    pattern_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), ForeignKey("error_patterns.id"), nullable=False
    )
    user_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    raw_log: Mapped[str] = mapped_column(Text, nullable=False)
    stack_trace: Mapped[str] = mapped_column(Text, default="")
    code_snippet: Mapped[str | None] = mapped_column(Text, nullable=True)
    file_path: Mapped[str | None] = mapped_column(String, nullable=True)
    line_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    environment: Mapped[str | None] = mapped_column(String, nullable=True)
    resolved: Mapped[bool] = mapped_column(Boolean, default=False)
    resolution_id: Mapped[str | None] = mapped_column(
        UUID(as_uuid=False), ForeignKey("error_resolutions.id"), nullable=True
    )
    time_to_resolve: Mapped[float | None] = mapped_column(Float, nullable=True)  # ms
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    pattern: Mapped[ErrorPattern] = relationship(back_populates="occurrences")


class ErrorResolution(Base):
    """A fix known for a pattern, from the community or generated by a model."""

    __tablename__ = "error_resolutions"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), primary_key=True, default=lambda: str(uuid4())
    )
    pattern_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), ForeignKey("error_patterns.id"), nullable=False
    )
    fix_type: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    explanation: Mapped[str] = mapped_column(Text, default="")
    code_changes: Mapped[list[dict[str, Any]]] = mapped_column(JSONB, default=list)
    preventive_measures: Mapped[list[str]] = mapped_column(JSONB, default=list)
    success_count: Mapped[int] = mapped_column(Integer, default=0)
    applied_count: Mapped[int] = mapped_column(Integer, default=0)
    success_rate: Mapped[float] = mapped_column(Float, default=0.0)
    confidence_score: Mapped[float] = mapped_column(Float, default=0.0)
    avg_fix_time: Mapped[float | None] = mapped_column(Float, nullable=True)  # ms
    source: Mapped[str] = mapped_column(String, default="community")  # 'community', 'ai_generated'
    ai_model: Mapped[str | None] = mapped_column(String, nullable=True)
    tags: Mapped[list[str]] = mapped_column(ARRAY(String), default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    pattern: Mapped[ErrorPattern] = relationship(back_populates="resolutions")


# =============================================================================
# CONSENSUS TELEMETRY
# =============================================================================


class ConsensusStatistic(Base):
    """One row per multi-model consensus request."""

    __tablename__ = "consensus_statistics"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), primary_key=True, default=lambda: str(uuid4())
    )
    prompt: Mapped[str] = mapped_column(Text, nullable=False)
    language: Mapped[str] = mapped_column(String, nullable=False, index=True)
    decision: Mapped[str] = mapped_column(String, nullable=False)  # consensus, voting, fallback
    agreement: Mapped[float] = mapped_column(Float, nullable=False)
    final_confidence: Mapped[float] = mapped_column(Float, nullable=False)
    provider_latencies: Mapped[dict[str, Any]] = mapped_column(JSONB, default=dict)
    total_latency: Mapped[int] = mapped_column(Integer, nullable=False)  # ms
    tokens_used: Mapped[int] = mapped_column(Integer, default=0)
    total_cost: Mapped[Decimal] = mapped_column(Numeric(10, 6), default=Decimal("0"))
    user_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    context: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)
    tags: Mapped[list[str]] = mapped_column(ARRAY(String), default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
