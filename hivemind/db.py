"""Async database connection and the PostgreSQL pattern store."""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from datetime import UTC, datetime
from functools import lru_cache
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from .canonicalize import CanonicalPattern
from .config import settings
from .errors import PatternStoreError, SchemaNotInitializedError, is_schema_missing_error, schema_not_initialized_message
from .models import Base, ConsensusStatistic, ErrorOccurrence, ErrorPattern, ErrorResolution
from .store import pattern_row_values

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]


@lru_cache(maxsize=1)
def get_engine() -> AsyncEngine:
    return create_async_engine(settings.async_database_url, echo=False, pool_pre_ping=True)


@lru_cache(maxsize=1)
def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(get_engine(), expire_on_commit=False)


async def init_db() -> None:
    """Create all tables (for development/testing)."""
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession]:
    """Async context manager for database sessions."""
    async with get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception as exc:
            await session.rollback()
            if isinstance(exc, SQLAlchemyError):
                if is_schema_missing_error(exc):
                    raise SchemaNotInitializedError(schema_not_initialized_message(exc)) from exc
                raise PatternStoreError(f"Database operation failed: {exc}") from exc
            raise


def _now() -> datetime:
    return datetime.now(UTC)


class SqlPatternStore:
    """Pattern store backed by PostgreSQL through SQLAlchemy."""

    def __init__(self, session_factory: SessionFactory = get_session) -> None:
        self._session = session_factory

    # =========================================================================
    # Patterns
    # =========================================================================

    async def find_by_signature(self, signature: str) -> ErrorPattern | None:
        async with self._session() as session:
            result = await session.execute(
                select(ErrorPattern).where(ErrorPattern.signature == signature)
            )
            return result.scalar_one_or_none()

    async def upsert_pattern(self, pattern: CanonicalPattern) -> tuple[ErrorPattern, bool]:
        async with self._session() as session:
            now = _now()
            stmt = (
                insert(ErrorPattern)
                .values(first_seen=now, last_seen=now, **pattern_row_values(pattern))
                .on_conflict_do_nothing(index_elements=[ErrorPattern.signature])
                .returning(ErrorPattern.id)
            )
            inserted_id = (await session.execute(stmt)).scalar_one_or_none()
            result = await session.execute(
                select(ErrorPattern).where(ErrorPattern.signature == pattern.signature)
            )
            return result.scalar_one(), inserted_id is not None

    async def increment_occurrence(self, pattern_id: str) -> ErrorPattern:
        async with self._session() as session:
            result = await session.execute(
                update(ErrorPattern)
                .where(ErrorPattern.id == pattern_id)
                .values(
                    occurrence_count=ErrorPattern.occurrence_count + 1,
                    last_seen=_now(),
                )
                .returning(ErrorPattern)
            )
            return result.scalar_one()

    async def get_pattern(self, pattern_id: str) -> ErrorPattern | None:
        async with self._session() as session:
            return await session.get(ErrorPattern, pattern_id)

    async def update_pattern(self, pattern_id: str, **values: Any) -> ErrorPattern | None:
        async with self._session() as session:
            result = await session.execute(
                update(ErrorPattern)
                .where(ErrorPattern.id == pattern_id)
                .values(**values)
                .returning(ErrorPattern)
            )
            return result.scalar_one_or_none()

    async def find_patterns_by_type_category_language(
        self,
        error_type: str,
        category: str,
        language: str,
        exclude_id: str | None = None,
        limit: int = 50,
    ) -> list[ErrorPattern]:
        stmt = select(ErrorPattern).where(
            ErrorPattern.error_type == error_type,
            ErrorPattern.category == category,
            ErrorPattern.language == language,
        )
        if exclude_id:
            stmt = stmt.where(ErrorPattern.id != exclude_id)
        async with self._session() as session:
            result = await session.execute(stmt.limit(limit))
            return list(result.scalars().all())

    # =========================================================================
    # Occurrences
    # =========================================================================

    async def create_occurrence(self, pattern_id: str, **values: Any) -> ErrorOccurrence:
        async with self._session() as session:
            occurrence = ErrorOccurrence(pattern_id=pattern_id, timestamp=_now(), **values)
            session.add(occurrence)
            await session.flush()
            return occurrence

    async def get_occurrence(self, occurrence_id: str) -> ErrorOccurrence | None:
        async with self._session() as session:
            return await session.get(ErrorOccurrence, occurrence_id)

    async def update_occurrence(self, occurrence_id: str, **values: Any) -> ErrorOccurrence | None:
        async with self._session() as session:
            result = await session.execute(
                update(ErrorOccurrence)
                .where(ErrorOccurrence.id == occurrence_id)
                .values(**values)
                .returning(ErrorOccurrence)
            )
            return result.scalar_one_or_none()

    async def list_occurrences_by_user(
        self, user_id: str, limit: int = 20, offset: int = 0
    ) -> tuple[list[ErrorOccurrence], int]:
        async with self._session() as session:
            result = await session.execute(
                select(ErrorOccurrence)
                .where(ErrorOccurrence.user_id == user_id)
                .order_by(ErrorOccurrence.timestamp.desc())
                .limit(limit)
                .offset(offset)
            )
            total = await session.scalar(
                select(func.count()).select_from(ErrorOccurrence).where(ErrorOccurrence.user_id == user_id)
            )
            return list(result.scalars().all()), int(total or 0)

    # =========================================================================
    # Resolutions
    # =========================================================================

    async def find_resolutions_by_pattern(
        self,
        pattern_id: str,
        limit: int = 5,
        min_success_rate: float | None = None,
    ) -> list[ErrorResolution]:
        stmt = select(ErrorResolution).where(ErrorResolution.pattern_id == pattern_id)
        if min_success_rate is not None:
            stmt = stmt.where(ErrorResolution.success_rate >= min_success_rate)
        stmt = stmt.order_by(
            ErrorResolution.confidence_score.desc(), ErrorResolution.success_rate.desc()
        ).limit(limit)
        async with self._session() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def get_resolution(self, resolution_id: str) -> ErrorResolution | None:
        async with self._session() as session:
            return await session.get(ErrorResolution, resolution_id)

    async def create_resolution(self, pattern_id: str, **values: Any) -> ErrorResolution:
        async with self._session() as session:
            resolution = ErrorResolution(pattern_id=pattern_id, created_at=_now(), **values)
            session.add(resolution)
            await session.flush()
            return resolution

    async def update_resolution(self, resolution_id: str, **values: Any) -> ErrorResolution | None:
        async with self._session() as session:
            result = await session.execute(
                update(ErrorResolution)
                .where(ErrorResolution.id == resolution_id)
                .values(**values)
                .returning(ErrorResolution)
            )
            return result.scalar_one_or_none()


# =============================================================================
# Consensus telemetry
# =============================================================================


async def add_consensus_statistic(session: AsyncSession, **values: Any) -> ConsensusStatistic:
    """Persist one consensus telemetry row."""
    row = ConsensusStatistic(**values)
    session.add(row)
    await session.flush()
    return row


async def get_consensus_statistics(
    session: AsyncSession,
    *,
    language: str | None = None,
    user_id: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> list[dict[str, Any]]:
    """Per-decision counts and averages over the telemetry table."""
    stmt = select(
        ConsensusStatistic.decision,
        func.count(),
        func.coalesce(func.avg(ConsensusStatistic.agreement), 0),
        func.coalesce(func.avg(ConsensusStatistic.final_confidence), 0),
        func.coalesce(func.avg(ConsensusStatistic.total_latency), 0),
        func.coalesce(func.avg(ConsensusStatistic.tokens_used), 0),
    ).group_by(ConsensusStatistic.decision)

    if language:
        stmt = stmt.where(ConsensusStatistic.language == language)
    if user_id:
        stmt = stmt.where(ConsensusStatistic.user_id == user_id)
    if start:
        stmt = stmt.where(ConsensusStatistic.created_at >= start)
    if end:
        stmt = stmt.where(ConsensusStatistic.created_at <= end)

    rows = (await session.execute(stmt)).all()
    return [
        {
            "decision": decision,
            "count": int(count or 0),
            "avg_agreement": float(agreement or 0),
            "avg_confidence": float(confidence or 0),
            "avg_latency": float(latency or 0),
            "avg_tokens": float(tokens or 0),
        }
        for decision, count, agreement, confidence, latency, tokens in rows
    ]
