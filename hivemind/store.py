"""
Pattern store contract and a process-local implementation.

The core never talks to a database directly; it goes through a
``PatternStore``. ``db.SqlPatternStore`` is the PostgreSQL implementation,
``InMemoryPatternStore`` backs tests and single-process tooling.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from typing import Any, Protocol
from uuid import uuid4

from .canonicalize import CanonicalPattern
from .models import ErrorOccurrence, ErrorPattern, ErrorResolution


class PatternStore(Protocol):
    """Persistence capability for patterns, occurrences and resolutions."""

    async def find_by_signature(self, signature: str) -> ErrorPattern | None: ...

    async def upsert_pattern(self, pattern: CanonicalPattern) -> tuple[ErrorPattern, bool]:
        """Insert the pattern unless its signature exists.

        Returns the stored row and whether this call created it.
        """
        ...

    async def increment_occurrence(self, pattern_id: str) -> ErrorPattern: ...

    async def get_pattern(self, pattern_id: str) -> ErrorPattern | None: ...

    async def update_pattern(self, pattern_id: str, **values: Any) -> ErrorPattern | None: ...

    async def find_patterns_by_type_category_language(
        self,
        error_type: str,
        category: str,
        language: str,
        exclude_id: str | None = None,
        limit: int = 50,
    ) -> list[ErrorPattern]: ...

    async def create_occurrence(self, pattern_id: str, **values: Any) -> ErrorOccurrence: ...

    async def get_occurrence(self, occurrence_id: str) -> ErrorOccurrence | None: ...

    async def update_occurrence(
        self, occurrence_id: str, **values: Any
    ) -> ErrorOccurrence | None: ...

    async def list_occurrences_by_user(
        self, user_id: str, limit: int = 20, offset: int = 0
    ) -> tuple[list[ErrorOccurrence], int]: ...

    async def find_resolutions_by_pattern(
        self,
        pattern_id: str,
        limit: int = 5,
        min_success_rate: float | None = None,
    ) -> list[ErrorResolution]:
        """Resolutions ordered by (confidence_score desc, success_rate desc)."""
        ...

    async def get_resolution(self, resolution_id: str) -> ErrorResolution | None: ...

    async def create_resolution(self, pattern_id: str, **values: Any) -> ErrorResolution: ...

    async def update_resolution(
        self, resolution_id: str, **values: Any
    ) -> ErrorResolution | None: ...


def _now() -> datetime:
    return datetime.now(UTC)


def pattern_row_values(pattern: CanonicalPattern) -> dict[str, Any]:
    """Column values for a newly seen canonical pattern."""
    return {
        "signature": pattern.signature,
        "error_type": pattern.error_type,
        "error_message": pattern.error_message,
        "normalized_stack": pattern.normalized_stack,
        "key_frames": list(pattern.key_frames),
        "language": pattern.language,
        "framework": pattern.framework,
        "category": pattern.category,
        "severity": pattern.severity,
        "tags": list(pattern.tags),
        "occurrence_count": 1,
        "resolution_count": 0,
        "success_rate": 0.0,
    }


def resolution_sort_key(resolution: ErrorResolution) -> tuple[float, float]:
    return (-(resolution.confidence_score or 0.0), -(resolution.success_rate or 0.0))


class InMemoryPatternStore:
    """Dictionary-backed pattern store, safe for concurrent coroutines."""

    def __init__(self) -> None:
        self._patterns: dict[str, ErrorPattern] = {}
        self._by_signature: dict[str, str] = {}
        self._occurrences: dict[str, ErrorOccurrence] = {}
        self._resolutions: dict[str, ErrorResolution] = {}
        self._lock = asyncio.Lock()

    async def find_by_signature(self, signature: str) -> ErrorPattern | None:
        pattern_id = self._by_signature.get(signature)
        return self._patterns.get(pattern_id) if pattern_id else None

    async def upsert_pattern(self, pattern: CanonicalPattern) -> tuple[ErrorPattern, bool]:
        async with self._lock:
            existing = await self.find_by_signature(pattern.signature)
            if existing is not None:
                return existing, False

            now = _now()
            row = ErrorPattern(
                id=str(uuid4()),
                first_seen=now,
                last_seen=now,
                avg_time_to_fix=None,
                **pattern_row_values(pattern),
            )
            self._patterns[row.id] = row
            self._by_signature[row.signature] = row.id
            return row, True

    async def increment_occurrence(self, pattern_id: str) -> ErrorPattern:
        async with self._lock:
            row = self._patterns[pattern_id]
            row.occurrence_count += 1
            row.last_seen = _now()
            return row

    async def get_pattern(self, pattern_id: str) -> ErrorPattern | None:
        return self._patterns.get(pattern_id)

    async def update_pattern(self, pattern_id: str, **values: Any) -> ErrorPattern | None:
        row = self._patterns.get(pattern_id)
        if row is None:
            return None
        for key, value in values.items():
            setattr(row, key, value)
        return row

    async def find_patterns_by_type_category_language(
        self,
        error_type: str,
        category: str,
        language: str,
        exclude_id: str | None = None,
        limit: int = 50,
    ) -> list[ErrorPattern]:
        matches = [
            row
            for row in self._patterns.values()
            if row.error_type == error_type
            and row.category == category
            and row.language == language
            and row.id != exclude_id
        ]
        return matches[:limit]

    async def create_occurrence(self, pattern_id: str, **values: Any) -> ErrorOccurrence:
        row = ErrorOccurrence(
            id=str(uuid4()),
            pattern_id=pattern_id,
            user_id=values.get("user_id"),
            raw_log=values.get("raw_log", ""),
            stack_trace=values.get("stack_trace", ""),
            code_snippet=values.get("code_snippet"),
            file_path=values.get("file_path"),
            line_number=values.get("line_number"),
            environment=values.get("environment"),
            resolved=False,
            resolution_id=None,
            time_to_resolve=None,
            timestamp=_now(),
        )
        self._occurrences[row.id] = row
        return row

    async def get_occurrence(self, occurrence_id: str) -> ErrorOccurrence | None:
        return self._occurrences.get(occurrence_id)

    async def update_occurrence(self, occurrence_id: str, **values: Any) -> ErrorOccurrence | None:
        row = self._occurrences.get(occurrence_id)
        if row is None:
            return None
        for key, value in values.items():
            setattr(row, key, value)
        return row

    async def list_occurrences_by_user(
        self, user_id: str, limit: int = 20, offset: int = 0
    ) -> tuple[list[ErrorOccurrence], int]:
        rows = [row for row in self._occurrences.values() if row.user_id == user_id]
        rows.sort(key=lambda row: row.timestamp, reverse=True)
        return rows[offset : offset + limit], len(rows)

    async def find_resolutions_by_pattern(
        self,
        pattern_id: str,
        limit: int = 5,
        min_success_rate: float | None = None,
    ) -> list[ErrorResolution]:
        rows = [
            row
            for row in self._resolutions.values()
            if row.pattern_id == pattern_id
            and (min_success_rate is None or row.success_rate >= min_success_rate)
        ]
        rows.sort(key=resolution_sort_key)
        return rows[:limit]

    async def get_resolution(self, resolution_id: str) -> ErrorResolution | None:
        return self._resolutions.get(resolution_id)

    async def create_resolution(self, pattern_id: str, **values: Any) -> ErrorResolution:
        row = ErrorResolution(
            id=str(uuid4()),
            pattern_id=pattern_id,
            fix_type=values["fix_type"],
            description=values["description"],
            explanation=values.get("explanation", ""),
            code_changes=list(values.get("code_changes") or []),
            preventive_measures=list(values.get("preventive_measures") or []),
            success_count=values.get("success_count", 0),
            applied_count=values.get("applied_count", 0),
            success_rate=values.get("success_rate", 0.0),
            confidence_score=values.get("confidence_score", 0.0),
            avg_fix_time=values.get("avg_fix_time"),
            source=values.get("source", "community"),
            ai_model=values.get("ai_model"),
            tags=list(values.get("tags") or []),
            created_at=_now(),
        )
        self._resolutions[row.id] = row
        return row

    async def update_resolution(self, resolution_id: str, **values: Any) -> ErrorResolution | None:
        row = self._resolutions.get(resolution_id)
        if row is None:
            return None
        for key, value in values.items():
            setattr(row, key, value)
        return row
