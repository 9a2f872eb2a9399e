"""
Time-travel debugging: turns a raw error report into a diagnosis.

A report is canonicalized into a pattern, recorded against the shared
pattern corpus, compared with related patterns, and matched with fixes that
worked for other developers (or a freshly generated one when none exist).
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from enum import StrEnum
from typing import Any

from .canonicalize import CanonicalPattern, ErrorReport, PatternCanonicalizer
from .fixes import FixRecommender, RecommendedFix, format_duration
from .models import ErrorPattern
from .similarity import pattern_similarity
from .store import PatternStore

logger = logging.getLogger(__name__)

NO_FIX_CONFIDENCE = 0.3
ONE_CLICK_FIX_TIME = "30 seconds"
DEFAULT_FIX_TIME = "2-5 minutes"
POPULAR_FIX_APPLICATIONS = 10
PROVEN_FIX_SUCCESS_RATE = 0.9
DESCRIPTION_LIMIT = 100

CATEGORY_HINTS = {
    "NULL_REFERENCE": "This is a null/undefined reference error - add null checks",
    "ASYNC_ERROR": "Async/await issue detected - ensure proper promise handling",
}


class DebugStage(StrEnum):
    RECEIVE = "receive"
    CANONICALIZE = "canonicalize"
    LOOKUP_OR_CREATE_PATTERN = "lookup_or_create_pattern"
    RECORD_OCCURRENCE = "record_occurrence"
    FIND_SIMILAR = "find_similar"
    GET_FIXES = "get_fixes"
    GENERATE_AI_FIX = "generate_ai_fix"
    COMPOSE_DIAGNOSIS = "compose_diagnosis"
    DONE = "done"


@dataclass
class SimilarError:
    id: str
    similarity: float
    occurrence_count: int
    resolution_count: int
    success_rate: float
    avg_time_to_fix: float | None
    description: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class Diagnosis:
    diagnosis: str
    error_pattern: CanonicalPattern
    pattern_id: str
    occurrence_id: str
    similar_errors: list[SimilarError]
    recommended_fixes: list[RecommendedFix]
    confidence: float
    estimated_fix_time: str
    insights: list[str] = field(default_factory=list)
    stages: list[DebugStage] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "diagnosis": self.diagnosis,
            "error_pattern": asdict(self.error_pattern),
            "pattern_id": self.pattern_id,
            "occurrence_id": self.occurrence_id,
            "similar_errors": [s.to_dict() for s in self.similar_errors],
            "recommended_fixes": [asdict(f) for f in self.recommended_fixes],
            "confidence": self.confidence,
            "estimated_fix_time": self.estimated_fix_time,
            "insights": self.insights,
        }


@dataclass
class ApplyResult:
    success: bool
    message: str
    applied_changes: list[dict[str, Any]] = field(default_factory=list)
    test_mode: bool = False


@dataclass
class HistoryPage:
    entries: list[dict[str, Any]]
    limit: int
    offset: int
    total: int

    @property
    def has_more(self) -> bool:
        return self.offset + self.limit < self.total


def pattern_from_row(row: ErrorPattern) -> CanonicalPattern:
    return CanonicalPattern(
        signature=row.signature,
        error_type=row.error_type,
        error_message=row.error_message,
        normalized_stack=row.normalized_stack or "",
        language=row.language,
        framework=row.framework,
        category=row.category,
        severity=row.severity,
        key_frames=list(row.key_frames or []),
        tags=list(row.tags or []),
    )


def _mean_time_to_fix(similar_errors: list[SimilarError]) -> float | None:
    times = [s.avg_time_to_fix for s in similar_errors if s.avg_time_to_fix is not None]
    if not times:
        return None
    return sum(times) / len(times)


def calculate_confidence(similar_errors: list[SimilarError], fixes: list[RecommendedFix]) -> float:
    """Overall diagnosis confidence, driven by the best fix."""
    if not fixes:
        return NO_FIX_CONFIDENCE

    best = fixes[0]
    confidence = best.confidence_score
    if similar_errors:
        avg_similarity = sum(s.similarity for s in similar_errors) / len(similar_errors)
        confidence = confidence * 0.7 + avg_similarity * 0.3
    if best.applied_count >= POPULAR_FIX_APPLICATIONS:
        confidence = min(1.0, confidence * 1.1)
    return round(confidence, 2)


def estimate_fix_time(fixes: list[RecommendedFix], similar_errors: list[SimilarError]) -> str:
    if fixes and fixes[0].one_click_applicable:
        return ONE_CLICK_FIX_TIME
    avg_time = _mean_time_to_fix(similar_errors)
    if avg_time:
        return format_duration(avg_time)
    return DEFAULT_FIX_TIME


def generate_insights(
    pattern: CanonicalPattern, similar_errors: list[SimilarError], fixes: list[RecommendedFix]
) -> list[str]:
    insights: list[str] = []

    hint = CATEGORY_HINTS.get(pattern.category)
    if hint:
        insights.append(hint)

    if similar_errors:
        top = similar_errors[0]
        insights.append(
            f"{top.occurrence_count} developers hit similar error ({round(top.similarity * 100)}% match)"
        )

    if fixes:
        best = fixes[0]
        if best.success_rate >= PROVEN_FIX_SUCCESS_RATE:
            insights.append(f"Proven fix available ({round(best.success_rate * 100)}% success rate)")
        if best.applied_count >= POPULAR_FIX_APPLICATIONS:
            insights.append(f"{best.applied_count} developers successfully used this fix")

    avg_time = _mean_time_to_fix(similar_errors)
    if avg_time:
        insights.append(f"Average fix time: {format_duration(avg_time)}")

    return insights


def build_diagnosis_text(
    pattern: CanonicalPattern, similar_errors: list[SimilarError], fixes: list[RecommendedFix]
) -> str:
    text = f"{pattern.error_type} in {pattern.language}"

    total_occurrences = sum(s.occurrence_count for s in similar_errors)
    if total_occurrences > 0:
        text += f" - {total_occurrences} developers have encountered this"

    if fixes and similar_errors:
        avg_success = sum(s.success_rate for s in similar_errors) / len(similar_errors)
        if avg_success > 0:
            text += f" ({round(avg_success * 100)}% successfully resolved)"

    return text


class TimeTravelDebugger:
    """Diagnoses errors against the shared pattern corpus."""

    def __init__(
        self,
        store: PatternStore,
        recommender: FixRecommender,
        canonicalizer: PatternCanonicalizer | None = None,
        *,
        candidate_limit: int = 50,
        similarity_floor: float = 0.70,
        results_limit: int = 10,
    ) -> None:
        self._store = store
        self._recommender = recommender
        self._canonicalizer = canonicalizer or PatternCanonicalizer()
        self._candidate_limit = candidate_limit
        self._similarity_floor = similarity_floor
        self._results_limit = results_limit

    async def analyze_error(self, report: ErrorReport, user_id: str | None = None) -> Diagnosis:
        """Run the full diagnosis workflow for one report.

        Pattern store failures propagate; no partial diagnosis is returned.
        """
        stages = [DebugStage.RECEIVE]
        logger.info("Analyzing error: %s", report.error_message[:DESCRIPTION_LIMIT])

        stages.append(DebugStage.CANONICALIZE)
        pattern = self._canonicalizer.canonicalize(report)
        logger.debug("Signature %s (%s/%s)", pattern.signature, pattern.error_type, pattern.category)

        stages.append(DebugStage.LOOKUP_OR_CREATE_PATTERN)
        row = await self._lookup_or_create_pattern(pattern)

        stages.append(DebugStage.RECORD_OCCURRENCE)
        occurrence = await self._store.create_occurrence(
            row.id,
            user_id=user_id,
            raw_log=report.raw_log,
            stack_trace=report.stack_trace,
            code_snippet=report.code_snippet,
            file_path=report.file_path,
            line_number=report.line_number,
            environment=report.environment,
        )

        stages.append(DebugStage.FIND_SIMILAR)
        similar_errors = await self.find_similar_errors(pattern, row.id)

        stages.append(DebugStage.GET_FIXES)
        fixes = await self._recommender.get_recommended_fixes(row)
        if not fixes:
            stages.append(DebugStage.GENERATE_AI_FIX)
            ai_fix = await self._recommender.generate_ai_fix(report, pattern, row.id)
            if ai_fix is not None:
                fixes = [ai_fix]

        stages.append(DebugStage.COMPOSE_DIAGNOSIS)
        diagnosis = Diagnosis(
            diagnosis=build_diagnosis_text(pattern, similar_errors, fixes),
            error_pattern=pattern,
            pattern_id=row.id,
            occurrence_id=occurrence.id,
            similar_errors=similar_errors,
            recommended_fixes=fixes,
            confidence=calculate_confidence(similar_errors, fixes),
            estimated_fix_time=estimate_fix_time(fixes, similar_errors),
            insights=generate_insights(pattern, similar_errors, fixes),
            stages=stages,
        )
        stages.append(DebugStage.DONE)

        logger.info(
            "Analysis complete: pattern=%s similar=%d fixes=%d confidence=%.2f",
            row.id,
            len(similar_errors),
            len(fixes),
            diagnosis.confidence,
        )
        return diagnosis

    async def _lookup_or_create_pattern(self, pattern: CanonicalPattern) -> ErrorPattern:
        existing = await self._store.find_by_signature(pattern.signature)
        if existing is None:
            row, created = await self._store.upsert_pattern(pattern)
            if created:
                logger.info("New error pattern %s", pattern.signature)
                return row
            existing = row
        return await self._store.increment_occurrence(existing.id)

    async def find_similar_errors(self, pattern: CanonicalPattern, pattern_id: str) -> list[SimilarError]:
        candidates = await self._store.find_patterns_by_type_category_language(
            pattern.error_type,
            pattern.category,
            pattern.language,
            exclude_id=pattern_id,
            limit=self._candidate_limit,
        )

        scored: list[tuple[float, ErrorPattern]] = []
        for candidate in candidates:
            score = pattern_similarity(pattern, pattern_from_row(candidate))
            if score >= self._similarity_floor:
                scored.append((score, candidate))
        scored.sort(key=lambda item: item[0], reverse=True)

        return [
            SimilarError(
                id=candidate.id,
                similarity=round(score, 2),
                occurrence_count=candidate.occurrence_count,
                resolution_count=candidate.resolution_count,
                success_rate=candidate.success_rate,
                avg_time_to_fix=candidate.avg_time_to_fix,
                description=f"{candidate.error_type}: {candidate.error_message[:DESCRIPTION_LIMIT]}...",
            )
            for score, candidate in scored[: self._results_limit]
        ]

    async def apply_fix(
        self, fix_id: str, user_id: str | None = None, test_mode: bool = False
    ) -> ApplyResult:
        """Hand back a one-click fix's change set.

        Statistics are untouched; callers follow up with ``report_fix_result``.
        """
        fix = await self._store.get_resolution(fix_id)
        if fix is None:
            return ApplyResult(success=False, message="Fix not found", test_mode=test_mode)

        formatted = RecommendedFix.from_resolution(fix)
        if not formatted.one_click_applicable:
            return ApplyResult(
                success=False,
                message="This fix requires manual review before applying",
                test_mode=test_mode,
            )

        logger.info("Fix %s applied by %s (test_mode=%s)", fix_id, user_id or "anonymous", test_mode)
        return ApplyResult(
            success=True,
            message="Fix ready to apply" if test_mode else "Fix applied successfully",
            applied_changes=formatted.code_changes,
            test_mode=test_mode,
        )

    async def report_fix_result(
        self,
        fix_id: str,
        occurrence_id: str,
        success: bool,
        time_to_fix: float | None = None,
    ):
        return await self._recommender.report_fix_result(fix_id, occurrence_id, success, time_to_fix)

    async def submit_fix(self, pattern_id: str, **fix: Any) -> RecommendedFix:
        return await self._recommender.submit_fix(pattern_id, **fix)

    async def get_history(self, user_id: str, limit: int = 20, offset: int = 0) -> HistoryPage:
        occurrences, total = await self._store.list_occurrences_by_user(user_id, limit=limit, offset=offset)

        entries: list[dict[str, Any]] = []
        for occurrence in occurrences:
            pattern = await self._store.get_pattern(occurrence.pattern_id)
            resolution = (
                await self._store.get_resolution(occurrence.resolution_id)
                if occurrence.resolution_id
                else None
            )
            entries.append(
                {
                    "id": occurrence.id,
                    "error_type": pattern.error_type if pattern else None,
                    "message": pattern.error_message if pattern else None,
                    "category": pattern.category if pattern else None,
                    "severity": pattern.severity if pattern else None,
                    "resolved": occurrence.resolved,
                    "time_to_resolve": occurrence.time_to_resolve,
                    "timestamp": occurrence.timestamp.isoformat() if occurrence.timestamp else None,
                    "resolution": (
                        {
                            "id": resolution.id,
                            "fix_type": resolution.fix_type,
                            "description": resolution.description,
                        }
                        if resolution
                        else None
                    ),
                }
            )

        return HistoryPage(entries=entries, limit=limit, offset=offset, total=total)
