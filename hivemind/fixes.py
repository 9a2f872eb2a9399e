"""
Fix recommendation: ranking stored fixes, generating new ones with a model,
and learning from reported outcomes.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .canonicalize import CanonicalPattern, ErrorReport
from .confidence import running_average, wilson_lower_bound
from .errors import ProviderError
from .model_caller import ChatMessage, ChatOptions, ModelCaller
from .models import ErrorPattern, ErrorResolution
from .store import PatternStore

logger = logging.getLogger(__name__)

AI_FIX_CONFIDENCE = 0.7
MAX_ONE_CLICK_CHANGES = 3

SOURCE_COMMUNITY = "community"
SOURCE_AI_GENERATED = "ai_generated"


class CodeChange(BaseModel):
    """A single line-anchored edit."""

    model_config = ConfigDict(populate_by_name=True, strict=True)

    file: str
    line_number: int | None = Field(default=None, alias="lineNumber")
    before: str | None = None
    after: str | None = None


class AIFixProposal(BaseModel):
    """The JSON object a model must answer with when asked for a fix."""

    model_config = ConfigDict(populate_by_name=True, strict=True)

    root_cause: str = Field(alias="rootCause", min_length=1)
    fix_type: str = Field(alias="fixType", min_length=1)
    code_changes: list[CodeChange] = Field(alias="codeChanges")
    explanation: str = Field(min_length=1)
    preventive_measures: list[str] = Field(default_factory=list, alias="preventiveMeasures")


@dataclass
class RecommendedFix:
    id: str
    fix_type: str
    description: str
    explanation: str
    code_changes: list[dict[str, Any]]
    success_rate: float
    confidence_score: float
    applied_count: int
    source: str
    estimated_time: str
    one_click_applicable: bool
    preventive_measures: list[str] = field(default_factory=list)

    @classmethod
    def from_resolution(cls, fix: ErrorResolution) -> RecommendedFix:
        code_changes = list(fix.code_changes or [])
        return cls(
            id=fix.id,
            fix_type=fix.fix_type,
            description=fix.description,
            explanation=fix.explanation or "",
            code_changes=code_changes,
            success_rate=fix.success_rate or 0.0,
            confidence_score=fix.confidence_score or 0.0,
            applied_count=fix.applied_count or 0,
            source=fix.source,
            estimated_time=format_duration(fix.avg_fix_time),
            one_click_applicable=is_one_click_applicable(code_changes),
            preventive_measures=list(fix.preventive_measures or []),
        )


def format_duration(ms: float | None) -> str:
    """Milliseconds as the largest whole hour/minute/second unit, never below one second."""
    if not ms:
        return "unknown"

    seconds = max(int(ms // 1000), 1)
    minutes = seconds // 60
    hours = minutes // 60

    if hours > 0:
        return f"{hours} hour{'s' if hours > 1 else ''}"
    if minutes > 0:
        return f"{minutes} minute{'s' if minutes > 1 else ''}"
    return f"{seconds} second{'s' if seconds != 1 else ''}"


def is_one_click_applicable(code_changes: Any) -> bool:
    """Small, fully specified change sets can be applied without review."""
    if not isinstance(code_changes, list) or not code_changes:
        return False
    if len(code_changes) > MAX_ONE_CLICK_CHANGES:
        return False

    for change in code_changes:
        if not isinstance(change, dict):
            return False
        line_number = change.get("line_number", change.get("lineNumber"))
        if not change.get("file") or not change.get("before") or not change.get("after"):
            return False
        if not isinstance(line_number, int) or isinstance(line_number, bool) or line_number < 1:
            return False
    return True


def deduplicate_fixes(fixes: list[ErrorResolution]) -> list[ErrorResolution]:
    """Drop repeats of (fix_type, description), keeping the first seen."""
    seen: set[tuple[str, str]] = set()
    unique: list[ErrorResolution] = []
    for fix in fixes:
        key = (fix.fix_type, fix.description)
        if key not in seen:
            seen.add(key)
            unique.append(fix)
    return unique


def extract_json_object(text: str) -> dict[str, Any] | None:
    """First well-formed JSON object embedded in free-form model output."""
    decoder = json.JSONDecoder()
    for match in re.finditer(r"\{", text):
        try:
            value, _ = decoder.raw_decode(text, match.start())
        except json.JSONDecodeError:
            continue
        if isinstance(value, dict):
            return value
    return None


def parse_ai_fix(text: str) -> AIFixProposal | None:
    payload = extract_json_object(text)
    if payload is None:
        logger.error("AI response did not contain a JSON object")
        return None
    try:
        return AIFixProposal.model_validate(payload)
    except ValidationError as exc:
        logger.error("AI fix rejected, response failed validation: %s", exc.errors())
        return None


def build_ai_fix_prompt(report: ErrorReport, pattern: CanonicalPattern) -> str:
    snippet = f"Code Snippet:\n{report.code_snippet}\n" if report.code_snippet else ""
    return f"""
You are an expert debugger. Analyze this error and provide a fix:

Error Type: {pattern.error_type}
Category: {pattern.category}
Message: {report.error_message}

Stack Trace:
{report.stack_trace}

{snippet}
Provide:
1. Root cause analysis
2. Specific code changes to fix it
3. Explanation of why this fix works
4. Any preventive measures

Respond with a single JSON object and nothing else:
{{
  "rootCause": "...",
  "fixType": "NULL_CHECK | TYPE_CONVERSION | ASYNC_AWAIT | TRY_CATCH | etc",
  "codeChanges": [
    {{
      "file": "path/to/file",
      "lineNumber": 42,
      "before": "old code",
      "after": "new code"
    }}
  ],
  "explanation": "...",
  "preventiveMeasures": ["..."]
}}
"""


class FixRecommender:
    """Ranks known fixes for a pattern and keeps their statistics current."""

    def __init__(
        self,
        store: PatternStore,
        model_caller: ModelCaller | None = None,
        *,
        ai_provider: str = "anthropic",
        ai_model: str = "claude-3-5-sonnet-20241022",
        exact_limit: int = 5,
        candidate_limit: int = 5,
        per_candidate_limit: int = 3,
        min_success_rate: float = 0.70,
    ) -> None:
        self._store = store
        self._model_caller = model_caller
        self._ai_provider = ai_provider
        self._ai_model = ai_model
        self._exact_limit = exact_limit
        self._candidate_limit = candidate_limit
        self._per_candidate_limit = per_candidate_limit
        self._min_success_rate = min_success_rate

    async def get_recommended_fixes(self, pattern: ErrorPattern) -> list[RecommendedFix]:
        exact = await self._store.find_resolutions_by_pattern(pattern.id, limit=self._exact_limit)
        if exact:
            return [RecommendedFix.from_resolution(fix) for fix in exact]

        # Borrow proven fixes from patterns of the same shape.
        candidates = await self._store.find_patterns_by_type_category_language(
            pattern.error_type,
            pattern.category,
            pattern.language,
            exclude_id=pattern.id,
            limit=self._candidate_limit,
        )
        borrowed: list[ErrorResolution] = []
        for candidate in candidates:
            borrowed.extend(
                await self._store.find_resolutions_by_pattern(
                    candidate.id,
                    limit=self._per_candidate_limit,
                    min_success_rate=self._min_success_rate,
                )
            )
        return [RecommendedFix.from_resolution(fix) for fix in deduplicate_fixes(borrowed)]

    async def generate_ai_fix(
        self, report: ErrorReport, pattern: CanonicalPattern, pattern_id: str
    ) -> RecommendedFix | None:
        if self._model_caller is None:
            return None

        try:
            response = await self._model_caller.chat(
                [ChatMessage(role="user", content=build_ai_fix_prompt(report, pattern))],
                ChatOptions(provider=self._ai_provider, model=self._ai_model),
            )
        except ProviderError as exc:
            logger.error("Error generating AI fix: %s", exc)
            return None

        proposal = parse_ai_fix(response.content)
        if proposal is None:
            return None

        saved = await self._store.create_resolution(
            pattern_id,
            fix_type=proposal.fix_type,
            description=f"AI-Generated Fix: {proposal.root_cause}",
            explanation=proposal.explanation,
            code_changes=[change.model_dump() for change in proposal.code_changes],
            preventive_measures=proposal.preventive_measures,
            source=SOURCE_AI_GENERATED,
            ai_model=response.model or self._ai_model,
            confidence_score=AI_FIX_CONFIDENCE,
            tags=[pattern.category.lower(), "ai-generated"],
        )
        logger.info("Saved AI-generated fix %s for pattern %s", saved.id, pattern_id)
        return RecommendedFix.from_resolution(saved)

    async def submit_fix(
        self,
        pattern_id: str,
        *,
        fix_type: str,
        description: str,
        explanation: str = "",
        code_changes: list[dict[str, Any]] | None = None,
        tags: list[str] | None = None,
    ) -> RecommendedFix:
        """Record a community-contributed fix for a known pattern."""
        changes = [CodeChange.model_validate(change) for change in code_changes or []]
        saved = await self._store.create_resolution(
            pattern_id,
            fix_type=fix_type,
            description=description,
            explanation=explanation,
            code_changes=[change.model_dump() for change in changes],
            source=SOURCE_COMMUNITY,
            confidence_score=0.0,
            tags=list(tags or []),
        )
        return RecommendedFix.from_resolution(saved)

    async def report_fix_result(
        self,
        fix_id: str,
        occurrence_id: str,
        success: bool,
        time_to_fix: float | None = None,
    ) -> ErrorResolution | None:
        """Fold one applied-fix outcome into fix, occurrence and pattern statistics.

        Returns the updated fix, or None when ``fix_id`` is unknown (nothing is
        written in that case).
        """
        fix = await self._store.get_resolution(fix_id)
        if fix is None:
            logger.warning("Fix result reported for unknown fix %s", fix_id)
            return None

        applied_count = fix.applied_count + 1
        success_count = fix.success_count + (1 if success else 0)
        success_rate = success_count / applied_count
        values: dict[str, Any] = {
            "applied_count": applied_count,
            "success_count": success_count,
            "success_rate": success_rate,
            "confidence_score": wilson_lower_bound(success_rate, applied_count),
        }
        if time_to_fix is not None:
            values["avg_fix_time"] = running_average(fix.avg_fix_time, time_to_fix, applied_count)
        updated = await self._store.update_resolution(fix_id, **values)

        occurrence = await self._store.update_occurrence(
            occurrence_id,
            resolved=success,
            resolution_id=fix_id,
            time_to_resolve=time_to_fix,
        )
        if occurrence is None:
            logger.warning("Fix result reported for unknown occurrence %s", occurrence_id)

        if success:
            await self._record_pattern_resolution(fix.pattern_id, time_to_fix)

        return updated

    async def _record_pattern_resolution(self, pattern_id: str, time_to_fix: float | None) -> None:
        pattern = await self._store.get_pattern(pattern_id)
        if pattern is None:
            return

        resolution_count = min(pattern.resolution_count + 1, pattern.occurrence_count)
        values: dict[str, Any] = {
            "resolution_count": resolution_count,
            "success_rate": resolution_count / pattern.occurrence_count,
        }
        if time_to_fix is not None:
            values["avg_time_to_fix"] = running_average(
                pattern.avg_time_to_fix, time_to_fix, resolution_count
            )
        await self._store.update_pattern(pattern_id, **values)
