import asyncio
import json

import httpx
import pytest

from hivemind.canonicalize import ErrorReport, PatternCanonicalizer
from hivemind.debugger import (
    DebugStage,
    SimilarError,
    TimeTravelDebugger,
    build_diagnosis_text,
    calculate_confidence,
    estimate_fix_time,
)
from hivemind.errors import PatternStoreError
from hivemind.fixes import FixRecommender, RecommendedFix
from hivemind.gateway_client import ModelGatewayClient

NULL_REPORT = ErrorReport(
    error_message="Cannot read property 'name' of undefined",
    stack_trace="at foo (/app/a.js:10:5)",
    language="javascript",
)

ONE_CLICK_CHANGE = {"file": "src/a.js", "line_number": 10, "before": "user.name", "after": "user?.name"}


def _fix(**overrides) -> RecommendedFix:
    values = {
        "id": "fix",
        "fix_type": "NULL_CHECK",
        "description": "guard",
        "explanation": "",
        "code_changes": [],
        "success_rate": 0.0,
        "confidence_score": 0.0,
        "applied_count": 0,
        "source": "community",
        "estimated_time": "unknown",
        "one_click_applicable": False,
    }
    values.update(overrides)
    return RecommendedFix(**values)


def _similar(
    similarity: float, avg_time_to_fix: float | None = None, occurrences: int = 1, success_rate: float = 0.0
) -> SimilarError:
    return SimilarError(
        id="p",
        similarity=similarity,
        occurrence_count=occurrences,
        resolution_count=0,
        success_rate=success_rate,
        avg_time_to_fix=avg_time_to_fix,
        description="",
    )


async def _seed_pattern(store, message: str, stack: str, language: str = "javascript"):
    pattern = PatternCanonicalizer().canonicalize(
        ErrorReport(error_message=message, stack_trace=stack, language=language)
    )
    row, _ = await store.upsert_pattern(pattern)
    return row


@pytest.mark.asyncio
async def test_first_report_creates_pattern(store, fake_caller, debugger) -> None:
    fake_caller.script("anthropic", "no idea")

    diagnosis = await debugger.analyze_error(NULL_REPORT, user_id="dev")

    assert diagnosis.error_pattern.category == "NULL_REFERENCE"
    assert diagnosis.similar_errors == []
    assert diagnosis.recommended_fixes == []
    assert diagnosis.confidence == 0.3
    assert diagnosis.estimated_fix_time == "2-5 minutes"
    assert diagnosis.diagnosis == "TypeError in javascript"
    assert diagnosis.insights == ["This is a null/undefined reference error - add null checks"]
    assert DebugStage.GENERATE_AI_FIX in diagnosis.stages
    assert diagnosis.stages[-1] == DebugStage.DONE

    pattern = await store.get_pattern(diagnosis.pattern_id)
    assert pattern.occurrence_count == 1
    occurrence = await store.get_occurrence(diagnosis.occurrence_id)
    assert occurrence.user_id == "dev"
    assert occurrence.pattern_id == pattern.id
    assert occurrence.resolved is False


@pytest.mark.asyncio
async def test_repeat_report_increments_occurrences(store, debugger) -> None:
    first = await debugger.analyze_error(NULL_REPORT)
    pattern = await store.get_pattern(first.pattern_id)
    first_seen_last = pattern.last_seen

    second = await debugger.analyze_error(NULL_REPORT)

    assert second.pattern_id == first.pattern_id
    assert second.occurrence_id != first.occurrence_id
    pattern = await store.get_pattern(first.pattern_id)
    assert pattern.occurrence_count == 2
    assert pattern.last_seen >= first_seen_last
    assert len(await store.find_patterns_by_type_category_language("TypeError", "NULL_REFERENCE", "javascript")) == 1


@pytest.mark.asyncio
async def test_concurrent_reports_share_one_pattern(store, debugger) -> None:
    results = await asyncio.gather(*(debugger.analyze_error(NULL_REPORT) for _ in range(5)))

    assert len({d.pattern_id for d in results}) == 1
    pattern = await store.get_pattern(results[0].pattern_id)
    assert pattern.occurrence_count == 5


@pytest.mark.asyncio
async def test_similar_errors_filtered_and_ranked(store, debugger) -> None:
    close = await _seed_pattern(
        store,
        "Cannot read property 'email' of undefined",
        "at foo (/srv/b.js:99:1)\nat bar (/srv/c.js:3:3)",
    )
    await _seed_pattern(
        store,
        "Cannot read properties of null (reading 'x')",
        "at handler (/srv/routes/users.js:42:17)\nat processTicksAndRejections (internal/process/task_queues.js:95:5)",
    )
    await _seed_pattern(store, "Cannot read property 'name' of undefined", "at qux (/app/a.ts:10:5)", language="typescript")
    await store.update_pattern(close.id, occurrence_count=12, avg_time_to_fix=90_000)

    diagnosis = await debugger.analyze_error(NULL_REPORT)

    assert [s.id for s in diagnosis.similar_errors] == [close.id]
    similar = diagnosis.similar_errors[0]
    assert similar.similarity == pytest.approx(0.77)
    assert similar.occurrence_count == 12
    assert similar.description == "TypeError: Cannot read property <STR> of undefined..."
    assert diagnosis.estimated_fix_time == "1 minute"
    assert diagnosis.diagnosis == "TypeError in javascript - 12 developers have encountered this"
    assert "12 developers hit similar error (77% match)" in diagnosis.insights
    assert "Average fix time: 1 minute" in diagnosis.insights


@pytest.mark.asyncio
async def test_known_fix_drives_confidence_and_time(store, debugger) -> None:
    first = await debugger.analyze_error(NULL_REPORT)
    await store.create_resolution(
        first.pattern_id,
        fix_type="NULL_CHECK",
        description="Guard with optional chaining",
        code_changes=[ONE_CLICK_CHANGE],
        success_count=11,
        applied_count=12,
        success_rate=11 / 12,
        confidence_score=0.8,
    )

    diagnosis = await debugger.analyze_error(NULL_REPORT)

    assert DebugStage.GENERATE_AI_FIX not in diagnosis.stages
    assert [f.description for f in diagnosis.recommended_fixes] == ["Guard with optional chaining"]
    assert diagnosis.confidence == 0.88
    assert diagnosis.estimated_fix_time == "30 seconds"
    assert diagnosis.diagnosis == "TypeError in javascript (92% successfully resolved)"
    assert diagnosis.insights == [
        "This is a null/undefined reference error - add null checks",
        "Proven fix available (92% success rate)",
        "12 developers successfully used this fix",
    ]


@pytest.mark.asyncio
async def test_ai_fix_used_when_no_fix_exists(store, fake_caller, debugger) -> None:
    fake_caller.script(
        "anthropic",
        json.dumps(
            {
                "rootCause": "user not loaded",
                "fixType": "NULL_CHECK",
                "codeChanges": [{"file": "src/a.js", "lineNumber": 10, "before": "user.name", "after": "user?.name"}],
                "explanation": "Optional chaining",
                "preventiveMeasures": [],
            }
        ),
    )

    diagnosis = await debugger.analyze_error(NULL_REPORT)

    assert len(diagnosis.recommended_fixes) == 1
    fix = diagnosis.recommended_fixes[0]
    assert fix.source == "ai_generated"
    assert diagnosis.confidence == 0.7
    assert diagnosis.estimated_fix_time == "30 seconds"
    assert await store.get_resolution(fix.id) is not None


@pytest.mark.asyncio
async def test_malformed_gateway_usage_does_not_fail_analysis(store) -> None:
    reply = {"content": "nope", "usage": {"input_tokens": "n/a"}}
    caller = ModelGatewayClient(
        base_url="http://gateway.test",
        transport=httpx.MockTransport(lambda request: httpx.Response(200, json=reply)),
    )
    debugger = TimeTravelDebugger(store, FixRecommender(store, caller))

    diagnosis = await debugger.analyze_error(NULL_REPORT)
    await caller.aclose()

    assert diagnosis.recommended_fixes == []
    assert diagnosis.confidence == 0.3


@pytest.mark.asyncio
async def test_store_failure_aborts_analysis(store, recommender) -> None:
    class BrokenStore:
        async def find_by_signature(self, signature):
            raise PatternStoreError("database unavailable")

    debugger = TimeTravelDebugger(BrokenStore(), recommender)

    with pytest.raises(PatternStoreError):
        await debugger.analyze_error(NULL_REPORT)


def test_confidence_without_fixes() -> None:
    assert calculate_confidence([_similar(0.9)], []) == 0.3


def test_confidence_blends_similarity_and_popularity() -> None:
    fixes = [_fix(confidence_score=0.6, applied_count=3)]
    assert calculate_confidence([_similar(0.9), _similar(0.7)], fixes) == 0.66

    popular = [_fix(confidence_score=0.95, applied_count=40)]
    assert calculate_confidence([], popular) == 1.0


def test_estimate_fix_time_fallbacks() -> None:
    assert estimate_fix_time([_fix(one_click_applicable=True)], []) == "30 seconds"
    assert estimate_fix_time([_fix()], [_similar(0.8, 120_000), _similar(0.8, None), _similar(0.8, 240_000)]) == "3 minutes"
    assert estimate_fix_time([], [_similar(0.8)]) == "2-5 minutes"
    assert estimate_fix_time([_fix()], [_similar(0.8, 400)]) == "1 second"


def test_diagnosis_text_reports_similar_error_resolution() -> None:
    pattern = PatternCanonicalizer().canonicalize(NULL_REPORT)
    similar = [_similar(0.9, occurrences=10, success_rate=0.9)]
    ai_fix = _fix(source="ai_generated", success_rate=0.0)

    text = build_diagnosis_text(pattern, similar, [ai_fix])

    assert text == "TypeError in javascript - 10 developers have encountered this (90% successfully resolved)"
    assert build_diagnosis_text(pattern, similar, []) == "TypeError in javascript - 10 developers have encountered this"


@pytest.mark.asyncio
async def test_apply_fix(store, debugger) -> None:
    first = await debugger.analyze_error(NULL_REPORT)
    one_click = await store.create_resolution(
        first.pattern_id, fix_type="NULL_CHECK", description="guard", code_changes=[ONE_CLICK_CHANGE]
    )
    manual = await store.create_resolution(first.pattern_id, fix_type="REFACTOR", description="rework loading")

    result = await debugger.apply_fix(one_click.id, user_id="dev")
    assert result.success
    assert result.applied_changes == [ONE_CLICK_CHANGE]
    assert (await store.get_resolution(one_click.id)).applied_count == 0

    result = await debugger.apply_fix(manual.id)
    assert not result.success
    assert "manual review" in result.message

    result = await debugger.apply_fix("missing")
    assert not result.success
    assert result.message == "Fix not found"


@pytest.mark.asyncio
async def test_fix_outcome_feeds_next_diagnosis(store, debugger) -> None:
    first = await debugger.analyze_error(NULL_REPORT, user_id="dev")
    fix = await debugger.submit_fix(
        first.pattern_id,
        fix_type="NULL_CHECK",
        description="guard",
        code_changes=[ONE_CLICK_CHANGE],
    )

    await debugger.report_fix_result(fix.id, first.occurrence_id, True, time_to_fix=30_000)

    pattern = await store.get_pattern(first.pattern_id)
    assert pattern.resolution_count == 1
    assert pattern.success_rate == 1.0

    diagnosis = await debugger.analyze_error(NULL_REPORT)
    assert diagnosis.recommended_fixes[0].id == fix.id
    assert diagnosis.recommended_fixes[0].applied_count == 1


@pytest.mark.asyncio
async def test_history_pages_newest_first(store, debugger) -> None:
    first = await debugger.analyze_error(NULL_REPORT, user_id="dev")
    await asyncio.sleep(0.001)
    second = await debugger.analyze_error(ErrorReport(error_message="Unexpected token }"), user_id="dev")
    await debugger.analyze_error(NULL_REPORT, user_id="someone-else")

    page = await debugger.get_history("dev", limit=1)

    assert page.total == 2
    assert page.has_more
    assert [e["id"] for e in page.entries] == [second.occurrence_id]
    assert page.entries[0]["category"] == "SYNTAX_ERROR"
    assert page.entries[0]["resolution"] is None

    page = await debugger.get_history("dev", limit=1, offset=1)
    assert [e["id"] for e in page.entries] == [first.occurrence_id]
    assert not page.has_more
