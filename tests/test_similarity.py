import pytest

from hivemind.canonicalize import CanonicalPattern
from hivemind.similarity import (
    code_block_overlap,
    frame_overlap,
    levenshtein_distance,
    levenshtein_similarity,
    mean_pairwise_similarity,
    pattern_breakdown,
    pattern_similarity,
    response_similarity,
    token_jaccard,
)


def _pattern(
    *,
    error_type: str = "TypeError",
    message: str = "Cannot read property <STR> of undefined",
    stack: str = "at foo (<PATH>:LINE:COL)",
    key_frames: list[str] | None = None,
) -> CanonicalPattern:
    return CanonicalPattern(
        signature="0" * 16,
        error_type=error_type,
        error_message=message,
        normalized_stack=stack,
        language="javascript",
        category="NULL_REFERENCE",
        severity="HIGH",
        key_frames=key_frames if key_frames is not None else ["foo"],
    )


def test_levenshtein_distance() -> None:
    assert levenshtein_distance("kitten", "sitting") == 3
    assert levenshtein_distance("", "abc") == 3
    assert levenshtein_distance("same", "same") == 0


def test_levenshtein_similarity_of_empty_strings() -> None:
    assert levenshtein_similarity("", "") == 1.0
    assert levenshtein_similarity("abc", "") == 0.0


def test_frame_overlap_is_intersection_over_union() -> None:
    assert frame_overlap(["a", "b"], ["b", "c"]) == pytest.approx(1 / 3)
    assert frame_overlap([], ["a"]) == 0.0
    assert frame_overlap([], []) == 0.0


def test_identical_patterns_score_one() -> None:
    pattern = _pattern()
    assert pattern_similarity(pattern, pattern) == pytest.approx(1.0)


def test_identical_patterns_without_frames_lose_frame_weight() -> None:
    pattern = _pattern(key_frames=[])
    assert pattern_similarity(pattern, pattern) == pytest.approx(0.85)


def test_similarity_is_symmetric_and_bounded() -> None:
    a = _pattern()
    b = _pattern(
        error_type="ReferenceError",
        message="x is not defined",
        stack="at bar (<PATH>:LINE:COL)\nat baz (<PATH>:LINE:COL)",
        key_frames=["bar", "baz"],
    )

    assert pattern_similarity(a, b) == pytest.approx(pattern_similarity(b, a))
    assert 0.0 <= pattern_similarity(a, b) <= 1.0


def test_breakdown_weights() -> None:
    a = _pattern()
    b = _pattern(
        stack="at foo (<PATH>:LINE:COL)\nat bar (<PATH>:LINE:COL)",
        key_frames=["foo", "bar"],
    )

    breakdown = pattern_breakdown(a, b)
    assert breakdown.type_score == 1.0
    assert breakdown.message_score == 1.0
    assert breakdown.stack_score == pytest.approx(24 / 49)
    assert breakdown.frame_score == pytest.approx(0.5)
    assert breakdown.weighted_total == pytest.approx(0.30 + 0.25 + 0.30 * 24 / 49 + 0.15 * 0.5)
    assert breakdown.to_dict()["weighted_total"] == 0.77


def test_token_jaccard_ignores_case_and_punctuation() -> None:
    assert token_jaccard("Return  Value;", "return value") == 1.0
    assert token_jaccard("", "") == 1.0
    assert token_jaccard("alpha beta", "gamma delta") == 0.0


def test_code_block_overlap() -> None:
    block = "```python\nprint(1)\n```"
    other = "```python\nprint(2)\n```"

    assert code_block_overlap("no code", "none here") == 1.0
    assert code_block_overlap(block, "no code") == 0.0
    assert code_block_overlap(f"{block} {other}", block) == 0.5


def test_identical_responses_agree_fully() -> None:
    text = "Use a dict comprehension\n```python\n{k: v for k, v in items}\n```"
    assert response_similarity(text, text) == pytest.approx(1.0)


def test_unrelated_responses_without_code() -> None:
    assert response_similarity("alpha beta", "gamma delta") == pytest.approx(0.3)


def test_mean_pairwise_similarity() -> None:
    assert mean_pairwise_similarity(["a b", "a b", "c d"]) == pytest.approx((1.0 + 0.3 + 0.3) / 3)
    assert mean_pairwise_similarity(["only one"]) == 0.0
