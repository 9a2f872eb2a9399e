"""
Similarity metrics shared by error matching and consensus agreement.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass

from .canonicalize import CanonicalPattern

_CODE_BLOCK_RE = re.compile(r"```[\s\S]*?```")
_PUNCTUATION_RE = re.compile(r"[{}();,]")
_WHITESPACE_RE = re.compile(r"\s+")


@dataclass
class SimilarityBreakdown:
    """Per-factor scores of a pattern comparison."""

    type_score: float
    message_score: float
    stack_score: float
    frame_score: float

    @property
    def weighted_total(self) -> float:
        return (
            0.30 * self.type_score
            + 0.25 * self.message_score
            + 0.30 * self.stack_score
            + 0.15 * self.frame_score
        )

    def to_dict(self) -> dict:
        return {
            "type": round(self.type_score, 2),
            "message": round(self.message_score, 2),
            "stack": round(self.stack_score, 2),
            "frames": round(self.frame_score, 2),
            "weighted_total": round(self.weighted_total, 2),
        }


def pattern_breakdown(a: CanonicalPattern, b: CanonicalPattern) -> SimilarityBreakdown:
    return SimilarityBreakdown(
        type_score=1.0 if a.error_type == b.error_type else 0.0,
        message_score=levenshtein_similarity(a.error_message, b.error_message),
        stack_score=levenshtein_similarity(a.normalized_stack, b.normalized_stack),
        frame_score=frame_overlap(a.key_frames, b.key_frames),
    )


def pattern_similarity(a: CanonicalPattern, b: CanonicalPattern) -> float:
    """Weighted similarity of two canonical patterns in [0, 1]."""
    return pattern_breakdown(a, b).weighted_total


def levenshtein_distance(first: str, second: str) -> int:
    if first == second:
        return 0
    if len(first) < len(second):
        first, second = second, first
    if not second:
        return len(first)

    previous = list(range(len(second) + 1))
    for i, char_a in enumerate(first, start=1):
        current = [i]
        for j, char_b in enumerate(second, start=1):
            cost = 0 if char_a == char_b else 1
            current.append(
                min(
                    previous[j] + 1,  # deletion
                    current[j - 1] + 1,  # insertion
                    previous[j - 1] + cost,  # substitution
                )
            )
        previous = current
    return previous[-1]


def levenshtein_similarity(first: str, second: str) -> float:
    max_len = max(len(first), len(second))
    if max_len == 0:
        return 1.0
    return 1 - levenshtein_distance(first, second) / max_len


def frame_overlap(frames_a: Sequence[str], frames_b: Sequence[str]) -> float:
    """Jaccard overlap of key-frame identifiers; 0 when either side is empty."""
    set_a = set(frames_a)
    set_b = set(frames_b)
    if not set_a or not set_b:
        return 0.0
    return len(set_a & set_b) / len(set_a | set_b)


def _normalize_text(text: str) -> str:
    collapsed = _WHITESPACE_RE.sub(" ", text.lower())
    return _PUNCTUATION_RE.sub("", collapsed).strip()


def token_jaccard(text_a: str, text_b: str) -> float:
    words_a = set(_normalize_text(text_a).split())
    words_b = set(_normalize_text(text_b).split())
    if not words_a and not words_b:
        return 1.0
    union = words_a | words_b
    return len(words_a & words_b) / len(union)


def code_block_overlap(text_a: str, text_b: str) -> float:
    blocks_a = _CODE_BLOCK_RE.findall(text_a)
    blocks_b = _CODE_BLOCK_RE.findall(text_b)
    if not blocks_a and not blocks_b:
        return 1.0
    if not blocks_a or not blocks_b:
        return 0.0
    exact_matches = sum(1 for block in blocks_a if block in blocks_b)
    return exact_matches / max(len(blocks_a), len(blocks_b))


def response_similarity(text_a: str, text_b: str) -> float:
    """Agreement between two model responses: 70% word overlap, 30% code blocks."""
    return token_jaccard(text_a, text_b) * 0.7 + code_block_overlap(text_a, text_b) * 0.3


def mean_pairwise_similarity(texts: Sequence[str]) -> float:
    scores: list[float] = []
    for i in range(len(texts)):
        for j in range(i + 1, len(texts)):
            scores.append(response_similarity(texts[i], texts[j]))
    if not scores:
        return 0.0
    return sum(scores) / len(scores)
