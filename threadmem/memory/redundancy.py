"""Redundancy filter: drop near-duplicate messages by token-set Jaccard."""

from __future__ import annotations

from typing import Sequence

from loguru import logger

from threadmem.memory.types import ScoredMessage

MIN_TOKEN_LENGTH = 3


def tokenize(text: str) -> set[str]:
    """Lower-cased whitespace tokens longer than two characters."""
    return {w for w in (text or "").lower().split() if len(w) >= MIN_TOKEN_LENGTH}


def jaccard_similarity(text_a: str, text_b: str) -> float:
    """|A ∩ B| / |A ∪ B| over tokenize(); 0.0 when both sides are empty."""
    words_a = tokenize(text_a)
    words_b = tokenize(text_b)
    union = words_a | words_b
    if not union:
        return 0.0
    return len(words_a & words_b) / len(union)


class RedundancyFilter:
    """Keep the first of any group of near-duplicates unless a later one scores higher.

    O(N^2) in message count; callers bound N before calling.
    """

    def __init__(self, similarity_threshold: float = 0.85):
        self.similarity_threshold = similarity_threshold

    def filter(self, scored: Sequence[ScoredMessage]) -> list[ScoredMessage]:
        accepted: list[ScoredMessage] = []
        accepted_tokens: list[set[str]] = []

        for current in scored:
            tokens = tokenize(current.message.content)
            duplicate = False
            for existing, existing_tokens in zip(accepted, accepted_tokens):
                union = tokens | existing_tokens
                similarity = len(tokens & existing_tokens) / len(union) if union else 0.0
                if similarity > self.similarity_threshold and existing.score >= current.score:
                    duplicate = True
                    break
            if not duplicate:
                accepted.append(current)
                accepted_tokens.append(tokens)

        if len(accepted) < len(scored):
            logger.debug(
                f"RedundancyFilter: {len(scored)} → {len(accepted)} messages "
                f"(threshold={self.similarity_threshold})"
            )
        return accepted
