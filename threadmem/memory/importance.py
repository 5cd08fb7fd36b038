"""Importance scorer: role weight + keywords + recency + verbosity + questions."""

from __future__ import annotations

import math
from typing import Sequence

from threadmem.memory.types import Message, Role, ScoredMessage


class ImportanceScorer:
    """Assign a relevance score to every message of a conversation.

    Score components:
    1. Base weight per role (system > user > assistant > tool)
    2. Fixed bonus for each importance keyword present in the content
    3. Recency bonus exp(-k * (N - 1 - i)), largest for the newest message
    4. Multiplicative penalty for verbose messages (never zeroes the score)
    5. Fixed bonus for interrogative content
    """

    ROLE_WEIGHTS = {
        Role.SYSTEM: 1.2,
        Role.USER: 1.0,
        Role.ASSISTANT: 0.8,
        Role.TOOL: 0.6,
    }
    KEYWORD_BONUS = 0.5
    QUESTION_BONUS = 0.3
    VERBOSE_PENALTY = 0.7
    QUESTION_MARKERS = ("?", "how", "what", "why")

    def __init__(
        self,
        importance_keywords: Sequence[str] = (),
        decay_rate: float = 0.1,
        verbose_threshold: int = 500,
    ):
        self.importance_keywords = [kw.lower() for kw in importance_keywords if kw]
        self.decay_rate = decay_rate
        self.verbose_threshold = verbose_threshold

    def score(self, messages: Sequence[Message]) -> list[ScoredMessage]:
        """Score messages, preserving input order.

        Args:
            messages: Conversation in chronological order.

        Returns:
            One ScoredMessage per input message, same order.
        """
        total = len(messages)
        return [
            ScoredMessage(
                message=message,
                score=self._score_one(message, position, total),
                sequence_index=message.sequence_index,
            )
            for position, message in enumerate(messages)
        ]

    def _score_one(self, message: Message, position: int, total: int) -> float:
        content = (message.content or "").lower()

        score = self.ROLE_WEIGHTS.get(message.role, 0.0)

        for keyword in self.importance_keywords:
            if keyword in content:
                score += self.KEYWORD_BONUS

        score += self.recency_bonus(position, total)

        if len(content) > self.verbose_threshold:
            score *= self.VERBOSE_PENALTY

        if any(marker in content for marker in self.QUESTION_MARKERS):
            score += self.QUESTION_BONUS

        return score

    def recency_bonus(self, position: int, total: int) -> float:
        """exp(-k * distance from the newest message)."""
        return math.exp(-self.decay_rate * (total - 1 - position))
