"""Context pruner: bounded selection balancing recency and score."""

from __future__ import annotations

import math
from typing import Sequence

from loguru import logger

from threadmem.memory.types import ScoredMessage


class ContextPruner:
    """Select at most `max_messages` scored messages.

    A fixed share of the budget (floor(B * ratio)) is reserved for the newest
    messages regardless of score; the remaining slots go to the highest scores.
    Output is not re-ordered; the flow preserver sorts it.
    """

    def __init__(self, max_messages: int = 50, recency_reservation_ratio: float = 0.3):
        if max_messages <= 0:
            raise ValueError("max_messages must be positive")
        if not 0.0 <= recency_reservation_ratio <= 1.0:
            raise ValueError("recency_reservation_ratio must be between 0 and 1.0")
        self.max_messages = max_messages
        self.recency_reservation_ratio = recency_reservation_ratio

    @property
    def reserved_slots(self) -> int:
        return math.floor(self.max_messages * self.recency_reservation_ratio)

    def prune(self, scored: Sequence[ScoredMessage]) -> list[ScoredMessage]:
        if len(scored) <= self.max_messages:
            return list(scored)

        chronological = sorted(scored, key=lambda s: s.sequence_index)
        reserved_count = self.reserved_slots
        recent = chronological[len(chronological) - reserved_count:] if reserved_count else []
        recent_indices = {s.sequence_index for s in recent}

        remaining_slots = self.max_messages - len(recent)
        # sorted() is stable: equal scores keep chronological order
        by_score = sorted(
            (s for s in chronological if s.sequence_index not in recent_indices),
            key=lambda s: s.score,
            reverse=True,
        )
        filled = by_score[:remaining_slots]

        logger.debug(
            f"ContextPruner: kept {len(recent)} recent + {len(filled)} by score "
            f"out of {len(scored)}"
        )
        return filled + recent
