"""Conversation-flow preserver: deterministic chronological re-ordering."""

from __future__ import annotations

from typing import Sequence

from threadmem.memory.types import Message, ScoredMessage


class ConversationFlowPreserver:
    """Restore chronological order after the score-driven reducers.

    Only messages that survived pruning are considered: a user message whose
    assistant reply was pruned stays alone, the reply is never reinserted.
    A user/assistant pair that both survived ends up adjacent because the
    sort is total on sequence_index.
    """

    def preserve(self, scored: Sequence[ScoredMessage]) -> list[Message]:
        ordered = sorted(scored, key=lambda s: s.sequence_index)
        return [item.message for item in ordered]
