"""Topic segmenter: keep only the most recent topic segments."""

from __future__ import annotations

from typing import Sequence

from loguru import logger

from threadmem.memory.types import Message


def continuity(text_a: str, text_b: str) -> float:
    """Word-overlap continuity |shared| / |union| between two messages."""
    words_a = set((text_a or "").lower().split())
    words_b = set((text_b or "").lower().split())
    union = words_a | words_b
    if not union:
        return 0.0
    return len(words_a & words_b) / len(union)


class TopicSegmenter:
    """Split a conversation where consecutive messages stop sharing vocabulary.

    Segments are retained wholesale: the last `max_segments` survive and are
    flattened back in order. Histories of `min_messages` or fewer pass through.
    """

    name = "topic_segmenter"

    def __init__(
        self,
        continuity_threshold: float = 0.7,
        max_segments: int = 3,
        min_messages: int = 10,
    ):
        if max_segments <= 0:
            raise ValueError("max_segments must be positive")
        if not 0.0 <= continuity_threshold <= 1.0:
            raise ValueError("continuity_threshold must be between 0 and 1.0")
        self.continuity_threshold = continuity_threshold
        self.max_segments = max_segments
        self.min_messages = min_messages

    def segment(self, messages: Sequence[Message]) -> list[list[Message]]:
        segments: list[list[Message]] = []
        current: list[Message] = []
        for i, message in enumerate(messages):
            current.append(message)
            if i < len(messages) - 1:
                nxt = messages[i + 1]
                if continuity(message.content, nxt.content) < self.continuity_threshold:
                    segments.append(current)
                    current = []
        if current:
            segments.append(current)
        return segments

    def process(self, messages: Sequence[Message]) -> list[Message]:
        if len(messages) <= self.min_messages:
            return list(messages)

        try:
            segments = self.segment(messages)
            kept = segments[-self.max_segments:]
            result = [message for segment in kept for message in segment]
        except Exception as e:
            logger.error(f"TopicSegmenter failed: {e}")
            return list(messages)

        logger.info(
            f"TopicSegmenter completed: {len(messages)} → {len(result)} messages "
            f"({len(segments)} segments, kept {len(kept)})"
        )
        return result
