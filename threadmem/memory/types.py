"""Value types shared by the compaction and retrieval paths."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Role(str, Enum):
    """Conversation roles, in the order the scorer weighs them."""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


@dataclass(frozen=True)
class Message:
    """A stored message. Chronology is defined by sequence_index alone."""
    role: Role
    content: str
    sequence_index: int
    metadata: dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_dict(cls, data: dict[str, Any], sequence_index: int | None = None) -> "Message":
        """Build a message from a plain dict (role/content/sequence_index)."""
        index = data.get("sequence_index", data.get("sequenceIndex", sequence_index))
        if index is None:
            raise ValueError("message has no sequence_index")
        content = data.get("content")
        return cls(
            role=Role(data.get("role", "user")),
            content=content if isinstance(content, str) else str(content or ""),
            sequence_index=int(index),
            metadata=dict(data.get("metadata") or {}),
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "role": self.role.value,
            "content": self.content,
            "sequence_index": self.sequence_index,
        }
        if self.metadata:
            data["metadata"] = dict(self.metadata)
        return data


@dataclass
class ScoredMessage:
    """Transient scoring wrapper; never persisted."""
    message: Message
    score: float
    sequence_index: int


@dataclass
class Thread:
    """A single conversation's history container."""
    id: str
    resource_id: str
    title: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class Candidate:
    """Similarity search hit before reranking."""
    id: str
    score: float
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class RerankedResult:
    """Reranker output; lists of these are ordered by descending score."""
    id: str
    score: float
    metadata: dict[str, Any] = field(default_factory=dict)
    scores: dict[str, float] = field(default_factory=dict)


@dataclass
class SelectBy:
    """Message store selector: the last N messages and/or explicit indices."""
    last: int | None = None
    include: list[int] | None = None


@dataclass
class RerankMetadata:
    top_k_initial: int
    top_k_final: int
    context_before: int
    context_after: int
    initial_result_count: int
    reranking_used: bool
    duration_ms: float
    average_relevance_score: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "topKInitial": self.top_k_initial,
            "topKFinal": self.top_k_final,
            "contextBefore": self.context_before,
            "contextAfter": self.context_after,
            "initialResultCount": self.initial_result_count,
            "rerankingUsed": self.reranking_used,
            "durationMs": self.duration_ms,
            "averageRelevanceScore": self.average_relevance_score,
        }


@dataclass
class RetrievalResult:
    messages: list[Message]
    metadata: RerankMetadata
