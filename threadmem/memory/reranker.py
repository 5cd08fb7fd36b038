"""Reranker: weighted semantic + vector + position scoring of search hits."""

from __future__ import annotations

import asyncio
from numbers import Real
from typing import Any, Mapping, Sequence

from loguru import logger

from threadmem.config.schema import RerankWeights
from threadmem.memory.protocols import ScoringModel
from threadmem.memory.types import Candidate, Message, RerankedResult


class WeightedReranker:
    """Re-order an initial candidate set before it is handed to a model.

    Three-stage pipeline:
    1. Skip: candidate sets no larger than top_k are returned untouched
    2. Score: one scoring-model call yields a semantic score per candidate,
       combined with the vector score and a position score (1 - rank/N)
    3. Select: sort by combined score, keep top_k

    The scoring model is an enhancement only: on failure or timeout the
    top_k candidates by vector score are returned instead.
    """

    def __init__(
        self,
        model: ScoringModel,
        weights: RerankWeights | None = None,
        top_k: int = 3,
        timeout: float | None = 30.0,
    ):
        if top_k <= 0:
            raise ValueError("top_k must be positive")
        self.model = model
        self.weights = weights or RerankWeights()
        self.top_k = top_k
        self.timeout = timeout

    async def rerank(
        self, query: str, candidates: Sequence[Candidate]
    ) -> tuple[list[RerankedResult], bool]:
        """Rerank candidates for a query.

        Args:
            query: Free-text query the candidates were retrieved for.
            candidates: Search hits in original (vector) rank order.

        Returns:
            (results, reranking_used). Results are ordered by descending score.
        """
        if len(candidates) <= self.top_k:
            logger.debug(
                f"Reranker: {len(candidates)} candidates <= top_k={self.top_k}, skipping"
            )
            return [self._passthrough(c) for c in candidates], False

        try:
            semantic = await self._semantic_scores(query, candidates)
        except Exception as e:
            logger.error(f"Reranking model failed, falling back to vector order: {e!r}")
            return self.fallback(candidates), False

        total = len(candidates)
        results: list[RerankedResult] = []
        for rank, candidate in enumerate(candidates):
            scores = {
                "semantic": semantic.get(candidate.id, 0.0),
                "vector": float(candidate.score),
                "position": self.position_score(rank, total),
            }
            combined = (
                self.weights.semantic * scores["semantic"]
                + self.weights.vector * scores["vector"]
                + self.weights.position * scores["position"]
            )
            results.append(RerankedResult(
                id=candidate.id,
                score=combined,
                metadata=dict(candidate.metadata),
                scores=scores,
            ))

        results.sort(key=lambda r: r.score, reverse=True)
        top = results[: self.top_k]
        logger.debug(f"Reranker: {total} → {len(top)} results for query '{query[:60]}'")
        return top, True

    async def _semantic_scores(
        self, query: str, candidates: Sequence[Candidate]
    ) -> dict[str, float]:
        call = self.model.score(query, list(candidates))
        if self.timeout is not None:
            scored = await asyncio.wait_for(call, timeout=self.timeout)
        else:
            scored = await call

        semantic: dict[str, float] = {}
        for item in scored:
            value = float(item.score)
            semantic[item.id] = min(1.0, max(0.0, value))
        return semantic

    def fallback(self, candidates: Sequence[Candidate]) -> list[RerankedResult]:
        """Top-k candidates by original vector score."""
        by_vector = sorted(candidates, key=lambda c: float(c.score), reverse=True)
        return [self._passthrough(c) for c in by_vector[: self.top_k]]

    @staticmethod
    def _passthrough(candidate: Candidate) -> RerankedResult:
        return RerankedResult(
            id=candidate.id,
            score=float(candidate.score),
            metadata=dict(candidate.metadata),
            scores={"vector": float(candidate.score)},
        )

    @staticmethod
    def position_score(rank: int, total: int) -> float:
        """1.0 for the first hit, decreasing linearly with original rank."""
        if total <= 0:
            return 0.0
        return 1.0 - (rank / total)

    @staticmethod
    def map_to_messages(
        results: Sequence[RerankedResult],
        messages_by_index: Mapping[int, Message],
        key: str = "sequence_index",
    ) -> list[tuple[RerankedResult, Message]]:
        """Pair results with their source messages via positional metadata.

        Results whose metadata position is missing, non-numeric or unknown
        are dropped rather than raising.
        """
        mapped: list[tuple[RerankedResult, Message]] = []
        for result in results:
            position = as_sequence_index(result.metadata.get(key))
            if position is None:
                logger.debug(f"Reranker: dropping result {result.id} without usable '{key}'")
                continue
            message = messages_by_index.get(position)
            if message is None:
                logger.debug(f"Reranker: no source message at {key}={position} for {result.id}")
                continue
            mapped.append((result, message))
        return mapped


def as_sequence_index(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, Real):
        return None
    as_float = float(value)
    if not as_float.is_integer():
        return None
    return int(as_float)
