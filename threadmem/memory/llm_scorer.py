"""LiteLLM-backed scoring model for the weighted reranker."""

import json
import logging
import re
from typing import Any, Sequence

from litellm import acompletion
from litellm.exceptions import (
    APIConnectionError,
    RateLimitError,
    ServiceUnavailableError,
)
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from threadmem.config.schema import ScoringModelConfig
from threadmem.errors import ScoringModelError
from threadmem.memory.types import Candidate

logger = logging.getLogger(__name__)

SCORING_PROMPT = """Rate how relevant each numbered passage is to the query.

Rules:
- Score every passage from 0.0 (irrelevant) to 1.0 (directly answers the query).
- Respond with ONLY a valid JSON array, no markdown, no explanation.

Format:
[{{"index": 0, "score": 0.8}}]

Query:
{query}

Passages:
{passages}"""

MAX_PASSAGE_CHARS = 1000


class LiteLLMScoringModel:
    """Score candidate passages against a query with a single LLM call.

    Candidate text is read from metadata["text"]. Returned candidates keep
    their ids and carry the semantic score in `score`.
    """

    def __init__(self, config: ScoringModelConfig | None = None):
        self.config = config or ScoringModelConfig()

    async def score(self, query: str, candidates: Sequence[Candidate]) -> list[Candidate]:
        if not candidates:
            return []

        prompt = SCORING_PROMPT.format(query=query, passages=self.format_passages(candidates))
        kwargs: dict[str, Any] = {
            "model": self.config.model,
            "messages": [{"role": "user", "content": prompt}],
            "max_tokens": self.config.max_tokens,
            "temperature": self.config.temperature,
        }
        if self.config.api_key:
            kwargs["api_key"] = self.config.api_key
        if self.config.api_base:
            kwargs["api_base"] = self.config.api_base

        @retry(
            retry=retry_if_exception_type((RateLimitError, APIConnectionError, ServiceUnavailableError)),
            wait=wait_exponential(multiplier=1, min=2, max=30),
            stop=stop_after_attempt(max(1, self.config.max_retries)),
            reraise=True,
            before_sleep=before_sleep_log(logger, logging.WARNING)
        )
        async def _do_call():
            return await acompletion(**kwargs)

        try:
            response = await _do_call()
            content = response.choices[0].message.content or ""
        except Exception as e:
            raise ScoringModelError(f"Scoring model call failed: {e}") from e

        return self.parse_scores(content, candidates)

    @staticmethod
    def format_passages(candidates: Sequence[Candidate]) -> str:
        lines = []
        for i, candidate in enumerate(candidates):
            text = str(candidate.metadata.get("text", ""))[:MAX_PASSAGE_CHARS]
            lines.append(f"[{i}] {text}")
        return "\n".join(lines)

    @staticmethod
    def parse_scores(text: str, candidates: Sequence[Candidate]) -> list[Candidate]:
        """Parse the model's JSON array into scored candidates.

        Entries that do not reference a known passage index are ignored;
        passages the model skipped score 0.0.

        Raises:
            ScoringModelError: when no JSON array can be parsed.
        """
        json_match = re.search(r"\[.*\]", (text or "").strip(), re.DOTALL)
        if not json_match:
            raise ScoringModelError("Scoring model returned no JSON array")
        try:
            data = json.loads(json_match.group())
        except json.JSONDecodeError as e:
            raise ScoringModelError(f"Scoring model returned invalid JSON: {e}") from e
        if not isinstance(data, list):
            raise ScoringModelError("Scoring model response is not a list")

        scores: dict[int, float] = {}
        for item in data:
            if not isinstance(item, dict):
                continue
            try:
                index = int(item["index"])
                value = float(item["score"])
            except (KeyError, TypeError, ValueError):
                continue
            if 0 <= index < len(candidates):
                scores[index] = min(1.0, max(0.0, value))

        return [
            Candidate(id=c.id, score=scores.get(i, 0.0), metadata=dict(c.metadata))
            for i, c in enumerate(candidates)
        ]
