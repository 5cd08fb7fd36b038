"""Hard token ceiling applied after compaction."""

from __future__ import annotations

from typing import Sequence

from loguru import logger

from threadmem.memory.types import Message


class TokenLimiter:
    """Keep the most recent messages whose total token count fits the budget.

    Independent of any importance score: walks newest → oldest and stops at
    the first message that would overflow.
    """

    name = "token_limiter"

    # Role, separators and message framing
    MESSAGE_OVERHEAD = 4

    def __init__(self, max_tokens: int = 1_000_000, tokenizer: str = "heuristic",
                 encoding: str = "cl100k_base"):
        if max_tokens <= 0:
            raise ValueError("max_tokens must be positive")
        if tokenizer not in ("heuristic", "tiktoken"):
            raise ValueError(f"Unknown tokenizer: {tokenizer}")
        self.max_tokens = max_tokens
        self.tokenizer = tokenizer
        self.encoding_name = encoding
        self._encoding = None

    def _get_encoding(self):
        if self._encoding is None:
            import tiktoken
            self._encoding = tiktoken.get_encoding(self.encoding_name)
        return self._encoding

    def count_tokens(self, text: str) -> float:
        """Count tokens with tiktoken, or estimate as word count × 1.3."""
        if self.tokenizer == "tiktoken":
            return len(self._get_encoding().encode(text or ""))
        return len((text or "").split()) * 1.3

    def message_tokens(self, message: Message) -> float:
        return self.count_tokens(message.content) + self.MESSAGE_OVERHEAD

    def process(self, messages: Sequence[Message]) -> list[Message]:
        total = 0.0
        kept: list[Message] = []
        for message in reversed(messages):
            tokens = self.message_tokens(message)
            if total + tokens > self.max_tokens:
                break  # budget exhausted
            kept.append(message)
            total += tokens
        kept.reverse()

        if len(kept) < len(messages):
            logger.warning(
                f"TokenLimiter: {len(messages)} → {len(kept)} messages "
                f"(~{total:.0f}/{self.max_tokens} tokens)"
            )
        return kept
