"""Tool-call filter: strip tool traffic from a history before it reaches a model."""

from __future__ import annotations

from typing import Sequence

from loguru import logger

from threadmem.memory.types import Message, Role


class ToolCallFilter:
    """Drop tool results and tool-invoking assistant turns.

    With exclude=None every tool message goes; otherwise only the ones whose
    metadata["tool_name"] is listed.
    """

    name = "tool_call_filter"

    def __init__(self, exclude: Sequence[str] | None = None):
        self.exclude = set(exclude) if exclude is not None else None

    def _is_tool_traffic(self, message: Message) -> bool:
        tool_name = message.metadata.get("tool_name")
        if message.role != Role.TOOL and not tool_name:
            return False
        if self.exclude is None:
            return True
        return tool_name in self.exclude

    def process(self, messages: Sequence[Message]) -> list[Message]:
        kept = [m for m in messages if not self._is_tool_traffic(m)]
        if len(kept) < len(messages):
            logger.debug(f"ToolCallFilter: dropped {len(messages) - len(kept)} tool messages")
        return kept
