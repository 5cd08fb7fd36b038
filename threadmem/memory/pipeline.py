"""Memory pipeline: compaction of long histories and reranked semantic recall."""

from __future__ import annotations

import asyncio
import time
from typing import Any, Sequence

from loguru import logger

from threadmem.config.schema import CompactionConfig, Config, RetrievalConfig, coerce_config
from threadmem.errors import ConfigurationError, MemoryAdapterError
from threadmem.memory.flow import ConversationFlowPreserver
from threadmem.memory.importance import ImportanceScorer
from threadmem.memory.protocols import Embedder, MessageStore, Processor, ScoringModel, VectorIndex
from threadmem.memory.pruner import ContextPruner
from threadmem.memory.redundancy import RedundancyFilter
from threadmem.memory.reranker import WeightedReranker, as_sequence_index
from threadmem.memory.token_limiter import TokenLimiter
from threadmem.memory.tool_filter import ToolCallFilter
from threadmem.memory.topics import TopicSegmenter
from threadmem.memory.types import (
    Candidate,
    Message,
    RerankMetadata,
    RetrievalResult,
    SelectBy,
    Thread,
)


class MemoryPipeline:
    """
    Conversation memory orchestrator.

    Compaction path (synchronous):
        importance scoring → redundancy filter → context pruning → flow
        preservation, then the message-level processors and the token ceiling.

    Retrieval path (async):
        embed query → vector index → message store → weighted rerank →
        context windows around each hit.

    All collaborators are injected; the pipeline owns none of their lifecycles.
    """

    def __init__(
        self,
        store: MessageStore | None = None,
        index: VectorIndex | None = None,
        embedder: Embedder | None = None,
        scoring_model: ScoringModel | None = None,
        config: Config | None = None,
        processors: Sequence[Processor] | None = None,
    ):
        self.store = store
        self.index = index
        self.embedder = embedder
        self.scoring_model = scoring_model
        self.config = config or Config()
        self.flow = ConversationFlowPreserver()

        if processors is None:
            processors = self.default_processors(self.config)
        self.processors = list(processors)
        self.token_limiter = TokenLimiter(
            max_tokens=self.config.token_limit.max_tokens,
            tokenizer=self.config.token_limit.tokenizer,
            encoding=self.config.token_limit.encoding,
        )

    @classmethod
    def from_config(cls, config: Config) -> "MemoryPipeline":
        """Build a pipeline wired to the bundled SQLite / Chroma / LiteLLM adapters."""
        from threadmem.memory.chroma_index import ChromaVectorIndex
        from threadmem.memory.llm_scorer import LiteLLMScoringModel
        from threadmem.memory.sentence_embeddings import SentenceEmbeddingProvider
        from threadmem.memory.sqlite_store import SQLiteMessageStore

        return cls(
            store=SQLiteMessageStore(config.db_path),
            index=ChromaVectorIndex(config.chroma_path),
            embedder=SentenceEmbeddingProvider(config.embedding.model, config.embedding.cache_size),
            scoring_model=LiteLLMScoringModel(config.scoring),
            config=config,
        )

    @staticmethod
    def default_processors(config: Config) -> list[Processor]:
        """Message-level processors that run after compact(), in order."""
        processors: list[Processor] = []
        if config.topics.enabled:
            processors.append(TopicSegmenter(
                continuity_threshold=config.topics.continuity_threshold,
                max_segments=config.topics.max_segments,
                min_messages=config.topics.min_messages,
            ))
        return processors

    # ── Compaction ──────────────────────────────────────────────

    def compact(
        self,
        messages: Sequence[Message],
        config: CompactionConfig | dict[str, Any] | None = None,
    ) -> list[Message]:
        """
        Reduce a history to at most `max_messages`, chronologically ordered.

        Histories already within budget are returned untouched. Internal
        failures fall back to the most recent `max_messages` messages; only
        configuration errors escape.

        Args:
            messages: Conversation history.
            config: CompactionConfig or a mapping of its fields.

        Returns:
            Compacted messages sorted by sequence_index.
        """
        cfg = coerce_config(CompactionConfig, config if config is not None else self.config.compaction)

        if len(messages) <= cfg.max_messages:
            logger.debug("No compaction needed, message count within limit")
            return messages if isinstance(messages, list) else list(messages)

        start = time.perf_counter()
        try:
            scorer = ImportanceScorer(
                importance_keywords=cfg.importance_keywords,
                decay_rate=cfg.recency_decay_rate,
                verbose_threshold=cfg.verbose_message_threshold,
            )
            scored = scorer.score(messages)
            deduplicated = RedundancyFilter(cfg.similarity_threshold).filter(scored)
            pruned = ContextPruner(cfg.max_messages, cfg.recency_reservation_ratio).prune(deduplicated)
            result = self.flow.preserve(pruned)
        except Exception as e:
            logger.error(f"Compaction failed: {e}, keeping {cfg.max_messages} most recent messages")
            return self.most_recent(messages, cfg.max_messages)

        duration_ms = (time.perf_counter() - start) * 1000
        reduction = (len(messages) - len(result)) / len(messages) * 100
        logger.info(
            f"Compaction completed: {len(messages)} → {len(result)} messages "
            f"({reduction:.1f}% reduction, {duration_ms:.1f}ms)"
        )
        return result

    @staticmethod
    def most_recent(messages: Sequence[Message], limit: int) -> list[Message]:
        ordered = sorted(messages, key=lambda m: m.sequence_index)
        return ordered[-limit:] if limit > 0 else []

    def process(self, messages: Sequence[Message]) -> list[Message]:
        """Full compaction entry point: tool filter, compact, processors, token ceiling."""
        current = list(messages)
        if self.config.tool_filter.enabled:
            current = ToolCallFilter(self.config.tool_filter.exclude).process(current)
        current = self.compact(current, self.config.compaction)
        for processor in self.processors:
            current = processor.process(current)
        return self.token_limiter.process(current)

    # ── Retrieval ───────────────────────────────────────────────

    def _require(self, *names: str) -> None:
        missing = [name for name in names if getattr(self, name) is None]
        if missing:
            raise ConfigurationError(f"MemoryPipeline is missing collaborators: {', '.join(missing)}")

    async def _find_candidates(
        self, thread_id: str, query: str, top_k: int, cfg: RetrievalConfig
    ) -> list[Candidate]:
        vector = await self.embedder.embed(query)
        if not vector:
            raise MemoryAdapterError(MemoryAdapterError.EMBEDDING_FAILED, "query embedding failed")
        # thread scope always wins over a user filter
        search_filter = {**(cfg.filter or {}), "thread_id": thread_id}
        return await self.index.query(cfg.index_name, vector, top_k, search_filter)

    async def _load_windows(
        self, thread_id: str, candidates: Sequence[Candidate], before: int, after: int
    ) -> dict[int, Message]:
        wanted: set[int] = set()
        for candidate in candidates:
            position = as_sequence_index(candidate.metadata.get("sequence_index"))
            if position is None:
                continue
            wanted.update(i for i in range(position - before, position + after + 1) if i >= 0)
        if not wanted:
            return {}
        messages = await self.store.query(thread_id, SelectBy(include=sorted(wanted)))
        return {m.sequence_index: m for m in messages}

    @staticmethod
    def _expand(
        hits: Sequence[Message], by_index: dict[int, Message], before: int, after: int
    ) -> list[Message]:
        """Context window around each hit: windows in hit order, chronological inside."""
        seen: set[int] = set()
        expanded: list[Message] = []
        for hit in hits:
            start = hit.sequence_index - before
            for i in range(start, hit.sequence_index + after + 1):
                if i in seen or i not in by_index:
                    continue
                seen.add(i)
                expanded.append(by_index[i])
        return expanded

    async def retrieve_ranked(
        self,
        thread_id: str,
        query: str,
        config: RetrievalConfig | dict[str, Any] | None = None,
    ) -> RetrievalResult:
        """
        Semantic recall over a thread, reranked by the weighted scorer.

        Args:
            thread_id: Thread to search.
            query: Free-text query.
            config: RetrievalConfig or a mapping of its fields.

        Returns:
            Messages (hit windows in rank order) plus rerank metadata.
        """
        cfg = coerce_config(RetrievalConfig, config if config is not None else self.config.retrieval)
        if not thread_id:
            raise ConfigurationError("thread_id must be a non-empty string")
        if not query or not query.strip():
            raise ConfigurationError("query must be a non-empty string")
        self._require("store", "index", "embedder", "scoring_model")

        start = time.perf_counter()
        candidates = await self._find_candidates(thread_id, query, cfg.top_k_initial, cfg)
        by_index = await self._load_windows(thread_id, candidates, cfg.context_before, cfg.context_after)

        prepared: list[Candidate] = []
        for rank, candidate in enumerate(candidates):
            metadata = dict(candidate.metadata)
            metadata["index"] = rank
            position = as_sequence_index(metadata.get("sequence_index"))
            if "text" not in metadata and position in by_index:
                metadata["text"] = by_index[position].content
            prepared.append(Candidate(id=candidate.id, score=candidate.score, metadata=metadata))

        reranker = WeightedReranker(
            self.scoring_model,
            weights=cfg.weights,
            top_k=cfg.top_k_final,
            timeout=cfg.model_timeout_seconds,
        )
        results, reranking_used = await reranker.rerank(query, prepared)
        mapped = reranker.map_to_messages(results, by_index)
        messages = self._expand(
            [message for _, message in mapped], by_index, cfg.context_before, cfg.context_after
        )

        scores = [result.score for result, _ in mapped]
        metadata = RerankMetadata(
            top_k_initial=cfg.top_k_initial,
            top_k_final=cfg.top_k_final,
            context_before=cfg.context_before,
            context_after=cfg.context_after,
            initial_result_count=len(candidates),
            reranking_used=reranking_used,
            duration_ms=(time.perf_counter() - start) * 1000,
            average_relevance_score=sum(scores) / len(scores) if scores else 0.0,
        )
        logger.info(
            f"Reranked search completed for thread {thread_id}: "
            f"{len(candidates)} candidates → {len(mapped)} hits, "
            f"reranking_used={reranking_used}, {metadata.duration_ms:.1f}ms"
        )
        return RetrievalResult(messages=messages, metadata=metadata)

    async def search(
        self,
        thread_id: str,
        query: str,
        top_k: int | None = None,
        context_before: int | None = None,
        context_after: int | None = None,
    ) -> list[Message]:
        """Plain semantic recall in vector order, without reranking."""
        overrides = {
            "top_k_initial": top_k,
            "context_before": context_before,
            "context_after": context_after,
        }
        base = self.config.retrieval.model_dump()
        base.update({k: v for k, v in overrides.items() if v is not None})
        cfg = coerce_config(RetrievalConfig, base)
        if not thread_id or not query or not query.strip():
            raise ConfigurationError("thread_id and query must be non-empty strings")
        self._require("store", "index", "embedder")

        candidates = await self._find_candidates(thread_id, query, cfg.top_k_initial, cfg)
        by_index = await self._load_windows(thread_id, candidates, cfg.context_before, cfg.context_after)
        hits = []
        for candidate in candidates:
            position = as_sequence_index(candidate.metadata.get("sequence_index"))
            if position is not None and position in by_index:
                hits.append(by_index[position])
        return self._expand(hits, by_index, cfg.context_before, cfg.context_after)

    # ── Threads & indexing ──────────────────────────────────────

    async def ensure_index(self, dimension: int | None = None) -> None:
        """Create the retrieval index; call once at startup."""
        self._require("index")
        if dimension is None:
            dimension = getattr(self.embedder, "dimensions", None)
        if not dimension:
            raise ConfigurationError("index dimension unknown; pass it explicitly")
        await self.index.create_index(self.config.retrieval.index_name, dimension)

    async def append_message(
        self, thread_id: str, role: str, content: str, metadata: dict[str, Any] | None = None
    ) -> Message:
        """Store a message and index its embedding for semantic recall."""
        self._require("store")
        message = await self.store.append(thread_id, role, content, metadata)

        if self.index is None or self.embedder is None:
            return message
        try:
            vector = await self.embedder.embed(content)
            if not vector:
                logger.warning(f"No embedding for message {thread_id}:{message.sequence_index}, not indexed")
                return message
            await self.index.upsert(
                self.config.retrieval.index_name,
                ids=[f"{thread_id}:{message.sequence_index}"],
                vectors=[vector],
                metadata=[{
                    "thread_id": thread_id,
                    "sequence_index": message.sequence_index,
                    "role": message.role.value,
                    "text": content,
                }],
            )
        except MemoryAdapterError as e:
            logger.error(f"Error indexing message {thread_id}:{message.sequence_index}: {e}")
        return message

    async def create_thread(
        self,
        resource_id: str,
        title: str | None = None,
        metadata: dict[str, Any] | None = None,
        thread_id: str | None = None,
    ) -> Thread:
        self._require("store")
        try:
            return await self.store.create_thread(resource_id, title, metadata, thread_id)
        except Exception as e:
            logger.error(f"create_thread failed: {e}")
            raise

    async def batch_create_threads(self, requests: Sequence[dict[str, Any]]) -> list[Thread]:
        """Create many threads concurrently; failed requests are logged and left out."""
        self._require("store")
        start = time.perf_counter()
        results = await asyncio.gather(
            *(
                self.create_thread(
                    request.get("resource_id", ""),
                    request.get("title"),
                    request.get("metadata"),
                    request.get("thread_id"),
                )
                for request in requests
            ),
            return_exceptions=True,
        )
        threads = [r for r in results if isinstance(r, Thread)]
        failures = [r for r in results if isinstance(r, BaseException)]
        logger.info(
            f"Batch thread creation completed: {len(requests)} requests, "
            f"{len(threads)} succeeded, {len(failures)} failed, "
            f"{(time.perf_counter() - start) * 1000:.1f}ms"
        )
        return threads

    async def get_thread_messages(self, thread_id: str, last: int = 10) -> list[Message]:
        self._require("store")
        return await self.store.query(thread_id, SelectBy(last=last))

    async def get_thread_by_id(self, thread_id: str) -> Thread | None:
        self._require("store")
        return await self.store.get_thread_by_id(thread_id)

    async def get_threads_by_resource_id(self, resource_id: str) -> list[Thread]:
        self._require("store")
        return await self.store.get_threads_by_resource_id(resource_id)
