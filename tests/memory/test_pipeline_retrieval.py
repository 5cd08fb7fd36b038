# tests/memory/test_pipeline_retrieval.py
"""Tests for MemoryPipeline reranked retrieval, indexing and thread management."""
from unittest.mock import AsyncMock

import pytest

from threadmem.errors import ConfigurationError, MemoryAdapterError
from threadmem.memory.pipeline import MemoryPipeline
from threadmem.memory.types import Candidate, Message, Role, Thread

NO_CONTEXT = {"top_k_initial": 10, "top_k_final": 3, "context_before": 0, "context_after": 0}


@pytest.fixture
def filled_store(store):
    store.threads["t1"] = Thread(id="t1", resource_id="user-1")
    store.messages["t1"] = [
        Message(Role.USER if i % 2 == 0 else Role.ASSISTANT, f"message {i}", i) for i in range(10)
    ]
    return store


@pytest.fixture
def build(filled_store, embedder, index_factory, candidates_factory, scoring_model_factory):
    def _build(scores=None, candidates=None, model=None):
        index = index_factory(candidates if candidates is not None else candidates_factory())
        model = model or scoring_model_factory(scores if scores is not None else {"c7": 1.0, "c8": 1.0, "c9": 1.0})
        pipeline = MemoryPipeline(store=filled_store, index=index, embedder=embedder, scoring_model=model)
        return pipeline, index, model
    return _build


class TestRetrieveRanked:
    @pytest.mark.asyncio
    async def test_reranking_changes_the_outcome(self, build):
        pipeline, _, _ = build()
        result = await pipeline.retrieve_ranked("t1", "deploy pipeline failing", NO_CONTEXT)

        assert [m.sequence_index for m in result.messages] == [7, 8, 9]
        assert result.metadata.reranking_used is True
        assert result.metadata.initial_result_count == 10
        assert result.metadata.average_relevance_score == pytest.approx((0.69 + 0.665 + 0.64) / 3)

    @pytest.mark.asyncio
    async def test_camel_case_config_and_metadata(self, build):
        pipeline, _, _ = build()
        result = await pipeline.retrieve_ranked("t1", "query", {
            "topKInitial": 10, "topKFinal": 2, "contextBefore": 0, "contextAfter": 0,
        })
        meta = result.metadata.to_dict()
        assert meta["topKFinal"] == 2
        assert meta["rerankingUsed"] is True
        assert meta["durationMs"] >= 0

    @pytest.mark.asyncio
    async def test_context_window_around_hit(self, build):
        pipeline, _, _ = build()
        result = await pipeline.retrieve_ranked("t1", "query", {
            "top_k_final": 1, "context_before": 1, "context_after": 1,
        })
        assert [m.sequence_index for m in result.messages] == [6, 7, 8]

    @pytest.mark.asyncio
    async def test_overlapping_windows_are_not_duplicated(self, build):
        pipeline, _, _ = build()
        result = await pipeline.retrieve_ranked("t1", "query", {
            "top_k_final": 2, "context_before": 1, "context_after": 1,
        })
        assert [m.sequence_index for m in result.messages] == [6, 7, 8, 9]

    @pytest.mark.asyncio
    async def test_model_failure_falls_back_to_vector_order(self, build, scoring_model_factory):
        pipeline, _, _ = build(model=scoring_model_factory(error=TimeoutError("slow model")))
        result = await pipeline.retrieve_ranked("t1", "query", NO_CONTEXT)

        assert [m.sequence_index for m in result.messages] == [0, 1, 2]
        assert result.metadata.reranking_used is False

    @pytest.mark.asyncio
    async def test_small_candidate_set_skips_the_model(self, build):
        pipeline, _, model = build()
        result = await pipeline.retrieve_ranked("t1", "query", {**NO_CONTEXT, "top_k_initial": 3})

        assert model.calls == []
        assert result.metadata.reranking_used is False
        assert [m.sequence_index for m in result.messages] == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_candidate_text_is_filled_from_store(self, build):
        bare = [Candidate(f"c{i}", 0.9 - i * 0.05, {"sequence_index": i}) for i in range(5)]
        pipeline, _, model = build(candidates=bare)
        await pipeline.retrieve_ranked("t1", "query", NO_CONTEXT)

        sent = model.calls[0][1]
        assert [c.metadata["text"] for c in sent] == [f"message {i}" for i in range(5)]
        assert [c.metadata["index"] for c in sent] == list(range(5))

    @pytest.mark.asyncio
    async def test_search_is_scoped_to_thread(self, build):
        pipeline, index, _ = build()
        await pipeline.retrieve_ranked("t1", "query", {**NO_CONTEXT, "filter": {"role": "user"}})

        assert index.queries[0]["filter"] == {"thread_id": "t1", "role": "user"}
        assert index.queries[0]["top_k"] == 10

    @pytest.mark.asyncio
    async def test_user_filter_cannot_leave_the_thread(self, build):
        pipeline, index, _ = build()
        await pipeline.retrieve_ranked("t1", "query", {**NO_CONTEXT, "filter": {"thread_id": "t2", "role": "user"}})

        assert index.queries[0]["filter"] == {"thread_id": "t1", "role": "user"}

    @pytest.mark.asyncio
    async def test_unmappable_candidates_are_dropped(self, build):
        candidates = [
            Candidate("x", 0.9, {"text": "orphan"}),
            Candidate("y", 0.8, {"sequence_index": 42, "text": "gone"}),
            Candidate("z", 0.7, {"sequence_index": 3}),
        ]
        pipeline, _, _ = build(candidates=candidates)
        result = await pipeline.retrieve_ranked("t1", "query", NO_CONTEXT)
        assert [m.sequence_index for m in result.messages] == [3]


    @pytest.mark.asyncio
    async def test_embedding_failure(self, build, embedder):
        embedder.vector = []
        pipeline, _, _ = build()
        with pytest.raises(MemoryAdapterError) as exc_info:
            await pipeline.retrieve_ranked("t1", "query", NO_CONTEXT)
        assert exc_info.value.code == MemoryAdapterError.EMBEDDING_FAILED

    @pytest.mark.asyncio
    @pytest.mark.parametrize("config", [
        {"top_k_initial": 0},
        {"weights": {"semantic": 0, "vector": 0, "position": 0}},
        {"weights": {"semantic": -0.5}},
        {"filter": {"channel": None}},
        {"filter": {"k" * 65: "x"}},
        {"filter": {"": "x"}},
        {"unknown_option": True},
    ])
    async def test_invalid_config_fails_before_any_io(self, build, embedder, config):
        pipeline, index, _ = build()
        with pytest.raises(ConfigurationError):
            await pipeline.retrieve_ranked("t1", "query", config)
        assert embedder.calls == []
        assert index.queries == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("thread_id,query", [("", "query"), ("t1", ""), ("t1", "   ")])
    async def test_empty_inputs_rejected(self, build, embedder, thread_id, query):
        pipeline, _, _ = build()
        with pytest.raises(ConfigurationError):
            await pipeline.retrieve_ranked(thread_id, query)
        assert embedder.calls == []

    @pytest.mark.asyncio
    async def test_missing_collaborators(self, filled_store):
        with pytest.raises(ConfigurationError):
            await MemoryPipeline(store=filled_store).retrieve_ranked("t1", "query")

    @pytest.mark.asyncio
    async def test_weights_over_one_are_allowed(self, build):
        pipeline, _, _ = build()
        result = await pipeline.retrieve_ranked("t1", "query", {
            **NO_CONTEXT, "weights": {"semantic": 0.9, "vector": 0.9, "position": 0.9},
        })
        assert result.metadata.reranking_used is True


class TestSearch:
    @pytest.mark.asyncio
    async def test_returns_hits_in_vector_order(self, build):
        candidates = [
            Candidate("a", 0.9, {"sequence_index": 5}),
            Candidate("b", 0.8, {"sequence_index": 2}),
            Candidate("c", 0.7, {"sequence_index": 8}),
        ]
        pipeline, _, model = build(candidates=candidates)
        messages = await pipeline.search("t1", "query", top_k=3, context_before=0, context_after=0)

        assert [m.sequence_index for m in messages] == [5, 2, 8]
        assert model.calls == []

    @pytest.mark.asyncio
    async def test_context_defaults_from_config(self, build):
        candidates = [Candidate("a", 0.9, {"sequence_index": 5})]
        pipeline, _, _ = build(candidates=candidates)
        messages = await pipeline.search("t1", "query")
        # two before, one after
        assert [m.sequence_index for m in messages] == [3, 4, 5, 6]


class TestIndexing:
    @pytest.mark.asyncio
    async def test_append_message_indexes_embedding(self, store, embedder, index_factory):
        index = index_factory()
        pipeline = MemoryPipeline(store=store, index=index, embedder=embedder)
        await pipeline.create_thread("user-1", thread_id="t9")

        first = await pipeline.append_message("t9", "user", "hello there")
        second = await pipeline.append_message("t9", "assistant", "hi, how can I help?")

        assert (first.sequence_index, second.sequence_index) == (0, 1)
        assert [u["ids"] for u in index.upserts] == [["t9:0"], ["t9:1"]]
        assert index.upserts[1]["metadata"][0] == {
            "thread_id": "t9",
            "sequence_index": 1,
            "role": "assistant",
            "text": "hi, how can I help?",
        }
        assert index.upserts[0]["vectors"] == [[1.0, 0.0]]

    @pytest.mark.asyncio
    async def test_index_failure_does_not_lose_the_message(self, store, embedder, index_factory):
        index = index_factory()
        index.upsert = AsyncMock(side_effect=MemoryAdapterError(MemoryAdapterError.INDEX_UNREACHABLE, "down"))
        pipeline = MemoryPipeline(store=store, index=index, embedder=embedder)
        await pipeline.create_thread("user-1", thread_id="t9")

        message = await pipeline.append_message("t9", "user", "keep me")
        assert message.content == "keep me"
        assert len(store.messages["t9"]) == 1

    @pytest.mark.asyncio
    async def test_ensure_index_uses_embedder_dimensions(self, embedder, index_factory):
        index = index_factory()
        await MemoryPipeline(index=index, embedder=embedder).ensure_index()
        assert index.created == [("messages", 2)]


class TestThreads:
    @pytest.mark.asyncio
    async def test_batch_create_skips_failures(self, store_factory):
        store = store_factory(fail_for=["bad"])
        pipeline = MemoryPipeline(store=store)
        threads = await pipeline.batch_create_threads([
            {"resource_id": "r1", "title": "first"},
            {"resource_id": "bad"},
            {"resource_id": "r2", "thread_id": "custom"},
        ])

        assert [t.resource_id for t in threads] == ["r1", "r2"]
        assert threads[1].id == "custom"

    @pytest.mark.asyncio
    async def test_create_thread_propagates_errors(self, store_factory):
        pipeline = MemoryPipeline(store=store_factory(fail_for=["bad"]))
        with pytest.raises(RuntimeError):
            await pipeline.create_thread("bad")

    @pytest.mark.asyncio
    async def test_thread_lookups(self, filled_store):
        pipeline = MemoryPipeline(store=filled_store)
        assert (await pipeline.get_thread_by_id("t1")).resource_id == "user-1"
        assert await pipeline.get_thread_by_id("missing") is None
        assert [t.id for t in await pipeline.get_threads_by_resource_id("user-1")] == ["t1"]

        recent = await pipeline.get_thread_messages("t1", last=2)
        assert [m.sequence_index for m in recent] == [8, 9]
