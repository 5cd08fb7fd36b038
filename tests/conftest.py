"""Shared fixtures: message factories and in-memory collaborators for the pipeline."""

from typing import Any, Sequence

import pytest

from threadmem.memory.types import Candidate, Message, Role, SelectBy, Thread


def make_messages(contents: Sequence[str], roles: Sequence[str] | None = None) -> list[Message]:
    roles = roles or ["user" if i % 2 == 0 else "assistant" for i in range(len(contents))]
    return [
        Message(role=Role(role), content=content, sequence_index=i)
        for i, (role, content) in enumerate(zip(roles, contents))
    ]


@pytest.fixture
def messages_factory():
    return make_messages


class InMemoryStore:
    """MessageStore keeping threads and messages in dicts."""

    def __init__(self, fail_for: Sequence[str] = ()):
        self.threads: dict[str, Thread] = {}
        self.messages: dict[str, list[Message]] = {}
        self.fail_for = set(fail_for)
        self.queries: list[tuple[str, SelectBy]] = []

    async def create_thread(self, resource_id, title=None, metadata=None, thread_id=None):
        if resource_id in self.fail_for:
            raise RuntimeError(f"cannot create thread for {resource_id}")
        thread = Thread(id=thread_id or f"t-{len(self.threads)}", resource_id=resource_id,
                        title=title, metadata=dict(metadata or {}))
        self.threads[thread.id] = thread
        self.messages.setdefault(thread.id, [])
        return thread

    async def get_thread_by_id(self, thread_id):
        return self.threads.get(thread_id)

    async def get_threads_by_resource_id(self, resource_id):
        return [t for t in self.threads.values() if t.resource_id == resource_id]

    async def append(self, thread_id, role, content, metadata=None):
        history = self.messages.setdefault(thread_id, [])
        message = Message(role=Role(role), content=content, sequence_index=len(history),
                          metadata=dict(metadata or {}))
        history.append(message)
        return message

    async def query(self, thread_id, select_by=None):
        select_by = select_by or SelectBy()
        self.queries.append((thread_id, select_by))
        history = self.messages.get(thread_id, [])
        if select_by.last is None and select_by.include is None:
            return list(history)
        selected = {}
        if select_by.last is not None:
            for m in history[-select_by.last:]:
                selected[m.sequence_index] = m
        for i in select_by.include or []:
            if 0 <= i < len(history):
                selected[i] = history[i]
        return [selected[i] for i in sorted(selected)]


class StaticIndex:
    """VectorIndex returning a fixed, pre-ranked candidate list."""

    def __init__(self, candidates: Sequence[Candidate] = ()):
        self.candidates = list(candidates)
        self.queries: list[dict[str, Any]] = []
        self.upserts: list[dict[str, Any]] = []
        self.created: list[tuple[str, int]] = []

    async def create_index(self, index_name, dimension, metric="cosine"):
        self.created.append((index_name, dimension))

    async def query(self, index_name, query_vector, top_k, filter=None):
        self.queries.append({"index_name": index_name, "top_k": top_k, "filter": filter})
        return [Candidate(id=c.id, score=c.score, metadata=dict(c.metadata))
                for c in self.candidates[:top_k]]

    async def upsert(self, index_name, ids, vectors, metadata):
        self.upserts.append({"index_name": index_name, "ids": ids, "vectors": vectors,
                             "metadata": metadata})


class FixedEmbedder:
    dimensions = 2

    def __init__(self, vector: list[float] | None = None):
        self.vector = [1.0, 0.0] if vector is None else vector
        self.calls: list[str] = []

    async def embed(self, text):
        self.calls.append(text)
        return self.vector


class TableScoringModel:
    """ScoringModel returning preset semantic scores by candidate id."""

    def __init__(self, scores: dict[str, float] | None = None, error: Exception | None = None):
        self.scores = scores or {}
        self.error = error
        self.calls: list[tuple[str, list[Candidate]]] = []

    async def score(self, query, candidates):
        self.calls.append((query, list(candidates)))
        if self.error is not None:
            raise self.error
        return [Candidate(id=c.id, score=self.scores.get(c.id, 0.0), metadata=c.metadata)
                for c in candidates]


VECTOR_SCORES = [0.9, 0.8, 0.7, 0.6, 0.5, 0.4, 0.3, 0.2, 0.15, 0.1]


def ranked_candidates(scores: Sequence[float] = VECTOR_SCORES) -> list[Candidate]:
    """Candidates c0..cN in vector order, each pointing at sequence_index i."""
    return [
        Candidate(id=f"c{i}", score=score, metadata={"sequence_index": i, "text": f"passage {i}"})
        for i, score in enumerate(scores)
    ]


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def embedder():
    return FixedEmbedder()


@pytest.fixture
def candidates_factory():
    return ranked_candidates


@pytest.fixture
def index_factory():
    return StaticIndex


@pytest.fixture
def scoring_model_factory():
    return TableScoringModel


@pytest.fixture
def store_factory():
    return InMemoryStore
