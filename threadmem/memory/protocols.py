# protocols for the external collaborators the pipeline talks to

from typing import Any, Protocol, Sequence, runtime_checkable

from threadmem.memory.types import Candidate, Message, SelectBy, Thread


class MessageStore(Protocol):
    """Persists and returns ordered message sequences for a thread."""

    async def query(self, thread_id: str, select_by: SelectBy) -> list[Message]: ...

    async def append(
        self,
        thread_id: str,
        role: str,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> Message: ...

    async def create_thread(
        self,
        resource_id: str,
        title: str | None = None,
        metadata: dict[str, Any] | None = None,
        thread_id: str | None = None,
    ) -> Thread: ...

    async def get_thread_by_id(self, thread_id: str) -> Thread | None: ...

    async def get_threads_by_resource_id(self, resource_id: str) -> list[Thread]: ...


class VectorIndex(Protocol):
    """Returns top-K nearest neighbours for a query embedding."""

    async def create_index(self, index_name: str, dimension: int, metric: str = "cosine") -> None: ...

    async def query(
        self,
        index_name: str,
        query_vector: list[float],
        top_k: int,
        filter: dict[str, Any] | None = None,
    ) -> list[Candidate]: ...

    async def upsert(
        self,
        index_name: str,
        ids: list[str],
        vectors: list[list[float]],
        metadata: list[dict[str, Any]],
    ) -> None: ...


class Embedder(Protocol):
    async def embed(self, text: str) -> list[float] | None: ...


class ScoringModel(Protocol):
    """Semantic relevance scorer; returned candidates keep their ids."""

    async def score(self, query: str, candidates: Sequence[Candidate]) -> list[Candidate]: ...


@runtime_checkable
class Processor(Protocol):
    """Message-level reducer composed by the pipeline in a fixed order."""
    name: str

    def process(self, messages: Sequence[Message]) -> list[Message]: ...
