"""Vector index adapter backed by ChromaDB."""

import asyncio
import threading
from pathlib import Path
from typing import Any

from loguru import logger

from threadmem.config.schema import check_filter
from threadmem.errors import ConfigurationError, MemoryAdapterError
from threadmem.memory.types import Candidate


def classify_index_error(error: Exception) -> str:
    """Map a ChromaDB / transport exception to a stable error code."""
    text = str(error).lower()
    if isinstance(error, (ConnectionError, TimeoutError)):
        return MemoryAdapterError.INDEX_UNREACHABLE
    if "does not exist" in text or "not found" in text:
        return MemoryAdapterError.INDEX_NOT_FOUND
    if "dimension" in text:
        return MemoryAdapterError.DIMENSION_MISMATCH
    if "connect" in text or "unreachable" in text:
        return MemoryAdapterError.INDEX_UNREACHABLE
    return MemoryAdapterError.INDEX_ERROR


def build_where(filter: dict[str, Any] | None) -> dict[str, Any] | None:
    """Translate a flat equality filter into a Chroma `where` clause."""
    if not filter:
        return None
    clauses = [{key: value} for key, value in filter.items()]
    if len(clauses) == 1:
        return clauses[0]
    return {"$and": clauses}


class ChromaVectorIndex:
    """One Chroma collection per index name, cosine distance.

    Scores returned on candidates are similarities (1 - cosine distance).
    """

    def __init__(self, path: Path | str | None = None, client: Any = None):
        self.path = Path(path).expanduser() if path else None
        self._client = client
        self._collections: dict[str, Any] = {}
        self._lock = threading.Lock()

    def _init_client(self):
        """Initialize ChromaDB connection lazily."""
        if self._client is not None:
            return self._client

        with self._lock:
            # Double-check inside lock
            if self._client is not None:
                return self._client
            try:
                import chromadb
                from chromadb.config import Settings

                settings = Settings(anonymized_telemetry=False)
                if self.path is None:
                    self._client = chromadb.EphemeralClient(settings=settings)
                else:
                    self.path.mkdir(parents=True, exist_ok=True)
                    self._client = chromadb.PersistentClient(path=str(self.path), settings=settings)
                logger.info("ChromaDB initialized successfully")
            except Exception as e:
                logger.error(f"Error initializing ChromaDB: {e}")
                raise MemoryAdapterError(MemoryAdapterError.INDEX_UNREACHABLE, str(e)) from e
        return self._client

    def _create_index(self, index_name: str, dimension: int, metric: str):
        client = self._init_client()
        collection = client.get_or_create_collection(
            name=index_name,
            metadata={"hnsw:space": metric, "dimension": dimension},
            embedding_function=None,
        )
        self._collections[index_name] = collection
        return collection

    async def create_index(self, index_name: str, dimension: int, metric: str = "cosine") -> None:
        """Create the index if it does not exist yet (idempotent)."""
        if dimension <= 0:
            raise ConfigurationError("dimension must be positive")
        try:
            await asyncio.to_thread(self._create_index, index_name, dimension, metric)
            logger.info(f"Vector index '{index_name}' ready (dim={dimension}, metric={metric})")
        except MemoryAdapterError:
            raise
        except Exception as e:
            logger.error(f"Vector index initialization failed: {e}")
            raise MemoryAdapterError(classify_index_error(e), str(e)) from e

    def _get_collection(self, index_name: str):
        if index_name in self._collections:
            return self._collections[index_name]
        client = self._init_client()
        collection = client.get_collection(name=index_name, embedding_function=None)
        self._collections[index_name] = collection
        return collection

    def _check_dimension(self, collection, vector: list[float]) -> None:
        expected = (collection.metadata or {}).get("dimension")
        if expected and len(vector) != int(expected):
            raise MemoryAdapterError(
                MemoryAdapterError.DIMENSION_MISMATCH,
                f"vector has {len(vector)} dimensions, index expects {expected}",
            )

    def _upsert(self, index_name: str, ids: list[str], vectors: list[list[float]],
                metadata: list[dict[str, Any]]) -> None:
        collection = self._get_collection(index_name)
        for vector in vectors:
            self._check_dimension(collection, vector)
        documents = [str(m.get("text", "")) for m in metadata]
        stored = [{k: v for k, v in m.items() if k != "text"} for m in metadata]
        collection.upsert(ids=ids, embeddings=vectors, documents=documents, metadatas=stored)

    async def upsert(self, index_name: str, ids: list[str], vectors: list[list[float]],
                     metadata: list[dict[str, Any]]) -> None:
        if not (len(ids) == len(vectors) == len(metadata)):
            raise ConfigurationError("ids, vectors and metadata must have the same length")
        if not ids:
            return
        try:
            await asyncio.to_thread(self._upsert, index_name, ids, vectors, metadata)
        except MemoryAdapterError:
            raise
        except Exception as e:
            logger.error(f"Error indexing vectors into '{index_name}': {e}")
            raise MemoryAdapterError(classify_index_error(e), str(e)) from e

    def _query(self, index_name: str, query_vector: list[float], top_k: int,
               where: dict[str, Any] | None) -> list[Candidate]:
        collection = self._get_collection(index_name)
        self._check_dimension(collection, query_vector)
        results = collection.query(
            query_embeddings=[query_vector],
            n_results=top_k,
            where=where,
            include=["documents", "metadatas", "distances"],
        )

        candidates: list[Candidate] = []
        if results["ids"] and len(results["ids"][0]) > 0:
            for i, chroma_id in enumerate(results["ids"][0]):
                metadata = dict(results["metadatas"][0][i] or {})
                document = results["documents"][0][i]
                distance = results["distances"][0][i]
                if document:
                    metadata["text"] = document
                candidates.append(Candidate(id=chroma_id, score=1.0 - distance, metadata=metadata))
        return candidates

    async def query(self, index_name: str, query_vector: list[float], top_k: int,
                    filter: dict[str, Any] | None = None) -> list[Candidate]:
        """Nearest neighbours of `query_vector`, best first."""
        if top_k <= 0:
            raise ConfigurationError("top_k must be positive")
        if filter:
            try:
                check_filter(filter)
            except ValueError as e:
                raise ConfigurationError(str(e)) from e
        try:
            return await asyncio.to_thread(
                self._query, index_name, query_vector, top_k, build_where(filter)
            )
        except MemoryAdapterError:
            raise
        except Exception as e:
            logger.error(f"Vector query on '{index_name}' failed: {e}")
            raise MemoryAdapterError(classify_index_error(e), str(e)) from e
