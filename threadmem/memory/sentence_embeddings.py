"""Sentence-Transformers embedding provider for local embeddings."""

import asyncio
import hashlib

from loguru import logger


class SentenceEmbeddingProvider:
    """
    Local embedding provider using Sentence-Transformers.

    Supports models like:
    - all-MiniLM-L6-v2 (recommended, 384 dimensions, fast)
    - all-mpnet-base-v2 (768 dimensions, more accurate)
    - paraphrase-multilingual-MiniLM-L12-v2 (multilingual support)
    """

    DIMENSIONS = {
        "all-MiniLM-L6-v2": 384,
        "all-mpnet-base-v2": 768,
        "paraphrase-multilingual-MiniLM-L12-v2": 384,
        "all-distilroberta-v1": 768,
        "all-MiniLM-L12-v2": 384,
    }

    def __init__(self, model: str = "all-MiniLM-L6-v2", cache_size: int = 1000):
        self.model_name = model
        self._model = None
        self._cache: dict[str, list[float]] = {}  # FIFO-evicted
        self._cache_size = cache_size

    def _load_model(self):
        """Lazy load the sentence-transformers model."""
        if self._model is None:
            from sentence_transformers import SentenceTransformer

            logger.info(f"Loading sentence-transformers model: {self.model_name}")
            self._model = SentenceTransformer(self.model_name)
            logger.info(f"Model loaded successfully. Dimensions: {self.dimensions}")
        return self._model

    def _remember(self, key: str, embedding: list[float]) -> None:
        if len(self._cache) >= self._cache_size:
            self._cache.pop(next(iter(self._cache)))
        self._cache[key] = embedding

    def _encode(self, text: str) -> list[float]:
        embedding = self._load_model().encode(text)
        if hasattr(embedding, "tolist"):
            embedding = embedding.tolist()
        return embedding

    async def embed(self, text: str) -> list[float] | None:
        """
        Generate embedding for text using Sentence-Transformers.

        Args:
            text: Text to embed

        Returns:
            Embedding vector or None if failed
        """
        cache_key = hashlib.md5(text.encode()).hexdigest()
        if cache_key in self._cache:
            return self._cache[cache_key]

        try:
            embedding = await asyncio.to_thread(self._encode, text)
        except Exception as e:
            logger.error(f"Error generating embedding: {e}")
            return None

        if embedding:
            self._remember(cache_key, embedding)
        return embedding

    async def warmup(self) -> None:
        """Pre-load the model off the event loop."""
        await asyncio.to_thread(self._load_model)

    @property
    def dimensions(self) -> int:
        """Get embedding dimensions for current model."""
        if self._model is not None and hasattr(self._model, "get_sentence_embedding_dimension"):
            return int(self._model.get_sentence_embedding_dimension())
        return self.DIMENSIONS.get(self.model_name, 384)
