"""
Embedding client interfaces and caching.

Concrete clients (OpenAI, Vertex AI, local models, ...) live outside this
package; they implement EmbeddingClient. CachedEmbeddingClient wraps any client
so repeated texts are embedded only once.
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Optional, Sequence

from vecstore_core.errors import ValidationError

logger = logging.getLogger(__name__)


class EmbeddingClient(ABC):
    """
    Abstract interface for generating embeddings.

    Embedding clients convert text into vector representations that can be
    stored in a VectorStore for similarity search.
    """

    @abstractmethod
    def embed(self, text: str) -> list[float]:
        """
        Generate embedding for a single text.

        Args:
            text: The text to embed

        Returns:
            The embedding vector
        """
        ...

    @abstractmethod
    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """
        Generate embeddings for multiple texts.

        Args:
            texts: List of texts to embed

        Returns:
            List of embedding vectors in the same order as input
        """
        ...

    @property
    @abstractmethod
    def dimensions(self) -> int:
        """Return the embedding dimensions."""
        ...

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Return the model name."""
        ...

    def close(self) -> None:
        """Close any connections. Override if needed."""
        pass


class EmbeddingCache(ABC):
    """Storage for previously computed embeddings, keyed by text."""

    @abstractmethod
    def get(self, text: str) -> Optional[list[float]]:
        ...

    @abstractmethod
    def put(self, text: str, embedding: Sequence[float]) -> None:
        ...

    def clear(self) -> None:
        pass


class InMemoryEmbeddingCache(EmbeddingCache):
    """Thread-safe dict-backed cache."""

    def __init__(self):
        self._entries: dict[str, tuple] = {}
        self._lock = threading.Lock()

    def get(self, text: str) -> Optional[list[float]]:
        with self._lock:
            entry = self._entries.get(text)
        return list(entry) if entry is not None else None

    def put(self, text: str, embedding: Sequence[float]) -> None:
        with self._lock:
            self._entries[text] = tuple(embedding)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class CachedEmbeddingClient(EmbeddingClient):
    """
    Memoizes another client's embeddings.

    Batch calls send only the texts missing from the cache to the inner client,
    each distinct text once, and return results in input order.

    Usage:
        client = CachedEmbeddingClient(my_client, InMemoryEmbeddingCache())
        vectors = client.embed_batch(["a", "b", "a"])  # inner sees ["a", "b"]
    """

    def __init__(self, inner: EmbeddingClient, cache: Optional[EmbeddingCache] = None):
        self._inner = inner
        self._cache = cache if cache is not None else InMemoryEmbeddingCache()

    @property
    def inner(self) -> EmbeddingClient:
        return self._inner

    @property
    def cache(self) -> EmbeddingCache:
        return self._cache

    @property
    def dimensions(self) -> int:
        return self._inner.dimensions

    @property
    def model_name(self) -> str:
        return self._inner.model_name

    def embed(self, text: str) -> list[float]:
        cached = self._cache.get(text)
        if cached is not None:
            return cached
        embedding = self._inner.embed(text)
        self._cache.put(text, embedding)
        return list(embedding)

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []

        results: dict[str, list[float]] = {}
        missing = []
        for text in texts:
            if text in results or text in missing:
                continue
            cached = self._cache.get(text)
            if cached is not None:
                results[text] = cached
            else:
                missing.append(text)

        if missing:
            logger.debug(f"Embedding cache miss for {len(missing)} of {len(texts)} texts")
            embeddings = self._inner.embed_batch(missing)
            if len(embeddings) != len(missing):
                raise ValidationError(
                    f"Embedding client returned {len(embeddings)} vectors "
                    f"for {len(missing)} texts"
                )
            for text, embedding in zip(missing, embeddings):
                self._cache.put(text, embedding)
                results[text] = list(embedding)

        return [list(results[text]) for text in texts]

    def close(self) -> None:
        self._inner.close()


__all__ = [
    "EmbeddingClient",
    "EmbeddingCache",
    "InMemoryEmbeddingCache",
    "CachedEmbeddingClient",
]
