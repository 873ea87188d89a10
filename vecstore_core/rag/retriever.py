"""
Knowledge retrieval service for RAG.

Embeds a query, searches a vector store and turns the hits into chunks ready to
be placed into a prompt.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from vecstore_core.vectorstore.base import ScoredRecord, VectorStore
from vecstore_core.vectorstore.embeddings import EmbeddingClient
from vecstore_core.vectorstore.filters import FilterLike, In, coerce_filter

logger = logging.getLogger(__name__)


@dataclass
class RetrievalConfig:
    """Configuration for knowledge retrieval."""

    top_k: int = 5
    """Maximum number of chunks to retrieve."""

    similarity_threshold: float = 0.0
    """Minimum cosine similarity to include in results."""

    include_metadata: bool = True
    """Whether to include metadata in results."""


@dataclass
class RetrievedChunk:
    """A retrieved chunk with its metadata and score."""

    content: str
    """The chunk text content."""

    score: float
    """Similarity score (higher = more similar)."""

    id: Optional[str] = None
    """Record id in the vector store."""

    source_id: Optional[str] = None
    """ID of the source document."""

    source_name: Optional[str] = None
    """Human-readable name of the source."""

    chunk_index: Optional[int] = None
    """Index of this chunk within the source."""

    metadata: dict = field(default_factory=dict)
    """Additional metadata."""


def _parse_chunk_index(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        logger.debug(f"Ignoring non-integer chunk_index {value!r}")
        return None


class KnowledgeRetriever:
    """
    Service to retrieve relevant knowledge for RAG at runtime.

    Handles:
    - Embedding user queries
    - Searching the vector store for similar content
    - Filtering by source and similarity threshold
    - Formatting retrieved content for inclusion in prompts

    Usage:
        from vecstore_core.vectorstore import get_vector_store
        from vecstore_core.rag import KnowledgeRetriever

        vector_store = get_vector_store("sqlite", path="./vectors.db")
        retriever = KnowledgeRetriever(vector_store, my_embedding_client)
        results = retriever.retrieve(query="What is the return policy?", top_k=5)
    """

    def __init__(
        self,
        vector_store: VectorStore,
        embedding_client: EmbeddingClient,
        default_config: Optional[RetrievalConfig] = None,
    ):
        """
        Initialize the retriever.

        Args:
            vector_store: VectorStore instance for searching embeddings
            embedding_client: EmbeddingClient instance for embedding queries
            default_config: Default retrieval configuration
        """
        self._vector_store = vector_store
        self._embedding_client = embedding_client
        self._default_config = default_config or RetrievalConfig()

    def _to_chunk(self, result: ScoredRecord) -> RetrievedChunk:
        metadata = result.metadata
        return RetrievedChunk(
            content=result.content or "",
            score=result.score,
            id=result.id,
            source_id=metadata.get("source_id"),
            source_name=metadata.get("name") or metadata.get("source_name"),
            chunk_index=_parse_chunk_index(metadata.get("chunk_index")),
            metadata=dict(metadata) if self._default_config.include_metadata else {},
        )

    def retrieve(
        self,
        query: str,
        top_k: Optional[int] = None,
        similarity_threshold: Optional[float] = None,
        filter: FilterLike = None,
    ) -> list[RetrievedChunk]:
        """
        Retrieve relevant knowledge chunks for a query.

        Args:
            query: The user's query to find relevant content for
            top_k: Maximum number of chunks to retrieve (overrides default)
            similarity_threshold: Minimum similarity score (overrides default)
            filter: Optional metadata filter for the search

        Returns:
            List of RetrievedChunk objects ordered by relevance
        """
        if top_k is None:
            top_k = self._default_config.top_k
        if similarity_threshold is None:
            similarity_threshold = self._default_config.similarity_threshold

        query_vector = self._embedding_client.embed(query)
        results = self._vector_store.search(
            query_vector=query_vector,
            top_k=top_k,
            filter=filter,
        )

        retrieved = [
            self._to_chunk(result)
            for result in results
            if result.score >= similarity_threshold
        ]
        logger.debug(f"Retrieved {len(retrieved)} of {len(results)} chunks for query")
        return retrieved

    def retrieve_for_sources(
        self,
        query: str,
        source_ids: list[str],
        top_k: Optional[int] = None,
        similarity_threshold: Optional[float] = None,
        filter: FilterLike = None,
    ) -> list[RetrievedChunk]:
        """
        Retrieve relevant chunks from specific sources with a single search.

        Args:
            query: The user's query
            source_ids: List of source IDs to search within
            top_k: Maximum number of chunks to retrieve
            similarity_threshold: Minimum similarity score
            filter: Optional extra filter combined with the source restriction

        Returns:
            List of RetrievedChunk objects
        """
        if not source_ids:
            return []
        source_filter = In("source_id", frozenset(source_ids))
        extra = coerce_filter(filter)
        combined = source_filter if extra is None else source_filter & extra
        return self.retrieve(
            query=query,
            top_k=top_k,
            similarity_threshold=similarity_threshold,
            filter=combined,
        )

    def retrieve_formatted(
        self,
        query: str,
        top_k: Optional[int] = None,
        similarity_threshold: Optional[float] = None,
        filter: FilterLike = None,
        header: str = "## Relevant Knowledge\n",
    ) -> str:
        """
        Retrieve and format knowledge for inclusion in a prompt.

        Returns:
            Formatted string of retrieved knowledge, or "" when nothing matched
        """
        results = self.retrieve(
            query=query,
            top_k=top_k,
            similarity_threshold=similarity_threshold,
            filter=filter,
        )
        if not results:
            return ""
        return self.format_results(results, header=header)

    def format_results(
        self,
        results: list[RetrievedChunk],
        header: str = "## Relevant Knowledge\n",
    ) -> str:
        """
        Format retrieved results for inclusion in a prompt.

        Chunks are grouped by source, keeping the order in which each source
        first appears.
        """
        if not results:
            return ""

        parts = [header]
        parts.append("The following information may be relevant to the user's question:\n")

        by_source: dict[str, list[RetrievedChunk]] = {}
        for r in results:
            source = r.source_name or r.source_id or "Unknown"
            by_source.setdefault(source, []).append(r)

        for source, chunks in by_source.items():
            parts.append(f"\n### {source}\n")
            for chunk in chunks:
                parts.append(f"{chunk.content}\n")

        return "\n".join(parts)

    def close(self) -> None:
        """Close the retriever and release resources."""
        self._vector_store.close()
        self._embedding_client.close()
