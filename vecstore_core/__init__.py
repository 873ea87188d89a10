"""
vecstore_core - Embedded vector storage with metadata filtering.

This package provides:
- Immutable vector records and scored search results
- Composable metadata filters with SQL pushdown
- SQLite and in-memory vector stores with brute-force cosine search
- A configuration-driven store factory with pluggable remote backends
- Embedding caching, knowledge retrieval and a document registry for RAG

Example usage:
    from vecstore_core import (
        Equals,
        StoreConfig,
        VectorRecord,
        create_vector_store,
    )

    store = create_vector_store(StoreConfig().in_memory()).unwrap()
    store.upsert(VectorRecord("a", [1.0, 0.0], "first", {"type": "doc"}))
    results = store.search([1.0, 0.0], top_k=3, filter=Equals("type", "doc"))
"""

__version__ = "0.1.0"

# Errors
from vecstore_core.errors import (
    ClosedStoreError,
    ConfigurationError,
    DimensionMismatchError,
    NotFoundError,
    StorageIOError,
    ValidationError,
    VectorStoreError,
)

# Configuration
from vecstore_core.config import Backend, StoreConfig

# Vector stores
from vecstore_core.vectorstore import (
    And,
    CachedEmbeddingClient,
    Contains,
    EmbeddingCache,
    EmbeddingClient,
    Equals,
    HasKey,
    In,
    InMemoryEmbeddingCache,
    InMemoryVectorStore,
    MetadataFilter,
    Not,
    Or,
    ScoredRecord,
    SQLiteVectorStore,
    StoreResult,
    StoreStats,
    VectorRecord,
    VectorStore,
    create_vector_store,
    create_vector_store_by_name,
    evaluate,
    filter_from_dict,
    get_vector_store,
    register_backend,
)

# RAG
from vecstore_core.rag import (
    DocumentRegistry,
    DocumentVersion,
    InMemoryDocumentRegistry,
    KnowledgeRetriever,
    RetrievalConfig,
    RetrievedChunk,
    SQLiteDocumentRegistry,
)

__all__ = [
    "__version__",
    # Errors
    "VectorStoreError",
    "ValidationError",
    "DimensionMismatchError",
    "NotFoundError",
    "ClosedStoreError",
    "StorageIOError",
    "ConfigurationError",
    # Configuration
    "Backend",
    "StoreConfig",
    # Records and stores
    "VectorRecord",
    "ScoredRecord",
    "StoreStats",
    "VectorStore",
    "SQLiteVectorStore",
    "InMemoryVectorStore",
    # Filters
    "MetadataFilter",
    "Equals",
    "Contains",
    "HasKey",
    "In",
    "And",
    "Or",
    "Not",
    "evaluate",
    "filter_from_dict",
    # Factory
    "StoreResult",
    "create_vector_store",
    "create_vector_store_by_name",
    "get_vector_store",
    "register_backend",
    # Embeddings
    "EmbeddingClient",
    "EmbeddingCache",
    "InMemoryEmbeddingCache",
    "CachedEmbeddingClient",
    # RAG
    "KnowledgeRetriever",
    "RetrievalConfig",
    "RetrievedChunk",
    "DocumentRegistry",
    "DocumentVersion",
    "InMemoryDocumentRegistry",
    "SQLiteDocumentRegistry",
]
