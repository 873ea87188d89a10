"""
RAG (Retrieval Augmented Generation) helpers for vecstore_core.

- KnowledgeRetriever: Retrieve relevant knowledge at runtime
- DocumentRegistry: Track indexed document versions for incremental indexing

Example usage:
    from vecstore_core.rag import KnowledgeRetriever, SQLiteDocumentRegistry
    from vecstore_core.vectorstore import get_vector_store

    vector_store = get_vector_store("sqlite", path="./vectors.db")
    registry = SQLiteDocumentRegistry.for_vector_store("./vectors.db")

    retriever = KnowledgeRetriever(vector_store, my_embedding_client)
    results = retriever.retrieve(query="What is the return policy?", top_k=5)
"""

from vecstore_core.rag.registry import (
    DocumentRegistry,
    DocumentVersion,
    InMemoryDocumentRegistry,
    SQLiteDocumentRegistry,
)
from vecstore_core.rag.retriever import (
    KnowledgeRetriever,
    RetrievalConfig,
    RetrievedChunk,
)

__all__ = [
    "KnowledgeRetriever",
    "RetrievalConfig",
    "RetrievedChunk",
    "DocumentRegistry",
    "DocumentVersion",
    "InMemoryDocumentRegistry",
    "SQLiteDocumentRegistry",
]
