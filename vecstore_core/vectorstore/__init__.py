"""
Vector store module for vecstore_core.

Provides pluggable vector storage backends for similarity search:
- sqlite: Embedded SQLite, file or in-memory (requires: pip install sqlite-vec)
- memory: Pure-Python in-process store
- pgvector, qdrant: Remote stores, available once a constructor is registered
  with register_backend()

Example usage:
    from vecstore_core.vectorstore import (
        StoreConfig,
        VectorRecord,
        Equals,
        create_vector_store,
    )

    result = create_vector_store(StoreConfig().with_sqlite("./vectors.db"))
    if not result.ok:
        raise result.error
    store = result.store

    # Index a document
    store.upsert(VectorRecord("doc-1", [0.1, 0.9, 0.0], "The quick brown fox",
                              {"source": "example"}))

    # Search
    for r in store.search([0.1, 0.8, 0.1], top_k=5, filter=Equals("source", "example")):
        print(f"{r.score:.3f}: {r.content}")

    store.close()
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional, Union

from vecstore_core.config import Backend, StoreConfig
from vecstore_core.errors import (
    ConfigurationError,
    StorageIOError,
    ValidationError,
    VectorStoreError,
)
from vecstore_core.vectorstore.base import (
    ScoredRecord,
    StoreStats,
    VectorRecord,
    VectorStore,
)
from vecstore_core.vectorstore.embeddings import (
    CachedEmbeddingClient,
    EmbeddingCache,
    EmbeddingClient,
    InMemoryEmbeddingCache,
)
from vecstore_core.vectorstore.filters import (
    And,
    Contains,
    Equals,
    HasKey,
    In,
    MetadataFilter,
    Not,
    Or,
    evaluate,
    filter_from_dict,
)
from vecstore_core.vectorstore.memory import InMemoryVectorStore
from vecstore_core.vectorstore.sqlite_store import SQLiteVectorStore

logger = logging.getLogger(__name__)

BackendConstructor = Callable[[StoreConfig], VectorStore]


def _build_sqlite(config: StoreConfig) -> VectorStore:
    return SQLiteVectorStore(
        path=config.path if config.path is not None else ":memory:",
        table_name=config.table_name(),
        cache_size=config.cache_size(),
        filter_pushdown=config.filter_pushdown(),
    )


def _build_memory(config: StoreConfig) -> VectorStore:
    return InMemoryVectorStore()


# Backend registry
_backend_constructors: dict[Backend, BackendConstructor] = {
    Backend.SQLITE: _build_sqlite,
    Backend.MEMORY: _build_memory,
}


def register_backend(name: Union[str, Backend], constructor: BackendConstructor) -> None:
    """
    Register the constructor used for a backend.

    The constructor receives the validated StoreConfig and returns an open
    VectorStore. This is how remote backends (pgvector, qdrant) are plugged in.

    Example:
        register_backend("qdrant", lambda config: MyQdrantStore(config.connection_string))

    Raises:
        NotFoundError: If name is not a known backend
        ValidationError: If constructor is not callable
    """
    backend = Backend.from_name(name)
    if not callable(constructor):
        raise ValidationError(f"Constructor for backend '{backend.value}' must be callable")
    _backend_constructors[backend] = constructor
    logger.info(f"Registered vector store backend: {backend.value}")


def unregister_backend(name: Union[str, Backend]) -> bool:
    """
    Remove a backend constructor.

    Returns:
        True if a constructor was removed
    """
    backend = Backend.from_name(name)
    removed = _backend_constructors.pop(backend, None) is not None
    if removed:
        logger.info(f"Unregistered vector store backend: {backend.value}")
    return removed


def list_backends() -> list[str]:
    """Names of backends that currently have a constructor."""
    return sorted(b.value for b in _backend_constructors)


@dataclass
class StoreResult:
    """Outcome of create_vector_store(): either a store or the error that prevented it."""

    store: Optional[VectorStore] = None
    error: Optional[VectorStoreError] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.store is not None

    def unwrap(self) -> VectorStore:
        """Return the store, or raise the error."""
        if self.error is not None:
            raise self.error
        return self.store


def create_vector_store(config: StoreConfig) -> StoreResult:
    """
    Build a vector store from a configuration. Never raises.

    Steps:
        1. Resolve the backend name (NotFoundError if unknown)
        2. Validate backend parameters without any I/O (ConfigurationError)
        3. Construct through the backend registry; a backend without a
           constructor yields ConfigurationError
        4. Any other failure is reported as StorageIOError

    Returns:
        A StoreResult holding either the open store or the error
    """
    if not isinstance(config, StoreConfig):
        return StoreResult(
            error=ConfigurationError(
                f"Expected a StoreConfig, got {type(config).__name__}"
            )
        )
    store = None
    try:
        backend = config.validate()
        constructor = _backend_constructors.get(backend)
        if constructor is None:
            raise ConfigurationError(
                f"No constructor registered for backend '{backend.value}'. "
                f"Use register_backend('{backend.value}', ...) to provide one."
            )
        store = constructor(config)
        if not isinstance(store, VectorStore):
            raise ConfigurationError(
                f"Constructor for backend '{backend.value}' returned "
                f"{type(store).__name__}, not a VectorStore"
            )
    except VectorStoreError as e:
        _discard(store)
        logger.warning(f"Failed to create vector store: {e}")
        return StoreResult(error=e)
    except Exception as e:  # noqa: BLE001
        _discard(store)
        error = StorageIOError(f"Failed to create vector store: {e}")
        error.__cause__ = e
        logger.warning(str(error))
        return StoreResult(error=error)

    logger.info(f"Created vector store with backend '{backend.value}'")
    return StoreResult(store=store)


def _discard(store: Any) -> None:
    """Close an object a constructor returned before it was rejected."""
    close = getattr(store, "close", None)
    if callable(close):
        try:
            close()
        except Exception as e:  # noqa: BLE001
            logger.error(f"Failed to close rejected store: {e}")


def create_vector_store_by_name(
    provider: str,
    path: Optional[str] = None,
    connection_string: Optional[str] = None,
    options: Optional[Mapping[str, Any]] = None,
) -> StoreResult:
    """Build a store from a backend name and its parameters. Never raises."""
    return create_vector_store(
        StoreConfig(
            backend=provider,
            path=path,
            connection_string=connection_string,
            options=dict(options or {}),
        )
    )


def get_vector_store(backend: str = "sqlite", **kwargs) -> VectorStore:
    """
    Factory function to get a vector store instance.

    Args:
        backend: The backend to use. Options:
            - "sqlite": SQLite, in-memory unless path is given (default)
            - "memory": Pure-Python in-process store
            - "pgvector", "qdrant": require a registered constructor
        **kwargs: path, connection_string, and backend options such as
            table_name, cache_size or filter_pushdown

    Returns:
        A VectorStore instance

    Raises:
        VectorStoreError: If the store cannot be created

    Examples:
        # SQLite (local development)
        store = get_vector_store("sqlite", path="./vectors.db")

        # SQLite with a custom table
        store = get_vector_store("sqlite", path="./vectors.db", table_name="docs")

        # In-memory
        store = get_vector_store("memory")
    """
    path = kwargs.pop("path", None)
    connection_string = kwargs.pop("connection_string", None)
    options = dict(kwargs.pop("options", None) or {})
    options.update(kwargs)
    return create_vector_store_by_name(
        backend,
        path=str(path) if path is not None else None,
        connection_string=connection_string,
        options=options,
    ).unwrap()


__all__ = [
    # Abstract interfaces
    "VectorStore",
    "VectorRecord",
    "ScoredRecord",
    "StoreStats",
    "EmbeddingClient",
    "EmbeddingCache",
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
    # Implementations
    "SQLiteVectorStore",
    "InMemoryVectorStore",
    "InMemoryEmbeddingCache",
    "CachedEmbeddingClient",
    # Factory
    "Backend",
    "StoreConfig",
    "StoreResult",
    "BackendConstructor",
    "create_vector_store",
    "create_vector_store_by_name",
    "get_vector_store",
    "register_backend",
    "unregister_backend",
    "list_backends",
]
