"""
Document registry for incremental indexing.

Remembers which version of each source document has been indexed, so a loader
can skip documents whose content has not changed since the last run.
"""

import hashlib
import logging
import sqlite3
import threading
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional, Union

from vecstore_core.errors import ClosedStoreError, StorageIOError, ValidationError
from vecstore_core.vectorstore.filters import require_text

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DocumentVersion:
    """Content-addressed version of a document."""

    content_hash: str
    timestamp: Optional[int] = None  # Source modification time, epoch millis
    etag: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.content_hash, str):
            raise ValidationError(f"content_hash must be a string, got {self.content_hash!r}")
        require_text(self.content_hash, "content_hash")
        if self.etag is not None:
            require_text(self.etag, "etag")

    @classmethod
    def from_content(
        cls,
        content: Union[str, bytes],
        timestamp: Optional[int] = None,
        etag: Optional[str] = None,
    ) -> "DocumentVersion":
        """Build a version from the SHA-256 of the document content."""
        if isinstance(content, str):
            content = require_text(content, "content").encode("utf-8")
        return cls(hashlib.sha256(content).hexdigest(), timestamp, etag)

    def is_same_as(self, other: "DocumentVersion") -> bool:
        if self.content_hash != other.content_hash:
            return False
        if self.etag is not None and other.etag is not None:
            return self.etag == other.etag
        return True


def _require_doc_id(doc_id: str) -> None:
    if not isinstance(doc_id, str) or not doc_id:
        raise ValidationError(f"Document id must be a non-empty string, got {doc_id!r}")
    require_text(doc_id, "Document id")


class DocumentRegistry(ABC):
    """Tracks the indexed version of each document."""

    @abstractmethod
    def get_version(self, doc_id: str) -> Optional[DocumentVersion]:
        ...

    @abstractmethod
    def register(self, doc_id: str, version: DocumentVersion) -> None:
        ...

    @abstractmethod
    def unregister(self, doc_id: str) -> None:
        ...

    @abstractmethod
    def all_document_ids(self) -> set[str]:
        ...

    @abstractmethod
    def clear(self) -> None:
        ...

    @abstractmethod
    def count(self) -> int:
        ...

    def has_changed(self, doc_id: str, version: DocumentVersion) -> bool:
        """
        Whether a document needs (re)indexing.

        True when the document is unknown or its registered version differs.
        """
        current = self.get_version(doc_id)
        return current is None or not current.is_same_as(version)

    def close(self) -> None:
        pass


class InMemoryDocumentRegistry(DocumentRegistry):
    """Registry held in a dict. Thread safe, not persisted."""

    def __init__(self):
        self._versions: dict[str, DocumentVersion] = {}
        self._lock = threading.Lock()

    def get_version(self, doc_id: str) -> Optional[DocumentVersion]:
        _require_doc_id(doc_id)
        with self._lock:
            return self._versions.get(doc_id)

    def register(self, doc_id: str, version: DocumentVersion) -> None:
        _require_doc_id(doc_id)
        with self._lock:
            self._versions[doc_id] = version

    def unregister(self, doc_id: str) -> None:
        _require_doc_id(doc_id)
        with self._lock:
            self._versions.pop(doc_id, None)

    def all_document_ids(self) -> set[str]:
        with self._lock:
            return set(self._versions)

    def clear(self) -> None:
        with self._lock:
            self._versions.clear()

    def count(self) -> int:
        with self._lock:
            return len(self._versions)


class SQLiteDocumentRegistry(DocumentRegistry):
    """
    SQLite-backed registry that survives restarts.

    Usage:
        registry = SQLiteDocumentRegistry.for_vector_store("./vectors.db")
        # -> ./vectors-registry.db
        version = DocumentVersion.from_content(text)
        if registry.has_changed("doc-1", version):
            ...  # re-index
            registry.register("doc-1", version)
    """

    def __init__(self, path: Union[str, Path] = ":memory:"):
        self._path = str(path)
        self._lock = threading.RLock()
        self._closed = False
        if self._path != ":memory:":
            try:
                Path(self._path).parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise StorageIOError(f"Cannot create directory for {self._path}: {e}") from e
        try:
            self._conn = sqlite3.connect(self._path, check_same_thread=False)
        except sqlite3.Error as e:
            raise StorageIOError(f"Failed to open document registry {self._path}: {e}") from e
        try:
            with self._conn:
                self._conn.execute("""
                    CREATE TABLE IF NOT EXISTS document_registry (
                        doc_id TEXT PRIMARY KEY,
                        content_hash TEXT NOT NULL,
                        timestamp INTEGER,
                        etag TEXT,
                        registered_at INTEGER NOT NULL
                    )
                """)
                self._conn.execute(
                    "CREATE INDEX IF NOT EXISTS idx_registry_hash "
                    "ON document_registry(content_hash)"
                )
        except sqlite3.Error as e:
            self._conn.close()
            raise StorageIOError(f"Failed to initialize document registry: {e}") from e
        logger.info(f"Opened document registry at {self._path}")

    @classmethod
    def open(cls, path: Union[str, Path]) -> "SQLiteDocumentRegistry":
        return cls(path)

    @classmethod
    def in_memory(cls) -> "SQLiteDocumentRegistry":
        return cls(":memory:")

    @classmethod
    def for_vector_store(cls, vector_store_path: Union[str, Path]) -> "SQLiteDocumentRegistry":
        """Open a registry next to a vector store database, named <name>-registry.db."""
        path = str(vector_store_path)
        if path == ":memory:":
            return cls.in_memory()
        if path.endswith(".db"):
            registry_path = path[: -len(".db")] + "-registry.db"
        else:
            registry_path = path + "-registry.db"
        return cls(registry_path)

    @property
    def path(self) -> str:
        return self._path

    @property
    def closed(self) -> bool:
        return self._closed

    @contextmanager
    def _connection(self, write: bool = False) -> Iterator[sqlite3.Connection]:
        with self._lock:
            if self._closed:
                raise ClosedStoreError("Document registry is closed")
            try:
                if write:
                    with self._conn:
                        yield self._conn
                else:
                    yield self._conn
            except sqlite3.Error as e:
                raise StorageIOError(f"Document registry operation failed: {e}") from e

    def get_version(self, doc_id: str) -> Optional[DocumentVersion]:
        _require_doc_id(doc_id)
        with self._connection() as conn:
            row = conn.execute(
                "SELECT content_hash, timestamp, etag FROM document_registry WHERE doc_id = ?",
                (doc_id,),
            ).fetchone()
        if row is None:
            return None
        return DocumentVersion(content_hash=row[0], timestamp=row[1], etag=row[2])

    def register(self, doc_id: str, version: DocumentVersion) -> None:
        _require_doc_id(doc_id)
        if not isinstance(version, DocumentVersion):
            raise ValidationError(f"Expected a DocumentVersion, got {type(version).__name__}")
        with self._connection(write=True) as conn:
            conn.execute(
                "INSERT OR REPLACE INTO document_registry "
                "(doc_id, content_hash, timestamp, etag, registered_at) VALUES (?, ?, ?, ?, ?)",
                (
                    doc_id,
                    version.content_hash,
                    version.timestamp,
                    version.etag,
                    int(time.time() * 1000),
                ),
            )
        logger.debug(f"Registered document {doc_id}")

    def unregister(self, doc_id: str) -> None:
        _require_doc_id(doc_id)
        with self._connection(write=True) as conn:
            conn.execute("DELETE FROM document_registry WHERE doc_id = ?", (doc_id,))

    def all_document_ids(self) -> set[str]:
        with self._connection() as conn:
            return {row[0] for row in conn.execute("SELECT doc_id FROM document_registry")}

    def clear(self) -> None:
        with self._connection(write=True) as conn:
            conn.execute("DELETE FROM document_registry")

    def count(self) -> int:
        with self._connection() as conn:
            return conn.execute("SELECT COUNT(*) FROM document_registry").fetchone()[0]

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            try:
                self._conn.close()
            except sqlite3.Error as e:
                raise StorageIOError(f"Failed to close document registry: {e}") from e
        logger.info(f"Closed document registry at {self._path}")

    def __enter__(self) -> "SQLiteDocumentRegistry":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


__all__ = [
    "DocumentVersion",
    "DocumentRegistry",
    "InMemoryDocumentRegistry",
    "SQLiteDocumentRegistry",
]
