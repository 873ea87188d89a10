"""
Abstract base classes for vector storage backends.

These interfaces define the contract that all vector storage backends must implement.
Implementations can use different backends: the bundled SQLite and in-memory stores,
or remote stores registered with the factory (pgvector, Qdrant, ...).

Records are immutable value types. Every record handed back by a store is a fresh
copy, so callers can never mutate stored state through a returned object.
"""

import numbers
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from typing import Iterable, List, Mapping, Optional, Sequence, Tuple
from uuid import uuid4

import numpy as np

from vecstore_core.errors import (
    ClosedStoreError,
    DimensionMismatchError,
    ValidationError,
)
from vecstore_core.vectorstore.filters import FilterLike, require_text

# Largest finite value representable as an IEEE-754 single precision float
FLOAT32_MAX = 3.4028234663852886e38


def coerce_vector(values: Iterable[float], what: str = "embedding") -> Tuple[float, ...]:
    """
    Validate a vector and round it to 32-bit float precision.

    Args:
        values: Any iterable of real numbers (list, tuple, array, numpy array)
        what: Name used in error messages

    Returns:
        Tuple of floats holding float32 values

    Raises:
        ValidationError: If the vector is empty or contains non-finite values
    """
    if values is None or isinstance(values, (str, bytes)):
        raise ValidationError(f"{what} must be a sequence of numbers")
    try:
        items = list(values)
    except TypeError:
        raise ValidationError(f"{what} must be a sequence of numbers")
    if not items:
        raise ValidationError(f"{what} must not be empty")
    for index, value in enumerate(items):
        if not isinstance(value, numbers.Real):
            raise ValidationError(f"{what}[{index}] is not a number: {value!r}")
    try:
        wide = np.asarray(items, dtype=np.float64)
    except OverflowError:
        raise ValidationError(f"{what} holds a value too large for a 32-bit float")
    invalid = ~np.isfinite(wide) | (np.abs(wide) > FLOAT32_MAX)
    if invalid.any():
        index = int(np.flatnonzero(invalid)[0])
        raise ValidationError(
            f"{what}[{index}] is not a finite 32-bit float: {items[index]!r}"
        )
    return tuple(wide.astype(np.float32).tolist())


def _coerce_metadata(metadata: Optional[Mapping[str, str]]) -> dict[str, str]:
    if metadata is None:
        return {}
    if not isinstance(metadata, Mapping):
        raise ValidationError(f"metadata must be a mapping, got {type(metadata).__name__}")
    result = {}
    for key, value in metadata.items():
        if not isinstance(key, str):
            raise ValidationError(f"metadata keys must be strings, got {key!r}")
        if not isinstance(value, str):
            raise ValidationError(
                f"metadata value for '{key}' must be a string, got {type(value).__name__}"
            )
        require_text(key, "metadata key")
        require_text(value, f"metadata value for {key!r}")
        result[key] = value
    return result


@dataclass(frozen=True)
class VectorRecord:
    """A stored vector with its content and metadata."""

    id: str
    embedding: Tuple[float, ...]
    content: Optional[str] = None
    metadata: dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        if not isinstance(self.id, str) or not self.id:
            raise ValidationError(f"Record id must be a non-empty string, got {self.id!r}")
        require_text(self.id, "Record id")
        if self.content is not None and not isinstance(self.content, str):
            raise ValidationError(
                f"Record content must be a string or None, got {type(self.content).__name__}"
            )
        if self.content is not None:
            require_text(self.content, "Record content")
        object.__setattr__(self, "embedding", coerce_vector(self.embedding))
        object.__setattr__(self, "metadata", _coerce_metadata(self.metadata))

    def __hash__(self) -> int:
        return hash(self.id)

    @classmethod
    def create(
        cls,
        embedding: Sequence[float],
        content: Optional[str] = None,
        metadata: Optional[Mapping[str, str]] = None,
        id: Optional[str] = None,
    ) -> "VectorRecord":
        """Build a record, generating a UUID when no id is given."""
        return cls(
            id=id if id is not None else str(uuid4()),
            embedding=embedding,
            content=content,
            metadata=dict(metadata or {}),
        )

    @property
    def dimensions(self) -> int:
        return len(self.embedding)

    def copy(self) -> "VectorRecord":
        """Return an independent copy (metadata dict included)."""
        return replace(self)


@dataclass(frozen=True)
class ScoredRecord:
    """A search result: a record paired with its similarity score."""

    record: VectorRecord
    score: float  # Cosine similarity (higher = more similar)

    @property
    def id(self) -> str:
        return self.record.id

    @property
    def content(self) -> Optional[str]:
        return self.record.content

    @property
    def metadata(self) -> dict[str, str]:
        return self.record.metadata

    @property
    def embedding(self) -> Tuple[float, ...]:
        return self.record.embedding


@dataclass(frozen=True)
class StoreStats:
    """Store statistics, recomputed on every call."""

    total_records: int
    dimensions: Optional[int] = None  # None when the store holds no records
    size_bytes: Optional[int] = None  # Approximate storage footprint


def require_record(record: VectorRecord) -> VectorRecord:
    """Reject anything that is not a VectorRecord."""
    if not isinstance(record, VectorRecord):
        raise ValidationError(f"Expected a VectorRecord, got {type(record).__name__}")
    return record


def require_id(id: str) -> str:
    if not isinstance(id, str):
        raise ValidationError(f"Record id must be a string, got {type(id).__name__}")
    return require_text(id, "Record id")


def require_ids(ids: Iterable[str]) -> List[str]:
    """Validate ids and drop duplicates, keeping the first occurrence order."""
    if isinstance(ids, str):
        raise ValidationError("Expected a sequence of ids, got a single string")
    return list(dict.fromkeys(require_id(i) for i in ids))


def validate_top_k(top_k: int) -> int:
    if isinstance(top_k, bool) or not isinstance(top_k, int):
        raise ValidationError(f"top_k must be an integer, got {top_k!r}")
    if top_k <= 0:
        raise ValidationError(f"top_k must be positive, got {top_k}")
    return top_k


def validate_page(limit: int, offset: int) -> Tuple[int, int]:
    for name, value in (("limit", limit), ("offset", offset)):
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValidationError(f"{name} must be an integer, got {value!r}")
        if value < 0:
            raise ValidationError(f"{name} must not be negative, got {value}")
    return limit, offset


def check_batch_dimensions(
    records: Sequence[VectorRecord],
    established: Optional[int],
) -> Optional[int]:
    """
    Check that every record in a batch agrees with the store dimension.

    When the store has no dimension yet, the first record of the batch sets it.

    Returns:
        The dimension the store will have after the batch is written
    """
    if not records:
        return established
    expected = established if established is not None else records[0].dimensions
    for index, record in enumerate(records):
        if record.dimensions != expected:
            raise DimensionMismatchError(
                expected,
                record.dimensions,
                context=f"record '{record.id}' (batch index {index})",
            )
    return expected


class VectorStore(ABC):
    """
    Abstract interface for vector storage and similarity search.

    A store has two states. It is open from construction until close(); afterwards
    every operation raises ClosedStoreError except close() itself, which is a no-op.
    There is no reopening.

    Filters may be given as MetadataFilter expressions or as plain dicts, which
    are read as an AND of equality checks.
    """

    def __init__(self):
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _ensure_open(self) -> None:
        if self._closed:
            raise ClosedStoreError(f"{type(self).__name__} is closed")

    @abstractmethod
    def upsert(self, record: VectorRecord) -> None:
        """
        Insert a record, or fully replace the record with the same id.

        Raises:
            DimensionMismatchError: If the embedding length differs from the store's
        """
        ...

    @abstractmethod
    def upsert_batch(self, records: Iterable[VectorRecord]) -> None:
        """
        Upsert several records in one all-or-nothing transaction.

        Any invalid record aborts the whole batch and nothing is written.
        """
        ...

    @abstractmethod
    def search(
        self,
        query_vector: Sequence[float],
        top_k: int = 10,
        filter: FilterLike = None,
    ) -> List[ScoredRecord]:
        """
        Search for the records most similar to a query vector.

        Args:
            query_vector: The query embedding vector
            top_k: Maximum number of results to return (must be positive)
            filter: Optional metadata filter restricting the candidates

        Returns:
            List of ScoredRecord ordered by score (highest first), ties by id
        """
        ...

    @abstractmethod
    def get(self, id: str) -> Optional[VectorRecord]:
        """Get a record by id, or None if it does not exist."""
        ...

    @abstractmethod
    def get_batch(self, ids: Iterable[str]) -> List[VectorRecord]:
        """Get the records that exist among ids. Unknown ids are omitted."""
        ...

    @abstractmethod
    def delete(self, id: str) -> None:
        """Delete a record. Deleting an unknown id is not an error."""
        ...

    @abstractmethod
    def delete_batch(self, ids: Iterable[str]) -> None:
        """Delete several records in one transaction."""
        ...

    @abstractmethod
    def delete_by_filter(self, filter: FilterLike) -> int:
        """
        Delete every record matching filter.

        Returns:
            Number of records deleted
        """
        ...

    @abstractmethod
    def delete_by_prefix(self, prefix: str) -> int:
        """
        Delete every record whose id starts with prefix.

        Returns:
            Number of records deleted
        """
        ...

    @abstractmethod
    def count(self, filter: FilterLike = None) -> int:
        """Count all records, or only those matching filter."""
        ...

    @abstractmethod
    def list(
        self,
        limit: int = 100,
        offset: int = 0,
        filter: FilterLike = None,
    ) -> List[VectorRecord]:
        """
        Return one page of records ordered by id.

        Pages with increasing offset never repeat or skip a record for a fixed
        store state. An offset past the end yields an empty page.
        """
        ...

    @abstractmethod
    def clear(self) -> None:
        """Remove all records and forget the established dimension."""
        ...

    @abstractmethod
    def stats(self) -> StoreStats:
        """Compute statistics from the current state."""
        ...

    def close(self) -> None:
        """Release resources. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self._release()

    def _release(self) -> None:
        """Free backend resources. Override if needed."""
        pass

    def __enter__(self) -> "VectorStore":
        self._ensure_open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
