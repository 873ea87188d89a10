"""
Exception taxonomy for vecstore_core.

Every error raised by a store operation is a VectorStoreError subclass.
Driver-level failures (sqlite3.Error, OSError) are wrapped in StorageIOError
with the original exception chained as __cause__.
"""

from typing import Optional, Sequence


class VectorStoreError(Exception):
    """Base class for all vector store errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class ValidationError(VectorStoreError):
    """Raised for invalid input: bad vectors, non-positive top_k, malformed filters."""
    pass


class DimensionMismatchError(ValidationError):
    """Raised when an embedding length differs from the expected dimension."""

    def __init__(self, expected: int, actual: int, context: str = "embedding"):
        super().__init__(
            f"Dimension mismatch for {context}: expected {expected}, got {actual}"
        )
        self.expected = expected
        self.actual = actual


class NotFoundError(VectorStoreError):
    """Raised when a named resource (such as a backend) does not exist."""

    def __init__(self, message: str, name: str, available: Optional[Sequence[str]] = None):
        super().__init__(message)
        self.name = name
        self.available = list(available or [])


class ClosedStoreError(VectorStoreError):
    """Raised when an operation is attempted on a closed store."""
    pass


class StorageIOError(VectorStoreError):
    """Raised when the underlying storage driver fails."""
    pass


class ConfigurationError(VectorStoreError):
    """Raised when store configuration is missing or invalid."""
    pass


__all__ = [
    "VectorStoreError",
    "ValidationError",
    "DimensionMismatchError",
    "NotFoundError",
    "ClosedStoreError",
    "StorageIOError",
    "ConfigurationError",
]
