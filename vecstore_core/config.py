"""
StoreConfig - configuration for building vector stores.

A config names a backend and carries the parameters that backend needs:

    sqlite    embedded SQLite file, or in-memory when path is None
    memory    pure-Python in-process store
    pgvector  remote PostgreSQL with the pgvector extension (connection_string)
    qdrant    remote Qdrant over HTTP (connection_string is the base URL)

Configs can be built in code, loaded from a JSON file, or read from the
environment:

    config = StoreConfig().with_sqlite("./vectors.db").with_option("table_name", "docs")
    config = StoreConfig.from_file("store.json")
    config = StoreConfig.from_env()   # VECSTORE_BACKEND, VECSTORE_PATH, ...

Documented option keys:
    table_name       SQL identifier for the record table (default "vectors")
    cache_size       SQLite page cache hint, an integer (sqlite only)
    filter_pushdown  "true"/"false", translate filters to SQL (sqlite only)
"""

import json
import logging
import os
import re
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, Mapping, Optional, Union

from vecstore_core.errors import ConfigurationError, NotFoundError

logger = logging.getLogger(__name__)

OPTION_TABLE_NAME = "table_name"
OPTION_CACHE_SIZE = "cache_size"
OPTION_FILTER_PUSHDOWN = "filter_pushdown"

DEFAULT_TABLE_NAME = "vectors"

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def is_sql_identifier(name: Any) -> bool:
    """Whether name is safe to use as a table name."""
    return isinstance(name, str) and bool(_IDENTIFIER.match(name))


class Backend(str, Enum):
    """Supported vector store backends."""

    SQLITE = "sqlite"
    MEMORY = "memory"
    PGVECTOR = "pgvector"
    QDRANT = "qdrant"

    @property
    def is_remote(self) -> bool:
        return self in (Backend.PGVECTOR, Backend.QDRANT)

    @classmethod
    def names(cls) -> list[str]:
        return [b.value for b in cls]

    @classmethod
    def from_name(cls, name: Union[str, "Backend"]) -> "Backend":
        """
        Resolve a backend name (case-insensitive, aliases allowed).

        Raises:
            NotFoundError: If the name is not a supported backend
        """
        if isinstance(name, Backend):
            return name
        normalized = str(name).strip().lower()
        normalized = _ALIASES.get(normalized, normalized)
        for backend in cls:
            if backend.value == normalized:
                return backend
        raise NotFoundError(
            f"Unknown vector store backend: {name}. "
            f"Supported: {', '.join(cls.names())}",
            name=str(name),
            available=cls.names(),
        )


_ALIASES = {
    "sqlite_vec": "sqlite",
    "sqlite3": "sqlite",
    "inmemory": "memory",
    "in_memory": "memory",
    "postgres": "pgvector",
}

_BACKEND_OPTIONS = {
    Backend.SQLITE: {OPTION_TABLE_NAME, OPTION_CACHE_SIZE, OPTION_FILTER_PUSHDOWN},
    Backend.MEMORY: set(),
    Backend.PGVECTOR: {OPTION_TABLE_NAME},
    Backend.QDRANT: {OPTION_TABLE_NAME},
}


@dataclass
class StoreConfig:
    """
    Configuration for creating a vector store.

    Attributes:
        backend: Backend name (see Backend)
        path: Database file for file-based backends; None means in-memory
        connection_string: Connection string or URL for remote backends
        options: Backend-specific options (see module docstring)
    """

    backend: str = Backend.SQLITE.value
    path: Optional[str] = None
    connection_string: Optional[str] = None
    options: dict[str, Any] = field(default_factory=dict)

    # Builders

    @classmethod
    def sqlite(cls, path: Union[str, Path]) -> "StoreConfig":
        """Configuration for a file-based SQLite store."""
        return cls(backend=Backend.SQLITE.value, path=str(path))

    @classmethod
    def memory(cls) -> "StoreConfig":
        """Configuration for the pure-Python in-memory store."""
        return cls(backend=Backend.MEMORY.value)

    def with_sqlite(self, path: Union[str, Path]) -> "StoreConfig":
        return replace(self, backend=Backend.SQLITE.value, path=str(path))

    def in_memory(self) -> "StoreConfig":
        """In-memory SQLite (no file)."""
        return replace(self, backend=Backend.SQLITE.value, path=None)

    def with_option(self, key: str, value: Any) -> "StoreConfig":
        return replace(self, options={**self.options, key: value})

    # Validation

    def resolve_backend(self) -> Backend:
        return Backend.from_name(self.backend)

    def validate(self) -> Backend:
        """
        Check the parameters required by the selected backend. Performs no I/O.

        Returns:
            The resolved Backend

        Raises:
            NotFoundError: If the backend name is unknown
            ConfigurationError: If a parameter is missing or invalid
        """
        backend = self.resolve_backend()

        if not isinstance(self.options, Mapping):
            raise ConfigurationError(
                f"options must be a mapping, got {type(self.options).__name__}"
            )

        if backend.is_remote:
            conn = self.connection_string
            if not isinstance(conn, str) or not conn.strip():
                raise ConfigurationError(
                    f"Backend '{backend.value}' requires a connection_string"
                )
            if backend == Backend.QDRANT and not conn.startswith(("http://", "https://")):
                raise ConfigurationError(
                    f"Qdrant connection_string must be an http(s) URL, got: {conn}"
                )
            if backend == Backend.PGVECTOR and not (
                conn.startswith(("postgresql://", "postgres://")) or "=" in conn
            ):
                raise ConfigurationError(
                    "pgvector connection_string must be a postgresql:// URL "
                    "or a key=value DSN"
                )

        if self.path is not None and not isinstance(self.path, (str, os.PathLike)):
            raise ConfigurationError(f"path must be a string, got {type(self.path).__name__}")

        unknown = set(self.options) - _BACKEND_OPTIONS[backend]
        if unknown:
            logger.warning(
                f"Ignoring unknown options for backend '{backend.value}': {sorted(unknown)}"
            )

        # Parse documented options so bad values fail before any I/O
        self.table_name()
        self.cache_size()
        self.filter_pushdown()
        return backend

    # Option accessors

    def table_name(self) -> str:
        value = self.options.get(OPTION_TABLE_NAME, DEFAULT_TABLE_NAME)
        if not is_sql_identifier(value):
            raise ConfigurationError(
                f"Option '{OPTION_TABLE_NAME}' must be a SQL identifier, got {value!r}"
            )
        return value

    def cache_size(self) -> Optional[int]:
        value = self.options.get(OPTION_CACHE_SIZE)
        if value is None:
            return None
        if isinstance(value, bool):
            raise ConfigurationError(f"Option '{OPTION_CACHE_SIZE}' must be an integer")
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ConfigurationError(
                f"Option '{OPTION_CACHE_SIZE}' must be an integer, got {value!r}"
            )

    def filter_pushdown(self) -> bool:
        value = self.options.get(OPTION_FILTER_PUSHDOWN, True)
        if isinstance(value, bool):
            return value
        text = str(value).strip().lower()
        if text in _TRUE_VALUES:
            return True
        if text in _FALSE_VALUES:
            return False
        raise ConfigurationError(
            f"Option '{OPTION_FILTER_PUSHDOWN}' must be true or false, got {value!r}"
        )

    # Serialization

    def to_dict(self) -> dict:
        backend = self.backend.value if isinstance(self.backend, Backend) else self.backend
        result = {"backend": backend}
        if self.path is not None:
            result["path"] = str(self.path)
        if self.connection_string is not None:
            result["connection_string"] = self.connection_string
        if self.options:
            result["options"] = dict(self.options)
        return result

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "StoreConfig":
        if not isinstance(data, Mapping):
            raise ConfigurationError(
                f"Store configuration must be an object, got {type(data).__name__}"
            )
        options = data.get("options") or {}
        if not isinstance(options, Mapping):
            raise ConfigurationError("Store configuration 'options' must be an object")
        return cls(
            backend=data.get("backend", Backend.SQLITE.value),
            path=data.get("path"),
            connection_string=data.get("connection_string"),
            options=dict(options),
        )

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "StoreConfig":
        """Load a configuration from a JSON file."""
        try:
            with open(path, "r") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Failed to read store configuration from {path}: {e}") from e
        return cls.from_dict(data)

    @classmethod
    def from_env(
        cls,
        prefix: str = "VECSTORE_",
        environ: Optional[Mapping[str, str]] = None,
    ) -> "StoreConfig":
        """
        Read a configuration from environment variables.

        Recognized variables (with the default prefix):
            VECSTORE_BACKEND, VECSTORE_PATH, VECSTORE_CONNECTION_STRING,
            VECSTORE_OPTION_<NAME> for options, e.g. VECSTORE_OPTION_TABLE_NAME
        """
        env = os.environ if environ is None else environ
        option_prefix = f"{prefix}OPTION_"
        options = {
            name[len(option_prefix):].lower(): value
            for name, value in env.items()
            if name.startswith(option_prefix) and len(name) > len(option_prefix)
        }
        return cls(
            backend=env.get(f"{prefix}BACKEND", Backend.SQLITE.value),
            path=env.get(f"{prefix}PATH") or None,
            connection_string=env.get(f"{prefix}CONNECTION_STRING") or None,
            options=options,
        )


__all__ = [
    "Backend",
    "StoreConfig",
    "is_sql_identifier",
    "OPTION_TABLE_NAME",
    "OPTION_CACHE_SIZE",
    "OPTION_FILTER_PUSHDOWN",
    "DEFAULT_TABLE_NAME",
]
