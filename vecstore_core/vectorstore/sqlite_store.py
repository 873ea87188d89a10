"""
SQLite vector store implementation.

Stores embeddings as float32 blobs in a plain SQLite table and answers queries
by brute force: candidates are narrowed with SQL, then every remaining vector is
scored with cosine similarity in numpy. There is no vector index, so a search
costs O(matching records x dimensions). This suits local development, tests and
small to medium collections.

Requires: pip install sqlite-vec numpy (float32 blob format and scoring)
"""

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterable, Iterator, List, Optional, Sequence, Union

import numpy as np
import sqlite_vec

from vecstore_core.config import DEFAULT_TABLE_NAME, is_sql_identifier
from vecstore_core.errors import (
    ConfigurationError,
    DimensionMismatchError,
    StorageIOError,
    ValidationError,
)
from vecstore_core.vectorstore.base import (
    ScoredRecord,
    StoreStats,
    VectorRecord,
    VectorStore,
    check_batch_dimensions,
    coerce_vector,
    require_id,
    require_ids,
    require_record,
    validate_page,
    validate_top_k,
)
from vecstore_core.vectorstore.filters import (
    FilterLike,
    MetadataFilter,
    coerce_filter,
    evaluate,
    require_text,
)
from vecstore_core.vectorstore.scoring import check_dimensions, rank_scores
from vecstore_core.vectorstore.translate import (
    SqlFilterTranslator,
    SqlPredicate,
    UntranslatableFilterError,
)

logger = logging.getLogger(__name__)

# Keep IN (...) lists well below SQLite's bound-parameter limit
_CHUNK_SIZE = 500

_DIMENSIONS_KEY = "dimensions"


def _serialize_vector(vector: Sequence[float]) -> bytes:
    """Serialize a vector to a float32 blob."""
    return sqlite_vec.serialize_float32(list(vector))


def _deserialize_vector(data: bytes) -> np.ndarray:
    """Deserialize a float32 blob."""
    return np.frombuffer(data, dtype=np.float32)


def _chunks(items: Sequence[Any], size: int = _CHUNK_SIZE) -> Iterator[Sequence[Any]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


class SQLiteVectorStore(VectorStore):
    """
    Vector store backed by a single SQLite connection.

    The store creates three tables:
    - {table_name}: id, float32 embedding blob, dimensions, content, metadata JSON
    - {table_name}_metadata: one (record_id, key, value) row per metadata entry,
      used to push metadata filters down to SQL
    - {table_name}_settings: the dimension established by the first insert

    All access to the connection goes through one re-entrant lock. Writes run in
    explicit BEGIN IMMEDIATE / COMMIT transactions, so concurrent callers never
    interleave a write and readers never see a half-applied batch.

    Usage:
        with SQLiteVectorStore("./vectors.db") as store:
            store.upsert(VectorRecord("doc-1", [0.1, 0.2, 0.3], "Hello"))
            results = store.search([0.1, 0.2, 0.3], top_k=5)
    """

    def __init__(
        self,
        path: Union[str, Path] = ":memory:",
        table_name: str = DEFAULT_TABLE_NAME,
        cache_size: Optional[int] = None,
        filter_pushdown: bool = True,
        translator_capabilities: Optional[Iterable[type]] = None,
    ):
        """
        Open (or create) a SQLite vector store.

        Args:
            path: Database path (":memory:" for in-memory, or file path)
            table_name: Base name for the tables
            cache_size: Optional SQLite page cache size hint (PRAGMA cache_size)
            filter_pushdown: Translate metadata filters to SQL when possible;
                when False every filter is evaluated in Python
            translator_capabilities: Leaf filter types the SQL translator may
                handle (defaults to all); the rest are evaluated in Python

        Raises:
            ConfigurationError: If table_name is not a valid SQL identifier
            StorageIOError: If the database cannot be opened or initialized
        """
        super().__init__()
        if not is_sql_identifier(table_name):
            raise ConfigurationError(f"table_name must be a SQL identifier, got {table_name!r}")

        self._path = str(path)
        self._table = table_name
        self._meta_table = f"{table_name}_metadata"
        self._settings_table = f"{table_name}_settings"
        self._filter_pushdown = filter_pushdown
        self._translator = SqlFilterTranslator(
            self._meta_table, "r.id", supported=translator_capabilities
        )
        self._lock = threading.RLock()
        self._conn = self._connect()
        try:
            self._initialize(cache_size)
        except Exception:
            self._conn.close()
            self._closed = True
            raise
        logger.info(f"Opened SQLite vector store at {self._path} (table '{self._table}')")

    @classmethod
    def in_memory(cls, **kwargs) -> "SQLiteVectorStore":
        """Create a store that lives only as long as its connection."""
        return cls(":memory:", **kwargs)

    @property
    def path(self) -> str:
        return self._path

    @property
    def table_name(self) -> str:
        return self._table

    @property
    def dimensions(self) -> Optional[int]:
        """The established embedding dimension, or None before the first insert."""
        with self._reading() as conn:
            return self._established_dimensions(conn)

    # Connection and schema

    def _connect(self) -> sqlite3.Connection:
        if self._path != ":memory:" and not self._path.startswith("file:"):
            try:
                Path(self._path).parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise StorageIOError(f"Cannot create directory for {self._path}: {e}") from e
        try:
            # Transactions are managed explicitly, hence isolation_level=None
            return sqlite3.connect(
                self._path,
                check_same_thread=False,
                isolation_level=None,
                uri=self._path.startswith("file:"),
            )
        except sqlite3.Error as e:
            raise StorageIOError(f"Failed to open SQLite database {self._path}: {e}") from e

    def _initialize(self, cache_size: Optional[int]) -> None:
        try:
            if cache_size is not None:
                self._conn.execute(f"PRAGMA cache_size = {int(cache_size)}")
        except sqlite3.Error as e:
            raise StorageIOError(f"Failed to configure SQLite: {e}") from e

        with self._transaction() as conn:
            conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {self._table} (
                    id TEXT PRIMARY KEY,
                    embedding BLOB NOT NULL,
                    dimensions INTEGER NOT NULL,
                    content TEXT,
                    metadata TEXT NOT NULL DEFAULT '{{}}'
                )
            """)
            conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {self._meta_table} (
                    record_id TEXT NOT NULL,
                    key TEXT NOT NULL,
                    value TEXT NOT NULL,
                    PRIMARY KEY (record_id, key)
                )
            """)
            conn.execute(
                f"CREATE INDEX IF NOT EXISTS {self._meta_table}_kv "
                f"ON {self._meta_table}(key, value)"
            )
            conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {self._settings_table} (
                    name TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
            """)

    @contextmanager
    def _reading(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            self._ensure_open()
            try:
                yield self._conn
            except sqlite3.Error as e:
                raise StorageIOError(f"SQLite read failed: {e}") from e

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            self._ensure_open()
            conn = self._conn
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                raise StorageIOError(f"Failed to begin transaction: {e}") from e
            try:
                yield conn
                conn.execute("COMMIT")
            except sqlite3.Error as e:
                self._rollback()
                raise StorageIOError(f"SQLite write failed: {e}") from e
            except Exception:
                self._rollback()
                raise

    def _rollback(self) -> None:
        if self._conn.in_transaction:
            try:
                self._conn.execute("ROLLBACK")
            except sqlite3.Error as e:
                logger.error(f"Rollback failed on {self._path}: {e}")

    def _established_dimensions(self, conn: sqlite3.Connection) -> Optional[int]:
        row = conn.execute(
            f"SELECT value FROM {self._settings_table} WHERE name = ?",
            (_DIMENSIONS_KEY,),
        ).fetchone()
        return int(row[0]) if row else None

    def _set_dimensions(self, conn: sqlite3.Connection, dimensions: int) -> None:
        conn.execute(
            f"INSERT OR REPLACE INTO {self._settings_table} (name, value) VALUES (?, ?)",
            (_DIMENSIONS_KEY, str(dimensions)),
        )

    # Row helpers

    def _write(self, conn: sqlite3.Connection, record: VectorRecord) -> None:
        conn.execute(
            f"INSERT OR REPLACE INTO {self._table} "
            f"(id, embedding, dimensions, content, metadata) VALUES (?, ?, ?, ?, ?)",
            (
                record.id,
                _serialize_vector(record.embedding),
                record.dimensions,
                record.content,
                json.dumps(record.metadata, sort_keys=True),
            ),
        )
        conn.execute(f"DELETE FROM {self._meta_table} WHERE record_id = ?", (record.id,))
        conn.executemany(
            f"INSERT INTO {self._meta_table} (record_id, key, value) VALUES (?, ?, ?)",
            [(record.id, key, value) for key, value in record.metadata.items()],
        )

    def _remove(self, conn: sqlite3.Connection, ids: Sequence[str]) -> None:
        for chunk in _chunks(ids):
            placeholders = ",".join("?" * len(chunk))
            conn.execute(f"DELETE FROM {self._table} WHERE id IN ({placeholders})", chunk)
            conn.execute(
                f"DELETE FROM {self._meta_table} WHERE record_id IN ({placeholders})", chunk
            )

    @staticmethod
    def _row_to_record(row: Sequence[Any]) -> VectorRecord:
        id, embedding, content, metadata_json = row
        return VectorRecord(
            id=id,
            embedding=_deserialize_vector(embedding),
            content=content,
            metadata=json.loads(metadata_json),
        )

    def _fetch_records(self, conn: sqlite3.Connection, ids: Sequence[str]) -> dict[str, VectorRecord]:
        found = {}
        for chunk in _chunks(ids):
            placeholders = ",".join("?" * len(chunk))
            cursor = conn.execute(
                f"SELECT id, embedding, content, metadata FROM {self._table} "
                f"WHERE id IN ({placeholders})",
                chunk,
            )
            for row in cursor:
                found[row[0]] = self._row_to_record(row)
        return found

    # Filtering

    def _plan(self, filter: Optional[MetadataFilter]) -> tuple[Optional[SqlPredicate], bool]:
        """
        Decide how to apply a filter.

        Returns:
            (predicate, residual): an optional SQL predicate, and whether the
            filter must still be evaluated in Python on the selected rows
        """
        if filter is None:
            return None, False
        if not self._filter_pushdown:
            return None, True
        try:
            return self._translator.translate(filter), False
        except UntranslatableFilterError as e:
            logger.warning(f"Evaluating {type(filter).__name__} filter in memory: {e}")
            return self._translator.translate_partial(filter), True

    def _select(
        self,
        conn: sqlite3.Connection,
        columns: str,
        filter: Optional[MetadataFilter],
        limit: Optional[int] = None,
        offset: int = 0,
        plan: Optional[tuple] = None,
    ) -> Iterable[Sequence[Any]]:
        """Select rows of the record table (aliased r) matching filter, ordered by id."""
        predicate, residual = plan if plan is not None else self._plan(filter)
        sql = f"SELECT {columns}"
        if residual:
            sql += ", r.metadata"
        sql += f" FROM {self._table} r"
        params: list = []
        if predicate is not None:
            sql += f" WHERE {predicate.sql}"
            params.extend(predicate.params)
        sql += " ORDER BY r.id"

        if not residual:
            if limit is not None:
                sql += " LIMIT ? OFFSET ?"
                params.extend([limit, offset])
            return conn.execute(sql, params)

        rows = [
            row[:-1]
            for row in conn.execute(sql, params)
            if evaluate(json.loads(row[-1]), filter)
        ]
        if limit is not None:
            rows = rows[offset:offset + limit]
        return rows

    # VectorStore operations

    def upsert(self, record: VectorRecord) -> None:
        """Insert or replace a record."""
        require_record(record)
        with self._transaction() as conn:
            established = self._established_dimensions(conn)
            if established is not None and record.dimensions != established:
                raise DimensionMismatchError(
                    established, record.dimensions, context=f"record '{record.id}'"
                )
            self._write(conn, record)
            if established is None:
                self._set_dimensions(conn, record.dimensions)
        logger.debug(f"Upserted record {record.id}")

    def upsert_batch(self, records: Iterable[VectorRecord]) -> None:
        """Insert or replace several records atomically."""
        if records is None:
            raise ValidationError("records must be a sequence of VectorRecord")
        records = [require_record(r) for r in records]
        if not records:
            return

        with self._transaction() as conn:
            established = self._established_dimensions(conn)
            dimensions = check_batch_dimensions(records, established)
            for record in records:
                self._write(conn, record)
            if established is None:
                self._set_dimensions(conn, dimensions)
        logger.debug(f"Upserted batch of {len(records)} records")

    def search(
        self,
        query_vector: Sequence[float],
        top_k: int = 10,
        filter: FilterLike = None,
    ) -> List[ScoredRecord]:
        """Score every candidate against the query and return the best top_k."""
        validate_top_k(top_k)
        query = coerce_vector(query_vector, "query vector")
        filter = coerce_filter(filter)

        with self._reading() as conn:
            if conn.execute(f"SELECT 1 FROM {self._table} LIMIT 1").fetchone() is None:
                return []
            dimensions = self._established_dimensions(conn)
            if dimensions is not None:
                check_dimensions(query, dimensions)

            rows = self._select(conn, "r.id, r.embedding", filter)
            ranked = rank_scores(
                query,
                ((row[0], _deserialize_vector(row[1])) for row in rows),
                top_k,
            )
            if not ranked:
                return []
            records = self._fetch_records(conn, [id for id, _ in ranked])

        return [ScoredRecord(record=records[id], score=score) for id, score in ranked]

    def get(self, id: str) -> Optional[VectorRecord]:
        """Get a record by id."""
        require_id(id)
        with self._reading() as conn:
            row = conn.execute(
                f"SELECT id, embedding, content, metadata FROM {self._table} WHERE id = ?",
                (id,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_record(row)

    def get_batch(self, ids: Iterable[str]) -> List[VectorRecord]:
        """Get the existing records among ids, in request order."""
        ids = require_ids(ids)
        if not ids:
            return []
        with self._reading() as conn:
            found = self._fetch_records(conn, ids)
        return [found[id] for id in ids if id in found]

    def delete(self, id: str) -> None:
        """Delete a record by id."""
        require_id(id)
        with self._transaction() as conn:
            self._remove(conn, [id])

    def delete_batch(self, ids: Iterable[str]) -> None:
        """Delete several records."""
        ids = require_ids(ids)
        if not ids:
            return
        with self._transaction() as conn:
            self._remove(conn, ids)

    def delete_by_filter(self, filter: FilterLike) -> int:
        """Delete records matching filter."""
        filter = coerce_filter(filter)
        if filter is None:
            raise ValidationError("delete_by_filter requires a filter; use clear() to delete everything")
        with self._transaction() as conn:
            ids = [row[0] for row in self._select(conn, "r.id", filter)]
            self._remove(conn, ids)
        logger.debug(f"Deleted {len(ids)} records by filter")
        return len(ids)

    def delete_by_prefix(self, prefix: str) -> int:
        """Delete records whose id starts with prefix."""
        if not isinstance(prefix, str):
            raise ValidationError(f"prefix must be a string, got {type(prefix).__name__}")
        require_text(prefix, "prefix")
        with self._transaction() as conn:
            # substr() compares exactly; LIKE would ignore ASCII case
            ids = [
                row[0]
                for row in conn.execute(
                    f"SELECT id FROM {self._table} WHERE substr(id, 1, ?) = ?",
                    (len(prefix), prefix),
                )
            ]
            self._remove(conn, ids)
        logger.debug(f"Deleted {len(ids)} records with prefix '{prefix}'")
        return len(ids)

    def count(self, filter: FilterLike = None) -> int:
        """Count records, optionally restricted by filter."""
        filter = coerce_filter(filter)
        with self._reading() as conn:
            plan = self._plan(filter)
            predicate, residual = plan
            if residual:
                return sum(1 for _ in self._select(conn, "r.id", filter, plan=plan))
            sql = f"SELECT COUNT(*) FROM {self._table} r"
            params: tuple = ()
            if predicate is not None:
                sql += f" WHERE {predicate.sql}"
                params = predicate.params
            return conn.execute(sql, params).fetchone()[0]

    def clear(self) -> None:
        """Remove all records and reset the established dimension."""
        with self._transaction() as conn:
            conn.execute(f"DELETE FROM {self._table}")
            conn.execute(f"DELETE FROM {self._meta_table}")
            conn.execute(f"DELETE FROM {self._settings_table}")
        logger.info(f"Cleared SQLite vector store at {self._path}")

    def stats(self) -> StoreStats:
        """Compute statistics from the current database state."""
        with self._reading() as conn:
            total = conn.execute(f"SELECT COUNT(*) FROM {self._table}").fetchone()[0]
            row = conn.execute(f"SELECT dimensions FROM {self._table} LIMIT 1").fetchone()
            page_count = conn.execute("PRAGMA page_count").fetchone()[0]
            page_size = conn.execute("PRAGMA page_size").fetchone()[0]
        return StoreStats(
            total_records=total,
            dimensions=row[0] if row else None,
            size_bytes=page_count * page_size,
        )

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            super().close()

    def _release(self) -> None:
        try:
            self._conn.close()
        except sqlite3.Error as e:
            raise StorageIOError(f"Failed to close SQLite database {self._path}: {e}") from e
        logger.info(f"Closed SQLite vector store at {self._path}")

    def list(
        self,
        limit: int = 100,
        offset: int = 0,
        filter: FilterLike = None,
    ) -> List[VectorRecord]:
        """Return one page of records ordered by id."""
        validate_page(limit, offset)
        filter = coerce_filter(filter)
        with self._reading() as conn:
            rows = list(
                self._select(conn, "r.id, r.embedding, r.content, r.metadata", filter, limit, offset)
            )
        return [self._row_to_record(row) for row in rows]
