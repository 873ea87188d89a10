"""
In-memory vector store.

Keeps records in a dict and evaluates every filter in Python. Nothing is
persisted; the store is meant for tests and short-lived processes.
"""

import json
import logging
import threading
from typing import Iterable, List, Optional, Sequence

from vecstore_core.errors import DimensionMismatchError, ValidationError
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
from vecstore_core.vectorstore.filters import FilterLike, coerce_filter, matches, require_text
from vecstore_core.vectorstore.scoring import check_dimensions, rank_scores

logger = logging.getLogger(__name__)


class InMemoryVectorStore(VectorStore):
    """
    Vector store held entirely in process memory.

    Records are copied on the way in and on the way out, so callers never share
    state with the store.
    """

    def __init__(self):
        super().__init__()
        self._records: dict[str, VectorRecord] = {}
        self._dimensions: Optional[int] = None
        self._lock = threading.RLock()

    @property
    def dimensions(self) -> Optional[int]:
        with self._lock:
            self._ensure_open()
            return self._dimensions

    def _matching(self, filter) -> List[VectorRecord]:
        return [
            record
            for id, record in sorted(self._records.items())
            if matches(filter, record.metadata)
        ]

    def upsert(self, record: VectorRecord) -> None:
        require_record(record)
        with self._lock:
            self._ensure_open()
            if self._dimensions is not None and record.dimensions != self._dimensions:
                raise DimensionMismatchError(
                    self._dimensions, record.dimensions, context=f"record '{record.id}'"
                )
            self._records[record.id] = record.copy()
            if self._dimensions is None:
                self._dimensions = record.dimensions

    def upsert_batch(self, records: Iterable[VectorRecord]) -> None:
        if records is None:
            raise ValidationError("records must be a sequence of VectorRecord")
        records = [require_record(r) for r in records]
        if not records:
            return
        with self._lock:
            self._ensure_open()
            # Validate the whole batch before touching any state
            self._dimensions = check_batch_dimensions(records, self._dimensions)
            for record in records:
                self._records[record.id] = record.copy()
        logger.debug(f"Upserted batch of {len(records)} records")

    def search(
        self,
        query_vector: Sequence[float],
        top_k: int = 10,
        filter: FilterLike = None,
    ) -> List[ScoredRecord]:
        validate_top_k(top_k)
        query = coerce_vector(query_vector, "query vector")
        filter = coerce_filter(filter)
        with self._lock:
            self._ensure_open()
            if not self._records:
                return []
            check_dimensions(query, self._dimensions)
            ranked = rank_scores(
                query,
                (
                    (record.id, record.embedding)
                    for record in self._records.values()
                    if matches(filter, record.metadata)
                ),
                top_k,
            )
            return [
                ScoredRecord(record=self._records[id].copy(), score=score)
                for id, score in ranked
            ]

    def get(self, id: str) -> Optional[VectorRecord]:
        require_id(id)
        with self._lock:
            self._ensure_open()
            record = self._records.get(id)
            return record.copy() if record is not None else None

    def get_batch(self, ids: Iterable[str]) -> List[VectorRecord]:
        ids = require_ids(ids)
        with self._lock:
            self._ensure_open()
            return [self._records[id].copy() for id in ids if id in self._records]

    def delete(self, id: str) -> None:
        require_id(id)
        with self._lock:
            self._ensure_open()
            self._records.pop(id, None)

    def delete_batch(self, ids: Iterable[str]) -> None:
        ids = require_ids(ids)
        with self._lock:
            self._ensure_open()
            for id in ids:
                self._records.pop(id, None)

    def delete_by_filter(self, filter: FilterLike) -> int:
        filter = coerce_filter(filter)
        if filter is None:
            raise ValidationError("delete_by_filter requires a filter; use clear() to delete everything")
        with self._lock:
            self._ensure_open()
            doomed = [record.id for record in self._matching(filter)]
            for id in doomed:
                del self._records[id]
        return len(doomed)

    def delete_by_prefix(self, prefix: str) -> int:
        if not isinstance(prefix, str):
            raise ValidationError(f"prefix must be a string, got {type(prefix).__name__}")
        require_text(prefix, "prefix")
        with self._lock:
            self._ensure_open()
            doomed = [id for id in self._records if id.startswith(prefix)]
            for id in doomed:
                del self._records[id]
        return len(doomed)

    def count(self, filter: FilterLike = None) -> int:
        filter = coerce_filter(filter)
        with self._lock:
            self._ensure_open()
            if filter is None:
                return len(self._records)
            return sum(1 for r in self._records.values() if matches(filter, r.metadata))

    def list(
        self,
        limit: int = 100,
        offset: int = 0,
        filter: FilterLike = None,
    ) -> List[VectorRecord]:
        validate_page(limit, offset)
        filter = coerce_filter(filter)
        with self._lock:
            self._ensure_open()
            page = self._matching(filter)[offset:offset + limit]
            return [record.copy() for record in page]

    def clear(self) -> None:
        with self._lock:
            self._ensure_open()
            self._records.clear()
            self._dimensions = None

    def stats(self) -> StoreStats:
        with self._lock:
            self._ensure_open()
            size = 0
            for record in self._records.values():
                size += 4 * record.dimensions
                size += len(record.id.encode("utf-8"))
                size += len((record.content or "").encode("utf-8"))
                size += len(json.dumps(record.metadata).encode("utf-8"))
            first = next(iter(self._records.values()), None)
            return StoreStats(
                total_records=len(self._records),
                dimensions=first.dimensions if first is not None else None,
                size_bytes=size,
            )

    def close(self) -> None:
        with self._lock:
            super().close()

    def _release(self) -> None:
        self._records.clear()
        logger.debug("Closed in-memory vector store")
