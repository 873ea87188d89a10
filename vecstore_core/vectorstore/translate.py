"""
Translation of metadata filters into SQLite WHERE predicates.

Metadata is stored one row per (record, key) in a side table, so every leaf
becomes an EXISTS subquery against that table. EXISTS is never NULL, which keeps
SQL's three-valued logic out of the picture: NOT, AND and OR over these
predicates behave exactly like evaluate() in filters.py.

Keys and values are always bound as parameters. Only table and column names,
which the store validates as SQL identifiers, are placed into the SQL text.

Chains of the same operator are emitted flat ("a AND b AND c") and stacked
NOTs cancel in pairs, so the SQL nests only where the filter alternates between
operators. SQLite still limits parser depth, expression size and bound
parameters, so a predicate is also capped by max_depth, max_terms and
max_params. Anything over a cap is treated like an unsupported leaf.

A translator can be limited to a subset of leaf types. translate() then fails
closed with UntranslatableFilterError, and translate_partial() returns a
predicate selecting a superset of the matches (or None for "no restriction")
so the store can finish the job with evaluate().
"""

from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

from vecstore_core.errors import ValidationError, VectorStoreError
from vecstore_core.vectorstore.filters import (
    LEAF_TYPES,
    And,
    Contains,
    Equals,
    HasKey,
    In,
    MetadataFilter,
    Not,
    Or,
    operands,
    strip_negations,
)

# Nesting levels of alternating And/Or/Not, well under SQLite's parser stack
MAX_DEPTH = 16
# Leaf subqueries per predicate, well under SQLITE_MAX_EXPR_DEPTH (1000)
MAX_TERMS = 200
# Bound parameters per predicate; older SQLite builds allow only 999 per statement
MAX_PARAMS = 900


class UntranslatableFilterError(VectorStoreError):
    """Raised when a filter node has no SQL translation for this translator."""
    pass


@dataclass(frozen=True)
class SqlPredicate:
    """A SQL boolean expression with its positional parameters and leaf count."""

    sql: str
    params: Tuple = ()
    terms: int = 1

    @classmethod
    def join(cls, operator: str, parts: Sequence["SqlPredicate"]) -> "SqlPredicate":
        """Combine parts with one flat AND or OR."""
        if len(parts) == 1:
            return parts[0]
        return cls(
            f" {operator} ".join(f"({part.sql})" for part in parts),
            tuple(param for part in parts for param in part.params),
            sum(part.terms for part in parts),
        )

    def and_(self, other: "SqlPredicate") -> "SqlPredicate":
        return SqlPredicate.join("AND", [self, other])

    def or_(self, other: "SqlPredicate") -> "SqlPredicate":
        return SqlPredicate.join("OR", [self, other])

    def negate(self) -> "SqlPredicate":
        return SqlPredicate(f"NOT ({self.sql})", self.params, self.terms)


class SqlFilterTranslator:
    """
    Compiles filter trees into SQL predicates over a metadata side table.

    The side table must have the columns (record_id, key, value). The generated
    SQL references the outer record id through record_column, e.g. "r.id".
    """

    def __init__(
        self,
        metadata_table: str,
        record_column: str = "r.id",
        supported: Optional[Iterable[type]] = None,
        max_depth: int = MAX_DEPTH,
        max_terms: int = MAX_TERMS,
        max_params: int = MAX_PARAMS,
    ):
        """
        Args:
            metadata_table: Name of the (record_id, key, value) table
            record_column: Outer-query expression for the record id
            supported: Leaf node types this translator may push down
                (defaults to all of Equals, Contains, HasKey, In)
            max_depth: Deepest And/Or/Not nesting emitted as SQL
            max_terms: Most leaf subqueries in one predicate
            max_params: Most bound parameters in one predicate
        """
        self._table = metadata_table
        self._record_column = record_column
        self._supported = frozenset(supported) if supported is not None else frozenset(LEAF_TYPES)
        unknown = self._supported - frozenset(LEAF_TYPES)
        if unknown:
            raise ValidationError(
                f"Unknown filter node types: {sorted(t.__name__ for t in unknown)}"
            )
        if min(max_depth, max_terms, max_params) < 1:
            raise ValidationError("Translator limits must be positive")
        self._max_depth = max_depth
        self._max_terms = max_terms
        self._max_params = max_params

    @property
    def supported(self) -> frozenset:
        return self._supported

    def supports(self, node: MetadataFilter) -> bool:
        """Whether the whole tree under node can be translated exactly."""
        try:
            self.translate(node)
        except UntranslatableFilterError:
            return False
        return True

    def translate(self, node: MetadataFilter) -> SqlPredicate:
        """
        Translate a filter exactly.

        Raises:
            UntranslatableFilterError: If any leaf type is not supported, or the
                predicate would exceed the depth, term or parameter limits
        """
        predicate = self._exact(node, 0)
        self._check_size(predicate)
        return predicate

    def translate_partial(self, node: MetadataFilter) -> Optional[SqlPredicate]:
        """
        Translate as much of a filter as possible.

        The result selects every record the full filter matches, possibly more.
        None means no SQL restriction could be derived.
        """
        return self._partial(node, 0)

    def _exact(self, node: MetadataFilter, depth: int) -> SqlPredicate:
        node, negated = strip_negations(node)
        if negated:
            return self._exact(node, depth + 1).negate()
        if isinstance(node, (And, Or)):
            if depth >= self._max_depth:
                raise UntranslatableFilterError(
                    f"Filter nesting exceeds {self._max_depth} levels"
                )
            kind = type(node)
            parts = [self._exact(child, depth + 1) for child in operands(node, kind)]
            return self._check_size(SqlPredicate.join(kind.__name__.upper(), parts))
        if type(node) not in self._supported:
            raise UntranslatableFilterError(
                f"{type(node).__name__} filters cannot be pushed down to SQL here"
            )
        return self._check_size(self._leaf(node))

    def _partial(self, node: MetadataFilter, depth: int) -> Optional[SqlPredicate]:
        node, negated = strip_negations(node)
        if negated:
            # The complement of a superset is not a superset of the complement
            try:
                return self._exact(node, depth + 1).negate()
            except UntranslatableFilterError:
                return None
        if isinstance(node, And):
            if depth >= self._max_depth:
                return None
            # Dropping conjuncts only widens the match, so keep what fits
            kept: List[SqlPredicate] = []
            for child in operands(node, And):
                part = self._partial(child, depth + 1)
                if part is not None and self._fits(kept + [part]):
                    kept.append(part)
            return SqlPredicate.join("AND", kept) if kept else None
        if isinstance(node, Or):
            if depth >= self._max_depth:
                return None
            parts = []
            for child in operands(node, Or):
                part = self._partial(child, depth + 1)
                if part is None:
                    return None
                parts.append(part)
            if not self._fits(parts):
                return None
            return SqlPredicate.join("OR", parts)
        if type(node) not in self._supported:
            return None
        leaf = self._leaf(node)
        return leaf if self._fits([leaf]) else None

    def _fits(self, parts: Sequence[SqlPredicate]) -> bool:
        return (
            sum(part.terms for part in parts) <= self._max_terms
            and sum(len(part.params) for part in parts) <= self._max_params
        )

    def _check_size(self, predicate: SqlPredicate) -> SqlPredicate:
        if not self._fits([predicate]):
            raise UntranslatableFilterError(
                f"Filter too large for one SQL statement ({predicate.terms} terms, "
                f"{len(predicate.params)} parameters)"
            )
        return predicate

    def _leaf(self, node: MetadataFilter) -> SqlPredicate:
        prefix = (
            f"EXISTS (SELECT 1 FROM {self._table} m "
            f"WHERE m.record_id = {self._record_column} AND m.key = ?"
        )
        if isinstance(node, Equals):
            return SqlPredicate(prefix + " AND m.value = ?)", (node.key, node.value))
        if isinstance(node, Contains):
            # instr() is case-sensitive, LIKE is not
            return SqlPredicate(
                prefix + " AND instr(m.value, ?) > 0)", (node.key, node.substring)
            )
        if isinstance(node, HasKey):
            return SqlPredicate(prefix + ")", (node.key,))
        if isinstance(node, In):
            if not node.values:
                return SqlPredicate("0")
            values = sorted(node.values)
            placeholders = ", ".join("?" * len(values))
            return SqlPredicate(
                prefix + f" AND m.value IN ({placeholders}))", (node.key, *values)
            )
        raise UntranslatableFilterError(f"Unsupported filter expression: {node!r}")


__all__ = [
    "MAX_DEPTH",
    "MAX_TERMS",
    "MAX_PARAMS",
    "SqlPredicate",
    "SqlFilterTranslator",
    "UntranslatableFilterError",
]
