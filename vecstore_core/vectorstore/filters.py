"""
Metadata filter expressions.

A filter is an immutable tree built from seven node types:

    Equals(key, value)      key present and value equal
    Contains(key, sub)      key present and value contains sub (case-sensitive)
    HasKey(key)             key present, whatever the value
    In(key, values)         key present and value in values
    And(left, right)
    Or(left, right)
    Not(inner)

Nodes compose with .and_(), .or_(), .negate() or the &, |, ~ operators:

    from vecstore_core.vectorstore.filters import Equals, HasKey

    f = Equals("type", "doc") & ~HasKey("archived")

evaluate() is the reference semantics for every store. SQL translation in
translate.py must select exactly the records evaluate() accepts.
"""

from dataclasses import dataclass
from typing import Any, FrozenSet, Iterable, List, Mapping, Optional, Tuple, Union

from vecstore_core.errors import ValidationError


def require_text(value: str, what: str) -> str:
    """
    Reject strings SQLite cannot store, such as ones holding lone surrogates.

    Every string a store persists or binds must encode as UTF-8.
    """
    try:
        value.encode("utf-8")
    except UnicodeEncodeError:
        raise ValidationError(f"{what} is not valid UTF-8 text: {value!r}")
    return value


def _require_str(value: Any, what: str) -> None:
    if not isinstance(value, str):
        raise ValidationError(f"Filter {what} must be a string, got {value!r}")
    require_text(value, f"Filter {what}")


class _FilterOps:
    """Combinators shared by every filter node."""

    def and_(self, other: "MetadataFilter") -> "And":
        return And(self, other)

    def or_(self, other: "MetadataFilter") -> "Or":
        return Or(self, other)

    def negate(self) -> "Not":
        return Not(self)

    def __and__(self, other: "MetadataFilter") -> "And":
        return And(self, other)

    def __or__(self, other: "MetadataFilter") -> "Or":
        return Or(self, other)

    def __invert__(self) -> "Not":
        return Not(self)


@dataclass(frozen=True)
class Equals(_FilterOps):
    key: str
    value: str

    def __post_init__(self):
        _require_str(self.key, "key")
        _require_str(self.value, "value")


@dataclass(frozen=True)
class Contains(_FilterOps):
    key: str
    substring: str

    def __post_init__(self):
        _require_str(self.key, "key")
        _require_str(self.substring, "substring")


@dataclass(frozen=True)
class HasKey(_FilterOps):
    key: str

    def __post_init__(self):
        _require_str(self.key, "key")


@dataclass(frozen=True)
class In(_FilterOps):
    key: str
    values: FrozenSet[str]

    def __post_init__(self):
        _require_str(self.key, "key")
        if isinstance(self.values, str):
            raise ValidationError(
                f"In filter for '{self.key}' needs a collection of values, got a string"
            )
        try:
            values = frozenset(self.values)
        except TypeError:
            raise ValidationError(f"In filter for '{self.key}' needs a collection of values")
        for value in values:
            _require_str(value, "value")
        object.__setattr__(self, "values", values)


@dataclass(frozen=True)
class And(_FilterOps):
    left: "MetadataFilter"
    right: "MetadataFilter"

    def __post_init__(self):
        _require_filter(self.left)
        _require_filter(self.right)


@dataclass(frozen=True)
class Or(_FilterOps):
    left: "MetadataFilter"
    right: "MetadataFilter"

    def __post_init__(self):
        _require_filter(self.left)
        _require_filter(self.right)


@dataclass(frozen=True)
class Not(_FilterOps):
    inner: "MetadataFilter"

    def __post_init__(self):
        _require_filter(self.inner)


MetadataFilter = Union[Equals, Contains, HasKey, In, And, Or, Not]

LEAF_TYPES = (Equals, Contains, HasKey, In)
FILTER_TYPES = LEAF_TYPES + (And, Or, Not)

# What store operations accept: a filter, a plain equality dict, or None
FilterLike = Optional[Union[MetadataFilter, Mapping[str, Any]]]


def _require_filter(node: Any) -> None:
    if not isinstance(node, FILTER_TYPES):
        raise ValidationError(f"Expected a metadata filter, got {node!r}")


def operands(node: MetadataFilter, kind: type) -> List[MetadataFilter]:
    """
    Flatten a chain of same-kind And or Or nodes into its operands, left to right.

    operands(a & b & c, And) == [a, b, c]; a node of another kind is its own
    single operand. Works without recursion, so long chains are safe.
    """
    result = []
    stack = [node]
    while stack:
        current = stack.pop()
        if isinstance(current, kind):
            stack.append(current.right)
            stack.append(current.left)
        else:
            result.append(current)
    return result


def strip_negations(node: MetadataFilter) -> Tuple[MetadataFilter, bool]:
    """Unwrap a stack of Not nodes. Returns the inner node and whether an odd number was removed."""
    negated = False
    while isinstance(node, Not):
        node = node.inner
        negated = not negated
    return node, negated


def evaluate(metadata: Mapping[str, str], filter: MetadataFilter) -> bool:
    """
    Evaluate a filter against one record's metadata.

    A missing key makes every leaf false; Not of such a leaf is therefore true.
    """
    if isinstance(filter, Not):
        inner, negated = strip_negations(filter)
        return evaluate(metadata, inner) != negated
    if isinstance(filter, And):
        return all(evaluate(metadata, f) for f in operands(filter, And))
    if isinstance(filter, Or):
        return any(evaluate(metadata, f) for f in operands(filter, Or))
    if isinstance(filter, Equals):
        return filter.key in metadata and metadata[filter.key] == filter.value
    if isinstance(filter, Contains):
        return filter.key in metadata and filter.substring in metadata[filter.key]
    if isinstance(filter, HasKey):
        return filter.key in metadata
    if isinstance(filter, In):
        return filter.key in metadata and metadata[filter.key] in filter.values
    raise ValidationError(f"Unsupported filter expression: {filter!r}")


def matches(filter: Optional[MetadataFilter], metadata: Mapping[str, str]) -> bool:
    """Like evaluate(), with None meaning "match everything"."""
    return filter is None or evaluate(metadata, filter)


def all_of(filters: Iterable[MetadataFilter]) -> Optional[MetadataFilter]:
    """Combine filters with AND. Returns None for an empty input."""
    combined = None
    for f in filters:
        combined = f if combined is None else And(combined, f)
    return combined


def filter_from_dict(data: Mapping[str, Any]) -> Optional[MetadataFilter]:
    """
    Build a filter from a plain dict.

    Each entry is an equality check; a list, tuple or set value becomes an In
    check. Entries are combined with AND in key order. An empty dict yields None.

    Example:
        filter_from_dict({"type": "doc", "lang": ["en", "es"]})
        # And(In("lang", {"en", "es"}), Equals("type", "doc"))
    """
    leaves = []
    for key in sorted(data):
        value = data[key]
        if isinstance(value, (list, tuple, set, frozenset)):
            leaves.append(In(key, frozenset(value)))
        else:
            leaves.append(Equals(key, value))
    return all_of(leaves)


def coerce_filter(filter: FilterLike) -> Optional[MetadataFilter]:
    """Normalize what store operations accept into a filter expression or None."""
    if filter is None:
        return None
    if isinstance(filter, FILTER_TYPES):
        return filter
    if isinstance(filter, Mapping):
        return filter_from_dict(filter)
    raise ValidationError(f"Expected a metadata filter or dict, got {type(filter).__name__}")


__all__ = [
    "MetadataFilter",
    "FilterLike",
    "Equals",
    "Contains",
    "HasKey",
    "In",
    "And",
    "Or",
    "Not",
    "LEAF_TYPES",
    "FILTER_TYPES",
    "require_text",
    "operands",
    "strip_negations",
    "evaluate",
    "matches",
    "all_of",
    "filter_from_dict",
    "coerce_filter",
]
