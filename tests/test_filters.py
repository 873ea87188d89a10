"""
Tests for metadata filters, their SQL translation, and the equivalence of
every filtering path with the in-memory evaluator.
"""

from functools import reduce

import pytest

from vecstore_core.vectorstore.filters import (
    And,
    Contains,
    Equals,
    HasKey,
    In,
    Not,
    Or,
    filter_from_dict,
)


DOC_EN = {"type": "doc", "lang": "en"}
DOC_ES = {"type": "doc", "lang": "es"}
CODE_EN = {"type": "code", "lang": "en"}


class TestEvaluate:
    """Tests for the reference evaluator."""

    def test_leaves(self):
        """Test each leaf node."""
        from vecstore_core.vectorstore.filters import evaluate

        metadata = {"type": "document", "lang": "en"}
        assert evaluate(metadata, Equals("type", "document"))
        assert not evaluate(metadata, Equals("type", "doc"))
        assert evaluate(metadata, Contains("type", "cum"))
        assert not evaluate(metadata, Contains("type", "CUM"))
        assert evaluate(metadata, HasKey("lang"))
        assert not evaluate(metadata, HasKey("author"))
        assert evaluate(metadata, In("lang", ["en", "fr"]))
        assert not evaluate(metadata, In("lang", []))

    def test_missing_key(self):
        """Test leaves on a missing key are false and their negation true."""
        from vecstore_core.vectorstore.filters import evaluate

        assert not evaluate({}, Equals("k", ""))
        assert not evaluate({}, Contains("k", ""))
        assert not evaluate({}, In("k", [""]))
        assert evaluate({}, Not(Equals("k", "v")))
        assert evaluate({"k": ""}, Contains("k", ""))

    def test_composites(self):
        """Test And, Or and Not."""
        from vecstore_core.vectorstore.filters import evaluate

        f = Equals("type", "doc").and_(Equals("lang", "en"))
        assert evaluate(DOC_EN, f)
        assert not evaluate(DOC_ES, f)
        assert not evaluate(CODE_EN, f)

        g = Equals("type", "code").or_(Equals("lang", "es"))
        assert [evaluate(m, g) for m in (DOC_EN, DOC_ES, CODE_EN)] == [False, True, True]
        assert [evaluate(m, g.negate()) for m in (DOC_EN, DOC_ES, CODE_EN)] == [True, False, False]

    def test_operators(self):
        """Test &, | and ~ build the same trees as the methods."""
        a, b = Equals("a", "1"), HasKey("b")
        assert (a & b) == And(a, b)
        assert (a | b) == Or(a, b)
        assert ~a == Not(a)

    def test_long_chains_and_negations(self):
        """Test very long chains evaluate without hitting the recursion limit."""
        from vecstore_core.vectorstore.filters import all_of, evaluate

        metadata = {f"k{i}": "v" for i in range(5000)}
        assert evaluate(metadata, all_of([HasKey(f"k{i}") for i in range(5000)]))
        assert not evaluate(metadata, all_of([HasKey(f"k{i}") for i in range(5001)]))
        assert evaluate(metadata, reduce(Or, [HasKey(f"x{i}") for i in range(5000)] + [HasKey("k7")]))

        f = HasKey("k1")
        for _ in range(5001):
            f = Not(f)
        assert not evaluate(metadata, f)
        assert evaluate(metadata, Not(f))

    def test_non_utf8_strings_rejected(self):
        """Test filter keys and values must encode as UTF-8."""
        from vecstore_core.errors import ValidationError

        for build in (
            lambda: Equals("k", "\ud800"),
            lambda: Contains("\udfff", "v"),
            lambda: HasKey("a\ud83d"),
            lambda: In("k", ["ok", "\ud800"]),
        ):
            with pytest.raises(ValidationError):
                build()

    def test_matches_none(self):
        """Test None matches everything."""
        from vecstore_core.vectorstore.filters import matches

        assert matches(None, {})
        assert not matches(HasKey("x"), {})


class TestFilterConstruction:
    """Tests for filter validation and helpers."""

    def test_nodes_are_hashable_values(self):
        """Test filters compare and hash by value."""
        assert In("k", ["a", "b"]) == In("k", {"b", "a"})
        assert len({Equals("k", "v"), Equals("k", "v")}) == 1

    @pytest.mark.parametrize(
        "build",
        [
            lambda: Equals("k", 1),
            lambda: Equals(None, "v"),
            lambda: Contains("k", None),
            lambda: HasKey(3),
            lambda: In("k", "abc"),
            lambda: In("k", [1, 2]),
            lambda: In("k", None),
            lambda: And(Equals("k", "v"), "not a filter"),
            lambda: Not({"k": "v"}),
        ],
    )
    def test_invalid_nodes(self, build):
        """Test malformed filters are rejected."""
        from vecstore_core.errors import ValidationError

        with pytest.raises(ValidationError):
            build()

    def test_filter_from_dict(self):
        """Test dicts become AND-ed equality and In checks."""
        from vecstore_core.vectorstore.filters import filter_from_dict

        assert filter_from_dict({}) is None
        assert filter_from_dict({"type": "doc"}) == Equals("type", "doc")
        assert filter_from_dict({"type": "doc", "lang": ["en", "es"]}) == And(
            In("lang", {"en", "es"}), Equals("type", "doc")
        )

    def test_coerce_filter(self):
        """Test coerce_filter accepts filters, dicts and None."""
        from vecstore_core.errors import ValidationError
        from vecstore_core.vectorstore.filters import coerce_filter

        f = HasKey("k")
        assert coerce_filter(f) is f
        assert coerce_filter(None) is None
        assert coerce_filter({"k": "v"}) == Equals("k", "v")
        with pytest.raises(ValidationError):
            coerce_filter("k = v")

    def test_all_of(self):
        """Test all_of folds filters with AND."""
        from vecstore_core.vectorstore.filters import all_of

        a, b, c = HasKey("a"), HasKey("b"), HasKey("c")
        assert all_of([]) is None
        assert all_of([a]) is a
        assert all_of([a, b, c]) == And(And(a, b), c)


class TestSqlFilterTranslator:
    """Tests for SqlFilterTranslator."""

    @pytest.fixture
    def translator(self):
        from vecstore_core.vectorstore.translate import SqlFilterTranslator

        return SqlFilterTranslator("vectors_metadata", "r.id")

    def test_equals(self, translator):
        """Test keys and values are bound as parameters."""
        predicate = translator.translate(Equals("type", "doc"))
        assert predicate.params == ("type", "doc")
        assert "vectors_metadata" in predicate.sql
        assert "'doc'" not in predicate.sql

    def test_in_sorted_params(self, translator):
        """Test In values are bound in a stable order."""
        predicate = translator.translate(In("lang", {"fr", "en", "de"}))
        assert predicate.params == ("lang", "de", "en", "fr")
        assert predicate.sql.count("?") == 4

    def test_empty_in(self, translator):
        """Test an empty In translates to false."""
        assert translator.translate(In("lang", [])).sql == "0"

    def test_composite_params_in_order(self, translator):
        """Test parameters follow the tree from left to right."""
        f = Not(Equals("a", "1") | Contains("b", "2")) & HasKey("c")
        predicate = translator.translate(f)
        assert predicate.params == ("a", "1", "b", "2", "c")
        assert predicate.sql.startswith("(NOT (")

    def test_injection_is_inert(self):
        """Test hostile keys and values only ever appear as parameters."""
        from vecstore_core.vectorstore import SQLiteVectorStore, VectorRecord

        hostile = "x' OR '1'='1"
        store = SQLiteVectorStore(":memory:")
        store.upsert(VectorRecord("a", [1.0], metadata={"k": "v"}))
        store.upsert(VectorRecord("b", [1.0], metadata={hostile: hostile}))

        assert store.count(Equals("k", hostile)) == 0
        assert [r.id for r in store.list(filter=Equals(hostile, hostile))] == ["b"]
        assert store.count() == 2
        store.close()

    def test_unsupported_leaf_fails_closed(self):
        """Test translate raises for leaves outside the capability set."""
        from vecstore_core.vectorstore.translate import (
            SqlFilterTranslator,
            UntranslatableFilterError,
        )

        translator = SqlFilterTranslator("m", supported=[Equals, HasKey])
        assert translator.supports(Equals("a", "b") & ~HasKey("c"))
        assert not translator.supports(Equals("a", "b") & Contains("c", "d"))
        with pytest.raises(UntranslatableFilterError):
            translator.translate(Or(Equals("a", "b"), Contains("c", "d")))

    def test_translate_partial(self):
        """Test partial translation keeps only what stays a superset."""
        from vecstore_core.vectorstore.translate import SqlFilterTranslator

        translator = SqlFilterTranslator("m", supported=[Equals])
        contains = Contains("c", "d")

        assert translator.translate_partial(contains) is None
        assert translator.translate_partial(Equals("a", "b") & contains).params == ("a", "b")
        assert translator.translate_partial(Equals("a", "b") | contains) is None
        assert translator.translate_partial(Not(contains)) is None
        assert translator.translate_partial(Not(Equals("a", "b"))).sql.startswith("NOT")

    def test_chains_are_flat(self, translator):
        """Test long AND chains become one flat predicate without nested parentheses."""
        from vecstore_core.vectorstore.filters import all_of

        f = all_of([HasKey(f"k{i}") for i in range(50)])
        predicate = translator.translate(f)
        assert predicate.terms == 50
        assert predicate.params == tuple(f"k{i}" for i in range(50))
        assert predicate.sql.count(") AND (EXISTS") == 49
        assert not predicate.sql.startswith("((")

    def test_stacked_negations_cancel(self, translator):
        """Test pairs of NOTs disappear from the SQL."""
        leaf = Equals("a", "b")
        even, odd = leaf, Not(leaf)
        for _ in range(100):
            even, odd = Not(Not(even)), Not(Not(odd))
        assert translator.translate(even) == translator.translate(leaf)
        assert translator.translate(odd).sql.count("NOT") == 1

    def test_depth_limit(self):
        """Test nesting past max_depth fails closed and partial keeps the shallow part."""
        from vecstore_core.vectorstore.translate import (
            SqlFilterTranslator,
            UntranslatableFilterError,
        )

        translator = SqlFilterTranslator("m", max_depth=2)
        f = Equals("a", "1") | (Equals("b", "2") & (Equals("c", "3") | Equals("d", "4")))
        with pytest.raises(UntranslatableFilterError):
            translator.translate(f)
        partial = translator.translate_partial(f)
        assert partial.params == ("a", "1", "b", "2")
        assert " OR " in partial.sql

    def test_term_and_parameter_limits(self):
        """Test oversized predicates fail closed and partial AND keeps what fits."""
        from vecstore_core.vectorstore.filters import all_of
        from vecstore_core.vectorstore.translate import (
            SqlFilterTranslator,
            UntranslatableFilterError,
        )

        translator = SqlFilterTranslator("m", max_terms=3, max_params=6)
        wide = all_of([HasKey(f"k{i}") for i in range(5)])
        with pytest.raises(UntranslatableFilterError):
            translator.translate(wide)
        assert translator.translate_partial(wide).params == ("k0", "k1", "k2")
        assert translator.translate_partial(wide | HasKey("z")) is None

        big_in = In("k", [str(i) for i in range(10)])
        with pytest.raises(UntranslatableFilterError):
            translator.translate(big_in)
        assert not translator.supports(big_in)
        assert translator.translate_partial(big_in) is None
        assert translator.translate_partial(HasKey("x") & big_in).params == ("x",)
        assert translator.translate_partial(~big_in) is None

    def test_default_limits_fit_sqlite(self):
        """Test the default limits stay inside SQLite's own statement limits."""
        from vecstore_core.vectorstore.translate import MAX_DEPTH, MAX_PARAMS, MAX_TERMS

        assert MAX_PARAMS < 999
        assert MAX_TERMS < 1000
        assert MAX_DEPTH < 100

    def test_unknown_capability(self):
        """Test capability sets are limited to leaf types."""
        from vecstore_core.errors import ValidationError
        from vecstore_core.vectorstore.translate import SqlFilterTranslator

        with pytest.raises(ValidationError):
            SqlFilterTranslator("m", supported=[And])


RECORDS = {
    "r1": {"type": "doc", "lang": "en", "title": "Getting started"},
    "r2": {"type": "doc", "lang": "es", "title": "Primeros pasos"},
    "r3": {"type": "code", "lang": "en"},
    "r4": {"type": "code", "lang": "py", "archived": "true"},
    "r5": {},
    "r6": {"type": "Doc", "lang": "EN", "title": "started?"},
    "r7": {"lang": "", "title": "x' OR '1'='1"},
    "r8": {"type": "doc", "lang": "es", **{f"k{i:03d}": "v" for i in range(300)}},
}

FILTERS = [
    Equals("type", "doc"),
    Equals("lang", ""),
    Contains("title", "start"),
    Contains("title", ""),
    Contains("title", "%"),
    HasKey("archived"),
    In("lang", ["en", "es"]),
    In("lang", []),
    Not(HasKey("type")),
    Not(Equals("type", "doc")),
    Equals("type", "doc") & Equals("lang", "en"),
    Equals("type", "code") | Contains("title", "pasos"),
    ~(Equals("type", "doc") | HasKey("archived")),
    Not(In("lang", [])),
    (HasKey("title") & ~Contains("title", "'")) | In("type", ["Doc"]),
    Not(Not(Equals("lang", "en"))),
    Contains("title", "x' OR '1'='1"),
]


def _nested(levels):
    """Alternate AND and OR for the given number of levels."""
    f = Equals("type", "doc")
    for i in range(levels):
        f = (f | Equals("lang", f"y{i}")) if i % 2 else (f & HasKey("lang"))
    return f


def _negated(times, inner):
    for _ in range(times):
        inner = Not(inner)
    return inner


LARGE_FILTERS = [
    filter_from_dict({f"k{i:03d}": "v" for i in range(150)}),
    filter_from_dict({f"k{i:03d}": "v" for i in range(300)}),
    filter_from_dict({f"k{i:03d}": "v" for i in range(300)}) | HasKey("archived"),
    reduce(Or, [Equals("lang", f"x{i}") for i in range(150)] + [Equals("lang", "es")]),
    reduce(Or, [Equals("lang", f"x{i}") for i in range(300)] + [Equals("lang", "py")]),
    _negated(200, Equals("lang", "en")),
    _negated(201, HasKey("archived")),
    _nested(60),
    Not(_nested(30)),
    In("lang", [f"x{i}" for i in range(890)] + ["en"]),
    In("lang", [f"x{i}" for i in range(40000)] + ["es"]),
    ~In("lang", [f"x{i}" for i in range(40000)] + ["es"]) & HasKey("type"),
]


def _make_store(kind):
    from vecstore_core.vectorstore import InMemoryVectorStore, SQLiteVectorStore

    if kind == "sqlite":
        return SQLiteVectorStore(":memory:")
    if kind == "sqlite-no-pushdown":
        return SQLiteVectorStore(":memory:", filter_pushdown=False)
    if kind == "sqlite-equals-only":
        return SQLiteVectorStore(":memory:", translator_capabilities=[Equals])
    if kind == "sqlite-no-leaves":
        return SQLiteVectorStore(":memory:", translator_capabilities=[])
    return InMemoryVectorStore()


class TestFilterEquivalence:
    """Every filtering path selects exactly what evaluate() accepts."""

    @pytest.fixture(
        params=["sqlite", "sqlite-no-pushdown", "sqlite-equals-only", "sqlite-no-leaves", "memory"]
    )
    def populated(self, request):
        from vecstore_core.vectorstore import VectorRecord

        store = _make_store(request.param)
        store.upsert_batch([
            VectorRecord(id, [1.0, float(i)], metadata=metadata)
            for i, (id, metadata) in enumerate(RECORDS.items())
        ])
        yield store
        store.close()

    @pytest.mark.parametrize("filter", FILTERS + LARGE_FILTERS)
    def test_same_matches_as_evaluator(self, populated, filter):
        """Test count, list, search and delete agree with evaluate()."""
        from vecstore_core.vectorstore.filters import evaluate

        expected = sorted(id for id, m in RECORDS.items() if evaluate(m, filter))

        assert populated.count(filter) == len(expected)
        assert [r.id for r in populated.list(limit=100, filter=filter)] == expected
        assert sorted(r.id for r in populated.search([1.0, 0.0], top_k=100, filter=filter)) == expected

        assert populated.delete_by_filter(filter) == len(expected)
        assert populated.count(filter) == 0
        assert populated.count() == len(RECORDS) - len(expected)
