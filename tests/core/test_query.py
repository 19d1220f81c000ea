"""Tests for ezstore.core.query: predicates, descriptors and builders."""

from __future__ import annotations

import datetime

import pytest
from sqlalchemy import inspect
from sqlalchemy.dialects import sqlite

from ezstore.core.errors import QueryError
from ezstore.core.orm.base import RecordBase
from ezstore.core.orm.session import StoreSession, create_store_engine
from ezstore.core.query import (
    AllOf,
    AnyOf,
    Negation,
    QueryDescriptor,
    QueryFilter,
    QueryOperator,
    SortDirection,
    SortKey,
    all_matching,
    attribute_contains,
    by_attribute,
    coerce_attribute_value,
    compile_count,
    compile_descriptor,
    contains,
    count_query,
    eq,
    first_match,
    ge,
    gt,
    in_,
    is_null,
    le,
    lt,
    ne,
    sort_records,
)

from tests._support.models import Article, FeaturedArticle


@pytest.fixture
def session():
    eng = create_store_engine("sqlite:///:memory:")
    RecordBase.metadata.create_all(eng)
    with StoreSession(bind=eng) as sess:
        sess.add_all(
            [
                Article(id=1, title="The Art of Clean Code", date=datetime.datetime(2018, 2, 11)),
                Article(id=2, title="100% Reliable_Pipelines", date=datetime.datetime(2018, 2, 12)),
                Article(id=3, title="Café Culture", date=None),
                FeaturedArticle(id=4, title="Modern Art", highlight="cover"),
            ]
        )
        sess.commit()
        yield sess
    eng.dispose()


def run(session, descriptor):
    return list(session.scalars(compile_descriptor(descriptor)))


def ids(records):
    return [r.id for r in records]


# =========================================================================
# Builders
# =========================================================================


class TestBuilders:
    """Builders only shape descriptors; they never raise."""

    def test_first_match_flags(self):
        d = first_match(Article, eq("id", 1))
        assert (d.limit, d.batch_size, d.materialize) == (1, 1, True)

    def test_by_attribute(self):
        d = by_attribute(Article, "id", 3)
        assert d.predicate == QueryFilter("id", QueryOperator.EQ, 3)
        assert d.limit == 1

    def test_all_matching_unbounded_and_sort_preserved(self):
        d = all_matching(Article, None, sort=["title", SortKey("id", SortDirection.DESC)])
        assert d.limit is None
        assert d.sort == (SortKey("title"), SortKey("id", SortDirection.DESC))

    def test_sort_minus_prefix_is_descending(self):
        assert SortKey.parse("-date") == SortKey("date", SortDirection.DESC)

    def test_attribute_contains(self):
        d = attribute_contains(Article, "title", "art")
        assert d.predicate == QueryFilter("title", QueryOperator.CONTAINS, "art")

    def test_count_excludes_subentities_by_default(self):
        assert count_query(Article).include_subentities is False
        assert count_query(Article, include_subentities=True).include_subentities is True

    def test_malformed_predicate_accepted_by_builder(self):
        d = by_attribute(Article, "", 1)
        assert d.predicate.field == ""

    def test_descriptor_is_frozen(self):
        with pytest.raises(AttributeError):
            first_match(Article).limit = 5


# =========================================================================
# Combinators
# =========================================================================


class TestCombinators:
    def test_and_flattens(self):
        p = eq("id", 1) & eq("title", "x") & is_null("date")
        assert isinstance(p, AllOf)
        assert len(p.predicates) == 3

    def test_or_flattens(self):
        p = eq("id", 1) | eq("id", 2) | eq("id", 3)
        assert isinstance(p, AnyOf)
        assert len(p.predicates) == 3

    def test_invert(self):
        assert isinstance(~eq("id", 1), Negation)


# =========================================================================
# Compilation against SQLite
# =========================================================================


class TestCompileDescriptor:
    @pytest.mark.parametrize(
        "predicate, expected",
        [
            (eq("id", 2), [2]),
            (eq("id", "2"), [2]),
            (ne("id", 1), [2, 3, 4]),
            (lt("id", 3), [1, 2]),
            (le("id", 3), [1, 2, 3]),
            (gt("id", 3), [4]),
            (ge("id", 3), [3, 4]),
            (in_("id", ["1", 4]), [1, 4]),
            (is_null("date"), [3, 4]),
            (is_null("date", False), [1, 2]),
            (eq("date", None), [3, 4]),
            (eq("id", 1) | eq("id", 3), [1, 3]),
            (~eq("id", 1) & lt("id", 4), [2, 3]),
        ],
    )
    def test_operators(self, session, predicate, expected):
        assert ids(run(session, all_matching(Article, predicate, sort=["id"]))) == expected

    def test_contains_is_case_insensitive(self, session):
        assert ids(run(session, attribute_contains(Article, "title", "ART", sort=["id"]))) == [1, 4]

    def test_contains_is_accent_insensitive(self, session):
        assert ids(run(session, attribute_contains(Article, "title", "cafe"))) == [3]
        assert ids(run(session, attribute_contains(Article, "title", "CAFÉ"))) == [3]

    @pytest.mark.parametrize("needle, expected", [("100%", [2]), ("%", [2]), ("e_p", [2]), ("_", [2])])
    def test_contains_wildcards_are_literal(self, session, needle, expected):
        assert ids(run(session, attribute_contains(Article, "title", needle))) == expected

    def test_contains_quotes_are_literal(self, session):
        assert run(session, attribute_contains(Article, "title", "' OR 1=1 --")) == []

    def test_values_are_bound_parameters(self):
        stmt = compile_descriptor(by_attribute(Article, "title", "x' OR '1'='1"))
        compiled = stmt.compile(dialect=sqlite.dialect())
        assert "x' OR" not in str(compiled)
        assert "x' OR '1'='1" in compiled.params.values()

    def test_first_match_limit_one(self):
        compiled = str(compile_descriptor(first_match(Article)).compile(dialect=sqlite.dialect()))
        assert "LIMIT" in compiled

    def test_batch_size_sets_yield_per(self):
        stmt = compile_descriptor(first_match(Article))
        assert stmt.get_execution_options()["yield_per"] == 1

    def test_sort_multiple_keys(self, session):
        records = run(session, all_matching(Article, sort=[SortKey("date", SortDirection.DESC), "id"]))
        assert ids(records) == [2, 1, 3, 4]

    def test_subentities_excluded_when_asked(self, session):
        d = QueryDescriptor(kind=Article, include_subentities=False)
        assert ids(run(session, d)) == [1, 2, 3]

    def test_subclass_query_only_subclass(self, session):
        assert ids(run(session, all_matching(FeaturedArticle))) == [4]

    def test_materialize_loads_deferred_columns(self, session):
        session.expunge_all()
        record = run(session, first_match(Article, eq("id", 1)))[0]
        assert "content" not in inspect(record).unloaded

    def test_default_leaves_deferred_columns(self, session):
        session.expunge_all()
        record = run(session, all_matching(Article, eq("id", 1)))[0]
        assert "content" in inspect(record).unloaded

    def test_count(self, session):
        assert session.scalar(compile_count(count_query(Article))) == 3
        assert session.scalar(compile_count(count_query(Article, include_subentities=True))) == 4
        assert session.scalar(compile_count(count_query(Article, contains("title", "art")))) == 1


class TestMalformedPredicates:
    """Bad attributes and values surface as QueryError when compiled."""

    def test_empty_attribute(self):
        with pytest.raises(QueryError, match="must not be empty"):
            compile_descriptor(by_attribute(Article, "", 1))

    def test_unknown_attribute(self):
        with pytest.raises(QueryError) as exc_info:
            compile_descriptor(by_attribute(Article, "titel", "x"))
        assert exc_info.value.context.attribute == "titel"
        assert exc_info.value.context.entity == "Article"

    def test_uncoercible_value(self):
        with pytest.raises(QueryError, match="not comparable"):
            compile_descriptor(by_attribute(Article, "id", "seven"))

    def test_unknown_sort_field(self):
        with pytest.raises(QueryError):
            compile_descriptor(all_matching(Article, sort=["nope"]))

    def test_contains_without_value(self):
        with pytest.raises(QueryError):
            compile_descriptor(all_matching(Article, QueryFilter("title", QueryOperator.CONTAINS)))


# =========================================================================
# Coercion
# =========================================================================


class TestCoercion:
    @pytest.mark.parametrize(
        "attribute, raw, expected",
        [
            ("id", "3", 3),
            ("id", 3, 3),
            ("title", 42, "42"),
            ("date", "2018-02-14T10:00:00", datetime.datetime(2018, 2, 14, 10, 0)),
            ("title", None, None),
        ],
    )
    def test_coerce_attribute_value(self, attribute, raw, expected):
        assert coerce_attribute_value(Article, attribute, raw) == expected


# =========================================================================
# In-memory evaluation
# =========================================================================


class TestMatches:
    """matches() agrees with the SQL clauses for unsaved records."""

    @pytest.fixture
    def record(self):
        return Article(id=5, title="Café de l'Art", date=None)

    @pytest.mark.parametrize(
        "predicate, expected",
        [
            (eq("id", "5"), True),
            (ne("id", 5), False),
            (lt("id", 6), True),
            (gt("id", 5), False),
            (contains("title", "ART"), True),
            (contains("title", "cafe de"), True),
            (contains("title", "tea"), False),
            (in_("id", [1, 5]), True),
            (is_null("date"), True),
            (lt("date", "2020-01-01"), False),
            (eq("id", 5) & ~contains("title", "art"), False),
            (eq("id", 1) | contains("title", "art"), True),
        ],
    )
    def test_predicate_matches(self, record, predicate, expected):
        assert predicate.matches(record) is expected

    def test_descriptor_matches_kind(self, record):
        assert first_match(Article).matches(record) is True
        assert count_query(Article).matches(FeaturedArticle(id=9)) is False
        assert all_matching(Article).matches(FeaturedArticle(id=9)) is True
        assert all_matching(FeaturedArticle).matches(record) is False


class TestSortRecords:
    def test_nulls_sort_lowest(self):
        a, b, c = Article(id=1, title="b"), Article(id=2, title=None), Article(id=3, title="a")
        assert ids(sort_records([a, b, c], [SortKey("title")])) == [2, 3, 1]
        assert ids(sort_records([a, b, c], [SortKey("title", SortDirection.DESC)])) == [1, 3, 2]

    def test_no_sort_keeps_order(self):
        a, b = Article(id=2), Article(id=1)
        assert ids(sort_records([a, b], None)) == [2, 1]
