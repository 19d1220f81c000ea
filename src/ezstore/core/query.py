"""
Query construction: structured predicates, descriptors and builders.

A read is described by a frozen ``QueryDescriptor`` (kind, predicate, sort,
limit, batch size, materialise flag, include-subentities flag). Predicates are
structured values (``QueryFilter`` plus the ``AllOf`` / ``AnyOf`` /
``Negation`` combinators) rather than query strings. They compile to
bound-parameter SQLAlchemy clauses and can also be evaluated against
in-memory records, which child contexts need for their staged inserts.

Manifesto:
    - **No string interpolation:** every value is coerced to the column's
      Python type and bound as a parameter
    - **Builders never fail:** malformed predicates surface at execution time
      as ``QueryError``
    - **One contract:** the SQL clause and ``matches()`` agree, so a record
      staged in a child context is found exactly when it would be found once
      saved

Architecture:
    ::

        eq("id", 3) & contains("title", "art")
                     │
                     ▼
        AllOf(QueryFilter(id eq 3), QueryFilter(title contains 'art'))
                     │
          ┌──────────┴───────────┐
          ▼                      ▼
        to_clause(kind)       matches(record)
        (SQL, bound params)   (Python, staged inserts)

Examples:
    >>> from ezstore.core.query import all_matching, contains, SortKey
    >>> descriptor = all_matching(Article, contains("title", "art"), sort=[SortKey("id")])
    >>> descriptor.limit is None
    True

Tags:
    query, predicates, descriptor, sqlalchemy, ezstore-core

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import functools
from abc import ABC, abstractmethod
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import ConfigDict, TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import ColumnElement, Select, and_, func, not_, or_, select
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.exc import NoInspectionAvailable
from sqlalchemy.orm import Mapper, undefer

from ezstore.core.errors import QueryError
from ezstore.core.orm.session import fold, folded


class QueryOperator(str, Enum):
    """Comparison operators supported by ``QueryFilter``."""

    EQ = "eq"
    NE = "ne"
    LT = "lt"
    LE = "le"
    GT = "gt"
    GE = "ge"
    CONTAINS = "contains"
    IN = "in"
    IS_NULL = "is_null"


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


# =============================================================================
# ATTRIBUTE REFLECTION AND COERCION
# =============================================================================


def entity_name(kind: type) -> str:
    return getattr(kind, "__name__", str(kind))


def mapper_for(kind: type) -> Mapper:
    try:
        return sa_inspect(kind)
    except NoInspectionAvailable as exc:
        raise QueryError(f"{entity_name(kind)} is not a mapped class", cause=exc) from exc


def column_property(kind: type, attribute: str):
    """Return the mapped column property named *attribute* on *kind*."""
    if not attribute:
        raise QueryError("attribute name must not be empty").with_context(entity=entity_name(kind))
    mapper = mapper_for(kind)
    prop = mapper.column_attrs.get(attribute)
    if prop is None:
        raise QueryError(
            f"{entity_name(kind)} has no mapped attribute {attribute!r}"
        ).with_context(entity=entity_name(kind), attribute=attribute)
    return prop


def attribute_python_type(kind: type, attribute: str) -> type | None:
    """Python type of the column behind *attribute*, or ``None`` if the column type has none."""
    prop = column_property(kind, attribute)
    try:
        return prop.columns[0].type.python_type
    except NotImplementedError:
        return None


@functools.lru_cache(maxsize=None)
def _adapter(python_type: type) -> TypeAdapter:
    if python_type is str:
        return TypeAdapter(str, config=ConfigDict(coerce_numbers_to_str=True))
    return TypeAdapter(python_type)


def coerce_value(python_type: type | None, value: Any) -> Any:
    """Lax-coerce *value* to *python_type* (``"3"`` -> ``3``, ``"2024-01-01"`` -> datetime)."""
    if value is None or python_type is None:
        return value
    return _adapter(python_type).validate_python(value)


def coerce_attribute_value(kind: type, attribute: str, value: Any) -> Any:
    """Coerce *value* for comparison with ``kind.<attribute>``.

    Raises ``QueryError`` for empty/unknown attributes and values that cannot
    be converted to the column's Python type.
    """
    python_type = attribute_python_type(kind, attribute)
    try:
        return coerce_value(python_type, value)
    except PydanticValidationError as exc:
        raise QueryError(
            f"value {value!r} is not comparable with {entity_name(kind)}.{attribute}",
            cause=exc,
        ).with_context(entity=entity_name(kind), attribute=attribute) from exc


# =============================================================================
# PREDICATES
# =============================================================================


class Predicate(ABC):
    """A filter over records of one kind."""

    @abstractmethod
    def to_clause(self, kind: type) -> ColumnElement[bool]:
        """Compile to a SQLAlchemy boolean clause against *kind*."""

    @abstractmethod
    def matches(self, record: Any) -> bool:
        """Evaluate against an in-memory record."""

    def __and__(self, other: Predicate) -> Predicate:
        return AllOf((self, other))

    def __or__(self, other: Predicate) -> Predicate:
        return AnyOf((self, other))

    def __invert__(self) -> Predicate:
        return Negation(self)


@dataclass(frozen=True)
class QueryFilter(Predicate):
    """Single ``field <operator> value`` condition."""

    field: str
    operator: QueryOperator
    value: Any = None

    def _coerced(self, kind: type) -> Any:
        if self.operator is QueryOperator.CONTAINS:
            if self.value is None:
                raise QueryError("contains requires a value").with_context(
                    entity=entity_name(kind), attribute=self.field
                )
            column_property(kind, self.field)
            return str(self.value)
        if self.operator is QueryOperator.IN:
            values = self.value if self.value is not None else ()
            return tuple(coerce_attribute_value(kind, self.field, v) for v in values)
        if self.operator is QueryOperator.IS_NULL:
            column_property(kind, self.field)
            return True if self.value is None else bool(self.value)
        return coerce_attribute_value(kind, self.field, self.value)

    def to_clause(self, kind: type) -> ColumnElement[bool]:
        value = self._coerced(kind)
        column = getattr(kind, self.field)
        op = self.operator
        if op is QueryOperator.EQ:
            return column.is_(None) if value is None else column == value
        if op is QueryOperator.NE:
            return column.is_not(None) if value is None else column != value
        if op is QueryOperator.LT:
            return column < value
        if op is QueryOperator.LE:
            return column <= value
        if op is QueryOperator.GT:
            return column > value
        if op is QueryOperator.GE:
            return column >= value
        if op is QueryOperator.CONTAINS:
            return folded(column).contains(value, autoescape=True)
        if op is QueryOperator.IN:
            return column.in_(value)
        return column.is_(None) if value else column.is_not(None)

    def matches(self, record: Any) -> bool:
        kind = type(record)
        value = self._coerced(kind)
        current = getattr(record, self.field)
        op = self.operator
        if op is QueryOperator.IS_NULL:
            return (current is None) == value
        if op is QueryOperator.EQ and value is None:
            return current is None
        if op is QueryOperator.NE and value is None:
            return current is not None
        # SQL comparisons with NULL are never true
        if current is None:
            return False
        if op is QueryOperator.EQ:
            return current == value
        if op is QueryOperator.NE:
            return current != value
        if op is QueryOperator.LT:
            return current < value
        if op is QueryOperator.LE:
            return current <= value
        if op is QueryOperator.GT:
            return current > value
        if op is QueryOperator.GE:
            return current >= value
        if op is QueryOperator.CONTAINS:
            return fold(value) in fold(str(current))
        return current in value


@dataclass(frozen=True)
class AllOf(Predicate):
    predicates: tuple[Predicate, ...]

    def to_clause(self, kind: type) -> ColumnElement[bool]:
        return and_(*(p.to_clause(kind) for p in self.predicates))

    def matches(self, record: Any) -> bool:
        return all(p.matches(record) for p in self.predicates)

    def __and__(self, other: Predicate) -> Predicate:
        return AllOf(self.predicates + (other,))


@dataclass(frozen=True)
class AnyOf(Predicate):
    predicates: tuple[Predicate, ...]

    def to_clause(self, kind: type) -> ColumnElement[bool]:
        return or_(*(p.to_clause(kind) for p in self.predicates))

    def matches(self, record: Any) -> bool:
        return any(p.matches(record) for p in self.predicates)

    def __or__(self, other: Predicate) -> Predicate:
        return AnyOf(self.predicates + (other,))


@dataclass(frozen=True)
class Negation(Predicate):
    predicate: Predicate

    def to_clause(self, kind: type) -> ColumnElement[bool]:
        return not_(self.predicate.to_clause(kind))

    def matches(self, record: Any) -> bool:
        return not self.predicate.matches(record)


def eq(field: str, value: Any) -> QueryFilter:
    return QueryFilter(field, QueryOperator.EQ, value)


def ne(field: str, value: Any) -> QueryFilter:
    return QueryFilter(field, QueryOperator.NE, value)


def lt(field: str, value: Any) -> QueryFilter:
    return QueryFilter(field, QueryOperator.LT, value)


def le(field: str, value: Any) -> QueryFilter:
    return QueryFilter(field, QueryOperator.LE, value)


def gt(field: str, value: Any) -> QueryFilter:
    return QueryFilter(field, QueryOperator.GT, value)


def ge(field: str, value: Any) -> QueryFilter:
    return QueryFilter(field, QueryOperator.GE, value)


def contains(field: str, value: str) -> QueryFilter:
    """Case- and diacritic-insensitive substring match."""
    return QueryFilter(field, QueryOperator.CONTAINS, value)


def in_(field: str, values: Iterable[Any]) -> QueryFilter:
    return QueryFilter(field, QueryOperator.IN, tuple(values))


def is_null(field: str, null: bool = True) -> QueryFilter:
    return QueryFilter(field, QueryOperator.IS_NULL, null)


# =============================================================================
# SORTING
# =============================================================================


@dataclass(frozen=True)
class SortKey:
    field: str
    direction: SortDirection = SortDirection.ASC

    @classmethod
    def parse(cls, value: SortKey | str) -> SortKey:
        """Accept a ``SortKey`` or a field name, ``-field`` meaning descending."""
        if isinstance(value, SortKey):
            return value
        if value.startswith("-"):
            return cls(value[1:], SortDirection.DESC)
        return cls(value)


def _normalize_sort(sort: Sequence[SortKey | str] | None) -> tuple[SortKey, ...] | None:
    if sort is None:
        return None
    return tuple(SortKey.parse(key) for key in sort)


def sort_records(records: list[Any], sort: Sequence[SortKey] | None) -> list[Any]:
    """Sort in-memory records the way the database orders them (NULLs lowest)."""
    if not sort:
        return list(records)
    ordered = list(records)
    for key in reversed(sort):
        ordered.sort(
            key=lambda r, f=key.field: (getattr(r, f) is not None, getattr(r, f)),
            reverse=key.direction is SortDirection.DESC,
        )
    return ordered


# =============================================================================
# DESCRIPTOR
# =============================================================================


@dataclass(frozen=True)
class QueryDescriptor:
    """Immutable description of a read against one entity kind.

    Attributes:
        kind: Mapped class being read
        predicate: Filter, or ``None`` for every record of the kind
        sort: Ordered sort keys (earlier keys take precedence), or ``None``
        limit: Maximum number of records, ``None`` for unbounded
        batch_size: Rows fetched per round-trip, ``None`` for the driver default
        materialize: Load every column eagerly (no deferred attributes)
        include_subentities: Include polymorphic subclasses of ``kind``
    """

    kind: type
    predicate: Predicate | None = None
    sort: tuple[SortKey, ...] | None = None
    limit: int | None = None
    batch_size: int | None = None
    materialize: bool = False
    include_subentities: bool = True

    @property
    def entity_name(self) -> str:
        return entity_name(self.kind)

    def accepts_kind(self, record: Any) -> bool:
        if not isinstance(record, self.kind):
            return False
        if self.include_subentities:
            return True
        return type(record) is self.kind

    def matches(self, record: Any) -> bool:
        """True if *record* would be returned by this descriptor (ignoring limit)."""
        if not self.accepts_kind(record):
            return False
        return self.predicate is None or self.predicate.matches(record)

    def unlimited(self) -> QueryDescriptor:
        return QueryDescriptor(
            kind=self.kind,
            predicate=self.predicate,
            sort=self.sort,
            limit=None,
            batch_size=self.batch_size,
            materialize=self.materialize,
            include_subentities=self.include_subentities,
        )

    def with_limit(self, limit: int | None) -> QueryDescriptor:
        return QueryDescriptor(
            kind=self.kind,
            predicate=self.predicate,
            sort=self.sort,
            limit=limit,
            batch_size=self.batch_size,
            materialize=self.materialize,
            include_subentities=self.include_subentities,
        )


def _where(descriptor: QueryDescriptor, stmt: Select) -> Select:
    kind = descriptor.kind
    if descriptor.predicate is not None:
        stmt = stmt.where(descriptor.predicate.to_clause(kind))
    if not descriptor.include_subentities:
        mapper = mapper_for(kind)
        if mapper.polymorphic_on is not None and mapper.polymorphic_identity is not None:
            stmt = stmt.where(mapper.polymorphic_on == mapper.polymorphic_identity)
    return stmt


def compile_descriptor(descriptor: QueryDescriptor) -> Select:
    """Compile *descriptor* to a ``select()`` of its kind."""
    kind = descriptor.kind
    mapper = mapper_for(kind)
    stmt = _where(descriptor, select(kind))
    for key in descriptor.sort or ():
        column = getattr(kind, column_property(kind, key.field).key)
        stmt = stmt.order_by(column.desc() if key.direction is SortDirection.DESC else column.asc())
    if descriptor.limit is not None:
        stmt = stmt.limit(descriptor.limit)
    if descriptor.batch_size is not None:
        stmt = stmt.execution_options(yield_per=descriptor.batch_size)
    if descriptor.materialize:
        deferred = [getattr(kind, prop.key) for prop in mapper.column_attrs if prop.deferred]
        if deferred:
            stmt = stmt.options(*(undefer(attr) for attr in deferred))
    return stmt


def compile_count(descriptor: QueryDescriptor) -> Select:
    """Compile *descriptor* to a ``SELECT count(*)`` over the matching records."""
    inner = _where(descriptor, select(descriptor.kind)).subquery()
    return select(func.count()).select_from(inner)


# =============================================================================
# BUILDERS
# =============================================================================


def first_match(kind: type, predicate: Predicate | None = None) -> QueryDescriptor:
    """Descriptor for the first record matching *predicate* (``LIMIT 1``)."""
    return QueryDescriptor(kind=kind, predicate=predicate, limit=1, batch_size=1, materialize=True)


def by_attribute(kind: type, attribute: str, value: Any) -> QueryDescriptor:
    """First-match descriptor on ``attribute == value``."""
    return first_match(kind, eq(attribute, value))


def all_matching(
    kind: type,
    predicate: Predicate | None = None,
    sort: Sequence[SortKey | str] | None = None,
) -> QueryDescriptor:
    return QueryDescriptor(kind=kind, predicate=predicate, sort=_normalize_sort(sort))


def attribute_contains(
    kind: type,
    attribute: str,
    value: str,
    sort: Sequence[SortKey | str] | None = None,
) -> QueryDescriptor:
    """All records whose *attribute* contains *value*, ignoring case and accents."""
    return all_matching(kind, contains(attribute, value), sort)


def count_query(
    kind: type,
    predicate: Predicate | None = None,
    include_subentities: bool = False,
) -> QueryDescriptor:
    return QueryDescriptor(kind=kind, predicate=predicate, include_subentities=include_subentities)


__all__ = [
    "QueryOperator",
    "SortDirection",
    "SortKey",
    "Predicate",
    "QueryFilter",
    "AllOf",
    "AnyOf",
    "Negation",
    "eq",
    "ne",
    "lt",
    "le",
    "gt",
    "ge",
    "contains",
    "in_",
    "is_null",
    "QueryDescriptor",
    "compile_descriptor",
    "compile_count",
    "coerce_attribute_value",
    "attribute_python_type",
    "entity_name",
    "mapper_for",
    "coerce_value",
    "column_property",
    "sort_records",
    "first_match",
    "by_attribute",
    "all_matching",
    "attribute_contains",
    "count_query",
]
