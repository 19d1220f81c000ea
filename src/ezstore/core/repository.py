"""Per-kind repository facade over the engines.

:class:`RecordRepository` is the caller surface: one instance per entity
kind, with the context always passed explicitly. Every read, upsert, import
and delete goes through the query builders and the fetch, upsert, import and
deletion engines, so sync and async calls report results and errors the same
way.

Architecture::

    ┌────────────────────────────────────────────────────────────────────┐
    │                    RecordRepository[Article]                       │
    │                                                                    │
    │   kind: type[T]             ← any SQLAlchemy mapped class          │
    │   decoder: RecordDecoder    ← ColumnDecoder by default             │
    │                                                                    │
    │   read_first / read_first_by           → T | None                  │
    │   read_all / ..._by_attribute_contains → list[T]  (+ _async)       │
    │   count                                → int                       │
    │   get_or_create                        → T                         │
    │   import_list                          → list[T]  (+ _async)       │
    │   delete_one / delete_all / ..._except                             │
    └────────────────────────────────────────────────────────────────────┘

Usage:
    >>> articles = RecordRepository(Article)
    >>> articles.import_list(store.main_context, payload)
    >>> articles.read_all_by_attribute_contains(store.main_context, "title", "art")

Tags:
    repository, facade, generic, data-access
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import replace
from typing import Any, Generic, TypeVar

from ezstore.core import deletion, fetch, importer, upsert
from ezstore.core.context import BaseContext
from ezstore.core.domains import PendingResult
from ezstore.core.importer import ImportOptions, RecordDecoder
from ezstore.core.query import (
    Predicate,
    SortKey,
    all_matching,
    attribute_contains,
    by_attribute,
    count_query,
    first_match,
)
from ezstore.core.result import Result

T = TypeVar("T")

SortOrder = Sequence[SortKey | str] | None


class RecordRepository(Generic[T]):
    """Generic data-access surface for one entity kind.

    Parameters:
        kind: Mapped class whose records this repository manages.
        decoder: Field decoder used by imports when ``ImportOptions`` does
                 not name one.
    """

    def __init__(self, kind: type[T], decoder: RecordDecoder | None = None) -> None:
        self.kind = kind
        self.decoder = decoder

    # -- Create ------------------------------------------------------------

    def create(self, context: BaseContext, should_save: bool = False, **values: Any) -> T:
        """Create a record owned by *context*, saving the context if asked."""

        def _create() -> T:
            record = context.create(self.kind, **values)
            if should_save:
                context.save()
            return record

        return context.run(_create)

    def save(self, context: BaseContext) -> None:
        context.save()

    # -- Read --------------------------------------------------------------

    def read_first(self, context: BaseContext, predicate: Predicate | None = None) -> T | None:
        return fetch.fetch_first(context, first_match(self.kind, predicate))

    def read_first_by(self, context: BaseContext, attribute: str, value: Any) -> T | None:
        return fetch.fetch_first(context, by_attribute(self.kind, attribute, value))

    def read_all(
        self,
        context: BaseContext,
        predicate: Predicate | None = None,
        sort: SortOrder = None,
    ) -> list[T]:
        return fetch.fetch(context, all_matching(self.kind, predicate, sort))

    def read_all_async(
        self,
        context: BaseContext,
        predicate: Predicate | None = None,
        sort: SortOrder = None,
        completion: Callable[[Result[list[T]]], Any] | None = None,
    ) -> PendingResult[list[T]]:
        return fetch.fetch_async(context, all_matching(self.kind, predicate, sort), completion)

    def read_all_by_attribute_contains(
        self,
        context: BaseContext,
        attribute: str,
        value: str,
        sort: SortOrder = None,
    ) -> list[T]:
        """Records whose *attribute* contains *value*, ignoring case and accents."""
        return fetch.fetch(context, attribute_contains(self.kind, attribute, value, sort))

    def read_all_by_attribute_contains_async(
        self,
        context: BaseContext,
        attribute: str,
        value: str,
        sort: SortOrder = None,
        completion: Callable[[Result[list[T]]], Any] | None = None,
    ) -> PendingResult[list[T]]:
        return fetch.fetch_async(context, attribute_contains(self.kind, attribute, value, sort), completion)

    def count(self, context: BaseContext, predicate: Predicate | None = None) -> int:
        """Number of records of exactly this kind (subclasses excluded)."""
        return fetch.count(context, count_query(self.kind, predicate))

    # -- Upsert / import ---------------------------------------------------

    def get_or_create(self, context: BaseContext, attribute: str, value: Any) -> T:
        return upsert.get_or_create(context, self.kind, attribute, value)

    def _options(self, options: ImportOptions | None) -> ImportOptions:
        options = options or ImportOptions()
        if options.decoder is None and self.decoder is not None:
            options = replace(options, decoder=self.decoder)
        return options

    def import_list(
        self,
        context: BaseContext,
        raw_list: Sequence[Mapping[str, Any]],
        options: ImportOptions | None = None,
    ) -> list[T]:
        return importer.import_list(context, self.kind, raw_list, self._options(options))

    def import_list_async(
        self,
        context: BaseContext,
        raw_list: Sequence[Mapping[str, Any]],
        options: ImportOptions | None = None,
        completion: Callable[[Result[list[T]]], Any] | None = None,
    ) -> PendingResult[list[T]]:
        return importer.import_list_async(context, self.kind, raw_list, self._options(options), completion)

    # -- Delete ------------------------------------------------------------

    def delete_one(self, context: BaseContext, record: T) -> None:
        deletion.delete_one(context, record)

    def delete_all(self, context: BaseContext, predicate: Predicate | None = None) -> int:
        return deletion.delete_all(context, self.kind, predicate)

    def delete_all_except(self, context: BaseContext, retain: Iterable[T]) -> int:
        return deletion.delete_all_except(context, self.kind, retain)

    def __repr__(self) -> str:
        return f"RecordRepository({self.kind.__name__})"


__all__ = ["RecordRepository"]
