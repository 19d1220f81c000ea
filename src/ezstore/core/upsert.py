"""Upsert engine: find-or-create keyed by an attribute value."""

from __future__ import annotations

from typing import Any, TypeVar

from ezstore.core.context import BaseContext
from ezstore.core.fetch import fetch_first
from ezstore.core.logging import get_logger
from ezstore.core.query import by_attribute, coerce_attribute_value

logger = get_logger(__name__)

T = TypeVar("T")


def get_or_create(context: BaseContext, kind: type[T], attribute: str, value: Any) -> T:
    """Return the record of *kind* whose *attribute* equals *value*, creating it if absent.

    The lookup sees records created earlier in *context* but not yet saved,
    so two calls with the same pair return the same record. Lookup failures
    propagate; nothing is created on error. There is no locking across
    contexts.
    """

    def _upsert() -> T:
        existing = fetch_first(context, by_attribute(kind, attribute, value))
        if existing is not None:
            return existing
        record = kind()
        setattr(record, attribute, coerce_attribute_value(kind, attribute, value))
        context.insert(record)
        logger.debug("record_created", entity=kind.__name__, attribute=attribute, context=context.name)
        return record

    return context.run(_upsert)


__all__ = ["get_or_create"]
