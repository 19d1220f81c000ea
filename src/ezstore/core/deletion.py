"""Deletion engine.

Every operation marks records in the owning context and ends with one
explicit save of that context. For a child context the save pushes the
deletes to its parent; the rows disappear from the database when the root
is saved.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from ezstore.core.context import BaseContext, record_identity
from ezstore.core.fetch import fetch
from ezstore.core.logging import LogContext, get_logger
from ezstore.core.query import Predicate, all_matching, entity_name

logger = get_logger(__name__)


def delete_one(context: BaseContext, record: Any) -> None:
    """Mark *record* deleted and save. A record that is not stored is a no-op."""

    def _delete() -> None:
        context.delete(record)
        context.save()

    context.run(_delete)
    logger.debug("record_deleted", entity=entity_name(type(record)), context=context.name)


def delete_all(context: BaseContext, kind: type, predicate: Predicate | None = None) -> int:
    """Delete every record of *kind* matching *predicate*; returns how many were marked."""

    def _delete() -> int:
        with LogContext(context_name=context.name, domain=context.domain.name, operation="delete_all"):
            records = fetch(context, all_matching(kind, predicate))
            for record in records:
                context.delete(record)
            context.save()
            return len(records)

    deleted = context.run(_delete)
    logger.info("records_deleted", entity=entity_name(kind), context=context.name, count=deleted)
    return deleted


def delete_all_except(context: BaseContext, kind: type, retain: Iterable[Any]) -> int:
    """Delete every record of *kind* whose identity is not in *retain*.

    Membership is by store identity, never by value. Returns how many
    records were marked.
    """
    retained = list(retain)

    def _delete() -> int:
        with LogContext(context_name=context.name, domain=context.domain.name, operation="delete_all_except"):
            records = fetch(context, all_matching(kind))
            # Identities are taken after the fetch so pending retainees have been flushed
            keep = {record_identity(record) for record in retained}
            doomed = [record for record in records if record_identity(record) not in keep]
            for record in doomed:
                context.delete(record)
            context.save()
            return len(doomed)

    deleted = context.run(_delete)
    logger.info(
        "records_deleted",
        entity=entity_name(kind),
        context=context.name,
        count=deleted,
        retained=len(retained),
    )
    return deleted


__all__ = ["delete_one", "delete_all", "delete_all_except"]
