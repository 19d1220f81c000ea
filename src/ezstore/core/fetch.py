"""Execution engine: run query descriptors against a context.

Blocking calls (``fetch``, ``fetch_first``, ``count``) execute on the
context's domain and raise ``StoreError`` on failure, with no retry.
``fetch_async`` wraps the descriptor in a ``FetchRequest`` and returns a
``PendingResult``; submission and execution failures both arrive as ``Err``
through the same channel.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from ezstore.core.context import BaseContext
from ezstore.core.domains import PendingResult
from ezstore.core.query import QueryDescriptor
from ezstore.core.result import Result

Completion = Callable[[Result[list[Any]]], Any]


@dataclass(frozen=True)
class FetchRequest:
    """A descriptor plus the completion that receives its outcome."""

    descriptor: QueryDescriptor
    completion: Completion | None = None


def fetch(context: BaseContext, descriptor: QueryDescriptor) -> list[Any]:
    return context.execute(descriptor)


def fetch_first(context: BaseContext, descriptor: QueryDescriptor) -> Any | None:
    """First record matching *descriptor*, or ``None``. Absence is not an error."""
    records = context.execute(descriptor)
    return records[0] if records else None


def fetch_async(
    context: BaseContext,
    descriptor: QueryDescriptor,
    completion: Completion | None = None,
) -> PendingResult[list[Any]]:
    return context.execute_async(FetchRequest(descriptor, completion))


def count(context: BaseContext, descriptor: QueryDescriptor) -> int:
    return context.count(descriptor)


__all__ = ["FetchRequest", "fetch", "fetch_first", "fetch_async", "count"]
