"""
Result envelope for asynchronous outcomes.

Every non-blocking operation in ezstore resolves to exactly one ``Ok[T]`` or
``Err[T]``, delivered to the request's completion and returned by
``PendingResult.result()``.

Manifesto:
    - **Exactly one terminal outcome:** an async request is ``Ok`` or ``Err``,
      never both, never neither
    - **Errors are values:** ``Err`` carries the ``EzStoreError`` that a
      blocking call would have raised; ``unwrap()`` raises it again

Examples:
    >>> from ezstore.core.result import Ok, Err
    >>> def on_done(result):
    ...     match result:
    ...         case Ok(records):
    ...             print(len(records))
    ...         case Err(error):
    ...             print(error)
    >>> on_done(Ok([1, 2, 3]))
    3

Tags:
    result-pattern, error-handling, async-completion, ezstore-core

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar


T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """Successful outcome holding the request's value."""

    value: T

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False

    def unwrap(self) -> T:
        return self.value

    def unwrap_or(self, default: T) -> T:
        return self.value

    def __repr__(self) -> str:
        return f"Ok({self.value!r})"


@dataclass(frozen=True, slots=True)
class Err(Generic[T]):
    """
    Failed outcome holding the error.

    ``unwrap()`` re-raises the error, which is how a caller turns an async
    outcome back into blocking semantics.
    """

    error: Exception

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True

    def unwrap(self) -> T:
        raise self.error

    def unwrap_or(self, default: T) -> T:
        return default

    def __repr__(self) -> str:
        return f"Err({self.error!r})"


Result = Ok[T] | Err[T]


__all__ = [
    "Result",
    "Ok",
    "Err",
]
