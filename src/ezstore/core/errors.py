"""
Structured error types for ezstore.

Every failure the data-access layer reports is an ``EzStoreError``. Blocking
operations raise them; non-blocking operations deliver them inside
``Err(...)``. Each error carries a category, a retryable flag, a structured
``ErrorContext`` and the underlying ``cause`` so that a failed fetch can be
logged with the entity kind, the operation and the store's own diagnostic.

Manifesto:
    - **One taxonomy for both call shapes:** sync raises what async delivers
    - **Absence is not an error:** no "not found" kind exists; an empty
      result is a normal success
    - **Keep the native message:** ``StoreError.native_message`` is the
      database/ORM message, untouched
    - **Chain, don't replace:** the original exception stays reachable as
      ``cause`` and ``__cause__``

Architecture:
    ::

        ┌───────────────────────────────────────────────────────────┐
        │                       EzStoreError                         │
        │      (category, retryable, context, cause, to_dict)        │
        ├───────────────────────────────────────────────────────────┤
        │  StoreError (STORE)        SubmissionError (SUBMISSION)    │
        │     │                         │                            │
        │  QueryError                RequestCancelledError           │
        │  SaveError                                                 │
        │                                                            │
        │  ValidationError (VALIDATION)   ConfigError (CONFIG)       │
        │     │                                                      │
        │  DecodeError                                               │
        │  RecordImportError                                         │
        └───────────────────────────────────────────────────────────┘

Examples:
    >>> from ezstore.core.errors import QueryError
    >>> err = QueryError("no such column: titel").with_context(entity="Article")
    >>> err.to_dict()["category"]
    'STORE'
    >>> err.context.entity
    'Article'

Tags:
    errors, error-handling, taxonomy, ezstore-core

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """
    Error categories used for classification and log routing.

    Attributes:
        STORE: Query, save or execution failure reported by the store
        SUBMISSION: A request could not be enqueued, or was cancelled
        VALIDATION: Caller data could not be decoded or is incomplete
        CONFIG: Missing or invalid settings
        INTERNAL: Bugs, unexpected state
        UNKNOWN: Uncategorised foreign exceptions
    """

    STORE = "STORE"
    SUBMISSION = "SUBMISSION"
    VALIDATION = "VALIDATION"
    CONFIG = "CONFIG"
    INTERNAL = "INTERNAL"
    UNKNOWN = "UNKNOWN"


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Only the fields that are set end up in ``to_dict()``, so a log line for a
    failed count carries ``entity`` and ``operation`` and nothing else.

    Attributes:
        entity: Name of the entity kind involved (e.g. ``"Article"``)
        operation: Engine operation (``"fetch"``, ``"save"``, ``"import"``...)
        context_name: Name of the context the operation ran against
        domain: Execution domain name
        attribute: Attribute name for attribute-keyed operations
        metadata: Additional key/value pairs
    """

    entity: str | None = None
    operation: str | None = None
    context_name: str | None = None
    domain: str | None = None
    attribute: str | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["entity", "operation", "context_name", "domain", "attribute"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class EzStoreError(Exception):
    """
    Base exception for all ezstore errors.

    Subclasses set ``default_category`` and ``default_retryable``; callers may
    override both per instance.

    Examples:
        >>> error = EzStoreError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>
        >>> error.retryable
        False
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> EzStoreError:
        """
        Add context to this error (fluent API).

        Known ``ErrorContext`` fields are set directly; anything else lands in
        ``context.metadata``.
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# STORE ERRORS
# =============================================================================


class StoreError(EzStoreError):
    """
    Query, save or execute failure reported by the persistence store.

    ``native_message`` is the store's own diagnostic (the text of the
    underlying SQLAlchemy/DBAPI exception when there is one).
    """

    default_category = ErrorCategory.STORE
    default_retryable = False

    @property
    def native_message(self) -> str:
        if self.cause is not None:
            return str(self.cause)
        return self.message


class QueryError(StoreError):
    """A fetch or count was rejected (bad attribute, bad value, SQL error)."""

    pass


class SaveError(StoreError):
    """A context save failed; the context has been rolled back."""

    pass


# =============================================================================
# SUBMISSION ERRORS
# =============================================================================


class SubmissionError(EzStoreError):
    """An asynchronous request could not be enqueued on its execution domain."""

    default_category = ErrorCategory.SUBMISSION
    default_retryable = False


class RequestCancelledError(SubmissionError):
    """An asynchronous request was cancelled before it started."""

    pass


# =============================================================================
# VALIDATION ERRORS
# =============================================================================


class ValidationError(EzStoreError):
    """Caller-supplied data is incomplete or cannot be used."""

    default_category = ErrorCategory.VALIDATION
    default_retryable = False


class DecodeError(ValidationError):
    """A raw field value could not be decoded onto a record attribute."""

    def __init__(self, message: str, *, field_name: str | None = None, value: Any = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.field_name = field_name
        self.value = value

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.field_name is not None:
            result["field"] = self.field_name
        return result


class RecordImportError(ValidationError):
    """A field-map in an import list is unusable (e.g. missing its id key)."""

    def __init__(self, message: str, *, index: int | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.index = index
        if index is not None:
            self.context.metadata["index"] = index


# =============================================================================
# CONFIG ERRORS
# =============================================================================


class ConfigError(EzStoreError):
    """Missing or invalid configuration."""

    default_category = ErrorCategory.CONFIG
    default_retryable = False


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def as_store_error(
    error: BaseException,
    message: str | None = None,
    *,
    error_type: type[StoreError] = StoreError,
) -> EzStoreError:
    """
    Return *error* unchanged if it is already an ``EzStoreError``, otherwise
    wrap it in *error_type* with the original as ``cause``.
    """
    if isinstance(error, EzStoreError):
        return error
    return error_type(message or str(error) or type(error).__name__, cause=error)


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "EzStoreError",
    "StoreError",
    "QueryError",
    "SaveError",
    "SubmissionError",
    "RequestCancelledError",
    "ValidationError",
    "DecodeError",
    "RecordImportError",
    "ConfigError",
    "as_store_error",
]
