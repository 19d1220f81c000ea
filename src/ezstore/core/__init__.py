"""ezstore core: a generic data-access layer over SQLAlchemy.

Architecture::

    Layer 1 -- Type System & Errors
        errors.py          Structured error hierarchy (EzStoreError, StoreError...)
        result.py          Result[T] envelope (Ok / Err)

    Layer 2 -- Store
        orm/               Declarative base, engine + session factory, folding
        query.py           Predicates, QueryDescriptor, query builders
        domains.py         ExecutionDomain, PendingResult, submit_request
        context.py         Context (session-backed) and ChildContext (overlay)

    Layer 3 -- Engines
        fetch.py           Blocking / non-blocking execution, count
        upsert.py          get_or_create
        importer.py        import_list, ColumnDecoder, ImportOptions
        deletion.py        delete_one, delete_all, delete_all_except

    Layer 4 -- Caller Surface
        repository.py      RecordRepository[T]
        store.py           RecordStore wiring

    Layer 5 -- Cross-Cutting Concerns
        logging.py         Structured logging (structlog)
        settings.py        StoreSettings (pydantic-settings)
"""

from ezstore.core.context import BaseContext, ChildContext, Context, record_identity
from ezstore.core.domains import ExecutionDomain, PendingResult, submit_request
from ezstore.core.errors import (
    ConfigError,
    DecodeError,
    ErrorCategory,
    ErrorContext,
    EzStoreError,
    QueryError,
    RecordImportError,
    RequestCancelledError,
    SaveError,
    StoreError,
    SubmissionError,
    ValidationError,
)
from ezstore.core.fetch import FetchRequest
from ezstore.core.importer import ColumnDecoder, ImportOptions, RecordDecoder
from ezstore.core.query import (
    AllOf,
    AnyOf,
    Negation,
    Predicate,
    QueryDescriptor,
    QueryFilter,
    QueryOperator,
    SortDirection,
    SortKey,
)
from ezstore.core.repository import RecordRepository
from ezstore.core.result import Err, Ok, Result
from ezstore.core.settings import StoreSettings
from ezstore.core.store import RecordStore

__all__ = [
    # Results
    "Result",
    "Ok",
    "Err",
    # Errors
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
    # Query
    "Predicate",
    "QueryFilter",
    "QueryOperator",
    "AllOf",
    "AnyOf",
    "Negation",
    "SortKey",
    "SortDirection",
    "QueryDescriptor",
    # Execution
    "ExecutionDomain",
    "PendingResult",
    "submit_request",
    "BaseContext",
    "Context",
    "ChildContext",
    "record_identity",
    "FetchRequest",
    # Import
    "RecordDecoder",
    "ColumnDecoder",
    "ImportOptions",
    # Surface
    "RecordRepository",
    "RecordStore",
    "StoreSettings",
]
