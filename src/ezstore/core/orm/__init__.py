"""SQLAlchemy layer for ezstore: declarative base, engine and session factory."""

from ezstore.core.orm.base import RecordBase
from ezstore.core.orm.session import (
    FOLD_FUNCTION,
    FoldedText,
    StoreSession,
    create_store_engine,
    fold,
    folded,
    store_session_factory,
)

__all__ = [
    "RecordBase",
    "StoreSession",
    "create_store_engine",
    "store_session_factory",
    "fold",
    "folded",
    "FOLD_FUNCTION",
    "FoldedText",
]
