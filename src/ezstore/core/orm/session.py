"""SQLAlchemy engine factory, session class and text folding.

This module provides:

* ``create_store_engine``  -- Create a SA engine from a URL.
* ``StoreSession``         -- A ``Session`` with ``expire_on_commit=False``.
* ``store_session_factory`` -- ``sessionmaker`` producing ``StoreSession``.
* ``fold`` / ``folded``    -- Case- and accent-insensitive text comparison,
  native on SQLite (registered ``ezstore_fold`` function), ``lower()``
  elsewhere. ``FoldedText`` folds bound search values to match.

Tags:
    ezstore, orm, sqlalchemy, session, engine, collation

Doc-Types:
    api-reference
"""

from __future__ import annotations

import unicodedata
from typing import Any

from sqlalchemy import create_engine as _sa_create_engine
from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool
from sqlalchemy.sql.functions import FunctionElement
from sqlalchemy.types import Text, TypeDecorator

FOLD_FUNCTION = "ezstore_fold"


def fold(value: str | None) -> str | None:
    """Lower-case *value* and strip combining marks (``"Café"`` -> ``"cafe"``)."""
    if value is None:
        return None
    decomposed = unicodedata.normalize("NFKD", str(value))
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return stripped.casefold()


class FoldedText(TypeDecorator):
    """Text whose bound values are folded the same way as ``folded()`` for the dialect.

    SQLite gets the full ``fold``; other dialects only get ``lower()`` on the
    column side, so bound values are lower-cased to match.
    """

    impl = Text
    cache_ok = True

    def process_bind_param(self, value: Any, dialect: Any) -> Any:
        if value is None:
            return None
        if dialect.name == "sqlite":
            return fold(value)
        return str(value).lower()


class folded(FunctionElement):
    """SQL expression folding a text column the way ``fold`` does."""

    type = FoldedText()
    name = "folded"
    inherit_cache = True


@compiles(folded)
def _compile_folded_default(element: folded, compiler: Any, **kw: Any) -> str:
    return "lower(%s)" % compiler.process(element.clauses, **kw)


@compiles(folded, "sqlite")
def _compile_folded_sqlite(element: folded, compiler: Any, **kw: Any) -> str:
    return "%s(%s)" % (FOLD_FUNCTION, compiler.process(element.clauses, **kw))


def _is_memory_url(url: str) -> bool:
    return url in ("sqlite://", "sqlite:///") or ":memory:" in url


def create_store_engine(
    url: str = "sqlite:///ezstore.db",
    *,
    echo: bool = False,
    pool_size: int | None = None,
    max_overflow: int | None = None,
    pool_timeout: int | None = None,
    **kwargs: Any,
) -> Engine:
    """Create a SQLAlchemy engine with sane defaults.

    Parameters
    ----------
    url:
        Database URL (``sqlite:///…``, ``postgresql://…``, etc.)
    echo:
        If ``True``, log all SQL to stdout.
    pool_size, max_overflow, pool_timeout:
        Connection pool parameters (ignored for SQLite).
    **kwargs:
        Extra arguments forwarded to ``sqlalchemy.create_engine``.
    """

    if url.startswith("sqlite"):
        # Contexts hop threads via execution domains
        kwargs.setdefault("connect_args", {"check_same_thread": False})
        if _is_memory_url(url):
            # One shared connection, otherwise every checkout sees an empty db
            kwargs.setdefault("poolclass", StaticPool)

        engine = _sa_create_engine(url, echo=echo, **kwargs)

        @event.listens_for(engine, "connect")
        def _register_sqlite_functions(dbapi_connection: Any, _rec: Any) -> None:
            dbapi_connection.create_function(FOLD_FUNCTION, 1, fold, deterministic=True)
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    pool_kwargs: dict[str, Any] = {}
    if pool_size is not None:
        pool_kwargs["pool_size"] = pool_size
    if max_overflow is not None:
        pool_kwargs["max_overflow"] = max_overflow
    if pool_timeout is not None:
        pool_kwargs["pool_timeout"] = pool_timeout

    return _sa_create_engine(url, echo=echo, **pool_kwargs, **kwargs)


class StoreSession(Session):
    """Pre-configured session with ``expire_on_commit=False``.

    A save commits only the pending deltas; records loaded earlier keep their
    state instead of being expired and re-fetched.
    """

    def __init__(self, bind: Engine | None = None, **kwargs: Any) -> None:
        kwargs.setdefault("expire_on_commit", False)
        super().__init__(bind=bind, **kwargs)


def store_session_factory(engine: Engine) -> sessionmaker[StoreSession]:
    """Return a ``sessionmaker`` bound to *engine* that produces ``StoreSession`` instances."""
    return sessionmaker(bind=engine, class_=StoreSession)
