"""Process wiring: engine, schema, domains and contexts.

``RecordStore`` is constructed explicitly and passed around; there is no
module-level store. It owns the engine, the main and background execution
domains and the main context.

Example::

    settings = StoreSettings(database_url="sqlite:///:memory:")
    with RecordStore(settings) as store:
        articles = RecordRepository(Article)
        articles.import_list(store.main_context, payload)
        background = store.new_background_context()
        articles.count(background)
"""

from __future__ import annotations

from sqlalchemy import MetaData
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from ezstore.core.context import ChildContext, Context
from ezstore.core.domains import ExecutionDomain
from ezstore.core.errors import ConfigError, StoreError
from ezstore.core.logging import configure_logging, get_logger
from ezstore.core.orm.base import RecordBase
from ezstore.core.orm.session import create_store_engine, store_session_factory
from ezstore.core.settings import StoreSettings

logger = get_logger(__name__)


class RecordStore:
    """Engine plus context tree for one database."""

    def __init__(
        self,
        settings: StoreSettings | None = None,
        *,
        engine: Engine | None = None,
        metadata: MetaData = RecordBase.metadata,
    ) -> None:
        self.settings = settings or StoreSettings()
        if self.settings.configure_logging:
            configure_logging(level=self.settings.log_level, json_format=self.settings.json_logs)

        if engine is None:
            try:
                engine = create_store_engine(
                    self.settings.database_url,
                    echo=self.settings.echo,
                    pool_size=self.settings.pool_size,
                    max_overflow=self.settings.max_overflow,
                    pool_timeout=self.settings.pool_timeout,
                )
            except (SQLAlchemyError, ValueError) as exc:
                raise ConfigError(f"cannot create engine for {self.settings.database_url!r}", cause=exc) from exc
        self.engine = engine
        self.metadata = metadata
        self._session_factory = store_session_factory(engine)
        self._domains: dict[str, ExecutionDomain] = {}
        self._contexts: list[Context] = []
        self._main_context: Context | None = None

        if self.settings.create_schema:
            self.create_schema()
        logger.info("store_opened", url=engine.url.render_as_string(hide_password=True))

    # -- Schema ------------------------------------------------------------

    def create_schema(self) -> None:
        try:
            self.metadata.create_all(self.engine)
        except SQLAlchemyError as exc:
            raise StoreError(f"schema creation failed: {exc}", cause=exc) from exc

    def drop_schema(self) -> None:
        try:
            self.metadata.drop_all(self.engine)
        except SQLAlchemyError as exc:
            raise StoreError(f"schema drop failed: {exc}", cause=exc) from exc

    # -- Domains and contexts ----------------------------------------------

    def domain(self, name: str) -> ExecutionDomain:
        """Return the execution domain called *name*, creating it on first use."""
        if name not in self._domains:
            self._domains[name] = ExecutionDomain(name)
        return self._domains[name]

    @property
    def main_context(self) -> Context:
        if self._main_context is None:
            self._main_context = self.new_context(self.settings.main_domain)
        return self._main_context

    def new_context(self, name: str | None = None) -> Context:
        """A new root context on the domain called *name* (the main domain by default)."""
        name = name or self.settings.main_domain
        context = Context(self._session_factory(), self.domain(name), name=name)
        self._contexts.append(context)
        return context

    def new_background_context(self) -> ChildContext:
        """A child of the main context confined to the background domain."""
        background = self.settings.background_domain
        return self.main_context.begin_child(domain=self.domain(background), name=background)

    # -- Lifecycle ---------------------------------------------------------

    def close(self) -> None:
        for context in self._contexts:
            context.close()
        self._contexts.clear()
        self._main_context = None
        for domain in self._domains.values():
            domain.shutdown(wait=True)
        self._domains.clear()
        self.engine.dispose()
        logger.info("store_closed")

    def __enter__(self) -> RecordStore:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


__all__ = ["RecordStore"]
