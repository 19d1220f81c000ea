"""Settings for an ezstore process.

``StoreSettings`` gathers everything ``RecordStore`` needs to wire itself up:
the database URL and pool parameters, whether to create the schema, the
names of the main and background execution domains, logging, and the
defaults that ``ImportOptions.from_settings`` picks up.

Manifesto:
    Configuration should be explicit, validated, and environment-driven.

    - **Pydantic validation:** Type-checked at startup, not at first query
    - **Environment-driven:** ``EZSTORE_*`` env vars and ``.env`` files
    - **Explicit wiring:** settings are passed to ``RecordStore``; nothing
      reads them from a global

Examples:
    >>> from ezstore.core.settings import StoreSettings
    >>> settings = StoreSettings(database_url="sqlite:///:memory:")
    >>> settings.is_sqlite
    True

Tags:
    settings, configuration, pydantic, environment, ezstore-core

Doc-Types:
    - API Reference
    - Configuration Guide
"""

from __future__ import annotations

from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StoreSettings(BaseSettings):
    """ezstore configuration.

    All fields can be set via ``EZSTORE_*`` environment variables (e.g.
    ``EZSTORE_DATABASE_URL=postgresql://...``) or a ``.env`` file.

    Fields
    ──────
    database_url       : SQLAlchemy URL of the persistence store
    echo               : Log every SQL statement (SQLAlchemy echo)
    pool_size          : Connection pool size (ignored for SQLite)
    max_overflow       : Pool overflow (ignored for SQLite)
    pool_timeout       : Pool checkout timeout in seconds (ignored for SQLite)
    create_schema      : Create mapped tables when the store starts
    main_domain        : Name of the main execution domain
    background_domain  : Name of the background execution domain
    log_level          : structlog level
    log_format         : ``console``, ``json`` or ``auto``
    configure_logging  : Let ``RecordStore`` call ``configure_logging``
    import_id_key      : Default identifying key for imports
    import_should_save : Default save-after-import behaviour
    """

    model_config = SettingsConfigDict(
        env_prefix="EZSTORE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Database ─────────────────────────────────────────────────
    database_url: str = "sqlite:///ezstore.db"
    echo: bool = False
    pool_size: int | None = Field(default=None, ge=1)
    max_overflow: int | None = Field(default=None, ge=0)
    pool_timeout: int | None = Field(default=None, ge=1)
    create_schema: bool = True

    # ── Execution domains ────────────────────────────────────────
    main_domain: str = "main"
    background_domain: str = "background"

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = "INFO"
    log_format: Literal["console", "json", "auto"] = "auto"
    configure_logging: bool = False

    # ── Import defaults ──────────────────────────────────────────
    import_id_key: str = "id"
    import_should_save: bool = True

    @field_validator("log_level")
    @classmethod
    def _normalize_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level: {value!r}")
        return level

    @field_validator("import_id_key", "main_domain", "background_domain")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    @property
    def is_memory(self) -> bool:
        """True for in-memory SQLite URLs (``sqlite://`` / ``sqlite:///:memory:``)."""
        return self.is_sqlite and (
            self.database_url in ("sqlite://", "sqlite:///")
            or ":memory:" in self.database_url
        )

    @property
    def json_logs(self) -> bool | None:
        if self.log_format == "auto":
            return None
        return self.log_format == "json"


__all__ = ["StoreSettings"]
