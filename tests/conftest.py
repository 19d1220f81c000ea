"""
Shared pytest fixtures and configuration for ezstore tests.

This module provides:
- An in-memory store with the test models' schema created
- Main, background and file-backed contexts
- The six-article payload used by the end-to-end scenarios
- Repositories for the test record kinds

Usage:
    Fixtures are auto-discovered by pytest. Simply use them as function
    arguments (pytest injects them automatically).

    def test_something(article_repo, main_context, articles_payload):
        ...
"""

import sys
from pathlib import Path
from typing import Any, Generator

import pytest

# Ensure ezstore package is importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from ezstore.core.context import ChildContext, Context
from ezstore.core.repository import RecordRepository
from ezstore.core.settings import StoreSettings
from ezstore.core.store import RecordStore

from tests._support import article_payload
from tests._support.models import Article, FeaturedArticle, Tag


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on their location."""
    for item in items:
        test_path = Path(item.fspath).relative_to(Path(__file__).parent)

        if "scenario" in str(test_path):
            item.add_marker(pytest.mark.integration)

        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration", "slow"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Store Fixtures
# =============================================================================


@pytest.fixture
def settings() -> StoreSettings:
    """Settings for an in-memory store, ignoring any EZSTORE_* environment."""
    return StoreSettings(database_url="sqlite:///:memory:", _env_file=None)


@pytest.fixture
def store(settings: StoreSettings) -> Generator[RecordStore, None, None]:
    """
    In-memory store with the test schema created.

    Closed after the test, which shuts down its execution domains.
    """
    record_store = RecordStore(settings)
    yield record_store
    record_store.close()


@pytest.fixture
def file_store(tmp_path: Path) -> Generator[RecordStore, None, None]:
    """
    File-backed store, for tests that need several independent root contexts.
    """
    record_store = RecordStore(
        StoreSettings(database_url=f"sqlite:///{tmp_path / 'ezstore.db'}", _env_file=None)
    )
    yield record_store
    record_store.close()


@pytest.fixture
def main_context(store: RecordStore) -> Context:
    return store.main_context


@pytest.fixture
def background_context(store: RecordStore) -> ChildContext:
    """Child of the main context confined to the background domain."""
    return store.new_background_context()


# =============================================================================
# Repository Fixtures
# =============================================================================


@pytest.fixture
def article_repo() -> RecordRepository[Article]:
    return RecordRepository(Article)


@pytest.fixture
def featured_repo() -> RecordRepository[FeaturedArticle]:
    return RecordRepository(FeaturedArticle)


@pytest.fixture
def tag_repo() -> RecordRepository[Tag]:
    return RecordRepository(Tag)


# =============================================================================
# Payload Fixtures
# =============================================================================


ARTICLE_TITLES = [
    "The Art of Clean Code",
    "Building Reliable Pipelines",
    "Notes on Concurrency",
    "Modern Art Museums Go Digital",
    "A Field Guide to Databases",
    "Why Testing Matters",
]


@pytest.fixture
def articles_payload() -> list[dict[str, Any]]:
    """
    Six raw articles with ids 1..6, as a JSON feed delivers them.

    Exactly two titles contain "art" case-insensitively.
    """
    return [
        article_payload(index, title, date=f"2018-02-{10 + index:02d}T09:30:00")
        for index, title in enumerate(ARTICLE_TITLES, start=1)
    ]


@pytest.fixture
def imported_articles(
    article_repo: RecordRepository[Article],
    main_context: Context,
    articles_payload: list[dict[str, Any]],
) -> list[Article]:
    """The six articles imported and saved in the main context."""
    return article_repo.import_list(main_context, articles_payload)
