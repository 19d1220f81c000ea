"""ezstore -- type-generic create/read/upsert/import/delete over SQLAlchemy.

Quick start::

    from ezstore import RecordRepository, RecordStore, StoreSettings
    from ezstore.core.query import contains

    with RecordStore(StoreSettings(database_url="sqlite:///:memory:")) as store:
        articles = RecordRepository(Article)
        articles.import_list(store.main_context, payload)
        articles.read_all(store.main_context, contains("title", "art"))
"""

__version__ = "0.1.0"

from ezstore.core import *  # noqa: F401,F403
from ezstore.core import __all__ as _core_all
from ezstore.core import query

__all__ = ["__version__", "query", *_core_all]
