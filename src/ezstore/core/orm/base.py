"""Declarative base and type-map for record kinds managed by ezstore.

Uses SQLAlchemy 2.0 ``DeclarativeBase`` with a ``type_annotation_map``
that maps Python built-in types to portable SA column types. Any mapped
class works with the engines; deriving from ``RecordBase`` just means
``RecordStore`` creates its table by default.
"""

from __future__ import annotations

import datetime

from sqlalchemy import JSON, Boolean, DateTime, Float, Integer, Text
from sqlalchemy.orm import DeclarativeBase


class RecordBase(DeclarativeBase):
    """Shared declarative base for record kinds.

    * ``str``   → ``Text``
    * ``int``   → ``Integer``
    * ``float`` → ``Float``
    * ``bool``  → ``Boolean``
    * ``datetime.datetime`` → ``DateTime``
    * ``dict`` / ``list`` → ``JSON``
    """

    type_annotation_map = {
        str: Text,
        int: Integer,
        float: Float,
        bool: Boolean,
        datetime.datetime: DateTime,
        dict: JSON,
        list: JSON,
    }

    def __repr__(self) -> str:
        return f"<{type(self).__name__} at 0x{id(self):x}>"
