"""
Test support utilities for ezstore tests.

Mapped models and payload helpers that don't fit as pytest fixtures but are
useful across multiple test files.
"""

from __future__ import annotations

from typing import Any


def article_payload(article_id: Any, title: str, **fields: Any) -> dict[str, Any]:
    """Build one raw article field-map the way a JSON feed delivers it."""
    payload = {
        "id": article_id,
        "title": title,
        "authors": "Staff Writer",
        "website": "https://example.com",
        "content": f"Body of {title}",
        "date": "2018-02-14T10:00:00",
        "imageUrl": None,
    }
    payload.update(fields)
    return payload
