"""Shared response wrappers."""

from typing import Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class CursorPaginatedResponse(BaseModel, Generic[T]):
    """One page of an append-ordered listing (batches, ledger entries).

    ``next_cursor`` is the ``created_at`` of the last item; pass it back as
    ``?cursor=`` for the following page.  ``total`` counts every row that
    matches the filters, not just this page.

        {
            "items": [...],
            "total": 132,
            "limit": 50,
            "next_cursor": "2026-03-05T08:14:02.118000",
            "has_more": true
        }
    """
    items: list[T]
    total: int
    limit: int
    next_cursor: str | None = None
    has_more: bool
