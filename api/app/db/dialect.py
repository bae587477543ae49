"""Dialect-aware INSERT for upserts.

PostgreSQL and SQLite expose the same ``on_conflict_do_nothing`` /
``on_conflict_do_update`` API on their dialect-specific ``insert``.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession


def upsert_insert(session: AsyncSession, model: Any):
    """Return an INSERT construct for *model* that supports ON CONFLICT clauses."""
    if session.get_bind().dialect.name == "sqlite":
        return sqlite_insert(model)
    return pg_insert(model)
