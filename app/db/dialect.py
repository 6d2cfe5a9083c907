"""
Dialect helpers - statements whose syntax differs between PostgreSQL and SQLite.
"""

from collections.abc import Sequence
from typing import Any

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import Base


async def insert_ignoring_conflict(
    session: AsyncSession,
    model: type[Base],
    values: dict[str, Any],
    conflict_columns: Sequence[str],
) -> bool:
    """
    INSERT ... ON CONFLICT (conflict_columns) DO NOTHING.

    Returns True if this call inserted the row, False if a row with the same
    key already existed (or was committed concurrently).
    """
    dialect_name = session.bind.dialect.name if session.bind else ""
    if dialect_name == "postgresql":
        stmt = pg_insert(model).values(**values)
    elif dialect_name == "sqlite":
        stmt = sqlite_insert(model).values(**values)
    else:
        raise NotImplementedError(f"Unsupported dialect for atomic insert: {dialect_name!r}")

    stmt = stmt.on_conflict_do_nothing(index_elements=list(conflict_columns))
    result = await session.execute(stmt)
    return bool(result.rowcount)
