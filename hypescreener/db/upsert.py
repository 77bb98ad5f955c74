"""
INSERT ... ON CONFLICT DO UPDATE for the two dialects the service runs on:
PostgreSQL in production, SQLite in the test suite.
"""
from typing import Any, Dict, List, Sequence

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession


def _insert_for(session: AsyncSession, table):
    dialect = session.bind.dialect.name
    if dialect == "sqlite":
        return sqlite.insert(table)
    return postgresql.insert(table)


async def upsert_rows(
    session: AsyncSession,
    model,
    rows: List[Dict[str, Any]],
    conflict_columns: Sequence[str],
    update_columns: Sequence[str],
    chunk_size: int = 100,
) -> int:
    """Upserts `rows` into `model`'s table. Returns the number of rows sent."""
    # Chunked to stay under the bound-parameter limit of either dialect
    for start in range(0, len(rows), chunk_size):
        stmt = _insert_for(session, model.__table__).values(rows[start:start + chunk_size])
        stmt = stmt.on_conflict_do_update(
            index_elements=list(conflict_columns),
            set_={col: getattr(stmt.excluded, col) for col in update_columns},
        )
        await session.execute(stmt)
    return len(rows)
