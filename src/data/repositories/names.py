"""Repository functions for resolved universe names."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from models.app import ResolvedName

from .repository import from_db_time, to_db_time

if TYPE_CHECKING:
    from .repository import Repository

logger = logging.getLogger(__name__)

# Stay well below SQLite's bound-parameter limit
_SELECT_CHUNK = 500


async def get_names(
    repo: Repository, ids: list[int], now: datetime
) -> dict[int, ResolvedName]:
    """Get unexpired names for a list of IDs.

    Args:
        repo: Repository instance
        ids: IDs to look up
        now: Reference time for the expiry filter

    Returns:
        Mapping of id -> ResolvedName for the IDs that are cached
    """
    found: dict[int, ResolvedName] = {}
    for start in range(0, len(ids), _SELECT_CHUNK):
        chunk = ids[start : start + _SELECT_CHUNK]
        placeholders = ",".join("?" for _ in chunk)
        rows = await repo.fetchall(
            f"""
            SELECT id, name, category, expires_at
            FROM esi_service_universe_names
            WHERE id IN ({placeholders}) AND expires_at > ?
            """,
            (*chunk, to_db_time(now)),
        )
        for row in rows:
            found[row["id"]] = ResolvedName(
                id=row["id"],
                name=row["name"],
                category=row["category"],
                expires_at=from_db_time(row["expires_at"]),
            )
    return found


async def upsert_names(repo: Repository, names: list[ResolvedName]) -> int:
    """Insert or renew resolved names.

    Returns:
        Number of names written
    """
    if not names:
        return 0

    await repo.executemany(
        """
        INSERT INTO esi_service_universe_names (id, name, category, expires_at)
        VALUES (?, ?, ?, ?)
        ON CONFLICT(id) DO UPDATE SET
            name = excluded.name,
            category = excluded.category,
            expires_at = excluded.expires_at
        """,
        [(n.id, n.name, n.category, to_db_time(n.expires_at)) for n in names],
    )
    logger.debug("Stored %d resolved names", len(names))
    return len(names)


async def count_by_category(repo: Repository) -> dict[str, int]:
    """Number of stored names per category."""
    rows = await repo.fetchall(
        """
        SELECT category, COUNT(*) AS n
        FROM esi_service_universe_names
        GROUP BY category
        """
    )
    return {row["category"]: int(row["n"]) for row in rows}


async def clear(repo: Repository) -> int:
    """Delete every stored name."""
    return await repo.execute_write("DELETE FROM esi_service_universe_names")
