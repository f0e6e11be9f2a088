"""Repository functions for the persistent cache tier.

Rows in `esi_service_cache` hold JSON payloads keyed by cache key. Reads
always filter on `expires_at > now` so an expired row is never returned,
even before the background sweep deletes it.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import TYPE_CHECKING

from models.app import CacheEntry

from .repository import from_db_time, to_db_time

if TYPE_CHECKING:
    from .repository import Repository

logger = logging.getLogger(__name__)


def _like_escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _row_to_entry(row) -> CacheEntry:
    return CacheEntry(
        key=row["cache_key"],
        data=json.loads(row["data"]),
        expires_at=from_db_time(row["expires_at"]),
        endpoint=row["endpoint"],
        entity_id=row["entity_id"],
        tags=json.loads(row["tags"] or "[]"),
        priority=row["priority"],
        access_count=row["access_count"],
    )


async def get_entry(repo: Repository, key: str, now: datetime) -> CacheEntry | None:
    """Get an unexpired cache entry.

    Args:
        repo: Repository instance
        key: Cache key
        now: Reference time for the expiry filter

    Returns:
        The entry, or None if missing or expired
    """
    row = await repo.fetchone(
        """
        SELECT cache_key, endpoint, entity_id, data, expires_at, tags,
               priority, access_count
        FROM esi_service_cache
        WHERE cache_key = ? AND expires_at > ?
        """,
        (key, to_db_time(now)),
    )
    return _row_to_entry(row) if row else None


async def touch_entry(repo: Repository, key: str, now: datetime) -> None:
    """Record a read of an entry (access count and last access time)."""
    await repo.execute_write(
        """
        UPDATE esi_service_cache
        SET access_count = access_count + 1, last_accessed = ?
        WHERE cache_key = ?
        """,
        (to_db_time(now), key),
    )


async def upsert_entry(repo: Repository, entry: CacheEntry, now: datetime) -> None:
    """Insert or overwrite a cache entry (last writer wins)."""
    await repo.execute_write(
        """
        INSERT INTO esi_service_cache (
            cache_key, endpoint, entity_id, data, expires_at, tags,
            priority, access_count, last_accessed
        ) VALUES (?, ?, ?, ?, ?, ?, ?, 0, ?)
        ON CONFLICT(cache_key) DO UPDATE SET
            endpoint = excluded.endpoint,
            entity_id = excluded.entity_id,
            data = excluded.data,
            expires_at = excluded.expires_at,
            tags = excluded.tags,
            priority = excluded.priority,
            last_accessed = excluded.last_accessed
        """,
        (
            entry.key,
            entry.endpoint,
            entry.entity_id,
            json.dumps(entry.data),
            to_db_time(entry.expires_at),
            json.dumps(sorted(set(entry.tags))),
            entry.priority,
            to_db_time(now),
        ),
    )


async def delete_matching(repo: Repository, pattern: str) -> int:
    """Delete entries whose key contains `pattern` or that carry it as a tag.

    Returns:
        Number of rows deleted
    """
    return await repo.execute_write(
        """
        DELETE FROM esi_service_cache
        WHERE cache_key LIKE ? ESCAPE '\\' OR tags LIKE ? ESCAPE '\\'
        """,
        (f"%{_like_escape(pattern)}%", f'%{_like_escape(json.dumps(pattern))}%'),
    )


async def delete_for_entity(repo: Repository, entity_id: int) -> int:
    """Delete every entry owned by an entity."""
    return await repo.execute_write(
        "DELETE FROM esi_service_cache WHERE entity_id = ?",
        (entity_id,),
    )


async def delete_expired(repo: Repository, now: datetime) -> int:
    """Delete entries whose expiry has passed."""
    deleted = await repo.execute_write(
        "DELETE FROM esi_service_cache WHERE expires_at <= ?",
        (to_db_time(now),),
    )
    if deleted:
        logger.debug("Deleted %d expired cache rows", deleted)
    return deleted


async def count_entries(repo: Repository, now: datetime | None = None) -> int:
    """Count entries, optionally only the unexpired ones."""
    if now is None:
        row = await repo.fetchone("SELECT COUNT(*) AS n FROM esi_service_cache")
    else:
        row = await repo.fetchone(
            "SELECT COUNT(*) AS n FROM esi_service_cache WHERE expires_at > ?",
            (to_db_time(now),),
        )
    return int(row["n"]) if row else 0


async def clear(repo: Repository) -> int:
    """Delete every cache entry."""
    return await repo.execute_write("DELETE FROM esi_service_cache")
