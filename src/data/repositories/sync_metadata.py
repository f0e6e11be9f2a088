"""Repository functions for per-entity sync metadata.

The `esi_sync_metadata` row of an entity doubles as its sync lock: moving
it to `syncing` is a single conditional upsert, so two callers can never
both win the transition.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import TYPE_CHECKING

from models.app import SyncMetadata, SyncStatus

from .repository import from_db_time, to_db_time

if TYPE_CHECKING:
    from .repository import Repository

logger = logging.getLogger(__name__)


def _row_to_metadata(row) -> SyncMetadata:
    return SyncMetadata(
        entity_id=row["entity_id"],
        sync_status=SyncStatus(row["sync_status"]),
        sync_progress=json.loads(row["sync_progress"] or "{}"),
        sync_errors=json.loads(row["sync_errors"] or "[]"),
        summary=json.loads(row["summary"] or "{}"),
        last_update_at=from_db_time(row["last_update_at"]),
        last_full_sync_at=from_db_time(row["last_full_sync_at"]),
    )


async def get_metadata(repo: Repository, entity_id: int) -> SyncMetadata | None:
    """Get the sync metadata row for an entity."""
    row = await repo.fetchone(
        """
        SELECT entity_id, sync_status, sync_progress, sync_errors, summary,
               last_update_at, last_full_sync_at
        FROM esi_sync_metadata
        WHERE entity_id = ?
        """,
        (entity_id,),
    )
    return _row_to_metadata(row) if row else None


async def upsert_metadata(repo: Repository, metadata: SyncMetadata) -> None:
    """Write the full sync metadata row for an entity."""
    await repo.execute_write(
        """
        INSERT INTO esi_sync_metadata (
            entity_id, sync_status, sync_progress, sync_errors, summary,
            last_update_at, last_full_sync_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(entity_id) DO UPDATE SET
            sync_status = excluded.sync_status,
            sync_progress = excluded.sync_progress,
            sync_errors = excluded.sync_errors,
            summary = excluded.summary,
            last_update_at = excluded.last_update_at,
            last_full_sync_at = excluded.last_full_sync_at
        """,
        (
            metadata.entity_id,
            metadata.sync_status.value,
            json.dumps(metadata.sync_progress),
            json.dumps(metadata.sync_errors),
            json.dumps(metadata.summary, default=str),
            to_db_time(metadata.last_update_at) if metadata.last_update_at else None,
            to_db_time(metadata.last_full_sync_at)
            if metadata.last_full_sync_at
            else None,
        ),
    )


async def try_begin_sync(
    repo: Repository, entity_id: int, now: datetime, stale_before: datetime
) -> bool:
    """Atomically move an entity to `syncing`.

    The transition succeeds when there is no row yet, when the row is not
    syncing, or when its sync started before `stale_before` (a stuck lock).

    Returns:
        True if this caller now owns the sync, False on conflict
    """
    changed = await repo.execute_write(
        """
        INSERT INTO esi_sync_metadata (
            entity_id, sync_status, sync_progress, sync_errors, last_update_at
        ) VALUES (?, 'syncing', '{}', '[]', ?)
        ON CONFLICT(entity_id) DO UPDATE SET
            sync_status = 'syncing',
            sync_progress = '{}',
            sync_errors = '[]',
            last_update_at = excluded.last_update_at
        WHERE esi_sync_metadata.sync_status != 'syncing'
           OR esi_sync_metadata.last_update_at IS NULL
           OR esi_sync_metadata.last_update_at < ?
        """,
        (entity_id, to_db_time(now), to_db_time(stale_before)),
    )
    return changed > 0
