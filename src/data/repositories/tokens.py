"""Repository functions for stored OAuth tokens."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import TYPE_CHECKING

from models.app import TokenRecord

from .repository import from_db_time, to_db_time

if TYPE_CHECKING:
    from .repository import Repository

logger = logging.getLogger(__name__)

_COLUMNS = """
    entity_id, access_token, refresh_token, expires_at, scopes,
    validation_failures, auto_refresh_enabled, last_validated_at
"""


def _row_to_record(row) -> TokenRecord:
    return TokenRecord(
        entity_id=row["entity_id"],
        access_token=row["access_token"],
        refresh_token=row["refresh_token"],
        expires_at=from_db_time(row["expires_at"]),
        scopes=json.loads(row["scopes"] or "[]"),
        validation_failures=row["validation_failures"],
        auto_refresh_enabled=bool(row["auto_refresh_enabled"]),
        last_validated_at=from_db_time(row["last_validated_at"]),
    )


async def get_token(repo: Repository, entity_id: int) -> TokenRecord | None:
    """Get the token record for an entity, if any."""
    row = await repo.fetchone(
        f"SELECT {_COLUMNS} FROM esi_service_tokens WHERE entity_id = ?",
        (entity_id,),
    )
    return _row_to_record(row) if row else None


async def list_tokens(repo: Repository) -> list[TokenRecord]:
    """Get every stored token record."""
    rows = await repo.fetchall(
        f"SELECT {_COLUMNS} FROM esi_service_tokens ORDER BY entity_id"
    )
    return [_row_to_record(row) for row in rows]


async def upsert_token(repo: Repository, record: TokenRecord) -> None:
    """Insert or replace the token record for an entity."""
    await repo.execute_write(
        """
        INSERT INTO esi_service_tokens (
            entity_id, access_token, refresh_token, expires_at, scopes,
            validation_failures, auto_refresh_enabled, last_validated_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(entity_id) DO UPDATE SET
            access_token = excluded.access_token,
            refresh_token = excluded.refresh_token,
            expires_at = excluded.expires_at,
            scopes = excluded.scopes,
            validation_failures = excluded.validation_failures,
            auto_refresh_enabled = excluded.auto_refresh_enabled,
            last_validated_at = excluded.last_validated_at
        """,
        (
            record.entity_id,
            record.access_token,
            record.refresh_token,
            to_db_time(record.expires_at),
            json.dumps(sorted(set(record.scopes))),
            record.validation_failures,
            int(record.auto_refresh_enabled),
            to_db_time(record.last_validated_at) if record.last_validated_at else None,
        ),
    )


async def record_failure(
    repo: Repository, entity_id: int, max_failures: int
) -> TokenRecord | None:
    """Count a failed refresh, disabling auto refresh at the threshold.

    Returns:
        The updated record, or None if the entity has no token
    """
    await repo.execute_write(
        """
        UPDATE esi_service_tokens
        SET validation_failures = validation_failures + 1,
            auto_refresh_enabled = CASE
                WHEN validation_failures + 1 >= ? THEN 0
                ELSE auto_refresh_enabled
            END
        WHERE entity_id = ?
        """,
        (max_failures, entity_id),
    )
    return await get_token(repo, entity_id)


async def get_expiring_before(repo: Repository, cutoff: datetime) -> list[int]:
    """Entities with auto refresh enabled whose token expires before `cutoff`."""
    rows = await repo.fetchall(
        """
        SELECT entity_id FROM esi_service_tokens
        WHERE expires_at < ? AND auto_refresh_enabled = 1
        ORDER BY expires_at
        """,
        (to_db_time(cutoff),),
    )
    return [row["entity_id"] for row in rows]


async def delete_invalid(
    repo: Repository, expired_before: datetime, min_failures: int
) -> int:
    """Delete tokens expired before `expired_before` with at least `min_failures`.

    Returns:
        Number of tokens deleted
    """
    deleted = await repo.execute_write(
        """
        DELETE FROM esi_service_tokens
        WHERE expires_at < ? AND validation_failures >= ?
        """,
        (to_db_time(expired_before), min_failures),
    )
    if deleted:
        logger.info("Deleted %d invalid tokens", deleted)
    return deleted


async def delete_token(repo: Repository, entity_id: int) -> bool:
    """Delete the token of an entity (e.g. on logout)."""
    return (
        await repo.execute_write(
            "DELETE FROM esi_service_tokens WHERE entity_id = ?", (entity_id,)
        )
        > 0
    )
