"""Member audit snapshots and the per-character sync cycle.

A sync cycle moves the character's metadata row through
``pending → syncing → completed | failed``. Entering ``syncing`` is a
single conditional upsert, so concurrent syncs for one character cannot
both start; a ``syncing`` row older than SYNC_LOCK_TIMEOUT is treated as
a crashed cycle and taken over.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterable
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from data.repositories import sync_metadata
from models.app import AuditData, SyncMetadata, SyncResult, SyncStatus
from services.request_service import DATA_TYPE_ENDPOINTS
from utils.exceptions import RepositoryError, SyncConflictError
from utils.metrics import get_metrics, timed

from .base import BaseAdapter

if TYPE_CHECKING:
    from data.repositories import Repository
    from services.cache_manager import CacheManager
    from services.request_service import RequestService
    from services.token_manager import TokenManager

logger = logging.getLogger(__name__)

SYNC_LOCK_TIMEOUT = timedelta(minutes=5)
AUDIT_MODULES = tuple(DATA_TYPE_ENDPOINTS)

_STORE_ERRORS = (sqlite3.Error, OSError, ValueError)


class MemberAuditAdapter(BaseAdapter):
    """Full character snapshots for corporation member audits."""

    def __init__(
        self,
        request_service: RequestService,
        token_manager: TokenManager,
        cache_manager: CacheManager,
        repository: Repository,
    ) -> None:
        super().__init__(request_service, token_manager, cache_manager)
        self._repo = repository

    async def get_complete_audit_data(
        self, entity_id: int, modules: Iterable[str] | None = None
    ) -> AuditData:
        """Fetch every audit module concurrently.

        Modules that fail are listed in ``errors`` and left empty.
        """
        wanted = list(modules) if modules is not None else list(AUDIT_MODULES)
        result = await self._request_service.get_entity_data(entity_id, wanted)
        return _to_audit_data(entity_id, result.data, result.errors)

    @timed("sync.cycle")
    async def sync_entity(
        self, entity_id: int, modules: Iterable[str] | None = None
    ) -> SyncResult:
        """Run one sync cycle: fetch fresh data and record the outcome.

        Args:
            entity_id: Character ID
            modules: Audit modules to sync (defaults to all)

        Returns:
            The cycle outcome; ``failed`` only when every module failed

        Raises:
            SyncConflictError: If a cycle for this character started less
                than SYNC_LOCK_TIMEOUT ago and has not finished
            RepositoryError: If the sync metadata cannot be written
        """
        wanted = list(modules) if modules is not None else list(AUDIT_MODULES)
        started_at = datetime.now(UTC)
        await self._begin(entity_id, started_at)
        logger.info("Sync started for %d (%d modules)", entity_id, len(wanted))

        try:
            # Fetch fresh data rather than what earlier views cached
            await self.invalidate_entity_cache(entity_id)
            audit = await self.get_complete_audit_data(entity_id, wanted)
        except Exception as e:
            await self._finish(
                SyncMetadata(
                    entity_id=entity_id,
                    sync_status=SyncStatus.FAILED,
                    sync_progress={module: "failed" for module in wanted},
                    sync_errors=[str(e)],
                    last_update_at=datetime.now(UTC),
                )
            )
            raise

        completed = [module for module in wanted if module not in audit.errors]
        status = SyncStatus.COMPLETED if completed else SyncStatus.FAILED
        finished_at = datetime.now(UTC)

        metadata = SyncMetadata(
            entity_id=entity_id,
            sync_status=status,
            sync_progress={
                module: "failed" if module in audit.errors else "completed"
                for module in wanted
            },
            sync_errors=[f"{name}: {error}" for name, error in audit.errors.items()],
            last_update_at=finished_at,
        )
        if status == SyncStatus.COMPLETED:
            metadata.summary = audit.summary()
            metadata.last_full_sync_at = finished_at
        else:
            # Keep the figures of the last good cycle
            try:
                previous = await self._read(entity_id)
            except RepositoryError as e:
                logger.warning("Previous sync summary unavailable for %d: %s", entity_id, e)
                previous = None
            if previous is not None:
                metadata.summary = previous.summary
                metadata.last_full_sync_at = previous.last_full_sync_at
        await self._finish(metadata)

        get_metrics().increment(f"sync.{status.value}")
        if status == SyncStatus.FAILED:
            logger.error("Sync failed for %d: every module failed", entity_id)
        elif audit.errors:
            logger.warning(
                "Sync for %d completed with %d failed modules: %s",
                entity_id,
                len(audit.errors),
                ", ".join(audit.errors),
            )
        else:
            logger.info("Sync completed for %d", entity_id)

        return SyncResult(
            entity_id=entity_id,
            status=status,
            modules_completed=completed,
            errors=audit.errors,
            started_at=started_at,
            finished_at=finished_at,
        )

    async def get_sync_status(self, entity_id: int) -> SyncMetadata:
        """Current sync metadata (``pending`` if the character never synced)."""
        metadata = await self._read(entity_id)
        return metadata or SyncMetadata(entity_id=entity_id)

    async def _begin(self, entity_id: int, now: datetime) -> None:
        try:
            acquired = await sync_metadata.try_begin_sync(
                self._repo, entity_id, now, now - SYNC_LOCK_TIMEOUT
            )
        except _STORE_ERRORS as e:
            raise RepositoryError(f"Could not start sync for {entity_id}: {e}") from e
        if not acquired:
            current = await self._read(entity_id)
            started = current.last_update_at if current else None
            logger.info("Sync for %d rejected: already running since %s", entity_id, started)
            raise SyncConflictError(entity_id, started)

    async def _read(self, entity_id: int) -> SyncMetadata | None:
        try:
            return await sync_metadata.get_metadata(self._repo, entity_id)
        except _STORE_ERRORS as e:
            raise RepositoryError(f"Could not read sync status for {entity_id}: {e}") from e

    async def _finish(self, metadata: SyncMetadata) -> None:
        try:
            await sync_metadata.upsert_metadata(self._repo, metadata)
        except _STORE_ERRORS as e:
            raise RepositoryError(
                f"Could not record sync result for {metadata.entity_id}: {e}"
            ) from e


def _to_audit_data(
    entity_id: int, data: dict[str, Any], errors: dict[str, str]
) -> AuditData:
    wallet = data.get("wallet")
    return AuditData(
        entity_id=entity_id,
        basic=data.get("basic"),
        location=data.get("location"),
        ship=data.get("ship"),
        online=data.get("online"),
        skills=data.get("skills"),
        skill_queue=data.get("skill_queue") or [],
        wallet_balance=float(wallet) if wallet is not None else None,
        assets=data.get("assets") or [],
        clones=data.get("clones"),
        implants=data.get("implants") or [],
        contacts=data.get("contacts") or [],
        errors=dict(errors),
    )
