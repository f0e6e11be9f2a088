"""Sync metadata models for aggregate adapters."""

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class SyncStatus(StrEnum):
    """Lifecycle of a per-entity sync cycle."""

    PENDING = "pending"
    SYNCING = "syncing"
    COMPLETED = "completed"
    FAILED = "failed"


class SyncMetadata(BaseModel):
    """One row per entity; doubles as the sync lock."""

    entity_id: int
    sync_status: SyncStatus = SyncStatus.PENDING
    sync_progress: dict[str, str] = Field(
        default_factory=dict, description="Module name to completed/failed"
    )
    sync_errors: list[str] = Field(default_factory=list)
    summary: dict[str, Any] = Field(
        default_factory=dict, description="Figures from the last audit snapshot"
    )
    last_update_at: datetime | None = None
    last_full_sync_at: datetime | None = None


class SyncResult(BaseModel):
    """What a finished sync cycle reports back to its caller."""

    entity_id: int
    status: SyncStatus
    modules_completed: list[str] = Field(default_factory=list)
    errors: dict[str, str] = Field(default_factory=dict)
    started_at: datetime
    finished_at: datetime

    @property
    def is_partial(self) -> bool:
        return self.status == SyncStatus.COMPLETED and bool(self.errors)
