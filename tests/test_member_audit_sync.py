"""Tests for member audit snapshots and the sync state machine."""

import asyncio
import sqlite3
from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio
from conftest import ENTITY_ID

from data.repositories import sync_metadata
from models.app import SyncMetadata, SyncStatus
from services.adapters import MemberAuditAdapter
from services.adapters.member_audit import AUDIT_MODULES
from utils.exceptions import RepositoryError, SyncConflictError
from utils.metrics import get_metrics

CHAR = f"/characters/{ENTITY_ID}"


@pytest_asyncio.fixture
async def audit(stack):
    return MemberAuditAdapter(stack.service, stack.token_manager, stack.cache, stack.repo)


def _serve_some_modules(stack, balance=5_000_000.0):
    stack.proxy.responses.update(
        {
            f"{CHAR}/": {"name": "Some Pilot", "security_status": 2.5},
            f"{CHAR}/wallet/": balance,
            f"{CHAR}/skills/": {"skills": [], "total_sp": 5_000_000, "unallocated_sp": 1000},
            f"{CHAR}/implants/": [9899, 9941],
        }
    )


async def _mark_syncing(repo, started_ago: timedelta):
    await sync_metadata.upsert_metadata(
        repo,
        SyncMetadata(
            entity_id=ENTITY_ID,
            sync_status=SyncStatus.SYNCING,
            last_update_at=datetime.now(UTC) - started_ago,
        ),
    )


class TestAuditData:
    @pytest.mark.asyncio
    async def test_complete_audit_data_with_failed_modules(self, audit, stack):
        _serve_some_modules(stack)

        data = await audit.get_complete_audit_data(ENTITY_ID)

        assert data.wallet_balance == 5_000_000.0
        assert data.implants == [9899, 9941]
        assert data.skills["total_sp"] == 5_000_000
        assert data.location is None
        assert data.contacts == []
        assert set(data.errors) == set(AUDIT_MODULES) - {"basic", "wallet", "skills", "implants"}

        summary = data.summary()
        assert summary["security_status"] == 2.5
        assert summary["unallocated_sp"] == 1000
        assert summary["implant_count"] == 2

    @pytest.mark.asyncio
    async def test_selected_modules_only(self, audit, stack):
        _serve_some_modules(stack)

        data = await audit.get_complete_audit_data(ENTITY_ID, ["wallet"])

        assert data.errors == {}
        assert stack.proxy.calls_to(f"{CHAR}/skills/") == 0


class TestSyncEntity:
    @pytest.mark.asyncio
    async def test_unsynced_entity_is_pending(self, audit):
        status = await audit.get_sync_status(ENTITY_ID)

        assert status.sync_status == SyncStatus.PENDING
        assert status.last_full_sync_at is None

    @pytest.mark.asyncio
    async def test_partial_sync_completes_with_errors(self, audit, stack):
        _serve_some_modules(stack)

        result = await audit.sync_entity(ENTITY_ID)

        assert result.status == SyncStatus.COMPLETED
        assert result.is_partial
        assert set(result.modules_completed) == {"basic", "wallet", "skills", "implants"}
        assert "location" in result.errors

        status = await audit.get_sync_status(ENTITY_ID)
        assert status.sync_status == SyncStatus.COMPLETED
        assert status.sync_progress["wallet"] == "completed"
        assert status.sync_progress["location"] == "failed"
        assert status.summary["wallet_balance"] == 5_000_000.0
        assert status.last_full_sync_at is not None
        assert any(error.startswith("location:") for error in status.sync_errors)

    @pytest.mark.asyncio
    async def test_every_module_failing_marks_sync_failed(self, audit):
        result = await audit.sync_entity(ENTITY_ID, ["wallet", "skills"])

        assert result.status == SyncStatus.FAILED
        assert result.modules_completed == []

        status = await audit.get_sync_status(ENTITY_ID)
        assert status.sync_status == SyncStatus.FAILED
        assert status.sync_progress == {"wallet": "failed", "skills": "failed"}
        assert status.last_full_sync_at is None

    @pytest.mark.asyncio
    async def test_failed_sync_keeps_last_good_summary(self, audit, stack):
        _serve_some_modules(stack)
        await audit.sync_entity(ENTITY_ID)
        good = await audit.get_sync_status(ENTITY_ID)

        stack.proxy.responses.clear()
        await stack.cache.clear_all()
        result = await audit.sync_entity(ENTITY_ID)

        status = await audit.get_sync_status(ENTITY_ID)
        assert result.status == SyncStatus.FAILED
        assert status.summary == good.summary
        assert status.last_full_sync_at == good.last_full_sync_at

    @pytest.mark.asyncio
    async def test_sync_bypasses_previously_cached_data(self, audit, stack):
        _serve_some_modules(stack, balance=1.0)
        await audit.get_complete_audit_data(ENTITY_ID, ["wallet"])
        stack.proxy.responses[f"{CHAR}/wallet/"] = 2.0

        await audit.sync_entity(ENTITY_ID, ["wallet"])

        status = await audit.get_sync_status(ENTITY_ID)
        assert status.summary["wallet_balance"] == 2.0

    @pytest.mark.asyncio
    async def test_recent_running_sync_is_rejected(self, audit, stack):
        await _mark_syncing(stack.repo, timedelta(seconds=30))

        with pytest.raises(SyncConflictError) as exc_info:
            await audit.sync_entity(ENTITY_ID)

        payload = exc_info.value.to_dict()
        assert payload["status"] == 409
        assert payload["entity_id"] == ENTITY_ID
        assert payload["started_at"] is not None
        assert stack.proxy.calls == []
        assert (await audit.get_sync_status(ENTITY_ID)).sync_status == SyncStatus.SYNCING

    @pytest.mark.asyncio
    async def test_stale_running_sync_is_taken_over(self, audit, stack):
        _serve_some_modules(stack)
        await _mark_syncing(stack.repo, timedelta(minutes=6))

        result = await audit.sync_entity(ENTITY_ID, ["wallet"])

        assert result.status == SyncStatus.COMPLETED
        assert (await audit.get_sync_status(ENTITY_ID)).sync_status == SyncStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_concurrent_syncs_only_one_runs(self, audit, stack):
        _serve_some_modules(stack)
        stack.proxy.delay = 0.05

        results = await asyncio.gather(
            audit.sync_entity(ENTITY_ID, ["wallet"]),
            audit.sync_entity(ENTITY_ID, ["wallet"]),
            return_exceptions=True,
        )

        conflicts = [r for r in results if isinstance(r, SyncConflictError)]
        assert len(conflicts) == 1
        assert stack.proxy.calls_to(f"{CHAR}/wallet/") == 1

    @pytest.mark.asyncio
    async def test_unexpected_error_marks_sync_failed(self, audit, stack):
        async def broken(entity_id, data_types=("all",)):
            raise RuntimeError("boom")

        stack.service.get_entity_data = broken

        with pytest.raises(RuntimeError):
            await audit.sync_entity(ENTITY_ID, ["wallet"])

        status = await audit.get_sync_status(ENTITY_ID)
        assert status.sync_status == SyncStatus.FAILED
        assert status.sync_errors == ["boom"]

    @pytest.mark.asyncio
    async def test_store_failure_is_wrapped(self, audit, stack):
        await stack.repo.execute("DROP TABLE esi_sync_metadata")

        with pytest.raises(RepositoryError):
            await audit.sync_entity(ENTITY_ID)

    @pytest.mark.asyncio
    async def test_unreadable_previous_summary_still_marks_failed(
        self, audit, stack, monkeypatch
    ):
        read_metadata = sync_metadata.get_metadata

        async def locked(repo, entity_id):
            raise sqlite3.OperationalError("database is locked")

        monkeypatch.setattr(sync_metadata, "get_metadata", locked)

        result = await audit.sync_entity(ENTITY_ID, ["wallet"])

        assert result.status == SyncStatus.FAILED
        row = await read_metadata(stack.repo, ENTITY_ID)
        assert row.sync_status == SyncStatus.FAILED
        assert row.sync_progress == {"wallet": "failed"}

    @pytest.mark.asyncio
    async def test_sync_cycles_are_timed_and_counted(self, audit, stack):
        _serve_some_modules(stack)

        await audit.sync_entity(ENTITY_ID, ["wallet"])
        await audit.sync_entity(ENTITY_ID, ["location"])

        metrics = get_metrics()
        assert metrics.get_stats("sync.cycle")["count"] == 2
        assert metrics.get_count("sync.completed") == 1
        assert metrics.get_count("sync.failed") == 1
