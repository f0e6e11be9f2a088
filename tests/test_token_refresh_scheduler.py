"""Tests for the background token refresh scheduler."""

import asyncio
from datetime import timedelta

import pytest
from conftest import FakeRefreshClient, make_token

from data.repositories import tokens
from services.token_manager import TokenManager
from services.token_refresh_scheduler import TokenRefreshScheduler


@pytest.fixture
def client():
    return FakeRefreshClient()


@pytest.fixture
def manager(repo, client):
    return TokenManager(repo, client, refresh_buffer_minutes=10, refresh_timeout=1)


@pytest.mark.asyncio
async def test_check_refreshes_only_expiring_tokens(repo, client, manager):
    await tokens.upsert_token(repo, make_token(1, timedelta(minutes=4)))
    await tokens.upsert_token(repo, make_token(2, timedelta(hours=3)))
    scheduler = TokenRefreshScheduler(manager, 5, 10)

    result = await scheduler.check_and_refresh()

    assert result.checked == 1
    assert result.refreshed == 1
    assert result.failed == 0
    assert client.calls == 1
    assert (await tokens.get_token(repo, 1)).access_token == "access-1-1"
    assert (await tokens.get_token(repo, 2)).access_token == "access-2"


@pytest.mark.asyncio
async def test_one_failure_does_not_stop_the_rest(repo, manager):
    await tokens.upsert_token(repo, make_token(1, timedelta(minutes=4)))
    await tokens.upsert_token(repo, make_token(2, timedelta(minutes=6)))

    async def flaky(entity_id, refresh_token):
        if entity_id == 1:
            raise RuntimeError("invalid_grant")
        return {"access_token": "new", "refresh_token": "r", "expires_in": 1200}

    manager.refresh_client.exchange_refresh_token = flaky
    result = await TokenRefreshScheduler(manager, 5, 10).force_check()

    assert result.checked == 2
    assert result.refreshed == 1
    assert result.failed == 1


@pytest.mark.asyncio
async def test_start_is_idempotent_and_stop_cancels(repo, manager):
    scheduler = TokenRefreshScheduler(manager, 5, 10)

    scheduler.start()
    task = scheduler._task
    scheduler.start()
    assert scheduler._task is task
    assert scheduler.get_status().is_running

    await asyncio.sleep(0.05)
    assert scheduler.get_status().last_check_at is not None

    await scheduler.aclose()
    assert task.cancelled()
    assert not scheduler.is_running

    # Stopping twice is a no-op
    scheduler.stop()


@pytest.mark.asyncio
async def test_set_check_interval_restarts_running_loop(manager):
    scheduler = TokenRefreshScheduler(manager, 5, 10)
    scheduler.start()
    first = scheduler._task

    scheduler.set_check_interval(2)

    assert scheduler.check_interval_minutes == 2
    assert scheduler.is_running
    assert scheduler._task is not first
    await scheduler.aclose()


@pytest.mark.asyncio
async def test_interval_and_threshold_validation(manager):
    scheduler = TokenRefreshScheduler(manager, 5, 10)

    with pytest.raises(ValueError):
        scheduler.set_check_interval(0.5)
    with pytest.raises(ValueError):
        scheduler.set_refresh_threshold(0)

    scheduler.set_refresh_threshold(15)
    status = scheduler.get_status()
    assert status.refresh_threshold_minutes == 15
    assert status.is_running is False


@pytest.mark.asyncio
async def test_threshold_beyond_refresh_buffer_still_refreshes(repo, client, manager):
    await tokens.upsert_token(repo, make_token(1, timedelta(minutes=20)))
    scheduler = TokenRefreshScheduler(manager, 5, 10)
    scheduler.set_refresh_threshold(30)

    result = await scheduler.check_and_refresh()

    assert result.checked == 1
    assert result.refreshed == 1
    assert result.skipped == 0
    assert client.calls == 1
    assert (await tokens.get_token(repo, 1)).access_token == "access-1-1"


@pytest.mark.asyncio
async def test_token_outside_threshold_is_not_refreshed(repo, client, manager):
    await tokens.upsert_token(repo, make_token(1, timedelta(hours=2)))

    assert await manager.refresh_if_expiring(1, 30) is False
    assert client.calls == 0
