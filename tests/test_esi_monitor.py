"""Tests for request monitoring and the health summary."""

from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio
from conftest import ENTITY_ID, make_token

from data.repositories import tokens
from models.app import OverallHealth
from services.esi_monitor import EsiMonitor, endpoint_template
from utils.exceptions import RepositoryError, UpstreamRequestError
from utils.metrics import get_metrics

WALLET = f"/characters/{ENTITY_ID}/wallet/"
STATUS = "/status/"


def _error(status: int, message: str = "upstream trouble"):
    def handler(endpoint, method, body):
        return {"error": message, "status": status}

    return handler


@pytest_asyncio.fixture
async def monitor(stack):
    esi_monitor = EsiMonitor(stack.repo, stack.cache, expiring_threshold_minutes=10)
    stack.service.monitor = esi_monitor
    return esi_monitor


def test_endpoint_template_folds_ids():
    assert endpoint_template("/characters/123/wallet/") == "/characters/{id}/wallet/"
    assert endpoint_template("/universe/types/34") == "/universe/types/{id}"
    assert endpoint_template("/markets/prices/") == "/markets/prices/"


class TestRequestLog:
    @pytest.mark.asyncio
    async def test_calls_and_cache_hits_are_recorded(self, monitor, stack):
        stack.proxy.responses[STATUS] = {"players": 20000}

        await stack.service.request(STATUS)
        await stack.service.request(STATUS)

        metrics = await monitor.get_metrics()
        assert metrics.requests_total == 2
        assert metrics.requests_success == 2
        assert metrics.requests_failed == 0
        assert metrics.cache_hit_rate == 50.0
        assert metrics.errors_by_endpoint == {}

    @pytest.mark.asyncio
    async def test_every_retry_attempt_is_recorded(self, monitor, stack):
        stack.proxy.responses[WALLET] = _error(502)

        with pytest.raises(UpstreamRequestError):
            await stack.service.request(WALLET, entity_id=ENTITY_ID)

        metrics = await monitor.get_metrics()
        assert metrics.requests_total == 3
        assert metrics.requests_failed == 3
        assert metrics.errors_by_endpoint == {"/characters/{id}/wallet/": 3}

    @pytest.mark.asyncio
    async def test_rate_limited_calls_are_counted(self, monitor, stack):
        stack.proxy.responses[STATUS] = _error(429, "Too many requests")

        with pytest.raises(UpstreamRequestError):
            await stack.service.request(STATUS)

        assert (await monitor.get_metrics()).rate_limit_hits == 1

    @pytest.mark.asyncio
    async def test_metrics_are_reused_until_cleared(self, monitor):
        monitor.record_request(STATUS, 200, duration_ms=10)
        first = await monitor.get_metrics()

        monitor.record_request(STATUS, 200, duration_ms=30)
        assert await monitor.get_metrics() is first

        monitor.clear_metrics_cache()
        refreshed = await monitor.get_metrics()
        assert refreshed.requests_total == 2
        assert refreshed.average_response_time_ms == 20.0

    @pytest.mark.asyncio
    async def test_entries_outside_the_window_are_ignored(self, monitor):
        monitor.record_request(STATUS, 200)
        monitor._log[0] = monitor._log[0].model_copy(
            update={"at": datetime.now(UTC) - timedelta(hours=2)}
        )
        monitor.record_request(STATUS, 200)

        assert (await monitor.get_metrics()).requests_total == 1

    @pytest.mark.asyncio
    async def test_token_refreshes_are_reported(self, monitor):
        get_metrics().record("token.refresh", 12.0)

        assert (await monitor.get_metrics()).token_refresh_count == 1

    @pytest.mark.asyncio
    async def test_log_is_bounded(self, stack):
        small = EsiMonitor(stack.repo, stack.cache, max_entries=3)
        for _ in range(5):
            small.record_request(STATUS, 200)

        assert len(small._log) == 3


class TestEndpointStats:
    @pytest.mark.asyncio
    async def test_stats_are_grouped_and_sorted(self, monitor):
        for _ in range(3):
            monitor.record_request("/characters/1/skills/", 200, duration_ms=40)
        monitor.record_request("/characters/2/skills/", 503, duration_ms=20, error="first")
        monitor.record_request("/characters/2/skills/", 504, duration_ms=20, error="second")
        monitor.record_request(STATUS, 200, duration_ms=5)

        stats = monitor.get_endpoint_stats()

        assert [s.endpoint for s in stats] == ["/characters/{id}/skills/", STATUS]
        skills = stats[0]
        assert skills.total_requests == 5
        assert skills.success_rate == 60.0
        assert skills.average_response_time_ms == 32.0
        assert skills.last_error == "second"
        assert skills.last_error_at is not None

    @pytest.mark.asyncio
    async def test_limit(self, monitor):
        monitor.record_request("/a/", 200)
        monitor.record_request("/b/", 200)

        assert len(monitor.get_endpoint_stats(limit=1)) == 1

    @pytest.mark.asyncio
    async def test_recent_errors_newest_first(self, monitor):
        monitor.record_request(STATUS, None, error="connection refused")
        monitor.record_request(STATUS, 200)
        monitor.record_request(STATUS, 500, error="boom")

        errors = monitor.get_recent_errors()

        assert [e.error for e in errors] == ["boom", "connection refused"]
        assert monitor.get_recent_errors(limit=1)[0].status_code == 500


class TestHealth:
    @pytest.mark.asyncio
    async def test_token_health_soonest_expiry_first(self, monitor, stack):
        await tokens.upsert_token(
            stack.repo, make_token(2, timedelta(minutes=-5), validation_failures=2)
        )
        await tokens.upsert_token(stack.repo, make_token(3, timedelta(minutes=5)))

        health = await monitor.get_token_health()

        assert [t.entity_id for t in health] == [2, 3, ENTITY_ID]
        assert health[0].is_expired
        assert health[0].expires_in == 0
        assert health[0].validation_failures == 2
        assert not health[1].is_expired
        assert 0 < health[1].expires_in <= 300

    @pytest.mark.asyncio
    async def test_summary_counts_tokens_and_includes_cache(self, monitor, stack):
        await tokens.upsert_token(stack.repo, make_token(2, timedelta(minutes=-5)))
        await tokens.upsert_token(stack.repo, make_token(3, timedelta(minutes=5)))
        await stack.cache.set("k", 1, 60)
        await stack.cache.get("k")

        summary = await monitor.get_health_summary()

        assert summary.overall == OverallHealth.HEALTHY
        assert summary.tokens.total == 3
        assert summary.tokens.expired == 1
        assert summary.tokens.expiring_soon == 1
        assert summary.tokens.healthy == 1
        assert summary.cache.hits == 1

    @pytest.mark.asyncio
    async def test_mostly_failing_traffic_is_degraded(self, monitor):
        monitor.record_request(STATUS, 200)
        monitor.record_request(STATUS, 502, error="bad gateway")
        monitor.record_request(STATUS, None, error="timeout")

        summary = await monitor.get_health_summary()

        assert summary.overall == OverallHealth.DEGRADED
        assert summary.metrics.requests_failed == 2

    @pytest.mark.asyncio
    async def test_unreadable_token_table_raises(self, monitor, stack):
        await stack.repo.execute("DROP TABLE esi_service_tokens")

        with pytest.raises(RepositoryError):
            await monitor.get_token_health()

    @pytest.mark.asyncio
    async def test_report(self, monitor):
        get_metrics().record("esi.request", 12.5)

        assert "ESI ACCESS LAYER METRICS" in monitor.report()
