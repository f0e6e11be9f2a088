"""Traffic and health monitoring for the ESI access layer.

The request service reports every proxied attempt and every cache hit
here. The monitor keeps a bounded, time-windowed log of those reports and
derives request totals, per-endpoint statistics, recent errors and an
overall health summary that also covers tokens and the cache.
"""

from __future__ import annotations

import asyncio
import logging
import re
import sqlite3
import time
from collections import deque
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from data.repositories import tokens
from models.app import (
    EndpointStats,
    EsiMetrics,
    HealthSummary,
    OverallHealth,
    RequestLogEntry,
    TokenHealth,
    TokenHealthCounts,
)
from utils import global_config
from utils.exceptions import RepositoryError
from utils.metrics import get_metrics

if TYPE_CHECKING:
    from data.repositories import Repository
    from models.app import CacheStats
    from services.cache_manager import CacheManager

logger = logging.getLogger(__name__)

WINDOW = timedelta(hours=1)
MAX_LOG_ENTRIES = 1000
METRICS_TTL_SECONDS = 60.0

_NUMERIC_SEGMENT = re.compile(r"/\d+(?=/|$)")
_STORE_ERRORS = (sqlite3.Error, OSError, ValueError)


def endpoint_template(endpoint: str) -> str:
    """Fold numeric path segments so stats group per endpoint, not per ID.

    ``/characters/123/wallet/`` becomes ``/characters/{id}/wallet/``.
    """
    return _NUMERIC_SEGMENT.sub("/{id}", endpoint)


class EsiMonitor:
    """Windowed request log plus token and cache health views."""

    def __init__(
        self,
        repository: Repository,
        cache_manager: CacheManager,
        window: timedelta = WINDOW,
        max_entries: int = MAX_LOG_ENTRIES,
        metrics_ttl: float = METRICS_TTL_SECONDS,
        expiring_threshold_minutes: float | None = None,
    ) -> None:
        """Initialize the monitor.

        Args:
            repository: Store holding the token table
            cache_manager: Cache whose stats are reported
            window: How far back request totals look
            max_entries: Size bound of the request log
            metrics_ttl: Seconds a computed EsiMetrics is reused
            expiring_threshold_minutes: Tokens closer to expiry count as
                expiring soon (defaults to the token refresh buffer)
        """
        self.repository = repository
        self.cache_manager = cache_manager
        self.window = window
        self.metrics_ttl = metrics_ttl
        self.expiring_threshold = timedelta(
            minutes=expiring_threshold_minutes
            or global_config.token.refresh_buffer_minutes
        )
        self._log: deque[RequestLogEntry] = deque(maxlen=max_entries)
        self._metrics_cache: tuple[float, EsiMetrics] | None = None

    def record_request(
        self,
        endpoint: str,
        status_code: int | None = None,
        duration_ms: float = 0.0,
        cache_hit: bool = False,
        error: str | None = None,
    ) -> None:
        """Add one request attempt or cache hit to the log."""
        self._log.append(
            RequestLogEntry(
                endpoint=endpoint_template(endpoint),
                status_code=status_code,
                duration_ms=max(duration_ms, 0.0),
                cache_hit=cache_hit,
                error=error,
                at=datetime.now(UTC),
            )
        )

    def _window_entries(self) -> list[RequestLogEntry]:
        cutoff = datetime.now(UTC) - self.window
        return [entry for entry in self._log if entry.at >= cutoff]

    async def get_metrics(self) -> EsiMetrics:
        """Request totals over the window, reused for ``metrics_ttl`` seconds."""
        if self._metrics_cache is not None:
            computed_at, cached = self._metrics_cache
            if time.monotonic() - computed_at < self.metrics_ttl:
                return cached

        entries = self._window_entries()
        total = len(entries)
        successful = sum(1 for entry in entries if entry.is_success)
        cache_hits = sum(1 for entry in entries if entry.cache_hit)
        timings = [entry.duration_ms for entry in entries if not entry.cache_hit]

        errors_by_endpoint: dict[str, int] = {}
        for entry in entries:
            if entry.error is not None:
                errors_by_endpoint[entry.endpoint] = (
                    errors_by_endpoint.get(entry.endpoint, 0) + 1
                )

        metrics = EsiMetrics(
            requests_total=total,
            requests_success=successful,
            requests_failed=total - successful,
            cache_hit_rate=round(cache_hits / total * 100, 2) if total else 0.0,
            average_response_time_ms=(
                round(sum(timings) / len(timings), 2) if timings else 0.0
            ),
            errors_by_endpoint=errors_by_endpoint,
            token_refresh_count=get_metrics().get_stats("token.refresh")["count"],
            rate_limit_hits=sum(1 for entry in entries if entry.status_code == 429),
            last_updated=datetime.now(UTC),
        )
        self._metrics_cache = (time.monotonic(), metrics)
        return metrics

    def clear_metrics_cache(self) -> None:
        self._metrics_cache = None

    async def get_token_health(self) -> list[TokenHealth]:
        """Expiry and failure state of every stored token, soonest first.

        Raises:
            RepositoryError: If the token table cannot be read
        """
        try:
            records = await tokens.list_tokens(self.repository)
        except _STORE_ERRORS as e:
            raise RepositoryError(f"Could not read tokens for health check: {e}") from e

        now = datetime.now(UTC)
        health = []
        for record in sorted(records, key=lambda r: r.expires_at):
            remaining = (record.expires_at - now).total_seconds()
            health.append(
                TokenHealth(
                    entity_id=record.entity_id,
                    expires_in=max(remaining, 0.0),
                    is_expired=remaining <= 0,
                    last_refresh=record.last_validated_at,
                    validation_failures=record.validation_failures,
                    auto_refresh_enabled=record.auto_refresh_enabled,
                    scopes=record.scopes,
                )
            )
        return health

    def get_endpoint_stats(self, limit: int = 10) -> list[EndpointStats]:
        """Per-endpoint totals over the whole log, busiest first."""
        grouped: dict[str, list[RequestLogEntry]] = {}
        for entry in self._log:
            grouped.setdefault(entry.endpoint, []).append(entry)

        stats = []
        for endpoint, entries in grouped.items():
            timings = [entry.duration_ms for entry in entries if not entry.cache_hit]
            last_failure = next(
                (entry for entry in reversed(entries) if entry.error is not None), None
            )
            successes = sum(1 for entry in entries if entry.is_success)
            stats.append(
                EndpointStats(
                    endpoint=endpoint,
                    total_requests=len(entries),
                    success_rate=round(successes / len(entries) * 100, 2),
                    average_response_time_ms=(
                        round(sum(timings) / len(timings), 2) if timings else 0.0
                    ),
                    last_error=last_failure.error if last_failure else None,
                    last_error_at=last_failure.at if last_failure else None,
                )
            )

        stats.sort(key=lambda s: s.total_requests, reverse=True)
        return stats[:limit]

    def get_recent_errors(self, limit: int = 20) -> list[RequestLogEntry]:
        """Failed attempts, newest first."""
        errors = [entry for entry in reversed(self._log) if entry.error is not None]
        return errors[:limit]

    async def get_cache_stats(self) -> CacheStats:
        return await self.cache_manager.get_stats()

    async def get_health_summary(self) -> HealthSummary:
        """Traffic, token and cache health in one view.

        The overall state is degraded when failures are not outnumbered by
        successes. A window without traffic counts as healthy.
        """
        metrics, token_health, cache_stats = await asyncio.gather(
            self.get_metrics(),
            self.get_token_health(),
            self.get_cache_stats(),
        )

        threshold = self.expiring_threshold.total_seconds()
        expired = sum(1 for t in token_health if t.is_expired)
        expiring = sum(
            1 for t in token_health if not t.is_expired and t.expires_in < threshold
        )

        if metrics.requests_total == 0 or (
            metrics.requests_success > metrics.requests_failed
        ):
            overall = OverallHealth.HEALTHY
        else:
            overall = OverallHealth.DEGRADED
            logger.warning(
                "ESI access degraded: %d of %d requests failed in the last %s",
                metrics.requests_failed,
                metrics.requests_total,
                self.window,
            )

        return HealthSummary(
            overall=overall,
            metrics=metrics,
            tokens=TokenHealthCounts(
                total=len(token_health),
                expired=expired,
                expiring_soon=expiring,
                healthy=len(token_health) - expired - expiring,
            ),
            cache=cache_stats,
        )

    def report(self, log: logging.Logger | None = None) -> str:
        """Human-readable dump of the collected timings and counters."""
        return get_metrics().report(log or logger)
