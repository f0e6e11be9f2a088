"""Background loop that refreshes tokens before they expire."""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from models.app import RefreshCheckResult, SchedulerStatus
from utils import global_config

if TYPE_CHECKING:
    from services.token_manager import TokenManager

logger = logging.getLogger(__name__)

MIN_INTERVAL_MINUTES = 1.0
MIN_THRESHOLD_MINUTES = 1.0


class TokenRefreshScheduler:
    """Periodically refreshes tokens that are close to expiry.

    Runs one check immediately on start and then one per interval. Each
    expiring entity goes through ``TokenManager.refresh_if_expiring`` with
    the scheduler's own threshold, sharing the manager's per-entity refresh
    deduplication.
    """

    def __init__(
        self,
        token_manager: TokenManager,
        check_interval_minutes: float | None = None,
        refresh_threshold_minutes: float | None = None,
    ) -> None:
        token_config = global_config.token
        self.token_manager = token_manager
        self.check_interval_minutes = (
            check_interval_minutes or token_config.scheduler_interval_minutes
        )
        self.refresh_threshold_minutes = (
            refresh_threshold_minutes
            or token_config.scheduler_refresh_threshold_minutes
        )
        self._task: asyncio.Task | None = None
        self._last_check_at: datetime | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the refresh loop (no-op if already running)."""
        if self.is_running:
            logger.debug("Token refresh scheduler already running")
            return
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.info(
            "Token refresh scheduler started (every %.1f min)",
            self.check_interval_minutes,
        )

    def stop(self) -> None:
        """Stop the refresh loop (no-op if not running)."""
        if self._task is None:
            return
        self._task.cancel()
        self._task = None
        logger.info("Token refresh scheduler stopped")

    async def aclose(self) -> None:
        """Stop the loop and wait for it to unwind."""
        task = self._task
        self.stop()
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    async def _run(self) -> None:
        while True:
            try:
                await self.check_and_refresh()
            except Exception:
                logger.exception("Token refresh check failed")
            await asyncio.sleep(self.check_interval_minutes * 60)

    async def check_and_refresh(self) -> RefreshCheckResult:
        """Refresh every token expiring within the threshold.

        A failure for one entity is logged and does not stop the others.
        """
        self._last_check_at = datetime.now(UTC)
        entity_ids = await self.token_manager.get_expired_tokens(
            self.refresh_threshold_minutes
        )
        result = RefreshCheckResult(checked=len(entity_ids))
        if not entity_ids:
            return result

        logger.info("Refreshing %d expiring tokens", len(entity_ids))
        outcomes = await asyncio.gather(
            *(
                self.token_manager.refresh_if_expiring(
                    eid, self.refresh_threshold_minutes
                )
                for eid in entity_ids
            ),
            return_exceptions=True,
        )
        for entity_id, outcome in zip(entity_ids, outcomes, strict=True):
            if isinstance(outcome, BaseException):
                result.failed += 1
                logger.warning("Scheduled refresh failed for %d: %s", entity_id, outcome)
            elif outcome:
                result.refreshed += 1
            else:
                result.skipped += 1

        logger.info(
            "Token check done: %d refreshed, %d failed", result.refreshed, result.failed
        )
        return result

    async def force_check(self) -> RefreshCheckResult:
        """Run a check now, outside the regular interval."""
        return await self.check_and_refresh()

    def set_check_interval(self, minutes: float) -> None:
        """Change the interval, restarting the loop if it is running."""
        if minutes < MIN_INTERVAL_MINUTES:
            raise ValueError(
                f"Check interval must be at least {MIN_INTERVAL_MINUTES} minute"
            )
        self.check_interval_minutes = minutes
        if self.is_running:
            self.stop()
            self.start()

    def set_refresh_threshold(self, minutes: float) -> None:
        """Change how far ahead of expiry tokens are refreshed."""
        if minutes < MIN_THRESHOLD_MINUTES:
            raise ValueError(
                f"Refresh threshold must be at least {MIN_THRESHOLD_MINUTES} minute"
            )
        self.refresh_threshold_minutes = minutes

    def get_status(self) -> SchedulerStatus:
        return SchedulerStatus(
            is_running=self.is_running,
            check_interval_minutes=self.check_interval_minutes,
            refresh_threshold_minutes=self.refresh_threshold_minutes,
            last_check_at=self._last_check_at,
        )
