"""OAuth token lifecycle for ESI characters.

The manager hands out access tokens that are guaranteed not to be expired,
refreshing them through the token refresh endpoint when they fall inside
the refresh buffer. Concurrent refreshes for one character share a single
in-flight future; repeated failures disable auto refresh so a dead refresh
token is not retried forever.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from data.repositories import tokens
from models.app import TokenRecord, TokenStats, TokenValidation
from utils import global_config
from utils.exceptions import (
    TokenError,
    TokenNotFoundError,
    TokenRefreshDisabledError,
)
from utils.metrics import get_metrics

if TYPE_CHECKING:
    from data.clients import TokenRefreshClient
    from data.repositories import Repository

logger = logging.getLogger(__name__)

_STORE_ERRORS = (sqlite3.Error, OSError, ValueError)


def _check_entity_id(entity_id: int) -> None:
    if not isinstance(entity_id, int) or isinstance(entity_id, bool) or entity_id <= 0:
        raise ValueError(f"entity_id must be a positive integer, got: {entity_id!r}")


class TokenManager:
    """Keeps per-character access tokens valid."""

    def __init__(
        self,
        repository: Repository,
        refresh_client: TokenRefreshClient,
        refresh_buffer_minutes: float | None = None,
        max_validation_failures: int | None = None,
        stale_token_days: int | None = None,
        refresh_timeout: float | None = None,
    ) -> None:
        """Initialize the token manager.

        Args:
            repository: Persistent store holding the token table
            refresh_client: Collaborator exchanging refresh tokens
            refresh_buffer_minutes: Refresh tokens expiring within this window
            max_validation_failures: Failures before auto refresh is disabled
            stale_token_days: Expiry age after which failed tokens are purged
            refresh_timeout: Seconds to wait for the refresh endpoint
        """
        token_config = global_config.token
        self.repository = repository
        self.refresh_client = refresh_client
        self.refresh_buffer = timedelta(
            minutes=refresh_buffer_minutes or token_config.refresh_buffer_minutes
        )
        self.max_validation_failures = (
            max_validation_failures or token_config.max_validation_failures
        )
        self.stale_token_days = stale_token_days or token_config.stale_token_days
        self.refresh_timeout = refresh_timeout or global_config.esi.token_refresh_timeout

        self._pending_refreshes: dict[int, asyncio.Future[str]] = {}

    async def _load(self, entity_id: int) -> TokenRecord:
        try:
            record = await tokens.get_token(self.repository, entity_id)
        except _STORE_ERRORS as e:
            raise TokenError(
                f"Could not load token for character {entity_id}: {e}", entity_id
            ) from e
        if record is None:
            raise TokenNotFoundError(
                f"No token found for character {entity_id}", entity_id
            )
        return record

    def evaluate(self, record: TokenRecord, now: datetime | None = None) -> TokenValidation:
        """Classify a token against the refresh buffer."""
        now = now or datetime.now(UTC)
        expires_in = (record.expires_at - now).total_seconds()
        return TokenValidation(
            is_valid=expires_in > 0,
            expires_in=expires_in,
            needs_refresh=0 < expires_in < self.refresh_buffer.total_seconds(),
        )

    async def validate_token(self, entity_id: int) -> TokenValidation:
        """Check the stored token of an entity without refreshing it.

        Raises:
            TokenError: If the entity has no token
        """
        _check_entity_id(entity_id)
        return self.evaluate(await self._load(entity_id))

    async def get_valid_token(self, entity_id: int) -> str:
        """Get an access token that is not expired, refreshing if needed.

        Args:
            entity_id: Character ID

        Returns:
            A currently valid access token

        Raises:
            TokenNotFoundError: If the entity has no token
            TokenRefreshDisabledError: If a refresh is needed but auto
                refresh was disabled after repeated failures
            TokenError: If the refresh fails
        """
        _check_entity_id(entity_id)

        pending = self._pending_refreshes.get(entity_id)
        if pending is not None:
            return await pending

        record = await self._load(entity_id)
        validation = self.evaluate(record)
        if validation.is_valid and not validation.needs_refresh:
            return record.access_token

        if not record.auto_refresh_enabled:
            raise TokenRefreshDisabledError(
                f"Auto refresh disabled for character {entity_id} after "
                f"{record.validation_failures} failed refreshes; "
                "re-authentication required",
                entity_id,
            )

        logger.debug(
            "Token for %d expires in %.0fs; refreshing", entity_id, validation.expires_in
        )
        return await self.refresh_token(entity_id, record.refresh_token)

    async def refresh_if_expiring(self, entity_id: int, threshold_minutes: float) -> bool:
        """Refresh a token that expires within `threshold_minutes`.

        Unlike ``get_valid_token`` the window is the caller's, not the
        manager's refresh buffer.

        Returns:
            Whether a refresh ran (or an in-flight one was joined)

        Raises:
            TokenNotFoundError: If the entity has no token
            TokenRefreshDisabledError: If auto refresh is disabled
            TokenError: If the refresh fails
        """
        _check_entity_id(entity_id)

        pending = self._pending_refreshes.get(entity_id)
        if pending is not None:
            await pending
            return True

        record = await self._load(entity_id)
        expires_in = (record.expires_at - datetime.now(UTC)).total_seconds()
        if expires_in > threshold_minutes * 60:
            return False

        if not record.auto_refresh_enabled:
            raise TokenRefreshDisabledError(
                f"Auto refresh disabled for character {entity_id} after "
                f"{record.validation_failures} failed refreshes; "
                "re-authentication required",
                entity_id,
            )

        await self.refresh_token(entity_id, record.refresh_token)
        return True

    async def refresh_token(self, entity_id: int, refresh_token: str) -> str:
        """Refresh a token, joining an in-flight refresh for the same entity.

        Args:
            entity_id: Character ID
            refresh_token: Refresh token to exchange

        Returns:
            The new access token

        Raises:
            TokenError: If the exchange fails or times out
        """
        _check_entity_id(entity_id)

        existing = self._pending_refreshes.get(entity_id)
        if existing is not None:
            return await existing

        loop = asyncio.get_running_loop()
        fut: asyncio.Future[str] = loop.create_future()
        self._pending_refreshes[entity_id] = fut
        try:
            access_token = await self._perform_refresh(entity_id, refresh_token)
            fut.set_result(access_token)
            return access_token
        except asyncio.CancelledError:
            fut.cancel()
            raise
        except Exception as exc:
            if not fut.done():
                fut.set_exception(exc)
                # Waiters re-raise it; mark it retrieved for the no-waiter case
                fut.exception()
            raise
        finally:
            self._pending_refreshes.pop(entity_id, None)

    async def _perform_refresh(self, entity_id: int, refresh_token: str) -> str:
        try:
            with get_metrics().time_operation("token.refresh"):
                result = await asyncio.wait_for(
                    self.refresh_client.exchange_refresh_token(entity_id, refresh_token),
                    timeout=self.refresh_timeout,
                )
        except TimeoutError as e:
            await self._record_failure(entity_id)
            raise TokenError(
                f"Token refresh for character {entity_id} timed out after "
                f"{self.refresh_timeout}s",
                entity_id,
            ) from e
        except Exception as e:
            await self._record_failure(entity_id)
            raise TokenError(
                f"Token refresh failed for character {entity_id}: {e}", entity_id
            ) from e

        now = datetime.now(UTC)
        try:
            previous = await tokens.get_token(self.repository, entity_id)
        except _STORE_ERRORS as e:
            logger.warning("Could not read token %d before update: %s", entity_id, e)
            previous = None

        record = TokenRecord(
            entity_id=entity_id,
            access_token=result["access_token"],
            refresh_token=result.get("refresh_token") or refresh_token,
            expires_at=now + timedelta(seconds=result["expires_in"]),
            scopes=previous.scopes if previous else [],
            validation_failures=0,
            auto_refresh_enabled=True,
            last_validated_at=now,
        )
        try:
            await tokens.upsert_token(self.repository, record)
        except _STORE_ERRORS as e:
            logger.error("Refreshed token for %d could not be stored: %s", entity_id, e)

        logger.info("Token refreshed for character %d", entity_id)
        return record.access_token

    async def _record_failure(self, entity_id: int) -> None:
        get_metrics().increment("token.refresh_failed")
        try:
            record = await tokens.record_failure(
                self.repository, entity_id, self.max_validation_failures
            )
        except _STORE_ERRORS as e:
            logger.error("Could not record refresh failure for %d: %s", entity_id, e)
            return

        if record is None:
            return
        if not record.auto_refresh_enabled:
            logger.error(
                "Auto refresh disabled for character %d after %d failures",
                entity_id,
                record.validation_failures,
            )
        else:
            logger.warning(
                "Token refresh failure %d/%d for character %d",
                record.validation_failures,
                self.max_validation_failures,
                entity_id,
            )

    async def validate_scopes(self, entity_id: int, required: list[str]) -> bool:
        """Whether the stored token grants every required scope.

        Reads only the stored record; never calls the network.
        """
        if not required:
            return True
        try:
            record = await self._load(entity_id)
        except TokenError as e:
            logger.debug("Scope check for %s failed: %s", entity_id, e)
            return False
        return record.has_scopes(required)

    async def get_expired_tokens(self, threshold_minutes: float | None = None) -> list[int]:
        """Entities with auto refresh enabled whose token expires soon.

        Args:
            threshold_minutes: Window to look ahead (defaults to the refresh buffer)
        """
        window = (
            timedelta(minutes=threshold_minutes)
            if threshold_minutes is not None
            else self.refresh_buffer
        )
        try:
            return await tokens.get_expiring_before(
                self.repository, datetime.now(UTC) + window
            )
        except _STORE_ERRORS as e:
            logger.error("Could not list expiring tokens: %s", e)
            return []

    async def force_refresh(self, entity_id: int) -> str:
        """Refresh a token now, regardless of its expiry or failure count."""
        _check_entity_id(entity_id)
        record = await self._load(entity_id)
        return await self.refresh_token(entity_id, record.refresh_token)

    async def register_token(
        self,
        entity_id: int,
        access_token: str,
        refresh_token: str,
        expires_in: int,
        scopes: list[str] | None = None,
    ) -> TokenRecord:
        """Store the tokens produced by an external authorization.

        Raises:
            TokenError: If the record cannot be stored
        """
        _check_entity_id(entity_id)
        now = datetime.now(UTC)
        record = TokenRecord(
            entity_id=entity_id,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=now + timedelta(seconds=expires_in),
            scopes=scopes or [],
            last_validated_at=now,
        )
        try:
            await tokens.upsert_token(self.repository, record)
        except _STORE_ERRORS as e:
            raise TokenError(
                f"Could not store token for character {entity_id}: {e}", entity_id
            ) from e
        logger.info("Registered token for character %d", entity_id)
        return record

    async def cleanup_invalid_tokens(self) -> int:
        """Delete tokens expired for long enough that also keep failing.

        Returns:
            Number of tokens deleted
        """
        cutoff = datetime.now(UTC) - timedelta(days=self.stale_token_days)
        try:
            return await tokens.delete_invalid(
                self.repository, cutoff, self.max_validation_failures
            )
        except _STORE_ERRORS as e:
            logger.error("Token cleanup failed: %s", e)
            return 0

    async def get_token_stats(self) -> TokenStats:
        """Counts of valid, expiring, expired and failing tokens."""
        try:
            records = await tokens.list_tokens(self.repository)
        except _STORE_ERRORS as e:
            logger.error("Could not read token stats: %s", e)
            return TokenStats()

        now = datetime.now(UTC)
        stats = TokenStats(total=len(records))
        for record in records:
            validation = self.evaluate(record, now)
            if not validation.is_valid:
                stats.expired += 1
            elif validation.needs_refresh:
                stats.expiring += 1
            else:
                stats.valid += 1
            if record.validation_failures > 0:
                stats.failed += 1
            if not record.auto_refresh_enabled:
                stats.auto_refresh_disabled += 1
        return stats
