"""Custom exception hierarchy for the ESI access layer.

Provides structured exception classes for the failure modes of the cache,
token, name resolution and request layers. Store and name resolution
failures are absorbed by the services that raise them; token, upstream
and sync conflict errors are surfaced to callers.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any


class ESIAccessError(Exception):
    """Base exception for all ESI access layer errors."""

    pass


class ConfigurationError(ESIAccessError):
    """Exception raised for configuration-related errors."""

    pass


class RepositoryError(ESIAccessError):
    """Base exception for repository/database errors."""

    pass


class CacheIOError(RepositoryError):
    """Exception raised when the persistent store fails a cache operation.

    Always recovered locally: the cache treats it as a miss or a no-op.
    """

    pass


class TokenError(ESIAccessError):
    """Exception raised when no usable access token can be produced."""

    def __init__(self, message: str, entity_id: int | None = None) -> None:
        super().__init__(message)
        self.entity_id = entity_id


class TokenNotFoundError(TokenError):
    """Exception raised when no token record exists for an entity."""

    pass


class TokenRefreshDisabledError(TokenError):
    """Exception raised when auto refresh was disabled after repeated failures."""

    pass


class MissingScopesError(TokenError):
    """Exception raised when a token lacks scopes required by an endpoint."""

    def __init__(
        self, message: str, entity_id: int | None = None, missing: list[str] | None = None
    ) -> None:
        super().__init__(message, entity_id)
        self.missing = missing or []


class UpstreamRequestError(ESIAccessError):
    """Exception raised for a failed call through the ESI proxy.

    Carries the endpoint, the upstream status code (when known), the time
    of failure and the original cause.
    """

    def __init__(
        self,
        endpoint: str,
        message: str,
        status_code: int | None = None,
        cause: BaseException | None = None,
        timestamp: datetime | None = None,
    ) -> None:
        super().__init__(f"ESI Request Failed: {endpoint} - {message}")
        self.endpoint = endpoint
        self.status_code = status_code
        self.cause = cause
        self.timestamp = timestamp or datetime.now(UTC)

    @property
    def is_retryable(self) -> bool:
        """Whether a retry could plausibly succeed (network or 5xx)."""
        return self.status_code is None or self.status_code >= 500


class UpstreamTimeoutError(UpstreamRequestError):
    """Exception raised when the proxy does not answer within the timeout."""

    pass


class NameResolutionError(ESIAccessError):
    """Exception raised when a batch of IDs cannot be resolved.

    Never surfaced: callers receive placeholder names instead.
    """

    def __init__(self, message: str, ids: list[int] | None = None) -> None:
        super().__init__(message)
        self.ids = ids or []


class SyncConflictError(ESIAccessError):
    """Exception raised when a sync cycle is already running for an entity.

    The 409-equivalent of the access layer, so callers can report
    "already syncing" instead of retrying.
    """

    status_code = 409

    def __init__(self, entity_id: int, started_at: datetime | None = None) -> None:
        super().__init__(f"Sync already in progress for entity {entity_id}")
        self.entity_id = entity_id
        self.started_at = started_at

    def to_dict(self) -> dict[str, Any]:
        """Structured payload for the caller."""
        return {
            "status": self.status_code,
            "error": "sync_conflict",
            "entity_id": self.entity_id,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "message": str(self),
        }
