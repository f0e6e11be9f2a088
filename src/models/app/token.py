"""OAuth token lifecycle models."""

from datetime import datetime

from pydantic import BaseModel, Field


class TokenRecord(BaseModel):
    """Stored access/refresh token pair for one character."""

    entity_id: int = Field(..., gt=0, description="Character ID owning the token")
    access_token: str = Field(..., description="Current ESI access token")
    refresh_token: str = Field(..., description="Refresh token for renewal")
    expires_at: datetime = Field(..., description="Access token expiry (UTC)")
    scopes: list[str] = Field(default_factory=list, description="Granted scopes")
    validation_failures: int = Field(0, ge=0, description="Consecutive refresh failures")
    auto_refresh_enabled: bool = Field(True, description="Whether refresh may be attempted")
    last_validated_at: datetime | None = Field(None, description="Last successful refresh")

    def has_scopes(self, required: list[str]) -> bool:
        """Set containment test against the granted scopes."""
        return set(required).issubset(self.scopes)


class TokenValidation(BaseModel):
    """Result of checking a token's expiry against the refresh buffer."""

    is_valid: bool
    expires_in: float = Field(..., description="Seconds until expiry (negative if expired)")
    needs_refresh: bool


class TokenStats(BaseModel):
    """Aggregate counts over all stored tokens."""

    total: int = 0
    valid: int = 0
    expiring: int = 0
    expired: int = 0
    failed: int = 0
    auto_refresh_disabled: int = 0


class RefreshCheckResult(BaseModel):
    """Outcome of one background token check."""

    checked: int = 0
    refreshed: int = 0
    failed: int = 0
    skipped: int = Field(0, description="Selected but no longer inside the threshold")


class SchedulerStatus(BaseModel):
    """Current state of the token refresh scheduler."""

    is_running: bool
    check_interval_minutes: float
    refresh_threshold_minutes: float
    last_check_at: datetime | None = None
