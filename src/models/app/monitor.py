"""Health and traffic models reported by the ESI monitor."""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field, computed_field

from .cache import CacheStats


class RequestLogEntry(BaseModel):
    """One observed request attempt (or cache hit)."""

    endpoint: str = Field(..., description="Endpoint with numeric IDs folded to {id}")
    status_code: int | None = Field(None, description="HTTP status, None on network failure")
    duration_ms: float = Field(0.0, ge=0)
    cache_hit: bool = False
    error: str | None = None
    at: datetime

    @computed_field
    @property
    def is_success(self) -> bool:
        return (
            self.error is None
            and self.status_code is not None
            and 200 <= self.status_code < 400
        )


class EsiMetrics(BaseModel):
    """Traffic totals over the monitor window."""

    requests_total: int = 0
    requests_success: int = 0
    requests_failed: int = 0
    cache_hit_rate: float = Field(0.0, description="Percentage rounded to 2 places")
    average_response_time_ms: float = 0.0
    errors_by_endpoint: dict[str, int] = Field(default_factory=dict)
    token_refresh_count: int = 0
    rate_limit_hits: int = 0
    last_updated: datetime


class TokenHealth(BaseModel):
    entity_id: int
    expires_in: float = Field(..., ge=0, description="Seconds left, 0 once expired")
    is_expired: bool
    last_refresh: datetime | None = None
    validation_failures: int = 0
    auto_refresh_enabled: bool = True
    scopes: list[str] = Field(default_factory=list)


class EndpointStats(BaseModel):
    endpoint: str
    total_requests: int = 0
    success_rate: float = 0.0
    average_response_time_ms: float = 0.0
    last_error: str | None = None
    last_error_at: datetime | None = None


class TokenHealthCounts(BaseModel):
    total: int = 0
    expired: int = 0
    expiring_soon: int = 0
    healthy: int = 0


class OverallHealth(StrEnum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"


class HealthSummary(BaseModel):
    """Traffic, token and cache health in one view."""

    overall: OverallHealth
    metrics: EsiMetrics
    tokens: TokenHealthCounts
    cache: CacheStats
