"""Cache entry and cache statistics models."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class CacheEntry(BaseModel):
    """A cached ESI payload as held by the persistent tier."""

    key: str = Field(..., description="Cache key (method, endpoint, entity, body hash)")
    data: Any = Field(..., description="Opaque JSON payload")
    expires_at: datetime = Field(..., description="Absolute expiry (UTC)")
    endpoint: str | None = Field(None, description="Endpoint the payload came from")
    entity_id: int | None = Field(None, description="Owning character, if any")
    tags: list[str] = Field(default_factory=list, description="Group invalidation tags")
    priority: int = Field(0, description="Eviction hint")
    access_count: int = Field(0, ge=0, description="Persistent tier reads")

    def is_expired(self, now: datetime) -> bool:
        """Whether the entry may no longer be served."""
        return now >= self.expires_at


class CacheStats(BaseModel):
    """Hit/miss counters and tier sizes for the two-tier cache."""

    hits: int = 0
    misses: int = 0
    memory_hits: int = 0
    persistent_hits: int = 0
    hit_rate: float = Field(0.0, description="Hit percentage rounded to 2 places")
    memory_size: int = 0
    persistent_size: int = 0
