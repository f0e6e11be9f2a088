"""Request-level result models."""

from typing import Any

from pydantic import BaseModel, Field


class EsiResponse(BaseModel):
    """Payload returned by a proxied request, with its cache provenance."""

    data: Any = None
    from_cache: bool = False


class AggregateResult(BaseModel):
    """Partial-success result of a fan-out over several endpoints.

    Failed parts are omitted from ``data`` and reported in ``errors``.
    """

    data: dict[str, Any] = Field(default_factory=dict)
    errors: dict[str, str] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors


class RequestStats(BaseModel):
    """Counters kept by the request service."""

    total: int = 0
    cached: int = 0
    failed: int = 0
    memory_cache_size: int = 0
    cache_hit_rate: float = 0.0
