"""Resolved universe name models."""

from datetime import datetime

from pydantic import BaseModel, Field


class ResolvedName(BaseModel):
    """An ID resolved to a display name by /universe/names/."""

    id: int = Field(..., gt=0, description="Entity, type or location ID")
    name: str = Field(..., description="Display name")
    category: str = Field(..., description="ESI category (character, inventory_type, ...)")
    expires_at: datetime | None = Field(None, description="Persistent cache expiry")


class NameCacheStats(BaseModel):
    """Counts of cached names, total and per category."""

    total: int = 0
    categories: dict[str, int] = Field(default_factory=dict)
