"""Member audit snapshot model."""

from typing import Any

from pydantic import BaseModel, Field


class AuditData(BaseModel):
    """Everything the audit screen shows for one character.

    ``errors`` holds the modules that could not be fetched; their fields
    are left empty rather than failing the whole snapshot.
    """

    entity_id: int
    basic: dict[str, Any] | None = None
    location: dict[str, Any] | None = None
    ship: dict[str, Any] | None = None
    online: dict[str, Any] | None = None
    skills: dict[str, Any] | None = None
    skill_queue: list[dict[str, Any]] = Field(default_factory=list)
    wallet_balance: float | None = None
    assets: list[dict[str, Any]] = Field(default_factory=list)
    clones: dict[str, Any] | None = None
    implants: list[int] = Field(default_factory=list)
    contacts: list[dict[str, Any]] = Field(default_factory=list)
    errors: dict[str, str] = Field(default_factory=dict)

    def summary(self) -> dict[str, Any]:
        """Figures persisted alongside the sync metadata."""
        location = self.location or {}
        ship = self.ship or {}
        skills = self.skills or {}
        return {
            "security_status": (self.basic or {}).get("security_status"),
            "total_sp": skills.get("total_sp"),
            "unallocated_sp": skills.get("unallocated_sp"),
            "wallet_balance": self.wallet_balance,
            "location_system_id": location.get("solar_system_id"),
            "location_system_name": location.get("solar_system_name"),
            "ship_type_id": ship.get("ship_type_id"),
            "ship_type_name": ship.get("ship_type_name"),
            "ship_name": ship.get("ship_name"),
            "asset_stacks": len(self.assets),
            "implant_count": len(self.implants),
            "contact_count": len(self.contacts),
        }
