"""Asset views produced by the assets adapter."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field

LocationKind = Literal["station", "structure", "unknown"]


class EnrichedAsset(BaseModel):
    """ESI asset with resolved names and a market valuation."""

    model_config = ConfigDict(validate_assignment=True)

    # Raw ESI fields
    item_id: int
    type_id: int
    quantity: int
    location_id: int
    location_type: str
    location_flag: str
    is_singleton: bool
    is_blueprint_copy: bool | None = None

    # Enrichment
    type_name: str = ""
    location_name: str = ""
    location_kind: LocationKind = "unknown"
    unit_price: float | None = None

    @computed_field  # type: ignore[misc]
    @property
    def estimated_value(self) -> float:
        """Total estimated value for this stack."""
        # Explicit None check keeps 0.0 prices (blueprint copies) at zero
        price = self.unit_price if self.unit_price is not None else 0.0
        return price * self.quantity


class AssetLocationGroup(BaseModel):
    """Assets stored at a single location."""

    location_id: int
    location_name: str
    location_kind: LocationKind
    assets: list[EnrichedAsset] = Field(default_factory=list)
    total_items: int = 0
    total_value: float = 0.0


class AssetSummary(BaseModel):
    """Headline asset figures for a character."""

    total_items: int = 0
    total_stacks: int = 0
    total_value: float = 0.0
    location_count: int = 0
    top_locations: list[AssetLocationGroup] = Field(default_factory=list)


class AssetStatistics(BaseModel):
    """Distribution of a character's assets."""

    total_stacks: int = 0
    unique_types: int = 0
    singleton_count: int = 0
    blueprint_copy_count: int = 0
    by_location_kind: dict[str, int] = Field(default_factory=dict)
    most_common_types: list[tuple[str, int]] = Field(default_factory=list)
