"""EVE Online market price data models."""

from pydantic import BaseModel, Field


class EveMarketPrice(BaseModel):
    """Universe-wide average and adjusted price for a type."""

    type_id: int = Field(..., description="Item type ID")
    average_price: float | None = Field(None, description="Average market price")
    adjusted_price: float | None = Field(None, description="CCP adjusted price")

    @property
    def unit_value(self) -> float:
        """Best available per-unit valuation (0 when unknown)."""
        return self.average_price or self.adjusted_price or 0.0
