"""EVE Online wallet journal data models."""

from datetime import datetime

from pydantic import BaseModel, Field


class EveJournalEntry(BaseModel):
    """Represents a wallet journal entry from ESI.

    Wallet journal shows complete ISK flow ledger (bounties, taxes, contract
    payments, etc.) for a character.
    """

    id: int = Field(..., description="Unique journal entry ID")
    date: datetime = Field(..., description="Entry timestamp")
    ref_type: str = Field(
        ..., description="Entry type (bounty_prizes, market_transaction, etc.)"
    )
    description: str = Field("", description="Human-readable description")
    amount: float = Field(0.0, description="ISK amount (negative for expenses)")
    balance: float | None = Field(None, description="Wallet balance after entry")
    first_party_id: int | None = Field(None, description="First party involved")
    first_party_name: str | None = Field(None, description="Resolved first party")
    second_party_id: int | None = Field(
        None, description="Second party (if applicable)"
    )
    second_party_name: str | None = Field(None, description="Resolved second party")
    reason: str | None = Field(None, description="Additional context")
    context_id: int | None = Field(
        None, description="Related entity (contract ID, etc.)"
    )
    context_id_type: str | None = Field(
        None, description="Type of context (contract, structure, etc.)"
    )

    @property
    def is_income(self) -> bool:
        """Whether this entry added ISK to the wallet."""
        return self.amount > 0
