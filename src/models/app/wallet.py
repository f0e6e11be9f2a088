"""Wallet views produced by the wallet adapter."""

from pydantic import BaseModel, Field

from models.eve import EveJournalEntry, EveTransaction


class WalletSummary(BaseModel):
    """Balance plus recent ledger activity."""

    balance: float
    recent_income: float = Field(0.0, description="Sum of positive recent entries")
    recent_expenses: float = Field(0.0, description="Sum of negative recent entries (absolute)")
    net_change: float = 0.0
    recent_journal: list[EveJournalEntry] = Field(default_factory=list)
    recent_transactions: list[EveTransaction] = Field(default_factory=list)
