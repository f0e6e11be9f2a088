"""Wallet balance, journal and market transactions."""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime

from models.app import WalletSummary
from models.eve import EveJournalEntry, EveTransaction
from services.name_resolver import placeholder_name

from .base import BaseAdapter

logger = logging.getLogger(__name__)

WALLET_SCOPE = "esi-wallet.read_character_wallet.v1"
JOURNAL_MAX_PAGES = 5
WALLET_TTL = 300
SUMMARY_ENTRIES = 10


class WalletAdapter(BaseAdapter):
    """Typed wallet views for one character."""

    async def get_balance(self, entity_id: int) -> float:
        await self.validate_token(entity_id, [WALLET_SCOPE])
        balance = await self.fetch_with_retry(
            f"/characters/{entity_id}/wallet/", entity_id, ttl=WALLET_TTL
        )
        return float(balance or 0.0)

    async def get_journal(
        self, entity_id: int, from_date: datetime | None = None
    ) -> list[EveJournalEntry]:
        """Get wallet journal entries, newest first.

        Args:
            entity_id: Character ID
            from_date: Only keep entries at or after this time (naive means UTC)

        Returns:
            Journal entries with first/second party names resolved
        """
        await self.validate_token(entity_id, [WALLET_SCOPE])
        rows = await self.fetch_paginated(
            f"/characters/{entity_id}/wallet/journal/",
            entity_id,
            max_pages=JOURNAL_MAX_PAGES,
            ttl=WALLET_TTL,
        )
        entries = [EveJournalEntry.model_validate(row) for row in rows]

        if from_date is not None:
            if from_date.tzinfo is None:
                from_date = from_date.replace(tzinfo=UTC)
            entries = [entry for entry in entries if entry.date >= from_date]

        party_ids = {
            party_id
            for entry in entries
            for party_id in (entry.first_party_id, entry.second_party_id)
            if party_id
        }
        names = await self.resolve_names(party_ids) if party_ids else {}
        for entry in entries:
            if entry.first_party_id:
                entry.first_party_name = names.get(entry.first_party_id)
            if entry.second_party_id:
                entry.second_party_name = names.get(entry.second_party_id)

        entries.sort(key=lambda entry: entry.date, reverse=True)
        return entries

    async def get_transactions(
        self, entity_id: int, limit: int = 100
    ) -> list[EveTransaction]:
        """Get the most recent market transactions with type names."""
        await self.validate_token(entity_id, [WALLET_SCOPE])
        rows = await self.fetch_with_retry(
            f"/characters/{entity_id}/wallet/transactions/", entity_id, ttl=WALLET_TTL
        )
        transactions = sorted(
            (EveTransaction.model_validate(row) for row in rows or []),
            key=lambda tx: tx.date,
            reverse=True,
        )[:limit]

        names = await self.resolve_names(tx.type_id for tx in transactions)
        for tx in transactions:
            tx.type_name = names.get(tx.type_id, placeholder_name(tx.type_id))
        return transactions

    async def get_summary(self, entity_id: int) -> WalletSummary:
        """Balance plus income and expenses over the latest journal entries."""
        balance, journal, transactions = await asyncio.gather(
            self.get_balance(entity_id),
            self.get_journal(entity_id),
            self.get_transactions(entity_id, limit=SUMMARY_ENTRIES),
        )
        recent = journal[:SUMMARY_ENTRIES]
        income = sum(entry.amount for entry in recent if entry.is_income)
        expenses = sum(-entry.amount for entry in recent if not entry.is_income)
        return WalletSummary(
            balance=balance,
            recent_income=income,
            recent_expenses=expenses,
            net_change=income - expenses,
            recent_journal=recent,
            recent_transactions=transactions,
        )

    async def refresh(self, entity_id: int) -> WalletSummary:
        """Drop cached wallet data and fetch it again."""
        removed = await self.invalidate_entity_cache(entity_id, "wallet/")
        logger.info("Refreshing wallet for %d (%d cache entries dropped)", entity_id, removed)
        return await self.get_summary(entity_id)
