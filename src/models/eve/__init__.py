"""EVE Online ESI response models (domain layer)."""

from .asset import EveAsset
from .journal import EveJournalEntry
from .market_price import EveMarketPrice
from .skill import EveSkill, EveSkillQueueItem
from .transaction import EveTransaction

__all__ = [
    "EveAsset",
    "EveJournalEntry",
    "EveMarketPrice",
    "EveSkill",
    "EveSkillQueueItem",
    "EveTransaction",
]
