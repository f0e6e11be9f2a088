"""Models for the ESI access layer.

eve : ESI response records
app : access-layer records and adapter views
"""

from .app import (
    AggregateResult,
    CacheEntry,
    CacheStats,
    EsiResponse,
    ResolvedName,
    SyncMetadata,
    SyncStatus,
    TokenRecord,
)
from .eve import (
    EveAsset,
    EveJournalEntry,
    EveMarketPrice,
    EveSkill,
    EveSkillQueueItem,
    EveTransaction,
)

__all__ = [
    "AggregateResult",
    "CacheEntry",
    "CacheStats",
    "EsiResponse",
    "EveAsset",
    "EveJournalEntry",
    "EveMarketPrice",
    "EveSkill",
    "EveSkillQueueItem",
    "EveTransaction",
    "ResolvedName",
    "SyncMetadata",
    "SyncStatus",
    "TokenRecord",
]
