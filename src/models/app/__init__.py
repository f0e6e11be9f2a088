"""Application/business models (domain layer)."""

from .assets import (
    AssetLocationGroup,
    AssetStatistics,
    AssetSummary,
    EnrichedAsset,
    LocationKind,
)
from .audit import AuditData
from .cache import CacheEntry, CacheStats
from .monitor import (
    EndpointStats,
    EsiMetrics,
    HealthSummary,
    OverallHealth,
    RequestLogEntry,
    TokenHealth,
    TokenHealthCounts,
)
from .names import NameCacheStats, ResolvedName
from .request import AggregateResult, EsiResponse, RequestStats
from .skills import SkillData, TrainingProgress
from .sync import SyncMetadata, SyncResult, SyncStatus
from .token import (
    RefreshCheckResult,
    SchedulerStatus,
    TokenRecord,
    TokenStats,
    TokenValidation,
)
from .wallet import WalletSummary

__all__ = [
    "AggregateResult",
    "AssetLocationGroup",
    "AssetStatistics",
    "AssetSummary",
    "AuditData",
    "CacheEntry",
    "CacheStats",
    "EndpointStats",
    "EnrichedAsset",
    "EsiMetrics",
    "EsiResponse",
    "HealthSummary",
    "LocationKind",
    "NameCacheStats",
    "OverallHealth",
    "RefreshCheckResult",
    "RequestLogEntry",
    "RequestStats",
    "ResolvedName",
    "SchedulerStatus",
    "SkillData",
    "SyncMetadata",
    "SyncResult",
    "SyncStatus",
    "TokenHealth",
    "TokenHealthCounts",
    "TokenRecord",
    "TokenStats",
    "TokenValidation",
    "TrainingProgress",
    "WalletSummary",
]
