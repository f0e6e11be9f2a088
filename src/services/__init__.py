"""Service layer of the ESI access layer.

Core managers:
    cache_manager          : two-tier response cache and preloading
    token_manager          : access token lifecycle
    token_refresh_scheduler: background token refresh loop
    name_resolver          : bulk ID to name resolution
    request_service        : single entry point for ESI calls
    market_prices_service  : market prices for asset valuation
    esi_monitor            : request log, token and cache health

Domain adapters live in `services.adapters`.
"""

from .cache_manager import CacheManager
from .esi_monitor import EsiMonitor
from .market_prices_service import MarketPricesService
from .name_resolver import NameResolver
from .request_service import RequestService
from .token_manager import TokenManager
from .token_refresh_scheduler import TokenRefreshScheduler
from .ttl_policy import TTLPolicy

__all__ = [
    "CacheManager",
    "EsiMonitor",
    "MarketPricesService",
    "NameResolver",
    "RequestService",
    "TTLPolicy",
    "TokenManager",
    "TokenRefreshScheduler",
]
