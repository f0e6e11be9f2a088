"""Utility functions and classes for the ESI access layer."""

from .config import global_config
from .di_container import (
    DIContainer,
    DIContainerError,
    ServiceKeys,
    configure_container,
    get_container,
    reset_container,
    shutdown_container,
    start_container,
)
from .exceptions import (
    CacheIOError,
    ConfigurationError,
    ESIAccessError,
    MissingScopesError,
    NameResolutionError,
    RepositoryError,
    SyncConflictError,
    TokenError,
    TokenNotFoundError,
    TokenRefreshDisabledError,
    UpstreamRequestError,
    UpstreamTimeoutError,
)
from .logging_setup import setup_logging
from .metrics import (
    MetricCategories,
    MetricsCollector,
    get_metrics,
    reset_metrics,
    timed,
)

__all__ = [
    "CacheIOError",
    "ConfigurationError",
    "DIContainer",
    "DIContainerError",
    "ESIAccessError",
    "MetricCategories",
    "MetricsCollector",
    "MissingScopesError",
    "NameResolutionError",
    "RepositoryError",
    "ServiceKeys",
    "SyncConflictError",
    "TokenError",
    "TokenNotFoundError",
    "TokenRefreshDisabledError",
    "UpstreamRequestError",
    "UpstreamTimeoutError",
    "configure_container",
    "get_container",
    "get_metrics",
    "global_config",
    "reset_container",
    "reset_metrics",
    "setup_logging",
    "shutdown_container",
    "start_container",
    "timed",
]
