"""Dependency injection container for the ESI access layer.

The managers that hold process-wide state (cache, tokens, in-flight maps)
are constructed once by the container and shared by every caller. The
container also owns their teardown: `shutdown_container` stops background
loops and closes clients and the database in dependency order.

Usage:
    from utils.di_container import ServiceKeys, configure_container

    container = configure_container()
    await start_container(container)
    wallet = container.resolve(ServiceKeys.WALLET_ADAPTER)
    summary = await wallet.get_summary(character_id)
    ...
    await shutdown_container()
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class DIContainerError(Exception):
    """Exception raised for DI container errors."""

    pass


class DIContainer:
    """Registry of service instances and lazy factories.

    Registration and resolution are guarded by a reentrant lock so a
    factory may resolve its own dependencies.
    """

    def __init__(self) -> None:
        self._services: dict[str, Any] = {}
        self._factories: dict[str, Callable[[DIContainer], Any]] = {}
        self._lock = threading.RLock()

    def register(self, key: str, instance: Any) -> None:
        """Register a ready-made service instance."""
        with self._lock:
            if key in self._services:
                logger.debug("Overwriting existing service: %s", key)
            self._services[key] = instance
            logger.debug("Registered service: %s", key)

    def register_factory(self, key: str, factory: Callable[[DIContainer], Any]) -> None:
        """Register a factory called with the container on first resolve.

        Args:
            key: Service identifier
            factory: Factory function (container) -> service instance
        """
        with self._lock:
            if key in self._factories:
                logger.debug("Overwriting existing factory: %s", key)
            self._factories[key] = factory
            logger.debug("Registered factory: %s", key)

    def resolve(self, key: str) -> Any:
        """Resolve a service, creating it from its factory on first use.

        Raises:
            DIContainerError: If nothing is registered under ``key``
        """
        with self._lock:
            if key in self._services:
                return self._services[key]

            if key in self._factories:
                logger.debug("Creating service from factory: %s", key)
                instance = self._factories[key](self)
                self._services[key] = instance
                return instance

            raise DIContainerError(
                f"Service '{key}' not registered. "
                f"Available: {sorted(self.get_registered_keys())}"
            )

    def resolve_optional(self, key: str) -> Any | None:
        try:
            return self.resolve(key)
        except DIContainerError:
            return None

    def get_created(self, key: str) -> Any | None:
        """Return an instance only if it already exists (never runs a factory)."""
        with self._lock:
            return self._services.get(key)

    def is_registered(self, key: str) -> bool:
        with self._lock:
            return key in self._services or key in self._factories

    def create(self, cls: type[T], **key_mappings: str) -> T:
        """Instantiate ``cls`` with constructor arguments resolved by key.

        Example:
            adapter = container.create(
                WalletAdapter,
                request_service=ServiceKeys.REQUEST_SERVICE,
                token_manager=ServiceKeys.TOKEN_MANAGER,
                cache_manager=ServiceKeys.CACHE_MANAGER,
            )
        """
        resolved_args = {
            param_name: self.resolve(container_key)
            for param_name, container_key in key_mappings.items()
        }
        return cls(**resolved_args)

    def clear(self) -> None:
        """Drop all services and factories (used by tests and shutdown)."""
        with self._lock:
            self._services.clear()
            self._factories.clear()
            logger.debug("Container cleared")

    def get_registered_keys(self) -> list[str]:
        with self._lock:
            return list(set(self._services) | set(self._factories))


class ServiceKeys:
    """Standard service key constants for the DI container."""

    # Configuration/infrastructure
    CONFIG = "config"
    METRICS = "metrics"
    REPOSITORY = "repository"
    PROXY_CLIENT = "proxy_client"
    TOKEN_REFRESH_CLIENT = "token_refresh_client"

    # Core managers
    CACHE_MANAGER = "cache_manager"
    TOKEN_MANAGER = "token_manager"
    TOKEN_REFRESH_SCHEDULER = "token_refresh_scheduler"
    NAME_RESOLVER = "name_resolver"
    REQUEST_SERVICE = "request_service"
    MARKET_PRICES_SERVICE = "market_prices_service"
    ESI_MONITOR = "esi_monitor"

    # Adapters
    WALLET_ADAPTER = "wallet_adapter"
    SKILLS_ADAPTER = "skills_adapter"
    ASSETS_ADAPTER = "assets_adapter"
    MEMBER_AUDIT_ADAPTER = "member_audit_adapter"


_container_instance: DIContainer | None = None
_container_lock = threading.Lock()


def get_container() -> DIContainer:
    """Get the global DI container instance."""
    global _container_instance  # noqa: PLW0603
    if _container_instance is None:
        with _container_lock:
            if _container_instance is None:
                _container_instance = DIContainer()
    assert _container_instance is not None
    return _container_instance


def reset_container() -> None:
    """Drop the global container without closing anything (tests only)."""
    global _container_instance  # noqa: PLW0603
    with _container_lock:
        if _container_instance is not None:
            _container_instance.clear()
        _container_instance = None


def configure_container(container: DIContainer | None = None) -> DIContainer:
    """Register the factories of every service of the access layer.

    Services are only instantiated when first resolved. Resolving any
    manager pulls in its dependencies, so one `resolve` of an adapter
    builds the whole stack.

    Args:
        container: Container to configure (uses global if None)

    Returns:
        Configured container
    """
    if container is None:
        container = get_container()

    from utils.config import get_config
    from utils.metrics import get_metrics

    container.register(ServiceKeys.CONFIG, get_config())
    container.register(ServiceKeys.METRICS, get_metrics())

    def repository_factory(c: DIContainer) -> Any:
        from data.repositories import Repository

        config = c.resolve(ServiceKeys.CONFIG)
        return Repository(config.cache.db_path)

    container.register_factory(ServiceKeys.REPOSITORY, repository_factory)

    def proxy_client_factory(c: DIContainer) -> Any:
        from data.clients import ESIProxyClient

        config = c.resolve(ServiceKeys.CONFIG)
        return ESIProxyClient(
            proxy_url=config.esi.proxy_url,
            api_key=config.esi.api_key,
            user_agent=config.app.computed_user_agent,
            timeout=config.esi.request_timeout,
        )

    container.register_factory(ServiceKeys.PROXY_CLIENT, proxy_client_factory)

    def token_refresh_client_factory(c: DIContainer) -> Any:
        from data.clients import TokenRefreshClient

        config = c.resolve(ServiceKeys.CONFIG)
        return TokenRefreshClient(
            refresh_url=config.esi.token_refresh_url,
            api_key=config.esi.api_key,
            timeout=config.esi.token_refresh_timeout,
        )

    container.register_factory(
        ServiceKeys.TOKEN_REFRESH_CLIENT, token_refresh_client_factory
    )

    def cache_manager_factory(c: DIContainer) -> Any:
        from services.cache_manager import CacheManager

        config = c.resolve(ServiceKeys.CONFIG)
        return CacheManager(
            repository=c.resolve(ServiceKeys.REPOSITORY),
            memory_capacity=config.cache.memory_capacity,
            promotion_ttl=config.cache.promotion_ttl,
            cleanup_interval=config.cache.cleanup_interval,
            preload_band_delays=config.cache.preload_band_delays,
        )

    container.register_factory(ServiceKeys.CACHE_MANAGER, cache_manager_factory)

    def token_manager_factory(c: DIContainer) -> Any:
        from services.token_manager import TokenManager

        config = c.resolve(ServiceKeys.CONFIG)
        return TokenManager(
            repository=c.resolve(ServiceKeys.REPOSITORY),
            refresh_client=c.resolve(ServiceKeys.TOKEN_REFRESH_CLIENT),
            refresh_buffer_minutes=config.token.refresh_buffer_minutes,
            max_validation_failures=config.token.max_validation_failures,
            stale_token_days=config.token.stale_token_days,
            refresh_timeout=config.esi.token_refresh_timeout,
        )

    container.register_factory(ServiceKeys.TOKEN_MANAGER, token_manager_factory)

    def scheduler_factory(c: DIContainer) -> Any:
        from services.token_refresh_scheduler import TokenRefreshScheduler

        config = c.resolve(ServiceKeys.CONFIG)
        return TokenRefreshScheduler(
            token_manager=c.resolve(ServiceKeys.TOKEN_MANAGER),
            check_interval_minutes=config.token.scheduler_interval_minutes,
            refresh_threshold_minutes=config.token.scheduler_refresh_threshold_minutes,
        )

    container.register_factory(ServiceKeys.TOKEN_REFRESH_SCHEDULER, scheduler_factory)

    def name_resolver_factory(c: DIContainer) -> Any:
        from services.name_resolver import NameResolver

        config = c.resolve(ServiceKeys.CONFIG)
        return NameResolver(
            repository=c.resolve(ServiceKeys.REPOSITORY),
            proxy_client=c.resolve(ServiceKeys.PROXY_CLIENT),
            name_ttl_days=config.cache.name_ttl_days,
            batch_size=config.cache.name_batch_size,
            request_timeout=config.esi.request_timeout,
        )

    container.register_factory(ServiceKeys.NAME_RESOLVER, name_resolver_factory)

    def monitor_factory(c: DIContainer) -> Any:
        from services.esi_monitor import EsiMonitor

        config = c.resolve(ServiceKeys.CONFIG)
        return EsiMonitor(
            repository=c.resolve(ServiceKeys.REPOSITORY),
            cache_manager=c.resolve(ServiceKeys.CACHE_MANAGER),
            expiring_threshold_minutes=config.token.refresh_buffer_minutes,
        )

    container.register_factory(ServiceKeys.ESI_MONITOR, monitor_factory)

    def request_service_factory(c: DIContainer) -> Any:
        from services.request_service import RequestService
        from services.ttl_policy import TTLPolicy

        config = c.resolve(ServiceKeys.CONFIG)
        return RequestService(
            cache_manager=c.resolve(ServiceKeys.CACHE_MANAGER),
            token_manager=c.resolve(ServiceKeys.TOKEN_MANAGER),
            name_resolver=c.resolve(ServiceKeys.NAME_RESOLVER),
            proxy_client=c.resolve(ServiceKeys.PROXY_CLIENT),
            ttl_policy=TTLPolicy(
                ttl_by_category=config.cache.ttl_by_category,
                default_ttl=config.cache.default_ttl,
            ),
            request_timeout=config.esi.request_timeout,
            max_retries=config.esi.max_retries,
            monitor=c.resolve(ServiceKeys.ESI_MONITOR),
        )

    container.register_factory(ServiceKeys.REQUEST_SERVICE, request_service_factory)

    def market_prices_factory(c: DIContainer) -> Any:
        from services.market_prices_service import MarketPricesService

        return MarketPricesService(c.resolve(ServiceKeys.REQUEST_SERVICE))

    container.register_factory(ServiceKeys.MARKET_PRICES_SERVICE, market_prices_factory)

    def adapter_factory(adapter_cls_name: str, **extra_keys: str):
        def factory(c: DIContainer) -> Any:
            from services import adapters

            adapter_cls = getattr(adapters, adapter_cls_name)
            return adapter_cls(
                request_service=c.resolve(ServiceKeys.REQUEST_SERVICE),
                token_manager=c.resolve(ServiceKeys.TOKEN_MANAGER),
                cache_manager=c.resolve(ServiceKeys.CACHE_MANAGER),
                **{param: c.resolve(key) for param, key in extra_keys.items()},
            )

        return factory

    container.register_factory(
        ServiceKeys.WALLET_ADAPTER, adapter_factory("WalletAdapter")
    )
    container.register_factory(
        ServiceKeys.SKILLS_ADAPTER, adapter_factory("SkillsAdapter")
    )
    container.register_factory(
        ServiceKeys.ASSETS_ADAPTER,
        adapter_factory(
            "AssetsAdapter", market_prices=ServiceKeys.MARKET_PRICES_SERVICE
        ),
    )
    container.register_factory(
        ServiceKeys.MEMBER_AUDIT_ADAPTER,
        adapter_factory("MemberAuditAdapter", repository=ServiceKeys.REPOSITORY),
    )

    logger.info("DI container configured with default factories")
    return container


async def start_container(
    container: DIContainer | None = None, start_scheduler: bool = True
) -> None:
    """Initialize the database and start the background loops.

    Must run inside the event loop that will serve requests.
    """
    if container is None:
        container = get_container()

    repository = container.resolve(ServiceKeys.REPOSITORY)
    await repository.initialize()

    container.resolve(ServiceKeys.CACHE_MANAGER).start_cleanup()
    if start_scheduler:
        container.resolve(ServiceKeys.TOKEN_REFRESH_SCHEDULER).start()
    logger.info("ESI access layer started")


async def shutdown_container(container: DIContainer | None = None) -> None:
    """Tear down every service the container created.

    Stops the refresh scheduler, cancels the cache sweep and pending
    preloads, closes the HTTP clients and finally the database. Services
    that were never resolved are not created just to be closed.
    """
    if container is None:
        container = get_container()

    scheduler = container.get_created(ServiceKeys.TOKEN_REFRESH_SCHEDULER)
    if scheduler is not None:
        await scheduler.aclose()

    cache_manager = container.get_created(ServiceKeys.CACHE_MANAGER)
    if cache_manager is not None:
        await cache_manager.close()

    for key in (ServiceKeys.PROXY_CLIENT, ServiceKeys.TOKEN_REFRESH_CLIENT):
        client = container.get_created(key)
        if client is not None:
            await client.close()

    repository = container.get_created(ServiceKeys.REPOSITORY)
    if repository is not None:
        await repository.close()

    container.clear()
    logger.info("DI container shut down")
