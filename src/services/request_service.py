"""Single entry point for all outbound ESI calls.

Every request goes through the same pipeline: cache lookup, token
validation, the proxied call (bounded by a timeout and retried on server
errors), cache write and, for aggregate fetches, ``*_id`` → ``*_name``
enrichment.
"""

from __future__ import annotations

import asyncio
import base64
import copy
import hashlib
import json
import logging
import time
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

from models.app import AggregateResult, EsiResponse, RequestStats
from services.enrichment import apply_names, collect_ids
from services.ttl_policy import TTLPolicy
from utils import global_config
from utils.exceptions import TokenError, UpstreamRequestError, UpstreamTimeoutError
from utils.metrics import get_metrics

if TYPE_CHECKING:
    from data.clients import ESIProxyClient
    from services.cache_manager import CacheManager
    from services.esi_monitor import EsiMonitor
    from services.name_resolver import NameResolver
    from services.token_manager import TokenManager

logger = logging.getLogger(__name__)

CACHE_KEY_VERSION = "v3"
RETRY_BASE_DELAY = 1.0

# Data types served by get_entity_data ("all" selects every one)
DATA_TYPE_ENDPOINTS: dict[str, str] = {
    "basic": "/characters/{entity_id}/",
    "location": "/characters/{entity_id}/location/",
    "ship": "/characters/{entity_id}/ship/",
    "online": "/characters/{entity_id}/online/",
    "skills": "/characters/{entity_id}/skills/",
    "skill_queue": "/characters/{entity_id}/skillqueue/",
    "wallet": "/characters/{entity_id}/wallet/",
    "assets": "/characters/{entity_id}/assets/",
    "clones": "/characters/{entity_id}/clones/",
    "implants": "/characters/{entity_id}/implants/",
    "contacts": "/characters/{entity_id}/contacts/",
}


def make_cache_key(
    endpoint: str,
    entity_id: int | None = None,
    method: str = "GET",
    body: Any = None,
) -> str:
    """Build the cache key for a request.

    The key encodes the method, the owning entity, the endpoint and a hash
    of the body, e.g. ``v3|GET|char:123|/characters/123/wallet/|no-body``.
    """
    if body is None:
        body_part = "no-body"
    else:
        body_str = json.dumps(body, sort_keys=True, separators=(",", ":"))
        digest = hashlib.sha256(body_str.encode()).digest()
        body_part = base64.urlsafe_b64encode(digest[:18]).decode()
    owner = f"char:{entity_id}" if entity_id is not None else "char:public"
    return f"{CACHE_KEY_VERSION}|{method.upper()}|{owner}|{endpoint}|{body_part}"


class RequestService:
    """Cache-aware, token-aware gateway to the ESI proxy."""

    def __init__(
        self,
        cache_manager: CacheManager,
        token_manager: TokenManager,
        name_resolver: NameResolver,
        proxy_client: ESIProxyClient,
        ttl_policy: TTLPolicy | None = None,
        request_timeout: float | None = None,
        max_retries: int | None = None,
        retry_base_delay: float = RETRY_BASE_DELAY,
        monitor: EsiMonitor | None = None,
    ) -> None:
        """Initialize the request service.

        Args:
            cache_manager: Two-tier response cache
            token_manager: Token lifecycle manager
            name_resolver: Bulk ID → name resolver
            proxy_client: Call-through proxy collaborator
            ttl_policy: Endpoint → TTL table (defaults from config)
            request_timeout: Seconds to wait for one proxied call
            max_retries: Retries for server errors and timeouts
            retry_base_delay: First backoff delay in seconds (doubles per retry)
            monitor: Receives every attempt and cache hit, if given
        """
        cache_config = global_config.cache
        self.cache_manager = cache_manager
        self.token_manager = token_manager
        self.name_resolver = name_resolver
        self.proxy_client = proxy_client
        self.ttl_policy = ttl_policy or TTLPolicy(
            ttl_by_category=cache_config.ttl_by_category,
            default_ttl=cache_config.default_ttl,
        )
        self.request_timeout = request_timeout or global_config.esi.request_timeout
        self.max_retries = (
            max_retries if max_retries is not None else global_config.esi.max_retries
        )
        self.retry_base_delay = retry_base_delay
        self.monitor = monitor

        self._pending_requests: dict[str, asyncio.Future[Any]] = {}
        self._total = 0
        self._cached = 0
        self._failed = 0

        cache_manager.bind_fetcher(self._preload_fetch)

    async def request(
        self,
        endpoint: str,
        entity_id: int | None = None,
        method: str = "GET",
        body: Any = None,
        use_cache: bool = True,
        ttl: int | None = None,
        retry_count: int | None = None,
    ) -> EsiResponse:
        """Perform an ESI request through the cache and the proxy.

        Args:
            endpoint: ESI path, e.g. ``/characters/123/wallet/``
            entity_id: Character whose token authorizes the call (None for public)
            method: HTTP method
            body: JSON body for POST endpoints
            use_cache: Whether a GET may be served from and written to the cache
            ttl: Cache lifetime in seconds (defaults to the TTL policy)
            retry_count: Retries for retryable failures (defaults to config)

        Returns:
            The payload and whether it came from the cache

        Raises:
            TokenError: If no valid token can be obtained for ``entity_id``
            UpstreamRequestError: If the proxied call fails
            UpstreamTimeoutError: If the proxy does not answer in time
        """
        if not endpoint.startswith("/"):
            raise ValueError(f"Endpoint must start with '/': {endpoint!r}")

        method = method.upper()
        cacheable = use_cache and method == "GET"
        key = make_cache_key(endpoint, entity_id, method, body)
        self._total += 1

        if cacheable:
            cached = await self.cache_manager.get(key)
            if cached is not None:
                self._cached += 1
                get_metrics().increment("esi.cache_hit")
                if self.monitor is not None:
                    self.monitor.record_request(endpoint, 200, cache_hit=True)
                return EsiResponse(data=cached, from_cache=True)

            existing = self._pending_requests.get(key)
            if existing is not None:
                return EsiResponse(data=await existing, from_cache=False)

        loop = asyncio.get_running_loop()
        fut: asyncio.Future[Any] = loop.create_future()
        if cacheable:
            self._pending_requests[key] = fut
        try:
            data = await self._fetch(endpoint, entity_id, method, body, retry_count)
            if cacheable and data is not None:
                await self._store(key, endpoint, entity_id, data, ttl)
            fut.set_result(data)
            return EsiResponse(data=data, from_cache=False)
        except asyncio.CancelledError:
            fut.cancel()
            raise
        except Exception as exc:
            if isinstance(exc, (TokenError, UpstreamRequestError)):
                self._failed += 1
                logger.warning("Request %s %s failed: %s", method, endpoint, exc)
            fut.set_exception(exc)
            fut.exception()
            raise
        finally:
            if cacheable:
                self._pending_requests.pop(key, None)

    async def _fetch(
        self,
        endpoint: str,
        entity_id: int | None,
        method: str,
        body: Any,
        retry_count: int | None,
    ) -> Any:
        if entity_id is not None:
            await self.token_manager.get_valid_token(entity_id)

        retries = self.max_retries if retry_count is None else retry_count
        token_refreshed = False
        attempt = 0
        while True:
            try:
                return await self._call_once(endpoint, method, body, entity_id)
            except UpstreamRequestError as e:
                if e.status_code == 401 and entity_id is not None and not token_refreshed:
                    logger.info("401 for %s; forcing token refresh", endpoint)
                    await self.token_manager.force_refresh(entity_id)
                    token_refreshed = True
                    continue
                if not e.is_retryable or attempt >= retries:
                    raise
                delay = self.retry_base_delay * (2**attempt)
                attempt += 1
                logger.warning(
                    "%s; retrying in %.1fs (attempt %d/%d)", e, delay, attempt, retries
                )
                await asyncio.sleep(delay)

    async def _call_once(
        self, endpoint: str, method: str, body: Any, entity_id: int | None
    ) -> Any:
        started = time.perf_counter()
        try:
            data = await self._proxied_call(endpoint, method, body, entity_id)
        except UpstreamRequestError as e:
            self._report(endpoint, started, e.status_code, str(e))
            raise
        self._report(endpoint, started, 200)
        return data

    async def _proxied_call(
        self, endpoint: str, method: str, body: Any, entity_id: int | None
    ) -> Any:
        try:
            with get_metrics().time_operation("esi.request"):
                response = await asyncio.wait_for(
                    self.proxy_client.call_proxy(endpoint, method, body, entity_id),
                    timeout=self.request_timeout,
                )
        except TimeoutError as e:
            raise UpstreamTimeoutError(
                endpoint, f"no response within {self.request_timeout}s", cause=e
            ) from e

        if "error" in response:
            raise UpstreamRequestError(
                endpoint, str(response["error"]), status_code=response.get("status")
            )
        return response.get("data")

    def _report(
        self,
        endpoint: str,
        started: float,
        status_code: int | None,
        error: str | None = None,
    ) -> None:
        if self.monitor is None:
            return
        self.monitor.record_request(
            endpoint,
            status_code,
            duration_ms=(time.perf_counter() - started) * 1000,
            error=error,
        )

    async def _store(
        self,
        key: str,
        endpoint: str,
        entity_id: int | None,
        data: Any,
        ttl: int | None,
    ) -> None:
        category = self.ttl_policy.category_for(endpoint)
        tags = [f"char:{entity_id}"] if entity_id is not None else []
        if category:
            tags.append(category)
        await self.cache_manager.set(
            key,
            data,
            ttl or self.ttl_policy.ttl_for(endpoint),
            tags=tags,
            endpoint=endpoint,
            entity_id=entity_id,
        )

    async def _preload_fetch(self, endpoint: str, entity_id: int) -> Any:
        return (await self.request(endpoint, entity_id=entity_id)).data

    async def get_entity_data(
        self, entity_id: int, data_types: Iterable[str] = ("all",)
    ) -> AggregateResult:
        """Fetch several data types for an entity concurrently.

        Failed types are logged and reported in ``errors`` without failing
        the rest. The combined data is enriched with ``*_name`` fields.

        Args:
            entity_id: Character ID
            data_types: Keys of DATA_TYPE_ENDPOINTS, or "all"

        Returns:
            Partial-success aggregate keyed by data type
        """
        requested = list(dict.fromkeys(data_types))
        if "all" in requested:
            requested = list(DATA_TYPE_ENDPOINTS)

        result = AggregateResult()
        known = []
        for data_type in requested:
            if data_type in DATA_TYPE_ENDPOINTS:
                known.append(data_type)
            else:
                result.errors[data_type] = f"Unknown data type: {data_type}"

        responses = await asyncio.gather(
            *(
                self.request(
                    DATA_TYPE_ENDPOINTS[data_type].format(entity_id=entity_id),
                    entity_id=entity_id,
                )
                for data_type in known
            ),
            return_exceptions=True,
        )
        for data_type, response in zip(known, responses, strict=True):
            if isinstance(response, BaseException):
                logger.warning(
                    "Fetching %s for entity %d failed: %s", data_type, entity_id, response
                )
                result.errors[data_type] = str(response) or type(response).__name__
            else:
                # Copy so enrichment never mutates cached payloads
                result.data[data_type] = copy.deepcopy(response.data)

        await self.enrich_names(result.data)
        return result

    async def enrich_names(self, value: Any) -> Any:
        """Add ``*_name`` siblings for every ``*_id`` in a JSON-like value."""
        ids = collect_ids(value)
        if not ids:
            return value
        try:
            names = await self.name_resolver.get_names(ids)
        except Exception as e:
            logger.warning("Name enrichment skipped: %s", e)
            return value
        return apply_names(value, names)

    async def resolve_names(self, ids: Iterable[Any]) -> dict[int, str]:
        """Resolve IDs to names (see NameResolver.get_names)."""
        return await self.name_resolver.get_names(ids)

    async def get_stats(self) -> RequestStats:
        cache_stats = await self.cache_manager.get_stats()
        return RequestStats(
            total=self._total,
            cached=self._cached,
            failed=self._failed,
            memory_cache_size=cache_stats.memory_size,
            cache_hit_rate=cache_stats.hit_rate,
        )

    async def clear_cache(self, scope: str = "all") -> None:
        """Clear the response cache.

        Args:
            scope: "memory", "persistent" or "all"
        """
        if scope == "memory":
            self.cache_manager.clear_memory()
        elif scope == "persistent":
            await self.cache_manager.clear_persistent()
        elif scope == "all":
            await self.cache_manager.clear_all()
        else:
            raise ValueError(f"Unknown cache scope: {scope!r}")
        logger.info("Cleared %s request cache", scope)
