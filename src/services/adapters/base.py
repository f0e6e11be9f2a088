"""Shared plumbing for the domain adapters.

Adapters never talk to the proxy themselves: every call goes through the
request service (cache, token, retry) and every token check through the
token manager.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING, Any

from models.app import AggregateResult
from utils.exceptions import MissingScopesError, UpstreamRequestError

if TYPE_CHECKING:
    from services.cache_manager import CacheManager
    from services.request_service import RequestService
    from services.token_manager import TokenManager

logger = logging.getLogger(__name__)

DEFAULT_RETRY_COUNT = 2
DEFAULT_MAX_PAGES = 10


class BaseAdapter:
    """Base class for typed views over one ESI domain."""

    def __init__(
        self,
        request_service: RequestService,
        token_manager: TokenManager,
        cache_manager: CacheManager,
    ) -> None:
        self._request_service = request_service
        self._token_manager = token_manager
        self._cache_manager = cache_manager

    async def fetch_with_retry(
        self,
        endpoint: str,
        entity_id: int | None,
        ttl: int | None = None,
        retry_count: int = DEFAULT_RETRY_COUNT,
        use_cache: bool = True,
    ) -> Any:
        """Fetch an endpoint's payload through the request service.

        Raises:
            TokenError: If the entity has no usable token
            UpstreamRequestError: If the call still fails after retries
        """
        response = await self._request_service.request(
            endpoint,
            entity_id=entity_id,
            use_cache=use_cache,
            ttl=ttl,
            retry_count=retry_count,
        )
        return response.data

    async def validate_token(self, entity_id: int, scopes: Iterable[str] = ()) -> None:
        """Ensure the entity has a valid token granting ``scopes``.

        Raises:
            TokenError: If no valid token can be obtained
            MissingScopesError: If the token lacks any of ``scopes``
        """
        await self._token_manager.get_valid_token(entity_id)
        required = list(scopes)
        if required and not await self._token_manager.validate_scopes(
            entity_id, required
        ):
            raise MissingScopesError(
                f"Character {entity_id} is missing required scopes: "
                + ", ".join(required),
                entity_id,
                required,
            )

    async def fetch_paginated(
        self,
        endpoint: str,
        entity_id: int,
        max_pages: int = DEFAULT_MAX_PAGES,
        ttl: int | None = None,
    ) -> list[Any]:
        """Walk ``page=1..max_pages`` until an empty page.

        A failure on the first page is raised; a failure on a later page
        ends the walk with the pages collected so far.
        """
        separator = "&" if "?" in endpoint else "?"
        results: list[Any] = []
        for page in range(1, max_pages + 1):
            try:
                data = await self.fetch_with_retry(
                    f"{endpoint}{separator}page={page}", entity_id, ttl=ttl
                )
            except UpstreamRequestError as e:
                if page == 1:
                    raise
                logger.warning(
                    "Pagination of %s stopped at page %d: %s", endpoint, page, e
                )
                break
            if not data:
                break
            results.extend(data)
        else:
            logger.debug("Pagination of %s hit the %d page limit", endpoint, max_pages)
        return results

    async def fetch_multiple(
        self, entity_id: int, requests: Mapping[str, str | tuple[str, int | None]]
    ) -> AggregateResult:
        """Fetch several endpoints concurrently, isolating failures.

        Args:
            entity_id: Character ID
            requests: Result key to endpoint, or to ``(endpoint, ttl)``

        Returns:
            Payloads of the successful requests and errors of the others
        """
        names = list(requests)
        calls = []
        for name in names:
            spec = requests[name]
            endpoint, ttl = spec if isinstance(spec, tuple) else (spec, None)
            calls.append(self.fetch_with_retry(endpoint, entity_id, ttl=ttl))

        result = AggregateResult()
        outcomes = await asyncio.gather(*calls, return_exceptions=True)
        for name, outcome in zip(names, outcomes, strict=True):
            if isinstance(outcome, BaseException):
                if isinstance(outcome, asyncio.CancelledError):
                    raise outcome
                logger.warning(
                    "%s: fetching %s for %d failed: %s",
                    type(self).__name__,
                    name,
                    entity_id,
                    outcome,
                )
                result.errors[name] = str(outcome) or type(outcome).__name__
            else:
                result.data[name] = outcome
        return result

    def get_cache_key(self, entity_id: int, suffix: str = "") -> str:
        """Cache key fragment matching every request of an entity's path.

        ``get_cache_key(123, "wallet/")`` matches the wallet, journal and
        transaction entries of character 123.
        """
        return f"char:{entity_id}|/characters/{entity_id}/{suffix.lstrip('/')}"

    async def invalidate_cache(self, pattern: str) -> int:
        return await self._cache_manager.invalidate(pattern)

    async def invalidate_entity_cache(
        self, entity_id: int, suffix: str | None = None
    ) -> int:
        """Invalidate an entity's entries, or only those under ``suffix``."""
        if suffix is None:
            return await self._cache_manager.invalidate_entity(entity_id)
        return await self.invalidate_cache(self.get_cache_key(entity_id, suffix))

    async def resolve_names(self, ids: Iterable[Any]) -> dict[int, str]:
        return await self._request_service.resolve_names(ids)
