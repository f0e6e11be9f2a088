"""Bulk ID → name resolution with persistent caching and coalescing.

IDs are looked up in the name table first; misses are resolved through
``POST /universe/names/`` in batches of at most 1000 (the ESI limit).
Identical concurrent requests share one in-flight future, both for the
whole ID set and for each batch. A failed batch degrades to bracketed
placeholder names instead of raising, so name resolution never blocks the
data it decorates.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from collections.abc import Iterable
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from data.repositories import names as names_repo
from models.app import NameCacheStats, ResolvedName
from utils import global_config
from utils.exceptions import NameResolutionError, UpstreamRequestError
from utils.metrics import get_metrics

if TYPE_CHECKING:
    from data.clients import ESIProxyClient
    from data.repositories import Repository

logger = logging.getLogger(__name__)

NAMES_ENDPOINT = "/universe/names/"
MAX_BATCH_SIZE = 1000

_STORE_ERRORS = (sqlite3.Error, OSError, ValueError)


def placeholder_name(entity_id: int) -> str:
    """Display name used when an ID cannot be resolved."""
    return f"[{entity_id}]"


def valid_ids(ids: Iterable[Any]) -> list[int]:
    """Deduplicate IDs, dropping anything that is not a positive integer."""
    seen: dict[int, None] = {}
    for value in ids:
        if isinstance(value, int) and not isinstance(value, bool) and value > 0:
            seen.setdefault(value, None)
    return list(seen)


class NameResolver:
    """Resolves numeric ESI IDs to display names."""

    def __init__(
        self,
        repository: Repository,
        proxy_client: ESIProxyClient,
        name_ttl_days: int | None = None,
        batch_size: int | None = None,
        request_timeout: float | None = None,
    ) -> None:
        cache_config = global_config.cache
        self.repository = repository
        self.proxy_client = proxy_client
        self.name_ttl = timedelta(days=name_ttl_days or cache_config.name_ttl_days)
        self.batch_size = min(batch_size or cache_config.name_batch_size, MAX_BATCH_SIZE)
        self.request_timeout = request_timeout or global_config.esi.request_timeout

        self._pending_sets: dict[str, asyncio.Future[dict[int, str]]] = {}
        self._pending_batches: dict[str, asyncio.Future[dict[int, str]]] = {}

    async def get_names(self, ids: Iterable[Any]) -> dict[int, str]:
        """Resolve IDs to names.

        Args:
            ids: IDs to resolve; duplicates and invalid values are ignored

        Returns:
            Mapping of every valid ID to its name or placeholder
        """
        wanted = sorted(valid_ids(ids))
        if not wanted:
            return {}

        set_key = ",".join(map(str, wanted))
        existing = self._pending_sets.get(set_key)
        if existing is not None:
            return dict(await existing)

        loop = asyncio.get_running_loop()
        fut: asyncio.Future[dict[int, str]] = loop.create_future()
        self._pending_sets[set_key] = fut
        try:
            result = await self._resolve(wanted)
            fut.set_result(result)
            return dict(result)
        except asyncio.CancelledError:
            fut.cancel()
            raise
        except Exception as exc:
            if not fut.done():
                fut.set_exception(exc)
                fut.exception()
            raise
        finally:
            self._pending_sets.pop(set_key, None)

    async def get_name(self, entity_id: int) -> str:
        """Resolve a single ID (placeholder if it cannot be resolved)."""
        names = await self.get_names([entity_id])
        return names.get(entity_id, placeholder_name(entity_id))

    async def _resolve(self, ids: list[int]) -> dict[int, str]:
        try:
            cached = await names_repo.get_names(self.repository, ids, datetime.now(UTC))
        except _STORE_ERRORS as e:
            logger.warning("Name cache lookup failed, resolving all: %s", e)
            cached = {}

        result = {entity_id: record.name for entity_id, record in cached.items()}
        missing = [entity_id for entity_id in ids if entity_id not in cached]
        if not missing:
            return result

        logger.debug("Resolving %d names (%d cached)", len(missing), len(cached))
        batches = [
            missing[start : start + self.batch_size]
            for start in range(0, len(missing), self.batch_size)
        ]
        for resolved in await asyncio.gather(
            *(self._resolve_batch_coalesced(batch) for batch in batches)
        ):
            result.update(resolved)
        return result

    async def _resolve_batch_coalesced(self, batch: list[int]) -> dict[int, str]:
        batch_key = ",".join(map(str, sorted(batch)))
        existing = self._pending_batches.get(batch_key)
        if existing is not None:
            return await existing

        loop = asyncio.get_running_loop()
        fut: asyncio.Future[dict[int, str]] = loop.create_future()
        self._pending_batches[batch_key] = fut
        try:
            result = await self._resolve_batch(batch)
            fut.set_result(result)
            return result
        except asyncio.CancelledError:
            fut.cancel()
            raise
        except Exception as exc:
            if not fut.done():
                fut.set_exception(exc)
                fut.exception()
            raise
        finally:
            self._pending_batches.pop(batch_key, None)

    async def _resolve_batch(self, batch: list[int]) -> dict[int, str]:
        try:
            resolved = await self._fetch_batch(batch)
        except NameResolutionError as e:
            logger.warning("%s; using placeholders for %d IDs", e, len(batch))
            get_metrics().increment("names.batch_failed")
            return {entity_id: placeholder_name(entity_id) for entity_id in batch}

        result = {record.id: record.name for record in resolved}
        unresolved = [entity_id for entity_id in batch if entity_id not in result]
        for entity_id in unresolved:
            result[entity_id] = placeholder_name(entity_id)
        if unresolved:
            logger.debug("%d IDs missing from resolver response", len(unresolved))

        try:
            await names_repo.upsert_names(self.repository, resolved)
        except _STORE_ERRORS as e:
            logger.warning("Could not persist %d resolved names: %s", len(resolved), e)

        return result

    async def _fetch_batch(self, batch: list[int]) -> list[ResolvedName]:
        try:
            with get_metrics().time_operation("names.resolve_batch"):
                response = await asyncio.wait_for(
                    self.proxy_client.call_proxy(NAMES_ENDPOINT, "POST", batch),
                    timeout=self.request_timeout,
                )
        except TimeoutError as e:
            raise NameResolutionError(
                f"Name resolution timed out after {self.request_timeout}s", batch
            ) from e
        except UpstreamRequestError as e:
            raise NameResolutionError(f"Name resolution failed: {e}", batch) from e

        if "error" in response:
            raise NameResolutionError(
                f"Name resolution failed: {response['error']}", batch
            )

        expires_at = datetime.now(UTC) + self.name_ttl
        try:
            return [
                ResolvedName(
                    id=item["id"],
                    name=item["name"],
                    category=item.get("category", "unknown"),
                    expires_at=expires_at,
                )
                for item in response.get("data") or []
            ]
        except (KeyError, TypeError, AttributeError, ValidationError) as e:
            raise NameResolutionError(
                f"Unexpected resolver response shape: {e}", batch
            ) from e

    async def clear_cache(self) -> int:
        """Delete every persisted name.

        Returns:
            Number of names removed
        """
        try:
            removed = await names_repo.clear(self.repository)
        except _STORE_ERRORS as e:
            logger.warning("Could not clear name cache: %s", e)
            return 0
        logger.info("Cleared %d cached names", removed)
        return removed

    async def get_cache_stats(self) -> NameCacheStats:
        """Number of persisted names, total and per category."""
        try:
            categories = await names_repo.count_by_category(self.repository)
        except _STORE_ERRORS as e:
            logger.warning("Could not read name cache stats: %s", e)
            return NameCacheStats()
        return NameCacheStats(total=sum(categories.values()), categories=categories)
