"""Character assets with names, locations and estimated values."""

from __future__ import annotations

import logging
from collections import Counter
from typing import TYPE_CHECKING

from models.app import (
    AssetLocationGroup,
    AssetStatistics,
    AssetSummary,
    EnrichedAsset,
    LocationKind,
)
from models.eve import EveAsset
from services.name_resolver import placeholder_name

from .base import BaseAdapter

if TYPE_CHECKING:
    from services.cache_manager import CacheManager
    from services.market_prices_service import MarketPricesService
    from services.request_service import RequestService
    from services.token_manager import TokenManager

logger = logging.getLogger(__name__)

ASSETS_SCOPE = "esi-assets.read_assets.v1"
ASSETS_TTL = 3600
TOP_LOCATIONS = 10
MOST_COMMON_TYPES = 10

# NPC station IDs live in this range; player structures start at 1e12
STATION_ID_RANGE = (60_000_000, 64_000_000)
STRUCTURE_ID_MIN = 1_000_000_000_000


def location_kind(location_id: int) -> LocationKind:
    """Classify a location by its ID range."""
    if STATION_ID_RANGE[0] <= location_id < STATION_ID_RANGE[1]:
        return "station"
    if location_id >= STRUCTURE_ID_MIN:
        return "structure"
    return "unknown"


class AssetsAdapter(BaseAdapter):
    """Typed asset views for one character."""

    def __init__(
        self,
        request_service: RequestService,
        token_manager: TokenManager,
        cache_manager: CacheManager,
        market_prices: MarketPricesService | None = None,
    ) -> None:
        super().__init__(request_service, token_manager, cache_manager)
        self._market_prices = market_prices

    async def get_assets(self, entity_id: int) -> list[EnrichedAsset]:
        """Every asset stack of a character, enriched.

        Type and location names come from the name resolver. Structures and
        containers are not resolvable through it and keep placeholder names.
        """
        await self.validate_token(entity_id, [ASSETS_SCOPE])
        rows = await self.fetch_paginated(
            f"/characters/{entity_id}/assets/", entity_id, ttl=ASSETS_TTL
        )
        raw = [EveAsset.model_validate(row) for row in rows]
        if not raw:
            return []

        resolvable = {asset.type_id for asset in raw}
        resolvable.update(
            asset.location_id
            for asset in raw
            if asset.location_type != "item"
            and location_kind(asset.location_id) != "structure"
        )
        names = await self.resolve_names(resolvable)
        prices = await self._load_prices()

        assets = []
        for asset in raw:
            if asset.is_blueprint_copy:
                unit_price = 0.0
            else:
                unit_price = prices.get(asset.type_id)
            assets.append(
                EnrichedAsset(
                    **asset.model_dump(),
                    type_name=names.get(asset.type_id, placeholder_name(asset.type_id)),
                    location_name=names.get(
                        asset.location_id, placeholder_name(asset.location_id)
                    ),
                    location_kind=location_kind(asset.location_id),
                    unit_price=unit_price,
                )
            )
        logger.debug("Loaded %d asset stacks for %d", len(assets), entity_id)
        return assets

    async def _load_prices(self) -> dict[int, float]:
        if self._market_prices is None:
            return {}
        prices = await self._market_prices.get_prices()
        return {type_id: price.unit_value for type_id, price in prices.items()}

    async def get_assets_by_location(self, entity_id: int) -> list[AssetLocationGroup]:
        """Assets grouped per location, largest item count first."""
        groups: dict[int, AssetLocationGroup] = {}
        for asset in await self.get_assets(entity_id):
            group = groups.get(asset.location_id)
            if group is None:
                group = groups[asset.location_id] = AssetLocationGroup(
                    location_id=asset.location_id,
                    location_name=asset.location_name,
                    location_kind=asset.location_kind,
                )
            group.assets.append(asset)
            group.total_items += asset.quantity
            group.total_value += asset.estimated_value
        return sorted(groups.values(), key=lambda g: g.total_items, reverse=True)

    async def search_assets(self, entity_id: int, term: str) -> list[EnrichedAsset]:
        """Assets whose type or location name contains ``term`` (case-insensitive)."""
        needle = term.strip().lower()
        assets = await self.get_assets(entity_id)
        if not needle:
            return assets
        return [
            asset
            for asset in assets
            if needle in asset.type_name.lower() or needle in asset.location_name.lower()
        ]

    async def get_assets_at_location(
        self, entity_id: int, location_id: int
    ) -> list[EnrichedAsset]:
        return [
            asset
            for asset in await self.get_assets(entity_id)
            if asset.location_id == location_id
        ]

    async def get_summary(self, entity_id: int) -> AssetSummary:
        locations = await self.get_assets_by_location(entity_id)
        return AssetSummary(
            total_items=sum(loc.total_items for loc in locations),
            total_stacks=sum(len(loc.assets) for loc in locations),
            total_value=sum(loc.total_value for loc in locations),
            location_count=len(locations),
            top_locations=locations[:TOP_LOCATIONS],
        )

    async def get_strategic_assets(self, entity_id: int) -> list[EnrichedAsset]:
        """Assembled ships and other unique items, excluding capsules."""
        return [
            asset
            for asset in await self.get_assets(entity_id)
            if asset.is_singleton and "Capsule" not in asset.type_name
        ]

    async def get_statistics(self, entity_id: int) -> AssetStatistics:
        assets = await self.get_assets(entity_id)
        quantities: Counter[str] = Counter()
        kinds: Counter[str] = Counter()
        for asset in assets:
            quantities[asset.type_name] += asset.quantity
            kinds[asset.location_kind] += 1

        return AssetStatistics(
            total_stacks=len(assets),
            unique_types=len({asset.type_id for asset in assets}),
            singleton_count=sum(1 for asset in assets if asset.is_singleton),
            blueprint_copy_count=sum(1 for asset in assets if asset.is_blueprint_copy),
            by_location_kind=dict(kinds),
            most_common_types=quantities.most_common(MOST_COMMON_TYPES),
        )

    async def refresh(self, entity_id: int) -> list[EnrichedAsset]:
        """Drop cached asset pages and fetch them again."""
        await self.invalidate_entity_cache(entity_id, "assets/")
        logger.info("Refreshing assets for %d", entity_id)
        return await self.get_assets(entity_id)
