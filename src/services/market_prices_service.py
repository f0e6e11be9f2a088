"""Universe-wide market prices used to value assets."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from pydantic import ValidationError

from models.eve import EveMarketPrice
from utils.exceptions import UpstreamRequestError

if TYPE_CHECKING:
    from services.request_service import RequestService

logger = logging.getLogger(__name__)

PRICES_ENDPOINT = "/markets/prices/"
PRICES_TTL = 86400


class MarketPricesService:
    """Average and adjusted prices for every traded type.

    The price list is public and changes about once a day, so it is fetched
    through the request service with a 24h TTL and shared by every caller.
    """

    def __init__(self, request_service: RequestService, ttl: int = PRICES_TTL):
        self._request_service = request_service
        self._ttl = ttl
        self._prices: dict[int, EveMarketPrice] = {}
        self._lock = asyncio.Lock()

    async def get_prices(self) -> dict[int, EveMarketPrice]:
        """Get prices keyed by type ID.

        Returns the last known prices (empty on first failure) if the
        request fails; valuation is optional and never blocks asset views.
        """
        async with self._lock:
            try:
                response = await self._request_service.request(
                    PRICES_ENDPOINT, ttl=self._ttl
                )
            except UpstreamRequestError as e:
                logger.warning("Market prices unavailable: %s", e)
                return dict(self._prices)

            prices: dict[int, EveMarketPrice] = {}
            for item in response.data or []:
                try:
                    price = EveMarketPrice.model_validate(item)
                except ValidationError as e:
                    logger.debug("Skipping malformed price row %s: %s", item, e)
                    continue
                prices[price.type_id] = price

            if prices:
                self._prices = prices
            logger.debug(
                "Loaded %d market prices (cached=%s)", len(prices), response.from_cache
            )
            return dict(self._prices)

    async def get_price(self, type_id: int) -> float:
        """Per-unit value of a type (0 when unknown)."""
        price = (await self.get_prices()).get(type_id)
        return price.unit_value if price else 0.0
