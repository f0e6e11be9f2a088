"""Client for the refresh-token exchange endpoint.

The authorization-code flow itself happens elsewhere; this client only
trades a stored refresh token for a new access token.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from utils import global_config
from utils.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_EXPIRES_IN = 1200


class TokenRefreshClient:
    """Exchanges refresh tokens through the token refresh function."""

    def __init__(
        self,
        refresh_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the refresh client.

        Args:
            refresh_url: Full URL of the refresh function. Falls back to config.
            api_key: Anonymous key for the functions host. Falls back to config.
            timeout: Request timeout in seconds.
            http_client: Optional pre-built client.

        Raises:
            ConfigurationError: If the refresh URL is not an http(s) URL
        """
        self.refresh_url = refresh_url or global_config.esi.token_refresh_url
        if not self.refresh_url.startswith(("http://", "https://")):
            raise ConfigurationError(f"Invalid token refresh URL: {self.refresh_url!r}")
        self.api_key = api_key if api_key is not None else global_config.esi.api_key
        self.timeout = timeout or global_config.esi.token_refresh_timeout
        self._http_client = http_client
        self._owns_client = http_client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
        return self._http_client

    async def exchange_refresh_token(
        self, entity_id: int, refresh_token: str
    ) -> dict[str, Any]:
        """Trade a refresh token for a new access token.

        Args:
            entity_id: Character the token belongs to
            refresh_token: Current refresh token

        Returns:
            Dict with ``access_token``, ``refresh_token`` (None when the
            endpoint did not rotate it) and ``expires_in`` seconds

        Raises:
            httpx.HTTPStatusError: If the endpoint rejects the token
            httpx.RequestError: On network failures and timeouts
            ValueError: If the response carries no access token
        """
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["apikey"] = self.api_key
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            response = await self._get_client().post(
                self.refresh_url,
                json={"characterId": entity_id, "refreshToken": refresh_token},
                headers=headers,
                timeout=self.timeout,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(
                "Token refresh failed for character %s: %s %s",
                entity_id,
                e.response.status_code,
                e.response.text[:200] if e.response.text else "",
            )
            raise

        token_response = response.json()
        access_token = token_response.get("accessToken") or token_response.get(
            "access_token"
        )
        if not access_token:
            raise ValueError(f"Refresh response for {entity_id} has no access token")

        return {
            "access_token": access_token,
            "refresh_token": token_response.get("refreshToken")
            or token_response.get("refresh_token"),
            "expires_in": int(
                token_response.get("expiresIn")
                or token_response.get("expires_in")
                or DEFAULT_EXPIRES_IN
            ),
        }

    async def close(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
        self._http_client = None
