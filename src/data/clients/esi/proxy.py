"""HTTP client for the serverless ESI call-through proxy.

The access layer never talks to ESI directly: every call is posted to the
proxy function, which attaches the character's live access token and the
required User-Agent before performing the signed upstream request.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from utils import global_config
from utils.exceptions import (
    ConfigurationError,
    UpstreamRequestError,
    UpstreamTimeoutError,
)

logger = logging.getLogger(__name__)


class ESIProxyClient:
    """Posts ESI requests to the call-through proxy function."""

    def __init__(
        self,
        proxy_url: str | None = None,
        api_key: str | None = None,
        user_agent: str | None = None,
        timeout: float | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the proxy client.

        Args:
            proxy_url: Full URL of the proxy function. Falls back to config.
            api_key: Anonymous key for the functions host. Falls back to config.
            user_agent: User-Agent the proxy forwards upstream.
            timeout: Per-request timeout in seconds.
            http_client: Optional pre-built client (tests, connection sharing).

        Raises:
            ConfigurationError: If the proxy URL is not an http(s) URL
        """
        self.proxy_url = proxy_url or global_config.esi.proxy_url
        if not self.proxy_url.startswith(("http://", "https://")):
            raise ConfigurationError(f"Invalid ESI proxy URL: {self.proxy_url!r}")
        self.api_key = api_key if api_key is not None else global_config.esi.api_key
        self.user_agent = user_agent or global_config.app.computed_user_agent
        self.timeout = timeout or global_config.esi.request_timeout
        self._http_client = http_client
        self._owns_client = http_client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
        return self._http_client

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["apikey"] = self.api_key
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def call_proxy(
        self,
        endpoint: str,
        method: str = "GET",
        body: Any = None,
        entity_id: int | None = None,
    ) -> dict[str, Any]:
        """Perform one ESI call through the proxy.

        Args:
            endpoint: ESI path, e.g. ``/characters/123/wallet/``
            method: HTTP method for the upstream call
            body: JSON body for POST endpoints
            entity_id: Character whose token the proxy should attach

        Returns:
            ``{"data": payload}`` on success, or
            ``{"error": message, "status": code}`` when the proxy or ESI
            answered with an error status.

        Raises:
            UpstreamTimeoutError: If the proxy does not answer in time
            UpstreamRequestError: On network failures
        """
        payload = {
            "endpoint": endpoint,
            "characterId": entity_id,
            "method": method.upper(),
            "body": body,
            "userAgent": self.user_agent,
        }

        try:
            response = await self._get_client().post(
                self.proxy_url,
                json=payload,
                headers=self._headers(),
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            raise UpstreamTimeoutError(
                endpoint, f"proxy timed out after {self.timeout}s", cause=e
            ) from e
        except httpx.RequestError as e:
            raise UpstreamRequestError(endpoint, f"network error: {e}", cause=e) from e

        if response.is_error:
            message = _error_message(response)
            logger.warning(
                "Proxy returned %d for %s %s: %s",
                response.status_code,
                method,
                endpoint,
                message,
            )
            return {"error": message, "status": response.status_code}

        try:
            return {"data": response.json()}
        except ValueError as e:
            raise UpstreamRequestError(
                endpoint,
                "proxy returned invalid JSON",
                status_code=response.status_code,
                cause=e,
            ) from e

    async def close(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
        self._http_client = None


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase
    if isinstance(body, dict):
        return str(body.get("error") or body.get("message") or body)
    return str(body)[:200]
