"""HTTP clients used by the ESI access layer."""

from .esi import ESIProxyClient, TokenRefreshClient

__all__ = ["ESIProxyClient", "TokenRefreshClient"]
