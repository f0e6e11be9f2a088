"""Outbound collaborators of the ESI access layer."""

from .auth import TokenRefreshClient
from .proxy import ESIProxyClient

__all__ = ["ESIProxyClient", "TokenRefreshClient"]
