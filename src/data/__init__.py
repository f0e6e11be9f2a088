"""Data layer: HTTP collaborators and the SQLite persistent store."""

from .clients import ESIProxyClient, TokenRefreshClient
from .repositories import Repository

__all__ = [
    "ESIProxyClient",
    "Repository",
    "TokenRefreshClient",
]
