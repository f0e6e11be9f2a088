"""Repository layer backing the access layer's persistent store.

This package provides a single SQLite repository plus table-specific
access functions:

- Repository: Single database connection for all tables
- cache_entries: Persistent cache tier (esi_service_cache)
- names: Resolved universe names (esi_service_universe_names)
- tokens: OAuth token records (esi_service_tokens)
- sync_metadata: Sync state and lock per entity (esi_sync_metadata)

Usage:
    from data.repositories import Repository, cache_entries, tokens

    repo = Repository()
    await repo.initialize()

    record = await tokens.get_token(repo, character_id)
    entry = await cache_entries.get_entry(repo, key, datetime.now(UTC))
"""

from __future__ import annotations

from . import cache_entries, names, sync_metadata, tokens
from .repository import Repository, from_db_time, to_db_time

__all__ = [
    "Repository",
    "cache_entries",
    "from_db_time",
    "names",
    "sync_metadata",
    "to_db_time",
    "tokens",
]
