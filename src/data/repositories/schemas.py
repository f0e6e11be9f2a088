"""SQLite database schemas for the ESI access layer's persistent store.

This module defines the SQL table schemas used to hold:
1. Cached ESI responses (second cache tier)
2. Resolved universe names
3. OAuth token records per character
4. Per-character sync metadata for aggregate adapters

All timestamps are stored as UTC ISO-8601 strings with microseconds, so
string comparison in SQL matches chronological order.
"""

from __future__ import annotations

CREATE_CACHE_TABLE = """
CREATE TABLE IF NOT EXISTS esi_service_cache (
    cache_key TEXT PRIMARY KEY,
    endpoint TEXT,
    entity_id INTEGER,
    data TEXT NOT NULL,
    expires_at TEXT NOT NULL,
    tags TEXT NOT NULL DEFAULT '[]',
    priority INTEGER NOT NULL DEFAULT 0,
    access_count INTEGER NOT NULL DEFAULT 0,
    last_accessed TEXT
);
"""

CREATE_CACHE_INDEXES = """
CREATE INDEX IF NOT EXISTS idx_esi_service_cache_expires
ON esi_service_cache(expires_at);

CREATE INDEX IF NOT EXISTS idx_esi_service_cache_entity
ON esi_service_cache(entity_id);
"""

CREATE_NAMES_TABLE = """
CREATE TABLE IF NOT EXISTS esi_service_universe_names (
    id INTEGER PRIMARY KEY,
    name TEXT NOT NULL,
    category TEXT NOT NULL,
    expires_at TEXT NOT NULL
);
"""

CREATE_NAMES_INDEXES = """
CREATE INDEX IF NOT EXISTS idx_esi_service_universe_names_expires
ON esi_service_universe_names(expires_at);
"""

CREATE_TOKENS_TABLE = """
CREATE TABLE IF NOT EXISTS esi_service_tokens (
    entity_id INTEGER PRIMARY KEY,
    access_token TEXT NOT NULL,
    refresh_token TEXT NOT NULL,
    expires_at TEXT NOT NULL,
    scopes TEXT NOT NULL DEFAULT '[]',
    validation_failures INTEGER NOT NULL DEFAULT 0,
    auto_refresh_enabled INTEGER NOT NULL DEFAULT 1,
    last_validated_at TEXT
);
"""

CREATE_TOKENS_INDEXES = """
CREATE INDEX IF NOT EXISTS idx_esi_service_tokens_expires
ON esi_service_tokens(expires_at);
"""

CREATE_SYNC_METADATA_TABLE = """
CREATE TABLE IF NOT EXISTS esi_sync_metadata (
    entity_id INTEGER PRIMARY KEY,
    sync_status TEXT NOT NULL DEFAULT 'pending',
    sync_progress TEXT NOT NULL DEFAULT '{}',
    sync_errors TEXT NOT NULL DEFAULT '[]',
    summary TEXT NOT NULL DEFAULT '{}',
    last_update_at TEXT,
    last_full_sync_at TEXT
);
"""

ALL_TABLES = [
    CREATE_CACHE_TABLE,
    CREATE_CACHE_INDEXES,
    CREATE_NAMES_TABLE,
    CREATE_NAMES_INDEXES,
    CREATE_TOKENS_TABLE,
    CREATE_TOKENS_INDEXES,
    CREATE_SYNC_METADATA_TABLE,
]

__all__ = [
    "ALL_TABLES",
    "CREATE_CACHE_INDEXES",
    "CREATE_CACHE_TABLE",
    "CREATE_NAMES_INDEXES",
    "CREATE_NAMES_TABLE",
    "CREATE_SYNC_METADATA_TABLE",
    "CREATE_TOKENS_INDEXES",
    "CREATE_TOKENS_TABLE",
]
