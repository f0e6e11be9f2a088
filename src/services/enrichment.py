"""Generic ``*_id`` → ``*_name`` enrichment over JSON-like values.

ESI payloads reference other entities by numeric ID under keys ending in
``_id``. One visitor collects those IDs from any nested dict/list value and
a second one writes the resolved name into a sibling ``*_name`` key, so no
adapter needs a per-field list.
"""

from __future__ import annotations

from typing import Any

ID_SUFFIX = "_id"
NAME_SUFFIX = "_name"


def _is_resolvable_id(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def name_key_for(id_key: str) -> str:
    """``solar_system_id`` → ``solar_system_name``."""
    return id_key[: -len(ID_SUFFIX)] + NAME_SUFFIX


def collect_ids(value: Any, into: set[int] | None = None) -> set[int]:
    """Collect every positive integer stored under a key ending in ``_id``."""
    found = into if into is not None else set()
    if isinstance(value, dict):
        for key, item in value.items():
            if isinstance(key, str) and key.endswith(ID_SUFFIX) and _is_resolvable_id(item):
                found.add(item)
            else:
                collect_ids(item, found)
    elif isinstance(value, list):
        for item in value:
            collect_ids(item, found)
    return found


def apply_names(value: Any, names: dict[int, str]) -> Any:
    """Write ``*_name`` siblings in place for every resolved ``*_id``.

    Existing ``*_name`` values are kept. Returns ``value`` for chaining.
    """
    if isinstance(value, dict):
        additions: dict[str, str] = {}
        for key, item in value.items():
            if isinstance(key, str) and key.endswith(ID_SUFFIX) and _is_resolvable_id(item):
                name_key = name_key_for(key)
                if item in names and name_key not in value:
                    additions[name_key] = names[item]
            else:
                apply_names(item, names)
        value.update(additions)
    elif isinstance(value, list):
        for item in value:
            apply_names(item, names)
    return value
