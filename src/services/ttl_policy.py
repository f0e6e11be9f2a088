"""Category-driven TTL selection for ESI endpoints.

Endpoints are matched against an ordered rule table; the first rule whose
substring occurs in the endpoint path decides the category. More specific
substrings are listed before general ones ("/universe/stations" before
"/location", "/wallet/journal" before "/wallet"), so the order is part of
the policy.
"""

from __future__ import annotations

import re

REALTIME = "realtime"
FREQUENT = "frequent"
MODERATE = "moderate"
STABLE = "stable"
STATIC = "static"

DEFAULT_CATEGORY_TTLS: dict[str, int] = {
    REALTIME: 30,
    FREQUENT: 300,
    MODERATE: 3600,
    STABLE: 86400,
    STATIC: 2592000,
}

DEFAULT_RULES: list[tuple[str, str]] = [
    # Near-static reference data
    ("/universe/names", STATIC),
    ("/universe/types", STATIC),
    ("/universe/stations", STATIC),
    ("/universe/systems", STATIC),
    ("/universe/constellations", STATIC),
    ("/universe/regions", STATIC),
    ("/universe/structures", STABLE),
    ("/markets/prices", MODERATE),
    # Realtime character state
    ("/location", REALTIME),
    ("/ship", REALTIME),
    ("/online", REALTIME),
    # Frequently changing
    ("/wallet", FREQUENT),
    ("/skillqueue", FREQUENT),
    ("/notifications", FREQUENT),
    ("/orders", FREQUENT),
    # Moderately stable
    ("/skills", MODERATE),
    ("/assets", MODERATE),
    ("/contacts", MODERATE),
    ("/clones", MODERATE),
    ("/implants", MODERATE),
    ("/standings", MODERATE),
    # Rarely changing
    ("/contracts", STABLE),
    ("/industry", STABLE),
    ("/corporationhistory", STABLE),
]

# Bare identity endpoints such as /characters/123/ or /corporations/456/
IDENTITY_PATTERN = re.compile(r"^/(characters|corporations|alliances)/\d+/?$")


class TTLPolicy:
    """Maps an endpoint to a data category and a TTL in seconds."""

    def __init__(
        self,
        ttl_by_category: dict[str, int] | None = None,
        rules: list[tuple[str, str]] | None = None,
        default_ttl: int = 300,
    ) -> None:
        self.ttl_by_category = {**DEFAULT_CATEGORY_TTLS, **(ttl_by_category or {})}
        self.rules = list(rules) if rules is not None else list(DEFAULT_RULES)
        self.default_ttl = default_ttl

        unknown = {category for _, category in self.rules} - set(self.ttl_by_category)
        if unknown:
            raise ValueError(f"Rules reference categories without a TTL: {sorted(unknown)}")

    def category_for(self, endpoint: str) -> str | None:
        """First matching category for an endpoint, or None."""
        path = endpoint.split("?", 1)[0]
        for substring, category in self.rules:
            if substring in path:
                return category
        if IDENTITY_PATTERN.match(path):
            return STABLE
        return None

    def ttl_for(self, endpoint: str) -> int:
        """TTL in seconds for an endpoint (default when nothing matches)."""
        category = self.category_for(endpoint)
        if category is None:
            return self.default_ttl
        return self.ttl_by_category[category]
