"""Pytest configuration and shared fixtures."""

import asyncio
import sys
from datetime import UTC, datetime, timedelta
from pathlib import Path
from types import SimpleNamespace

import pytest
import pytest_asyncio

# Add src to Python path so imports work
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from data.repositories import Repository, tokens  # noqa: E402
from models.app import TokenRecord  # noqa: E402
from services.cache_manager import CacheManager  # noqa: E402
from services.name_resolver import NameResolver  # noqa: E402
from services.request_service import RequestService  # noqa: E402
from services.token_manager import TokenManager  # noqa: E402
from utils import global_config  # noqa: E402
from utils.metrics import reset_metrics  # noqa: E402

ENTITY_ID = 90000001


class FakeProxy:
    """Stands in for the ESI proxy; answers from a table of endpoints.

    Values in `responses` are payloads, exceptions to raise, or callables
    taking (endpoint, method, body) and returning a full proxy response.
    """

    def __init__(self, responses=None, delay: float = 0.0):
        self.responses = dict(responses or {})
        self.delay = delay
        self.calls: list[tuple[str, str, object, int | None]] = []

    def calls_to(self, endpoint: str) -> int:
        return sum(1 for call in self.calls if call[0] == endpoint)

    async def call_proxy(self, endpoint, method="GET", body=None, entity_id=None):
        self.calls.append((endpoint, method, body, entity_id))
        if self.delay:
            await asyncio.sleep(self.delay)
        if endpoint not in self.responses:
            return {"error": f"no fake response for {endpoint}", "status": 404}
        value = self.responses[endpoint]
        if isinstance(value, BaseException):
            raise value
        if callable(value):
            return value(endpoint, method, body)
        return {"data": value}

    async def close(self):
        pass


class FakeRefreshClient:
    """Token refresh endpoint that counts exchanges."""

    def __init__(self, fail: bool = False, delay: float = 0.0, expires_in: int = 1200):
        self.fail = fail
        self.delay = delay
        self.expires_in = expires_in
        self.calls = 0

    async def exchange_refresh_token(self, entity_id, refresh_token):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError("invalid_grant")
        return {
            "access_token": f"access-{entity_id}-{self.calls}",
            "refresh_token": f"refresh-{entity_id}-{self.calls}",
            "expires_in": self.expires_in,
        }

    async def close(self):
        pass


def make_token(
    entity_id: int = 90000001,
    expires_in: timedelta = timedelta(hours=1),
    scopes: list[str] | None = None,
    **overrides,
) -> TokenRecord:
    return TokenRecord(
        entity_id=entity_id,
        access_token=overrides.pop("access_token", f"access-{entity_id}"),
        refresh_token=overrides.pop("refresh_token", f"refresh-{entity_id}"),
        expires_at=datetime.now(UTC) + expires_in,
        scopes=scopes or [],
        **overrides,
    )


@pytest_asyncio.fixture
async def repo(tmp_path):
    """Initialized SQLite repository in a temp directory."""
    repository = Repository(tmp_path / "esi_access.db")
    await repository.initialize()
    yield repository
    await repository.close()


@pytest.fixture(autouse=True)
def _fresh_metrics():
    reset_metrics()
    yield
    reset_metrics()


@pytest_asyncio.fixture
async def stack(repo):
    """Request service wired to fakes, with a fresh token for ENTITY_ID.

    The token grants every default scope; retries back off for 10ms.
    """
    proxy = FakeProxy()
    refresh_client = FakeRefreshClient()
    cache = CacheManager(repo, memory_capacity=100, preload_band_delays=(0, 0, 0))
    token_manager = TokenManager(
        repo, refresh_client, refresh_buffer_minutes=10, refresh_timeout=1
    )
    resolver = NameResolver(repo, proxy, request_timeout=1)
    service = RequestService(
        cache,
        token_manager,
        resolver,
        proxy,
        request_timeout=1,
        max_retries=2,
        retry_base_delay=0.01,
    )
    await tokens.upsert_token(
        repo, make_token(ENTITY_ID, scopes=list(global_config.esi.default_scopes))
    )
    yield SimpleNamespace(
        repo=repo,
        proxy=proxy,
        refresh_client=refresh_client,
        cache=cache,
        token_manager=token_manager,
        resolver=resolver,
        service=service,
    )
    await cache.close()
