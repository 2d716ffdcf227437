import os

# settings are read at import time; point them at throwaway infrastructure first
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["CREDENTIALS_ENCRYPTION_KEY"] = "MDEyMzQ1Njc4OWFiY2RlZjAxMjM0NTY3ODlhYmNkZWY="
os.environ["RATE_LIMITER_BACKEND"] = "none"
os.environ["TELEMETRY_ENABLED"] = "false"

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Import Base + all models so metadata is complete
from channel_hub.models import Base
from channel_hub.models.marketplace_account import MarketplaceAccount

from channel_hub.api.deps import get_marketplace_client
from channel_hub.core.crypto import encrypt_json
from channel_hub.core.db import get_db
from channel_hub.main import app
from channel_hub.marketplaces.client import MarketplaceClient
from channel_hub.services.health import report_cache
from channel_hub.services.rate_limit import NoopRateLimiter
from channel_hub.services.retry import RetryPolicy


async def _no_sleep(_seconds: float) -> None:
    return None


class Recorder:
    """MockTransport handler that answers from a route table and keeps every request."""

    def __init__(self, routes: dict | None = None, default: httpx.Response | None = None):
        self.routes = dict(routes or {})
        self.default = default
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, request.url.path)
        if key in self.routes:
            answer = self.routes[key]
            return answer(request) if callable(answer) else answer
        if self.default is not None:
            return self.default
        return httpx.Response(404, json={"errors": "Not Found"})

    def paths(self) -> list[str]:
        return [r.url.path for r in self.requests]


class FakeRedis:
    def __init__(self):
        self.store = {}
        self.ttl = {}

    async def incr(self, key):
        self.store[key] = int(self.store.get(key, 0)) + 1
        return self.store[key]

    async def expire(self, key, seconds):
        self.ttl[key] = seconds
        return True


@pytest.fixture
async def async_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
async def db_session(async_engine):
    session_factory = async_sessionmaker(bind=async_engine, expire_on_commit=False, class_=AsyncSession)
    async with session_factory() as session:
        yield session


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
async def marketplace_client(recorder):
    http = httpx.AsyncClient(transport=httpx.MockTransport(recorder))
    mc = MarketplaceClient(
        http=http,
        rate_limiter=NoopRateLimiter(),
        retry=RetryPolicy(attempts=3, delay_ms=0, sleep=_no_sleep),
    )
    try:
        yield mc
    finally:
        await http.aclose()


@pytest.fixture
def make_account(db_session):
    async def _make(
        marketplace_type: str = "shopify",
        name: str = "main-store",
        *,
        credentials: dict | None = None,
        subtype: str | None = None,
        settings: dict | None = None,
        is_active: bool = True,
    ) -> MarketplaceAccount:
        account = MarketplaceAccount(
            name=name,
            marketplace_type=marketplace_type,
            marketplace_subtype=subtype,
            credentials_ciphertext=encrypt_json(credentials) if credentials else None,
            settings=settings or {},
            is_active=is_active,
        )
        db_session.add(account)
        await db_session.commit()
        return account

    return _make


SHOPIFY_CREDENTIALS = {"store_url": "demo.myshopify.com", "access_token": "shpat_test_token"}
MIRAKL_CREDENTIALS = {"api_url": "https://bq.mirakl.net", "api_key": "mk-test-key"}


@pytest_asyncio.fixture
async def shopify_account(make_account):
    return await make_account("shopify", "main-store", credentials=SHOPIFY_CREDENTIALS)


@pytest_asyncio.fixture
async def mirakl_account(make_account):
    return await make_account("mirakl", "bq-shop", credentials=MIRAKL_CREDENTIALS, subtype="bq")


@pytest.fixture(autouse=True)
def _fresh_health_cache():
    report_cache.clear()
    yield
    report_cache.clear()


@pytest.fixture
async def client(db_session: AsyncSession, marketplace_client: MarketplaceClient):
    """
    HTTP client that uses the test DB session and mocked marketplace transport via dependency overrides.
    """
    async def _override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_marketplace_client] = lambda: marketplace_client

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def fake_redis():
    return FakeRedis()
