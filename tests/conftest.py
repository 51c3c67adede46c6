"""
Shared fixtures.

Environment is pinned before any app module is imported so the settings
singleton never sees real provider credentials or a Postgres URL.
"""

import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["CACHE_BACKEND"] = "memory"
os.environ["GEOCODER_PROVIDER"] = "mock"
os.environ["UBER_ENV"] = "production"
os.environ["USE_MOCK_DATA"] = "false"
for _name in ("UBER_CLIENT_ID", "UBER_CLIENT_SECRET", "UBER_SIGNING_KEY", "UBER_WEBHOOK_SECRET"):
    os.environ.pop(_name, None)

import asyncio
import json
from typing import Any, Callable, Optional

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app.core.cache import MemoryCache
from app.database import Base
from app.models import FulfillmentType, Order, Site
from app.services.delivery.store import DeliveryRecordStore, DeliveryUpdate
from app.services.delivery.token import ProviderTokenManager
from app.services.delivery.uber_direct import UberDirectService
from app.services.geo.base import BaseGeocoder

BASE_URL = "https://api.uber.test/v1/customers"
TOKEN_URL = "https://login.uber.test/oauth/v2/token"


class FakeClock:
    """Manually advanced clock (seconds or milliseconds, caller decides)."""

    def __init__(self, now: float = 0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, amount: float) -> None:
        self.now += amount


class RecordingStore(DeliveryRecordStore):
    """In-memory DeliveryRecordStore that remembers every update."""

    def __init__(self, matches: int = 1, error: Optional[Exception] = None):
        self.matches = matches
        self.error = error
        self.calls: list[tuple[Optional[str], Optional[str], DeliveryUpdate]] = []

    async def apply_delivery_update(self, delivery_id, external_id, update):
        if self.error is not None:
            raise self.error
        self.calls.append((delivery_id, external_id, update))
        return self.matches


class ScriptedGeocoder(BaseGeocoder):
    """Returns answers by query and records every call."""

    def __init__(self, answers=None, error=None):
        self.answers = answers or {}
        self.error = error
        self.queries: list[str] = []

    @property
    def provider_name(self) -> str:
        return "scripted"

    async def geocode(self, query):
        self.queries.append(query)
        if self.error is not None:
            raise self.error
        return self.answers.get(query)

    async def health_check(self) -> bool:
        return True


class ProviderStub:
    """
    Programmable stand-in for the token endpoint and the delivery API.

    Routes are keyed by (method, path suffix); each value is a response or a
    callable producing one. Every request is recorded.
    """

    def __init__(self, token_expires_in: int = 3600):
        self.requests: list[httpx.Request] = []
        self.token_calls = 0
        self.token_expires_in = token_expires_in
        self.token_status = 200
        self.routes: dict[tuple[str, str], Any] = {}

    def route(self, method: str, suffix: str, response: Any) -> None:
        self.routes[(method, suffix)] = response

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)

        if str(request.url) == TOKEN_URL:
            self.token_calls += 1
            if self.token_status != 200:
                return httpx.Response(self.token_status, json={"error": "invalid_client"})
            return httpx.Response(
                200,
                json={
                    "access_token": f"token-{self.token_calls}",
                    "expires_in": self.token_expires_in,
                    "token_type": "Bearer",
                },
            )

        for (method, suffix), response in self.routes.items():
            if request.method == method and request.url.path.endswith(suffix):
                return response(request) if callable(response) else response
        return httpx.Response(404, json={"message": "no route"})

    @property
    def api_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if str(r.url) != TOKEN_URL]

    def last_json(self) -> dict[str, Any]:
        return json.loads(self.api_requests[-1].content)


@pytest.fixture
def provider() -> ProviderStub:
    return ProviderStub()


@pytest.fixture
def make_service(provider: ProviderStub) -> Callable[..., UberDirectService]:
    """Factory for an UberDirectService wired to the provider stub."""

    def factory(
        simulate: bool = False,
        client_id: Optional[str] = "client-id",
        client_secret: Optional[str] = "client-secret",
        cache: Optional[MemoryCache] = None,
    ) -> UberDirectService:
        client = httpx.AsyncClient(transport=httpx.MockTransport(provider.handler))
        token_manager = ProviderTokenManager(
            client=client,
            cache=cache or MemoryCache(),
            client_id=client_id,
            client_secret=client_secret,
            token_url=TOKEN_URL,
        )
        return UberDirectService(
            client=client,
            token_manager=token_manager,
            base_url=BASE_URL,
            simulate_on_undeliverable=simulate,
            currency="cad",
            tracking_base_url="https://track.test/d",
        )

    return factory


# =============================================================================
# DATABASE
# =============================================================================

def run(coro):
    """Run a coroutine from a synchronous test."""
    return asyncio.run(coro)


async def _create_schema(engine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@pytest.fixture
def session_maker(tmp_path) -> async_sessionmaker[AsyncSession]:
    """
    File-backed SQLite database with fresh tables.

    NullPool keeps connections from outliving the event loop that opened
    them (TestClient and asyncio.run each use their own loop).
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'shop.db'}", poolclass=NullPool)
    run(_create_schema(engine))
    yield async_sessionmaker(bind=engine, expire_on_commit=False)
    run(engine.dispose())


@pytest.fixture
def seed(session_maker):
    """Insert model instances and return them with their ids populated."""

    def insert(*instances):
        async def _insert():
            async with session_maker() as session:
                session.add_all(instances)
                await session.commit()
        run(_insert())
        return instances

    return insert


@pytest.fixture
def fetch_order(session_maker):
    """Load an order by id."""

    def fetch(order_id: int) -> Order:
        async def _fetch():
            async with session_maker() as session:
                return await session.get(Order, order_id)
        return run(_fetch())

    return fetch


def make_site(**overrides) -> Site:
    values = {
        "name": "Corner Bistro",
        "slug": "bistro",
        "uber_customer_id": "cust_1",
        "pickup_name": "Corner Bistro",
        "pickup_phone": "+14165550100",
        "pickup_address": {
            "streetAddress": ["1 Yonge St"],
            "city": "Toronto",
            "province": "ON",
            "postalCode": "",
            "country": "CA",
        },
    }
    values.update(overrides)
    return Site(**values)


def make_order(site: Site, **overrides) -> Order:
    values = {
        "site_id": site.id,
        "fulfillment_type": FulfillmentType.DELIVERY,
        "items": [{"name": "Green Curry", "quantity": 1, "price": 1500}],
        "total_cents": 1500,
    }
    values.update(overrides)
    return Order(**values)
