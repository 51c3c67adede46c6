"""
Tests for the order-backed delivery store and the status sync task.
"""

import httpx
import pytest

from app import tasks
from app.core.cache import MemoryCache
from app.core.exceptions import ProviderRequestFailed
from app.models import FulfillmentType, Order
from app.services.delivery.base import DeliveryRecord
from app.services.delivery.store import DeliveryUpdate, SqlAlchemyDeliveryStore
from app.tasks import refresh_order_delivery

from tests.conftest import make_order, make_site, run


class TestDeliveryUpdate:
    """Tests for the partial update mapping."""

    def test_only_set_fields_are_written(self):
        assert DeliveryUpdate(status="pickup").to_columns() == {"uber_status": "pickup"}
        assert DeliveryUpdate().is_empty
        assert DeliveryUpdate().to_columns() == {}

    def test_from_record(self):
        record = DeliveryRecord(
            delivery_id="del_1",
            status="pending",
            tracking_url="https://t/1",
            simulated=True,
        )
        assert DeliveryUpdate.from_record(record).to_columns() == {
            "uber_status": "pending",
            "uber_tracking_url": "https://t/1",
            "uber_delivery_id": "del_1",
            "delivery_simulated": True,
        }


class TestSqlAlchemyDeliveryStore:
    """Tests for locating and updating orders."""

    def test_update_by_delivery_id(self, session_maker, seed, fetch_order):
        (site,) = seed(make_site())
        target, other = seed(
            make_order(site, uber_delivery_id="del_1"),
            make_order(site, uber_delivery_id="del_2"),
        )
        store = SqlAlchemyDeliveryStore(session_maker)

        count = run(store.apply_delivery_update("del_1", None, DeliveryUpdate(status="delivered")))

        assert count == 1
        assert fetch_order(target.id).uber_status == "delivered"
        assert fetch_order(other.id).uber_status is None

    def test_update_by_external_id(self, session_maker, seed, fetch_order):
        (site,) = seed(make_site())
        (order,) = seed(make_order(site, external_id="order-1"))
        store = SqlAlchemyDeliveryStore(session_maker)

        count = run(store.apply_delivery_update(
            None, "order-1", DeliveryUpdate(delivery_id="del_9", tracking_url="https://t/9")
        ))

        assert count == 1
        stored = fetch_order(order.id)
        assert stored.uber_delivery_id == "del_9"
        assert stored.uber_tracking_url == "https://t/9"
        assert stored.uber_status is None

    def test_orders_default_to_delivery(self, seed, fetch_order):
        (site,) = seed(make_site())
        (order,) = seed(Order(site_id=site.id, items=[], total_cents=0))

        assert fetch_order(order.id).fulfillment_type == FulfillmentType.DELIVERY
        assert {t.value for t in FulfillmentType} == {"pickup", "delivery"}

    def test_no_match(self, session_maker, seed):
        seed(make_site())
        store = SqlAlchemyDeliveryStore(session_maker)
        assert run(store.apply_delivery_update("del_x", None, DeliveryUpdate(status="pending"))) == 0

    def test_nothing_to_apply(self, session_maker):
        store = SqlAlchemyDeliveryStore(session_maker)
        assert run(store.apply_delivery_update("del_1", None, DeliveryUpdate())) == 0
        assert run(store.apply_delivery_update(None, None, DeliveryUpdate(status="pending"))) == 0


class TestRefreshOrderDelivery:
    """Tests for the background status refresh."""

    def test_refreshes_status(self, session_maker, seed, fetch_order, provider, make_service):
        (site,) = seed(make_site())
        (order,) = seed(make_order(site, uber_delivery_id="del_5", uber_status="pending"))
        provider.route("GET", "/deliveries/del_5", httpx.Response(200, json={
            "id": "del_5", "status": "delivered", "tracking_url": "https://t/5",
        }))

        result = run(refresh_order_delivery(order.id, make_service(), session_maker))

        assert result["success"] is True
        assert result["status"] == "delivered"
        stored = fetch_order(order.id)
        assert stored.uber_status == "delivered"
        assert stored.uber_tracking_url == "https://t/5"
        assert "/cust_1/deliveries/del_5" in str(provider.api_requests[-1].url)

    def test_order_without_delivery(self, session_maker, seed, provider, make_service):
        (site,) = seed(make_site())
        (order,) = seed(make_order(site))

        result = run(refresh_order_delivery(order.id, make_service(), session_maker))

        assert result["success"] is False
        assert provider.requests == []

    def test_unknown_order(self, session_maker, make_service):
        result = run(refresh_order_delivery(12345, make_service(), session_maker))
        assert result == {"success": False, "message": "Order #12345 not found"}

    def test_provider_error_propagates(self, session_maker, seed, provider, make_service):
        (site,) = seed(make_site())
        (order,) = seed(make_order(site, uber_delivery_id="del_5"))
        provider.route("GET", "/deliveries/del_5", httpx.Response(500, text="boom"))

        with pytest.raises(ProviderRequestFailed):
            run(refresh_order_delivery(order.id, make_service(), session_maker))

    def test_transport_error_surfaces_as_provider_failure(self, session_maker, seed, provider, make_service):
        (site,) = seed(make_site())
        (order,) = seed(make_order(site, uber_delivery_id="del_5"))

        def refuse(request):
            raise httpx.ConnectError("refused", request=request)

        provider.route("GET", "/deliveries/del_5", refuse)

        with pytest.raises(ProviderRequestFailed) as exc_info:
            run(refresh_order_delivery(order.id, make_service(), session_maker))
        assert exc_info.value.status_code == 502


class ClosingCache(MemoryCache):
    """MemoryCache that records being closed."""

    def __init__(self):
        super().__init__()
        self.closed = False

    async def aclose(self):
        self.closed = True


class TestSyncWithFreshClient:
    """Tests for the per-task resource lifecycle."""

    def test_token_cache_built_and_closed_per_task(self, monkeypatch):
        caches = []

        def build():
            caches.append(ClosingCache())
            return caches[-1]

        async def fake_refresh(order_id, service, session_factory):
            assert service._tokens._cache is caches[-1]
            return {"success": True, "message": "ok"}

        monkeypatch.setattr(tasks, "build_token_cache", build)
        monkeypatch.setattr(tasks, "refresh_order_delivery", fake_refresh)

        run(tasks._sync_with_fresh_client(1))
        run(tasks._sync_with_fresh_client(2))

        assert len(caches) == 2
        assert caches[0] is not caches[1]
        assert all(cache.closed for cache in caches)

    def test_token_cache_closed_on_failure(self, monkeypatch):
        cache = ClosingCache()

        async def failing_refresh(order_id, service, session_factory):
            raise ProviderRequestFailed("get", 502, "refused")

        monkeypatch.setattr(tasks, "build_token_cache", lambda: cache)
        monkeypatch.setattr(tasks, "refresh_order_delivery", failing_refresh)

        with pytest.raises(ProviderRequestFailed):
            run(tasks._sync_with_fresh_client(1))
        assert cache.closed
