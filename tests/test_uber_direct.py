"""
Tests for the Uber Direct quote / create / get client.
"""

from datetime import datetime, timedelta, timezone

import httpx
import pytest

from app.core.exceptions import CredentialsMissing, ProviderRequestFailed
from app.services.delivery.base import Contact
from app.services.delivery.simulation import is_undeliverable_error
from app.services.geo.base import Address

from tests.conftest import BASE_URL

PICKUP = Contact(
    address=Address(["100 Queen St W"], "Toronto", "Ontario", "M5H 2N2", "CA"),
    name="Corner Bistro",
    phone="+14165550100",
)
DROPOFF = Contact(
    address=Address(["2 Bloor St W"], "Toronto", "ON", "m4w 3e2"),
    name="Jane Doe",
    phone="+14165550199",
)

UNDELIVERABLE = httpx.Response(
    400,
    json={"code": "address_undeliverable", "message": "The specified location is not in a deliverable area."},
)


class TestRequestQuote:
    """Tests for request_quote."""

    @pytest.mark.asyncio
    async def test_quote(self, provider, make_service):
        provider.route("POST", "/delivery_quotes", httpx.Response(200, json={
            "id": "dqt_123",
            "fee": 1250,
            "currency": "cad",
            "dropoff_eta": "2026-10-19T18:30:00Z",
            "expires": "2026-10-19T18:05:00Z",
        }))
        service = make_service()

        quote = await service.request_quote("cust 1", PICKUP, DROPOFF)

        assert quote.quote_id == "dqt_123"
        assert quote.fee == 1250
        assert quote.currency == "cad"
        assert quote.dropoff_eta == datetime(2026, 10, 19, 18, 30, tzinfo=timezone.utc)
        assert quote.simulated is False

        request = provider.api_requests[-1]
        assert str(request.url) == f"{BASE_URL}/cust%201/delivery_quotes"
        assert request.headers["Authorization"] == "Bearer token-1"

        payload = provider.last_json()
        assert payload["pickup_address"] == "100 Queen St W, Toronto, ON, M5H 2N2, CA"
        assert payload["dropoff_address"] == "2 Bloor St W, Toronto, ON, M4W 3E2, CA"
        assert payload["dropoff_phone_number"] == "+14165550199"
        assert "pickup_ready_dt" in payload

    @pytest.mark.asyncio
    async def test_token_reused_across_calls(self, provider, make_service):
        provider.route("POST", "/delivery_quotes", httpx.Response(200, json={"id": "q", "fee": 900}))
        service = make_service()

        await service.request_quote("cust", PICKUP, DROPOFF)
        await service.request_quote("cust", PICKUP, DROPOFF)
        assert provider.token_calls == 1

    @pytest.mark.asyncio
    async def test_provider_error(self, provider, make_service):
        provider.route("POST", "/delivery_quotes", httpx.Response(500, text="x" * 2000))
        service = make_service()

        with pytest.raises(ProviderRequestFailed) as exc_info:
            await service.request_quote("cust", PICKUP, DROPOFF)
        assert exc_info.value.status_code == 500
        assert len(exc_info.value.body) == 500
        assert not exc_info.value.is_client_error

    @pytest.mark.asyncio
    async def test_undeliverable_without_simulation(self, provider, make_service):
        provider.route("POST", "/delivery_quotes", UNDELIVERABLE)
        service = make_service(simulate=False)

        with pytest.raises(ProviderRequestFailed) as exc_info:
            await service.request_quote("cust", PICKUP, DROPOFF)
        assert exc_info.value.is_client_error

    @pytest.mark.asyncio
    async def test_undeliverable_simulated(self, provider, make_service):
        provider.route("POST", "/delivery_quotes", UNDELIVERABLE)
        service = make_service(simulate=True)
        before = datetime.now(timezone.utc)

        quote = await service.request_quote("cust", PICKUP, DROPOFF)

        assert quote.simulated is True
        assert quote.fee == 799
        assert quote.currency == "cad"
        assert before + timedelta(minutes=44) < quote.dropoff_eta < before + timedelta(minutes=46)

    @pytest.mark.asyncio
    async def test_other_errors_not_simulated(self, provider, make_service):
        provider.route("POST", "/delivery_quotes", httpx.Response(400, json={"code": "invalid_params"}))
        service = make_service(simulate=True)

        with pytest.raises(ProviderRequestFailed):
            await service.request_quote("cust", PICKUP, DROPOFF)

    @pytest.mark.asyncio
    async def test_missing_credentials(self, provider, make_service):
        service = make_service(client_id=None)

        with pytest.raises(CredentialsMissing):
            await service.request_quote("cust", PICKUP, DROPOFF)
        assert provider.requests == []

    @pytest.mark.asyncio
    async def test_unauthorized_drops_cached_token(self, provider, make_service):
        provider.route("POST", "/delivery_quotes", httpx.Response(401, json={"code": "unauthorized"}))
        service = make_service()

        for _ in range(2):
            with pytest.raises(ProviderRequestFailed):
                await service.request_quote("cust", PICKUP, DROPOFF)
        assert provider.token_calls == 2

    @pytest.mark.asyncio
    async def test_timeout_maps_to_504(self, provider, make_service):
        def slow(request):
            raise httpx.ReadTimeout("slow", request=request)

        provider.route("POST", "/delivery_quotes", slow)
        service = make_service()

        with pytest.raises(ProviderRequestFailed) as exc_info:
            await service.request_quote("cust", PICKUP, DROPOFF)
        assert exc_info.value.status_code == 504

    @pytest.mark.asyncio
    async def test_transport_error_maps_to_502(self, provider, make_service):
        def refused(request):
            raise httpx.ConnectError("refused", request=request)

        provider.route("POST", "/delivery_quotes", refused)
        service = make_service()

        with pytest.raises(ProviderRequestFailed) as exc_info:
            await service.request_quote("cust", PICKUP, DROPOFF)
        assert exc_info.value.status_code == 502


class TestCreateDelivery:
    """Tests for create_delivery."""

    @pytest.mark.asyncio
    async def test_create(self, provider, make_service):
        provider.route("POST", "/deliveries", httpx.Response(200, json={
            "id": "del_abc",
            "status": "Pending",
            "tracking_url": "https://delivery.uber.com/orders/del_abc",
            "fee": 1250,
            "currency": "cad",
        }))
        service = make_service()
        items = [{"name": "Green Curry", "quantity": 2}]

        record = await service.create_delivery(
            "cust", PICKUP, DROPOFF, manifest_items=items, tip=300, external_id="order-42"
        )

        assert record.delivery_id == "del_abc"
        assert record.status == "pending"
        assert record.tracking_url == "https://delivery.uber.com/orders/del_abc"
        assert record.external_id == "order-42"
        assert record.simulated is False

        payload = provider.last_json()
        assert payload["pickup_name"] == "Corner Bistro"
        assert payload["dropoff_name"] == "Jane Doe"
        assert payload["manifest_items"] == items
        assert payload["tip_by_customer"] == 300
        assert payload["external_id"] == "order-42"

    @pytest.mark.asyncio
    async def test_undeliverable_simulated(self, provider, make_service):
        provider.route("POST", "/deliveries", httpx.Response(
            422, text='{"code":"no_eligible_products","message":"No eligible products"}'
        ))
        service = make_service(simulate=True)

        record = await service.create_delivery("cust", PICKUP, DROPOFF, tip=250, external_id="order-7")

        assert record.simulated is True
        assert record.status == "courier_accepted"
        assert record.delivery_id.startswith("sim_del_")
        assert record.tracking_url == f"https://track.test/d/{record.delivery_id}"
        assert record.tip == 250
        assert record.external_id == "order-7"

    @pytest.mark.asyncio
    async def test_simulated_ids_are_unique(self, provider, make_service):
        provider.route("POST", "/deliveries", UNDELIVERABLE)
        service = make_service(simulate=True)

        first = await service.create_delivery("cust", PICKUP, DROPOFF)
        second = await service.create_delivery("cust", PICKUP, DROPOFF)
        assert first.delivery_id != second.delivery_id


class TestGetDelivery:
    """Tests for get_delivery."""

    @pytest.mark.asyncio
    async def test_get(self, provider, make_service):
        provider.route("GET", "/deliveries/del_abc", httpx.Response(200, json={
            "id": "del_abc",
            "status": "pickup_complete",
            "tracking_url": "https://delivery.uber.com/orders/del_abc",
        }))
        service = make_service()

        record = await service.get_delivery("cust", "del_abc")

        assert record.status == "pickup_complete"
        assert provider.api_requests[-1].method == "GET"

    @pytest.mark.asyncio
    async def test_unknown_delivery(self, provider, make_service):
        provider.route("GET", "/deliveries/nope", httpx.Response(404, json={"code": "not_found"}))
        service = make_service()

        with pytest.raises(ProviderRequestFailed) as exc_info:
            await service.get_delivery("cust", "nope")
        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_simulated_delivery_not_sent_to_provider(self, provider, make_service):
        service = make_service(simulate=True)

        record = await service.get_delivery("cust", "sim_del_abc")

        assert record.simulated is True
        assert record.status == "courier_accepted"
        assert provider.requests == []


class TestHealthCheck:
    """Tests for the provider connectivity check."""

    @pytest.mark.asyncio
    async def test_ok(self, provider, make_service):
        provider.route("POST", "/delivery_quotes", httpx.Response(200, json={
            "id": "q", "fee": 500, "dropoff_eta": "2026-10-19T18:30:00Z",
        }))
        service = make_service()

        report = await service.health_check("cust", PICKUP)

        assert report["ok"] is True
        assert report["fee"] == 500
        assert report["eta"].startswith("2026-10-19T18:30:00")
        payload = provider.last_json()
        assert payload["pickup_address"] == payload["dropoff_address"]

    @pytest.mark.asyncio
    async def test_reports_error(self, provider, make_service):
        service = make_service(client_secret=None)

        report = await service.health_check("cust", PICKUP)
        assert report == {"ok": False, "error": "Uber credentials missing"}


class TestUndeliverableMatcher:
    """Tests for the undeliverable-address error matcher."""

    @pytest.mark.parametrize("body", [
        '{"code":"address_undeliverable"}',
        "Address Undeliverable",
        "undeliverable address",
        '{"code":"no_eligible_products"}',
        "No eligible product for this route",
    ])
    def test_matches(self, body):
        assert is_undeliverable_error(body)

    @pytest.mark.parametrize("body", ["", None, "invalid_params", "rate limited"])
    def test_does_not_match(self, body):
        assert not is_undeliverable_error(body)
