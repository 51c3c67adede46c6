"""
Uber Direct Delivery Service Implementation

Production implementation of the delivery dispatch provider.

Requirements:
    - UBER_CLIENT_ID / UBER_CLIENT_SECRET for the client-credentials grant
    - A per-site provider customer id (Site.uber_customer_id)

Environment:
    - UBER_ENV=sandbox targets the sandbox API and enables fallback
      simulation for undeliverable test addresses
    - USE_MOCK_DATA=true enables fallback simulation on any environment

API Documentation:
    https://developer.uber.com/docs/deliveries/overview
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional
from urllib.parse import quote as url_quote

import httpx

from app.core.exceptions import (
    CredentialsMissing,
    ProviderAuthError,
    ProviderRequestFailed,
)
from app.services.delivery.addressing import format_provider_address
from app.services.delivery.base import (
    BaseDeliveryService,
    Contact,
    DeliveryRecord,
    QuoteResult,
    normalize_status,
)
from app.services.delivery.simulation import (
    is_undeliverable_error,
    simulated_delivery,
    simulated_quote,
)
from app.services.delivery.token import ProviderTokenManager

logger = logging.getLogger(__name__)

SIMULATED_ID_PREFIX = "sim_del_"


def _parse_datetime(value: Any) -> Optional[datetime]:
    if not value or not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _parse_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def parse_quote(data: dict[str, Any], default_currency: str) -> QuoteResult:
    """Map a delivery_quotes response onto QuoteResult."""
    return QuoteResult(
        fee=_parse_int(data.get("fee")) or 0,
        currency=data.get("currency") or data.get("currency_type") or default_currency,
        dropoff_eta=_parse_datetime(data.get("dropoff_eta") or data.get("dropoff_estimated_dt")),
        quote_id=data.get("id"),
        expires_at=_parse_datetime(data.get("expires")),
        simulated=False,
        raw=data,
    )


def parse_delivery(data: dict[str, Any]) -> DeliveryRecord:
    """Map a deliveries response onto DeliveryRecord."""
    return DeliveryRecord(
        delivery_id=str(data.get("id") or ""),
        status=normalize_status(data.get("status")),
        tracking_url=data.get("tracking_url"),
        external_id=data.get("external_id"),
        fee=_parse_int(data.get("fee")),
        currency=data.get("currency"),
        tip=_parse_int(data.get("tip") or data.get("tip_by_customer")),
        simulated=False,
        raw=data,
    )


class UberDirectService(BaseDeliveryService):
    """
    Uber Direct quote / create / track client.

    Example:
        >>> service = UberDirectService(client, token_manager, base_url)
        >>> quote = await service.request_quote("cust_123", pickup, dropoff)
        >>> print(quote.fee)
        1250
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        token_manager: ProviderTokenManager,
        base_url: str,
        simulate_on_undeliverable: bool = False,
        currency: str = "cad",
        tracking_base_url: str = "https://tracking.example.invalid/deliveries",
        default_country: str = "CA",
        timeout: float = 10.0,
    ):
        """
        Initialize the service.

        Args:
            client: Shared HTTP client
            token_manager: Supplies bearer tokens
            base_url: Customer-scoped API root (production or sandbox)
            simulate_on_undeliverable: Replace undeliverable-address errors
                with simulated success responses
            currency: Currency of simulated quotes
            tracking_base_url: Prefix for simulated tracking URLs
            default_country: Country used when an address has none
            timeout: Per-call timeout in seconds
        """
        self._client = client
        self._tokens = token_manager
        self.base_url = base_url.rstrip("/")
        self.simulate_on_undeliverable = simulate_on_undeliverable
        self.currency = currency
        self.tracking_base_url = tracking_base_url
        self.default_country = default_country
        self._timeout = timeout

        logger.info(
            f"UberDirectService initialized "
            f"(base_url={self.base_url}, simulate={simulate_on_undeliverable})"
        )

    @property
    def provider_name(self) -> str:
        """Return the provider name."""
        return "uber_direct"

    def _customer_url(self, customer_id: str, *path: str) -> str:
        segments = [url_quote(str(customer_id), safe="")]
        segments.extend(url_quote(str(p), safe="") for p in path)
        return f"{self.base_url}/{'/'.join(segments)}"

    def _address(self, contact: Contact) -> str:
        return format_provider_address(contact.address, self.default_country)

    async def _request(
        self,
        operation: str,
        method: str,
        url: str,
        payload: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        """
        Call the provider and return the decoded JSON body.

        Raises:
            ProviderRequestFailed: non-2xx status, timeout (504), transport
                error (502) or an unreadable body
        """
        token = await self._tokens.get_token()
        headers = {"Authorization": f"Bearer {token}"}

        try:
            response = await self._client.request(
                method,
                url,
                json=payload,
                headers=headers,
                timeout=self._timeout,
            )
        except httpx.TimeoutException as e:
            logger.error(f"Uber: {operation} timed out")
            raise ProviderRequestFailed(operation, 504, "Request timed out") from e
        except httpx.HTTPError as e:
            logger.error(f"Uber: {operation} transport error - {e}")
            raise ProviderRequestFailed(operation, 502, str(e)) from e

        if not response.is_success:
            error = ProviderRequestFailed(operation, response.status_code, response.text)
            if response.status_code == 401:
                await self._tokens.invalidate()
            logger.warning(f"Uber: {operation} failed - {response.status_code} {error.body}")
            raise error

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderRequestFailed(operation, 502, "Invalid JSON from provider") from e

        if not isinstance(data, dict):
            raise ProviderRequestFailed(operation, 502, "Unexpected response shape")
        return data

    def _should_simulate(self, error: ProviderRequestFailed) -> bool:
        return self.simulate_on_undeliverable and is_undeliverable_error(error.body)

    async def request_quote(
        self,
        customer_id: str,
        pickup: Contact,
        dropoff: Contact,
    ) -> QuoteResult:
        """Price a delivery from pickup to dropoff."""
        payload: dict[str, Any] = {
            "pickup_address": self._address(pickup),
            "dropoff_address": self._address(dropoff),
            "pickup_ready_dt": datetime.now(timezone.utc).isoformat(),
        }
        if pickup.phone:
            payload["pickup_phone_number"] = pickup.phone
        if dropoff.phone:
            payload["dropoff_phone_number"] = dropoff.phone

        try:
            data = await self._request(
                "quote", "POST", self._customer_url(customer_id, "delivery_quotes"), payload
            )
        except ProviderRequestFailed as e:
            if self._should_simulate(e):
                logger.warning("Uber: quote rejected as undeliverable, returning simulated quote")
                return simulated_quote(self.currency)
            raise

        quote = parse_quote(data, self.currency)
        logger.info(f"Uber: quote {quote.quote_id} - {quote.fee} {quote.currency}")
        return quote

    async def create_delivery(
        self,
        customer_id: str,
        pickup: Contact,
        dropoff: Contact,
        manifest_items: Optional[list[dict[str, Any]]] = None,
        tip: Optional[int] = None,
        external_id: Optional[str] = None,
    ) -> DeliveryRecord:
        """Dispatch a courier from pickup to dropoff."""
        payload: dict[str, Any] = {
            "pickup_name": pickup.name,
            "pickup_phone_number": pickup.phone,
            "pickup_address": self._address(pickup),
            "dropoff_name": dropoff.name,
            "dropoff_phone_number": dropoff.phone,
            "dropoff_address": self._address(dropoff),
            "manifest_items": manifest_items or [],
            "tip_by_customer": tip or 0,
        }
        if external_id:
            payload["external_id"] = external_id

        try:
            data = await self._request(
                "create", "POST", self._customer_url(customer_id, "deliveries"), payload
            )
        except ProviderRequestFailed as e:
            if self._should_simulate(e):
                logger.warning("Uber: delivery rejected as undeliverable, returning simulated delivery")
                return simulated_delivery(
                    self.tracking_base_url,
                    self.currency,
                    tip=tip,
                    external_id=external_id,
                )
            raise

        record = parse_delivery(data)
        if not record.external_id:
            record.external_id = external_id
        logger.info(f"Uber: delivery {record.delivery_id} created - status={record.status}")
        return record

    async def get_delivery(self, customer_id: str, delivery_id: str) -> DeliveryRecord:
        """Fetch the current state of a delivery."""
        if self.simulate_on_undeliverable and delivery_id.startswith(SIMULATED_ID_PREFIX):
            # Simulated deliveries never reach the provider
            return DeliveryRecord(
                delivery_id=delivery_id,
                status="courier_accepted",
                tracking_url=f"{self.tracking_base_url.rstrip('/')}/{delivery_id}",
                currency=self.currency,
                simulated=True,
            )

        data = await self._request(
            "get", "GET", self._customer_url(customer_id, "deliveries", delivery_id)
        )
        return parse_delivery(data)

    async def health_check(self, customer_id: str, pickup: Contact) -> dict[str, Any]:
        """Quote the pickup location to itself."""
        dropoff = Contact(
            address=pickup.address,
            name=pickup.name or "Test",
            phone=pickup.phone or "+10000000000",
        )
        try:
            quote = await self.request_quote(customer_id, pickup, dropoff)
        except (CredentialsMissing, ProviderAuthError, ProviderRequestFailed) as e:
            logger.error(f"Uber: Health check failed - {e}")
            return {"ok": False, "error": str(e)}

        return {
            "ok": True,
            "fee": quote.fee,
            "eta": quote.dropoff_eta.isoformat() if quote.dropoff_eta else None,
            "simulated": quote.simulated,
        }
