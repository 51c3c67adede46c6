"""
Delivery Service Abstract Base Class

Defines the result types and the interface contract for delivery
dispatch providers. The rest of the application only talks to
BaseDeliveryService, so routes and tasks stay provider-agnostic.

Design Pattern: Strategy Pattern
    - UberDirectService is the production implementation
    - Tests inject fakes through the same interface
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from app.services.geo.base import Address


# Statuses the platform knows how to display. Provider values outside this
# set are stored unchanged.
KNOWN_STATUSES = frozenset({
    "pending",
    "courier_accepted",
    "pickup",
    "pickup_complete",
    "picked_up",
    "dropoff",
    "delivered",
    "canceled",
    "returned",
})

_STATUS_ALIASES = {
    "cancelled": "canceled",
}


def normalize_status(value: Any) -> Optional[str]:
    """
    Normalize a provider status string.

    Lower-cases, turns spaces and hyphens into underscores and maps known
    spelling variants. Unknown statuses pass through in normalized form.

    Example:
        >>> normalize_status("Pickup Complete")
        'pickup_complete'
    """
    if value is None:
        return None
    text = "_".join(str(value).strip().lower().replace("-", " ").split())
    if not text:
        return None
    return _STATUS_ALIASES.get(text, text)


@dataclass
class Contact:
    """A pickup or drop-off party: address plus optional name and phone."""
    address: Address
    name: Optional[str] = None
    phone: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> "Contact":
        data = data or {}
        return cls(
            address=Address.from_dict(data.get("address")),
            name=data.get("name"),
            phone=data.get("phone"),
        )


@dataclass
class QuoteResult:
    """
    Priced, time-estimated delivery offer.

    Attributes:
        fee: Fee in minor currency units (cents)
        currency: Currency code
        dropoff_eta: Estimated drop-off time
        quote_id: Provider quote identifier
        expires_at: When the quote stops being honoured
        simulated: True when synthesized instead of returned by the provider
        raw: Provider payload
    """
    fee: int
    currency: str
    dropoff_eta: Optional[datetime] = None
    quote_id: Optional[str] = None
    expires_at: Optional[datetime] = None
    simulated: bool = False
    raw: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.quote_id,
            "fee": self.fee,
            "currency": self.currency,
            "dropoff_eta": self.dropoff_eta.isoformat() if self.dropoff_eta else None,
            "expires": self.expires_at.isoformat() if self.expires_at else None,
            "simulated": self.simulated,
        }


@dataclass
class DeliveryRecord:
    """
    The provider's view of a committed delivery.

    Attributes:
        delivery_id: Provider-assigned id
        status: Normalized status string
        tracking_url: Customer-facing tracking page
        external_id: Correlation id chosen by this platform
        fee: Fee in cents, when reported
        currency: Fee currency
        tip: Tip in cents
        simulated: True when synthesized instead of returned by the provider
        raw: Provider payload
    """
    delivery_id: str
    status: Optional[str] = None
    tracking_url: Optional[str] = None
    external_id: Optional[str] = None
    fee: Optional[int] = None
    currency: Optional[str] = None
    tip: Optional[int] = None
    simulated: bool = False
    raw: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.delivery_id,
            "status": self.status,
            "tracking_url": self.tracking_url,
            "external_id": self.external_id,
            "fee": self.fee,
            "currency": self.currency,
            "tip": self.tip,
            "simulated": self.simulated,
        }


class BaseDeliveryService(ABC):
    """
    Abstract base class for delivery dispatch providers.

    Example:
        >>> service = get_delivery_service()
        >>> quote = await service.request_quote(customer_id, pickup, dropoff)
        >>> print(quote.fee, quote.currency)
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name (e.g., "uber_direct")."""
        pass

    @abstractmethod
    async def request_quote(
        self,
        customer_id: str,
        pickup: Contact,
        dropoff: Contact,
    ) -> QuoteResult:
        """
        Price a delivery between two parties.

        Raises:
            CredentialsMissing, ProviderAuthError, ProviderRequestFailed
        """
        pass

    @abstractmethod
    async def create_delivery(
        self,
        customer_id: str,
        pickup: Contact,
        dropoff: Contact,
        manifest_items: Optional[list[dict[str, Any]]] = None,
        tip: Optional[int] = None,
        external_id: Optional[str] = None,
    ) -> DeliveryRecord:
        """
        Dispatch a courier.

        Args:
            customer_id: Provider customer account
            pickup: Restaurant location
            dropoff: Customer location
            manifest_items: Items being transported
            tip: Tip in cents
            external_id: Platform correlation id (usually the order id)

        Raises:
            CredentialsMissing, ProviderAuthError, ProviderRequestFailed
        """
        pass

    @abstractmethod
    async def get_delivery(self, customer_id: str, delivery_id: str) -> DeliveryRecord:
        """
        Fetch the current state of a delivery.

        Raises:
            CredentialsMissing, ProviderAuthError, ProviderRequestFailed
        """
        pass

    @abstractmethod
    async def health_check(self, customer_id: str, pickup: Contact) -> dict[str, Any]:
        """
        Verify the provider is usable for a site.

        Returns:
            dict with ok plus fee/eta, or ok=False with an error message
        """
        pass
