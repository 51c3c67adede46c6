"""
Pydantic Schemas for Request/Response Validation

Field names follow the storefront's camelCase JSON; Python attributes are
snake_case with aliases.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Any, Optional, List, Union
from datetime import datetime

from app.services.delivery.base import Contact, DeliveryRecord, QuoteResult
from app.services.geo.base import Address


# Spelled-out or ISO alpha-3 country names mapped to the two-letter code
COUNTRY_ALIASES = {
    "can": "CA",
    "canada": "CA",
    "usa": "US",
    "united states": "US",
    "united states of america": "US",
}


class CamelModel(BaseModel):
    """Accepts both alias (camelCase) and field names."""
    model_config = ConfigDict(populate_by_name=True)


# =============================================================================
# REQUEST SCHEMAS
# =============================================================================

class AddressIn(CamelModel):
    """Mailing address as sent by the storefront."""
    street_address: List[str] = Field(
        default_factory=list,
        alias="streetAddress",
        examples=[["100 Queen St W"]],
    )
    city: Optional[str] = Field(None, max_length=100, examples=["Toronto"])
    province: Optional[str] = Field(None, max_length=100, examples=["ON"])
    postal_code: Optional[str] = Field(None, alias="postalCode", max_length=20, examples=["M5H 2N2"])
    country: Optional[str] = Field(None, max_length=60, examples=["CA"])

    @field_validator("street_address", mode="before")
    @classmethod
    def coerce_street_lines(cls, v: Union[str, List[str], None]) -> List[str]:
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return v

    @field_validator("country", mode="before")
    @classmethod
    def normalize_country(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = str(v).strip()
        if v.lower() in COUNTRY_ALIASES:
            return COUNTRY_ALIASES[v.lower()]
        if len(v) <= 3:
            return v.upper() or None
        return v

    def to_address(self) -> Address:
        return Address(
            street_address=list(self.street_address),
            city=self.city,
            province=self.province,
            postal_code=self.postal_code,
            country=self.country,
        )


class ContactIn(CamelModel):
    """Pickup or drop-off party."""
    name: Optional[str] = Field(None, max_length=120, examples=["Jane Doe"])
    phone: Optional[str] = Field(None, max_length=30, examples=["+14165550100"])
    address: Optional[AddressIn] = None

    def to_contact(self) -> Contact:
        address = self.address.to_address() if self.address else Address()
        return Contact(address=address, name=self.name, phone=self.phone)

    @property
    def has_street(self) -> bool:
        return bool(self.address and self.address.to_address().has_street)


class ManifestItem(CamelModel):
    """Item handed to the courier."""
    name: str = Field(..., min_length=1, max_length=200, examples=["Green Curry"])
    quantity: int = Field(default=1, ge=1, le=999)
    size: Optional[str] = Field(None, examples=["small"])
    price: Optional[int] = Field(None, ge=0, description="Unit price in cents")


class QuoteRequest(CamelModel):
    dropoff: Optional[ContactIn] = None


class FeeEstimateRequest(CamelModel):
    dropoff: Optional[ContactIn] = None


class CreateDeliveryRequest(CamelModel):
    dropoff: Optional[ContactIn] = None
    manifest_items: List[ManifestItem] = Field(default_factory=list, alias="manifestItems")
    tip: Optional[int] = Field(default=0, ge=0, description="Tip in cents")
    external_id: Optional[str] = Field(None, alias="externalId", max_length=100)


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================

class QuoteResponse(BaseModel):
    """Delivery quote returned to the storefront."""
    id: Optional[str] = None
    fee: int
    currency: str
    dropoff_eta: Optional[datetime] = None
    expires: Optional[datetime] = None
    simulated: bool = False

    @classmethod
    def from_result(cls, quote: QuoteResult) -> "QuoteResponse":
        return cls(
            id=quote.quote_id,
            fee=quote.fee,
            currency=quote.currency,
            dropoff_eta=quote.dropoff_eta,
            expires=quote.expires_at,
            simulated=quote.simulated,
        )


class DeliveryResponse(BaseModel):
    """Delivery record returned to the storefront."""
    id: str
    status: Optional[str] = None
    tracking_url: Optional[str] = None
    external_id: Optional[str] = None
    fee: Optional[int] = None
    currency: Optional[str] = None
    tip: Optional[int] = None
    simulated: bool = False

    @classmethod
    def from_record(cls, record: DeliveryRecord) -> "DeliveryResponse":
        return cls(**record.to_dict())


class FeeEstimateResponse(CamelModel):
    """Distance-based fee for a drop-off address."""
    distance_km: Optional[float] = Field(None, alias="distanceKm")
    fee_cents: int = Field(..., alias="feeCents")


class WebhookAck(CamelModel):
    ok: bool = True
    received: bool = True
    event_type: str = Field("", alias="eventType")


class SyncQueuedResponse(CamelModel):
    queued: bool = True
    order_id: int = Field(..., alias="orderId")
    task_id: str = Field(..., alias="taskId")


class ProviderHealthResponse(BaseModel):
    ok: bool
    fee: Optional[int] = None
    eta: Optional[str] = None
    simulated: Optional[bool] = None
    error: Optional[str] = None


class ErrorResponse(BaseModel):
    """Standard error response."""
    ok: bool = False
    error: str
    detail: Optional[Any] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    database: str
    cache: str
    geocoder: str
    delivery_provider: str
    timestamp: datetime
