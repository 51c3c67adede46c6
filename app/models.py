"""
SQLAlchemy Database Models

Sites (tenants) carry their delivery provider account and pickup
location; orders carry the delivery fee breakdown and the provider's
delivery id, status and tracking URL.
"""

from sqlalchemy import Column, Integer, String, Float, DateTime, Text, Enum, Boolean, JSON, ForeignKey
from sqlalchemy.sql import func
from app.database import Base
import enum


class FulfillmentType(str, enum.Enum):
    """How the order reaches the customer."""
    PICKUP = "pickup"
    DELIVERY = "delivery"


class Site(Base):
    """
    A restaurant storefront (tenant).

    The pickup contact is the origin of every delivery quote for the site.
    """
    __tablename__ = "sites"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String(120), nullable=False)
    slug = Column(String(120), nullable=False, unique=True, index=True)
    is_active = Column(Boolean, default=True, nullable=False)

    # =========================================================================
    # DELIVERY PROVIDER
    # =========================================================================
    uber_customer_id = Column(String(100), nullable=True)

    # =========================================================================
    # PICKUP LOCATION
    # =========================================================================
    pickup_name = Column(String(120), nullable=True)
    pickup_phone = Column(String(30), nullable=True)
    # {"streetAddress": [...], "city", "province", "postalCode", "country"}
    pickup_address = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    @property
    def pickup(self) -> dict:
        """Pickup contact in the storefront JSON shape."""
        return {
            "name": self.pickup_name,
            "phone": self.pickup_phone,
            "address": self.pickup_address,
        }

    @property
    def delivery_configured(self) -> bool:
        address = self.pickup_address or {}
        return bool(self.uber_customer_id and address.get("streetAddress"))

    def __repr__(self):
        return f"<Site #{self.id} - {self.slug}>"


class Order(Base):
    """
    Storefront order.

    Delivery orders are correlated with the provider through
    ``external_id`` (chosen here) and ``uber_delivery_id`` (assigned by the
    provider); webhooks update ``uber_status`` and ``uber_tracking_url``.
    """
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    site_id = Column(Integer, ForeignKey("sites.id"), nullable=False, index=True)

    fulfillment_type = Column(
        Enum(FulfillmentType),
        default=FulfillmentType.DELIVERY,
        nullable=False,
    )
    user_email = Column(String(255), nullable=True)

    # =========================================================================
    # ORDER DETAILS
    # =========================================================================
    items = Column(JSON, nullable=False, default=list)
    notes = Column(Text, nullable=True)

    # =========================================================================
    # PRICING (cents)
    # =========================================================================
    total_cents = Column(Integer, nullable=False, default=0)
    tax_cents = Column(Integer, nullable=False, default=0)
    tip_cents = Column(Integer, nullable=False, default=0)
    delivery_fee_cents = Column(Integer, nullable=False, default=0)
    distance_km = Column(Float, nullable=True)

    # =========================================================================
    # DELIVERY
    # =========================================================================
    dropoff = Column(JSON, nullable=True)
    external_id = Column(String(100), nullable=True, index=True)
    uber_delivery_id = Column(String(100), nullable=True, index=True)
    uber_status = Column(String(50), nullable=True)
    uber_tracking_url = Column(String(500), nullable=True)
    delivery_simulated = Column(Boolean, default=False, nullable=False)

    status = Column(String(30), default="created", nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    def __repr__(self):
        return f"<Order #{self.id} - {self.fulfillment_type.value} - {self.uber_status or self.status}>"
