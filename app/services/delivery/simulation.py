"""
Sandbox fallback simulation.

Provider sandboxes reject most realistic test addresses. When simulation is
enabled and the provider says an address is undeliverable (or that no
delivery product is eligible), a plausible success response is synthesized
so checkout, order persistence and tracking can still be exercised.
"""

import re
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from app.services.delivery.base import DeliveryRecord, QuoteResult


SIMULATED_QUOTE_FEE = 799
SIMULATED_DROPOFF_MINUTES = 45
SIMULATED_DELIVERY_STATUS = "courier_accepted"

UNDELIVERABLE_PATTERN = re.compile(
    r"address[\s_-]*undeliverable"
    r"|undeliverable[\s_-]*address"
    r"|no[\s_-]*eligible[\s_-]*products?",
    re.IGNORECASE,
)


def is_undeliverable_error(body: Optional[str]) -> bool:
    """True when a provider error body reports an undeliverable address."""
    return bool(body and UNDELIVERABLE_PATTERN.search(body))


def simulated_quote(currency: str, now: Optional[datetime] = None) -> QuoteResult:
    """Fixed-price quote with a drop-off 45 minutes from now."""
    now = now or datetime.now(timezone.utc)
    quote_id = f"sim_quote_{uuid.uuid4().hex[:16]}"
    return QuoteResult(
        fee=SIMULATED_QUOTE_FEE,
        currency=currency,
        dropoff_eta=now + timedelta(minutes=SIMULATED_DROPOFF_MINUTES),
        quote_id=quote_id,
        expires_at=now + timedelta(minutes=15),
        simulated=True,
        raw={"id": quote_id, "simulated": True},
    )


def simulated_delivery(
    tracking_base_url: str,
    currency: str,
    tip: Optional[int] = None,
    external_id: Optional[str] = None,
) -> DeliveryRecord:
    """Accepted delivery with a generated id and placeholder tracking URL."""
    delivery_id = f"sim_del_{uuid.uuid4().hex}"
    tracking_url = f"{tracking_base_url.rstrip('/')}/{delivery_id}"
    return DeliveryRecord(
        delivery_id=delivery_id,
        status=SIMULATED_DELIVERY_STATUS,
        tracking_url=tracking_url,
        external_id=external_id,
        fee=SIMULATED_QUOTE_FEE,
        currency=currency,
        tip=tip or 0,
        simulated=True,
        raw={"id": delivery_id, "simulated": True},
    )
