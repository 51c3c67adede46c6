"""
Uber Direct webhook ingestion.

Verifies the HMAC signature over the raw request body, normalizes the
event envelope (the provider does not use one fixed shape) and applies
the reported status / tracking URL to the matching order.
"""

import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from app.core.exceptions import InvalidPayload, InvalidSignature
from app.services.delivery.base import normalize_status
from app.services.delivery.store import DeliveryRecordStore, DeliveryUpdate

logger = logging.getLogger(__name__)

# Accepted signature header names, in priority order
SIGNATURE_HEADERS = ("x-uber-signature", "x-uber-signature-sha256")


def _first_key(*keys: str) -> Callable[[dict[str, Any]], Any]:
    """Extractor returning the first truthy value among ``keys``."""
    def extract(data: dict[str, Any]) -> Any:
        for key in keys:
            value = data.get(key)
            if value:
                return value
        return None
    return extract


# Candidate field names per logical field, tried in order
EVENT_TYPE_KEYS = ("event_type", "type", "event")
DATA_KEYS = ("data", "resource")
DELIVERY_ID_KEYS = ("delivery_id", "id", "deliveryId", "resource_id")
EXTERNAL_ID_KEYS = ("external_id", "external_delivery_id", "externalId")
STATUS_KEYS = ("status", "state", "current_status", "new_status")
TRACKING_URL_KEYS = ("tracking_url", "trackingUrl", "share_url")

extract_event_type = _first_key(*EVENT_TYPE_KEYS)
extract_delivery_id = _first_key(*DELIVERY_ID_KEYS)
extract_external_id = _first_key(*EXTERNAL_ID_KEYS)
extract_status = _first_key(*STATUS_KEYS)
extract_tracking_url = _first_key(*TRACKING_URL_KEYS)


def extract_data(envelope: dict[str, Any]) -> dict[str, Any]:
    """Event data object, falling back to the envelope itself."""
    for key in DATA_KEYS:
        value = envelope.get(key)
        if value and isinstance(value, dict):
            return value
    return envelope


def compute_signature(raw_body: bytes, signing_key: str) -> str:
    """Hex HMAC-SHA256 of the raw body."""
    return hmac.new(signing_key.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def verify_signature(
    raw_body: bytes,
    signature: Optional[str],
    signing_key: Optional[str],
) -> bool:
    """
    Check a webhook signature in constant time.

    With no signing key configured every request is accepted.
    """
    if not signing_key:
        return True
    if not signature:
        return False

    expected = compute_signature(raw_body, signing_key)
    provided = signature.strip()
    if len(expected) != len(provided):
        return False
    return hmac.compare_digest(expected.encode("ascii"), provided.encode("utf-8", "replace"))


@dataclass
class WebhookEvent:
    """Normalized provider event."""
    event_type: str
    delivery_id: Optional[str] = None
    external_id: Optional[str] = None
    tracking_url: Optional[str] = None
    status: Optional[str] = None

    @property
    def update(self) -> DeliveryUpdate:
        return DeliveryUpdate(status=self.status, tracking_url=self.tracking_url)


def parse_event(raw_body: bytes) -> WebhookEvent:
    """
    Decode and normalize a webhook body.

    Raises:
        InvalidPayload: body is not a JSON object
    """
    try:
        text = raw_body.decode("utf-8") if raw_body else ""
        envelope = json.loads(text or "{}")
    except (UnicodeDecodeError, ValueError) as e:
        raise InvalidPayload() from e

    if not isinstance(envelope, dict):
        raise InvalidPayload()

    data = extract_data(envelope)
    delivery_id = extract_delivery_id(data)
    external_id = extract_external_id(data)
    tracking_url = extract_tracking_url(data)
    status = extract_status(data)

    return WebhookEvent(
        event_type=str(extract_event_type(envelope) or ""),
        delivery_id=str(delivery_id) if delivery_id else None,
        external_id=str(external_id) if external_id else None,
        tracking_url=str(tracking_url) if tracking_url else None,
        status=normalize_status(status),
    )


@dataclass
class WebhookResult:
    """Outcome of handling one webhook request."""
    event: WebhookEvent
    updated: int = 0

    def to_response(self) -> dict[str, Any]:
        return {"ok": True, "received": True, "eventType": self.event.event_type}


class WebhookIngestor:
    """
    Verifies and applies provider webhooks.

    Unknown deliveries and informational events without identifiers are
    acknowledged without changes so the provider does not retry them.

    Example:
        >>> ingestor = WebhookIngestor(store, signing_key="secret")
        >>> result = await ingestor.handle(raw_body, signature)
    """

    def __init__(self, store: DeliveryRecordStore, signing_key: Optional[str] = None):
        self.store = store
        self.signing_key = signing_key or None
        if not self.signing_key:
            logger.warning("Uber webhook: signing key not configured, skipping verification")

    async def handle(self, raw_body: bytes, signature: Optional[str]) -> WebhookResult:
        """
        Verify, parse and apply a webhook.

        Raises:
            InvalidSignature: signature check failed
            InvalidPayload: body is not a JSON object
        """
        if not verify_signature(raw_body, signature, self.signing_key):
            logger.warning("Uber webhook: invalid signature")
            raise InvalidSignature()

        event = parse_event(raw_body)
        logger.info(
            f"Uber webhook: {event.event_type or 'unknown'} "
            f"delivery={event.delivery_id} external={event.external_id} status={event.status}"
        )

        update = event.update
        if not (event.delivery_id or event.external_id) or update.is_empty:
            return WebhookResult(event=event)

        # Once verified and parsed, the event is always acknowledged
        try:
            updated = await self.store.apply_delivery_update(
                delivery_id=event.delivery_id,
                external_id=None if event.delivery_id else event.external_id,
                update=update,
            )
        except Exception as e:
            logger.exception(f"Uber webhook: failed to store update - {e}")
            return WebhookResult(event=event)

        if not updated:
            logger.info("Uber webhook: no matching order, acknowledged")
        return WebhookResult(event=event, updated=updated)
