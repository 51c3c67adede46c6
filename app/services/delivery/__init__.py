"""
Delivery Service Factory

Provides single entry points for the delivery provider client, its token
manager, the delivery record store and the webhook ingestor. All are
process-wide singletons built from settings.

Usage:
    from app.services.delivery import get_delivery_service

    service = get_delivery_service()
    quote = await service.request_quote(customer_id, pickup, dropoff)

Environment Switching:
    - UBER_ENV=production -> api.uber.com, provider errors propagate
    - UBER_ENV=sandbox    -> sandbox-api.uber.com, undeliverable-address
                             errors are replaced by simulated responses
    - USE_MOCK_DATA=true  -> simulation enabled on either environment
"""

import logging
from functools import lru_cache

import httpx

from app.core.cache import BaseCache, create_cache
from app.core.config import get_settings
from app.database import async_session_maker
from app.services.delivery.base import (
    BaseDeliveryService,
    Contact,
    DeliveryRecord,
    QuoteResult,
)
from app.services.delivery.store import (
    DeliveryRecordStore,
    DeliveryUpdate,
    SqlAlchemyDeliveryStore,
)
from app.services.delivery.token import ProviderTokenManager
from app.services.delivery.uber_direct import UberDirectService
from app.services.delivery.webhooks import WebhookIngestor

logger = logging.getLogger(__name__)


@lru_cache()
def get_http_client() -> httpx.AsyncClient:
    """Shared HTTP client for provider calls."""
    settings = get_settings()
    return httpx.AsyncClient(timeout=settings.provider_timeout_seconds)


def build_token_cache() -> BaseCache:
    """New provider token cache for the configured backend."""
    settings = get_settings()
    return create_cache(
        settings.cache_backend,
        namespace="token",
        redis_url=settings.redis_url,
        max_entries=16,
    )


@lru_cache()
def get_token_cache() -> BaseCache:
    """Process-wide provider token cache."""
    return build_token_cache()


def build_delivery_service(
    client: httpx.AsyncClient,
    token_cache: BaseCache,
) -> UberDirectService:
    """Assemble an UberDirectService from settings around the given client."""
    settings = get_settings()
    token_manager = ProviderTokenManager(
        client=client,
        cache=token_cache,
        client_id=settings.uber_client_id,
        client_secret=settings.uber_client_secret,
        token_url=settings.uber_token_url,
        scope=settings.uber_scope,
        timeout=settings.provider_timeout_seconds,
    )
    return UberDirectService(
        client=client,
        token_manager=token_manager,
        base_url=settings.uber_base_url,
        simulate_on_undeliverable=settings.simulate_on_undeliverable,
        currency=settings.delivery_currency,
        tracking_base_url=settings.simulated_tracking_base_url,
        default_country=settings.default_country,
        timeout=settings.provider_timeout_seconds,
    )


@lru_cache()
def get_delivery_service() -> BaseDeliveryService:
    """
    Get the configured delivery service instance.

    Returns:
        BaseDeliveryService: UberDirectService for the configured environment
    """
    settings = get_settings()
    logger.info(
        f"Delivery Service: Using UberDirectService "
        f"({settings.uber_env.value}, simulate={settings.simulate_on_undeliverable})"
    )
    return build_delivery_service(get_http_client(), get_token_cache())


@lru_cache()
def get_delivery_store() -> DeliveryRecordStore:
    """Order-backed delivery record store."""
    return SqlAlchemyDeliveryStore(async_session_maker)


@lru_cache()
def get_webhook_ingestor() -> WebhookIngestor:
    """Webhook ingestor bound to the configured signing key."""
    settings = get_settings()
    return WebhookIngestor(get_delivery_store(), signing_key=settings.webhook_signing_key)


async def close_delivery_clients() -> None:
    """Close the shared HTTP client (application shutdown)."""
    if get_http_client.cache_info().currsize:
        await get_http_client().aclose()
        get_http_client.cache_clear()


def reset_delivery_service() -> None:
    """
    Clear the cached delivery instances.

    Useful for testing or when configuration changes at runtime.
    """
    get_webhook_ingestor.cache_clear()
    get_delivery_store.cache_clear()
    get_delivery_service.cache_clear()
    get_token_cache.cache_clear()
    get_http_client.cache_clear()
    logger.debug("Delivery service cache cleared")


__all__ = [
    "get_http_client",
    "get_token_cache",
    "build_token_cache",
    "build_delivery_service",
    "get_delivery_service",
    "get_delivery_store",
    "get_webhook_ingestor",
    "close_delivery_clients",
    "reset_delivery_service",
    "BaseDeliveryService",
    "Contact",
    "DeliveryRecord",
    "DeliveryRecordStore",
    "DeliveryUpdate",
    "QuoteResult",
    "ProviderTokenManager",
    "UberDirectService",
    "WebhookIngestor",
]
