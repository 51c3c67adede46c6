"""
FastAPI Application Entry Point

Restaurant Delivery Platform - multi-tenant storefront backend.
Quotes, dispatches and tracks third-party courier deliveries (Uber Direct)
and prices delivery by distance from each site's pickup location.

Endpoints:
    - POST /api/delivery/{slug}/quote: Provider delivery quote
    - POST /api/delivery/{slug}/create: Dispatch a courier
    - GET  /api/delivery/{slug}/deliveries/{delivery_id}: Poll delivery status
    - POST /api/delivery/{slug}/fee-estimate: Distance-based fee
    - GET  /api/admin/sites/{site_id}/uber/health: Provider connectivity check
    - POST /api/admin/orders/{order_id}/delivery/sync: Queue a status sync
    - POST /webhook/uber: Provider status webhook
    - GET  /health: System health check
"""

import asyncio
import sys
import logging
from datetime import datetime
from typing import Any, Optional
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Depends, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func

# Windows-specific event loop policy
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

# Internal imports
from app.core.cache import BaseCache, RedisCache
from app.core.config import get_settings, setup_logging
from app.core.exceptions import (
    CredentialsMissing,
    DeliveryError,
    InvalidPayload,
    InvalidSignature,
    ProviderAuthError,
    ProviderRequestFailed,
)
from app.database import get_db, init_db, engine
from app.models import Order, Site
from app.schemas import (
    ContactIn,
    CreateDeliveryRequest,
    DeliveryResponse,
    ErrorResponse,
    FeeEstimateRequest,
    FeeEstimateResponse,
    HealthResponse,
    ProviderHealthResponse,
    QuoteRequest,
    QuoteResponse,
    SyncQueuedResponse,
    WebhookAck,
)
from app.services.delivery import (
    BaseDeliveryService,
    Contact,
    DeliveryRecordStore,
    DeliveryUpdate,
    WebhookIngestor,
    close_delivery_clients,
    get_delivery_service,
    get_delivery_store,
    get_webhook_ingestor,
)
from app.services.delivery.webhooks import SIGNATURE_HEADERS
from app.services.geo import (
    Address,
    BaseGeocoder,
    GeoResolver,
    get_geocode_cache,
    get_geocoder,
    get_geo_resolver,
)
from app.services.geo.distance import distance_fee_cents
from app.tasks import sync_delivery_status

# Initialize configuration and logging
settings = get_settings()
setup_logging()
logger = logging.getLogger(__name__)


# =============================================================================
# APPLICATION LIFECYCLE
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application startup and shutdown events.
    """
    # Startup
    logger.info("=" * 60)
    logger.info(f"🚀 Starting {settings.app_name}")
    logger.info(f"   Version: {settings.app_version}")
    logger.info(f"   Environment: {settings.env_mode.value}")
    logger.info(f"   Uber: {settings.uber_env.value} ({settings.uber_base_url})")
    logger.info(f"   Debug: {settings.debug}")
    logger.info("=" * 60)

    # Initialize database
    await init_db()
    logger.info("✅ Database initialized")

    # Log service configuration
    geocoder = get_geocoder()
    delivery_service = get_delivery_service()
    logger.info(f"✅ Geocoder: {geocoder.provider_name}")
    logger.info(f"✅ Delivery Service: {delivery_service.provider_name}")

    missing = settings.validate_production_config()
    if missing:
        logger.warning(f"⚠️ Missing delivery config: {missing}")

    logger.info("=" * 60)
    logger.info("✅ Application ready!")
    logger.info("=" * 60)

    yield  # Application runs

    # Shutdown
    logger.info("Shutting down...")
    await close_delivery_clients()
    await geocoder.aclose()
    await engine.dispose()
    logger.info("✅ Cleanup complete")


# =============================================================================
# APPLICATION INSTANCE
# =============================================================================

app = FastAPI(
    title=settings.app_name,
    description=(
        "Multi-tenant restaurant ordering backend: third-party courier "
        "dispatch, webhook status tracking and distance-based delivery fees."
    ),
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# DEPENDENCIES
# =============================================================================

async def get_site_by_slug(
    slug: str,
    db: AsyncSession = Depends(get_db),
) -> Site:
    """Active site for a storefront slug, 404 otherwise."""
    result = await db.execute(
        select(Site).where(Site.slug == slug, Site.is_active.is_(True))
    )
    site = result.scalar_one_or_none()
    if not site:
        raise HTTPException(status_code=404, detail=f"Site '{slug}' not found")
    return site


async def get_delivery_site(site: Site = Depends(get_site_by_slug)) -> Site:
    """Site with a provider account and pickup address, 400 otherwise."""
    if not site.delivery_configured:
        raise HTTPException(status_code=400, detail="Uber not configured for this site")
    return site


def require_dropoff(dropoff: Optional[ContactIn]) -> Contact:
    """Convert the request drop-off, rejecting it without a street line."""
    if dropoff is None or not dropoff.has_street:
        raise HTTPException(status_code=400, detail="Invalid dropoff address")
    return dropoff.to_contact()


# =============================================================================
# ROOT & HEALTH ENDPOINTS
# =============================================================================

@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """API root with navigation links."""
    return {
        "message": f"🍽️ Welcome to {settings.app_name}",
        "version": settings.app_version,
        "environment": settings.env_mode.value,
        "documentation": "/docs",
        "health": "/health",
    }


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["Health"],
    summary="System Health Check",
)
async def health_check(
    db: AsyncSession = Depends(get_db),
    cache: BaseCache = Depends(get_geocode_cache),
    geocoder: BaseGeocoder = Depends(get_geocoder),
) -> HealthResponse:
    """Verify all system components are operational."""

    # Check database
    db_status = "healthy"
    try:
        await db.execute(select(func.now()))
    except Exception as e:
        db_status = f"unhealthy: {str(e)}"
        logger.error(f"Database health check failed: {e}")

    # Check cache (memory cache has nothing to reach)
    cache_status = "healthy"
    if isinstance(cache, RedisCache):
        try:
            await cache.ping()
        except Exception as e:
            cache_status = f"unhealthy: {str(e)}"
            logger.error(f"Redis health check failed: {e}")

    # Check geocoder
    geocoder_status = "healthy" if await geocoder.health_check() else "unhealthy"

    # Delivery provider is only checked for configuration; quoting needs a site
    missing = settings.validate_production_config()
    delivery_status = "configured" if not missing else f"missing: {', '.join(missing)}"

    overall = "operational" if all(
        s == "healthy" for s in [db_status, cache_status, geocoder_status]
    ) else "degraded"

    return HealthResponse(
        status=overall,
        database=db_status,
        cache=cache_status,
        geocoder=geocoder_status,
        delivery_provider=delivery_status,
        timestamp=datetime.now(),
    )


# =============================================================================
# DELIVERY ENDPOINTS
# =============================================================================

@app.post(
    "/api/delivery/{slug}/quote",
    response_model=QuoteResponse,
    responses={400: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
    tags=["Delivery"],
    summary="Request Delivery Quote",
)
async def request_quote(
    body: QuoteRequest,
    site: Site = Depends(get_delivery_site),
    service: BaseDeliveryService = Depends(get_delivery_service),
) -> QuoteResponse:
    """
    Quote a courier delivery from the site's pickup location.

    In sandbox (or mock) mode an undeliverable test address yields a
    simulated quote instead of an error.
    """
    dropoff = require_dropoff(body.dropoff)
    pickup = Contact.from_dict(site.pickup)

    logger.info(f"Quote requested for site '{site.slug}'")
    quote = await service.request_quote(site.uber_customer_id, pickup, dropoff)
    return QuoteResponse.from_result(quote)


@app.post(
    "/api/delivery/{slug}/create",
    response_model=DeliveryResponse,
    status_code=201,
    responses={400: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
    tags=["Delivery"],
    summary="Create Delivery",
)
async def create_delivery(
    body: CreateDeliveryRequest,
    site: Site = Depends(get_delivery_site),
    service: BaseDeliveryService = Depends(get_delivery_service),
    store: DeliveryRecordStore = Depends(get_delivery_store),
) -> DeliveryResponse:
    """
    Dispatch a courier for an order.

    When ``externalId`` is given the provider delivery id, status and
    tracking URL are recorded on the orders carrying that external id.
    """
    dropoff = require_dropoff(body.dropoff)
    pickup = Contact.from_dict(site.pickup)

    record = await service.create_delivery(
        site.uber_customer_id,
        pickup,
        dropoff,
        manifest_items=[item.model_dump(exclude_none=True) for item in body.manifest_items],
        tip=body.tip,
        external_id=body.external_id,
    )
    logger.info(
        f"Delivery {record.delivery_id} created for site '{site.slug}' "
        f"(status={record.status}, simulated={record.simulated})"
    )

    if body.external_id:
        updated = await store.apply_delivery_update(
            delivery_id=None,
            external_id=body.external_id,
            update=DeliveryUpdate.from_record(record),
        )
        if not updated:
            logger.warning(f"No order found for external id {body.external_id}")

    return DeliveryResponse.from_record(record)


@app.get(
    "/api/delivery/{slug}/deliveries/{delivery_id}",
    response_model=DeliveryResponse,
    responses={400: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
    tags=["Delivery"],
    summary="Get Delivery Status",
)
async def get_delivery(
    delivery_id: str,
    site: Site = Depends(get_delivery_site),
    service: BaseDeliveryService = Depends(get_delivery_service),
    store: DeliveryRecordStore = Depends(get_delivery_store),
) -> DeliveryResponse:
    """Poll the provider and record the current status on the order."""
    record = await service.get_delivery(site.uber_customer_id, delivery_id)

    await store.apply_delivery_update(
        delivery_id=delivery_id,
        external_id=None,
        update=DeliveryUpdate(status=record.status, tracking_url=record.tracking_url),
    )
    return DeliveryResponse.from_record(record)


@app.post(
    "/api/delivery/{slug}/fee-estimate",
    response_model=FeeEstimateResponse,
    response_model_by_alias=True,
    responses={400: {"model": ErrorResponse}},
    tags=["Delivery"],
    summary="Distance-Based Fee Estimate",
)
async def fee_estimate(
    body: FeeEstimateRequest,
    site: Site = Depends(get_site_by_slug),
    resolver: GeoResolver = Depends(get_geo_resolver),
) -> FeeEstimateResponse:
    """
    Price delivery by straight-line distance from the site's pickup.

    Unresolvable addresses fall back to the base fee with no distance.
    """
    dropoff = require_dropoff(body.dropoff)
    pickup = Address.from_dict(site.pickup_address)

    distance = await resolver.distance_between_addresses(pickup, dropoff.address)
    fee = distance_fee_cents(distance)

    logger.info(f"Fee estimate for site '{site.slug}': {distance} km -> {fee} cents")
    return FeeEstimateResponse(
        distance_km=round(distance, 3) if distance is not None else None,
        fee_cents=fee,
    )


# =============================================================================
# ADMIN ENDPOINTS
# =============================================================================

@app.get(
    "/api/admin/sites/{site_id}/uber/health",
    response_model=ProviderHealthResponse,
    response_model_exclude_none=True,
    tags=["Admin"],
    summary="Provider Connectivity Check",
)
async def uber_health(
    site_id: int,
    db: AsyncSession = Depends(get_db),
    service: BaseDeliveryService = Depends(get_delivery_service),
) -> ProviderHealthResponse:
    """Quote the site's pickup location to itself."""
    result = await db.execute(select(Site).where(Site.id == site_id))
    site = result.scalar_one_or_none()
    if not site:
        raise HTTPException(status_code=404, detail=f"Site #{site_id} not found")
    if not site.delivery_configured:
        raise HTTPException(status_code=400, detail="Uber not configured for this site")

    report = await service.health_check(site.uber_customer_id, Contact.from_dict(site.pickup))
    return ProviderHealthResponse(**report)


@app.post(
    "/api/admin/orders/{order_id}/delivery/sync",
    response_model=SyncQueuedResponse,
    response_model_by_alias=True,
    status_code=202,
    tags=["Admin"],
    summary="Queue Delivery Status Sync",
)
async def queue_delivery_sync(
    order_id: int,
    db: AsyncSession = Depends(get_db),
) -> SyncQueuedResponse:
    """Refresh an order's delivery status in the background worker."""
    order = await db.get(Order, order_id)
    if not order:
        raise HTTPException(status_code=404, detail=f"Order #{order_id} not found")
    if not order.uber_delivery_id:
        raise HTTPException(status_code=400, detail=f"Order #{order_id} has no delivery")

    task = sync_delivery_status.delay(order_id)
    logger.info(f"📋 Queued delivery sync for order #{order_id} (task {task.id})")
    return SyncQueuedResponse(order_id=order_id, task_id=task.id)


# =============================================================================
# WEBHOOK ENDPOINTS
# =============================================================================

@app.post(
    "/webhook/uber",
    response_model=WebhookAck,
    response_model_by_alias=True,
    responses={400: {"model": ErrorResponse}},
    tags=["Webhook"],
    summary="Uber Direct Status Webhook",
)
async def uber_webhook(
    request: Request,
    ingestor: WebhookIngestor = Depends(get_webhook_ingestor),
) -> dict[str, Any]:
    """
    Receive delivery status events.

    The signature is computed over the raw body, so the body is read
    before any JSON parsing.
    """
    raw_body = await request.body()
    signature = next(
        (request.headers[name] for name in SIGNATURE_HEADERS if request.headers.get(name)),
        None,
    )

    result = await ingestor.handle(raw_body, signature)
    return result.to_response()


@app.get("/webhook/uber", tags=["Webhook"])
async def uber_webhook_reachability() -> dict[str, bool]:
    """Reachability check used when registering the webhook."""
    return {"ok": True}


# =============================================================================
# ERROR HANDLERS
# =============================================================================

def delivery_error_status(exc: DeliveryError) -> int:
    """HTTP status for a delivery error."""
    if isinstance(exc, ProviderRequestFailed):
        return 400 if exc.is_client_error else 502
    if isinstance(exc, (CredentialsMissing, ProviderAuthError)):
        return 503
    if isinstance(exc, (InvalidSignature, InvalidPayload)):
        return 400
    return 500


@app.exception_handler(DeliveryError)
async def delivery_exception_handler(request: Request, exc: DeliveryError) -> JSONResponse:
    """Map delivery integration errors to HTTP responses."""
    status_code = delivery_error_status(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    else:
        logger.warning(f"{request.method} {request.url.path} rejected: {exc}")

    return JSONResponse(
        status_code=status_code,
        content={"ok": False, "error": str(exc)},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all exception handler."""
    logger.exception(f"Unhandled exception: {exc}")

    return JSONResponse(
        status_code=500,
        content={
            "ok": False,
            "error": "Internal Server Error",
            "detail": str(exc) if settings.debug else "An unexpected error occurred",
        },
    )
