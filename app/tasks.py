"""
Celery Tasks
Background tasks for keeping order delivery status in sync with the provider.
"""

import asyncio
import logging
import time
from typing import Any

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.celery_worker import celery_app
from app.core.config import get_settings
from app.database import async_session_maker, engine
from app.models import Order, Site
from app.services.delivery import build_delivery_service, build_token_cache
from app.services.delivery.base import BaseDeliveryService
from app.services.delivery.store import DeliveryUpdate, SqlAlchemyDeliveryStore

logger = logging.getLogger(__name__)


async def refresh_order_delivery(
    order_id: int,
    service: BaseDeliveryService,
    session_factory: async_sessionmaker[AsyncSession],
) -> dict[str, Any]:
    """
    Poll the provider for an order's delivery and store the result.

    Args:
        order_id: Order primary key
        service: Delivery provider client
        session_factory: Session factory for the orders database

    Returns:
        dict: success flag, message and the refreshed status
    """
    async with session_factory() as session:
        result = await session.execute(
            select(Order, Site).join(Site, Order.site_id == Site.id).where(Order.id == order_id)
        )
        row = result.first()

    if row is None:
        return {"success": False, "message": f"Order #{order_id} not found"}

    order, site = row
    if not order.uber_delivery_id:
        return {"success": False, "message": f"Order #{order_id} has no delivery"}
    if not site.uber_customer_id:
        return {"success": False, "message": f"Site '{site.slug}' has no Uber customer id"}

    record = await service.get_delivery(site.uber_customer_id, order.uber_delivery_id)

    store = SqlAlchemyDeliveryStore(session_factory)
    await store.apply_delivery_update(
        delivery_id=order.uber_delivery_id,
        external_id=None,
        update=DeliveryUpdate(status=record.status, tracking_url=record.tracking_url),
    )

    return {
        "success": True,
        "message": f"Order #{order_id} delivery is {record.status}",
        "status": record.status,
        "tracking_url": record.tracking_url,
    }


async def _sync_with_fresh_client(order_id: int) -> dict[str, Any]:
    """
    Each task runs on its own event loop, so every pooled connection is
    opened and released within it.
    """
    settings = get_settings()
    token_cache = build_token_cache()
    try:
        async with httpx.AsyncClient(timeout=settings.provider_timeout_seconds) as client:
            service = build_delivery_service(client, token_cache)
            return await refresh_order_delivery(order_id, service, async_session_maker)
    finally:
        await token_cache.aclose()
        await engine.dispose()


@celery_app.task(bind=True)
def sync_delivery_status(self, order_id: int) -> dict:
    """
    Refresh an order's delivery status from the provider.
    This task runs asynchronously via Celery worker.

    Args:
        order_id: Order primary key

    Returns:
        dict: Result of the sync operation
    """
    task_id = self.request.id
    logger.info(f"📋 Task {task_id}: Syncing delivery for order #{order_id}")
    start_time = time.time()

    try:
        result = asyncio.run(_sync_with_fresh_client(order_id))
    except Exception as e:
        elapsed = round(time.time() - start_time, 3)
        logger.error(f"❌ Task {task_id}: Order #{order_id} error after {elapsed}s - {str(e)}")
        raise

    elapsed = round(time.time() - start_time, 3)
    result['task_id'] = task_id
    result['processing_time_seconds'] = elapsed

    if result['success']:
        logger.info(f"✅ Task {task_id}: {result['message']} ({elapsed}s)")
    else:
        logger.warning(f"⚠️ Task {task_id}: {result['message']}")

    return result
