"""
Celery Worker Configuration
Redis-backed worker that polls the delivery provider for order status.

Run with:
    celery -A app.celery_worker worker -Q delivery --loglevel=info
"""

from celery import Celery

from app.core.config import get_settings

settings = get_settings()

celery_app = Celery(
    'delivery_worker',
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=['app.tasks']
)

celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,

    # Status syncs are I/O bound and short; route them to their own queue
    task_routes={'app.tasks.sync_delivery_status': {'queue': 'delivery'}},
    worker_prefetch_multiplier=1,

    # A sync is a token call plus one provider call, each bounded by the timeout
    task_soft_time_limit=int(settings.provider_timeout_seconds * 3),
    task_time_limit=int(settings.provider_timeout_seconds * 4),

    # Status results are only useful while the order is in flight
    result_expires=900,

    task_acks_late=True,
    task_reject_on_worker_lost=True,
    broker_connection_retry_on_startup=True,
)


if __name__ == '__main__':
    celery_app.start()
