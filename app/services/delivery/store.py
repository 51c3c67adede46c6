"""
Delivery record persistence.

Orders own the delivery fields (provider delivery id, status, tracking
URL). Webhooks and status polls update them through DeliveryRecordStore.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy import update as sql_update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models import Order
from app.services.delivery.base import DeliveryRecord

logger = logging.getLogger(__name__)


@dataclass
class DeliveryUpdate:
    """Partial update: only fields that are set get written."""
    status: Optional[str] = None
    tracking_url: Optional[str] = None
    delivery_id: Optional[str] = None
    simulated: Optional[bool] = None

    @property
    def is_empty(self) -> bool:
        return not (self.status or self.tracking_url or self.delivery_id)

    def to_columns(self) -> dict[str, Any]:
        """Map onto Order column names."""
        values: dict[str, Any] = {}
        if self.status:
            values["uber_status"] = self.status
        if self.tracking_url:
            values["uber_tracking_url"] = self.tracking_url
        if self.delivery_id:
            values["uber_delivery_id"] = self.delivery_id
        if self.simulated is not None:
            values["delivery_simulated"] = self.simulated
        return values

    @classmethod
    def from_record(cls, record: DeliveryRecord) -> "DeliveryUpdate":
        return cls(
            status=record.status,
            tracking_url=record.tracking_url,
            delivery_id=record.delivery_id or None,
            simulated=record.simulated,
        )


class DeliveryRecordStore(ABC):
    """Locates orders by provider delivery id or external id and updates them."""

    @abstractmethod
    async def apply_delivery_update(
        self,
        delivery_id: Optional[str],
        external_id: Optional[str],
        update: DeliveryUpdate,
    ) -> int:
        """
        Apply ``update`` to orders matching ``delivery_id``, else ``external_id``.

        Returns:
            Number of orders changed (0 when nothing matched)
        """
        pass


class SqlAlchemyDeliveryStore(DeliveryRecordStore):
    """DeliveryRecordStore backed by the orders table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def apply_delivery_update(
        self,
        delivery_id: Optional[str],
        external_id: Optional[str],
        update: DeliveryUpdate,
    ) -> int:
        values = update.to_columns()
        if not values:
            return 0

        if delivery_id:
            condition = Order.uber_delivery_id == str(delivery_id)
        elif external_id:
            condition = Order.external_id == str(external_id)
        else:
            return 0

        async with self._session_factory() as session:
            result = await session.execute(
                sql_update(Order).where(condition).values(**values)
            )
            await session.commit()

        logger.debug(f"Delivery store: {result.rowcount} order(s) updated with {values}")
        return result.rowcount or 0