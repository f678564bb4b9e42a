from __future__ import annotations

import logging
from typing import TYPE_CHECKING, List, Optional, Sequence

from fulfillment.domain import model

if TYPE_CHECKING:
    from . import unit_of_work


logger = logging.getLogger(__name__)


class OrderLedger:
    """Orders, what they asked for, and what has shipped against them."""

    def __init__(self, max_quantity: int = 10_000_000):
        self.max_quantity = max_quantity

    def validate(self, requested: Sequence[model.Line]):
        if not requested:
            raise model.InvalidRequest("Order must request at least one product")

        seen = set()
        for line in requested:
            if line.product_id in seen:
                raise model.InvalidRequest(
                    f"Product {line.product_id} is requested more than once"
                )
            if line.quantity <= 0:
                raise model.InvalidQuantity(
                    f"Quantity for product {line.product_id} must be positive,"
                    f" got {line.quantity}"
                )
            if line.quantity > self.max_quantity:
                raise model.InvalidQuantity(
                    f"Quantity too large for product {line.product_id}:"
                    f" {line.quantity} exceeds maximum of {self.max_quantity:,}"
                )
            seen.add(line.product_id)

    async def enqueue(
            self,
            uow: unit_of_work.AbstractUnitOfWork,
            order_id: int,
            requested: Sequence[model.Line],
    ) -> model.Order:
        self.validate(requested)
        logger.info(f"Enqueueing order {order_id}")

        order = await self.get_order(uow, order_id)
        if order is None:
            order = model.Order(order_id=order_id, requested_items=list(requested))
            await uow.orders.add(order)
        else:
            logger.info(f"Order {order_id} already exists, updating...")
            order.revise(list(requested))

        return order

    async def pending_orders(
            self,
            uow: unit_of_work.AbstractUnitOfWork,
    ) -> List[model.Order]:
        return await uow.orders.list_pending()

    @staticmethod
    def remaining_items(order: model.Order) -> List[model.Line]:
        return order.remaining_items()

    async def record_shipment(
            self,
            uow: unit_of_work.AbstractUnitOfWork,
            order_id: int,
            shipment: model.Shipment,
    ) -> model.Order:
        order = await self.get_order(uow, order_id)
        if order is None:
            raise model.OrderNotFound(order_id)

        previous = order.status
        order.record_shipment(shipment)
        logger.info(
            f"Order {order_id} updated - Status: {previous.value} -> {order.status.value},"
            f" Shipments: {order.total_shipments}"
        )
        return order

    async def get_order(
            self,
            uow: unit_of_work.AbstractUnitOfWork,
            order_id: int,
    ) -> Optional[model.Order]:
        return await uow.orders.get(order_id)
