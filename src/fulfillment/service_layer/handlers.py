from __future__ import annotations

import logging
from typing import TYPE_CHECKING, List, Optional

from fulfillment.adapters import carrier, redis
from fulfillment.domain import commands, events, model

if TYPE_CHECKING:
    from . import unit_of_work
    from .allocator import Allocator


logger = logging.getLogger(__name__)

PACKAGE_SHIPPED_CHANNEL = "package_shipped"


async def init_catalog(
        command: commands.InitCatalog,
        uow: unit_of_work.AbstractUnitOfWork,
        allocator: Allocator,
) -> int:
    async with allocator.lock:
        async with uow:
            products = await allocator.catalog.init_catalog(command.products, uow)
            try:
                await uow.commit()
            except Exception:
                allocator.catalog.reset()
                raise

    return len(products)


async def process_order(
        command: commands.ProcessOrder,
        uow: unit_of_work.AbstractUnitOfWork,
        allocator: Allocator,
) -> model.Order:
    async with allocator.lock:
        async with uow:
            order = await allocator.submit_order(command.order_id, command.requested, uow)

    return order


async def process_restock(
        command: commands.ProcessRestock,
        uow: unit_of_work.AbstractUnitOfWork,
        allocator: Allocator,
) -> List[model.Line]:
    # restock and the FIFO retry share one hold of the lock
    async with allocator.lock:
        async with uow:
            applied = await allocator.restock(command.items, uow)
            await allocator.fulfill_pending_orders(uow)

    return applied


async def reset_catalog(
        command: commands.ResetCatalog,
        uow: unit_of_work.AbstractUnitOfWork,
        allocator: Allocator,
):
    async with allocator.lock:
        allocator.catalog.reset()
    logger.info("Catalog reset successfully")


async def log_restocked(
        event: events.Restocked,
        uow: unit_of_work.AbstractUnitOfWork,
        allocator: Allocator,
        channel: Optional[redis.AsyncRedis] = None,
):
    logger.info(f"Restocked {len(event.items)} product(s): {event.items}")


async def ship_package(
        event: events.PackageShipped,
        uow: unit_of_work.AbstractUnitOfWork,
        allocator: Allocator,
        channel: Optional[redis.AsyncRedis] = None,
):
    await carrier.ship_package(event)


async def publish_package_shipped(
        event: events.PackageShipped,
        uow: unit_of_work.AbstractUnitOfWork,
        allocator: Allocator,
        channel: Optional[redis.AsyncRedis] = None,
):
    if channel is None:
        return
    await channel.publish(PACKAGE_SHIPPED_CHANNEL, event)


async def log_order_fulfilled(
        event: events.OrderFulfilled,
        uow: unit_of_work.AbstractUnitOfWork,
        allocator: Allocator,
        channel: Optional[redis.AsyncRedis] = None,
):
    logger.info(
        f"Order {event.order_id} fulfilled after {event.total_shipments} shipment(s)"
    )
