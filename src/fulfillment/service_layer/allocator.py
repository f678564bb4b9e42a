from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, List, Optional, Sequence

from fulfillment.domain import model
from fulfillment.domain.packing import Package, PackingStrategy
from fulfillment.service_layer.catalog import Catalog
from fulfillment.service_layer.order_ledger import OrderLedger

if TYPE_CHECKING:
    from . import unit_of_work


logger = logging.getLogger(__name__)


class Allocator:
    """Turns stock into packages for the orders that are owed it.

    Callers hold ``lock`` around every call that mutates the catalog or the
    ledger; one lock for everything keeps two reservations from ever reading
    the same stale stock figure.
    """

    def __init__(
            self,
            catalog: Catalog,
            ledger: OrderLedger,
            strategy: PackingStrategy,
            ceiling_g: int = 1800,
            batch_threshold: int = 100,
            batch_size: int = 50,
    ):
        self.catalog = catalog
        self.ledger = ledger
        self.strategy = strategy
        self.ceiling_g = ceiling_g
        self.batch_threshold = batch_threshold
        self.batch_size = batch_size
        self.lock = asyncio.Lock()

    async def submit_order(
            self,
            order_id: int,
            requested: Sequence[model.Line],
            uow: unit_of_work.AbstractUnitOfWork,
    ) -> model.Order:
        logger.info(f"Processing order {order_id}")
        self.catalog.require_initialized()
        for line in requested:
            if self.catalog.get(line.product_id) is None:
                raise model.ProductNotFound(line.product_id)

        order = await self.ledger.enqueue(uow, order_id, requested)
        await uow.commit()

        await self.attempt_fulfillment(order, uow)
        return order

    async def restock(
            self,
            deltas: Sequence[model.Line],
            uow: unit_of_work.AbstractUnitOfWork,
    ) -> List[model.Line]:
        self.catalog.require_initialized()
        applied = await self.catalog.restock(deltas, uow)
        try:
            await uow.commit()
        except Exception:
            self.catalog.withdraw(applied)
            raise
        return applied

    async def fulfill_pending_orders(
            self,
            uow: unit_of_work.AbstractUnitOfWork,
    ) -> List[model.Shipment]:
        pending = await self.ledger.pending_orders(uow)
        logger.info(f"Attempting to fulfill {len(pending)} pending orders")

        shipped = []
        for order in pending:
            shipped.extend(await self.attempt_fulfillment(order, uow))
        return shipped

    def shippable_items(self, remaining: Sequence[model.Line]) -> List[model.Line]:
        shippable = []
        for line in remaining:
            quantity = min(line.quantity, self.catalog.available_stock(line.product_id))
            if quantity > 0:
                shippable.append(model.Line(line.product_id, quantity))
        return shippable

    async def attempt_fulfillment(
            self,
            order: model.Order,
            uow: unit_of_work.AbstractUnitOfWork,
    ) -> List[model.Shipment]:
        remaining = self.ledger.remaining_items(order)
        if not remaining:
            logger.info(f"Order {order.order_id} is already fulfilled")
            return []

        shippable = self.shippable_items(remaining)
        if not shippable:
            logger.info(
                f"Order {order.order_id} cannot be fulfilled - insufficient inventory"
            )
            return []

        packages = self.strategy.pack(shippable, self.ceiling_g, self.catalog.mass_table())

        if len(packages) > self.batch_threshold:
            logger.info(
                f"Processing {len(packages)} shipments in batch mode"
                f" for order {order.order_id}"
            )
            return await self._ship_in_batches(order, packages, uow)

        shipped = []
        for package in packages:
            shipment = await self._ship_package(order, package, uow)
            if shipment:
                shipped.append(shipment)
        return shipped

    def _check_package(self, order: model.Order, package: Package) -> int:
        mass = self.catalog.total_mass(package)
        if mass > self.ceiling_g:
            raise model.ShipmentExceedsCeiling(mass, self.ceiling_g)
        if not order.can_ship(package):
            raise model.InvalidQuantity(
                f"Package exceeds what order {order.order_id} still needs"
            )
        return mass

    async def _ship_package(
            self,
            order: model.Order,
            package: Package,
            uow: unit_of_work.AbstractUnitOfWork,
    ) -> Optional[model.Shipment]:
        try:
            mass = self._check_package(order, package)
            await self.catalog.reserve(package, uow)
        except model.FulfillmentError as e:
            logger.warning(f"Skipping package for order {order.order_id}: {e}")
            return None

        shipment = model.Shipment(order_id=order.order_id, items=list(package), total_mass_g=mass)
        try:
            await uow.shipments.add(shipment)
            await self.ledger.record_shipment(uow, order.order_id, shipment)
            await uow.commit()
        except Exception:
            self.catalog.release(package)
            raise

        logger.info(
            f"Shipped package for order {order.order_id}:"
            f" {len(package)} item types, {mass}g"
        )
        return shipment

    async def _ship_in_batches(
            self,
            order: model.Order,
            packages: List[Package],
            uow: unit_of_work.AbstractUnitOfWork,
    ) -> List[model.Shipment]:
        total_batches = -(-len(packages) // self.batch_size)
        logger.info(
            f"Starting batch shipment processing: {len(packages)} shipments"
            f" in batches of {self.batch_size}"
        )

        shipped = []
        for number, start in enumerate(range(0, len(packages), self.batch_size), 1):
            chunk = packages[start:start + self.batch_size]
            logger.info(f"Processing batch {number}/{total_batches} ({len(chunk)} shipments)")

            accepted = []
            for package in chunk:
                try:
                    mass = self._check_package(order, package)
                except model.FulfillmentError as e:
                    logger.warning(f"Skipping package for order {order.order_id}: {e}")
                    continue
                accepted.append((package, mass))

            reserved = [line for package, _ in accepted for line in package]
            if not reserved:
                continue

            try:
                await self.catalog.reserve(reserved, uow)
            except model.FulfillmentError as e:
                # settle this chunk one package at a time, same outcome as unbatched
                logger.warning(f"Batch {number} reservation failed ({e}), shipping packages singly")
                for package, _ in accepted:
                    shipment = await self._ship_package(order, package, uow)
                    if shipment:
                        shipped.append(shipment)
                continue

            shipments = [
                model.Shipment(order_id=order.order_id, items=list(package), total_mass_g=mass)
                for package, mass in accepted
            ]
            try:
                await uow.shipments.add_all(shipments)
                for shipment in shipments:
                    await self.ledger.record_shipment(uow, order.order_id, shipment)
                await uow.commit()
            except Exception:
                self.catalog.release(reserved)
                raise

            shipped.extend(shipments)
            logger.info(
                f"Batch {number} completed: {len(shipments)} shipments,"
                f" {sum(s.total_mass_g for s in shipments)}g total"
            )

        logger.info(
            f"Batch processing completed for order {order.order_id}:"
            f" {len(packages)} shipments processed"
        )
        return shipped

    def collect_new_events(self):
        yield from self.catalog.collect_new_events()
