from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional, Sequence

from fulfillment.domain import events, model

if TYPE_CHECKING:
    from . import unit_of_work


logger = logging.getLogger(__name__)

DETAILED_RESTOCK_LOG_LIMIT = 10


class Catalog:
    """In-memory product registry, written through to the product repository.

    The map is the fast path for every stock lookup made while packing.
    Mutations change memory first, then persist in one batch; when the write
    fails the in-memory change is reverted before the error propagates.
    Recovery from the store is the explicit ``load`` step, run at startup.
    """

    def __init__(self):
        self._products = {}     # type: Dict[int, model.Product]
        self._initialized = False
        self.messages = []      # type: List[events.Event]

    @property
    def initialized(self) -> bool:
        return self._initialized

    def require_initialized(self):
        if not self._initialized:
            raise model.CatalogNotInitialized(
                "Catalog has not been initialized. Call 'init-catalog' first."
            )

    async def load(self, uow: unit_of_work.AbstractUnitOfWork) -> int:
        stored = await uow.products.list()
        self._products = {p.product_id: p.copy() for p in stored}
        self._initialized = bool(self._products)
        if self._initialized:
            logger.info(f"Loaded existing catalog with {len(self._products)} products")
        return len(self._products)

    async def init_catalog(
            self,
            descriptors: Sequence[model.ProductDescriptor],
            uow: unit_of_work.AbstractUnitOfWork,
    ) -> List[model.Product]:
        if self._initialized:
            raise model.AlreadyInitialized(
                "Catalog has already been initialized. Cannot reinitialize."
                " Use 'process-restock' to add inventory or 'reset-catalog'"
                " to reset and reinitialize."
            )
        if not descriptors:
            raise model.InvalidRequest("Catalog must contain at least one product")

        seen = set()
        for descriptor in descriptors:
            if descriptor.product_id in seen:
                raise model.InvalidRequest(
                    f"Product {descriptor.product_id} is listed more than once"
                )
            if descriptor.mass_g <= 0:
                raise model.InvalidQuantity(
                    f"Product {descriptor.product_id} must have a positive mass,"
                    f" got {descriptor.mass_g}g"
                )
            seen.add(descriptor.product_id)

        logger.info("Initializing product catalog")
        products = [
            model.Product(
                product_id=d.product_id,
                name=d.name,
                mass_g=d.mass_g,
                quantity_in_stock=0,
            )
            for d in descriptors
        ]
        # rows left over from a catalog before the last reset
        await uow.products.remove_except([p.product_id for p in products])
        await uow.products.add_all(products)

        self._products = {p.product_id: p for p in products}
        self._initialized = True
        logger.info(f"Catalog initialized with {len(products)} products")
        return products

    async def restock(
            self,
            deltas: Sequence[model.Line],
            uow: unit_of_work.AbstractUnitOfWork,
    ) -> List[model.Line]:
        """Adds stock, skipping unknown products. Returns the applied lines."""
        for delta in deltas:
            if delta.quantity <= 0:
                raise model.InvalidQuantity(
                    f"Restock quantity for product {delta.product_id}"
                    f" must be positive, got {delta.quantity}"
                )

        logger.info(f"Processing restock for {len(deltas)} products")

        applied = []
        for delta in deltas:
            product = self._products.get(delta.product_id)
            if product is None:
                logger.warning(f"Product {delta.product_id} not found in catalog, skipped")
                continue
            product.quantity_in_stock += delta.quantity
            applied.append(delta)

        if not applied:
            return applied

        try:
            await uow.products.update_stock(self._touched(applied))
        except Exception:
            self._apply(applied, sign=-1)
            raise

        if len(deltas) > DETAILED_RESTOCK_LOG_LIMIT:
            logger.info(f"Restock completed: {len(applied)} entries applied")
        else:
            for delta in applied:
                logger.info(
                    f"Restocked product {delta.product_id}: +{delta.quantity}"
                    f" (total: {self._products[delta.product_id].quantity_in_stock})"
                )

        self.messages.append(
            events.Restocked(items=[line.to_dict() for line in applied])
        )
        return applied

    def available_stock(self, product_id: int) -> int:
        product = self._products.get(product_id)
        return max(product.quantity_in_stock, 0) if product else 0

    async def reserve(
            self,
            items: Sequence[model.Line],
            uow: unit_of_work.AbstractUnitOfWork,
    ) -> List[model.Product]:
        """Decrements stock for every item, or for none of them."""
        wanted = model.merge_lines(items)
        for line in wanted:
            if line.quantity <= 0:
                raise model.InvalidQuantity(
                    f"Cannot reserve {line.quantity} units of product {line.product_id}"
                )
            product = self._products.get(line.product_id)
            if product is None:
                raise model.ProductNotFound(line.product_id)
            if product.quantity_in_stock < line.quantity:
                raise model.InsufficientStock(
                    line.product_id, product.quantity_in_stock, line.quantity,
                )

        self._apply(wanted, sign=-1)
        touched = self._touched(wanted)
        try:
            await uow.products.update_stock(touched)
        except Exception:
            self._apply(wanted, sign=1)
            raise
        return touched

    def release(self, items: Iterable[model.Line]):
        """Gives back a reservation whose commit failed. Memory only."""
        self._apply(model.merge_lines(items), sign=1)

    def withdraw(self, items: Iterable[model.Line]):
        """Takes back a restock whose commit failed. Memory only."""
        self._apply(model.merge_lines(items), sign=-1)
        self.messages = [
            message for message in self.messages
            if not isinstance(message, events.Restocked)
        ]

    def total_mass(self, items: Iterable[model.Line]) -> int:
        total = 0
        for line in items:
            product = self._products.get(line.product_id)
            if product:
                total += product.mass_g * line.quantity
        return total

    def mass_table(self) -> Dict[int, int]:
        return {pid: p.mass_g for pid, p in self._products.items()}

    def get(self, product_id: int) -> Optional[model.Product]:
        return self._products.get(product_id)

    def products(self) -> List[model.Product]:
        return sorted(self._products.values(), key=lambda p: p.product_id)

    def reset(self):
        logger.info("Resetting catalog initialization state")
        self._products = {}
        self._initialized = False

    def collect_new_events(self):
        while self.messages:
            yield self.messages.pop(0)

    def _apply(self, lines: Iterable[model.Line], sign: int):
        for line in lines:
            product = self._products.get(line.product_id)
            if product:
                product.quantity_in_stock += sign * line.quantity

    def _touched(self, lines: Iterable[model.Line]) -> List[model.Product]:
        ids = dict.fromkeys(line.product_id for line in lines)
        return [self._products[pid] for pid in ids]
