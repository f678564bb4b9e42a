from typing import Dict, List, Optional, Protocol, Sequence, Set

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from fulfillment.adapters import orm
from fulfillment.domain import model


PENDING_STATUSES = (
    model.OrderStatus.PENDING,
    model.OrderStatus.PARTIALLY_FULFILLED,
)


class AbstractProductRepository(Protocol):
    async def add_all(self, products: Sequence[model.Product]):
        raise NotImplementedError

    async def remove_except(self, product_ids: Sequence[int]):
        raise NotImplementedError

    async def update_stock(self, products: Sequence[model.Product]):
        raise NotImplementedError

    async def list(self) -> List[model.Product]:
        raise NotImplementedError

    async def count(self) -> int:
        raise NotImplementedError


class AbstractOrderRepository(Protocol):
    async def add(self, order: model.Order):
        raise NotImplementedError

    async def get(self, order_id: int) -> Optional[model.Order]:
        raise NotImplementedError

    async def list(self) -> List[model.Order]:
        raise NotImplementedError

    async def list_pending(self) -> List[model.Order]:
        raise NotImplementedError

    async def count_pending(self) -> int:
        raise NotImplementedError


class AbstractShipmentRepository(Protocol):
    async def add(self, shipment: model.Shipment):
        raise NotImplementedError

    async def add_all(self, shipments: Sequence[model.Shipment]):
        raise NotImplementedError

    async def for_order(self, order_id: int) -> List[model.Shipment]:
        raise NotImplementedError

    async def count(self) -> int:
        raise NotImplementedError


class TrackingRepository:
    """Remembers every order handed out so their events can be collected."""

    seen: Set[model.Order]

    def __init__(
            self,
            repo: AbstractOrderRepository,
    ):
        self._repo = repo
        self.seen = set()
        self._by_id = {}   # type: Dict[int, model.Order]

    def _track(self, order: model.Order) -> model.Order:
        self.seen.add(order)
        self._by_id[order.order_id] = order
        return order

    async def add(self, order: model.Order):
        await self._repo.add(order)
        self._track(order)

    async def get(self, order_id: int) -> Optional[model.Order]:
        if order_id in self._by_id:
            return self._by_id[order_id]
        order = await self._repo.get(order_id)
        if order:
            self._track(order)
        return order

    async def list(self) -> List[model.Order]:
        return await self._repo.list()

    async def list_pending(self) -> List[model.Order]:
        return [self._track(order) for order in await self._repo.list_pending()]

    async def count_pending(self) -> int:
        return await self._repo.count_pending()


class SqlAlchemyProductRepository(AbstractProductRepository):
    def __init__(
            self,
            session: AsyncSession,
    ):
        self.session = session

    async def add_all(self, products: Sequence[model.Product]):
        """Creates or overwrites every product.

        merge() copies the state into the session, so the caller's instances
        stay detached and can live in the in-memory catalog.
        """
        for product in products:
            await self.session.merge(product.copy())

    async def remove_except(self, product_ids: Sequence[int]):
        """Drops every stored product whose id is not listed."""
        await self.session.execute(
            delete(orm.products).where(orm.products.c.product_id.not_in(product_ids))
        )

    async def update_stock(self, products: Sequence[model.Product]):
        if not products:
            return

        await self.session.execute(
            update(model.Product),
            [
                {
                    "product_id": product.product_id,
                    "quantity_in_stock": product.quantity_in_stock,
                }
                for product in products
            ],
        )

    async def list(self) -> List[model.Product]:
        return (
            (
                await self.session.scalars(
                    select(model.Product)
                    .order_by(orm.products.c.product_id)
                )
            )
            .all()
        )

    async def count(self) -> int:
        return await self.session.scalar(
            select(func.count()).select_from(orm.products)
        )


class SqlAlchemyOrderRepository(AbstractOrderRepository):
    def __init__(
            self,
            session: AsyncSession,
    ):
        self.session = session

    async def add(self, order: model.Order):
        self.session.add(order)

    async def get(self, order_id: int) -> Optional[model.Order]:
        return (
            (
                await self.session.execute(
                    select(model.Order)
                    .filter(orm.orders.c.order_id == order_id)
                )
            )
            .scalars()
            .one_or_none()
        )

    async def list(self) -> List[model.Order]:
        return (
            (
                await self.session.scalars(
                    select(model.Order)
                    .order_by(orm.orders.c.created_at.desc(), orm.orders.c.id.desc())
                )
            )
            .all()
        )

    async def list_pending(self) -> List[model.Order]:
        return (
            (
                await self.session.scalars(
                    select(model.Order)
                    .filter(orm.orders.c.status.in_(PENDING_STATUSES))
                    .order_by(orm.orders.c.created_at, orm.orders.c.id)
                )
            )
            .all()
        )

    async def count_pending(self) -> int:
        return await self.session.scalar(
            select(func.count())
            .select_from(orm.orders)
            .filter(orm.orders.c.status.in_(PENDING_STATUSES))
        )


class SqlAlchemyShipmentRepository(AbstractShipmentRepository):
    def __init__(
            self,
            session: AsyncSession,
    ):
        self.session = session

    async def add(self, shipment: model.Shipment):
        self.session.add(shipment)

    async def add_all(self, shipments: Sequence[model.Shipment]):
        self.session.add_all(shipments)

    async def for_order(self, order_id: int) -> List[model.Shipment]:
        return (
            (
                await self.session.scalars(
                    select(model.Shipment)
                    .filter(orm.shipments.c.order_id == order_id)
                    .order_by(orm.shipments.c.shipped_at)
                )
            )
            .all()
        )

    async def count(self) -> int:
        return await self.session.scalar(
            select(func.count()).select_from(orm.shipments)
        )
