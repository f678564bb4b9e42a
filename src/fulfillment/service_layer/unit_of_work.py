from __future__ import annotations

import abc
from typing import Iterator, Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from fulfillment.adapters import repository
from fulfillment.domain import events


class AbstractUnitOfWork(Protocol):
    products: repository.AbstractProductRepository
    orders: repository.TrackingRepository
    shipments: repository.AbstractShipmentRepository

    async def __aenter__(self) -> AbstractUnitOfWork:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.rollback()

    @abc.abstractmethod
    async def commit(self):
        raise NotImplementedError

    @abc.abstractmethod
    async def rollback(self):
        raise NotImplementedError

    def collect_new_events(self) -> Iterator[events.Event]:
        # nothing to collect before the first __aenter__
        orders = getattr(self, "orders", None)
        if orders is None:
            return
        for order in orders.seen:
            while order.messages:
                yield order.messages.pop(0)


class SqlAlchemyUnitOfWork(AbstractUnitOfWork):
    def __init__(
            self,
            session_factory,
    ):
        self._session_factory = session_factory

    async def __aenter__(self) -> AbstractUnitOfWork:
        self.session: AsyncSession = self._session_factory()
        self.products = repository.SqlAlchemyProductRepository(self.session)
        self.orders = repository.TrackingRepository(
            repository.SqlAlchemyOrderRepository(self.session)
        )
        self.shipments = repository.SqlAlchemyShipmentRepository(self.session)
        return await super().__aenter__()

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await super().__aexit__(exc_type, exc_val, exc_tb)
        await self.session.close()

    async def commit(self):
        await self.session.commit()

    async def rollback(self):
        await self.session.rollback()
