import asyncio

import pytest

from fulfillment.domain import commands, events, model
from fulfillment.domain.model import Line, OrderStatus, ProductDescriptor
from fulfillment.domain.packing import GreedyFirstFit, WeightBalanced
from fulfillment.service_layer import handlers, messagebus
from fulfillment.service_layer.allocator import Allocator
from fulfillment.service_layer.catalog import Catalog
from fulfillment.service_layer.order_ledger import OrderLedger
from tests.fakes import (
    FailingCommitUnitOfWork,
    FakeChannel,
    FakeUnitOfWork,
    SlowCommitUnitOfWork,
)

RBC = ProductDescriptor(0, "RBC A+ Adult", 700)
HEAVY = ProductDescriptor(1, "FFP A+", 1000)
PLATELETS = ProductDescriptor(2, "PLT AB+", 80)


def make_allocator(strategy=None, **kwargs) -> Allocator:
    return Allocator(
        catalog=Catalog(),
        ledger=OrderLedger(),
        strategy=strategy or GreedyFirstFit(),
        **kwargs,
    )


async def bootstrap(uow, allocator, stock=None, products=(RBC, HEAVY, PLATELETS)):
    await messagebus.handle(commands.InitCatalog(list(products)), uow, allocator)
    if stock:
        await messagebus.handle(
            commands.ProcessRestock([Line(pid, qty) for pid, qty in stock.items()]),
            uow,
            allocator,
        )


class TestInitCatalog:
    @pytest.mark.asyncio
    async def test_returns_product_count_and_commits(self):
        uow = FakeUnitOfWork()
        allocator = make_allocator()

        results = await messagebus.handle(commands.InitCatalog([RBC, HEAVY]), uow, allocator)

        assert results == [2]
        assert uow.committed
        assert allocator.catalog.initialized

    @pytest.mark.asyncio
    async def test_second_init_fails(self):
        uow = FakeUnitOfWork()
        allocator = make_allocator()
        await bootstrap(uow, allocator, stock={0: 4})

        with pytest.raises(model.AlreadyInitialized):
            await messagebus.handle(commands.InitCatalog([PLATELETS]), uow, allocator)

        assert allocator.catalog.available_stock(0) == 4

    @pytest.mark.asyncio
    async def test_failed_commit_leaves_catalog_uninitialized(self):
        uow = FailingCommitUnitOfWork(fail_on=1)
        allocator = make_allocator()

        with pytest.raises(ConnectionError):
            await messagebus.handle(commands.InitCatalog([RBC]), uow, allocator)

        assert not allocator.catalog.initialized

    @pytest.mark.asyncio
    async def test_reset_then_reinitialize(self):
        uow = FakeUnitOfWork()
        allocator = make_allocator()
        await bootstrap(uow, allocator)

        await messagebus.handle(commands.ResetCatalog(), uow, allocator)
        results = await messagebus.handle(commands.InitCatalog([PLATELETS]), uow, allocator)

        assert results == [1]
        assert [p.product_id for p in allocator.catalog.products()] == [2]


class TestProcessOrder:
    @pytest.mark.asyncio
    async def test_requires_initialized_catalog(self):
        with pytest.raises(model.CatalogNotInitialized):
            await messagebus.handle(
                commands.ProcessOrder(1, [Line(0, 1)]), FakeUnitOfWork(), make_allocator(),
            )

    @pytest.mark.asyncio
    async def test_unknown_product_is_rejected_before_enqueueing(self):
        uow = FakeUnitOfWork()
        allocator = make_allocator()
        await bootstrap(uow, allocator, stock={0: 5})

        with pytest.raises(model.ProductNotFound):
            await messagebus.handle(
                commands.ProcessOrder(1, [Line(0, 1), Line(99, 1)]), uow, allocator,
            )

        assert await uow.orders.get(1) is None
        assert allocator.catalog.available_stock(0) == 5

    @pytest.mark.asyncio
    async def test_ships_two_units_in_one_package(self):
        uow = FakeUnitOfWork()
        allocator = make_allocator()
        await bootstrap(uow, allocator, products=[RBC], stock={0: 2})

        [order] = await messagebus.handle(
            commands.ProcessOrder(1, [Line(0, 2)]), uow, allocator,
        )

        [shipment] = await uow.shipments.for_order(1)
        assert shipment.items == [Line(0, 2)]
        assert shipment.total_mass_g == 1400
        assert order.status == OrderStatus.FULFILLED
        assert allocator.catalog.available_stock(0) == 0

    @pytest.mark.asyncio
    async def test_ships_what_is_in_stock_and_queues_the_rest(self):
        uow = FakeUnitOfWork()
        allocator = make_allocator()
        await bootstrap(uow, allocator, products=[RBC], stock={0: 2})

        [order] = await messagebus.handle(
            commands.ProcessOrder(1, [Line(0, 3)]), uow, allocator,
        )

        [shipment] = await uow.shipments.for_order(1)
        assert shipment.items == [Line(0, 2)]
        assert order.status == OrderStatus.PARTIALLY_FULFILLED
        assert order.remaining_items() == [Line(0, 1)]

    @pytest.mark.asyncio
    async def test_units_too_heavy_to_pair_ship_one_per_package(self):
        uow = FakeUnitOfWork()
        allocator = make_allocator(ceiling_g=1800)
        await bootstrap(uow, allocator, products=[HEAVY], stock={1: 3})

        [order] = await messagebus.handle(
            commands.ProcessOrder(1, [Line(1, 3)]), uow, allocator,
        )

        shipments = await uow.shipments.for_order(1)
        assert [s.total_mass_g for s in shipments] == [1000, 1000, 1000]
        assert all(s.items == [Line(1, 1)] for s in shipments)
        assert order.status == OrderStatus.FULFILLED

    @pytest.mark.asyncio
    async def test_no_stock_leaves_order_pending(self):
        uow = FakeUnitOfWork()
        allocator = make_allocator()
        await bootstrap(uow, allocator)

        [order] = await messagebus.handle(
            commands.ProcessOrder(1, [Line(0, 3)]), uow, allocator,
        )

        assert order.status == OrderStatus.PENDING
        assert await uow.shipments.count() == 0
        assert [o.order_id for o in await uow.orders.list_pending()] == [1]

    @pytest.mark.asyncio
    async def test_every_package_respects_the_ceiling(self):
        uow = FakeUnitOfWork()
        allocator = make_allocator(strategy=WeightBalanced())
        await bootstrap(uow, allocator, stock={0: 10, 1: 4, 2: 50})

        [order] = await messagebus.handle(
            commands.ProcessOrder(1, [Line(0, 10), Line(1, 4), Line(2, 50)]), uow, allocator,
        )

        shipments = await uow.shipments.for_order(1)
        assert all(s.total_mass_g <= 1800 for s in shipments)
        assert sum(s.total_mass_g for s in shipments) == 10 * 700 + 4 * 1000 + 50 * 80
        assert order.status == OrderStatus.FULFILLED

    @pytest.mark.asyncio
    async def test_resubmitting_a_shipped_order_is_rejected(self):
        uow = FakeUnitOfWork()
        allocator = make_allocator()
        await bootstrap(uow, allocator, stock={0: 1})
        await messagebus.handle(commands.ProcessOrder(1, [Line(0, 2)]), uow, allocator)

        with pytest.raises(model.OrderAlreadyShipped):
            await messagebus.handle(commands.ProcessOrder(1, [Line(0, 5)]), uow, allocator)

        order = await uow.orders.get(1)
        assert order.requested_items == [Line(0, 2)]
        assert order.shipped_items == [Line(0, 1)]

    @pytest.mark.asyncio
    async def test_publishes_shipped_packages(self):
        uow = FakeUnitOfWork()
        allocator = make_allocator()
        channel = FakeChannel()
        await bootstrap(uow, allocator, products=[RBC], stock={0: 2})

        await messagebus.handle(commands.ProcessOrder(1, [Line(0, 2)]), uow, allocator, channel)

        [(name, event)] = channel.published
        assert name == handlers.PACKAGE_SHIPPED_CHANNEL
        assert isinstance(event, events.PackageShipped)
        assert event.order_id == 1
        assert event.total_mass_g == 1400

    @pytest.mark.asyncio
    async def test_ship_stub_logs_the_package(self, caplog):
        uow = FakeUnitOfWork()
        allocator = make_allocator()
        await bootstrap(uow, allocator, products=[RBC], stock={0: 1})

        with caplog.at_level("INFO"):
            await messagebus.handle(commands.ProcessOrder(5, [Line(0, 1)]), uow, allocator)

        assert 'SHIP PACKAGE - Order 5: [{"product_id": 0, "quantity": 1}]' in caplog.text

    @pytest.mark.asyncio
    async def test_failing_publisher_does_not_undo_the_shipment(self):
        class BrokenChannel:
            async def publish(self, channel, event):
                raise ConnectionError("redis is down")

        uow = FakeUnitOfWork()
        allocator = make_allocator()
        await bootstrap(uow, allocator, products=[RBC], stock={0: 2})

        [order] = await messagebus.handle(
            commands.ProcessOrder(1, [Line(0, 2)]), uow, allocator, BrokenChannel(),
        )

        assert order.status == OrderStatus.FULFILLED
        assert await uow.shipments.count() == 1

    @pytest.mark.asyncio
    async def test_failed_package_commit_returns_the_stock(self):
        # commits: init, restock, enqueue, first package
        uow = FailingCommitUnitOfWork(fail_on=4)
        allocator = make_allocator()
        await bootstrap(uow, allocator, products=[RBC], stock={0: 2})

        with pytest.raises(ConnectionError):
            await messagebus.handle(commands.ProcessOrder(1, [Line(0, 2)]), uow, allocator)

        assert allocator.catalog.available_stock(0) == 2


class TestProcessRestock:
    @pytest.mark.asyncio
    async def test_requires_initialized_catalog(self):
        with pytest.raises(model.CatalogNotInitialized):
            await messagebus.handle(
                commands.ProcessRestock([Line(0, 1)]), FakeUnitOfWork(), make_allocator(),
            )

    @pytest.mark.asyncio
    async def test_returns_applied_lines(self):
        uow = FakeUnitOfWork()
        allocator = make_allocator()
        await bootstrap(uow, allocator)

        [applied] = await messagebus.handle(
            commands.ProcessRestock([Line(0, 3), Line(77, 1)]), uow, allocator,
        )

        assert applied == [Line(0, 3)]
        assert allocator.catalog.available_stock(0) == 3

    @pytest.mark.asyncio
    async def test_restock_fulfills_waiting_orders_in_arrival_order(self):
        uow = FakeUnitOfWork()
        allocator = make_allocator()
        await bootstrap(uow, allocator, products=[RBC])
        await messagebus.handle(commands.ProcessOrder(10, [Line(0, 2)]), uow, allocator)
        await messagebus.handle(commands.ProcessOrder(20, [Line(0, 2)]), uow, allocator)

        await messagebus.handle(commands.ProcessRestock([Line(0, 3)]), uow, allocator)

        first, second = await uow.orders.get(10), await uow.orders.get(20)
        assert first.status == OrderStatus.FULFILLED
        assert second.status == OrderStatus.PARTIALLY_FULFILLED
        assert second.remaining_items() == [Line(0, 1)]
        assert allocator.catalog.available_stock(0) == 0

    @pytest.mark.asyncio
    async def test_single_unit_goes_to_the_earlier_order(self):
        uow = FakeUnitOfWork()
        allocator = make_allocator()
        await bootstrap(uow, allocator, products=[RBC])
        await messagebus.handle(commands.ProcessOrder(10, [Line(0, 1)]), uow, allocator)
        await messagebus.handle(commands.ProcessOrder(20, [Line(0, 1)]), uow, allocator)

        await messagebus.handle(commands.ProcessRestock([Line(0, 1)]), uow, allocator)

        assert (await uow.orders.get(10)).status == OrderStatus.FULFILLED
        assert (await uow.orders.get(20)).status == OrderStatus.PENDING
        assert await uow.shipments.for_order(20) == []

    @pytest.mark.asyncio
    async def test_failed_commit_withdraws_the_stock(self):
        # commits: init, restock
        uow = FailingCommitUnitOfWork(fail_on=2)
        allocator = make_allocator()
        await bootstrap(uow, allocator, products=[RBC])

        with pytest.raises(ConnectionError):
            await messagebus.handle(commands.ProcessRestock([Line(0, 3)]), uow, allocator)

        assert allocator.catalog.available_stock(0) == 0
        assert list(allocator.collect_new_events()) == []


class TestBatchShipping:
    @pytest.mark.asyncio
    async def test_batched_and_unbatched_runs_ship_the_same_goods(self):
        results = {}
        for threshold in (100, 1000):
            uow = FakeUnitOfWork()
            allocator = make_allocator(batch_threshold=threshold, batch_size=50)
            await bootstrap(uow, allocator, products=[HEAVY], stock={1: 120})

            [order] = await messagebus.handle(
                commands.ProcessOrder(1, [Line(1, 120)]), uow, allocator,
            )

            shipments = await uow.shipments.for_order(1)
            results[threshold] = (
                order.status,
                len(shipments),
                sum(s.total_mass_g for s in shipments),
                allocator.catalog.available_stock(1),
                uow.commits,
            )

        batched, single = results[100], results[1000]
        assert batched[:4] == single[:4] == (OrderStatus.FULFILLED, 120, 120_000, 0)
        # init, restock, enqueue, then one commit per chunk of 50 against one per package
        assert batched[4] == 3 + 3
        assert single[4] == 3 + 120

    @pytest.mark.asyncio
    async def test_chunk_that_cannot_reserve_falls_back_to_single_packages(self):
        uow = FakeUnitOfWork()
        allocator = make_allocator(batch_size=50)
        await bootstrap(uow, allocator, products=[HEAVY], stock={1: 2})
        order = await allocator.ledger.enqueue(uow, 1, [Line(1, 3)])

        shipped = await allocator._ship_in_batches(order, [[Line(1, 1)]] * 3, uow)

        assert len(shipped) == 2
        assert order.status == OrderStatus.PARTIALLY_FULFILLED
        assert allocator.catalog.available_stock(1) == 0


class TestReserve:
    @pytest.mark.asyncio
    async def test_unknown_product_among_valid_items_changes_nothing(self):
        uow = FakeUnitOfWork()
        allocator = make_allocator()
        await bootstrap(uow, allocator, stock={0: 5, 2: 5})

        with pytest.raises(model.ProductNotFound):
            await allocator.catalog.reserve([Line(0, 1), Line(55, 1), Line(2, 1)], uow)

        assert allocator.catalog.available_stock(0) == 5
        assert allocator.catalog.available_stock(2) == 5


class TestConcurrentRequests:
    @pytest.mark.asyncio
    async def test_two_orders_racing_for_the_last_unit(self):
        store = FakeUnitOfWork()
        allocator = make_allocator()
        await bootstrap(store, allocator, products=[RBC], stock={0: 1})

        await asyncio.gather(
            messagebus.handle(
                commands.ProcessOrder(1, [Line(0, 1)]), SlowCommitUnitOfWork(store), allocator,
            ),
            messagebus.handle(
                commands.ProcessOrder(2, [Line(0, 1)]), SlowCommitUnitOfWork(store), allocator,
            ),
        )

        assert await store.shipments.count() == 1
        assert allocator.catalog.available_stock(0) == 0
        assert store.products.stored(0).quantity_in_stock == 0
        statuses = sorted(o.status.value for o in await store.orders.list())
        assert statuses == ["fulfilled", "pending"]

    @pytest.mark.asyncio
    async def test_concurrent_orders_never_ship_more_than_stock(self):
        store = FakeUnitOfWork()
        allocator = make_allocator()
        await bootstrap(store, allocator, products=[RBC], stock={0: 5})

        await asyncio.gather(*[
            messagebus.handle(
                commands.ProcessOrder(order_id, [Line(0, 2)]), SlowCommitUnitOfWork(store), allocator,
            )
            for order_id in range(1, 5)
        ])

        shipped = sum(
            line.quantity
            for order in await store.orders.list()
            for line in order.shipped_items
        )
        assert shipped == 5
        assert allocator.catalog.available_stock(0) == 0

    @pytest.mark.asyncio
    async def test_order_arriving_during_restock_waits_behind_the_queue(self):
        store = FakeUnitOfWork()
        allocator = make_allocator()
        await bootstrap(store, allocator, products=[RBC])
        await messagebus.handle(commands.ProcessOrder(10, [Line(0, 1)]), store, allocator)

        restock = asyncio.create_task(
            messagebus.handle(
                commands.ProcessRestock([Line(0, 1)]), SlowCommitUnitOfWork(store), allocator,
            )
        )
        while not allocator.lock.locked():
            await asyncio.sleep(0)
        newer = asyncio.create_task(
            messagebus.handle(
                commands.ProcessOrder(20, [Line(0, 1)]), SlowCommitUnitOfWork(store), allocator,
            )
        )
        await asyncio.gather(restock, newer)

        assert (await store.orders.get(10)).status == OrderStatus.FULFILLED
        assert (await store.orders.get(20)).status == OrderStatus.PENDING
        assert allocator.catalog.available_stock(0) == 0
