import logging
from contextlib import asynccontextmanager
from typing import List

from dependency_injector.wiring import inject, Provide
from fastapi import APIRouter, Depends, FastAPI, HTTPException, status

from fulfillment import views
from fulfillment.adapters import orm, redis
from fulfillment.container import Container
from fulfillment.domain import commands, model
from fulfillment.entrypoints import LineRequest, OrderRequest, ProductInfoRequest
from fulfillment.service_layer import messagebus, unit_of_work
from fulfillment.service_layer.allocator import Allocator
from fulfillment.service_layer.catalog import Catalog

logger = logging.getLogger(__name__)

LARGE_ORDER_UNITS = 1_000_000

container = Container()
db = container.db()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.basicConfig(level=container.config.LOG_LEVEL())
    await db.connect(echo=container.config.data.ECHO_SQL())
    await db.create_database()
    db.init_session_factory()
    orm.start_mappers()

    uow = container.uow()
    async with uow:
        await container.catalog().load(uow)

    yield

    await db.disconnect()
    # returns an awaitable only once the redis pool has been opened
    shutdown = container.shutdown_resources()
    if shutdown is not None:
        await shutdown


app = FastAPI(
    title=container.config.desc.REST_SERVICE_NAME(),
    description=container.config.desc.REST_SERVICE_DESCRIPTION(),
    version=container.config.desc.REST_SERVICE_VERSION(),
    lifespan=lifespan,
)
app.container = container

router = APIRouter(prefix="/fulfillment")


def _http_error(e: model.FulfillmentError) -> HTTPException:
    if isinstance(e, model.OrderNotFound):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(
            e,
            (model.AlreadyInitialized, model.CatalogNotInitialized, model.OrderAlreadyShipped),
    ):
        code = status.HTTP_409_CONFLICT
    else:
        code = status.HTTP_400_BAD_REQUEST
    return HTTPException(detail=str(e), status_code=code)


@router.post(
    "/init-catalog",
    status_code=status.HTTP_200_OK,
)
@inject
async def init_catalog_endpoint(
        product_info: List[ProductInfoRequest],
        uow: unit_of_work.AbstractUnitOfWork = Depends(Provide[Container.uow]),
        allocator: Allocator = Depends(Provide[Container.allocator]),
):
    cmd = commands.InitCatalog(
        products=[
            model.ProductDescriptor(
                product_id=p.product_id,
                name=p.product_name,
                mass_g=p.mass_g,
            )
            for p in product_info
        ],
    )
    try:
        results = await messagebus.handle(cmd, uow=uow, allocator=allocator)
    except model.FulfillmentError as e:
        raise _http_error(e) from e

    product_count = results.pop(0)
    return {
        "message": f"Catalog initialized with {product_count} products",
        "productCount": product_count,
    }


@router.post(
    "/process-order",
    status_code=status.HTTP_202_ACCEPTED,
)
@inject
async def process_order_endpoint(
        order: OrderRequest,
        uow: unit_of_work.AbstractUnitOfWork = Depends(Provide[Container.uow]),
        allocator: Allocator = Depends(Provide[Container.allocator]),
        channel: redis.AsyncRedis = Depends(Provide[Container.redis]),
):
    total_units = sum(line.quantity for line in order.requested)
    if total_units > LARGE_ORDER_UNITS:
        logger.info(f"Processing large order {order.order_id} with {total_units} total items")

    cmd = commands.ProcessOrder(
        order_id=order.order_id,
        requested=[model.Line(line.product_id, line.quantity) for line in order.requested],
    )
    try:
        await messagebus.handle(cmd, uow=uow, allocator=allocator, channel=channel)
    except model.FulfillmentError as e:
        raise _http_error(e) from e

    result = await views.order_status(order.order_id, uow)
    return {
        "message": f"Order {order.order_id} processed",
        **result,
    }


@router.post(
    "/process-restock",
    status_code=status.HTTP_200_OK,
)
@inject
async def process_restock_endpoint(
        restock: List[LineRequest],
        uow: unit_of_work.AbstractUnitOfWork = Depends(Provide[Container.uow]),
        allocator: Allocator = Depends(Provide[Container.allocator]),
        channel: redis.AsyncRedis = Depends(Provide[Container.redis]),
):
    if not restock:
        raise HTTPException(
            detail="Restock must contain at least one entry",
            status_code=status.HTTP_400_BAD_REQUEST,
        )

    cmd = commands.ProcessRestock(
        items=[model.Line(line.product_id, line.quantity) for line in restock],
    )
    try:
        results = await messagebus.handle(cmd, uow=uow, allocator=allocator, channel=channel)
    except model.FulfillmentError as e:
        raise _http_error(e) from e

    applied = results.pop(0)
    return {
        "message": f"Restock processed for {len(applied)} products",
        "restocked": [line.to_dict() for line in applied],
    }


@router.post(
    "/reset-catalog",
    status_code=status.HTTP_200_OK,
)
@inject
async def reset_catalog_endpoint(
        uow: unit_of_work.AbstractUnitOfWork = Depends(Provide[Container.uow]),
        allocator: Allocator = Depends(Provide[Container.allocator]),
):
    await messagebus.handle(commands.ResetCatalog(), uow=uow, allocator=allocator)
    return {"message": "Catalog reset successfully"}


@router.get(
    "/order/{order_id}/status"
)
@inject
async def order_status_endpoint(
        order_id: int,
        uow: unit_of_work.AbstractUnitOfWork = Depends(Provide[Container.uow]),
):
    result = await views.order_status(order_id, uow)
    if result is None:
        raise _http_error(model.OrderNotFound(order_id))

    return result


@router.get(
    "/order/{order_id}/shipments"
)
@inject
async def order_shipments_endpoint(
        order_id: int,
        uow: unit_of_work.AbstractUnitOfWork = Depends(Provide[Container.uow]),
):
    shipments = await views.order_shipments(order_id, uow)
    return {
        "order_id": order_id,
        "shipments": shipments,
        "total_shipments": len(shipments),
    }


@router.get(
    "/orders"
)
@inject
async def all_orders_endpoint(
        uow: unit_of_work.AbstractUnitOfWork = Depends(Provide[Container.uow]),
):
    orders = await views.all_orders(uow)
    return {"orders": orders, "total": len(orders)}


@router.get(
    "/queue"
)
@inject
async def queue_endpoint(
        uow: unit_of_work.AbstractUnitOfWork = Depends(Provide[Container.uow]),
):
    return await views.pending_queue(uow)


@router.get(
    "/stock"
)
@inject
async def all_stock_endpoint(
        catalog: Catalog = Depends(Provide[Container.catalog]),
):
    stock = views.all_stock(catalog)
    return {"stock": stock, "total_products": len(stock)}


@router.get(
    "/stock/{product_id}"
)
@inject
async def product_stock_endpoint(
        product_id: int,
        catalog: Catalog = Depends(Provide[Container.catalog]),
):
    result = views.product_stock(catalog, product_id)
    if result is None:
        raise HTTPException(
            detail=f"Product {product_id} not found",
            status_code=status.HTTP_404_NOT_FOUND,
        )

    return result


@router.get(
    "/status"
)
@inject
async def system_status_endpoint(
        catalog: Catalog = Depends(Provide[Container.catalog]),
        uow: unit_of_work.AbstractUnitOfWork = Depends(Provide[Container.uow]),
):
    return await views.system_status(catalog, uow)


app.include_router(router, prefix=container.config.desc.API_STR())
container.wire(modules=[__name__])
