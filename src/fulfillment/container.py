from dependency_injector import containers, providers

from fulfillment.adapters import redis
from fulfillment.adapters.database import AsyncSQLAlchemy
from fulfillment.config import Settings
from fulfillment.domain import packing
from fulfillment.service_layer import unit_of_work
from fulfillment.service_layer.allocator import Allocator
from fulfillment.service_layer.catalog import Catalog
from fulfillment.service_layer.order_ledger import OrderLedger


class Container(containers.DeclarativeContainer):
    __self__ = providers.Self()

    config = providers.Configuration()
    config.from_pydantic(Settings())

    db = providers.Singleton(
        AsyncSQLAlchemy,
        db_uri=config.data.DB_URI,
    )

    redis_pool = providers.Resource(
        redis.init_redis_pool,
        redis_uri=config.broker.REDIS_URI,
    )

    redis = providers.Factory(
        redis.AsyncRedis,
        session=redis_pool,
    )

    packing_strategy = providers.Singleton(
        packing.strategy_for,
        name=config.packing.STRATEGY,
    )

    catalog = providers.Singleton(Catalog)

    ledger = providers.Singleton(
        OrderLedger,
        max_quantity=config.packing.MAX_QUANTITY,
    )

    allocator = providers.Singleton(
        Allocator,
        catalog=catalog,
        ledger=ledger,
        strategy=packing_strategy,
        ceiling_g=config.packing.MAX_PACKAGE_MASS_G,
        batch_threshold=config.packing.BATCH_THRESHOLD,
        batch_size=config.packing.BATCH_SIZE,
    )

    uow = providers.Factory(
        unit_of_work.SqlAlchemyUnitOfWork,
        session_factory=db.provided.session_factory,
    )
