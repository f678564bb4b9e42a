from sqlalchemy.orm import registry
from sqlalchemy.types import JSON, TypeDecorator

from sqlalchemy import (
    Column,
    DateTime,
    Enum,
    event,
    Index,
    Integer,
    String,
    Table,
)

from fulfillment.domain import model


mapper_registry = registry()
metadata = mapper_registry.metadata


class LineList(TypeDecorator):
    """Stores a list of ``model.Line`` as a JSON array of objects."""

    impl = JSON
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return []
        return [line.to_dict() for line in value]

    def process_result_value(self, value, dialect):
        if value is None:
            return []
        return [
            model.Line(product_id=item["product_id"], quantity=item["quantity"])
            for item in value
        ]


products = Table(
    "products",
    metadata,
    Column("product_id", Integer, primary_key=True, autoincrement=False),
    Column("name", String(255), nullable=False),
    Column("mass_g", Integer, nullable=False),
    Column("quantity_in_stock", Integer, nullable=False, server_default="0"),
    Index("ix_products_quantity_in_stock", "quantity_in_stock"),
)

orders = Table(
    "orders",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("order_id", Integer, nullable=False, unique=True),
    Column("requested_items", LineList, nullable=False),
    Column("shipped_items", LineList, nullable=False),
    Column(
        "status",
        Enum(
            model.OrderStatus,
            native_enum=False,
            length=32,
            values_callable=lambda statuses: [s.value for s in statuses],
        ),
        nullable=False,
    ),
    Column("total_shipments", Integer, nullable=False, server_default="0"),
    Column("created_at", DateTime, nullable=False),
    Index("ix_orders_status", "status"),
    Index("ix_orders_status_created_at", "status", "created_at"),
)

shipments = Table(
    "shipments",
    metadata,
    Column("shipment_id", String(32), primary_key=True),
    Column("order_id", Integer, nullable=False),
    Column("items", LineList, nullable=False),
    Column("total_mass_g", Integer, nullable=False),
    Column("shipped_at", DateTime, nullable=False),
    Index("ix_shipments_order_id", "order_id"),
    Index("ix_shipments_shipped_at", "shipped_at"),
    Index("ix_shipments_order_id_shipped_at", "order_id", "shipped_at"),
)


def start_mappers():
    if mapper_registry.mappers:
        return

    mapper_registry.map_imperatively(model.Product, products)
    mapper_registry.map_imperatively(model.Order, orders)
    mapper_registry.map_imperatively(model.Shipment, shipments)


@event.listens_for(model.Order, "load")
def receive_load(order, _):
    order.messages = []
