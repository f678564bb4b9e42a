from typing import Any, Dict, List, Optional

from fulfillment.domain import model
from fulfillment.service_layer import unit_of_work
from fulfillment.service_layer.catalog import Catalog


def _lines(lines: List[model.Line]) -> List[Dict[str, int]]:
    return [line.to_dict() for line in lines]


def _order(order: model.Order) -> Dict[str, Any]:
    return {
        "order_id": order.order_id,
        "status": order.status.value,
        "requested_items": _lines(order.requested_items),
        "shipped_items": _lines(order.shipped_items),
        "total_shipments": order.total_shipments,
        "created_at": order.created_at.isoformat(),
    }


def _shipment(shipment: model.Shipment) -> Dict[str, Any]:
    return {
        "shipment_id": shipment.shipment_id,
        "order_id": shipment.order_id,
        "items": _lines(shipment.items),
        "total_mass_g": shipment.total_mass_g,
        "shipped_at": shipment.shipped_at.isoformat(),
    }


def _stock(product: model.Product) -> Dict[str, Any]:
    return {
        "product_id": product.product_id,
        "product_name": product.name,
        "quantity_in_stock": product.quantity_in_stock,
        "mass_g": product.mass_g,
    }


async def order_status(
        order_id: int,
        uow: unit_of_work.AbstractUnitOfWork,
) -> Optional[Dict[str, Any]]:
    async with uow:
        order = await uow.orders.get(order_id)
        if order is None:
            return None
        shipments = await uow.shipments.for_order(order_id)

        return {
            "order": _order(order),
            "remaining_items": _lines(order.remaining_items()),
            "shipments": [_shipment(s) for s in shipments],
        }


async def order_shipments(
        order_id: int,
        uow: unit_of_work.AbstractUnitOfWork,
) -> List[Dict[str, Any]]:
    async with uow:
        return [_shipment(s) for s in await uow.shipments.for_order(order_id)]


async def all_orders(
        uow: unit_of_work.AbstractUnitOfWork,
) -> List[Dict[str, Any]]:
    async with uow:
        return [_order(o) for o in await uow.orders.list()]


async def pending_queue(
        uow: unit_of_work.AbstractUnitOfWork,
) -> Dict[str, Any]:
    async with uow:
        pending = await uow.orders.list_pending()
        return {
            "pending_orders": [_order(o) for o in pending],
            "pending_count": len(pending),
        }


def all_stock(catalog: Catalog) -> List[Dict[str, Any]]:
    return [_stock(p) for p in catalog.products()]


def product_stock(catalog: Catalog, product_id: int) -> Optional[Dict[str, Any]]:
    product = catalog.get(product_id)
    if product is None:
        return None
    return _stock(product)


async def system_status(
        catalog: Catalog,
        uow: unit_of_work.AbstractUnitOfWork,
) -> Dict[str, Any]:
    async with uow:
        pending_orders = await uow.orders.count_pending()
        total_shipments = await uow.shipments.count()

    return {
        "catalog_initialized": catalog.initialized,
        "total_products": len(catalog.products()),
        "pending_orders": pending_orders,
        "total_shipments": total_shipments,
    }
