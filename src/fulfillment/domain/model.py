import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from fulfillment.domain import events


class FulfillmentError(Exception):
    pass


class AlreadyInitialized(FulfillmentError):
    pass


class CatalogNotInitialized(FulfillmentError):
    pass


class ProductNotFound(FulfillmentError):
    def __init__(self, product_id: int):
        super().__init__(f"Product {product_id} not found")
        self.product_id = product_id


class InsufficientStock(FulfillmentError):
    def __init__(self, product_id: int, available: int, requested: int):
        super().__init__(
            f"Insufficient stock for product {product_id}."
            f" Available: {available}, Requested: {requested}"
        )
        self.product_id = product_id
        self.available = available
        self.requested = requested


class OrderNotFound(FulfillmentError):
    def __init__(self, order_id: int):
        super().__init__(f"Order {order_id} not found")
        self.order_id = order_id


class InvalidQuantity(FulfillmentError):
    pass


class InvalidRequest(FulfillmentError):
    pass


class ShipmentExceedsCeiling(FulfillmentError):
    def __init__(self, mass_g: int, ceiling_g: int):
        super().__init__(
            f"Shipment exceeds maximum weight: {mass_g}g > {ceiling_g}g"
        )
        self.mass_g = mass_g
        self.ceiling_g = ceiling_g


class OrderAlreadyShipped(FulfillmentError):
    def __init__(self, order_id: int, total_shipments: int):
        super().__init__(
            f"Order {order_id} already has {total_shipments} shipment(s)"
            " and cannot be resubmitted"
        )
        self.order_id = order_id


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    PARTIALLY_FULFILLED = "partially_fulfilled"
    FULFILLED = "fulfilled"


@dataclass(frozen=True)
class Line:
    product_id: int
    quantity: int

    def to_dict(self) -> Dict[str, int]:
        return {"product_id": self.product_id, "quantity": self.quantity}


@dataclass(frozen=True)
class ProductDescriptor:
    product_id: int
    name: str
    mass_g: int


@dataclass
class Product:
    product_id: int
    name: str
    mass_g: int
    quantity_in_stock: int = 0

    def __repr__(self):
        return f"<Product {self.product_id} {self.name!r} stock={self.quantity_in_stock}>"

    def copy(self) -> "Product":
        return Product(
            product_id=self.product_id,
            name=self.name,
            mass_g=self.mass_g,
            quantity_in_stock=self.quantity_in_stock,
        )


@dataclass
class Shipment:
    order_id: int
    items: List[Line]
    total_mass_g: int
    shipment_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    shipped_at: datetime = field(default_factory=datetime.now)

    def __repr__(self):
        return f"<Shipment {self.shipment_id} order={self.order_id} {self.total_mass_g}g>"


def merge_lines(lines: Iterable[Line]) -> List[Line]:
    """Sums quantities per product, keeping first-seen order."""
    totals: Dict[int, int] = {}
    for line in lines:
        totals[line.product_id] = totals.get(line.product_id, 0) + line.quantity
    return [Line(pid, qty) for pid, qty in totals.items()]


class Order:
    def __init__(
            self,
            order_id: int,
            requested_items: List[Line],
            shipped_items: Optional[List[Line]] = None,
            total_shipments: int = 0,
            created_at: Optional[datetime] = None,
    ):
        self.order_id = order_id
        self.requested_items = list(requested_items)
        self.shipped_items = list(shipped_items or [])
        self.total_shipments = total_shipments
        self.created_at = created_at or datetime.now()
        self.status = OrderStatus.PENDING
        self.messages = []   # type: List[events.Event]
        self._refresh_status()

    def __repr__(self):
        return f"<Order {self.order_id} {self.status.value}>"

    def __eq__(self, other):
        if not isinstance(other, Order):
            return False
        return other.order_id == self.order_id

    def __hash__(self):
        return hash(self.order_id)

    def requested_quantity(self, product_id: int) -> int:
        return sum(
            line.quantity for line in self.requested_items
            if line.product_id == product_id
        )

    def shipped_quantity(self, product_id: int) -> int:
        return sum(
            line.quantity for line in self.shipped_items
            if line.product_id == product_id
        )

    def remaining_items(self) -> List[Line]:
        remaining = []
        for line in self.requested_items:
            left = line.quantity - self.shipped_quantity(line.product_id)
            if left > 0:
                remaining.append(Line(line.product_id, left))
        return remaining

    @property
    def is_fulfilled(self) -> bool:
        return self.status == OrderStatus.FULFILLED

    def can_ship(self, items: Iterable[Line]) -> bool:
        for line in merge_lines(items):
            if line.quantity <= 0:
                return False
            shipped = self.shipped_quantity(line.product_id) + line.quantity
            if shipped > self.requested_quantity(line.product_id):
                return False
        return True

    def revise(self, requested_items: List[Line]):
        if self.total_shipments > 0:
            raise OrderAlreadyShipped(self.order_id, self.total_shipments)
        self.requested_items = list(requested_items)
        self._refresh_status()

    def record_shipment(self, shipment: Shipment):
        if not self.can_ship(shipment.items):
            raise InvalidQuantity(
                f"Shipment {shipment.shipment_id} exceeds the quantities"
                f" requested by order {self.order_id}"
            )

        # list is reassigned, not mutated in place, so the ORM sees the change
        self.shipped_items = merge_lines([*self.shipped_items, *shipment.items])
        self.total_shipments += 1
        previous = self.status
        self._refresh_status()

        self.messages.append(
            events.PackageShipped(
                order_id=self.order_id,
                shipment_id=shipment.shipment_id,
                items=[line.to_dict() for line in shipment.items],
                total_mass_g=shipment.total_mass_g,
            )
        )
        if self.is_fulfilled and previous != OrderStatus.FULFILLED:
            self.messages.append(
                events.OrderFulfilled(
                    order_id=self.order_id,
                    total_shipments=self.total_shipments,
                )
            )

    def _refresh_status(self):
        if self.total_shipments == 0:
            self.status = OrderStatus.PENDING
        elif all(
                self.shipped_quantity(line.product_id) >= line.quantity
                for line in self.requested_items
        ):
            self.status = OrderStatus.FULFILLED
        else:
            self.status = OrderStatus.PARTIALLY_FULFILLED
