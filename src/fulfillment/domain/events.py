from dataclasses import dataclass
from typing import Dict, List


class Event:
    pass


@dataclass
class Restocked(Event):
    items: List[Dict[str, int]]


@dataclass
class PackageShipped(Event):
    order_id: int
    shipment_id: str
    items: List[Dict[str, int]]
    total_mass_g: int


@dataclass
class OrderFulfilled(Event):
    order_id: int
    total_shipments: int
