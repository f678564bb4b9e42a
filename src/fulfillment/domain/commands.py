from dataclasses import dataclass
from typing import List

from fulfillment.domain.model import Line, ProductDescriptor


class Command:
    pass


@dataclass
class InitCatalog(Command):
    products: List[ProductDescriptor]


@dataclass
class ProcessOrder(Command):
    order_id: int
    requested: List[Line]


@dataclass
class ProcessRestock(Command):
    items: List[Line]


@dataclass
class ResetCatalog(Command):
    pass
