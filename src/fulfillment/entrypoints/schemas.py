from typing import List

from pydantic import BaseModel


class ProductInfoRequest(BaseModel):
    product_id: int
    product_name: str
    mass_g: int


class LineRequest(BaseModel):
    product_id: int
    quantity: int


class OrderRequest(BaseModel):
    order_id: int
    requested: List[LineRequest]
