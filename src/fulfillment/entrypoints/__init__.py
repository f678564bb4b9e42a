from .schemas import LineRequest, OrderRequest, ProductInfoRequest
