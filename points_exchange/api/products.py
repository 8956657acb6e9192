"""Catalog endpoints for the end-user app."""

from typing import List

from points_exchange.api.http import ApiClient, decode
from points_exchange.models import Product, parse_products


class ProductApi:
    def __init__(self, client: ApiClient):
        self.client = client

    async def list_products(self) -> List[Product]:
        path = "/api/products"
        return decode(path, await self.client.get(path), parse_products)

    async def get_product(self, product_id: str) -> Product:
        path = f"/api/products/{product_id}"
        data = await self.client.get(path, route="/api/products/{product_id}")
        return decode(path, data, Product.model_validate)
