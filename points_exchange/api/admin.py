"""Admin console endpoints: catalog management and exchange records.

The admin client should be built with ``expiry_markers=ADMIN_EXPIRY_MARKERS``
and a session keyed on "admin_token" (see ``build_admin_client``).
"""

from typing import List, Optional

from points_exchange.api.http import ADMIN_EXPIRY_MARKERS, ApiClient, decode
from points_exchange.config import Settings
from points_exchange.exceptions import InvalidRequest
from points_exchange.models import ExchangeRecord, Product, ProductDraft, parse_products
from points_exchange.session import Session, TokenStore

ADMIN_TOKEN_KEY = "admin_token"


def build_admin_client(settings: Settings, store: Optional[TokenStore] = None, **kwargs) -> ApiClient:
    session = Session(store, token_key=ADMIN_TOKEN_KEY)
    return ApiClient(settings, session, expiry_markers=ADMIN_EXPIRY_MARKERS, **kwargs)


class AdminApi:
    def __init__(self, client: ApiClient):
        self.client = client

    async def list_all_products(self) -> List[Product]:
        """Every product, including ones taken off the shelf."""
        path = "/api/products/admin/all"
        return decode(path, await self.client.get(path), parse_products)

    async def create_product(self, draft: ProductDraft) -> Product:
        path = "/api/products/admin"
        data = await self.client.post(path, json_body=draft.to_payload())
        return decode(path, data, Product.model_validate)

    async def update_product(self, product_id: str, draft: ProductDraft) -> Product:
        path = f"/api/products/admin/{product_id}"
        data = await self.client.put(
            path,
            json_body=draft.to_payload(),
            route="/api/products/admin/{product_id}",
        )
        return decode(path, data, Product.model_validate)

    async def update_stock(self, product_id: str, stock: int) -> Product:
        if stock < 0:
            raise InvalidRequest("Stock must be 0 or greater", detail={"stock": stock})
        path = f"/api/products/admin/{product_id}/stock"
        data = await self.client.put(
            path,
            json_body={"stock": stock},
            route="/api/products/admin/{product_id}/stock",
        )
        return decode(path, data, Product.model_validate)

    async def update_status(self, product_id: str, status: int) -> Product:
        """status: 0 takes the product off the shelf, 1 puts it back."""
        if status not in (0, 1):
            raise InvalidRequest("Status must be 0 (off shelf) or 1 (on shelf)", detail={"status": status})
        path = f"/api/products/admin/{product_id}/status"
        data = await self.client.put(
            path,
            json_body={"status": status},
            route="/api/products/admin/{product_id}/status",
        )
        return decode(path, data, Product.model_validate)

    async def list_exchange_records(
        self,
        *,
        user_id: Optional[str] = None,
        product_id: Optional[str] = None,
        status: Optional[str] = None,
    ) -> List[ExchangeRecord]:
        path = "/api/points/admin/exchanges"
        data = await self.client.get(
            path,
            params={"userId": user_id, "productId": product_id, "status": status},
        )
        return decode(path, data, lambda items: [ExchangeRecord.model_validate(item) for item in items or []])
