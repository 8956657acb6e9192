"""
Service interfaces consumed by the exchange flow controller.

  - CatalogService: product list and point balance
  - ExchangeService: verification code dispatch and exchange submission

The HTTP implementations sit on top of the endpoint wrappers in
``points_exchange.api``. Tests substitute in-memory fakes.
"""

import logging
from abc import ABC, abstractmethod
from typing import List

from points_exchange.api.http import ApiClient
from points_exchange.api.points import PointsApi
from points_exchange.api.products import ProductApi
from points_exchange.models import CodeSentAck, Product

logger = logging.getLogger(__name__)


class CatalogService(ABC):
    """Read-only view of the catalog and the signed-in user's balance."""

    @abstractmethod
    async def list_products(self) -> List[Product]:
        """Return the current product list. Raises ServiceError on failure."""
        ...

    @abstractmethod
    async def get_balance(self) -> int:
        """Return the user's point balance. Raises ServiceError on failure."""
        ...


class ExchangeService(ABC):
    """State-changing exchange operations."""

    @abstractmethod
    async def send_verification_code(self) -> CodeSentAck:
        """Dispatch a one-time code to the user's bound phone."""
        ...

    @abstractmethod
    async def submit_exchange(self, product_id: str, quantity: int, verification_code: str) -> None:
        """
        Exchange points for ``quantity`` coupons of ``product_id``.

        Raises:
            ServiceError: with the server's message as ``reason``
        """
        ...


class HttpCatalogService(CatalogService):
    def __init__(self, client: ApiClient):
        self.products = ProductApi(client)
        self.points = PointsApi(client)

    async def list_products(self) -> List[Product]:
        return await self.products.list_products()

    async def get_balance(self) -> int:
        return await self.points.get_balance()


class HttpExchangeService(ExchangeService):
    """
    Args:
        echo_code: keep the code the backend echoes back (development only);
            when False the acknowledgement never carries it
    """

    def __init__(self, client: ApiClient, *, echo_code: bool = False):
        self.points = PointsApi(client)
        self.echo_code = echo_code

    async def send_verification_code(self) -> CodeSentAck:
        code = await self.points.send_sms_code()
        return CodeSentAck(code=code if self.echo_code else None)

    async def submit_exchange(self, product_id: str, quantity: int, verification_code: str) -> None:
        await self.points.exchange(product_id, quantity, verification_code)
