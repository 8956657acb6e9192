import asyncio
import json
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest
import pytest_asyncio

from points_exchange.config import Settings
from points_exchange.exceptions import ServiceError
from points_exchange.exchange import ExchangeFlowController
from points_exchange.models import CodeSentAck, Product
from points_exchange.notifications import Notifier
from points_exchange.services import CatalogService, ExchangeService


def make_product(**overrides: Any) -> Product:
    data = {
        "id": "p-1",
        "name": "Coffee Coupon",
        "description": "One free coffee",
        "image": "https://img.example.com/coffee.png",
        "points": 30,
        "stock": 10,
        "monthlyLimit": 5,
        "usedThisMonth": 0,
    }
    data.update(overrides)
    return Product.model_validate(data)


def envelope(data: Any = None, *, code: int = 200, message: str = "操作成功") -> Dict[str, Any]:
    return {"code": code, "message": message, "data": data, "timestamp": 1700000000000}


class FakeCatalog(CatalogService):
    """In-memory catalog; the fake exchange service mutates it like the server would."""

    def __init__(self, products: List[Product], balance: int):
        self.products = {p.id: p for p in products}
        self.balance = balance
        self.product_calls = 0
        self.balance_calls = 0
        self.products_error: Optional[Exception] = None
        self.balance_error: Optional[Exception] = None
        self.gate: Optional[asyncio.Event] = None

    async def list_products(self) -> List[Product]:
        self.product_calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.products_error:
            raise self.products_error
        return [p.model_copy() for p in self.products.values()]

    async def get_balance(self) -> int:
        self.balance_calls += 1
        if self.balance_error:
            raise self.balance_error
        return self.balance


class FakeExchange(ExchangeService):
    def __init__(self, catalog: FakeCatalog):
        self.catalog = catalog
        self.send_calls = 0
        self.submissions: List[tuple] = []
        self.send_error: Optional[ServiceError] = None
        self.submit_error: Optional[ServiceError] = None
        self.gate: Optional[asyncio.Event] = None
        self.echo_code: Optional[str] = "123456"

    async def send_verification_code(self) -> CodeSentAck:
        self.send_calls += 1
        if self.send_error:
            raise self.send_error
        return CodeSentAck(code=self.echo_code)

    async def submit_exchange(self, product_id: str, quantity: int, verification_code: str) -> None:
        self.submissions.append((product_id, quantity, verification_code))
        if self.gate is not None:
            await self.gate.wait()
        if self.submit_error:
            raise self.submit_error

        product = self.catalog.products[product_id]
        self.catalog.balance -= product.points * quantity
        self.catalog.products[product_id] = product.model_copy(update={
            "stock": product.stock - quantity,
            "used_this_month": product.used_this_month + quantity,
        })


class ManualClock:
    """Countdown clock advanced by hand, one simulated second at a time."""

    def __init__(self):
        self._waiters: List[asyncio.Future] = []

    async def sleep(self, seconds: float) -> None:
        future = asyncio.get_running_loop().create_future()
        self._waiters.append(future)
        await future

    async def advance(self, seconds: int) -> None:
        for _ in range(seconds):
            await asyncio.sleep(0)
            waiters, self._waiters = self._waiters, []
            for waiter in waiters:
                if not waiter.done():
                    waiter.set_result(None)
            await asyncio.sleep(0)


@pytest.fixture
def product() -> Product:
    return make_product()


@pytest.fixture
def catalog(product: Product) -> FakeCatalog:
    return FakeCatalog([product], balance=100)


@pytest.fixture
def exchange(catalog: FakeCatalog) -> FakeExchange:
    return FakeExchange(catalog)


@pytest.fixture
def notifier() -> Notifier:
    return Notifier()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest_asyncio.fixture(name="controller")
async def controller_fixture(catalog, exchange, notifier, clock):
    controller = ExchangeFlowController(
        catalog,
        exchange,
        notifier=notifier,
        countdown_seconds=60,
        sleep=clock.sleep,
    )
    await controller.refresh()
    yield controller
    controller.close()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        base_url="http://points.test",
        request_timeout=5.0,
        environment="development",
        token_file=tmp_path / "tokens.json",
    )


class Backend:
    """Routes for httpx.MockTransport keyed by (method, path)."""

    def __init__(self):
        self.routes: Dict[tuple, Callable[[httpx.Request], httpx.Response]] = {}
        self.requests: List[httpx.Request] = []

    def add(self, method: str, path: str, payload: Any = None, *, status: int = 200, handler=None) -> None:
        if handler is None:
            def handler(request: httpx.Request, payload=payload, status=status) -> httpx.Response:
                if isinstance(payload, (dict, list)):
                    return httpx.Response(status, json=payload)
                return httpx.Response(status, text=payload or "")
        self.routes[(method, path)] = handler

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get((request.method, request.url.path))
        if handler is None:
            return httpx.Response(404, json=envelope(code=404, message="Not Found"))
        return handler(request)

    def last(self, method: str, path: str) -> httpx.Request:
        for request in reversed(self.requests):
            if request.method == method and request.url.path == path:
                return request
        raise AssertionError(f"no {method} {path} request recorded")

    def body(self, method: str, path: str) -> Any:
        return json.loads(self.last(method, path).content)


@pytest.fixture
def backend() -> Backend:
    return Backend()


@pytest.fixture
def transport(backend: Backend) -> httpx.MockTransport:
    return httpx.MockTransport(backend)
