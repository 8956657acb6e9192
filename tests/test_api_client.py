"""Tests for ApiClient and the endpoint wrappers, against httpx.MockTransport."""
import httpx
import pytest
from prometheus_client import REGISTRY

from points_exchange.api import AdminApi, ApiClient, AuthApi, PointsApi, ProductApi, build_admin_client
from points_exchange.exceptions import AuthenticationError, InvalidRequest, ServiceError
from points_exchange.exchange import ExchangeFlowController
from points_exchange.models import ProductDraft
from points_exchange.notifications import Notifier
from points_exchange.observability.logging import correlation_id_context
from points_exchange.services import HttpCatalogService, HttpExchangeService
from points_exchange.session import EntryRedirect, MemoryTokenStore, Session

from conftest import envelope

PRODUCT = {
    "id": 7,
    "name": "Tea Coupon",
    "points": 20,
    "description": "Any tea",
    "stock": 3,
    "image": "",
    "monthlyLimit": 2,
    "usedThisMonth": None,
    "status": 1,
}


@pytest.fixture
def session():
    return Session(MemoryTokenStore())


@pytest.fixture
def client(settings, session, transport):
    return ApiClient(settings, session, transport=transport)


@pytest.mark.asyncio
async def test_login_stores_token_and_sends_bearer(client, session, backend):
    backend.add("POST", "/api/auth/login", envelope({
        "token": "tok-1",
        "refreshToken": "ref-1",
        "expiresIn": 3600,
        "userInfo": {"userId": "u-1", "username": "alice", "nickname": "Alice"},
    }))
    backend.add("GET", "/api/points/balance", envelope(250))

    async with client:
        result = await AuthApi(client).login("alice", "secret")
        balance = await PointsApi(client).get_balance()

    assert result.user_info.nickname == "Alice"
    assert session.credential == "tok-1"
    assert session.profile.user_id == "u-1"
    assert balance == 250
    assert backend.body("POST", "/api/auth/login") == {"username": "alice", "password": "secret"}
    assert "authorization" not in backend.last("POST", "/api/auth/login").headers
    assert backend.last("GET", "/api/points/balance").headers["authorization"] == "Bearer tok-1"


@pytest.mark.asyncio
async def test_logout_clears_credential(client, session):
    session.set("tok")
    AuthApi(client).logout()
    assert session.credential is None
    await client.aclose()


@pytest.mark.asyncio
async def test_products_are_normalized(client, backend):
    backend.add("GET", "/api/products", envelope([PRODUCT]))
    backend.add("GET", "/api/products/7", envelope(PRODUCT))

    async with client:
        products = await ProductApi(client).list_products()
        single = await ProductApi(client).get_product("7")

    assert products[0].id == "7"
    assert products[0].used_this_month == 0
    assert products[0].remaining == 2
    assert single.name == "Tea Coupon"


@pytest.mark.asyncio
async def test_records_query_parameters(client, backend):
    backend.add("GET", "/api/points/records", envelope([
        {"id": 1, "date": "2024-05-01T12:30:00.123", "type": "spend", "points": -60,
         "description": "Exchange", "balance": 40},
    ]))

    async with client:
        records = await PointsApi(client).get_records("spent", "3months")

    request = backend.last("GET", "/api/points/records")
    assert request.url.params["type"] == "spent"
    assert request.url.params["timeRange"] == "3months"
    assert records[0].date == "2024-05-01 12:30:00"
    assert records[0].id == "1"


@pytest.mark.asyncio
async def test_exchange_payload_is_camel_case(client, backend):
    backend.add("POST", "/api/points/exchange", envelope(None))

    async with client:
        await PointsApi(client).exchange("p-1", 2, "123456")

    assert backend.body("POST", "/api/points/exchange") == {
        "productId": "p-1",
        "quantity": 2,
        "verificationCode": "123456",
    }


@pytest.mark.asyncio
async def test_failed_envelope_raises_service_error_with_message(client, backend):
    backend.add("POST", "/api/points/exchange", envelope(code=500, message="积分不足"))

    async with client:
        with pytest.raises(ServiceError) as exc_info:
            await PointsApi(client).exchange("p-1", 1, "123456")

    assert exc_info.value.reason == "积分不足"
    assert exc_info.value.code == 500
    assert not isinstance(exc_info.value, AuthenticationError)


@pytest.mark.asyncio
async def test_http_error_without_envelope(client, backend):
    backend.add("GET", "/api/products", "<html>Bad Gateway</html>", status=502)

    async with client:
        with pytest.raises(ServiceError) as exc_info:
            await ProductApi(client).list_products()

    assert exc_info.value.message == "HTTP error: 502"
    assert exc_info.value.status_code == 502


@pytest.mark.asyncio
async def test_non_2xx_with_envelope_uses_server_message(client, backend):
    backend.add("GET", "/api/products", envelope(code=500, message="服务器错误"), status=500)

    async with client:
        with pytest.raises(ServiceError) as exc_info:
            await ProductApi(client).list_products()

    assert exc_info.value.message == "服务器错误"


@pytest.mark.asyncio
async def test_network_and_timeout_errors_become_service_errors(settings, session):
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    def hang(request):
        raise httpx.ReadTimeout("timed out", request=request)

    async with ApiClient(settings, session, transport=httpx.MockTransport(refuse)) as client:
        with pytest.raises(ServiceError, match="Network error"):
            await PointsApi(client).get_balance()

    async with ApiClient(settings, session, transport=httpx.MockTransport(hang)) as client:
        with pytest.raises(ServiceError, match="timed out"):
            await PointsApi(client).get_balance()


@pytest.mark.asyncio
@pytest.mark.parametrize("status, body", [
    (401, envelope(code=401, message="登录已过期，请重新登录")),
    (200, envelope(code=401, message="登录已过期，请重新登录")),
])
async def test_auth_failure_clears_session(client, session, backend, status, body):
    session.set("stale")
    backend.add("GET", "/api/points/balance", body, status=status)

    async with client:
        with pytest.raises(AuthenticationError):
            await PointsApi(client).get_balance()

    assert session.credential is None
    assert session.invalidated is True


@pytest.mark.asyncio
async def test_repeated_auth_failures_notify_once_and_navigate_once(client, session, backend):
    notifier = Notifier()
    navigations = []
    location = {"at_login": False}

    def navigate():
        navigations.append("login")
        location["at_login"] = True

    EntryRedirect(session, notifier, navigate=navigate, at_entry=lambda: location["at_login"])
    session.set("stale")
    backend.add("GET", "/api/points/balance", envelope(code=401, message="token expired"), status=401)
    backend.add("GET", "/api/products", envelope(code=401, message="token expired"), status=401)

    async with client:
        catalog = HttpCatalogService(client)
        for call in (catalog.get_balance, catalog.list_products):
            with pytest.raises(AuthenticationError):
                await call()

    assert navigations == ["login"]
    assert [n.description or n.title for n in notifier.of_level("warning")] == ["token expired"]


@pytest.mark.asyncio
async def test_no_navigation_when_already_at_entry(session):
    notifier = Notifier()
    navigations = []
    EntryRedirect(session, notifier, navigate=lambda: navigations.append(1), at_entry=lambda: True)

    session.set("tok")
    session.invalidate("expired")

    assert navigations == []
    assert notifier.of_level("warning")[0].title == "expired"


@pytest.mark.asyncio
async def test_user_client_ignores_token_words_in_failures(client, session, backend):
    session.set("tok")
    backend.add("GET", "/api/products", envelope(code=500, message="token service unavailable"))

    async with client:
        with pytest.raises(ServiceError) as exc_info:
            await ProductApi(client).list_products()

    assert not isinstance(exc_info.value, AuthenticationError)
    assert session.credential == "tok"


@pytest.mark.asyncio
async def test_admin_client_treats_token_messages_as_expiry(settings, transport, backend):
    store = MemoryTokenStore({"admin_token": "adm", "token": "user"})
    backend.add("GET", "/api/products/admin/all", envelope(code=500, message="Token无效"))

    async with build_admin_client(settings, store, transport=transport) as client:
        with pytest.raises(AuthenticationError):
            await AdminApi(client).list_all_products()

    assert store.get("admin_token") is None
    assert store.get("token") == "user"


@pytest.mark.asyncio
async def test_admin_product_management(settings, transport, backend):
    store = MemoryTokenStore({"admin_token": "adm"})
    updated = dict(PRODUCT, stock=50)
    backend.add("GET", "/api/products/admin/all", envelope([PRODUCT, dict(PRODUCT, id=8, status=0)]))
    backend.add("POST", "/api/products/admin", envelope(PRODUCT))
    backend.add("PUT", "/api/products/admin/7", envelope(dict(PRODUCT, name="Green Tea")))
    backend.add("PUT", "/api/products/admin/7/stock", envelope(updated))
    backend.add("PUT", "/api/products/admin/7/status", envelope(dict(PRODUCT, status=0)))

    async with build_admin_client(settings, store, transport=transport) as client:
        admin = AdminApi(client)
        products = await admin.list_all_products()
        await admin.create_product(ProductDraft(name="Tea Coupon", points=20, stock=3, monthly_limit=2))
        renamed = await admin.update_product("7", ProductDraft(name="Green Tea"))
        stocked = await admin.update_stock("7", 50)
        shelved = await admin.update_status("7", 0)

        with pytest.raises(ValueError):
            await admin.update_status("7", 5)

    assert [p.status for p in products] == [1, 0]
    assert backend.body("POST", "/api/products/admin") == {
        "name": "Tea Coupon", "points": 20, "stock": 3, "monthlyLimit": 2,
    }
    assert backend.body("PUT", "/api/products/admin/7") == {"name": "Green Tea"}
    assert backend.body("PUT", "/api/products/admin/7/stock") == {"stock": 50}
    assert backend.body("PUT", "/api/products/admin/7/status") == {"status": 0}
    assert renamed.name == "Green Tea"
    assert stocked.stock == 50
    assert shelved.status == 0
    assert backend.last("GET", "/api/products/admin/all").headers["authorization"] == "Bearer adm"


@pytest.mark.asyncio
async def test_admin_exchange_records_filters(settings, transport, backend):
    backend.add("GET", "/api/points/admin/exchanges", envelope([{
        "id": "e-1", "userId": "u-1", "username": "alice", "phone": "13800000000",
        "productId": "7", "productName": "Tea Coupon", "quantity": 1, "points": 20,
        "status": "SUCCESS", "couponCode": "CP-1", "createdAt": "2024-05-01 10:00:00",
    }]))

    async with build_admin_client(settings, MemoryTokenStore(), transport=transport) as client:
        records = await AdminApi(client).list_exchange_records(product_id="7", status="SUCCESS")

    params = backend.last("GET", "/api/points/admin/exchanges").url.params
    assert params["productId"] == "7"
    assert params["status"] == "SUCCESS"
    assert "userId" not in params
    assert records[0].coupon_code == "CP-1"


@pytest.mark.asyncio
async def test_exchange_service_echo_only_in_development(client, backend):
    backend.add("POST", "/api/points/send-sms-code", envelope("654321"))

    async with client:
        dev_ack = await HttpExchangeService(client, echo_code=True).send_verification_code()
        prod_ack = await HttpExchangeService(client, echo_code=False).send_verification_code()

    assert dev_ack.code == "654321"
    assert prod_ack.code is None


@pytest.mark.asyncio
async def test_correlation_id_forwarded(client, backend):
    backend.add("GET", "/api/points/balance", envelope(1))

    async with client:
        with correlation_id_context("req-abc"):
            await PointsApi(client).get_balance()

    assert backend.last("GET", "/api/points/balance").headers["x-request-id"] == "req-abc"


@pytest.mark.asyncio
async def test_malformed_payload_becomes_service_error(client, backend):
    backend.add("GET", "/api/products", envelope([{"id": 1, "name": "x", "points": None, "stock": 1}]))
    backend.add("GET", "/api/points/records", envelope({"not": "a list"}))

    async with client:
        with pytest.raises(ServiceError) as exc_info:
            await ProductApi(client).list_products()
        with pytest.raises(ServiceError):
            await PointsApi(client).get_records()

    assert exc_info.value.message == "Unexpected response payload"
    assert exc_info.value.detail == {"endpoint": "/api/products"}


@pytest.mark.asyncio
async def test_malformed_catalog_is_reported_not_raised(client, backend):
    backend.add("GET", "/api/products", envelope([{"id": 1, "name": "x", "points": None, "stock": 1}]))
    backend.add("GET", "/api/points/balance", envelope(80))
    notifier = Notifier()

    async with client:
        controller = ExchangeFlowController(
            HttpCatalogService(client),
            HttpExchangeService(client),
            notifier=notifier,
        )
        await controller.refresh()

    assert controller.products == []
    assert controller.balance == 80
    assert notifier.of_level("error")[-1].title == "Failed to load products"


@pytest.mark.asyncio
async def test_metrics_use_route_templates(settings, transport, backend):
    backend.add("PUT", "/api/products/admin/p-42/stock", envelope(dict(PRODUCT, stock=5)))
    labels = {"method": "PUT", "endpoint": "/api/products/admin/{product_id}/stock", "outcome": "ok"}
    before = REGISTRY.get_sample_value("points_api_requests_total", labels) or 0

    async with build_admin_client(settings, MemoryTokenStore({"admin_token": "adm"}), transport=transport) as client:
        await AdminApi(client).update_stock("p-42", 5)

    assert REGISTRY.get_sample_value("points_api_requests_total", labels) == before + 1
    assert REGISTRY.get_sample_value(
        "points_api_requests_total",
        {"method": "PUT", "endpoint": "/api/products/admin/p-42/stock", "outcome": "ok"},
    ) is None


@pytest.mark.asyncio
async def test_invalid_admin_input_is_rejected_before_sending(settings, transport, backend):
    async with build_admin_client(settings, MemoryTokenStore(), transport=transport) as client:
        with pytest.raises(InvalidRequest):
            await AdminApi(client).update_stock("p-1", -5)

    assert backend.requests == []
