"""HTTP transport shared by every endpoint wrapper.

ApiClient owns one httpx.AsyncClient, attaches the session's bearer token to
each call, unwraps the backend's ``{code, message, data, timestamp}`` envelope
and converts every failure into a ServiceError. Authentication failures clear
the session before AuthenticationError propagates.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Callable, Dict, Optional, Sequence, TypeVar

import httpx
from pydantic import ValidationError

from points_exchange.config import Settings
from points_exchange.exceptions import AuthenticationError, ServiceError
from points_exchange.models import ApiEnvelope
from points_exchange.observability.logging import get_correlation_id
from points_exchange.observability.metrics import (
    api_request_duration_seconds,
    api_requests_total,
)
from points_exchange.session import DEFAULT_EXPIRED_MESSAGE, Session

logger = logging.getLogger(__name__)

NETWORK_ERROR_MESSAGE = "Network error, please try again later"
TIMEOUT_MESSAGE = "Request timed out, please try again later"
UNEXPECTED_PAYLOAD_MESSAGE = "Unexpected response payload"

T = TypeVar("T")

# The admin console also treats failures mentioning the token or login expiry
# as an expired session.
ADMIN_EXPIRY_MARKERS = ("Token", "token", "登录", "过期")


class ApiClient:
    """Async client for the points backend.

    Args:
        settings: base URL and timeout
        session: credential source; cleared on auth failures
        expiry_markers: substrings of a failed envelope message that also mean
            the session has expired
        transport: optional httpx transport (tests use httpx.MockTransport)
    """

    def __init__(
        self,
        settings: Settings,
        session: Session,
        *,
        expiry_markers: Sequence[str] = (),
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings
        self.session = session
        self.expiry_markers = tuple(expiry_markers)
        self._client = httpx.AsyncClient(
            base_url=settings.base_url,
            timeout=settings.request_timeout,
            transport=transport,
            headers={
                "Content-Type": "application/json;charset=UTF-8",
                "Accept": "application/json;charset=UTF-8",
            },
        )

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def _headers(self) -> Dict[str, str]:
        headers: Dict[str, str] = {}
        token = self.session.credential
        if token:
            headers["Authorization"] = f"Bearer {token}"
        correlation_id = get_correlation_id()
        if correlation_id:
            headers["X-Request-ID"] = correlation_id
        return headers

    async def get(self, path: str, *, params: Optional[Dict[str, Any]] = None, route: Optional[str] = None) -> Any:
        return await self.request("GET", path, params=params, route=route)

    async def post(self, path: str, *, json_body: Any = None, route: Optional[str] = None) -> Any:
        return await self.request("POST", path, json_body=json_body, route=route)

    async def put(self, path: str, *, json_body: Any = None, route: Optional[str] = None) -> Any:
        return await self.request("PUT", path, json_body=json_body, route=route)

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json_body: Any = None,
        route: Optional[str] = None,
    ) -> Any:
        """Perform one call and return the envelope's ``data``.

        ``route`` is the path template used as the metrics label; paths that
        embed an id must pass one so each id does not become its own series.
        """
        endpoint = route or path
        if params:
            params = {k: v for k, v in params.items() if v is not None}

        started = time.monotonic()
        outcome = "error"
        try:
            try:
                response = await self._client.request(
                    method,
                    path,
                    params=params or None,
                    json=json_body,
                    headers=self._headers(),
                )
            except httpx.TimeoutException as e:
                logger.error(f"[ApiClient] {method} {path} timed out: {e}")
                raise ServiceError(TIMEOUT_MESSAGE) from e
            except httpx.HTTPError as e:
                logger.error(f"[ApiClient] {method} {path} failed: {type(e).__name__}: {e}")
                raise ServiceError(NETWORK_ERROR_MESSAGE) from e

            data = self._unwrap(method, path, response)
            outcome = "ok"
            return data
        except AuthenticationError:
            outcome = "unauthorized"
            raise
        finally:
            api_requests_total.labels(method=method, endpoint=endpoint, outcome=outcome).inc()
            api_request_duration_seconds.labels(method=method, endpoint=endpoint).observe(
                time.monotonic() - started
            )

    def _unwrap(self, method: str, path: str, response: httpx.Response) -> Any:
        status = response.status_code
        try:
            envelope = ApiEnvelope.model_validate(response.json())
        except (json.JSONDecodeError, ValueError, ValidationError):
            envelope = None

        message = envelope.message if envelope and envelope.message else ""
        logger.debug(
            f"[ApiClient] {method} {path} -> HTTP {status}"
            + (f" code={envelope.code}" if envelope else " (no envelope)")
        )

        if status == 401 or (envelope is not None and envelope.code == 401):
            self._expire(message)

        if envelope is None:
            raise ServiceError(f"HTTP error: {status}", status_code=status)

        if response.is_success and envelope.ok:
            return envelope.data

        if message and any(marker in message for marker in self.expiry_markers):
            self._expire(message)

        error_message = message or f"HTTP error: {status}"
        logger.warning(f"[ApiClient] {method} {path} failed: HTTP {status} code={envelope.code} {error_message}")
        raise ServiceError(error_message, status_code=status, code=envelope.code)

    def _expire(self, message: str) -> None:
        reason = message or DEFAULT_EXPIRED_MESSAGE
        self.session.invalidate(reason)
        raise AuthenticationError(reason, status_code=401, code=401)


def decode(path: str, data: Any, parse: Callable[[Any], T]) -> T:
    """Run ``parse`` over an envelope's data; a payload that does not fit the
    model becomes a ServiceError like any other backend failure."""
    try:
        return parse(data)
    except (TypeError, ValueError) as e:
        # pydantic.ValidationError is a ValueError
        logger.error(f"[ApiClient] {path} returned an unexpected payload: {e}")
        raise ServiceError(UNEXPECTED_PAYLOAD_MESSAGE, detail={"endpoint": path}) from e
