"""Authentication endpoints."""

import logging

from points_exchange.api.http import ApiClient, decode
from points_exchange.exceptions import ServiceError
from points_exchange.models import LoginResult

logger = logging.getLogger(__name__)


class AuthApi:
    def __init__(self, client: ApiClient):
        self.client = client

    async def login(self, username: str, password: str) -> LoginResult:
        """Exchange a username/password for a bearer token and store it in the session."""
        path = "/api/auth/login"
        data = await self.client.post(
            path,
            json_body={"username": username, "password": password},
        )
        if not isinstance(data, dict) or not data.get("token"):
            raise ServiceError("Login response did not contain a token")

        result = decode(path, data, LoginResult.model_validate)
        self.client.session.apply_login(result)
        logger.info(f"[AuthApi] Logged in as {username}")
        return result

    def logout(self) -> None:
        self.client.session.clear()
