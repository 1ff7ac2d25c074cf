"""
Remote identity provider client.

    POST {api_base_url}/api/auth/login     {username, password, rememberMe} → {success, data}
    POST {api_base_url}/api/auth/refresh   bearer token                     → {success, data}
    POST {api_base_url}/api/auth/logout    bearer token

data = {token, expiresAt (epoch ms), user: {id, username, displayName, role}}

Status mapping on login:
    401 → InvalidCredentialsError
    403 → AccountDisabledError
    429 → TooManyAttemptsError
    transport failure → ProviderUnavailableError (retryable)
    anything else → AuthError
Any refresh failure is RefreshFailedError; the coordinator treats it as session-fatal.
"""
from __future__ import annotations

import logging
from typing import Any, Optional, Protocol

import httpx
from pydantic import ValidationError

from tracker.auth.schemas import AuthGrant, User, UserRole
from tracker.config import settings
from tracker.errors import (
    AccountDisabledError,
    AuthError,
    InvalidCredentialsError,
    ProviderUnavailableError,
    RefreshFailedError,
    TooManyAttemptsError,
)

logger = logging.getLogger(__name__)

_LOGIN_STATUS_ERRORS: dict[int, type[AuthError]] = {
    401: InvalidCredentialsError,
    403: AccountDisabledError,
    429: TooManyAttemptsError,
}


class IdentityProvider(Protocol):
    async def login(self, email: str, password: str, remember_me: bool = False) -> AuthGrant: ...

    async def refresh(self, token: str) -> AuthGrant: ...

    async def logout(self, token: Optional[str]) -> None: ...


def parse_grant(body: Any) -> AuthGrant:
    """Convert the provider's {success, data} envelope into an AuthGrant."""
    if not isinstance(body, dict) or not body.get("success") or not isinstance(body.get("data"), dict):
        raise ValueError("Malformed auth response")
    data = body["data"]
    user: Optional[User] = None
    raw_user = data.get("user")
    if isinstance(raw_user, dict):
        email = raw_user.get("username") or raw_user.get("email") or ""
        user = User(
            id=raw_user["id"],
            email=email,
            display_name=raw_user.get("displayName") or email.split("@")[0] or "User",
            role=raw_user.get("role") or UserRole.employee,
        )
    return AuthGrant(
        token=data["token"],
        expires_at=float(data["expiresAt"]) / 1000.0,
        user=user,
    )


def _server_message(response: httpx.Response) -> Optional[str]:
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict) and isinstance(body.get("error"), str):
        return body["error"]
    return None


class HttpIdentityProvider:
    def __init__(
        self,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: Optional[float] = None,
    ):
        self.base_url = (base_url or settings.api_base_url).rstrip("/")
        self.transport = transport
        self.timeout = timeout if timeout is not None else settings.http_timeout

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, transport=self.transport, timeout=self.timeout)

    async def login(self, email: str, password: str, remember_me: bool = False) -> AuthGrant:
        try:
            async with self._client() as client:
                response = await client.post(
                    "/api/auth/login",
                    json={"username": email, "password": password, "rememberMe": remember_me},
                )
        except httpx.HTTPError as exc:
            logger.warning("Login transport error: %s", type(exc).__name__)
            raise ProviderUnavailableError() from exc

        if response.status_code in _LOGIN_STATUS_ERRORS:
            raise _LOGIN_STATUS_ERRORS[response.status_code]()
        if response.status_code >= 500:
            raise ProviderUnavailableError()
        if response.status_code >= 400:
            raise AuthError(_server_message(response))

        try:
            return parse_grant(response.json())
        except (ValueError, KeyError, ValidationError) as exc:
            logger.warning("Login response could not be parsed: %s", type(exc).__name__)
            raise AuthError() from exc

    async def refresh(self, token: str) -> AuthGrant:
        try:
            async with self._client() as client:
                response = await client.post(
                    "/api/auth/refresh", headers={"Authorization": f"Bearer {token}"}
                )
            response.raise_for_status()
            return parse_grant(response.json())
        except (httpx.HTTPError, ValueError, KeyError, ValidationError) as exc:
            raise RefreshFailedError() from exc

    async def logout(self, token: Optional[str]) -> None:
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        async with self._client() as client:
            response = await client.post("/api/auth/logout", headers=headers)
        response.raise_for_status()
