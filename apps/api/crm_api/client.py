from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from crm_api.platform.security.errors import Unauthenticated


logger = logging.getLogger("crm_api.client")


class SessionExpired(Unauthenticated):
    code = "SESSION_EXPIRED"
    default_message = "Session expired, log in again"


class CrmSession:
    """Authenticated HTTP session against the CRM API.

    A request answered with 401 triggers one token refresh and a single
    retry. Concurrent refreshes on the same session share one in-flight
    rotation, so the server only ever sees the current refresh token once.
    When the refresh fails every waiter gets ``SessionExpired`` and the
    session forgets its tokens.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        access_token: str | None = None,
        refresh_token: str | None = None,
    ) -> None:
        self._client = client
        self._access_token = access_token
        self._refresh_token = refresh_token
        self._refresh_task: asyncio.Task[str] | None = None

    @property
    def access_token(self) -> str | None:
        return self._access_token

    @property
    def refresh_token(self) -> str | None:
        return self._refresh_token

    @property
    def authenticated(self) -> bool:
        return self._refresh_token is not None

    async def login(self, email: str, password: str) -> dict[str, Any]:
        response = await self._client.post("/api/auth/login", json={"email": email, "password": password})
        if response.status_code != 200:
            raise Unauthenticated("Invalid credentials")
        data = response.json()
        self._access_token = data["accessToken"]
        self._refresh_token = data["refreshToken"]
        return data["user"]

    async def logout(self) -> None:
        if self._refresh_token is not None:
            await self._client.post("/api/auth/logout", json={"refreshToken": self._refresh_token})
        self.clear()

    def clear(self) -> None:
        self._access_token = None
        self._refresh_token = None

    async def request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        sent_with = self._access_token
        response = await self._send(method, url, sent_with, **kwargs)
        if response.status_code != 401 or self._refresh_token is None:
            return response
        access_token = await self.refresh(stale_access_token=sent_with)
        return await self._send(method, url, access_token, **kwargs)

    async def get(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("GET", url, **kwargs)

    async def post(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("POST", url, **kwargs)

    async def put(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("PUT", url, **kwargs)

    async def delete(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("DELETE", url, **kwargs)

    async def refresh(self, stale_access_token: str | None = None) -> str:
        # Someone already rotated since this caller's request went out.
        if (
            self._refresh_task is None
            and stale_access_token is not None
            and self._access_token is not None
            and self._access_token != stale_access_token
        ):
            return self._access_token

        if self._refresh_task is None:
            self._refresh_task = asyncio.create_task(self._rotate())
        task = self._refresh_task
        try:
            return await asyncio.shield(task)
        finally:
            if task.done() and self._refresh_task is task:
                self._refresh_task = None

    async def _rotate(self) -> str:
        refresh_token = self._refresh_token
        if refresh_token is None:
            raise SessionExpired()
        try:
            response = await self._client.post("/api/auth/refresh", json={"refreshToken": refresh_token})
        except httpx.HTTPError as exc:
            self.clear()
            logger.warning("session_refresh_failed", extra={"error": str(exc)})
            raise SessionExpired() from exc
        if response.status_code != 200:
            self.clear()
            logger.warning("session_refresh_rejected", extra={"status_code": response.status_code})
            raise SessionExpired()
        data = response.json()
        self._access_token = data["accessToken"]
        self._refresh_token = data["refreshToken"]
        return self._access_token

    async def _send(self, method: str, url: str, access_token: str | None, **kwargs: Any) -> httpx.Response:
        headers = dict(kwargs.pop("headers", None) or {})
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        return await self._client.request(method, url, headers=headers, **kwargs)
