"""Per-installation platform API client and OAuth helpers.

Only the plumbing needed by the context layer lives here: authenticated
requests, token refresh, the installed-app lookup used after OAuth, and
authorization code redemption. Resource-specific wrappers are built on top
of :meth:`SmartThingsApi.request` by applications.
"""

from __future__ import annotations

import asyncio
import base64
import logging
from collections.abc import Mapping
from typing import Any

import aiohttp

from smartapp_sdk._transport import HttpTransport, Transport
from smartapp_sdk.exceptions import (
    SmartAppConfigError,
    SmartThingsApiError,
    SmartThingsAuthenticationError,
)
from smartapp_sdk.store import ContextStore

_logger = logging.getLogger(__name__)


def _basic_auth(client_id: str | None, client_secret: str | None) -> str:
    if not client_id or not client_secret:
        raise SmartAppConfigError("client_id and client_secret are required for token requests")
    raw = f"{client_id}:{client_secret}".encode()
    return f"Basic {base64.b64encode(raw).decode('ascii')}"


class SmartThingsApi:
    """Authenticated API client bound to one installed app.

    ``mutex`` is the context's token lock; token refresh runs under it so
    that concurrent 401s refresh only once.
    """

    def __init__(
        self,
        *,
        auth_token: str | None,
        refresh_token: str | None,
        client_id: str | None,
        client_secret: str | None,
        api_url: str,
        refresh_url: str,
        location_id: str | None,
        installed_app_id: str,
        context_store: ContextStore | None,
        mutex: asyncio.Lock,
        transport: Transport | None = None,
        http_session: aiohttp.ClientSession | None = None,
    ) -> None:
        self.auth_token = auth_token
        self.refresh_token = refresh_token
        self.client_id = client_id
        self.client_secret = client_secret
        self.api_url = api_url.rstrip("/")
        self.refresh_url = refresh_url
        self.location_id = location_id
        self.installed_app_id = installed_app_id
        self._store = context_store
        self._mutex = mutex
        self._transport: Transport = transport or HttpTransport(http_session)

    def _url(self, path: str) -> str:
        return f"{self.api_url}/{path.lstrip('/')}"

    async def _send(
        self,
        path: str,
        method: str,
        data: Any,
        params: Mapping[str, str] | None,
    ) -> Any:
        return await self._transport.request_json(
            method,
            self._url(path),
            headers={"authorization": f"Bearer {self.auth_token}"},
            json_body=data,
            params=params,
        )

    async def request(
        self,
        path: str,
        method: str = "GET",
        data: Any = None,
        params: Mapping[str, str] | None = None,
    ) -> Any:
        """Send an authenticated request, refreshing tokens once on HTTP 401."""
        token_used = self.auth_token
        try:
            return await self._send(path, method, data, params)
        except SmartThingsApiError as exc:
            if exc.status_code != 401 or not self.refresh_token:
                raise
            _logger.debug("Access token rejected for installed app %s, refreshing", self.installed_app_id)
        await self.refresh_tokens(stale_token=token_used)
        return await self._send(path, method, data, params)

    async def refresh_tokens(self, *, stale_token: str | None = None) -> None:
        """Exchange the refresh token for new tokens and persist them.

        When *stale_token* is given and another task already replaced it while
        this one waited for the mutex, the refresh is skipped.
        """
        async with self._mutex:
            if stale_token is not None and self.auth_token != stale_token:
                return
            try:
                reply = await self._transport.request_json(
                    "POST",
                    self.refresh_url,
                    headers={"authorization": _basic_auth(self.client_id, self.client_secret)},
                    form={
                        "grant_type": "refresh_token",
                        "client_id": self.client_id or "",
                        "refresh_token": self.refresh_token or "",
                    },
                )
            except SmartThingsApiError as exc:
                raise SmartThingsAuthenticationError(
                    f"Token refresh failed for installed app {self.installed_app_id}",
                    status_code=exc.status_code,
                    url=exc.url,
                    body=exc.body,
                ) from exc
            if not isinstance(reply, dict) or "access_token" not in reply:
                raise SmartThingsAuthenticationError(
                    "Token refresh reply carries no access_token",
                    url=self.refresh_url,
                )
            self.auth_token = reply["access_token"]
            self.refresh_token = reply.get("refresh_token", self.refresh_token)
            if self._store is not None:
                await self._store.update(
                    self.installed_app_id,
                    {"auth_token": self.auth_token, "refresh_token": self.refresh_token},
                )
            _logger.debug("Refreshed tokens for installed app %s", self.installed_app_id)

    async def get_installed_app(self, installed_app_id: str | None = None) -> dict[str, Any]:
        """Fetch the installed app resource (defaults to this client's installation)."""
        result = await self.request(f"installedapps/{installed_app_id or self.installed_app_id}")
        return result if isinstance(result, dict) else {}


async def redeem_code(
    code: str,
    *,
    api_url: str,
    client_id: str | None,
    client_secret: str | None,
    redirect_uri: str | None,
    transport: Transport | None = None,
) -> dict[str, Any]:
    """Redeem an OAuth authorization code.

    Returns
    -------
    dict
        Token reply with ``access_token``, ``refresh_token`` and
        ``installed_app_id``.
    """
    transport = transport or HttpTransport()
    url = f"{api_url.rstrip('/')}/oauth/token"
    try:
        reply = await transport.request_json(
            "POST",
            url,
            headers={"authorization": _basic_auth(client_id, client_secret)},
            form={
                "client_id": client_id or "",
                "code": code,
                "grant_type": "authorization_code",
                "redirect_uri": redirect_uri or "",
            },
        )
    except SmartThingsApiError as exc:
        raise SmartThingsAuthenticationError(
            "Authorization code was rejected",
            status_code=exc.status_code,
            url=exc.url,
            body=exc.body,
        ) from exc
    if not isinstance(reply, dict) or "installed_app_id" not in reply:
        raise SmartThingsAuthenticationError("Token reply carries no installed_app_id", url=url)
    return reply
