"""Outbound HTTP transport shared by the key fetcher, API client and OAuth helpers."""

from __future__ import annotations

import contextlib
import json
import logging
from collections.abc import AsyncIterator, Mapping
from typing import Any, Protocol

import aiohttp

from smartapp_sdk._constants import USER_AGENT
from smartapp_sdk.exceptions import SmartThingsApiError, SmartThingsTransportError

_logger = logging.getLogger(__name__)


class Transport(Protocol):
    """Structural transport interface.

    Having a protocol here makes it easy to pass test doubles while keeping
    the production implementation (`HttpTransport`) concrete.
    """

    async def get_text(self, url: str) -> str:
        ...

    async def request_json(
        self,
        method: str,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        json_body: Any = None,
        form: Mapping[str, str] | None = None,
        params: Mapping[str, str] | None = None,
    ) -> Any:
        ...


class HttpTransport:
    """aiohttp-backed transport.

    Uses the given ``aiohttp.ClientSession`` when one is supplied; otherwise a
    short-lived session is opened per request.
    """

    def __init__(self, http_session: aiohttp.ClientSession | None = None, *, timeout: float = 20.0) -> None:
        self._http = http_session
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    @contextlib.asynccontextmanager
    async def _session(self) -> AsyncIterator[aiohttp.ClientSession]:
        if self._http is not None:
            yield self._http
            return
        async with aiohttp.ClientSession(timeout=self._timeout) as owned:
            yield owned

    async def get_text(self, url: str) -> str:
        """GET *url* and return the body text; non-200 raises :class:`SmartThingsApiError`."""
        _logger.debug("GET %s", url)
        try:
            async with self._session() as http, http.get(url, headers={"user-agent": USER_AGENT}) as resp:
                text = await resp.text()
                if resp.status != 200:
                    raise SmartThingsApiError(
                        f"HTTP {resp.status}",
                        status_code=resp.status,
                        url=url,
                        body=text[:200],
                    )
                return text
        except SmartThingsApiError:
            raise
        except aiohttp.ClientError as exc:
            raise SmartThingsTransportError(f"Request to {url} failed: {exc}", url=url) from exc

    async def request_json(
        self,
        method: str,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        json_body: Any = None,
        form: Mapping[str, str] | None = None,
        params: Mapping[str, str] | None = None,
    ) -> Any:
        """Send a request and decode the JSON reply (``None`` for an empty body)."""
        request_headers: dict[str, str] = {
            "accept": "application/json",
            "user-agent": USER_AGENT,
        }
        if headers:
            request_headers.update(headers)

        kwargs: dict[str, Any] = {"headers": request_headers}
        if json_body is not None:
            kwargs["json"] = json_body
        if form is not None:
            kwargs["data"] = dict(form)
        if params is not None:
            kwargs["params"] = dict(params)

        _logger.debug("%s %s", method, url)

        try:
            async with self._session() as http, http.request(method, url, **kwargs) as resp:
                text = await resp.text()
                status = resp.status
        except aiohttp.ClientError as exc:
            raise SmartThingsTransportError(f"Request to {url} failed: {exc}", url=url) from exc

        if not 200 <= status < 300:
            raise SmartThingsApiError(
                f"HTTP {status} from {method} {url}",
                status_code=status,
                url=url,
                body=text[:200],
            )

        if not text.strip():
            return None
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise SmartThingsTransportError(f"Invalid JSON from {url}: {text[:200]}", url=url) from exc
