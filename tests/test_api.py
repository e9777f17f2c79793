from __future__ import annotations

import asyncio

import pytest
from conftest import FakeTransport

from smartapp_sdk.api import SmartThingsApi, redeem_code
from smartapp_sdk.exceptions import (
    SmartAppConfigError,
    SmartThingsApiError,
    SmartThingsAuthenticationError,
)
from smartapp_sdk.models.context import ContextRecord
from smartapp_sdk.store import MemoryContextStore

APP_ID = "installed-1"


def _api(transport: FakeTransport, store: MemoryContextStore | None = None) -> SmartThingsApi:
    return SmartThingsApi(
        auth_token="old-token",
        refresh_token="refresh-1",
        client_id="client",
        client_secret="secret",
        api_url="https://api.test/",
        refresh_url="https://auth.test/oauth/token",
        location_id="loc-1",
        installed_app_id=APP_ID,
        context_store=store,
        mutex=asyncio.Lock(),
        transport=transport,
    )


@pytest.mark.asyncio
async def test_request_sends_bearer_token() -> None:
    transport = FakeTransport(replies=[{"items": []}])

    result = await _api(transport).request("/devices", params={"locationId": "loc-1"})

    assert result == {"items": []}
    sent = transport.requests[0]
    assert sent["method"] == "GET"
    assert sent["url"] == "https://api.test/devices"
    assert sent["headers"]["authorization"] == "Bearer old-token"
    assert sent["params"] == {"locationId": "loc-1"}


@pytest.mark.asyncio
async def test_unauthorized_request_refreshes_and_retries_once() -> None:
    store = MemoryContextStore({APP_ID: ContextRecord(installed_app_id=APP_ID, auth_token="old-token")})
    transport = FakeTransport(
        replies=[
            SmartThingsApiError("HTTP 401", status_code=401, url="https://api.test/devices"),
            {"access_token": "new-token", "refresh_token": "refresh-2"},
            {"items": [1]},
        ]
    )
    api = _api(transport, store)

    result = await api.request("devices")

    assert result == {"items": [1]}
    refresh = transport.requests[1]
    assert refresh["url"] == "https://auth.test/oauth/token"
    assert refresh["form"]["grant_type"] == "refresh_token"
    assert refresh["form"]["refresh_token"] == "refresh-1"
    assert refresh["headers"]["authorization"].startswith("Basic ")
    assert transport.requests[2]["headers"]["authorization"] == "Bearer new-token"

    stored = await store.get(APP_ID)
    assert (stored.auth_token, stored.refresh_token) == ("new-token", "refresh-2")


@pytest.mark.asyncio
async def test_other_errors_are_not_retried() -> None:
    transport = FakeTransport(replies=[SmartThingsApiError("HTTP 500", status_code=500)])

    with pytest.raises(SmartThingsApiError) as excinfo:
        await _api(transport).request("devices")

    assert excinfo.value.status_code == 500
    assert len(transport.requests) == 1


@pytest.mark.asyncio
async def test_refresh_is_skipped_when_token_already_replaced() -> None:
    transport = FakeTransport()
    api = _api(transport)
    api.auth_token = "fresh-token"

    await api.refresh_tokens(stale_token="old-token")

    assert transport.requests == []


@pytest.mark.asyncio
async def test_rejected_refresh_raises_authentication_error() -> None:
    transport = FakeTransport(replies=[SmartThingsApiError("HTTP 400", status_code=400, body="invalid_grant")])

    with pytest.raises(SmartThingsAuthenticationError) as excinfo:
        await _api(transport).refresh_tokens()

    assert excinfo.value.status_code == 400
    assert "invalid_grant" in str(excinfo.value)


@pytest.mark.asyncio
async def test_get_installed_app_defaults_to_own_installation() -> None:
    transport = FakeTransport(replies=[{"installedAppId": APP_ID, "locationId": "loc-9"}])

    result = await _api(transport).get_installed_app()

    assert result["locationId"] == "loc-9"
    assert transport.requests[0]["url"] == f"https://api.test/installedapps/{APP_ID}"


@pytest.mark.asyncio
async def test_redeem_code_posts_authorization_code_grant() -> None:
    transport = FakeTransport(
        replies=[{"access_token": "a", "refresh_token": "r", "installed_app_id": APP_ID}],
    )

    reply = await redeem_code(
        "the-code",
        api_url="https://api.test",
        client_id="client",
        client_secret="secret",
        redirect_uri="https://example.test/oauth",
        transport=transport,
    )

    assert reply["installed_app_id"] == APP_ID
    sent = transport.requests[0]
    assert sent["url"] == "https://api.test/oauth/token"
    assert sent["form"] == {
        "client_id": "client",
        "code": "the-code",
        "grant_type": "authorization_code",
        "redirect_uri": "https://example.test/oauth",
    }


@pytest.mark.asyncio
async def test_redeem_code_requires_client_credentials() -> None:
    with pytest.raises(SmartAppConfigError):
        await redeem_code(
            "the-code",
            api_url="https://api.test",
            client_id=None,
            client_secret="secret",
            redirect_uri=None,
            transport=FakeTransport(),
        )


@pytest.mark.asyncio
async def test_redeem_code_reply_without_installed_app_is_rejected() -> None:
    transport = FakeTransport(replies=[{"access_token": "a"}])

    with pytest.raises(SmartThingsAuthenticationError):
        await redeem_code(
            "the-code",
            api_url="https://api.test",
            client_id="client",
            client_secret="secret",
            redirect_uri=None,
            transport=transport,
        )
