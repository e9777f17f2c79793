from __future__ import annotations

import asyncio
from typing import Any

import pytest

from smartapp_sdk.config import SmartAppConfig
from smartapp_sdk.context import InstalledAppContext, installed_app_id_of
from smartapp_sdk.exceptions import ContextNotFoundError, SmartAppConfigError
from smartapp_sdk.models.context import ContextRecord
from smartapp_sdk.store import MemoryContextStore

APP_ID = "installed-1"
CONFIG = SmartAppConfig(client_id="client", client_secret="secret")


class _SlowStore(MemoryContextStore):
    def __init__(self, record: ContextRecord) -> None:
        super().__init__({record.installed_app_id: record})
        self.gets = 0

    async def get(self, installed_app_id: str) -> ContextRecord:
        self.gets += 1
        await asyncio.sleep(0.01)
        return await super().get(installed_app_id)


def _event_body(**installed_app: Any) -> dict[str, Any]:
    return {
        "messageType": "EVENT",
        "eventData": {
            "installedApp": {"installedAppId": APP_ID, "locationId": "loc-1", **installed_app},
            "events": [],
        },
    }


def test_event_body_identifies_installation_without_api_client() -> None:
    context = InstalledAppContext.from_body(
        _event_body(config={"switches": [{"valueType": "DEVICE"}]}),
        config=CONFIG,
    )

    assert context.installed_app_id == APP_ID
    assert context.location_id == "loc-1"
    assert context.config == {"switches": [{"valueType": "DEVICE"}]}
    assert context.auth_token is None
    with pytest.raises(SmartAppConfigError):
        _ = context.api


def test_execute_body_is_read_from_execute_data() -> None:
    body = {"messageType": "EXECUTE", "executeData": {"installedApp": {"installedAppId": APP_ID}}}

    context = InstalledAppContext.from_body(body, config=CONFIG)

    assert context.installed_app_id == APP_ID
    assert installed_app_id_of(body) == APP_ID


def test_record_body_builds_api_client_immediately() -> None:
    body = {"installedAppId": APP_ID, "locationId": "loc-1", "authToken": "a", "refreshToken": "r"}

    context = InstalledAppContext.from_body(body, config=CONFIG)

    assert context.api.auth_token == "a"
    assert context.api.refresh_token == "r"
    assert context.api.location_id == "loc-1"
    assert not context.state.loaded


@pytest.mark.parametrize(
    "body",
    [
        {"messageType": "EVENT", "eventData": {"events": []}},
        {"messageType": "EXECUTE"},
        {"authToken": "a"},
    ],
)
def test_bodies_without_installed_app_id_are_rejected(body: dict[str, Any]) -> None:
    with pytest.raises(ValueError):
        installed_app_id_of(body)


@pytest.mark.asyncio
async def test_get_api_is_created_once_under_concurrency() -> None:
    store = _SlowStore(ContextRecord(installed_app_id=APP_ID, auth_token="a", refresh_token="r", location_id="loc-2"))
    context = InstalledAppContext.from_body(_event_body(locationId=None), config=CONFIG, context_store=store)

    clients = await asyncio.gather(*(context.get_api() for _ in range(5)))

    assert all(client is clients[0] for client in clients)
    assert store.gets == 1
    assert clients[0].auth_token == "a"
    assert context.location_id == "loc-2"


@pytest.mark.asyncio
async def test_get_api_keeps_location_from_event() -> None:
    store = MemoryContextStore({APP_ID: ContextRecord(installed_app_id=APP_ID, auth_token="a", location_id="stale")})
    context = InstalledAppContext.from_body(_event_body(), config=CONFIG, context_store=store)

    api = await context.get_api()

    assert api.location_id == "loc-1"


@pytest.mark.asyncio
async def test_get_api_requires_store_and_record() -> None:
    without_store = InstalledAppContext.from_body(_event_body(), config=CONFIG)
    with pytest.raises(SmartAppConfigError):
        await without_store.get_api()

    unknown = InstalledAppContext.from_body(_event_body(), config=CONFIG, context_store=MemoryContextStore())
    with pytest.raises(ContextNotFoundError):
        await unknown.get_api()
    assert not unknown._token_lock.locked()


def test_set_location_id_propagates_to_api_client() -> None:
    context = InstalledAppContext.from_record(ContextRecord(installed_app_id=APP_ID, auth_token="a"), config=CONFIG)

    context.set_location_id("loc-9")

    assert context.location_id == "loc-9"
    assert context.api.location_id == "loc-9"


def test_to_record_uses_refreshed_tokens_and_empty_state_when_unloaded() -> None:
    context = InstalledAppContext.from_record(
        ContextRecord(installed_app_id=APP_ID, auth_token="a", refresh_token="r", config={"k": ["v"]}),
        config=CONFIG,
    )
    context.api.auth_token = "a2"
    context.api.refresh_token = "r2"

    record = context.to_record()

    assert record.auth_token == "a2"
    assert record.refresh_token == "r2"
    assert record.config == {"k": ["v"]}
    assert record.state == {}


def test_record_state_is_used_only_when_given() -> None:
    with_state = InstalledAppContext.from_record(
        ContextRecord(installed_app_id=APP_ID, state={"x": 1}),
        config=CONFIG,
    )
    without_state = InstalledAppContext.from_record(ContextRecord(installed_app_id=APP_ID), config=CONFIG)

    assert with_state.state.loaded
    assert not without_state.state.loaded
