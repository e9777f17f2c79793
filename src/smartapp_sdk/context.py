"""Installation context: one installed instance of the app during a request."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import Any

import aiohttp

from smartapp_sdk.api import SmartThingsApi
from smartapp_sdk.config import SmartAppConfig
from smartapp_sdk.exceptions import SmartAppConfigError
from smartapp_sdk.models.context import ContextRecord
from smartapp_sdk.models.events import MessageType
from smartapp_sdk.state import InstalledAppState
from smartapp_sdk.store import ContextStore

_logger = logging.getLogger(__name__)


def _installed_app_section(body: Mapping[str, Any], section: str) -> Mapping[str, Any]:
    data = body.get(section)
    installed_app = data.get("installedApp") if isinstance(data, Mapping) else None
    if not isinstance(installed_app, Mapping) or not installed_app.get("installedAppId"):
        raise ValueError(f"{section}.installedApp.installedAppId is missing")
    return installed_app


def installed_app_id_of(body: Mapping[str, Any]) -> str:
    """Return the installed app id named by an inbound body.

    Raises
    ------
    ValueError
        If the body does not identify an installed app.
    """
    message_type = body.get("messageType")
    if message_type == MessageType.EVENT:
        return str(_installed_app_section(body, "eventData")["installedAppId"])
    if message_type == MessageType.EXECUTE:
        return str(_installed_app_section(body, "executeData")["installedAppId"])
    installed_app_id = body.get("installedAppId") or body.get("installed_app_id")
    if not installed_app_id:
        raise ValueError("installedAppId is missing")
    return str(installed_app_id)


class InstalledAppContext:
    """Credentials, location and state of one installed app.

    The API client is created lazily by :meth:`get_api` (fetching credentials
    from the context store) unless the context was built from a record that
    already carries tokens. ``mutex`` serialises state writes for this
    installation; client creation and token refresh take a separate lock, so
    both may be used inside ``state.edit()``.
    """

    def __init__(
        self,
        installed_app_id: str,
        *,
        config: SmartAppConfig,
        mutex: asyncio.Lock | None = None,
        context_store: ContextStore | None = None,
        http_session: aiohttp.ClientSession | None = None,
        location_id: str | None = None,
        auth_token: str | None = None,
        refresh_token: str | None = None,
        installed_app_config: Mapping[str, Any] | None = None,
        state: dict[str, Any] | None = None,
        event: Mapping[str, Any] | None = None,
    ) -> None:
        self._installed_app_id = installed_app_id
        self._config = config
        self._store = context_store
        self._http_session = http_session
        self.mutex = mutex if mutex is not None else asyncio.Lock()
        self._token_lock = asyncio.Lock()
        self.location_id = location_id
        self.auth_token = auth_token
        self.refresh_token = refresh_token
        self.config: dict[str, Any] = dict(installed_app_config or {})
        self.event = event
        self.state = InstalledAppState(installed_app_id, context_store, self.mutex, initial=state)
        self._api: SmartThingsApi | None = None

    @classmethod
    def from_body(
        cls,
        body: Mapping[str, Any],
        *,
        config: SmartAppConfig,
        mutex: asyncio.Lock | None = None,
        context_store: ContextStore | None = None,
        http_session: aiohttp.ClientSession | None = None,
    ) -> InstalledAppContext:
        """Build a context from an inbound body, classified by ``messageType``.

        ``EVENT`` and ``EXECUTE`` bodies only identify the installation; any
        other body is taken as a direct record with tokens, and its API client
        is built right away.
        """
        message_type = body.get("messageType")
        if message_type in (MessageType.EVENT, MessageType.EXECUTE):
            section = "eventData" if message_type == MessageType.EVENT else "executeData"
            installed_app = _installed_app_section(body, section)
            return cls(
                installed_app["installedAppId"],
                config=config,
                mutex=mutex,
                context_store=context_store,
                http_session=http_session,
                location_id=installed_app.get("locationId"),
                installed_app_config=installed_app.get("config"),
                event=body,
            )
        return cls.from_record(
            ContextRecord.model_validate(dict(body)),
            config=config,
            mutex=mutex,
            context_store=context_store,
            http_session=http_session,
        )

    @classmethod
    def from_record(
        cls,
        record: ContextRecord,
        *,
        config: SmartAppConfig,
        mutex: asyncio.Lock | None = None,
        context_store: ContextStore | None = None,
        http_session: aiohttp.ClientSession | None = None,
    ) -> InstalledAppContext:
        """Build a context from a persisted record; the API client is built immediately."""
        context = cls(
            record.installed_app_id,
            config=config,
            mutex=mutex,
            context_store=context_store,
            http_session=http_session,
            location_id=record.location_id,
            auth_token=record.auth_token,
            refresh_token=record.refresh_token,
            installed_app_config=record.config,
            state=record.state if "state" in record.model_fields_set else None,
        )
        context._api = context._build_api()
        return context

    @property
    def installed_app_id(self) -> str:
        return self._installed_app_id

    @property
    def api(self) -> SmartThingsApi:
        """The materialized API client; use :meth:`get_api` when it may not exist yet."""
        if self._api is None:
            raise SmartAppConfigError("API client not created yet; use 'await context.get_api()'")
        return self._api

    def _build_api(self) -> SmartThingsApi:
        return SmartThingsApi(
            auth_token=self.auth_token,
            refresh_token=self.refresh_token,
            client_id=self._config.client_id,
            client_secret=self._config.client_secret,
            api_url=self._config.api_url,
            refresh_url=self._config.refresh_url,
            location_id=self.location_id,
            installed_app_id=self._installed_app_id,
            context_store=self._store,
            mutex=self._token_lock,
            http_session=self._http_session,
        )

    def set_location_id(self, location_id: str) -> None:
        """Set the location id here and on an already-created API client."""
        self.location_id = location_id
        if self._api is not None:
            self._api.location_id = location_id

    async def get_api(self) -> SmartThingsApi:
        """Return the API client, creating it from stored credentials on first use."""
        if self._api is not None:
            return self._api
        async with self._token_lock:
            if self._api is None:
                if self._store is None:
                    raise SmartAppConfigError("A context store is required to create the API client")
                record = await self._store.get(self._installed_app_id)
                self.auth_token = record.auth_token
                self.refresh_token = record.refresh_token
                self.location_id = self.location_id or record.location_id
                if not self.config:
                    self.config = dict(record.config)
                self._api = self._build_api()
                _logger.debug("Created API client for installed app %s", self._installed_app_id)
        return self._api

    def to_record(self, *, state: dict[str, Any] | None = None) -> ContextRecord:
        """Snapshot this context for ``ContextStore.put``.

        Tokens are taken from the API client when it exists, since a refresh
        may have replaced them. *state* defaults to the cached state mapping,
        or an empty one when state was never loaded.
        """
        auth_token, refresh_token = self.auth_token, self.refresh_token
        if self._api is not None:
            auth_token, refresh_token = self._api.auth_token, self._api.refresh_token
        if state is None:
            state = self.state.snapshot() or {}
        return ContextRecord(
            installed_app_id=self._installed_app_id,
            location_id=self.location_id,
            auth_token=auth_token,
            refresh_token=refresh_token,
            config=self.config,
            state=dict(state or {}),
        )

    def __repr__(self) -> str:
        return f"InstalledAppContext(installed_app_id={self._installed_app_id!r}, location_id={self.location_id!r})"
