"""High-level SmartApp facade.

:class:`SmartApp` wires configuration, the signature verifier, the handler
registry and the event dispatcher together and exposes the webhook entry
points.

Example::

    app = (
        SmartApp()
        .client_id("...")
        .client_secret("...")
        .context_store(MemoryContextStore())
    )

    @app.subscribed_event_handler("switchHandler")
    async def on_switch(context, event):
        await context.state.update("lastSwitch", event.value)

    web_app = web.Application()
    web_app.add_routes(app.routes("/"))
"""

from __future__ import annotations

import asyncio
import json
import logging
import weakref
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, TypeVar

import aiohttp
from aiohttp import web

from smartapp_sdk._constants import FORBIDDEN_BODY
from smartapp_sdk._redact import redact_for_log
from smartapp_sdk._transport import HttpTransport, Transport
from smartapp_sdk.api import redeem_code
from smartapp_sdk.config import SmartAppConfig
from smartapp_sdk.context import InstalledAppContext, installed_app_id_of
from smartapp_sdk.dispatcher import DispatchResult, ErrorHandler, EventDispatcher, log_handler_error
from smartapp_sdk.exceptions import EnvelopeError, SmartAppConfigError, SmartAppError
from smartapp_sdk.handlers import HandlerRegistry
from smartapp_sdk.models.context import ContextRecord
from smartapp_sdk.responders import HttpResponder, MockResponder
from smartapp_sdk.signature import SignatureVerifier, SignedRequest
from smartapp_sdk.store import ContextStore

_logger = logging.getLogger(__name__)
_event_logger = logging.getLogger("smartapp_sdk.events")

_F = TypeVar("_F", bound=Callable[..., Any])


def _error_response(status: int, message: str) -> web.Response:
    return web.json_response({"statusCode": status, "message": message}, status=status)


class SmartApp:
    """Webhook SmartApp.

    Parameters
    ----------
    config : SmartAppConfig or None
        Initial configuration; fluent setters derive updated copies.
    context_store : ContextStore or None
        Store for per-installation credentials and state.
    http_session : aiohttp.ClientSession or None
        Shared client session for outbound platform calls.
    error_handler : callable or None
        Receives ``(error, context)`` for every failed handler.
    transport : Transport or None
        Transport used for key fetches and authorization code redemption.
    """

    def __init__(
        self,
        config: SmartAppConfig | None = None,
        *,
        context_store: ContextStore | None = None,
        http_session: aiohttp.ClientSession | None = None,
        error_handler: ErrorHandler | None = None,
        transport: Transport | None = None,
    ) -> None:
        self.config = config or SmartAppConfig()
        self.store = context_store
        self._http_session = http_session
        self._transport: Transport = transport or HttpTransport(http_session)
        self._verifier = SignatureVerifier(self.config.key_url, transport=self._transport)
        if self.config.public_key:
            self._verifier.set_public_key(self.config.public_key)
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()
        self.registry = HandlerRegistry()
        self.dispatcher = EventDispatcher(
            self.registry,
            context_factory=self._context_from_body,
            error_handler=error_handler or log_handler_error,
        )

    @property
    def verifier(self) -> SignatureVerifier:
        return self._verifier

    # ------------------------------------------------------------------
    # Fluent configuration
    # ------------------------------------------------------------------

    def _configure(self, **changes: Any) -> SmartApp:
        self.config = self.config.replace(**changes)
        return self

    def api_url(self, url: str) -> SmartApp:
        return self._configure(api_url=url)

    def refresh_url(self, url: str) -> SmartApp:
        return self._configure(refresh_url=url)

    def key_url(self, url: str) -> SmartApp:
        self._verifier.key_url = url
        return self._configure(key_url=url)

    def client_id(self, client_id: str) -> SmartApp:
        return self._configure(client_id=client_id)

    def client_secret(self, client_secret: str) -> SmartApp:
        return self._configure(client_secret=client_secret)

    def redirect_uri(self, redirect_uri: str) -> SmartApp:
        return self._configure(redirect_uri=redirect_uri)

    def app_id(self, app_id: str) -> SmartApp:
        return self._configure(app_id=app_id)

    def permissions(self, permissions: str | list[str] | tuple[str, ...]) -> SmartApp:
        """Set requested scopes; a string is split on whitespace."""
        return self._configure(permissions=permissions)

    def context_store(self, store: ContextStore) -> SmartApp:
        self.store = store
        return self

    def public_key(self, cert_key: str) -> SmartApp:
        """Verify signatures with a static key instead of fetching by ``keyId``."""
        self._verifier.set_public_key(cert_key)
        return self._configure(public_key=cert_key)

    def enable_event_logging(self, indent: int | None = None, enabled: bool = True) -> SmartApp:
        return self._configure(enable_event_logging=enabled, json_indent=indent)

    def error_handler(self, handler: ErrorHandler) -> SmartApp:
        self.dispatcher.error_handler = handler
        return self

    # ------------------------------------------------------------------
    # Handler registration
    #
    # Each method registers ``callback`` and returns the app, or, without a
    # callback, returns a decorator.
    # ------------------------------------------------------------------

    def _register(self, add: Callable[[_F], None], callback: _F | None) -> Any:
        if callback is not None:
            add(callback)
            return self

        def decorator(func: _F) -> _F:
            add(func)
            return func

        return decorator

    def uninstalled(self, callback: Callable[..., Any] | None = None) -> Any:
        """Handler called as ``callback(context, event)`` when the app is deleted."""
        return self._register(lambda func: setattr(self.registry, "uninstalled_handler", func), callback)

    def subscribed_event_handler(self, name: str, callback: Callable[..., Any] | None = None) -> Any:
        """Handler called as ``callback(context, event)`` for subscription *name*."""
        return self._register(lambda func: self.registry.add_subscribed(name, func), callback)

    def scheduled_event_handler(self, name: str, callback: Callable[..., Any] | None = None) -> Any:
        """Handler called as ``callback(context, timer_event)`` for schedule *name*."""
        return self._register(lambda func: self.registry.add_scheduled(name, func), callback)

    def device_command_handler(self, callback: Callable[..., Any] | None = None) -> Any:
        """Catch-all handler for every device command event.

        Called as ``callback(context, device_commands_event)``; replaces
        per-command lookup.
        """
        return self._register(lambda func: setattr(self.registry, "device_commands_handler", func), callback)

    def default_device_command_handler(self, callback: Callable[..., Any] | None = None) -> Any:
        """Handler for commands without a registered handler.

        Called as ``callback(context, device_id, command)``.
        """
        return self._register(
            lambda func: setattr(self.registry, "default_device_command_handler", func),
            callback,
        )

    def device_command(self, command: str, callback: Callable[..., Any] | None = None) -> Any:
        """Handler for ``capability/command`` or ``component/capability/command``.

        Called as ``callback(context, device_id, command, device_commands_event)``.
        """
        return self._register(lambda func: self.registry.add_device_command(command, func), callback)

    # ------------------------------------------------------------------
    # Contexts
    # ------------------------------------------------------------------

    def _lock_for(self, installed_app_id: str) -> asyncio.Lock:
        lock = self._locks.get(installed_app_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[installed_app_id] = lock
        return lock

    def _context_from_body(self, body: Mapping[str, Any]) -> InstalledAppContext:
        return InstalledAppContext.from_body(
            body,
            config=self.config,
            mutex=self._lock_for(installed_app_id_of(body)),
            context_store=self.store,
            http_session=self._http_session,
        )

    async def with_context(self, context: str | Mapping[str, Any] | ContextRecord) -> InstalledAppContext:
        """Build a context outside a webhook request.

        A string is an installed app id looked up in the context store; a
        mapping or :class:`ContextRecord` is used directly.

        Raises
        ------
        SmartAppConfigError
            If an id is given and no context store is configured.
        ContextNotFoundError
            If the store has no record for the id.
        """
        if isinstance(context, str):
            if self.store is None:
                raise SmartAppConfigError("A context store is required to look up installed apps")
            record = await self.store.get(context)
        elif isinstance(context, ContextRecord):
            record = context
        else:
            record = ContextRecord.model_validate(dict(context))
        return InstalledAppContext.from_record(
            record,
            config=self.config,
            mutex=self._lock_for(record.installed_app_id),
            context_store=self.store,
            http_session=self._http_session,
        )

    async def handle_oauth_callback(self, code: str) -> InstalledAppContext:
        """Redeem an OAuth authorization code and persist the new installation."""
        reply = await redeem_code(
            code,
            api_url=self.config.api_url,
            client_id=self.config.client_id,
            client_secret=self.config.client_secret,
            redirect_uri=self.config.redirect_uri,
            transport=self._transport,
        )
        context = await self.with_context(
            ContextRecord(
                installed_app_id=reply["installed_app_id"],
                auth_token=reply.get("access_token"),
                refresh_token=reply.get("refresh_token"),
            )
        )
        installed_app = await context.api.get_installed_app()
        location_id = installed_app.get("locationId")
        if location_id:
            context.set_location_id(location_id)
        if self.store is not None:
            await self.store.put(context.to_record())
        _logger.info("OAuth installation complete for installed app %s", context.installed_app_id)
        return context

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def _log_event(self, label: str, payload: Any) -> None:
        if not self.config.enable_event_logging:
            return
        _event_logger.info(
            "%s %s",
            label,
            json.dumps(redact_for_log(payload), indent=self.config.json_indent),
        )

    async def handle_mock_callback(self, body: Mapping[str, Any]) -> dict[str, Any]:
        """Dispatch *body* in-process without signature verification."""
        self._log_event("REQUEST", body)
        responder = MockResponder()
        await self.dispatcher.dispatch(body, responder)
        self._log_event("RESPONSE", responder.response)
        return responder.response or {}

    async def handle_event_callback(self, request: web.Request) -> web.Response:
        """aiohttp handler that verifies the request signature before dispatching."""
        signed = await SignedRequest.from_aiohttp(request)
        return await self._handle_http(signed, authorize=lambda: self._verifier.is_authorized(signed))

    async def handle_http_callback_unverified(self, request: web.Request) -> web.Response:
        """aiohttp handler that dispatches without signature verification."""
        return await self._handle_http(await SignedRequest.from_aiohttp(request), authorize=None)

    def routes(self, path: str = "/") -> web.RouteTableDef:
        """Route table mounting the verified webhook entry point at *path*."""
        table = web.RouteTableDef()
        table.post(path)(self.handle_event_callback)
        return table

    async def _handle_http(
        self,
        signed: SignedRequest,
        *,
        authorize: Callable[[], Awaitable[bool]] | None,
    ) -> web.Response:
        try:
            body = json.loads(signed.body or b"")
        except (json.JSONDecodeError, UnicodeDecodeError):
            body = None
        if not isinstance(body, dict):
            if authorize is not None and not await authorize():
                return web.Response(status=401, text=FORBIDDEN_BODY)
            _logger.warning("Rejected webhook request with a non-JSON body")
            return _error_response(400, "Request body must be a JSON object")

        self._log_event("REQUEST", body)
        responder = HttpResponder(json_indent=self.config.json_indent)
        dispatch = self.dispatcher.dispatch(body, responder, authorize=authorize)
        timeout = self.config.dispatch_timeout
        try:
            if timeout > 0:
                result: DispatchResult = await asyncio.wait_for(dispatch, timeout)
            else:
                result = await dispatch
        except TimeoutError:
            _logger.error("Dispatch did not complete within %.1f seconds", timeout)
            return _error_response(500, "Event processing timed out")
        except EnvelopeError as exc:
            _logger.warning("Rejected malformed envelope: %s", exc)
            return _error_response(400, str(exc))
        except SmartAppError as exc:
            _logger.exception("Event processing failed")
            return _error_response(500, str(exc))

        self._log_event("RESPONSE", result.response)
        if responder.response is None:
            return _error_response(500, "No response produced")
        return responder.response
