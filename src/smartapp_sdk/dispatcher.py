"""Event dispatch: from one inbound envelope to one aggregated response.

A dispatch walks ``RECEIVED → AUTHENTICATING → CONTEXT_RESOLVED →
DISPATCHING → AGGREGATING → RESPONDED``, or stops at ``REJECTED`` when
authentication fails. Handlers are invoked in event order; the awaitables
they return run concurrently and are all joined before the single response
is emitted. A failing handler never stops its siblings: failures are
collected on the :class:`DispatchResult`, passed to the error handler, and
the envelope is still acknowledged.
"""

from __future__ import annotations

import asyncio
import enum
import inspect
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from smartapp_sdk._constants import MODE_CHANGE_HANDLER, SECURITY_ARM_STATE_HANDLER
from smartapp_sdk.context import InstalledAppContext
from smartapp_sdk.exceptions import EnvelopeError, HandlerError, HandlerExecutionError, HandlerNotFoundError
from smartapp_sdk.handlers import HandlerRegistry
from smartapp_sdk.models.events import Envelope, Event, EventType, MessageType
from smartapp_sdk.responders import Responder

_logger = logging.getLogger(__name__)

ContextFactory = Callable[[Mapping[str, Any]], InstalledAppContext]
ErrorHandler = Callable[[BaseException, InstalledAppContext | None], None]


class DispatchState(enum.StrEnum):
    RECEIVED = "RECEIVED"
    AUTHENTICATING = "AUTHENTICATING"
    CONTEXT_RESOLVED = "CONTEXT_RESOLVED"
    DISPATCHING = "DISPATCHING"
    AGGREGATING = "AGGREGATING"
    RESPONDED = "RESPONDED"
    REJECTED = "REJECTED"


@dataclass
class DispatchResult:
    """Outcome of one dispatch."""

    state: DispatchState = DispatchState.RECEIVED
    message_type: str = ""
    context: InstalledAppContext | None = None
    response: dict[str, Any] | None = None
    errors: list[HandlerError] = field(default_factory=list)

    def advance(self, state: DispatchState) -> None:
        _logger.debug("Dispatch %s -> %s", self.state, state)
        self.state = state


def log_handler_error(error: BaseException, context: InstalledAppContext | None) -> None:
    """Default error handler: log the failure with its traceback."""
    installed_app_id = context.installed_app_id if context is not None else "-"
    _logger.error(
        "Event handler failed for installed app %s: %s",
        installed_app_id,
        error,
        exc_info=(type(error), error, error.__traceback__),
    )


@dataclass
class _PendingCall:
    event_type: str
    key: str
    future: asyncio.Future[Any]


@dataclass
class _Batch:
    """Handler invocations and failures collected while walking one envelope."""

    context: InstalledAppContext
    calls: list[_PendingCall] = field(default_factory=list)
    errors: list[HandlerError] = field(default_factory=list)


class EventDispatcher:
    """Routes envelope events to registered handlers.

    Parameters
    ----------
    registry : HandlerRegistry
        Handler tables, read-only while dispatching.
    context_factory : callable
        Builds the installation context from an ``EVENT`` body.
    error_handler : callable
        Called as ``error_handler(error, context)`` for every handler failure,
        after all handlers of the envelope finished, and for failures of
        fire-and-forget handlers when they complete.
    """

    def __init__(
        self,
        registry: HandlerRegistry,
        *,
        context_factory: ContextFactory,
        error_handler: ErrorHandler = log_handler_error,
    ) -> None:
        self._registry = registry
        self._context_factory = context_factory
        self.error_handler = error_handler
        self._background: set[asyncio.Future[Any]] = set()
        self._routes: dict[EventType, Callable[[_Batch, Event], None]] = {
            EventType.INSTALLED_APP_LIFECYCLE_EVENT: self._on_lifecycle_event,
            EventType.DEVICE_EVENT: self._on_device_event,
            EventType.TIMER_EVENT: self._on_timer_event,
            EventType.DEVICE_COMMANDS_EVENT: self._on_device_commands_event,
            EventType.MODE_EVENT: self._on_mode_event,
            EventType.SECURITY_ARM_STATE_EVENT: self._on_security_arm_state_event,
        }

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def dispatch(
        self,
        body: Mapping[str, Any],
        responder: Responder,
        *,
        authorize: Callable[[], Awaitable[bool]] | None = None,
    ) -> DispatchResult:
        """Process one envelope and emit exactly one response through *responder*.

        Raises
        ------
        EnvelopeError
            If *body* is not a well-formed envelope.
        ContextStoreError
            Propagated from store access made while resolving the context.
        """
        result = DispatchResult()

        if authorize is not None:
            result.advance(DispatchState.AUTHENTICATING)
            if not await authorize():
                result.advance(DispatchState.REJECTED)
                responder.reject()
                return result

        try:
            envelope = Envelope.model_validate(dict(body))
        except ValidationError as exc:
            raise EnvelopeError(f"Malformed envelope: {exc}") from exc
        result.message_type = envelope.message_type

        if envelope.message_type == MessageType.EVENT:
            result.response = await self._dispatch_events(envelope, body, result)
        elif envelope.message_type == MessageType.CONFIRMATION:
            confirmation = envelope.confirmation_data
            _logger.info(
                "CONFIRMATION request for app %s, visit %s to enable event delivery",
                confirmation.app_id if confirmation else None,
                confirmation.confirmation_url if confirmation else None,
            )
            result.response = {}
        else:
            _logger.debug("Ignoring message of type %r", envelope.message_type)
            result.response = {}

        responder.respond(result.response)
        result.advance(DispatchState.RESPONDED)
        return result

    async def drain(self) -> None:
        """Wait for outstanding fire-and-forget handlers."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ------------------------------------------------------------------
    # EVENT processing
    # ------------------------------------------------------------------

    async def _dispatch_events(
        self,
        envelope: Envelope,
        body: Mapping[str, Any],
        result: DispatchResult,
    ) -> dict[str, Any]:
        if envelope.event_data is None:
            raise EnvelopeError("EVENT message carries no eventData")
        try:
            context = self._context_factory(body)
        except ValueError as exc:
            raise EnvelopeError(str(exc)) from exc
        result.context = context
        result.advance(DispatchState.CONTEXT_RESOLVED)

        result.advance(DispatchState.DISPATCHING)
        batch = _Batch(context=context)
        for event in envelope.event_data.events:
            kind = event.kind
            route = self._routes.get(kind) if kind is not None else None
            if route is None:
                _logger.warning("Unhandled event of type %s", event.event_type)
                continue
            route(batch, event)

        result.advance(DispatchState.AGGREGATING)
        outcomes = await asyncio.gather(*(call.future for call in batch.calls), return_exceptions=True)
        for call, outcome in zip(batch.calls, outcomes, strict=True):
            if isinstance(outcome, BaseException):
                error = HandlerExecutionError(
                    f"Handler '{call.key}' for {call.event_type} failed: {outcome!r}",
                    event_type=call.event_type,
                    key=call.key,
                )
                error.__cause__ = outcome
                batch.errors.append(error)

        result.errors.extend(batch.errors)
        for error in batch.errors:
            self._report(error, context)
        return {"statusCode": 200, "eventData": {}}

    def _report(self, error: BaseException, context: InstalledAppContext | None) -> None:
        try:
            self.error_handler(error, context)
        except Exception:
            _logger.exception("Error handler raised while reporting %r", error)

    def _invoke(
        self,
        batch: _Batch,
        event_type: str,
        key: str,
        handler: Callable[..., Any],
        *args: Any,
        collect: bool = True,
    ) -> None:
        """Call *handler*; start its awaitable eagerly and collect or detach it."""
        try:
            outcome = handler(*args)
        except Exception as exc:
            error = HandlerExecutionError(
                f"Handler '{key}' for {event_type} raised: {exc!r}",
                event_type=event_type,
                key=key,
            )
            error.__cause__ = exc
            batch.errors.append(error)
            return
        if not inspect.isawaitable(outcome):
            return
        future = asyncio.ensure_future(outcome)
        if collect:
            batch.calls.append(_PendingCall(event_type=event_type, key=key, future=future))
            return
        self._background.add(future)
        future.add_done_callback(lambda done: self._on_background_done(done, batch.context, event_type, key))

    def _on_background_done(
        self,
        future: asyncio.Future[Any],
        context: InstalledAppContext,
        event_type: str,
        key: str,
    ) -> None:
        self._background.discard(future)
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            error = HandlerExecutionError(
                f"Handler '{key}' for {event_type} failed: {exc!r}",
                event_type=event_type,
                key=key,
            )
            error.__cause__ = exc
            self._report(error, context)

    def _missing(self, batch: _Batch, category: str, key: str, event_type: str) -> None:
        error = HandlerNotFoundError(category, key)
        _logger.error("%s event dropped: %s", event_type, error)
        batch.errors.append(error)

    # ------------------------------------------------------------------
    # Routes, one per event type
    # ------------------------------------------------------------------

    def _on_lifecycle_event(self, batch: _Batch, event: Event) -> None:
        lifecycle_event = event.installed_app_lifecycle_event
        lifecycle = lifecycle_event.lifecycle if lifecycle_event is not None else ""
        if lifecycle != "DELETE":
            _logger.debug("Unhandled installed app lifecycle event '%s'", lifecycle)
            return
        handler = self._registry.uninstalled_handler
        if handler is None:
            _logger.debug("Installed app %s deleted, no uninstalled handler", batch.context.installed_app_id)
            return
        self._invoke(batch, event.event_type, "uninstalled", handler, batch.context, event, collect=False)

    def _on_device_event(self, batch: _Batch, event: Event) -> None:
        device_event = event.device_event
        if device_event is None:
            _logger.warning("DEVICE_EVENT without deviceEvent payload")
            return
        key = device_event.handler_name
        handler = self._registry.subscribed_handler(key)
        if handler is None:
            self._missing(batch, "subscribed", key, event.event_type)
            return
        self._invoke(batch, event.event_type, key, handler, batch.context, device_event)

    def _on_timer_event(self, batch: _Batch, event: Event) -> None:
        timer_event = event.timer_event
        if timer_event is None:
            _logger.warning("TIMER_EVENT without timerEvent payload")
            return
        key = timer_event.name
        handler = self._registry.scheduled_handler(key)
        if handler is None:
            self._missing(batch, "scheduled", key, event.event_type)
            return
        self._invoke(batch, event.event_type, key, handler, batch.context, timer_event)

    def _on_device_commands_event(self, batch: _Batch, event: Event) -> None:
        commands_event = event.device_commands_event
        if commands_event is None:
            _logger.warning("DEVICE_COMMANDS_EVENT without deviceCommandsEvent payload")
            return
        catch_all = self._registry.device_commands_handler
        if catch_all is not None:
            self._invoke(batch, event.event_type, "deviceCommands", catch_all, batch.context, commands_event)
            return
        for command in commands_event.commands:
            handler = self._registry.device_command_handler(command)
            if handler is not None:
                self._invoke(
                    batch,
                    event.event_type,
                    command.component_key,
                    handler,
                    batch.context,
                    commands_event.device_id,
                    command,
                    commands_event,
                )
            else:
                self._invoke(
                    batch,
                    event.event_type,
                    command.component_key,
                    self._registry.default_device_command_handler,
                    batch.context,
                    commands_event.device_id,
                    command,
                    collect=False,
                )

    def _on_mode_event(self, batch: _Batch, event: Event) -> None:
        # The platform delivers no subscription name for mode events.
        handler = self._registry.subscribed_handler(MODE_CHANGE_HANDLER)
        if handler is None:
            self._missing(batch, "subscribed", MODE_CHANGE_HANDLER, event.event_type)
            return
        self._invoke(batch, event.event_type, MODE_CHANGE_HANDLER, handler, batch.context, event.mode_event)

    def _on_security_arm_state_event(self, batch: _Batch, event: Event) -> None:
        # Subscriptions are named, but the name is not returned with the event.
        handler = self._registry.subscribed_handler(SECURITY_ARM_STATE_HANDLER)
        if handler is None:
            self._missing(batch, "subscribed", SECURITY_ARM_STATE_HANDLER, event.event_type)
            return
        self._invoke(
            batch,
            event.event_type,
            SECURITY_ARM_STATE_HANDLER,
            handler,
            batch.context,
            event.security_arm_state_event,
        )
