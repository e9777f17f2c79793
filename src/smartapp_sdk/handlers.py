"""Handler registration tables.

Three independent namespaces map keys to developer callbacks:

* subscribed-event handlers, keyed by subscription name (the part before the
  first ``_`` of a device event's ``subscriptionName``), plus the fixed
  ``modeChangeHandler`` / ``securityArmStateHandler`` names;
* scheduled-event handlers, keyed by schedule name;
* device-command handlers, keyed by ``componentId/capability/command`` or
  ``capability/command``.

Tables are filled while the app is configured and only read during dispatch.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from smartapp_sdk.models.events import DeviceCommand

if TYPE_CHECKING:
    from smartapp_sdk.context import InstalledAppContext

_logger = logging.getLogger(__name__)

# Handlers may be plain functions or coroutine functions; awaitable results are
# collected by the dispatcher.
EventHandler = Callable[..., Any]
UninstalledHandler = Callable[..., Any]
DeviceCommandHandler = Callable[..., Any]
DefaultDeviceCommandHandler = Callable[..., Any]


def log_unhandled_command(context: InstalledAppContext, device_id: str, command: DeviceCommand) -> None:
    """Default device-command handler: warn and move on."""
    _logger.warning(
        "No command handler for %s of device %s (installed app %s)",
        command.raw or command.component_key,
        device_id,
        context.installed_app_id,
    )


class HandlerRegistry:
    """Key → callback tables consulted by the dispatcher."""

    def __init__(self) -> None:
        self.subscribed: dict[str, EventHandler] = {}
        self.scheduled: dict[str, EventHandler] = {}
        self.device_commands: dict[str, DeviceCommandHandler] = {}
        self.device_commands_handler: EventHandler | None = None
        self.default_device_command_handler: DefaultDeviceCommandHandler = log_unhandled_command
        self.uninstalled_handler: UninstalledHandler | None = None

    def add_subscribed(self, name: str, callback: EventHandler) -> None:
        self.subscribed[name] = callback

    def add_scheduled(self, name: str, callback: EventHandler) -> None:
        self.scheduled[name] = callback

    def add_device_command(self, command: str, callback: DeviceCommandHandler) -> None:
        """Register *callback* for ``capability/command`` or ``component/capability/command``."""
        if command.count("/") not in (1, 2):
            raise ValueError(
                f"Device command key must be 'capability/command' or 'component/capability/command', got {command!r}"
            )
        self.device_commands[command] = callback

    def subscribed_handler(self, name: str) -> EventHandler | None:
        return self.subscribed.get(name)

    def scheduled_handler(self, name: str) -> EventHandler | None:
        return self.scheduled.get(name)

    def device_command_handler(self, command: DeviceCommand) -> DeviceCommandHandler | None:
        """Look up by component key first, then fall back to the capability key."""
        handler = self.device_commands.get(command.component_key)
        if handler is None:
            handler = self.device_commands.get(command.capability_key)
        return handler
