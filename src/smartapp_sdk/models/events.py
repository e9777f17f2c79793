"""Inbound envelope and event payload models.

An ``EVENT`` envelope looks like::

    {
        "messageType": "EVENT",
        "eventData": {
            "installedApp": {"installedAppId": "...", "locationId": "..."},
            "events": [{"eventType": "DEVICE_EVENT", "deviceEvent": {...}}],
        },
    }

Each event carries exactly one type-specific payload, selected by
``eventType``. Unknown event types still parse; :attr:`Event.kind` is then
``None`` and the dispatcher logs them as unhandled.
"""

from __future__ import annotations

import enum
from typing import Any

from pydantic import Field

from smartapp_sdk.models._base import SmartAppBaseModel


class MessageType(enum.StrEnum):
    EVENT = "EVENT"
    EXECUTE = "EXECUTE"
    CONFIRMATION = "CONFIRMATION"


class EventType(enum.StrEnum):
    INSTALLED_APP_LIFECYCLE_EVENT = "INSTALLED_APP_LIFECYCLE_EVENT"
    DEVICE_EVENT = "DEVICE_EVENT"
    TIMER_EVENT = "TIMER_EVENT"
    DEVICE_COMMANDS_EVENT = "DEVICE_COMMANDS_EVENT"
    MODE_EVENT = "MODE_EVENT"
    SECURITY_ARM_STATE_EVENT = "SECURITY_ARM_STATE_EVENT"


class InstalledAppLifecycleEvent(SmartAppBaseModel):
    """Lifecycle change of the installed app itself (e.g. ``DELETE``)."""

    lifecycle: str = ""
    event_id: str | None = None
    location_id: str | None = None
    installed_app_id: str | None = None
    app_id: str | None = None


class DeviceEvent(SmartAppBaseModel):
    """An attribute change on a device that matched a subscription.

    ``subscription_name`` is the name given when the subscription was
    created; the part before the first ``_`` selects the handler.
    """

    subscription_name: str = ""
    event_id: str | None = None
    location_id: str | None = None
    device_id: str | None = None
    component_id: str | None = None
    capability: str | None = None
    attribute: str | None = None
    value: Any = None
    value_type: str | None = None
    state_change: bool | None = None
    data: dict[str, Any] | None = None

    @property
    def handler_name(self) -> str:
        return self.subscription_name.split("_", 1)[0]


class TimerEvent(SmartAppBaseModel):
    """A scheduled (cron or once) trigger; ``name`` is the schedule name."""

    name: str = ""
    event_id: str | None = None
    type: str | None = None
    time: str | None = None
    expression: str | None = None


class DeviceCommand(SmartAppBaseModel):
    component_id: str = "main"
    capability: str = ""
    command: str = ""
    arguments: list[Any] = Field(default_factory=list)

    @property
    def component_key(self) -> str:
        return f"{self.component_id}/{self.capability}/{self.command}"

    @property
    def capability_key(self) -> str:
        return f"{self.capability}/{self.command}"


class DeviceCommandsEvent(SmartAppBaseModel):
    """Commands sent to a device owned by this app."""

    device_id: str = ""
    event_id: str | None = None
    profile_id: str | None = None
    external_id: str | None = None
    commands: list[DeviceCommand] = Field(default_factory=list)


class ModeEvent(SmartAppBaseModel):
    event_id: str | None = None
    location_id: str | None = None
    mode_id: str | None = None


class SecurityArmStateEvent(SmartAppBaseModel):
    event_id: str | None = None
    location_id: str | None = None
    arm_state: str | None = None
    optional_arguments: dict[str, Any] | None = None


class Event(SmartAppBaseModel):
    """One entry of ``eventData.events``."""

    event_type: str
    event_time: str | None = None
    installed_app_lifecycle_event: InstalledAppLifecycleEvent | None = None
    device_event: DeviceEvent | None = None
    timer_event: TimerEvent | None = None
    device_commands_event: DeviceCommandsEvent | None = None
    mode_event: ModeEvent | None = None
    security_arm_state_event: SecurityArmStateEvent | None = None

    @property
    def kind(self) -> EventType | None:
        """Known event type, or ``None`` for types this SDK does not route."""
        try:
            return EventType(self.event_type)
        except ValueError:
            return None


class InstalledAppRef(SmartAppBaseModel):
    installed_app_id: str
    location_id: str | None = None
    config: dict[str, Any] = Field(default_factory=dict)


class EventData(SmartAppBaseModel):
    installed_app: InstalledAppRef
    events: list[Event] = Field(default_factory=list)


class ConfirmationData(SmartAppBaseModel):
    app_id: str | None = None
    confirmation_url: str | None = None


class Envelope(SmartAppBaseModel):
    """Top-level inbound webhook message."""

    message_type: str = ""
    event_data: EventData | None = None
    confirmation_data: ConfirmationData | None = None
