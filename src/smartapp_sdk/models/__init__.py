"""Data models for webhook payloads and persisted contexts."""

from smartapp_sdk.models._base import SmartAppBaseModel
from smartapp_sdk.models.context import ContextRecord
from smartapp_sdk.models.events import (
    ConfirmationData,
    DeviceCommand,
    DeviceCommandsEvent,
    DeviceEvent,
    Envelope,
    Event,
    EventData,
    EventType,
    InstalledAppLifecycleEvent,
    InstalledAppRef,
    MessageType,
    ModeEvent,
    SecurityArmStateEvent,
    TimerEvent,
)

__all__ = [
    "ConfirmationData",
    "ContextRecord",
    "DeviceCommand",
    "DeviceCommandsEvent",
    "DeviceEvent",
    "Envelope",
    "Event",
    "EventData",
    "EventType",
    "InstalledAppLifecycleEvent",
    "InstalledAppRef",
    "MessageType",
    "ModeEvent",
    "SecurityArmStateEvent",
    "SmartAppBaseModel",
    "TimerEvent",
]
