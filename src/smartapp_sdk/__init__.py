"""smartapp_sdk - Async Python SDK for webhook SmartApps."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("smartapp-sdk")
except PackageNotFoundError:
    __version__ = "0+local"
from smartapp_sdk.app import SmartApp
from smartapp_sdk.config import SmartAppConfig
from smartapp_sdk.context import InstalledAppContext
from smartapp_sdk.dispatcher import DispatchResult, DispatchState, EventDispatcher
from smartapp_sdk.exceptions import (
    CertificateError,
    ContextNotFoundError,
    ContextStoreError,
    DigestMismatchError,
    EnvelopeError,
    HandlerError,
    HandlerExecutionError,
    HandlerNotFoundError,
    KeyFetchError,
    MalformedSignatureError,
    SignatureError,
    SmartAppConfigError,
    SmartAppError,
    SmartThingsApiError,
    SmartThingsAuthenticationError,
    SmartThingsTransportError,
)
from smartapp_sdk.handlers import HandlerRegistry
from smartapp_sdk.models import (
    ContextRecord,
    DeviceCommand,
    DeviceCommandsEvent,
    DeviceEvent,
    Envelope,
    Event,
    EventType,
    MessageType,
    ModeEvent,
    SecurityArmStateEvent,
    TimerEvent,
)
from smartapp_sdk.responders import HttpResponder, MockResponder, Responder
from smartapp_sdk.signature import SignatureVerifier, SignedRequest
from smartapp_sdk.state import InstalledAppState
from smartapp_sdk.store import ContextStore, MemoryContextStore

__all__ = [
    "__version__",
    "CertificateError",
    "ContextNotFoundError",
    "ContextRecord",
    "ContextStore",
    "ContextStoreError",
    "DeviceCommand",
    "DeviceCommandsEvent",
    "DeviceEvent",
    "DigestMismatchError",
    "DispatchResult",
    "DispatchState",
    "Envelope",
    "EnvelopeError",
    "Event",
    "EventDispatcher",
    "EventType",
    "HandlerError",
    "HandlerExecutionError",
    "HandlerNotFoundError",
    "HandlerRegistry",
    "HttpResponder",
    "InstalledAppContext",
    "InstalledAppState",
    "KeyFetchError",
    "MalformedSignatureError",
    "MemoryContextStore",
    "MessageType",
    "MockResponder",
    "ModeEvent",
    "Responder",
    "SecurityArmStateEvent",
    "SignatureError",
    "SignatureVerifier",
    "SignedRequest",
    "SmartApp",
    "SmartAppConfig",
    "SmartAppConfigError",
    "SmartAppError",
    "SmartThingsApiError",
    "SmartThingsAuthenticationError",
    "SmartThingsTransportError",
    "TimerEvent",
]
