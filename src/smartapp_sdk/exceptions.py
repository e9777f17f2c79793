"""Custom exception hierarchy for smartapp_sdk."""

from __future__ import annotations


class SmartAppError(Exception):
    """Base exception for all smartapp_sdk errors."""


class SmartAppConfigError(SmartAppError):
    """Invalid or missing configuration for the requested operation."""


class EnvelopeError(SmartAppError):
    """Inbound body is not a well-formed webhook envelope."""


class SignatureError(SmartAppError):
    """Inbound request signature could not be verified.

    Raised internally by :class:`~smartapp_sdk.signature.SignatureVerifier`.
    ``is_authorized`` converts every subclass into a ``False`` result, so
    callers of the verifier never see these.
    """


class MalformedSignatureError(SignatureError):
    """Signature header missing, unparsable, or referencing absent headers."""


class KeyFetchError(SignatureError):
    """The key server could not be reached or returned a non-200 status."""

    def __init__(self, message: str, *, key_id: str = "", status_code: int | None = None) -> None:
        self.key_id = key_id
        self.status_code = status_code
        super().__init__(message)


class CertificateError(SignatureError):
    """The fetched certificate (or configured static key) could not be parsed."""


class DigestMismatchError(SignatureError):
    """Request body does not match the signed ``Digest`` header."""


class HandlerError(SmartAppError):
    """Base for failures attributable to a single dispatched event."""


class HandlerNotFoundError(HandlerError):
    """No handler registered for the key derived from an event.

    Parameters
    ----------
    category : str
        Handler namespace (``"subscribed"`` or ``"scheduled"``).
    key : str
        The derived handler key (subscription prefix, schedule name, or one of
        the fixed mode/security handler names).
    """

    def __init__(self, category: str, key: str) -> None:
        self.category = category
        self.key = key
        super().__init__(f"No {category} event handler registered for '{key}'")


class HandlerExecutionError(HandlerError):
    """A handler raised, or its awaitable completed with an exception."""

    def __init__(self, message: str, *, event_type: str = "", key: str = "") -> None:
        self.event_type = event_type
        self.key = key
        super().__init__(message)


class ContextStoreError(SmartAppError):
    """Context store operation failed."""


class ContextNotFoundError(ContextStoreError):
    """No persisted context exists for the installed app."""

    def __init__(self, installed_app_id: str) -> None:
        self.installed_app_id = installed_app_id
        super().__init__(f"No context stored for installed app '{installed_app_id}'")


class SmartThingsTransportError(SmartAppError):
    """HTTP-level failure talking to the platform (network, invalid JSON)."""

    def __init__(self, message: str, *, url: str = "") -> None:
        self.url = url
        super().__init__(message)


class SmartThingsApiError(SmartAppError):
    """The platform API answered with a non-2xx status."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        url: str = "",
        body: str = "",
    ) -> None:
        self.status_code = status_code
        self.url = url
        self.body = body
        super().__init__(message)

    def __str__(self) -> str:
        base = f"{self.args[0]}, statusCode={self.status_code}, url={self.url}"
        if self.body:
            return f"{base}, body={self.body}"
        return base


class SmartThingsAuthenticationError(SmartThingsApiError):
    """Token refresh or authorization-code redemption was rejected."""
