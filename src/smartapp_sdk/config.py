"""SmartApp configuration for smartapp_sdk."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from smartapp_sdk._constants import DEFAULT_API_URL, DEFAULT_KEY_URL, DEFAULT_REFRESH_URL


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def split_permissions(value: str | list[str] | tuple[str, ...] | None) -> tuple[str, ...]:
    """Normalize permissions given as a space-separated string or a sequence."""
    if value is None:
        return ()
    if isinstance(value, str):
        return tuple(value.split())
    return tuple(value)


@dataclasses.dataclass(frozen=True)
class SmartAppConfig:
    """SmartApp configuration.

    Parameters
    ----------
    app_id : str or None
        Developer-defined app identifier.
    client_id : str or None
        OAuth client id issued when the app was registered.
    client_secret : str or None
        OAuth client secret. Never commit this value.
    redirect_uri : str or None
        OAuth redirect URI used when redeeming authorization codes.
    permissions : tuple of str
        Requested permission scopes (e.g. ``("r:devices:*",)``).
    api_url : str
        Platform REST API base URL.
    key_url : str
        Key server base URL. The signature ``keyId`` is appended verbatim.
    refresh_url : str
        OAuth token endpoint used for refresh-token grants.
    public_key : str or None
        Static PEM public key or certificate used instead of fetching keys
        from ``key_url``. A value starting with ``@`` is read from that path.
    enable_event_logging : bool
        Log each inbound envelope and outbound response.
    json_indent : int or None
        Indent used when rendering logged envelopes.
    dispatch_timeout : float
        Seconds an HTTP entry point waits for a dispatch to finish before
        answering with HTTP 500. ``0`` disables the timeout.
    """

    app_id: str | None = None
    client_id: str | None = None
    client_secret: str | None = None
    redirect_uri: str | None = None
    permissions: tuple[str, ...] = ()
    api_url: str = DEFAULT_API_URL
    key_url: str = DEFAULT_KEY_URL
    refresh_url: str = DEFAULT_REFRESH_URL
    public_key: str | None = None
    enable_event_logging: bool = False
    json_indent: int | None = None
    dispatch_timeout: float = 30.0

    def replace(self, **changes: Any) -> SmartAppConfig:
        """Return a copy with *changes* applied."""
        if "permissions" in changes:
            changes["permissions"] = split_permissions(changes["permissions"])
        return dataclasses.replace(self, **changes)

    @classmethod
    def from_env(cls, **overrides: Any) -> SmartAppConfig:
        """Create configuration from environment variables.

        Reads ``SMARTAPP_*`` variables. Explicit keyword arguments override
        environment values.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        SmartAppConfig
            Populated configuration.
        """
        env = os.environ

        _ENV_CONFIG_MAP = {
            "SMARTAPP_APP_ID": "app_id",
            "SMARTAPP_CLIENT_ID": "client_id",
            "SMARTAPP_CLIENT_SECRET": "client_secret",
            "SMARTAPP_REDIRECT_URI": "redirect_uri",
            "SMARTAPP_API_URL": "api_url",
            "SMARTAPP_KEY_URL": "key_url",
            "SMARTAPP_REFRESH_URL": "refresh_url",
            "SMARTAPP_PUBLIC_KEY": "public_key",
        }
        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_CONFIG_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        permissions_env = env.get("SMARTAPP_PERMISSIONS")
        if permissions_env is not None:
            config_kwargs["permissions"] = split_permissions(permissions_env)

        if "enable_event_logging" not in overrides:
            config_kwargs["enable_event_logging"] = _env_bool(
                env.get("SMARTAPP_ENABLE_EVENT_LOGGING"),
                False,
            )

        indent_env = env.get("SMARTAPP_JSON_INDENT")
        if indent_env is not None and "json_indent" not in overrides:
            config_kwargs["json_indent"] = int(indent_env)

        # dispatch_timeout is numeric, handle separately
        timeout_env = env.get("SMARTAPP_DISPATCH_TIMEOUT")
        if timeout_env is not None and "dispatch_timeout" not in overrides:
            config_kwargs["dispatch_timeout"] = float(timeout_env)

        if "permissions" in overrides:
            overrides["permissions"] = split_permissions(overrides["permissions"])
        config_kwargs.update(overrides)

        return cls(**config_kwargs)
