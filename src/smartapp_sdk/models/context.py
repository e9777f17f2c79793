"""Persisted per-installation context record."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ContextRecord(BaseModel):
    """Credentials and app state of one installed app, as kept by a context store.

    Serialises with camelCase keys (``installedAppId``, ``authToken``, ...)
    via ``model_dump(by_alias=True)``; accepts either spelling on input.

    Parameters
    ----------
    installed_app_id : str
        Installed app identity. Never changes for a record.
    location_id : str or None
        Location the app is installed in.
    auth_token : str or None
        OAuth access token for platform API calls.
    refresh_token : str or None
        OAuth refresh token.
    config : dict
        Installed app configuration as delivered by the platform.
    state : dict
        Arbitrary nested app state (JSON-compatible values).
    """

    model_config = ConfigDict(
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    installed_app_id: str
    location_id: str | None = None
    auth_token: str | None = None
    refresh_token: str | None = None
    config: dict[str, Any] = Field(default_factory=dict)
    state: dict[str, Any] = Field(default_factory=dict)
