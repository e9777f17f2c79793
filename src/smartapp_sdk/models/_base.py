"""Base model for platform webhook payloads.

Every inbound payload model inherits from :class:`SmartAppBaseModel` which
provides:

* ``alias_generator=to_camel`` so camelCase wire keys map
  automatically to snake_case fields.
* ``extra="ignore"`` so fields added to the platform protocol later do
  not break parsing.
* A ``raw`` dict that captures the original payload, which is what
  handlers that need unmodelled fields should read.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class SmartAppBaseModel(BaseModel):
    """Base for inbound webhook payload models."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    raw: dict[str, Any] = Field(default_factory=dict)
    """Original payload dict."""

    @model_validator(mode="before")
    @classmethod
    def _stash_raw(cls, values: Any) -> Any:
        """Stash the original payload unless ``raw`` was passed explicitly."""
        if not isinstance(values, dict):
            return values
        if "raw" in values:
            return values
        merged = dict(values)
        merged["raw"] = dict(values)
        return merged
