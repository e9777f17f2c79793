"""Context store interface and in-memory implementation.

A context store durably keeps one :class:`ContextRecord` per installed app.
Production apps plug in their own (database, key-value service, ...);
:class:`MemoryContextStore` serves tests and single-process deployments.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Mapping
from typing import Any, Protocol

from smartapp_sdk.exceptions import ContextNotFoundError, ContextStoreError
from smartapp_sdk.models.context import ContextRecord

_logger = logging.getLogger(__name__)


class ContextStore(Protocol):
    """Structural context store interface.

    ``update`` applies a partial change keyed by :class:`ContextRecord`
    field names (``"state"``, ``"auth_token"``, ...). Values replace the
    stored ones wholesale; in particular ``{"state": ...}`` must carry the
    complete state mapping.
    """

    async def get(self, installed_app_id: str) -> ContextRecord:
        ...

    async def put(self, record: ContextRecord) -> None:
        ...

    async def update(self, installed_app_id: str, changes: Mapping[str, Any]) -> None:
        ...

    async def delete(self, installed_app_id: str) -> None:
        ...


class MemoryContextStore:
    """In-memory context store.

    Records are deep-copied on the way in and out so callers never share
    mutable state with the store.
    """

    def __init__(self, records: Mapping[str, ContextRecord] | None = None) -> None:
        self._records: dict[str, ContextRecord] = {}
        for record in (records or {}).values():
            self._records[record.installed_app_id] = record.model_copy(deep=True)

    def __contains__(self, installed_app_id: object) -> bool:
        return installed_app_id in self._records

    def __len__(self) -> int:
        return len(self._records)

    async def get(self, installed_app_id: str) -> ContextRecord:
        record = self._records.get(installed_app_id)
        if record is None:
            raise ContextNotFoundError(installed_app_id)
        return record.model_copy(deep=True)

    async def put(self, record: ContextRecord) -> None:
        _logger.debug("Storing context for installed app %s", record.installed_app_id)
        self._records[record.installed_app_id] = record.model_copy(deep=True)

    async def update(self, installed_app_id: str, changes: Mapping[str, Any]) -> None:
        record = self._records.get(installed_app_id)
        if record is None:
            raise ContextNotFoundError(installed_app_id)
        unknown = set(changes) - set(ContextRecord.model_fields)
        if unknown:
            raise ContextStoreError(f"Unknown context fields: {', '.join(sorted(unknown))}")
        if "installed_app_id" in changes and changes["installed_app_id"] != installed_app_id:
            raise ContextStoreError("installed_app_id cannot be changed")
        self._records[installed_app_id] = record.model_copy(update=copy.deepcopy(dict(changes)))

    async def delete(self, installed_app_id: str) -> None:
        self._records.pop(installed_app_id, None)
