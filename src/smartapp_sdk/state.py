"""Scoped, lazily loaded state of one installed app.

State is a nested mapping addressed with dot-paths (``"a.b.c"``). It is
loaded from the context store on first read and cached for the lifetime of
the owning context. Every write goes through the installation mutex,
starts from the stored mapping and persists the complete mapping with a
single store ``update`` call.
"""

from __future__ import annotations

import asyncio
import contextlib
import copy
import logging
from collections.abc import AsyncIterator
from typing import Any

from smartapp_sdk.exceptions import HandlerError, SmartAppConfigError
from smartapp_sdk.store import ContextStore

_logger = logging.getLogger(__name__)


def get_path(data: dict[str, Any], name: str) -> Any:
    """Return the value at dot-path *name*, or ``None`` when any segment is absent."""
    item: Any = data
    for segment in name.split("."):
        if not isinstance(item, dict) or segment not in item:
            return None
        item = item[segment]
    return item


def put_path(data: dict[str, Any], name: str, value: Any) -> None:
    """Set *value* at dot-path *name*, creating intermediate mappings as needed.

    A non-mapping value sitting on the path is replaced by a mapping.
    """
    segments = name.split(".")
    item = data
    for segment in segments[:-1]:
        child = item.get(segment)
        if not isinstance(child, dict):
            child = {}
            item[segment] = child
        item = child
    item[segments[-1]] = value


class InstalledAppState:
    """Dot-path addressable state bound to one installed app."""

    def __init__(
        self,
        installed_app_id: str,
        context_store: ContextStore | None,
        mutex: asyncio.Lock,
        initial: dict[str, Any] | None = None,
    ) -> None:
        self._installed_app_id = installed_app_id
        self._store = context_store
        self._mutex = mutex
        self._data: dict[str, Any] | None = copy.deepcopy(initial) if initial is not None else None
        self._owner: asyncio.Task[Any] | None = None

    @property
    def loaded(self) -> bool:
        """Whether the state mapping is cached in memory."""
        return self._data is not None

    def _require_store(self) -> ContextStore:
        if self._store is None:
            raise SmartAppConfigError("A context store is required for installed app state")
        return self._store

    async def _load(self) -> dict[str, Any]:
        if self._data is None:
            record = await self._require_store().get(self._installed_app_id)
            self._data = record.state
            _logger.debug("Loaded state for installed app %s", self._installed_app_id)
        return self._data

    async def _persist(self, data: dict[str, Any]) -> None:
        await self._require_store().update(self._installed_app_id, {"state": copy.deepcopy(data)})

    async def get(self, name: str | None = None) -> Any:
        """Return the whole state mapping, or the value at dot-path *name*."""
        data = await self._load()
        if name:
            return get_path(data, name)
        return data

    def snapshot(self) -> dict[str, Any] | None:
        """Deep copy of the cached mapping, or ``None`` when never loaded."""
        return copy.deepcopy(self._data) if self._data is not None else None

    def set(self, data: dict[str, Any]) -> None:
        """Replace the cached mapping without persisting it (see :meth:`save`)."""
        self._data = data

    @contextlib.asynccontextmanager
    async def _critical(self) -> AsyncIterator[None]:
        task = asyncio.current_task()
        if task is not None and self._owner is task:
            raise HandlerError(
                f"State of installed app {self._installed_app_id} is already being written by this task"
            )
        async with self._mutex:
            self._owner = task
            try:
                yield
            finally:
                self._owner = None

    async def _reload(self) -> dict[str, Any]:
        record = await self._require_store().get(self._installed_app_id)
        return copy.deepcopy(record.state)

    async def update(self, name: str, value: Any) -> None:
        """Write *value* at dot-path *name* to the store and the in-memory cache.

        The stored mapping is re-read under the mutex so writes committed by
        other contexts of the same installation are kept. The new mapping is
        persisted first; the cache only adopts it once the store accepted the
        write.
        """
        async with self._critical():
            updated = await self._reload()
            put_path(updated, name, value)
            await self._persist(updated)
            self._data = updated

    async def save(self) -> None:
        """Persist the entire in-memory state mapping, replacing the stored one."""
        async with self._critical():
            await self._persist(await self._load())

    @contextlib.asynccontextmanager
    async def edit(self) -> AsyncIterator[dict[str, Any]]:
        """Read-modify-write the state mapping under the installation mutex.

        Usage::

            async with context.state.edit() as state:
                state["count"] = state.get("count", 0) + 1

        The block receives the mapping as currently stored. It is persisted
        once when the block exits cleanly; on error the cache is left as it
        was. Writing state again from inside the block raises
        :class:`HandlerError` instead of waiting on the mutex.
        """
        async with self._critical():
            working = await self._reload()
            yield working
            await self._persist(working)
            self._data = working
