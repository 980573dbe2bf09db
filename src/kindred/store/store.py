"""Two-tier state store: synchronous mirror over an asynchronous durable writer."""

from __future__ import annotations

import asyncio
import copy
import json
import logging
import sqlite3
from collections.abc import Callable
from typing import Any

from ..logging import get_logger
from .backends import LegacyJSONStore, SQLiteBackend

logger = logging.getLogger(__name__)


class Keys:
    """Store namespace: one container per logical domain."""

    SETTINGS = "settings"
    CONTACTS = "contacts"
    CHATS = "chats"
    WORLDBOOK = "worldbook"
    MEMORIES = "memories"
    COUPLE = "couple"
    CALENDAR = "calendar"
    STICKERS = "stickers"

    ALL = (SETTINGS, CONTACTS, CHATS, WORLDBOOK, MEMORIES, COUPLE, CALENDAR, STICKERS)


_DEFAULTS: dict[str, Callable[[], Any]] = {
    Keys.SETTINGS: dict,
    Keys.CONTACTS: list,
    Keys.CHATS: dict,
    Keys.WORLDBOOK: lambda: {
        "categories": [{"id": "default", "name": "Default"}],
        "entries": [],
    },
    Keys.MEMORIES: dict,
    Keys.COUPLE: lambda: {
        "active": False,
        "partner_id": None,
        "start_time": 0,
        "last_water_time": 0,
        "tree_level": 0,
        "letters": [],
    },
    Keys.CALENDAR: dict,
    Keys.STICKERS: list,
}


class StorageWriteError(Exception):
    """Raised (and reported, never propagated to writers) when a durable write fails."""

    def __init__(self, key: str, cause: BaseException) -> None:
        super().__init__(f"Durable write for '{key}' failed: {cause}")
        self.key = key
        self.cause = cause


class StateStore:
    """Namespaced key/value store with an in-memory mirror.

    Reads are served from the mirror and return an independent copy, so a
    caller always mutates its own snapshot and writes the whole container
    back. Writes update the mirror immediately; the durable copy is written
    later by a background task (or inline when no event loop is running).
    A crash right after ``set`` can lose that last write.
    """

    def __init__(
        self,
        backend: SQLiteBackend,
        legacy: LegacyJSONStore | None = None,
        on_write_error: Callable[[StorageWriteError], None] | None = None,
    ) -> None:
        self.backend = backend
        self.legacy = legacy
        self.on_write_error = on_write_error
        self._mirror: dict[str, Any] = {}
        self._dirty: set[str] = set()
        self._failed: set[str] = set()
        self._writer: asyncio.Task | None = None
        self._opened = False

    def open(self) -> None:
        """Load the durable store into the mirror, importing legacy data once."""
        if self._opened:
            return

        self.backend.init_db()
        if self.backend.is_empty():
            self._import_legacy()
        else:
            self._mirror = self.backend.load_all()
        self._opened = True

    def _import_legacy(self) -> None:
        """Copy every known legacy key forward into the durable store."""
        if self.legacy is None:
            return

        imported = 0
        for key in Keys.ALL:
            value = self.legacy.read(key)
            if value is None:
                continue
            self._mirror[key] = value
            self._write_now(key)
            imported += 1

        if imported:
            logger.info("Imported %d legacy container(s)", imported)
            get_logger().log("legacy_import", containers=imported)

    def get(self, key: str) -> Any:
        """Return a copy of the container under ``key`` or its typed default."""
        if key in self._mirror:
            return copy.deepcopy(self._mirror[key])
        factory = _DEFAULTS.get(key)
        return factory() if factory else None

    def set(self, key: str, value: Any) -> None:
        """Replace the container under ``key``. Never fails for the caller."""
        self._mirror[key] = copy.deepcopy(value)
        self._schedule_write(key)

    def _schedule_write(self, key: str) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._write_now(key)
            return

        self._dirty.add(key)
        if self._writer is None or self._writer.done():
            self._writer = loop.create_task(self._drain())

    async def _drain(self) -> None:
        """Write dirty keys until none remain. Latest mirror value wins."""
        while self._dirty:
            key = self._dirty.pop()
            payload = json.dumps(self._mirror.get(key), ensure_ascii=False)
            try:
                await asyncio.to_thread(self.backend.put, key, payload)
            except (sqlite3.Error, OSError) as e:
                self._report(key, e)
            else:
                self._failed.discard(key)

    def _write_now(self, key: str) -> None:
        payload = json.dumps(self._mirror.get(key), ensure_ascii=False)
        try:
            self.backend.put(key, payload)
        except (sqlite3.Error, OSError) as e:
            self._report(key, e)
        else:
            self._failed.discard(key)

    def _report(self, key: str, cause: BaseException) -> None:
        error = StorageWriteError(key, cause)
        self._failed.add(key)
        logger.warning("%s", error)
        get_logger().log("storage_error", error=str(error), key=key)
        if self.on_write_error is not None:
            self.on_write_error(error)

    @property
    def failed_keys(self) -> set[str]:
        """Keys whose latest durable write failed."""
        return set(self._failed)

    def retry_failed(self) -> None:
        """Re-queue every key whose durable write failed."""
        for key in list(self._failed):
            self._schedule_write(key)

    def clear_durable(self) -> None:
        """Drop the durable copy and rewrite it from the mirror."""
        self.backend.clear()
        for key in list(self._mirror):
            self._schedule_write(key)

    async def flush(self) -> None:
        """Wait until every scheduled durable write has been attempted."""
        while self._writer is not None and not self._writer.done():
            await self._writer

    def close(self) -> None:
        self.backend.close()
        self._opened = False
