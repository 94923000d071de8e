"""
Watchlist — the ordered list of watched entries.

Assigns ids, rejects duplicate (host, port, endpoint_path) targets and
persists every change. Listeners are told the new entry list after each
change so statuses of removed entries can be dropped.
"""

import threading
from typing import Callable, Optional

import structlog

from .database import WatchlistDatabase
from .metrics import WATCHED_ENTRIES
from .models import EntryFields, EntryUpdate, WatchEntry

log = structlog.get_logger()

EntriesListener = Callable[[list[WatchEntry]], None]


class WatchlistError(Exception):
    """Base class for watchlist errors."""


class DuplicateEntryError(WatchlistError):
    def __init__(self, host: str, port: int, endpoint_path: Optional[str]):
        self.host = host
        self.port = port
        self.endpoint_path = endpoint_path
        super().__init__(
            f"{host}:{port}{endpoint_path or ''} is already on the watchlist"
        )


class EntryNotFoundError(WatchlistError):
    def __init__(self, entry_id: str):
        self.entry_id = entry_id
        super().__init__(f"Entry {entry_id} not found")


class Watchlist:
    """Entries cached in memory, written through to the database."""

    def __init__(self, db: WatchlistDatabase):
        self._db = db
        self._lock = threading.Lock()
        self._entries: list[WatchEntry] = db.list_entries()
        self._listeners: list[EntriesListener] = []
        WATCHED_ENTRIES.set(len(self._entries))
        log.info("watchlist_loaded", count=len(self._entries))

    def entries(self) -> list[WatchEntry]:
        with self._lock:
            return list(self._entries)

    def get(self, entry_id: str) -> WatchEntry:
        with self._lock:
            for entry in self._entries:
                if entry.id == entry_id:
                    return entry
        raise EntryNotFoundError(entry_id)

    def add(self, fields: EntryFields) -> WatchEntry:
        """Append a new entry. Raises DuplicateEntryError without changing anything."""
        entry = WatchEntry(**fields.model_dump())
        with self._lock:
            self._ensure_unique(entry)
            self._db.insert_entry(entry)
            self._entries.append(entry)
            snapshot = list(self._entries)

        log.info("entry_added", entry_id=entry.id, url=entry.url, label=entry.label)
        self._changed(snapshot)
        return entry

    def update(self, entry_id: str, changes: EntryUpdate) -> WatchEntry:
        """Apply a partial update; the edited target must stay unique."""
        with self._lock:
            index = self._index_of(entry_id)
            current = self._entries[index]
            merged = current.model_dump()
            merged.update(changes.model_dump(exclude_unset=True))
            # Re-run field validation on the merged values
            fields = EntryFields(
                host=merged["host"] if merged["host"] is not None else "localhost",
                port=merged["port"] if merged["port"] is not None else current.port,
                endpoint_path=merged["endpoint_path"],
                label=merged["label"],
            )
            updated = current.model_copy(update=fields.model_dump())
            self._ensure_unique(updated, ignore_id=entry_id)
            self._db.update_entry(updated)
            self._entries[index] = updated
            snapshot = list(self._entries)

        log.info("entry_updated", entry_id=entry_id, url=updated.url)
        self._changed(snapshot)
        return updated

    def remove(self, entry_id: str) -> WatchEntry:
        with self._lock:
            index = self._index_of(entry_id)
            entry = self._entries.pop(index)
            self._db.delete_entry(entry_id)
            snapshot = list(self._entries)

        log.info("entry_removed", entry_id=entry_id, url=entry.url)
        self._changed(snapshot)
        return entry

    def subscribe(self, listener: EntriesListener) -> Callable[[], None]:
        """Call ``listener`` with the full entry list after every change."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _index_of(self, entry_id: str) -> int:
        for i, entry in enumerate(self._entries):
            if entry.id == entry_id:
                return i
        raise EntryNotFoundError(entry_id)

    def _ensure_unique(self, entry: WatchEntry, ignore_id: Optional[str] = None):
        for existing in self._entries:
            if existing.id != ignore_id and existing.identity == entry.identity:
                log.info("entry_duplicate_rejected",
                         host=entry.host, port=entry.port,
                         endpoint_path=entry.endpoint_path)
                raise DuplicateEntryError(entry.host, entry.port, entry.endpoint_path)

    def _changed(self, entries: list[WatchEntry]):
        WATCHED_ENTRIES.set(len(entries))
        for listener in list(self._listeners):
            try:
                listener(entries)
            except Exception as e:
                log.warning("watchlist_listener_failed", error=str(e))
