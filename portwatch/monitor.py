"""
Port Monitor — wires the watchlist, status store, checker and scheduler.

This is what a UI talks to:
  - entries and their statuses
  - add / update / remove entries (new or retargeted entries are checked at once)
  - check_one / check_all on demand
  - auto-refresh config, persisted and applied to the scheduler

start() must be called from a running event loop; aclose() tears
everything down.
"""

from typing import Optional

import httpx
import structlog

from .checker import PortChecker
from .config import AppConfig
from .database import WatchlistDatabase
from .models import (
    AutoRefreshConfig, AutoRefreshUpdate, EntryFields, EntryUpdate,
    PortStatus, WatchEntry,
)
from .scheduler import PollScheduler
from .status_store import StatusStore
from .watchlist import Watchlist

log = structlog.get_logger()

REFRESH_CONFIG_KEY = "refresh_config"


class PortMonitor:

    def __init__(self, config: AppConfig, db: Optional[WatchlistDatabase] = None,
                 client: Optional[httpx.AsyncClient] = None,
                 scheduler: Optional[PollScheduler] = None):
        self.config = config
        self._db = db or WatchlistDatabase(config.storage.db_path)
        self._own_client = client is None
        self._client = client
        self.watchlist = Watchlist(self._db)
        self.store = StatusStore()
        self.checker: Optional[PortChecker] = None
        self.scheduler = scheduler or PollScheduler(self.check_all)
        self._unsubscribe = self.watchlist.subscribe(self._on_entries_changed)

    async def start(self, initial_check: bool = True):
        """Open the HTTP client, arm the scheduler and check every entry once."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=None,
                follow_redirects=self.config.probe.follow_redirects,
            )
        self.checker = PortChecker(self.store, self.config.probe, self._client)
        self.scheduler.configure(self.refresh_config())
        log.info("monitor_started",
                 entries=len(self.watchlist.entries()),
                 scheduler=self.scheduler.state)
        if initial_check:
            await self.check_all()

    async def aclose(self):
        await self.scheduler.aclose()
        if self.checker is not None:
            await self.checker.aclose()
        if self._own_client and self._client is not None:
            await self._client.aclose()
            self._client = None
        self._unsubscribe()
        self._db.close()
        log.info("monitor_stopped")

    async def __aenter__(self) -> "PortMonitor":
        await self.start()
        return self

    async def __aexit__(self, *exc):
        await self.aclose()

    # -------- Statuses --------

    def status(self, entry_id: str) -> PortStatus:
        return self.store.get(entry_id)

    def statuses(self) -> dict[str, PortStatus]:
        """Status of every watched entry, unknown included."""
        return {e.id: self.store.get(e.id) for e in self.watchlist.entries()}

    async def check_one(self, entry_id: str) -> PortStatus:
        entry = self.watchlist.get(entry_id)
        await self._require_checker().check_one(entry)
        return self.store.get(entry_id)

    async def check_all(self) -> dict[str, PortStatus]:
        return await self._require_checker().check_all(self.watchlist.entries())

    # -------- Entries --------

    def add_entry(self, fields: EntryFields) -> WatchEntry:
        entry = self.watchlist.add(fields)
        if self.checker is not None:
            self.checker.check_new(entry)
        return entry

    def update_entry(self, entry_id: str, changes: EntryUpdate) -> WatchEntry:
        before = self.watchlist.get(entry_id)
        entry = self.watchlist.update(entry_id, changes)
        if entry.identity != before.identity and self.checker is not None:
            # a probe of the old target may still be running
            self.checker.check_new(entry, supersede=True)
        return entry

    def remove_entry(self, entry_id: str) -> WatchEntry:
        return self.watchlist.remove(entry_id)

    # -------- Auto refresh --------

    def refresh_config(self) -> AutoRefreshConfig:
        """Persisted refresh config, falling back to the configured defaults."""
        stored = self._db.get_setting(REFRESH_CONFIG_KEY)
        try:
            defaults = AutoRefreshConfig(
                enabled=self.config.refresh.enabled,
                interval_seconds=self.config.refresh.interval_seconds,
            )
        except ValueError as e:
            log.warning("refresh_defaults_invalid", error=str(e))
            defaults = AutoRefreshConfig(enabled=self.config.refresh.enabled)
        if not isinstance(stored, dict):
            return defaults
        try:
            return AutoRefreshConfig(**{**defaults.model_dump(), **stored})
        except ValueError as e:
            log.warning("refresh_config_invalid", error=str(e))
            return defaults

    def update_refresh_config(self, changes: AutoRefreshUpdate) -> AutoRefreshConfig:
        """Merge, persist and apply a refresh config change."""
        merged = self.refresh_config().model_dump()
        merged.update(changes.model_dump(exclude_unset=True, exclude_none=True))
        config = AutoRefreshConfig(**merged)
        self._db.set_setting(REFRESH_CONFIG_KEY, config.model_dump())
        self.scheduler.configure(config)
        log.info("refresh_config_updated",
                 enabled=config.enabled,
                 interval=config.interval_seconds)
        return config

    # -------- Internals --------

    def _on_entries_changed(self, entries: list[WatchEntry]):
        self.store.reconcile(e.id for e in entries)

    def _require_checker(self) -> PortChecker:
        if self.checker is None:
            raise RuntimeError("PortMonitor.start() has not been called")
        return self.checker
