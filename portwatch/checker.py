"""
Port Checker — fans check requests out to probes and records the outcomes.

1. begin_check() on the status store (skipped if already in flight)
2. Probe the entry's URL
3. complete_check() with the result

check_all() runs every entry at once and returns when the slowest probe is
done. Each entry's status is updated as soon as its own probe finishes.
"""

import asyncio
import time
from typing import Iterable, Optional

import httpx
import structlog

from .config import ProbeConfig
from .metrics import (
    BATCHES_COMPLETED, PROBE_DURATION, PROBES_COMPLETED,
    PROBES_IN_FLIGHT, PROBES_SKIPPED,
)
from .models import PortStatus, WatchEntry
from .probe import TIMEOUT_ERROR, InactiveResult, probe
from .status_store import StatusStore

log = structlog.get_logger()


class PortChecker:
    """
    Runs probes for watch entries against a StatusStore.

    At most one probe per entry is in flight; the store enforces it.
    """

    def __init__(self, store: StatusStore, config: Optional[ProbeConfig] = None,
                 client: Optional[httpx.AsyncClient] = None):
        self.store = store
        self.config = config or ProbeConfig()
        self._client = client
        self._background: dict[asyncio.Task, tuple[str, int]] = {}

    async def check_one(self, entry: WatchEntry) -> Optional[PortStatus]:
        """
        Probe a single entry.

        Returns the new status, or None if a probe for this entry was already
        running (or the entry was removed while probing).
        """
        generation = self._begin(entry)
        if generation is None:
            return None
        return await self._probe_and_complete(entry, generation)

    def _begin(self, entry: WatchEntry, supersede: bool = False) -> Optional[int]:
        generation = self.store.start_check(entry.id, supersede=supersede)
        if generation is None:
            PROBES_SKIPPED.inc()
            log.debug("check_skipped", entry_id=entry.id, reason="in_flight")
        return generation

    async def _probe_and_complete(self, entry: WatchEntry,
                                  generation: int) -> Optional[PortStatus]:
        PROBES_IN_FLIGHT.inc()
        started = time.monotonic()
        try:
            result = await probe(
                entry.host,
                entry.port,
                entry.endpoint_path,
                self.config.timeout_ms,
                client=self._client,
                follow_redirects=self.config.follow_redirects,
            )
        except asyncio.CancelledError:
            self.store.abort_check(entry.id, generation)
            raise
        except Exception as e:
            # probe() reports failures as results; this is a bug guard
            log.error("probe_crashed", entry_id=entry.id, error=str(e))
            result = InactiveResult(
                response_time_ms=(time.monotonic() - started) * 1000,
                error=str(e) or type(e).__name__,
            )
        finally:
            PROBES_IN_FLIGHT.dec()

        PROBE_DURATION.observe(time.monotonic() - started)
        outcome = result.status
        if isinstance(result, InactiveResult) and result.error == TIMEOUT_ERROR:
            outcome = "timeout"
        PROBES_COMPLETED.labels(outcome=outcome).inc()

        status = self.store.complete_check(entry.id, result, generation)

        log.info("probe_completed",
                 entry_id=entry.id,
                 url=entry.url,
                 status=result.status,
                 response_time_ms=round(result.response_time_ms),
                 http_status=getattr(result, "http_status", None),
                 error=getattr(result, "error", None))
        return status

    async def check_all(self, entries: Iterable[WatchEntry]) -> dict[str, PortStatus]:
        """Probe every entry concurrently; resolves once all have finished."""
        entries = list(entries)
        if not entries:
            return {}

        log.info("batch_started", count=len(entries))
        results = await asyncio.gather(
            *(self.check_one(e) for e in entries),
            return_exceptions=True,
        )

        for entry, result in zip(entries, results):
            if isinstance(result, BaseException) and not isinstance(result, asyncio.CancelledError):
                log.error("batch_entry_failed", entry_id=entry.id, error=str(result))

        BATCHES_COMPLETED.inc()
        statuses = {e.id: self.store.get(e.id) for e in entries}
        log.info("batch_completed",
                 count=len(entries),
                 active=sum(1 for s in statuses.values() if s.status == "active"))
        return statuses

    def check_new(self, entry: WatchEntry, supersede: bool = False) -> Optional[asyncio.Task]:
        """
        Check a freshly added entry right away, outside the poll cadence.

        The entry is marked as checking before this returns. With
        ``supersede`` (used when an entry is retargeted) a probe already in
        flight is overruled: its result is dropped when it lands.
        """
        generation = self._begin(entry, supersede=supersede)
        if generation is None:
            return None
        task = asyncio.get_running_loop().create_task(
            self._probe_and_complete(entry, generation)
        )
        self._background[task] = (entry.id, generation)
        task.add_done_callback(lambda t: self._background.pop(t, None))
        return task

    async def aclose(self) -> None:
        """Cancel background checks started by check_new()."""
        tasks, self._background = self._background, {}
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        # a task cancelled before it started never reached its own cleanup
        for entry_id, generation in tasks.values():
            self.store.abort_check(entry_id, generation)
