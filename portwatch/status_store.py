"""
Status store — the single owner of every entry's latest PortStatus.

The status map and the in-flight table are only touched together, under
one lock, so two begin_check() calls for the same id can never both win.
Nothing in here awaits.
"""

import threading
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional

import structlog

from .models import (
    ActiveStatus, CheckingStatus, InactiveStatus, PortStatus, UnknownStatus,
)
from .probe import ActiveResult, ProbeResult

log = structlog.get_logger()

StatusListener = Callable[[PortStatus], None]


class StatusStore:
    """
    In-memory map of entry id -> PortStatus.

    State:
        _statuses: {entry_id -> PortStatus}
        _in_flight: {entry_id -> status that preceded begin_check (or None)}
        _generations: {entry_id -> number of the latest check started}
        _lock: guards all three dicts
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._statuses: dict[str, PortStatus] = {}
        self._in_flight: dict[str, Optional[PortStatus]] = {}
        self._generations: dict[str, int] = {}
        self._listeners: list[StatusListener] = []

    # -------- Reads --------

    def get(self, entry_id: str) -> PortStatus:
        """Latest status; entries never checked are unknown."""
        with self._lock:
            status = self._statuses.get(entry_id)
        return status if status is not None else UnknownStatus(id=entry_id)

    def snapshot(self) -> dict[str, PortStatus]:
        with self._lock:
            return dict(self._statuses)

    def is_checking(self, entry_id: str) -> bool:
        with self._lock:
            return entry_id in self._in_flight

    def in_flight_count(self) -> int:
        with self._lock:
            return len(self._in_flight)

    # -------- Mutations --------

    def begin_check(self, entry_id: str) -> bool:
        """
        Mark a probe as started. Returns False (and changes nothing) when a
        probe for this entry is already in flight.
        """
        return self.start_check(entry_id) is not None

    def start_check(self, entry_id: str, supersede: bool = False) -> Optional[int]:
        """
        Like begin_check(), but returns the generation of the new check.

        With ``supersede`` a check already in flight is replaced rather than
        kept: only a completion carrying the new generation will be applied.
        """
        with self._lock:
            if entry_id in self._in_flight:
                if not supersede:
                    return None
                previous = self._in_flight[entry_id]
            else:
                previous = self._statuses.get(entry_id)
                self._in_flight[entry_id] = previous
            generation = self._generations.get(entry_id, 0) + 1
            self._generations[entry_id] = generation
            status = CheckingStatus(
                id=entry_id,
                last_checked=datetime.now(timezone.utc),
                page_title=getattr(previous, "page_title", None),
                response_time_ms=getattr(previous, "response_time_ms", None),
                http_status=getattr(previous, "http_status", None),
                error=getattr(previous, "error", None),
            )
            self._statuses[entry_id] = status
        self._notify(status)
        return generation

    def complete_check(self, entry_id: str, result: ProbeResult,
                       generation: Optional[int] = None) -> Optional[PortStatus]:
        """
        Replace the entry's status with a probe outcome.

        Returns None, dropping the result, when the entry was reconciled away
        while its probe ran or when ``generation`` names a superseded check.
        """
        now = datetime.now(timezone.utc)
        if isinstance(result, ActiveResult):
            status = ActiveStatus(
                id=entry_id,
                last_checked=now,
                response_time_ms=result.response_time_ms,
                page_title=result.page_title,
                http_status=result.http_status,
            )
        else:
            status = InactiveStatus(
                id=entry_id,
                last_checked=now,
                response_time_ms=result.response_time_ms,
                error=result.error,
            )

        with self._lock:
            if entry_id not in self._in_flight:
                log.debug("status_dropped", entry_id=entry_id, reason="not_in_flight")
                return None
            if generation is not None and generation != self._generations.get(entry_id):
                log.debug("status_dropped", entry_id=entry_id, reason="superseded")
                return None
            del self._in_flight[entry_id]
            self._statuses[entry_id] = status
        self._notify(status)
        return status

    def abort_check(self, entry_id: str, generation: Optional[int] = None) -> None:
        """Forget an in-flight probe and restore the status it replaced."""
        with self._lock:
            if entry_id not in self._in_flight:
                return
            if generation is not None and generation != self._generations.get(entry_id):
                return
            previous = self._in_flight.pop(entry_id)
            if previous is None:
                self._statuses.pop(entry_id, None)
            else:
                self._statuses[entry_id] = previous
        self._notify(previous if previous is not None else UnknownStatus(id=entry_id))

    def reconcile(self, live_ids: Iterable[str]) -> set[str]:
        """Drop statuses (and in-flight markers) of entries no longer watched."""
        live = set(live_ids)
        with self._lock:
            stale = {i for i in self._statuses if i not in live}
            stale.update(i for i in self._in_flight if i not in live)
            for entry_id in stale:
                self._statuses.pop(entry_id, None)
                self._in_flight.pop(entry_id, None)
                self._generations.pop(entry_id, None)
        if stale:
            log.info("statuses_reconciled", removed=len(stale), remaining=len(live))
        return stale

    # -------- Observers --------

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        """Call ``listener`` after every status change. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, status: PortStatus) -> None:
        for listener in list(self._listeners):
            try:
                listener(status)
            except Exception as e:
                log.warning("status_listener_failed", entry_id=status.id, error=str(e))
