"""
Poll scheduler — runs the "check everything" callback on a jittered interval.

Every firing waits interval * U(0.9, 1.1), with the jitter drawn again
before each wait. Reconfiguring cancels the pending timer and arms a new
one from scratch; a firing that is already running is left to finish.
"""

import asyncio
import random
from typing import Awaitable, Callable, Optional

import structlog

from .metrics import POLL_ROUNDS
from .models import AutoRefreshConfig

log = structlog.get_logger()

JITTER_PCT = 0.1

STOPPED = "stopped"
SCHEDULED = "scheduled"


def jittered_delay(base: float, pct: float = JITTER_PCT,
                   rng: Optional[random.Random] = None) -> float:
    """``base`` seconds perturbed uniformly by +/- ``pct``."""
    d = base * pct
    return base + (rng or random).uniform(-d, d)


class PollScheduler:
    """Owns the single timer task that drives periodic batch checks."""

    def __init__(self, callback: Callable[[], Awaitable[object]],
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
                 rng: Optional[random.Random] = None):
        self._callback = callback
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._config: Optional[AutoRefreshConfig] = None
        self._timer: Optional[asyncio.Task] = None
        self._firings: set[asyncio.Task] = set()
        self.next_delay: Optional[float] = None

    @property
    def state(self) -> str:
        if self._timer is not None and not self._timer.done():
            return SCHEDULED
        return STOPPED

    @property
    def config(self) -> Optional[AutoRefreshConfig]:
        return self._config

    def configure(self, config: AutoRefreshConfig) -> None:
        """Apply a new refresh config. Must be called from the event loop."""
        self._cancel_timer()
        self._config = config

        if not config.enabled or config.interval_seconds <= 0:
            self.next_delay = None
            log.info("poll_scheduler_stopped",
                     enabled=config.enabled,
                     interval=config.interval_seconds)
            return

        self._timer = asyncio.get_running_loop().create_task(
            self._run(config.interval_seconds)
        )
        log.info("poll_scheduler_armed", interval=config.interval_seconds)

    async def aclose(self) -> None:
        """Cancel the timer and any firing in progress."""
        pending = [t for t in (self._timer,) if t is not None]
        self._cancel_timer()
        firings, self._firings = self._firings, set()
        for firing in firings:
            firing.cancel()
        pending.extend(firings)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        log.info("poll_scheduler_closed")

    async def __aenter__(self) -> "PollScheduler":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    def _cancel_timer(self) -> None:
        timer, self._timer = self._timer, None
        if timer is not None and not timer.done():
            timer.cancel()

    async def _run(self, interval: float) -> None:
        while True:
            self.next_delay = jittered_delay(interval, rng=self._rng)
            await self._sleep(self.next_delay)

            # Shielded so a reconfigure only cancels the wait, not the round
            firing = asyncio.ensure_future(self._fire())
            self._firings.add(firing)
            firing.add_done_callback(self._firings.discard)
            await asyncio.shield(firing)

    async def _fire(self) -> None:
        POLL_ROUNDS.inc()
        try:
            await self._callback()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.error("poll_round_failed", error=str(e))
