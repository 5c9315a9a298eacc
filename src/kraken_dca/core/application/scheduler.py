"""
Cron scheduler for one DCA strategy.

Runs the job once at startup, then on every cron fire time in the strategy's
timezone until stopped. Fired passes run as independent tasks: a pass that is
still polling does not delay the next trigger, and two passes may overlap.
"""
from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional
from zoneinfo import ZoneInfo

from croniter import croniter

from kraken_dca.utils.logging import get_logger

_log = get_logger(__name__)

Job = Callable[[], Awaitable[Any]]
Now = Callable[[ZoneInfo], datetime]
Sleep = Callable[[float], Awaitable[None]]


def _wall_now(tz: ZoneInfo) -> datetime:
    return datetime.now(tz)


class CronScheduler:
    def __init__(
        self,
        job: Job,
        *,
        cron: str,
        timezone: str,
        name: str = "dca",
        run_on_start: bool = True,
        now: Now = _wall_now,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._job = job
        self._cron = cron
        self._tz = ZoneInfo(timezone)
        self._name = name
        self._run_on_start = run_on_start
        self._now = now
        self._sleep = sleep
        self._stop = asyncio.Event()
        self._inflight: set[asyncio.Task[Any]] = set()
        self._triggers = 0

    @property
    def name(self) -> str:
        return self._name

    @property
    def triggers(self) -> int:
        """Cron triggers fired so far (the startup pass is not counted)"""
        return self._triggers

    @property
    def inflight(self) -> int:
        return len(self._inflight)

    def next_fire_time(self, after: Optional[datetime] = None) -> datetime:
        """First cron fire time strictly after `after` (default: now), tz-aware"""
        base = after if after is not None else self._now(self._tz)
        if base.tzinfo is None:
            base = base.replace(tzinfo=self._tz)
        return croniter(self._cron, base.astimezone(self._tz)).get_next(datetime)

    def stop(self) -> None:
        """Stop arming new triggers; passes already running are awaited, not cancelled"""
        self._stop.set()

    async def run_forever(self) -> None:
        if self._run_on_start:
            _log.info("scheduler_initial_run", extra={"strategy": self._name})
            await self._run_guarded()

        _log.info(
            "scheduler_armed",
            extra={"strategy": self._name, "cron": self._cron, "timezone": str(self._tz)},
        )

        fire_at = self.next_fire_time()
        try:
            while not self._stop.is_set():
                if not await self._wait_until(fire_at):
                    break

                self._triggers += 1
                _log.info(
                    "scheduler_triggered",
                    extra={"strategy": self._name, "fire_at": fire_at.isoformat(), "inflight": len(self._inflight)},
                )
                task = asyncio.create_task(self._run_guarded(), name=f"dca-{self._name}-{self._triggers}")
                self._inflight.add(task)
                task.add_done_callback(self._inflight.discard)

                # Missed fire times (suspend, clock jump) are skipped, not replayed
                now = self._now(self._tz)
                fire_at = self.next_fire_time(max(fire_at, now))
        finally:
            await self._drain()
            _log.info("scheduler_stopped", extra={"strategy": self._name, "triggers": self._triggers})

    async def _wait_until(self, fire_at: datetime) -> bool:
        """Sleep until `fire_at`; False if stopped first"""
        while not self._stop.is_set():
            delay = (fire_at - self._now(self._tz)).total_seconds()
            if delay <= 0:
                return True
            sleeper = asyncio.ensure_future(self._sleep(delay))
            stopper = asyncio.ensure_future(self._stop.wait())
            try:
                await asyncio.wait({sleeper, stopper}, return_when=asyncio.FIRST_COMPLETED)
            finally:
                for t in (sleeper, stopper):
                    if not t.done():
                        t.cancel()
        return False

    async def _run_guarded(self) -> None:
        try:
            await self._job()
        except asyncio.CancelledError:
            raise
        except Exception:  # noqa: BLE001
            _log.error("scheduler_job_crashed", extra={"strategy": self._name}, exc_info=True)

    async def _drain(self) -> None:
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)


__all__ = ["CronScheduler"]
