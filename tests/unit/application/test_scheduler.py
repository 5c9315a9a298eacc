import asyncio
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from kraken_dca.core.application.scheduler import CronScheduler

START = datetime(2024, 1, 1, 9, 0, 30, tzinfo=timezone.utc)


class FakeWallClock:
    """`now` + `sleep` for the scheduler; `overshoot` simulates a suspended host."""

    def __init__(self, start: datetime = START, overshoot: float = 0.0) -> None:
        self.current = start
        self.overshoot = overshoot

    def now(self, tz: ZoneInfo) -> datetime:
        return self.current.astimezone(tz)

    async def sleep(self, delay: float) -> None:
        self.current += timedelta(seconds=delay + self.overshoot)
        await asyncio.sleep(0)


def _scheduler(job, clock: FakeWallClock, **kw) -> CronScheduler:
    kw.setdefault("cron", "* * * * *")
    kw.setdefault("timezone", "UTC")
    return CronScheduler(job, now=clock.now, sleep=clock.sleep, **kw)


def test_next_fire_time_in_strategy_timezone():
    sched = CronScheduler(lambda: None, cron="0 9 * * 1", timezone="America/New_York")
    ny = ZoneInfo("America/New_York")

    nxt = sched.next_fire_time(datetime(2024, 1, 1, 8, 0, tzinfo=ny))  # a Monday
    assert nxt == datetime(2024, 1, 1, 9, 0, tzinfo=ny)
    assert nxt.utcoffset() == timedelta(hours=-5)

    after = sched.next_fire_time(nxt)
    assert after == datetime(2024, 1, 8, 9, 0, tzinfo=ny)


@pytest.mark.asyncio
async def test_runs_on_start_then_on_each_trigger():
    clock = FakeWallClock()
    fired_at: list[datetime] = []

    async def job():
        fired_at.append(clock.current)
        if len(fired_at) == 3:
            sched.stop()

    sched = _scheduler(job, clock)
    await asyncio.wait_for(sched.run_forever(), timeout=5)

    assert len(fired_at) == 3
    assert fired_at[0] == START
    assert fired_at[1] == datetime(2024, 1, 1, 9, 1, tzinfo=timezone.utc)
    assert fired_at[2] == datetime(2024, 1, 1, 9, 2, tzinfo=timezone.utc)
    assert sched.triggers == 2
    assert sched.inflight == 0


@pytest.mark.asyncio
async def test_run_on_start_can_be_disabled():
    clock = FakeWallClock()
    calls = []

    async def job():
        calls.append(clock.current)
        sched.stop()

    sched = _scheduler(job, clock, run_on_start=False)
    await asyncio.wait_for(sched.run_forever(), timeout=5)

    assert calls == [datetime(2024, 1, 1, 9, 1, tzinfo=timezone.utc)]


@pytest.mark.asyncio
async def test_passes_may_overlap_and_stop_drains_them():
    clock = FakeWallClock()
    release = asyncio.Event()
    calls = []
    seen_inflight = []
    finished = []

    async def job():
        calls.append(1)
        if len(calls) == 1:
            return
        if len(calls) == 3:
            seen_inflight.append(sched.inflight)
            sched.stop()
            release.set()
        await release.wait()
        finished.append(1)

    sched = _scheduler(job, clock)
    await asyncio.wait_for(sched.run_forever(), timeout=5)

    # the second pass was still running when the third one fired
    assert seen_inflight == [2]
    assert len(finished) == 2
    assert sched.inflight == 0


@pytest.mark.asyncio
async def test_crashing_job_does_not_stop_the_schedule():
    clock = FakeWallClock()
    calls = []

    async def job():
        calls.append(1)
        if len(calls) == 3:
            sched.stop()
            return
        raise RuntimeError("pass exploded")

    sched = _scheduler(job, clock)
    await asyncio.wait_for(sched.run_forever(), timeout=5)
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_missed_fire_times_are_not_replayed():
    # every sleep oversleeps by an hour: 60 minute fire times are missed each time
    clock = FakeWallClock(overshoot=3600)
    fired_at: list[datetime] = []

    async def job():
        fired_at.append(clock.current)
        if len(fired_at) == 4:
            sched.stop()

    sched = _scheduler(job, clock)
    await asyncio.wait_for(sched.run_forever(), timeout=5)

    assert len(fired_at) == 4
    gaps = [b - a for a, b in zip(fired_at, fired_at[1:])]
    assert all(g >= timedelta(hours=1) for g in gaps)


@pytest.mark.asyncio
async def test_stop_before_first_trigger():
    clock = FakeWallClock()

    async def job():
        sched.stop()

    sched = _scheduler(job, clock)
    await asyncio.wait_for(sched.run_forever(), timeout=5)
    assert sched.triggers == 0
