import asyncio
from unittest.mock import AsyncMock

import pytest

from scheduler.billing_scheduler import BillingScheduler
from services.billing_service import SweepReport


async def instant_sleep(seconds):
    await asyncio.sleep(0)


async def wait_for_runs(scheduler: BillingScheduler, runs: int):
    for _ in range(200):
        if scheduler.runs >= runs:
            return
        await asyncio.sleep(0)
    raise AssertionError(f"scheduler only ran {scheduler.runs} times")


@pytest.mark.asyncio
async def test_sweeps_on_start_and_every_interval():
    sweep = AsyncMock(return_value=SweepReport(candidates=1, charged=1, coins_charged=5))
    scheduler = BillingScheduler(sweep=sweep, interval_seconds=3600, sleep=instant_sleep)

    await scheduler.start()
    await wait_for_runs(scheduler, 3)
    await scheduler.stop()

    assert sweep.await_count >= 3
    assert scheduler.running is False
    assert scheduler.last_report.coins_charged == 5


@pytest.mark.asyncio
async def test_waits_for_interval_when_not_running_on_start():
    released = asyncio.Event()
    sleeps = []

    async def gated_sleep(seconds):
        sleeps.append(seconds)
        await released.wait()

    sweep = AsyncMock(return_value=SweepReport())
    scheduler = BillingScheduler(sweep=sweep, interval_seconds=60, run_on_start=False, sleep=gated_sleep)

    await scheduler.start()
    await asyncio.sleep(0)
    assert sweep.await_count == 0
    assert sleeps == [60]

    released.set()
    await wait_for_runs(scheduler, 1)
    await scheduler.stop()

    assert sweep.await_count >= 1


@pytest.mark.asyncio
async def test_failed_sweep_does_not_stop_the_loop():
    calls = []

    async def flaky_sweep():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("database went away")
        return SweepReport(charged=2)

    scheduler = BillingScheduler(sweep=flaky_sweep, interval_seconds=1, sleep=instant_sleep)

    await scheduler.start()
    await wait_for_runs(scheduler, 2)
    await scheduler.stop()

    assert scheduler.last_report.charged == 2


@pytest.mark.asyncio
async def test_stop_cancels_pending_sleep():
    scheduler = BillingScheduler(sweep=AsyncMock(return_value=SweepReport()), interval_seconds=3600)

    await scheduler.start()
    await wait_for_runs(scheduler, 1)
    await scheduler.stop()

    assert scheduler.running is False
    assert scheduler.runs == 1
