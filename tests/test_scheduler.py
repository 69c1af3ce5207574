import asyncio

import pytest

from signstream.workers.scheduler import PeriodicScheduler


@pytest.mark.asyncio
async def test_schedule_runs_until_stopped():
    sched = PeriodicScheduler()
    await sched.start()
    calls = []

    async def job():
        calls.append(1)

    sched.schedule(job, interval_sec=0.01)
    await asyncio.sleep(0.1)
    await sched.stop()
    ran = len(calls)

    assert ran >= 2
    await asyncio.sleep(0.03)
    assert len(calls) == ran
    assert not sched.running


@pytest.mark.asyncio
async def test_failing_job_keeps_running():
    sched = PeriodicScheduler()
    await sched.start()
    attempts = []

    async def flaky():
        attempts.append(1)
        raise RuntimeError("sweep failed")

    sched.schedule(flaky, interval_sec=0.01, name="flaky")
    await asyncio.sleep(0.1)
    await sched.stop()

    assert len(attempts) >= 2
