import asyncio
import threading

import pytest

from beerledger.services.scheduler import JobScheduler, PeriodicJob, build_scheduler


def test_run_once_runs_the_job_in_a_thread():
    calls = []
    job = PeriodicJob("ping", lambda: calls.append(threading.get_ident()) or "pong", 1)

    result = asyncio.run(job.run_once())

    assert result == "pong"
    assert job.runs == 1
    assert calls and calls[0] != threading.get_ident()


def test_failures_are_counted_and_logged(caplog):
    def broken():
        raise RuntimeError("boom")

    job = PeriodicJob("broken", broken, 1)
    assert asyncio.run(job.run_once()) is None
    assert job.failures == 1
    assert "Scheduled job broken failed" in caplog.text


def test_runs_never_overlap():
    release = threading.Event()

    def slow():
        release.wait(timeout=5)
        return "done"

    async def scenario():
        job = PeriodicJob("slow", slow, 1)
        first = asyncio.create_task(job.run_once())
        await asyncio.sleep(0)
        skipped = await job.run_once()
        release.set()
        return job, skipped, await first

    job, skipped, result = asyncio.run(scenario())

    assert skipped is None
    assert result == "done"
    assert job.runs == 1


def test_started_job_can_be_stopped():
    calls = []

    async def scenario():
        job = PeriodicJob("tick", lambda: calls.append(1), 0.01)
        job.start()
        assert job.started
        await asyncio.sleep(0.05)
        await job.stop()
        return job

    job = asyncio.run(scenario())

    assert not job.started
    assert len(calls) >= 1


def test_interval_must_be_positive():
    with pytest.raises(ValueError):
        PeriodicJob("bad", lambda: None, 0)


def test_duplicate_job_names_are_rejected():
    scheduler = JobScheduler()
    scheduler.add_job("a", lambda: None, 1)
    with pytest.raises(ValueError):
        scheduler.add_job("a", lambda: None, 1)


def test_build_scheduler_registers_the_standard_jobs(sync, service, settings):
    scheduler = build_scheduler(sync=sync, game_service=service, settings=settings)

    assert sorted(scheduler.jobs) == ["autoplay", "ledger-dispatch", "reconciliation"]
    assert scheduler.jobs["reconciliation"].interval == settings.RECONCILE_INTERVAL_SECONDS
