"""
Tests unitarios del scheduler diario.

El AsyncIOScheduler no se arranca: se verifica el registro del job y la
ejecucion directa de run_now.
"""
import asyncio

import pytest
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from sqp_sync.application.services.daily_sync_scheduler import JOB_ID, DailySyncScheduler, build_cron_trigger
from sqp_sync.application.use_cases.orchestration_use_cases import OrchestrationResult
from sqp_sync.shared.exceptions.domain import SyncAlreadyRunningException, ValidationException


class FakeOrchestrator:
    """Orquestador que retorna un resultado fijo (o falla)."""

    def __init__(self, status="success", error=None, gate=None):
        self.status = status
        self.error = error
        self.gate = gate
        self.calls = []

    async def run(self, table_names=None, *, full_sync=False, refresh_type="scheduled"):
        self.calls.append({"table_names": table_names, "full_sync": full_sync, "refresh_type": refresh_type})
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return OrchestrationResult(orchestration_id=1, status=self.status, total_tables=2, successful_tables=2)


def _daily(orchestrator, **kwargs):
    kwargs.setdefault("enabled", True)
    return DailySyncScheduler(AsyncIOScheduler(timezone="UTC"), lambda: orchestrator, **kwargs)


def test_build_cron_trigger_validates_expression():
    assert build_cron_trigger("0 2 * * *") is not None
    with pytest.raises(ValidationException):
        build_cron_trigger("0 2 * *")
    with pytest.raises(ValidationException):
        build_cron_trigger("99 2 * * *")


def test_start_registers_cron_job():
    daily = _daily(FakeOrchestrator(), cron="30 3 * * *")

    assert daily.start() is True

    job = daily.scheduler.get_job(JOB_ID)
    assert job is not None
    assert daily.status()["cron"] == "30 3 * * *"


def test_reschedule_replaces_job_trigger():
    daily = _daily(FakeOrchestrator(), cron="30 3 * * *")
    daily.start()

    daily.reschedule("15 4 * * *")

    job = daily.scheduler.get_job(JOB_ID)
    assert "hour='4'" in str(job.trigger)
    assert "minute='15'" in str(job.trigger)
    assert daily.status()["cron"] == "15 4 * * *"


def test_invalid_reschedule_keeps_current_cron():
    daily = _daily(FakeOrchestrator(), cron="30 3 * * *")
    daily.start()

    with pytest.raises(ValidationException):
        daily.reschedule("cada hora")

    assert daily.status()["cron"] == "30 3 * * *"
    assert "hour='3'" in str(daily.scheduler.get_job(JOB_ID).trigger)


def test_disabled_scheduler_registers_nothing():
    daily = _daily(FakeOrchestrator(), enabled=False)

    assert daily.start() is False
    assert daily.scheduler.get_job(JOB_ID) is None
    assert daily.status()["enabled"] is False


@pytest.mark.asyncio
async def test_run_now_tracks_metrics():
    orchestrator = FakeOrchestrator()
    daily = _daily(orchestrator)

    result = await daily.run_now(refresh_type="manual")

    assert result.status == "success"
    status = daily.status()
    assert status["total_runs"] == 1
    assert status["successful_runs"] == 1
    assert status["is_running"] is False
    assert status["last_result"]["total_tables"] == 2
    assert "results" not in status["last_result"]
    assert orchestrator.calls[0]["refresh_type"] == "manual"


@pytest.mark.asyncio
async def test_failed_run_is_counted_and_reraised():
    daily = _daily(FakeOrchestrator(error=RuntimeError("sin conexion")))

    with pytest.raises(RuntimeError):
        await daily.run_now()

    assert daily.failed_runs == 1
    assert daily.is_running is False
    assert daily.last_result["status"] == "failed"


@pytest.mark.asyncio
async def test_overlapping_runs_are_rejected():
    gate = asyncio.Event()
    daily = _daily(FakeOrchestrator(gate=gate))

    first = asyncio.create_task(daily.run_now())
    await asyncio.sleep(0)
    assert daily.is_running is True

    with pytest.raises(SyncAlreadyRunningException):
        await daily.run_now()

    gate.set()
    await first
    assert daily.total_runs == 1


@pytest.mark.asyncio
async def test_scheduled_run_swallows_overlap():
    daily = _daily(FakeOrchestrator())
    daily.is_running = True

    await daily._scheduled_run()

    assert daily.total_runs == 0
