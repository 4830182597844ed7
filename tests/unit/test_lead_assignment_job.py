"""
Tests for the lead assignment scheduler.
"""

import asyncio
import importlib
from datetime import UTC, datetime, timedelta

import pytest

from leadflow.jobs import lead_assignment_job as job
from leadflow.jobs.lead_assignment_job import (
    SchedulerDriver,
    SchedulerHandle,
    SchedulerRegistry,
    start_scheduler,
)
from leadflow.services.round_robin_assigner import AssignmentResult
from leadflow.services.tenant_config_service import TenantConfigStore

IN_WINDOW = datetime(2024, 3, 4, 6, 0, tzinfo=UTC)  # 11:30 Asia/Kolkata
AFTER_HOURS = datetime(2024, 3, 4, 14, 30, tzinfo=UTC)  # 20:00 Asia/Kolkata


class Recorder:
    def __init__(
        self,
        fail_for: set[str] | None = None,
        delay: float = 0,
        sweep_fail_for: set[str] | None = None,
    ):
        self.assigned: list[str] = []
        self.swept: list[str] = []
        self.fail_for = fail_for or set()
        self.sweep_fail_for = sweep_fail_for or set()
        self.delay = delay

    async def assign(self, store, config, now):
        if self.delay:
            await asyncio.sleep(self.delay)
        if config.tenant_id in self.fail_for:
            raise RuntimeError(f"boom in {config.tenant_id}")
        self.assigned.append(config.tenant_id)
        return AssignmentResult(tenant_id=config.tenant_id, assigned=2)

    async def sweep(self, store, cutoff, tenant_id=None):
        if tenant_id in self.sweep_fail_for:
            raise ConnectionError(f"sweep failed for {tenant_id}")
        self.swept.append(tenant_id)
        return 1


def _driver(directory, recorder, now=IN_WINDOW, timeout=5.0) -> SchedulerDriver:
    return SchedulerDriver(
        directory,
        TenantConfigStore(),
        assign_fn=recorder.assign,
        sweep_fn=recorder.sweep,
        clock=lambda: now,
        time_zone="Asia/Kolkata",
        tenant_timeout_seconds=timeout,
    )


@pytest.mark.asyncio
async def test_pass_outside_window_sweeps_but_does_not_assign(fake_directory):
    fake_directory.add_tenant("acme")
    recorder = Recorder()

    metrics = await _driver(fake_directory, recorder, now=AFTER_HOURS).run_pass()

    assert metrics["local_hour"] == 20
    assert recorder.assigned == []
    assert recorder.swept == ["acme"]
    assert metrics["tenants_outside_window"] == 1
    assert metrics["agents_marked_offline"] == 1


@pytest.mark.asyncio
async def test_pass_inside_window_assigns_every_active_tenant(fake_directory):
    fake_directory.add_tenant("acme")
    fake_directory.add_tenant("globex")
    fake_directory.add_tenant("dormant", status="inactive")
    recorder = Recorder()

    metrics = await _driver(fake_directory, recorder).run_pass()

    assert recorder.assigned == ["acme", "globex"]
    assert metrics["leads_assigned"] == 4
    assert metrics["tenants_processed"] == 2


@pytest.mark.asyncio
async def test_tenant_failure_does_not_stop_the_pass(fake_directory):
    fake_directory.add_tenant("acme")
    fake_directory.add_tenant("globex")
    recorder = Recorder(fail_for={"acme"})

    metrics = await _driver(fake_directory, recorder).run_pass()

    assert recorder.assigned == ["globex"]
    assert metrics["tenants_failed"] == 1
    assert metrics["errors_count"] == 1


@pytest.mark.asyncio
async def test_slow_tenant_times_out(fake_directory):
    fake_directory.add_tenant("acme")
    driver = _driver(fake_directory, Recorder(delay=1.0), timeout=0.05)

    metrics = await driver.run_pass()

    assert metrics["tenants_failed"] == 1
    assert driver.job_metrics.errors[0]["error_type"] == "TimeoutError"


@pytest.mark.asyncio
async def test_overlapping_pass_is_skipped(fake_directory):
    driver = _driver(fake_directory, Recorder())
    driver.is_running = True

    result = await driver.run_pass()

    assert result == {"skipped": True, "reason": "already_running"}


@pytest.mark.asyncio
async def test_health_check_flags_overdue_job(fake_directory):
    driver = _driver(fake_directory, Recorder())
    driver.last_run_time = datetime.now(UTC) - timedelta(hours=2)

    health = driver.health_check(interval_minutes=30)

    assert health["healthy"] is False
    assert health["is_overdue"] is True
    assert "overdue" in health["warning"]


@pytest.mark.asyncio
async def test_start_scheduler_is_idempotent(fake_directory):
    fake_directory.add_tenant("acme")
    recorder = Recorder()
    driver = _driver(fake_directory, recorder)
    registry = SchedulerRegistry()

    first = await start_scheduler(driver, interval_minutes=60, registry=registry)
    second = await start_scheduler(driver, interval_minutes=60, registry=registry)
    try:
        assert first is second
        assert first.is_active is True
        # Only the first start runs the immediate pass
        assert driver.pass_count == 1
        assert recorder.assigned == ["acme"]
    finally:
        await first.stop()

    assert registry.current() is None
    assert first.is_active is False


@pytest.mark.asyncio
async def test_scheduler_can_restart_after_stop(fake_directory):
    driver = _driver(fake_directory, Recorder())
    registry = SchedulerRegistry()

    first = await start_scheduler(driver, interval_minutes=60, registry=registry)
    await first.stop()
    second = await start_scheduler(driver, interval_minutes=60, registry=registry)
    try:
        assert second is not first
        assert registry.current() is second
    finally:
        await second.stop()


@pytest.mark.asyncio
async def test_trigger_now_runs_a_manual_pass(fake_directory):
    fake_directory.add_tenant("acme")
    driver = _driver(fake_directory, Recorder())
    registry = SchedulerRegistry()

    handle = await start_scheduler(driver, interval_minutes=60, registry=registry)
    try:
        metrics = await handle.trigger_now()
    finally:
        await handle.stop()

    assert metrics["trigger"] == "manual"
    assert driver.pass_count == 2


@pytest.mark.asyncio
async def test_failing_sweep_does_not_stop_other_tenants(fake_directory):
    fake_directory.add_tenant("acme")
    fake_directory.add_tenant("globex")
    recorder = Recorder(sweep_fail_for={"acme"})
    driver = _driver(fake_directory, recorder)

    metrics = await driver.run_pass()

    assert recorder.swept == ["globex"]
    assert recorder.assigned == ["globex"]
    assert metrics["tenants_failed"] == 1
    assert metrics["tenants_processed"] == 1
    assert driver.tenant_results["acme"]["status"] == "failed"
    assert driver.tenant_results["acme"]["error_type"] == "ConnectionError"
    assert driver.tenant_results["globex"]["status"] == "assigned"


@pytest.mark.asyncio
async def test_scoped_pass_touches_only_the_named_tenant(fake_directory):
    fake_directory.add_tenant("acme")
    fake_directory.add_tenant("globex")
    recorder = Recorder()
    driver = _driver(fake_directory, recorder)

    metrics = await driver.run_pass("manual", tenant_ids={"acme"})

    assert recorder.assigned == ["acme"]
    assert recorder.swept == ["acme"]
    assert metrics["tenants_processed"] == 1
    # A scoped pass is not a scheduler pass
    assert driver.last_run_time is None
    assert driver.pass_count == 0

    acme_status = driver.get_job_status("acme")
    assert acme_status["last_tenant_result"]["leads_assigned"] == 2
    assert "last_run_metrics" not in acme_status
    assert driver.get_job_status("globex")["last_tenant_result"] is None


@pytest.mark.asyncio
async def test_tenant_status_hides_other_tenants_results(fake_directory):
    fake_directory.add_tenant("acme")
    fake_directory.add_tenant("globex")
    driver = _driver(fake_directory, Recorder(fail_for={"globex"}))

    await driver.run_pass()
    acme_status = driver.get_job_status("acme")

    assert acme_status["last_tenant_result"]["tenant_id"] == "acme"
    assert "globex" not in str(acme_status)
    assert driver.get_job_status()["last_run_metrics"]["tenants_failed"] == 1


def test_health_with_sub_minute_interval(fake_directory):
    driver = _driver(fake_directory, Recorder())
    driver.last_run_time = datetime.now(UTC) - timedelta(seconds=20)

    health = SchedulerHandle(driver, 0.5, SchedulerRegistry()).health()

    assert health["is_overdue"] is False
    assert health["configuration"]["interval_minutes"] == 0.5


@pytest.mark.asyncio
async def test_module_reload_reuses_the_running_scheduler(fake_directory):
    fake_directory.add_tenant("acme")
    recorder = Recorder()
    driver = _driver(fake_directory, recorder)

    handle = await job.start_scheduler(driver, interval_minutes=60)
    try:
        reloaded = importlib.reload(job)
        again = await reloaded.start_scheduler(driver, interval_minutes=60)

        assert again is handle
        assert reloaded.scheduler_registry.current() is handle
        assert handle.is_active is True
        # No second startup pass, so no second ticker
        assert driver.pass_count == 1
        assert recorder.assigned == ["acme"]
    finally:
        await handle.stop()

    assert job.scheduler_registry.current() is None
