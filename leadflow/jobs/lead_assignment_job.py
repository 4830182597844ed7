"""
Lead Assignment Job.

Periodically walks every active tenant: marks agents with stale heartbeats
offline, then distributes unassigned leads round-robin when the tenant's
local hour is inside its assignment window.

Only one ticker may exist per process. start_scheduler() consults a shared
registry under a lock and hands back the existing SchedulerHandle when one
is already registered, so a reload that calls it again cannot start a
second timer.
"""

import asyncio
import threading
import time
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta
from zoneinfo import ZoneInfo

from leadflow.config import settings
from leadflow.infrastructure.observability.logging import (
    bind_tenant_context,
    clear_tenant_context,
    get_logger,
)
from leadflow.models.domain.tenant_domain import Tenant, TenantConfig
from leadflow.repositories.tenant_directory import TenantDirectory, tenant_directory
from leadflow.repositories.tenant_store import TenantStore
from leadflow.services import availability_monitor, round_robin_assigner
from leadflow.services.round_robin_assigner import AssignmentResult
from leadflow.services.tenant_config_service import TenantConfigStore, tenant_config_store

logger = get_logger(__name__)

AssignFn = Callable[[TenantStore, TenantConfig, datetime], Awaitable[AssignmentResult]]
SweepFn = Callable[..., Awaitable[int]]


class AssignmentPassMetrics:
    """Metrics for one pass across all tenants."""

    def __init__(self):
        self.reset()

    def reset(self, trigger: str = "tick"):
        """Reset all metrics for a new pass."""
        self.trigger = trigger
        self.start_time = datetime.now(UTC)
        self.local_hour: int | None = None
        self.tenants_processed = 0
        self.tenants_outside_window = 0
        self.tenants_failed = 0
        self.agents_marked_offline = 0
        self.leads_assigned = 0
        self.total_duration_seconds = 0.0
        self.errors: list[dict] = []

    def record_sweep(self, flipped: int):
        self.agents_marked_offline += flipped

    def record_outside_window(self, tenant_id: str):
        self.tenants_processed += 1
        self.tenants_outside_window += 1
        logger.debug("Outside assignment window", tenant_id=tenant_id, local_hour=self.local_hour)

    def record_assignment(self, result: AssignmentResult):
        self.tenants_processed += 1
        self.leads_assigned += result.assigned

    def record_failure(self, tenant_id: str, error: str, error_type: str):
        """Record a tenant whose sweep or assignment failed."""
        self.tenants_failed += 1
        self.errors.append(
            {
                "tenant_id": tenant_id,
                "error": error,
                "error_type": error_type,
                "timestamp": datetime.now(UTC).isoformat(),
            }
        )
        logger.error(
            "Tenant pass failed, continuing with next tenant",
            tenant_id=tenant_id,
            error=error,
            error_type=error_type,
            job_run="lead_assignment",
        )

    def finalize(self):
        self.total_duration_seconds = (datetime.now(UTC) - self.start_time).total_seconds()

    def to_dict(self) -> dict:
        """Convert metrics to dictionary for logging."""
        return {
            "job_run": "lead_assignment",
            "trigger": self.trigger,
            "start_time": self.start_time.isoformat(),
            "total_duration_seconds": round(self.total_duration_seconds, 2),
            "local_hour": self.local_hour,
            "tenants_processed": self.tenants_processed,
            "tenants_outside_window": self.tenants_outside_window,
            "tenants_failed": self.tenants_failed,
            "agents_marked_offline": self.agents_marked_offline,
            "leads_assigned": self.leads_assigned,
            "errors_count": len(self.errors),
        }


class SchedulerDriver:
    """
    Runs assignment passes across all active tenants.

    Tenants are processed one after another; each tenant's sweep and
    assignment is isolated so one failing tenant never aborts the pass.
    The outcome for each tenant is kept in tenant_results so callers can
    read their own tenant's last result without seeing anyone else's.
    """

    def __init__(
        self,
        directory: TenantDirectory | None = None,
        config_store: TenantConfigStore | None = None,
        *,
        assign_fn: AssignFn | None = None,
        sweep_fn: SweepFn | None = None,
        clock: Callable[[], datetime] | None = None,
        time_zone: str | None = None,
        tenant_timeout_seconds: float | None = None,
    ):
        self.directory = directory or tenant_directory
        self.config_store = config_store or tenant_config_store
        self.assign_fn = assign_fn or round_robin_assigner.assign
        self.sweep_fn = sweep_fn or availability_monitor.sweep
        self.clock = clock or (lambda: datetime.now(UTC))
        self.time_zone = ZoneInfo(time_zone or settings.ASSIGNMENT_TIMEZONE)
        self.tenant_timeout_seconds = tenant_timeout_seconds or settings.TENANT_PASS_TIMEOUT_SECONDS

        self.is_running = False
        self.last_run_time: datetime | None = None
        self.pass_count = 0
        self.job_metrics = AssignmentPassMetrics()
        self.tenant_results: dict[str, dict] = {}

    async def run_pass(self, trigger: str = "tick", tenant_ids: set[str] | None = None) -> dict:
        """
        Run one pass across all active tenants, or only those in tenant_ids.

        A scoped pass does not count towards last_run_time, so it never
        hides an overdue scheduler.

        Returns:
            Dict: pass metrics, or {"skipped": True, ...} if a pass is in progress
        """
        if self.is_running:
            logger.warning("Lead assignment pass already running, skipping", trigger=trigger)
            return {"skipped": True, "reason": "already_running"}

        self.is_running = True
        self.job_metrics.reset(trigger)
        try:
            now = self.clock()
            local_hour = now.astimezone(self.time_zone).hour
            self.job_metrics.local_hour = local_hour

            logger.info(
                "Starting lead assignment pass",
                trigger=trigger,
                local_hour=local_hour,
                time_zone=str(self.time_zone),
                scoped=tenant_ids is not None,
            )

            try:
                tenants = await self.directory.list_active_tenants()
            except Exception as e:
                logger.error(
                    "Failed to list active tenants", error=str(e), error_type=type(e).__name__
                )
                self.job_metrics.finalize()
                metrics = self.job_metrics.to_dict()
                metrics["job_error"] = str(e)
                return metrics

            if tenant_ids is not None:
                tenants = [t for t in tenants if t.id in tenant_ids]

            for tenant in tenants:
                await self._run_tenant(tenant, now, local_hour, trigger)

            self.job_metrics.finalize()
            if tenant_ids is None:
                self.last_run_time = datetime.now(UTC)
                self.pass_count += 1

            metrics = self.job_metrics.to_dict()
            logger.info("Lead assignment pass completed", **metrics)
            return metrics

        finally:
            self.is_running = False

    async def _run_tenant(self, tenant: Tenant, now: datetime, local_hour: int, trigger: str) -> None:
        bind_tenant_context(tenant.id, tenant.name)
        outcome = {"tenant_id": tenant.id, "trigger": trigger, "local_hour": local_hour}
        try:
            outcome.update(
                await asyncio.wait_for(
                    self._process_tenant(tenant, now, local_hour),
                    timeout=self.tenant_timeout_seconds,
                )
            )
        except TimeoutError:
            error = f"Tenant pass timed out after {self.tenant_timeout_seconds}s"
            self.job_metrics.record_failure(tenant.id, error, "TimeoutError")
            outcome.update(status="failed", error=error, error_type="TimeoutError")
        except Exception as e:
            self.job_metrics.record_failure(tenant.id, str(e), type(e).__name__)
            outcome.update(status="failed", error=str(e), error_type=type(e).__name__)
        finally:
            outcome["finished_at"] = datetime.now(UTC).isoformat()
            self.tenant_results[tenant.id] = outcome
            clear_tenant_context()

    async def _process_tenant(self, tenant: Tenant, now: datetime, local_hour: int) -> dict:
        store = self.directory.store_for(tenant)
        config = await self.config_store.load(tenant.id, store)

        # Sweep runs regardless of the window
        cutoff = availability_monitor.cutoff_for(config, now)
        flipped = await self.sweep_fn(store, cutoff, tenant_id=tenant.id)
        self.job_metrics.record_sweep(flipped)

        if not config.in_window(local_hour):
            self.job_metrics.record_outside_window(tenant.id)
            return {"status": "outside_window", "agents_marked_offline": flipped, "leads_assigned": 0}

        result = await self.assign_fn(store, config, now)
        self.job_metrics.record_assignment(result)
        return {
            "status": "assigned",
            "agents_marked_offline": flipped,
            "leads_assigned": result.assigned,
        }

    def get_job_status(self, tenant_id: str | None = None) -> dict:
        """
        Scheduler state. With tenant_id, the cross-tenant pass metrics are
        replaced by that tenant's last result.
        """
        job_status = {
            "job_name": "lead_assignment",
            "is_running": self.is_running,
            "last_run_time": self.last_run_time.isoformat() if self.last_run_time else None,
            "pass_count": self.pass_count,
            "time_zone": str(self.time_zone),
        }
        if tenant_id is not None:
            job_status["last_tenant_result"] = self.tenant_results.get(tenant_id)
        else:
            job_status["last_run_metrics"] = self.job_metrics.to_dict() if self.last_run_time else None
        return job_status

    def health_check(self, interval_minutes: float) -> dict:
        """
        Health check for the assignment job.

        The job is unhealthy once it has gone twice its interval without a pass.
        """
        now = datetime.now(UTC)
        overdue_threshold = timedelta(minutes=interval_minutes * 2)
        is_overdue = self.last_run_time is not None and (now - self.last_run_time) > overdue_threshold

        health_status = {
            "healthy": not is_overdue,
            "service": "lead_assignment_job",
            "is_running": self.is_running,
            "last_run_time": self.last_run_time.isoformat() if self.last_run_time else None,
            "is_overdue": is_overdue,
            "configuration": {
                "interval_minutes": interval_minutes,
                "time_zone": str(self.time_zone),
                "max_leads_per_agent": settings.MAX_LEADS_PER_AGENT,
                "tenant_timeout_seconds": self.tenant_timeout_seconds,
            },
        }
        if is_overdue:
            health_status["warning"] = (
                f"Job overdue by {(now - self.last_run_time).total_seconds() / 60:.1f} minutes"
            )
        return health_status


class SchedulerHandle:
    """Owned reference to the running ticker."""

    def __init__(self, driver: SchedulerDriver, interval_minutes: float, registry: "SchedulerRegistry"):
        self.driver = driver
        self.interval_minutes = interval_minutes
        self._registry = registry
        self._task: asyncio.Task | None = None
        self.started_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _start(self) -> None:
        self.started_at = datetime.now(UTC)
        logger.info("Starting lead assignment scheduler", interval_minutes=self.interval_minutes)
        await self.driver.run_pass("startup")
        self._task = asyncio.create_task(self._tick_loop(), name="lead-assignment-ticker")

    async def _tick_loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_minutes * 60)
            try:
                await self.driver.run_pass("tick")
            except Exception as e:
                logger.error(
                    "Error in lead assignment scheduler", error=str(e), error_type=type(e).__name__
                )

    async def trigger_now(self, tenant_ids: set[str] | None = None) -> dict:
        """Run one pass immediately, without waiting for the next tick."""
        return await self.driver.run_pass("manual", tenant_ids=tenant_ids)

    async def wait(self) -> None:
        """Block until the ticker stops."""
        if self._task is not None:
            await self._task

    async def stop(self) -> None:
        """Cancel the ticker and release the registry slot."""
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self._registry.release(self)
        logger.info("Lead assignment scheduler stopped")

    def status(self, tenant_id: str | None = None) -> dict:
        return {
            "active": self.is_active,
            "interval_minutes": self.interval_minutes,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            **self.driver.get_job_status(tenant_id),
        }

    def health(self) -> dict:
        health_status = self.driver.health_check(self.interval_minutes)
        if not self.is_active:
            health_status["healthy"] = False
            health_status["warning"] = "Scheduler ticker is not running"
        return health_status


class SchedulerRegistry:
    """Process-wide slot holding at most one SchedulerHandle."""

    def __init__(self):
        self._lock = threading.Lock()
        self._handle: SchedulerHandle | None = None

    def current(self) -> SchedulerHandle | None:
        with self._lock:
            return self._handle

    def claim(self, factory: Callable[[], SchedulerHandle]) -> tuple[SchedulerHandle, bool]:
        """Return (handle, created); creates through factory only if the slot is empty."""
        with self._lock:
            if self._handle is not None:
                return self._handle, False
            self._handle = factory()
            return self._handle, True

    def release(self, handle: SchedulerHandle) -> None:
        with self._lock:
            if self._handle is handle:
                self._handle = None


# Singleton instances for application use.
# Re-executing this module (importlib.reload) keeps the live registry and driver.
scheduler_registry = globals().get("scheduler_registry") or SchedulerRegistry()
lead_assignment_driver = globals().get("lead_assignment_driver") or SchedulerDriver()


async def start_scheduler(
    driver: SchedulerDriver | None = None,
    interval_minutes: float | None = None,
    registry: SchedulerRegistry | None = None,
) -> SchedulerHandle:
    """
    Start the process-wide scheduler, or return the one already running.

    A new handle runs one immediate pass, then ticks every interval.
    """
    registry = registry or scheduler_registry
    interval = interval_minutes or settings.SCHEDULER_INTERVAL_MINUTES

    handle, created = registry.claim(
        lambda: SchedulerHandle(driver or lead_assignment_driver, interval, registry)
    )
    if not created:
        logger.info("Lead assignment scheduler already running, reusing handle")
        return handle

    try:
        await handle._start()
    except BaseException:
        registry.release(handle)
        raise
    return handle


async def run_manual_assignment(tenant_id: str | None = None) -> dict:
    """
    Force one pass now, through the running scheduler when there is one.

    With tenant_id only that tenant is swept and assigned.
    """
    tenant_ids = {tenant_id} if tenant_id is not None else None
    handle = scheduler_registry.current()
    if handle is not None:
        return await handle.trigger_now(tenant_ids)
    return await lead_assignment_driver.run_pass("manual", tenant_ids=tenant_ids)


def get_assignment_status(tenant_id: str | None = None) -> dict:
    handle = scheduler_registry.current()
    if handle is not None:
        return handle.status(tenant_id)
    return {"active": False, **lead_assignment_driver.get_job_status(tenant_id)}


def lead_assignment_job_health() -> dict:
    handle = scheduler_registry.current()
    if handle is not None:
        return handle.health()
    if not settings.SCHEDULER_ENABLED:
        return {"healthy": True, "service": "lead_assignment_job", "enabled": False}
    return {
        "healthy": False,
        "service": "lead_assignment_job",
        "warning": "Scheduler not started",
    }


async def start_lead_assignment_scheduler() -> None:
    """Run the scheduler until cancelled (standalone worker entry point)."""
    handle = await start_scheduler()
    try:
        await handle.wait()
    finally:
        await handle.stop()


async def run_lead_assignment_once() -> None:
    """Run a single pass and exit."""
    started = time.monotonic()
    metrics = await lead_assignment_driver.run_pass("manual")
    logger.info(
        "One-off lead assignment pass finished",
        duration_ms=round((time.monotonic() - started) * 1000, 2),
        **{k: v for k, v in metrics.items() if k != "errors"},
    )
