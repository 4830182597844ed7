"""
Background worker runner.

Reads the desired job name from CLI args or the WORKER_JOB environment
variable, opens the database pool and delegates to the matching job.
"""

import asyncio
import os
import sys
from collections.abc import Awaitable, Callable

from leadflow.config import settings
from leadflow.db.pool import db_pool
from leadflow.infrastructure.observability.logging import get_logger, setup_logging
from leadflow.jobs.lead_assignment_job import (
    run_lead_assignment_once,
    start_lead_assignment_scheduler,
)

logger = get_logger(__name__)

JobCoroutine = Callable[[], Awaitable[None]]

JOB_REGISTRY: dict[str, JobCoroutine] = {
    "lead_assignment": start_lead_assignment_scheduler,
    "assign_once": run_lead_assignment_once,
}


def _resolve_job_name() -> str:
    """Pick the target job from CLI args or WORKER_JOB env variable."""
    if len(sys.argv) > 1:
        return sys.argv[1].strip().lower()
    return os.getenv("WORKER_JOB", "lead_assignment").strip().lower()


async def run_worker(job_name: str | None = None) -> None:
    """Run the requested background job."""
    name = (job_name or _resolve_job_name()).strip().lower()
    if name not in JOB_REGISTRY:
        raise ValueError(
            f"Unknown worker job '{name}'. "
            f"Available jobs: {', '.join(sorted(JOB_REGISTRY.keys()))}"
        )

    logger.info("Starting background worker", job=name)
    await db_pool.initialize()
    try:
        await JOB_REGISTRY[name]()
    finally:
        await db_pool.close()


def main() -> None:
    """CLI entrypoint."""
    setup_logging(settings.LOG_LEVEL)
    job_name = _resolve_job_name()
    asyncio.run(run_worker(job_name))


if __name__ == "__main__":
    main()
