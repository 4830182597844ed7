"""
Availability monitor: marks agents offline when their heartbeat goes stale.
"""

from datetime import datetime

from leadflow.infrastructure.observability.logging import get_logger
from leadflow.models.domain.tenant_domain import TenantConfig
from leadflow.repositories.tenant_store import TenantStore

logger = get_logger(__name__)


def cutoff_for(config: TenantConfig, now: datetime) -> datetime:
    return config.stale_cutoff(now)


async def sweep(store: TenantStore, cutoff: datetime, tenant_id: str | None = None) -> int:
    """
    Mark every online agent with last_heartbeat < cutoff (or none) offline.

    Only ever flips agents offline; returns how many were flipped.
    """
    flipped = await store.mark_stale_agents_offline(cutoff)
    if flipped:
        logger.info(
            "Stale agents marked offline",
            tenant_id=tenant_id,
            agents_marked_offline=flipped,
            cutoff=cutoff.isoformat(),
        )
    return flipped
