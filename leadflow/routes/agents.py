"""
Agent availability: who is online right now and who will receive leads.
"""

from datetime import UTC, datetime

from fastapi import APIRouter, Depends

from leadflow.auth.tenant import TenantContext, get_admin_context
from leadflow.infrastructure.observability.logging import get_logger
from leadflow.models.api.agent_response import OnlineAgent, OnlineAgentsResponse
from leadflow.services.availability_monitor import cutoff_for
from leadflow.services.tenant_config_service import tenant_config_store

logger = get_logger(__name__)

router = APIRouter(tags=["agents"])


@router.get("/agents/online", response_model=OnlineAgentsResponse)
async def list_online_agents(context: TenantContext = Depends(get_admin_context)):
    """
    Online agents for the caller's tenant.

    Staleness is judged against the tenant's own threshold; stale agents are
    still listed until the next sweep flips them offline.
    """
    now = datetime.now(UTC)
    config = await tenant_config_store.load(context.tenant.id, context.store)
    cutoff = cutoff_for(config, now)

    agents = [OnlineAgent.from_agent(a, cutoff) for a in await context.store.list_online_agents()]
    logger.debug("Listed online agents", online=len(agents))
    return OnlineAgentsResponse(
        agents=agents,
        eligible_count=sum(1 for a in agents if a.eligible),
        stale_cutoff=cutoff,
    )
