"""
Round-robin lead assignment.

Distributes a tenant's unassigned leads across online, verified agents in
key order, resuming from the persisted rotation cursor so that load stays
fair across passes. Each agent receives at most MAX_LEADS_PER_AGENT leads
per pass.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from leadflow.config import settings
from leadflow.infrastructure.observability.logging import get_logger
from leadflow.models.domain.agent_domain import Agent, Lead
from leadflow.models.domain.tenant_domain import AssignmentCursor, TenantConfig
from leadflow.repositories.tenant_store import TenantStore
from leadflow.services.tenant_config_service import TenantConfigStore, tenant_config_store

logger = get_logger(__name__)

SkipReason = Literal["no_eligible_agents", "no_unassigned_leads"]


@dataclass
class AssignmentPlan:
    """Pure result of planning one pass; nothing has been written yet."""

    leads_per_agent: int
    start_index: int
    pairs: list[tuple[Lead, int]] = field(default_factory=list)  # (lead, agent index)


class AssignmentResult(BaseModel):
    """Outcome of one assignment pass for one tenant."""

    tenant_id: str
    assigned: int = 0
    eligible_agents: int = 0
    unassigned_leads: int = 0
    leads_per_agent: int = 0
    start_index: int | None = None
    assignments: list[dict[str, str]] = Field(default_factory=list)
    cursor: AssignmentCursor | None = None
    skipped_reason: SkipReason | None = None


def resume_index(agents: list[Agent], cursor: AssignmentCursor) -> int:
    """
    Index of the agent that receives the first lead of the next pass.

    Continues after the cursor agent while it is still eligible; otherwise
    restarts at the cursor's slot, clamped into the current roster.
    """
    count = len(agents)
    keys = [agent.key for agent in agents]
    if cursor.last_agent_key and cursor.last_agent_key in keys:
        return (cursor.last_index + 1) % count
    return max(cursor.last_index, 0) % count


def plan_assignments(
    agents: list[Agent],
    leads: list[Lead],
    cursor: AssignmentCursor,
    unassigned_count: int | None = None,
    max_per_agent: int | None = None,
) -> AssignmentPlan | None:
    """
    Plan which agent receives which lead.

    Args:
        agents: Eligible agents, already sorted by key
        leads: Unassigned leads, oldest first
        cursor: Cursor persisted by the previous pass
        unassigned_count: Total backlog (defaults to len(leads))
        max_per_agent: Per-pass cap (defaults to MAX_LEADS_PER_AGENT)

    Returns:
        AssignmentPlan, or None when there is nothing to do
    """
    if not agents or not leads:
        return None

    cap = max_per_agent or settings.MAX_LEADS_PER_AGENT
    backlog = unassigned_count if unassigned_count is not None else len(leads)
    count = len(agents)

    leads_per_agent = min(math.ceil(backlog / count), cap)
    total = min(leads_per_agent * count, backlog, len(leads))
    start = resume_index(agents, cursor)

    plan = AssignmentPlan(leads_per_agent=leads_per_agent, start_index=start)
    index = start
    for position, lead in enumerate(leads[:total]):
        plan.pairs.append((lead, index))
        if (position + 1) % leads_per_agent == 0:
            index = (index + 1) % count
    return plan


async def assign(
    store: TenantStore,
    config: TenantConfig,
    now: datetime,
    config_store: TenantConfigStore | None = None,
) -> AssignmentResult:
    """
    Run one round-robin pass for a tenant and persist the new cursor.

    Leads are only ever moved from unassigned to assigned; a lead claimed by
    someone else between planning and writing is skipped.
    """
    config_store = config_store or tenant_config_store
    result = AssignmentResult(tenant_id=config.tenant_id)

    agents = await store.list_eligible_agents()
    agents.sort(key=lambda agent: agent.key)
    result.eligible_agents = len(agents)
    if not agents:
        result.skipped_reason = "no_eligible_agents"
        logger.debug("No eligible agents", tenant_id=config.tenant_id)
        return result

    backlog = await store.count_unassigned_leads()
    result.unassigned_leads = backlog
    if backlog == 0:
        result.skipped_reason = "no_unassigned_leads"
        logger.debug("No unassigned leads", tenant_id=config.tenant_id)
        return result

    leads_per_agent = min(math.ceil(backlog / len(agents)), settings.MAX_LEADS_PER_AGENT)
    leads = await store.list_unassigned_leads(limit=leads_per_agent * len(agents))

    plan = plan_assignments(agents, leads, config.cursor, unassigned_count=backlog)
    if plan is None:
        result.skipped_reason = "no_unassigned_leads"
        return result

    result.leads_per_agent = plan.leads_per_agent
    result.start_index = plan.start_index

    last_index = None
    try:
        for lead, index in plan.pairs:
            agent = agents[index]
            if await store.assign_lead(lead.id, agent.key, now):
                last_index = index
                result.assignments.append({"lead_id": lead.id, "agent_key": agent.key})
            else:
                logger.info(
                    "Lead already assigned, skipping",
                    tenant_id=config.tenant_id,
                    lead_id=lead.id,
                )
    finally:
        # Written leads and the cursor move together, even when the pass is cancelled mid-way
        result.assigned = len(result.assignments)
        if last_index is not None:
            cursor = AssignmentCursor(
                last_index=last_index,
                last_agent_key=agents[last_index].key,
                last_assigned_at=now,
            )
            await config_store.save_cursor(config.tenant_id, store, cursor)
            result.cursor = cursor

    logger.info(
        "Assignment pass completed",
        tenant_id=config.tenant_id,
        assigned=result.assigned,
        eligible_agents=result.eligible_agents,
        unassigned_leads=backlog,
        leads_per_agent=plan.leads_per_agent,
        start_index=plan.start_index,
        last_agent_key=result.cursor.last_agent_key if result.cursor else None,
    )
    return result
