"""
Assignment routes: manual runs, status and admin reassignment.
"""

from datetime import UTC, datetime

from fastapi import APIRouter, Depends, HTTPException, status

from leadflow.auth.tenant import TenantContext, get_admin_context
from leadflow.infrastructure.observability.logging import get_logger
from leadflow.jobs.lead_assignment_job import get_assignment_status, run_manual_assignment
from leadflow.models.api.assignment_request import ReassignLeadRequest, ReassignLeadResponse

logger = get_logger(__name__)

router = APIRouter(tags=["assignment"])


@router.post("/assignment/run")
async def trigger_assignment_run(context: TenantContext = Depends(get_admin_context)):
    """
    Run one assignment pass for the caller's tenant now.

    Window gating still applies; outside the window the pass only sweeps
    stale agents and reports `tenants_outside_window`.
    """
    logger.info("Manual assignment run requested", requested_by=context.agent_key)
    metrics = await run_manual_assignment(context.tenant.id)
    if metrics.get("skipped"):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail="An assignment pass is already running"
        )
    return metrics


@router.get("/assignment/status")
async def assignment_status(context: TenantContext = Depends(get_admin_context)):
    """Scheduler state plus this tenant's last pass result."""
    return get_assignment_status(context.tenant.id)


@router.put("/leads/{lead_id}/assignee", response_model=ReassignLeadResponse)
async def reassign_lead(
    lead_id: str,
    request: ReassignLeadRequest,
    context: TenantContext = Depends(get_admin_context),
):
    lead = await context.store.get_lead(lead_id)
    if lead is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Lead not found")

    agent = await context.store.get_agent(request.agent_key)
    if agent is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Agent not found")

    assigned_at = datetime.now(UTC)
    if not await context.store.reassign_lead(lead_id, agent.key, assigned_at):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Lead not found")

    previous_agent_key = None if lead.is_unassigned() else lead.assigned_to
    logger.info(
        "Lead reassigned",
        lead_id=lead_id,
        previous_agent_key=previous_agent_key,
        agent_key=agent.key,
        reassigned_by=context.agent_key,
    )
    return ReassignLeadResponse(
        lead_id=lead_id,
        assigned_to=agent.key,
        assigned_at=assigned_at,
        previous_agent_key=previous_agent_key,
    )
