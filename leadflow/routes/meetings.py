"""
Meeting routes nested under a lead.

Agents can only act on leads assigned to them; admins on any lead of
their tenant. Calendar outcomes are reported in the response body.
"""

from fastapi import APIRouter, Depends, HTTPException, status

from leadflow.auth.tenant import TenantContext, get_tenant_context
from leadflow.infrastructure.observability.logging import get_logger
from leadflow.models.api.meeting_request import CreateMeetingRequest, RescheduleMeetingRequest
from leadflow.models.api.meeting_response import MeetingOperationResponse, MeetingResponse
from leadflow.models.domain.agent_domain import Lead
from leadflow.services.meeting_service import MeetingOutcome, MeetingServiceError, meeting_service

logger = get_logger(__name__)

router = APIRouter(prefix="/leads/{lead_id}/meetings", tags=["meetings"])


async def _lead_for_caller(context: TenantContext, lead_id: str) -> Lead:
    lead = await context.store.get_lead(lead_id)
    if lead is None or (not context.is_admin and lead.assigned_to != context.agent_key):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Lead not found for the current user"
        )
    return lead


def _to_response(outcome: MeetingOutcome) -> MeetingOperationResponse:
    return MeetingOperationResponse(
        meeting=MeetingResponse.from_domain(outcome.meeting),
        sync_status=outcome.sync_status,
        warning=outcome.warning,
    )


def _to_http_error(e: MeetingServiceError) -> HTTPException:
    return HTTPException(status_code=e.http_status, detail={"error": str(e), "code": e.code})


@router.post("", response_model=MeetingOperationResponse, status_code=status.HTTP_201_CREATED)
async def create_meeting(
    lead_id: str,
    request: CreateMeetingRequest,
    context: TenantContext = Depends(get_tenant_context),
):
    lead = await _lead_for_caller(context, lead_id)
    # Admin-created meetings belong to the lead's agent when there is one
    owner_key = lead.assigned_to or context.agent_key
    try:
        outcome = await meeting_service.create(context.store, lead, owner_key, request)
    except MeetingServiceError as e:
        raise _to_http_error(e) from e
    return _to_response(outcome)


@router.patch("/{meeting_id}", response_model=MeetingOperationResponse)
async def reschedule_meeting(
    lead_id: str,
    meeting_id: str,
    request: RescheduleMeetingRequest,
    context: TenantContext = Depends(get_tenant_context),
):
    await _lead_for_caller(context, lead_id)
    try:
        outcome = await meeting_service.reschedule(context.store, lead_id, meeting_id, request)
    except MeetingServiceError as e:
        raise _to_http_error(e) from e
    return _to_response(outcome)


@router.delete("/{meeting_id}", response_model=MeetingOperationResponse)
async def cancel_meeting(
    lead_id: str,
    meeting_id: str,
    context: TenantContext = Depends(get_tenant_context),
):
    await _lead_for_caller(context, lead_id)
    try:
        outcome = await meeting_service.cancel(context.store, lead_id, meeting_id)
    except MeetingServiceError as e:
        raise _to_http_error(e) from e
    return _to_response(outcome)
