"""
Meeting Service: meeting lifecycle with Google Calendar sync.

The local meeting is the system of record. How a calendar failure is
handled depends on the operation:

- create: best effort. The meeting is saved either way and
  calendar_synced records whether the event exists remotely.
- reschedule: mandatory. Start/end change locally only after the remote
  event was updated; otherwise MeetingSyncError is raised and nothing
  is written.
- cancel: the local cancellation always happens; the remote delete is
  attempted and its failure is only reported as a warning.
"""

import uuid
from datetime import UTC, datetime

from pydantic import BaseModel

from leadflow.infrastructure.observability.logging import get_logger
from leadflow.models.api.meeting_request import CreateMeetingRequest, RescheduleMeetingRequest
from leadflow.models.domain.agent_domain import Lead
from leadflow.models.domain.calendar_domain import CalendarSyncResult, SyncStatus
from leadflow.models.domain.meeting_domain import Meeting
from leadflow.repositories.tenant_store import TenantStore
from leadflow.services.calendar.sync_gateway import CalendarSyncGateway, calendar_sync_gateway
from leadflow.services.token_vault import TokenVault, token_vault

logger = get_logger(__name__)

SYNC_ERROR_CODES: dict[SyncStatus, tuple[str, int]] = {
    "not_connected": ("CALENDAR_NOT_CONNECTED", 400),
    "insufficient_scopes": ("INSUFFICIENT_SCOPES", 403),
    "api_error": ("CALENDAR_API_ERROR", 502),
}


class MeetingServiceError(Exception):
    """Base exception for meeting operations."""

    def __init__(self, message: str, code: str = "MEETING_ERROR", http_status: int = 400):
        super().__init__(message)
        self.code = code
        self.http_status = http_status


class MeetingNotFoundError(MeetingServiceError):
    def __init__(self, message: str = "Meeting not found"):
        super().__init__(message, code="MEETING_NOT_FOUND", http_status=404)


class MeetingStateError(MeetingServiceError):
    def __init__(self, message: str):
        super().__init__(message, code="MEETING_CANCELLED", http_status=409)


class MeetingSyncError(MeetingServiceError):
    """A mandatory calendar update failed; the stored meeting is unchanged."""

    def __init__(self, result: CalendarSyncResult):
        code, http_status = SYNC_ERROR_CODES.get(result.status, ("CALENDAR_API_ERROR", 502))
        super().__init__(
            result.message or "Google Calendar could not be updated",
            code=code,
            http_status=http_status,
        )
        self.sync_status = result.status


class MeetingOutcome(BaseModel):
    meeting: Meeting
    sync_status: SyncStatus | None = None
    warning: str | None = None


def build_attendees(owner_key: str, lead: Lead | None, extra: list[str] | None = None) -> list[str]:
    """Owner first, then the lead, then any extras; case-insensitive de-duplication."""
    attendees: list[str] = []
    seen: set[str] = set()
    candidates = [owner_key, lead.email if lead else None, *(extra or [])]
    for email in candidates:
        if not email or not email.strip():
            continue
        normalized = email.strip().lower()
        if normalized in seen:
            continue
        seen.add(normalized)
        attendees.append(email.strip())
    return attendees


class MeetingService:
    """Create, reschedule and cancel meetings for a tenant."""

    def __init__(
        self,
        vault: TokenVault | None = None,
        gateway: CalendarSyncGateway | None = None,
        clock=None,
    ):
        self.vault = vault or token_vault
        self.gateway = gateway or calendar_sync_gateway
        self.clock = clock or (lambda: datetime.now(UTC))

    async def _load(self, store: TenantStore, lead_id: str, meeting_id: str) -> Meeting:
        meeting = await store.get_meeting(meeting_id)
        if meeting is None or meeting.lead_id != lead_id:
            raise MeetingNotFoundError()
        return meeting

    async def create(
        self, store: TenantStore, lead: Lead, owner_key: str, request: CreateMeetingRequest
    ) -> MeetingOutcome:
        meeting = Meeting(
            id=uuid.uuid4().hex,
            lead_id=lead.id,
            owner_key=owner_key,
            title=request.title,
            description=request.description,
            location=request.location,
            start_at=request.start_at,
            end_at=request.end_at,
            time_zone=request.resolved_time_zone,
            attendees=build_attendees(owner_key, lead, request.attendees),
        )

        # Calendar sync is best-effort here; the local insert always happens
        try:
            grant = await self.vault.get_valid_access_token(store, owner_key)
        except Exception as e:
            logger.warning(
                "Token lookup failed, creating meeting without calendar sync",
                lead_id=lead.id,
                owner_key=owner_key,
                error=str(e),
                error_type=type(e).__name__,
            )
            grant = None
        result = await self.gateway.upsert_event(
            grant.access_token if grant else None, meeting.to_event_spec()
        )

        if result.ok:
            meeting.remote_event_id = result.event_id
            meeting.remote_join_link = result.join_link
            meeting.calendar_synced = True

        saved = await store.insert_meeting(meeting)
        warning = None if result.ok else f"Meeting saved locally only. {result.message}"

        logger.info(
            "Meeting created",
            meeting_id=saved.id,
            lead_id=lead.id,
            owner_key=owner_key,
            calendar_synced=saved.calendar_synced,
            sync_status=result.status,
        )
        return MeetingOutcome(meeting=saved, sync_status=result.status, warning=warning)

    async def reschedule(
        self,
        store: TenantStore,
        lead_id: str,
        meeting_id: str,
        request: RescheduleMeetingRequest,
    ) -> MeetingOutcome:
        """
        Move a meeting. Raises MeetingSyncError if the calendar cannot be updated.
        """
        meeting = await self._load(store, lead_id, meeting_id)
        if meeting.status == "cancelled":
            raise MeetingStateError("Cancelled meetings cannot be rescheduled")

        changes = {
            "start_at": request.start_at,
            "end_at": request.end_at,
            "time_zone": request.time_zone or meeting.time_zone,
        }
        if request.title is not None:
            changes["title"] = request.title
        if request.description is not None:
            changes["description"] = request.description
        if request.location is not None:
            changes["location"] = request.location
        candidate = meeting.model_copy(update=changes)

        grant = await self.vault.get_valid_access_token(store, meeting.owner_key)
        result = await self.gateway.upsert_event(
            grant.access_token if grant else None, candidate.to_event_spec()
        )
        if not result.ok:
            logger.warning(
                "Reschedule blocked by calendar sync failure",
                meeting_id=meeting.id,
                sync_status=result.status,
            )
            raise MeetingSyncError(result)

        candidate.remote_event_id = result.event_id or meeting.remote_event_id
        candidate.remote_join_link = result.join_link or meeting.remote_join_link
        candidate.calendar_synced = True

        saved = await store.update_meeting(candidate)
        logger.info(
            "Meeting rescheduled",
            meeting_id=saved.id,
            start_at=saved.start_at.isoformat(),
            end_at=saved.end_at.isoformat(),
        )
        return MeetingOutcome(meeting=saved, sync_status=result.status)

    async def cancel(self, store: TenantStore, lead_id: str, meeting_id: str) -> MeetingOutcome:
        meeting = await self._load(store, lead_id, meeting_id)
        if meeting.status == "cancelled":
            return MeetingOutcome(meeting=meeting)

        cancelled = meeting.model_copy(update={"status": "cancelled", "cancelled_at": self.clock()})
        saved = await store.update_meeting(cancelled)

        if not meeting.remote_event_id:
            logger.info("Meeting cancelled", meeting_id=meeting.id, remote_event=False)
            return MeetingOutcome(meeting=saved)

        warning = None
        try:
            grant = await self.vault.get_valid_access_token(store, meeting.owner_key)
            deleted = await self.gateway.delete_event(
                grant.access_token if grant else None, meeting.remote_event_id
            )
        except Exception as e:
            logger.warning(
                "Remote cancellation failed",
                meeting_id=meeting.id,
                error=str(e),
                error_type=type(e).__name__,
            )
            deleted = False

        if not deleted:
            warning = "Meeting cancelled locally; the Google Calendar event could not be removed."

        logger.info("Meeting cancelled", meeting_id=meeting.id, remote_deleted=deleted)
        return MeetingOutcome(meeting=saved, warning=warning)


meeting_service = MeetingService()
