# leadflow/models/api/meeting_response.py
"""
Meeting API response models.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from leadflow.models.domain.meeting_domain import Meeting


class MeetingResponse(BaseModel):
    """A meeting as returned to the client."""

    id: str
    lead_id: str
    owner_key: str
    title: str
    description: str
    location: str
    start_at: datetime = Field(..., description="Wall time in time_zone")
    end_at: datetime = Field(..., description="Wall time in time_zone")
    time_zone: str
    attendees: list[str]
    status: str
    calendar_synced: bool = Field(..., description="False means the meeting exists locally only")
    join_link: str | None = None
    remote_event_id: str | None = None
    cancelled_at: datetime | None = None

    @classmethod
    def from_domain(cls, meeting: Meeting) -> "MeetingResponse":
        return cls(
            id=meeting.id,
            lead_id=meeting.lead_id,
            owner_key=meeting.owner_key,
            title=meeting.title,
            description=meeting.description,
            location=meeting.location,
            start_at=meeting.start_at,
            end_at=meeting.end_at,
            time_zone=meeting.time_zone,
            attendees=meeting.attendees,
            status=meeting.status,
            calendar_synced=meeting.calendar_synced,
            join_link=meeting.remote_join_link,
            remote_event_id=meeting.remote_event_id,
            cancelled_at=meeting.cancelled_at,
        )


class MeetingOperationResponse(BaseModel):
    """Result of a create/reschedule/cancel call."""

    meeting: MeetingResponse
    sync_status: str | None = Field(None, description="synced, not_connected, insufficient_scopes or api_error")
    warning: str | None = Field(None, description="Soft warning when the calendar was not updated")
