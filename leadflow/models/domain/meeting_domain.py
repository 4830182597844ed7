# leadflow/models/domain/meeting_domain.py
"""
Meeting Domain Model
The local meeting record is the system of record; remote fields mirror the calendar event.
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from leadflow.models.domain.calendar_domain import EventSpec


class Meeting(BaseModel):
    """A meeting an agent scheduled with a lead."""

    id: str
    lead_id: str
    owner_key: str
    title: str
    description: str = ""
    location: str = ""
    start_at: datetime
    end_at: datetime
    time_zone: str
    attendees: list[str] = Field(default_factory=list)
    remote_event_id: str | None = None
    remote_join_link: str | None = None
    calendar_synced: bool = False
    status: Literal["scheduled", "cancelled"] = "scheduled"
    cancelled_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def to_event_spec(self) -> EventSpec:
        """Calendar event input mirroring this meeting."""
        return EventSpec(
            summary=self.title,
            description=self.description,
            location=self.location,
            start_at=self.start_at,
            end_at=self.end_at,
            time_zone=self.time_zone,
            attendees=self.attendees,
            event_id=self.remote_event_id,
        )
