# leadflow/models/domain/calendar_domain.py
"""
Calendar Domain Models
Event input for the Google Calendar API, parsed API events, and sync outcomes.
"""

from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, Field

SyncStatus = Literal["synced", "not_connected", "insufficient_scopes", "api_error"]


class EventSpec(BaseModel):
    """What to write to the agent's primary calendar."""

    summary: str
    description: str = ""
    location: str = ""
    start_at: datetime  # wall time in time_zone
    end_at: datetime
    time_zone: str
    attendees: list[str] = Field(default_factory=list)
    event_id: str | None = None  # set when updating an existing remote event

    def to_google_body(self) -> dict:
        """Build the Calendar API event resource."""
        body = {
            "summary": self.summary,
            "description": self.description,
            "location": self.location,
            "start": {
                "dateTime": self.start_at.replace(tzinfo=None).isoformat(),
                "timeZone": self.time_zone,
            },
            "end": {
                "dateTime": self.end_at.replace(tzinfo=None).isoformat(),
                "timeZone": self.time_zone,
            },
            "reminders": {"useDefault": True},
        }
        if self.attendees:
            body["attendees"] = [{"email": email} for email in self.attendees]
        return body


class CalendarEvent:
    """Domain model for a Calendar API event."""

    def __init__(self, data: dict):
        self.id = data.get("id")
        self.summary = data.get("summary", "")
        self.status = data.get("status", "confirmed")
        self.html_link = data.get("htmlLink")
        self.hangout_link = data.get("hangoutLink")
        self.start_time = self._parse_datetime(data.get("start", {}))
        self.end_time = self._parse_datetime(data.get("end", {}))
        self.timezone = data.get("start", {}).get("timeZone", "UTC")
        self.raw_data = data

    def _parse_datetime(self, dt_data: dict) -> datetime | None:
        """Parse datetime from Google Calendar format."""
        if not dt_data:
            return None

        if "date" in dt_data:
            return datetime.strptime(dt_data["date"], "%Y-%m-%d").replace(tzinfo=UTC)

        if "dateTime" in dt_data:
            try:
                return datetime.fromisoformat(dt_data["dateTime"].replace("Z", "+00:00"))
            except ValueError:
                return None

        return None

    @property
    def join_link(self) -> str | None:
        """Meet link when conferencing is attached, else the event page."""
        return self.hangout_link or self.html_link


class CalendarSyncResult(BaseModel):
    """Typed outcome of a calendar write; callers decide whether it blocks."""

    status: SyncStatus
    event_id: str | None = None
    join_link: str | None = None
    message: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == "synced"

    @classmethod
    def synced(cls, event: CalendarEvent) -> "CalendarSyncResult":
        return cls(status="synced", event_id=event.id, join_link=event.join_link)

    @classmethod
    def failed(cls, status: SyncStatus, message: str) -> "CalendarSyncResult":
        return cls(status=status, message=message)
