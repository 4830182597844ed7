# leadflow/models/api/meeting_request.py
"""
Meeting API request models.
Dates are YYYY-MM-DD and times are 12-hour labels such as "9:30 am".
"""

import re
from datetime import date, datetime, time
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator, model_validator

from leadflow.config import settings

DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
TIME_LABEL_PATTERN = re.compile(r"^(\d{1,2}):(\d{2})\s*(AM|PM)$", re.IGNORECASE)


def normalize_time_label(label: str) -> str:
    """Upper-case and collapse whitespace: " 9:05  pm " -> "9:05 PM"."""
    return re.sub(r"\s+", " ", label.strip().upper())


def parse_12_hour_time(label: str) -> time:
    """
    Parse "HH:MM AM/PM" into a time.

    Raises:
        ValueError: If the label is not a valid 12-hour time
    """
    match = TIME_LABEL_PATTERN.match(normalize_time_label(label))
    if not match:
        raise ValueError("Time values must be in the format HH:MM AM/PM")

    hours, minutes, period = int(match.group(1)), int(match.group(2)), match.group(3).upper()
    if hours < 1 or hours > 12 or minutes > 59:
        raise ValueError("Time values must be in the format HH:MM AM/PM")

    if period == "AM":
        hours = 0 if hours == 12 else hours
    elif hours != 12:
        hours += 12
    return time(hours, minutes)


def parse_meeting_date(value: str) -> date:
    if not DATE_PATTERN.match(value.strip()):
        raise ValueError("A valid meeting date (YYYY-MM-DD) is required")
    return date.fromisoformat(value.strip())


class MeetingScheduleFields(BaseModel):
    """Date, start/end labels and time zone shared by create and reschedule."""

    date: str = Field(..., description="Meeting date (YYYY-MM-DD)")
    start_time: str = Field(..., description="Start time, e.g. 10:00 AM")
    end_time: str = Field(..., description="End time, e.g. 10:30 AM")
    time_zone: str | None = Field(None, description="IANA time zone (default from settings)")

    @field_validator("date")
    @classmethod
    def _valid_date(cls, value: str) -> str:
        parse_meeting_date(value)
        return value.strip()

    @field_validator("start_time", "end_time")
    @classmethod
    def _valid_time(cls, value: str) -> str:
        parse_12_hour_time(value)
        return normalize_time_label(value)

    @field_validator("time_zone")
    @classmethod
    def _valid_time_zone(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        try:
            ZoneInfo(value.strip())
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown time zone: {value}") from e
        return value.strip()

    @model_validator(mode="after")
    def _end_after_start(self):
        if parse_12_hour_time(self.end_time) <= parse_12_hour_time(self.start_time):
            raise ValueError("End time must be later than start time")
        return self

    @property
    def start_at(self) -> datetime:
        return datetime.combine(parse_meeting_date(self.date), parse_12_hour_time(self.start_time))

    @property
    def end_at(self) -> datetime:
        return datetime.combine(parse_meeting_date(self.date), parse_12_hour_time(self.end_time))

    @property
    def resolved_time_zone(self) -> str:
        return self.time_zone or settings.MEETINGS_TIMEZONE


class CreateMeetingRequest(MeetingScheduleFields):
    """Request for scheduling a meeting with a lead."""

    title: str = Field(..., min_length=1, max_length=200, description="Meeting title")
    description: str = Field(default="", max_length=2000, description="Meeting description")
    location: str = Field(default="", max_length=500, description="Meeting location")
    attendees: list[str] | None = Field(default=None, description="Extra attendee emails")

    @field_validator("title")
    @classmethod
    def _strip_title(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Meeting title is required")
        return value.strip()


class RescheduleMeetingRequest(MeetingScheduleFields):
    """Request for moving a meeting; other fields are optional edits."""

    title: str | None = Field(None, min_length=1, max_length=200, description="New title")
    description: str | None = Field(None, max_length=2000, description="New description")
    location: str | None = Field(None, max_length=500, description="New location")
