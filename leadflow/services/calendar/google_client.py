"""
Low-level Google Calendar v3 client.
Writes meeting events to an agent's primary calendar; attendees are
notified of every change (sendUpdates=all).
"""

import asyncio

import httpx

from leadflow.infrastructure.observability.logging import get_logger
from leadflow.models.domain.calendar_domain import CalendarEvent, EventSpec

logger = get_logger(__name__)

CALENDAR_API_BASE_URL = "https://www.googleapis.com/calendar/v3"
CALENDAR_PRIMARY = "primary"

REQUEST_TIMEOUT = 30  # seconds
MAX_RETRIES = 3
BACKOFF_FACTOR = 2
RETRY_STATUS_CODES = {429, 500, 502, 503, 504}


class GoogleCalendarError(Exception):
    """Custom exception for Google Calendar API errors."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        status_code: int | None = None,
        response_data: dict | None = None,
    ):
        super().__init__(message)
        self.error_code = error_code
        self.status_code = status_code
        self.response_data = response_data or {}


class GoogleCalendarService:
    """Event insert/update/delete against the Calendar API with retry and backoff."""

    def __init__(self):
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(REQUEST_TIMEOUT),
                limits=httpx.Limits(max_keepalive_connections=20, max_connections=50),
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _request_with_retry(self, method: str, url: str, **kwargs) -> httpx.Response:
        client = self._get_client()
        for attempt in range(1, MAX_RETRIES + 1):
            try:
                response = await client.request(method, url, **kwargs)
                if response.status_code in RETRY_STATUS_CODES and attempt < MAX_RETRIES:
                    backoff = BACKOFF_FACTOR * (2 ** (attempt - 1))
                    logger.debug(
                        "Calendar API retrying request",
                        attempt=attempt,
                        status_code=response.status_code,
                        backoff_seconds=backoff,
                    )
                    await asyncio.sleep(backoff)
                    continue
                return response
            except httpx.RequestError as e:
                if attempt >= MAX_RETRIES:
                    raise
                backoff = BACKOFF_FACTOR * (2 ** (attempt - 1))
                logger.debug(
                    "Calendar API request error, retrying",
                    attempt=attempt,
                    error=str(e),
                    backoff_seconds=backoff,
                )
                await asyncio.sleep(backoff)
        raise GoogleCalendarError("Calendar API retry loop exhausted")

    def _get_auth_headers(self, access_token: str) -> dict:
        return {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def _handle_api_response(self, response: httpx.Response, operation: str) -> dict:
        """
        Parse a Calendar API response.

        Raises:
            GoogleCalendarError: carrying the HTTP status and Google's message
        """
        if response.is_success:
            try:
                return response.json() if response.text else {}
            except ValueError as e:
                logger.error(f"Failed to parse Calendar API {operation} response", error=str(e))
                raise GoogleCalendarError(
                    f"Invalid response format: {e}", status_code=response.status_code
                ) from e

        try:
            error_data = response.json() if response.text else {}
        except ValueError:
            logger.error(
                f"Calendar API {operation} failed with non-JSON response",
                status_code=response.status_code,
                response_text=response.text[:200] if response.text else "",
            )
            raise GoogleCalendarError(
                f"Calendar API error (HTTP {response.status_code})",
                status_code=response.status_code,
            ) from None

        error_info = error_data.get("error", {}) if isinstance(error_data, dict) else {}
        error_code = str(error_info.get("code", response.status_code))
        error_message = error_info.get("message", "Unknown Calendar API error")

        logger.error(
            f"Calendar API {operation} failed",
            status_code=response.status_code,
            error_code=error_code,
            error_message=error_message,
        )
        raise GoogleCalendarError(
            error_message,
            error_code=error_code,
            status_code=response.status_code,
            response_data=error_data,
        )

    async def insert_event(
        self, access_token: str, spec: EventSpec, calendar_id: str = CALENDAR_PRIMARY
    ) -> CalendarEvent:
        """Create an event; raises GoogleCalendarError on failure."""
        url = f"{CALENDAR_API_BASE_URL}/calendars/{calendar_id}/events"
        logger.info(
            "Creating calendar event",
            summary=spec.summary,
            start_time=spec.start_at.isoformat(),
            attendee_count=len(spec.attendees),
        )
        response = await self._request_with_retry(
            "POST",
            url,
            headers=self._get_auth_headers(access_token),
            params={"sendUpdates": "all"},
            json=spec.to_google_body(),
        )
        event = CalendarEvent(self._handle_api_response(response, "insert_event"))
        logger.info("Event created successfully", event_id=event.id)
        return event

    async def update_event(
        self,
        access_token: str,
        event_id: str,
        spec: EventSpec,
        calendar_id: str = CALENDAR_PRIMARY,
    ) -> CalendarEvent:
        """Replace an event with the full EventSpec; raises GoogleCalendarError on failure."""
        url = f"{CALENDAR_API_BASE_URL}/calendars/{calendar_id}/events/{event_id}"
        logger.info("Updating calendar event", event_id=event_id, start_time=spec.start_at.isoformat())
        response = await self._request_with_retry(
            "PUT",
            url,
            headers=self._get_auth_headers(access_token),
            params={"sendUpdates": "all"},
            json=spec.to_google_body(),
        )
        event = CalendarEvent(self._handle_api_response(response, "update_event"))
        logger.info("Event updated successfully", event_id=event.id)
        return event

    async def delete_event(
        self, access_token: str, event_id: str, calendar_id: str = CALENDAR_PRIMARY
    ) -> bool:
        """
        Delete an event. An event that is already gone counts as deleted.

        Raises:
            GoogleCalendarError: If Google refuses the deletion
        """
        url = f"{CALENDAR_API_BASE_URL}/calendars/{calendar_id}/events/{event_id}"
        logger.info("Deleting calendar event", event_id=event_id)

        response = await self._request_with_retry(
            "DELETE",
            url,
            headers=self._get_auth_headers(access_token),
            params={"sendUpdates": "all"},
        )
        if response.status_code in (200, 204, 404, 410):
            logger.info("Event deleted", event_id=event_id, status_code=response.status_code)
            return True

        self._handle_api_response(response, "delete_event")
        return True


google_calendar_service = GoogleCalendarService()
