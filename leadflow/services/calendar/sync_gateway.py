"""
Calendar sync gateway.

Turns Calendar API outcomes into typed CalendarSyncResult values so that
callers decide, per operation, whether a failed sync blocks the request.
"""

import httpx

from leadflow.infrastructure.observability.logging import get_logger
from leadflow.models.domain.calendar_domain import CalendarSyncResult, EventSpec
from leadflow.services.calendar.google_client import (
    GoogleCalendarError,
    GoogleCalendarService,
    google_calendar_service,
)

logger = get_logger(__name__)

INSUFFICIENT_SCOPES_MARKER = "insufficient authentication scopes"


def classify_calendar_error(error: GoogleCalendarError) -> CalendarSyncResult:
    """Map a Calendar API failure to a sync status."""
    message = str(error)
    if error.status_code == 403 or INSUFFICIENT_SCOPES_MARKER in message.lower():
        return CalendarSyncResult.failed(
            "insufficient_scopes",
            "Google Calendar permission is missing. Reconnect Google Calendar and allow calendar access.",
        )
    if error.status_code == 401:
        return CalendarSyncResult.failed(
            "not_connected", "Google Calendar authorization expired. Reconnect Google Calendar."
        )
    return CalendarSyncResult.failed("api_error", f"Google Calendar error: {message}")


class CalendarSyncGateway:
    """Upserts and deletes meeting events on an agent's primary calendar."""

    def __init__(self, client: GoogleCalendarService | None = None):
        self.client = client or google_calendar_service

    async def upsert_event(self, access_token: str | None, spec: EventSpec) -> CalendarSyncResult:
        """Insert the event, or fully update it when spec.event_id is set. Never raises."""
        if not access_token:
            return CalendarSyncResult.failed(
                "not_connected", "Google Calendar is not connected. Connect it to sync meetings."
            )

        operation = "update" if spec.event_id else "insert"
        try:
            if spec.event_id:
                event = await self.client.update_event(access_token, spec.event_id, spec)
            else:
                event = await self.client.insert_event(access_token, spec)
        except GoogleCalendarError as e:
            result = classify_calendar_error(e)
            logger.warning(
                "Calendar sync failed",
                operation=operation,
                event_id=spec.event_id,
                status=result.status,
                status_code=e.status_code,
                error=str(e),
            )
            return result
        except httpx.RequestError as e:
            logger.warning(
                "Calendar sync network failure",
                operation=operation,
                event_id=spec.event_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return CalendarSyncResult.failed("api_error", f"Google Calendar unreachable: {e}")

        return CalendarSyncResult.synced(event)

    async def delete_event(self, access_token: str | None, event_id: str) -> bool:
        """Delete remotely; failures are logged and reported as False."""
        if not access_token:
            logger.warning("Skipping remote delete, calendar not connected", event_id=event_id)
            return False

        try:
            return await self.client.delete_event(access_token, event_id)
        except (GoogleCalendarError, httpx.RequestError) as e:
            logger.warning(
                "Remote event delete failed",
                event_id=event_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False


calendar_sync_gateway = CalendarSyncGateway()
