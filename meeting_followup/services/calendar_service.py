"""
Service for scheduling due-date reminders in Google Calendar.
"""
from typing import Optional

import httpx
from aiolimiter import AsyncLimiter

from meeting_followup.exceptions import PermanentIntegrationError
from meeting_followup.logging_config import get_logger
from meeting_followup.services.base import BaseHTTPService
from meeting_followup.services.contracts import CalendarCredential, CalendarEvent

logger = get_logger(__name__)


class GoogleCalendarService(BaseHTTPService):
    """Inserts events into the user's primary calendar."""

    integration = "calendar"

    def __init__(
        self,
        api_base: str = "https://www.googleapis.com/calendar/v3",
        timeout: float = 15.0,
        limiter: Optional[AsyncLimiter] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(timeout, limiter=limiter, transport=transport)
        self.api_base = api_base.rstrip("/")

    async def create_event(self, credential: CalendarCredential, event: CalendarEvent) -> str:
        """Create the event and return its id."""
        body = {
            "summary": event.title,
            "description": event.description,
            "start": {"dateTime": event.start.isoformat(), "timeZone": event.timezone},
            "end": {"dateTime": event.end.isoformat(), "timeZone": event.timezone},
            "reminders": {
                "useDefault": False,
                "overrides": [
                    {"method": "email", "minutes": 24 * 60},
                    {"method": "popup", "minutes": 30},
                ],
            },
        }
        response = await self._request(
            "POST",
            f"{self.api_base}/calendars/primary/events",
            "insert_event",
            headers={"Authorization": f"Bearer {credential.access_token}"},
            json=body,
        )
        data = self._json(response, "insert_event")
        event_id = data.get("id") if isinstance(data, dict) else None
        if not event_id:
            raise PermanentIntegrationError("Calendar response has no event id", integration=self.integration)

        logger.info("calendar_event_created", event_id=event_id, start=event.start.isoformat())
        return event_id
