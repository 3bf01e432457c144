"""
Google Calendar Service
Handles calendar event creation, updates, deletion and busy-window queries
"""

import logging
from datetime import date, datetime, timedelta
from typing import Any, Optional

import httpx

from ..config import (
    BUSINESS_TIMEZONE,
    GOOGLE_CALENDAR_ID,
    GOOGLE_CLIENT_ID,
    GOOGLE_CLIENT_SECRET,
    GOOGLE_REFRESH_TOKEN,
    REMOTE_TIMEOUT_SECONDS,
)
from ..exceptions import ExternalServiceError
from ..utils import dates

logger = logging.getLogger(__name__)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_CALENDAR_API = "https://www.googleapis.com/calendar/v3"


class GoogleCalendarService:
    """Calendar Service client bound to the provider's single calendar"""

    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        refresh_token: Optional[str] = None,
        calendar_id: Optional[str] = None,
        timeout: float = REMOTE_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.client_id = client_id or GOOGLE_CLIENT_ID
        self.client_secret = client_secret or GOOGLE_CLIENT_SECRET
        self.refresh_token = refresh_token or GOOGLE_REFRESH_TOKEN
        self.calendar_id = calendar_id or GOOGLE_CALENDAR_ID
        self.timeout = timeout
        self.transport = transport
        self._access_token: Optional[str] = None
        self._token_expires_at: Optional[datetime] = None

    async def _get_access_token(self, client: httpx.AsyncClient) -> str:
        """Get a valid access token, refreshing if it expires within 5 minutes"""
        if self._access_token and self._token_expires_at > datetime.utcnow() + timedelta(minutes=5):
            return self._access_token

        logger.info("🔄 Google Calendar token expired, refreshing...")
        response = await client.post(
            GOOGLE_TOKEN_URL,
            data={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "refresh_token": self.refresh_token,
                "grant_type": "refresh_token",
            },
        )
        if response.status_code != 200:
            logger.error(f"❌ Token refresh failed: {response.text}")
            raise ExternalServiceError("google_calendar", "token refresh failed", response.status_code)

        tokens = response.json()
        access_token = tokens.get("access_token")
        if not access_token:
            raise ExternalServiceError("google_calendar", "no access token in refresh response")

        self._access_token = access_token
        self._token_expires_at = datetime.utcnow() + timedelta(seconds=tokens.get("expires_in", 3600))
        logger.info("✅ Google Calendar token refreshed successfully")
        return access_token

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[dict] = None,
        params: Optional[dict] = None,
        allowed_statuses: tuple = (200,),
    ) -> httpx.Response:
        url = f"{GOOGLE_CALENDAR_API}/calendars/{self.calendar_id}{path}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                token = await self._get_access_token(client)
                response = await client.request(
                    method,
                    url,
                    json=json,
                    params=params,
                    headers={"Authorization": f"Bearer {token}"},
                )
        except httpx.HTTPError as e:
            logger.error(f"❌ Google Calendar request failed: {e}")
            raise ExternalServiceError("google_calendar", str(e)) from e

        if response.status_code not in allowed_statuses:
            logger.error(f"❌ Google Calendar API error {response.status_code}: {response.text}")
            raise ExternalServiceError("google_calendar", response.text, response.status_code)
        return response

    def _event_body(
        self,
        summary: Optional[str],
        start: Optional[datetime],
        end: Optional[datetime],
        description: Optional[str],
    ) -> dict:
        body: dict[str, Any] = {}
        if summary is not None:
            body["summary"] = summary
        if description is not None:
            body["description"] = description
        if start is not None:
            body["start"] = {"dateTime": dates.to_rfc3339(start), "timeZone": BUSINESS_TIMEZONE}
        if end is not None:
            body["end"] = {"dateTime": dates.to_rfc3339(end), "timeZone": BUSINESS_TIMEZONE}
        return body

    async def create_event(
        self, summary: str, start: datetime, end: datetime, description: Optional[str] = None
    ) -> str:
        """Create an event and return its Google Calendar id"""
        body = self._event_body(summary, start, end, description)
        body["reminders"] = {"useDefault": False, "overrides": [{"method": "popup", "minutes": 30}]}
        response = await self._request("POST", "/events", json=body)
        event_id = response.json()["id"]
        logger.info(f"✅ Google Calendar event created: {event_id}")
        return event_id

    async def update_event(
        self,
        event_id: str,
        summary: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        description: Optional[str] = None,
    ) -> None:
        body = self._event_body(summary, start, end, description)
        await self._request("PATCH", f"/events/{event_id}", json=body)
        logger.info(f"✅ Google Calendar event updated: {event_id}")

    async def delete_event(self, event_id: str) -> None:
        # Already-deleted events answer 404/410; the end state is the same
        await self._request("DELETE", f"/events/{event_id}", allowed_statuses=(200, 204, 404, 410))
        logger.info(f"✅ Google Calendar event deleted: {event_id}")

    async def list_events(self, range_start: datetime, range_end: datetime) -> list[dict]:
        """
        List events overlapping [range_start, range_end).

        Returns dicts with id, summary, start and end as naive business-time datetimes.
        Cancelled and transparent (free) events are skipped; all-day events span their dates.
        """
        params = {
            "timeMin": dates.to_rfc3339(range_start),
            "timeMax": dates.to_rfc3339(range_end),
            "singleEvents": "true",
            "orderBy": "startTime",
            "timeZone": BUSINESS_TIMEZONE,
            "maxResults": 250,
        }

        events = []
        while True:
            data = (await self._request("GET", "/events", params=params)).json()
            for item in data.get("items", []):
                if item.get("status") == "cancelled" or item.get("transparency") == "transparent":
                    continue
                start = self._parse_event_time(item.get("start") or {})
                end = self._parse_event_time(item.get("end") or {})
                if start is None or end is None:
                    continue
                events.append({"id": item.get("id"), "summary": item.get("summary"), "start": start, "end": end})

            page_token = data.get("nextPageToken")
            if not page_token:
                return events
            params = {**params, "pageToken": page_token}

    @staticmethod
    def _parse_event_time(value: dict) -> Optional[datetime]:
        if value.get("dateTime"):
            return dates.parse_rfc3339(value["dateTime"])
        if value.get("date"):
            day = date.fromisoformat(value["date"])
            return datetime(day.year, day.month, day.day)
        return None

    async def busy_windows(self, day: date) -> list[tuple[datetime, datetime]]:
        """Busy intervals on the given business-time date"""
        day_start = datetime(day.year, day.month, day.day)
        events = await self.list_events(day_start, day_start + timedelta(days=1))
        return [(event["start"], event["end"]) for event in events]


# Global instance
google_calendar_service = GoogleCalendarService()
