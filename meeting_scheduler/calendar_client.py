"""Google Calendar adapter: busy times, event creation and upcoming events.

Every public method degrades instead of raising. A missing or
unrefreshable credential, an HTTP error, a malformed payload or a timeout
is logged and reported as "no busy time", "no event" or "no events".
"""

import asyncio
import logging
import uuid
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional
from zoneinfo import ZoneInfo

import httplib2
from google.oauth2.credentials import Credentials
from google_auth_httplib2 import AuthorizedHttp
from googleapiclient.discovery import build

from meeting_scheduler.config import ServerConfig
from meeting_scheduler.db.types import DatabaseInterface
from meeting_scheduler.engine.oauth2 import (
    CALENDAR_SCOPES,
    GOOGLE_TOKEN_URI,
    ensure_fresh_tokens,
)
from meeting_scheduler.errors import ExternalIntegrationDegraded
from meeting_scheduler.models import BusyInterval, ExternalEvent, StoredTokens

logger = logging.getLogger(__name__)

EMAIL_REMINDER_MINUTES = 24 * 60
POPUP_REMINDER_MINUTES = 30
CALENDAR_WORKERS = 4


def parse_instant(value: str, tz: ZoneInfo) -> datetime:
    """Parse an RFC 3339 timestamp. Naive values are read in `tz`."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz)
    return parsed


def _meeting_link(event: Dict[str, Any]) -> str:
    if event.get("hangoutLink"):
        return event["hangoutLink"]
    entry_points = (event.get("conferenceData") or {}).get("entryPoints") or []
    if entry_points:
        return entry_points[0].get("uri", "")
    return ""


class GoogleCalendarAdapter:
    """Per-organizer access to Google Calendar v3.

    Credentials are read from the store on every call and refreshed there
    when close to expiry; nothing is cached on the adapter. Google calls run
    on the adapter's own worker pool, apart from the default executor that
    serves store access.
    """

    def __init__(
        self,
        database: DatabaseInterface,
        config: ServerConfig,
        max_workers: int = CALENDAR_WORKERS,
    ):
        self.database = database
        self.config = config
        self.tz = config.tzinfo
        self.timeout = config.scheduling.external_calendar_timeout_seconds
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="google-calendar"
        )

    def close(self) -> None:
        self._executor.shutdown(wait=False)

    def _build_service(self, tokens: StoredTokens) -> Any:
        oauth = self.config.google
        creds = Credentials(
            token=tokens.access_token,
            refresh_token=tokens.refresh_token or None,
            token_uri=GOOGLE_TOKEN_URI,
            client_id=oauth.client_id if oauth else None,
            client_secret=oauth.client_secret if oauth else None,
            scopes=CALENDAR_SCOPES,
        )
        http = AuthorizedHttp(creds, http=httplib2.Http(timeout=self.timeout))
        return build("calendar", "v3", http=http, cache_discovery=False)

    def _service_for(self, organizer_id: int) -> Any:
        tokens = ensure_fresh_tokens(
            self.database,
            self.config.google,
            organizer_id,
            margin_seconds=self.config.scheduling.token_refresh_margin_seconds,
        )
        if not tokens:
            raise ExternalIntegrationDegraded(
                f"No usable calendar credential for organizer {organizer_id}"
            )
        return self._build_service(tokens)

    async def _run(self, func: Callable[..., Any], *args: Any) -> Any:
        """Run a blocking Google call on the adapter pool under the configured timeout."""
        loop = asyncio.get_running_loop()
        return await asyncio.wait_for(
            loop.run_in_executor(self._executor, func, *args), self.timeout
        )

    async def is_connected(self, organizer_id: int) -> bool:
        tokens = await asyncio.to_thread(self.database.get_calendar_tokens, organizer_id)
        return tokens is not None

    async def disconnect(self, organizer_id: int) -> None:
        await asyncio.to_thread(self.database.delete_calendar_tokens, organizer_id)
        logger.info(f"Disconnected Google Calendar for organizer {organizer_id}")

    # Busy times

    def _query_busy(
        self, organizer_id: int, date_from: str, date_to: str
    ) -> List[BusyInterval]:
        service = self._service_for(organizer_id)

        time_min = datetime.combine(date.fromisoformat(date_from), time.min, tzinfo=self.tz)
        time_max = datetime.combine(
            date.fromisoformat(date_to) + timedelta(days=1), time.min, tzinfo=self.tz
        )

        calendars = service.calendarList().list().execute().get("items", [])
        calendar_ids = [c["id"] for c in calendars if c.get("id")] or ["primary"]

        body = {
            "timeMin": time_min.isoformat(),
            "timeMax": time_max.isoformat(),
            "timeZone": self.config.timezone,
            "items": [{"id": calendar_id} for calendar_id in calendar_ids],
        }
        result = service.freebusy().query(body=body).execute()

        busy: List[BusyInterval] = []
        for calendar_id, data in result.get("calendars", {}).items():
            if data.get("errors"):
                logger.warning(f"Freebusy errors for calendar {calendar_id}: {data['errors']}")
            for period in data.get("busy", []):
                busy.append(
                    BusyInterval(
                        start=parse_instant(period["start"], self.tz),
                        end=parse_instant(period["end"], self.tz),
                    )
                )
        return busy

    async def fetch_busy(
        self, organizer_id: int, date_from: str, date_to: str
    ) -> List[BusyInterval]:
        """Busy intervals across all of the organizer's calendars, both dates inclusive."""
        try:
            busy = await self._run(self._query_busy, organizer_id, date_from, date_to)
        except asyncio.TimeoutError:
            logger.warning(
                f"Freebusy for organizer {organizer_id} timed out after {self.timeout}s"
            )
            return []
        except ExternalIntegrationDegraded as e:
            logger.warning(f"Skipping external busy times: {e}")
            return []
        except Exception as e:
            logger.error(f"Failed to fetch busy times for organizer {organizer_id}: {e}")
            return []

        logger.debug(
            f"Fetched {len(busy)} busy intervals for organizer {organizer_id} "
            f"between {date_from} and {date_to}"
        )
        return busy

    # Event creation

    def _insert_event(
        self,
        organizer_id: int,
        attendee_name: str,
        attendee_email: str,
        booking_date: str,
        booking_time: str,
        duration_minutes: int,
        organizer_name: str,
        organizer_email: str,
        attendee_phone: Optional[str],
    ) -> ExternalEvent:
        service = self._service_for(organizer_id)

        start = datetime.combine(
            date.fromisoformat(booking_date),
            datetime.strptime(booking_time, "%H:%M").time(),
            tzinfo=self.tz,
        )
        end = start + timedelta(minutes=duration_minutes)

        description = f"Meeting booked by {attendee_name} ({attendee_email})"
        if attendee_phone:
            description += f"\nPhone: {attendee_phone}"

        event_data = {
            "summary": f"Meeting: {organizer_name} & {attendee_name}",
            "description": description,
            "start": {"dateTime": start.isoformat(), "timeZone": self.config.timezone},
            "end": {"dateTime": end.isoformat(), "timeZone": self.config.timezone},
            "attendees": [
                {"email": attendee_email, "displayName": attendee_name},
                {"email": organizer_email, "displayName": organizer_name, "organizer": True},
            ],
            "conferenceData": {
                "createRequest": {
                    "requestId": f"booking-{uuid.uuid4().hex}",
                    "conferenceSolutionKey": {"type": "hangoutsMeet"},
                }
            },
            "reminders": {
                "useDefault": False,
                "overrides": [
                    {"method": "email", "minutes": EMAIL_REMINDER_MINUTES},
                    {"method": "popup", "minutes": POPUP_REMINDER_MINUTES},
                ],
            },
        }

        event = (
            service.events()
            .insert(
                calendarId="primary",
                body=event_data,
                conferenceDataVersion=1,
                sendUpdates="all",
            )
            .execute()
        )

        event_id = event.get("id")
        if not event_id:
            raise ExternalIntegrationDegraded("Calendar returned an event without an id")

        logger.info(f"Created event: {event.get('htmlLink')}")
        return ExternalEvent(event_id=event_id, meeting_link=_meeting_link(event))

    async def create_event(
        self,
        organizer_id: int,
        attendee_name: str,
        attendee_email: str,
        booking_date: str,
        booking_time: str,
        duration_minutes: int,
        organizer_name: str,
        organizer_email: str,
        attendee_phone: Optional[str] = None,
    ) -> Optional[ExternalEvent]:
        """Create the meeting with a Google Meet link. None when anything fails."""
        try:
            return await self._run(
                self._insert_event,
                organizer_id,
                attendee_name,
                attendee_email,
                booking_date,
                booking_time,
                duration_minutes,
                organizer_name,
                organizer_email,
                attendee_phone,
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"Event creation for organizer {organizer_id} timed out after {self.timeout}s"
            )
        except Exception as e:
            logger.error(f"Failed to create calendar event for organizer {organizer_id}: {e}")
        return None

    # Upcoming events

    def _list_upcoming(self, organizer_id: int, max_results: int) -> List[Dict[str, Any]]:
        service = self._service_for(organizer_id)
        now = datetime.now(timezone.utc).isoformat()

        events_result = (
            service.events()
            .list(
                calendarId="primary",
                timeMin=now,
                maxResults=max_results,
                singleEvents=True,
                orderBy="startTime",
            )
            .execute()
        )

        upcoming = []
        for event in events_result.get("items", []):
            start = event.get("start") or {}
            end = event.get("end") or {}
            upcoming.append(
                {
                    "id": event.get("id"),
                    "summary": event.get("summary") or "(no title)",
                    "start": start.get("dateTime") or start.get("date"),
                    "end": end.get("dateTime") or end.get("date"),
                    "attendees": [
                        a.get("email") for a in event.get("attendees", []) if a.get("email")
                    ],
                    "meeting_link": _meeting_link(event) or None,
                    "html_link": event.get("htmlLink"),
                }
            )
        return upcoming

    async def list_upcoming_events(
        self, organizer_id: int, max_results: int = 10
    ) -> List[Dict[str, Any]]:
        try:
            return await self._run(self._list_upcoming, organizer_id, max_results)
        except asyncio.TimeoutError:
            logger.warning(f"Listing events for organizer {organizer_id} timed out")
        except Exception as e:
            logger.error(f"Failed to list upcoming events for organizer {organizer_id}: {e}")
        return []
