# blockersync/google_client.py

import logging
from datetime import date, datetime
from typing import Callable, Dict, List, Optional

from google.auth.exceptions import RefreshError
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from .errors import AuthExpired, NotFoundError, ProviderError, RemoteWriteFailed
from .models import STATUS_CONFIRMED, Event

logger = logging.getLogger(__name__)

# Google answers 410 Gone for events that were deleted.
NOT_FOUND_STATUSES = (404, 410)
UNAUTHORIZED = 401


def _status(exc: HttpError) -> int:
    return int(getattr(exc.resp, "status", 0) or 0)


def _rfc3339(value: datetime) -> str:
    # Floating (naive) times are wall-clock times of the machine running the sync.
    if value.tzinfo is None:
        value = value.astimezone()
    return value.isoformat()


def parse_google_time(value: Optional[Dict]):
    """Turn an event's start/end object into a datetime (timed) or date (all-day)."""
    if not value:
        return None
    if "dateTime" in value:
        return datetime.fromisoformat(value["dateTime"].replace("Z", "+00:00"))
    if "date" in value:
        return date.fromisoformat(value["date"])
    return None


def google_time(value) -> Dict:
    if isinstance(value, datetime):
        return {"dateTime": _rfc3339(value)}
    return {"date": value.isoformat()}


def event_from_google(item: Dict) -> Event:
    return Event(
        id=item["id"],
        summary=item.get("summary", ""),
        description=item.get("description", ""),
        start=parse_google_time(item.get("start")),
        end=parse_google_time(item.get("end")),
        status=item.get("status", STATUS_CONFIRMED),
        revision=item.get("updated") or item.get("etag", ""),
        kind=item.get("eventType", "default"),
    )


class GoogleProvider:
    """
    CalendarProvider backed by the Google Calendar v3 API.

    When a request fails with a credential problem, ``reauthenticate`` is
    called for fresh credentials and the request is sent once more.
    """

    def __init__(
        self,
        credentials=None,
        reauthenticate: Optional[Callable] = None,
        disable_reminders: bool = False,
        visibility: str = "default",
        service=None,
    ):
        self.credentials = credentials
        self._reauthenticate = reauthenticate
        self.disable_reminders = disable_reminders
        self.visibility = visibility
        self.service = service if service is not None else self._build()

    def _build(self):
        return build("calendar", "v3", credentials=self.credentials, cache_discovery=False)

    def _run(self, request_fn):
        try:
            return request_fn(self.service).execute()
        except RefreshError as e:
            cause = e
        except HttpError as e:
            if _status(e) != UNAUTHORIZED:
                raise
            cause = e
        if self._reauthenticate is None:
            raise AuthExpired(f"Google credentials rejected: {cause}") from cause
        logger.warning("Google credentials rejected (%s), re-authenticating", cause)
        self.credentials = self._reauthenticate()
        self.service = self._build()
        return request_fn(self.service).execute()

    def _execute(self, request_fn, action: str, write: bool = False):
        try:
            return self._run(request_fn)
        except RefreshError as e:
            raise AuthExpired(f"{action}: {e}") from e
        except HttpError as e:
            if _status(e) in NOT_FOUND_STATUSES:
                raise NotFoundError(f"{action}: {e}") from e
            if write:
                raise RemoteWriteFailed(f"{action}: {e}") from e
            raise ProviderError(f"{action}: {e}") from e

    def _body(self, event: Event) -> Dict:
        body = {
            "summary": event.summary,
            "description": event.description or "",
            "start": google_time(event.start),
            "end": google_time(event.resolved_end()),
            "status": event.status or STATUS_CONFIRMED,
            "transparency": "opaque",
        }
        if self.visibility and self.visibility != "default":
            body["visibility"] = self.visibility
        if self.disable_reminders:
            body["reminders"] = {"useDefault": False, "overrides": []}
        return body

    def get_calendar(self, calendar_id: str) -> None:
        self._execute(
            lambda s: s.calendarList().get(calendarId=calendar_id),
            f"get calendar {calendar_id}",
        )

    def list_events(self, calendar_id: str, time_min: datetime, time_max: datetime) -> List[Event]:
        events = []
        page_token = None
        while True:
            resp = self._execute(
                lambda s: s.events().list(
                    calendarId=calendar_id,
                    timeMin=_rfc3339(time_min),
                    timeMax=_rfc3339(time_max),
                    singleEvents=True,
                    orderBy="startTime",
                    pageToken=page_token,
                ),
                f"list events of {calendar_id}",
            )
            events.extend(event_from_google(item) for item in resp.get("items", []))
            page_token = resp.get("nextPageToken")
            if not page_token:
                break
        logger.debug("Listed %d events from %s", len(events), calendar_id)
        return events

    def get_event(self, calendar_id: str, event_id: str) -> Event:
        item = self._execute(
            lambda s: s.events().get(calendarId=calendar_id, eventId=event_id),
            f"get event {event_id}",
        )
        return event_from_google(item)

    def add_event(self, calendar_id: str, event: Event) -> str:
        created = self._execute(
            lambda s: s.events().insert(calendarId=calendar_id, body=self._body(event)),
            f"create event on {calendar_id}",
            write=True,
        )
        return created["id"]

    def update_event(self, calendar_id: str, event_id: str, event: Event) -> str:
        try:
            self._execute(
                lambda s: s.events().update(calendarId=calendar_id, eventId=event_id, body=self._body(event)),
                f"update event {event_id}",
                write=True,
            )
        except NotFoundError:
            logger.info("Event %s is gone from %s, creating it again", event_id, calendar_id)
            return self.add_event(calendar_id, event)
        return event_id

    def delete_event(self, calendar_id: str, event_id: str) -> None:
        self._execute(
            lambda s: s.events().delete(calendarId=calendar_id, eventId=event_id),
            f"delete event {event_id}",
            write=True,
        )
