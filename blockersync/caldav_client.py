# blockersync/caldav_client.py

import logging
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple
from urllib.parse import urlparse

import recurring_ical_events
from caldav import DAVClient as _DAVClient
from caldav import Event as _DAVEvent
from caldav.lib import error
from icalendar import Calendar as ICalendar, Event as IEvent

from .errors import AuthRequired, NotFoundError, ProviderError, RemoteWriteFailed
from .models import STATUS_CONFIRMED, Event

logger = logging.getLogger(__name__)

PRODID = "-//blockersync//EN"
UID_PREFIX = "blockersync-"
# Expanded occurrences of a recurring series share one UID, so their ids
# carry the RECURRENCE-ID as well: "<uid>__<stamp>".
INSTANCE_SEPARATOR = "__"


def event_path(calendar_url: str, event_id: str) -> str:
    return f"{calendar_url.rstrip('/')}/{event_id}.ics"


def instance_stamp(value) -> str:
    """Render a DTSTART/RECURRENCE-ID value as a compact, tz-normalised stamp."""
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.astimezone(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        return value.strftime("%Y%m%dT%H%M%S")
    return value.strftime("%Y%m%d")


def parse_instance_stamp(stamp: str):
    if stamp.endswith("Z"):
        return datetime.strptime(stamp, "%Y%m%dT%H%M%SZ").replace(tzinfo=timezone.utc)
    if "T" in stamp:
        return datetime.strptime(stamp, "%Y%m%dT%H%M%S")
    return datetime.strptime(stamp, "%Y%m%d").date()


def split_event_id(event_id: str) -> Tuple[str, Optional[str]]:
    """
    :returns: (uid, instance stamp) for an occurrence id, (uid, None) otherwise.
    """
    uid, sep, stamp = event_id.rpartition(INSTANCE_SEPARATOR)
    if not sep or not uid:
        return event_id, None
    try:
        parse_instance_stamp(stamp)
    except ValueError:
        return event_id, None
    return uid, stamp


def _revision(comp) -> str:
    """
    Revision marker for a VEVENT: LAST-MODIFIED (or DTSTAMP if no
    LAST-MODIFIED), with SEQUENCE appended when present.
    """
    lm = comp.get("LAST-MODIFIED") or comp.get("DTSTAMP")
    marker = instance_stamp(lm.dt) if lm is not None else ""
    seq = comp.get("SEQUENCE")
    if seq is not None:
        marker = f"{marker}#{int(seq)}"
    return marker


def component_id(comp) -> str:
    uid = str(comp.get("UID", ""))
    rid = comp.get("RECURRENCE-ID")
    if rid is None:
        return uid
    return f"{uid}{INSTANCE_SEPARATOR}{instance_stamp(rid.dt)}"


def occurrence_id(comp) -> str:
    # Locally expanded occurrences may come back without a RECURRENCE-ID.
    rid = comp.get("RECURRENCE-ID") or comp.get("DTSTART")
    return f"{comp.get('UID', '')}{INSTANCE_SEPARATOR}{instance_stamp(rid.dt)}"


def event_from_component(comp, event_id: Optional[str] = None) -> Event:
    start = comp.get("DTSTART").dt
    if comp.get("DTEND") is not None:
        end = comp.get("DTEND").dt
    elif comp.get("DURATION") is not None:
        end = start + comp.get("DURATION").dt
    else:
        end = None
    return Event(
        id=event_id or component_id(comp),
        summary=str(comp.get("SUMMARY", "")),
        description=str(comp.get("DESCRIPTION", "")),
        start=start,
        end=end,
        status=str(comp.get("STATUS", STATUS_CONFIRMED)).lower(),
        revision=_revision(comp),
    )


def build_ical(uid: str, event: Event) -> bytes:
    """Serialize an Event as a single-VEVENT iCalendar object."""
    cal = ICalendar()
    cal.add("prodid", PRODID)
    cal.add("version", "2.0")
    evt = IEvent()
    evt.add("uid", uid)
    evt.add("dtstamp", datetime.now(timezone.utc))
    evt.add("summary", event.summary)
    evt.add("description", event.description or "")
    evt.add("dtstart", event.start)
    evt.add("dtend", event.resolved_end())
    evt.add("status", (event.status or STATUS_CONFIRMED).upper())
    cal.add_component(evt)
    return cal.to_ical()


def parse_events(ical_data, time_min=None, time_max=None) -> List[Event]:
    """
    Parse every VEVENT of a calendar object. A series the server did not
    expand is expanded here over [time_min, time_max).
    """
    cal = ICalendar.from_ical(ical_data)
    comps = list(cal.walk("VEVENT"))
    if time_min is not None and any(c.get("RRULE") is not None for c in comps):
        return [
            event_from_component(c, occurrence_id(c))
            for c in recurring_ical_events.of(cal).between(time_min, time_max)
        ]
    return [event_from_component(c) for c in comps]


@contextmanager
def _dav_errors(action: str, write: bool = False):
    try:
        yield
    except error.NotFoundError as e:
        raise NotFoundError(f"{action}: {e}") from e
    except error.AuthorizationError as e:
        raise AuthRequired(f"{action}: {e}") from e
    except error.DAVError as e:
        if write:
            raise RemoteWriteFailed(f"{action}: {e}") from e
        raise ProviderError(f"{action}: {e}") from e


class CalDAVProvider:
    """
    CalendarProvider backed by a CalDAV server.

    Calendar ids are collection URLs; event ids are UIDs, and every event we
    write lives at <calendar-url>/<uid>.ics.
    """

    def __init__(self, url: str, username: str, password: str, principal_url: str = None, client=None):
        """
        :param url: Base CalDAV URL (e.g. https://your-nextcloud/remote.php/dav/)
        :param principal_url: Optional explicit principal path
        :param client: Pre-built DAVClient (tests)
        """
        if client is None:
            client_args = {"url": url, "username": username, "password": password}
            if principal_url:
                client_args["principal_url"] = principal_url
            client = _DAVClient(**client_args)
        self.url = url
        self.client = client

    def _calendar(self, calendar_id: str):
        return self.client.calendar(url=calendar_id)

    def _load(self, calendar, calendar_id: str, uid: str):
        # Servers are free to name foreign resources however they like.
        try:
            return calendar.event_by_url(event_path(calendar_id, uid))
        except error.NotFoundError:
            return calendar.event_by_uid(uid)

    def get_calendar(self, calendar_id: str) -> None:
        target = urlparse(calendar_id).path.rstrip("/")
        with _dav_errors(f"find calendars on {self.url}"):
            calendars = self.client.principal().calendars()
        for cal in calendars:
            if urlparse(str(cal.url)).path.rstrip("/") == target:
                return
        raise NotFoundError(f"CalDAV calendar not found at path: {target}")

    def list_events(self, calendar_id: str, time_min: datetime, time_max: datetime) -> List[Event]:
        calendar = self._calendar(calendar_id)
        with _dav_errors(f"search {calendar_id}"):
            found = calendar.search(start=time_min, end=time_max, event=True, expand=True)
        events = []
        for obj in found:
            events.extend(parse_events(obj.data, time_min, time_max))
        logger.debug("Listed %d events from %s", len(events), calendar_id)
        return events

    def get_event(self, calendar_id: str, event_id: str) -> Event:
        uid, stamp = split_event_id(event_id)
        calendar = self._calendar(calendar_id)
        with _dav_errors(f"get {event_id}"):
            obj = self._load(calendar, calendar_id, uid)
        cal = ICalendar.from_ical(obj.data)
        if stamp is None:
            for comp in cal.walk("VEVENT"):
                return event_from_component(comp, event_id)
            raise NotFoundError(f"No VEVENT in calendar object {event_id}")
        return self._occurrence(cal, event_id, stamp)

    def _occurrence(self, cal, event_id: str, stamp: str) -> Event:
        # Overridden (moved) instances first, then the series itself.
        for comp in cal.walk("VEVENT"):
            rid = comp.get("RECURRENCE-ID")
            if rid is not None and instance_stamp(rid.dt) == stamp:
                return event_from_component(comp, event_id)
        when = parse_instance_stamp(stamp)
        span = timedelta(seconds=1) if isinstance(when, datetime) else timedelta(days=1)
        for comp in recurring_ical_events.of(cal).between(when, when + span):
            rid = comp.get("RECURRENCE-ID") or comp.get("DTSTART")
            if instance_stamp(rid.dt) == stamp:
                return event_from_component(comp, event_id)
        raise NotFoundError(f"Occurrence {event_id} no longer exists")

    def _put(self, calendar_id: str, uid: str, event: Event) -> None:
        resource = _DAVEvent(
            client=self.client,
            url=event_path(calendar_id, uid),
            data=build_ical(uid, event),
            parent=self._calendar(calendar_id),
        )
        with _dav_errors(f"write {uid}", write=True):
            resource.save()

    def add_event(self, calendar_id: str, event: Event) -> str:
        uid = f"{UID_PREFIX}{uuid.uuid4()}"
        self._put(calendar_id, uid, event)
        return uid

    def update_event(self, calendar_id: str, event_id: str, event: Event) -> str:
        # A PUT to the resource path creates or replaces.
        self._put(calendar_id, event_id, event)
        return event_id

    def delete_event(self, calendar_id: str, event_id: str) -> None:
        calendar = self._calendar(calendar_id)
        with _dav_errors(f"delete {event_id}", write=True):
            resource = self._load(calendar, calendar_id, event_id)
            resource.delete()
