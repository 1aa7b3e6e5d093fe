# blockersync/models.py

from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta
from typing import Optional, Union

BLOCKER_PREFIX = "O_o"

STATUS_CONFIRMED = "confirmed"
STATUS_CANCELLED = "cancelled"

PROVIDER_GOOGLE = "google"
PROVIDER_CALDAV = "caldav"
PROVIDER_TYPES = (PROVIDER_GOOGLE, PROVIDER_CALDAV)

EventTime = Union[datetime, date]


@dataclass
class Event:
    """
    Provider-neutral appointment.

    ``start``/``end`` are datetimes for timed events and dates for all-day
    events. ``revision`` is the backend's own revision stamp (Google
    ``updated``, CalDAV ``LAST-MODIFIED``) and is what the ledger stores.
    """
    id: str
    summary: str
    start: EventTime
    end: Optional[EventTime] = None
    description: str = ""
    status: str = STATUS_CONFIRMED
    revision: str = ""
    kind: str = "default"

    @property
    def all_day(self) -> bool:
        return not isinstance(self.start, datetime)

    @property
    def is_blocker(self) -> bool:
        return (self.summary or "").startswith(BLOCKER_PREFIX)

    @property
    def is_cancelled(self) -> bool:
        return (self.status or "").lower() == STATUS_CANCELLED

    def resolved_end(self) -> EventTime:
        if self.end is not None:
            return self.end
        if self.all_day:
            return self.start + timedelta(days=1)
        return self.start + timedelta(hours=1)

    def to_blocker(self) -> "Event":
        """Build the placeholder that mirrors this event on another calendar."""
        return replace(
            self,
            id="",
            summary=f"{BLOCKER_PREFIX} {self.summary or ''}".rstrip(),
            description=self.description or "",
            end=self.resolved_end(),
            status=STATUS_CONFIRMED,
            kind="default",
        )


@dataclass(frozen=True)
class CalendarRef:
    account_name: str
    provider_type: str
    calendar_id: str
    provider_config: str = ""

    @property
    def key(self):
        return (self.account_name, self.calendar_id)

    def __str__(self):
        return f"{self.account_name}:{self.calendar_id}"


@dataclass
class BlockerRow:
    """One ledger entry: the blocker ``event_id`` living on ``calendar_id``."""
    event_id: str
    calendar_id: str
    account_name: str
    origin_event_id: str
    origin_calendar_id: Optional[str] = None
    last_updated: Optional[str] = None
    response_status: Optional[str] = None
