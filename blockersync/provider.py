# blockersync/provider.py

from datetime import datetime
from typing import List, Protocol

from .models import Event


class CalendarProvider(Protocol):
    """
    Capability interface every calendar backend implements.

    Implementations:
      - GoogleProvider  (blockersync.google_client)
      - CalDAVProvider  (blockersync.caldav_client)

    Absent calendars and events are reported by raising
    ``blockersync.errors.NotFoundError``.
    """

    def get_calendar(self, calendar_id: str) -> None:
        """Raise NotFoundError unless the calendar is reachable."""

    def list_events(self, calendar_id: str, time_min: datetime, time_max: datetime) -> List[Event]:
        """Return expanded event instances intersecting [time_min, time_max)."""

    def get_event(self, calendar_id: str, event_id: str) -> Event:
        """Return one event, raising NotFoundError if it is gone."""

    def add_event(self, calendar_id: str, event: Event) -> str:
        """Create the event and return the backend-assigned id."""

    def update_event(self, calendar_id: str, event_id: str, event: Event) -> str:
        """
        Overwrite the event and return the id it now lives under. An unknown
        ``event_id`` must not fail: the backend upserts or the provider
        creates a fresh event.
        """

    def delete_event(self, calendar_id: str, event_id: str) -> None:
        """Delete the event, raising NotFoundError if it is already gone."""
