from dataclasses import replace
from datetime import datetime, timezone

import pytest

from blockersync.errors import NotFoundError
from blockersync.factory import ProviderContext, provider_key
from blockersync.models import CalendarRef
from blockersync.store import Store

NOW = datetime(2026, 10, 15, 9, 30, tzinfo=timezone.utc)


class FakeProvider:
    """In-memory CalendarProvider that records every write."""

    def __init__(self):
        self.calendars = {}
        self.calls = []
        self.fail_on = {}
        self._next_id = 0

    def add_calendar(self, calendar_id, *events):
        self.calendars.setdefault(calendar_id, {})
        for event in events:
            self.calendars[calendar_id][event.id] = event

    def events(self, calendar_id):
        return list(self.calendars.get(calendar_id, {}).values())

    @property
    def writes(self):
        return [c for c in self.calls if c[0] in ("add", "update", "delete")]

    def _maybe_fail(self, op, calendar_id):
        exc = self.fail_on.get((op, calendar_id))
        if exc is not None:
            raise exc

    def _events_of(self, calendar_id):
        if calendar_id not in self.calendars:
            raise NotFoundError(calendar_id)
        return self.calendars[calendar_id]

    def get_calendar(self, calendar_id):
        self._events_of(calendar_id)

    def list_events(self, calendar_id, time_min, time_max):
        self.calls.append(("list", calendar_id))
        return [
            replace(e) for e in self._events_of(calendar_id).values()
            if e.start < time_max and e.resolved_end() > time_min
        ]

    def get_event(self, calendar_id, event_id):
        self.calls.append(("get", calendar_id, event_id))
        events = self._events_of(calendar_id)
        if event_id not in events:
            raise NotFoundError(event_id)
        return replace(events[event_id])

    def add_event(self, calendar_id, event):
        self._maybe_fail("add", calendar_id)
        self._next_id += 1
        event_id = f"blk-{self._next_id}"
        self.calls.append(("add", calendar_id, event_id))
        self._events_of(calendar_id)[event_id] = replace(event, id=event_id)
        return event_id

    def update_event(self, calendar_id, event_id, event):
        self._maybe_fail("update", calendar_id)
        self.calls.append(("update", calendar_id, event_id))
        self._events_of(calendar_id)[event_id] = replace(event, id=event_id)
        return event_id

    def delete_event(self, calendar_id, event_id):
        self._maybe_fail("delete", calendar_id)
        self.calls.append(("delete", calendar_id, event_id))
        events = self._events_of(calendar_id)
        if event_id not in events:
            raise NotFoundError(event_id)
        del events[event_id]


def make_context(refs, provider):
    providers = {(ref.account_name, provider_key(ref)): provider for ref in refs}
    return ProviderContext(refs, providers)


@pytest.fixture
def store(tmp_path):
    with Store(tmp_path / "ledger.db") as s:
        yield s


@pytest.fixture
def fake():
    return FakeProvider()


@pytest.fixture
def cal_a():
    return CalendarRef("alice", "google", "alice@example.com")


@pytest.fixture
def cal_b():
    return CalendarRef("bob", "caldav", "https://dav.example.com/calendars/bob/home/", "work")


@pytest.fixture
def cal_c():
    return CalendarRef("alice", "google", "team@group.calendar.google.com")
