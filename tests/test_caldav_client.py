from datetime import date, datetime, timezone
from unittest.mock import MagicMock

import pytest
from caldav.lib import error
from icalendar import Calendar as ICalendar

from blockersync import caldav_client
from blockersync.caldav_client import (
    CalDAVProvider,
    build_ical,
    event_path,
    parse_events,
    split_event_id,
)
from blockersync.errors import AuthRequired, NotFoundError, RemoteWriteFailed
from blockersync.models import Event

CAL = "https://dav.example.com/calendars/bob/home/"

SINGLE_ICS = """BEGIN:VCALENDAR
VERSION:2.0
PRODID:-//test//EN
BEGIN:VEVENT
UID:dentist-1
DTSTAMP:20261001T080000Z
LAST-MODIFIED:20261003T101500Z
DTSTART:20261020T140000Z
DURATION:PT45M
SUMMARY:Dentist
DESCRIPTION:Bring card
STATUS:TENTATIVE
END:VEVENT
END:VCALENDAR
"""

WEEKLY_ICS = """BEGIN:VCALENDAR
VERSION:2.0
PRODID:-//test//EN
BEGIN:VEVENT
UID:standup-1
DTSTAMP:20261001T080000Z
LAST-MODIFIED:20261002T080000Z
SEQUENCE:2
DTSTART:20261005T090000Z
DTEND:20261005T091500Z
RRULE:FREQ=WEEKLY;COUNT=4
EXDATE:20261012T090000Z
SUMMARY:Standup
END:VEVENT
END:VCALENDAR
"""

OCT_1 = datetime(2026, 10, 1, tzinfo=timezone.utc)
DEC_1 = datetime(2026, 12, 1, tzinfo=timezone.utc)


@pytest.fixture
def calendar():
    return MagicMock()


@pytest.fixture
def client(calendar):
    client = MagicMock()
    client.calendar.return_value = calendar
    return client


@pytest.fixture
def provider(client):
    return CalDAVProvider("https://dav.example.com/", "bob", "secret", client=client)


@pytest.fixture
def dav_event(monkeypatch):
    resource_cls = MagicMock()
    monkeypatch.setattr(caldav_client, "_DAVEvent", resource_cls)
    return resource_cls


class TestCodec:
    def test_event_path(self):
        assert event_path(CAL, "abc") == "https://dav.example.com/calendars/bob/home/abc.ics"

    def test_split_event_id(self):
        assert split_event_id("abc") == ("abc", None)
        assert split_event_id("abc__20261005T090000Z") == ("abc", "20261005T090000Z")
        assert split_event_id("abc__20261005") == ("abc", "20261005")
        assert split_event_id("my__uid") == ("my__uid", None)

    def test_build_ical_is_a_minimal_single_event(self):
        start = datetime(2026, 10, 20, 10, tzinfo=timezone.utc)
        blocker = Event(id="", summary="O_o Flight", description="AA100", start=start)

        cal = ICalendar.from_ical(build_ical("blockersync-1", blocker))

        [vevent] = cal.walk("VEVENT")
        assert str(vevent["UID"]) == "blockersync-1"
        assert str(vevent["SUMMARY"]) == "O_o Flight"
        assert str(vevent["DESCRIPTION"]) == "AA100"
        assert str(vevent["STATUS"]) == "CONFIRMED"
        assert vevent["DTSTART"].dt == start
        assert vevent["DTEND"].dt == datetime(2026, 10, 20, 11, tzinfo=timezone.utc)
        assert "DTSTAMP" in vevent

    def test_all_day_blocker(self):
        blocker = Event(id="", summary="O_o Holiday", start=date(2026, 12, 24))
        [vevent] = ICalendar.from_ical(build_ical("x", blocker)).walk("VEVENT")
        assert vevent["DTEND"].dt == date(2026, 12, 25)

    def test_parse_single_event(self):
        [event] = parse_events(SINGLE_ICS)

        assert event.id == "dentist-1"
        assert event.summary == "Dentist"
        assert event.description == "Bring card"
        assert event.status == "tentative"
        assert event.end == datetime(2026, 10, 20, 14, 45, tzinfo=timezone.utc)
        assert event.revision == "20261003T101500Z"

    def test_unexpanded_series_is_expanded_locally(self):
        events = parse_events(WEEKLY_ICS, OCT_1, DEC_1)

        assert [e.id for e in events] == [
            "standup-1__20261005T090000Z",
            "standup-1__20261019T090000Z",
            "standup-1__20261026T090000Z",
        ]
        assert {e.revision for e in events} == {"20261002T080000Z#2"}


class TestReads:
    def test_list_events_uses_time_range_search(self, provider, calendar):
        calendar.search.return_value = [MagicMock(data=SINGLE_ICS)]

        events = provider.list_events(CAL, OCT_1, DEC_1)

        calendar.search.assert_called_once_with(start=OCT_1, end=DEC_1, event=True, expand=True)
        assert [e.id for e in events] == ["dentist-1"]

    def test_unauthorized_search(self, provider, calendar):
        calendar.search.side_effect = error.AuthorizationError("401")
        with pytest.raises(AuthRequired):
            provider.list_events(CAL, OCT_1, DEC_1)

    def test_get_event_by_path(self, provider, calendar):
        calendar.event_by_url.return_value = MagicMock(data=SINGLE_ICS)

        event = provider.get_event(CAL, "dentist-1")

        calendar.event_by_url.assert_called_once_with(event_path(CAL, "dentist-1"))
        assert event.summary == "Dentist"

    def test_get_event_falls_back_to_uid_lookup(self, provider, calendar):
        calendar.event_by_url.side_effect = error.NotFoundError("404")
        calendar.event_by_uid.return_value = MagicMock(data=SINGLE_ICS)

        assert provider.get_event(CAL, "dentist-1").id == "dentist-1"
        calendar.event_by_uid.assert_called_once_with("dentist-1")

    def test_get_missing_event(self, provider, calendar):
        calendar.event_by_url.side_effect = error.NotFoundError("404")
        calendar.event_by_uid.side_effect = error.NotFoundError("404")
        with pytest.raises(NotFoundError):
            provider.get_event(CAL, "dentist-1")

    def test_get_occurrence_of_series(self, provider, calendar):
        calendar.event_by_url.return_value = MagicMock(data=WEEKLY_ICS)

        event = provider.get_event(CAL, "standup-1__20261019T090000Z")

        calendar.event_by_url.assert_called_once_with(event_path(CAL, "standup-1"))
        assert event.id == "standup-1__20261019T090000Z"
        assert event.start == datetime(2026, 10, 19, 9, tzinfo=timezone.utc)

    def test_excluded_occurrence_is_not_found(self, provider, calendar):
        calendar.event_by_url.return_value = MagicMock(data=WEEKLY_ICS)
        with pytest.raises(NotFoundError):
            provider.get_event(CAL, "standup-1__20261012T090000Z")

    def test_get_calendar(self, provider, client):
        client.principal.return_value.calendars.return_value = [
            MagicMock(url="https://dav.example.com/calendars/bob/personal/"),
            MagicMock(url="https://dav.example.com/calendars/bob/home/"),
        ]
        provider.get_calendar(CAL)
        with pytest.raises(NotFoundError):
            provider.get_calendar("https://dav.example.com/calendars/bob/gone/")


class TestWrites:
    def blocker(self):
        return Event(id="", summary="O_o Flight", start=datetime(2026, 10, 20, 10, tzinfo=timezone.utc))

    def test_add_event_puts_a_fresh_resource(self, provider, client, calendar, dav_event):
        uid = provider.add_event(CAL, self.blocker())

        assert uid.startswith("blockersync-")
        kwargs = dav_event.call_args.kwargs
        assert kwargs["client"] is client
        assert kwargs["parent"] is calendar
        assert kwargs["url"] == event_path(CAL, uid)
        assert b"SUMMARY:O_o Flight" in kwargs["data"]
        dav_event.return_value.save.assert_called_once_with()

    def test_update_event_replaces_in_place(self, provider, dav_event):
        assert provider.update_event(CAL, "blockersync-7", self.blocker()) == "blockersync-7"
        assert dav_event.call_args.kwargs["url"] == event_path(CAL, "blockersync-7")

    def test_rejected_put(self, provider, dav_event):
        dav_event.return_value.save.side_effect = error.PutError("507 Insufficient Storage")
        with pytest.raises(RemoteWriteFailed):
            provider.add_event(CAL, self.blocker())

    def test_delete_event(self, provider, calendar):
        resource = calendar.event_by_url.return_value
        provider.delete_event(CAL, "blockersync-7")
        resource.delete.assert_called_once_with()

    def test_delete_missing_event(self, provider, calendar):
        calendar.event_by_url.side_effect = error.NotFoundError("404")
        calendar.event_by_uid.side_effect = error.NotFoundError("404")
        with pytest.raises(NotFoundError):
            provider.delete_event(CAL, "blockersync-7")
