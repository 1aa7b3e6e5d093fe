from pathlib import Path
from unittest.mock import MagicMock

import pytest

from blockersync.config import CalDAVServer, Config
from blockersync.errors import ConfigInvalid
from blockersync.factory import ProviderFactory, provider_key
from blockersync.models import CalendarRef


@pytest.fixture
def config():
    return Config(
        database=Path("/tmp/unused.db"),
        caldav_servers={"work": CalDAVServer("https://dav.example.com/", "bob", "secret")},
        disable_reminders=True,
        event_visibility="private",
    )


@pytest.fixture
def authenticator():
    auth = MagicMock()
    auth.credentials.side_effect = lambda account: f"creds-{account}"
    return auth


@pytest.fixture
def factory(config, authenticator):
    return ProviderFactory(config, authenticator, google_cls=MagicMock(), caldav_cls=MagicMock())


class TestProviderKey:
    def test_keys(self, cal_a, cal_b):
        assert provider_key(cal_a) == "google"
        assert provider_key(cal_b) == "caldav-work"

    def test_unknown_provider_type(self):
        with pytest.raises(ConfigInvalid):
            provider_key(CalendarRef("alice", "exchange", "inbox"))


class TestFactory:
    def test_calendars_of_one_account_share_a_provider(self, factory, cal_a, cal_b, cal_c):
        context = factory.context([cal_a, cal_b, cal_c])

        assert context.provider_for(cal_a) is context.provider_for(cal_c)
        assert context.provider_for(cal_a) is not context.provider_for(cal_b)
        assert factory.google_cls.call_count == 1
        assert factory.caldav_cls.call_count == 1
        assert context.calendar("alice", cal_c.calendar_id) == cal_c
        assert context.calendar("bob", cal_c.calendar_id) is None

    def test_google_provider_settings(self, factory, authenticator):
        factory.create("google", "alice")

        kwargs = factory.google_cls.call_args.kwargs
        assert kwargs["credentials"] == "creds-alice"
        assert kwargs["disable_reminders"] is True
        assert kwargs["visibility"] == "private"
        kwargs["reauthenticate"]()
        authenticator.renew.assert_called_once_with("alice")

    def test_caldav_provider_uses_named_server(self, factory):
        factory.create("caldav", "bob", "work")
        factory.caldav_cls.assert_called_once_with(
            url="https://dav.example.com/", username="bob", password="secret"
        )

    @pytest.mark.parametrize("server", ["", "default", "home"])
    def test_unusable_server_reference(self, factory, server):
        with pytest.raises(ConfigInvalid, match="account bob"):
            factory.context([CalendarRef("bob", "caldav", "https://dav.example.com/cal/", server)])

    def test_google_without_authenticator(self, config):
        factory = ProviderFactory(config, google_cls=MagicMock())
        with pytest.raises(ConfigInvalid):
            factory.create("google", "alice")
