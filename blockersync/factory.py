# blockersync/factory.py

import logging
from typing import Dict, Iterable, List, Optional, Tuple

from .caldav_client import CalDAVProvider
from .config import Config
from .errors import ConfigInvalid
from .google_client import GoogleProvider
from .models import PROVIDER_CALDAV, PROVIDER_GOOGLE, PROVIDER_TYPES, CalendarRef
from .provider import CalendarProvider

logger = logging.getLogger(__name__)

LEGACY_SERVER_NAMES = ("", "default")


def provider_key(ref: CalendarRef) -> str:
    """Backend discriminator: calendars sharing (account, key) share a provider."""
    if ref.provider_type == PROVIDER_GOOGLE:
        return PROVIDER_GOOGLE
    if ref.provider_type == PROVIDER_CALDAV:
        return f"{PROVIDER_CALDAV}-{ref.provider_config}"
    raise ConfigInvalid(f"Unsupported provider type '{ref.provider_type}' for calendar {ref}")


class ProviderContext:
    """
    Live providers for one invocation: tracked calendars plus one provider per
    (account, backend) pair.
    """

    def __init__(self, calendars: List[CalendarRef], providers: Dict[Tuple[str, str], CalendarProvider]):
        self.calendars = list(calendars)
        self.providers = providers

    def provider_for(self, ref: CalendarRef) -> CalendarProvider:
        return self.providers[(ref.account_name, provider_key(ref))]

    def calendar(self, account_name: str, calendar_id: str) -> Optional[CalendarRef]:
        for ref in self.calendars:
            if ref.key == (account_name, calendar_id):
                return ref
        return None


class ProviderFactory:
    """Resolves tracked calendars into live CalendarProvider instances."""

    def __init__(self, config: Config, authenticator=None,
                 google_cls=GoogleProvider, caldav_cls=CalDAVProvider):
        self.config = config
        self.authenticator = authenticator
        self.google_cls = google_cls
        self.caldav_cls = caldav_cls

    def _server(self, account_name: str, name: str):
        if name in LEGACY_SERVER_NAMES:
            raise ConfigInvalid(
                f"Account {account_name} has CalDAV calendars on the removed legacy configuration; "
                "delete them and add them again with --server"
            )
        server = self.config.caldav_servers.get(name)
        if server is None:
            raise ConfigInvalid(
                f"CalDAV server '{name}' used by account {account_name} is not in the configuration"
            )
        return server

    def create(self, provider_type: str, account_name: str, server_name: str = "") -> CalendarProvider:
        if provider_type not in PROVIDER_TYPES:
            raise ConfigInvalid(f"Unsupported provider type '{provider_type}' for account {account_name}")
        if provider_type == PROVIDER_GOOGLE:
            if self.authenticator is None:
                raise ConfigInvalid("Google calendars need an authenticator")
            return self.google_cls(
                credentials=self.authenticator.credentials(account_name),
                reauthenticate=lambda: self.authenticator.renew(account_name),
                disable_reminders=self.config.disable_reminders,
                visibility=self.config.event_visibility,
            )
        server = self._server(account_name, server_name)
        logger.debug("Connecting to CalDAV server %s (%s)", server_name, server.url)
        return self.caldav_cls(url=server.url, username=server.username, password=server.password)

    def context(self, calendars: Iterable[CalendarRef]) -> ProviderContext:
        calendars = list(calendars)
        providers = {}
        for ref in calendars:
            key = (ref.account_name, provider_key(ref))
            if key not in providers:
                providers[key] = self.create(ref.provider_type, ref.account_name, ref.provider_config)
        return ProviderContext(calendars, providers)
