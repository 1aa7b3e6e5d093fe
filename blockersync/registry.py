# blockersync/registry.py
"""
Bookkeeping for the set of tracked calendars: add, list and delete.
"""

import logging
from typing import List, Tuple

from .errors import ConfigInvalid, NotFoundError, RegistryError
from .factory import ProviderFactory
from .models import PROVIDER_CALDAV, PROVIDER_TYPES, CalendarRef
from .store import Store
from .sync import SyncStats, destination_of, remove_blocker

logger = logging.getLogger(__name__)


def add_calendar(store: Store, factory: ProviderFactory, account_name: str,
                 provider_type: str, calendar_id: str, server_name: str = "") -> CalendarRef:
    """Check the calendar is reachable, then start tracking it."""
    provider_type = provider_type.lower()
    if provider_type not in PROVIDER_TYPES:
        raise RegistryError(f"Unsupported provider type: {provider_type} (must be 'google' or 'caldav')")
    if provider_type != PROVIDER_CALDAV:
        server_name = ""

    ref = CalendarRef(account_name, provider_type, calendar_id.strip(), server_name)
    provider = factory.create(provider_type, account_name, server_name)
    try:
        provider.get_calendar(ref.calendar_id)
    except NotFoundError as e:
        raise RegistryError(f"Calendar {ref.calendar_id} is not reachable for account {account_name}: {e}") from e

    store.add_calendar(ref)
    logger.info("Tracking %s calendar %s", provider_type, ref)
    return ref


def list_calendars(store: Store) -> List[Tuple[CalendarRef, int]]:
    """:returns: every tracked calendar with the number of blockers it holds"""
    counts = store.blocker_counts()
    return [(ref, counts.get(ref.key, 0)) for ref in store.calendars()]


def _retract_own_blockers(store: Store, factory: ProviderFactory, ref: CalendarRef) -> int:
    rows = [row for row in store.blockers_on(ref.calendar_id) if row.account_name == ref.account_name]
    try:
        provider = factory.create(ref.provider_type, ref.account_name, ref.provider_config)
    except ConfigInvalid as e:
        logger.warning("Calendar %s is unusable (%s); forgetting its %d blockers", ref, e, len(rows))
        for row in rows:
            store.delete_blocker(row.calendar_id, row.origin_event_id)
        return 0
    for row in rows:
        remove_blocker(store, provider, row)
    return len(rows)


def delete_calendar(store: Store, factory: ProviderFactory, calendar_id: str) -> SyncStats:
    """
    Stop tracking a calendar. Its own blockers and the blockers its events
    produced on other calendars are removed first, so nothing is orphaned.

    Only the calendars holding those blockers need a working provider; a
    calendar whose own backend is unusable can still be deleted, its
    blockers are then just forgotten.
    """
    tracked = store.calendars()
    doomed = [ref for ref in tracked if ref.calendar_id == calendar_id]
    if not doomed:
        raise RegistryError(f"Calendar {calendar_id} does not exist")

    outgoing = store.blockers_from(calendar_id)
    holders = {(row.account_name, row.calendar_id) for row in outgoing}
    context = factory.context([ref for ref in tracked if ref.calendar_id != calendar_id and ref.key in holders])
    # Resolve every destination before touching anything remote.
    targets = [(row, destination_of(context, row)) for row in outgoing]

    stats = SyncStats()
    for ref in doomed:
        stats.deleted += _retract_own_blockers(store, factory, ref)
    for row, dest in targets:
        remove_blocker(store, context.provider_for(dest), row)
        stats.deleted += 1

    store.remove_calendar(calendar_id)
    logger.info("Stopped tracking %s (%d blockers removed)", calendar_id, stats.deleted)
    return stats
