# blockersync/sync.py

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional, Set, Tuple

from .errors import ConfigInvalid, NotFoundError
from .factory import ProviderContext
from .models import BlockerRow, CalendarRef, Event
from .provider import CalendarProvider
from .store import Store

logger = logging.getLogger(__name__)

# Google pseudo-events that never occupy time on other calendars.
NON_APPOINTMENT_KINDS = frozenset({"workingLocation", "birthday"})

CLEANUP_HORIZON = timedelta(days=366)


@dataclass
class SyncStats:
    created: int = 0
    updated: int = 0
    skipped: int = 0
    deleted: int = 0

    @property
    def writes(self) -> int:
        return self.created + self.updated + self.deleted


def sync_window(now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """
    [start of the current month, start of the month after next), in UTC.
    """
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is not None:
        now = now.astimezone(timezone.utc)
    start = datetime(now.year, now.month, 1, tzinfo=timezone.utc)
    month = now.month + 2
    year = now.year + (month - 1) // 12
    month = (month - 1) % 12 + 1
    return start, datetime(year, month, 1, tzinfo=timezone.utc)


def should_propagate(event: Event) -> bool:
    if event.is_blocker:
        return False
    if event.kind in NON_APPOINTMENT_KINDS:
        return False
    return not event.is_cancelled


# ─── propagation ───────────────────────────────────────────────────────────

def propagate_event(store: Store, context: ProviderContext, source: CalendarRef,
                    dest: CalendarRef, event: Event, stats: SyncStats):
    """Create or refresh the blocker for ``event`` on ``dest``."""
    row = store.get_blocker(dest.calendar_id, event.id)
    if (row is not None
            and row.last_updated == event.revision
            and row.origin_calendar_id == source.calendar_id):
        logger.debug("Blocker for %s on %s is up to date", event.id, dest)
        stats.skipped += 1
        return

    blocker = event.to_blocker()
    provider = context.provider_for(dest)
    if row is not None and row.event_id:
        blocker_id = provider.update_event(dest.calendar_id, row.event_id, blocker)
        stats.updated += 1
        logger.info("Updated blocker '%s' on %s", blocker.summary, dest)
    else:
        blocker_id = provider.add_event(dest.calendar_id, blocker)
        stats.created += 1
        logger.info("Created blocker '%s' on %s", blocker.summary, dest)

    # Only a write the backend accepted is recorded.
    store.upsert_blocker(BlockerRow(
        event_id=blocker_id,
        calendar_id=dest.calendar_id,
        account_name=dest.account_name,
        origin_event_id=event.id,
        origin_calendar_id=source.calendar_id,
        last_updated=event.revision,
        response_status=row.response_status if row else None,
    ))


def propagate_calendar(store: Store, context: ProviderContext, source: CalendarRef,
                       time_min: datetime, time_max: datetime, stats: SyncStats) -> Set[str]:
    """
    Mirror every appointment of ``source`` in the window onto all other
    calendars.

    :returns: ids of the live source events seen in the window
    """
    provider = context.provider_for(source)
    events = provider.list_events(source.calendar_id, time_min, time_max)
    logger.info("Retrieved %d events from %s", len(events), source)

    seen = set()
    for event in events:
        if not should_propagate(event):
            logger.debug("Not propagating '%s' (%s, %s)", event.summary, event.kind, event.status)
            continue
        seen.add(event.id)
        for dest in context.calendars:
            if dest.calendar_id == source.calendar_id:
                continue
            propagate_event(store, context, source, dest, event, stats)
    return seen


# ─── cleanup ───────────────────────────────────────────────────────────────

def origin_alive(provider: CalendarProvider, source: CalendarRef, event_id: str) -> bool:
    try:
        origin = provider.get_event(source.calendar_id, event_id)
    except NotFoundError:
        logger.info("Origin event %s is gone from %s", event_id, source)
        return False
    if origin.is_cancelled:
        logger.info("Origin event %s on %s was cancelled", event_id, source)
        return False
    return True


def remove_blocker(store: Store, provider: CalendarProvider, row: BlockerRow):
    """Delete a blocker remotely, then forget it. Already-absent counts as done."""
    try:
        provider.delete_event(row.calendar_id, row.event_id)
        logger.info("Deleted blocker %s from %s", row.event_id, row.calendar_id)
    except NotFoundError:
        logger.info("Blocker %s was already gone from %s", row.event_id, row.calendar_id)
    store.delete_blocker(row.calendar_id, row.origin_event_id)


def destination_of(context: ProviderContext, row: BlockerRow) -> CalendarRef:
    dest = context.calendar(row.account_name, row.calendar_id)
    if dest is None:
        raise ConfigInvalid(
            f"Blocker {row.event_id} lives on {row.account_name}:{row.calendar_id}, "
            "which is no longer a tracked calendar"
        )
    return dest


def cleanup_orphans(store: Store, context: ProviderContext, source: CalendarRef,
                    seen: Set[str], stats: SyncStats):
    """Retract blockers whose origin on ``source`` was deleted or cancelled."""
    provider = context.provider_for(source)
    alive: Dict[str, bool] = {}
    for dest in context.calendars:
        if dest.calendar_id == source.calendar_id:
            continue
        for row in store.blockers_from(source.calendar_id, dest.calendar_id):
            if row.account_name != dest.account_name or row.origin_event_id in seen:
                continue
            # Missing from the window is not proof of deletion.
            if row.origin_event_id not in alive:
                alive[row.origin_event_id] = origin_alive(provider, source, row.origin_event_id)
            if alive[row.origin_event_id]:
                continue
            remove_blocker(store, context.provider_for(dest), row)
            stats.deleted += 1


# ─── commands ──────────────────────────────────────────────────────────────

def sync_calendars(store: Store, context: ProviderContext, now: Optional[datetime] = None) -> SyncStats:
    """One propagation pass over every tracked calendar, then one cleanup pass."""
    stats = SyncStats()
    time_min, time_max = sync_window(now)
    logger.info("Sync window %s .. %s", time_min.date(), time_max.date())

    seen: Dict[str, Set[str]] = {}
    for source in context.calendars:
        logger.info("Syncing calendar %s", source)
        seen[source.calendar_id] = propagate_calendar(store, context, source, time_min, time_max, stats)

    for source in context.calendars:
        cleanup_orphans(store, context, source, seen[source.calendar_id], stats)

    logger.info(
        "Sync finished: %d created, %d updated, %d unchanged, %d deleted",
        stats.created, stats.updated, stats.skipped, stats.deleted,
    )
    return stats


def desync_calendars(store: Store, context: ProviderContext) -> SyncStats:
    """Delete every ledger-tracked blocker and clear the ledger."""
    stats = SyncStats()
    rows = store.blockers()
    # Resolve every destination before touching anything remote.
    targets = [(row, destination_of(context, row)) for row in rows]
    for row, dest in targets:
        remove_blocker(store, context.provider_for(dest), row)
        stats.deleted += 1
    logger.info("Desync finished: %d blockers removed", stats.deleted)
    return stats


def cleanup_calendars(store: Store, context: ProviderContext, now: Optional[datetime] = None) -> SyncStats:
    """
    Scrub every event carrying the blocker marker from every tracked
    calendar, whether or not the ledger knows about it.
    """
    stats = SyncStats()
    time_min, _ = sync_window(now)
    time_max = time_min + CLEANUP_HORIZON
    for ref in context.calendars:
        logger.info("Cleaning up calendar %s", ref)
        provider = context.provider_for(ref)
        for event in provider.list_events(ref.calendar_id, time_min, time_max):
            if not event.is_blocker:
                continue
            try:
                provider.delete_event(ref.calendar_id, event.id)
                logger.info("Deleted '%s' from %s", event.summary, ref)
            except NotFoundError:
                logger.info("'%s' was already gone from %s", event.summary, ref)
            stats.deleted += 1
        cleared = store.clear_blockers_on(ref.calendar_id)
        logger.debug("Dropped %d ledger rows for %s", cleared, ref)
    return stats
