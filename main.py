#!/usr/bin/env python3
# main.py
import argparse
import logging
import sys

from blockersync.auth import GoogleAuthenticator
from blockersync.config import load_config
from blockersync.errors import BlockerSyncError
from blockersync.factory import ProviderFactory
from blockersync.logger import setup_logging
from blockersync.registry import add_calendar, delete_calendar, list_calendars
from blockersync.store import Store
from blockersync.sync import cleanup_calendars, desync_calendars, sync_calendars

logger = logging.getLogger("blockersync")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='blockersync',
        description='Mirror busy time between Google and CalDAV calendars as "O_o" blockers.',
    )
    parser.add_argument('--config', help='Path to config.yaml (default: $BLOCKERSYNC_CONFIG or XDG config dir)')
    parser.add_argument('--log-level', help='Override the configured log level')
    sub = parser.add_subparsers(dest='command', required=True)

    sub.add_parser('sync', help='Propagate blockers and retract orphans once')
    sub.add_parser('desync', help='Delete every blocker recorded in the ledger')
    sub.add_parser('cleanup', help='Delete every "O_o" event from all tracked calendars')
    sub.add_parser('list', help='List tracked calendars')

    add = sub.add_parser('add', help='Track a new calendar')
    add.add_argument('--account', required=True, help='Account name')
    add.add_argument('--provider', required=True, choices=('google', 'caldav'))
    add.add_argument('--calendar', required=True, help='Google calendar ID or CalDAV collection URL')
    add.add_argument('--server', default='', help='CalDAV server name from the config')

    delete = sub.add_parser('delete', help='Stop tracking a calendar and remove its blockers')
    delete.add_argument('--calendar', required=True, help='Calendar ID to delete')
    delete.add_argument('--yes', action='store_true', help='Do not ask for confirmation')
    return parser


def is_interactive(command: str) -> bool:
    """The browser consent flow may only open for 'add' or when attached to a terminal."""
    return command == 'add' or sys.stdin.isatty()


def run(args) -> int:
    cfg = load_config(args.config)
    setup_logging(args.log_level or cfg.log_level)

    with Store(cfg.database) as store:
        authenticator = GoogleAuthenticator(store, cfg.google, interactive=is_interactive(args.command))
        factory = ProviderFactory(cfg, authenticator)

        if args.command == 'add':
            ref = add_calendar(store, factory, args.account, args.provider, args.calendar, args.server)
            print(f"✅ {ref.provider_type.upper()} calendar {ref.calendar_id} added for account {ref.account_name}")
            return 0

        if args.command == 'list':
            print("📋 Calendars being synced:")
            for ref, count in list_calendars(store):
                server = f" [{ref.provider_config}]" if ref.provider_config else ""
                print(f"  👤 {ref.account_name} ({ref.provider_type}{server} 📅 {ref.calendar_id}) - {count}")
            return 0

        if args.command == 'delete':
            if not args.yes:
                answer = input(f"⚠️  Delete calendar {args.calendar} and all its blockers? (y/N): ")
                if answer.strip().lower() != 'y':
                    print("❌ Calendar deletion cancelled")
                    return 0
            stats = delete_calendar(store, factory, args.calendar)
            print(f"✅ Calendar {args.calendar} deleted ({stats.deleted} blockers removed)")
            return 0

        context = factory.context(store.calendars())
        if not context.calendars:
            print("No calendars tracked; add one with 'add'.", file=sys.stderr)
            return 1

        if args.command == 'sync':
            print("🚀 Starting calendar synchronization...")
            stats = sync_calendars(store, context)
            print(f"✅ Sync complete: {stats.created} created, {stats.updated} updated, "
                  f"{stats.deleted} deleted, {stats.skipped} unchanged")
        elif args.command == 'desync':
            print("🚀 Starting calendar desynchronization...")
            stats = desync_calendars(store, context)
            print(f"✅ Calendars desynced: {stats.deleted} blockers removed")
        elif args.command == 'cleanup':
            print("🧹 Removing every blocker event...")
            stats = cleanup_calendars(store, context)
            print(f"✅ Cleanup complete: {stats.deleted} blockers removed")
    return 0


def main(argv=None):
    args = build_parser().parse_args(argv)
    try:
        sys.exit(run(args))
    except BlockerSyncError as e:
        logger.debug("Command %s failed", args.command, exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == '__main__':
    main()
