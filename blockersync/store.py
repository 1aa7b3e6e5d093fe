# blockersync/store.py

import logging
import sqlite3
from pathlib import Path
from typing import Dict, List, Optional

from .errors import RegistryError
from .models import PROVIDER_GOOGLE, BlockerRow, CalendarRef

logger = logging.getLogger(__name__)

SCHEMA_NAME = "blockersync"

# Each entry moves the schema from version i to i + 1.
MIGRATIONS = [
    [
        """CREATE TABLE IF NOT EXISTS tokens (
            account_name TEXT PRIMARY KEY,
            token TEXT)""",
        """CREATE TABLE IF NOT EXISTS calendars (
            account_name TEXT,
            calendar_id TEXT,
            PRIMARY KEY (account_name, calendar_id))""",
        """CREATE TABLE IF NOT EXISTS blocker_events (
            event_id TEXT,
            calendar_id TEXT,
            account_name TEXT,
            origin_event_id TEXT,
            PRIMARY KEY (calendar_id, origin_event_id))""",
    ],
    ["ALTER TABLE blocker_events ADD COLUMN last_updated TEXT"],
    ["ALTER TABLE blocker_events ADD COLUMN origin_calendar_id TEXT"],
    [
        f"ALTER TABLE calendars ADD COLUMN provider_type TEXT DEFAULT '{PROVIDER_GOOGLE}'",
        "ALTER TABLE calendars ADD COLUMN provider_config TEXT DEFAULT ''",
        "ALTER TABLE blocker_events ADD COLUMN response_status TEXT",
    ],
]
SCHEMA_VERSION = len(MIGRATIONS)


class Store:
    """
    SQLite database holding the calendar registry, the blocker ledger and
    per-account OAuth tokens.

    The connection runs in autocommit mode: every method is one complete
    statement, so an interrupted run never leaves half a write behind.
    """

    def __init__(self, db_path):
        self.db_path = db_path
        self.conn: Optional[sqlite3.Connection] = None

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def connect(self):
        if str(self.db_path) != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(str(self.db_path), isolation_level=None)
        self.conn.row_factory = sqlite3.Row
        self.migrate()

    def close(self):
        if self.conn:
            self.conn.close()
            self.conn = None

    # ─── schema ────────────────────────────────────────────────────────────

    def schema_version(self) -> int:
        self.conn.execute(
            "CREATE TABLE IF NOT EXISTS db_version (name TEXT PRIMARY KEY, version INTEGER)"
        )
        row = self.conn.execute(
            "SELECT version FROM db_version WHERE name = ?", (SCHEMA_NAME,)
        ).fetchone()
        if row is None:
            self.conn.execute(
                "INSERT INTO db_version (name, version) VALUES (?, 0)", (SCHEMA_NAME,)
            )
            return 0
        return row["version"]

    def migrate(self):
        version = self.schema_version()
        while version < SCHEMA_VERSION:
            logger.info("Migrating database schema %d -> %d", version, version + 1)
            for statement in MIGRATIONS[version]:
                try:
                    self.conn.execute(statement)
                except sqlite3.OperationalError as e:
                    # Older releases added some columns on the fly.
                    if "duplicate column name" not in str(e):
                        raise
                    logger.debug("Skipping migration step: %s", e)
            version += 1
            self.conn.execute(
                "UPDATE db_version SET version = ? WHERE name = ?", (version, SCHEMA_NAME)
            )

    # ─── calendar registry ─────────────────────────────────────────────────

    def add_calendar(self, ref: CalendarRef):
        try:
            self.conn.execute(
                """INSERT INTO calendars (account_name, calendar_id, provider_type, provider_config)
                   VALUES (?, ?, ?, ?)""",
                (ref.account_name, ref.calendar_id, ref.provider_type, ref.provider_config),
            )
        except sqlite3.IntegrityError as e:
            raise RegistryError(f"Calendar {ref} is already tracked") from e

    def remove_calendar(self, calendar_id: str) -> int:
        cur = self.conn.execute("DELETE FROM calendars WHERE calendar_id = ?", (calendar_id,))
        return cur.rowcount

    def calendars(self) -> List[CalendarRef]:
        rows = self.conn.execute(
            """SELECT account_name, calendar_id, provider_type, provider_config
               FROM calendars ORDER BY account_name, calendar_id"""
        ).fetchall()
        return [
            CalendarRef(
                account_name=row["account_name"],
                provider_type=row["provider_type"] or PROVIDER_GOOGLE,
                calendar_id=row["calendar_id"],
                provider_config=row["provider_config"] or "",
            )
            for row in rows
        ]

    # ─── blocker ledger ────────────────────────────────────────────────────

    @staticmethod
    def _row(row: sqlite3.Row) -> BlockerRow:
        return BlockerRow(
            event_id=row["event_id"],
            calendar_id=row["calendar_id"],
            account_name=row["account_name"],
            origin_event_id=row["origin_event_id"],
            origin_calendar_id=row["origin_calendar_id"],
            last_updated=row["last_updated"],
            response_status=row["response_status"],
        )

    def get_blocker(self, calendar_id: str, origin_event_id: str) -> Optional[BlockerRow]:
        row = self.conn.execute(
            "SELECT * FROM blocker_events WHERE calendar_id = ? AND origin_event_id = ?",
            (calendar_id, origin_event_id),
        ).fetchone()
        return self._row(row) if row else None

    def upsert_blocker(self, blocker: BlockerRow):
        self.conn.execute(
            """INSERT OR REPLACE INTO blocker_events
               (event_id, calendar_id, account_name, origin_event_id,
                origin_calendar_id, last_updated, response_status)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (
                blocker.event_id,
                blocker.calendar_id,
                blocker.account_name,
                blocker.origin_event_id,
                blocker.origin_calendar_id,
                blocker.last_updated,
                blocker.response_status,
            ),
        )

    def delete_blocker(self, calendar_id: str, origin_event_id: str):
        self.conn.execute(
            "DELETE FROM blocker_events WHERE calendar_id = ? AND origin_event_id = ?",
            (calendar_id, origin_event_id),
        )

    def blockers(self) -> List[BlockerRow]:
        rows = self.conn.execute(
            "SELECT * FROM blocker_events ORDER BY calendar_id, origin_event_id"
        ).fetchall()
        return [self._row(r) for r in rows]

    def blockers_from(self, origin_calendar_id: str, calendar_id: Optional[str] = None) -> List[BlockerRow]:
        """Ledger rows whose origin is ``origin_calendar_id`` (optionally on one destination)."""
        query = "SELECT * FROM blocker_events WHERE origin_calendar_id = ?"
        params = [origin_calendar_id]
        if calendar_id is not None:
            query += " AND calendar_id = ?"
            params.append(calendar_id)
        rows = self.conn.execute(query + " ORDER BY calendar_id, origin_event_id", params).fetchall()
        return [self._row(r) for r in rows]

    def blockers_on(self, calendar_id: str) -> List[BlockerRow]:
        rows = self.conn.execute(
            "SELECT * FROM blocker_events WHERE calendar_id = ? ORDER BY origin_event_id",
            (calendar_id,),
        ).fetchall()
        return [self._row(r) for r in rows]

    def clear_blockers_on(self, calendar_id: str) -> int:
        cur = self.conn.execute("DELETE FROM blocker_events WHERE calendar_id = ?", (calendar_id,))
        return cur.rowcount

    def blocker_counts(self) -> Dict[tuple, int]:
        """:returns: {(account_name, calendar_id): number of ledger-tracked blockers}"""
        rows = self.conn.execute(
            """SELECT account_name, calendar_id, COUNT(1) AS num_events
               FROM blocker_events GROUP BY account_name, calendar_id"""
        ).fetchall()
        return {(r["account_name"], r["calendar_id"]): r["num_events"] for r in rows}

    # ─── tokens ────────────────────────────────────────────────────────────

    def get_token(self, account_name: str) -> Optional[str]:
        row = self.conn.execute(
            "SELECT token FROM tokens WHERE account_name = ?", (account_name,)
        ).fetchone()
        return row["token"] if row else None

    def save_token(self, account_name: str, token: str):
        self.conn.execute(
            "INSERT OR REPLACE INTO tokens (account_name, token) VALUES (?, ?)",
            (account_name, token),
        )
