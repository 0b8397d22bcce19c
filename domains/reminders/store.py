"""SQLite persistence for reminders, notification queue and delivery logs.

The store is the single source of truth for reminder status. In-memory
timers and escalation state can always be rebuilt from it.

Every status change goes through a compare-and-set UPDATE so the timer,
the due-sweep and user actions can race without double-triggering.
"""

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional

from logger import logger
from .errors import PersistenceError
from .models import LocationReminder, Reminder, to_iso


class ReminderStore:
    """SQLite-backed store with WAL mode and a reused connection."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._connection: Optional[sqlite3.Connection] = None

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create database connection with WAL mode."""
        if self._connection is not None:
            return self._connection

        try:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(
                self.db_path,
                check_same_thread=False,
                timeout=10.0
            )
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA busy_timeout=5000")
            self._init_schema(conn)
        except (sqlite3.Error, OSError) as e:
            raise PersistenceError(f"Cannot open reminder store at {self.db_path}: {e}") from e

        self._connection = conn
        logger.info(f"Reminder store initialized: {self.db_path}")
        return conn

    def _init_schema(self, conn: sqlite3.Connection) -> None:
        """Create tables if they don't exist."""
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS reminders (
                id TEXT PRIMARY KEY,
                owner_id TEXT NOT NULL,
                title TEXT NOT NULL,
                description TEXT DEFAULT '',
                due_time TEXT NOT NULL,
                priority TEXT NOT NULL DEFAULT 'medium',
                recurring INTEGER NOT NULL DEFAULT 0,
                recurrence_pattern TEXT DEFAULT 'none',
                series_id TEXT NOT NULL,
                series_start TEXT NOT NULL,
                occurrence INTEGER NOT NULL DEFAULT 0,
                status TEXT NOT NULL DEFAULT 'pending',
                created_at TEXT NOT NULL,
                triggered_at TEXT,
                completed_at TEXT,
                snoozed_at TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_reminders_status_due ON reminders(status, due_time);
            CREATE INDEX IF NOT EXISTS idx_reminders_owner ON reminders(owner_id);

            CREATE TABLE IF NOT EXISTS location_reminders (
                id TEXT PRIMARY KEY,
                owner_id TEXT NOT NULL,
                title TEXT NOT NULL,
                description TEXT DEFAULT '',
                location TEXT NOT NULL,
                latitude REAL NOT NULL,
                longitude REAL NOT NULL,
                radius REAL NOT NULL,
                priority TEXT NOT NULL DEFAULT 'medium',
                status TEXT NOT NULL DEFAULT 'pending',
                created_at TEXT NOT NULL,
                triggered_at TEXT,
                completed_at TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_location_owner_status ON location_reminders(owner_id, status);

            CREATE TABLE IF NOT EXISTS notification_queue (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                owner_id TEXT NOT NULL,
                payload TEXT NOT NULL,
                scheduled_time TEXT NOT NULL,
                created_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_queue_scheduled ON notification_queue(scheduled_time);

            CREATE TABLE IF NOT EXISTS notification_logs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                owner_id TEXT NOT NULL,
                notification_type TEXT NOT NULL,
                priority TEXT NOT NULL,
                channels TEXT NOT NULL,
                success INTEGER NOT NULL,
                created_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_logs_owner ON notification_logs(owner_id, created_at);

            CREATE TABLE IF NOT EXISTS notification_preferences (
                owner_id TEXT PRIMARY KEY,
                preferences TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            -- In-app inbox
            CREATE TABLE IF NOT EXISTS user_notifications (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                owner_id TEXT NOT NULL,
                type TEXT NOT NULL,
                title TEXT NOT NULL,
                body TEXT DEFAULT '',
                data TEXT DEFAULT '{}',
                priority TEXT NOT NULL,
                read INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_inbox_owner ON user_notifications(owner_id, read);
        """)
        conn.commit()

    @contextmanager
    def _transaction(self):
        """Context manager for database transactions."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise PersistenceError(str(e)) from e
        except Exception:
            conn.rollback()
            raise

    def _query(self, sql: str, params: Iterable = ()) -> list[sqlite3.Row]:
        try:
            return self._get_connection().execute(sql, tuple(params)).fetchall()
        except sqlite3.Error as e:
            raise PersistenceError(str(e)) from e

    def close(self) -> None:
        """Close the database connection."""
        if self._connection is not None:
            self._connection.close()
            self._connection = None

    # ------------------------------------------------------------------
    # Reminders
    # ------------------------------------------------------------------

    def insert_reminder(self, reminder: Reminder) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO reminders
                (id, owner_id, title, description, due_time, priority, recurring,
                 recurrence_pattern, series_id, series_start, occurrence, status, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    reminder.id, reminder.owner_id, reminder.title, reminder.description,
                    to_iso(reminder.due_time), reminder.priority.value, int(reminder.recurring),
                    reminder.recurrence.value, reminder.series_id or reminder.id,
                    to_iso(reminder.series_start), reminder.occurrence,
                    reminder.status.value, to_iso(reminder.created_at),
                )
            )
        logger.debug(f"Reminder {reminder.id} persisted")

    def get_reminder(self, reminder_id: str) -> Optional[Reminder]:
        rows = self._query("SELECT * FROM reminders WHERE id = ?", (reminder_id,))
        return Reminder.from_row(rows[0]) if rows else None

    def list_reminders(self, owner_id: str, status: Optional[str] = None) -> list[Reminder]:
        """Reminders for an owner, soonest first."""
        sql = "SELECT * FROM reminders WHERE owner_id = ?"
        params: list = [owner_id]
        if status:
            sql += " AND status = ?"
            params.append(status)
        sql += " ORDER BY due_time ASC, rowid ASC"
        return [Reminder.from_row(r) for r in self._query(sql, params)]

    def occurrence_exists(self, series_id: str, occurrence: int) -> bool:
        rows = self._query(
            "SELECT 1 FROM reminders WHERE series_id = ? AND occurrence = ?",
            (series_id, occurrence)
        )
        return bool(rows)

    def get_due_reminders(self, now: datetime) -> list[Reminder]:
        """Pending or snoozed reminders whose due time has passed."""
        rows = self._query(
            """
            SELECT * FROM reminders
            WHERE status IN ('pending', 'snoozed') AND due_time <= ?
            ORDER BY due_time ASC
            """,
            (to_iso(now),)
        )
        return [Reminder.from_row(r) for r in rows]

    def get_future_reminders(self, now: datetime) -> list[Reminder]:
        """Pending or snoozed reminders still waiting for their due time."""
        rows = self._query(
            """
            SELECT * FROM reminders
            WHERE status IN ('pending', 'snoozed') AND due_time > ?
            ORDER BY due_time ASC
            """,
            (to_iso(now),)
        )
        return [Reminder.from_row(r) for r in rows]

    def transition_reminder(
        self,
        reminder_id: str,
        from_statuses: Iterable[str],
        to_status: str,
        stamp_column: Optional[str],
        now: datetime,
        due_time: Optional[datetime] = None,
    ) -> bool:
        """Compare-and-set a reminder's status.

        Returns:
            True if this call changed the row, False if it was not in any of
            `from_statuses` (already moved by someone else, or missing)
        """
        from_statuses = list(from_statuses)
        assignments = ["status = ?"]
        params: list = [to_status]
        if stamp_column:
            assignments.append(f"{stamp_column} = ?")
            params.append(to_iso(now))
        if due_time is not None:
            assignments.append("due_time = ?")
            params.append(to_iso(due_time))

        placeholders = ", ".join("?" for _ in from_statuses)
        params.extend([reminder_id, *from_statuses])

        with self._transaction() as conn:
            cursor = conn.execute(
                f"UPDATE reminders SET {', '.join(assignments)} "
                f"WHERE id = ? AND status IN ({placeholders})",
                params
            )
            return cursor.rowcount == 1

    def delete_reminder(self, reminder_id: str) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM reminders WHERE id = ?", (reminder_id,))
            return cursor.rowcount == 1

    # ------------------------------------------------------------------
    # Location reminders
    # ------------------------------------------------------------------

    def insert_location_reminder(self, reminder: LocationReminder) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO location_reminders
                (id, owner_id, title, description, location, latitude, longitude,
                 radius, priority, status, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    reminder.id, reminder.owner_id, reminder.title, reminder.description,
                    reminder.location, reminder.latitude, reminder.longitude, reminder.radius,
                    reminder.priority.value, reminder.status.value, to_iso(reminder.created_at),
                )
            )

    def get_location_reminder(self, reminder_id: str) -> Optional[LocationReminder]:
        rows = self._query("SELECT * FROM location_reminders WHERE id = ?", (reminder_id,))
        return LocationReminder.from_row(rows[0]) if rows else None

    def list_location_reminders(self, owner_id: str, status: Optional[str] = None) -> list[LocationReminder]:
        sql = "SELECT * FROM location_reminders WHERE owner_id = ?"
        params: list = [owner_id]
        if status:
            sql += " AND status = ?"
            params.append(status)
        sql += " ORDER BY created_at ASC, rowid ASC"
        return [LocationReminder.from_row(r) for r in self._query(sql, params)]

    def transition_location_reminder(
        self,
        reminder_id: str,
        from_status: str,
        to_status: str,
        stamp_column: str,
        now: datetime,
    ) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute(
                f"UPDATE location_reminders SET status = ?, {stamp_column} = ? "
                f"WHERE id = ? AND status = ?",
                (to_status, to_iso(now), reminder_id, from_status)
            )
            return cursor.rowcount == 1

    def get_status(self, kind: str, reminder_id: str) -> Optional[str]:
        """Current status of a time or location reminder, None if it's gone."""
        table = "location_reminders" if kind == "location" else "reminders"
        rows = self._query(f"SELECT status FROM {table} WHERE id = ?", (reminder_id,))
        return rows[0]["status"] if rows else None

    # ------------------------------------------------------------------
    # Notification queue
    # ------------------------------------------------------------------

    def enqueue_notification(self, owner_id: str, payload: dict, scheduled_time: datetime, now: datetime) -> int:
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO notification_queue (owner_id, payload, scheduled_time, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (owner_id, json.dumps(payload, default=str), to_iso(scheduled_time), to_iso(now))
            )
            return cursor.lastrowid

    def claim_due_notifications(self, now: datetime) -> list[tuple[str, dict]]:
        """Remove and return queued notifications whose time has come.

        Rows are deleted in the same transaction so two sweeps never deliver
        the same entry.
        """
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM notification_queue WHERE scheduled_time <= ? ORDER BY scheduled_time ASC",
                (to_iso(now),)
            ).fetchall()
            if rows:
                conn.executemany(
                    "DELETE FROM notification_queue WHERE id = ?",
                    [(r["id"],) for r in rows]
                )
        return [(r["owner_id"], json.loads(r["payload"])) for r in rows]

    def count_queued(self, owner_id: Optional[str] = None) -> int:
        if owner_id is None:
            rows = self._query("SELECT COUNT(*) AS n FROM notification_queue")
        else:
            rows = self._query("SELECT COUNT(*) AS n FROM notification_queue WHERE owner_id = ?", (owner_id,))
        return rows[0]["n"]

    # ------------------------------------------------------------------
    # Delivery log
    # ------------------------------------------------------------------

    def log_delivery(
        self,
        owner_id: str,
        notification_type: str,
        priority: str,
        channel_results: list[dict],
        success: bool,
        now: datetime,
    ) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO notification_logs
                (owner_id, notification_type, priority, channels, success, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (owner_id, notification_type, priority, json.dumps(channel_results), int(success), to_iso(now))
            )

    def get_delivery_log(self, owner_id: str, limit: int = 50) -> list[dict]:
        rows = self._query(
            "SELECT * FROM notification_logs WHERE owner_id = ? ORDER BY id DESC LIMIT ?",
            (owner_id, limit)
        )
        return [
            {
                "owner_id": r["owner_id"],
                "type": r["notification_type"],
                "priority": r["priority"],
                "channels": json.loads(r["channels"]),
                "success": bool(r["success"]),
                "created_at": r["created_at"],
            }
            for r in rows
        ]

    # ------------------------------------------------------------------
    # Preferences
    # ------------------------------------------------------------------

    def get_preferences(self, owner_id: str) -> Optional[dict]:
        rows = self._query("SELECT preferences FROM notification_preferences WHERE owner_id = ?", (owner_id,))
        return json.loads(rows[0]["preferences"]) if rows else None

    def set_preferences(self, owner_id: str, preferences: dict, now: datetime) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO notification_preferences (owner_id, preferences, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(owner_id) DO UPDATE SET
                    preferences = excluded.preferences,
                    updated_at = excluded.updated_at
                """,
                (owner_id, json.dumps(preferences), to_iso(now))
            )

    def delete_preferences(self, owner_id: str) -> None:
        with self._transaction() as conn:
            conn.execute("DELETE FROM notification_preferences WHERE owner_id = ?", (owner_id,))

    # ------------------------------------------------------------------
    # In-app inbox
    # ------------------------------------------------------------------

    def add_user_notification(
        self,
        owner_id: str,
        notification_type: str,
        title: str,
        body: str,
        data: dict,
        priority: str,
        now: datetime,
    ) -> int:
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO user_notifications (owner_id, type, title, body, data, priority, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (owner_id, notification_type, title, body, json.dumps(data, default=str), priority, to_iso(now))
            )
            return cursor.lastrowid

    def get_user_notifications(self, owner_id: str, unread_only: bool = False) -> list[dict]:
        sql = "SELECT * FROM user_notifications WHERE owner_id = ?"
        if unread_only:
            sql += " AND read = 0"
        sql += " ORDER BY id DESC"
        return [
            {
                "id": r["id"],
                "type": r["type"],
                "title": r["title"],
                "body": r["body"],
                "data": json.loads(r["data"] or "{}"),
                "priority": r["priority"],
                "read": bool(r["read"]),
                "created_at": r["created_at"],
            }
            for r in self._query(sql, (owner_id,))
        ]
