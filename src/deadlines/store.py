"""DeadlineStore: libsql persistence for deadlines and reminders."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from src.config import settings
from src.db import connection
from src.deadlines.models import (
    DEADLINE_COLUMNS,
    OPEN_STATUSES,
    REMINDER_COLUMNS,
    Deadline,
    DeadlineStatus,
    Reminder,
    to_iso,
)

if TYPE_CHECKING:
    from datetime import date
    from pathlib import Path

    from src.db import _AsyncConnection

logger = logging.getLogger(__name__)

_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS deadlines (
        id TEXT PRIMARY KEY,
        lab_id TEXT NOT NULL,
        title TEXT NOT NULL,
        category TEXT NOT NULL,
        due_date TEXT NOT NULL,
        priority TEXT NOT NULL DEFAULT 'medium',
        status TEXT NOT NULL DEFAULT 'pending',
        description TEXT NOT NULL DEFAULT '',
        responsible_party TEXT,
        external_url TEXT,
        completion_requirements TEXT,
        notification_lead_days INTEGER NOT NULL DEFAULT 7,
        reminder_schedule TEXT NOT NULL DEFAULT '[]',
        reminder_recipients TEXT NOT NULL DEFAULT '[]',
        notification_channel TEXT,
        is_recurring INTEGER NOT NULL DEFAULT 0,
        recurrence_pattern TEXT,
        recurrence_parent_id TEXT UNIQUE,
        tags TEXT NOT NULL DEFAULT '[]',
        created_by TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        completed_at TEXT,
        completed_by TEXT,
        completion_notes TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_deadlines_status_due ON deadlines (status, due_date)",
    "CREATE INDEX IF NOT EXISTS idx_deadlines_lab ON deadlines (lab_id, due_date)",
    """
    CREATE TABLE IF NOT EXISTS reminders (
        id TEXT PRIMARY KEY,
        deadline_id TEXT NOT NULL REFERENCES deadlines (id),
        lab_id TEXT NOT NULL,
        lead_days INTEGER NOT NULL,
        due_date TEXT NOT NULL,
        recipient TEXT NOT NULL,
        channel TEXT,
        fire_at TEXT NOT NULL,
        created_at TEXT NOT NULL,
        sent_at TEXT,
        retired_at TEXT,
        attempts INTEGER NOT NULL DEFAULT 0,
        last_attempt_at TEXT,
        last_error TEXT,
        claim_token TEXT,
        claimed_at TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_reminders_due ON reminders (sent_at, retired_at, fire_at)",
    "CREATE INDEX IF NOT EXISTS idx_reminders_deadline ON reminders (deadline_id)",
]

_DEADLINE_SELECT = f"SELECT {', '.join(DEADLINE_COLUMNS)} FROM deadlines"  # noqa: S608
_REMINDER_SELECT = f"SELECT {', '.join(REMINDER_COLUMNS)} FROM reminders"  # noqa: S608

# Fields an edit may rewrite; identity, status and completion metadata
# only change through their dedicated methods.
_EDITABLE = (
    "title",
    "category",
    "due_date",
    "priority",
    "description",
    "responsible_party",
    "external_url",
    "completion_requirements",
    "notification_lead_days",
    "reminder_schedule",
    "reminder_recipients",
    "notification_channel",
    "is_recurring",
    "recurrence_pattern",
    "tags",
    "updated_at",
)

_OPEN = tuple(sorted(status.value for status in OPEN_STATUSES))


def _placeholders(count: int) -> str:
    return ", ".join("?" * count)


class DeadlineStore:
    """Persists deadlines and reminders.

    Singleton accessed via ``DeadlineStore.get()``.  Pass an explicit
    *db_path* for test isolation (e.g. ``tmp_path / "test.db"``).

    Every method that can race with another writer is a single guarded
    ``UPDATE`` and returns whether it won.
    """

    _instance: DeadlineStore | None = None

    def __init__(self, db_path: Path | None = None) -> None:
        self._db_path = db_path
        self._initialised = False

    @classmethod
    def get(cls) -> DeadlineStore:
        """Return the shared DeadlineStore instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def _reset(cls) -> None:
        """Reset the singleton (for testing)."""
        cls._instance = None

    # -- Internal helpers ------------------------------------------------------

    async def _ensure_schema(self, db: _AsyncConnection) -> None:
        if not self._initialised:
            await db.execute_script(_SCHEMA)
            self._initialised = True

    async def _fetch_deadlines(self, where: str, params: tuple = ()) -> list[Deadline]:
        async with connection(self._db_path) as db:
            await self._ensure_schema(db)
            cursor = await db.execute(f"{_DEADLINE_SELECT} {where}", params)
            rows = await cursor.fetchall()
            return [Deadline.from_row(row) for row in rows]

    async def _fetch_reminders(self, where: str, params: tuple = ()) -> list[Reminder]:
        async with connection(self._db_path) as db:
            await self._ensure_schema(db)
            cursor = await db.execute(f"{_REMINDER_SELECT} {where}", params)
            rows = await cursor.fetchall()
            return [Reminder.from_row(row) for row in rows]

    async def _write(self, sql: str, params: tuple) -> int:
        """Execute one write statement and return the affected row count."""
        async with connection(self._db_path) as db:
            await self._ensure_schema(db)
            cursor = await db.execute(sql, params)
            await db.commit()
            return cursor.rowcount

    # -- Deadlines -------------------------------------------------------------

    async def add_deadline(self, deadline: Deadline) -> Deadline:
        """Insert a new deadline. Returns the same object.

        Raises on a duplicate id or a second instance expanded from the
        same parent (``recurrence_parent_id`` is unique).
        """
        await self._write(
            f"INSERT INTO deadlines ({', '.join(DEADLINE_COLUMNS)}) "  # noqa: S608
            f"VALUES ({_placeholders(len(DEADLINE_COLUMNS))})",
            deadline.to_row(),
        )
        logger.info(
            "Added deadline: %s (%s) due %s", deadline.title, deadline.id, deadline.due_date
        )
        return deadline

    async def get_deadline(self, deadline_id: str) -> Deadline | None:
        """Fetch a deadline by ID, or None if not found."""
        found = await self._fetch_deadlines("WHERE id = ?", (deadline_id,))
        return found[0] if found else None

    async def list_deadlines(self, lab_id: str, *, include_terminal: bool = True) -> list[Deadline]:
        """Return a lab's deadlines ordered by due date."""
        if include_terminal:
            return await self._fetch_deadlines(
                "WHERE lab_id = ? ORDER BY due_date, created_at", (lab_id,)
            )
        return await self._fetch_deadlines(
            "WHERE lab_id = ? AND status IN (?, ?) ORDER BY due_date, created_at",
            (lab_id, *_OPEN),
        )

    async def list_open_past_due(self, today: date) -> list[Deadline]:
        """Open deadlines (all labs) whose due date is before *today*."""
        return await self._fetch_deadlines(
            "WHERE status IN (?, ?) AND due_date < ? ORDER BY due_date",
            (*_OPEN, today.isoformat()),
        )

    async def list_unexpanded_recurring(self) -> list[Deadline]:
        """Recurring deadlines that closed out a cycle but have no successor."""
        return await self._fetch_deadlines(
            "WHERE is_recurring = 1 AND status IN (?, ?) AND NOT EXISTS ("
            " SELECT 1 FROM deadlines AS child WHERE child.recurrence_parent_id = deadlines.id"
            ") ORDER BY due_date",
            (DeadlineStatus.COMPLETED.value, DeadlineStatus.MISSED.value),
        )

    async def get_successor(self, deadline_id: str) -> Deadline | None:
        """The instance expanded from *deadline_id*, if any."""
        found = await self._fetch_deadlines(
            "WHERE recurrence_parent_id = ?", (deadline_id,)
        )
        return found[0] if found else None

    async def update_deadline(self, deadline: Deadline, *, expected_status: DeadlineStatus) -> bool:
        """Rewrite the editable fields, provided the status is still *expected_status*."""
        row = dict(zip(DEADLINE_COLUMNS, deadline.to_row(), strict=True))
        assignments = ", ".join(f"{name} = ?" for name in _EDITABLE)
        updated = await self._write(
            f"UPDATE deadlines SET {assignments} WHERE id = ? AND status = ?",  # noqa: S608
            (*(row[name] for name in _EDITABLE), deadline.id, expected_status.value),
        )
        return updated > 0

    async def compare_and_set_status(
        self,
        deadline_id: str,
        expected: DeadlineStatus,
        new: DeadlineStatus,
        *,
        now: datetime,
        actor_id: str | None = None,
        notes: str | None = None,
    ) -> bool:
        """Move a deadline from *expected* to *new*. False if the status had changed."""
        completed = new == DeadlineStatus.COMPLETED
        updated = await self._write(
            """
            UPDATE deadlines
               SET status = ?, updated_at = ?,
                   completed_at = ?, completed_by = ?, completion_notes = ?
             WHERE id = ? AND status = ?
            """,
            (
                new.value,
                to_iso(now),
                to_iso(now) if completed else None,
                actor_id if completed else None,
                notes if completed else None,
                deadline_id,
                expected.value,
            ),
        )
        if updated:
            logger.info("Deadline %s: %s → %s", deadline_id, expected.value, new.value)
        return updated > 0

    # -- Reminders -------------------------------------------------------------

    async def add_reminders(self, reminders: list[Reminder]) -> None:
        """Insert several reminders in one transaction."""
        if not reminders:
            return
        sql = (
            f"INSERT INTO reminders ({', '.join(REMINDER_COLUMNS)}) "  # noqa: S608
            f"VALUES ({_placeholders(len(REMINDER_COLUMNS))})"
        )
        async with connection(self._db_path) as db:
            await self._ensure_schema(db)
            for reminder in reminders:
                await db.execute(sql, reminder.to_row())
            await db.commit()
        logger.info(
            "Added %d reminder(s) for deadline %s", len(reminders), reminders[0].deadline_id
        )

    async def get_reminder(self, reminder_id: str) -> Reminder | None:
        found = await self._fetch_reminders("WHERE id = ?", (reminder_id,))
        return found[0] if found else None

    async def list_reminders(self, deadline_id: str) -> list[Reminder]:
        """All reminders of a deadline, including sent and retired ones."""
        return await self._fetch_reminders(
            "WHERE deadline_id = ? ORDER BY fire_at, created_at", (deadline_id,)
        )

    async def list_due_reminders(self, now: datetime) -> list[Reminder]:
        """Unsent, unretired reminders whose fire time has arrived."""
        return await self._fetch_reminders(
            "WHERE sent_at IS NULL AND retired_at IS NULL AND fire_at <= ? ORDER BY fire_at",
            (to_iso(now),),
        )

    async def retire_reminder(
        self,
        reminder_id: str,
        now: datetime,
        *,
        token: str | None = None,
        lease_seconds: int | None = None,
    ) -> bool:
        """Mark a pending reminder obsolete. No effect once sent or retired.

        A reminder whose claim is still live is mid-send and is left alone,
        unless *token* is that claim (the sender retiring its own reminder).
        """
        lease = lease_seconds or settings.reminder_claim_lease_seconds
        stale_before = now - timedelta(seconds=lease)
        updated = await self._write(
            """
            UPDATE reminders
               SET retired_at = ?, claim_token = NULL
             WHERE id = ? AND sent_at IS NULL AND retired_at IS NULL
               AND (claim_token IS NULL OR claim_token = ? OR claimed_at < ?)
            """,
            (to_iso(now), reminder_id, token, to_iso(stale_before)),
        )
        return updated > 0

    async def claim_reminder(
        self,
        reminder_id: str,
        token: str,
        now: datetime,
        lease_seconds: int,
    ) -> bool:
        """Take exclusive delivery rights on a reminder.

        Succeeds only if the reminder is unsent, unretired and either
        unclaimed or holding a claim older than *lease_seconds* (its owner
        presumably died mid-send).
        """
        stale_before = now - timedelta(seconds=lease_seconds)
        updated = await self._write(
            """
            UPDATE reminders
               SET claim_token = ?, claimed_at = ?
             WHERE id = ? AND sent_at IS NULL AND retired_at IS NULL
               AND (claim_token IS NULL OR claimed_at < ?)
            """,
            (token, to_iso(now), reminder_id, to_iso(stale_before)),
        )
        return updated > 0

    async def mark_reminder_sent(self, reminder_id: str, token: str, now: datetime) -> bool:
        """Record delivery. Write-once: fails if ``sent_at`` is already set."""
        updated = await self._write(
            """
            UPDATE reminders
               SET sent_at = ?, claim_token = NULL, attempts = attempts + 1,
                   last_attempt_at = ?, last_error = NULL
             WHERE id = ? AND sent_at IS NULL AND claim_token = ?
            """,
            (to_iso(now), to_iso(now), reminder_id, token),
        )
        return updated > 0

    async def release_reminder(
        self,
        reminder_id: str,
        token: str,
        now: datetime,
        error: str,
    ) -> bool:
        """Give up a claim after a failed delivery so the next sweep retries."""
        updated = await self._write(
            """
            UPDATE reminders
               SET claim_token = NULL, claimed_at = NULL, attempts = attempts + 1,
                   last_attempt_at = ?, last_error = ?
             WHERE id = ? AND claim_token = ?
            """,
            (to_iso(now), error[:500], reminder_id, token),
        )
        return updated > 0
