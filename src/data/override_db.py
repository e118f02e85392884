"""
Family Week Planner — Override Store.

One WeekOverride per (family, week). Its task overrides keep the order they
were submitted in (the `position` column); the resolver applies them in that
order. Replacing or appending a batch happens in a single transaction so a
reader never sees half of a submission.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import date
from pathlib import Path

from src.data.models import OverrideAction, TaskOverride, WeekOverride

logger = logging.getLogger(__name__)


class OverrideDB:
    """SQLite-backed storage for per-week overrides."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from src.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS week_overrides (
                    family_id         TEXT NOT NULL,
                    week_start        TEXT NOT NULL,
                    week_template_id  TEXT,
                    PRIMARY KEY (family_id, week_start)
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS task_overrides (
                    family_id           TEXT    NOT NULL,
                    week_start          TEXT    NOT NULL,
                    position            INTEGER NOT NULL,
                    assigned_date       TEXT    NOT NULL,
                    task_id             TEXT    NOT NULL,
                    action              TEXT    NOT NULL,
                    original_member_id  TEXT,
                    new_member_id       TEXT,
                    override_time       TEXT,
                    override_duration   INTEGER,
                    PRIMARY KEY (family_id, week_start, position)
                )
            """)
        logger.debug("Override tables initialized at %s", self._db_path)

    @staticmethod
    def _row_to_override(row: sqlite3.Row) -> TaskOverride:
        return TaskOverride(
            assigned_date=date.fromisoformat(row["assigned_date"]),
            task_id=row["task_id"],
            action=OverrideAction(row["action"]),
            original_member_id=row["original_member_id"],
            new_member_id=row["new_member_id"],
            override_time=row["override_time"],
            override_duration=row["override_duration"],
        )

    @staticmethod
    def _read(conn: sqlite3.Connection, family_id: str, week: str) -> WeekOverride | None:
        header = conn.execute(
            "SELECT * FROM week_overrides WHERE family_id = ? AND week_start = ?",
            (family_id, week),
        ).fetchone()
        if header is None:
            return None
        rows = conn.execute(
            """
            SELECT * FROM task_overrides
            WHERE family_id = ? AND week_start = ?
            ORDER BY position
            """,
            (family_id, week),
        ).fetchall()
        return WeekOverride(
            family_id=family_id,
            week_start_date=date.fromisoformat(week),
            task_overrides=[OverrideDB._row_to_override(r) for r in rows],
            week_template_id=header["week_template_id"],
        )

    def get_week_override(self, family_id: str, week_start: date) -> WeekOverride | None:
        """Return the week's overrides in stored order, or None if there are none."""
        with self._connect() as conn:
            return self._read(conn, family_id, week_start.isoformat())

    def save_overrides(
        self,
        family_id: str,
        week_start: date,
        overrides: list[TaskOverride],
        replace_existing: bool = False,
        week_template_id: str | None = None,
    ) -> tuple[WeekOverride, list[TaskOverride]]:
        """Append (or replace) the week's overrides atomically.

        Returns:
            (stored WeekOverride, overrides that were discarded by a replace).
        """
        week = week_start.isoformat()
        conn = self._connect()
        try:
            with conn:
                existing = self._read(conn, family_id, week)
                discarded: list[TaskOverride] = []
                kept: list[TaskOverride] = []
                pinned = week_template_id
                if existing is not None:
                    if replace_existing:
                        discarded = existing.task_overrides
                    else:
                        kept = existing.task_overrides
                        pinned = week_template_id or existing.week_template_id

                conn.execute(
                    "DELETE FROM task_overrides WHERE family_id = ? AND week_start = ?",
                    (family_id, week),
                )
                conn.execute(
                    """
                    INSERT INTO week_overrides (family_id, week_start, week_template_id)
                    VALUES (?, ?, ?)
                    ON CONFLICT (family_id, week_start)
                    DO UPDATE SET week_template_id = excluded.week_template_id
                    """,
                    (family_id, week, pinned),
                )
                combined = kept + list(overrides)
                conn.executemany(
                    """
                    INSERT INTO task_overrides
                        (family_id, week_start, position, assigned_date, task_id, action,
                         original_member_id, new_member_id, override_time, override_duration)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    [
                        (
                            family_id, week, position, o.assigned_date.isoformat(),
                            o.task_id, OverrideAction(o.action).value,
                            o.original_member_id, o.new_member_id,
                            o.override_time, o.override_duration,
                        )
                        for position, o in enumerate(combined)
                    ],
                )
                stored = WeekOverride(
                    family_id=family_id,
                    week_start_date=week_start,
                    task_overrides=combined,
                    week_template_id=pinned,
                )
        finally:
            conn.close()

        logger.info(
            "Saved %d override(s) for family %s week %s (%s, %d discarded)",
            len(overrides), family_id, week,
            "replace" if replace_existing else "append", len(discarded),
        )
        return stored, discarded

    def delete_week_override(self, family_id: str, week_start: date) -> list[TaskOverride] | None:
        """Drop the week's overrides entirely.

        Returns:
            The removed overrides, or None if the week had none stored.
        """
        week = week_start.isoformat()
        conn = self._connect()
        try:
            with conn:
                existing = self._read(conn, family_id, week)
                if existing is None:
                    return None
                conn.execute(
                    "DELETE FROM task_overrides WHERE family_id = ? AND week_start = ?",
                    (family_id, week),
                )
                conn.execute(
                    "DELETE FROM week_overrides WHERE family_id = ? AND week_start = ?",
                    (family_id, week),
                )
        finally:
            conn.close()
        logger.info("Reverted week %s for family %s (%d override(s) removed)",
                    week, family_id, len(existing.task_overrides))
        return existing.task_overrides
