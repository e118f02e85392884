"""
Family Week Planner — Template Store.

Tasks, day templates (ordered task assignments for one day) and week
templates (weekday → day template, selected per week by rule and priority).
Pure data: no resolution logic lives here.

Tasks are soft-deactivated, never hard-deleted, so templates and overrides
that reference them keep resolving.
"""

from __future__ import annotations

import logging
import sqlite3
import uuid
from datetime import datetime
from pathlib import Path

from src.core.week_dates import is_valid_hhmm
from src.data.models import (
    ApplyRule,
    DayTemplate,
    DayTemplateItem,
    Task,
    WeekTemplate,
    WeekTemplateDay,
)

logger = logging.getLogger(__name__)

_TASK_FIELDS = {"name", "icon", "color", "default_start_time", "default_duration"}
_WEEK_TEMPLATE_FIELDS = {"name", "is_default", "apply_rule", "priority", "is_active"}


def _check_timing(start_time: str | None, duration: int | None) -> None:
    if start_time is not None and not is_valid_hhmm(start_time):
        raise ValueError(f"Start time must be in HH:MM format, got {start_time!r}")
    if duration is not None and not 1 <= duration <= 1440:
        raise ValueError(f"Duration must be between 1 and 1440 minutes, got {duration}")


class TemplateDB:
    """SQLite-backed storage for tasks, day templates and week templates."""

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
        """Create the template tables if they don't exist."""
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS tasks (
                    id                 TEXT PRIMARY KEY,
                    family_id          TEXT    NOT NULL,
                    name               TEXT    NOT NULL,
                    icon               TEXT    NOT NULL DEFAULT 'other',
                    color              TEXT    NOT NULL DEFAULT '#3357FF',
                    default_start_time TEXT    NOT NULL,
                    default_duration   INTEGER NOT NULL,
                    active             INTEGER NOT NULL DEFAULT 1
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS day_templates (
                    id           TEXT PRIMARY KEY,
                    family_id    TEXT NOT NULL,
                    name         TEXT NOT NULL,
                    description  TEXT NOT NULL DEFAULT ''
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS day_template_items (
                    id                TEXT PRIMARY KEY,
                    day_template_id   TEXT    NOT NULL,
                    task_id           TEXT    NOT NULL,
                    member_id         TEXT,
                    override_time     TEXT,
                    override_duration INTEGER,
                    sort_order        INTEGER NOT NULL DEFAULT 0
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS week_templates (
                    id          TEXT PRIMARY KEY,
                    family_id   TEXT    NOT NULL,
                    name        TEXT    NOT NULL,
                    is_default  INTEGER NOT NULL DEFAULT 0,
                    apply_rule  TEXT,
                    priority    INTEGER NOT NULL DEFAULT 0,
                    active      INTEGER NOT NULL DEFAULT 1,
                    created_at  TEXT    NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS week_template_days (
                    week_template_id TEXT    NOT NULL,
                    day_of_week      INTEGER NOT NULL,
                    day_template_id  TEXT    NOT NULL,
                    PRIMARY KEY (week_template_id, day_of_week)
                )
            """)
        logger.debug("Template tables initialized at %s", self._db_path)

    # ------------------------------------------------------------------
    # Row mappers
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_task(row: sqlite3.Row) -> Task:
        return Task(
            id=row["id"],
            family_id=row["family_id"],
            name=row["name"],
            icon=row["icon"],
            color=row["color"],
            default_start_time=row["default_start_time"],
            default_duration=row["default_duration"],
            is_active=bool(row["active"]),
        )

    @staticmethod
    def _row_to_item(row: sqlite3.Row) -> DayTemplateItem:
        return DayTemplateItem(
            id=row["id"],
            task_id=row["task_id"],
            member_id=row["member_id"],
            override_time=row["override_time"],
            override_duration=row["override_duration"],
            sort_order=row["sort_order"],
        )

    @staticmethod
    def _row_to_week_template(
        row: sqlite3.Row, days: list[WeekTemplateDay],
    ) -> WeekTemplate:
        return WeekTemplate(
            id=row["id"],
            family_id=row["family_id"],
            name=row["name"],
            is_default=bool(row["is_default"]),
            apply_rule=ApplyRule(row["apply_rule"]) if row["apply_rule"] else None,
            priority=row["priority"],
            is_active=bool(row["active"]),
            created_at=row["created_at"],
            days=days,
        )

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def add_task(
        self,
        family_id: str,
        name: str,
        default_start_time: str,
        default_duration: int,
        icon: str = "other",
        color: str = "#3357FF",
        task_id: str | None = None,
    ) -> Task:
        """Insert a new active task."""
        _check_timing(default_start_time, default_duration)
        task_id = task_id or uuid.uuid4().hex
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO tasks
                    (id, family_id, name, icon, color,
                     default_start_time, default_duration, active)
                VALUES (?, ?, ?, ?, ?, ?, ?, 1)
                """,
                (task_id, family_id, name, icon, color, default_start_time, default_duration),
            )
        logger.info("Task added: %s '%s' at %s for %d min", task_id, name, default_start_time, default_duration)
        return Task(
            id=task_id,
            family_id=family_id,
            name=name,
            icon=icon,
            color=color,
            default_start_time=default_start_time,
            default_duration=default_duration,
        )

    def get_task(self, task_id: str) -> Task | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_task(row)

    def list_tasks(self, family_id: str, active_only: bool = True) -> list[Task]:
        """List a family's tasks, optionally including deactivated ones."""
        query = "SELECT * FROM tasks WHERE family_id = ?"
        if active_only:
            query += " AND active = 1"
        query += " ORDER BY default_start_time, name"
        with self._connect() as conn:
            rows = conn.execute(query, (family_id,)).fetchall()
        return [self._row_to_task(r) for r in rows]

    def update_task(self, task_id: str, **changes: object) -> Task:
        """Edit a task's mutable attributes. Identity never changes."""
        unknown = set(changes) - _TASK_FIELDS
        if unknown:
            raise ValueError(f"Cannot update task fields: {', '.join(sorted(unknown))}")
        _check_timing(changes.get("default_start_time"), changes.get("default_duration"))

        if changes:
            assignments = ", ".join(f"{column} = ?" for column in changes)
            with self._connect() as conn:
                cursor = conn.execute(
                    f"UPDATE tasks SET {assignments} WHERE id = ?",
                    (*changes.values(), task_id),
                )
            if cursor.rowcount == 0:
                raise ValueError(f"Task {task_id} not found")

        task = self.get_task(task_id)
        if task is None:
            raise ValueError(f"Task {task_id} not found")
        logger.info("Task %s updated: %s", task_id, ", ".join(sorted(changes)) or "no changes")
        return task

    def deactivate_task(self, task_id: str) -> bool:
        """Soft-delete a task (set active = False)."""
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE tasks SET active = 0 WHERE id = ? AND active = 1",
                (task_id,),
            )
        deactivated = cursor.rowcount > 0
        if deactivated:
            logger.info("Task %s deactivated", task_id)
        return deactivated

    # ------------------------------------------------------------------
    # Day templates
    # ------------------------------------------------------------------

    def add_day_template(
        self,
        family_id: str,
        name: str,
        description: str = "",
        template_id: str | None = None,
    ) -> DayTemplate:
        """Create an empty day template. Names are unique within a family."""
        template_id = template_id or uuid.uuid4().hex
        with self._connect() as conn:
            existing = conn.execute(
                "SELECT 1 FROM day_templates WHERE family_id = ? AND name = ?",
                (family_id, name),
            ).fetchone()
            if existing is not None:
                raise ValueError("A day template with this name already exists in this family")
            conn.execute(
                "INSERT INTO day_templates (id, family_id, name, description) VALUES (?, ?, ?, ?)",
                (template_id, family_id, name, description),
            )
        logger.info("Day template added: %s '%s'", template_id, name)
        return DayTemplate(id=template_id, family_id=family_id, name=name, description=description)

    def get_day_template(self, template_id: str) -> DayTemplate | None:
        """Fetch a day template with its items in display order."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM day_templates WHERE id = ?", (template_id,)
            ).fetchone()
            if row is None:
                return None
            item_rows = conn.execute(
                """
                SELECT * FROM day_template_items
                WHERE day_template_id = ?
                ORDER BY sort_order, rowid
                """,
                (template_id,),
            ).fetchall()
        return DayTemplate(
            id=row["id"],
            family_id=row["family_id"],
            name=row["name"],
            description=row["description"],
            items=[self._row_to_item(r) for r in item_rows],
        )

    def list_day_templates(self, family_id: str) -> list[DayTemplate]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT id FROM day_templates WHERE family_id = ? ORDER BY name",
                (family_id,),
            ).fetchall()
        return [t for t in (self.get_day_template(r["id"]) for r in rows) if t is not None]

    def add_day_template_item(
        self,
        day_template_id: str,
        task_id: str,
        member_id: str | None = None,
        override_time: str | None = None,
        override_duration: int | None = None,
    ) -> DayTemplateItem:
        """Append a task assignment to a day template."""
        _check_timing(override_time, override_duration)
        template = self.get_day_template(day_template_id)
        if template is None:
            raise ValueError("Day template not found")
        task = self.get_task(task_id)
        if task is None or task.family_id != template.family_id:
            raise ValueError("Task not found or does not belong to this family")
        if any(i.task_id == task_id and i.member_id == member_id for i in template.items):
            raise ValueError("This task is already assigned to this member in the template")

        item_id = uuid.uuid4().hex
        sort_order = max((i.sort_order for i in template.items), default=-1) + 1
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO day_template_items
                    (id, day_template_id, task_id, member_id,
                     override_time, override_duration, sort_order)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    item_id, day_template_id, task_id, member_id,
                    override_time, override_duration, sort_order,
                ),
            )
        logger.info("Item %s added to day template %s (task %s)", item_id, day_template_id, task_id)
        return DayTemplateItem(
            id=item_id,
            task_id=task_id,
            member_id=member_id,
            override_time=override_time,
            override_duration=override_duration,
            sort_order=sort_order,
        )

    def remove_day_template_item(self, item_id: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM day_template_items WHERE id = ?", (item_id,)
            )
        removed = cursor.rowcount > 0
        if removed:
            logger.info("Day template item %s removed", item_id)
        return removed

    # ------------------------------------------------------------------
    # Week templates
    # ------------------------------------------------------------------

    def add_week_template(
        self,
        family_id: str,
        name: str,
        is_default: bool = False,
        apply_rule: ApplyRule | None = None,
        priority: int = 0,
        created_at: str | None = None,
        template_id: str | None = None,
    ) -> WeekTemplate:
        """Create a week template. Setting is_default clears any other default."""
        template_id = template_id or uuid.uuid4().hex
        created_at = created_at or datetime.now().isoformat()
        rule = ApplyRule(apply_rule) if apply_rule else None

        with self._connect() as conn:
            existing = conn.execute(
                "SELECT 1 FROM week_templates WHERE family_id = ? AND name = ?",
                (family_id, name),
            ).fetchone()
            if existing is not None:
                raise ValueError("A week template with this name already exists in this family")
            if is_default:
                conn.execute(
                    "UPDATE week_templates SET is_default = 0 WHERE family_id = ?",
                    (family_id,),
                )
            conn.execute(
                """
                INSERT INTO week_templates
                    (id, family_id, name, is_default, apply_rule, priority, active, created_at)
                VALUES (?, ?, ?, ?, ?, ?, 1, ?)
                """,
                (
                    template_id, family_id, name, int(is_default),
                    rule.value if rule else None, priority, created_at,
                ),
            )
        logger.info(
            "Week template added: %s '%s' (priority %d, rule %s, default %s)",
            template_id, name, priority, rule.value if rule else None, is_default,
        )
        return WeekTemplate(
            id=template_id,
            family_id=family_id,
            name=name,
            is_default=is_default,
            apply_rule=rule,
            priority=priority,
            created_at=created_at,
        )

    def update_week_template(self, template_id: str, **changes: object) -> WeekTemplate:
        """Edit rule/priority/default/active flags or the name of a week template."""
        unknown = set(changes) - _WEEK_TEMPLATE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update week template fields: {', '.join(sorted(unknown))}")
        current = self.get_week_template(template_id)
        if current is None:
            raise ValueError("Week template not found")

        columns: dict[str, object] = {}
        for key, value in changes.items():
            if key == "apply_rule":
                columns["apply_rule"] = ApplyRule(value).value if value else None
            elif key == "is_active":
                columns["active"] = int(bool(value))
            elif key == "is_default":
                columns["is_default"] = int(bool(value))
            else:
                columns[key] = value

        with self._connect() as conn:
            if changes.get("is_default"):
                conn.execute(
                    "UPDATE week_templates SET is_default = 0 WHERE family_id = ? AND id != ?",
                    (current.family_id, template_id),
                )
            if columns:
                assignments = ", ".join(f"{column} = ?" for column in columns)
                conn.execute(
                    f"UPDATE week_templates SET {assignments} WHERE id = ?",
                    (*columns.values(), template_id),
                )
        logger.info("Week template %s updated: %s", template_id, ", ".join(sorted(changes)) or "no changes")
        return self.get_week_template(template_id)

    def _days_for(self, conn: sqlite3.Connection, template_id: str) -> list[WeekTemplateDay]:
        rows = conn.execute(
            """
            SELECT day_of_week, day_template_id FROM week_template_days
            WHERE week_template_id = ?
            ORDER BY day_of_week
            """,
            (template_id,),
        ).fetchall()
        return [WeekTemplateDay(day_of_week=r["day_of_week"], day_template_id=r["day_template_id"]) for r in rows]

    def get_week_template(self, template_id: str) -> WeekTemplate | None:
        """Fetch a week template with its weekday slots."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM week_templates WHERE id = ?", (template_id,)
            ).fetchone()
            if row is None:
                return None
            days = self._days_for(conn, template_id)
        return self._row_to_week_template(row, days)

    def list_week_templates(self, family_id: str, active_only: bool = True) -> list[WeekTemplate]:
        """List a family's week templates in creation (insertion) order."""
        query = "SELECT * FROM week_templates WHERE family_id = ?"
        if active_only:
            query += " AND active = 1"
        query += " ORDER BY rowid"
        with self._connect() as conn:
            rows = conn.execute(query, (family_id,)).fetchall()
            return [self._row_to_week_template(r, self._days_for(conn, r["id"])) for r in rows]

    def assign_day(
        self, week_template_id: str, day_of_week: int, day_template_id: str,
    ) -> WeekTemplateDay:
        """Map a weekday (0 = Sunday) of a week template to a day template."""
        if not 0 <= day_of_week <= 6:
            raise ValueError(f"day_of_week must be between 0 (Sunday) and 6, got {day_of_week}")
        week_template = self.get_week_template(week_template_id)
        if week_template is None:
            raise ValueError("Week template not found")
        day_template = self.get_day_template(day_template_id)
        if day_template is None or day_template.family_id != week_template.family_id:
            raise ValueError("Day template not found or does not belong to this family")
        if any(d.day_of_week == day_of_week for d in week_template.days):
            raise ValueError(f"Day {day_of_week} already has a template assigned")

        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO week_template_days (week_template_id, day_of_week, day_template_id)
                VALUES (?, ?, ?)
                """,
                (week_template_id, day_of_week, day_template_id),
            )
        logger.info(
            "Week template %s: day %d → day template %s",
            week_template_id, day_of_week, day_template_id,
        )
        return WeekTemplateDay(day_of_week=day_of_week, day_template_id=day_template_id)

    def unassign_day(self, week_template_id: str, day_of_week: int) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM week_template_days WHERE week_template_id = ? AND day_of_week = ?",
                (week_template_id, day_of_week),
            )
        return cursor.rowcount > 0
