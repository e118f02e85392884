"""
Family Week Planner — Data Models.

Store entities (Task, DayTemplate, WeekTemplate, WeekOverride, Member) persist
in SQLite. The Resolved* types are derived by the resolution engine and are
never persisted.

Day-of-week convention: 0 = Sunday … 6 = Saturday (calendar convention,
not ISO). Convert with src.core.week_dates.calendar_day_of_week().
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import Enum


class ApplyRule(str, Enum):
    """Restricts a week template to even or odd ISO weeks."""

    EVEN_WEEKS = "EVEN_WEEKS"
    ODD_WEEKS = "ODD_WEEKS"


class OverrideAction(str, Enum):
    ADD = "ADD"
    REMOVE = "REMOVE"
    REASSIGN = "REASSIGN"


class TaskSource(str, Enum):
    TEMPLATE = "template"
    OVERRIDE = "override"


# ---------------------------------------------------------------------------
# Template Store
# ---------------------------------------------------------------------------


@dataclass
class Member:
    """A family member. Virtual members (e.g. a young child) have no login."""

    id: str
    family_id: str
    display_name: str
    is_virtual: bool = False
    is_admin: bool = False
    telegram_user_id: int | None = None


@dataclass
class Task:
    """A reusable household task with default timing."""

    id: str
    family_id: str
    name: str
    default_start_time: str           # "HH:MM", 24h
    default_duration: int             # minutes, > 0
    icon: str = "other"
    color: str = "#3357FF"
    is_active: bool = field(default=True)


@dataclass
class DayTemplateItem:
    """Template-level assignment of a task; member_id None means unassigned."""

    id: str
    task_id: str
    member_id: str | None = None
    override_time: str | None = None
    override_duration: int | None = None
    sort_order: int = 0


@dataclass
class DayTemplate:
    id: str
    family_id: str
    name: str
    description: str = ""
    items: list[DayTemplateItem] = field(default_factory=list)


@dataclass
class WeekTemplateDay:
    day_of_week: int                  # 0 = Sunday
    day_template_id: str


@dataclass
class WeekTemplate:
    """Maps weekdays to day templates; selected per week by rule and priority."""

    id: str
    family_id: str
    name: str
    is_default: bool = False
    apply_rule: ApplyRule | None = None
    priority: int = 0
    is_active: bool = True
    created_at: str = ""
    days: list[WeekTemplateDay] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Override Store
# ---------------------------------------------------------------------------


@dataclass
class TaskOverride:
    """A date-scoped correction applied on top of the template output."""

    assigned_date: date
    task_id: str
    action: OverrideAction
    original_member_id: str | None = None
    new_member_id: str | None = None
    override_time: str | None = None
    override_duration: int | None = None


@dataclass
class WeekOverride:
    """All overrides of one family for one week, in stored order."""

    family_id: str
    week_start_date: date             # always a Monday
    task_overrides: list[TaskOverride] = field(default_factory=list)
    week_template_id: str | None = None


# ---------------------------------------------------------------------------
# Resolved (derived, never persisted)
# ---------------------------------------------------------------------------


@dataclass
class ResolvedTask:
    task_id: str
    member_id: str | None
    override_time: str | None
    override_duration: int | None
    source: TaskSource
    task: Task
    member: Member | None = None

    @property
    def start_time(self) -> str:
        """Effective start time: override, else the task default."""
        return self.override_time or self.task.default_start_time

    @property
    def duration(self) -> int:
        """Effective duration in minutes."""
        return self.override_duration or self.task.default_duration

    @property
    def is_inactive(self) -> bool:
        """True when the task was deactivated after being scheduled (UI grays it)."""
        return not self.task.is_active


@dataclass
class ResolvedDay:
    date: date
    tasks: list[ResolvedTask] = field(default_factory=list)


@dataclass
class BaseTemplateRef:
    id: str
    name: str


@dataclass
class ResolvedWeekSchedule:
    family_id: str
    week_start_date: date
    base_template: BaseTemplateRef | None
    has_overrides: bool
    days: list[ResolvedDay] = field(default_factory=list)
