"""
Family Week Planner — Weekly Schedule Resolution Engine.

Merges three layers into one concrete per-day assignment view:

1. Base week template, selected for the week by parity rule and priority.
2. Day templates expanded onto the 7 calendar dates of the week.
3. Date-scoped overrides (ADD / REMOVE / REASSIGN), applied in stored order.

The pure functions in this module never fail: references that cannot be
resolved are dropped (unknown task) or unassigned (unknown member) with a
warning. Only the store reads in ScheduleResolver.resolve() can fail, and
they surface as a single ScheduleUnavailable.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from dataclasses import dataclass
from datetime import date

from src.core.week_dates import calendar_day_of_week, iso_week_number, week_dates
from src.data.models import (
    ApplyRule,
    BaseTemplateRef,
    DayTemplate,
    Member,
    OverrideAction,
    ResolvedDay,
    ResolvedTask,
    ResolvedWeekSchedule,
    Task,
    TaskOverride,
    TaskSource,
    WeekOverride,
    WeekTemplate,
)
from src.ports.schedule_port import ScheduleUnavailable

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Base template selection
# ---------------------------------------------------------------------------


def matches_parity(rule: ApplyRule | None, week_start: date) -> bool:
    """True if a template with this apply rule may run in the given week."""
    if rule is None:
        return True
    even = iso_week_number(week_start) % 2 == 0
    return even if rule == ApplyRule.EVEN_WEEKS else not even


def _most_preferred(templates: list[WeekTemplate]) -> WeekTemplate | None:
    # Highest priority wins; ties go to the most recently created template,
    # then to the one stored last.
    if not templates:
        return None
    ranked = max(
        enumerate(templates),
        key=lambda pair: (pair[1].priority, pair[1].created_at, pair[0]),
    )
    return ranked[1]


def select_base_template(
    templates: list[WeekTemplate], week_start: date,
) -> WeekTemplate | None:
    """Pick the week's base template.

    Order: highest-priority parity-matching template, then the default
    template, then nothing. `templates` must be in creation order.
    """
    active = [t for t in templates if t.is_active]
    matching = [t for t in active if matches_parity(t.apply_rule, week_start)]
    if matching:
        return _most_preferred(matching)
    return _most_preferred([t for t in active if t.is_default])


# ---------------------------------------------------------------------------
# Expansion and override application
# ---------------------------------------------------------------------------


@dataclass
class ResolutionContext:
    """Lookup tables for one family, loaded once per resolution."""

    tasks: dict[str, Task]
    members: dict[str, Member]
    day_templates: dict[str, DayTemplate]

    def member(self, member_id: str | None, where: str) -> Member | None:
        if member_id is None:
            return None
        member = self.members.get(member_id)
        if member is None:
            logger.warning("Unknown member %s in %s; treating as unassigned", member_id, where)
        return member

    def task(self, task_id: str, where: str) -> Task | None:
        task = self.tasks.get(task_id)
        if task is None:
            logger.warning("Unknown task %s in %s; dropping it", task_id, where)
        return task


def expand_base_days(
    template: WeekTemplate | None, week_start: date, ctx: ResolutionContext,
) -> list[ResolvedDay]:
    """Expand the base template onto the 7 dates of the week (Monday first)."""
    slots = {d.day_of_week: d.day_template_id for d in template.days} if template else {}
    days: list[ResolvedDay] = []

    for day in week_dates(week_start):
        resolved = ResolvedDay(date=day)
        day_template_id = slots.get(calendar_day_of_week(day))
        if day_template_id is not None:
            day_template = ctx.day_templates.get(day_template_id)
            if day_template is None:
                logger.warning(
                    "Week template %s references missing day template %s",
                    template.id, day_template_id,
                )
            else:
                where = f"day template {day_template.id}"
                for item in day_template.items:
                    task = ctx.task(item.task_id, where)
                    if task is None:
                        continue
                    member = ctx.member(item.member_id, where)
                    resolved.tasks.append(ResolvedTask(
                        task_id=task.id,
                        member_id=member.id if member else None,
                        override_time=item.override_time,
                        override_duration=item.override_duration,
                        source=TaskSource.TEMPLATE,
                        task=task,
                        member=member,
                    ))
        days.append(resolved)
    return days


def _find_match(
    tasks: list[ResolvedTask], task_id: str, member_id: str | None,
) -> int | None:
    for index, resolved in enumerate(tasks):
        if resolved.task_id != task_id:
            continue
        if member_id is not None and resolved.member_id != member_id:
            continue
        return index
    return None


def _added_task(override: TaskOverride, ctx: ResolutionContext) -> ResolvedTask | None:
    where = f"override on {override.assigned_date.isoformat()}"
    task = ctx.task(override.task_id, where)
    if task is None:
        return None
    member = ctx.member(override.new_member_id, where)
    return ResolvedTask(
        task_id=task.id,
        member_id=member.id if member else None,
        override_time=override.override_time,
        override_duration=override.override_duration,
        source=TaskSource.OVERRIDE,
        task=task,
        member=member,
    )


def apply_override(
    tasks: list[ResolvedTask], override: TaskOverride, ctx: ResolutionContext,
) -> None:
    """Apply a single override to one day's task list, in place."""
    action = OverrideAction(override.action)

    if action == OverrideAction.ADD:
        added = _added_task(override, ctx)
        if added is not None:
            tasks.append(added)
        return

    index = _find_match(tasks, override.task_id, override.original_member_id)

    if action == OverrideAction.REMOVE:
        if index is not None:
            del tasks[index]
        return

    # REASSIGN
    if index is None:
        added = _added_task(override, ctx)
        if added is not None:
            tasks.append(added)
        return
    current = tasks[index]
    member = ctx.member(override.new_member_id, f"override on {override.assigned_date.isoformat()}")
    current.member_id = member.id if member else None
    current.member = member
    if override.override_time is not None:
        current.override_time = override.override_time
    if override.override_duration is not None:
        current.override_duration = override.override_duration
    current.source = TaskSource.OVERRIDE


def apply_overrides(
    days: list[ResolvedDay], overrides: list[TaskOverride], ctx: ResolutionContext,
) -> None:
    """Apply overrides in stored order; each acts on the result of the previous ones."""
    by_date = {day.date: day for day in days}
    for override in overrides:
        day = by_date.get(override.assigned_date)
        if day is None:
            logger.warning(
                "Override for %s falls outside the week; ignoring",
                override.assigned_date.isoformat(),
            )
            continue
        apply_override(day.tasks, override, ctx)


def resolve_week(
    family_id: str,
    week_start: date,
    templates: list[WeekTemplate],
    ctx: ResolutionContext,
    week_override: WeekOverride | None = None,
    pinned: WeekTemplate | None = None,
) -> ResolvedWeekSchedule:
    """Pure resolution over already-loaded store state."""
    base = pinned or select_base_template(templates, week_start)
    days = expand_base_days(base, week_start, ctx)

    overrides = week_override.task_overrides if week_override else []
    apply_overrides(days, overrides, ctx)

    for day in days:
        day.tasks.sort(key=lambda t: t.start_time)

    return ResolvedWeekSchedule(
        family_id=family_id,
        week_start_date=week_start,
        base_template=BaseTemplateRef(id=base.id, name=base.name) if base else None,
        has_overrides=bool(overrides),
        days=days,
    )


# ---------------------------------------------------------------------------
# Store-backed resolver
# ---------------------------------------------------------------------------


class ScheduleResolver:
    """Reads the Template and Override stores and resolves a family's week.

    Holds no state between calls: every resolve() re-reads the stores.
    """

    def __init__(self, templates, overrides, members) -> None:
        self._templates = templates
        self._overrides = overrides
        self._members = members

    def resolve_sync(self, family_id: str, week_start: date) -> ResolvedWeekSchedule:
        templates = self._templates.list_week_templates(family_id, active_only=True)
        ctx = ResolutionContext(
            tasks={t.id: t for t in self._templates.list_tasks(family_id, active_only=False)},
            members={m.id: m for m in self._members.list_members(family_id)},
            day_templates={d.id: d for d in self._templates.list_day_templates(family_id)},
        )
        week_override = self._overrides.get_week_override(family_id, week_start)

        pinned = None
        if week_override is not None and week_override.week_template_id:
            pinned = self._templates.get_week_template(week_override.week_template_id)
            if pinned is None or pinned.family_id != family_id:
                logger.warning(
                    "Pinned week template %s for %s no longer exists; using template rules",
                    week_override.week_template_id, week_start.isoformat(),
                )
                pinned = None

        return resolve_week(family_id, week_start, templates, ctx, week_override, pinned)

    async def resolve(self, family_id: str, week_start: date) -> ResolvedWeekSchedule:
        """Resolve one week. Store failures raise ScheduleUnavailable."""
        try:
            return await asyncio.to_thread(self.resolve_sync, family_id, week_start)
        except (sqlite3.Error, OSError, ValueError) as exc:
            logger.error(
                "Store read failed resolving %s for family %s: %s",
                week_start.isoformat(), family_id, exc,
            )
            raise ScheduleUnavailable(f"Failed to load schedule: {exc}") from exc
