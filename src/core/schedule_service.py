"""
Family Week Planner — Schedule service.

The single entry point the outer surfaces (HTTP API, Telegram bot) use:
resolved schedules, the override write path, task/template edits that
affect schedules, fairness analytics and shift status. Every write
publishes the matching push events on the EventBus.

Store calls are synchronous sqlite3 and run via asyncio.to_thread. Store
failures surface as ScheduleUnavailable.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from datetime import date, datetime, timedelta
from typing import Any, Callable
from zoneinfo import ZoneInfo

from src.config import settings
from src.core.events import (
    EventBus,
    ScheduleEvent,
    TaskAssigned,
    TaskScheduleUpdated,
    TaskUnassigned,
    WeekScheduleReverted,
    WeekScheduleUpdated,
)
from src.core.fairness import TaskSplit, compute_task_split
from src.core.override_validation import (
    ApplyOverrideRequest,
    parse_override_request,
    validate_overrides,
)
from src.core.resolver import ScheduleResolver
from src.core.shifts import ShiftStatus, compute_shift_status
from src.core.week_dates import monday_of, parse_week_start, trailing_weeks
from src.data.db import MemberDB
from src.data.models import (
    OverrideAction,
    ResolvedWeekSchedule,
    Task,
    TaskOverride,
    WeekTemplate,
)
from src.data.override_db import OverrideDB
from src.data.template_db import TemplateDB
from src.ports.schedule_port import ScheduleUnavailable

logger = logging.getLogger(__name__)


def _now_local() -> datetime:
    return datetime.now(ZoneInfo(settings.TIMEZONE))


class ScheduleService:
    """Implements SchedulePort in-process, plus the write and analytics paths."""

    def __init__(
        self,
        templates: TemplateDB,
        overrides: OverrideDB,
        members: MemberDB,
        bus: EventBus | None = None,
        clock: Callable[[], datetime] = _now_local,
    ) -> None:
        self.templates = templates
        self.overrides = overrides
        self.members = members
        self.bus = bus or EventBus()
        self._clock = clock
        self._resolver = ScheduleResolver(templates, overrides, members)

    async def _store(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        try:
            return await asyncio.to_thread(fn, *args, **kwargs)
        except (sqlite3.Error, OSError) as exc:
            logger.error("Store operation %s failed: %s", getattr(fn, "__name__", fn), exc)
            raise ScheduleUnavailable(f"Store operation failed: {exc}") from exc

    async def _read(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Like _store, for reads only: a row that fails to decode is a store failure too."""
        try:
            return await asyncio.to_thread(fn, *args, **kwargs)
        except (sqlite3.Error, OSError, ValueError) as exc:
            logger.error("Store read %s failed: %s", getattr(fn, "__name__", fn), exc)
            raise ScheduleUnavailable(f"Store read failed: {exc}") from exc

    async def _publish(self, events: list[ScheduleEvent]) -> None:
        for event in events:
            await self.bus.publish(event)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_week_schedule(self, family_id: str, week_start: date) -> ResolvedWeekSchedule:
        """Resolve one week. week_start must be a Monday."""
        return await self._resolver.resolve(family_id, parse_week_start(week_start))

    # ------------------------------------------------------------------
    # Override write path
    # ------------------------------------------------------------------

    async def apply_override(
        self, family_id: str, request: ApplyOverrideRequest | dict[str, Any],
    ) -> ResolvedWeekSchedule:
        """Validate and store an override batch, then return the new schedule.

        Raises:
            InvalidOverride: the batch was rejected; nothing was written.
            ScheduleUnavailable: a store read or write failed.
        """
        if not isinstance(request, ApplyOverrideRequest):
            request = parse_override_request(request)

        tasks = await self._read(self.templates.list_tasks, family_id, active_only=False)
        members = await self._read(self.members.list_members, family_id)
        week_templates = await self._read(
            self.templates.list_week_templates, family_id, active_only=False,
        )
        overrides = validate_overrides(request, tasks, members, week_templates)

        week_start = request.week_start_date
        stored, discarded = await self._store(
            self.overrides.save_overrides,
            family_id,
            week_start,
            overrides,
            replace_existing=request.replace_existing,
            week_template_id=request.week_template_id,
        )

        task_names = {t.id: t.name for t in tasks}
        events: list[ScheduleEvent] = []
        for old in discarded:
            if old.action != OverrideAction.REMOVE and old.new_member_id:
                events.append(self._unassigned(family_id, old.new_member_id, old, task_names))
        for new in overrides:
            events.extend(self._assignment_events(family_id, new, task_names))
        events.append(WeekScheduleUpdated(
            family_id=family_id,
            week_start_date=week_start,
            is_template_change=request.week_template_id is not None,
            has_overrides=bool(stored.task_overrides),
        ))
        await self._publish(events)

        return await self._resolver.resolve(family_id, week_start)

    @staticmethod
    def _unassigned(
        family_id: str, member_id: str, override: TaskOverride, task_names: dict[str, str],
    ) -> TaskUnassigned:
        return TaskUnassigned(
            family_id=family_id,
            task_id=override.task_id,
            member_id=member_id,
            date=override.assigned_date,
            task_name=task_names.get(override.task_id, ""),
        )

    def _assignment_events(
        self, family_id: str, override: TaskOverride, task_names: dict[str, str],
    ) -> list[ScheduleEvent]:
        events: list[ScheduleEvent] = []
        action = OverrideAction(override.action)
        if action in (OverrideAction.REMOVE, OverrideAction.REASSIGN) and override.original_member_id:
            events.append(self._unassigned(family_id, override.original_member_id, override, task_names))
        if action in (OverrideAction.ADD, OverrideAction.REASSIGN) and override.new_member_id:
            events.append(TaskAssigned(
                family_id=family_id,
                task_id=override.task_id,
                member_id=override.new_member_id,
                date=override.assigned_date,
                task_name=task_names.get(override.task_id, ""),
            ))
        return events

    async def revert_week(self, family_id: str, week_start: date) -> ResolvedWeekSchedule:
        """Drop all overrides of the week so it follows its templates again."""
        week_start = parse_week_start(week_start)
        removed = await self._store(self.overrides.delete_week_override, family_id, week_start)

        if removed is not None:
            tasks = await self._read(self.templates.list_tasks, family_id, active_only=False)
            task_names = {t.id: t.name for t in tasks}
            events: list[ScheduleEvent] = [
                self._unassigned(family_id, o.new_member_id, o, task_names)
                for o in removed
                if o.action != OverrideAction.REMOVE and o.new_member_id
            ]
            events.append(WeekScheduleReverted(family_id=family_id, week_start_date=week_start))
            await self._publish(events)

        return await self._resolver.resolve(family_id, week_start)

    # ------------------------------------------------------------------
    # Template edits
    # ------------------------------------------------------------------

    async def get_task(self, task_id: str) -> Task | None:
        return await self._read(self.templates.get_task, task_id)

    async def get_week_template(self, template_id: str) -> WeekTemplate | None:
        return await self._read(self.templates.get_week_template, template_id)

    async def update_task(self, task_id: str, **changes: Any) -> Task:
        """Edit a task. Any week may show it, so the event carries no date."""
        task = await self._store(self.templates.update_task, task_id, **changes)
        await self.bus.publish(TaskScheduleUpdated(family_id=task.family_id, task_id=task.id))
        return task

    async def deactivate_task(self, task_id: str) -> bool:
        task = await self._read(self.templates.get_task, task_id)
        if task is None:
            raise ValueError(f"Task {task_id} not found")
        deactivated = await self._store(self.templates.deactivate_task, task_id)
        if deactivated:
            await self.bus.publish(TaskScheduleUpdated(family_id=task.family_id, task_id=task.id))
        return deactivated

    async def update_week_template(self, template_id: str, **changes: Any) -> WeekTemplate:
        """Edit a week template. The set of affected weeks is unknown."""
        template = await self._store(self.templates.update_week_template, template_id, **changes)
        await self.bus.publish(WeekScheduleUpdated(family_id=template.family_id, is_template_change=True))
        return template

    # ------------------------------------------------------------------
    # Analytics
    # ------------------------------------------------------------------

    async def _resolve_many(self, family_id: str, weeks: list[date]) -> dict[date, ResolvedWeekSchedule]:
        schedules = await asyncio.gather(
            *(self._resolver.resolve(family_id, week) for week in weeks)
        )
        return dict(zip(weeks, schedules))

    async def task_split(
        self, family_id: str, week_start: date, window_weeks: int | None = None,
    ) -> TaskSplit:
        """Fairness over the window of weeks ending with (and including) week_start."""
        window = window_weeks or settings.FAIRNESS_WINDOW_WEEKS
        if window < 1:
            raise ValueError("window_weeks must be at least 1")
        weeks = trailing_weeks(parse_week_start(week_start), window)
        members = await self._read(self.members.list_members, family_id)
        resolved = await self._resolve_many(family_id, weeks)
        return compute_task_split(family_id, [resolved[w] for w in weeks], members)

    async def fairness_history(
        self,
        family_id: str,
        week_start: date,
        weeks: int = 12,
        window_weeks: int | None = None,
    ) -> list[tuple[date, float]]:
        """Fairness score for each of the `weeks` weeks ending at week_start, oldest first."""
        window = window_weeks or settings.FAIRNESS_WINDOW_WEEKS
        if weeks < 1 or window < 1:
            raise ValueError("weeks and window_weeks must be at least 1")
        anchors = trailing_weeks(parse_week_start(week_start), weeks)
        needed = trailing_weeks(anchors[-1], weeks + window - 1)
        members = await self._read(self.members.list_members, family_id)
        resolved = await self._resolve_many(family_id, needed)

        history = []
        for anchor in anchors:
            window_schedules = [resolved[w] for w in trailing_weeks(anchor, window)]
            split = compute_task_split(family_id, window_schedules, members)
            history.append((anchor, split.fairness_score))
        return history

    # ------------------------------------------------------------------
    # Shift status
    # ------------------------------------------------------------------

    def now(self) -> datetime:
        return self._clock()

    async def shift_status(
        self,
        family_id: str,
        member_id: str,
        week_start: date | None = None,
        now: datetime | None = None,
    ) -> ShiftStatus | None:
        """The member's current shift, else their next one (this week or the following)."""
        now = now or self._clock()
        week = parse_week_start(week_start) if week_start else monday_of(now.date())

        this_week = await self._resolver.resolve(family_id, week)
        status = compute_shift_status([this_week], member_id, now)
        if status is None:
            following = await self._resolver.resolve(family_id, week + timedelta(weeks=1))
            status = compute_shift_status([following], member_id, now)
        return status
