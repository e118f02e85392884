"""
Family Week Planner — Shift Grouper.

Groups one day's resolved tasks into contiguous same-assignee "shifts" for
display. A shift spans from its first task's start to the end of its last
task; gaps between tasks are part of the span (time on duty, not total work).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Iterable

from src.core.week_dates import format_time_remaining, hhmm_to_minutes, minutes_to_hhmm
from src.data.models import ResolvedTask, ResolvedWeekSchedule


@dataclass
class Shift:
    member_id: str | None
    tasks: list[ResolvedTask] = field(default_factory=list)

    @property
    def start_minutes(self) -> int:
        return hhmm_to_minutes(self.tasks[0].start_time)

    @property
    def end_minutes(self) -> int:
        """Start of the last task plus its duration (may run past midnight)."""
        last = self.tasks[-1]
        return hhmm_to_minutes(last.start_time) + last.duration

    @property
    def duration(self) -> int:
        return self.end_minutes - self.start_minutes

    @property
    def start_time(self) -> str:
        return self.tasks[0].start_time

    @property
    def end_time(self) -> str:
        return minutes_to_hhmm(self.end_minutes)

    @property
    def member_name(self) -> str | None:
        member = self.tasks[0].member
        return member.display_name if member else None


def group_shifts(tasks: Iterable[ResolvedTask]) -> list[Shift]:
    """Sort by effective start time and split wherever the assignee changes."""
    shifts: list[Shift] = []
    for task in sorted(tasks, key=lambda t: t.start_time):
        assignee = task.member.id if task.member else None
        if shifts and shifts[-1].member_id == assignee:
            shifts[-1].tasks.append(task)
        else:
            shifts.append(Shift(member_id=assignee, tasks=[task]))
    return shifts


# ---------------------------------------------------------------------------
# Current / next shift
# ---------------------------------------------------------------------------


@dataclass
class ShiftStatus:
    kind: str                   # "current" | "next"
    shift: Shift
    day: date
    starts_at: datetime
    ends_at: datetime
    time_label: str             # time until end (current) or until start (next)


def compute_shift_status(
    schedules: Iterable[ResolvedWeekSchedule], member_id: str, now: datetime,
) -> ShiftStatus | None:
    """Find the member's shift in progress, else their next one.

    `schedules` are scanned in order; pass consecutive weeks oldest first.
    Datetimes are built in now's timezone.
    """
    midnight = datetime.min.time()
    for schedule in schedules:
        for day in schedule.days:
            if day.date < now.date():
                continue
            day_start = datetime.combine(day.date, midnight, tzinfo=now.tzinfo)
            for shift in group_shifts(day.tasks):
                if shift.member_id != member_id:
                    continue
                starts_at = day_start + timedelta(minutes=shift.start_minutes)
                ends_at = day_start + timedelta(minutes=shift.end_minutes)
                if ends_at <= now:
                    continue
                if starts_at <= now:
                    return ShiftStatus("current", shift, day.date, starts_at, ends_at,
                                       format_time_remaining(ends_at - now))
                return ShiftStatus("next", shift, day.date, starts_at, ends_at,
                                   format_time_remaining(starts_at - now))
    return None
