"""
Family Week Planner — Wire format for derived schedule types.

Converts resolved schedules, task splits and shift status to JSON-ready
dicts with camelCase keys, and resolved schedules back again (the HTTP
client needs the round trip). Output depends only on the input, so the
same schedule always dumps to the same JSON.
"""

from __future__ import annotations

from datetime import date
from typing import Any

from src.core.fairness import TaskSplit
from src.core.shifts import Shift, ShiftStatus
from src.data.models import (
    BaseTemplateRef,
    Member,
    ResolvedDay,
    ResolvedTask,
    ResolvedWeekSchedule,
    Task,
    TaskSource,
)


def _task_to_dict(task: Task) -> dict[str, Any]:
    return {
        "id": task.id,
        "familyId": task.family_id,
        "name": task.name,
        "icon": task.icon,
        "color": task.color,
        "defaultStartTime": task.default_start_time,
        "defaultDuration": task.default_duration,
        "isActive": task.is_active,
    }


def _member_to_dict(member: Member | None) -> dict[str, Any] | None:
    if member is None:
        return None
    return {
        "id": member.id,
        "familyId": member.family_id,
        "displayName": member.display_name,
        "isVirtual": member.is_virtual,
        "isAdmin": member.is_admin,
    }


def resolved_task_to_dict(resolved: ResolvedTask) -> dict[str, Any]:
    return {
        "taskId": resolved.task_id,
        "memberId": resolved.member_id,
        "overrideTime": resolved.override_time,
        "overrideDuration": resolved.override_duration,
        "source": resolved.source.value,
        "startTime": resolved.start_time,
        "duration": resolved.duration,
        "isInactive": resolved.is_inactive,
        "task": _task_to_dict(resolved.task),
        "member": _member_to_dict(resolved.member),
    }


def schedule_to_dict(schedule: ResolvedWeekSchedule) -> dict[str, Any]:
    base = schedule.base_template
    return {
        "familyId": schedule.family_id,
        "weekStartDate": schedule.week_start_date.isoformat(),
        "baseTemplate": {"id": base.id, "name": base.name} if base else None,
        "hasOverrides": schedule.has_overrides,
        "days": [
            {
                "date": day.date.isoformat(),
                "tasks": [resolved_task_to_dict(t) for t in day.tasks],
            }
            for day in schedule.days
        ],
    }


def _task_from_dict(data: dict[str, Any]) -> Task:
    return Task(
        id=data["id"],
        family_id=data["familyId"],
        name=data["name"],
        icon=data.get("icon", "other"),
        color=data.get("color", "#3357FF"),
        default_start_time=data["defaultStartTime"],
        default_duration=data["defaultDuration"],
        is_active=data.get("isActive", True),
    )


def _member_from_dict(data: dict[str, Any] | None) -> Member | None:
    if data is None:
        return None
    return Member(
        id=data["id"],
        family_id=data["familyId"],
        display_name=data["displayName"],
        is_virtual=data.get("isVirtual", False),
        is_admin=data.get("isAdmin", False),
    )


def schedule_from_dict(data: dict[str, Any]) -> ResolvedWeekSchedule:
    """Rebuild a ResolvedWeekSchedule from schedule_to_dict() output.

    Raises:
        KeyError / ValueError: the payload is not a schedule.
    """
    base = data.get("baseTemplate")
    days = [
        ResolvedDay(
            date=date.fromisoformat(day["date"]),
            tasks=[
                ResolvedTask(
                    task_id=t["taskId"],
                    member_id=t.get("memberId"),
                    override_time=t.get("overrideTime"),
                    override_duration=t.get("overrideDuration"),
                    source=TaskSource(t["source"]),
                    task=_task_from_dict(t["task"]),
                    member=_member_from_dict(t.get("member")),
                )
                for t in day["tasks"]
            ],
        )
        for day in data["days"]
    ]
    return ResolvedWeekSchedule(
        family_id=data["familyId"],
        week_start_date=date.fromisoformat(data["weekStartDate"]),
        base_template=BaseTemplateRef(id=base["id"], name=base["name"]) if base else None,
        has_overrides=bool(data["hasOverrides"]),
        days=days,
    )


def task_split_to_dict(split: TaskSplit) -> dict[str, Any]:
    return {
        "familyId": split.family_id,
        "periodStart": split.period_start.isoformat(),
        "periodEnd": split.period_end.isoformat(),
        "windowWeeks": split.window_weeks,
        "totalMinutes": split.total_minutes,
        "unassignedMinutes": split.unassigned_minutes,
        "averageMinutesPerMember": split.average_minutes_per_member,
        "fairnessScore": split.fairness_score,
        "memberStats": [
            {
                "memberId": s.member_id,
                "memberName": s.member_name,
                "isVirtual": s.is_virtual,
                "totalMinutes": s.total_minutes,
                "taskCount": s.task_count,
                "percentage": s.percentage,
            }
            for s in split.member_stats
        ],
    }


def shift_to_dict(shift: Shift) -> dict[str, Any]:
    return {
        "memberId": shift.member_id,
        "startTime": shift.start_time,
        "endTime": shift.end_time,
        "duration": shift.duration,
        "tasks": [resolved_task_to_dict(t) for t in shift.tasks],
    }


def shift_status_to_dict(status: ShiftStatus | None) -> dict[str, Any] | None:
    if status is None:
        return None
    return {
        "kind": status.kind,
        "date": status.day.isoformat(),
        "startsAt": status.starts_at.isoformat(),
        "endsAt": status.ends_at.isoformat(),
        "timeLabel": status.time_label,
        "shift": shift_to_dict(status.shift),
    }
