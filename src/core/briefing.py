"""
Family Week Planner — Morning shift briefing.

A daily push at BRIEFING_HOUR telling each linked member what their shifts
are today. Members with nothing scheduled get no message.

Provider-agnostic: depends on NotificationPort, not on Telegram.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import TYPE_CHECKING

from src.core.shifts import group_shifts
from src.core.week_dates import monday_of
from src.ports.schedule_port import ScheduleUnavailable

if TYPE_CHECKING:
    from src.core.schedule_service import ScheduleService
    from src.data.models import Member, ResolvedWeekSchedule
    from src.ports.notification_port import NotificationPort

logger = logging.getLogger(__name__)


def build_member_briefing(
    member: Member, schedule: ResolvedWeekSchedule, day: date,
) -> str | None:
    """Text of the member's briefing for `day`, or None if they have no shifts."""
    resolved_day = next((d for d in schedule.days if d.date == day), None)
    if resolved_day is None:
        return None

    shifts = [s for s in group_shifts(resolved_day.tasks) if s.member_id == member.id]
    if not shifts:
        return None

    lines = [f"Good morning, {member.display_name}! ☀️", "", "Your shifts today:"]
    for shift in shifts:
        names = ", ".join(t.task.name for t in shift.tasks)
        lines.append(f"  {shift.start_time}-{shift.end_time}  {names}")
    return "\n".join(lines)


async def send_morning_briefing(
    notifier: NotificationPort,
    service: ScheduleService,
    today: date | None = None,
) -> int:
    """Send today's briefing to every member with a linked account.

    Returns:
        Number of messages sent.
    """
    today = today or service.now().date()
    week = monday_of(today)
    members = service.members.list_linked()

    schedules: dict[str, ResolvedWeekSchedule] = {}
    sent = 0
    for member in members:
        try:
            if member.family_id not in schedules:
                schedules[member.family_id] = await service.get_week_schedule(member.family_id, week)
            text = build_member_briefing(member, schedules[member.family_id], today)
            if text is None:
                continue
            await notifier.send_message(member.telegram_user_id, text)
            sent += 1
            logger.info("Morning briefing sent to member %s", member.id)
        except ScheduleUnavailable as exc:
            logger.warning("Morning briefing: schedule unavailable for family %s: %s", member.family_id, exc)
        except Exception as exc:
            logger.error("Failed to send morning briefing to %s: %s", member.id, exc)
    return sent
