"""
Family Week Planner — Assignment notifications.

Listens on the EventBus and tells members when a task is assigned to them
or taken away. Only members linked to a messaging account are notified.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Callable

from src.core.events import EventBus, ScheduleEvent, TaskAssigned, TaskUnassigned

if TYPE_CHECKING:
    from src.data.db import MemberDB
    from src.ports.notification_port import NotificationPort

logger = logging.getLogger(__name__)


def format_assignment_message(event: TaskAssigned | TaskUnassigned) -> str:
    task = f'"{event.task_name}"' if event.task_name else "A task"
    when = event.date.strftime("%a %d %b")
    if isinstance(event, TaskAssigned):
        return f"📌 {task} on {when} has been assigned to you."
    return f"🗑️ {task} on {when} has been unassigned from you."


class AssignmentNotifier:
    """Sends task-assigned / task-unassigned messages to the affected member."""

    def __init__(self, notifier: NotificationPort, members: MemberDB) -> None:
        self._notifier = notifier
        self._members = members

    def attach(self, bus: EventBus) -> Callable[[], None]:
        return bus.subscribe(self.handle_event)

    async def handle_event(self, event: ScheduleEvent) -> None:
        if not isinstance(event, (TaskAssigned, TaskUnassigned)):
            return

        member = await asyncio.to_thread(self._members.get_member, event.member_id)
        if member is None or member.telegram_user_id is None:
            logger.debug("Member %s has no linked account; skipping %s", event.member_id, event.name)
            return

        try:
            await self._notifier.send_message(
                member.telegram_user_id, format_assignment_message(event),
            )
            logger.info("Sent %s to member %s", event.name, member.id)
        except Exception as exc:
            logger.error("Failed to notify member %s of %s: %s", member.id, event.name, exc)
