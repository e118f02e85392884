"""
Family Week Planner — Real-time schedule events.

A closed set of event kinds, one frozen dataclass each, carrying its wire
name. Transport payloads (camelCase dicts) are converted at the boundary by
parse_event() / event_payload(); everything inside the app works with the
typed events and dispatches on their class.
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass, fields
from datetime import date
from typing import Any, Awaitable, Callable, ClassVar, Union

from src.core.week_dates import monday_of

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TaskAssigned:
    name: ClassVar[str] = "task-assigned"

    family_id: str
    task_id: str
    member_id: str
    date: date
    task_name: str = ""


@dataclass(frozen=True)
class TaskUnassigned:
    name: ClassVar[str] = "task-unassigned"

    family_id: str
    task_id: str
    member_id: str
    date: date
    task_name: str = ""


@dataclass(frozen=True)
class TaskScheduleUpdated:
    """A task's definition or one of its assignments changed.

    Without a date the change may touch any week.
    """

    name: ClassVar[str] = "task-schedule-updated"

    family_id: str
    task_id: str | None = None
    date: date | None = None
    original_member_id: str | None = None
    new_member_id: str | None = None


@dataclass(frozen=True)
class WeekScheduleUpdated:
    """Overrides or templates changed. No week_start_date → scope unknown."""

    name: ClassVar[str] = "week-schedule-updated"

    family_id: str
    week_start_date: date | None = None
    is_template_change: bool = False
    has_overrides: bool = False


@dataclass(frozen=True)
class WeekScheduleReverted:
    name: ClassVar[str] = "week-schedule-reverted"

    family_id: str
    week_start_date: date


ScheduleEvent = Union[
    TaskAssigned,
    TaskUnassigned,
    TaskScheduleUpdated,
    WeekScheduleUpdated,
    WeekScheduleReverted,
]

EVENT_TYPES: dict[str, type] = {
    cls.name: cls
    for cls in (
        TaskAssigned,
        TaskUnassigned,
        TaskScheduleUpdated,
        WeekScheduleUpdated,
        WeekScheduleReverted,
    )
}


def affected_week(event: ScheduleEvent) -> date | None:
    """Monday of the week the event touches, or None when it can't be told."""
    if isinstance(event, (WeekScheduleUpdated, WeekScheduleReverted)):
        return event.week_start_date
    if isinstance(event, (TaskAssigned, TaskUnassigned, TaskScheduleUpdated)):
        return monday_of(event.date) if event.date else None
    raise TypeError(f"Unhandled schedule event: {event!r}")


# ---------------------------------------------------------------------------
# Wire conversion
# ---------------------------------------------------------------------------

_WIRE_KEYS = {
    "family_id": "familyId",
    "task_id": "taskId",
    "member_id": "memberId",
    "task_name": "taskName",
    "date": "date",
    "original_member_id": "originalMemberId",
    "new_member_id": "newMemberId",
    "week_start_date": "weekStartDate",
    "is_template_change": "isTemplateChange",
    "has_overrides": "hasOverrides",
}

_DATE_FIELDS = {"date", "week_start_date"}


def parse_event(name: str, payload: dict[str, Any]) -> ScheduleEvent:
    """Build a typed event from a transport event name and its payload.

    Raises:
        ValueError: unknown event name, missing required field or bad date.
    """
    cls = EVENT_TYPES.get(name)
    if cls is None:
        raise ValueError(f"Unknown schedule event: {name!r}")

    kwargs: dict[str, Any] = {}
    for field_name in (f.name for f in fields(cls)):
        wire_key = _WIRE_KEYS[field_name]
        if wire_key not in payload or payload[wire_key] is None:
            continue
        value = payload[wire_key]
        if field_name in _DATE_FIELDS:
            # transports sometimes send full ISO timestamps
            value = date.fromisoformat(str(value)[:10])
        kwargs[field_name] = value

    try:
        return cls(**kwargs)
    except TypeError as exc:
        raise ValueError(f"Malformed {name} payload: {exc}") from exc


def event_payload(event: ScheduleEvent) -> dict[str, Any]:
    """Inverse of parse_event: camelCase payload including the `type` name."""
    payload: dict[str, Any] = {"type": event.name}
    for field_name in (f.name for f in fields(event)):
        value = getattr(event, field_name)
        if isinstance(value, date):
            value = value.isoformat()
        payload[_WIRE_KEYS[field_name]] = value
    return payload


# ---------------------------------------------------------------------------
# In-process bus
# ---------------------------------------------------------------------------

EventHandler = Callable[[ScheduleEvent], Union[None, Awaitable[None]]]


class EventBus:
    """Single typed subscription point for schedule events."""

    def __init__(self) -> None:
        self._handlers: list[EventHandler] = []

    def subscribe(self, handler: EventHandler) -> Callable[[], None]:
        """Register a handler; returns a function that unsubscribes it."""
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    async def publish(self, event: ScheduleEvent) -> None:
        """Deliver to every handler; a failing handler does not stop the rest."""
        logger.debug("Publishing %s for family %s", event.name, event.family_id)
        for handler in list(self._handlers):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                logger.error("Event handler failed on %s: %s", event.name, exc)
