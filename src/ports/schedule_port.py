"""Schedule port — abstract source of resolved week schedules.

The cache & sync layer depends on this protocol, never on whether schedules
are resolved in-process or fetched from the HTTP API.
"""

from __future__ import annotations

from datetime import date
from typing import Protocol

from src.data.models import ResolvedWeekSchedule


class ScheduleUnavailable(Exception):
    """Raised when a store read or remote fetch fails. Transient; retry later."""


class SchedulePort(Protocol):
    """Abstract schedule source used by the cache & sync layer."""

    async def get_week_schedule(
        self, family_id: str, week_start: date
    ) -> ResolvedWeekSchedule: ...
