"""
Family Week Planner — Override write validation.

Every override batch is checked in full before anything is written. A batch
with any problem is rejected as a whole with InvalidOverride, which lists
one OverrideIssue per offending field so the admin UI can highlight it.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import date
from typing import Any, Iterable

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from src.core.week_dates import is_in_week, is_valid_hhmm
from src.data.models import Member, OverrideAction, Task, TaskOverride, WeekTemplate


@dataclass
class OverrideIssue:
    index: int | None         # position in taskOverrides; None for request-level fields
    field: str                # wire (camelCase) field name
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class InvalidOverride(Exception):
    """An override batch failed validation; nothing was written."""

    def __init__(self, issues: list[OverrideIssue]) -> None:
        self.issues = issues
        summary = "; ".join(
            f"{'' if i.index is None else f'[{i.index}] '}{i.field}: {i.reason}" for i in issues
        )
        super().__init__(f"Invalid override: {summary}")


# ---------------------------------------------------------------------------
# Request DTOs
# ---------------------------------------------------------------------------


class TaskOverrideInput(BaseModel):
    """One override as submitted by a client (camelCase or snake_case keys)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    assigned_date: date
    task_id: str = Field(min_length=1)
    action: OverrideAction
    original_member_id: str | None = Field(default=None, min_length=1)
    new_member_id: str | None = Field(default=None, min_length=1)
    override_time: str | None = None
    override_duration: int | None = Field(default=None, ge=1, le=1440)

    @field_validator("override_time")
    @classmethod
    def check_time(cls, v: str | None) -> str | None:
        if v is not None and not is_valid_hhmm(v):
            raise ValueError("Time must be in HH:MM format")
        return v

    def to_override(self) -> TaskOverride:
        return TaskOverride(
            assigned_date=self.assigned_date,
            task_id=self.task_id,
            action=self.action,
            original_member_id=self.original_member_id,
            new_member_id=self.new_member_id,
            override_time=self.override_time,
            override_duration=self.override_duration,
        )


class ApplyOverrideRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    week_start_date: date
    task_overrides: list[TaskOverrideInput] = Field(default_factory=list)
    replace_existing: bool = False
    week_template_id: str | None = None


def _issue_from_error(error: dict[str, Any]) -> OverrideIssue:
    loc = list(error.get("loc", ()))
    if len(loc) >= 2 and loc[0] == "taskOverrides" and isinstance(loc[1], int):
        field = str(loc[2]) if len(loc) > 2 else "taskOverrides"
        return OverrideIssue(loc[1], field, error.get("msg", "invalid value"))
    field = str(loc[0]) if loc else "body"
    return OverrideIssue(None, field, error.get("msg", "invalid value"))


def parse_override_request(payload: Any) -> ApplyOverrideRequest:
    """Parse a raw request body, turning schema errors into InvalidOverride."""
    try:
        return ApplyOverrideRequest.model_validate(payload)
    except ValidationError as exc:
        raise InvalidOverride(
            [_issue_from_error(e) for e in exc.errors(include_url=False)]
        ) from exc


# ---------------------------------------------------------------------------
# Store-aware checks
# ---------------------------------------------------------------------------


def validate_overrides(
    request: ApplyOverrideRequest,
    tasks: Iterable[Task],
    members: Iterable[Member],
    week_templates: Iterable[WeekTemplate] = (),
) -> list[TaskOverride]:
    """Check a parsed request against the family's stores.

    Returns:
        The overrides to store, in submitted order.

    Raises:
        InvalidOverride: with every issue found, if there are any.
    """
    task_by_id = {t.id: t for t in tasks}
    member_ids = {m.id for m in members}
    issues: list[OverrideIssue] = []

    week_start = request.week_start_date
    if week_start.weekday() != 0:
        issues.append(OverrideIssue(None, "weekStartDate", "Week start date must be a Monday"))

    if request.week_template_id is not None:
        if request.week_template_id not in {t.id for t in week_templates}:
            issues.append(OverrideIssue(None, "weekTemplateId", "Week template not found"))

    for index, item in enumerate(request.task_overrides):
        if not is_in_week(item.assigned_date, week_start):
            issues.append(OverrideIssue(
                index, "assignedDate",
                f"{item.assigned_date.isoformat()} is outside the week starting {week_start.isoformat()}",
            ))

        task = task_by_id.get(item.task_id)
        if task is None:
            issues.append(OverrideIssue(index, "taskId", f"Unknown task {item.task_id}"))
        elif not task.is_active and item.action != OverrideAction.REMOVE:
            issues.append(OverrideIssue(index, "taskId", f"Task {task.name} is inactive"))

        if item.original_member_id is not None and item.original_member_id not in member_ids:
            issues.append(OverrideIssue(index, "originalMemberId", f"Unknown member {item.original_member_id}"))
        if item.new_member_id is not None and item.new_member_id not in member_ids:
            issues.append(OverrideIssue(index, "newMemberId", f"Unknown member {item.new_member_id}"))

    if issues:
        raise InvalidOverride(issues)
    return [item.to_override() for item in request.task_overrides]
