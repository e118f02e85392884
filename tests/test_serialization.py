"""Tests for src.core.serialization — camelCase wire format."""

import json
from datetime import date, datetime, timezone

from src.core.fairness import compute_task_split
from src.core.serialization import (
    schedule_from_dict,
    schedule_to_dict,
    shift_status_to_dict,
    task_split_to_dict,
)
from src.core.shifts import compute_shift_status
from src.data.models import (
    BaseTemplateRef,
    Member,
    ResolvedDay,
    ResolvedTask,
    ResolvedWeekSchedule,
    Task,
    TaskSource,
)

MONDAY = date(2024, 6, 3)
ALICE = Member("alice", "f", "Alice", is_admin=True)


def _schedule():
    task = Task("Dishes", "f", "Dishes", "18:00", 30)
    resolved = ResolvedTask("Dishes", "alice", "19:00", None, TaskSource.OVERRIDE, task=task, member=ALICE)
    days = [ResolvedDay(date(2024, 6, 3 + i)) for i in range(7)]
    days[0].tasks = [resolved]
    return ResolvedWeekSchedule("f", MONDAY, BaseTemplateRef("W", "Regular"), True, days)


class TestScheduleToDict:
    def test_shape(self):
        data = schedule_to_dict(_schedule())
        assert data["weekStartDate"] == "2024-06-03"
        assert data["baseTemplate"] == {"id": "W", "name": "Regular"}
        assert data["hasOverrides"] is True
        task = data["days"][0]["tasks"][0]
        assert task["source"] == "override"
        assert task["startTime"] == "19:00"
        assert task["duration"] == 30
        assert task["member"]["displayName"] == "Alice"
        assert task["task"]["defaultStartTime"] == "18:00"

    def test_identical_input_gives_identical_json(self):
        assert json.dumps(schedule_to_dict(_schedule())) == json.dumps(schedule_to_dict(_schedule()))

    def test_from_dict_restores_schedule(self):
        assert schedule_from_dict(schedule_to_dict(_schedule())) == _schedule()

    def test_no_base_template(self):
        schedule = _schedule()
        schedule.base_template = None
        assert schedule_to_dict(schedule)["baseTemplate"] is None


def test_task_split_to_dict():
    split = compute_task_split("f", [_schedule()], [ALICE])
    data = task_split_to_dict(split)
    assert data["totalMinutes"] == 30
    assert data["periodEnd"] == "2024-06-09"
    assert data["memberStats"][0]["memberId"] == "alice"
    assert data["memberStats"][0]["percentage"] == 100.0


def test_shift_status_to_dict():
    now = datetime(2024, 6, 3, 18, 0, tzinfo=timezone.utc)
    status = compute_shift_status([_schedule()], "alice", now)
    data = shift_status_to_dict(status)
    assert data["kind"] == "next"
    assert data["timeLabel"] == "1h"
    assert data["shift"]["startTime"] == "19:00"
    assert data["shift"]["endTime"] == "19:30"
    assert shift_status_to_dict(None) is None
