"""Tests for src.core.fairness — task split and fairness score."""

from datetime import date, timedelta

import pytest

from src.core.fairness import compute_task_split, fairness_score
from src.data.models import (
    Member,
    ResolvedDay,
    ResolvedTask,
    ResolvedWeekSchedule,
    Task,
    TaskSource,
)

MONDAY = date(2024, 6, 3)
ALICE = Member("alice", "f", "Alice")
BOB = Member("bob", "f", "Bob")
KID = Member("kid", "f", "Kid", is_virtual=True)


def _rt(duration, member):
    task = Task("t", "f", "T", "08:00", duration)
    return ResolvedTask("t", member.id if member else None, None, None,
                        TaskSource.TEMPLATE, task=task, member=member)


def _week(tasks, monday=MONDAY):
    days = [ResolvedDay(monday + timedelta(days=i)) for i in range(7)]
    days[0].tasks = tasks
    return ResolvedWeekSchedule("f", monday, None, False, days)


class TestFairnessScore:
    def test_equal_split_is_perfect(self):
        assert fairness_score([60, 60, 60]) == pytest.approx(100.0)

    def test_one_sided_is_worse_than_even(self):
        assert fairness_score([100, 0]) < fairness_score([50, 50])

    def test_no_minutes_is_perfect(self):
        assert fairness_score([0, 0]) == 100.0

    def test_no_members_is_perfect(self):
        assert fairness_score([]) == 100.0

    def test_bounded(self):
        assert 0.0 < fairness_score([1000, 0, 0, 0]) < 100.0


class TestComputeTaskSplit:
    def test_totals_and_percentages(self):
        split = compute_task_split("f", [_week([_rt(30, ALICE), _rt(90, BOB)])], [ALICE, BOB])
        assert split.total_minutes == 120
        assert [s.member_id for s in split.member_stats] == ["bob", "alice"]
        assert split.member_stats[0].percentage == pytest.approx(75.0)
        assert split.member_stats[0].task_count == 1
        assert split.average_minutes_per_member == pytest.approx(60.0)

    def test_virtual_members_excluded(self):
        split = compute_task_split("f", [_week([_rt(60, ALICE), _rt(60, BOB), _rt(600, KID)])],
                                   [ALICE, BOB, KID])
        assert [s.member_id for s in split.member_stats] == ["alice", "bob"]
        assert split.fairness_score == pytest.approx(100.0)

    def test_unassigned_minutes_tracked(self):
        split = compute_task_split("f", [_week([_rt(60, ALICE), _rt(20, None)])], [ALICE])
        assert split.total_minutes == 80
        assert split.unassigned_minutes == 20
        assert split.member_stats[0].total_minutes == 60

    def test_member_without_tasks_counts(self):
        split = compute_task_split("f", [_week([_rt(60, ALICE)])], [ALICE, BOB])
        assert split.member_stats[-1].member_id == "bob"
        assert split.member_stats[-1].total_minutes == 0
        assert split.fairness_score < 100.0

    def test_empty_window(self):
        split = compute_task_split("f", [_week([])], [ALICE, BOB])
        assert split.total_minutes == 0
        assert split.fairness_score == 100.0
        assert all(s.percentage == 0.0 for s in split.member_stats)

    def test_period_spans_all_weeks(self):
        weeks = [_week([]), _week([], MONDAY + timedelta(weeks=1))]
        split = compute_task_split("f", weeks, [ALICE])
        assert split.period_start == MONDAY
        assert split.period_end == MONDAY + timedelta(days=13)
        assert split.window_weeks == 2
