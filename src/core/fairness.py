"""
Family Week Planner — Fairness Analyzer.

Aggregates effective task minutes per member over a window of resolved
weeks and scores how evenly they are spread across real (non-virtual)
members.

Score: 100 · exp(−2 · CV), where CV is the coefficient of variation
(population stdev / mean) of the real members' minutes. An equal split
scores 100; the score falls as the spread grows. With no real members or
no minutes at all there is nothing to be unfair about, so the score is 100.
"""

from __future__ import annotations

import math
import statistics
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Iterable

from src.data.models import Member, ResolvedWeekSchedule


@dataclass
class MemberStats:
    member_id: str
    member_name: str
    is_virtual: bool = False
    total_minutes: int = 0
    task_count: int = 0
    percentage: float = 0.0


@dataclass
class TaskSplit:
    family_id: str
    period_start: date              # Monday of the oldest week
    period_end: date                # Sunday of the anchor week
    window_weeks: int
    total_minutes: int
    unassigned_minutes: int
    average_minutes_per_member: float
    fairness_score: float
    member_stats: list[MemberStats] = field(default_factory=list)


def fairness_score(minutes: list[int | float]) -> float:
    """0–100 score for a list of per-member minute totals."""
    if not minutes:
        return 100.0
    mean = statistics.fmean(minutes)
    if mean <= 0:
        return 100.0
    cv = statistics.pstdev(minutes) / mean
    return 100.0 * math.exp(-2.0 * cv)


def compute_task_split(
    family_id: str,
    schedules: list[ResolvedWeekSchedule],
    members: Iterable[Member],
) -> TaskSplit:
    """Compute the split over already-resolved weeks (oldest first).

    Unassigned tasks count toward total_minutes but no member's total.
    Virtual members are left out of the fairness denominator and of
    member_stats.
    """
    stats = {m.id: MemberStats(m.id, m.display_name, m.is_virtual) for m in members}
    total = 0
    unassigned = 0

    for schedule in schedules:
        for day in schedule.days:
            for task in day.tasks:
                minutes = task.duration
                total += minutes
                entry = stats.get(task.member_id) if task.member_id else None
                if entry is None:
                    unassigned += minutes
                    continue
                entry.total_minutes += minutes
                entry.task_count += 1

    real = [s for s in stats.values() if not s.is_virtual]
    for s in real:
        s.percentage = (s.total_minutes / total * 100.0) if total else 0.0
    real.sort(key=lambda s: (-s.total_minutes, s.member_name))

    if schedules:
        period_start = min(s.week_start_date for s in schedules)
        period_end = max(s.week_start_date for s in schedules) + timedelta(days=6)
    else:
        period_start = period_end = date.min

    return TaskSplit(
        family_id=family_id,
        period_start=period_start,
        period_end=period_end,
        window_weeks=len(schedules),
        total_minutes=total,
        unassigned_minutes=unassigned,
        average_minutes_per_member=(total / len(real)) if real else 0.0,
        fairness_score=fairness_score([s.total_minutes for s in real]),
        member_stats=real,
    )
