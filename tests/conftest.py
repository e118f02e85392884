"""Shared test fixtures and configuration.

Sets up fake environment variables before any src import, and provides
temp-file SQLite stores plus a small seeded family:

    Task "Dishes" 18:00 / 30 min
    Members alice, bob (real) and kid (virtual)
    DayTemplate "Weekday" = [Dishes → alice]
    WeekTemplate "Regular" (priority 1, no rule): Monday → "Weekday"
"""

import os

# Patch env vars BEFORE any src imports
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "fake-token-for-tests")
os.environ.setdefault("ALLOWED_USER_IDS", "12345")
os.environ.setdefault("DATABASE_PATH", ":memory:")
os.environ.setdefault("TIMEZONE", "UTC")
os.environ.setdefault("API_BASE_URL", "")
os.environ.setdefault("FAIRNESS_WINDOW_WEEKS", "4")

from datetime import date

import pytest

FAMILY = "fam-1"
MONDAY = date(2024, 6, 3)   # ISO week 23 (odd)


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path."""
    return str(tmp_path / "test_schedule.db")


@pytest.fixture
def template_db(tmp_db_path):
    from src.data.template_db import TemplateDB
    return TemplateDB(db_path=tmp_db_path)


@pytest.fixture
def override_db(tmp_db_path):
    from src.data.override_db import OverrideDB
    return OverrideDB(db_path=tmp_db_path)


@pytest.fixture
def member_db(tmp_db_path):
    from src.data.db import MemberDB
    return MemberDB(db_path=tmp_db_path)


@pytest.fixture
def family(template_db, member_db):
    """Seed the reference family and return its ids."""
    template_db.add_task(FAMILY, "Dishes", "18:00", 30, task_id="Dishes")
    member_db.add_member(FAMILY, "Alice", is_admin=True, telegram_user_id=12345, member_id="alice")
    member_db.add_member(FAMILY, "Bob", member_id="bob")
    member_db.add_member(FAMILY, "Kid", is_virtual=True, member_id="kid")

    day = template_db.add_day_template(FAMILY, "Weekday", template_id="D")
    template_db.add_day_template_item(day.id, "Dishes", member_id="alice")
    week = template_db.add_week_template(
        FAMILY, "Regular", priority=1, created_at="2024-01-01T00:00:00", template_id="W",
    )
    template_db.assign_day(week.id, 1, day.id)   # 1 = Monday
    return {"family_id": FAMILY, "monday": MONDAY, "week_template": "W", "day_template": "D"}


@pytest.fixture
def bus():
    from src.core.events import EventBus
    return EventBus()


@pytest.fixture
def service(template_db, override_db, member_db, bus):
    from datetime import datetime, timezone

    from src.core.schedule_service import ScheduleService
    return ScheduleService(
        template_db, override_db, member_db, bus=bus,
        clock=lambda: datetime(2024, 6, 3, 17, 0, tzinfo=timezone.utc),
    )
