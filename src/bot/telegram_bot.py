"""
Family Week Planner — Telegram Bot.

Read-side presentation of the resolved schedule: browse weeks, see today's
shifts, your own current/next shift and the family's task split. Every
chat keeps its own ScheduleSync, so paging between weeks is served from
cache and push events refresh what is on screen.

Security-first: unauthorized users are silently ignored.
"""

from __future__ import annotations

import logging
import sys
from datetime import date, datetime, timedelta
from datetime import time as dt_time
from functools import wraps
from typing import TYPE_CHECKING, Any, Callable, Coroutine
from zoneinfo import ZoneInfo

from telegram import Update
from telegram.ext import Application, ApplicationBuilder, CommandHandler, ContextTypes

from src.config import settings
from src.core.fairness import compute_task_split
from src.core.shifts import ShiftStatus, compute_shift_status, group_shifts
from src.core.week_cache import ScheduleSync
from src.core.week_dates import monday_of, trailing_weeks
from src.ports.schedule_port import ScheduleUnavailable

if TYPE_CHECKING:
    from src.core.schedule_service import ScheduleService
    from src.data.models import Member, ResolvedDay, ResolvedWeekSchedule
    from src.ports.notification_port import NotificationPort
    from src.ports.schedule_port import SchedulePort

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Security: silent-ignore decorator
# ---------------------------------------------------------------------------


def authorized_only(
    func: Callable[..., Coroutine[Any, Any, None]],
) -> Callable[..., Coroutine[Any, Any, None]]:
    """Decorator that silently ignores messages from unauthorized users.

    Does NOT send any response to strangers — the bot must not reveal
    its existence to unauthorized users.
    """

    @wraps(func)
    async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        user = update.effective_user
        if user is None or user.id not in settings.ALLOWED_USER_IDS:
            uid = user.id if user else "unknown"
            logger.warning("Unauthorized access attempt from user_id=%s", uid)
            return  # Silent ignore
        return await func(update, context)

    return wrapper


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------


def _now() -> datetime:
    return datetime.now(ZoneInfo(settings.TIMEZONE))


def format_day(day: ResolvedDay) -> list[str]:
    lines = [day.date.strftime("%a %d %b")]
    shifts = group_shifts(day.tasks)
    if not shifts:
        lines.append("  — nothing scheduled —")
    for shift in shifts:
        who = shift.member_name or "Unassigned"
        tasks = ", ".join(
            t.task.name + (" (inactive)" if t.is_inactive else "") for t in shift.tasks
        )
        lines.append(f"  {shift.start_time}-{shift.end_time}  {who}: {tasks}")
    return lines


def format_week(schedule: ResolvedWeekSchedule) -> str:
    header = f"📅 Week of {schedule.week_start_date.isoformat()}"
    if schedule.base_template:
        header += f" ({schedule.base_template.name})"
    if schedule.has_overrides:
        header += " ✏️"
    lines = [header, ""]
    for day in schedule.days:
        lines.extend(format_day(day))
    return "\n".join(lines)


def format_shift_status(status: ShiftStatus | None) -> str:
    if status is None:
        return "You have no upcoming shifts this week or next."
    tasks = ", ".join(t.task.name for t in status.shift.tasks)
    span = f"{status.shift.start_time}-{status.shift.end_time}"
    if status.kind == "current":
        return f"🟢 On shift now ({span}): {tasks}\nEnds in {status.time_label}."
    when = status.day.strftime("%a %d %b")
    return f"⏭️ Next shift {when} {span}: {tasks}\nStarts in {status.time_label}."


# ---------------------------------------------------------------------------
# Per-chat state
# ---------------------------------------------------------------------------


def _linked_member(update: Update, context: ContextTypes.DEFAULT_TYPE) -> Member | None:
    members = context.bot_data["members"]
    return members.find_by_telegram_id(update.effective_user.id)


def _sync_for(context: ContextTypes.DEFAULT_TYPE, member: Member) -> ScheduleSync:
    """The chat's ScheduleSync, created on first use."""
    sync: ScheduleSync | None = context.chat_data.get("sync")
    if sync is None or sync.family_id != member.family_id:
        if "unsubscribe" in context.chat_data:
            context.chat_data.pop("unsubscribe")()
        source: SchedulePort = context.bot_data["source"]
        sync = ScheduleSync(source, member.family_id)
        bus = context.bot_data.get("bus")
        if bus is not None:
            context.chat_data["unsubscribe"] = sync.attach(bus)
        context.chat_data["sync"] = sync
    return sync


async def _member_or_reply(update: Update, context: ContextTypes.DEFAULT_TYPE) -> Member | None:
    member = _linked_member(update, context)
    if member is None:
        await update.message.reply_text(
            "Your Telegram account isn't linked to a family member yet. "
            "Ask a family admin to link it."
        )
    return member


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@authorized_only
async def cmd_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /start — welcome message."""
    await update.message.reply_text(
        "Welcome to *Family Week Planner*!\n\n"
        "I show who does what, when:\n"
        "• /week to see this week's schedule, /next and /prev to page\n"
        "• /today for today's shifts, /shift for your own\n"
        "• /split to see how evenly the work is shared\n\n"
        "Type /help for the full command list.",
        parse_mode="Markdown",
    )


@authorized_only
async def cmd_help(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /help — list available commands."""
    await update.message.reply_text(
        "*Available commands:*\n"
        "/week [YYYY-MM-DD] — Week schedule (this week by default)\n"
        "/next — Next week\n"
        "/prev — Previous week\n"
        "/today — Today's shifts\n"
        "/shift — Your current or next shift\n"
        "/split — Task split and fairness score\n"
        "/help — Show this message",
        parse_mode="Markdown",
    )


async def _show_week(
    update: Update, context: ContextTypes.DEFAULT_TYPE, navigate: Callable[[ScheduleSync], Any],
) -> None:
    member = await _member_or_reply(update, context)
    if member is None:
        return
    sync = _sync_for(context, member)
    navigate(sync)
    try:
        schedule = await sync.current()
    except ScheduleUnavailable as exc:
        logger.error("Week schedule unavailable for family %s: %s", member.family_id, exc)
        await update.message.reply_text("Couldn't load the schedule. Please try again later.")
        return
    await update.message.reply_text(format_week(schedule))


@authorized_only
async def cmd_week(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /week [YYYY-MM-DD] — show a week (any date inside it works)."""
    target = _now().date()
    if context.args:
        try:
            target = date.fromisoformat(context.args[0])
        except ValueError:
            await update.message.reply_text("Invalid date. Use YYYY-MM-DD, e.g. /week 2025-03-10")
            return
    await _show_week(update, context, lambda sync: sync.show(target))


def _page(step: int) -> Callable[[ScheduleSync], Any]:
    def navigate(sync: ScheduleSync) -> Any:
        if sync.current_week is None:
            sync.show(_now().date())
        return sync.next_week() if step > 0 else sync.prev_week()

    return navigate


@authorized_only
async def cmd_next(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /next — page forward one week."""
    await _show_week(update, context, _page(1))


@authorized_only
async def cmd_prev(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /prev — page back one week."""
    await _show_week(update, context, _page(-1))


@authorized_only
async def cmd_today(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /today — today's shifts for the whole family."""
    member = await _member_or_reply(update, context)
    if member is None:
        return
    today = _now().date()
    sync = _sync_for(context, member)
    try:
        schedule = await sync.cache.load(monday_of(today))
    except ScheduleUnavailable as exc:
        logger.error("/today schedule error: %s", exc)
        await update.message.reply_text("Couldn't load today's schedule. Please try again later.")
        return

    day = next(d for d in schedule.days if d.date == today)
    await update.message.reply_text("Today's shifts:\n" + "\n".join(format_day(day)))


@authorized_only
async def cmd_shift(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /shift — your current shift, or the next one."""
    member = await _member_or_reply(update, context)
    if member is None:
        return
    now = _now()
    week = monday_of(now.date())
    sync = _sync_for(context, member)
    try:
        status = compute_shift_status([await sync.cache.load(week)], member.id, now)
        if status is None:
            following = await sync.cache.load(week + timedelta(weeks=1))
            status = compute_shift_status([following], member.id, now)
    except ScheduleUnavailable as exc:
        logger.error("/shift schedule error: %s", exc)
        await update.message.reply_text("Couldn't load your shifts. Please try again later.")
        return
    await update.message.reply_text(format_shift_status(status))


@authorized_only
async def cmd_split(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /split — minutes per member over the fairness window."""
    member = await _member_or_reply(update, context)
    if member is None:
        return
    sync = _sync_for(context, member)
    anchor = sync.current_week or monday_of(_now().date())
    weeks = trailing_weeks(anchor, settings.FAIRNESS_WINDOW_WEEKS)
    try:
        schedules = [await sync.cache.load(w) for w in weeks]
    except ScheduleUnavailable as exc:
        logger.error("/split schedule error: %s", exc)
        await update.message.reply_text("Couldn't load the schedules. Please try again later.")
        return

    family = context.bot_data["members"].list_members(member.family_id)
    split = compute_task_split(member.family_id, schedules, family)
    lines = [
        f"⚖️ Task split {split.period_start.isoformat()} – {split.period_end.isoformat()}",
        f"Fairness score: {split.fairness_score:.0f}/100",
        "",
    ]
    for stats in split.member_stats:
        lines.append(
            f"  {stats.member_name}: {stats.total_minutes} min "
            f"({stats.percentage:.0f}%, {stats.task_count} tasks)"
        )
    if split.unassigned_minutes:
        lines.append(f"  Unassigned: {split.unassigned_minutes} min")
    await update.message.reply_text("\n".join(lines))


# ---------------------------------------------------------------------------
# App assembly
# ---------------------------------------------------------------------------


def build_app(
    service: ScheduleService | None = None,
    notifier: NotificationPort | None = None,
    source: SchedulePort | None = None,
) -> Application:
    """Build and configure the Telegram Application with all handlers.

    Args:
        service: In-process schedule service. Defaults to one over the
                 SQLite stores at DATABASE_PATH.
        notifier: Notification port implementation. Defaults to TelegramNotifier
                  (created from the bot instance after app is built).
        source: Where chats fetch schedules from. Defaults to the HTTP API
                when API_BASE_URL is set, otherwise the in-process service.
    """
    app = ApplicationBuilder().token(settings.TELEGRAM_BOT_TOKEN).build()

    if service is None:
        from src.core.schedule_service import ScheduleService
        from src.data.db import MemberDB
        from src.data.override_db import OverrideDB
        from src.data.template_db import TemplateDB

        service = ScheduleService(TemplateDB(), OverrideDB(), MemberDB())

    if notifier is None:
        from src.adapters.telegram_notifier import TelegramNotifier
        notifier = TelegramNotifier(app.bot)

    if source is None:
        if settings.API_BASE_URL:
            from src.adapters.http_schedule_client import HttpScheduleClient
            source = HttpScheduleClient()
        else:
            source = service

    # Store ports in bot_data for handler access
    app.bot_data["service"] = service
    app.bot_data["source"] = source
    app.bot_data["members"] = service.members
    app.bot_data["notifier"] = notifier
    app.bot_data["bus"] = service.bus

    from src.core.notifications import AssignmentNotifier
    AssignmentNotifier(notifier, service.members).attach(service.bus)

    app.add_handler(CommandHandler("start", cmd_start))
    app.add_handler(CommandHandler("help", cmd_help))
    app.add_handler(CommandHandler("week", cmd_week))
    app.add_handler(CommandHandler("next", cmd_next))
    app.add_handler(CommandHandler("prev", cmd_prev))
    app.add_handler(CommandHandler("today", cmd_today))
    app.add_handler(CommandHandler("shift", cmd_shift))
    app.add_handler(CommandHandler("split", cmd_split))

    _setup_morning_briefing(app, service, notifier)

    logger.info("Telegram bot application built with %d handlers", len(app.handlers[0]))
    return app


def _setup_morning_briefing(
    app: Application,
    service: ScheduleService,
    notifier: NotificationPort,
) -> None:
    """Register the daily shift briefing at BRIEFING_HOUR local time."""
    from src.core.briefing import send_morning_briefing

    tz = ZoneInfo(settings.TIMEZONE)
    briefing_time = dt_time(hour=settings.BRIEFING_HOUR, minute=0, tzinfo=tz)

    async def _morning_job_callback(context: ContextTypes.DEFAULT_TYPE) -> None:
        await send_morning_briefing(notifier, service)

    app.job_queue.run_daily(
        _morning_job_callback,
        time=briefing_time,
        name="morning_briefing",
    )

    logger.info(
        "Morning briefing scheduled at %02d:00 %s",
        settings.BRIEFING_HOUR,
        settings.TIMEZONE,
    )


def main() -> None:
    """Entry point: build the app and start polling."""
    if not settings.TELEGRAM_BOT_TOKEN:
        print("ERROR: TELEGRAM_BOT_TOKEN is not set. Add it to .env.", file=sys.stderr)
        sys.exit(1)
    logger.info("Starting Family Week Planner bot...")
    app = build_app()
    app.run_polling()
