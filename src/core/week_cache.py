"""
Family Week Planner — Client Cache & Sync Layer.

WeekCache keeps resolved weeks keyed by their Monday. Each entry moves
through absent → loading → present → stale → loading → present …

- get() is cache-first and never blocks: a present entry is served with no
  fetch; anything else starts a background fetch and returns what is known.
- Only the latest request for a week may write its result (last request
  wins). Older in-flight fetches are cancelled and their results discarded.
- A failed fetch keeps the last good schedule (served as stale) and records
  the error.

ScheduleSync drives a WeekCache for one family on behalf of a view: the
displayed week, adjacent-week prefetch, and invalidation on push events.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum
from typing import Awaitable, Callable

from src.config import settings
from src.core.events import (
    EventBus,
    ScheduleEvent,
    TaskAssigned,
    TaskScheduleUpdated,
    TaskUnassigned,
    WeekScheduleReverted,
    WeekScheduleUpdated,
    affected_week,
)
from src.core.week_dates import monday_of
from src.data.models import ResolvedWeekSchedule
from src.ports.schedule_port import SchedulePort, ScheduleUnavailable

logger = logging.getLogger(__name__)

Fetcher = Callable[[date], Awaitable[ResolvedWeekSchedule]]


class EntryState(str, Enum):
    ABSENT = "absent"
    LOADING = "loading"
    PRESENT = "present"
    STALE = "stale"


class StaleCacheRead(Exception):
    """A strict read hit a schedule that is known to be out of date."""

    def __init__(self, week: date, schedule: ResolvedWeekSchedule) -> None:
        self.week = week
        self.schedule = schedule
        super().__init__(f"Cached schedule for {week.isoformat()} is stale")


@dataclass
class CacheEntry:
    state: EntryState = EntryState.ABSENT
    schedule: ResolvedWeekSchedule | None = None
    fetched_at: float | None = None
    error: Exception | None = None
    token: int = 0
    task: asyncio.Task | None = None


@dataclass(frozen=True)
class CacheRead:
    """Snapshot of one entry as seen by a reader."""

    week: date
    state: EntryState
    schedule: ResolvedWeekSchedule | None = None
    error: Exception | None = None

    @property
    def is_stale(self) -> bool:
        return self.schedule is not None and self.state != EntryState.PRESENT

    @property
    def is_loading(self) -> bool:
        return self.state == EntryState.LOADING


class WeekCache:
    """Keyed cache of resolved weeks with an injected fetcher and clock.

    Must be used from within a running event loop: fetches run as asyncio
    tasks and all mutation happens on the loop thread.
    """

    def __init__(
        self,
        fetcher: Fetcher,
        clock: Callable[[], float] = time.monotonic,
        max_age: float = 0,
        on_change: Callable[[date], None] | None = None,
    ) -> None:
        self._fetcher = fetcher
        self._clock = clock
        self._max_age = max_age
        self._on_change = on_change
        self._entries: dict[date, CacheEntry] = {}

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _entry(self, week: date) -> CacheEntry:
        return self._entries.setdefault(week, CacheEntry())

    def _expired(self, entry: CacheEntry) -> bool:
        if not self._max_age or entry.fetched_at is None:
            return False
        return self._clock() - entry.fetched_at >= self._max_age

    def _read(self, week: date, entry: CacheEntry) -> CacheRead:
        state = entry.state
        if state == EntryState.PRESENT and self._expired(entry):
            state = EntryState.STALE
        return CacheRead(week, state, entry.schedule, entry.error)

    def get(self, week: date) -> CacheRead:
        """Cache-first read. Starts a background fetch unless the entry is fresh."""
        entry = self._entry(week)
        if entry.state == EntryState.PRESENT and self._expired(entry):
            entry.state = EntryState.STALE
        if entry.state in (EntryState.ABSENT, EntryState.STALE):
            self._start_fetch(week, entry)
        return self._read(week, entry)

    def peek(self, week: date, allow_stale: bool = True) -> CacheRead:
        """Read without fetching.

        Raises:
            StaleCacheRead: allow_stale is False and the cached schedule is
                known to be out of date.
        """
        entry = self._entries.get(week)
        if entry is None:
            return CacheRead(week, EntryState.ABSENT)
        read = self._read(week, entry)
        if not allow_stale and read.is_stale:
            raise StaleCacheRead(week, read.schedule)
        return read

    def state(self, week: date) -> EntryState:
        return self.peek(week).state

    def weeks(self) -> list[date]:
        """Weeks that currently hold a schedule."""
        return sorted(w for w, e in self._entries.items() if e.schedule is not None)

    async def load(self, week: date, force: bool = False) -> ResolvedWeekSchedule:
        """Wait for a usable schedule for the week.

        Serves a fresh entry directly. Otherwise waits for the latest fetch;
        if it fails, the last known schedule is returned instead. A fetch
        that is cancelled or superseded while waiting (invalidation,
        navigation) is not a failure: the wait moves on to its replacement,
        starting one if nobody else did.

        Raises:
            ScheduleUnavailable: the fetch failed and nothing is cached.
        """
        entry = self._entry(week)
        if not force and entry.state == EntryState.PRESENT and not self._expired(entry):
            return entry.schedule
        if force or entry.task is None:
            self._start_fetch(week, entry)

        while True:
            seen_error = entry.error
            await asyncio.wait({entry.task})
            current = self._entry(week)
            if current is not entry:
                seen_error = None
            entry = current
            if entry.task is not None:
                continue
            if entry.state == EntryState.PRESENT:
                return entry.schedule
            if entry.error is not None and entry.error is not seen_error:
                break
            self._start_fetch(week, entry)

        if entry.schedule is not None:
            return entry.schedule
        if isinstance(entry.error, ScheduleUnavailable):
            raise entry.error
        raise ScheduleUnavailable(
            f"No schedule available for week {week.isoformat()}"
        ) from entry.error

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def set(self, week: date, schedule: ResolvedWeekSchedule) -> None:
        """Store a schedule obtained elsewhere (e.g. returned by a write)."""
        entry = self._entry(week)
        self._drop_fetch(entry)
        entry.state = EntryState.PRESENT
        entry.schedule = schedule
        entry.fetched_at = self._clock()
        entry.error = None
        self._changed(week)

    def invalidate(self, week: date | str) -> None:
        """Forget one week, or every week with 'all'. The next get() refetches."""
        if week == "all":
            targets = list(self._entries)
        elif isinstance(week, date):
            targets = [week] if week in self._entries else []
        else:
            raise ValueError(f"invalidate() takes a week date or 'all', got {week!r}")

        for target in targets:
            entry = self._entries.pop(target)
            self._drop_fetch(entry)
        if targets:
            logger.debug("Invalidated %d cached week(s)", len(targets))

    def mark_stale(self, week: date | None = None) -> list[date]:
        """Flag cached data as out of date without dropping it.

        week None marks every entry. A fetch already in flight may predate
        the change, so it is cancelled. Returns the affected weeks.
        """
        targets = list(self._entries) if week is None else [week]
        affected: list[date] = []
        for target in targets:
            entry = self._entries.get(target)
            if entry is None or entry.state == EntryState.ABSENT:
                continue
            self._drop_fetch(entry)
            entry.state = EntryState.STALE if entry.schedule is not None else EntryState.ABSENT
            affected.append(target)
        return affected

    def cancel(self, week: date) -> bool:
        """Cancel the week's in-flight fetch, if any."""
        entry = self._entries.get(week)
        if entry is None or entry.task is None:
            return False
        self._drop_fetch(entry)
        entry.state = EntryState.STALE if entry.schedule is not None else EntryState.ABSENT
        logger.debug("Cancelled fetch for week %s", week.isoformat())
        return True

    def cancel_except(self, keep: set[date]) -> list[date]:
        """Cancel every in-flight fetch for weeks not in keep."""
        cancelled = []
        for week in list(self._entries):
            if week not in keep and self.cancel(week):
                cancelled.append(week)
        return cancelled

    # ------------------------------------------------------------------
    # Fetching
    # ------------------------------------------------------------------

    def _drop_fetch(self, entry: CacheEntry) -> None:
        entry.token += 1
        if entry.task is not None:
            entry.task.cancel()
            entry.task = None

    def _start_fetch(self, week: date, entry: CacheEntry) -> None:
        self._drop_fetch(entry)
        token = entry.token
        entry.state = EntryState.LOADING
        entry.task = asyncio.get_running_loop().create_task(self._fetch(week, entry, token))

    async def _fetch(self, week: date, entry: CacheEntry, token: int) -> None:
        try:
            schedule = await self._fetcher(week)
        except asyncio.CancelledError:
            if entry.token == token:
                entry.task = None
                entry.state = EntryState.STALE if entry.schedule is not None else EntryState.ABSENT
            raise
        except Exception as exc:
            if entry.token != token:
                return
            entry.task = None
            entry.error = exc
            entry.state = EntryState.STALE if entry.schedule is not None else EntryState.ABSENT
            logger.error("Failed to fetch schedule for week %s: %s", week.isoformat(), exc)
            self._changed(week)
            return

        if entry.token != token:
            logger.debug("Discarding superseded response for week %s", week.isoformat())
            return
        entry.task = None
        entry.state = EntryState.PRESENT
        entry.schedule = schedule
        entry.fetched_at = self._clock()
        entry.error = None
        self._changed(week)

    def _changed(self, week: date) -> None:
        if self._on_change is not None:
            self._on_change(week)


# ---------------------------------------------------------------------------
# Sync layer
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SyncView:
    """What a view should render right now.

    schedule may belong to a different week than `week` while that week is
    loading (the previously shown data stays up instead of a spinner).
    """

    week: date
    state: EntryState
    schedule: ResolvedWeekSchedule | None
    error: Exception | None = None

    @property
    def is_loading(self) -> bool:
        return self.state == EntryState.LOADING

    @property
    def is_current(self) -> bool:
        return self.schedule is not None and self.schedule.week_start_date == self.week


class ScheduleSync:
    """Keeps one family's displayed week and its neighbours fresh."""

    def __init__(
        self,
        source: SchedulePort,
        family_id: str,
        clock: Callable[[], float] = time.monotonic,
        max_age: float | None = None,
        prefetch: bool | None = None,
        on_change: Callable[[date], None] | None = None,
    ) -> None:
        self.family_id = family_id
        self._source = source
        self._prefetch = settings.PREFETCH_ADJACENT_WEEKS if prefetch is None else prefetch
        self._cache = WeekCache(
            self._fetch,
            clock=clock,
            max_age=settings.CACHE_MAX_AGE_SECONDS if max_age is None else max_age,
            on_change=self._on_cache_change,
        )
        self._listener = on_change
        self._displayed: ResolvedWeekSchedule | None = None
        self.current_week: date | None = None

    @property
    def cache(self) -> WeekCache:
        return self._cache

    async def _fetch(self, week: date) -> ResolvedWeekSchedule:
        return await self._source.get_week_schedule(self.family_id, week)

    def _on_cache_change(self, week: date) -> None:
        if week == self.current_week:
            read = self._cache.peek(week)
            if read.schedule is not None:
                self._displayed = read.schedule
        if self._listener is not None:
            self._listener(week)

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    def show(self, week: date) -> SyncView:
        """Make `week` the displayed week (any date in it is accepted)."""
        week = monday_of(week)
        self.current_week = week
        window = {week - timedelta(weeks=1), week, week + timedelta(weeks=1)}
        self._cache.cancel_except(window)

        read = self._cache.get(week)
        if read.schedule is not None:
            self._displayed = read.schedule
        if self._prefetch:
            for neighbour in (week - timedelta(weeks=1), week + timedelta(weeks=1)):
                self._cache.get(neighbour)
        return self.view()

    def next_week(self) -> SyncView:
        return self.show(self._require_week() + timedelta(weeks=1))

    def prev_week(self) -> SyncView:
        return self.show(self._require_week() - timedelta(weeks=1))

    def _require_week(self) -> date:
        if self.current_week is None:
            raise RuntimeError("No week is displayed yet; call show() first")
        return self.current_week

    def view(self) -> SyncView:
        week = self._require_week()
        read = self._cache.peek(week)
        return SyncView(
            week=week,
            state=read.state,
            schedule=read.schedule or self._displayed,
            error=read.error,
        )

    async def current(self, force: bool = False) -> ResolvedWeekSchedule:
        """Wait until the displayed week is loaded and return it."""
        schedule = await self._cache.load(self._require_week(), force=force)
        self._displayed = schedule
        return schedule

    def remember(self, schedule: ResolvedWeekSchedule) -> None:
        """Cache a schedule returned by a write so it is served without a refetch."""
        self._cache.set(schedule.week_start_date, schedule)

    # ------------------------------------------------------------------
    # Push events
    # ------------------------------------------------------------------

    def handle_event(self, event: ScheduleEvent) -> None:
        """Turn a push event into cache invalidation."""
        if event.family_id != self.family_id:
            return

        if isinstance(event, WeekScheduleUpdated) and event.week_start_date is None:
            # scope unknown: drop everything
            self._cache.invalidate("all")
            self._refresh_displayed()
        elif isinstance(event, (WeekScheduleUpdated, WeekScheduleReverted)):
            self._mark(event.week_start_date)
        elif isinstance(event, (TaskAssigned, TaskUnassigned, TaskScheduleUpdated)):
            self._mark(affected_week(event))
        else:
            raise TypeError(f"Unhandled schedule event: {event!r}")

    def _mark(self, week: date | None) -> None:
        affected = self._cache.mark_stale(week)
        logger.debug("Event marked %d week(s) stale for family %s", len(affected), self.family_id)
        if self.current_week is not None and (week is None or week == self.current_week):
            self._refresh_displayed()

    def _refresh_displayed(self) -> None:
        if self.current_week is not None:
            self._cache.get(self.current_week)

    def attach(self, bus: EventBus) -> Callable[[], None]:
        """Subscribe to a bus; returns the unsubscribe function."""
        return bus.subscribe(self.handle_event)
