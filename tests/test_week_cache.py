"""Tests for src.core.week_cache — WeekCache and ScheduleSync."""

import asyncio
from datetime import date, timedelta
from unittest.mock import AsyncMock

import pytest

from src.core.events import EventBus, TaskAssigned, WeekScheduleUpdated
from src.core.week_cache import EntryState, ScheduleSync, StaleCacheRead, WeekCache
from src.data.models import BaseTemplateRef, ResolvedWeekSchedule
from src.ports.schedule_port import ScheduleUnavailable

MONDAY = date(2024, 6, 3)
NEXT = MONDAY + timedelta(weeks=1)
PREV = MONDAY - timedelta(weeks=1)


def _schedule(week, tag="v1"):
    return ResolvedWeekSchedule("f", week, BaseTemplateRef(tag, tag), False, [])


class GatedFetcher:
    """Fetcher whose calls block until released, one gate per call."""

    def __init__(self):
        self.calls = []
        self.gates = []
        self.fail = False
        self.open = False

    async def __call__(self, week):
        gate = asyncio.Event()
        self.calls.append(week)
        self.gates.append(gate)
        tag = f"call-{len(self.calls)}"
        if not self.open:
            await gate.wait()
        if self.fail:
            raise ScheduleUnavailable("backend down")
        return _schedule(week, tag)

    async def get_week_schedule(self, family_id, week):
        return await self(week)

    def release_all(self):
        for gate in self.gates:
            gate.set()


async def _settle():
    for _ in range(3):
        await asyncio.sleep(0)


class TestWeekCacheReads:
    @pytest.mark.asyncio
    async def test_get_absent_starts_fetch(self):
        fetcher = AsyncMock(side_effect=lambda week: _schedule(week))
        cache = WeekCache(fetcher)
        read = cache.get(MONDAY)
        assert read.state is EntryState.LOADING
        assert read.schedule is None
        schedule = await cache.load(MONDAY)
        assert schedule.week_start_date == MONDAY
        assert cache.state(MONDAY) is EntryState.PRESENT

    @pytest.mark.asyncio
    async def test_get_present_does_not_fetch(self):
        fetcher = AsyncMock(side_effect=lambda week: _schedule(week))
        cache = WeekCache(fetcher)
        await cache.load(MONDAY)
        read = cache.get(MONDAY)
        await _settle()
        assert read.state is EntryState.PRESENT
        assert fetcher.await_count == 1

    @pytest.mark.asyncio
    async def test_load_present_returns_cached(self):
        fetcher = AsyncMock(side_effect=lambda week: _schedule(week))
        cache = WeekCache(fetcher)
        first = await cache.load(MONDAY)
        assert await cache.load(MONDAY) is first
        assert fetcher.await_count == 1

    @pytest.mark.asyncio
    async def test_peek_never_fetches(self):
        fetcher = AsyncMock()
        cache = WeekCache(fetcher)
        assert cache.peek(MONDAY).state is EntryState.ABSENT
        await _settle()
        fetcher.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_expired_entry_served_stale_and_refetched(self):
        now = [0.0]
        fetcher = AsyncMock(side_effect=lambda week: _schedule(week))
        cache = WeekCache(fetcher, clock=lambda: now[0], max_age=60)
        await cache.load(MONDAY)
        now[0] = 61.0
        read = cache.get(MONDAY)
        assert read.is_stale
        assert read.schedule is not None
        await cache.load(MONDAY)
        assert fetcher.await_count == 2


class TestWeekCacheInvalidation:
    @pytest.mark.asyncio
    async def test_invalidate_all_forces_loading(self):
        fetcher = AsyncMock(side_effect=lambda week: _schedule(week))
        cache = WeekCache(fetcher)
        await cache.load(MONDAY)
        await cache.load(NEXT)
        cache.invalidate("all")
        assert cache.weeks() == []
        read = cache.get(MONDAY)
        assert read.is_loading
        assert read.schedule is None

    @pytest.mark.asyncio
    async def test_invalidate_single_week(self):
        fetcher = AsyncMock(side_effect=lambda week: _schedule(week))
        cache = WeekCache(fetcher)
        await cache.load(MONDAY)
        await cache.load(NEXT)
        cache.invalidate(MONDAY)
        assert cache.weeks() == [NEXT]

    def test_invalidate_rejects_other_values(self):
        cache = WeekCache(AsyncMock())
        with pytest.raises(ValueError):
            cache.invalidate("everything")

    @pytest.mark.asyncio
    async def test_strict_read_of_stale_entry_raises(self):
        fetcher = AsyncMock(side_effect=lambda week: _schedule(week))
        cache = WeekCache(fetcher)
        await cache.load(MONDAY)
        assert cache.mark_stale(MONDAY) == [MONDAY]
        with pytest.raises(StaleCacheRead) as exc_info:
            cache.peek(MONDAY, allow_stale=False)
        assert exc_info.value.schedule.week_start_date == MONDAY
        assert cache.peek(MONDAY).is_stale

    @pytest.mark.asyncio
    async def test_set_stores_without_fetch(self):
        fetcher = AsyncMock()
        cache = WeekCache(fetcher)
        cache.set(MONDAY, _schedule(MONDAY, "written"))
        assert (await cache.load(MONDAY)).base_template.id == "written"
        fetcher.assert_not_awaited()


class TestWeekCacheFetching:
    @pytest.mark.asyncio
    async def test_last_request_wins(self):
        fetcher = GatedFetcher()
        cache = WeekCache(fetcher)
        cache.get(MONDAY)
        await _settle()
        cache.mark_stale(MONDAY)      # supersedes the first request
        cache.get(MONDAY)
        await _settle()
        fetcher.release_all()
        schedule = await cache.load(MONDAY)
        assert len(fetcher.calls) == 2
        assert schedule.base_template.id == "call-2"

    @pytest.mark.asyncio
    async def test_forced_load_supersedes_in_flight_fetch(self):
        fetcher = GatedFetcher()
        cache = WeekCache(fetcher)
        cache.get(MONDAY)
        await _settle()
        waiter = asyncio.ensure_future(cache.load(MONDAY, force=True))
        await _settle()
        fetcher.release_all()
        schedule = await waiter
        assert schedule.base_template.id == "call-2"

    @pytest.mark.asyncio
    async def test_failure_keeps_last_good_schedule(self):
        fetcher = GatedFetcher()
        cache = WeekCache(fetcher)
        cache.get(MONDAY)
        await _settle()
        fetcher.release_all()
        good = await cache.load(MONDAY)

        fetcher.fail = True
        cache.mark_stale(MONDAY)
        cache.get(MONDAY)
        await _settle()
        fetcher.release_all()
        served = await cache.load(MONDAY)
        assert served is good
        read = cache.peek(MONDAY)
        assert read.state is EntryState.STALE
        assert isinstance(read.error, ScheduleUnavailable)

    @pytest.mark.asyncio
    async def test_failure_with_nothing_cached_raises(self):
        cache = WeekCache(AsyncMock(side_effect=ScheduleUnavailable("down")))
        with pytest.raises(ScheduleUnavailable):
            await cache.load(MONDAY)
        assert cache.state(MONDAY) is EntryState.ABSENT

    @pytest.mark.asyncio
    async def test_unexpected_error_wrapped(self):
        cache = WeekCache(AsyncMock(side_effect=KeyError("days")))
        with pytest.raises(ScheduleUnavailable):
            await cache.load(MONDAY)

    @pytest.mark.asyncio
    async def test_cancel(self):
        fetcher = GatedFetcher()
        cache = WeekCache(fetcher)
        cache.get(MONDAY)
        await _settle()
        assert cache.cancel(MONDAY) is True
        assert cache.cancel(MONDAY) is False
        assert cache.state(MONDAY) is EntryState.ABSENT

    @pytest.mark.asyncio
    async def test_on_change_called_after_fetch(self):
        changes = []
        cache = WeekCache(AsyncMock(side_effect=lambda week: _schedule(week)), on_change=changes.append)
        await cache.load(MONDAY)
        assert changes == [MONDAY]

    @pytest.mark.asyncio
    async def test_load_refetches_after_its_fetch_is_cancelled(self):
        fetcher = GatedFetcher()
        cache = WeekCache(fetcher)
        waiter = asyncio.ensure_future(cache.load(MONDAY))
        await _settle()
        assert cache.cancel(MONDAY) is True
        fetcher.open = True
        fetcher.release_all()
        schedule = await waiter
        assert len(fetcher.calls) == 2
        assert schedule.base_template.id == "call-2"
        assert cache.state(MONDAY) is EntryState.PRESENT

    @pytest.mark.asyncio
    async def test_load_survives_invalidate_all(self):
        fetcher = GatedFetcher()
        cache = WeekCache(fetcher)
        cache.get(MONDAY)
        await _settle()
        fetcher.release_all()
        await cache.load(MONDAY)

        cache.mark_stale(MONDAY)
        waiter = asyncio.ensure_future(cache.load(MONDAY))
        await _settle()
        cache.invalidate("all")
        fetcher.open = True
        fetcher.release_all()
        schedule = await waiter
        assert schedule.base_template.id == "call-3"

    @pytest.mark.asyncio
    async def test_earlier_failure_does_not_end_a_later_wait(self):
        fetcher = GatedFetcher()
        fetcher.fail = True
        fetcher.open = True
        cache = WeekCache(fetcher)
        with pytest.raises(ScheduleUnavailable):
            await cache.load(MONDAY)

        fetcher.fail = False
        fetcher.open = False
        waiter = asyncio.ensure_future(cache.load(MONDAY))
        await _settle()
        cache.cancel(MONDAY)
        fetcher.open = True
        fetcher.release_all()
        schedule = await waiter
        assert schedule.base_template.id == "call-3"


# ---------------------------------------------------------------------------
# ScheduleSync
# ---------------------------------------------------------------------------


def _source():
    source = AsyncMock()
    source.get_week_schedule.side_effect = lambda family_id, week: _schedule(week)
    return source


class TestScheduleSync:
    @pytest.mark.asyncio
    async def test_show_prefetches_neighbours(self):
        source = _source()
        sync = ScheduleSync(source, "f", max_age=0, prefetch=True)
        view = sync.show(MONDAY + timedelta(days=3))
        assert view.week == MONDAY
        assert view.is_loading
        await sync.current()
        await _settle()
        fetched = sorted(call.args[1] for call in source.get_week_schedule.await_args_list)
        assert fetched == [PREV, MONDAY, NEXT]

    @pytest.mark.asyncio
    async def test_prefetch_disabled(self):
        source = _source()
        sync = ScheduleSync(source, "f", max_age=0, prefetch=False)
        sync.show(MONDAY)
        await sync.current()
        assert source.get_week_schedule.await_count == 1

    @pytest.mark.asyncio
    async def test_navigation_keeps_previous_schedule_visible(self):
        fetcher = GatedFetcher()
        sync = ScheduleSync(fetcher, "f", max_age=0, prefetch=False)
        sync.show(MONDAY)
        await _settle()
        fetcher.release_all()
        await sync.current()

        view = sync.next_week()
        assert view.week == NEXT
        assert view.is_loading
        assert view.schedule.week_start_date == MONDAY
        assert not view.is_current
        fetcher.release_all()
        await _settle()

    @pytest.mark.asyncio
    async def test_leaving_window_cancels_fetches(self):
        fetcher = GatedFetcher()
        sync = ScheduleSync(fetcher, "f", max_age=0, prefetch=False)
        sync.show(MONDAY)
        await _settle()
        sync.show(MONDAY + timedelta(weeks=5))
        assert sync.cache.state(MONDAY) is EntryState.ABSENT
        fetcher.release_all()
        await _settle()

    @pytest.mark.asyncio
    async def test_undated_week_update_invalidates_everything(self):
        source = _source()
        sync = ScheduleSync(source, "f", max_age=0, prefetch=True)
        sync.show(MONDAY)
        await sync.current()
        await _settle()
        sync.handle_event(WeekScheduleUpdated("f", is_template_change=True))
        assert sync.cache.weeks() == []
        assert sync.cache.state(MONDAY) is EntryState.LOADING

    @pytest.mark.asyncio
    async def test_dated_task_event_marks_its_week(self):
        source = _source()
        sync = ScheduleSync(source, "f", max_age=0, prefetch=True)
        sync.show(MONDAY)
        await sync.current()
        await _settle()
        sync.handle_event(TaskAssigned("f", "t", "bob", NEXT + timedelta(days=2)))
        assert sync.cache.state(NEXT) is EntryState.STALE
        assert sync.cache.state(MONDAY) is EntryState.PRESENT

    @pytest.mark.asyncio
    async def test_event_for_displayed_week_refetches(self):
        source = _source()
        sync = ScheduleSync(source, "f", max_age=0, prefetch=False)
        sync.show(MONDAY)
        await sync.current()
        sync.handle_event(WeekScheduleUpdated("f", week_start_date=MONDAY, has_overrides=True))
        assert sync.cache.state(MONDAY) is EntryState.LOADING
        await sync.current()
        assert source.get_week_schedule.await_count == 2

    @pytest.mark.asyncio
    async def test_other_family_ignored(self):
        source = _source()
        sync = ScheduleSync(source, "f", max_age=0, prefetch=False)
        sync.show(MONDAY)
        await sync.current()
        sync.handle_event(WeekScheduleUpdated("other"))
        assert sync.cache.state(MONDAY) is EntryState.PRESENT

    @pytest.mark.asyncio
    async def test_attach_to_bus(self):
        source = _source()
        bus = EventBus()
        sync = ScheduleSync(source, "f", max_age=0, prefetch=False)
        unsubscribe = sync.attach(bus)
        sync.show(MONDAY)
        await sync.current()
        await bus.publish(WeekScheduleUpdated("f"))
        assert sync.cache.weeks() == []
        unsubscribe()

    @pytest.mark.asyncio
    async def test_remember_skips_refetch(self):
        source = _source()
        sync = ScheduleSync(source, "f", max_age=0, prefetch=False)
        sync.remember(_schedule(MONDAY, "written"))
        sync.show(MONDAY)
        assert (await sync.current()).base_template.id == "written"
        source.get_week_schedule.assert_not_awaited()

    def test_navigation_requires_show(self):
        sync = ScheduleSync(_source(), "f", max_age=0, prefetch=False)
        with pytest.raises(RuntimeError):
            sync.next_week()

    @pytest.mark.asyncio
    async def test_undated_update_while_waiting_delivers_new_data(self):
        fetcher = GatedFetcher()
        sync = ScheduleSync(fetcher, "f", max_age=0, prefetch=False)
        sync.show(MONDAY)
        waiter = asyncio.ensure_future(sync.current())
        await _settle()
        sync.handle_event(WeekScheduleUpdated(family_id="f"))
        fetcher.open = True
        fetcher.release_all()
        schedule = await waiter
        assert len(fetcher.calls) == 2
        assert schedule.base_template.id == "call-2"

    @pytest.mark.asyncio
    async def test_navigation_does_not_fail_a_pending_load(self):
        fetcher = GatedFetcher()
        sync = ScheduleSync(fetcher, "f", max_age=0, prefetch=False)
        sync.show(MONDAY)
        earlier = MONDAY - timedelta(weeks=3)
        waiter = asyncio.ensure_future(sync.cache.load(earlier))
        await _settle()
        sync.show(NEXT)
        fetcher.open = True
        fetcher.release_all()
        schedule = await waiter
        assert schedule.week_start_date == earlier
        assert sync.cache.peek(earlier).error is None
