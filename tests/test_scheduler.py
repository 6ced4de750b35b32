import asyncio
from datetime import timedelta

import pytest

from pagewatch.config import Settings
from pagewatch.core.exceptions import FetchError
from pagewatch.core.tiers import Tier, effective_frequency
from pagewatch.core.types import CheckStatus, Frequency, UsageEvent, UsageKind
from pagewatch.services.monitor_checker import CheckResult
from pagewatch.services.quota import QuotaTracker
from pagewatch.services.scheduler import MonitorScheduler, ScheduleState, is_due, schedule_state

from .conftest import START, URL, article, make_monitor


class TrackingChecker:
    """Stands in for MonitorChecker and records how many checks overlap."""

    def __init__(self, fail_for=()):
        self.fail_for = set(fail_for)
        self.active = 0
        self.peak = 0
        self.checked = []

    async def check_monitor(self, monitor, allow_render=True):
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await asyncio.sleep(0.01)
            if monitor.id in self.fail_for:
                raise RuntimeError("worker exploded")
            self.checked.append(monitor.id)
            return CheckResult(
                monitor_id=monitor.id,
                status=CheckStatus.OK,
                changed=False,
                current_value="v",
                previous_value="v",
            )
        finally:
            self.active -= 1


def _scheduler(store, checker, clock, **overrides):
    settings = Settings(database_url="sqlite:///:memory:", **overrides)
    quota = QuotaTracker(store, settings=settings, clock=clock)
    return MonitorScheduler(store, checker, quota, settings=settings, clock=clock)


def test_schedule_state():
    never_checked = make_monitor()
    assert schedule_state(never_checked, START, Tier.PRO) == ScheduleState.DUE

    paused = make_monitor(active=False)
    assert schedule_state(paused, START, Tier.PRO) == ScheduleState.PAUSED

    recent = make_monitor(last_checked=START - timedelta(minutes=30))
    assert schedule_state(recent, START, Tier.PRO) == ScheduleState.NOT_DUE

    stale = make_monitor(last_checked=START - timedelta(minutes=60))
    assert is_due(stale, START, Tier.PRO)


def test_free_tier_hourly_monitor_runs_daily():
    monitor = make_monitor(frequency=Frequency.HOURLY, last_checked=START - timedelta(hours=2))
    assert not is_due(monitor, START, Tier.FREE)
    assert is_due(monitor, START + timedelta(hours=22), Tier.FREE)


async def test_tick_dispatches_only_due_monitors(engine, store, fetcher, clock):
    store.set_user_tier("user-1", Tier.PRO)
    store.add_monitor(make_monitor(1))
    store.add_monitor(make_monitor(2, last_checked=START - timedelta(minutes=10)))
    fetcher.pages[URL] = article("<span class='price'>$10</span>")

    report = await engine.scheduler.run_tick()
    assert report.considered == 2
    assert report.dispatched == 1
    assert report.statuses == {"ok": 1}

    again = await engine.scheduler.run_tick()
    assert again.dispatched == 0

    clock.advance(hours=1)
    later = await engine.scheduler.run_tick()
    assert later.dispatched == 2


async def test_concurrency_is_bounded(store, clock):
    for monitor_id in range(1, 9):
        store.add_monitor(make_monitor(monitor_id))
    checker = TrackingChecker()

    report = await _scheduler(store, checker, clock, max_concurrent_checks=3).run_tick()

    assert report.dispatched == 8
    assert sorted(checker.checked) == list(range(1, 9))
    assert 1 < checker.peak <= 3


async def test_concurrent_ticks_run_one_after_another(engine, store, fetcher):
    store.set_user_tier("user-1", Tier.PRO)
    for monitor_id in (1, 2, 3):
        store.add_monitor(make_monitor(monitor_id))
    fetcher.pages[URL] = article("<span class='price'>$10</span>")

    first, second = await asyncio.gather(engine.scheduler.run_tick(), engine.scheduler.run_tick())

    assert sorted([first.dispatched, second.dispatched]) == [0, 3]
    assert len(fetcher.calls) == 3
    assert engine.scheduler.ticks == 2


async def test_one_failing_check_does_not_abort_the_tick(store, clock):
    for monitor_id in (1, 2, 3):
        store.add_monitor(make_monitor(monitor_id))
    checker = TrackingChecker(fail_for={2})
    scheduler = _scheduler(store, checker, clock)

    report = await scheduler.run_tick()

    assert report.crashed == 1
    assert report.statuses == {"ok": 2}
    assert sorted(checker.checked) == [1, 3]


async def test_free_monitor_pauses_after_three_failed_ticks(engine, store, fetcher, notifier, clock):
    store.add_monitor(make_monitor(1, current_value="$10", last_changed=START - timedelta(days=3)))
    fetcher.pages[URL] = FetchError("Failed to fetch page (HTTP 503)", status_code=503)

    for _ in range(3):
        await engine.scheduler.run_tick()
        clock.advance(days=1)

    monitor = await store.get_monitor(1)
    assert monitor.active is False
    assert monitor.consecutive_failures == 3
    assert monitor.current_value == "$10"
    assert monitor.last_status == CheckStatus.ERROR
    assert notifier.pauses == [(1, 3, "Failed to fetch page (HTTP 503)")]
    assert any(e.message == "Monitor 1 auto-paused" for e in store.error_logs)

    report = await engine.scheduler.run_tick()
    assert report.considered == 0
    assert report.dispatched == 0


async def test_tick_prunes_old_usage_once_a_day(engine, store, clock):
    await store.add_usage_event(UsageEvent(kind=UsageKind.RENDER, user_id="u1",
                                           timestamp=START - timedelta(days=120), success=True))
    await store.add_usage_event(UsageEvent(kind=UsageKind.RENDER, user_id="u1",
                                           timestamp=START - timedelta(days=1), success=True))

    await engine.scheduler.run_tick()

    assert len(store.usage_events) == 1


async def test_start_and_stop_loop(store, clock):
    store.add_monitor(make_monitor(1))
    checker = TrackingChecker()
    settings = Settings(database_url="sqlite:///:memory:")
    quota = QuotaTracker(store, settings=settings, clock=clock)

    async def fast_sleep(seconds):
        await asyncio.sleep(0)

    scheduler = MonitorScheduler(store, checker, quota, settings=settings, clock=clock, sleep=fast_sleep)
    await scheduler.start()
    await asyncio.sleep(0.05)
    await scheduler.stop()

    assert scheduler.running is False
    assert scheduler.ticks >= 1
    assert set(checker.checked) == {1}
    status = scheduler.get_status()
    assert status["running"] is False
    assert status["last_tick"]["dispatched"] == 1


@pytest.mark.parametrize("tier, frequency, expected", [
    (Tier.FREE, Frequency.HOURLY, Frequency.DAILY),
    (Tier.PRO, Frequency.HOURLY, Frequency.HOURLY),
    (Tier.POWER, Frequency.DAILY, Frequency.DAILY),
])
def test_effective_frequency(tier, frequency, expected):
    assert effective_frequency(tier, frequency) is expected
