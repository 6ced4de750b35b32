import asyncio
from datetime import timedelta

import pytest

from pagewatch.config import Settings
from pagewatch.core.tiers import Tier
from pagewatch.core.types import LogLevel, UsageKind
from pagewatch.services.error_logger import ErrorLogger
from pagewatch.services.quota import QuotaTracker

from .conftest import START


@pytest.fixture
def small_caps():
    return Settings(
        database_url="sqlite:///:memory:",
        render_system_monthly_cap=5,
        email_system_daily_cap=2,
        email_system_monthly_cap=3,
    )


@pytest.fixture
def tracker(store, small_caps, clock):
    return QuotaTracker(store, settings=small_caps, clock=clock, error_logger=ErrorLogger(store, clock=clock))


async def test_free_tier_gets_no_renders(tracker, store):
    decision = await tracker.try_consume(UsageKind.RENDER, "u1", Tier.FREE)

    assert not decision
    assert decision.reason == "free_tier"
    assert dict(store.counters) == {}


async def test_render_keys_are_monthly(tracker, store):
    assert await tracker.try_consume(UsageKind.RENDER, "u1", Tier.PRO)
    assert store.counters == {"render:user:u1:2026-03": 1, "render:system:2026-03": 1}


async def test_system_cap_is_never_exceeded_under_concurrency(tracker, store):
    decisions = await asyncio.gather(*(
        tracker.try_consume(UsageKind.RENDER, f"user-{i}", Tier.POWER) for i in range(12)
    ))

    assert sum(bool(d) for d in decisions) == 5
    assert {d.reason for d in decisions if not d} == {"system_cap"}
    assert store.counters["render:system:2026-03"] == 5


async def test_denied_consumption_leaves_counters_untouched(tracker, store):
    for _ in range(5):
        assert await tracker.try_consume(UsageKind.RENDER, "u1", Tier.PRO)

    assert not await tracker.try_consume(UsageKind.RENDER, "u1", Tier.PRO)
    assert store.counters["render:user:u1:2026-03"] == 5


async def test_new_month_resets_window(tracker, clock):
    for _ in range(5):
        await tracker.try_consume(UsageKind.RENDER, "u1", Tier.PRO)
    assert not await tracker.try_consume(UsageKind.RENDER, "u1", Tier.PRO)

    clock.advance(days=31)

    assert await tracker.try_consume(UsageKind.RENDER, "u1", Tier.PRO)


async def test_free_email_cap_is_daily(tracker, clock):
    assert await tracker.try_consume(UsageKind.EMAIL, "u1", Tier.FREE)

    second = await tracker.try_consume(UsageKind.EMAIL, "u1", Tier.FREE)
    assert second.reason == "user_cap"

    clock.advance(days=1)
    assert await tracker.try_consume(UsageKind.EMAIL, "u1", Tier.FREE)


async def test_email_system_caps(tracker, clock):
    assert await tracker.try_consume(UsageKind.EMAIL, "a", Tier.PRO)
    assert await tracker.try_consume(UsageKind.EMAIL, "b", Tier.PRO)
    assert (await tracker.try_consume(UsageKind.EMAIL, "c", Tier.PRO)).reason == "daily_cap"

    clock.advance(days=1)
    assert await tracker.try_consume(UsageKind.EMAIL, "c", Tier.PRO)
    assert (await tracker.try_consume(UsageKind.EMAIL, "d", Tier.PRO)).reason == "monthly_cap"


async def test_can_consume_does_not_consume(tracker, store):
    assert await tracker.can_consume(UsageKind.RENDER, "u1", Tier.PRO)
    assert (await tracker.can_consume(UsageKind.RENDER, "u1", Tier.FREE)).reason == "free_tier"
    assert dict(store.counters) == {}


async def test_system_threshold_alerts(tracker, store):
    for i in range(5):
        await tracker.try_consume(UsageKind.RENDER, f"u{i}", Tier.PRO)

    warnings = [e for e in store.error_logs if e.level == LogLevel.WARNING and e.source == "quota"]
    assert [e.message for e in warnings] == [
        "render usage reached 80% of system_cap",
        "render usage reached 95% of system_cap",
    ]
    assert warnings[0].context == {"key": "render:system:2026-03", "count": 4, "cap": 5}


async def test_usage_summary(tracker):
    await tracker.record_usage(UsageKind.RENDER, "heavy", True, monitor_id=1, duration_ms=900)
    await tracker.record_usage(UsageKind.RENDER, "heavy", False, monitor_id=1)
    await tracker.record_usage(UsageKind.RENDER, "light", True, monitor_id=2)
    await tracker.record_usage(UsageKind.EMAIL, "light", True, monitor_id=2)

    renders = await tracker.usage_since(START - timedelta(days=1), UsageKind.RENDER)
    everything = await tracker.usage_since(START - timedelta(days=1))

    assert (renders.total, renders.successes, renders.failures) == (3, 2, 1)
    assert renders.top_consumers() == [("heavy", 2), ("light", 1)]
    assert everything.total == 4
    assert everything.top_consumers(1) == [("heavy", 2)]


async def test_prune_usage(tracker, store, clock):
    clock.advance(days=-100)
    await tracker.record_usage(UsageKind.RENDER, "u1", True)
    clock.advance(days=100)
    await tracker.record_usage(UsageKind.RENDER, "u1", True)

    removed = await tracker.prune_usage(timedelta(days=90))

    assert removed == 1
    assert len(store.usage_events) == 1
    assert store.usage_events[0].timestamp == START
