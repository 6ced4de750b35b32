"""Render and email quota enforcement with usage accounting."""

import logging
import math
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple

from ..config import Settings, get_settings
from ..core.tiers import EMAIL_DAILY_CAPS, RENDER_MONTHLY_CAPS, Tier
from ..core.types import UsageEvent, UsageKind
from ..storage import CounterLimit, MonitorStore
from ..utils.time_utils import utcnow


logger = logging.getLogger(__name__)

ALERT_THRESHOLDS = (0.8, 0.95)


@dataclass(frozen=True)
class QuotaDecision:
    """Answer to a consumption request. Truthy when granted."""
    granted: bool
    reason: Optional[str] = None

    def __bool__(self) -> bool:
        return self.granted


@dataclass
class UsageSummary:
    """Aggregated usage over a window."""
    since: datetime
    kind: Optional[UsageKind]
    total: int = 0
    successes: int = 0
    failures: int = 0
    by_user: Dict[str, int] = field(default_factory=dict)

    def top_consumers(self, limit: int = 10) -> List[Tuple[str, int]]:
        ranked = sorted(self.by_user.items(), key=lambda item: (-item[1], item[0]))
        return ranked[:limit]


def _month_label(now: datetime) -> str:
    return now.strftime("%Y-%m")


def _day_label(now: datetime) -> str:
    return now.strftime("%Y-%m-%d")


class QuotaTracker:
    """
    Per-tier and system-wide caps on render and email consumption.

    Windows are calendar based (UTC month for render, UTC day and month for
    email). Counters live in the store and are consumed with a single atomic
    increment-and-compare, so concurrent checks never overshoot a cap.
    """

    def __init__(self, store: MonitorStore, settings: Optional[Settings] = None,
                 clock: Optional[Callable[[], datetime]] = None, error_logger=None):
        self.store = store
        self.settings = settings or get_settings()
        self.clock = clock or utcnow
        self.error_logger = error_logger

    def limits_for(self, kind: UsageKind, user_id: str, tier, now: datetime) -> List[CounterLimit]:
        """Counters that one unit of `kind` must pass, user scope first."""
        tier = Tier.parse(tier)
        month = _month_label(now)

        if kind == UsageKind.RENDER:
            user_cap = RENDER_MONTHLY_CAPS[tier]
            return [
                CounterLimit(f"render:user:{user_id}:{month}", user_cap,
                             "free_tier" if user_cap == 0 else "user_cap"),
                CounterLimit(f"render:system:{month}", self.settings.render_system_monthly_cap, "system_cap"),
            ]

        day = _day_label(now)
        limits = []
        user_cap = EMAIL_DAILY_CAPS[tier]
        if user_cap is not None:
            limits.append(CounterLimit(f"email:user:{user_id}:{day}", user_cap, "user_cap"))
        limits.append(CounterLimit(f"email:system:{day}", self.settings.email_system_daily_cap, "daily_cap"))
        limits.append(CounterLimit(f"email:system:{month}", self.settings.email_system_monthly_cap, "monthly_cap"))
        return limits

    async def try_consume(self, kind: UsageKind, user_id: str, tier) -> QuotaDecision:
        """Atomically take one unit of quota if every cap allows it."""
        now = self.clock()
        limits = self.limits_for(kind, user_id, tier, now)
        result = await self.store.increment_counters(limits, now)

        if not result.granted:
            logger.info(f"{kind.value} quota denied for user {user_id}: {result.blocked.reason}")
            return QuotaDecision(False, result.blocked.reason)

        await self._check_thresholds(kind, limits, result.counts)
        return QuotaDecision(True)

    async def can_consume(self, kind: UsageKind, user_id: str, tier) -> QuotaDecision:
        """Best-effort peek without consuming anything."""
        limits = self.limits_for(kind, user_id, tier, self.clock())
        counts = await self.store.read_counters([limit.key for limit in limits])
        for limit in limits:
            if limit.cap is not None and counts.get(limit.key, 0) >= limit.cap:
                return QuotaDecision(False, limit.reason)
        return QuotaDecision(True)

    async def record_usage(self, kind: UsageKind, user_id: str, success: bool,
                           monitor_id: Optional[int] = None, duration_ms: Optional[int] = None) -> None:
        await self.store.add_usage_event(UsageEvent(
            kind=kind,
            user_id=user_id,
            monitor_id=monitor_id,
            timestamp=self.clock(),
            success=success,
            duration_ms=duration_ms,
        ))

    async def usage_since(self, since: datetime, kind: Optional[UsageKind] = None) -> UsageSummary:
        """Totals, successes, failures and per-user counts since a point in time."""
        summary = UsageSummary(since=since, kind=kind)
        by_user: Dict[str, int] = defaultdict(int)
        for user_id, success, count in await self.store.aggregate_usage(since, kind):
            summary.total += count
            if success:
                summary.successes += count
            else:
                summary.failures += count
            by_user[user_id] += count
        summary.by_user = dict(by_user)
        return summary

    async def prune_usage(self, older_than: timedelta) -> int:
        removed = await self.store.prune_usage(self.clock() - older_than)
        if removed:
            logger.info(f"🧹 Pruned {removed} usage records older than {older_than.days} days")
        return removed

    async def _check_thresholds(self, kind: UsageKind, limits: List[CounterLimit], counts: Dict[str, int]):
        for limit in limits:
            if limit.cap is None or ":system:" not in limit.key:
                continue
            count = counts.get(limit.key, 0)
            for threshold in ALERT_THRESHOLDS:
                if count == math.ceil(limit.cap * threshold):
                    message = f"{kind.value} usage reached {threshold:.0%} of {limit.reason}"
                    logger.warning(f"⚠️ {message} ({count}/{limit.cap})")
                    if self.error_logger is not None:
                        await self.error_logger.warning(
                            "quota", message,
                            context={"key": limit.key, "count": count, "cap": limit.cap},
                        )
