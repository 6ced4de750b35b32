"""Tick-driven scheduler for monitor checks."""

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..config import Settings, get_settings
from ..core.tiers import Tier, effective_frequency
from ..core.types import MonitorState, UsageKind
from ..storage import MonitorStore
from ..utils.time_utils import utcnow
from .error_logger import ErrorLogger
from .monitor_checker import CheckResult, MonitorChecker
from .quota import QuotaTracker


logger = logging.getLogger(__name__)

MAINTENANCE_HOUR_UTC = 3


class ScheduleState(str, Enum):
    DUE = "due"
    NOT_DUE = "not-due"
    PAUSED = "paused"


def schedule_state(monitor: MonitorState, now: datetime, tier=Tier.FREE) -> ScheduleState:
    if not monitor.active:
        return ScheduleState.PAUSED
    if monitor.last_checked is None:
        return ScheduleState.DUE
    interval = effective_frequency(tier, monitor.frequency).interval
    if now - monitor.last_checked >= interval:
        return ScheduleState.DUE
    return ScheduleState.NOT_DUE


def is_due(monitor: MonitorState, now: datetime, tier=Tier.FREE) -> bool:
    return schedule_state(monitor, now, tier) == ScheduleState.DUE


@dataclass
class TickReport:
    """Summary of one scheduler tick."""
    started_at: datetime
    finished_at: Optional[datetime] = None
    considered: int = 0
    dispatched: int = 0
    statuses: Dict[str, int] = field(default_factory=dict)
    changes: int = 0
    paused: int = 0
    crashed: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "considered": self.considered,
            "dispatched": self.dispatched,
            "statuses": dict(self.statuses),
            "changes": self.changes,
            "paused": self.paused,
            "crashed": self.crashed,
        }


class MonitorScheduler:
    """
    Runs due monitor checks on a fixed tick.

    Each tick selects due monitors, runs them through a bounded pool and
    waits for every check to finish before the next tick can start. A failed
    check never aborts the tick; retries happen at the next due tick.
    """

    def __init__(self, store: MonitorStore, checker: MonitorChecker, quota: QuotaTracker,
                 error_logger: Optional[ErrorLogger] = None,
                 settings: Optional[Settings] = None,
                 clock: Optional[Callable[[], datetime]] = None,
                 sleep: Optional[Callable[[float], Awaitable[None]]] = None):
        self.store = store
        self.checker = checker
        self.quota = quota
        self.error_logger = error_logger
        self.settings = settings or get_settings()
        self.clock = clock or utcnow
        self.sleep = sleep or asyncio.sleep

        self.running = False
        self.max_concurrent = max(1, self.settings.max_concurrent_checks)
        self._tick_interval = self.settings.scheduler_tick_seconds
        self._tasks: Dict[str, asyncio.Task] = {}
        self._tick_lock = asyncio.Lock()
        self._last_maintenance: Optional[date] = None
        self.last_tick: Optional[TickReport] = None
        self.ticks = 0

    async def start(self):
        """Start the scheduler."""
        if self.running:
            logger.warning("Scheduler is already running")
            return

        self.running = True
        logger.info(f"🚀 Starting monitor scheduler (tick={self._tick_interval}s, workers={self.max_concurrent})")
        self._tasks['main'] = asyncio.create_task(self._scheduler_loop())

    async def stop(self):
        """Stop the scheduler."""
        if not self.running:
            return

        logger.info("Stopping monitor scheduler")
        self.running = False

        for task in self._tasks.values():
            if not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._tasks.clear()

    async def _scheduler_loop(self):
        """Main scheduler loop."""
        logger.info("Scheduler loop started")
        loop = asyncio.get_running_loop()

        while self.running:
            try:
                started = loop.time()
                await self.run_tick()
                elapsed = loop.time() - started
                await self.sleep(max(0.0, self._tick_interval - elapsed))

            except asyncio.CancelledError:
                logger.info("Scheduler loop cancelled")
                break
            except Exception as e:
                logger.error(f"Error in scheduler loop: {e}", exc_info=True)
                await self.sleep(self._tick_interval)

    async def run_tick(self) -> TickReport:
        """Run one tick: select due monitors and check them all."""
        async with self._tick_lock:
            now = self.clock()
            report = TickReport(started_at=now)

            monitors = await self.store.get_active_monitors()
            report.considered = len(monitors)

            tiers: Dict[str, Tier] = {}
            due: List[MonitorState] = []
            for monitor in monitors:
                if monitor.user_id not in tiers:
                    tiers[monitor.user_id] = await self.store.get_user_tier(monitor.user_id)
                if is_due(monitor, now, tiers[monitor.user_id]):
                    due.append(monitor)

            report.dispatched = len(due)
            if due:
                logger.info(f"🕐 Tick: {len(due)} of {len(monitors)} active monitors due")

            semaphore = asyncio.Semaphore(self.max_concurrent)
            results = await asyncio.gather(*(
                self._run_check(monitor, tiers[monitor.user_id], semaphore) for monitor in due
            ))

            statuses = Counter()
            for result in results:
                if result is None:
                    report.crashed += 1
                    continue
                statuses[result.status.value] += 1
                report.changes += int(result.changed)
                report.paused += int(result.paused)
            report.statuses = dict(statuses)

            await self._run_maintenance(now)

            report.finished_at = self.clock()
            self.last_tick = report
            self.ticks += 1
            if due:
                logger.info(f"✅ Tick done: {report.statuses}, changes={report.changes}, paused={report.paused}")
            return report

    async def _run_check(self, monitor: MonitorState, tier: Tier,
                         semaphore: asyncio.Semaphore) -> Optional[CheckResult]:
        async with semaphore:
            try:
                plausible = await self.quota.can_consume(UsageKind.RENDER, monitor.user_id, tier)
                return await self.checker.check_monitor(monitor, allow_render=bool(plausible))
            except Exception as e:
                logger.error(f"Check of monitor {monitor.id} failed outside the pipeline: {e}", exc_info=True)
                if self.error_logger is not None:
                    await self.error_logger.error(
                        "scheduler", f"Failed to check monitor {monitor.id}", error=e,
                        context={"monitor_id": monitor.id, "url": monitor.url, "selector": monitor.selector},
                    )
                return None

    async def _run_maintenance(self, now: datetime) -> None:
        """Prune old usage records once a day."""
        if now.hour < MAINTENANCE_HOUR_UTC or self._last_maintenance == now.date():
            return
        self._last_maintenance = now.date()
        try:
            await self.quota.prune_usage(timedelta(days=self.settings.metrics_retention_days))
        except Exception as e:
            logger.error(f"Usage pruning failed: {e}")

    def get_status(self) -> Dict[str, Any]:
        return {
            "running": self.running,
            "tick_interval_seconds": self._tick_interval,
            "max_concurrent_checks": self.max_concurrent,
            "ticks": self.ticks,
            "last_tick": self.last_tick.to_dict() if self.last_tick else None,
        }


# Global scheduler instance
_scheduler: Optional[MonitorScheduler] = None


def get_scheduler() -> Optional[MonitorScheduler]:
    """Get the global scheduler instance."""
    return _scheduler


async def start_scheduler(scheduler: MonitorScheduler):
    """Register and start the global scheduler."""
    global _scheduler
    _scheduler = scheduler
    await scheduler.start()


async def stop_scheduler():
    """Stop the global scheduler."""
    global _scheduler
    if _scheduler is not None:
        await _scheduler.stop()
        _scheduler = None
