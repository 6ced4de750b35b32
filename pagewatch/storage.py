"""Persistence for monitors, changes, usage, quota counters and error logs."""

import asyncio
import copy
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import delete, false, func, select, true, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError

from .core.exceptions import DatabaseError
from .core.tiers import Tier
from .core.types import (
    ChangeRecord, CheckStatus, ErrorLogEntry, Frequency, LogLevel, MonitorState, UsageEvent, UsageKind
)
from .models import ErrorLog, Monitor, MonitorChange, QuotaCounter, UsageRecord, User
from .utils.time_utils import ensure_utc


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CounterLimit:
    """A counter key, its cap for the current window and the denial reason."""
    key: str
    cap: Optional[int]
    reason: str


@dataclass
class CounterResult:
    """Outcome of an all-or-nothing counter increment."""
    blocked: Optional[CounterLimit] = None
    counts: Dict[str, int] = field(default_factory=dict)

    @property
    def granted(self) -> bool:
        return self.blocked is None


class MonitorStore(ABC):
    """CRUD store consumed by the engine."""

    @abstractmethod
    async def get_monitor(self, monitor_id: int) -> Optional[MonitorState]:
        pass

    @abstractmethod
    async def get_active_monitors(self) -> List[MonitorState]:
        pass

    @abstractmethod
    async def get_user_tier(self, user_id: str) -> Tier:
        pass

    @abstractmethod
    async def save_check_result(self, monitor: MonitorState, change: Optional[ChangeRecord] = None) -> None:
        """Write the monitor row and append the change, if any, in one transaction."""
        pass

    @abstractmethod
    async def get_changes(self, monitor_id: int) -> List[ChangeRecord]:
        pass

    @abstractmethod
    async def increment_counters(self, limits: Sequence[CounterLimit], now: datetime) -> CounterResult:
        """
        Increment every counter by one, or none of them.

        A counter already at its cap blocks the whole increment. The check
        and the increment are a single atomic step.
        """
        pass

    @abstractmethod
    async def read_counters(self, keys: Sequence[str]) -> Dict[str, int]:
        pass

    @abstractmethod
    async def add_usage_event(self, event: UsageEvent) -> None:
        pass

    @abstractmethod
    async def aggregate_usage(self, since: datetime,
                              kind: Optional[UsageKind] = None) -> List[Tuple[str, bool, int]]:
        """Return (user_id, success, count) rows for events at or after `since`."""
        pass

    @abstractmethod
    async def prune_usage(self, before: datetime) -> int:
        pass

    @abstractmethod
    async def upsert_error_log(self, entry: ErrorLogEntry) -> ErrorLogEntry:
        """
        Insert an error log row or bump the unresolved row with the same key.

        The key is (level, source, message). Stack trace and context only
        replace stored values when the new entry carries them.
        """
        pass

    @abstractmethod
    async def get_error_logs(self, include_resolved: bool = False) -> List[ErrorLogEntry]:
        pass


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    return ensure_utc(value) if value is not None else None


def _to_state(row: Monitor) -> MonitorState:
    return MonitorState(
        id=row.id,
        user_id=row.user_id,
        url=row.url,
        selector=row.selector,
        name=row.name or "",
        frequency=Frequency.parse(row.frequency),
        current_value=row.current_value,
        last_checked=_as_utc(row.last_checked),
        last_changed=_as_utc(row.last_changed),
        last_status=CheckStatus(row.last_status) if row.last_status else None,
        last_error=row.last_error,
        consecutive_failures=row.consecutive_failures or 0,
        pause_reason=row.pause_reason,
        active=bool(row.active),
        email_enabled=bool(row.email_enabled),
    )


def _to_entry(row: ErrorLog) -> ErrorLogEntry:
    return ErrorLogEntry(
        id=row.id,
        level=LogLevel(row.level),
        source=row.source,
        message=row.message,
        error_type=row.error_type,
        stack_trace=row.stack_trace,
        context=row.context,
        occurrence_count=row.occurrence_count,
        first_occurrence=_as_utc(row.first_occurrence),
        timestamp=_as_utc(row.timestamp),
        resolved=bool(row.resolved),
    )


class SqlMonitorStore(MonitorStore):
    """Store backed by SQLAlchemy async sessions (PostgreSQL or SQLite)."""

    def __init__(self, session_factory):
        self._session_factory = session_factory

    def _insert(self, session, model):
        dialect = session.get_bind().dialect.name
        if dialect == "postgresql":
            return pg_insert(model)
        if dialect == "sqlite":
            return sqlite_insert(model)
        raise DatabaseError(f"Unsupported database dialect for upserts: {dialect}")

    async def get_monitor(self, monitor_id: int) -> Optional[MonitorState]:
        async with self._session_factory() as session:
            row = await session.get(Monitor, monitor_id)
            return _to_state(row) if row else None

    async def get_active_monitors(self) -> List[MonitorState]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Monitor).where(Monitor.active == true()).order_by(Monitor.id)
            )
            return [_to_state(row) for row in result.scalars().all()]

    async def get_user_tier(self, user_id: str) -> Tier:
        async with self._session_factory() as session:
            result = await session.execute(select(User.tier).where(User.id == user_id))
            return Tier.parse(result.scalar_one_or_none())

    async def save_check_result(self, monitor: MonitorState, change: Optional[ChangeRecord] = None) -> None:
        try:
            async with self._session_factory() as session:
                await session.execute(
                    update(Monitor)
                    .where(Monitor.id == monitor.id)
                    .values(
                        selector=monitor.selector,
                        current_value=monitor.current_value,
                        last_checked=monitor.last_checked,
                        last_changed=monitor.last_changed,
                        last_status=monitor.last_status.value if monitor.last_status else None,
                        last_error=monitor.last_error,
                        consecutive_failures=monitor.consecutive_failures,
                        pause_reason=monitor.pause_reason,
                        active=monitor.active,
                    )
                )
                if change is not None:
                    session.add(MonitorChange(
                        monitor_id=change.monitor_id,
                        old_value=change.old_value,
                        new_value=change.new_value,
                        detected_at=change.detected_at,
                    ))
                await session.commit()
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to save check result for monitor {monitor.id}: {e}") from e

    async def get_changes(self, monitor_id: int) -> List[ChangeRecord]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(MonitorChange)
                .where(MonitorChange.monitor_id == monitor_id)
                .order_by(MonitorChange.detected_at, MonitorChange.id)
            )
            return [
                ChangeRecord(
                    monitor_id=row.monitor_id,
                    old_value=row.old_value,
                    new_value=row.new_value,
                    detected_at=_as_utc(row.detected_at),
                )
                for row in result.scalars().all()
            ]

    async def increment_counters(self, limits: Sequence[CounterLimit], now: datetime) -> CounterResult:
        counts: Dict[str, int] = {}
        async with self._session_factory() as session:
            for limit in limits:
                if limit.cap is not None and limit.cap <= 0:
                    await session.rollback()
                    return CounterResult(blocked=limit, counts=counts)

                stmt = self._insert(session, QuotaCounter).values(key=limit.key, count=1, updated_at=now)
                stmt = stmt.on_conflict_do_update(
                    index_elements=[QuotaCounter.key],
                    set_={"count": QuotaCounter.count + 1, "updated_at": now},
                    where=(QuotaCounter.count < limit.cap) if limit.cap is not None else None,
                ).returning(QuotaCounter.count)

                count = (await session.execute(stmt)).scalar_one_or_none()
                if count is None:
                    # Conflict row is at its cap; undo earlier increments
                    await session.rollback()
                    return CounterResult(blocked=limit, counts=counts)
                counts[limit.key] = count
            await session.commit()
        return CounterResult(counts=counts)

    async def read_counters(self, keys: Sequence[str]) -> Dict[str, int]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(QuotaCounter.key, QuotaCounter.count).where(QuotaCounter.key.in_(list(keys)))
            )
            found = {key: count for key, count in result.all()}
        return {key: found.get(key, 0) for key in keys}

    async def add_usage_event(self, event: UsageEvent) -> None:
        async with self._session_factory() as session:
            session.add(UsageRecord(
                kind=event.kind.value,
                user_id=event.user_id,
                monitor_id=event.monitor_id,
                timestamp=event.timestamp,
                success=event.success,
                duration_ms=event.duration_ms,
            ))
            await session.commit()

    async def aggregate_usage(self, since: datetime,
                              kind: Optional[UsageKind] = None) -> List[Tuple[str, bool, int]]:
        query = (
            select(UsageRecord.user_id, UsageRecord.success, func.count(UsageRecord.id))
            .where(UsageRecord.timestamp >= since)
            .group_by(UsageRecord.user_id, UsageRecord.success)
        )
        if kind is not None:
            query = query.where(UsageRecord.kind == kind.value)
        async with self._session_factory() as session:
            result = await session.execute(query)
            return [(user_id, bool(success), count) for user_id, success, count in result.all()]

    async def prune_usage(self, before: datetime) -> int:
        async with self._session_factory() as session:
            result = await session.execute(delete(UsageRecord).where(UsageRecord.timestamp < before))
            await session.commit()
            return result.rowcount or 0

    async def upsert_error_log(self, entry: ErrorLogEntry) -> ErrorLogEntry:
        async with self._session_factory() as session:
            stmt = self._insert(session, ErrorLog).values(
                level=entry.level.value,
                source=entry.source,
                message=entry.message,
                error_type=entry.error_type,
                stack_trace=entry.stack_trace,
                context=entry.context,
                occurrence_count=1,
                first_occurrence=entry.timestamp,
                timestamp=entry.timestamp,
                resolved=False,
            )
            updates = {
                "occurrence_count": ErrorLog.occurrence_count + 1,
                "timestamp": stmt.excluded.timestamp,
            }
            if entry.error_type is not None:
                updates["error_type"] = stmt.excluded.error_type
            if entry.stack_trace is not None:
                updates["stack_trace"] = stmt.excluded.stack_trace
            if entry.context is not None:
                updates["context"] = stmt.excluded.context

            stmt = stmt.on_conflict_do_update(
                index_elements=[ErrorLog.level, ErrorLog.source, ErrorLog.message],
                index_where=(ErrorLog.resolved == false()),
                set_=updates,
            ).returning(ErrorLog.id, ErrorLog.occurrence_count, ErrorLog.first_occurrence)

            row = (await session.execute(stmt)).one()
            await session.commit()

        return replace(
            entry,
            id=row.id,
            occurrence_count=row.occurrence_count,
            first_occurrence=_as_utc(row.first_occurrence),
        )

    async def get_error_logs(self, include_resolved: bool = False) -> List[ErrorLogEntry]:
        query = select(ErrorLog).order_by(ErrorLog.id)
        if not include_resolved:
            query = query.where(ErrorLog.resolved == false())
        async with self._session_factory() as session:
            result = await session.execute(query)
            return [_to_entry(row) for row in result.scalars().all()]


class InMemoryMonitorStore(MonitorStore):
    """Process-local store for single-instance deployments and tests."""

    def __init__(self):
        self._lock = asyncio.Lock()
        self.monitors: Dict[int, MonitorState] = {}
        self.tiers: Dict[str, Tier] = {}
        self.changes: List[ChangeRecord] = []
        self.usage_events: List[UsageEvent] = []
        self.counters: Dict[str, int] = defaultdict(int)
        self.error_logs: List[ErrorLogEntry] = []

    def add_monitor(self, monitor: MonitorState) -> MonitorState:
        self.monitors[monitor.id] = copy.deepcopy(monitor)
        return monitor

    def set_user_tier(self, user_id: str, tier) -> None:
        self.tiers[user_id] = Tier.parse(tier)

    def resolve_error_log(self, entry_id: int) -> None:
        for entry in self.error_logs:
            if entry.id == entry_id:
                entry.resolved = True

    async def get_monitor(self, monitor_id: int) -> Optional[MonitorState]:
        monitor = self.monitors.get(monitor_id)
        return copy.deepcopy(monitor) if monitor else None

    async def get_active_monitors(self) -> List[MonitorState]:
        return [copy.deepcopy(m) for _, m in sorted(self.monitors.items()) if m.active]

    async def get_user_tier(self, user_id: str) -> Tier:
        return self.tiers.get(user_id, Tier.FREE)

    async def save_check_result(self, monitor: MonitorState, change: Optional[ChangeRecord] = None) -> None:
        async with self._lock:
            self.monitors[monitor.id] = copy.deepcopy(monitor)
            if change is not None:
                self.changes.append(change)

    async def get_changes(self, monitor_id: int) -> List[ChangeRecord]:
        return [change for change in self.changes if change.monitor_id == monitor_id]

    async def increment_counters(self, limits: Sequence[CounterLimit], now: datetime) -> CounterResult:
        async with self._lock:
            for limit in limits:
                if limit.cap is not None and self.counters.get(limit.key, 0) >= limit.cap:
                    return CounterResult(blocked=limit)
            counts = {}
            for limit in limits:
                self.counters[limit.key] += 1
                counts[limit.key] = self.counters[limit.key]
            return CounterResult(counts=counts)

    async def read_counters(self, keys: Sequence[str]) -> Dict[str, int]:
        return {key: self.counters.get(key, 0) for key in keys}

    async def add_usage_event(self, event: UsageEvent) -> None:
        self.usage_events.append(event)

    async def aggregate_usage(self, since: datetime,
                              kind: Optional[UsageKind] = None) -> List[Tuple[str, bool, int]]:
        totals: Dict[Tuple[str, bool], int] = defaultdict(int)
        for event in self.usage_events:
            if event.timestamp >= since and (kind is None or event.kind == kind):
                totals[(event.user_id, event.success)] += 1
        return [(user_id, success, count) for (user_id, success), count in totals.items()]

    async def prune_usage(self, before: datetime) -> int:
        kept = [event for event in self.usage_events if event.timestamp >= before]
        removed = len(self.usage_events) - len(kept)
        self.usage_events = kept
        return removed

    async def upsert_error_log(self, entry: ErrorLogEntry) -> ErrorLogEntry:
        async with self._lock:
            for existing in self.error_logs:
                if (not existing.resolved and existing.level == entry.level
                        and existing.source == entry.source and existing.message == entry.message):
                    existing.occurrence_count += 1
                    existing.timestamp = entry.timestamp
                    if entry.error_type is not None:
                        existing.error_type = entry.error_type
                    if entry.stack_trace is not None:
                        existing.stack_trace = entry.stack_trace
                    if entry.context is not None:
                        existing.context = entry.context
                    return copy.deepcopy(existing)

            stored = replace(
                entry,
                id=len(self.error_logs) + 1,
                occurrence_count=1,
                first_occurrence=entry.timestamp,
                resolved=False,
            )
            self.error_logs.append(stored)
            return copy.deepcopy(stored)

    async def get_error_logs(self, include_resolved: bool = False) -> List[ErrorLogEntry]:
        return [copy.deepcopy(e) for e in self.error_logs if include_resolved or not e.resolved]
