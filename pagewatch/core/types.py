"""Plain data types exchanged between engine components."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Optional


class CheckStatus(str, Enum):
    """Outcome of a single monitor check."""
    OK = "ok"
    BLOCKED = "blocked"
    SELECTOR_MISSING = "selector_missing"
    ERROR = "error"


class Frequency(str, Enum):
    """How often a monitor is checked."""
    HOURLY = "hourly"
    DAILY = "daily"

    @property
    def interval(self) -> timedelta:
        if self is Frequency.HOURLY:
            return timedelta(hours=1)
        return timedelta(days=1)

    @classmethod
    def parse(cls, value) -> "Frequency":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.DAILY


class UsageKind(str, Enum):
    """Metered third-party capacity."""
    RENDER = "render"
    EMAIL = "email"


class LogLevel(str, Enum):
    """Severity of an error log entry."""
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


@dataclass
class MonitorState:
    """Engine-side view of a monitor row."""
    id: int
    user_id: str
    url: str
    selector: str
    name: str = ""
    frequency: Frequency = Frequency.DAILY
    current_value: Optional[str] = None
    last_checked: Optional[datetime] = None
    last_changed: Optional[datetime] = None
    last_status: Optional[CheckStatus] = None
    last_error: Optional[str] = None
    consecutive_failures: int = 0
    pause_reason: Optional[str] = None
    active: bool = True
    email_enabled: bool = True


@dataclass(frozen=True)
class ChangeRecord:
    """An observed value transition. Never updated once written."""
    monitor_id: int
    old_value: Optional[str]
    new_value: Optional[str]
    detected_at: datetime


@dataclass(frozen=True)
class UsageEvent:
    """One render or email consumption."""
    kind: UsageKind
    user_id: str
    timestamp: datetime
    success: bool
    monitor_id: Optional[int] = None
    duration_ms: Optional[int] = None


@dataclass
class ErrorLogEntry:
    """A deduplicated operational log row."""
    level: LogLevel
    source: str
    message: str
    timestamp: datetime
    first_occurrence: datetime
    occurrence_count: int = 1
    error_type: Optional[str] = None
    stack_trace: Optional[str] = None
    context: Optional[Dict[str, Any]] = field(default=None)
    resolved: bool = False
    id: Optional[int] = None
