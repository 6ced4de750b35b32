"""SQLAlchemy models."""

from sqlalchemy import (
    Boolean, Column, DateTime, ForeignKey, Index, Integer, String, Text, JSON, false
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


class User(Base):
    """Monitor owner. Managed by the account service, read by the engine."""
    __tablename__ = "users"

    id = Column(String(64), primary_key=True)
    email = Column(String(255), unique=True)
    notification_email = Column(String(255))
    tier = Column(String(20), nullable=False, default="free")
    created_at = Column(DateTime(timezone=True), default=func.now())

    monitors = relationship("Monitor", back_populates="user")


class Monitor(Base):
    """A (url, selector, frequency) tracking target."""
    __tablename__ = "monitors"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False, default="")
    url = Column(Text, nullable=False)
    selector = Column(Text, nullable=False)
    frequency = Column(String(20), nullable=False, default="daily")  # hourly, daily
    current_value = Column(Text)
    last_checked = Column(DateTime(timezone=True))
    last_changed = Column(DateTime(timezone=True))
    last_status = Column(String(32))  # ok, blocked, selector_missing, error
    last_error = Column(Text)
    consecutive_failures = Column(Integer, nullable=False, default=0)
    pause_reason = Column(Text)
    active = Column(Boolean, nullable=False, default=True, index=True)
    email_enabled = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=func.now())

    user = relationship("User", back_populates="monitors")
    changes = relationship("MonitorChange", back_populates="monitor", cascade="all, delete-orphan")


class MonitorChange(Base):
    """Append-only record of an observed value change."""
    __tablename__ = "monitor_changes"

    id = Column(Integer, primary_key=True, index=True)
    monitor_id = Column(Integer, ForeignKey("monitors.id", ondelete="CASCADE"), nullable=False, index=True)
    old_value = Column(Text)
    new_value = Column(Text)
    detected_at = Column(DateTime(timezone=True), nullable=False, default=func.now())

    monitor = relationship("Monitor", back_populates="changes")


class UsageRecord(Base):
    """One render or email consumption event."""
    __tablename__ = "usage_records"

    id = Column(Integer, primary_key=True, index=True)
    kind = Column(String(20), nullable=False)  # render, email
    user_id = Column(String(64), nullable=False, index=True)
    monitor_id = Column(Integer)
    timestamp = Column(DateTime(timezone=True), nullable=False, index=True)
    success = Column(Boolean, nullable=False)
    duration_ms = Column(Integer)


class QuotaCounter(Base):
    """Per-window consumption counter, one row per (kind, scope, window) key."""
    __tablename__ = "quota_counters"

    key = Column(String(160), primary_key=True)
    count = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True))


class ErrorLog(Base):
    """Deduplicated operational log."""
    __tablename__ = "error_logs"

    id = Column(Integer, primary_key=True, index=True)
    level = Column(String(20), nullable=False)  # error, warning, info
    source = Column(String(50), nullable=False)
    message = Column(Text, nullable=False)
    error_type = Column(String(255))
    stack_trace = Column(Text)
    context = Column(JSON(none_as_null=True))
    occurrence_count = Column(Integer, nullable=False, default=1)
    first_occurrence = Column(DateTime(timezone=True), nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False, index=True)
    resolved = Column(Boolean, nullable=False, default=False)

    __table_args__ = (
        # At most one unresolved row per (level, source, message)
        Index(
            "uq_error_logs_unresolved",
            level, source, message,
            unique=True,
            postgresql_where=(resolved == false()),
            sqlite_where=(resolved == false()),
        ),
    )
