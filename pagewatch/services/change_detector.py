"""Apply a classification to monitor state."""

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Optional

from ..core.types import ChangeRecord, CheckStatus, MonitorState
from .classifier import Classification, Ok


MAX_LAST_ERROR_CHARS = 200

STATUS_SUMMARIES = {
    CheckStatus.BLOCKED: "the page is blocking automated access",
    CheckStatus.SELECTOR_MISSING: "the selector no longer matches anything",
    CheckStatus.ERROR: "the page could not be checked",
}


@dataclass(frozen=True)
class ReconcileOutcome:
    """New monitor state plus the change to append, if any."""
    monitor: MonitorState
    change: Optional[ChangeRecord] = None
    paused: bool = False

    @property
    def changed(self) -> bool:
        return self.change is not None


def truncate_error(message: Optional[str]) -> Optional[str]:
    if message is None or len(message) <= MAX_LAST_ERROR_CHARS:
        return message
    return message[:MAX_LAST_ERROR_CHARS - 3] + "..."


def pause_reason_for(classification: Classification, failures: int) -> str:
    summary = STATUS_SUMMARIES.get(classification.status, classification.status.value)
    return (
        f"Paused after {failures} consecutive failed checks: {summary} "
        f"({truncate_error(classification.message)})"
    )


def reconcile(monitor: MonitorState, classification: Classification, *,
              pause_threshold: int, now: datetime) -> ReconcileOutcome:
    """
    Fold one check result into the monitor.

    Only an Ok result touches current_value. A monitor that has never held a
    value takes its first Ok value as a baseline without recording a change.
    Failures count towards pause_threshold; reaching it deactivates the
    monitor, and nothing here reactivates one.
    """
    if isinstance(classification, Ok):
        new_value = classification.value
        old_value = monitor.current_value
        baseline = old_value is None and monitor.last_changed is None

        change = None
        last_changed = monitor.last_changed
        if new_value != old_value and not baseline:
            change = ChangeRecord(
                monitor_id=monitor.id,
                old_value=old_value,
                new_value=new_value,
                detected_at=now,
            )
            last_changed = now

        updated = replace(
            monitor,
            current_value=new_value,
            last_checked=now,
            last_changed=last_changed,
            last_status=CheckStatus.OK,
            last_error=None,
            consecutive_failures=0,
        )
        return ReconcileOutcome(monitor=updated, change=change)

    failures = monitor.consecutive_failures + 1
    updated = replace(
        monitor,
        last_checked=now,
        last_status=classification.status,
        last_error=truncate_error(classification.message),
        consecutive_failures=failures,
    )

    paused = False
    if monitor.active and failures >= pause_threshold:
        updated = replace(updated, active=False, pause_reason=pause_reason_for(classification, failures))
        paused = True

    return ReconcileOutcome(monitor=updated, paused=paused)
