"""Email dispatch interface used after a change or an auto-pause."""

import logging
from abc import ABC, abstractmethod
from typing import Optional

from ..core.types import MonitorState


logger = logging.getLogger(__name__)


class Notifier(ABC):
    """Delivers user notifications. Composition and transport live elsewhere."""

    @abstractmethod
    async def notify_change(self, monitor: MonitorState, old_value: Optional[str],
                            new_value: Optional[str]) -> bool:
        """Send a change notification. Returns True when delivered."""
        pass

    @abstractmethod
    async def notify_paused(self, monitor: MonitorState, failures: int,
                            last_error: Optional[str]) -> bool:
        """Tell the owner a monitor was auto-paused. Returns True when delivered."""
        pass


class LoggingNotifier(Notifier):
    """Writes notifications to the log instead of sending them."""

    async def notify_change(self, monitor, old_value, new_value) -> bool:
        logger.info(f"📬 Monitor {monitor.id} '{monitor.name}' changed: {old_value!r} -> {new_value!r}")
        return True

    async def notify_paused(self, monitor, failures, last_error) -> bool:
        logger.info(f"📬 Monitor {monitor.id} '{monitor.name}' paused after {failures} failures: {last_error}")
        return True
