"""One monitor check end to end: extract, classify, reconcile, persist, report."""

import asyncio
import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from ..config import Settings, get_settings
from ..core.exceptions import DatabaseError, ExtractionError, MonitorNotFoundError, PagewatchError, SuggestionError
from ..core.tiers import Tier, pause_threshold
from ..core.types import ChangeRecord, CheckStatus, MonitorState, UsageKind
from ..extraction.consent import ConsentHandler
from ..extraction.extractor import ExtractionResult, Extractor, evaluate_selector
from ..storage import MonitorStore
from ..utils.time_utils import utcnow
from .change_detector import reconcile
from .classifier import Classification, Failed, Ok, SelectorMissing, classify
from .error_logger import ErrorLogger
from .notifier import LoggingNotifier, Notifier
from .quota import QuotaTracker
from .selector_suggestions import SuggestionReport, suggest


logger = logging.getLogger(__name__)


@dataclass
class CheckResult:
    """What a check did to a monitor."""
    monitor_id: int
    status: CheckStatus
    changed: bool
    current_value: Optional[str]
    previous_value: Optional[str]
    error: Optional[str] = None
    render_used: bool = False
    paused: bool = False
    healed_selector: Optional[str] = None
    change: Optional[ChangeRecord] = None
    monitor: Optional[MonitorState] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "monitor_id": self.monitor_id,
            "status": self.status.value,
            "changed": self.changed,
            "current_value": self.current_value,
            "previous_value": self.previous_value,
            "error": self.error,
            "render_used": self.render_used,
            "paused": self.paused,
        }
        if self.healed_selector:
            data["healed_selector"] = self.healed_selector
        return data


class MonitorChecker:
    """Runs the check pipeline for a single monitor."""

    def __init__(self, store: MonitorStore, extractor: Extractor, quota: QuotaTracker,
                 error_logger: ErrorLogger, notifier: Optional[Notifier] = None,
                 consent_handler: Optional[ConsentHandler] = None,
                 settings: Optional[Settings] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self.extractor = extractor
        self.quota = quota
        self.error_logger = error_logger
        self.notifier = notifier or LoggingNotifier()
        self.consent_handler = consent_handler or ConsentHandler()
        self.settings = settings or get_settings()
        self.clock = clock or utcnow

    async def check_now(self, monitor_id: int) -> CheckResult:
        """One-off check outside the scheduler tick."""
        monitor = await self.store.get_monitor(monitor_id)
        if monitor is None:
            raise MonitorNotFoundError(monitor_id)
        return await self.check_monitor(monitor)

    async def check_monitor(self, monitor: MonitorState, allow_render: bool = True) -> CheckResult:
        """
        Check a monitor within the per-check time budget.

        Page, selector and unexpected failures end up on the monitor row as a
        non-ok status. Only storage failures propagate.
        """
        tier = await self.store.get_user_tier(monitor.user_id)
        timeout = self.settings.check_timeout_seconds

        try:
            result = await asyncio.wait_for(self._check_and_save(monitor, tier, allow_render), timeout=timeout)
        except asyncio.TimeoutError:
            result = await self._save(monitor, Failed(f"Check timed out after {timeout:g}s"), tier)
        except DatabaseError:
            raise
        except Exception as e:
            logger.error(f"Unexpected error checking monitor {monitor.id}: {e}", exc_info=True)
            await self.error_logger.error(
                "scheduler", f"Unexpected error checking monitor {monitor.id}", error=e,
                context={"monitor_id": monitor.id, "url": monitor.url, "selector": monitor.selector},
            )
            result = await self._save(monitor, Failed(f"Unexpected error: {e}"), tier)

        await self._report(monitor, tier, result)
        return result

    async def suggest_selectors(self, monitor_id: int, expected_text: Optional[str] = None) -> SuggestionReport:
        """
        Analyse the monitor's page for alternative selectors.

        Raises:
            MonitorNotFoundError: unknown monitor
            SuggestionError: the page could not be loaded for analysis
        """
        monitor = await self.store.get_monitor(monitor_id)
        if monitor is None:
            raise MonitorNotFoundError(monitor_id)
        tier = await self.store.get_user_tier(monitor.user_id)

        try:
            html, render_used = await self.extractor.fetch_dom(
                monitor.url, user_id=monitor.user_id, tier=tier, monitor_id=monitor.id
            )
        except ExtractionError as e:
            raise SuggestionError(f"Could not load page for analysis: {e}") from e

        report = suggest(html, monitor.selector, expected_text, limit=self.settings.suggestion_limit)
        logger.info(
            f"🔎 {len(report.suggestions)} selector suggestions for monitor {monitor.id} "
            f"(render={'yes' if render_used else 'no'})"
        )
        return report

    async def _check_and_save(self, monitor: MonitorState, tier: Tier, allow_render: bool) -> CheckResult:
        extraction: Optional[ExtractionResult] = None
        try:
            extraction = await self.extractor.extract(
                monitor.url, monitor.selector, allow_render,
                user_id=monitor.user_id, tier=tier, monitor_id=monitor.id,
            )
        except PagewatchError as e:
            classification = classify(e)
        else:
            anti_bot = self.consent_handler.reconcile(extraction.dom_snapshot, extraction.consent_dismissed)
            classification = classify(extraction, anti_bot)

        healed_selector = None
        if isinstance(classification, SelectorMissing) and extraction is not None:
            healed = self._heal_selector(monitor, extraction)
            if healed is not None:
                healed_selector, classification = healed

        return await self._save(
            monitor, classification, tier,
            selector=healed_selector,
            render_used=extraction.render_used if extraction else False,
        )

    def _heal_selector(self, monitor: MonitorState, extraction: ExtractionResult):
        """Find a replacement selector yielding the monitor's last known value."""
        if not self.settings.auto_heal_selectors or not monitor.current_value:
            return None

        report = suggest(
            extraction.dom_snapshot, monitor.selector,
            expected_text=monitor.current_value, limit=self.settings.suggestion_limit,
        )
        for suggestion in report.suggestions:
            if suggestion.count != 1:
                continue
            value, count = evaluate_selector(extraction.dom_snapshot, suggestion.selector)
            if count == 1 and value == monitor.current_value:
                return suggestion.selector, Ok(value)
        return None

    async def _save(self, monitor: MonitorState, classification: Classification, tier: Tier, *,
                    selector: Optional[str] = None, render_used: bool = False) -> CheckResult:
        working = replace(monitor, selector=selector) if selector else monitor
        outcome = reconcile(working, classification, pause_threshold=pause_threshold(tier), now=self.clock())
        await self.store.save_check_result(outcome.monitor, outcome.change)

        return CheckResult(
            monitor_id=monitor.id,
            status=classification.status,
            changed=outcome.changed,
            current_value=outcome.monitor.current_value,
            previous_value=monitor.current_value,
            error=outcome.monitor.last_error,
            render_used=render_used,
            paused=outcome.paused,
            healed_selector=selector,
            change=outcome.change,
            monitor=outcome.monitor,
        )

    async def _report(self, monitor: MonitorState, tier: Tier, result: CheckResult) -> None:
        context = {"monitor_id": monitor.id, "url": monitor.url, "selector": monitor.selector}

        if result.status == CheckStatus.ERROR:
            await self.error_logger.error("scraper", f"Monitor {monitor.id} check failed: {result.error}", context=context)
        elif result.status != CheckStatus.OK:
            await self.error_logger.warning(
                "scraper", f"Monitor {monitor.id} {result.status.value}: {result.error}", context=context
            )

        if result.healed_selector:
            await self.error_logger.info("scraper", "auto-healed selector", context={
                "monitor_id": monitor.id,
                "old_selector": monitor.selector,
                "new_selector": result.healed_selector,
            })

        if result.change is not None and monitor.email_enabled:
            await self._send_email(monitor, tier, lambda: self.notifier.notify_change(
                result.monitor, result.change.old_value, result.change.new_value
            ))

        if result.paused:
            logger.warning(f"⏸️ Monitor {monitor.id} auto-paused: {result.monitor.pause_reason}")
            await self.error_logger.warning("scheduler", f"Monitor {monitor.id} auto-paused", context={
                **context,
                "failures": result.monitor.consecutive_failures,
                "last_error": result.error,
            })
            if monitor.email_enabled:
                await self._send_email(monitor, tier, lambda: self.notifier.notify_paused(
                    result.monitor, result.monitor.consecutive_failures, result.error
                ))

    async def _send_email(self, monitor: MonitorState, tier: Tier, send) -> None:
        decision = await self.quota.try_consume(UsageKind.EMAIL, monitor.user_id, tier)
        if not decision:
            await self.error_logger.warning(
                "email", f"Notification skipped: email quota {decision.reason}",
                context={"monitor_id": monitor.id, "user_id": monitor.user_id},
            )
            return

        delivered = False
        try:
            delivered = await send()
        except Exception as e:
            await self.error_logger.error(
                "email", "Failed to send notification", error=e,
                context={"monitor_id": monitor.id, "user_id": monitor.user_id},
            )
        await self.quota.record_usage(UsageKind.EMAIL, monitor.user_id, bool(delivered), monitor_id=monitor.id)
