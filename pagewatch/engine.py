"""Wiring of the check engine and its exposed operations."""

import logging
from datetime import datetime
from typing import Callable, Optional

from .config import Settings, get_settings
from .core.http_client import AsyncHTTPClient
from .extraction.consent import ConsentHandler
from .extraction.extractor import Extractor
from .extraction.renderer import PlaywrightRenderer, Renderer
from .services.error_logger import ErrorLogger
from .services.monitor_checker import CheckResult, MonitorChecker
from .services.notifier import Notifier
from .services.quota import QuotaTracker
from .services.scheduler import MonitorScheduler
from .services.selector_suggestions import SuggestionReport
from .storage import MonitorStore, SqlMonitorStore
from .utils.time_utils import utcnow


logger = logging.getLogger(__name__)


class MonitorEngine:
    """Facade used by the API layer, the CLI and the app lifespan."""

    def __init__(self, store: MonitorStore, checker: MonitorChecker, scheduler: MonitorScheduler,
                 quota: QuotaTracker, error_logger: ErrorLogger, fetcher=None,
                 renderer: Optional[Renderer] = None):
        self.store = store
        self.checker = checker
        self.scheduler = scheduler
        self.quota = quota
        self.error_logger = error_logger
        self.fetcher = fetcher
        self.renderer = renderer

    async def check_now(self, monitor_id: int) -> CheckResult:
        return await self.checker.check_now(monitor_id)

    async def suggest_selectors(self, monitor_id: int, expected_text: Optional[str] = None) -> SuggestionReport:
        return await self.checker.suggest_selectors(monitor_id, expected_text)

    async def close(self) -> None:
        """Stop the scheduler and release network resources."""
        await self.scheduler.stop()
        if self.renderer is not None:
            await self.renderer.close()
        if self.fetcher is not None and hasattr(self.fetcher, 'close'):
            await self.fetcher.close()


def build_engine(store: Optional[MonitorStore] = None, *,
                 settings: Optional[Settings] = None,
                 fetcher=None,
                 renderer: Optional[Renderer] = None,
                 notifier: Optional[Notifier] = None,
                 clock: Optional[Callable[[], datetime]] = None) -> MonitorEngine:
    """
    Assemble an engine.

    Args:
        store: Persistence backend; defaults to the SQL store on the configured database
        settings: Settings override
        fetcher: Static fetcher with an async fetch_page(url); defaults to AsyncHTTPClient
        renderer: Headless renderer; defaults to Playwright when rendering is enabled
        notifier: Email dispatch; defaults to logging only
        clock: Injectable clock returning aware UTC datetimes
    """
    settings = settings or get_settings()
    clock = clock or utcnow

    if store is None:
        from .database import get_session_factory
        store = SqlMonitorStore(get_session_factory())

    consent_handler = ConsentHandler()
    fetcher = fetcher or AsyncHTTPClient(settings)
    if renderer is None and settings.render_enabled:
        renderer = PlaywrightRenderer(settings, consent_handler=consent_handler)

    error_logger = ErrorLogger(store, clock=clock)
    quota = QuotaTracker(store, settings=settings, clock=clock, error_logger=error_logger)
    extractor = Extractor(fetcher, renderer=renderer, quota=quota, settings=settings)
    checker = MonitorChecker(
        store, extractor, quota, error_logger,
        notifier=notifier,
        consent_handler=consent_handler,
        settings=settings,
        clock=clock,
    )
    scheduler = MonitorScheduler(store, checker, quota, error_logger=error_logger, settings=settings, clock=clock)

    return MonitorEngine(
        store=store,
        checker=checker,
        scheduler=scheduler,
        quota=quota,
        error_logger=error_logger,
        fetcher=fetcher,
        renderer=renderer,
    )
