"""Shared fixtures: fake clock, fake fetcher/renderer, in-memory store, wired engine."""

import asyncio
from datetime import datetime, timedelta

import pytest
import pytz

from pagewatch.config import Settings
from pagewatch.core.exceptions import FetchError
from pagewatch.core.http_client import FetchedPage
from pagewatch.core.types import Frequency, MonitorState
from pagewatch.engine import build_engine
from pagewatch.extraction.renderer import RenderedPage, Renderer
from pagewatch.services.notifier import Notifier
from pagewatch.storage import InMemoryMonitorStore


START = datetime(2026, 3, 10, 12, 0, tzinfo=pytz.UTC)
URL = "https://shop.example.com/item"


class FakeClock:
    def __init__(self, now=START):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


class FakeFetcher:
    """Serves canned HTML per URL; an Exception value is raised instead."""

    def __init__(self, pages=None):
        self.pages = dict(pages or {})
        self.calls = []

    async def fetch_page(self, url):
        self.calls.append(url)
        page = self.pages.get(url)
        if isinstance(page, Exception):
            raise page
        if page is None:
            raise FetchError("Failed to fetch page")
        return FetchedPage(url=url, final_url=url, status=200, html=page)


class FakeRenderer(Renderer):
    def __init__(self, pages=None, delay=0.0):
        self.pages = dict(pages or {})
        self.delay = delay
        self.calls = []

    async def render(self, url, *, wait_until=None, timeout_ms=None):
        self.calls.append(url)
        if self.delay:
            await asyncio.sleep(self.delay)
        page = self.pages.get(url)
        if isinstance(page, Exception):
            raise page
        return RenderedPage(html=page or "<html><body></body></html>", final_url=url)


class RecordingNotifier(Notifier):
    def __init__(self):
        self.changes = []
        self.pauses = []

    async def notify_change(self, monitor, old_value, new_value):
        self.changes.append((monitor.id, old_value, new_value))
        return True

    async def notify_paused(self, monitor, failures, last_error):
        self.pauses.append((monitor.id, failures, last_error))
        return True


def page(body, title="Shop"):
    return f"<html><head><title>{title}</title></head><body>{body}</body></html>"


def article(extra=""):
    """A server-rendered page with enough text not to look like an app shell."""
    paragraphs = "".join(
        f"<p>Paragraph {i} describing the product in plenty of detail for shoppers.</p>"
        for i in range(8)
    )
    return page(f"<main>{paragraphs}{extra}</main>")


def make_monitor(monitor_id=1, user_id="user-1", selector=".price", **kwargs):
    kwargs.setdefault("url", URL)
    kwargs.setdefault("frequency", Frequency.HOURLY)
    return MonitorState(id=monitor_id, user_id=user_id, selector=selector, name=f"Monitor {monitor_id}", **kwargs)


@pytest.fixture
def settings():
    return Settings(
        database_url="sqlite:///:memory:",
        check_timeout_seconds=5,
        max_concurrent_checks=4,
        challenge_wait_ms=0,
        render_enabled=True,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemoryMonitorStore()


@pytest.fixture
def fetcher():
    return FakeFetcher()


@pytest.fixture
def renderer():
    return FakeRenderer()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def engine(store, settings, fetcher, renderer, notifier, clock):
    return build_engine(
        store,
        settings=settings,
        fetcher=fetcher,
        renderer=renderer,
        notifier=notifier,
        clock=clock,
    )
