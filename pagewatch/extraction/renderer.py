"""Headless render capability backed by Playwright."""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from playwright.async_api import Browser, Error as PlaywrightError, TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

from ..config import Settings, get_settings
from ..core.exceptions import RenderError, RenderTimeoutError, RenderUnavailableError
from ..utils.url_safety import ensure_public_url
from .consent import ConsentHandler


logger = logging.getLogger(__name__)

SKIPPED_RESOURCE_TYPES = {'image', 'media', 'font'}

BROWSER_ARGS = [
    '--no-sandbox',
    '--disable-dev-shm-usage',
    '--disable-blink-features=AutomationControlled',
]


@dataclass
class RenderedPage:
    """DOM of a page after scripts ran."""
    html: str
    final_url: str
    consent_dismissed: bool = False


class Renderer(ABC):
    """Loads a URL in a real browser and returns the rendered DOM."""

    @abstractmethod
    async def render(self, url: str, *, wait_until: Optional[str] = None,
                     timeout_ms: Optional[int] = None) -> RenderedPage:
        """
        Render a page within a deadline.

        Raises:
            RenderTimeoutError: deadline exceeded
            RenderUnavailableError: render service unreachable or not configured
            RenderError: any other render failure
        """
        pass

    async def close(self) -> None:
        pass


class PlaywrightRenderer(Renderer):
    """
    Chromium via Playwright, either launched locally or reached over CDP.

    With RENDER_WS_ENDPOINT set, the browser is a remote render service and
    RENDER_TOKEN is passed as its `token` query parameter.
    """

    def __init__(self, settings: Optional[Settings] = None,
                 consent_handler: Optional[ConsentHandler] = None,
                 check_urls: bool = True):
        self.settings = settings or get_settings()
        self.consent_handler = consent_handler or ConsentHandler()
        self.check_urls = check_urls
        self._playwright = None
        self.browser: Optional[Browser] = None
        self._lock = asyncio.Lock()

    async def __aenter__(self):
        await self._get_browser()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    @property
    def remote(self) -> bool:
        return bool(self.settings.render_ws_endpoint)

    def _endpoint(self) -> str:
        endpoint = self.settings.render_ws_endpoint
        token = self.settings.render_token
        if token:
            separator = '&' if '?' in endpoint else '?'
            endpoint = f"{endpoint}{separator}token={token.get_secret_value()}"
        return endpoint

    async def _get_browser(self) -> Browser:
        async with self._lock:
            if self.browser is not None and self.browser.is_connected():
                return self.browser

            if self._playwright is None:
                self._playwright = await async_playwright().start()

            try:
                if self.remote:
                    self.browser = await self._playwright.chromium.connect_over_cdp(
                        self._endpoint(), timeout=10000
                    )
                    logger.info("🌐 Connected to remote render service")
                else:
                    self.browser = await self._playwright.chromium.launch(headless=True, args=BROWSER_ARGS)
                    logger.info("🌐 Launched local Chromium")
            except PlaywrightError as e:
                self.browser = None
                raise RenderUnavailableError(f"Render service unavailable: {e}") from e
            return self.browser

    async def close(self) -> None:
        """Close browser."""
        async with self._lock:
            if self.browser:
                try:
                    await self.browser.close()
                except PlaywrightError as e:
                    logger.debug(f"Error closing browser: {e}")
                self.browser = None
            if self._playwright:
                await self._playwright.stop()
                self._playwright = None

    async def render(self, url: str, *, wait_until: Optional[str] = None,
                     timeout_ms: Optional[int] = None) -> RenderedPage:
        if not self.settings.render_enabled:
            raise RenderUnavailableError("Rendering is disabled")
        wait_until = wait_until or self.settings.render_wait_until
        timeout_ms = timeout_ms or self.settings.render_timeout_ms

        if self.check_urls:
            await ensure_public_url(url)

        # Navigation timeout plus the challenge budget plus slack for setup
        deadline = (timeout_ms + self.settings.challenge_wait_ms) / 1000 + 5
        try:
            return await asyncio.wait_for(self._render(url, wait_until, timeout_ms), timeout=deadline)
        except asyncio.TimeoutError:
            raise RenderTimeoutError(f"Render timed out after {deadline:.0f}s")

    async def _render(self, url: str, wait_until: str, timeout_ms: int) -> RenderedPage:
        browser = await self._get_browser()
        try:
            context = await browser.new_context(
                user_agent=self.settings.user_agent,
                viewport={'width': 1366, 'height': 900},
                locale='en-US',
            )
        except PlaywrightError as e:
            raise RenderUnavailableError(f"Render service unavailable: {e}") from e

        try:
            page = await context.new_page()
            await page.route("**/*", self._route)
            try:
                await page.goto(url, wait_until=wait_until, timeout=timeout_ms)
            except PlaywrightTimeoutError:
                # Chatty pages never go idle, carry on with what loaded
                logger.debug(f"Render wait '{wait_until}' timed out for {url}, using partial DOM")

            dismissed = await self.consent_handler.dismiss_consent(page)
            html = await self.consent_handler.wait_for_challenge(page, self.settings.challenge_wait_ms)
            return RenderedPage(html=html, final_url=page.url, consent_dismissed=dismissed is not None)

        except PlaywrightError as e:
            raise RenderError(f"Render failed: {e}") from e
        finally:
            try:
                await context.close()
            except PlaywrightError as e:
                logger.debug(f"Error closing browser context: {e}")

    @staticmethod
    async def _route(route):
        if route.request.resource_type in SKIPPED_RESOURCE_TYPES:
            await route.abort()
        else:
            await route.continue_()
