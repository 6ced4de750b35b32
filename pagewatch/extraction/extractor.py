"""Static-first page extraction with headless render fallback."""

import logging
import time
from dataclasses import dataclass
from typing import Optional, Tuple

from ..config import Settings, get_settings
from ..core.exceptions import FetchError, RenderQuotaExceededError
from ..core.tiers import Tier
from ..core.types import UsageKind
from ..services.quota import QuotaDecision
from .consent import detect_page_block_reason
from .renderer import Renderer
from .selectors import element_value, normalize_selector, normalize_value, parse_html, select_elements


logger = logging.getLogger(__name__)

FRAMEWORK_ROOT_SELECTORS = (
    "#app, #root, #__next, #__nuxt, #___gatsby, app-root, "
    "[data-reactroot], [ng-version], [data-server-rendered]"
)
NEAR_EMPTY_TEXT_CHARS = 200


@dataclass
class ExtractionResult:
    """DOM snapshot plus what the selector found in it."""
    dom_snapshot: str
    matched_text: Optional[str]
    match_count: int
    render_used: bool
    final_url: str
    consent_dismissed: bool = False
    render_skipped_reason: Optional[str] = None


def looks_client_rendered(html: Optional[str]) -> bool:
    """True when the static HTML is an empty shell that scripts fill in."""
    if not html or not html.strip():
        return True

    soup = parse_html(html)
    for tag in soup.find_all(['script', 'style', 'noscript', 'template']):
        tag.decompose()

    body = soup.body or soup
    if len(normalize_value(body.get_text(' '))) < NEAR_EMPTY_TEXT_CHARS:
        return True

    root = soup.select_one(FRAMEWORK_ROOT_SELECTORS)
    return root is not None and len(normalize_value(root.get_text(' '))) < NEAR_EMPTY_TEXT_CHARS


def evaluate_selector(html: str, selector: str) -> Tuple[Optional[str], int]:
    """Return (value of first match, number of matches)."""
    elements = select_elements(html, selector)
    if not elements:
        return None, 0
    return element_value(elements[0]), len(elements)


class Extractor:
    """
    Fetches a page and evaluates a selector against it.

    The static path is tried first and costs no quota. A render is attempted
    after a static miss, a static challenge page or a failed static fetch,
    provided rendering is allowed and the quota tracker grants a unit.
    """

    def __init__(self, fetcher, renderer: Optional[Renderer] = None, quota=None,
                 settings: Optional[Settings] = None):
        self.fetcher = fetcher
        self.renderer = renderer
        self.quota = quota
        self.settings = settings or get_settings()

    async def extract(self, url: str, selector: str, allow_render: bool = True, *,
                      user_id: Optional[str] = None, tier=Tier.FREE,
                      monitor_id: Optional[int] = None) -> ExtractionResult:
        """
        Extract the selector's value from a page.

        Raises:
            ExtractionError: fetch/render failure, unsafe URL or a render that
                was required but denied by the quota
            SelectorError: selector cannot be parsed
        """
        selector = normalize_selector(selector)
        page, static_error = await self._fetch_static(url)

        static_result = None
        blocked = False
        if page is not None:
            value, count = evaluate_selector(page.html, selector)
            static_result = ExtractionResult(
                dom_snapshot=page.html,
                matched_text=value,
                match_count=count,
                render_used=False,
                final_url=page.final_url,
            )
            blocked = detect_page_block_reason(page.html) is not None
            if count > 0 and not blocked:
                return static_result

        if not allow_render:
            decision = QuotaDecision(False, "render not allowed")
        elif self.renderer is None:
            decision = QuotaDecision(False, "no renderer configured")
        else:
            decision = await self._consume_render(user_id, tier)

        if not decision:
            if static_result is None:
                raise static_error
            if not blocked and looks_client_rendered(static_result.dom_snapshot):
                raise RenderQuotaExceededError(decision.reason)
            static_result.render_skipped_reason = decision.reason
            return static_result

        rendered = await self._render(url, user_id, monitor_id)
        value, count = evaluate_selector(rendered.html, selector)
        return ExtractionResult(
            dom_snapshot=rendered.html,
            matched_text=value,
            match_count=count,
            render_used=True,
            final_url=rendered.final_url,
            consent_dismissed=rendered.consent_dismissed,
        )

    async def fetch_dom(self, url: str, allow_render: bool = True, *,
                        user_id: Optional[str] = None, tier=Tier.FREE,
                        monitor_id: Optional[int] = None) -> Tuple[str, bool]:
        """
        Fetch a DOM for analysis. Renders when the static HTML is a shell or
        a challenge page and a render unit is available.

        Returns:
            (html, render_used)
        """
        page, static_error = await self._fetch_static(url)
        needs_render = (
            page is None
            or looks_client_rendered(page.html)
            or detect_page_block_reason(page.html) is not None
        )
        if needs_render and allow_render and self.renderer is not None:
            decision = await self._consume_render(user_id, tier)
            if decision:
                rendered = await self._render(url, user_id, monitor_id)
                return rendered.html, True
            if page is None:
                raise RenderQuotaExceededError(decision.reason)

        if page is None:
            raise static_error
        return page.html, False

    async def _fetch_static(self, url: str):
        try:
            return await self.fetcher.fetch_page(url), None
        except FetchError as e:
            logger.debug(f"Static fetch failed for {url}: {e}")
            return None, e

    async def _consume_render(self, user_id: Optional[str], tier):
        if self.quota is None:
            return QuotaDecision(True)
        return await self.quota.try_consume(UsageKind.RENDER, user_id, tier)

    async def _render(self, url: str, user_id: Optional[str], monitor_id: Optional[int]):
        started = time.monotonic()
        success = False
        try:
            rendered = await self.renderer.render(
                url,
                wait_until=self.settings.render_wait_until,
                timeout_ms=self.settings.render_timeout_ms,
            )
            success = True
            return rendered
        finally:
            duration_ms = int((time.monotonic() - started) * 1000)
            logger.debug(f"Render of {url} {'succeeded' if success else 'failed'} in {duration_ms}ms")
            if self.quota is not None:
                await self.quota.record_usage(
                    UsageKind.RENDER, user_id, success, monitor_id=monitor_id, duration_ms=duration_ms
                )
