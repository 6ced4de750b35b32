"""Cookie-consent overlays and bot-challenge pages."""

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Optional, Tuple

from bs4 import BeautifulSoup
from playwright.async_api import Error as PlaywrightError

from .selectors import normalize_value, parse_html


logger = logging.getLogger(__name__)

# Broad phrases only count in the body of short pages or when repeated
SHORT_PAGE_CHARS = 4000
REPEATED_PHRASE_COUNT = 2

# (phrase, reason, broad) in priority order
BLOCK_PATTERNS: Tuple[Tuple[str, str, bool], ...] = (
    ("enable javascript", "JavaScript required", True),
    ("checking your browser", "Browser check", False),
    ("just a moment", "Interstitial/Challenge", True),
    ("access denied", "Access denied", True),
    ("captcha", "Captcha", True),
    ("verify you are a human", "Human verification", False),
    ("unusual traffic", "Rate limited", False),
    ("please enable cookies", "Cookies required", False),
)

CHALLENGE_CLASSES = {'g-recaptcha', 'h-captcha', 'cf-turnstile', 'turnstile', 'cf-browser-verification'}
CHALLENGE_CLASS_PREFIXES = ('cf-challenge', 'cf-error')
CHALLENGE_SCRIPT_RE = re.compile(r'_cf_chl_opt|/cdn-cgi/challenge-platform/h/')


@dataclass(frozen=True)
class ConsentSignature:
    """A known consent manager: how to spot it and how to accept it."""
    name: str
    detect: str
    accept: Tuple[str, ...]


CONSENT_SIGNATURES: Tuple[ConsentSignature, ...] = (
    ConsentSignature("onetrust", "#onetrust-banner-sdk, #onetrust-consent-sdk",
                     ("#onetrust-accept-btn-handler",)),
    ConsentSignature("cookiebot", "#CybotCookiebotDialog",
                     ("#CybotCookiebotDialogBodyLevelButtonLevelOptinAllowAll",
                      "#CybotCookiebotDialogBodyButtonAccept")),
    ConsentSignature("didomi", "#didomi-host, #didomi-notice",
                     ("#didomi-notice-agree-button",)),
    ConsentSignature("quantcast", ".qc-cmp2-container",
                     (".qc-cmp2-summary-buttons button[mode='primary']",)),
    ConsentSignature("trustarc", "#truste-consent-track, #truste-consent-content",
                     ("#truste-consent-button",)),
    ConsentSignature("usercentrics", "#usercentrics-root, #uc-center-container",
                     ("[data-testid='uc-accept-all-button']",)),
    ConsentSignature("osano", ".osano-cm-window", (".osano-cm-accept-all",)),
    ConsentSignature("complianz", "#cmplz-cookiebanner-container, .cmplz-cookiebanner",
                     (".cmplz-accept",)),
    ConsentSignature("cookieyes", ".cky-consent-container", (".cky-btn-accept",)),
    ConsentSignature("generic", "[id*='cookie' i][class*='banner' i], [class*='cookie-consent' i], "
                                "[id*='cookie-consent' i], [aria-label*='cookie' i][role='dialog']",
                     ("button[id*='accept' i]", "button[class*='accept' i]")),
)

ACCEPT_BUTTON_NAME = re.compile(r'^\s*(accept all|accept all cookies|accept|allow all|i agree|agree|got it|ok)\s*$', re.I)


@dataclass(frozen=True)
class AntiBotResult:
    """What the consent/anti-bot pass found on a DOM snapshot."""
    consent_dismissed: bool = False
    blocked: bool = False
    block_reason: Optional[str] = None
    consent_overlay: Optional[str] = None


def _visible_text(soup: BeautifulSoup) -> str:
    body = soup.body
    if body is None:
        return ""
    for tag in body.find_all(['script', 'style', 'noscript', 'template']):
        tag.decompose()
    return normalize_value(body.get_text(' ')).lower()


def _has_challenge_element(soup: BeautifulSoup) -> bool:
    for element in soup.find_all(True):
        element_id = (element.get('id') or '').lower()
        if 'captcha' in element_id or 'challenge' in element_id:
            return True
        for token in element.get('class') or []:
            token = token.lower()
            if token in CHALLENGE_CLASSES or token.startswith(CHALLENGE_CLASS_PREFIXES):
                return True
            if 'captcha' in token or 'challenge' in token:
                return True
    return False


def detect_page_block_reason(html: Optional[str]) -> Optional[str]:
    """
    Inspect HTML for bot-challenge or access-denied pages.

    Args:
        html: Raw page HTML

    Returns:
        Short human readable reason, or None if the page looks normal
    """
    if not html or not html.strip():
        return None

    soup = parse_html(html)
    if soup.body is None:
        return None

    title = normalize_value(soup.title.get_text()).lower() if soup.title else ""
    for phrase, reason, _ in BLOCK_PATTERNS:
        if phrase in title:
            return f"{reason} (title)"

    has_cf_script = any(
        CHALLENGE_SCRIPT_RE.search(script.string or script.get('src') or '')
        for script in soup.find_all('script')
    )

    text = _visible_text(soup)
    short_page = len(text) < SHORT_PAGE_CHARS
    for phrase, reason, broad in BLOCK_PATTERNS:
        occurrences = text.count(phrase)
        if not occurrences:
            continue
        if broad and not short_page and occurrences <= REPEATED_PHRASE_COUNT:
            continue
        return reason

    if _has_challenge_element(soup):
        return "Challenge element detected"
    if has_cf_script:
        return "Cloudflare challenge script"
    return None


def detect_consent_overlay(html: Optional[str]) -> Optional[ConsentSignature]:
    """Return the first known consent overlay present in the HTML."""
    if not html:
        return None
    soup = parse_html(html)
    for signature in CONSENT_SIGNATURES:
        if soup.select_one(signature.detect) is not None:
            return signature
    return None


class ConsentHandler:
    """Dismisses consent overlays on live pages and reports challenge pages."""

    def __init__(self, click_timeout_ms: int = 2000, settle_ms: int = 1000):
        self.click_timeout_ms = click_timeout_ms
        self.settle_ms = settle_ms

    def reconcile(self, dom_snapshot: Optional[str], consent_dismissed: bool = False) -> AntiBotResult:
        """Classify a DOM snapshot as blocked or not."""
        reason = detect_page_block_reason(dom_snapshot)
        overlay = detect_consent_overlay(dom_snapshot) if not consent_dismissed else None
        return AntiBotResult(
            consent_dismissed=consent_dismissed,
            blocked=reason is not None,
            block_reason=reason,
            consent_overlay=overlay.name if overlay else None,
        )

    async def dismiss_consent(self, page) -> Optional[str]:
        """
        Click through a consent overlay on a Playwright page.

        Returns:
            Name of the dismissed consent manager, or None if nothing was clicked
        """
        signature = detect_consent_overlay(await page.content())
        if signature is None:
            return None

        for selector in signature.accept:
            if await self._click_first_visible(page.locator(selector)):
                await self._settle(page)
                logger.debug(f"Dismissed {signature.name} consent overlay on {page.url}")
                return signature.name

        # Text fallback for banners whose accept button has no stable hook
        if await self._click_first_visible(page.get_by_role("button", name=ACCEPT_BUTTON_NAME)):
            await self._settle(page)
            logger.debug(f"Dismissed {signature.name} consent overlay by button text on {page.url}")
            return signature.name

        logger.debug(f"Found {signature.name} consent overlay but no clickable accept button")
        return None

    async def wait_for_challenge(self, page, budget_ms: int) -> str:
        """Give an interstitial challenge time to clear; return the latest HTML."""
        html = await page.content()
        loop = asyncio.get_running_loop()
        deadline = loop.time() + budget_ms / 1000
        while detect_page_block_reason(html) and loop.time() < deadline:
            await asyncio.sleep(0.5)
            html = await page.content()
        return html

    async def _click_first_visible(self, locator) -> bool:
        try:
            if await locator.count() == 0:
                return False
            target = locator.first
            if not await target.is_visible():
                return False
            await target.click(timeout=self.click_timeout_ms)
            return True
        except PlaywrightError as e:
            logger.debug(f"Consent click failed: {e}")
            return False

    async def _settle(self, page) -> None:
        try:
            await page.wait_for_load_state('networkidle', timeout=self.settle_ms * 3)
        except PlaywrightError:
            await page.wait_for_timeout(self.settle_ms)
