"""Async HTTP client for static page fetches."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urljoin

import aiohttp
from aiohttp import ClientTimeout
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..config import Settings, get_settings
from ..utils.url_safety import ensure_public_url
from .exceptions import FetchError


logger = logging.getLogger(__name__)

REDIRECT_STATUSES = {301, 302, 303, 307, 308}
MISSING_PAGE_STATUSES = {404, 410}


@dataclass
class FetchedPage:
    """Body and metadata of a static fetch."""
    url: str
    final_url: str
    status: int
    html: str
    truncated: bool = False


class AsyncHTTPClient:
    """Async HTTP client with connection pooling and SSRF-checked redirects."""

    def __init__(self, settings: Optional[Settings] = None, check_urls: bool = True):
        self.settings = settings or get_settings()
        self.check_urls = check_urls
        self.session: Optional[aiohttp.ClientSession] = None
        self.timeout = ClientTimeout(
            total=self.settings.static_timeout_seconds,
            connect=min(10.0, self.settings.static_timeout_seconds),
        )

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def start(self):
        """Start the HTTP client session."""
        if self.session is None or self.session.closed:
            connector = aiohttp.TCPConnector(
                limit=20,
                limit_per_host=4,
                ttl_dns_cache=300,
            )
            self.session = aiohttp.ClientSession(
                connector=connector,
                timeout=self.timeout,
                headers={
                    'User-Agent': self.settings.user_agent,
                    'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8',
                    'Accept-Language': 'en-US,en;q=0.9',
                }
            )

    async def close(self):
        """Close the HTTP client session."""
        if self.session and not self.session.closed:
            await self.session.close()
        self.session = None

    async def fetch_page(self, url: str) -> FetchedPage:
        """
        Fetch a page without executing scripts.

        Redirects are followed by hand so every hop passes the URL guard.
        Connection failures are retried; timeouts are not.

        Raises:
            FetchError: on network failure, timeout, 5xx or missing page
            UnsafeURLError: when a hop points at a private address
        """
        if not self.session or self.session.closed:
            await self.start()

        current = url
        for _ in range(self.settings.max_redirects + 1):
            if self.check_urls:
                await ensure_public_url(current)

            status, location, html, truncated = await self._get_with_retry(current)

            if status in REDIRECT_STATUSES and location:
                current = urljoin(current, location)
                continue

            if status >= 500:
                raise FetchError(f"Failed to fetch page (HTTP {status})", status_code=status)
            if status in MISSING_PAGE_STATUSES:
                raise FetchError(f"Page not found (HTTP {status})", status_code=status)

            return FetchedPage(url=url, final_url=current, status=status, html=html, truncated=truncated)

        raise FetchError(f"Too many redirects (max {self.settings.max_redirects})")

    async def _get_with_retry(self, url: str):
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(max(1, self.settings.static_retry_attempts)),
                wait=wait_exponential(multiplier=0.5, min=0.5, max=2),
                retry=retry_if_exception_type(aiohttp.ClientConnectionError),
                reraise=True,
            ):
                with attempt:
                    return await self._get_once(url)
        except asyncio.TimeoutError:
            raise FetchError(f"Timed out fetching page after {self.settings.static_timeout_seconds:g}s")
        except aiohttp.ClientError as e:
            raise FetchError(f"Failed to fetch page: {e}") from e

    async def _get_once(self, url: str):
        async with self.session.get(url, allow_redirects=False) as response:
            location = response.headers.get('Location')
            if response.status in REDIRECT_STATUSES:
                return response.status, location, "", False

            limit = self.settings.max_page_bytes
            chunks = []
            size = 0
            truncated = False
            async for chunk in response.content.iter_chunked(64 * 1024):
                chunks.append(chunk)
                size += len(chunk)
                if size > limit:
                    truncated = True
                    break
            body = b"".join(chunks)[:limit]
            if truncated:
                logger.warning(f"Page body over {limit} bytes truncated: {url}")

            encoding = response.charset or 'utf-8'
            try:
                html = body.decode(encoding, errors='replace')
            except LookupError:
                html = body.decode('utf-8', errors='replace')
            return response.status, location, html, truncated

