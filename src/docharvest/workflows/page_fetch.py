from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Optional, Protocol, Tuple

import aiohttp

from .errors import FetchError, HarvestError
from .harvest_config import (
    CONCURRENCY,
    MARKER_CLASS,
    RENDER_TIMEOUT,
    REQUEST_TIMEOUT,
    USER_AGENT,
    HarvestConfig,
)

logger = logging.getLogger(__name__)

try:  # Playwright is optional; only the browser strategy needs it
    from playwright.async_api import async_playwright  # type: ignore
except Exception:  # pragma: no cover - handled at runtime
    async_playwright = None  # type: ignore

BROWSER_LAUNCH_ARGS: Tuple[str, ...] = (
    "--disable-gpu",
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-http2",
)


@dataclass
class FetchConfig:
    """Configuration parameters for page and document fetching."""

    timeout: float = REQUEST_TIMEOUT
    render_timeout: float = RENDER_TIMEOUT
    user_agent: str = USER_AGENT
    connection_limit: int = CONCURRENCY
    accept_language: str = "en-US,en;q=0.9"
    marker_class: str = MARKER_CLASS
    headless: bool = True
    viewport_width: int = 1920
    viewport_height: int = 1080

    @classmethod
    def from_harvest_config(cls, config: HarvestConfig) -> "FetchConfig":
        return cls(
            timeout=config.request_timeout,
            render_timeout=config.render_timeout,
            user_agent=config.user_agent,
            connection_limit=max(1, config.concurrency),
            marker_class=config.marker_class,
            headless=config.headless,
        )


class PageFetcher(Protocol):
    """Anything that turns a page URL into its markup or raises FetchError."""

    async def fetch(self, url: str) -> str:
        ...

    async def __aenter__(self) -> "PageFetcher":
        ...

    async def __aexit__(self, *exc_info: Any) -> None:
        ...


class HttpPageFetcher:
    """Plain aiohttp fetcher with a per-call timeout and a static User-Agent."""

    def __init__(self, config: FetchConfig, session: Optional[aiohttp.ClientSession] = None) -> None:
        self.config = config
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "HttpPageFetcher":
        if self._session is None:
            connector = aiohttp.TCPConnector(limit=self.config.connection_limit)
            headers = {
                "User-Agent": self.config.user_agent,
                "Accept-Language": self.config.accept_language,
                "Accept-Encoding": "gzip, deflate",
            }
            self._session = aiohttp.ClientSession(connector=connector, headers=headers)
            self._owns_session = True
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None

    async def fetch(self, url: str) -> str:
        raw_bytes = await self._get(url)
        return raw_bytes.decode("utf-8", "ignore")

    async def fetch_bytes(self, url: str) -> bytes:
        return await self._get(url)

    async def _get(self, url: str) -> bytes:
        if self._session is None:
            raise HarvestError("HttpPageFetcher used outside of 'async with'", url=url)
        try:
            async with self._session.get(
                url,
                timeout=aiohttp.ClientTimeout(total=self.config.timeout),
                headers={"User-Agent": self.config.user_agent},
            ) as resp:
                status = resp.status
                if status != 200:
                    raise FetchError(f"status code error: {status} {resp.reason or ''}".rstrip(), url=url, status=status)
                return await resp.read()
        except asyncio.TimeoutError as exc:
            raise FetchError(f"timed out after {self.config.timeout:g}s", url=url) from exc
        except aiohttp.ClientError as exc:
            raise FetchError(f"transport error: {exc}", url=url) from exc
        except ValueError as exc:
            raise FetchError(f"invalid url: {exc}", url=url) from exc


class BrowserPageFetcher:
    """Chromium-rendered fetcher for result pages built by client-side scripts.

    Each fetch launches its own browser, waits for the download marker to become
    visible and returns the rendered HTML. The whole page lifetime is capped by
    ``render_timeout``; the browser is closed on every exit path.
    """

    def __init__(self, config: FetchConfig) -> None:
        if async_playwright is None:
            raise HarvestError(
                "Playwright is not installed; install it and run `playwright install chromium` "
                "to use the browser fetch strategy"
            )
        self.config = config

    @property
    def marker_selector(self) -> str:
        return f"a.{self.config.marker_class}"

    async def __aenter__(self) -> "BrowserPageFetcher":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        return None

    async def fetch(self, url: str) -> str:
        logger.debug("Rendering %s", url)
        try:
            return await asyncio.wait_for(self._render(url), timeout=self.config.render_timeout)
        except FetchError:
            raise
        except asyncio.TimeoutError as exc:
            raise FetchError(f"render timed out after {self.config.render_timeout:g}s", url=url) from exc
        except Exception as exc:  # Playwright raises its own Error/TimeoutError types
            raise FetchError(f"failed to render: {exc}", url=url) from exc

    async def _render(self, url: str) -> str:
        timeout_ms = int(self.config.timeout * 1000)
        async with async_playwright() as p:  # type: ignore[misc]
            browser = await p.chromium.launch(headless=self.config.headless, args=list(BROWSER_LAUNCH_ARGS))
            try:
                context = await browser.new_context(
                    user_agent=self.config.user_agent,
                    viewport={"width": self.config.viewport_width, "height": self.config.viewport_height},
                    locale="en-US",
                    java_script_enabled=True,
                )
                try:
                    page = await context.new_page()
                    response = await page.goto(url, timeout=timeout_ms, wait_until="domcontentloaded")
                    if response is not None and response.status != 200:
                        raise FetchError(
                            f"status code error: {response.status}",
                            url=url,
                            status=response.status,
                        )
                    await page.wait_for_selector(self.marker_selector, state="visible", timeout=timeout_ms)
                    return await page.content()
                finally:
                    await context.close()
            finally:
                await browser.close()


def build_page_fetcher(config: FetchConfig, strategy: str = "http") -> PageFetcher:
    """Return the fetcher implementation selected by ``strategy``."""

    if strategy == "http":
        return HttpPageFetcher(config)
    if strategy == "browser":
        return BrowserPageFetcher(config)
    raise ValueError(f"Unknown fetch strategy: {strategy}")


__all__ = [
    "BrowserPageFetcher",
    "FetchConfig",
    "HttpPageFetcher",
    "PageFetcher",
    "build_page_fetcher",
]
