import asyncio
from typing import Any, Dict, List, Optional

import pytest
from aiohttp import web
from aiohttp import test_utils

from docharvest.workflows import page_fetch
from docharvest.workflows.errors import FetchError, HarvestError
from docharvest.workflows.page_fetch import (
    BrowserPageFetcher,
    FetchConfig,
    HttpPageFetcher,
    build_page_fetcher,
)


def _app() -> web.Application:
    async def ok(request: web.Request) -> web.Response:
        return web.Response(text=f"<html>{request.headers.get('User-Agent')}</html>", content_type="text/html")

    async def missing(request: web.Request) -> web.Response:
        return web.Response(status=404, text="nope")

    async def slow(request: web.Request) -> web.Response:
        await asyncio.sleep(0.5)
        return web.Response(text="late")

    async def binary(request: web.Request) -> web.Response:
        return web.Response(body=b"%PDF-1.4\x00\x01", content_type="application/pdf")

    app = web.Application()
    app.router.add_get("/ok", ok)
    app.router.add_get("/missing", missing)
    app.router.add_get("/slow", slow)
    app.router.add_get("/doc.pdf", binary)
    return app


def _run_against_server(path: str, config: FetchConfig, *, binary: bool = False):
    async def scenario():
        async with test_utils.TestServer(_app()) as server:
            async with HttpPageFetcher(config) as fetcher:
                url = str(server.make_url(path))
                if binary:
                    return await fetcher.fetch_bytes(url)
                return await fetcher.fetch(url)

    return asyncio.run(scenario())


def test_http_fetch_sends_user_agent():
    text = _run_against_server("/ok", FetchConfig(user_agent="docharvest-test/1.0"))
    assert text == "<html>docharvest-test/1.0</html>"


def test_http_fetch_bytes_returns_payload():
    data = _run_against_server("/doc.pdf", FetchConfig(), binary=True)
    assert data == b"%PDF-1.4\x00\x01"


def test_http_non_200_is_fetch_error():
    with pytest.raises(FetchError) as excinfo:
        _run_against_server("/missing", FetchConfig())
    assert excinfo.value.status == 404
    assert excinfo.value.url.endswith("/missing")


def test_http_timeout_is_fetch_error():
    with pytest.raises(FetchError) as excinfo:
        _run_against_server("/slow", FetchConfig(timeout=0.05))
    assert "timed out" in str(excinfo.value)


def test_http_connection_failure_is_fetch_error():
    async def scenario():
        async with HttpPageFetcher(FetchConfig(timeout=2)) as fetcher:
            return await fetcher.fetch("http://127.0.0.1:9/unreachable")

    with pytest.raises(FetchError):
        asyncio.run(scenario())


def test_http_fetch_outside_context_manager_raises():
    with pytest.raises(HarvestError):
        asyncio.run(HttpPageFetcher(FetchConfig()).fetch("http://127.0.0.1:9/"))


class _FakeResponse:
    def __init__(self, status: int) -> None:
        self.status = status


class _FakePage:
    def __init__(self, events: List[str], *, status: int, marker_visible: bool, goto_delay: float) -> None:
        self.events = events
        self.status = status
        self.marker_visible = marker_visible
        self.goto_delay = goto_delay
        self.selectors: List[Dict[str, Any]] = []

    async def goto(self, url: str, timeout: int, wait_until: str) -> _FakeResponse:
        self.events.append(f"goto:{url}")
        if self.goto_delay:
            await asyncio.sleep(self.goto_delay)
        return _FakeResponse(self.status)

    async def wait_for_selector(self, selector: str, state: str, timeout: int) -> None:
        self.selectors.append({"selector": selector, "state": state, "timeout": timeout})
        if not self.marker_visible:
            raise RuntimeError(f"Timeout {timeout}ms exceeded waiting for {selector}")

    async def content(self) -> str:
        return "<html><a class='sds-downloadBtn' href='https://x/a.pdf'></a></html>"


class _FakeContext:
    def __init__(self, events: List[str], page: _FakePage) -> None:
        self.events = events
        self.page = page

    async def new_page(self) -> _FakePage:
        return self.page

    async def close(self) -> None:
        self.events.append("context.close")


class _FakeBrowser:
    def __init__(self, events: List[str], page: _FakePage) -> None:
        self.events = events
        self.page = page
        self.context_kwargs: Optional[Dict[str, Any]] = None

    async def new_context(self, **kwargs: Any) -> _FakeContext:
        self.context_kwargs = kwargs
        return _FakeContext(self.events, self.page)

    async def close(self) -> None:
        self.events.append("browser.close")


class _FakeChromium:
    def __init__(self, browser: _FakeBrowser) -> None:
        self.browser = browser
        self.launch_kwargs: Optional[Dict[str, Any]] = None

    async def launch(self, **kwargs: Any) -> _FakeBrowser:
        self.launch_kwargs = kwargs
        return self.browser


class _FakePlaywright:
    def __init__(self, chromium: _FakeChromium) -> None:
        self.chromium = chromium

    async def __aenter__(self) -> "_FakePlaywright":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        return None


def _install_fake_playwright(monkeypatch, *, status=200, marker_visible=True, goto_delay=0.0):
    events: List[str] = []
    page = _FakePage(events, status=status, marker_visible=marker_visible, goto_delay=goto_delay)
    browser = _FakeBrowser(events, page)
    chromium = _FakeChromium(browser)
    monkeypatch.setattr(page_fetch, "async_playwright", lambda: _FakePlaywright(chromium), raising=False)
    return events, page, browser, chromium


def test_browser_fetch_waits_for_marker_and_closes(monkeypatch):
    events, page, browser, chromium = _install_fake_playwright(monkeypatch)
    fetcher = BrowserPageFetcher(FetchConfig(timeout=7, user_agent="ua-test", headless=False))

    html = asyncio.run(fetcher.fetch("https://search.test/page"))

    assert "sds-downloadBtn" in html
    assert page.selectors == [{"selector": "a.sds-downloadBtn", "state": "visible", "timeout": 7000}]
    assert chromium.launch_kwargs["headless"] is False
    assert "--no-sandbox" in chromium.launch_kwargs["args"]
    assert browser.context_kwargs["user_agent"] == "ua-test"
    assert browser.context_kwargs["viewport"] == {"width": 1920, "height": 1080}
    assert events[-2:] == ["context.close", "browser.close"]


def test_browser_fetch_marker_timeout_releases_resources(monkeypatch):
    events, _, _, _ = _install_fake_playwright(monkeypatch, marker_visible=False)
    fetcher = BrowserPageFetcher(FetchConfig())

    with pytest.raises(FetchError) as excinfo:
        asyncio.run(fetcher.fetch("https://search.test/page"))

    assert "failed to render" in str(excinfo.value)
    assert events[-2:] == ["context.close", "browser.close"]


def test_browser_fetch_non_200_is_fetch_error(monkeypatch):
    events, page, _, _ = _install_fake_playwright(monkeypatch, status=503)

    with pytest.raises(FetchError) as excinfo:
        asyncio.run(BrowserPageFetcher(FetchConfig()).fetch("https://search.test/page"))

    assert excinfo.value.status == 503
    assert page.selectors == []
    assert events[-2:] == ["context.close", "browser.close"]


def test_browser_render_timeout_bounds_page_lifetime(monkeypatch):
    events, _, _, _ = _install_fake_playwright(monkeypatch, goto_delay=1.0)
    fetcher = BrowserPageFetcher(FetchConfig(render_timeout=0.05))

    with pytest.raises(FetchError) as excinfo:
        asyncio.run(fetcher.fetch("https://search.test/page"))

    assert "render timed out" in str(excinfo.value)
    assert events[-2:] == ["context.close", "browser.close"]


def test_browser_fetcher_requires_playwright(monkeypatch):
    monkeypatch.setattr(page_fetch, "async_playwright", None, raising=False)
    with pytest.raises(HarvestError):
        BrowserPageFetcher(FetchConfig())


def test_build_page_fetcher_selects_strategy(monkeypatch):
    _install_fake_playwright(monkeypatch)
    assert isinstance(build_page_fetcher(FetchConfig(), "http"), HttpPageFetcher)
    assert isinstance(build_page_fetcher(FetchConfig(), "browser"), BrowserPageFetcher)
    with pytest.raises(ValueError):
        build_page_fetcher(FetchConfig(), "carrier-pigeon")


def test_http_malformed_host_is_fetch_error():
    async def scenario():
        async with HttpPageFetcher(FetchConfig(timeout=2)) as fetcher:
            return await fetcher.fetch_bytes("https://a..b/bad.pdf")

    with pytest.raises(FetchError) as excinfo:
        asyncio.run(scenario())
    assert excinfo.value.url == "https://a..b/bad.pdf"
