"""
Tests for the browser protocol client.

Uses fake browser objects from conftest; no real browser is launched.
"""

from __future__ import annotations

import asyncio

import pytest

from loadbench.connectors.browser_client import BrowserClient, xpath_literal
from loadbench.errors import BrowserError, classify_error
from loadbench.models.metrics import BROWSER_NAVIGATION_DURATION
from tests.conftest import FakeBrowser


class Sink:
    def __init__(self) -> None:
        self.samples: list[tuple[str, float, dict]] = []

    def record_metric(self, name, value, tags=None) -> None:
        self.samples.append((name, value, dict(tags or {})))


@pytest.mark.asyncio
async def test_session_navigates_and_counts(fake_browser: FakeBrowser) -> None:
    fake_browser.match_count = 2
    sink = Sink()
    client = BrowserClient(fake_browser, navigation_timeout=10, recorder=sink)

    async with client.session() as page:
        status = await page.goto("http://wp.test/sample-page/", wait_until="load")
        found = await page.count_text("Have fun!", element="p")
        assert client.open_contexts == 1
        assert client.open_pages == 1

    assert status == 200
    assert found == 2
    raw = fake_browser.pages[0]
    assert raw.goto_calls == [("http://wp.test/sample-page/", "load", 10000.0)]
    assert raw.locator_calls == ["//p[contains(., 'Have fun!')]"]
    assert [s[0] for s in sink.samples] == [BROWSER_NAVIGATION_DURATION]
    assert client.leaked == 0
    assert raw.closed and fake_browser.contexts[0].closed


@pytest.mark.asyncio
async def test_session_recorder_overrides_client_recorder(fake_browser: FakeBrowser) -> None:
    default, per_session = Sink(), Sink()
    client = BrowserClient(fake_browser, recorder=default)
    async with client.session(recorder=per_session) as page:
        await page.goto("http://wp.test/")
    assert default.samples == []
    assert len(per_session.samples) == 1


@pytest.mark.asyncio
async def test_invalid_wait_until(fake_browser: FakeBrowser) -> None:
    client = BrowserClient(fake_browser)
    async with client.session() as page:
        with pytest.raises(ValueError):
            await page.goto("http://wp.test/", wait_until="whenever")
    assert client.leaked == 0


@pytest.mark.asyncio
async def test_navigation_failure_raises_browser_error(fake_browser: FakeBrowser) -> None:
    fake_browser.fail_goto = True
    client = BrowserClient(fake_browser)
    with pytest.raises(BrowserError) as exc_info:
        async with client.session() as page:
            await page.goto("http://wp.test/")
    assert classify_error(exc_info.value) == "BROWSER"
    assert client.leaked == 0
    assert fake_browser.pages[0].close_calls == 1
    assert fake_browser.contexts[0].close_calls == 1


@pytest.mark.asyncio
async def test_forced_errors_never_leak() -> None:
    """100 failing sessions leave no open context or page."""
    browser = FakeBrowser(fail_goto=True)
    client = BrowserClient(browser)
    for _ in range(100):
        with pytest.raises(BrowserError):
            async with client.session() as page:
                await page.goto("http://wp.test/")
        assert client.leaked == 0

    assert browser.pages_opened == 100
    assert browser.pages_closed == 100
    assert browser.contexts_closed == 100
    assert all(p.close_calls == 1 for p in browser.pages)
    assert all(c.close_calls == 1 for c in browser.contexts)


@pytest.mark.asyncio
async def test_page_open_failure_still_closes_context() -> None:
    browser = FakeBrowser(fail_new_page=True)
    client = BrowserClient(browser)
    with pytest.raises(BrowserError):
        async with client.session():
            pass
    assert browser.contexts_closed == 1
    assert client.leaked == 0


@pytest.mark.asyncio
async def test_cancellation_releases_resources() -> None:
    browser = FakeBrowser(goto_delay=10)
    client = BrowserClient(browser, navigation_timeout=30)

    async def body() -> None:
        async with client.session() as page:
            await page.goto("http://wp.test/")

    task = asyncio.create_task(body())
    await asyncio.sleep(0.05)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert client.leaked == 0
    assert browser.pages[0].close_calls == 1
    assert browser.contexts[0].close_calls == 1


@pytest.mark.asyncio
async def test_hung_close_is_bounded_and_abandoned() -> None:
    browser = FakeBrowser(close_delay=10)
    client = BrowserClient(browser, close_timeout=0.05)

    loop = asyncio.get_running_loop()
    started = loop.time()
    async with client.session() as page:
        await page.goto("http://wp.test/")
    elapsed = loop.time() - started

    assert elapsed < 2
    assert client.abandoned_closes == 1
    assert client.leaked == 0
    assert browser.contexts[0].closed


@pytest.mark.asyncio
async def test_count_timeout(fake_browser: FakeBrowser) -> None:
    client = BrowserClient(fake_browser, operation_timeout=0.05)
    async with client.session() as page:
        page.raw.count_delay = 5
        with pytest.raises(BrowserError) as exc_info:
            await page.count("p")
    assert classify_error(exc_info.value) == "BROWSER_TIMEOUT"


class TestXPathLiteral:
    def test_plain(self) -> None:
        assert xpath_literal("Have fun!") == "'Have fun!'"

    def test_single_quote(self) -> None:
        assert xpath_literal("it's") == '"it\'s"'

    def test_both_quotes(self) -> None:
        assert xpath_literal("a'b\"c") == "concat('a', \"'\", 'b\"c')"
