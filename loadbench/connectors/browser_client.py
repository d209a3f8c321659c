"""
Browser Protocol Client

Drives a Playwright browser: an isolated context and page per session,
navigation with a ready condition, and locator counts. Context and page are
scoped resources closed on every exit path, each close bounded by its own
timeout so a hung close cannot stall the VU.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Mapping, Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import async_playwright

from loadbench.connectors.http_client import MetricRecorder
from loadbench.errors import BrowserError, ConfigurationError
from loadbench.models.metrics import BROWSER_NAVIGATION_DURATION

logger = logging.getLogger(__name__)

WAIT_UNTIL_VALUES = frozenset({"load", "domcontentloaded", "networkidle", "commit"})


def xpath_literal(text: str) -> str:
    """Quote ``text`` as an XPath string literal."""
    if "'" not in text:
        return f"'{text}'"
    if '"' not in text:
        return f'"{text}"'
    parts = text.split("'")
    return "concat(" + ", \"'\", ".join(f"'{p}'" for p in parts) + ")"


class BrowserPage:
    """Page handle yielded by ``BrowserClient.session()``."""

    def __init__(
        self,
        page: Any,
        *,
        navigation_timeout: float,
        operation_timeout: float,
        recorder: Optional[MetricRecorder] = None,
    ):
        self._page = page
        self._navigation_timeout = navigation_timeout
        self._operation_timeout = operation_timeout
        self._recorder = recorder

    @property
    def raw(self) -> Any:
        """The underlying Playwright page."""
        return self._page

    async def goto(
        self,
        url: str,
        *,
        wait_until: str = "load",
        timeout: Optional[float] = None,
        tags: Optional[Mapping[str, str]] = None,
    ) -> Optional[int]:
        """
        Navigate to ``url`` and wait for the ready condition.

        Returns:
            The main response status, or None when the navigation had no response.

        Raises:
            BrowserError: On navigation failure or timeout.
        """
        if wait_until not in WAIT_UNTIL_VALUES:
            raise ValueError(f"Unsupported wait_until: {wait_until!r}")
        budget = self._navigation_timeout if timeout is None else timeout
        started = time.perf_counter()
        try:
            response = await self._page.goto(
                url, wait_until=wait_until, timeout=budget * 1000.0
            )
        except PlaywrightError as e:
            raise BrowserError(
                f"Navigation to {url} failed: {e}", check_name=f"navigate {url}"
            ) from e
        duration_ms = (time.perf_counter() - started) * 1000.0
        if self._recorder is not None:
            self._recorder.record_metric(
                BROWSER_NAVIGATION_DURATION, duration_ms, {"url": url, **(tags or {})}
            )
        if response is None:
            return None
        return response.status

    async def count(self, selector: str, *, timeout: Optional[float] = None) -> int:
        """Count elements matching ``selector``."""
        budget = self._operation_timeout if timeout is None else timeout
        try:
            return await asyncio.wait_for(self._page.locator(selector).count(), budget)
        except TimeoutError as e:
            raise BrowserError(
                f"Counting {selector!r} timed out after {budget:g}s",
                check_name=f"locate {selector}",
            ) from e
        except PlaywrightError as e:
            raise BrowserError(
                f"Counting {selector!r} failed: {e}", check_name=f"locate {selector}"
            ) from e

    async def count_text(
        self, text: str, *, element: str = "*", timeout: Optional[float] = None
    ) -> int:
        """Count ``element`` nodes whose text content contains ``text``."""
        return await self.count(
            f"//{element}[contains(., {xpath_literal(text)})]", timeout=timeout
        )


class BrowserClient:
    """
    Opens isolated browser sessions on an already launched browser.

    ``open_contexts`` and ``open_pages`` count resources acquired but not yet
    released; both return to zero after every session.
    """

    def __init__(
        self,
        browser: Any,
        *,
        navigation_timeout: float = 30.0,
        operation_timeout: float = 30.0,
        close_timeout: float = 5.0,
        recorder: Optional[MetricRecorder] = None,
    ):
        self._browser = browser
        self.navigation_timeout = navigation_timeout
        self.operation_timeout = operation_timeout
        self.close_timeout = close_timeout
        self._recorder = recorder
        self.open_contexts = 0
        self.open_pages = 0
        self.abandoned_closes = 0

    @property
    def leaked(self) -> int:
        return self.open_contexts + self.open_pages

    async def _acquire(self, what: str, factory) -> Any:
        try:
            return await asyncio.wait_for(factory(), self.operation_timeout)
        except TimeoutError as e:
            raise BrowserError(
                f"Opening browser {what} timed out after {self.operation_timeout:g}s"
            ) from e
        except PlaywrightError as e:
            raise BrowserError(f"Opening browser {what} failed: {e}") from e

    async def _close(self, resource: Any, what: str) -> None:
        try:
            await asyncio.wait_for(resource.close(), self.close_timeout)
        except TimeoutError:
            self.abandoned_closes += 1
            logger.warning(
                "Closing browser %s timed out after %.1fs; abandoning it",
                what,
                self.close_timeout,
            )
        except PlaywrightError as e:
            self.abandoned_closes += 1
            logger.warning("Closing browser %s failed: %s", what, e)

    @asynccontextmanager
    async def session(
        self, *, recorder: Optional[MetricRecorder] = None
    ) -> AsyncIterator[BrowserPage]:
        """
        Acquire a fresh context and page; release both on exit.

        Release runs on normal return, on error and on cancellation. Each
        close is bounded by ``close_timeout`` and never re-raises.
        """
        context = await self._acquire("context", self._browser.new_context)
        self.open_contexts += 1
        page = None
        try:
            page = await self._acquire("page", context.new_page)
            self.open_pages += 1
            yield BrowserPage(
                page,
                navigation_timeout=self.navigation_timeout,
                operation_timeout=self.operation_timeout,
                recorder=recorder or self._recorder,
            )
        finally:
            try:
                if page is not None:
                    try:
                        await self._close(page, "page")
                    finally:
                        self.open_pages -= 1
            finally:
                try:
                    await self._close(context, "context")
                finally:
                    self.open_contexts -= 1


@asynccontextmanager
async def launch_browser(
    browser_type: str = "chromium", *, headless: bool = True
) -> AsyncIterator[Any]:
    """Launch a Playwright browser for the duration of a run."""
    async with async_playwright() as playwright:
        launcher = getattr(playwright, browser_type, None)
        if launcher is None or not hasattr(launcher, "launch"):
            raise ConfigurationError(f"Unknown browser type: {browser_type!r}")
        try:
            browser = await launcher.launch(headless=headless)
        except PlaywrightError as e:
            raise ConfigurationError(f"Unable to launch {browser_type}: {e}") from e
        logger.info("Launched %s (headless=%s)", browser_type, headless)
        try:
            yield browser
        finally:
            await browser.close()
