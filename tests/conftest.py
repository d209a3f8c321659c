"""
Global pytest configuration and fixtures for loadbench tests.

This module provides:
- A fresh MetricsCollector per test
- Settings isolated from the environment and any ``.env`` file
- Duck-typed fake Playwright browser/context/page objects
- A helper to build scenario configs with a body
"""

from __future__ import annotations

import asyncio
from typing import Any, Optional

import pytest
from playwright.async_api import Error as PlaywrightError

from loadbench.config import Settings
from loadbench.core.dataset import Dataset
from loadbench.core.metrics_collector import MetricsCollector
from loadbench.models import ExecutorType, ScenarioConfig


# =============================================================================
# Fake browser
# =============================================================================


class FakeResponse:
    def __init__(self, status: int = 200):
        self.status = status


class FakeLocator:
    def __init__(self, page: "FakePage", selector: str):
        self.page = page
        self.selector = selector

    async def count(self) -> int:
        self.page.locator_calls.append(self.selector)
        if self.page.count_delay:
            await asyncio.sleep(self.page.count_delay)
        return self.page.match_count


class FakePage:
    """
    Page double.

    ``fail_goto`` makes navigation raise; ``goto_delay`` and ``close_delay``
    simulate slow navigation and hung closes.
    """

    def __init__(self, browser: "FakeBrowser"):
        self.browser = browser
        self.closed = False
        self.close_calls = 0
        self.goto_calls: list[tuple[str, str, float]] = []
        self.locator_calls: list[str] = []
        self.match_count = browser.match_count
        self.count_delay = 0.0

    async def goto(self, url: str, *, wait_until: str, timeout: float) -> Optional[FakeResponse]:
        self.goto_calls.append((url, wait_until, timeout))
        if self.browser.goto_delay:
            await asyncio.sleep(self.browser.goto_delay)
        if self.browser.fail_goto:
            raise PlaywrightError("net::ERR_CONNECTION_REFUSED")
        return FakeResponse(self.browser.status)

    def locator(self, selector: str) -> FakeLocator:
        return FakeLocator(self, selector)

    async def close(self) -> None:
        self.close_calls += 1
        if self.browser.close_delay:
            await asyncio.sleep(self.browser.close_delay)
        self.closed = True
        self.browser.pages_closed += 1


class FakeContext:
    def __init__(self, browser: "FakeBrowser"):
        self.browser = browser
        self.pages: list[FakePage] = []
        self.closed = False
        self.close_calls = 0

    async def new_page(self) -> FakePage:
        if self.browser.fail_new_page:
            raise PlaywrightError("Target page, context or browser has been closed")
        page = FakePage(self.browser)
        self.pages.append(page)
        self.browser.pages_opened += 1
        return page

    async def close(self) -> None:
        self.close_calls += 1
        self.closed = True
        self.browser.contexts_closed += 1


class FakeBrowser:
    """Counts every context/page opened and closed."""

    def __init__(
        self,
        *,
        match_count: int = 1,
        status: int = 200,
        fail_goto: bool = False,
        fail_new_page: bool = False,
        goto_delay: float = 0.0,
        close_delay: float = 0.0,
    ):
        self.match_count = match_count
        self.status = status
        self.fail_goto = fail_goto
        self.fail_new_page = fail_new_page
        self.goto_delay = goto_delay
        self.close_delay = close_delay
        self.contexts: list[FakeContext] = []
        self.contexts_closed = 0
        self.pages_opened = 0
        self.pages_closed = 0

    async def new_context(self) -> FakeContext:
        context = FakeContext(self)
        self.contexts.append(context)
        return context

    @property
    def pages(self) -> list[FakePage]:
        return [p for c in self.contexts for p in c.pages]


@pytest.fixture
def fake_browser() -> FakeBrowser:
    return FakeBrowser()


# =============================================================================
# Engine fixtures
# =============================================================================


@pytest.fixture
def collector() -> MetricsCollector:
    c = MetricsCollector()
    c.start()
    return c


@pytest.fixture
def dataset() -> Dataset:
    return Dataset(
        [
            {"Name": "Ada", "Surname": "Lovelace", "Email": "ada@example.com", "Message": "m0"},
            {"Name": "Alan", "Surname": "Turing", "Email": "alan@example.com", "Message": "m1"},
            {"Name": "Grace", "Surname": "Hopper", "Email": "grace@example.com", "Message": "m2"},
        ],
        source="<test>",
    )


@pytest.fixture
def settings() -> Settings:
    """Settings with short timings, ignoring the process environment."""
    return Settings(
        _env_file=None,
        BASE_URL="http://wp.test",
        GRACEFUL_STOP="1s",
        THINK_TIME=0,
        UI_THINK_TIME=0,
        HTTP_TIMEOUT="5s",
        RELEASE_TIMEOUT="1s",
        BROWSER_CLOSE_TIMEOUT="200ms",
        SCENARIO_SIMPLE_FORM_START_TIME=0,
    )


async def noop_body(ctx: Any) -> None:
    return None


def make_scenario(
    name: str = "s",
    executor: ExecutorType = ExecutorType.PER_VU_ITERATIONS,
    body=noop_body,
    **kwargs: Any,
) -> ScenarioConfig:
    return ScenarioConfig(name=name, executor=executor, exec_fn=body, **kwargs)
