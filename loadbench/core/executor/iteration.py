"""
Iteration execution for scenario bodies.

Runs one scenario body for one claimed iteration, converting every failure
into an ``IterationResult`` and releasing every protocol resource the
iteration acquired before returning.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager, contextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Iterator, Mapping, Optional

import httpx

from loadbench.connectors.browser_client import BrowserClient, BrowserPage
from loadbench.connectors.http_client import HttpClient
from loadbench.core.dataset import DatasetRow
from loadbench.core.executor.helpers import truncate_str_for_log
from loadbench.core.executor.types import IterationResult, IterationStatus, VirtualUser
from loadbench.core.metrics_collector import MetricsCollector
from loadbench.errors import BrowserError, IterationError, classify_error
from loadbench.models import ScenarioBody, ScenarioConfig
from loadbench.models.metrics import GROUP_DURATION, ITERATION_DURATION, ITERATIONS

logger = logging.getLogger(__name__)


class IterationLogAdapter(logging.LoggerAdapter):
    """Prefixes messages with scenario, VU and iteration identity."""

    def process(self, msg, kwargs):
        extra = self.extra or {}
        return (
            f"[{extra.get('scenario')} vu={extra.get('vu_id')} "
            f"iter={extra.get('iteration')}] {msg}",
            kwargs,
        )


@dataclass
class ProtocolResources:
    """Run-wide factories for the per-iteration protocol clients."""

    http_transport: Optional[httpx.AsyncBaseTransport] = None
    default_headers: Optional[Mapping[str, str]] = None
    browser_client: Optional[BrowserClient] = None
    release_timeout: float = 5.0


class IterationContext:
    """
    Everything a scenario body sees for one iteration.

    Attributes:
        scenario: Scenario configuration
        vu: The VU running this iteration
        iteration: Scenario-wide iteration index (selects the dataset row)
        row: Dataset row for this iteration
        log: Logger adapter carrying scenario/VU/iteration identity
    """

    def __init__(
        self,
        *,
        scenario: ScenarioConfig,
        vu: VirtualUser,
        iteration: int,
        row: DatasetRow,
        collector: MetricsCollector,
        resources: ProtocolResources,
    ):
        self.scenario = scenario
        self.vu = vu
        self.iteration = iteration
        self.row = row
        self.failed_checks = 0
        self.log = IterationLogAdapter(
            logger,
            {"scenario": scenario.name, "vu_id": vu.vu_id, "iteration": iteration},
        )
        self._collector = collector
        self._resources = resources
        self._group: Optional[str] = None
        self._http: Optional[HttpClient] = None
        self._releasers: list[tuple[str, Callable[[], Awaitable[Any]]]] = []

    @property
    def vu_id(self) -> int:
        return self.vu.vu_id

    @property
    def tags(self) -> dict[str, str]:
        tags = {**self.scenario.tags, "scenario": self.scenario.name}
        if self._group:
            tags["group"] = self._group
        return tags

    def record_metric(
        self, name: str, value: float, tags: Optional[Mapping[str, str]] = None
    ) -> None:
        self._collector.record_metric(
            name,
            value,
            scenario=self.scenario.name,
            vu_id=self.vu.vu_id,
            tags={**self.tags, **(tags or {})},
        )

    def record_check(
        self, name: str, passed: bool, tags: Optional[Mapping[str, str]] = None
    ) -> bool:
        self._collector.record_check(
            name,
            passed,
            scenario=self.scenario.name,
            vu_id=self.vu.vu_id,
            iteration=self.iteration,
            group=self._group,
            tags={**self.scenario.tags, **(tags or {})},
        )
        if not passed:
            self.failed_checks += 1
        return passed

    def check(self, value: Any, checks: Mapping[str, Callable[[Any], Any]]) -> bool:
        """
        Evaluate named predicates against ``value``; record one check each.

        A predicate that raises counts as failed. Returns True if all passed.
        """
        all_passed = True
        for name, predicate in checks.items():
            try:
                passed = bool(predicate(value))
            except Exception as e:
                self.log.debug("Check %r raised %s", name, truncate_str_for_log(e))
                passed = False
            all_passed = self.record_check(name, passed) and all_passed
        return all_passed

    @contextmanager
    def group(self, name: str) -> Iterator[None]:
        """Tag checks and metrics recorded inside the block with ``group``."""
        previous = self._group
        self._group = f"{previous}::{name}" if previous else name
        started = time.perf_counter()
        try:
            yield
        finally:
            self.record_metric(GROUP_DURATION, (time.perf_counter() - started) * 1000.0)
            self._group = previous

    @property
    def http(self) -> HttpClient:
        """HTTP client owned by this iteration, opened on first use."""
        if self._http is None:
            self._http = HttpClient(
                transport=self._resources.http_transport,
                default_headers=self._resources.default_headers,
                recorder=self,
            )
            self.add_releaser("http client", self._http.aclose)
        return self._http

    @asynccontextmanager
    async def browser_session(self) -> AsyncIterator[BrowserPage]:
        """Scoped browser context + page, closed on every exit path."""
        client = self._resources.browser_client
        if client is None:
            raise BrowserError(
                f"Scenario {self.scenario.name!r} has no browser configured"
            )
        async with client.session(recorder=self) as page:
            yield page

    def add_releaser(self, what: str, release: Callable[[], Awaitable[Any]]) -> None:
        """Register a resource release to run when the iteration ends."""
        self._releasers.append((what, release))

    async def sleep(self, seconds: float) -> None:
        if seconds > 0:
            await asyncio.sleep(seconds)

    async def aclose(self) -> None:
        """
        Release registered resources, newest first.

        Each release is bounded by the release timeout; a release that times
        out or fails is logged and abandoned, never re-raised.
        """
        timeout = self._resources.release_timeout
        while self._releasers:
            what, release = self._releasers.pop()
            try:
                await asyncio.wait_for(release(), timeout)
            except TimeoutError:
                self.log.warning(
                    "Releasing %s timed out after %.1fs; abandoning it", what, timeout
                )
            except Exception as e:
                self.log.warning(
                    "Releasing %s failed: %s", what, truncate_str_for_log(e)
                )


async def execute_iteration(ctx: IterationContext, body: ScenarioBody) -> IterationResult:
    """
    Run ``body`` for one iteration and return its result.

    Body failures are recorded as failed checks and returned, never raised.
    Cancellation propagates after resources are released.
    """
    started = time.perf_counter()
    status = IterationStatus.SUCCEEDED
    error: Optional[str] = None
    error_code: Optional[str] = None
    try:
        try:
            await body(ctx)
        finally:
            await ctx.aclose()
    except asyncio.CancelledError:
        status = IterationStatus.INTERRUPTED
        ctx.log.info("Iteration interrupted")
        raise
    except IterationError as e:
        status = IterationStatus.FAILED
        error = truncate_str_for_log(e)
        error_code = classify_error(e)
        ctx.record_check(e.check_name, False, tags={"error_code": error_code})
        ctx.log.warning("%s failed (%s): %s", e.check_name, error_code, error)
    except Exception as e:
        status = IterationStatus.FAILED
        error = truncate_str_for_log(e)
        error_code = classify_error(e)
        ctx.record_check(
            IterationError.default_check_name, False, tags={"error_code": error_code}
        )
        ctx.log.warning("Unhandled %s in scenario body: %s", type(e).__name__, error)
        ctx.log.debug("Traceback", exc_info=True)
    finally:
        duration_ms = (time.perf_counter() - started) * 1000.0
        ctx.record_metric(ITERATION_DURATION, duration_ms)
        if status != IterationStatus.INTERRUPTED:
            ctx.record_metric(ITERATIONS, 1)

    return IterationResult(
        scenario=ctx.scenario.name,
        vu_id=ctx.vu_id,
        iteration=ctx.iteration,
        status=status,
        duration_ms=duration_ms,
        failed_checks=ctx.failed_checks,
        error=error,
        error_code=error_code,
    )
