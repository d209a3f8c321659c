"""
Scenario Scheduler

Drives every scenario of a run through ``pending -> active -> draining ->
terminated`` concurrently and independently, then evaluates thresholds over
the collected samples.
"""

from __future__ import annotations

import asyncio
import dataclasses
import itertools
import logging
from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from typing import Any, Iterator, Optional

import httpx

from loadbench.config import Settings, get_settings
from loadbench.connectors.browser_client import BrowserClient, launch_browser
from loadbench.core.dataset import Dataset
from loadbench.core.executor.helpers import cancel_and_wait, wait_event
from loadbench.core.executor.iteration import (
    IterationContext,
    ProtocolResources,
    execute_iteration,
)
from loadbench.core.executor.types import (
    IterationResult,
    ScenarioState,
    ScenarioStats,
    VirtualUser,
)
from loadbench.core.executor.workers import ScenarioExecutor, VUPool, create_executor
from loadbench.core.metrics_collector import MetricsCollector
from loadbench.core.thresholds import ThresholdEvaluator
from loadbench.models import RunPlan, RunVerdict, ScenarioConfig

logger = logging.getLogger(__name__)


class ScenarioRunner:
    """
    Lifecycle of one scenario.

    ``pending -> active`` at ``start_time`` after run start; ``active ->
    draining`` when the workload is exhausted, the active window elapses or
    the run is stopped; ``draining -> terminated`` once in-flight iterations
    finish or ``graceful_stop`` elapses, in which case they are cancelled.
    """

    def __init__(
        self,
        config: ScenarioConfig,
        *,
        dataset: Dataset,
        collector: MetricsCollector,
        resources: ProtocolResources,
        id_seq: Iterator[int],
        run_stop: asyncio.Event,
    ):
        self.config = config
        self.dataset = dataset
        self.collector = collector
        self.resources = resources
        self.run_stop = run_stop
        self.stop_new = asyncio.Event()
        self.state = ScenarioState.PENDING
        self.stats = ScenarioStats()
        self.forced_cancel = False
        self.pool = VUPool(config, id_seq, collector)
        self.executor: ScenarioExecutor = create_executor(
            config,
            self.pool,
            self._run_iteration,
            stop_new=self.stop_new,
            collector=collector,
            stats=self.stats,
        )

    @property
    def name(self) -> str:
        return self.config.name

    def _set_state(self, state: ScenarioState) -> None:
        if state == self.state:
            return
        logger.info("Scenario %s: %s -> %s", self.name, self.state.value, state.value)
        self.state = state

    async def _run_iteration(self, vu: VirtualUser, index: int) -> IterationResult:
        ctx = IterationContext(
            scenario=self.config,
            vu=vu,
            iteration=index,
            row=self.dataset.row_for(index),
            collector=self.collector,
            resources=self.resources,
        )
        return await execute_iteration(ctx, self.config.exec_fn)

    async def run(self) -> None:
        cfg = self.config
        work: Optional[asyncio.Task] = None
        try:
            if cfg.is_empty:
                logger.info("Scenario %s has no VUs to run; skipping", self.name)
                return

            if await wait_event(self.run_stop, cfg.start_time):
                logger.info("Scenario %s stopped before its start time", self.name)
                return

            self._set_state(ScenarioState.ACTIVE)
            work = asyncio.create_task(self.executor.run(), name=f"scenario:{self.name}")
            stop_waiter = asyncio.create_task(self.run_stop.wait())
            try:
                await asyncio.wait(
                    {work, stop_waiter},
                    timeout=cfg.active_window,
                    return_when=asyncio.FIRST_COMPLETED,
                )
            finally:
                await cancel_and_wait([stop_waiter])

            self.stop_new.set()
            self._set_state(ScenarioState.DRAINING)
            if not work.done():
                try:
                    await asyncio.wait_for(asyncio.shield(work), cfg.graceful_stop)
                except TimeoutError:
                    self.forced_cancel = True
                    logger.warning(
                        "Scenario %s: graceful stop of %gs elapsed; cancelling in-flight iterations",
                        self.name,
                        cfg.graceful_stop,
                    )
                    await cancel_and_wait([work])
            if not work.cancelled() and work.exception() is not None:
                logger.error(
                    "Scenario %s executor failed",
                    self.name,
                    exc_info=work.exception(),
                )
        except asyncio.CancelledError:
            if work is not None:
                await cancel_and_wait([work])
            raise
        except Exception:
            # One scenario's failure never affects the others.
            logger.exception("Scenario %s aborted", self.name)
        finally:
            self.stop_new.set()
            self._set_state(ScenarioState.TERMINATED)
            logger.info(
                "Scenario %s: %d started, %d succeeded, %d failed, %d interrupted, %d dropped",
                self.name,
                self.stats.started,
                self.stats.succeeded,
                self.stats.failed,
                self.stats.interrupted,
                self.stats.dropped,
            )


@dataclass
class ScenarioReport:
    name: str
    state: ScenarioState
    stats: ScenarioStats
    forced_cancel: bool = False


@dataclass
class RunResult:
    """Outcome of a run: the verdict plus per-scenario detail."""

    verdict: RunVerdict
    collector: MetricsCollector
    scenarios: dict[str, ScenarioReport] = field(default_factory=dict)
    interrupted: bool = False

    @property
    def passed(self) -> bool:
        return self.verdict.passed


class Orchestrator:
    """
    Runs a finalized ``RunPlan`` against a loaded ``Dataset``.

    The browser is launched only when a non-empty scenario needs one; pass
    ``browser`` to reuse an already launched browser (or a test double), and
    ``http_transport`` to route HTTP through a custom httpx transport.
    """

    def __init__(
        self,
        plan: RunPlan,
        dataset: Dataset,
        *,
        settings: Optional[Settings] = None,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
        browser: Any = None,
        collector: Optional[MetricsCollector] = None,
    ):
        self.plan = plan
        self.dataset = dataset
        self.settings = settings or get_settings()
        self.collector = collector or MetricsCollector()
        self._http_transport = http_transport
        self._browser = browser
        self._stop = asyncio.Event()
        self.runners: list[ScenarioRunner] = []

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    def stop(self) -> None:
        """Move every active scenario to draining; pending ones never start."""
        if not self._stop.is_set():
            logger.info("Stop requested; draining all scenarios")
        self._stop.set()

    async def _browser_clients(self, stack: AsyncExitStack) -> dict[str, BrowserClient]:
        s = self.settings
        types = {
            cfg.browser_type
            for cfg in self.plan.scenarios
            if cfg.browser_type and not cfg.is_empty
        }
        clients: dict[str, BrowserClient] = {}
        for browser_type in sorted(types):
            browser = self._browser
            if browser is None:
                browser = await stack.enter_async_context(
                    launch_browser(browser_type, headless=s.BROWSER_HEADLESS)
                )
            clients[browser_type] = BrowserClient(
                browser,
                navigation_timeout=s.seconds("BROWSER_NAVIGATION_TIMEOUT"),
                operation_timeout=s.seconds("BROWSER_NAVIGATION_TIMEOUT"),
                close_timeout=s.seconds("BROWSER_CLOSE_TIMEOUT"),
            )
        return clients

    async def run(self) -> RunResult:
        """
        Run every scenario to termination and evaluate thresholds.

        Raises:
            ConfigurationError: If a browser or setting needed by the plan is
                invalid. Raised before any scenario starts.
        """
        base = ProtocolResources(
            http_transport=self._http_transport,
            release_timeout=self.settings.seconds("RELEASE_TIMEOUT"),
        )
        id_seq = itertools.count(1)

        async with AsyncExitStack() as stack:
            browsers = await self._browser_clients(stack)
            self.runners = [
                ScenarioRunner(
                    cfg,
                    dataset=self.dataset,
                    collector=self.collector,
                    resources=dataclasses.replace(
                        base, browser_client=browsers.get(cfg.browser_type or "")
                    ),
                    id_seq=id_seq,
                    run_stop=self._stop,
                )
                for cfg in self.plan.scenarios
            ]
            logger.info(
                "Starting run: %d scenario(s), %d dataset row(s) from %s",
                len(self.runners),
                len(self.dataset),
                self.dataset.source,
            )
            self.collector.start()
            try:
                await asyncio.gather(*(r.run() for r in self.runners))
            finally:
                self.collector.stop()
                leaked = sum(c.leaked for c in browsers.values())
                if leaked:
                    logger.warning("%d browser resource(s) still open at run end", leaked)

        verdict = ThresholdEvaluator(self.plan.thresholds).evaluate(self.collector)
        logger.info(
            "Run finished in %.1fs: %s",
            self.collector.elapsed_seconds,
            "PASS" if verdict.passed else "FAIL",
        )
        return RunResult(
            verdict=verdict,
            collector=self.collector,
            scenarios={
                r.name: ScenarioReport(
                    name=r.name,
                    state=r.state,
                    stats=r.stats,
                    forced_cancel=r.forced_cancel,
                )
                for r in self.runners
            },
            interrupted=self.stopping,
        )
