"""
Tests for the scenario scheduler: lifecycle, start offsets, graceful stop,
isolation between scenarios and the run verdict.
"""

from __future__ import annotations

import asyncio

import pytest

from loadbench.config import Settings
from loadbench.core.dataset import Dataset
from loadbench.core.executor.iteration import IterationContext
from loadbench.core.executor.types import ScenarioState
from loadbench.core.orchestrator import Orchestrator
from loadbench.core.thresholds import parse_threshold
from loadbench.models import ExecutorType, RunPlan
from loadbench.models.metrics import CHECKS, ITERATIONS
from tests.conftest import FakeBrowser, make_scenario

CHECKS_RULE = parse_threshold("checks", "rate>0.95")


def _plan(*scenarios, thresholds=(CHECKS_RULE,)) -> RunPlan:
    return RunPlan(scenarios=tuple(scenarios), thresholds=tuple(thresholds))


async def passing(ctx: IterationContext) -> None:
    ctx.check(True, {"ok": bool})


async def failing(ctx: IterationContext) -> None:
    raise RuntimeError("scenario body broke")


@pytest.mark.asyncio
class TestLifecycle:
    async def test_all_scenarios_terminate_and_pass(
        self, dataset: Dataset, settings: Settings
    ) -> None:
        plan = _plan(
            make_scenario("perVu", body=passing, vus=2, iterations=3),
            make_scenario(
                "shared", ExecutorType.SHARED_ITERATIONS, body=passing, vus=3, iterations=4
            ),
        )
        result = await Orchestrator(plan, dataset, settings=settings).run()

        assert result.passed
        assert not result.interrupted
        assert {n: r.state for n, r in result.scenarios.items()} == {
            "perVu": ScenarioState.TERMINATED,
            "shared": ScenarioState.TERMINATED,
        }
        assert result.scenarios["perVu"].stats.succeeded == 6
        assert result.scenarios["shared"].stats.succeeded == 4
        assert len(result.collector.samples(ITERATIONS)) == 10

    async def test_start_offset_delays_activation(
        self, dataset: Dataset, settings: Settings
    ) -> None:
        loop = asyncio.get_running_loop()
        started_at: dict[str, float] = {}

        async def stamp(ctx: IterationContext) -> None:
            started_at.setdefault(ctx.scenario.name, loop.time())

        plan = _plan(
            make_scenario("now", body=stamp),
            make_scenario("later", body=stamp, start_time="300ms"),
        )
        t0 = loop.time()
        await Orchestrator(plan, dataset, settings=settings).run()

        assert started_at["now"] - t0 < 0.2
        assert started_at["later"] - t0 >= 0.28

    async def test_rows_follow_iteration_index(self, dataset: Dataset, settings: Settings) -> None:
        seen: list[str] = []

        async def body(ctx: IterationContext) -> None:
            seen.append(ctx.row["Name"])

        plan = _plan(make_scenario("rows", body=body, vus=1, iterations=7))
        await Orchestrator(plan, dataset, settings=settings).run()
        assert seen == ["Ada", "Alan", "Grace", "Ada", "Alan", "Grace", "Ada"]


@pytest.mark.asyncio
class TestGracefulStop:
    async def test_in_flight_iteration_finishes_within_budget(
        self, dataset: Dataset, settings: Settings
    ) -> None:
        async def slow(ctx: IterationContext) -> None:
            await asyncio.sleep(0.2)

        plan = _plan(
            make_scenario(
                "slow", body=slow, vus=1, iterations=5, max_duration=0.05, graceful_stop=2
            )
        )
        result = await Orchestrator(plan, dataset, settings=settings).run()

        report = result.scenarios["slow"]
        assert not report.forced_cancel
        assert report.stats.started == 1
        assert report.stats.succeeded == 1
        assert report.state == ScenarioState.TERMINATED

    async def test_overrunning_iteration_is_cancelled(
        self, dataset: Dataset, settings: Settings
    ) -> None:
        async def stuck(ctx: IterationContext) -> None:
            await asyncio.sleep(30)

        plan = _plan(
            make_scenario(
                "stuck", body=stuck, vus=2, iterations=1, max_duration=0.05, graceful_stop=0.1
            )
        )
        loop = asyncio.get_running_loop()
        t0 = loop.time()
        result = await Orchestrator(plan, dataset, settings=settings).run()

        report = result.scenarios["stuck"]
        assert loop.time() - t0 < 2
        assert report.forced_cancel
        assert report.stats.interrupted == 2
        assert report.state == ScenarioState.TERMINATED
        assert result.collector.samples(ITERATIONS) == []

    async def test_constant_rate_window_then_drain(
        self, dataset: Dataset, settings: Settings
    ) -> None:
        plan = _plan(
            make_scenario(
                "rate",
                ExecutorType.CONSTANT_ARRIVAL_RATE,
                body=passing,
                rate=10,
                duration=0.5,
                pre_allocated_vus=2,
            )
        )
        result = await Orchestrator(plan, dataset, settings=settings).run()
        stats = result.scenarios["rate"].stats
        assert stats.started + stats.dropped == 5
        assert stats.dropped == 0


@pytest.mark.asyncio
class TestIsolation:
    async def test_failing_scenario_does_not_affect_others(
        self, dataset: Dataset, settings: Settings
    ) -> None:
        plan = _plan(
            make_scenario("bad", body=failing, vus=2, iterations=3),
            make_scenario("good", body=passing, vus=2, iterations=3),
        )
        result = await Orchestrator(plan, dataset, settings=settings).run()

        assert result.scenarios["bad"].stats.failed == 6
        assert result.scenarios["good"].stats.succeeded == 6
        good_checks = result.collector.checks("good")
        assert len(good_checks) == 6 and all(c.passed for c in good_checks)
        assert not result.passed
        assert result.verdict.rules[0].observed == pytest.approx(0.5)

    async def test_empty_scenario_contributes_nothing(
        self, dataset: Dataset, settings: Settings
    ) -> None:
        plan = _plan(
            make_scenario("empty", body=failing, vus=10, iterations=0),
            make_scenario("good", body=passing, vus=1, iterations=2),
        )
        result = await Orchestrator(plan, dataset, settings=settings).run()

        empty = result.scenarios["empty"]
        assert empty.state == ScenarioState.TERMINATED
        assert empty.stats.started == 0
        assert empty.stats.peak_vus == 0
        assert result.collector.samples(tags={"scenario": "empty"}) == []
        assert result.passed

    async def test_executor_crash_is_contained(
        self, dataset: Dataset, settings: Settings, monkeypatch
    ) -> None:
        plan = _plan(
            make_scenario("crash", body=passing, vus=1, iterations=1),
            make_scenario("good", body=passing, vus=1, iterations=1),
        )
        orchestrator = Orchestrator(plan, dataset, settings=settings)

        from loadbench.core.executor import workers

        original = workers.PerVUIterationsExecutor.run

        async def run(self) -> None:
            if self.config.name == "crash":
                raise RuntimeError("executor bug")
            await original(self)

        monkeypatch.setattr(workers.PerVUIterationsExecutor, "run", run)
        result = await orchestrator.run()

        assert result.scenarios["crash"].state == ScenarioState.TERMINATED
        assert result.scenarios["good"].stats.succeeded == 1


@pytest.mark.asyncio
class TestStop:
    async def test_stop_drains_active_and_skips_pending(
        self, dataset: Dataset, settings: Settings
    ) -> None:
        plan = _plan(
            make_scenario(
                "rate",
                ExecutorType.CONSTANT_ARRIVAL_RATE,
                body=passing,
                rate=10,
                duration=60,
                pre_allocated_vus=2,
            ),
            make_scenario("later", body=passing, start_time=60),
        )
        orchestrator = Orchestrator(plan, dataset, settings=settings)
        loop = asyncio.get_running_loop()
        loop.call_later(0.2, orchestrator.stop)
        t0 = loop.time()
        result = await asyncio.wait_for(orchestrator.run(), 5)

        assert loop.time() - t0 < 2
        assert result.interrupted
        assert result.scenarios["rate"].stats.started >= 1
        assert result.scenarios["later"].stats.started == 0
        assert all(r.state == ScenarioState.TERMINATED for r in result.scenarios.values())


@pytest.mark.asyncio
class TestBrowserScenarios:
    async def test_browser_scenario_uses_supplied_browser(
        self, dataset: Dataset, settings: Settings
    ) -> None:
        browser = FakeBrowser(match_count=1)

        async def ui(ctx: IterationContext) -> None:
            async with ctx.browser_session() as page:
                await page.goto("http://wp.test/sample-page/")
                found = await page.count_text("Have fun!", element="p")
            ctx.check(found, {"found": lambda n: n > 0})

        plan = _plan(
            make_scenario(
                "ui",
                ExecutorType.SHARED_ITERATIONS,
                body=ui,
                vus=2,
                iterations=6,
                browser_type="chromium",
            )
        )
        assert plan.needs_browser
        result = await Orchestrator(plan, dataset, settings=settings, browser=browser).run()

        assert result.passed
        assert browser.pages_opened == 6
        assert browser.pages_closed == 6
        assert browser.contexts_closed == 6
        assert len(result.collector.samples(CHECKS)) == 6

    async def test_failing_browser_iterations_release_everything(
        self, dataset: Dataset, settings: Settings
    ) -> None:
        browser = FakeBrowser(fail_goto=True)

        async def ui(ctx: IterationContext) -> None:
            async with ctx.browser_session() as page:
                await page.goto("http://wp.test/")

        plan = _plan(
            make_scenario(
                "ui",
                ExecutorType.SHARED_ITERATIONS,
                body=ui,
                vus=4,
                iterations=100,
                browser_type="chromium",
            )
        )
        result = await Orchestrator(plan, dataset, settings=settings, browser=browser).run()

        assert result.scenarios["ui"].stats.failed == 100
        assert browser.pages_opened == browser.pages_closed == 100
        assert browser.contexts_closed == 100
        assert not result.passed
