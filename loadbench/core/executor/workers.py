"""
VU pool and executor policies.

An executor decides when iterations start and which VU runs them:
- per-vu-iterations: a fixed set of VUs, each running N iterations
- shared-iterations: a fixed set of VUs claiming from one shared total
- constant-arrival-rate: iterations started on a fixed timetable, each on any
  idle VU; when none is available and the pool is at its cap, the start is
  dropped and recorded
"""

import asyncio
import itertools
import logging
import math
from abc import ABC, abstractmethod
from collections import deque
from typing import Awaitable, Callable, Iterable, Iterator, Optional

from loadbench.core.executor.helpers import cancel_and_wait, wait_event
from loadbench.core.executor.types import (
    IterationResult,
    ScenarioStats,
    VirtualUser,
    VUState,
)
from loadbench.core.metrics_collector import CONTROL_VU_ID, MetricsCollector
from loadbench.models import ExecutorType, ScenarioConfig
from loadbench.models.metrics import DROPPED_ITERATIONS, VUS

logger = logging.getLogger(__name__)

RunIteration = Callable[[VirtualUser, int], Awaitable[IterationResult]]


class VUPool:
    """
    The VUs of one scenario.

    The number of live VUs never exceeds ``config.vu_cap``. VU ids come from
    a run-wide sequence so they are unique across scenarios.
    """

    def __init__(
        self,
        config: ScenarioConfig,
        id_seq: Iterator[int],
        collector: Optional[MetricsCollector] = None,
    ):
        self.config = config
        self.cap = config.vu_cap
        self._id_seq = id_seq
        self._collector = collector
        self._live: dict[int, VirtualUser] = {}
        self._idle: deque[VirtualUser] = deque()
        self._spawned = 0
        self.peak = 0

    @property
    def live_count(self) -> int:
        return len(self._live)

    def spawn(self) -> Optional[VirtualUser]:
        """Create a VU, or return None when the pool is at its cap."""
        if self.live_count >= self.cap:
            return None
        vu = VirtualUser(
            vu_id=next(self._id_seq), index=self._spawned, scenario=self.config.name
        )
        self._spawned += 1
        self._live[vu.vu_id] = vu
        if self.live_count > self.peak:
            self.peak = self.live_count
            if self._collector is not None:
                self._collector.record_metric(
                    VUS,
                    self.peak,
                    scenario=self.config.name,
                    vu_id=CONTROL_VU_ID,
                    tags=self.config.tags,
                )
        return vu

    def preallocate(self, count: int) -> list[VirtualUser]:
        """Spawn up to ``count`` idle VUs."""
        out: list[VirtualUser] = []
        for _ in range(count):
            vu = self.spawn()
            if vu is None:
                break
            vu.state = VUState.IDLE
            self._idle.append(vu)
            out.append(vu)
        return out

    def try_acquire(self) -> Optional[VirtualUser]:
        """Take an idle VU, spawning one if below the cap."""
        if self._idle:
            vu = self._idle.pop()
        else:
            vu = self.spawn()
            if vu is None:
                return None
        vu.state = VUState.RUNNING
        return vu

    def release(self, vu: VirtualUser) -> None:
        """Return a VU to the idle set."""
        if vu.vu_id not in self._live:
            return
        vu.state = VUState.IDLE
        self._idle.append(vu)

    def retire(self, vu: VirtualUser) -> None:
        vu.state = VUState.TERMINATED
        self._live.pop(vu.vu_id, None)
        try:
            self._idle.remove(vu)
        except ValueError:
            pass

    def retire_all(self) -> None:
        for vu in list(self._live.values()):
            self.retire(vu)


async def _await_all(tasks: Iterable[asyncio.Task]) -> None:
    """Wait for every task; on cancellation, cancel them all and wait again."""
    tasks = list(tasks)
    if not tasks:
        return
    try:
        await asyncio.gather(*tasks)
    except asyncio.CancelledError:
        await cancel_and_wait(tasks)
        raise


class ScenarioExecutor(ABC):
    """
    Base class for executor policies.

    ``stop_new`` is set by the scenario runner when the active window ends;
    executors stop starting iterations as soon as they see it. In-flight
    iterations are left to finish unless the executor task is cancelled.
    """

    def __init__(
        self,
        config: ScenarioConfig,
        pool: VUPool,
        run_iteration: RunIteration,
        *,
        stop_new: asyncio.Event,
        collector: MetricsCollector,
        stats: Optional[ScenarioStats] = None,
    ):
        self.config = config
        self.pool = pool
        self.stop_new = stop_new
        self.collector = collector
        self.stats = stats or ScenarioStats()
        self._run_iteration = run_iteration

    @abstractmethod
    async def run(self) -> None:
        """Start iterations until the workload is exhausted or ``stop_new`` is set."""

    async def _run_one(self, vu: VirtualUser, index: int) -> Optional[IterationResult]:
        self.stats.started += 1
        vu.state = VUState.RUNNING
        try:
            result = await self._run_iteration(vu, index)
        except asyncio.CancelledError:
            self.stats.interrupted += 1
            raise
        except Exception:
            # Iteration setup failed outside the body; keep the VU alive.
            self.stats.failed += 1
            logger.exception(
                "[%s vu=%d iter=%d] Iteration could not run",
                self.config.name,
                vu.vu_id,
                index,
            )
            return None
        finally:
            vu.iterations += 1
            if vu.state == VUState.RUNNING:
                vu.state = VUState.IDLE
        self.stats.record(result)
        return result

    def _finish(self) -> None:
        self.stats.peak_vus = max(self.stats.peak_vus, self.pool.peak)
        self.pool.retire_all()


class PerVUIterationsExecutor(ScenarioExecutor):
    """Each of ``vus`` VUs runs exactly ``iterations`` iterations, sequentially."""

    async def run(self) -> None:
        per_vu = self.config.iterations
        vus = [vu for vu in (self.pool.spawn() for _ in range(self.pool.cap)) if vu]

        async def vu_loop(vu: VirtualUser) -> None:
            try:
                for i in range(per_vu):
                    if self.stop_new.is_set():
                        break
                    await self._run_one(vu, vu.index * per_vu + i)
            finally:
                vu.state = VUState.RETIRING

        logger.info(
            "%s: %d VU(s) x %d iteration(s)", self.config.name, len(vus), per_vu
        )
        try:
            await _await_all(asyncio.create_task(vu_loop(vu)) for vu in vus)
        finally:
            self._finish()


class SharedIterationsExecutor(ScenarioExecutor):
    """``iterations`` iterations claimed by up to ``vus`` VUs; each runs exactly once."""

    async def run(self) -> None:
        total = self.config.iterations
        claims = itertools.count()
        vus = [vu for vu in (self.pool.spawn() for _ in range(self.pool.cap)) if vu]

        async def vu_loop(vu: VirtualUser) -> None:
            try:
                while not self.stop_new.is_set():
                    index = next(claims)
                    if index >= total:
                        break
                    await self._run_one(vu, index)
            finally:
                vu.state = VUState.RETIRING

        logger.info(
            "%s: %d iteration(s) shared by %d VU(s)", self.config.name, total, len(vus)
        )
        try:
            await _await_all(asyncio.create_task(vu_loop(vu)) for vu in vus)
        finally:
            self._finish()


class ConstantArrivalRateExecutor(ScenarioExecutor):
    """
    Starts ``rate`` iterations per ``time_unit`` for ``duration``.

    Starts are scheduled against the loop clock, independent of how long
    iterations take. A start that finds no idle VU with the pool at its cap is
    dropped and counted under ``dropped_iterations``.
    """

    @property
    def interval(self) -> float:
        return self.config.time_unit / self.config.rate

    @property
    def planned_starts(self) -> int:
        return math.ceil(self.config.duration * self.config.rate / self.config.time_unit - 1e-9)

    async def run(self) -> None:
        cfg = self.config
        ticks = self.planned_starts
        interval = self.interval
        self.pool.preallocate(cfg.pre_allocated_vus)
        logger.info(
            "%s: %g iteration(s)/%gs for %gs (%d planned, %d preallocated VU(s), cap %d)",
            cfg.name,
            cfg.rate,
            cfg.time_unit,
            cfg.duration,
            ticks,
            cfg.pre_allocated_vus,
            self.pool.cap,
        )

        loop = asyncio.get_running_loop()
        in_flight: set[asyncio.Task] = set()
        started = 0
        start = loop.time()
        try:
            for tick in range(ticks):
                delay = start + tick * interval - loop.time()
                if await wait_event(self.stop_new, delay):
                    break
                vu = self.pool.try_acquire()
                if vu is None:
                    self._drop(tick)
                    continue
                task = asyncio.create_task(self._run_and_release(vu, started))
                started += 1
                in_flight.add(task)
                task.add_done_callback(in_flight.discard)
            await _await_all(set(in_flight))
        except asyncio.CancelledError:
            await cancel_and_wait(set(in_flight))
            raise
        finally:
            self._finish()

        if self.stats.dropped:
            logger.warning(
                "%s: dropped %d of %d planned iteration(s); max VUs (%d) too low",
                cfg.name,
                self.stats.dropped,
                ticks,
                self.pool.cap,
            )

    async def _run_and_release(self, vu: VirtualUser, index: int) -> None:
        try:
            await self._run_one(vu, index)
        finally:
            self.pool.release(vu)

    def _drop(self, tick: int) -> None:
        self.stats.dropped += 1
        self.collector.record_metric(
            DROPPED_ITERATIONS,
            1,
            scenario=self.config.name,
            vu_id=CONTROL_VU_ID,
            tags=self.config.tags,
        )
        logger.debug("%s: no VU available for start #%d", self.config.name, tick)


_EXECUTORS: dict[ExecutorType, type[ScenarioExecutor]] = {
    ExecutorType.PER_VU_ITERATIONS: PerVUIterationsExecutor,
    ExecutorType.SHARED_ITERATIONS: SharedIterationsExecutor,
    ExecutorType.CONSTANT_ARRIVAL_RATE: ConstantArrivalRateExecutor,
}


def create_executor(
    config: ScenarioConfig,
    pool: VUPool,
    run_iteration: RunIteration,
    *,
    stop_new: asyncio.Event,
    collector: MetricsCollector,
    stats: Optional[ScenarioStats] = None,
) -> ScenarioExecutor:
    """
    Factory function to create the executor for a scenario's policy.

    Returns:
        ScenarioExecutor instance
    """
    executor_cls = _EXECUTORS[config.executor]
    return executor_cls(
        config,
        pool,
        run_iteration,
        stop_new=stop_new,
        collector=collector,
        stats=stats,
    )
