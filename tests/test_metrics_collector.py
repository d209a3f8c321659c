"""
Tests for MetricsCollector.

Validates sharded recording under concurrent writers, per-VU ordering,
tag filtering, percentile calculation and summaries.
"""

import asyncio
import random
import threading

import pytest

from loadbench.core.metrics_collector import (
    MetricsCollector,
    calculate_percentiles,
    percentile,
)
from loadbench.models.metrics import CHECKS, HTTP_REQ_DURATION


def test_record_metric_adds_scenario_tag(collector: MetricsCollector) -> None:
    sample = collector.record_metric(
        HTTP_REQ_DURATION, 12.5, scenario="s", vu_id=1, tags={"endpoint": "home"}
    )
    assert sample.tags == {"endpoint": "home", "scenario": "s"}
    assert collector.samples(HTTP_REQ_DURATION) == [sample]


def test_record_check_also_records_rate_sample(collector: MetricsCollector) -> None:
    collector.record_check("ok", True, scenario="s", vu_id=1, iteration=0, group="g")
    collector.record_check("ok", False, scenario="s", vu_id=1, iteration=1)

    checks = collector.checks("s")
    assert [c.passed for c in checks] == [True, False]
    samples = collector.samples(CHECKS)
    assert [s.value for s in samples] == [1.0, 0.0]
    assert samples[0].tags == {"scenario": "s", "check": "ok", "group": "g"}
    assert "group" not in samples[1].tags


def test_tag_filtering(collector: MetricsCollector) -> None:
    collector.record_metric(HTTP_REQ_DURATION, 1, scenario="a", tags={"endpoint": "x"})
    collector.record_metric(HTTP_REQ_DURATION, 2, scenario="a", tags={"endpoint": "y"})
    collector.record_metric(HTTP_REQ_DURATION, 3, scenario="b", tags={"endpoint": "x"})

    assert len(collector.samples(HTTP_REQ_DURATION)) == 3
    assert sorted(s.value for s in collector.samples(HTTP_REQ_DURATION, {"endpoint": "x"})) == [1, 3]
    assert [s.value for s in collector.samples(HTTP_REQ_DURATION, {"scenario": "a", "endpoint": "y"})] == [2]
    assert collector.samples("missing") == []


def test_checks_filtered_by_scenario(collector: MetricsCollector) -> None:
    collector.record_check("c", True, scenario="a", vu_id=1, iteration=0)
    collector.record_check("c", True, scenario="b", vu_id=2, iteration=0)
    assert len(collector.checks()) == 2
    assert len(collector.checks("a")) == 1


@pytest.mark.asyncio
async def test_concurrent_vus_lose_nothing_and_keep_order() -> None:
    collector = MetricsCollector()
    collector.start()
    vus, per_vu = 50, 200

    async def vu(vu_id: int) -> None:
        for i in range(per_vu):
            collector.record_metric("seq", i, scenario="s", vu_id=vu_id)
            if i % 10 == 0:
                await asyncio.sleep(0)

    await asyncio.gather(*(vu(v) for v in range(1, vus + 1)))

    assert len(collector.samples("seq")) == vus * per_vu
    for v in range(1, vus + 1):
        assert [s.value for s in collector.samples_for_vu("s", v)] == list(range(per_vu))


def test_threaded_writers_lose_nothing() -> None:
    collector = MetricsCollector()
    threads, per_thread = 8, 500

    def writer(vu_id: int) -> None:
        for i in range(per_thread):
            collector.record_metric("seq", i, scenario="s", vu_id=vu_id)

    workers = [threading.Thread(target=writer, args=(v,)) for v in range(1, threads + 1)]
    for t in workers:
        t.start()
    for t in workers:
        t.join()

    assert len(collector.samples("seq")) == threads * per_thread


class TestPercentiles:
    def test_percentile_interpolates(self) -> None:
        values = [float(v) for v in range(1, 101)]
        assert percentile(values, 0.50) == pytest.approx(50.5)
        assert percentile(values, 0.95) == pytest.approx(95.05)
        assert percentile(values, 1.0) == 100.0
        assert percentile(values, 0.0) == 1.0

    def test_percentile_empty(self) -> None:
        assert percentile([], 0.9) == 0.0

    def test_calculate_percentiles_unsorted_input(self) -> None:
        values = [float(v) for v in range(1, 101)]
        random.Random(7).shuffle(values)
        stats = calculate_percentiles(values)
        assert stats.min == 1.0
        assert stats.max == 100.0
        assert stats.avg == pytest.approx(50.5)
        assert stats.p50 == pytest.approx(50.5)
        assert stats.p90 == pytest.approx(90.1)


def test_summaries(collector: MetricsCollector) -> None:
    for v in (10, 20, 30, 40):
        collector.record_metric(HTTP_REQ_DURATION, v, scenario="s")
    for passed in (True, True, True, False):
        collector.record_check("status is 200", passed, scenario="s", vu_id=1, iteration=0)

    summary = collector.summarize_metric(HTTP_REQ_DURATION)
    assert summary.count == 4
    assert summary.total == 100
    assert summary.trend.avg == 25

    checks_summary = collector.summarize_metric(CHECKS)
    assert checks_summary.rate == pytest.approx(0.75)

    (check,) = collector.summarize_checks()
    assert (check.name, check.passes, check.fails) == ("status is 200", 3, 1)
    assert check.rate == pytest.approx(0.75)

    assert set(collector.get_summary()) == {HTTP_REQ_DURATION, CHECKS}


def test_elapsed_seconds() -> None:
    collector = MetricsCollector()
    assert collector.elapsed_seconds == 0.0
    collector.start()
    collector.stop()
    assert collector.elapsed_seconds >= 0.0
