"""
Metrics Collector

Append-only sink for checks and metric samples, with percentile and rate
aggregation at evaluation time.
"""

import logging
import threading
from collections import defaultdict
from datetime import UTC, datetime
from typing import Dict, Iterator, List, Mapping, Optional

from loadbench.models import (
    CheckResult,
    CheckSummary,
    LatencyPercentiles,
    MetricSample,
    MetricSummary,
)
from loadbench.models.metrics import CHECKS

logger = logging.getLogger(__name__)

ShardKey = tuple[str, int]

# Shard used by scenario-level producers (timers, pool managers) rather than VUs.
CONTROL_VU_ID = 0


def percentile(sorted_values: List[float], p: float) -> float:
    """
    Calculate the p-th percentile (0.0 to 1.0) by linear interpolation.

    ``sorted_values`` must already be sorted ascending.
    """
    n = len(sorted_values)
    if n == 0:
        return 0.0

    k = (n - 1) * p
    f = int(k)
    c = k - f

    if f + 1 < n:
        return sorted_values[f] * (1 - c) + sorted_values[f + 1] * c
    return sorted_values[f]


def calculate_percentiles(values: List[float]) -> LatencyPercentiles:
    """Calculate trend statistics from a list of values."""
    if not values:
        return LatencyPercentiles()

    ordered = sorted(values)
    return LatencyPercentiles(
        p50=percentile(ordered, 0.50),
        p90=percentile(ordered, 0.90),
        p95=percentile(ordered, 0.95),
        p99=percentile(ordered, 0.99),
        min=ordered[0],
        max=ordered[-1],
        avg=sum(ordered) / len(ordered),
    )


class SampleShard:
    """
    Samples produced by one VU of one scenario.

    A shard has a single writer (its VU runs iterations sequentially), so
    appends need no lock and keep the VU's production order.
    """

    __slots__ = ("key", "checks", "samples")

    def __init__(self, key: ShardKey):
        self.key = key
        self.checks: List[CheckResult] = []
        self.samples: List[MetricSample] = []


class MetricsCollector:
    """
    Collects checks and metric samples from many concurrent VUs.

    Features:
    - One shard per (scenario, VU): writers never contend with each other
    - Per-VU ordering preserved; no ordering promised across VUs
    - Shards merged on read for summaries and threshold evaluation
    """

    def __init__(self):
        self._shards: Dict[ShardKey, SampleShard] = {}
        self._shards_lock = threading.Lock()
        self.start_time: Optional[datetime] = None
        self.end_time: Optional[datetime] = None

    def start(self) -> None:
        """Mark the start of collection."""
        self.start_time = datetime.now(UTC)
        logger.debug("Metrics collection started")

    def stop(self) -> None:
        self.end_time = datetime.now(UTC)

    @property
    def elapsed_seconds(self) -> float:
        if self.start_time is None:
            return 0.0
        end = self.end_time or datetime.now(UTC)
        return (end - self.start_time).total_seconds()

    def shard(self, scenario: str, vu_id: int) -> SampleShard:
        """Return the shard for a VU, creating it on first use."""
        key = (scenario, vu_id)
        shard = self._shards.get(key)
        if shard is not None:
            return shard
        with self._shards_lock:
            shard = self._shards.get(key)
            if shard is None:
                shard = SampleShard(key)
                self._shards[key] = shard
        return shard

    def record_check(
        self,
        name: str,
        passed: bool,
        *,
        scenario: str,
        vu_id: int,
        iteration: int,
        group: Optional[str] = None,
        tags: Optional[Mapping[str, str]] = None,
    ) -> CheckResult:
        """
        Record a named boolean assertion.

        Also records a ``checks`` rate sample so thresholds can aggregate it.
        """
        result = CheckResult(
            name=name,
            passed=bool(passed),
            scenario=scenario,
            vu_id=vu_id,
            iteration=iteration,
            group=group,
        )
        shard = self.shard(scenario, vu_id)
        shard.checks.append(result)
        sample_tags = dict(tags or {})
        sample_tags.setdefault("scenario", scenario)
        sample_tags["check"] = name
        if group:
            sample_tags["group"] = group
        shard.samples.append(
            MetricSample(
                name=CHECKS,
                value=1.0 if result.passed else 0.0,
                tags=sample_tags,
                timestamp=result.timestamp,
            )
        )
        return result

    def record_metric(
        self,
        name: str,
        value: float,
        *,
        scenario: str,
        vu_id: int = CONTROL_VU_ID,
        tags: Optional[Mapping[str, str]] = None,
    ) -> MetricSample:
        """Record a numeric sample."""
        sample_tags = dict(tags or {})
        sample_tags.setdefault("scenario", scenario)
        sample = MetricSample(name=name, value=float(value), tags=sample_tags)
        self.shard(scenario, vu_id).samples.append(sample)
        return sample

    def _snapshot_shards(self) -> List[SampleShard]:
        with self._shards_lock:
            return list(self._shards.values())

    def iter_samples(
        self, name: Optional[str] = None, tags: Optional[Mapping[str, str]] = None
    ) -> Iterator[MetricSample]:
        """Iterate merged samples, optionally filtered by name and tags."""
        for shard in self._snapshot_shards():
            for sample in list(shard.samples):
                if name is not None and sample.name != name:
                    continue
                if tags and not sample.matches(tags):
                    continue
                yield sample

    def samples(
        self, name: Optional[str] = None, tags: Optional[Mapping[str, str]] = None
    ) -> List[MetricSample]:
        return list(self.iter_samples(name, tags))

    def checks(self, scenario: Optional[str] = None) -> List[CheckResult]:
        out: List[CheckResult] = []
        for shard in self._snapshot_shards():
            if scenario is not None and shard.key[0] != scenario:
                continue
            out.extend(shard.checks)
        return out

    def samples_for_vu(self, scenario: str, vu_id: int) -> List[MetricSample]:
        """Samples of one VU in production order."""
        shard = self._shards.get((scenario, vu_id))
        if shard is None:
            return []
        return list(shard.samples)

    def metric_names(self) -> List[str]:
        names = {s.name for s in self.iter_samples()}
        return sorted(names)

    def summarize_metric(
        self, name: str, tags: Optional[Mapping[str, str]] = None
    ) -> MetricSummary:
        values = [s.value for s in self.iter_samples(name, tags)]
        count = len(values)
        nonzero = sum(1 for v in values if v != 0)
        return MetricSummary(
            name=name,
            count=count,
            total=float(sum(values)),
            rate=(nonzero / count) if count else 0.0,
            trend=calculate_percentiles(values),
        )

    def summarize_checks(self) -> List[CheckSummary]:
        """Per-check pass/fail counts, grouped by check name and group."""
        by_name: Dict[tuple[Optional[str], str], CheckSummary] = {}
        counts: Dict[tuple[Optional[str], str], List[int]] = defaultdict(lambda: [0, 0])
        for check in self.checks():
            key = (check.group, check.name)
            counts[key][0 if check.passed else 1] += 1
        for (group, name), (passes, fails) in sorted(
            counts.items(), key=lambda kv: (kv[0][0] or "", kv[0][1])
        ):
            label = f"{group} :: {name}" if group else name
            by_name[(group, name)] = CheckSummary(name=label, passes=passes, fails=fails)
        return list(by_name.values())

    def get_summary(self) -> Dict[str, MetricSummary]:
        """Summary for every recorded metric."""
        return {name: self.summarize_metric(name) for name in self.metric_names()}
