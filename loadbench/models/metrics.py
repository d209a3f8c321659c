"""
Metrics Models

Samples recorded by iterations and the summary statistics derived from them.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Mapping, Optional

from pydantic import BaseModel, Field

# Built-in metric names.
HTTP_REQS = "http_reqs"
HTTP_REQ_DURATION = "http_req_duration"
HTTP_REQ_FAILED = "http_req_failed"
CHECKS = "checks"
ITERATIONS = "iterations"
ITERATION_DURATION = "iteration_duration"
DROPPED_ITERATIONS = "dropped_iterations"
GROUP_DURATION = "group_duration"
BROWSER_NAVIGATION_DURATION = "browser_navigation_duration"
VUS = "vus"


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True, slots=True)
class MetricSample:
    """A single numeric observation for a named metric."""

    name: str
    value: float
    tags: Mapping[str, str] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=_utcnow)

    def matches(self, tags: Mapping[str, str]) -> bool:
        """True if every requested tag is present with the same value."""
        return all(self.tags.get(k) == v for k, v in tags.items())


@dataclass(frozen=True, slots=True)
class CheckResult:
    """A named boolean assertion recorded during an iteration."""

    name: str
    passed: bool
    scenario: str
    vu_id: int
    iteration: int
    group: Optional[str] = None
    timestamp: datetime = field(default_factory=_utcnow)


class LatencyPercentiles(BaseModel):
    """Trend statistics (in milliseconds for timing metrics)."""

    p50: float = Field(0.0, description="50th percentile (median)")
    p90: float = Field(0.0, description="90th percentile")
    p95: float = Field(0.0, description="95th percentile")
    p99: float = Field(0.0, description="99th percentile")
    min: float = Field(0.0, description="Minimum")
    max: float = Field(0.0, description="Maximum")
    avg: float = Field(0.0, description="Average")


class MetricSummary(BaseModel):
    """Aggregate view of one metric at the end of a run."""

    name: str
    count: int = Field(0, description="Number of samples")
    total: float = Field(0.0, description="Sum of sample values")
    rate: float = Field(0.0, description="Share of non-zero samples (0.0-1.0)")
    trend: LatencyPercentiles = Field(default_factory=LatencyPercentiles)


class CheckSummary(BaseModel):
    """Pass/fail counts for one named check."""

    name: str
    passes: int = 0
    fails: int = 0

    @property
    def rate(self) -> float:
        total = self.passes + self.fails
        if total == 0:
            return 0.0
        return self.passes / total
