"""
Data models for loadbench.

This package contains:
- Scenario and run plan configuration (Pydantic)
- Threshold rules and run verdicts (Pydantic)
- Metric samples, check results and summaries
"""

from loadbench.models.thresholds import (
    Aggregation,
    Comparator,
    ThresholdRule,
    RuleResult,
    RunVerdict,
)

from loadbench.models.scenario import (
    ExecutorType,
    ScenarioBody,
    ScenarioConfig,
    RunPlan,
    parse_duration,
)

from loadbench.models.metrics import (
    MetricSample,
    CheckResult,
    LatencyPercentiles,
    MetricSummary,
    CheckSummary,
)

__all__ = [
    # thresholds
    "Aggregation",
    "Comparator",
    "ThresholdRule",
    "RuleResult",
    "RunVerdict",
    # scenario
    "ExecutorType",
    "ScenarioBody",
    "ScenarioConfig",
    "RunPlan",
    "parse_duration",
    # metrics
    "MetricSample",
    "CheckResult",
    "LatencyPercentiles",
    "MetricSummary",
    "CheckSummary",
]
