"""
Threshold Models

Pass/fail rules over aggregated metrics and the run verdict they produce.
"""

import operator
from enum import Enum
from typing import Callable, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class Aggregation(str, Enum):
    """How samples of one metric are reduced to a single number."""

    RATE = "rate"
    PERCENTILE = "percentile"
    AVG = "avg"
    MIN = "min"
    MAX = "max"
    MED = "med"
    COUNT = "count"


class Comparator(str, Enum):
    """Comparison between the aggregated value and the rule's limit."""

    LT = "<"
    LE = "<="
    GT = ">"
    GE = ">="
    EQ = "=="
    NE = "!="

    def compare(self, observed: float, limit: float) -> bool:
        return _COMPARATORS[self](observed, limit)


_COMPARATORS: dict[Comparator, Callable[[float, float], bool]] = {
    Comparator.LT: operator.lt,
    Comparator.LE: operator.le,
    Comparator.GT: operator.gt,
    Comparator.GE: operator.ge,
    Comparator.EQ: operator.eq,
    Comparator.NE: operator.ne,
}


class ThresholdRule(BaseModel):
    """
    One threshold: ``<aggregation> <comparator> <limit>`` over a metric.

    ``tags`` narrows the rule to samples carrying all of the given tag values
    (a sub-metric such as ``http_req_duration{endpoint:sample-page}``).
    """

    model_config = ConfigDict(frozen=True)

    metric: str = Field(..., min_length=1, description="Target metric name")
    tags: dict[str, str] = Field(default_factory=dict, description="Tag filter")
    aggregation: Aggregation = Field(..., description="Aggregation method")
    percentile: Optional[float] = Field(
        None, gt=0, le=100, description="Percentile for PERCENTILE aggregation"
    )
    comparator: Comparator = Field(..., description="Comparator")
    limit: float = Field(..., description="Numeric limit")
    expression: str = Field("", description="Source expression, for reporting")

    @model_validator(mode="after")
    def validate_percentile(self):
        if self.aggregation == Aggregation.PERCENTILE and self.percentile is None:
            raise ValueError("percentile aggregation requires a percentile value")
        return self

    @property
    def selector(self) -> str:
        if not self.tags:
            return self.metric
        inner = ",".join(f"{k}:{v}" for k, v in sorted(self.tags.items()))
        return f"{self.metric}{{{inner}}}"

    @property
    def label(self) -> str:
        expr = self.expression
        if not expr:
            if self.aggregation == Aggregation.PERCENTILE:
                agg = f"p({self.percentile:g})"
            else:
                agg = self.aggregation.value
            expr = f"{agg}{self.comparator.value}{self.limit:g}"
        return f"{self.selector}: {expr}"


class RuleResult(BaseModel):
    """Outcome of one threshold rule."""

    rule: ThresholdRule
    observed: Optional[float] = Field(
        None, description="Aggregated value (None when no samples matched)"
    )
    sample_count: int = Field(0, ge=0, description="Samples aggregated")
    passed: bool

    @property
    def label(self) -> str:
        return self.rule.label


class RunVerdict(BaseModel):
    """Overall pass/fail plus per-rule detail."""

    passed: bool
    rules: list[RuleResult] = Field(default_factory=list)

    @property
    def failed_rules(self) -> list[RuleResult]:
        return [r for r in self.rules if not r.passed]

    @property
    def exit_code(self) -> int:
        return 0 if self.passed else 1
