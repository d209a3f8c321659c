"""
Threshold parsing and evaluation.

Thresholds are written the way k6 writes them::

    {
        "http_req_duration": ["p(90)<3000", "p(95)<4000"],
        "http_req_duration{endpoint:sample-page}": ["avg<500"],
        "checks": ["rate>0.95"],
    }

Each expression becomes one ``ThresholdRule``. Rules are evaluated once, after
every scenario has terminated, over the merged contents of the collector.
"""

import logging
import re
from typing import Iterable, List, Mapping, Optional, Sequence, Union

from loadbench.core.metrics_collector import MetricsCollector, percentile
from loadbench.errors import ConfigurationError
from loadbench.models import (
    Aggregation,
    Comparator,
    RuleResult,
    RunVerdict,
    ThresholdRule,
)

logger = logging.getLogger(__name__)

_SELECTOR_RE = re.compile(r"^\s*([A-Za-z_][\w.]*)\s*(?:\{([^{}]*)\})?\s*$")
_EXPRESSION_RE = re.compile(
    r"^\s*(rate|avg|min|max|med|count|p\(\s*(\d+(?:\.\d+)?)\s*\))"
    r"\s*(<=|>=|==|!=|<|>)\s*"
    r"(-?\d+(?:\.\d+)?(?:[eE][-+]?\d+)?)\s*$"
)

DEFAULT_THRESHOLDS: Mapping[str, Sequence[str]] = {
    "http_req_duration": ["p(90)<3000", "p(95)<4000"],
    "http_req_failed": ["rate<0.01"],
    "checks": ["rate>0.95"],
}


def parse_selector(selector: str) -> tuple[str, dict[str, str]]:
    """Split ``metric{k:v,...}`` into the metric name and its tag filter."""
    m = _SELECTOR_RE.match(selector or "")
    if not m:
        raise ConfigurationError(f"Invalid threshold metric: {selector!r}")
    name, inner = m.group(1), m.group(2)
    tags: dict[str, str] = {}
    if inner is not None and inner.strip():
        for part in inner.split(","):
            key, sep, value = part.partition(":")
            key, value = key.strip(), value.strip()
            if not sep or not key:
                raise ConfigurationError(
                    f"Invalid tag filter {part.strip()!r} in {selector!r}"
                )
            tags[key] = value
    return name, tags


def parse_threshold(selector: str, expression: str) -> ThresholdRule:
    """
    Parse one threshold expression for ``selector``.

    Raises:
        ConfigurationError: If the selector or expression is malformed.
    """
    metric, tags = parse_selector(selector)
    m = _EXPRESSION_RE.match(expression or "")
    if not m:
        raise ConfigurationError(
            f"Invalid threshold expression for {selector!r}: {expression!r}"
        )
    agg_text, pct_text, op_text, limit_text = m.groups()
    if pct_text is not None:
        aggregation = Aggregation.PERCENTILE
        pct: Optional[float] = float(pct_text)
        if not 0 < pct <= 100:
            raise ConfigurationError(
                f"Percentile out of range in {expression!r}: {pct_text}"
            )
    else:
        aggregation = Aggregation(agg_text)
        pct = None
    return ThresholdRule(
        metric=metric,
        tags=tags,
        aggregation=aggregation,
        percentile=pct,
        comparator=Comparator(op_text),
        limit=float(limit_text),
        expression=re.sub(r"\s+", "", expression),
    )


def parse_thresholds(
    thresholds: Mapping[str, Union[str, Iterable[str]]],
) -> List[ThresholdRule]:
    """Parse a ``{selector: [expression, ...]}`` mapping into rules."""
    rules: List[ThresholdRule] = []
    for selector, expressions in thresholds.items():
        if isinstance(expressions, str):
            expressions = [expressions]
        for expression in expressions:
            rules.append(parse_threshold(selector, expression))
    return rules


def aggregate(values: Sequence[float], rule: ThresholdRule) -> float:
    """
    Reduce samples with the rule's aggregation.

    ``count`` sums the samples, so for counter metrics recorded as 1 per
    event it is the number of events.
    """
    agg = rule.aggregation
    if agg == Aggregation.RATE:
        return sum(1 for v in values if v != 0) / len(values)
    if agg == Aggregation.COUNT:
        return float(sum(values))
    if agg == Aggregation.AVG:
        return sum(values) / len(values)
    if agg == Aggregation.MIN:
        return min(values)
    if agg == Aggregation.MAX:
        return max(values)
    ordered = sorted(values)
    if agg == Aggregation.MED:
        return percentile(ordered, 0.50)
    return percentile(ordered, (rule.percentile or 0.0) / 100.0)


class ThresholdEvaluator:
    """Evaluates threshold rules against a collector after the run."""

    def __init__(self, rules: Iterable[ThresholdRule]):
        self.rules = list(rules)

    def evaluate_rule(self, rule: ThresholdRule, collector: MetricsCollector) -> RuleResult:
        values = [s.value for s in collector.iter_samples(rule.metric, rule.tags)]
        if not values:
            logger.info("Threshold %s: no samples recorded; not evaluated", rule.label)
            return RuleResult(rule=rule, observed=None, sample_count=0, passed=True)
        observed = aggregate(values, rule)
        passed = rule.comparator.compare(observed, rule.limit)
        log = logger.info if passed else logger.warning
        log(
            "Threshold %s: observed %.4g over %d sample(s) -> %s",
            rule.label,
            observed,
            len(values),
            "pass" if passed else "FAIL",
        )
        return RuleResult(
            rule=rule, observed=observed, sample_count=len(values), passed=passed
        )

    def evaluate(self, collector: MetricsCollector) -> RunVerdict:
        """Evaluate every rule; the run passes only if all rules pass."""
        results = [self.evaluate_rule(rule, collector) for rule in self.rules]
        return RunVerdict(passed=all(r.passed for r in results), rules=results)
