"""
End-of-run summary: checks, metric statistics and the threshold breakdown.
"""

import logging
from typing import List

from loadbench.core.orchestrator import RunResult
from loadbench.models.metrics import (
    BROWSER_NAVIGATION_DURATION,
    CHECKS,
    DROPPED_ITERATIONS,
    GROUP_DURATION,
    HTTP_REQ_DURATION,
    HTTP_REQ_FAILED,
    HTTP_REQS,
    ITERATION_DURATION,
    ITERATIONS,
    VUS,
)

logger = logging.getLogger(__name__)

_TRENDS = {HTTP_REQ_DURATION, ITERATION_DURATION, GROUP_DURATION, BROWSER_NAVIGATION_DURATION}
_RATES = {CHECKS, HTTP_REQ_FAILED}
_COUNTERS = {HTTP_REQS, ITERATIONS, DROPPED_ITERATIONS}

_LABEL_WIDTH = 32


def _label(name: str) -> str:
    return f"{name} ".ljust(_LABEL_WIDTH, ".") + ":"


def _detail_lines(result: RunResult) -> List[str]:
    collector = result.collector
    lines: List[str] = []

    checks = collector.summarize_checks()
    if checks:
        lines.append("Checks:")
        for check in checks:
            mark = "✓" if check.fails == 0 else "✗"
            lines.append(f"  {mark} {check.name}")
            if check.fails:
                lines.append(
                    f"    ↳ {check.rate * 100:.0f}% ✓ {check.passes} / ✗ {check.fails}"
                )
        lines.append("")

    lines.append("Metrics:")
    for name, summary in collector.get_summary().items():
        if name in _RATES:
            passes = round(summary.rate * summary.count)
            lines.append(
                f"  {_label(name)} {summary.rate * 100:.2f}% "
                f"✓ {passes} ✗ {summary.count - passes}"
            )
        elif name in _COUNTERS:
            per_second = summary.total / collector.elapsed_seconds if collector.elapsed_seconds else 0.0
            lines.append(f"  {_label(name)} {summary.total:g} {per_second:.2f}/s")
        elif name == VUS:
            lines.append(f"  {_label('vus_max')} {summary.trend.max:g}")
        else:
            t = summary.trend
            unit = "ms" if name in _TRENDS else ""
            lines.append(
                f"  {_label(name)} avg={t.avg:.2f}{unit} min={t.min:.2f}{unit} "
                f"med={t.p50:.2f}{unit} max={t.max:.2f}{unit} "
                f"p(90)={t.p90:.2f}{unit} p(95)={t.p95:.2f}{unit}"
            )
    lines.append("")

    lines.append("Scenarios:")
    for report in result.scenarios.values():
        s = report.stats
        forced = " (forced stop)" if report.forced_cancel else ""
        lines.append(
            f"  {report.name}: {report.state.value}{forced}; "
            f"{s.started} started, {s.succeeded} ok, {s.failed} failed, "
            f"{s.interrupted} interrupted, {s.dropped} dropped, {s.peak_vus} peak VUs"
        )
    lines.append("")
    return lines


def _verdict_lines(result: RunResult) -> List[str]:
    lines = ["Thresholds:"]
    if not result.verdict.rules:
        lines.append("  (none)")
    for rule_result in result.verdict.rules:
        mark = "✓" if rule_result.passed else "✗"
        if rule_result.observed is None:
            observed = "no samples"
        else:
            observed = f"observed {rule_result.observed:.4g}"
        lines.append(f"  {mark} {rule_result.label} ({observed})")
    lines.append("")
    lines.append(f"Result: {'PASS' if result.passed else 'FAIL'}")
    return lines


def format_summary(result: RunResult) -> str:
    """Render the run summary as plain text."""
    return "\n".join(_detail_lines(result) + _verdict_lines(result))


def log_summary(result: RunResult) -> None:
    """
    Log the summary line by line.

    Checks, metrics and scenarios go out at INFO. The threshold breakdown and
    result go out at WARNING (ERROR on failure), raised to the logger's
    effective level so no configured level filters them out.
    """
    for line in _detail_lines(result):
        logger.info("%s", line)
    level = logging.WARNING if result.passed else logging.ERROR
    level = max(level, logger.getEffectiveLevel())
    for line in _verdict_lines(result):
        logger.log(level, "%s", line)
