"""
Scenario Configuration Models

Defines Pydantic models for the run configuration:
- Executor policies (per-vu-iterations, constant-arrival-rate, shared-iterations)
- Scenario definitions (concurrency bounds, workload size, timing)
- The finalized, immutable test plan handed to the orchestrator
"""

import re
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from loadbench.models.thresholds import ThresholdRule

ScenarioBody = Callable[..., Awaitable[Any]]

_DURATION_PART_RE = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h)")
_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_duration(value: Any) -> float:
    """
    Parse a duration into seconds.

    Accepts plain numbers (seconds) or k6-style strings such as ``"500ms"``,
    ``"20s"``, ``"2m"`` or ``"1h30m"``.
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        seconds = float(value)
    else:
        text = str(value or "").strip().lower()
        if not text:
            raise ValueError("Duration must not be empty")
        try:
            seconds = float(text)
        except ValueError:
            pos = 0
            seconds = 0.0
            for match in _DURATION_PART_RE.finditer(text):
                if match.start() != pos:
                    break
                seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
                pos = match.end()
            if pos != len(text):
                raise ValueError(f"Invalid duration: {value!r}") from None
    if seconds < 0:
        raise ValueError(f"Duration must be >= 0: {value!r}")
    return seconds


class ExecutorType(str, Enum):
    """Scheduling policies governing how iterations are started."""

    PER_VU_ITERATIONS = "per-vu-iterations"
    CONSTANT_ARRIVAL_RATE = "constant-arrival-rate"
    SHARED_ITERATIONS = "shared-iterations"


class ScenarioConfig(BaseModel):
    """
    Configuration for one named scenario.

    Fields that do not apply to the chosen executor are ignored by it:
    ``vus``/``iterations`` drive the iteration-count executors, while
    ``rate``/``time_unit``/``duration``/``pre_allocated_vus``/``max_vus``
    drive constant-arrival-rate.
    """

    model_config = ConfigDict(frozen=True, use_enum_values=False)

    name: str = Field(..., min_length=1, description="Scenario name")
    executor: ExecutorType = Field(..., description="Executor policy")
    exec_fn: ScenarioBody = Field(..., exclude=True, description="Scenario body")

    # Iteration-count executors
    vus: int = Field(1, ge=0, description="Fixed VU count / shared pool size")
    iterations: int = Field(1, ge=0, description="Iterations per VU or shared total")
    max_duration: float = Field(
        600.0, ge=0, description="Hard cap on the active phase (seconds)"
    )

    # constant-arrival-rate
    rate: float = Field(0.0, ge=0, description="Iterations started per time_unit")
    time_unit: float = Field(1.0, gt=0, description="Rate time unit (seconds)")
    duration: float = Field(0.0, ge=0, description="Active phase length (seconds)")
    pre_allocated_vus: int = Field(0, ge=0, description="VUs created up front")
    max_vus: Optional[int] = Field(
        None, ge=0, description="Growth cap (defaults to pre_allocated_vus)"
    )

    # Timing
    start_time: float = Field(0.0, ge=0, description="Offset from run start (seconds)")
    graceful_stop: float = Field(
        30.0, ge=0, description="Time allowed for in-flight iterations to finish"
    )

    # Per-scenario options
    browser_type: Optional[str] = Field(
        None, description="Browser engine needed by the body (e.g. 'chromium')"
    )
    tags: dict[str, str] = Field(default_factory=dict, description="Extra metric tags")

    @field_validator(
        "max_duration", "time_unit", "duration", "start_time", "graceful_stop",
        mode="before",
    )
    @classmethod
    def _parse_durations(cls, v):
        return parse_duration(v)

    @model_validator(mode="after")
    def validate_executor_requirements(self):
        """Validate executor-specific requirements."""
        if self.executor == ExecutorType.CONSTANT_ARRIVAL_RATE:
            if self.rate <= 0:
                raise ValueError("constant-arrival-rate requires rate > 0")
            if self.duration <= 0:
                raise ValueError("constant-arrival-rate requires duration > 0")
            if self.max_vus is not None and self.max_vus < self.pre_allocated_vus:
                raise ValueError("max_vus must be >= pre_allocated_vus")
            if max(self.pre_allocated_vus, self.max_vus or 0) == 0:
                raise ValueError(
                    "constant-arrival-rate requires pre_allocated_vus or max_vus > 0"
                )
        return self

    @property
    def vu_cap(self) -> int:
        """Maximum number of live VUs this scenario may hold."""
        if self.executor == ExecutorType.CONSTANT_ARRIVAL_RATE:
            if self.max_vus is None:
                return self.pre_allocated_vus
            return self.max_vus
        if self.executor == ExecutorType.SHARED_ITERATIONS:
            return min(self.vus, self.iterations)
        if self.iterations == 0:
            return 0
        return self.vus

    @property
    def active_window(self) -> float:
        """Seconds the scenario may stay active before draining."""
        if self.executor == ExecutorType.CONSTANT_ARRIVAL_RATE:
            return self.duration
        return self.max_duration

    @property
    def is_empty(self) -> bool:
        """True when the scenario can never start an iteration."""
        return self.vu_cap == 0


class RunPlan(BaseModel):
    """
    The finalized set of scenarios and thresholds for one run.

    Built once before the orchestrator starts; never mutated afterwards.
    """

    model_config = ConfigDict(frozen=True)

    scenarios: tuple[ScenarioConfig, ...] = Field(..., description="Scenarios")
    thresholds: tuple[ThresholdRule, ...] = Field(
        default_factory=tuple, description="Threshold rules"
    )

    @model_validator(mode="after")
    def validate_unique_names(self):
        """Scenario names key metric tags, so they must be unique."""
        names = [s.name for s in self.scenarios]
        dupes = sorted({n for n in names if names.count(n) > 1})
        if dupes:
            raise ValueError(f"Duplicate scenario names: {', '.join(dupes)}")
        return self

    @property
    def needs_browser(self) -> bool:
        return any(s.browser_type and not s.is_empty for s in self.scenarios)
