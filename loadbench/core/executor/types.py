"""
Type definitions and dataclasses for scenario execution.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class VUState(str, Enum):
    """Lifecycle of a virtual user."""

    SPAWNED = "spawned"
    RUNNING = "running"
    IDLE = "idle"
    RETIRING = "retiring"
    TERMINATED = "terminated"


class ScenarioState(str, Enum):
    """Lifecycle of a scenario."""

    PENDING = "pending"
    ACTIVE = "active"
    DRAINING = "draining"
    TERMINATED = "terminated"


class IterationStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    INTERRUPTED = "interrupted"


@dataclass
class VirtualUser:
    """One concurrent worker executing a scenario's iterations."""

    vu_id: int
    index: int
    scenario: str
    iterations: int = 0
    state: VUState = VUState.SPAWNED


@dataclass(frozen=True, slots=True)
class IterationResult:
    """Outcome of one iteration; inspected by the VU loop, never raised."""

    scenario: str
    vu_id: int
    iteration: int
    status: IterationStatus
    duration_ms: float
    failed_checks: int = 0
    error: Optional[str] = None
    error_code: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == IterationStatus.SUCCEEDED


@dataclass
class ScenarioStats:
    """Counters kept by an executor for the end-of-run report."""

    started: int = 0
    succeeded: int = 0
    failed: int = 0
    interrupted: int = 0
    dropped: int = 0
    peak_vus: int = 0

    def record(self, result: IterationResult) -> None:
        if result.status == IterationStatus.SUCCEEDED:
            self.succeeded += 1
        elif result.status == IterationStatus.FAILED:
            self.failed += 1
        else:
            self.interrupted += 1
