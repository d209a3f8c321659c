"""
Scenario execution: VU pools, executor policies and iteration running.
"""

from loadbench.core.executor.types import (
    IterationResult,
    IterationStatus,
    ScenarioState,
    ScenarioStats,
    VirtualUser,
    VUState,
)
from loadbench.core.executor.iteration import (
    IterationContext,
    ProtocolResources,
    execute_iteration,
)
from loadbench.core.executor.workers import (
    ConstantArrivalRateExecutor,
    PerVUIterationsExecutor,
    ScenarioExecutor,
    SharedIterationsExecutor,
    VUPool,
    create_executor,
)

__all__ = [
    "IterationResult",
    "IterationStatus",
    "ScenarioState",
    "ScenarioStats",
    "VirtualUser",
    "VUState",
    "IterationContext",
    "ProtocolResources",
    "execute_iteration",
    "ConstantArrivalRateExecutor",
    "PerVUIterationsExecutor",
    "ScenarioExecutor",
    "SharedIterationsExecutor",
    "VUPool",
    "create_executor",
]
