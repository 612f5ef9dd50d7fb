"""
cohortbench - Cohort state-transition projection and execution strategy benchmarks.
"""

from .errors import (
    DimensionMismatch,
    NotRowStochastic,
    TransitionIndexError,
    StrategyExecutionError,
    RunCancelled,
    MassDriftWarning,
)

from .cohort import (
    make_state_vector,
    ScenarioId,
    Scenario,
    Trajectory,
)

from .transition import (
    TransitionModel,
    ArrayTransitionModel,
    CallableTransitionModel,
    validate_transition_matrix,
)

from .projector import (
    CohortProjector,
    advance_one_cycle,
    advance_one_cycle_loop,
)

from .strategies import (
    ProjectionTask,
    CancelToken,
    ExecutionStrategy,
    Sequential,
    ThreadedMap,
    ProcessParallel,
    VectorizedBatch,
    NativeLoopOffload,
    STRATEGIES,
    get_strategy,
)

from .runner import (
    ExperimentResult,
    ExperimentRunner,
)

from .benchmark import (
    default_strategies,
    time_strategy,
    compare_strategies,
    run_benchmark,
    run_scenario_benchmark,
    print_benchmark_table,
)

from .config import BenchmarkConfig

__all__ = [
    # Errors
    "DimensionMismatch",
    "NotRowStochastic",
    "TransitionIndexError",
    "StrategyExecutionError",
    "RunCancelled",
    "MassDriftWarning",
    # Cohort
    "make_state_vector",
    "ScenarioId",
    "Scenario",
    "Trajectory",
    # Transition models
    "TransitionModel",
    "ArrayTransitionModel",
    "CallableTransitionModel",
    "validate_transition_matrix",
    # Projection
    "CohortProjector",
    "advance_one_cycle",
    "advance_one_cycle_loop",
    # Strategies
    "ProjectionTask",
    "CancelToken",
    "ExecutionStrategy",
    "Sequential",
    "ThreadedMap",
    "ProcessParallel",
    "VectorizedBatch",
    "NativeLoopOffload",
    "STRATEGIES",
    "get_strategy",
    # Runner
    "ExperimentResult",
    "ExperimentRunner",
    # Benchmark
    "default_strategies",
    "time_strategy",
    "compare_strategies",
    "run_benchmark",
    "run_scenario_benchmark",
    "print_benchmark_table",
    "BenchmarkConfig",
]
