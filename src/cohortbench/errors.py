"""
Exception types for cohort projection.

All exceptions keep their constructor arguments in ``args`` so they survive
pickling across the process boundary used by parallel strategies.
"""

from typing import Any, Optional


class DimensionMismatch(ValueError):
    """Initial state and transition matrix sizes disagree."""
    pass


class NotRowStochastic(ValueError):
    """Transition matrix has negative entries or rows not summing to 1."""
    pass


class TransitionIndexError(IndexError):
    """Treatment or sample index outside the configured range."""
    pass


class StrategyExecutionError(RuntimeError):
    """
    Failure raised while executing one scenario.

    Attributes:
        scenario_id: (treatment, sample) identity of the failing scenario
        cause: The original exception
    """

    def __init__(self, scenario_id: Any, cause: Optional[BaseException] = None):
        super().__init__(scenario_id, cause)
        self.scenario_id = scenario_id
        self.cause = cause

    @property
    def treatment(self) -> int:
        return self.scenario_id[0]

    @property
    def sample(self) -> int:
        return self.scenario_id[1]

    def __str__(self) -> str:
        treatment, sample = self.scenario_id
        if self.cause is None:
            return f"Scenario (treatment={treatment}, sample={sample}) failed"
        return (
            f"Scenario (treatment={treatment}, sample={sample}) failed: "
            f"{type(self.cause).__name__}: {self.cause}"
        )


class RunCancelled(RuntimeError):
    """Run stopped because its cancel token was set."""
    pass


class MassDriftWarning(UserWarning):
    """Cohort total drifted beyond tolerance during a projection."""
    pass
