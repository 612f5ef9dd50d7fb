"""
Cohort representation for state-transition projection.

A cohort is tracked as:
- StateVector: distribution of the cohort over states at one cycle
- Scenario: one (treatment, sample) projection task
- Trajectory: the per-cycle StateVectors produced by projecting one scenario
"""

from dataclasses import dataclass
from typing import Iterator, List, NamedTuple, Optional, Sequence

import numpy as np
import pandas as pd


def make_state_vector(values: Sequence[float]) -> np.ndarray:
    """
    Build a StateVector from a sequence of non-negative values.

    Args:
        values: Fraction (or count) of the cohort in each state

    Returns:
        1-D float64 array

    The total is not normalised: callers supply a valid initial distribution.
    """
    state = np.array(values, dtype=np.float64)
    if state.ndim != 1:
        raise ValueError(f"State vector must be 1-D, got shape {state.shape}")
    if state.size == 0:
        raise ValueError("State vector must have at least one state")
    if not np.all(np.isfinite(state)):
        raise ValueError(f"State vector has non-finite entries: {state}")
    if np.any(state < 0):
        raise ValueError(f"State vector has negative entries: {state}")
    return state


class ScenarioId(NamedTuple):
    """Identity of one projection: (treatment index, PSA sample index)."""
    treatment: int
    sample: int


@dataclass(frozen=True)
class Scenario:
    """One independent projection task."""
    treatment: int
    sample: int
    n_cycles: int

    @property
    def id(self) -> ScenarioId:
        return ScenarioId(self.treatment, self.sample)


@dataclass(frozen=True, eq=False)
class Trajectory:
    """
    Per-cycle cohort distribution for one scenario.

    Attributes:
        states: Array of shape (n_cycles + 1, n_states); row c is cycle c
        scenario_id: Scenario that produced this trajectory (if any)
    """
    states: np.ndarray
    scenario_id: Optional[ScenarioId] = None

    def __post_init__(self):
        states = np.asarray(self.states, dtype=np.float64)
        if states.ndim != 2:
            raise ValueError(
                f"Trajectory states must be 2-D (cycles x states), got shape {states.shape}"
            )
        if states is self.states:
            states = states.copy()
        states.flags.writeable = False
        object.__setattr__(self, 'states', states)
        if self.scenario_id is not None:
            object.__setattr__(self, 'scenario_id', ScenarioId(*self.scenario_id))

    @property
    def n_cycles(self) -> int:
        return self.states.shape[0] - 1

    @property
    def n_states(self) -> int:
        return self.states.shape[1]

    def __len__(self) -> int:
        return self.states.shape[0]

    def __getitem__(self, cycle: int) -> np.ndarray:
        return self.states[cycle]

    def __iter__(self) -> Iterator[np.ndarray]:
        return iter(self.states)

    def totals(self) -> np.ndarray:
        """Cohort total at each cycle."""
        return self.states.sum(axis=1)

    def to_dataframe(self, state_names: Optional[List[str]] = None) -> pd.DataFrame:
        """
        Convert to a long-format DataFrame.

        Columns: treatment, sample, cycle, state, value
        """
        if state_names is None:
            state_names = [str(i) for i in range(self.n_states)]
        elif len(state_names) != self.n_states:
            raise ValueError(
                f"Expected {self.n_states} state names, got {len(state_names)}"
            )

        n_rows = len(self)
        treatment = self.scenario_id.treatment if self.scenario_id else None
        sample = self.scenario_id.sample if self.scenario_id else None

        return pd.DataFrame({
            'treatment': [treatment] * (n_rows * self.n_states),
            'sample': [sample] * (n_rows * self.n_states),
            'cycle': np.repeat(np.arange(n_rows), self.n_states),
            'state': np.tile(np.array(state_names, dtype=object), n_rows),
            'value': self.states.reshape(-1),
        })
