"""
Cohort projection: the state_t = state_{t-1} . M recurrence.

The per-cycle step is isolated behind advance_one_cycle(state, matrix) so it
can be swapped (numpy matmul, explicit Python loop, compiled routine) without
touching the runner or the execution strategies.
"""

from typing import Callable, Optional
import warnings

import numpy as np

from .cohort import ScenarioId, Trajectory
from .config import MASS_TOL
from .errors import DimensionMismatch, MassDriftWarning


CycleKernel = Callable[[np.ndarray, np.ndarray], np.ndarray]


def advance_one_cycle(state: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """Row-vector times matrix."""
    return state @ matrix


def advance_one_cycle_loop(state: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """
    Explicit nested-loop version of advance_one_cycle.

    For each target state, sum over source states of
    state[source] * matrix[source, target].
    """
    n = state.shape[0]
    out = np.zeros(n, dtype=np.float64)
    for target in range(n):
        total = 0.0
        for source in range(n):
            total += state[source] * matrix[source, target]
        out[target] = total
    return out


def check_dimensions(initial_state: np.ndarray, matrix: np.ndarray) -> None:
    """Raise DimensionMismatch unless state length matches a square matrix."""
    if initial_state.ndim != 1:
        raise DimensionMismatch(
            f"Initial state must be 1-D, got shape {initial_state.shape}"
        )
    if matrix.ndim != 2 or matrix.shape[0] != matrix.shape[1]:
        raise DimensionMismatch(
            f"Transition matrix must be square 2-D, got shape {matrix.shape}"
        )
    if initial_state.shape[0] != matrix.shape[0]:
        raise DimensionMismatch(
            f"Initial state has {initial_state.shape[0]} states but matrix is "
            f"{matrix.shape[0]}x{matrix.shape[1]}"
        )


def check_n_cycles(n_cycles: int) -> None:
    if isinstance(n_cycles, bool) or not isinstance(n_cycles, (int, np.integer)):
        raise ValueError(f"n_cycles must be an integer, got {n_cycles!r}")
    if n_cycles < 1:
        raise ValueError(f"n_cycles must be >= 1, got {n_cycles}")


def check_mass_preserved(states: np.ndarray, tol: float = MASS_TOL, label: str = "") -> bool:
    """
    Warn if any cycle's total differs from the initial total.

    Args:
        states: Array (..., n_cycles + 1, n_states)
        tol: Relative tolerance on the total
        label: Included in the warning message

    Returns:
        True if the totals were preserved
    """
    totals = states.sum(axis=-1)
    initial = totals[..., :1]
    drift = np.abs(totals - initial) / np.maximum(np.abs(initial), 1.0)
    max_drift = float(drift.max()) if drift.size else 0.0
    if max_drift > tol:
        warnings.warn(
            f"Cohort total drifted by {max_drift:.3g} (tol={tol}){label}",
            MassDriftWarning,
            stacklevel=3
        )
        return False
    return True


class CohortProjector:
    """
    Advances a cohort distribution over a fixed number of cycles.

    Cycles are sequentially dependent, so a single projection has no
    internal parallelism.
    """

    def __init__(
        self,
        kernel: CycleKernel = advance_one_cycle,
        check_mass: bool = True,
        mass_tol: float = MASS_TOL
    ):
        """
        Args:
            kernel: Per-cycle step (state, matrix) -> state
            check_mass: Warn when the cohort total is not preserved
            mass_tol: Relative tolerance for the mass check
        """
        self.kernel = kernel
        self.check_mass = check_mass
        self.mass_tol = mass_tol

    def project(
        self,
        initial_state,
        matrix,
        n_cycles: int,
        scenario_id: Optional[ScenarioId] = None
    ) -> Trajectory:
        """
        Project initial_state forward n_cycles cycles.

        Args:
            initial_state: StateVector of length n_states
            matrix: Transition matrix (n_states, n_states)
            n_cycles: Number of cycles (>= 1)
            scenario_id: Optional identity attached to the trajectory

        Returns:
            Trajectory with n_cycles + 1 entries (cycle 0 is initial_state)
        """
        initial_state = np.asarray(initial_state, dtype=np.float64)
        matrix = np.asarray(matrix, dtype=np.float64)
        check_dimensions(initial_state, matrix)
        check_n_cycles(n_cycles)

        # Pre-allocated; rows are filled in place
        states = np.empty((n_cycles + 1, initial_state.shape[0]), dtype=np.float64)
        states[0] = initial_state
        for cycle in range(1, n_cycles + 1):
            states[cycle] = self.kernel(states[cycle - 1], matrix)

        if self.check_mass:
            label = f" for scenario {tuple(scenario_id)}" if scenario_id is not None else ""
            check_mass_preserved(states, self.mass_tol, label)

        return Trajectory(states=states, scenario_id=scenario_id)

    def project_many(self, initial_states, matrices, n_cycles: int, label: str = "") -> np.ndarray:
        """
        Project a batch of independent cohorts in one recurrence.

        All k cohorts are advanced together with one batched matrix product
        per cycle instead of k separate products.

        Args:
            initial_states: Array (k, n_states), or (n_states,) shared by all
            matrices: Array (k, n_states, n_states)
            n_cycles: Number of cycles (>= 1)
            label: Appended to the drift warning (e.g. " for treatment 1")

        Returns:
            Array (k, n_cycles + 1, n_states)
        """
        matrices = np.asarray(matrices, dtype=np.float64)
        if matrices.ndim != 3 or matrices.shape[1] != matrices.shape[2]:
            raise DimensionMismatch(
                f"Expected matrices of shape (k, n_states, n_states), got {matrices.shape}"
            )
        k, n_states = matrices.shape[0], matrices.shape[1]

        initial_states = np.asarray(initial_states, dtype=np.float64)
        if initial_states.ndim == 1:
            initial_states = np.broadcast_to(initial_states, (k, initial_states.shape[0]))
        if initial_states.shape != (k, n_states):
            raise DimensionMismatch(
                f"Initial states have shape {initial_states.shape}, expected ({k}, {n_states})"
            )
        check_n_cycles(n_cycles)

        states = np.empty((k, n_cycles + 1, n_states), dtype=np.float64)
        states[:, 0, :] = initial_states
        for cycle in range(1, n_cycles + 1):
            # (k, 1, n) @ (k, n, n) -> (k, 1, n)
            states[:, cycle, :] = np.matmul(states[:, cycle - 1, None, :], matrices)[:, 0, :]

        if self.check_mass:
            check_mass_preserved(states, self.mass_tol, label)

        return states
