"""
Transition models: where the per-(treatment, sample) matrices come from.

Each model implements:
- get_matrix(treatment, sample) -> read-only row-stochastic matrix
- n_treatments, n_samples, n_states

Storage is decoupled from projection: ArrayTransitionModel keeps the full
4-D array in memory, CallableTransitionModel builds each matrix on demand.
"""

from abc import ABC, abstractmethod
from typing import Callable

import numpy as np

from .config import ROW_SUM_TOL
from .errors import DimensionMismatch, NotRowStochastic, TransitionIndexError


def validate_transition_matrix(matrix, tol: float = ROW_SUM_TOL) -> np.ndarray:
    """
    Check that a matrix is square, non-negative and row-stochastic.

    Args:
        matrix: Array-like (n_states, n_states)
        tol: Maximum absolute deviation of each row sum from 1

    Returns:
        The matrix as a float64 array
    """
    matrix = np.asarray(matrix, dtype=np.float64)
    if matrix.ndim != 2 or matrix.shape[0] != matrix.shape[1]:
        raise DimensionMismatch(
            f"Transition matrix must be square 2-D, got shape {matrix.shape}"
        )
    if not np.all(np.isfinite(matrix)):
        raise NotRowStochastic("Transition matrix has non-finite entries")
    if np.any(matrix < 0):
        raise NotRowStochastic("Transition matrix has negative entries")

    row_sums = matrix.sum(axis=1)
    bad_rows = np.flatnonzero(np.abs(row_sums - 1.0) > tol)
    if bad_rows.size:
        raise NotRowStochastic(
            f"Rows {bad_rows.tolist()} do not sum to 1 (sums: {row_sums[bad_rows].tolist()}, tol={tol})"
        )
    return matrix


class TransitionModel(ABC):
    """Base class for transition matrix providers."""

    @property
    @abstractmethod
    def n_treatments(self) -> int:
        pass

    @property
    @abstractmethod
    def n_samples(self) -> int:
        pass

    @property
    @abstractmethod
    def n_states(self) -> int:
        pass

    @abstractmethod
    def _matrix(self, treatment: int, sample: int) -> np.ndarray:
        """Return the matrix for in-range indices."""
        pass

    def get_matrix(self, treatment: int, sample: int) -> np.ndarray:
        """
        Get the transition matrix for one treatment option and PSA sample.

        Raises:
            TransitionIndexError: If either index is out of range
        """
        self._check_index('treatment', treatment, self.n_treatments)
        self._check_index('sample', sample, self.n_samples)
        return self._matrix(treatment, sample)

    @staticmethod
    def _check_index(name: str, index: int, size: int) -> None:
        # Negative indices are rejected rather than wrapped
        if not 0 <= index < size:
            raise TransitionIndexError(
                f"{name} index {index} out of range [0, {size - 1}]"
            )


class ArrayTransitionModel(TransitionModel):
    """
    All matrices held in one in-memory array.

    Shape: (n_treatments, n_samples, n_states, n_states)

    The array is validated once on construction and then stored read-only,
    so it can be shared by every scenario in a run without copying.
    """

    def __init__(self, matrices, tol: float = ROW_SUM_TOL):
        matrices = np.array(matrices, dtype=np.float64)
        if matrices.ndim != 4 or matrices.shape[2] != matrices.shape[3]:
            raise DimensionMismatch(
                "Expected array of shape (n_treatments, n_samples, n_states, n_states), "
                f"got {matrices.shape}"
            )
        if matrices.shape[0] == 0 or matrices.shape[1] == 0:
            raise ValueError(f"Need at least one treatment and one sample, got {matrices.shape}")

        if np.any(matrices < 0) or not np.all(np.isfinite(matrices)):
            raise NotRowStochastic("Transition matrices have negative or non-finite entries")
        deviation = np.abs(matrices.sum(axis=3) - 1.0)
        if np.any(deviation > tol):
            t, s, row = np.unravel_index(np.argmax(deviation), deviation.shape)
            raise NotRowStochastic(
                f"Matrix (treatment={t}, sample={s}) row {row} sums to "
                f"{matrices[t, s, row].sum()} (tol={tol})"
            )

        matrices.flags.writeable = False
        self._matrices = matrices

    @classmethod
    def from_matrices(cls, matrices_by_treatment, tol: float = ROW_SUM_TOL) -> 'ArrayTransitionModel':
        """
        Build from nested lists: matrices_by_treatment[treatment][sample] -> matrix.
        """
        return cls(np.stack([np.stack(samples) for samples in matrices_by_treatment]), tol=tol)

    @property
    def n_treatments(self) -> int:
        return self._matrices.shape[0]

    @property
    def n_samples(self) -> int:
        return self._matrices.shape[1]

    @property
    def n_states(self) -> int:
        return self._matrices.shape[2]

    def _matrix(self, treatment: int, sample: int) -> np.ndarray:
        return self._matrices[treatment, sample]

    def as_array(self) -> np.ndarray:
        """Read-only view of the full 4-D array."""
        return self._matrices


class CallableTransitionModel(TransitionModel):
    """
    Matrices built on demand by a function (treatment, sample) -> matrix.

    Each matrix is validated as it is produced. Nothing is cached, so the
    function must be deterministic for results to be reproducible. For use
    with process-parallel execution the function must be picklable (a
    module-level function or functools.partial, not a lambda).
    """

    def __init__(
        self,
        matrix_fn: Callable[[int, int], np.ndarray],
        n_treatments: int,
        n_samples: int,
        n_states: int,
        tol: float = ROW_SUM_TOL
    ):
        if n_treatments < 1 or n_samples < 1 or n_states < 1:
            raise ValueError(
                f"Sizes must be >= 1, got n_treatments={n_treatments}, "
                f"n_samples={n_samples}, n_states={n_states}"
            )
        self.matrix_fn = matrix_fn
        self._n_treatments = n_treatments
        self._n_samples = n_samples
        self._n_states = n_states
        self.tol = tol

    @property
    def n_treatments(self) -> int:
        return self._n_treatments

    @property
    def n_samples(self) -> int:
        return self._n_samples

    @property
    def n_states(self) -> int:
        return self._n_states

    def _matrix(self, treatment: int, sample: int) -> np.ndarray:
        matrix = validate_transition_matrix(self.matrix_fn(treatment, sample), tol=self.tol)
        if matrix.shape[0] != self._n_states:
            raise DimensionMismatch(
                f"Matrix (treatment={treatment}, sample={sample}) has {matrix.shape[0]} states, "
                f"expected {self._n_states}"
            )
        if matrix.flags.writeable:
            matrix = matrix.copy()
            matrix.flags.writeable = False
        return matrix
