"""
Tests for CohortProjector and the per-cycle kernels.
"""

import warnings

import pytest
import numpy as np
from numpy.testing import assert_allclose

from cohortbench import (
    CohortProjector,
    DimensionMismatch,
    MassDriftWarning,
    ScenarioId,
    Trajectory,
    advance_one_cycle,
    advance_one_cycle_loop,
    make_state_vector,
)
from cohortbench.native import advance_one_cycle_native, project_cycles
from conftest import random_stochastic_matrices


M3 = np.array([
    [0.7, 0.2, 0.1],
    [0.0, 0.6, 0.4],
    [0.0, 0.0, 1.0],
])


class TestKernels:
    """Tests for advance_one_cycle variants."""

    def test_numpy_kernel(self):
        """Row vector times matrix."""
        state = np.array([0.5, 0.5, 0.0])
        assert_allclose(advance_one_cycle(state, M3), [0.35, 0.4, 0.25])

    def test_loop_kernel_matches_numpy(self):
        """Nested loop gives the same result as matmul."""
        matrices = random_stochastic_matrices(1, 5, 6, seed=3)[0]
        state = np.full(6, 1 / 6)
        for m in matrices:
            assert_allclose(advance_one_cycle_loop(state, m), advance_one_cycle(state, m))

    def test_native_kernel_matches_numpy(self):
        """Compiled kernel gives the same result as matmul."""
        m = random_stochastic_matrices(1, 1, 5, seed=4)[0, 0]
        state = np.array([0.1, 0.2, 0.3, 0.4, 0.0])
        assert_allclose(advance_one_cycle_native(state, m), advance_one_cycle(state, m))

    def test_native_full_projection(self):
        """Compiled projection matches repeated matmul."""
        state = np.array([1.0, 0.0, 0.0])
        states = project_cycles(state, M3, 4)
        expected = [state]
        for _ in range(4):
            expected.append(expected[-1] @ M3)
        assert_allclose(states, np.array(expected))


class TestProject:
    """Tests for CohortProjector.project."""

    def test_single_cycle(self):
        """n_cycles=1 returns exactly [v, v.M]."""
        v = np.array([0.2, 0.3, 0.5])
        trajectory = CohortProjector().project(v, M3, 1)

        assert len(trajectory) == 2
        assert_allclose(trajectory[0], v)
        assert_allclose(trajectory[1], v @ M3)

    def test_identity_matrix_is_constant(self):
        """Identity matrix keeps [1, 0, 0] for 11 entries."""
        trajectory = CohortProjector().project([1.0, 0.0, 0.0], np.eye(3), 10)

        assert len(trajectory) == 11
        assert_allclose(trajectory.states, np.tile([1.0, 0.0, 0.0], (11, 1)))

    @pytest.mark.parametrize("n_cycles", [1, 2, 10, 100])
    def test_mass_preserved(self, n_cycles):
        """Every cycle sums to 1 for a row-stochastic matrix."""
        rng = np.random.default_rng(n_cycles)
        m = rng.dirichlet(np.ones(5), size=5)
        v = rng.dirichlet(np.ones(5))

        trajectory = CohortProjector().project(v, m, n_cycles)

        assert trajectory.n_cycles == n_cycles
        assert_allclose(trajectory.totals(), 1.0, atol=1e-12)

    def test_counts_preserved(self):
        """Totals other than 1 are preserved too."""
        trajectory = CohortProjector().project([1000.0, 0.0, 0.0], M3, 20)
        assert_allclose(trajectory.totals(), 1000.0)

    def test_absorbing_state_accumulates(self):
        """Absorbing state occupancy never decreases."""
        trajectory = CohortProjector().project([1.0, 0.0, 0.0], M3, 30)
        assert np.all(np.diff(trajectory.states[:, 2]) >= 0)

    def test_dimension_mismatch(self):
        """3-element vector against 4x4 matrix raises DimensionMismatch."""
        projector = CohortProjector()
        with pytest.raises(DimensionMismatch):
            projector.project([1.0, 0.0, 0.0], np.eye(4), 5)

    def test_dimension_mismatch_is_value_error(self):
        """DimensionMismatch can be caught as ValueError."""
        with pytest.raises(ValueError):
            CohortProjector().project([1.0, 0.0], np.eye(3), 1)

    def test_non_square_matrix(self):
        """Non-square matrix raises DimensionMismatch."""
        with pytest.raises(DimensionMismatch):
            CohortProjector().project([1.0, 0.0], np.ones((2, 3)), 1)

    @pytest.mark.parametrize("n_cycles", [0, -3, 2.5, True])
    def test_invalid_cycle_count(self, n_cycles):
        """n_cycles must be an integer >= 1."""
        with pytest.raises(ValueError):
            CohortProjector().project([1.0, 0.0, 0.0], M3, n_cycles)

    def test_loop_kernel_projector(self):
        """Projector with the loop kernel matches the default."""
        v = [0.5, 0.25, 0.25]
        default = CohortProjector().project(v, M3, 12)
        looped = CohortProjector(kernel=advance_one_cycle_loop).project(v, M3, 12)
        assert_allclose(looped.states, default.states)

    def test_native_kernel_projector(self):
        """Compiled kernel plugs into the projector."""
        v = [0.5, 0.25, 0.25]
        default = CohortProjector().project(v, M3, 12)
        native = CohortProjector(kernel=advance_one_cycle_native).project(v, M3, 12)
        assert_allclose(native.states, default.states)

    def test_scenario_id_attached(self):
        """Scenario identity is carried on the trajectory."""
        trajectory = CohortProjector().project([1.0, 0.0, 0.0], M3, 1, scenario_id=(1, 2))
        assert trajectory.scenario_id == (1, 2)

    def test_plain_tuple_scenario_id_normalised(self):
        """A (treatment, sample) tuple is stored as a ScenarioId."""
        trajectory = CohortProjector().project([1.0, 0.0, 0.0], M3, 1, scenario_id=(1, 2))
        assert isinstance(trajectory.scenario_id, ScenarioId)
        assert trajectory.scenario_id.treatment == 1
        assert trajectory.scenario_id.sample == 2

    def test_drift_warning(self):
        """Sub-stochastic matrix triggers MassDriftWarning."""
        with pytest.warns(MassDriftWarning):
            CohortProjector().project([1.0, 0.0], 0.5 * np.eye(2), 3)

    def test_drift_check_can_be_disabled(self):
        """check_mass=False projects without warning."""
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            trajectory = CohortProjector(check_mass=False).project([1.0, 0.0], 0.5 * np.eye(2), 3)
        assert_allclose(trajectory[3], [0.125, 0.0])


class TestProjectMany:
    """Tests for the batched recurrence."""

    def test_matches_single_projections(self):
        """Batched result equals k separate projections."""
        matrices = random_stochastic_matrices(1, 7, 4, seed=11)[0]
        v = np.array([0.4, 0.3, 0.2, 0.1])
        projector = CohortProjector()

        batched = projector.project_many(v, matrices, 9)

        assert batched.shape == (7, 10, 4)
        for i, m in enumerate(matrices):
            assert_allclose(batched[i], projector.project(v, m, 9).states)

    def test_per_cohort_initial_states(self):
        """Each cohort can start from its own state."""
        matrices = np.stack([np.eye(2), np.eye(2)])
        initial = np.array([[1.0, 0.0], [0.0, 1.0]])
        batched = CohortProjector().project_many(initial, matrices, 2)
        assert_allclose(batched[:, -1, :], initial)

    def test_shape_mismatch(self):
        """Initial state length must match the matrices."""
        with pytest.raises(DimensionMismatch):
            CohortProjector().project_many([1.0, 0.0, 0.0], np.stack([np.eye(2)]), 1)


class TestTrajectory:
    """Tests for the Trajectory container."""

    def test_read_only(self):
        """States cannot be modified after projection."""
        trajectory = CohortProjector().project([1.0, 0.0, 0.0], M3, 2)
        with pytest.raises(ValueError):
            trajectory.states[1, 0] = 0.0
        with pytest.raises(AttributeError):
            trajectory.states = np.zeros((3, 3))

    def test_does_not_alias_input(self):
        """Trajectory copies a caller-owned array."""
        states = np.ones((2, 2))
        trajectory = Trajectory(states)
        states[0, 0] = 5.0
        assert trajectory[0][0] == 1.0

    def test_rejects_1d(self):
        """States must be 2-D."""
        with pytest.raises(ValueError):
            Trajectory(np.ones(3))

    def test_iteration(self):
        """Iterating yields one StateVector per cycle."""
        trajectory = CohortProjector().project([1.0, 0.0, 0.0], M3, 3)
        rows = list(trajectory)
        assert len(rows) == 4
        assert all(row.shape == (3,) for row in rows)

    def test_to_dataframe(self):
        """Long format has one row per (cycle, state)."""
        trajectory = CohortProjector().project([1.0, 0.0, 0.0], M3, 2, scenario_id=(0, 1))
        df = trajectory.to_dataframe(['a', 'b', 'c'])

        assert list(df.columns) == ['treatment', 'sample', 'cycle', 'state', 'value']
        assert len(df) == 9
        assert set(df['state']) == {'a', 'b', 'c'}
        assert (df['sample'] == 1).all()
        assert df.groupby('cycle')['value'].sum().tolist() == pytest.approx([1.0, 1.0, 1.0])

    def test_to_dataframe_wrong_names(self):
        """State name count must match."""
        trajectory = CohortProjector().project([1.0, 0.0, 0.0], M3, 1)
        with pytest.raises(ValueError):
            trajectory.to_dataframe(['a', 'b'])


class TestMakeStateVector:
    """Tests for StateVector construction."""

    def test_valid(self):
        state = make_state_vector([0.2, 0.8])
        assert state.dtype == np.float64

    @pytest.mark.parametrize("values", [[], [[1.0, 0.0]], [0.5, -0.1], [np.nan, 1.0]])
    def test_invalid(self, values):
        """Empty, 2-D, negative or non-finite vectors are rejected."""
        with pytest.raises(ValueError):
            make_state_vector(values)
