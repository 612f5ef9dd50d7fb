import numpy as np
import pytest

from cohortbench import ArrayTransitionModel, ExperimentRunner


def random_stochastic_matrices(n_treatments, n_samples, n_states, seed=0):
    """Dirichlet rows: shape (n_treatments, n_samples, n_states, n_states)."""
    rng = np.random.default_rng(seed)
    return rng.dirichlet(np.ones(n_states), size=(n_treatments, n_samples, n_states))


@pytest.fixture
def random_model():
    """2 treatments x 3 samples x 4 states."""
    return ArrayTransitionModel(random_stochastic_matrices(2, 3, 4))


@pytest.fixture
def runner(random_model):
    return ExperimentRunner(random_model, [1.0, 0.0, 0.0, 0.0])
