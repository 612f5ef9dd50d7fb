"""
Sick-Sicker Scenario - four-state cohort model used for strategy benchmarks.

States: Healthy, Sick, Sicker, Dead (absorbing).

- Healthy people fall Sick or die of background mortality
- Sick people recover, progress to Sicker, or die at an elevated rate
- Sicker people only die (at a further elevated rate)

Two treatment options: standard care, and a new treatment that slows
Sick -> Sicker progression by a relative risk applied on the rate scale.

PSA samples draw probabilities from beta distributions and hazard ratios /
relative risk from log-normal distributions.
"""

from dataclasses import dataclass
from typing import List, Optional

import numpy as np
import pandas as pd
from scipy import stats

from ..transition import ArrayTransitionModel
from .base import CohortScenario


HEALTHY, SICK, SICKER, DEAD = range(4)
STATE_NAMES = ['Healthy', 'Sick', 'Sicker', 'Dead']
TREATMENT_NAMES = ['standard_care', 'new_treatment']

# (alpha, beta) of beta distributions for per-cycle probabilities
PROBABILITY_PRIORS = dict(
    p_healthy_sick=(30.0, 170.0),       # mean 0.15
    p_sick_healthy=(60.0, 60.0),        # mean 0.5
    p_sick_sicker=(84.0, 716.0),        # mean 0.105
    p_healthy_dead=(10.0, 1990.0),      # mean 0.005
)

# (median, log-scale sd) of log-normal distributions for ratios
RATIO_PRIORS = dict(
    hr_sick=(3.0, 0.05),
    hr_sicker=(10.0, 0.05),
    rr_treatment=(0.6, 0.1),
)


def prob_to_rate(p):
    return -np.log1p(-p)


def rate_to_prob(r):
    return -np.expm1(-r)


@dataclass
class SickSickerScenario(CohortScenario):
    """
    Sick-Sicker cohort scenario.

    Args:
        start_state: Index of the state the whole cohort starts in
        cohort_size: Initial cohort total (1.0 for proportions)
    """
    start_state: int = HEALTHY
    cohort_size: float = 1.0

    def __post_init__(self):
        if not 0 <= self.start_state < len(STATE_NAMES):
            raise ValueError(f"start_state must be in [0, {len(STATE_NAMES) - 1}], got {self.start_state}")
        if self.cohort_size <= 0:
            raise ValueError(f"cohort_size must be positive, got {self.cohort_size}")

    @property
    def state_names(self) -> List[str]:
        return list(STATE_NAMES)

    @property
    def treatment_names(self) -> List[str]:
        return list(TREATMENT_NAMES)

    def initial_state(self) -> np.ndarray:
        state = np.zeros(len(STATE_NAMES))
        state[self.start_state] = self.cohort_size
        return state

    def sample_parameters(self, n_samples: int, seed: Optional[int] = None) -> pd.DataFrame:
        """
        Draw PSA parameter samples.

        Returns:
            DataFrame with one row per sample and one column per parameter
        """
        if n_samples < 1:
            raise ValueError(f"n_samples must be >= 1, got {n_samples}")
        rng = np.random.default_rng(seed)

        params = {}
        for name, (a, b) in PROBABILITY_PRIORS.items():
            params[name] = stats.beta.rvs(a, b, size=n_samples, random_state=rng)
        for name, (median, sd) in RATIO_PRIORS.items():
            params[name] = stats.lognorm.rvs(s=sd, scale=median, size=n_samples, random_state=rng)

        df = pd.DataFrame(params)
        # Recovery and progression compete for the surviving Sick cohort
        total = df['p_sick_healthy'] + df['p_sick_sicker']
        over = total > 1.0
        if over.any():
            df.loc[over, 'p_sick_healthy'] /= total[over]
            df.loc[over, 'p_sick_sicker'] /= total[over]
        return df

    @staticmethod
    def transition_matrix(params: pd.Series, treatment: int) -> np.ndarray:
        """
        Build one row-stochastic matrix from a row of sample_parameters().

        Args:
            params: One PSA sample
            treatment: 0 = standard care, 1 = new treatment
        """
        if treatment not in (0, 1):
            raise ValueError(f"treatment must be 0 or 1, got {treatment}")

        p_hd = params['p_healthy_dead']
        r_hd = prob_to_rate(p_hd)
        p_s1d = rate_to_prob(r_hd * params['hr_sick'])
        p_s2d = rate_to_prob(r_hd * params['hr_sicker'])

        p_hs1 = params['p_healthy_sick']
        p_s1h = params['p_sick_healthy']
        p_s1s2 = params['p_sick_sicker']
        if treatment == 1:
            p_s1s2 = rate_to_prob(prob_to_rate(p_s1s2) * params['rr_treatment'])

        m = np.zeros((4, 4))
        m[HEALTHY] = [(1 - p_hd) * (1 - p_hs1), (1 - p_hd) * p_hs1, 0.0, p_hd]
        m[SICK] = [
            (1 - p_s1d) * p_s1h,
            (1 - p_s1d) * (1 - p_s1h - p_s1s2),
            (1 - p_s1d) * p_s1s2,
            p_s1d,
        ]
        m[SICKER] = [0.0, 0.0, 1 - p_s2d, p_s2d]
        m[DEAD] = [0.0, 0.0, 0.0, 1.0]
        return m

    def build_transition_model(
        self,
        n_samples: int,
        seed: Optional[int] = None
    ) -> ArrayTransitionModel:
        """Array model of shape (2, n_samples, 4, 4)."""
        params = self.sample_parameters(n_samples, seed=seed)
        matrices = np.empty((len(TREATMENT_NAMES), n_samples, 4, 4))
        for sample, (_, row) in enumerate(params.iterrows()):
            for treatment in range(len(TREATMENT_NAMES)):
                matrices[treatment, sample] = self.transition_matrix(row, treatment)
        return ArrayTransitionModel(matrices)
