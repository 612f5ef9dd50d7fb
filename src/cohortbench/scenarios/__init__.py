# Cohort scenarios (input providers)
#
# Each scenario defines:
# - Health states and treatment options
# - Initial cohort distribution
# - PSA sampling of transition matrices

from .base import (
    CohortScenario,
    build_runner,
)

from .sick_sicker import (
    SickSickerScenario,
    STATE_NAMES,
    TREATMENT_NAMES,
    prob_to_rate,
    rate_to_prob,
)

__all__ = [
    # Base
    'CohortScenario',
    'build_runner',
    # Sick-Sicker
    'SickSickerScenario',
    'STATE_NAMES',
    'TREATMENT_NAMES',
    'prob_to_rate',
    'rate_to_prob',
]
