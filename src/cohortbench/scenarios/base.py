"""
Base class for cohort scenarios.

A scenario is an input provider: it defines the health states, the starting
cohort, and how PSA samples of the transition matrices are drawn. Execution
is handled separately by ExperimentRunner and the strategies.
"""

from abc import ABC, abstractmethod
from typing import List, Optional, TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from ..projector import CohortProjector
    from ..runner import ExperimentRunner
    from ..transition import TransitionModel


class CohortScenario(ABC):
    """
    Abstract base for cohort state-transition scenarios.

    A scenario defines:
    - State and treatment names
    - Initial cohort distribution
    - PSA transition matrices per treatment option
    """

    @property
    @abstractmethod
    def state_names(self) -> List[str]:
        pass

    @property
    @abstractmethod
    def treatment_names(self) -> List[str]:
        pass

    @abstractmethod
    def initial_state(self) -> np.ndarray:
        """Starting distribution over state_names."""
        pass

    @abstractmethod
    def build_transition_model(
        self,
        n_samples: int,
        seed: Optional[int] = None
    ) -> 'TransitionModel':
        """Draw n_samples PSA matrices for every treatment option."""
        pass

    @property
    def n_states(self) -> int:
        return len(self.state_names)

    @property
    def n_treatments(self) -> int:
        return len(self.treatment_names)


def build_runner(
    scenario: CohortScenario,
    n_samples: int,
    seed: Optional[int] = None,
    projector: Optional['CohortProjector'] = None
) -> 'ExperimentRunner':
    """Create an ExperimentRunner for a scenario's PSA samples."""
    from ..runner import ExperimentRunner

    model = scenario.build_transition_model(n_samples, seed=seed)
    return ExperimentRunner(model, scenario.initial_state(), projector=projector)
