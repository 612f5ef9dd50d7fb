"""
Experiment runner: the (treatment x sample) cross product.

Separates scenario generation from scheduling:
- the runner builds one ProjectionTask per (treatment, sample) pair
- the ExecutionStrategy decides how those tasks are run
- the runner checks the result covers every pair exactly once
"""

from collections.abc import Mapping
from typing import Dict, Iterable, Iterator, List, Optional
import logging
import time

import numpy as np
import pandas as pd

from .cohort import Scenario, ScenarioId, Trajectory, make_state_vector
from .errors import DimensionMismatch
from .projector import CohortProjector, check_n_cycles
from .strategies import CancelToken, ExecutionStrategy, ProjectionTask, Sequential
from .transition import TransitionModel

logger = logging.getLogger(__name__)


class ExperimentResult(Mapping):
    """
    Read-only mapping (treatment, sample) -> Trajectory for one run.

    Attributes:
        strategy: Name of the strategy that produced the result
        n_cycles: Cycles per projection
        elapsed: Wall-clock seconds spent in the strategy
    """

    def __init__(
        self,
        trajectories: Dict[ScenarioId, Trajectory],
        strategy: str,
        n_cycles: int,
        elapsed: float
    ):
        self._trajectories = trajectories
        self.strategy = strategy
        self.n_cycles = n_cycles
        self.elapsed = elapsed

    def __getitem__(self, key) -> Trajectory:
        # ScenarioId is a tuple, so plain (treatment, sample) keys work too
        return self._trajectories[key]

    def __iter__(self) -> Iterator[ScenarioId]:
        return iter(self._trajectories)

    def __len__(self) -> int:
        return len(self._trajectories)

    def __repr__(self) -> str:
        return (
            f"ExperimentResult(strategy={self.strategy!r}, scenarios={len(self)}, "
            f"n_cycles={self.n_cycles}, elapsed={self.elapsed:.4f}s)"
        )

    @property
    def treatments(self) -> List[int]:
        return sorted({key.treatment for key in self._trajectories})

    @property
    def samples(self) -> List[int]:
        return sorted({key.sample for key in self._trajectories})

    def to_array(self) -> np.ndarray:
        """
        Stack all trajectories.

        Returns:
            Array (n_treatments, n_samples, n_cycles + 1, n_states), indexed by
            position in the sorted treatment and sample sets
        """
        treatments = self.treatments
        samples = self.samples
        if not treatments:
            return np.empty((0, 0, self.n_cycles + 1, 0))

        n_states = next(iter(self._trajectories.values())).n_states
        out = np.empty((len(treatments), len(samples), self.n_cycles + 1, n_states))
        t_pos = {t: i for i, t in enumerate(treatments)}
        s_pos = {s: i for i, s in enumerate(samples)}
        for key, trajectory in self._trajectories.items():
            out[t_pos[key.treatment], s_pos[key.sample]] = trajectory.states
        return out

    def to_dataframe(self, state_names: Optional[List[str]] = None) -> pd.DataFrame:
        """Long-format DataFrame of all trajectories."""
        dfs = [
            self._trajectories[key].to_dataframe(state_names)
            for key in sorted(self._trajectories)
        ]
        if not dfs:
            return pd.DataFrame(columns=['treatment', 'sample', 'cycle', 'state', 'value'])
        return pd.concat(dfs, ignore_index=True)


class ExperimentRunner:
    """
    Runs one projection per (treatment, sample) pair.

    The transition model and initial state are shared read-only by every
    scenario of a run.
    """

    def __init__(
        self,
        model: TransitionModel,
        initial_state,
        projector: Optional[CohortProjector] = None
    ):
        """
        Args:
            model: Source of transition matrices
            initial_state: StateVector shared by all scenarios
            projector: CohortProjector (default: numpy kernel)
        """
        initial_state = make_state_vector(initial_state)
        if initial_state.shape[0] != model.n_states:
            raise DimensionMismatch(
                f"Initial state has {initial_state.shape[0]} states, model has {model.n_states}"
            )
        initial_state.flags.writeable = False

        self.model = model
        self.initial_state = initial_state
        self.projector = projector if projector is not None else CohortProjector()

    def make_tasks(
        self,
        treatments: Iterable[int],
        samples: Iterable[int],
        n_cycles: int
    ) -> List[ProjectionTask]:
        """One task per (treatment, sample) pair, treatment-major order."""
        samples = list(samples)
        return [
            ProjectionTask(
                scenario=Scenario(treatment, sample, n_cycles),
                initial_state=self.initial_state,
                model=self.model,
                projector=self.projector
            )
            for treatment in treatments
            for sample in samples
        ]

    def run(
        self,
        treatments: Iterable[int],
        samples: Iterable[int],
        n_cycles: int,
        strategy: Optional[ExecutionStrategy] = None,
        cancel_token: Optional[CancelToken] = None
    ) -> ExperimentResult:
        """
        Project every (treatment, sample) pair.

        Args:
            treatments: Treatment indices (e.g. range(n_treatments))
            samples: PSA sample indices (e.g. range(n_samples))
            n_cycles: Cycles per projection (>= 1)
            strategy: How tasks are scheduled (default: Sequential)
            cancel_token: Optional token to stop the run between scenarios

        Returns:
            ExperimentResult with exactly one Trajectory per pair

        Raises:
            StrategyExecutionError: A scenario failed; carries its (treatment, sample)
            RunCancelled: The cancel token was set
        """
        check_n_cycles(n_cycles)
        strategy = strategy if strategy is not None else Sequential()
        tasks = self.make_tasks(treatments, samples, n_cycles)

        # Keys allocated up front from the known scenario set
        trajectories: Dict[ScenarioId, Optional[Trajectory]] = dict.fromkeys(
            task.scenario_id for task in tasks
        )
        if len(trajectories) != len(tasks):
            raise ValueError("Duplicate (treatment, sample) pairs in run")

        logger.info(
            "Running %d scenarios x %d cycles with %s",
            len(tasks), n_cycles, strategy
        )
        start = time.perf_counter()
        executed = strategy.execute(tasks, cancel_token=cancel_token)
        elapsed = time.perf_counter() - start

        unexpected = set(executed) - set(trajectories)
        if unexpected:
            raise RuntimeError(
                f"{strategy!r} returned unknown scenarios: {sorted(unexpected)[:5]}"
            )
        for key, trajectory in executed.items():
            trajectories[key] = trajectory
        missing = [key for key, trajectory in trajectories.items() if trajectory is None]
        if missing:
            raise RuntimeError(
                f"{strategy!r} returned no trajectory for {len(missing)} scenarios, "
                f"e.g. {missing[:5]}"
            )

        logger.info("Finished %d scenarios in %.4fs", len(trajectories), elapsed)
        return ExperimentResult(
            trajectories=trajectories,
            strategy=strategy.name or type(strategy).__name__,
            n_cycles=n_cycles,
            elapsed=elapsed
        )

    def run_all(
        self,
        n_cycles: int,
        strategy: Optional[ExecutionStrategy] = None,
        cancel_token: Optional[CancelToken] = None
    ) -> ExperimentResult:
        """Run the model's full treatment x sample grid."""
        return self.run(
            range(self.model.n_treatments),
            range(self.model.n_samples),
            n_cycles,
            strategy=strategy,
            cancel_token=cancel_token
        )
