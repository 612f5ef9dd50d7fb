"""
Execution strategies: how a run's independent projections are scheduled.

Every strategy has the same capability, execute(tasks) -> {ScenarioId: Trajectory},
and must give the same numbers (within floating-point tolerance). They differ
only in overhead:

    Sequential        - plain for loop, lowest fixed overhead
    ThreadedMap       - builtin map over tasks (still one thread); no loop
                        bookkeeping or result growth in Python code
    ProcessParallel   - multiprocessing.Pool; wins only when per-task work
                        outweighs worker start-up and data transfer
    VectorizedBatch   - all samples of one treatment advanced together with a
                        single batched matmul per cycle
    NativeLoopOffload - one call per scenario into a compiled cycle loop

A failure inside any task surfaces as StrategyExecutionError tagged with the
task's (treatment, sample); remaining unscheduled tasks are abandoned.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from functools import partial
from multiprocessing import get_context
from typing import Dict, List, Optional, Sequence, Tuple, Type
import logging
import os
import pickle
import threading

import numpy as np

from .cohort import Scenario, ScenarioId, Trajectory
from .errors import RunCancelled, StrategyExecutionError
from .native import as_native_array, project_cycles
from .projector import CohortProjector, check_dimensions, check_mass_preserved, check_n_cycles
from .transition import ArrayTransitionModel, TransitionModel

logger = logging.getLogger(__name__)


# =============================================================================
# Tasks and cancellation
# =============================================================================

@dataclass(frozen=True, eq=False)
class ProjectionTask:
    """
    One scenario's unit of work: calling it produces the Trajectory.

    The matrix is fetched from the model when the task runs, so index errors
    surface during execution with the scenario's identity attached.
    """
    scenario: Scenario
    initial_state: np.ndarray
    model: TransitionModel
    projector: CohortProjector

    @property
    def scenario_id(self) -> ScenarioId:
        return self.scenario.id

    def matrix(self) -> np.ndarray:
        return self.model.get_matrix(self.scenario.treatment, self.scenario.sample)

    def __call__(self) -> Trajectory:
        return self.projector.project(
            self.initial_state,
            self.matrix(),
            self.scenario.n_cycles,
            scenario_id=self.scenario_id
        )


class CancelToken:
    """Cooperative cancellation flag checked by strategies between scenarios."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


def _check_cancelled(cancel_token: Optional[CancelToken]) -> None:
    if cancel_token is not None and cancel_token.cancelled:
        raise RunCancelled("Run cancelled")


def run_task(task: ProjectionTask, cancel_token: Optional[CancelToken] = None) -> Trajectory:
    """Run one task, tagging any failure with its scenario identity."""
    _check_cancelled(cancel_token)
    try:
        return task()
    except Exception as exc:
        raise StrategyExecutionError(task.scenario_id, exc) from exc


# =============================================================================
# Strategy base class
# =============================================================================

class ExecutionStrategy(ABC):
    """
    Abstract base for execution strategies.

    Strategies schedule work only: they never skip, reorder into the result,
    or fabricate scenarios.
    """

    name: str = ''

    @abstractmethod
    def execute(
        self,
        tasks: Sequence[ProjectionTask],
        cancel_token: Optional[CancelToken] = None
    ) -> Dict[ScenarioId, Trajectory]:
        """
        Run every task.

        Args:
            tasks: Independent projection tasks
            cancel_token: Optional token checked between scenarios

        Returns:
            Dict mapping each task's ScenarioId to its Trajectory

        Raises:
            StrategyExecutionError: First task failure, with its scenario identity
            RunCancelled: If cancel_token was set before all tasks finished
        """
        pass

    def warmup(self) -> None:
        """One-off preparation (e.g. compilation) excluded from timings."""
        pass

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class Sequential(ExecutionStrategy):
    """Run tasks one at a time, in order."""

    name = 'sequential'

    def execute(self, tasks, cancel_token=None):
        results: Dict[ScenarioId, Trajectory] = {}
        for task in tasks:
            results[task.scenario_id] = run_task(task, cancel_token)
        return results


class ThreadedMap(ExecutionStrategy):
    """
    Run tasks through the builtin map.

    Still a single thread: map drives the iteration in C and the results are
    collected in one dict() call, so there is no per-task index bookkeeping.
    """

    name = 'threaded_map'

    def execute(self, tasks, cancel_token=None):
        runner = partial(run_task, cancel_token=cancel_token)
        return dict(zip((t.scenario_id for t in tasks), map(runner, tasks)))


# =============================================================================
# Process-parallel execution
# =============================================================================

# Shared (initial_state, model, projector) contexts, set once per worker
_worker_contexts: List[Tuple[np.ndarray, TransitionModel, CohortProjector]] = []


def _init_worker(contexts) -> None:
    global _worker_contexts
    _worker_contexts = contexts


def _run_in_worker(item: Tuple[int, Scenario]):
    """
    Top-level function for pickling by multiprocessing.Pool.

    Failures are returned, not raised, so the parent knows which scenario
    failed and can re-raise with that identity.
    """
    context_index, scenario = item
    initial_state, model, projector = _worker_contexts[context_index]
    task = ProjectionTask(scenario, initial_state, model, projector)
    try:
        return scenario.id, task(), None
    except Exception as exc:
        return scenario.id, None, _transferable(exc)


def _transferable(exc: Exception) -> Exception:
    """
    The exception itself if it survives a pickle round trip, else a RuntimeError
    carrying its type and message.

    An exception that pickles but cannot be rebuilt (e.g. an __init__ with
    extra required arguments) would kill the pool's result handler thread.
    """
    try:
        pickle.loads(pickle.dumps(exc))
    except Exception:
        return RuntimeError(f"{type(exc).__name__}: {exc}")
    return exc


class ProcessParallel(ExecutionStrategy):
    """
    Distribute tasks across worker processes.

    Shared inputs (initial state, transition model, projector) are sent to
    each worker once via the pool initializer; each task then ships only its
    Scenario. Results are merged by ScenarioId in completion order. The
    first failure terminates the pool.
    """

    name = 'process_parallel'

    def __init__(
        self,
        n_workers: Optional[int] = None,
        chunksize: Optional[int] = None,
        start_method: Optional[str] = None
    ):
        """
        Args:
            n_workers: Worker processes (default: os.cpu_count())
            chunksize: Scenarios per dispatch (default: ~4 chunks per worker)
            start_method: multiprocessing start method (default: platform default)
        """
        if n_workers is not None and n_workers < 1:
            raise ValueError(f"n_workers must be >= 1, got {n_workers}")
        if chunksize is not None and chunksize < 1:
            raise ValueError(f"chunksize must be >= 1, got {chunksize}")
        self.n_workers = n_workers or os.cpu_count() or 1
        self.chunksize = chunksize
        self.start_method = start_method

    def execute(self, tasks, cancel_token=None):
        _check_cancelled(cancel_token)
        if not tasks:
            return {}

        contexts = []
        context_index: Dict[Tuple[int, int, int], int] = {}
        items = []
        for task in tasks:
            key = (id(task.initial_state), id(task.model), id(task.projector))
            if key not in context_index:
                context_index[key] = len(contexts)
                contexts.append((task.initial_state, task.model, task.projector))
            items.append((context_index[key], task.scenario))

        n_workers = min(self.n_workers, len(items))
        chunksize = self.chunksize or max(1, len(items) // (n_workers * 4))
        logger.debug(
            "Starting pool: %d workers, %d tasks, chunksize %d",
            n_workers, len(items), chunksize
        )

        results: Dict[ScenarioId, Trajectory] = {}
        ctx = get_context(self.start_method)
        with ctx.Pool(processes=n_workers, initializer=_init_worker, initargs=(contexts,)) as pool:
            for scenario_id, trajectory, exc in pool.imap_unordered(
                _run_in_worker, items, chunksize=chunksize
            ):
                if exc is not None:
                    raise StrategyExecutionError(scenario_id, exc) from exc
                _check_cancelled(cancel_token)
                results[scenario_id] = trajectory
        return results

    def __repr__(self) -> str:
        return f"ProcessParallel(n_workers={self.n_workers})"


# =============================================================================
# Vectorized batch execution
# =============================================================================

class VectorizedBatch(ExecutionStrategy):
    """
    Advance all samples of a treatment together.

    Tasks sharing a treatment, cycle count and inputs are stacked into one
    (k, n_states, n_states) array and projected with a single batched
    matrix product per cycle.
    """

    name = 'vectorized_batch'

    def execute(self, tasks, cancel_token=None):
        groups: Dict[tuple, List[ProjectionTask]] = {}
        for task in tasks:
            key = (
                id(task.initial_state), id(task.model), id(task.projector),
                task.scenario.treatment, task.scenario.n_cycles
            )
            groups.setdefault(key, []).append(task)

        results: Dict[ScenarioId, Trajectory] = {}
        for group in groups.values():
            _check_cancelled(cancel_token)
            results.update(self._execute_group(group))
        return results

    def _execute_group(self, group: List[ProjectionTask]) -> Dict[ScenarioId, Trajectory]:
        first = group[0]
        matrices = self._gather_matrices(group)

        logger.debug(
            "Batched treatment %d: %d samples x %d cycles",
            first.scenario.treatment, len(group), first.scenario.n_cycles
        )
        try:
            states = first.projector.project_many(
                first.initial_state, matrices, first.scenario.n_cycles,
                label=f" for treatment {first.scenario.treatment}"
            )
        except Exception as exc:
            raise StrategyExecutionError(first.scenario_id, exc) from exc

        return {
            task.scenario_id: Trajectory(states=states[i], scenario_id=task.scenario_id)
            for i, task in enumerate(group)
        }

    @staticmethod
    def _gather_matrices(group: List[ProjectionTask]) -> np.ndarray:
        """Stack the group's matrices, validating each against the initial state."""
        first = group[0]
        model = first.model
        treatment = first.scenario.treatment
        samples = np.array([task.scenario.sample for task in group])

        # Fast path: one fancy-index gather from the in-memory array
        if (
            isinstance(model, ArrayTransitionModel)
            and 0 <= treatment < model.n_treatments
            and samples.min() >= 0 and samples.max() < model.n_samples
            and np.ndim(first.initial_state) == 1
            and len(first.initial_state) == model.n_states
        ):
            try:
                check_n_cycles(first.scenario.n_cycles)
            except Exception as exc:
                raise StrategyExecutionError(first.scenario_id, exc) from exc
            return model.as_array()[treatment, samples]

        if isinstance(model, ArrayTransitionModel):
            logger.warning(
                "Treatment %d: falling back to gathering %d matrices one by one",
                treatment, len(group)
            )
        else:
            logger.debug("Treatment %d: gathering %d matrices from %r", treatment, len(group), model)
        initial_state = np.asarray(first.initial_state, dtype=np.float64)
        n_states = initial_state.shape[-1] if initial_state.ndim else 0
        matrices = np.empty((len(group), n_states, n_states), dtype=np.float64)
        for i, task in enumerate(group):
            try:
                matrix = np.asarray(task.matrix(), dtype=np.float64)
                check_dimensions(initial_state, matrix)
                check_n_cycles(task.scenario.n_cycles)
            except Exception as exc:
                raise StrategyExecutionError(task.scenario_id, exc) from exc
            matrices[i] = matrix
        return matrices


# =============================================================================
# Compiled loop offload
# =============================================================================

class NativeLoopOffload(ExecutionStrategy):
    """
    Run each scenario's full cycle loop in one compiled call.

    The interpreter handles only per-scenario dispatch; the per-cycle and
    per-state loops run in numba-compiled code.
    """

    name = 'native_loop'

    def execute(self, tasks, cancel_token=None):
        results: Dict[ScenarioId, Trajectory] = {}
        for task in tasks:
            _check_cancelled(cancel_token)
            results[task.scenario_id] = self._run(task)
        return results

    @staticmethod
    def _run(task: ProjectionTask) -> Trajectory:
        try:
            initial_state = as_native_array(task.initial_state)
            matrix = as_native_array(task.matrix())
            check_dimensions(initial_state, matrix)
            check_n_cycles(task.scenario.n_cycles)
            states = project_cycles(initial_state, matrix, int(task.scenario.n_cycles))
            projector = task.projector
            if projector.check_mass:
                check_mass_preserved(
                    states, projector.mass_tol, f" for scenario {tuple(task.scenario_id)}"
                )
        except Exception as exc:
            raise StrategyExecutionError(task.scenario_id, exc) from exc
        return Trajectory(states=states, scenario_id=task.scenario_id)

    def warmup(self) -> None:
        """Trigger compilation on a trivial input."""
        project_cycles(np.ones(1), np.ones((1, 1)), 1)


# =============================================================================
# Registry
# =============================================================================

STRATEGIES: Dict[str, Type[ExecutionStrategy]] = {
    cls.name: cls
    for cls in (Sequential, ThreadedMap, ProcessParallel, VectorizedBatch, NativeLoopOffload)
}


def get_strategy(name: str, **kwargs) -> ExecutionStrategy:
    """
    Create a strategy by registry name.

    Args:
        name: One of STRATEGIES
        **kwargs: Passed to the strategy constructor (e.g. n_workers)
    """
    if name not in STRATEGIES:
        raise KeyError(f"Unknown strategy '{name}'; choose from {sorted(STRATEGIES)}")
    return STRATEGIES[name](**kwargs)
