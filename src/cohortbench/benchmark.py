"""
Strategy benchmarking.

Times each execution strategy on the same run and checks that they agree
numerically, producing the strategy comparison table.
"""

from typing import Dict, Iterable, List, Optional
import logging
import statistics
import time

import numpy as np
import pandas as pd

from .config import DEFAULT_N_REPEATS, BenchmarkConfig
from .projector import CohortProjector
from .runner import ExperimentResult, ExperimentRunner
from .scenarios.base import CohortScenario, build_runner
from .strategies import ExecutionStrategy, get_strategy

logger = logging.getLogger(__name__)


def default_strategies(n_workers: Optional[int] = None) -> Dict[str, ExecutionStrategy]:
    """All five strategies keyed by registry name, in increasing sophistication."""
    return {
        'sequential': get_strategy('sequential'),
        'threaded_map': get_strategy('threaded_map'),
        'process_parallel': get_strategy('process_parallel', n_workers=n_workers),
        'vectorized_batch': get_strategy('vectorized_batch'),
        'native_loop': get_strategy('native_loop'),
    }


def strategies_from_config(config: BenchmarkConfig) -> Dict[str, ExecutionStrategy]:
    strategies = {}
    for name in config.strategies:
        kwargs = {'n_workers': config.n_workers} if name == 'process_parallel' else {}
        strategies[name] = get_strategy(name, **kwargs)
    return strategies


def max_abs_difference(a: ExperimentResult, b: ExperimentResult) -> float:
    """Largest absolute difference between matching trajectories."""
    if set(a) != set(b):
        raise ValueError("Results cover different scenarios")
    if not len(a):
        return 0.0
    return max(float(np.max(np.abs(a[key].states - b[key].states))) for key in a)


def time_strategy(
    runner: ExperimentRunner,
    strategy: ExecutionStrategy,
    treatments: Iterable[int],
    samples: Iterable[int],
    n_cycles: int,
    n_repeats: int = DEFAULT_N_REPEATS
) -> Dict[str, object]:
    """
    Time one strategy over n_repeats runs.

    Returns:
        Dict with timing statistics (seconds): min, mean, median, std,
        n_repeats, and 'result' (the last ExperimentResult)
    """
    if n_repeats < 1:
        raise ValueError(f"n_repeats must be >= 1, got {n_repeats}")
    treatments = list(treatments)
    samples = list(samples)

    strategy.warmup()
    times: List[float] = []
    result = None
    for _ in range(n_repeats):
        t0 = time.perf_counter()
        result = runner.run(treatments, samples, n_cycles, strategy=strategy)
        times.append(time.perf_counter() - t0)

    return {
        'min': min(times),
        'mean': statistics.mean(times),
        'median': statistics.median(times),
        'std': statistics.stdev(times) if len(times) > 1 else 0.0,
        'n_repeats': n_repeats,
        'result': result,
    }


def compare_strategies(
    runner: ExperimentRunner,
    strategies: Dict[str, ExecutionStrategy],
    treatments: Iterable[int],
    samples: Iterable[int],
    n_cycles: int,
    n_repeats: int = DEFAULT_N_REPEATS,
    reference: Optional[str] = None
) -> pd.DataFrame:
    """
    Compare strategies on the same run.

    Args:
        runner: ExperimentRunner with model and initial state
        strategies: Dict mapping label to strategy
        treatments: Treatment indices
        samples: PSA sample indices
        n_cycles: Cycles per projection
        n_repeats: Timed runs per strategy
        reference: Label whose results the others are checked against
                   (default: first strategy)

    Returns:
        DataFrame indexed by strategy label with columns
        min, mean, median, std, n_repeats, relative, max_abs_diff
    """
    if not strategies:
        raise ValueError("No strategies to compare")
    if reference is None:
        reference = next(iter(strategies))
    if reference not in strategies:
        raise KeyError(f"Reference strategy '{reference}' not in {list(strategies)}")

    treatments = list(treatments)
    samples = list(samples)

    timings = {}
    for label, strategy in strategies.items():
        logger.info("Timing %s", label)
        timings[label] = time_strategy(
            runner, strategy, treatments, samples, n_cycles, n_repeats
        )

    ref_result = timings[reference]['result']
    rows = []
    for label, timing in timings.items():
        row = {k: v for k, v in timing.items() if k != 'result'}
        row['strategy'] = label
        row['max_abs_diff'] = max_abs_difference(timing['result'], ref_result)
        rows.append(row)

    df = pd.DataFrame(rows).set_index('strategy')
    df['relative'] = df['mean'] / df['mean'].min()
    return df[['min', 'mean', 'median', 'std', 'n_repeats', 'relative', 'max_abs_diff']]


def run_benchmark(runner: ExperimentRunner, config: BenchmarkConfig) -> pd.DataFrame:
    """Compare the strategies named in config over its treatment x sample grid."""
    if config.n_treatments > runner.model.n_treatments or config.n_samples > runner.model.n_samples:
        raise ValueError(
            f"Config asks for {config.n_treatments} treatments x {config.n_samples} samples, "
            f"model has {runner.model.n_treatments} x {runner.model.n_samples}"
        )
    return compare_strategies(
        runner,
        strategies_from_config(config),
        range(config.n_treatments),
        range(config.n_samples),
        config.n_cycles,
        n_repeats=config.n_repeats,
    )


def run_scenario_benchmark(
    scenario: CohortScenario,
    config: BenchmarkConfig,
    projector: Optional[CohortProjector] = None
) -> pd.DataFrame:
    """
    Draw the scenario's PSA samples with config.seed and benchmark them.

    The same seed gives the same transition matrices, so tables from
    repeated runs time identical work.
    """
    runner = build_runner(scenario, config.n_samples, seed=config.seed, projector=projector)
    logger.info(
        "Benchmarking %s: %d samples, seed %s",
        type(scenario).__name__, config.n_samples, config.seed
    )
    return run_benchmark(runner, config)


def print_benchmark_table(df: pd.DataFrame, title: str = "Strategy comparison") -> None:
    """Print timings in milliseconds, fastest first."""
    print(title)
    print(f"  {'strategy':<18} {'mean (ms)':>10} {'min (ms)':>10} {'relative':>9} {'max |diff|':>11}")
    for label, row in df.sort_values('mean').iterrows():
        print(
            f"  {label:<18} {row['mean'] * 1e3:>10.2f} {row['min'] * 1e3:>10.2f} "
            f"{row['relative']:>8.1f}x {row['max_abs_diff']:>11.2e}"
        )
