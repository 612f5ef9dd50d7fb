"""
Default parameters and numerical tolerances.
"""

from dataclasses import dataclass, field
from typing import Optional, Tuple


# Maximum absolute deviation of a transition matrix row sum from 1.0
ROW_SUM_TOL = 1e-8

# Maximum relative drift of the cohort total over a projection
MASS_TOL = 1e-9

DEFAULT_N_CYCLES = 30
DEFAULT_N_SAMPLES = 1000
DEFAULT_N_REPEATS = 3


@dataclass
class BenchmarkConfig:
    """
    Parameters for one strategy comparison.

    Attributes:
        n_treatments: Number of treatment options
        n_samples: Number of PSA samples per treatment
        n_cycles: Cycles per projection
        n_repeats: Timed repetitions per strategy
        n_workers: Worker processes for the parallel strategy (None = cpu count)
        seed: Seed for PSA sampling in run_scenario_benchmark
        strategies: Registry names of strategies to compare, in table order
    """
    n_treatments: int = 2
    n_samples: int = DEFAULT_N_SAMPLES
    n_cycles: int = DEFAULT_N_CYCLES
    n_repeats: int = DEFAULT_N_REPEATS
    n_workers: Optional[int] = None
    seed: Optional[int] = None
    strategies: Tuple[str, ...] = field(default_factory=lambda: (
        'sequential',
        'threaded_map',
        'process_parallel',
        'vectorized_batch',
        'native_loop',
    ))

    def __post_init__(self):
        for name in ('n_treatments', 'n_samples', 'n_cycles', 'n_repeats'):
            value = getattr(self, name)
            if value < 1:
                raise ValueError(f"{name} must be >= 1, got {value}")
