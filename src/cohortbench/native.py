"""
Compiled cycle loops (numba).

project_cycles runs the whole per-scenario recurrence in one compiled call,
so the interpreter is entered once per scenario rather than once per cycle.
Functions are compiled lazily on first call.

Inputs must be C-contiguous float64 arrays with matching dimensions; callers
validate before calling, since errors inside compiled code are not reported
with scenario context.
"""

import numba as nb
import numpy as np


njit_settings = dict(nogil=True)


@nb.njit(**njit_settings)
def advance_one_cycle_native(state, matrix):
    """Compiled advance_one_cycle: out[t] = sum_s state[s] * matrix[s, t]."""
    n = state.shape[0]
    out = np.zeros(n, dtype=np.float64)
    for source in range(n):
        weight = state[source]
        if weight == 0.0:
            continue
        for target in range(n):
            out[target] += weight * matrix[source, target]
    return out


@nb.njit(**njit_settings)
def project_cycles(initial_state, matrix, n_cycles):
    """
    Full projection in compiled code.

    Returns:
        Array (n_cycles + 1, n_states); row 0 is initial_state
    """
    n = initial_state.shape[0]
    states = np.empty((n_cycles + 1, n), dtype=np.float64)
    for i in range(n):
        states[0, i] = initial_state[i]
    for cycle in range(1, n_cycles + 1):
        for target in range(n):
            states[cycle, target] = 0.0
        for source in range(n):
            weight = states[cycle - 1, source]
            if weight == 0.0:
                continue
            for target in range(n):
                states[cycle, target] += weight * matrix[source, target]
    return states


def as_native_array(values) -> np.ndarray:
    """C-contiguous float64 copy/view suitable for the compiled routines."""
    return np.ascontiguousarray(values, dtype=np.float64)
