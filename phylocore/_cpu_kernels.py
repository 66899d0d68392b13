"""
_cpu_kernels.py
===============
CPU-accelerated neighbor-joining pair scan using Numba.

This module contains ONLY numba-accelerated code and should not import other
project modules to avoid import-time complications.

Exported Functions
------------------
_nj_select_pair : njit function
    Scan every active cluster pair and return the one minimising the
    (optionally penalised) neighbor-joining criterion.

Notes
-----
- cache=True persists compiled binary to disk for faster subsequent runs
- The scan is serial: the tie-break rule (first pair in scan order) is part
  of the result, and r^2 / 2 pairs per join is far below the point where a
  parallel reduction pays for itself.
"""

import numpy as np
from numba import njit


# ======================================================================== #
# CPU Kernels                                                               #
# ======================================================================== #


@njit(cache=True)
def _nj_select_pair(dist, row_sums, active, n_active, cluster_species, join_costs):
    """
    Return ``(a, b, q)`` for the active pair with the smallest criterion.

    The criterion for slots ``i = active[a]``, ``j = active[b]`` (``b < a``)
    is::

        (n_active - 2) * dist[i, j] - row_sums[i] - row_sums[j]
            + join_costs[cluster_species[i], cluster_species[j]]

    Parameters
    ----------
    dist : float64[:, :]
        Working distance matrix indexed by cluster slot.
    row_sums : float64[:]
        ``row_sums[i]`` is the sum of ``dist[i, k]`` over active slots ``k``.
    active : int64[:]
        Active cluster slots, ascending; only the first ``n_active`` are used.
    n_active : int
        Number of active clusters (at least 3).
    cluster_species : int64[:]
        Join-cost index of each slot's species.  All zeros for classic NJ.
    join_costs : float64[:, :]
        Penalty table.  A 1x1 zero matrix for classic NJ.

    Returns
    -------
    a, b : int
        Positions in ``active`` of the chosen pair, ``b < a``.  Rows are
        scanned ascending and, within a row, columns ascending; the first
        minimum wins.
    q : float
        Criterion value of the chosen pair.
    """
    scale = n_active - 2.0
    best_q = np.inf
    best_a = -1
    best_b = -1
    for a in range(1, n_active):
        i = active[a]
        for b in range(a):
            j = active[b]
            q = (
                scale * dist[i, j]
                - row_sums[i]
                - row_sums[j]
                + join_costs[cluster_species[i], cluster_species[j]]
            )
            if q < best_q:
                best_q = q
                best_a = a
                best_b = b
    return best_a, best_b, best_q
