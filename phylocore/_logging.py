"""
_logging.py
===========
Logging functions for phylocore.

All functions in this module have NO side effects except logging.  They take
computed values as parameters and format/emit log messages, so computation
stays separate from presentation and logging can be silenced or captured in
tests without touching the algorithms.
"""

import logging
import os
import platform
from typing import List, Optional, Sequence

logger = logging.getLogger(__name__)


# ============================================================================ #
# Backend Logging (called once at import of the neighbor-joining engine)
# ============================================================================ #


def log_backend_status(backends_available: List[str], numba_version: str) -> None:
    """
    Log system capabilities and available scan backends at INFO level.

    Parameters
    ----------
    backends_available : List[str]
        Backends in preference order (last is best).
    numba_version : str
        Version string of the loaded numba.
    """
    cpu_count = os.cpu_count() or 1
    logger.info(
        f"System: {platform.machine()} ({platform.system()}), "
        f"{cpu_count} CPU cores, Python {platform.python_version()}"
    )
    logger.info(f"Numba {numba_version} loaded successfully")
    logger.info(f"Available neighbor-joining backends: {', '.join(backends_available)}")
    logger.info(f"Default backend='best' will use: {backends_available[-1]}")


# ============================================================================ #
# Neighbor-joining Logging
# ============================================================================ #


def log_nj_join(
    step: int, left: int, right: int, left_length: float, right_length: float, criterion: float
) -> None:
    """DEBUG line for one join: the two cluster slots and their new branches."""
    logger.debug(
        "Join %d: clusters %d + %d (Q=%.6g), branch lengths %.6g / %.6g",
        step,
        left,
        right,
        criterion,
        left_length,
        right_length,
    )


def log_negative_branch_lengths(n_negative: int, n_branches: int) -> None:
    """Warn when the distance matrix is non-additive enough to give negative branches."""
    if n_negative > 0:
        logger.warning(
            "Neighbor-joining produced %d negative branch length(s) out of %d. "
            "The distance matrix is not additive; lengths were kept as computed.",
            n_negative,
            n_branches,
        )


def log_nj_complete(
    n_leaves: int,
    backend: str,
    rooted_on: Optional[str],
    outgroups: Optional[Sequence[int]],
    guided: bool = False,
) -> None:
    """INFO summary once a neighbor-joining tree has been built and rooted."""
    kind = "Guided neighbor-joining" if guided else "Neighbor-joining"
    if outgroups:
        root_note = f"rooted on longest outgroup branch ({len(outgroups)} outgroup(s))"
    elif rooted_on is not None:
        root_note = f"rooted on {rooted_on}"
    else:
        root_note = "rooted on longest branch"
    logger.info("%s complete: %d leaves, backend=%s, %s", kind, n_leaves, backend, root_note)


def log_join_costs(n_species: int, cost_per_dup: float, cost_per_loss: float) -> None:
    logger.info(
        "Join costs computed for %d species-tree nodes (dup=%.3g, loss=%.3g)",
        n_species,
        cost_per_dup,
        cost_per_loss,
    )


# ============================================================================ #
# Reconciliation Logging
# ============================================================================ #


def log_reroot_candidate(edge_index: int, label: Optional[str], dups: int, losses: int) -> None:
    logger.debug(
        "Reroot candidate %d (above %s): %d dup(s), %d loss(es)",
        edge_index,
        label if label is not None else "<unlabeled>",
        dups,
        losses,
    )


def log_reroot_result(n_edges: int, best_edge: int, dups: int, losses: int) -> None:
    """INFO summary of the brute-force rerooting search."""
    logger.info(
        "Rerooting evaluated %d branch(es); best is branch %d with "
        "%d duplication(s) and %d loss(es)",
        n_edges,
        best_edge,
        dups,
        losses,
    )


# ============================================================================ #
# Bootstrap Logging
# ============================================================================ #


def log_bootstrap_summary(
    n_nodes: int, n_bootstraps: int, mean_support: float, reconciliation: bool
) -> None:
    """INFO summary after scoring a tree against a bootstrap population."""
    if n_bootstraps == 0:
        logger.warning(
            "Bootstrap population is empty; all %d node(s) scored 0 support.",
            n_nodes,
        )
        return
    kind = "reconciliation-aware " if reconciliation else ""
    logger.info(
        "Scored %d node(s) against %d %sbootstrap tree(s): mean support %.3f",
        n_nodes,
        n_bootstraps,
        kind,
        mean_support,
    )
