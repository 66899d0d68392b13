"""
_nj.py
======
Neighbor-joining tree construction, classic and species-guided.

Classic NJ
----------
Given an N x N distance matrix (only the strict lower triangle, ``[i, j]``
with ``i > j``, is read), clusters are joined greedily.  With ``r`` active
clusters and ``R(i)`` the sum of distances from ``i`` to the other active
clusters, the pair minimising::

    Q(i, j) = (r - 2) * d(i, j) - R(i) - R(j)

is joined under a new internal node with branch lengths::

    l_i = d(i, j) / 2 + (R(i) - R(j)) / (2 (r - 2))
    l_j = d(i, j) - l_i

and the new cluster's distances are ``(d(i, k) + d(j, k) - d(i, j)) / 2``.
Pairs are scanned row by row (rows ascending, columns below the row
ascending) and the first minimum wins, so the output is fully deterministic.
When two clusters remain they are joined by a single edge and the unrooted
result is rooted at the midpoint of its longest branch (or of the longest
branch leading to an outgroup leaf).

Guided NJ
---------
The criterion gains a penalty ``join_costs[s_i, s_j]`` where ``s_i`` is the
species of cluster ``i``: a leaf's species comes from the caller's map and a
joined cluster takes the species-tree MRCA of its two parts.  Joins whose
species relationship implies fewer duplications and losses are preferred.
The finished tree is rooted by reconciliation against the species tree.

Backends
--------
The pair scan runs either numpy-vectorised (``'python'``) or as a compiled
loop (``'numba'``, see ``_cpu_kernels``).  Both pick the same pair.

Output trees label leaves ``"0"`` .. ``"N-1"`` by matrix row and carry
indexed info (see ``add_indexed_info``).
"""

import logging
from typing import Dict, Optional, Sequence, Tuple

import numba
import numpy as np

from phylocore._backend import get_available_backends, resolve_backend
from phylocore._cpu_kernels import _nj_select_pair
from phylocore._exceptions import LeafIndexError, MalformedInputError
from phylocore._index import add_indexed_info
from phylocore._logging import (
    log_backend_status,
    log_join_costs,
    log_negative_branch_lengths,
    log_nj_complete,
    log_nj_join,
)
from phylocore._reconcile import root_and_reconcile_binary
from phylocore._tree import Tree, reroot_on_branch
from phylocore._utils import lower_triangle_to_symmetric, require_binary

logger = logging.getLogger(__name__)

# Log system info and backend availability on module import
log_backend_status(get_available_backends(), numba.__version__)


# ======================================================================== #
# Pair scan                                                                 #
# ======================================================================== #


def _select_pair_python(dist, row_sums, active, n_active, cluster_species, join_costs):
    """numpy version of ``_cpu_kernels._nj_select_pair``; same ties, same result."""
    idx = active[:n_active]
    sums = row_sums[idx]
    species = cluster_species[idx]
    q = (
        (n_active - 2.0) * dist[np.ix_(idx, idx)]
        - sums[:, None]
        - sums[None, :]
        + join_costs[np.ix_(species, species)]
    )
    # Only b < a is scanned
    q[np.triu_indices(n_active)] = np.inf
    # argmin is row-major and returns the first minimum
    a, b = divmod(int(np.argmin(q)), n_active)
    return a, b, float(q[a, b])


def _select_pair(backend, dist, row_sums, active, n_active, cluster_species, join_costs):
    if backend == "numba":
        a, b, q = _nj_select_pair(
            dist, row_sums, active, n_active, cluster_species, join_costs
        )
        return int(a), int(b), float(q)
    return _select_pair_python(
        dist, row_sums, active, n_active, cluster_species, join_costs
    )


# ======================================================================== #
# Clustering                                                                #
# ======================================================================== #


def _join_clusters(
    dist: np.ndarray,
    backend: str,
    cluster_species: Optional[np.ndarray] = None,
    join_costs: Optional[np.ndarray] = None,
    species_mrca_matrix: Optional[np.ndarray] = None,
) -> Tree:
    """
    Run the clustering loop on a symmetric matrix and return the tree.

    For three or more leaves the result is unrooted: an internal node with
    three children.  One and two leaves give a leaf and a two-leaf tree
    split at the midpoint.
    """
    n = dist.shape[0]
    nodes = [Tree(label=str(i)) for i in range(n)]
    if n == 1:
        return nodes[0]
    if n == 2:
        root = Tree()
        for leaf in nodes:
            leaf.parent = root
            leaf.branch_length = dist[1, 0] / 2.0
        return root

    d = dist.copy()
    if cluster_species is None:
        species = np.zeros(n, dtype=np.int64)
        costs = np.zeros((1, 1), dtype=np.float64)
    else:
        species = cluster_species.copy()
        costs = join_costs
    active = np.arange(n, dtype=np.int64)
    row_sums = np.zeros(n, dtype=np.float64)
    n_negative = 0

    step = 0
    while active.size > 2:
        n_active = active.size
        row_sums[active] = d[np.ix_(active, active)].sum(axis=1)
        a, b, q = _select_pair(backend, d, row_sums, active, n_active, species, costs)
        i, j = active[a], active[b]

        dij = d[i, j]
        length_i = 0.5 * dij + (row_sums[i] - row_sums[j]) / (2.0 * (n_active - 2))
        length_j = dij - length_i
        n_negative += int(length_i < 0) + int(length_j < 0)
        log_nj_join(step, int(j), int(i), length_j, length_i, q)

        joined = Tree()
        nodes[j].parent = joined
        nodes[j].branch_length = length_j
        nodes[i].parent = joined
        nodes[i].branch_length = length_i

        # The joined cluster takes over the lower slot
        merged = 0.5 * (d[i, active] + d[j, active] - dij)
        d[j, active] = merged
        d[active, j] = merged
        d[j, j] = 0.0
        if species_mrca_matrix is not None:
            species[j] = species_mrca_matrix[species[i], species[j]]
        nodes[j] = joined
        nodes[i] = None
        active = np.delete(active, a)
        step += 1

    lo, hi = int(active[0]), int(active[1])
    # Hang the last cluster off an internal node so the root has three children
    if nodes[lo].is_leaf:
        parent, child = nodes[hi], nodes[lo]
    else:
        parent, child = nodes[lo], nodes[hi]
    child.parent = parent
    child.branch_length = d[hi, lo]

    log_negative_branch_lengths(n_negative, 2 * (n - 2) + 1)
    return parent


def _root_on_longest_branch(
    tree: Tree, outgroups: Optional[Sequence[int]]
) -> Tuple[Tree, Optional[str]]:
    """Re-root *tree* at the midpoint of its longest (outgroup) branch."""
    outgroup_labels = None
    if outgroups:
        outgroup_labels = {str(i) for i in outgroups}

    best = None
    best_length = -np.inf
    for node in tree.iter_preorder():
        if node.parent is None:
            continue
        if outgroup_labels is not None and not (
            node.is_leaf and node.label in outgroup_labels
        ):
            continue
        if node.branch_length > best_length:
            best, best_length = node, node.branch_length

    return reroot_on_branch(best, 0.5), best.label


def _check_matrix(matrix, name: str) -> np.ndarray:
    m = np.asarray(matrix, dtype=np.float64)
    if m.ndim != 2 or m.shape[0] != m.shape[1] or m.shape[0] == 0:
        raise MalformedInputError(
            f"{name} must be a non-empty square matrix, got shape {m.shape}"
        )
    return m


# ======================================================================== #
# Classic neighbor-joining                                                  #
# ======================================================================== #


def neighbor_join(
    distances,
    outgroups: Optional[Sequence[int]] = None,
    backend: str = "best",
) -> Tree:
    """
    Build a rooted tree from a distance matrix by neighbor-joining.

    Parameters
    ----------
    distances : array_like, shape (N, N)
        Pairwise distances.  Only the strict lower triangle is read.
    outgroups : sequence of int, optional
        Matrix indices of outgroup leaves.  When given, the tree is rooted
        at the midpoint of the longest branch leading to one of them;
        otherwise at the midpoint of the longest branch overall.
    backend : str, default 'best'
        'python', 'numba' or 'best'.  An active ``use_backend()`` override
        applies when this is 'best'.

    Returns
    -------
    Tree
        New rooted tree with leaves labeled by matrix index and indexed info
        attached.

    Raises
    ------
    MalformedInputError
        If the matrix is not square, is empty or holds NaN/inf below the
        diagonal.
    LeafIndexError
        If an outgroup index is out of range.
    ValueError
        If *backend* is unknown.

    Examples
    --------
    >>> import numpy as np
    >>> from phylocore import to_newick
    >>> d = np.array([[0, 0, 0], [2, 0, 0], [4, 4, 0]], dtype=float)
    >>> tree = neighbor_join(d)
    >>> to_newick(tree, "{:g}")
    '(2:1.5,(0:1,1:1):1.5);'
    """
    resolved = resolve_backend(backend)
    dist = lower_triangle_to_symmetric(_check_matrix(distances, "distance matrix"))
    n = dist.shape[0]
    if outgroups:
        for i in outgroups:
            if i < 0 or i >= n:
                raise LeafIndexError(i, f"outgroup index {i} outside [0, {n})")

    tree = _join_clusters(dist, resolved)
    rooted_on = None
    if n >= 3:
        tree, rooted_on = _root_on_longest_branch(tree, outgroups)
        if rooted_on is not None:
            rooted_on = f"branch above leaf {rooted_on}"
    add_indexed_info(tree)
    log_nj_complete(n, resolved, rooted_on, outgroups)
    return tree


# ======================================================================== #
# Species-guided neighbor-joining                                           #
# ======================================================================== #


def compute_join_costs(
    species_tree: Tree, cost_per_dup: float, cost_per_loss: float
) -> Tuple[np.ndarray, Dict[Tree, int]]:
    """
    Reconciliation penalty for joining genes from every pair of species.

    Species-tree nodes are numbered in pre-order.  For species ``a`` and
    ``b`` with MRCA ``m``, a gene pair mapped to them implies:

    - if ``m`` is ``a`` or ``b``: one duplication and
      ``depth(a) - depth(m) + depth(b) - depth(m)`` losses;
    - otherwise: no duplication and
      ``depth(a) - depth(m) - 1 + depth(b) - depth(m) - 1`` losses.

    Parameters
    ----------
    species_tree : Tree
        Strictly binary species tree.
    cost_per_dup, cost_per_loss : float
        Weight of one duplication and one loss.

    Returns
    -------
    join_costs : np.ndarray, shape (S, S)
        ``cost_per_dup * dups + cost_per_loss * losses`` for each pair.
    species_to_index : dict
        Species-tree node -> row/column of ``join_costs``.

    Raises
    ------
    NotBinaryError
        If the species tree has a node with one or more than two children.
    """
    require_binary(species_tree, "species tree")
    species = list(species_tree.iter_preorder())
    species_to_index = {node: k for k, node in enumerate(species)}
    depth = {species_tree: 0}
    for node in species[1:]:
        depth[node] = depth[node.parent] + 1

    n = len(species)
    join_costs = np.zeros((n, n), dtype=np.float64)
    for a in range(n):
        for b in range(a, n):
            sa, sb = species[a], species[b]
            mrca = sa.get_mrca(sb)
            da = depth[sa] - depth[mrca]
            db = depth[sb] - depth[mrca]
            if mrca is sa or mrca is sb:
                dups, losses = 1, da + db
            else:
                dups, losses = 0, da - 1 + db - 1
            cost = cost_per_dup * dups + cost_per_loss * losses
            join_costs[a, b] = join_costs[b, a] = cost

    log_join_costs(n, cost_per_dup, cost_per_loss)
    return join_costs, species_to_index


def get_mrca_matrix(species_tree: Tree, species_to_index: Dict[Tree, int]) -> np.ndarray:
    """
    Matrix of species-tree MRCAs, in the numbering of *species_to_index*.

    ``result[i, j]`` is the index of the MRCA of the species with indices
    ``i`` and ``j``.

    Raises
    ------
    MalformedInputError
        If *species_to_index* does not cover exactly the nodes of
        *species_tree* with indices 0..S-1.
    """
    species = list(species_tree.iter_preorder())
    n = len(species)
    if len(species_to_index) != n or any(node not in species_to_index for node in species):
        raise MalformedInputError(
            "species_to_index must map every node of the species tree",
            suggestion="Use the mapping returned by compute_join_costs().",
        )
    if sorted(species_to_index.values()) != list(range(n)):
        raise MalformedInputError(
            f"species indices must be 0..{n - 1} used once each"
        )

    mrca = np.zeros((n, n), dtype=np.int64)
    for a, sa in enumerate(species):
        ia = species_to_index[sa]
        for sb in species[a:]:
            ib = species_to_index[sb]
            mrca[ia, ib] = mrca[ib, ia] = species_to_index[sa.get_mrca(sb)]
    return mrca


def _similarity_to_distance(similarity: np.ndarray) -> np.ndarray:
    """
    Fraction of differences for each pair: ``S[i, j] / (S[i, j] + S[j, i])``
    for ``i > j`` (1.0 when both counts are zero), as a symmetric matrix.
    """
    if not np.all(np.isfinite(similarity)):
        raise MalformedInputError("similarity matrix contains NaN or infinite values")
    diff = np.tril(similarity, k=-1)
    same = np.tril(similarity.T, k=-1)
    total = diff + same
    with np.errstate(divide="ignore", invalid="ignore"):
        lower = np.where(total > 0, diff / total, 1.0)
    lower = np.tril(lower, k=-1)
    return lower + lower.T


def guided_neighbor_join(
    similarity,
    join_costs,
    matrix_index_to_join_cost_index: Sequence[int],
    species_to_join_cost_index: Dict[Tree, int],
    species_mrca_matrix,
    species_tree: Tree,
    backend: str = "best",
) -> Tree:
    """
    Neighbor-joining biased toward joins the species tree explains cheaply.

    Parameters
    ----------
    similarity : array_like, shape (N, N)
        ``[i, j]`` with ``i > j`` counts differences between genes ``i`` and
        ``j``; ``[j, i]`` counts similarities.
    join_costs : array_like, shape (S, S)
        Penalty table from ``compute_join_costs``.
    matrix_index_to_join_cost_index : sequence of int
        Species (as a join-cost index) of each gene.
    species_to_join_cost_index : dict
        Species-tree node -> join-cost index.
    species_mrca_matrix : array_like of int, shape (S, S)
        From ``get_mrca_matrix``.
    species_tree : Tree
        Binary species tree the indices refer to.
    backend : str, default 'best'
        Pair-scan backend.

    Returns
    -------
    Tree
        New tree, rooted to minimise duplications then losses, with
        reconciliation info and indexed info on every node.

    Raises
    ------
    MalformedInputError
        On inconsistent matrix shapes or species indices.
    NotBinaryError
        If the species tree is not binary.
    """
    resolved = resolve_backend(backend)
    sim = _check_matrix(similarity, "similarity matrix")
    costs = _check_matrix(join_costs, "join-cost matrix")
    mrca = np.asarray(species_mrca_matrix, dtype=np.int64)
    n = sim.shape[0]
    n_species = costs.shape[0]
    if mrca.shape != costs.shape:
        raise MalformedInputError(
            f"species MRCA matrix shape {mrca.shape} does not match "
            f"join-cost matrix shape {costs.shape}"
        )
    leaf_species = np.asarray(matrix_index_to_join_cost_index, dtype=np.int64)
    if leaf_species.shape != (n,):
        raise MalformedInputError(
            f"need one species index per matrix row ({n}), got {leaf_species.size}"
        )
    if np.any(leaf_species < 0) or np.any(leaf_species >= n_species):
        raise MalformedInputError(
            f"species indices must lie in [0, {n_species})"
        )

    species_by_index = {k: node for node, k in species_to_join_cost_index.items()}
    missing = sorted(set(leaf_species.tolist()) - set(species_by_index))
    if missing:
        raise MalformedInputError(
            f"join-cost indices {missing} have no species-tree node",
            suggestion="Build both maps with compute_join_costs().",
        )

    dist = _similarity_to_distance(sim)
    unrooted = _join_clusters(dist, resolved, leaf_species, costs, mrca)
    leaf_to_species = {
        leaf: species_by_index[int(leaf_species[int(leaf.label)])]
        for leaf in unrooted.leaves()
    }
    tree = root_and_reconcile_binary(unrooted, species_tree, leaf_to_species)
    unrooted.destroy()

    add_indexed_info(tree)
    log_nj_complete(n, resolved, "minimum reconciliation cost", None, guided=True)
    return tree
