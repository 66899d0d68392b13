"""
_bootstrap.py
=============
Split support of a reference tree across a population of bootstrap trees.

A node of the reference tree is supported by a bootstrap tree when that tree
has a node with the same leaf set, or with the complementary leaf set (the
same bipartition seen from the other side of the edge).  All trees must be
indexed over the same leaves ``0..N-1``.
"""

import logging
from typing import Dict, Iterable, List, Optional

from phylocore._exceptions import MalformedInputError, PreconditionError
from phylocore._index import _require_leaves_below, has_indexed_info
from phylocore._logging import log_bootstrap_summary
from phylocore._tree import Tree

logger = logging.getLogger(__name__)


def _require_indexed(tree: Tree, what: str) -> int:
    if not has_indexed_info(tree):
        raise PreconditionError(
            f"{what} is not indexed",
            suggestion="Call add_indexed_info() on every tree first.",
        )
    return _require_leaves_below(tree).total_num_leaves


def _split_table(bootstrap: Tree) -> Dict[bytes, List[Optional[Tree]]]:
    """Leaf-set key -> species of every node with that leaf set (None if unreconciled)."""
    table: Dict[bytes, List[Optional[Tree]]] = {}
    for node in bootstrap.iter_preorder():
        key = node.info.index.leaves_below.key()
        recon = node.info.recon
        table.setdefault(key, []).append(recon.species if recon is not None else None)
    return table


def _species_agree(species: Optional[Tree], candidates: List[Optional[Tree]]) -> bool:
    if species is None:
        return True
    return any(c is None or c is species for c in candidates)


def _score(tree: Tree, bootstraps: Iterable[Tree], reconciliation: bool) -> Tree:
    n_leaves = _require_indexed(tree, "reference tree")
    population = list(bootstraps)
    tables = []
    for k, bootstrap in enumerate(population):
        n = _require_indexed(bootstrap, f"bootstrap tree {k}")
        if n != n_leaves:
            raise MalformedInputError(
                f"bootstrap tree {k} is indexed over {n} leaves, "
                f"the reference tree over {n_leaves}"
            )
        tables.append(_split_table(bootstrap))

    scored = tree.clone()
    supports = []
    for node in scored.iter_preorder():
        index = node.info.index
        below = index.leaves_below
        keys = (below.key(), below.complement().key())
        species = None
        if reconciliation and node.info.recon is not None:
            species = node.info.recon.species

        count = 0
        for table in tables:
            for key in keys:
                candidates = table.get(key)
                if candidates is not None and (
                    not reconciliation or _species_agree(species, candidates)
                ):
                    count += 1
                    break
        index.num_bootstraps = count
        index.bootstrap_support = count / len(population) if population else 0.0
        if not node.is_leaf:
            supports.append(index.bootstrap_support)

    mean_support = sum(supports) / len(supports) if supports else 0.0
    log_bootstrap_summary(len(supports), len(population), mean_support, reconciliation)
    return scored


def score_from_bootstraps(tree: Tree, bootstraps: Iterable[Tree]) -> Tree:
    """
    Score every node of *tree* against a bootstrap population.

    Parameters
    ----------
    tree : Tree
        Indexed reference tree.  It is not modified.
    bootstraps : iterable of Tree
        Indexed bootstrap trees over the same leaves.

    Returns
    -------
    Tree
        A copy of *tree* whose nodes have ``num_bootstraps`` set to the
        number of bootstrap trees containing their bipartition and
        ``bootstrap_support`` set to that count over the population size
        (0.0 for an empty population).

    Raises
    ------
    PreconditionError
        If any tree is not indexed.
    MalformedInputError
        If the trees are indexed over different numbers of leaves.

    Examples
    --------
    >>> ref = parse_newick("((0,1),(2,3));")
    >>> add_indexed_info(ref)
    >>> boot = parse_newick("((0,2),(1,3));")
    >>> add_indexed_info(boot)
    >>> scored = score_from_bootstraps(ref, [ref, boot])
    >>> scored.get_child(0).info.index.bootstrap_support
    0.5
    """
    return _score(tree, bootstraps, reconciliation=False)


def score_from_bootstrap(tree: Tree, bootstrap: Tree) -> Tree:
    """Score *tree* against a single bootstrap tree (support is 0 or 1)."""
    return _score(tree, [bootstrap], reconciliation=False)


def score_reconciliation_from_bootstraps(tree: Tree, bootstraps: Iterable[Tree]) -> Tree:
    """
    Like ``score_from_bootstraps``, but a matching bootstrap node only
    counts when, if both nodes are reconciled, they map to the same
    species-tree node.
    """
    return _score(tree, bootstraps, reconciliation=True)


def score_reconciliation_from_bootstrap(tree: Tree, bootstrap: Tree) -> Tree:
    return _score(tree, [bootstrap], reconciliation=True)
