"""
_utils.py
=========
Small standalone helpers shared by the engines.

These functions don't depend on the overlay types and are useful for
validating inputs before calling the more expensive reconciliation and
join-cost routines.
"""

from typing import List, Optional

import numpy as np

from phylocore._exceptions import MalformedInputError, NotBinaryError
from phylocore._tree import Tree


def is_binary(tree: Tree, allow_trifurcating_root: bool = False) -> bool:
    """
    Return True if every internal node of *tree* has exactly two children.

    Parameters
    ----------
    tree : Tree
        Root of the tree to check.
    allow_trifurcating_root : bool, default False
        Accept three children at the root, the usual way an unrooted
        binary tree is written.

    Examples
    --------
    >>> from phylocore import parse_newick
    >>> is_binary(parse_newick("((A,B),C);"))
    True
    >>> is_binary(parse_newick("(A,B,C);"))
    False
    >>> is_binary(parse_newick("(A,B,C);"), allow_trifurcating_root=True)
    True
    """
    for node in tree.iter_preorder():
        n = node.n_children
        if n == 0 or n == 2:
            continue
        if n == 3 and allow_trifurcating_root and node is tree:
            continue
        return False
    return True


def require_binary(tree: Tree, what: str = "tree", allow_trifurcating_root: bool = False) -> None:
    """Raise ``NotBinaryError`` naming the first offending node, if any."""
    for node in tree.iter_preorder():
        n = node.n_children
        if n == 0 or n == 2:
            continue
        if n == 3 and allow_trifurcating_root and node is tree:
            continue
        raise NotBinaryError(what, n, node.label)


def label_leaves_by_index(tree: Tree) -> List[Optional[str]]:
    """
    Relabel the leaves of *tree* with ``"0"``, ``"1"``, ... in pre-order
    (left-to-right) so the tree can be indexed.

    Returns
    -------
    list
        ``old_labels[i]`` is the label leaf *i* had before relabelling.
    """
    old_labels = []
    for i, leaf in enumerate(tree.leaves()):
        old_labels.append(leaf.label)
        leaf.label = str(i)
    return old_labels


def lower_triangle_to_symmetric(matrix) -> np.ndarray:
    """
    Return a symmetric float64 copy of *matrix* built from its strict lower
    triangle (entries ``[i, j]`` with ``i > j``); the diagonal is zero.

    Raises
    ------
    MalformedInputError
        If the matrix is not square or the lower triangle holds NaN/inf.

    Examples
    --------
    >>> lower_triangle_to_symmetric([[0, 9], [2, 0]])
    array([[0., 2.],
           [2., 0.]])
    """
    m = np.asarray(matrix, dtype=np.float64)
    if m.ndim != 2 or m.shape[0] != m.shape[1]:
        raise MalformedInputError(
            f"distance matrix must be square, got shape {m.shape}"
        )
    lower = np.tril(m, k=-1)
    if not np.all(np.isfinite(lower)):
        raise MalformedInputError(
            "distance matrix lower triangle contains NaN or infinite values"
        )
    return lower + lower.T
