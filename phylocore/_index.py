"""
_index.py
=========
Per-node overlay that makes repeated leaf-set and ancestor queries cheap on
a tree whose topology no longer changes.

Overlay layout
--------------
Each ``Tree`` node has an ``info`` slot.  When populated it holds a
``PhylogenyInfo`` with two independent optional parts:

  index : IndexedTreeInfo
      matrix_index       leaf's row in an external distance matrix; -1 for
                         internal nodes
      leaves_below       LeafSet with one bit per leaf of the whole tree
      total_num_leaves   size of leaves_below
      num_bootstraps     bootstrap trees containing this node's split
      bootstrap_support  num_bootstraps / population size

  recon : ReconciliationInfo
      species            node of the species tree this node maps to
      event              DUPLICATION, SPECIATION or LEAF

The index is built once, by a single post-order pass, and is only valid for
the topology it was built on.  Reconciliation info is rewritten every time a
reconciliation runs.

Public API
----------
  add_indexed_info(tree)
  set_leaves_below(tree, total_num_leaves)
  get_leaf_by_index(tree, i)
  get_mrca(tree, leaf1, leaf2)
  distance_between_nodes(node1, node2)
  distance_between_leaves(tree, leaf1, leaf2)
  strip_phylogeny_info(tree)
  has_indexed_info(tree)
"""

import enum
from dataclasses import dataclass, replace
from typing import Optional

from phylocore._bitset import LeafSet
from phylocore._exceptions import (
    LeafIndexError,
    MalformedInputError,
    PreconditionError,
)
from phylocore._tree import Tree, UNSET_LENGTH

INTERNAL_NODE_INDEX = -1


class ReconciliationEvent(enum.Enum):
    DUPLICATION = "duplication"
    SPECIATION = "speciation"
    LEAF = "leaf"


@dataclass
class IndexedTreeInfo:
    matrix_index: int = INTERNAL_NODE_INDEX
    leaves_below: Optional[LeafSet] = None
    total_num_leaves: int = 0
    num_bootstraps: int = 0
    bootstrap_support: float = 0.0


@dataclass
class ReconciliationInfo:
    species: Tree
    event: ReconciliationEvent


@dataclass
class PhylogenyInfo:
    index: Optional[IndexedTreeInfo] = None
    recon: Optional[ReconciliationInfo] = None

    def clone(self) -> "PhylogenyInfo":
        """
        Copy of this overlay.  The leaf set is shared (it is never mutated
        in place); the species reference still points into the original
        species tree.
        """
        return PhylogenyInfo(
            index=replace(self.index) if self.index is not None else None,
            recon=replace(self.recon) if self.recon is not None else None,
        )


def _phylogeny_info(node: Tree) -> PhylogenyInfo:
    if node.info is None:
        node.info = PhylogenyInfo()
    return node.info


def _require_index(node: Tree) -> IndexedTreeInfo:
    info = node.info
    if info is None or info.index is None:
        raise PreconditionError(
            "node has no indexed info",
            suggestion="Call add_indexed_info() on the tree first.",
        )
    return info.index


def _require_leaves_below(node: Tree) -> IndexedTreeInfo:
    index = _require_index(node)
    if index.leaves_below is None:
        raise PreconditionError(
            "node has indexed info but no leaves_below set",
            suggestion="Call set_leaves_below() on the tree first.",
        )
    return index


# ======================================================================== #
# Construction                                                              #
# ======================================================================== #


def add_indexed_info(tree: Tree) -> None:
    """
    Attach ``IndexedTreeInfo`` to every node of *tree* and fill in the
    ``leaves_below`` bit-vectors.

    The leaves must already be labeled ``"0"`` .. ``"N-1"`` with each index
    used exactly once, and internal nodes must be unlabeled.  The tree is
    checked before any node is touched.

    Raises
    ------
    PreconditionError
        If a leaf label is missing, not an integer, repeated, or the
        indices are not dense, or an internal node carries a label.
    """
    leaves = []
    internal = []
    for node in tree.iter_preorder():
        if node.is_leaf:
            leaves.append(node)
        elif node.label is not None:
            raise PreconditionError(
                f"internal node is labeled {node.label!r}",
                suggestion="Clear internal labels before indexing the tree.",
            )
        else:
            internal.append(node)

    n_leaves = len(leaves)
    indices = []
    seen = set()
    for leaf in leaves:
        label = leaf.label
        try:
            index = int(label)
        except (TypeError, ValueError):
            raise PreconditionError(
                f"leaf label {label!r} is not a matrix index",
                suggestion="Label leaves 0..N-1 (see label_leaves_by_index()).",
            ) from None
        if index < 0 or index >= n_leaves or index in seen:
            raise PreconditionError(
                f"leaf labels must be the dense indices 0..{n_leaves - 1} "
                f"used once each; got {label!r}",
                suggestion="Label leaves 0..N-1 (see label_leaves_by_index()).",
            )
        seen.add(index)
        indices.append(index)

    for node in internal:
        _phylogeny_info(node).index = IndexedTreeInfo(INTERNAL_NODE_INDEX)
    for leaf, index in zip(leaves, indices):
        _phylogeny_info(leaf).index = IndexedTreeInfo(index)
    set_leaves_below(tree, n_leaves)


def set_leaves_below(tree: Tree, total_num_leaves: int) -> None:
    """
    Fill ``leaves_below`` and ``total_num_leaves`` on every node by a
    post-order traversal.  Leaves set only their own bit; internal nodes take
    the union of their children.

    Raises
    ------
    PreconditionError
        If any node lacks indexed info.
    LeafIndexError
        If a leaf's matrix index is outside ``[0, total_num_leaves)``.
    """
    for node in tree.iter_postorder():
        index = _require_index(node)
        index.total_num_leaves = total_num_leaves
        if node.is_leaf:
            i = index.matrix_index
            if i < 0 or i >= total_num_leaves:
                raise LeafIndexError(
                    i, f"leaf matrix index {i} outside [0, {total_num_leaves})"
                )
            index.leaves_below = LeafSet.singleton(total_num_leaves, i)
        else:
            below = LeafSet(total_num_leaves)
            for child in node.children:
                below = below | _require_index(child).leaves_below
            index.leaves_below = below


def _refresh_index(tree: Tree) -> None:
    """
    Rebuild ``leaves_below`` after a topology change.  Does nothing unless
    every leaf still carries its matrix index; new internal nodes get fresh
    indexed info.
    """
    total = None
    for leaf in tree.leaves():
        info = leaf.info
        if info is None or info.index is None:
            return
        total = info.index.total_num_leaves
    for node in tree.iter_preorder():
        info = _phylogeny_info(node)
        if info.index is None:
            info.index = IndexedTreeInfo(INTERNAL_NODE_INDEX)
    set_leaves_below(tree, total)


def has_indexed_info(tree: Tree) -> bool:
    """True if every node carries indexed info with its leaf set filled in."""
    for node in tree.iter_preorder():
        info = node.info
        if info is None or info.index is None or info.index.leaves_below is None:
            return False
    return True


def strip_phylogeny_info(tree: Tree) -> None:
    """Remove the overlay from every node of *tree*."""
    for node in tree.iter_preorder():
        node.info = None


# ======================================================================== #
# Queries                                                                   #
# ======================================================================== #


def _check_leaf_index(index: IndexedTreeInfo, leaf: int) -> None:
    if leaf < 0 or leaf >= index.total_num_leaves:
        raise LeafIndexError(
            leaf, f"leaf index {leaf} outside [0, {index.total_num_leaves})"
        )


def get_leaf_by_index(tree: Tree, leaf_index: int) -> Tree:
    """
    Return the leaf whose matrix index is *leaf_index*, descending from
    *tree* through the child whose leaf set contains it.

    Raises
    ------
    LeafIndexError
        If the index is out of range or not below *tree*.
    """
    index = _require_leaves_below(tree)
    _check_leaf_index(index, leaf_index)
    if leaf_index not in index.leaves_below:
        raise LeafIndexError(leaf_index, f"leaf {leaf_index} is not below this node")

    node = tree
    while not node.is_leaf:
        for child in node.children:
            if leaf_index in _require_leaves_below(child).leaves_below:
                node = child
                break
        else:
            raise LeafIndexError(
                leaf_index, f"leaf {leaf_index} is not below any child"
            )
    if _require_index(node).matrix_index != leaf_index:
        raise PreconditionError(
            f"index inconsistent: reached leaf with matrix index "
            f"{node.info.index.matrix_index} looking for {leaf_index}"
        )
    return node


def get_mrca(tree: Tree, leaf1: int, leaf2: int) -> Tree:
    """
    Return the most recent common ancestor of two leaves given by matrix
    index.  The MRCA of a leaf with itself is the leaf.
    """
    index = _require_leaves_below(tree)
    _check_leaf_index(index, leaf1)
    _check_leaf_index(index, leaf2)
    for leaf in (leaf1, leaf2):
        if leaf not in index.leaves_below:
            raise LeafIndexError(leaf, f"leaf {leaf} is not below this node")

    node = tree
    while not node.is_leaf:
        for child in node.children:
            below = _require_leaves_below(child).leaves_below
            if leaf1 in below and leaf2 in below:
                node = child
                break
        else:
            return node
    return node


def distance_between_nodes(node1: Tree, node2: Tree) -> float:
    """
    Path length between two nodes of the same indexed tree: the branch
    lengths from each node up to their MRCA.

    Raises
    ------
    MalformedInputError
        If the nodes are in different trees.
    ValueError
        If a branch on the path has no length.
    """
    if node1.root is not node2.root:
        raise MalformedInputError("nodes are not in the same tree")
    target = _require_leaves_below(node2).leaves_below

    mrca = node1
    while not (
        _require_leaves_below(mrca).leaves_below.issuperset(target)
        and _is_ancestor_or_self(mrca, node2)
    ):
        mrca = mrca.parent

    return _length_to_ancestor(node1, mrca) + _length_to_ancestor(node2, mrca)


def _is_ancestor_or_self(ancestor: Tree, node: Tree) -> bool:
    while node is not None:
        if node is ancestor:
            return True
        node = node.parent
    return False


def _length_to_ancestor(node: Tree, ancestor: Tree) -> float:
    total = 0.0
    while node is not ancestor:
        if node.branch_length == UNSET_LENGTH:
            raise ValueError(
                f"branch above node {node.label!r} has no length"
            )
        total += node.branch_length
        node = node.parent
    return total


def distance_between_leaves(tree: Tree, leaf1: int, leaf2: int) -> float:
    """Path length between two leaves given by matrix index."""
    return distance_between_nodes(
        get_leaf_by_index(tree, leaf1), get_leaf_by_index(tree, leaf2)
    )
