"""
_reconcile.py
=============
Gene-tree / species-tree reconciliation by LCA mapping.

Every gene-tree leaf is mapped to a species-tree node by the caller.  Each
internal gene node maps to the species-tree LCA of its children's species,
and is tagged:

  DUPLICATION  a child maps to the node's own species, or two children
               descend through the same child of that species
  SPECIATION   the children's species lie on different branches below the
               node's species
  LEAF         gene-tree leaves

Losses are species-tree branches that a gene lineage skips: for a binary
node mapped to ``M`` with a child mapped to ``c``, that child contributes
``depth(c) - depth(M) - 1`` losses below a speciation and
``depth(c) - depth(M)`` below a duplication.

Two families of functions exist:

  *_binary         gene and species trees strictly bifurcating
  *_at_most_binary multifurcating nodes allowed; unary gene nodes are
                   transparent (speciation, no cost)

The ``root_and_reconcile_*`` functions try a root on every branch of the
gene tree and keep the one with the fewest duplications, then the fewest
duplications plus losses, then the first in pre-order.
"""

import logging
from typing import Callable, Dict, List, Optional, Tuple

from phylocore._exceptions import MalformedInputError, PreconditionError
from phylocore._index import (
    ReconciliationEvent,
    ReconciliationInfo,
    _phylogeny_info,
    _refresh_index,
)
from phylocore._logging import log_reroot_candidate, log_reroot_result
from phylocore._tree import Tree, reroot_on_branch
from phylocore._utils import require_binary

logger = logging.getLogger(__name__)

LeafMap = Dict[Tree, Tree]


# ======================================================================== #
# Species-tree helpers                                                      #
# ======================================================================== #


def _species_depths(species_tree: Tree) -> Dict[Tree, int]:
    depth = {species_tree: 0}
    for node in species_tree.iter_preorder():
        if node is not species_tree:
            depth[node] = depth[node.parent] + 1
    return depth


def _lca(a: Tree, b: Tree, depth: Dict[Tree, int]) -> Tree:
    while depth[a] > depth[b]:
        a = a.parent
    while depth[b] > depth[a]:
        b = b.parent
    while a is not b:
        a, b = a.parent, b.parent
    return a


def _branch_below(species: Tree, ancestor: Tree, depth: Dict[Tree, int]) -> Optional[Tree]:
    """Child of *ancestor* on the path down to *species*; None if they are equal."""
    if species is ancestor:
        return None
    target = depth[ancestor] + 1
    while depth[species] > target:
        species = species.parent
    return species


def _check_leaf_map(gene_leaves: List[Tree], leaf_to_species: LeafMap, depth: Dict[Tree, int]) -> None:
    for leaf in gene_leaves:
        species = leaf_to_species.get(leaf)
        if species is None:
            raise MalformedInputError(
                f"gene leaf {leaf.label!r} has no species mapping",
                suggestion="Build the mapping with map_leaves_by_label().",
            )
        if species not in depth:
            raise MalformedInputError(
                f"gene leaf {leaf.label!r} maps to species {species.label!r}, "
                f"which is not in the species tree"
            )


def map_leaves_by_label(
    gene_tree: Tree,
    species_tree: Tree,
    gene_to_species: Optional[Dict[str, str]] = None,
) -> LeafMap:
    """
    Build a leaf -> species mapping from labels.

    Parameters
    ----------
    gene_tree, species_tree : Tree
        Trees to connect.
    gene_to_species : dict, optional
        Gene leaf label -> species label.  Without it each gene leaf maps to
        the species node with the same label.

    Returns
    -------
    dict
        Gene leaf node -> species node.

    Raises
    ------
    MalformedInputError
        If species labels repeat, or a gene leaf has no matching species.

    Examples
    --------
    >>> genes = parse_newick("((a1,a2),b1);")
    >>> species = parse_newick("(A,B);")
    >>> leaf_map = map_leaves_by_label(genes, species,
    ...                                {"a1": "A", "a2": "A", "b1": "B"})
    """
    species_by_label = {}
    for node in species_tree.iter_preorder():
        if node.label is None:
            continue
        if node.label in species_by_label:
            raise MalformedInputError(
                f"species label {node.label!r} is used more than once"
            )
        species_by_label[node.label] = node

    leaf_to_species = {}
    for leaf in gene_tree.leaves():
        label = leaf.label
        if gene_to_species is not None:
            label = gene_to_species.get(label)
        species = species_by_label.get(label)
        if species is None:
            raise MalformedInputError(
                f"gene leaf {leaf.label!r} has no matching species"
            )
        leaf_to_species[leaf] = species
    return leaf_to_species


# ======================================================================== #
# Mapping, events and costs                                                 #
# ======================================================================== #


def _map_species(gene_tree: Tree, leaf_to_species: LeafMap, depth: Dict[Tree, int]) -> LeafMap:
    """Post-order LCA mapping of every gene node."""
    species_of = {}
    for node in gene_tree.iter_postorder():
        if node.is_leaf:
            species_of[node] = leaf_to_species[node]
            continue
        children = node.children
        species = species_of[children[0]]
        for child in children[1:]:
            species = _lca(species, species_of[child], depth)
        species_of[node] = species
    return species_of


def _event(node: Tree, species_of: LeafMap, depth: Dict[Tree, int]) -> ReconciliationEvent:
    if node.is_leaf:
        return ReconciliationEvent.LEAF
    if node.n_children == 1:
        return ReconciliationEvent.SPECIATION
    species = species_of[node]
    branches = [_branch_below(species_of[c], species, depth) for c in node.children]
    if any(b is None for b in branches) or len(set(branches)) < len(branches):
        return ReconciliationEvent.DUPLICATION
    return ReconciliationEvent.SPECIATION


def _write_reconciliation(
    gene_tree: Tree, species_of: LeafMap, depth: Dict[Tree, int], relabel_ancestors: bool
) -> None:
    for node in gene_tree.iter_preorder():
        species = species_of[node]
        _phylogeny_info(node).recon = ReconciliationInfo(
            species, _event(node, species_of, depth)
        )
        if relabel_ancestors and not node.is_leaf:
            node.label = species.label


def _binary_cost(gene_tree: Tree, species_of: LeafMap, depth: Dict[Tree, int]) -> Tuple[int, int]:
    dups = 0
    losses = 0
    for node in gene_tree.iter_preorder():
        if node.is_leaf:
            continue
        species = species_of[node]
        duplication = any(species_of[c] is species for c in node.children)
        dups += int(duplication)
        for child in node.children:
            losses += depth[species_of[child]] - depth[species]
            if not duplication:
                losses -= 1
    return dups, losses


def _node_cost_at_most_binary(
    node: Tree, species_of: LeafMap, depth: Dict[Tree, int]
) -> Tuple[int, int]:
    """
    Duplications and losses implied at one gene node with two or more
    children.

    Children mapped to the node's species each need their own copy there;
    children sharing a branch below it need one extra copy per repeat.
    Losses are species branches hanging off the union of the paths from the
    children's species up to the node's species.
    """
    species = species_of[node]
    n_at_node = 0
    below = []
    path = set()
    interior = set()
    for child in node.children:
        s = species_of[child]
        branch = _branch_below(s, species, depth)
        if branch is None:
            n_at_node += 1
        else:
            below.append(branch)
        path.add(s)
        while s is not species:
            s = s.parent
            path.add(s)
            interior.add(s)

    distinct = len(set(below))
    lineages = n_at_node + (1 if distinct else 0)
    dups = (len(below) - distinct) + max(lineages - 1, 0)
    losses = sum(1 for p in interior for c in p.children if c not in path)
    return dups, losses


def _at_most_binary_cost(
    gene_tree: Tree, species_of: LeafMap, depth: Dict[Tree, int]
) -> Tuple[int, int]:
    dups = 0
    losses = 0
    for node in gene_tree.iter_preorder():
        if node.n_children < 2:
            continue
        d, l = _node_cost_at_most_binary(node, species_of, depth)
        dups += d
        losses += l
    return dups, losses


# ======================================================================== #
# Rerooting search                                                          #
# ======================================================================== #


def _candidate_branches(gene_tree: Tree) -> List[Tree]:
    """
    Nodes whose parent branch is a distinct root position, in pre-order.
    Below a bifurcating root both children sit on the same unrooted branch,
    so only the first is kept.
    """
    skip = gene_tree.get_child(1) if gene_tree.n_children == 2 else None
    return [
        node
        for node in gene_tree.iter_preorder()
        if node is not gene_tree and node is not skip
    ]


def _best_rooting(
    gene_tree: Tree,
    leaf_to_species: LeafMap,
    cost: Callable[[Tree, LeafMap], Tuple[int, int]],
) -> Tuple[Tree, LeafMap]:
    """
    Return a rerooted copy of *gene_tree* (and its leaf map) minimising
    ``(dups, dups + losses)`` according to *cost*.
    """
    gene_leaves = gene_tree.leaves()
    candidates = _candidate_branches(gene_tree)
    if not candidates:
        copy, mapping = gene_tree._clone_with_map()
        return copy, {mapping[leaf]: leaf_to_species[leaf] for leaf in gene_leaves}

    best = None
    best_map = None
    best_key = None
    best_edge = -1
    for k, node in enumerate(candidates):
        copy, mapping = gene_tree._clone_with_map()
        root = reroot_on_branch(mapping[node], 0.5)
        copy_map = {mapping[leaf]: leaf_to_species[leaf] for leaf in gene_leaves}
        dups, losses = cost(root, copy_map)
        log_reroot_candidate(k, node.label, dups, losses)

        key = (dups, dups + losses)
        if best_key is None or key < best_key:
            if best is not None:
                best.destroy()
            best, best_map, best_key, best_edge = root, copy_map, key, k
        else:
            root.destroy()

    log_reroot_result(len(candidates), best_edge, best_key[0], best_key[1] - best_key[0])
    return best, best_map


# ======================================================================== #
# Binary reconciliation                                                     #
# ======================================================================== #


def reconcile_binary(
    gene_tree: Tree,
    species_tree: Tree,
    leaf_to_species: LeafMap,
    relabel_ancestors: bool = False,
) -> None:
    """
    Reconcile a binary gene tree against a binary species tree in place.

    Every gene node receives ``info.recon`` with its species and event.

    Parameters
    ----------
    gene_tree, species_tree : Tree
        Strictly bifurcating trees.
    leaf_to_species : dict
        Gene leaf node -> species node.
    relabel_ancestors : bool, default False
        Also set each internal gene node's label to its species' label.

    Raises
    ------
    NotBinaryError
        If either tree is not binary.
    MalformedInputError
        If a gene leaf is unmapped or maps outside the species tree.

    Examples
    --------
    >>> genes = parse_newick("((a,b),c);")
    >>> species = parse_newick("(X,Y);")
    >>> leaf_map = map_leaves_by_label(genes, species,
    ...                                {"a": "X", "b": "X", "c": "Y"})
    >>> reconcile_binary(genes, species, leaf_map)
    >>> genes.info.recon.event
    <ReconciliationEvent.SPECIATION: 'speciation'>
    >>> genes.get_child(0).info.recon.event
    <ReconciliationEvent.DUPLICATION: 'duplication'>
    """
    require_binary(gene_tree, "gene tree")
    require_binary(species_tree, "species tree")
    depth = _species_depths(species_tree)
    _check_leaf_map(gene_tree.leaves(), leaf_to_species, depth)
    species_of = _map_species(gene_tree, leaf_to_species, depth)
    _write_reconciliation(gene_tree, species_of, depth, relabel_ancestors)


def reconciliation_cost_binary(
    gene_tree: Tree, species_tree: Tree, leaf_to_species: LeafMap
) -> Tuple[int, int]:
    """
    Count ``(dups, losses)`` of the LCA reconciliation, from scratch.

    Existing reconciliation info on the gene tree is neither read nor
    written.
    """
    require_binary(gene_tree, "gene tree")
    require_binary(species_tree, "species tree")
    depth = _species_depths(species_tree)
    _check_leaf_map(gene_tree.leaves(), leaf_to_species, depth)
    return _binary_cost(gene_tree, _map_species(gene_tree, leaf_to_species, depth), depth)


def root_and_reconcile_binary(
    gene_tree: Tree, species_tree: Tree, leaf_to_species: LeafMap
) -> Tree:
    """
    Root a binary gene tree where it implies the fewest duplications.

    Every branch is tried in pre-order.  Ties on duplications are broken by
    total duplications plus losses, then by the first branch tried.  The
    input is left untouched.

    Parameters
    ----------
    gene_tree : Tree
        Binary gene tree; its root may have three children (an unrooted
        tree).
    species_tree : Tree
        Binary species tree.
    leaf_to_species : dict
        Gene leaf node of *gene_tree* -> species node.

    Returns
    -------
    Tree
        A rerooted, reconciled copy.  If *gene_tree* was indexed the copy's
        leaf sets are rebuilt for the new topology.
    """
    require_binary(gene_tree, "gene tree", allow_trifurcating_root=True)
    require_binary(species_tree, "species tree")
    depth = _species_depths(species_tree)
    _check_leaf_map(gene_tree.leaves(), leaf_to_species, depth)

    def cost(root, leaf_map):
        return _binary_cost(root, _map_species(root, leaf_map, depth), depth)

    best, best_map = _best_rooting(gene_tree, leaf_to_species, cost)
    species_of = _map_species(best, best_map, depth)
    _write_reconciliation(best, species_of, depth, relabel_ancestors=False)
    _refresh_index(best)
    return best


# ======================================================================== #
# At-most-binary reconciliation                                             #
# ======================================================================== #


def _species_tree_of(gene_leaves: List[Tree], leaf_to_species: LeafMap) -> Dict[Tree, int]:
    """Depths of the species tree containing the mapped species."""
    first = leaf_to_species.get(gene_leaves[0])
    if first is None:
        raise MalformedInputError(
            f"gene leaf {gene_leaves[0].label!r} has no species mapping",
            suggestion="Build the mapping with map_leaves_by_label().",
        )
    depth = _species_depths(first.root)
    _check_leaf_map(gene_leaves, leaf_to_species, depth)
    return depth


def reconcile_at_most_binary(
    gene_tree: Tree, leaf_to_species: LeafMap, relabel_ancestors: bool = False
) -> None:
    """
    Reconcile a gene tree that may contain unary or multifurcating nodes.

    The species tree is the one containing the mapped species; it may be
    multifurcating too.  A node with several children maps to the LCA of
    all of them and is a duplication if a child maps to that same species
    or two children descend through the same child of it.

    Raises
    ------
    MalformedInputError
        If a gene leaf is unmapped or the species are not all in one tree.
    """
    gene_leaves = gene_tree.leaves()
    depth = _species_tree_of(gene_leaves, leaf_to_species)
    species_of = _map_species(gene_tree, leaf_to_species, depth)
    _write_reconciliation(gene_tree, species_of, depth, relabel_ancestors)


def reconciliation_cost_at_most_binary(reconciled_tree: Tree) -> Tuple[int, int]:
    """
    Count ``(dups, losses)`` from existing reconciliation info.

    On binary trees the result equals ``reconciliation_cost_binary``.

    Raises
    ------
    PreconditionError
        If a node has not been reconciled.
    """
    species_of = {}
    for node in reconciled_tree.iter_preorder():
        info = node.info
        if info is None or info.recon is None:
            raise PreconditionError(
                "gene tree node has no reconciliation info",
                suggestion="Call reconcile_at_most_binary() first.",
            )
        species_of[node] = info.recon.species
    depth = _species_depths(species_of[reconciled_tree].root)
    return _at_most_binary_cost(reconciled_tree, species_of, depth)


def root_and_reconcile_at_most_binary(gene_tree: Tree, leaf_to_species: LeafMap) -> Tree:
    """
    Root a possibly non-binary gene tree where it implies the fewest
    duplications; the at-most-binary counterpart of
    ``root_and_reconcile_binary``.  Returns a reconciled copy.
    """
    depth = _species_tree_of(gene_tree.leaves(), leaf_to_species)

    def cost(root, leaf_map):
        species_of = _map_species(root, leaf_map, depth)
        return _at_most_binary_cost(root, species_of, depth)

    best, best_map = _best_rooting(gene_tree, leaf_to_species, cost)
    _write_reconciliation(best, _map_species(best, best_map, depth), depth, False)
    _refresh_index(best)
    return best
