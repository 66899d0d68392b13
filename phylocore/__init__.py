"""
phylocore
=========

Phylogenetic tree engine: Newick I/O, indexed leaf-set queries,
neighbor-joining (classic and species-guided), gene-tree / species-tree
reconciliation and bootstrap split support.

Main Classes
------------
Tree : Rooted n-ary tree with labels, branch lengths and an overlay slot
LeafSet : Fixed-size bit-vector of leaf indices

Newick
------
parse_newick : Parse NEWICK text into a Tree
to_newick : Serialize a Tree to NEWICK text

Indexed Trees
-------------
add_indexed_info : Attach leaf sets to a tree whose leaves are 0..N-1
get_leaf_by_index, get_mrca : Leaf-set guided descent
distance_between_nodes, distance_between_leaves : Path lengths

Tree Building
-------------
neighbor_join : Classic neighbor-joining from a distance matrix
guided_neighbor_join : Neighbor-joining penalised by reconciliation cost
compute_join_costs, get_mrca_matrix : Species-tree tables for guided NJ

Reconciliation
--------------
reconcile_binary, reconcile_at_most_binary : LCA mapping and event tags
reconciliation_cost_binary, reconciliation_cost_at_most_binary : (dups, losses)
root_and_reconcile_binary, root_and_reconcile_at_most_binary : Best rooting

Bootstrap
---------
score_from_bootstraps, score_reconciliation_from_bootstraps : Split support

Context Managers
----------------
quiet : Suppress logging during operations
suppress_logger : Suppress specific logger
suppress_warnings : Suppress specific warnings
use_backend : Force a neighbor-joining scan backend
silent_run : Combine quiet + backend selection + warning suppression

Examples
--------
Basic usage:

>>> import numpy as np
>>> from phylocore import neighbor_join, to_newick
>>> d = np.array([[0, 0, 0], [2, 0, 0], [4, 4, 0]], dtype=float)
>>> to_newick(neighbor_join(d), "{:g}")
'(2:1.5,(0:1,1:1):1.5);'

Reconciliation:

>>> from phylocore import parse_newick, map_leaves_by_label, reconcile_binary
>>> genes = parse_newick("((a,b),c);")
>>> species = parse_newick("(X,Y);")
>>> leaf_map = map_leaves_by_label(genes, species, {"a": "X", "b": "X", "c": "Y"})
>>> reconcile_binary(genes, species, leaf_map)

With context managers:

>>> from phylocore import quiet, use_backend
>>> with quiet(), use_backend('python'):
...     tree = neighbor_join(d)
"""

__version__ = "0.1.0"
__license__ = "MIT"

# Main classes
from ._tree import Tree, UNSET_LENGTH, reroot_on_branch
from ._bitset import LeafSet

# Newick codec
from ._newick import parse_newick, to_newick

# Overlay and indexed queries
from ._index import (
    INTERNAL_NODE_INDEX,
    IndexedTreeInfo,
    PhylogenyInfo,
    ReconciliationEvent,
    ReconciliationInfo,
    add_indexed_info,
    distance_between_leaves,
    distance_between_nodes,
    get_leaf_by_index,
    get_mrca,
    has_indexed_info,
    set_leaves_below,
    strip_phylogeny_info,
)

# Engines
from ._reconcile import (
    map_leaves_by_label,
    reconcile_at_most_binary,
    reconcile_binary,
    reconciliation_cost_at_most_binary,
    reconciliation_cost_binary,
    root_and_reconcile_at_most_binary,
    root_and_reconcile_binary,
)
from ._nj import (
    compute_join_costs,
    get_mrca_matrix,
    guided_neighbor_join,
    neighbor_join,
)
from ._bootstrap import (
    score_from_bootstrap,
    score_from_bootstraps,
    score_reconciliation_from_bootstrap,
    score_reconciliation_from_bootstraps,
)

# Exceptions
from ._exceptions import (
    LeafIndexError,
    MalformedInputError,
    NewickParseError,
    NotBinaryError,
    PhylogenyError,
    PreconditionError,
)

# Context managers (user-facing utilities)
from ._context import (
    suppress_logger,
    quiet,
    suppress_warnings,
    use_backend,
    silent_run,
)

# Utilities (generally useful functions)
from ._utils import (
    is_binary,
    require_binary,
    label_leaves_by_index,
    lower_triangle_to_symmetric,
)

# Backend information (useful for checking capabilities)
from ._backend import (
    get_available_backends,
    get_backend_info,
)

# Public API
__all__ = [
    # Main classes
    "Tree",
    "UNSET_LENGTH",
    "reroot_on_branch",
    "LeafSet",
    # Newick
    "parse_newick",
    "to_newick",
    # Overlay and indexed queries
    "INTERNAL_NODE_INDEX",
    "IndexedTreeInfo",
    "PhylogenyInfo",
    "ReconciliationEvent",
    "ReconciliationInfo",
    "add_indexed_info",
    "set_leaves_below",
    "get_leaf_by_index",
    "get_mrca",
    "distance_between_nodes",
    "distance_between_leaves",
    "has_indexed_info",
    "strip_phylogeny_info",
    # Neighbor-joining
    "neighbor_join",
    "guided_neighbor_join",
    "compute_join_costs",
    "get_mrca_matrix",
    # Reconciliation
    "map_leaves_by_label",
    "reconcile_binary",
    "reconciliation_cost_binary",
    "root_and_reconcile_binary",
    "reconcile_at_most_binary",
    "reconciliation_cost_at_most_binary",
    "root_and_reconcile_at_most_binary",
    # Bootstrap
    "score_from_bootstrap",
    "score_from_bootstraps",
    "score_reconciliation_from_bootstrap",
    "score_reconciliation_from_bootstraps",
    # Exceptions
    "PhylogenyError",
    "NewickParseError",
    "MalformedInputError",
    "NotBinaryError",
    "PreconditionError",
    "LeafIndexError",
    # Context managers
    "suppress_logger",
    "quiet",
    "suppress_warnings",
    "use_backend",
    "silent_run",
    # Utilities
    "is_binary",
    "require_binary",
    "label_leaves_by_index",
    "lower_triangle_to_symmetric",
    # Backend information
    "get_available_backends",
    "get_backend_info",
    # Version info
    "__version__",
]
