"""
_tree.py
========
A rooted n-ary phylogenetic tree built from linked ``Tree`` nodes.

Public API
----------
  Tree(label=None, branch_length=UNSET_LENGTH, parent=None)
      Constructor.  Every node is a tree; the node without a parent is a root.

  .parent                 (property, atomic reparenting)
  .n_children, .get_child(i), .children
  .branch_length, .has_branch_length
  .label
  .destroy()
  .iter_preorder(), .iter_postorder(), .leaves()
  .get_mrca(other), .clone(), .equals(other), .sort_children(key)

  reroot_on_branch(node, fraction=0.5)
      Insert a new root on the branch above *node*.

Ownership notes
---------------
A parent owns its children.  The only way to change the topology is the
``parent`` setter, which removes the node from its old parent's child list
before appending it to the new one, so a node can never be the child of two
parents.  Child order is insertion order and is the left-to-right order used
by the NEWICK codec.

Branch lengths
--------------
``UNSET_LENGTH`` (positive infinity) means "no length given", which is
different from a length of 0.0.

Overlay
-------
``Tree.info`` is a free slot for a ``PhylogenyInfo`` side-structure (see
``_index.py``).  The tree itself never reads it except to copy it in
``clone()`` and drop it in ``destroy()``.

Traversals are iterative so very deep (caterpillar) trees do not hit the
interpreter's recursion limit.
"""

import math
from typing import Callable, Dict, Iterator, List, Optional, Tuple

UNSET_LENGTH = math.inf


class Tree:
    """
    A node of a rooted phylogenetic tree.

    Attributes
    ----------
    info : PhylogenyInfo or None
        Optional indexing / reconciliation overlay.
    """

    def __init__(
        self,
        label: Optional[str] = None,
        branch_length: float = UNSET_LENGTH,
        parent: Optional["Tree"] = None,
    ) -> None:
        self._children: List["Tree"] = []
        self._parent: Optional["Tree"] = None
        self._label: Optional[str] = None
        self._branch_length: float = UNSET_LENGTH

        self.label = label
        self.branch_length = branch_length
        self.info = None
        if parent is not None:
            self.parent = parent

    def __repr__(self) -> str:
        return (
            f"Tree(label={self._label!r}, n_children={len(self._children)}, "
            f"branch_length={self._branch_length!r})"
        )

    # ================================================================== #
    # Parent / children                                                    #
    # ================================================================== #

    @property
    def parent(self) -> Optional["Tree"]:
        return self._parent

    @parent.setter
    def parent(self, new_parent: Optional["Tree"]) -> None:
        if new_parent is not None:
            ancestor = new_parent
            while ancestor is not None:
                if ancestor is self:
                    raise ValueError(
                        "cannot attach a node under itself or one of its descendants"
                    )
                ancestor = ancestor._parent
        if self._parent is not None:
            self._parent._children.remove(self)
        self._parent = new_parent
        if new_parent is not None:
            new_parent._children.append(self)

    @property
    def n_children(self) -> int:
        return len(self._children)

    def get_child(self, i: int) -> "Tree":
        """Return child *i* (0-based); ``IndexError`` when out of range."""
        if i < 0 or i >= len(self._children):
            raise IndexError(
                f"child index {i} out of range for node with "
                f"{len(self._children)} children"
            )
        return self._children[i]

    @property
    def children(self) -> Tuple["Tree", ...]:
        return tuple(self._children)

    def find_child(self, label: str) -> Optional["Tree"]:
        """Return the first child whose label is *label*, or None."""
        for child in self._children:
            if child._label == label:
                return child
        return None

    def sort_children(self, key: Callable[["Tree"], object]) -> None:
        """Stable-sort the children of every node in this subtree by *key*."""
        for node in self.iter_preorder():
            node._children.sort(key=key)

    # ================================================================== #
    # Label / branch length                                                #
    # ================================================================== #

    @property
    def label(self) -> Optional[str]:
        return self._label

    @label.setter
    def label(self, value: Optional[str]) -> None:
        if value is None:
            self._label = None
            return
        text = str(value)
        self._label = text if text.strip() else None

    @property
    def branch_length(self) -> float:
        return self._branch_length

    @branch_length.setter
    def branch_length(self, value: float) -> None:
        self._branch_length = float(value)

    @property
    def has_branch_length(self) -> bool:
        return self._branch_length != UNSET_LENGTH

    # ================================================================== #
    # Shape queries                                                        #
    # ================================================================== #

    @property
    def is_leaf(self) -> bool:
        return not self._children

    @property
    def is_root(self) -> bool:
        return self._parent is None

    @property
    def root(self) -> "Tree":
        node = self
        while node._parent is not None:
            node = node._parent
        return node

    @property
    def depth(self) -> int:
        """Number of edges between this node and its root."""
        d = 0
        node = self._parent
        while node is not None:
            d += 1
            node = node._parent
        return d

    @property
    def n_nodes(self) -> int:
        return sum(1 for _ in self.iter_preorder())

    @property
    def n_leaves(self) -> int:
        return sum(1 for node in self.iter_preorder() if not node._children)

    def leaves(self) -> List["Tree"]:
        """Leaves below this node in left-to-right order."""
        return [node for node in self.iter_preorder() if not node._children]

    # ================================================================== #
    # Traversal                                                            #
    # ================================================================== #

    def iter_preorder(self) -> Iterator["Tree"]:
        stack = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node._children))

    def iter_postorder(self) -> Iterator["Tree"]:
        stack = [(self, False)]
        while stack:
            node, expanded = stack.pop()
            if expanded or not node._children:
                yield node
                continue
            stack.append((node, True))
            for child in reversed(node._children):
                stack.append((child, False))

    def get_mrca(self, other: "Tree") -> "Tree":
        """
        Return the most recent common ancestor of this node and *other*
        by walking parent pointers.  ``ValueError`` if they are in
        different trees.
        """
        ancestors = set()
        node = self
        while node is not None:
            ancestors.add(id(node))
            node = node._parent
        node = other
        while node is not None:
            if id(node) in ancestors:
                return node
            node = node._parent
        raise ValueError("nodes are not in the same tree")

    # ================================================================== #
    # Copy / compare / release                                             #
    # ================================================================== #

    def clone(self) -> "Tree":
        """Deep copy of this subtree (topology, labels, lengths, overlay)."""
        copy, _ = self._clone_with_map()
        return copy

    def _clone_with_map(self) -> Tuple["Tree", Dict["Tree", "Tree"]]:
        """
        **Private.**  Deep copy returning ``(copy, mapping)`` where *mapping*
        sends every original node to its copy.  The copy is a root even if
        this node is not.
        """
        mapping: Dict[Tree, Tree] = {}
        for node in self.iter_preorder():
            copy = Tree(node._label, node._branch_length)
            if node.info is not None:
                copy.info = node.info.clone()
            if node is not self:
                parent_copy = mapping[node._parent]
                copy._parent = parent_copy
                parent_copy._children.append(copy)
            mapping[node] = copy
        return mapping[self], mapping

    def equals(self, other: "Tree") -> bool:
        """
        True when both subtrees have the same shape (children compared in
        order), the same labels and the same branch lengths.
        """
        stack = [(self, other)]
        while stack:
            a, b = stack.pop()
            if a._label != b._label or a._branch_length != b._branch_length:
                return False
            if len(a._children) != len(b._children):
                return False
            stack.extend(zip(a._children, b._children))
        return True

    def destroy(self) -> None:
        """
        Detach this node from its parent and release the whole subtree.
        The nodes are left empty and should not be used afterwards.
        """
        self.parent = None
        for node in list(self.iter_postorder()):
            node._children = []
            node._parent = None
            node._label = None
            node.info = None

    # ================================================================== #
    # Private helpers                                                      #
    # ================================================================== #

    def _splice_out(self) -> "Tree":
        """
        **Private.**  Remove a unary, non-root node, attaching its only child
        to its parent in the same child position.  The child's branch becomes
        the sum of the two branches.  Returns the child.
        """
        (child,) = self._children
        parent = self._parent
        position = parent._children.index(self)
        child._branch_length = _combine_lengths(
            child._branch_length, self._branch_length
        )
        self._children = []
        child._parent = parent
        parent._children[position] = child
        self._parent = None
        return child


def _combine_lengths(a: float, b: float) -> float:
    if a == UNSET_LENGTH and b == UNSET_LENGTH:
        return UNSET_LENGTH
    if a == UNSET_LENGTH:
        return b
    if b == UNSET_LENGTH:
        return a
    return a + b


def reroot_on_branch(node: Tree, fraction: float = 0.5) -> Tree:
    """
    Re-root the tree containing *node* on the branch above *node*.

    A new unlabeled root is inserted on that branch; *node* becomes its first
    child with ``fraction`` of the original branch length and the rest of the
    tree becomes its second child.  Parent/child relations along the path to
    the old root are reversed.  If the old root is left with a single child it
    is spliced out and its two branches merged.

    Parameters
    ----------
    node : Tree
        Any non-root node.
    fraction : float
        Position of the new root along the branch, measured from *node*.

    Returns
    -------
    Tree
        The new root.

    Raises
    ------
    ValueError
        If *node* is a root or *fraction* is outside [0, 1].
    """
    parent = node.parent
    if parent is None:
        raise ValueError("cannot reroot on the branch above a root node")
    if not 0.0 <= fraction <= 1.0:
        raise ValueError(f"fraction must be in [0, 1], got {fraction}")

    old_root = node.root
    length = node.branch_length
    if length == UNSET_LENGTH:
        below = above = UNSET_LENGTH
    else:
        below = length * fraction
        above = length - below

    new_root = Tree()
    node.parent = new_root
    node.branch_length = below

    prev, prev_length = new_root, above
    current = parent
    while current is not None:
        next_parent = current.parent
        next_length = current.branch_length
        current.parent = prev
        current.branch_length = prev_length
        prev, prev_length = current, next_length
        current = next_parent

    if old_root.n_children == 1:
        old_root._splice_out()
    return new_root
