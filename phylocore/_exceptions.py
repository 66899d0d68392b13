"""
_exceptions.py
==============
Exception types raised by phylocore.

Every core operation either returns a complete structure or raises one of
these; there is no partial-success mode.  The classes also derive from the
matching built-in (``ValueError``, ``IndexError``) so callers that only know
the built-ins still catch them.

  PhylogenyError
  ├── NewickParseError      (ValueError)   unparseable NEWICK text
  ├── MalformedInputError   (ValueError)   bad matrices, leaf maps, trees
  │   └── NotBinaryError                   binary tree required
  ├── PreconditionError                    tree not indexed / not 0..N-1 labeled
  └── LeafIndexError        (IndexError)   leaf index outside valid bounds
"""

from typing import Optional


class PhylogenyError(Exception):
    """Base exception for phylocore errors."""

    def __init__(self, message: str, suggestion: Optional[str] = None):
        self.message = message
        self.suggestion = suggestion
        super().__init__(self.full_message)

    @property
    def full_message(self) -> str:
        if self.suggestion:
            return f"{self.message}\n\nSuggestion: {self.suggestion}"
        return self.message


class NewickParseError(PhylogenyError, ValueError):
    """Raised when NEWICK text does not follow the grammar."""

    def __init__(self, message: str, token: Optional[str] = None, position: int = -1):
        if token is not None:
            message = f"{message} (token {token!r} at position {position})"
        super().__init__(message)
        self.token = token
        self.position = position


class MalformedInputError(PhylogenyError, ValueError):
    """Raised when a matrix, tree or leaf mapping is unusable."""


class NotBinaryError(MalformedInputError):
    """Raised when a strictly bifurcating tree is required."""

    def __init__(self, what: str, n_children: int, label: Optional[str] = None):
        where = f" at node {label!r}" if label is not None else ""
        super().__init__(
            message=f"{what} must be binary: found a node with "
            f"{n_children} children{where}",
            suggestion="Resolve multifurcations before calling this function, "
            "or use the at-most-binary variant where one exists.",
        )
        self.n_children = n_children


class PreconditionError(PhylogenyError):
    """Raised when a tree lacks the indexing an operation requires."""


class LeafIndexError(PhylogenyError, IndexError):
    """Raised when a leaf index is out of range or absent from a subtree."""

    def __init__(self, index: int, message: Optional[str] = None):
        super().__init__(message or f"leaf index {index} is out of range")
        self.index = index
