"""
_newick.py
==========
NEWICK reader and writer for ``Tree``.

Grammar
-------
    Tree    ::= Subtree ';'
    Subtree ::= '(' Subtree (',' Subtree)* ')' Label? Length?
              | Label? Length?
    Length  ::= ':' Number

Parsing is lax about whitespace: every structural character ``( ) : , ;`` is
padded with spaces and the text is split on whitespace, so each token is
either one structural character or one label/number.  A recursive-descent
pass then builds the tree.  Text after the terminating ';' is ignored.

Writing is the mirror image: ``(child,child,...)`` then label then
``:length``, with the length written in fixed-point notation (six decimal
places by default) and omitted entirely when unset.
"""

import logging
from typing import List

from phylocore._exceptions import NewickParseError
from phylocore._tree import Tree, UNSET_LENGTH

logger = logging.getLogger(__name__)

_STRUCTURAL = "():,;"
_LABEL_TERMINATORS = frozenset(":,;)(")
_SUBTREE_TERMINATORS = frozenset(",;)")

DEFAULT_LENGTH_FORMAT = "{:f}"


class _TokenStream:
    """Cursor over the whitespace-separated token list."""

    def __init__(self, tokens: List[str]) -> None:
        self.tokens = tokens
        self.pos = 0

    def peek(self) -> str:
        if self.pos >= len(self.tokens):
            raise NewickParseError(
                "unexpected end of input; a NEWICK tree must end with ';'"
            )
        return self.tokens[self.pos]

    def advance(self) -> str:
        token = self.peek()
        self.pos += 1
        return token

    def error(self, message: str) -> NewickParseError:
        token = self.tokens[self.pos] if self.pos < len(self.tokens) else None
        return NewickParseError(message, token, self.pos)


def _tokenize(text: str) -> List[str]:
    for ch in _STRUCTURAL:
        text = text.replace(ch, f" {ch} ")
    return text.split()


def parse_newick(text: str) -> Tree:
    """
    Parse a NEWICK string into a ``Tree``.

    Parameters
    ----------
    text : str
        NEWICK text terminated by ';'.

    Returns
    -------
    Tree
        The root node.

    Raises
    ------
    NewickParseError
        On mismatched parentheses, a missing ';', a non-numeric branch
        length or any other grammar violation.
    """
    tokens = _TokenStream(_tokenize(text))
    if not tokens.tokens:
        raise NewickParseError("empty NEWICK string")
    root = _parse_subtree(tokens)
    if tokens.peek() != ";":
        raise tokens.error("expected ';' after the root subtree")
    if tokens.pos + 1 < len(tokens.tokens):
        logger.debug(
            "Ignoring %d token(s) after the terminating ';'",
            len(tokens.tokens) - tokens.pos - 1,
        )
    return root


def _parse_subtree(tokens: _TokenStream) -> Tree:
    node = Tree()
    if tokens.peek() == "(":
        tokens.advance()
        while True:
            child = _parse_subtree(tokens)
            child.parent = node
            if tokens.peek() == ",":
                tokens.advance()
                continue
            break
        if tokens.peek() != ")":
            raise tokens.error("expected ')' to close '('")
        tokens.advance()

    token = tokens.peek()
    if token == "(":
        raise tokens.error("unexpected '('; subtrees must be separated by ','")
    if token not in _LABEL_TERMINATORS:
        node.label = token
        tokens.advance()

    if tokens.peek() == ":":
        tokens.advance()
        raw = tokens.peek()
        try:
            node.branch_length = float(raw)
        except ValueError:
            raise tokens.error("branch length is not a number") from None
        tokens.advance()

    if tokens.peek() not in _SUBTREE_TERMINATORS:
        raise tokens.error("expected ',', ')' or ';' after a subtree")
    return node


# ======================================================================== #
# Writer                                                                    #
# ======================================================================== #


def to_newick(tree: Tree, length_format: str = DEFAULT_LENGTH_FORMAT) -> str:
    """
    Serialise *tree* (and its subtree) as NEWICK text ending in ';'.

    Parameters
    ----------
    tree : Tree
        Root of the subtree to write.  Its own branch length, if set, is
        written after the closing parenthesis.
    length_format : str
        ``str.format`` pattern for branch lengths.

    Raises
    ------
    ValueError
        If a label contains whitespace or one of ``( ) : , ;`` and so
        could not be read back.
    """
    return _subtree_to_newick(tree, length_format) + ";"


def _subtree_to_newick(node: Tree, length_format: str) -> str:
    if node.n_children > 0:
        text = (
            "("
            + ",".join(_subtree_to_newick(child, length_format) for child in node.children)
            + ")"
        )
    else:
        text = ""
    label = node.label
    if label is not None:
        _check_label(label)
        text += label
    if node.branch_length != UNSET_LENGTH:
        text += ":" + length_format.format(node.branch_length)
    return text


def _check_label(label: str) -> None:
    for ch in label:
        if ch in _STRUCTURAL or ch.isspace():
            raise ValueError(
                f"label {label!r} cannot be written as NEWICK: it contains {ch!r}"
            )
