"""
tests/test_bootstrap.py
=======================
Tests for bootstrap split support, plain and reconciliation-aware.

Reference tree ((0,1),(2,3)) against the population
[((0,1),(2,3)), ((0,2),(1,3))]:

    root     in both trees           -> 1.0
    (0,1)    only in the first tree  -> 0.5
    (2,3)    only in the first tree  -> 0.5
    leaves   always present          -> 1.0
"""

import logging
import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from phylocore._bootstrap import (
    score_from_bootstrap,
    score_from_bootstraps,
    score_reconciliation_from_bootstrap,
    score_reconciliation_from_bootstraps,
)
from phylocore._exceptions import MalformedInputError, PreconditionError
from phylocore._index import add_indexed_info
from phylocore._newick import parse_newick, to_newick
from phylocore._reconcile import map_leaves_by_label, reconcile_binary

REFERENCE = "((0,1),(2,3));"


def indexed(text):
    tree = parse_newick(text)
    add_indexed_info(tree)
    return tree


def reconciled(text, gene_to_species, species):
    tree = indexed(text)
    reconcile_binary(tree, species, map_leaves_by_label(tree, species, gene_to_species))
    return tree


def support(node):
    return node.info.index.bootstrap_support


class TestScoreFromBootstraps:
    def test_split_support(self):
        ref = indexed(REFERENCE)
        scored = score_from_bootstraps(ref, [indexed(REFERENCE), indexed("((0,2),(1,3));")])
        assert support(scored) == 1.0
        assert support(scored.get_child(0)) == 0.5
        assert support(scored.get_child(1)) == 0.5
        assert scored.get_child(0).info.index.num_bootstraps == 1
        assert all(support(leaf) == 1.0 for leaf in scored.leaves())

    def test_complementary_split_matches(self):
        # (0,1) is not a clade of (0,(1,(2,3))) but its complement (2,3) is
        scored = score_from_bootstrap(indexed(REFERENCE), indexed("(0,(1,(2,3)));"))
        assert support(scored.get_child(0)) == 1.0
        assert support(scored.get_child(1)) == 1.0

    def test_unrooted_bootstrap(self):
        scored = score_from_bootstrap(indexed(REFERENCE), indexed("(0,1,(2,3));"))
        assert [support(n) for n in scored.iter_preorder() if not n.is_leaf] == [1.0, 1.0, 1.0]

    def test_tree_counted_once(self):
        scored = score_from_bootstraps(indexed(REFERENCE), [indexed(REFERENCE)])
        for node in scored.iter_preorder():
            assert node.info.index.num_bootstraps == 1

    def test_generator_population(self):
        boots = (indexed(t) for t in [REFERENCE, "((0,2),(1,3));", "((0,3),(1,2));"])
        scored = score_from_bootstraps(indexed(REFERENCE), boots)
        assert support(scored.get_child(0)) == pytest.approx(1 / 3)

    def test_reference_untouched(self):
        ref = indexed(REFERENCE)
        scored = score_from_bootstraps(ref, [indexed(REFERENCE)])
        assert scored is not ref
        assert to_newick(scored) == to_newick(ref)
        assert all(node.info.index.num_bootstraps == 0 for node in ref.iter_preorder())

    def test_empty_population(self, caplog):
        with caplog.at_level(logging.WARNING, logger="phylocore"):
            scored = score_from_bootstraps(indexed(REFERENCE), [])
        assert all(support(node) == 0.0 for node in scored.iter_preorder())
        assert any("Bootstrap population is empty" in r.getMessage() for r in caplog.records)

    def test_summary_logged(self, caplog):
        with caplog.at_level(logging.INFO, logger="phylocore"):
            score_from_bootstraps(
                indexed(REFERENCE), [indexed(REFERENCE), indexed("((0,2),(1,3));")]
            )
        assert any(
            "Scored 3 node(s) against 2 bootstrap tree(s): mean support 0.667"
            in r.getMessage()
            for r in caplog.records
        )

    def test_leaf_count_mismatch(self):
        with pytest.raises(MalformedInputError):
            score_from_bootstrap(indexed(REFERENCE), indexed("(0,1,2);"))

    def test_unindexed_reference(self):
        with pytest.raises(PreconditionError):
            score_from_bootstrap(parse_newick(REFERENCE), indexed(REFERENCE))

    def test_unindexed_bootstrap(self):
        with pytest.raises(PreconditionError):
            score_from_bootstraps(indexed(REFERENCE), [indexed(REFERENCE), parse_newick(REFERENCE)])


class TestScoreReconciliation:
    SPECIES = "(A,B)R;"

    def test_species_must_agree(self):
        species = parse_newick(self.SPECIES)
        ref = reconciled(REFERENCE, {"0": "A", "1": "A", "2": "B", "3": "B"}, species)
        # Same topology, but (0,1) now spans A and B and maps to R
        boot = reconciled(REFERENCE, {"0": "A", "1": "B", "2": "A", "3": "B"}, species)

        plain = score_from_bootstrap(ref, boot)
        aware = score_reconciliation_from_bootstrap(ref, boot)
        assert support(plain.get_child(0)) == 1.0
        assert support(aware.get_child(0)) == 0.0
        assert support(aware) == 1.0

    def test_matching_species(self):
        species = parse_newick(self.SPECIES)
        mapping = {"0": "A", "1": "A", "2": "B", "3": "B"}
        ref = reconciled(REFERENCE, mapping, species)
        boots = [reconciled(REFERENCE, mapping, species), indexed(REFERENCE)]
        scored = score_reconciliation_from_bootstraps(ref, boots)
        # An unreconciled bootstrap node does not veto a match
        assert support(scored.get_child(0)) == 1.0

    def test_unreconciled_reference(self):
        scored = score_reconciliation_from_bootstraps(
            indexed(REFERENCE), [indexed(REFERENCE), indexed("((0,2),(1,3));")]
        )
        assert support(scored.get_child(0)) == 0.5

    def test_summary_names_kind(self, caplog):
        with caplog.at_level(logging.INFO, logger="phylocore"):
            score_reconciliation_from_bootstrap(indexed(REFERENCE), indexed(REFERENCE))
        assert any("reconciliation-aware bootstrap" in r.getMessage() for r in caplog.records)
