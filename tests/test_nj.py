"""
tests/test_nj.py
================
Tests for classic and species-guided neighbor-joining, the join-cost and
MRCA tables, and agreement between the 'python' and 'numba' pair scans.

Additive reference matrix
-------------------------
Distances read off the unrooted tree ((0:1,1:2):3,2:4,3:5):

          0    1    2    3
    0     -
    1     3    -
    2     8    9    -
    3     9   10    9    -

Neighbor-joining recovers it exactly: 0 and 1 are joined first, then 2,
leaving the branch to 3 (length 5) as the longest.  Its midpoint becomes
the root: (3:2.5,((0:1,1:2):3,2:4):2.5);
"""

import itertools
import logging
import os
import sys

import numpy as np
import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from phylocore._context import use_backend
from phylocore._cpu_kernels import _nj_select_pair
from phylocore._exceptions import (
    LeafIndexError,
    MalformedInputError,
    NotBinaryError,
)
from phylocore._index import (
    ReconciliationEvent,
    distance_between_leaves,
    get_mrca,
    has_indexed_info,
)
from phylocore._newick import parse_newick, to_newick
from phylocore._nj import (
    _select_pair_python,
    _similarity_to_distance,
    compute_join_costs,
    get_mrca_matrix,
    guided_neighbor_join,
    neighbor_join,
)
from phylocore._reconcile import reconciliation_cost_at_most_binary

BACKENDS = ["python", "numba"]

ADDITIVE = np.array(
    [
        [0, 0, 0, 0],
        [3, 0, 0, 0],
        [8, 9, 0, 0],
        [9, 10, 9, 0],
    ],
    dtype=float,
)

THREE_LEAF = np.array([[0, 0, 0], [2, 0, 0], [4, 4, 0]], dtype=float)


def newick(tree) -> str:
    return to_newick(tree, "{:g}")


def random_distances(n: int, seed: int) -> np.ndarray:
    rng = np.random.default_rng(seed)
    points = rng.random((n, 5))
    diff = points[:, None, :] - points[None, :, :]
    return np.sqrt((diff ** 2).sum(axis=-1))


# ======================================================================== #
# 1. Classic neighbor-joining                                               #
# ======================================================================== #


class TestNeighborJoin:
    @pytest.mark.parametrize("backend", BACKENDS)
    def test_three_leaves(self, backend):
        tree = neighbor_join(THREE_LEAF, backend=backend)
        assert newick(tree) == "(2:1.5,(0:1,1:1):1.5);"

    @pytest.mark.parametrize("backend", BACKENDS)
    def test_three_leaves_joins_closest_pair(self, backend):
        tree = neighbor_join(THREE_LEAF, backend=backend)
        pair = get_mrca(tree, 0, 1)
        assert sorted(leaf.label for leaf in pair.leaves()) == ["0", "1"]
        # (d01 + d02 - d12) / 2 = 1 and its complement
        assert [leaf.branch_length for leaf in pair.children] == [1.0, 1.0]

    @pytest.mark.parametrize("backend", BACKENDS)
    def test_additive_matrix(self, backend):
        tree = neighbor_join(ADDITIVE, backend=backend)
        assert newick(tree) == "(3:2.5,((0:1,1:2):3,2:4):2.5);"

    @pytest.mark.parametrize("backend", BACKENDS)
    def test_additive_distances_recovered(self, backend):
        tree = neighbor_join(ADDITIVE, backend=backend)
        for i, j in itertools.combinations(range(4), 2):
            assert distance_between_leaves(tree, i, j) == pytest.approx(ADDITIVE[j, i])

    def test_result_is_indexed_and_binary(self):
        tree = neighbor_join(random_distances(12, seed=1))
        assert has_indexed_info(tree)
        assert tree.n_leaves == 12
        assert sorted(int(leaf.label) for leaf in tree.leaves()) == list(range(12))
        for node in tree.iter_preorder():
            assert node.n_children in (0, 2)

    def test_outgroup_rooting(self):
        tree = neighbor_join(ADDITIVE, outgroups=[0])
        assert newick(tree) == "(0:0.5,(1:2,(2:4,3:5):3):0.5);"

    def test_outgroup_picks_longest_outgroup_branch(self):
        tree = neighbor_join(ADDITIVE, outgroups=[0, 2])
        assert tree.get_child(0).label == "2"
        assert tree.get_child(0).branch_length == pytest.approx(2.0)

    def test_outgroup_out_of_range(self):
        with pytest.raises(LeafIndexError):
            neighbor_join(ADDITIVE, outgroups=[4])

    def test_only_lower_triangle_read(self):
        noisy = ADDITIVE + np.triu(np.full((4, 4), 123.0))
        assert newick(neighbor_join(noisy)) == newick(neighbor_join(ADDITIVE))

    def test_single_leaf(self):
        tree = neighbor_join(np.zeros((1, 1)))
        assert tree.is_leaf
        assert tree.label == "0"
        assert has_indexed_info(tree)

    def test_two_leaves(self):
        tree = neighbor_join([[0, 0], [4, 0]])
        assert newick(tree) == "(0:2,1:2);"

    def test_deterministic(self):
        d = random_distances(15, seed=7)
        assert to_newick(neighbor_join(d)) == to_newick(neighbor_join(d))

    @pytest.mark.parametrize(
        "matrix",
        [np.zeros((2, 3)), np.zeros(4), np.zeros((0, 0))],
    )
    def test_bad_shape(self, matrix):
        with pytest.raises(MalformedInputError):
            neighbor_join(matrix)

    def test_nan_below_diagonal(self):
        d = ADDITIVE.copy()
        d[2, 1] = np.nan
        with pytest.raises(MalformedInputError):
            neighbor_join(d)

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            neighbor_join(ADDITIVE, backend="gpu")

    def test_input_not_modified(self):
        d = ADDITIVE.copy()
        neighbor_join(d)
        np.testing.assert_array_equal(d, ADDITIVE)


class TestNeighborJoinLogging:
    def test_completion_logged(self, caplog):
        with caplog.at_level(logging.INFO, logger="phylocore"):
            neighbor_join(ADDITIVE, backend="python")
        messages = [r.getMessage() for r in caplog.records]
        assert any("Neighbor-joining complete: 4 leaves, backend=python" in m for m in messages)

    def test_joins_logged_at_debug(self, caplog):
        with caplog.at_level(logging.DEBUG, logger="phylocore"):
            neighbor_join(ADDITIVE)
        joins = [r for r in caplog.records if r.getMessage().startswith("Join ")]
        assert len(joins) == 2
        assert all(r.levelno == logging.DEBUG for r in joins)

    def test_negative_branch_warning(self, caplog):
        # Far from additive: joining 0 and 1 gives leaf 1 a negative branch
        d = np.array([[0, 0, 0], [1, 0, 0], [10, 1, 0]], dtype=float)
        with caplog.at_level(logging.WARNING, logger="phylocore"):
            neighbor_join(d)
        warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
        assert len(warnings) == 1
        assert "negative branch length" in warnings[0].getMessage()


# ======================================================================== #
# 2. Backend agreement                                                      #
# ======================================================================== #


class TestBackendAgreement:
    @pytest.mark.parametrize("seed", range(5))
    def test_random_matrices(self, seed):
        d = random_distances(20, seed)
        a = neighbor_join(d, backend="python")
        b = neighbor_join(d, backend="numba")
        assert a.equals(b)

    @pytest.mark.parametrize("seed", range(3))
    def test_integer_matrices_with_ties(self, seed):
        rng = np.random.default_rng(seed)
        d = rng.integers(1, 4, size=(12, 12)).astype(float)
        a = neighbor_join(d, backend="python")
        b = neighbor_join(d, backend="numba")
        assert a.equals(b)

    @pytest.mark.large_scale
    def test_large_matrix(self):
        d = random_distances(400, seed=11)
        a = neighbor_join(d, backend="python")
        b = neighbor_join(d, backend="numba")
        assert a.equals(b)
        assert a.n_leaves == 400

    def test_use_backend_context(self):
        with use_backend("python"):
            a = neighbor_join(ADDITIVE)
        with use_backend("numba"):
            b = neighbor_join(ADDITIVE)
        assert a.equals(b)

    def test_scan_picks_first_tie(self):
        # Every pair ties; the first pair in scan order is (a=1, b=0)
        dist = np.ones((4, 4)) - np.eye(4)
        active = np.arange(4, dtype=np.int64)
        row_sums = dist.sum(axis=1)
        species = np.zeros(4, dtype=np.int64)
        costs = np.zeros((1, 1))
        py = _select_pair_python(dist, row_sums, active, 4, species, costs)
        nb = _nj_select_pair(dist, row_sums, active, 4, species, costs)
        assert py[:2] == (1, 0)
        assert (int(nb[0]), int(nb[1])) == (1, 0)
        assert py[2] == pytest.approx(float(nb[2]))

    def test_scan_uses_only_active_prefix(self):
        dist = random_distances(6, seed=3)
        active = np.array([0, 2, 5, 1, 3, 4], dtype=np.int64)
        row_sums = dist.sum(axis=1)
        species = np.zeros(6, dtype=np.int64)
        costs = np.zeros((1, 1))
        py = _select_pair_python(dist, row_sums, active, 3, species, costs)
        nb = _nj_select_pair(dist, row_sums, active, 3, species, costs)
        assert py[:2] == (int(nb[0]), int(nb[1]))
        assert max(py[:2]) < 3


# ======================================================================== #
# 3. Join costs and the species MRCA matrix                                 #
# ======================================================================== #


@pytest.fixture(scope="module")
def species_tree():
    """((A,B)AB,C)R  -- pre-order: R=0 AB=1 A=2 B=3 C=4"""
    return parse_newick("((A,B)AB,C)R;")


def by_label(tree):
    return {node.label: node for node in tree.iter_preorder()}


class TestJoinCosts:
    def test_preorder_indexing(self, species_tree):
        _, index = compute_join_costs(species_tree, 1.0, 1.0)
        order = [node.label for node, _ in sorted(index.items(), key=lambda kv: kv[1])]
        assert order == ["R", "AB", "A", "B", "C"]

    @pytest.mark.parametrize(
        "a,b,dups,losses",
        [
            ("A", "B", 0, 0),  # sisters: a speciation
            ("A", "A", 1, 0),  # same species: a duplication
            ("A", "C", 0, 1),  # AB lineage loses B
            ("AB", "C", 0, 0),
            ("A", "AB", 1, 1),  # duplication at AB, copy toward A loses B
            ("A", "R", 1, 2),
            ("R", "R", 1, 0),
        ],
    )
    def test_pair_costs(self, species_tree, a, b, dups, losses):
        costs, index = compute_join_costs(species_tree, 10.0, 1.0)
        nodes = by_label(species_tree)
        i, j = index[nodes[a]], index[nodes[b]]
        assert costs[i, j] == pytest.approx(10.0 * dups + losses)
        assert costs[j, i] == costs[i, j]

    def test_non_binary_species_tree(self):
        with pytest.raises(NotBinaryError):
            compute_join_costs(parse_newick("(A,B,C);"), 1.0, 1.0)

    def test_join_costs_logged(self, species_tree, caplog):
        with caplog.at_level(logging.INFO, logger="phylocore"):
            compute_join_costs(species_tree, 1.0, 1.0)
        assert any("5 species-tree nodes" in r.getMessage() for r in caplog.records)


class TestMrcaMatrix:
    def test_entries(self, species_tree):
        _, index = compute_join_costs(species_tree, 1.0, 1.0)
        mrca = get_mrca_matrix(species_tree, index)
        nodes = by_label(species_tree)
        assert mrca.dtype == np.int64
        assert mrca[index[nodes["A"]], index[nodes["B"]]] == index[nodes["AB"]]
        assert mrca[index[nodes["B"]], index[nodes["C"]]] == index[nodes["R"]]
        assert mrca[index[nodes["A"]], index[nodes["AB"]]] == index[nodes["AB"]]
        for node, k in index.items():
            assert mrca[k, k] == k

    def test_incomplete_mapping(self, species_tree):
        _, index = compute_join_costs(species_tree, 1.0, 1.0)
        partial = dict(list(index.items())[:3])
        with pytest.raises(MalformedInputError):
            get_mrca_matrix(species_tree, partial)


# ======================================================================== #
# 4. Guided neighbor-joining                                                #
# ======================================================================== #


@pytest.fixture(scope="module")
def guided_inputs(species_tree):
    costs, index = compute_join_costs(species_tree, 1.0, 1.0)
    mrca = get_mrca_matrix(species_tree, index)
    nodes = by_label(species_tree)
    # Genes 0, 1, 2 sampled from species A, B, C
    gene_species = [index[nodes["A"]], index[nodes["B"]], index[nodes["C"]]]
    # Lower triangle: differences; upper triangle: similarities
    similarity = np.array(
        [
            [0, 9, 5],
            [1, 0, 5],
            [5, 5, 0],
        ],
        dtype=float,
    )
    return similarity, costs, gene_species, index, mrca


class TestSimilarityToDistance:
    def test_fraction_of_differences(self):
        s = np.array([[0, 9], [1, 0]], dtype=float)
        d = _similarity_to_distance(s)
        assert d[1, 0] == pytest.approx(0.1)
        assert d[0, 1] == pytest.approx(0.1)
        assert d[0, 0] == 0.0

    def test_no_observations_is_distance_one(self):
        d = _similarity_to_distance(np.zeros((2, 2)))
        assert d[1, 0] == 1.0


class TestGuidedNeighborJoin:
    @pytest.mark.parametrize("backend", BACKENDS)
    def test_rooted_by_species_tree(self, species_tree, guided_inputs, backend):
        similarity, costs, gene_species, index, mrca = guided_inputs
        tree = guided_neighbor_join(
            similarity, costs, gene_species, index, mrca, species_tree, backend=backend
        )
        assert tree.n_leaves == 3
        assert has_indexed_info(tree)
        # ((0,1),2) is the only rooting without duplications or losses
        assert get_mrca(tree, 0, 1).parent is tree
        assert reconciliation_cost_at_most_binary(tree) == (0, 0)
        assert tree.info.recon.event == ReconciliationEvent.SPECIATION
        assert tree.info.recon.species is species_tree

    def test_leaf_species(self, species_tree, guided_inputs):
        similarity, costs, gene_species, index, mrca = guided_inputs
        tree = guided_neighbor_join(
            similarity, costs, gene_species, index, mrca, species_tree
        )
        for leaf in tree.leaves():
            species = leaf.info.recon.species
            assert index[species] == gene_species[int(leaf.label)]
            assert leaf.info.recon.event == ReconciliationEvent.LEAF

    def test_penalty_overrides_distance(self):
        # By sequence, 0|2 and 1|3 are the close pairs.  Genes 2 and 3 share
        # species C; making C expensive to join with A or B pulls them
        # together instead.
        species_tree = parse_newick("((A,B)AB,C)R;")
        costs, index = compute_join_costs(species_tree, 0.0, 0.0)
        mrca = get_mrca_matrix(species_tree, index)
        nodes = by_label(species_tree)
        a, b, c = index[nodes["A"]], index[nodes["B"]], index[nodes["C"]]
        genes = [a, b, c, c]
        similarity = np.array(
            [
                [0, 5, 9, 5],
                [5, 0, 5, 9],
                [1, 5, 0, 9],
                [5, 1, 1, 0],
            ],
            dtype=float,
        )
        unguided = guided_neighbor_join(similarity, costs, genes, index, mrca, species_tree)
        assert get_mrca(unguided, 0, 2).n_leaves == 2
        assert get_mrca(unguided, 1, 3).n_leaves == 2

        penalised = costs.copy()
        for s in (a, b):
            penalised[s, c] = penalised[c, s] = 100.0
        guided = guided_neighbor_join(similarity, penalised, genes, index, mrca, species_tree)
        assert get_mrca(guided, 2, 3).n_leaves == 2
        assert get_mrca(guided, 0, 1).n_leaves == 2
        assert get_mrca(guided, 0, 2) is guided

    def test_species_index_count_mismatch(self, species_tree, guided_inputs):
        similarity, costs, gene_species, index, mrca = guided_inputs
        with pytest.raises(MalformedInputError):
            guided_neighbor_join(
                similarity, costs, gene_species[:2], index, mrca, species_tree
            )

    def test_species_index_out_of_range(self, species_tree, guided_inputs):
        similarity, costs, _, index, mrca = guided_inputs
        with pytest.raises(MalformedInputError):
            guided_neighbor_join(similarity, costs, [0, 1, 99], index, mrca, species_tree)

    def test_mrca_shape_mismatch(self, species_tree, guided_inputs):
        similarity, costs, gene_species, index, _ = guided_inputs
        with pytest.raises(MalformedInputError):
            guided_neighbor_join(
                similarity, costs, gene_species, index, np.zeros((2, 2)), species_tree
            )
