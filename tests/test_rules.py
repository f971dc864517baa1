import math

import numpy as np
import pytest
from numpy.random import default_rng

from rannx.algo.rules import PRUNE, SearchRules
from rannx.core.metrics import get_metric
from rannx.core.sort_policy import NEAREST
from rannx.core.tree import KDTree
from tests.utils.datasets import line_points


def _rules(reference_tree, queries, *, k=1, tau=0.05, alpha=0.95, query_tree=None, **kwargs):
    query_set = query_tree.dataset if query_tree is not None else np.asarray(queries, dtype=np.float64)
    indices = np.full((query_set.shape[0], k), -1, dtype=np.int64)
    distances = np.full((query_set.shape[0], k), np.inf)
    return SearchRules(
        reference_tree.dataset,
        query_set,
        indices,
        distances,
        metric=get_metric("euclidean"),
        sort_policy=NEAREST,
        tau=tau,
        alpha=alpha,
        rng=default_rng(0),
        reference_tree=reference_tree,
        query_tree=query_tree,
        **kwargs,
    )


@pytest.fixture
def line_tree() -> KDTree:
    return KDTree(line_points(range(100)), leaf_size=10)


@pytest.fixture
def small_leaf() -> KDTree:
    return KDTree(line_points(range(10)), leaf_size=20)


def test_sampling_budget_is_derived_from_reference_size(line_tree):
    rules = _rules(line_tree, [[10.0]])
    assert rules.num_samples_required == 45
    assert rules.sampling_ratio == pytest.approx(0.45)


def test_base_case_returns_current_bound_and_counts(line_tree):
    rules = _rules(line_tree, [[10.2]], k=2)
    reference = int(np.flatnonzero(line_tree.dataset[:, 0] == 10.0)[0])

    bound = rules.base_case(0, reference)

    assert bound == math.inf
    assert rules.distances[0, 0] == pytest.approx(0.2)
    assert rules.num_distance_computations == 1
    assert rules.samples_made[0] == 1


def test_base_cases_skip_self_pairs_for_the_same_set(small_leaf):
    data = small_leaf.dataset
    indices = np.full((10, 1), -1, dtype=np.int64)
    distances = np.full((10, 1), np.inf)
    rules = SearchRules(
        data,
        data,
        indices,
        distances,
        metric=get_metric("euclidean"),
        sort_policy=NEAREST,
        tau=0.5,
        alpha=0.95,
        rng=default_rng(0),
        same_set=True,
        reference_tree=small_leaf,
    )

    rules.base_cases(3, np.arange(10))

    assert indices[3, 0] != 3
    assert distances[3, 0] == pytest.approx(1.0)
    assert rules.num_distance_computations == 9
    assert rules.base_case(3, 3) == distances[3, 0]
    assert rules.num_distance_computations == 9


def test_leaf_is_scanned_exhaustively_by_default(small_leaf):
    rules = _rules(small_leaf, [[4.4]], tau=0.5)
    assert rules.num_samples_required == 4

    assert rules.score(0, small_leaf.root) == PRUNE
    assert rules.num_distance_computations == 10
    assert rules.distances[0, 0] == pytest.approx(0.4)


def test_leaf_sampling_draws_only_the_required_share(small_leaf):
    rules = _rules(small_leaf, [[4.4]], tau=0.5, sample_at_leaves=True)

    assert rules.score(0, small_leaf.root) == PRUNE
    assert rules.num_distance_computations == 4
    assert rules.samples_made[0] == 4


def test_first_leaf_is_exact_then_sampling_resumes(small_leaf):
    rules = _rules(small_leaf, [[4.4]], tau=0.5, sample_at_leaves=True, first_leaf_exact=True)

    rules.score(0, small_leaf.root)

    assert rules.first_leaf_done[0]
    assert rules.num_distance_computations == 10


def test_large_internal_nodes_are_descended(line_tree):
    rules = _rules(line_tree, [[10.0]])
    score = rules.score(0, line_tree.root)

    assert score != PRUNE
    assert score == pytest.approx(0.0)
    assert rules.num_distance_computations == 0


def test_small_internal_nodes_are_approximated_by_sampling(line_tree):
    rules = _rules(line_tree, [[10.0]])
    left = line_tree.children(line_tree.root)[0]
    grandchild = line_tree.children(left)[0]
    assert line_tree.num_descendants(grandchild) == 25
    assert not line_tree.is_leaf(grandchild)

    assert rules.score(0, grandchild) == PRUNE
    # ceil(0.45 * 25) points sampled from the node's descendants.
    assert rules.samples_made[0] == 12
    assert rules.num_distance_computations == 12
    assert rules.indices[0, 0] >= 0


def test_first_leaf_descent_overrides_node_sampling(line_tree):
    rules = _rules(line_tree, [[10.0]], first_leaf_exact=True)
    left = line_tree.children(line_tree.root)[0]
    grandchild = line_tree.children(left)[0]

    assert rules.score(0, grandchild) != PRUNE
    assert rules.num_distance_computations == 0


def test_met_budget_prunes_and_credits_virtual_samples(line_tree):
    rules = _rules(line_tree, [[10.0]])
    rules.samples_made[0] = rules.num_samples_required

    assert rules.score(0, line_tree.root) == PRUNE
    assert rules.samples_made[0] == 45 + math.floor(0.45 * 100)


def test_distant_nodes_are_pruned_against_the_bound(line_tree):
    rules = _rules(line_tree, [[10.0]])
    rules.candidates(0).try_insert(0.5, 0)
    right = line_tree.children(line_tree.root)[1]

    assert rules.score(0, right) == PRUNE
    assert rules.samples_made[0] == math.floor(0.45 * 50)
    assert rules.num_distance_computations == 0


def test_rescore_keeps_pruned_nodes_pruned(line_tree):
    rules = _rules(line_tree, [[10.0]])
    assert rules.rescore(0, line_tree.root, PRUNE) == PRUNE
    rules.candidates(0).try_insert(0.1, 0)
    right = line_tree.children(line_tree.root)[1]
    assert rules.rescore(0, right, 40.0) == PRUNE


def test_query_bound_aggregates_children(line_tree):
    query_tree = KDTree(line_points([0.0, 1.0, 10.0, 11.0]), leaf_size=2)
    rules = _rules(line_tree, None, query_tree=query_tree)
    rules.distances[:, 0] = [1.0, 2.0, 3.0, 0.5]
    left, right = query_tree.children(query_tree.root)

    assert rules.update_query_bound(left) == 2.0
    assert rules.update_query_bound(right) == 3.0
    assert rules.update_query_bound(query_tree.root) == 3.0


def test_update_after_recursion_folds_child_statistics(line_tree):
    query_tree = KDTree(line_points([0.0, 1.0, 10.0, 11.0]), leaf_size=2)
    rules = _rules(line_tree, None, query_tree=query_tree)
    stats = query_tree.statistics
    left, right = query_tree.children(query_tree.root)
    stats.bound[[query_tree.root, left, right]] = [np.inf, 0.25, 4.0]
    stats.samples_made[[query_tree.root, left, right]] = [0, 5, 7]

    rules.update_after_recursion(query_tree.root)

    assert stats.bound[query_tree.root] == 4.0
    assert stats.samples_made[query_tree.root] == 5


def test_dual_scoring_requires_a_query_tree(line_tree):
    rules = _rules(line_tree, [[1.0]])
    with pytest.raises(RuntimeError):
        rules.score_nodes(0, line_tree.root)


def test_dimension_mismatch_raises(line_tree):
    with pytest.raises(ValueError):
        _rules(line_tree, [[1.0, 2.0]])
