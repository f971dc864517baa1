import numpy as np
import pytest
from numpy.random import default_rng

from rannx.algo.rules import SearchRules
from rannx.algo.traverse import DualTreeTraverser, SingleTreeTraverser, TraversalCounters
from rannx.core.metrics import get_metric
from rannx.core.sort_policy import NEAREST
from rannx.core.tree import KDTree
from rannx.queries.exact import brute_force_knn
from tests.utils.datasets import gaussian_points, line_points


def _buffers(num_queries: int, k: int):
    return (
        np.full((num_queries, k), -1, dtype=np.int64),
        np.full((num_queries, k), np.inf),
    )


def _rules(reference_tree, query_set, k, *, alpha=1.0, query_tree=None, **kwargs):
    indices, distances = _buffers(query_set.shape[0], k)
    return SearchRules(
        reference_tree.dataset,
        query_set,
        indices,
        distances,
        metric=get_metric("euclidean"),
        sort_policy=NEAREST,
        tau=0.05,
        alpha=alpha,
        rng=default_rng(0),
        reference_tree=reference_tree,
        query_tree=query_tree,
        **kwargs,
    )


def test_single_tree_traversal_is_exact_with_full_sampling():
    rng = default_rng(7)
    reference = gaussian_points(rng, 300, 2)
    queries = gaussian_points(rng, 20, 2)
    tree = KDTree(reference, leaf_size=8)
    rules = _rules(tree, queries, 3)
    traverser = SingleTreeTraverser(rules)

    for query in range(queries.shape[0]):
        traverser.traverse(query, tree.root)

    expected_idx, expected_dist = brute_force_knn(tree.dataset, queries, 3)
    assert np.array_equal(rules.indices, expected_idx)
    assert np.allclose(rules.distances, expected_dist)
    assert traverser.counters.num_scores > 0
    assert traverser.counters.num_prunes > 0


def test_single_tree_traversal_prunes_distance_work():
    tree = KDTree(line_points(range(1000)), leaf_size=10)
    queries = line_points([500.2])
    rules = _rules(tree, queries, 1)

    SingleTreeTraverser(rules).traverse(0, tree.root)

    assert rules.distances[0, 0] == pytest.approx(0.2)
    assert rules.num_distance_computations < 1000


def test_single_leaf_root_is_scanned_directly():
    tree = KDTree(line_points([0.0, 1.0, 2.0, 100.0]), leaf_size=20)
    rules = _rules(tree, line_points([1.5]), 1, alpha=0.95, sample_at_leaves=True)
    traverser = SingleTreeTraverser(rules)

    traverser.traverse(0, tree.root)

    assert rules.num_distance_computations == 4
    assert rules.distances[0, 0] == pytest.approx(0.5)
    assert traverser.counters.num_scores == 0


def test_dual_tree_traversal_is_exact_with_full_sampling():
    rng = default_rng(8)
    reference = gaussian_points(rng, 250, 3)
    queries = gaussian_points(rng, 40, 3)
    reference_tree = KDTree(reference, leaf_size=6)
    query_tree = KDTree(queries, leaf_size=6)
    rules = _rules(reference_tree, query_tree.dataset, 2, query_tree=query_tree)
    traverser = DualTreeTraverser(rules)

    traverser.traverse(query_tree.root, reference_tree.root)

    expected_idx, expected_dist = brute_force_knn(reference_tree.dataset, query_tree.dataset, 2)
    assert np.array_equal(rules.indices, expected_idx)
    assert np.allclose(rules.distances, expected_dist)
    assert traverser.counters.num_visited > 1


def test_dual_tree_root_bound_covers_every_query():
    rng = default_rng(9)
    reference_tree = KDTree(gaussian_points(rng, 120, 2), leaf_size=5)
    query_tree = KDTree(gaussian_points(rng, 30, 2), leaf_size=5)
    rules = _rules(reference_tree, query_tree.dataset, 1, query_tree=query_tree)

    DualTreeTraverser(rules).traverse(query_tree.root, reference_tree.root)

    root_bound = query_tree.stat(query_tree.root).bound
    assert root_bound >= rules.distances[:, 0].max() - 1e-12


def test_traversers_require_trees():
    reference_tree = KDTree(line_points(range(5)), leaf_size=2)
    rules = _rules(reference_tree, line_points([1.0]), 1)
    with pytest.raises(ValueError):
        DualTreeTraverser(rules)


def test_counters_as_dict():
    counters = TraversalCounters(num_scores=3, num_prunes=1, num_visited=2)
    assert counters.as_dict() == {"scores": 3, "prunes": 1, "visited": 2}
