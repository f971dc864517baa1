import math

import numpy as np
import pytest

from rannx.core.sort_policy import FURTHEST, NEAREST, get_sort_policy
from rannx.core.tree import KDTree


def test_nearest_semantics():
    assert NEAREST.worst_distance == math.inf
    assert NEAREST.is_better(1.0, 2.0)
    assert not NEAREST.is_better(2.0, 2.0)
    assert NEAREST.better_of(1.0, 3.0) == 1.0
    assert NEAREST.worst_of(np.array([1.0, 4.0, 2.0])) == 4.0
    assert NEAREST.to_score(2.5) == 2.5


def test_furthest_semantics_invert_ordering():
    assert FURTHEST.worst_distance == -math.inf
    assert FURTHEST.is_better(3.0, 2.0)
    assert FURTHEST.better_of(1.0, 3.0) == 3.0
    assert FURTHEST.worst_of(np.array([1.0, 4.0, 2.0])) == 1.0
    assert FURTHEST.to_score(2.5) == -2.5
    assert FURTHEST.from_score(FURTHEST.to_score(2.5)) == 2.5


def test_worst_of_empty_is_sentinel():
    assert NEAREST.worst_of(np.array([])) == math.inf
    assert FURTHEST.worst_of(np.array([])) == -math.inf


def test_best_point_to_node_distance_uses_matching_bound():
    tree = KDTree(np.array([[0.0], [1.0], [2.0]]), leaf_size=8)
    point = np.array([4.0])

    assert NEAREST.best_point_to_node_distance(tree, tree.root, point) == pytest.approx(2.0)
    assert FURTHEST.best_point_to_node_distance(tree, tree.root, point) == pytest.approx(4.0)


def test_get_sort_policy_by_name():
    assert get_sort_policy("Nearest") is NEAREST
    assert get_sort_policy(FURTHEST) is FURTHEST
    with pytest.raises(KeyError):
        get_sort_policy("sideways")
