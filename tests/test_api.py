from __future__ import annotations

import numpy as np
import pytest

import rannx
from rannx import KDTree, RankApproxSearch, Runtime
from rannx.queries.exact import brute_force_knn
from rannx.queries.search import SearchMode
from tests.utils.datasets import gaussian_dataset


@pytest.fixture
def dataset():
    return gaussian_dataset(np.random.default_rng(12), tree_points=150, queries=12, dimension=2)


def test_package_exports_version_and_api():
    assert isinstance(rannx.__version__, str)
    for name in ("RankApproxSearch", "Runtime", "RASearch", "KDTree", "minimum_samples_required"):
        assert name in rannx.__all__


@pytest.mark.parametrize(
    "mode, expected",
    [("naive", SearchMode.NAIVE), ("single", SearchMode.SINGLE_TREE), ("dual", SearchMode.DUAL_TREE)],
)
def test_fit_and_knn_follow_runtime(dataset, mode, expected):
    reference, queries = dataset
    ras = RankApproxSearch(Runtime(alpha=1.0, seed=2, leaf_size=10), mode=mode).fit(reference)

    indices, distances = ras.knn(queries, k=3)

    assert ras.searcher is not None
    assert ras.searcher.mode is expected
    assert ras.searcher.settings.alpha == 1.0
    assert ras.searcher.leaf_size == 10
    expected_idx, expected_dist = brute_force_knn(reference, queries, 3)
    assert np.array_equal(indices, expected_idx)
    assert np.allclose(distances, expected_dist)


def test_fit_returns_new_instance(dataset):
    reference, _ = dataset
    base = RankApproxSearch(Runtime(seed=0))

    fitted = base.fit(reference)

    assert base.searcher is None
    assert fitted.searcher is not None
    assert fitted.runtime is base.runtime


def test_nearest_and_knn_self(dataset):
    reference, queries = dataset
    ras = RankApproxSearch(Runtime(alpha=1.0, seed=0), mode="single").fit(reference)

    indices, _ = ras.nearest(queries)
    self_indices, _ = ras.knn_self(k=1)

    assert indices.shape == (queries.shape[0], 1)
    expected, _ = brute_force_knn(reference, reference, 1, exclude_self=True)
    assert np.array_equal(self_indices, expected)


def test_fit_tree_borrows_the_tree(dataset):
    reference, queries = dataset
    tree = KDTree(reference, leaf_size=8)
    ras = RankApproxSearch(Runtime(alpha=1.0, seed=0)).fit_tree(tree)

    indices, _ = ras.knn(queries, k=1)

    assert ras.searcher.reference_tree is tree
    expected, _ = brute_force_knn(tree.dataset, queries, 1)
    assert np.array_equal(indices, expected)


def test_fit_tree_rejects_naive_mode(dataset):
    reference, _ = dataset
    with pytest.raises(ValueError):
        RankApproxSearch(mode="naive").fit_tree(KDTree(reference))


def test_invalid_mode_raises():
    with pytest.raises(ValueError):
        RankApproxSearch(mode="triple")


def test_unfitted_search_raises(dataset):
    _, queries = dataset
    with pytest.raises(ValueError):
        RankApproxSearch().knn(queries, k=1)


def test_save_and_load_round_trip(tmp_path, dataset):
    reference, queries = dataset
    ras = RankApproxSearch(Runtime(tau=0.1, seed=6), mode="single").fit(reference)
    expected = ras.knn(queries, k=2)

    path = ras.save(tmp_path / "ras.npz")
    restored = RankApproxSearch.load(path, runtime=Runtime(seed=6))

    assert restored.mode == "single"
    indices, distances = restored.knn(queries, k=2)
    assert np.array_equal(indices, expected[0])
    assert np.array_equal(distances, expected[1])
