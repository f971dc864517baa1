from __future__ import annotations

from typing import Any, Tuple

import numpy as np

from rannx.core.metrics import Metric, resolve_metric
from rannx.core.sort_policy import NEAREST, SortPolicy, get_sort_policy
from rannx.core.tree import as_points


def pairwise_distances(
    reference: Any, queries: Any, *, metric: Metric | str | None = None
) -> np.ndarray:
    """Dense ``(num_queries, num_reference)`` distance matrix."""

    resolved = resolve_metric(metric)
    return resolved.pairwise(as_points(queries), as_points(reference))


def brute_force_knn(
    reference: Any,
    queries: Any,
    k: int,
    *,
    metric: Metric | str | None = None,
    sort_policy: SortPolicy | str = NEAREST,
    exclude_self: bool = False,
) -> Tuple[np.ndarray, np.ndarray]:
    """Exact k-NN by dense distances; ties go to the smaller reference index.

    With ``exclude_self`` the queries are taken to be the reference rows
    themselves and the diagonal is skipped. Slots beyond the available
    neighbours hold ``-1`` and the policy's worst distance.
    """

    policy = get_sort_policy(sort_policy)
    dists = pairwise_distances(reference, queries, metric=metric)
    if exclude_self:
        if dists.shape[0] != dists.shape[1]:
            raise ValueError("exclude_self requires the queries to be the reference set.")
        np.fill_diagonal(dists, policy.worst_distance)
    num_queries, num_reference = dists.shape
    keys = policy.sort_key(dists)
    order = np.argsort(keys, axis=1, kind="stable")
    available = num_reference - 1 if exclude_self else num_reference
    take = min(k, max(available, 0))

    indices = np.full((num_queries, k), -1, dtype=np.int64)
    distances = np.full((num_queries, k), policy.worst_distance, dtype=np.float64)
    if take:
        indices[:, :take] = order[:, :take]
        distances[:, :take] = np.take_along_axis(dists, order[:, :take], axis=1)
    return indices, distances


def neighbour_ranks(
    reference: Any,
    queries: Any,
    indices: np.ndarray,
    *,
    metric: Metric | str | None = None,
    sort_policy: SortPolicy | str = NEAREST,
    exclude_self: bool = False,
) -> np.ndarray:
    """Zero-based true rank of each returned neighbour (``-1`` for empty slots).

    A neighbour's rank counts the reference points strictly better than it,
    so tied points share a rank.
    """

    policy = get_sort_policy(sort_policy)
    dists = pairwise_distances(reference, queries, metric=metric)
    if exclude_self:
        np.fill_diagonal(dists, policy.worst_distance)
    keys = policy.sort_key(dists)
    ranks = np.full(indices.shape, -1, dtype=np.int64)
    for row in range(indices.shape[0]):
        sorted_keys = np.sort(keys[row])
        for col, index in enumerate(indices[row]):
            if index < 0:
                continue
            ranks[row, col] = int(np.searchsorted(sorted_keys, keys[row, index], side="left"))
    return ranks


def success_rate(ranks: np.ndarray, num_reference: int, tau: float) -> float:
    """Fraction of queries whose every returned neighbour is in the top ``tau`` fraction."""

    if ranks.shape[0] == 0:
        return 1.0
    cutoff = int(np.ceil(tau * num_reference - 1e-9))
    hits = np.all((ranks >= 0) & (ranks < cutoff), axis=1)
    return float(np.mean(hits))


__all__ = ["brute_force_knn", "neighbour_ranks", "pairwise_distances", "success_rate"]
