from __future__ import annotations

import math
from typing import List, Optional

import numpy as np
from numpy.random import Generator

from rannx.algo.candidates import CandidateList
from rannx.algo.sampling import minimum_samples_required, sample_distinct
from rannx.core.metrics import Metric
from rannx.core.sort_policy import SortPolicy
from rannx.core.tree import SpatialTree
from rannx.logging import get_logger

LOGGER = get_logger("algo.rules")

PRUNE = math.inf


class SearchRules:
    """Base-case and scoring rules shared by naive, single- and dual-tree search.

    Query indices are rows of ``query_set`` and reference indices are rows of
    ``reference_set``; both are tree order when the sets come from trees. The
    ``indices``/``distances`` buffers hold one candidate row per query and are
    written in place.

    Sampling budget
    ---------------
    ``num_samples_required`` reference points must be examined per query to
    meet the ``(tau, alpha)`` guarantee. A node holding ``c`` points is worth
    ``sampling_ratio * c`` of that budget: pruning it credits the floor of
    that amount, approximating it draws the ceiling (capped by what is still
    missing). Single-tree search tracks the budget per query in
    ``samples_made``; dual-tree search tracks it per query node in the query
    tree's ``NodeStatistics``.
    """

    def __init__(
        self,
        reference_set: np.ndarray,
        query_set: np.ndarray,
        indices: np.ndarray,
        distances: np.ndarray,
        *,
        metric: Metric,
        sort_policy: SortPolicy,
        tau: float,
        alpha: float,
        rng: Generator,
        sample_at_leaves: bool = False,
        first_leaf_exact: bool = False,
        single_sample_limit: int = 20,
        same_set: bool = False,
        reference_tree: Optional[SpatialTree] = None,
        query_tree: Optional[SpatialTree] = None,
    ) -> None:
        num_queries, k = distances.shape
        if indices.shape != distances.shape:
            raise ValueError("indices and distances buffers must have the same shape.")
        if num_queries != query_set.shape[0]:
            raise ValueError("Output buffers must have one row per query point.")
        if reference_set.shape[0] == 0:
            raise ValueError("Cannot search an empty reference set.")
        if query_set.shape[1] != reference_set.shape[1]:
            raise ValueError(
                f"Query dimension {query_set.shape[1]} does not match reference dimension "
                f"{reference_set.shape[1]}."
            )

        self.reference_set = reference_set
        self.query_set = query_set
        self.indices = indices
        self.distances = distances
        self.metric = metric
        self.sort_policy = sort_policy
        self.k = int(k)
        self.tau = float(tau)
        self.alpha = float(alpha)
        self.rng = rng
        self.sample_at_leaves = bool(sample_at_leaves)
        self.first_leaf_exact = bool(first_leaf_exact)
        self.single_sample_limit = int(single_sample_limit)
        self.same_set = bool(same_set)
        self.reference_tree = reference_tree
        self.query_tree = query_tree

        population = int(reference_set.shape[0])
        self.num_samples_required = minimum_samples_required(population, self.k, tau, alpha)
        self.sampling_ratio = self.num_samples_required / float(population)
        self.samples_made = np.zeros(num_queries, dtype=np.int64)
        self.first_leaf_done = np.zeros(num_queries, dtype=bool)
        self.num_distance_computations = 0
        self._candidates: List[CandidateList] = [
            CandidateList(distances[row], indices[row], sort_policy) for row in range(num_queries)
        ]
        LOGGER.debug(
            "Rank-approximate rules: n=%d k=%d tau=%.4g alpha=%.4g samples_required=%d ratio=%.4g",
            population,
            self.k,
            self.tau,
            self.alpha,
            self.num_samples_required,
            self.sampling_ratio,
        )

    def candidates(self, query: int) -> CandidateList:
        return self._candidates[query]

    # ------------------------------------------------------------------
    # Base cases
    # ------------------------------------------------------------------
    def base_case(self, query: int, reference: int) -> float:
        """Evaluate one pair and return the query's updated k-th distance."""

        candidates = self._candidates[query]
        if self.same_set and query == reference:
            return candidates.worst()
        distance = self.metric.evaluate(self.query_set[query], self.reference_set[reference])
        candidates.try_insert(distance, reference)
        self.samples_made[query] += 1
        self.num_distance_computations += 1
        return candidates.worst()

    def base_cases(self, query: int, references: np.ndarray) -> float:
        """Vectorised :meth:`base_case` over ``references`` in the given order."""

        refs = np.asarray(references, dtype=np.int64)
        if self.same_set:
            refs = refs[refs != query]
        candidates = self._candidates[query]
        if refs.size == 0:
            return candidates.worst()
        row = self.metric.pairwise(self.query_set[query], self.reference_set[refs])[0]
        for distance, reference in zip(row.tolist(), refs.tolist()):
            candidates.try_insert(distance, reference)
        self.samples_made[query] += refs.size
        self.num_distance_computations += int(refs.size)
        return candidates.worst()

    # ------------------------------------------------------------------
    # Single-tree scoring
    # ------------------------------------------------------------------
    def score(self, query: int, reference_node: int) -> float:
        """Prune, approximate, or rank ``reference_node`` for one query point."""

        tree = self._require_reference_tree()
        distance = self.sort_policy.best_point_to_node_distance(
            tree, reference_node, self.query_set[query]
        )
        return self._score_point(query, reference_node, distance)

    def rescore(self, query: int, reference_node: int, old_score: float) -> float:
        if old_score == PRUNE:
            return PRUNE
        return self._score_point(query, reference_node, self.sort_policy.from_score(old_score))

    def _score_point(self, query: int, reference_node: int, distance: float) -> float:
        tree = self._require_reference_tree()
        count = tree.num_descendants(reference_node)
        bound = self._candidates[query].worst()
        made = int(self.samples_made[query])
        if not self.sort_policy.is_better(distance, bound) or made >= self.num_samples_required:
            # Nothing better can live here, or the budget is met: credit the
            # node's share without computing it.
            self.samples_made[query] += int(math.floor(self.sampling_ratio * count))
            return PRUNE

        samples_reqd = self._samples_for(count, made)
        if tree.is_leaf(reference_node):
            self._visit_leaf(query, reference_node, samples_reqd)
            return PRUNE
        if self._first_leaf_pending(query) or samples_reqd > self.single_sample_limit:
            return self.sort_policy.to_score(distance)
        self._sample_node(query, reference_node, samples_reqd)
        return PRUNE

    # ------------------------------------------------------------------
    # Dual-tree scoring
    # ------------------------------------------------------------------
    def score_nodes(self, query_node: int, reference_node: int) -> float:
        """Prune, approximate, or rank a (query node, reference node) pair."""

        query_tree = self._require_query_tree()
        reference_tree = self._require_reference_tree()
        distance = self.sort_policy.best_node_to_node_distance(
            query_tree, query_node, reference_tree, reference_node
        )
        bound = self.update_query_bound(query_node)
        self._synchronise_samples(query_node)
        return self._score_nodes(query_node, reference_node, distance, bound)

    def rescore_nodes(self, query_node: int, reference_node: int, old_score: float) -> float:
        if old_score == PRUNE:
            return PRUNE
        bound = self.update_query_bound(query_node)
        return self._score_nodes(
            query_node, reference_node, self.sort_policy.from_score(old_score), bound
        )

    def update_query_bound(self, query_node: int) -> float:
        """Refresh the worst k-th distance over every query under ``query_node``.

        Leaves read their rows of the distance buffer directly. Internal nodes
        combine their children's bounds and hand the result back down, so a
        child never keeps a looser bound than its parent.
        """

        query_tree = self._require_query_tree()
        stats = query_tree.statistics
        policy = self.sort_policy
        children = query_tree.children(query_node)
        if not children:
            queries = query_tree.descendants(query_node)
            bound = policy.worst_of(self.distances[queries, -1])
        else:
            child_ids = np.asarray(children, dtype=np.int64)
            bound = policy.better_of(
                float(stats.bound[query_node]), policy.worst_of(stats.bound[child_ids])
            )
            stats.bound[child_ids] = policy.better_elementwise(stats.bound[child_ids], bound)
        stats.bound[query_node] = bound
        return bound

    def update_after_recursion(self, query_node: int) -> None:
        """Fold finished children back into ``query_node``'s statistics."""

        query_tree = self._require_query_tree()
        children = query_tree.children(query_node)
        if not children:
            return
        stats = query_tree.statistics
        child_ids = np.asarray(children, dtype=np.int64)
        stats.bound[query_node] = self.sort_policy.better_of(
            float(stats.bound[query_node]), self.sort_policy.worst_of(stats.bound[child_ids])
        )
        stats.samples_made[query_node] = max(
            int(stats.samples_made[query_node]), int(stats.samples_made[child_ids].min())
        )

    def _synchronise_samples(self, query_node: int) -> None:
        query_tree = self._require_query_tree()
        children = query_tree.children(query_node)
        if not children:
            return
        stats = query_tree.statistics
        child_ids = np.asarray(children, dtype=np.int64)
        # Every child has seen at least what its parent has; the parent has
        # seen at least what its least-sampled child has.
        stats.samples_made[query_node] = max(
            int(stats.samples_made[query_node]), int(stats.samples_made[child_ids].min())
        )
        stats.samples_made[child_ids] = np.maximum(
            stats.samples_made[child_ids], stats.samples_made[query_node]
        )

    def _score_nodes(
        self, query_node: int, reference_node: int, distance: float, bound: float
    ) -> float:
        query_tree = self._require_query_tree()
        reference_tree = self._require_reference_tree()
        stats = query_tree.statistics
        count = reference_tree.num_descendants(reference_node)
        made = int(stats.samples_made[query_node])
        if not self.sort_policy.is_better(distance, bound) or made >= self.num_samples_required:
            stats.samples_made[query_node] += int(math.floor(self.sampling_ratio * count))
            return PRUNE

        samples_reqd = self._samples_for(count, made)
        queries = query_tree.descendants(query_node)
        if reference_tree.is_leaf(reference_node):
            for query in queries.tolist():
                self._visit_leaf(query, reference_node, samples_reqd)
            stats.samples_made[query_node] += samples_reqd
            return PRUNE
        first_leaf_pending = self.first_leaf_exact and not bool(self.first_leaf_done[queries].all())
        if first_leaf_pending or samples_reqd > self.single_sample_limit:
            return self.sort_policy.to_score(distance)
        for query in queries.tolist():
            self._sample_node(query, reference_node, samples_reqd)
        stats.samples_made[query_node] += samples_reqd
        return PRUNE

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _samples_for(self, count: int, made: int) -> int:
        wanted = int(math.ceil(self.sampling_ratio * count))
        return max(0, min(wanted, self.num_samples_required - made))

    def _first_leaf_pending(self, query: int) -> bool:
        return self.first_leaf_exact and not bool(self.first_leaf_done[query])

    def _visit_leaf(self, query: int, reference_node: int, samples_reqd: int) -> None:
        tree = self._require_reference_tree()
        points = tree.descendants(reference_node)
        if self._first_leaf_pending(query):
            self.first_leaf_done[query] = True
            self.base_cases(query, points)
        elif self.sample_at_leaves:
            chosen = sample_distinct(samples_reqd, points.shape[0], self.rng)
            self.base_cases(query, points[chosen])
        else:
            self.base_cases(query, points)

    def _sample_node(self, query: int, reference_node: int, samples_reqd: int) -> None:
        tree = self._require_reference_tree()
        points = tree.descendants(reference_node)
        chosen = sample_distinct(samples_reqd, points.shape[0], self.rng)
        self.base_cases(query, points[chosen])

    def _require_reference_tree(self) -> SpatialTree:
        if self.reference_tree is None:
            raise RuntimeError("Tree scoring requires a reference tree.")
        return self.reference_tree

    def _require_query_tree(self) -> SpatialTree:
        if self.query_tree is None:
            raise RuntimeError("Dual-tree scoring requires a query tree.")
        return self.query_tree


__all__ = ["PRUNE", "SearchRules"]
