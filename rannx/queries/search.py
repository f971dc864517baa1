from __future__ import annotations

import enum
import math
from dataclasses import asdict, dataclass, replace
from typing import Any, Dict, Optional, Tuple

import numpy as np

from rannx import config as cx_config
from rannx.algo.candidates import EMPTY_INDEX
from rannx.algo.rules import SearchRules
from rannx.algo.sampling import as_generator, sample_distinct
from rannx.algo.traverse import DualTreeTraverser, SingleTreeTraverser, TraversalCounters
from rannx.core.metrics import Metric, resolve_metric
from rannx.core.sort_policy import SortPolicy, get_sort_policy
from rannx.core.tree import KDTree, Ownership, SpatialTree, as_points
from rannx.diagnostics import OperationLog, log_operation
from rannx.logging import get_logger

LOGGER = get_logger("queries.search")


class InvalidModeError(ValueError):
    """Raised when an entry point is not available in the searcher's mode."""


class SearchMode(enum.Enum):
    NAIVE = "naive"
    SINGLE_TREE = "single_tree"
    DUAL_TREE = "dual_tree"


@dataclass(frozen=True)
class SearchSettings:
    """Sampling knobs of a rank-approximate searcher.

    ``tau`` is the accepted rank fraction (``0.05`` accepts anything in the
    top 5% of the reference set) and ``alpha`` the probability with which
    every returned neighbour must fall inside it. ``seed`` feeds a fresh
    generator at the start of every search so repeated calls agree.
    """

    tau: float
    alpha: float
    sample_at_leaves: bool
    first_leaf_exact: bool
    single_sample_limit: int
    seed: int | None

    def __post_init__(self) -> None:
        if not math.isfinite(self.tau) or self.tau < 0.0:
            raise ValueError(f"tau must be a finite non-negative fraction, got {self.tau}.")
        if not math.isfinite(self.alpha) or self.alpha < 0.0:
            raise ValueError(f"alpha must be a finite non-negative probability, got {self.alpha}.")
        if self.single_sample_limit < 0:
            raise ValueError("single_sample_limit must be non-negative.")

    @classmethod
    def from_runtime(cls, **overrides: Any) -> "SearchSettings":
        runtime = cx_config.runtime_config()
        values: Dict[str, Any] = {
            "tau": runtime.tau,
            "alpha": runtime.alpha,
            "sample_at_leaves": runtime.sample_at_leaves,
            "first_leaf_exact": runtime.first_leaf_exact,
            "single_sample_limit": runtime.single_sample_limit,
            "seed": runtime.seed,
        }
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(
            tau=float(values["tau"]),
            alpha=float(values["alpha"]),
            sample_at_leaves=bool(values["sample_at_leaves"]),
            first_leaf_exact=bool(values["first_leaf_exact"]),
            single_sample_limit=int(values["single_sample_limit"]),
            seed=None if values["seed"] is None else int(values["seed"]),
        )


@dataclass(frozen=True)
class SearchDiagnostics:
    mode: str
    num_queries: int
    k: int
    samples_required: int
    sampling_ratio: float
    distance_computations: int
    scores: int = 0
    prunes: int = 0
    visited: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def remap_results(
    indices: np.ndarray,
    distances: np.ndarray,
    *,
    reference_map: Optional[np.ndarray] = None,
    query_map: Optional[np.ndarray] = None,
) -> Tuple[np.ndarray, np.ndarray]:
    """Translate tree positions back to caller positions.

    ``reference_map`` rewrites neighbour indices (empty slots stay ``-1``);
    ``query_map`` moves row ``i`` of the results to row ``query_map[i]``.
    """

    out_indices = indices
    out_distances = distances
    if reference_map is not None:
        out_indices = indices.copy()
        filled = out_indices != EMPTY_INDEX
        out_indices[filled] = reference_map[out_indices[filled]]
    if query_map is not None:
        rows_indices = np.empty_like(out_indices)
        rows_distances = np.empty_like(out_distances)
        rows_indices[query_map] = out_indices
        rows_distances[query_map] = out_distances
        out_indices, out_distances = rows_indices, rows_distances
    return out_indices, out_distances


class RASearch:
    """Rank-approximate k-nearest-neighbour searcher.

    Exactly one strategy is fixed at construction: ``naive`` compares every
    query against one uniform sample of the reference set, ``single_mode``
    walks the reference tree once per query, and the default dual-tree mode
    walks a query tree against the reference tree.

    Results are ``(indices, distances)`` arrays of shape ``(num_queries, k)``
    in caller order. Slots that no sampled point filled keep index ``-1`` and
    the sort policy's worst distance.
    """

    def __init__(
        self,
        reference: Any,
        *,
        naive: bool = False,
        single_mode: bool = False,
        metric: Metric | str | None = None,
        sort_policy: SortPolicy | str | None = None,
        leaf_size: int | None = None,
        rearrange: bool = True,
        tau: float | None = None,
        alpha: float | None = None,
        sample_at_leaves: bool | None = None,
        first_leaf_exact: bool | None = None,
        single_sample_limit: int | None = None,
        seed: int | None = None,
    ) -> None:
        runtime = cx_config.runtime_config()
        resolved_metric = resolve_metric(metric)
        resolved_leaf_size = int(leaf_size) if leaf_size is not None else runtime.leaf_size
        settings = SearchSettings.from_runtime(
            tau=tau,
            alpha=alpha,
            sample_at_leaves=sample_at_leaves,
            first_leaf_exact=first_leaf_exact,
            single_sample_limit=single_sample_limit,
            seed=seed,
        )
        if naive:
            data = as_points(reference).copy()
            if data.shape[0] == 0:
                raise ValueError("Cannot search an empty reference set.")
            data.setflags(write=False)
            tree = None
        else:
            tree = KDTree(
                reference, leaf_size=resolved_leaf_size, metric=resolved_metric, rearrange=rearrange
            )
            data = tree.dataset
        self._initialise(
            reference_set=data,
            reference_tree=tree,
            ownership=Ownership.OWNED,
            naive=naive,
            single_mode=single_mode,
            metric=resolved_metric,
            sort_policy=sort_policy,
            leaf_size=resolved_leaf_size,
            settings=settings,
        )

    @classmethod
    def from_tree(
        cls,
        tree: SpatialTree,
        *,
        single_mode: bool = False,
        sort_policy: SortPolicy | str | None = None,
        tau: float | None = None,
        alpha: float | None = None,
        sample_at_leaves: bool | None = None,
        first_leaf_exact: bool | None = None,
        single_sample_limit: int | None = None,
        seed: int | None = None,
    ) -> "RASearch":
        """Search over a caller-built tree without taking ownership of it.

        Neighbour indices are reported in the tree's own point order.
        """

        settings = SearchSettings.from_runtime(
            tau=tau,
            alpha=alpha,
            sample_at_leaves=sample_at_leaves,
            first_leaf_exact=first_leaf_exact,
            single_sample_limit=single_sample_limit,
            seed=seed,
        )
        searcher = cls.__new__(cls)
        searcher._initialise(
            reference_set=tree.dataset,
            reference_tree=tree,
            ownership=Ownership.BORROWED,
            naive=False,
            single_mode=single_mode,
            metric=tree.metric,
            sort_policy=sort_policy,
            leaf_size=int(getattr(tree, "leaf_size", cx_config.runtime_config().leaf_size)),
            settings=settings,
        )
        return searcher

    @classmethod
    def _restore(
        cls,
        *,
        reference_set: np.ndarray | None,
        reference_tree: SpatialTree | None,
        naive: bool,
        single_mode: bool,
        metric: Metric | str,
        sort_policy: SortPolicy | str,
        leaf_size: int,
        settings: SearchSettings,
    ) -> "RASearch":
        searcher = cls.__new__(cls)
        if reference_tree is not None:
            reference_set = reference_tree.dataset
        if reference_set is None:
            raise ValueError("A restored searcher needs a reference set or a reference tree.")
        searcher._initialise(
            reference_set=reference_set,
            reference_tree=reference_tree,
            ownership=Ownership.OWNED,
            naive=naive,
            single_mode=single_mode,
            metric=resolve_metric(metric),
            sort_policy=sort_policy,
            leaf_size=leaf_size,
            settings=settings,
        )
        return searcher

    def _initialise(
        self,
        *,
        reference_set: np.ndarray,
        reference_tree: SpatialTree | None,
        ownership: Ownership,
        naive: bool,
        single_mode: bool,
        metric: Metric,
        sort_policy: SortPolicy | str | None,
        leaf_size: int,
        settings: SearchSettings,
    ) -> None:
        if not naive and reference_tree is None:
            raise ValueError("Tree search modes need a reference tree.")
        self._reference_set = reference_set
        self._reference_tree = reference_tree
        self._ownership = ownership
        self._naive = bool(naive)
        self._single_mode = bool(single_mode) and not self._naive
        self.metric = metric
        self.sort_policy = get_sort_policy(
            sort_policy if sort_policy is not None else cx_config.runtime_config().sort_policy
        )
        self.leaf_size = int(leaf_size)
        self.settings = settings
        self.last_diagnostics: SearchDiagnostics | None = None
        LOGGER.debug("Initialised searcher: %s", self)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------
    @property
    def mode(self) -> SearchMode:
        if self._naive:
            return SearchMode.NAIVE
        if self._single_mode:
            return SearchMode.SINGLE_TREE
        return SearchMode.DUAL_TREE

    @property
    def naive(self) -> bool:
        return self._naive

    @property
    def single_mode(self) -> bool:
        return self._single_mode

    @property
    def reference_set(self) -> np.ndarray:
        return self._reference_set

    @property
    def reference_tree(self) -> SpatialTree | None:
        return self._reference_tree

    @property
    def ownership(self) -> Ownership:
        return self._ownership

    def with_settings(self, **overrides: Any) -> "RASearch":
        """Return a searcher sharing this one's data with updated sampling knobs."""

        clone = self.__class__.__new__(self.__class__)
        clone.__dict__.update(self.__dict__)
        clone.settings = replace(self.settings, **overrides)
        clone.last_diagnostics = None
        return clone

    def reset_statistics(self) -> None:
        if self._reference_tree is not None:
            self._reference_tree.reset_statistics(self.sort_policy.worst_distance)

    def describe(self) -> Dict[str, Any]:
        tree = self._reference_tree
        return {
            "mode": self.mode.value,
            "naive": self._naive,
            "single_mode": self._single_mode,
            "metric": self.metric.name,
            "sort_policy": self.sort_policy.name,
            "leaf_size": self.leaf_size,
            "ownership": self._ownership.value,
            "reference_points": int(self._reference_set.shape[0]),
            "dimension": int(self._reference_set.shape[1]),
            "tree": repr(tree) if tree is not None else None,
            **asdict(self.settings),
        }

    def __repr__(self) -> str:
        return (
            f"RASearch(mode={self.mode.value}, points={self._reference_set.shape[0]}, "
            f"tau={self.settings.tau}, alpha={self.settings.alpha}, "
            f"ownership={self._ownership.value})"
        )

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------
    def search(self, queries: Any, k: int) -> Tuple[np.ndarray, np.ndarray]:
        """Find ``k`` rank-approximate neighbours for every row of ``queries``."""

        query_set = as_points(queries)
        k = self._validate(query_set, k)
        with log_operation(LOGGER, "ra_search") as op_log:
            op_log.add_metadata(mode=self.mode.value, queries=int(query_set.shape[0]), k=k)
            if query_set.shape[0] == 0:
                return self._allocate(0, k)
            if self._naive:
                return self._search_naive(op_log, query_set, k, same_set=False)
            if self._single_mode:
                return self._search_single(op_log, query_set, k, same_set=False)
            query_tree = KDTree(query_set, leaf_size=self.leaf_size, metric=self.metric)
            indices, distances = self._search_dual(op_log, query_tree, k, same_set=False)
            return remap_results(indices, distances, query_map=query_tree.old_from_new)

    def search_tree(self, query_tree: SpatialTree, k: int) -> Tuple[np.ndarray, np.ndarray]:
        """Dual-tree search with a caller-built query tree.

        Result rows follow ``query_tree.dataset`` order; the query tree is
        never re-permuted.
        """

        if self.mode is not SearchMode.DUAL_TREE:
            raise InvalidModeError(
                f"search_tree() needs dual-tree mode; this searcher is in {self.mode.value} mode."
            )
        query_metric = getattr(query_tree, "metric", None)
        if query_metric is not None and query_metric.name != self.metric.name:
            raise ValueError(
                f"Query tree metric '{query_metric.name}' does not match the searcher's "
                f"metric '{self.metric.name}'; node bounds would be inconsistent."
            )
        k = self._validate(query_tree.dataset, k)
        with log_operation(LOGGER, "ra_search") as op_log:
            op_log.add_metadata(
                mode=self.mode.value, queries=int(query_tree.dataset.shape[0]), k=k, query_tree=1
            )
            return self._search_dual(op_log, query_tree, k, same_set=False)

    def search_monochromatic(self, k: int) -> Tuple[np.ndarray, np.ndarray]:
        """Search the reference set against itself, excluding each point's own pair."""

        k = self._validate(self._reference_set, k)
        with log_operation(LOGGER, "ra_search") as op_log:
            op_log.add_metadata(
                mode=self.mode.value, queries=int(self._reference_set.shape[0]), k=k, monochromatic=1
            )
            if self._naive:
                return self._search_naive(op_log, self._reference_set, k, same_set=True)
            if self._single_mode:
                indices, distances = self._search_single(
                    op_log, self._reference_set, k, same_set=True
                )
            else:
                indices, distances = self._search_dual(
                    op_log, self._reference_tree, k, same_set=True  # type: ignore[arg-type]
                )
            if self._maps_reference_indices():
                # Query rows are reference rows here, so they move the same way.
                return remap_results(
                    indices, distances, query_map=self._reference_tree.old_from_new  # type: ignore[union-attr]
                )
            return indices, distances

    # ------------------------------------------------------------------
    # Drivers
    # ------------------------------------------------------------------
    def _search_naive(
        self, op_log: OperationLog, query_set: np.ndarray, k: int, *, same_set: bool
    ) -> Tuple[np.ndarray, np.ndarray]:
        indices, distances = self._allocate(query_set.shape[0], k)
        rules = self._rules(query_set, indices, distances, same_set=same_set)
        samples = sample_distinct(
            rules.num_samples_required, self._reference_set.shape[0], rules.rng
        )
        for query in range(query_set.shape[0]):
            rules.base_cases(query, samples)
        self._record(op_log, rules, TraversalCounters())
        return indices, distances

    def _search_single(
        self, op_log: OperationLog, query_set: np.ndarray, k: int, *, same_set: bool
    ) -> Tuple[np.ndarray, np.ndarray]:
        tree = self._reference_tree
        assert tree is not None
        indices, distances = self._allocate(query_set.shape[0], k)
        self.reset_statistics()
        rules = self._rules(query_set, indices, distances, same_set=same_set, reference_tree=tree)
        traverser = SingleTreeTraverser(rules)
        for query in range(query_set.shape[0]):
            traverser.traverse(query, tree.root)
        self._record(op_log, rules, traverser.counters)
        return self._map_references(indices, distances)

    def _search_dual(
        self, op_log: OperationLog, query_tree: SpatialTree, k: int, *, same_set: bool
    ) -> Tuple[np.ndarray, np.ndarray]:
        tree = self._reference_tree
        assert tree is not None
        query_set = query_tree.dataset
        indices, distances = self._allocate(query_set.shape[0], k)
        self.reset_statistics()
        query_tree.reset_statistics(self.sort_policy.worst_distance)
        rules = self._rules(
            query_set,
            indices,
            distances,
            same_set=same_set,
            reference_tree=tree,
            query_tree=query_tree,
        )
        traverser = DualTreeTraverser(rules)
        traverser.traverse(query_tree.root, tree.root)
        self._record(op_log, rules, traverser.counters)
        return self._map_references(indices, distances)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _validate(self, query_set: np.ndarray, k: int) -> int:
        if isinstance(k, bool) or int(k) != k:
            raise ValueError(f"k must be an integer, got {k!r}.")
        k = int(k)
        if k <= 0:
            raise ValueError(f"k must be positive, got {k}.")
        if query_set.shape[0] and query_set.shape[1] != self._reference_set.shape[1]:
            raise ValueError(
                f"Query dimension {query_set.shape[1]} does not match reference dimension "
                f"{self._reference_set.shape[1]}."
            )
        if k > self._reference_set.shape[0]:
            LOGGER.info(
                "k=%d exceeds the %d reference points; surplus slots stay empty.",
                k,
                self._reference_set.shape[0],
            )
        return k

    def _allocate(self, num_queries: int, k: int) -> Tuple[np.ndarray, np.ndarray]:
        indices = np.full((num_queries, k), EMPTY_INDEX, dtype=np.int64)
        distances = np.full((num_queries, k), self.sort_policy.worst_distance, dtype=np.float64)
        return indices, distances

    def _rules(
        self,
        query_set: np.ndarray,
        indices: np.ndarray,
        distances: np.ndarray,
        *,
        same_set: bool,
        reference_tree: SpatialTree | None = None,
        query_tree: SpatialTree | None = None,
    ) -> SearchRules:
        settings = self.settings
        return SearchRules(
            self._reference_set,
            query_set,
            indices,
            distances,
            metric=self.metric,
            sort_policy=self.sort_policy,
            tau=settings.tau,
            alpha=settings.alpha,
            rng=as_generator(settings.seed),
            sample_at_leaves=settings.sample_at_leaves,
            first_leaf_exact=settings.first_leaf_exact,
            single_sample_limit=settings.single_sample_limit,
            same_set=same_set,
            reference_tree=reference_tree,
            query_tree=query_tree,
        )

    def _maps_reference_indices(self) -> bool:
        tree = self._reference_tree
        return (
            tree is not None
            and self._ownership is Ownership.OWNED
            and tree.rearranges_dataset
        )

    def _map_references(
        self, indices: np.ndarray, distances: np.ndarray
    ) -> Tuple[np.ndarray, np.ndarray]:
        if not self._maps_reference_indices():
            return indices, distances
        return remap_results(
            indices, distances, reference_map=self._reference_tree.old_from_new  # type: ignore[union-attr]
        )

    def _record(
        self, op_log: OperationLog, rules: SearchRules, counters: TraversalCounters
    ) -> None:
        diagnostics = SearchDiagnostics(
            mode=self.mode.value,
            num_queries=int(rules.query_set.shape[0]),
            k=rules.k,
            samples_required=rules.num_samples_required,
            sampling_ratio=rules.sampling_ratio,
            distance_computations=rules.num_distance_computations,
            scores=counters.num_scores,
            prunes=counters.num_prunes,
            visited=counters.num_visited,
        )
        self.last_diagnostics = diagnostics
        op_log.add_metadata(
            samples_required=diagnostics.samples_required,
            distance_computations=diagnostics.distance_computations,
        )
        LOGGER.debug("Search counters: %s", counters.as_dict())


__all__ = [
    "InvalidModeError",
    "RASearch",
    "SearchDiagnostics",
    "SearchMode",
    "SearchSettings",
    "remap_results",
]
