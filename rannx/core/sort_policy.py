from __future__ import annotations

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:  # pragma: no cover - typing only
    from rannx.core.tree import SpatialTree


@dataclass(frozen=True)
class SortPolicy:
    """Nearest/furthest semantics shared by candidate lists and pruning.

    Scores handed to traversers are always "lower is visited first"; the
    furthest policy negates distances to keep that ordering.
    """

    name: str
    ascending: bool

    @property
    def worst_distance(self) -> float:
        return math.inf if self.ascending else -math.inf

    @property
    def best_distance(self) -> float:
        return 0.0 if self.ascending else math.inf

    def is_better(self, lhs: float, rhs: float) -> bool:
        return lhs < rhs if self.ascending else lhs > rhs

    def better_of(self, lhs: float, rhs: float) -> float:
        return min(lhs, rhs) if self.ascending else max(lhs, rhs)

    def worst_of(self, values: np.ndarray) -> float:
        if values.size == 0:
            return self.worst_distance
        return float(np.max(values) if self.ascending else np.min(values))

    def better_elementwise(self, lhs: np.ndarray, rhs: np.ndarray | float) -> np.ndarray:
        return np.minimum(lhs, rhs) if self.ascending else np.maximum(lhs, rhs)

    def sort_key(self, distances: np.ndarray | float) -> np.ndarray | float:
        return distances if self.ascending else -distances

    def to_score(self, distance: float) -> float:
        return distance if self.ascending else -distance

    def from_score(self, score: float) -> float:
        return score if self.ascending else -score

    def best_point_to_node_distance(
        self, tree: "SpatialTree", node: int, point: np.ndarray
    ) -> float:
        if self.ascending:
            return tree.min_point_distance(node, point)
        return tree.max_point_distance(node, point)

    def best_node_to_node_distance(
        self,
        query_tree: "SpatialTree",
        query_node: int,
        reference_tree: "SpatialTree",
        reference_node: int,
    ) -> float:
        if self.ascending:
            return query_tree.min_node_distance(query_node, reference_tree, reference_node)
        return query_tree.max_node_distance(query_node, reference_tree, reference_node)


NEAREST = SortPolicy(name="nearest", ascending=True)
FURTHEST = SortPolicy(name="furthest", ascending=False)

_POLICIES = {policy.name: policy for policy in (NEAREST, FURTHEST)}


def get_sort_policy(policy: SortPolicy | str) -> SortPolicy:
    if isinstance(policy, SortPolicy):
        return policy
    key = policy.strip().lower()
    if key not in _POLICIES:
        raise KeyError(f"Sort policy '{policy}' not recognised; expected one of {sorted(_POLICIES)}.")
    return _POLICIES[key]


__all__ = ["SortPolicy", "NEAREST", "FURTHEST", "get_sort_policy"]
