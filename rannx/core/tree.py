from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Dict, Protocol, Tuple, runtime_checkable

import numpy as np

from rannx.core.metrics import Metric, resolve_metric

_NO_CHILD = -1


class Ownership(enum.Enum):
    """Who is responsible for a tree or point set held by a searcher."""

    OWNED = "owned"
    BORROWED = "borrowed"


def as_points(value: Any) -> np.ndarray:
    """Coerce ``value`` into a contiguous ``(n, d)`` float64 point set."""

    arr = np.asarray(value, dtype=np.float64)
    if arr.ndim == 0:
        arr = arr.reshape(1, 1)
    elif arr.ndim == 1:
        length = int(arr.shape[0])
        arr = arr.reshape(0, 0) if length == 0 else arr.reshape(1, length)
    elif arr.ndim != 2:
        raise ValueError(f"Point sets must be 2-D (points x dimensions), got shape {arr.shape}.")
    return np.ascontiguousarray(arr)


class NodeStatistics:
    """Arena of per-node search statistics (``bound`` and ``samples_made``).

    Node ids index straight into the arrays so a reset is a pair of fills.
    """

    __slots__ = ("bound", "samples_made")

    def __init__(self, num_nodes: int) -> None:
        self.bound = np.full(num_nodes, np.inf, dtype=np.float64)
        self.samples_made = np.zeros(num_nodes, dtype=np.int64)

    def reset(self, worst_distance: float) -> None:
        self.bound.fill(worst_distance)
        self.samples_made.fill(0)


@dataclass(frozen=True)
class NodeStat:
    bound: float
    samples_made: int


@runtime_checkable
class SpatialTree(Protocol):
    """Capabilities the search rules and traversers rely on."""

    metric: Metric
    statistics: NodeStatistics

    @property
    def root(self) -> int: ...

    @property
    def dataset(self) -> np.ndarray: ...

    @property
    def old_from_new(self) -> np.ndarray: ...

    @property
    def rearranges_dataset(self) -> bool: ...

    def children(self, node: int) -> Tuple[int, ...]: ...

    def is_leaf(self, node: int) -> bool: ...

    def point_range(self, node: int) -> range: ...

    def descendants(self, node: int) -> np.ndarray: ...

    def num_descendants(self, node: int) -> int: ...

    def stat(self, node: int) -> NodeStat: ...

    def reset_statistics(self, worst_distance: float) -> None: ...

    def min_point_distance(self, node: int, point: np.ndarray) -> float: ...

    def max_point_distance(self, node: int, point: np.ndarray) -> float: ...

    def min_node_distance(self, node: int, other: "SpatialTree", other_node: int) -> float: ...

    def max_node_distance(self, node: int, other: "SpatialTree", other_node: int) -> float: ...


class KDTree:
    """Binary space-partitioning tree with axis-aligned bounding boxes.

    Nodes are split at the median of their widest dimension until they hold at
    most ``leaf_size`` points. With ``rearrange=True`` the dataset is
    physically permuted so every node owns a contiguous block of rows and
    ``old_from_new[i]`` gives the caller's index of row ``i``. With
    ``rearrange=False`` the caller's order is kept and nodes address rows
    through an internal index array.
    """

    def __init__(
        self,
        points: Any,
        *,
        leaf_size: int = 20,
        metric: Metric | str | None = None,
        rearrange: bool = True,
    ) -> None:
        data = as_points(points)
        if data.shape[0] == 0:
            raise ValueError("Cannot build a tree over an empty point set.")
        if leaf_size <= 0:
            raise ValueError("leaf_size must be positive.")
        self.metric = resolve_metric(metric)
        if not self.metric.supports_bounds:
            raise ValueError(
                f"Metric '{self.metric.name}' has no Minkowski power; trees cannot bound it."
            )
        self.leaf_size = int(leaf_size)

        order = np.arange(data.shape[0], dtype=np.int64)
        begin: list[int] = []
        count: list[int] = []
        left: list[int] = []
        right: list[int] = []
        lower: list[np.ndarray] = []
        upper: list[np.ndarray] = []

        def _build(start: int, stop: int) -> int:
            node = len(begin)
            subset = data[order[start:stop]]
            begin.append(start)
            count.append(stop - start)
            left.append(_NO_CHILD)
            right.append(_NO_CHILD)
            lo = subset.min(axis=0)
            hi = subset.max(axis=0)
            lower.append(lo)
            upper.append(hi)
            if stop - start <= self.leaf_size:
                return node
            spread = hi - lo
            dim = int(np.argmax(spread))
            if spread[dim] <= 0.0:
                # All points coincide; nothing to split on.
                return node
            local = np.argsort(subset[:, dim], kind="stable")
            order[start:stop] = order[start:stop][local]
            mid = start + (stop - start) // 2
            left[node] = _build(start, mid)
            right[node] = _build(mid, stop)
            return node

        _build(0, data.shape[0])

        self._begin = np.asarray(begin, dtype=np.int64)
        self._count = np.asarray(count, dtype=np.int64)
        self._left = np.asarray(left, dtype=np.int64)
        self._right = np.asarray(right, dtype=np.int64)
        self._lower = np.vstack(lower)
        self._upper = np.vstack(upper)
        self._rearranges = bool(rearrange)
        if self._rearranges:
            self._dataset = np.ascontiguousarray(data[order])
            self._old_from_new = order
            self._index = np.arange(data.shape[0], dtype=np.int64)
        else:
            self._dataset = data.copy()
            self._old_from_new = np.arange(data.shape[0], dtype=np.int64)
            self._index = order
        self._dataset.setflags(write=False)
        self.statistics = NodeStatistics(self.num_nodes)

    @property
    def root(self) -> int:
        return 0

    @property
    def dataset(self) -> np.ndarray:
        return self._dataset

    @property
    def old_from_new(self) -> np.ndarray:
        return self._old_from_new

    @property
    def rearranges_dataset(self) -> bool:
        return self._rearranges

    @property
    def num_nodes(self) -> int:
        return int(self._begin.shape[0])

    @property
    def num_points(self) -> int:
        return int(self._dataset.shape[0])

    @property
    def dimension(self) -> int:
        return int(self._dataset.shape[1])

    def children(self, node: int) -> Tuple[int, ...]:
        left = int(self._left[node])
        if left == _NO_CHILD:
            return ()
        return (left, int(self._right[node]))

    def is_leaf(self, node: int) -> bool:
        return int(self._left[node]) == _NO_CHILD

    def point_range(self, node: int) -> range:
        start = int(self._begin[node])
        return range(start, start + int(self._count[node]))

    def descendants(self, node: int) -> np.ndarray:
        """Dataset rows under ``node`` in tree order."""

        start = int(self._begin[node])
        return self._index[start : start + int(self._count[node])]

    def num_descendants(self, node: int) -> int:
        return int(self._count[node])

    def leaves(self) -> Tuple[int, ...]:
        return tuple(int(node) for node in np.flatnonzero(self._left == _NO_CHILD))

    def stat(self, node: int) -> NodeStat:
        return NodeStat(
            bound=float(self.statistics.bound[node]),
            samples_made=int(self.statistics.samples_made[node]),
        )

    def reset_statistics(self, worst_distance: float = np.inf) -> None:
        self.statistics.reset(worst_distance)

    def min_point_distance(self, node: int, point: np.ndarray) -> float:
        gaps = np.maximum(self._lower[node] - point, point - self._upper[node])
        return self.metric.norm(np.maximum(gaps, 0.0))

    def max_point_distance(self, node: int, point: np.ndarray) -> float:
        gaps = np.maximum(np.abs(point - self._lower[node]), np.abs(point - self._upper[node]))
        return self.metric.norm(gaps)

    def bounds(self, node: int) -> Tuple[np.ndarray, np.ndarray]:
        return self._lower[node], self._upper[node]

    def min_node_distance(self, node: int, other: "SpatialTree", other_node: int) -> float:
        other_lower, other_upper = other.bounds(other_node)  # type: ignore[attr-defined]
        gaps = np.maximum(self._lower[node] - other_upper, other_lower - self._upper[node])
        return self.metric.norm(np.maximum(gaps, 0.0))

    def max_node_distance(self, node: int, other: "SpatialTree", other_node: int) -> float:
        other_lower, other_upper = other.bounds(other_node)  # type: ignore[attr-defined]
        gaps = np.maximum(
            np.abs(self._upper[node] - other_lower), np.abs(other_upper - self._lower[node])
        )
        return self.metric.norm(gaps)

    def to_arrays(self) -> Dict[str, np.ndarray]:
        return {
            "dataset": np.asarray(self._dataset),
            "old_from_new": self._old_from_new,
            "index": self._index,
            "begin": self._begin,
            "count": self._count,
            "left": self._left,
            "right": self._right,
            "lower": self._lower,
            "upper": self._upper,
            "leaf_size": np.asarray(self.leaf_size, dtype=np.int64),
            "rearranges": np.asarray(self._rearranges, dtype=np.bool_),
        }

    @classmethod
    def from_arrays(
        cls, arrays: Dict[str, np.ndarray], *, metric: Metric | str | None = None
    ) -> "KDTree":
        """Rebuild a tree from :meth:`to_arrays` output without re-splitting."""

        tree = cls.__new__(cls)
        tree.metric = resolve_metric(metric)
        tree.leaf_size = int(arrays["leaf_size"])
        tree._begin = np.asarray(arrays["begin"], dtype=np.int64)
        tree._count = np.asarray(arrays["count"], dtype=np.int64)
        tree._left = np.asarray(arrays["left"], dtype=np.int64)
        tree._right = np.asarray(arrays["right"], dtype=np.int64)
        tree._lower = np.asarray(arrays["lower"], dtype=np.float64)
        tree._upper = np.asarray(arrays["upper"], dtype=np.float64)
        tree._rearranges = bool(arrays["rearranges"])
        tree._dataset = np.ascontiguousarray(arrays["dataset"], dtype=np.float64)
        tree._dataset.setflags(write=False)
        tree._old_from_new = np.asarray(arrays["old_from_new"], dtype=np.int64)
        tree._index = np.asarray(arrays["index"], dtype=np.int64)
        if tree._old_from_new.shape[0] != tree._dataset.shape[0]:
            raise ValueError("old_from_new length does not match the dataset.")
        tree.statistics = NodeStatistics(tree.num_nodes)
        return tree

    def __repr__(self) -> str:
        return (
            f"KDTree(points={self.num_points}, dimension={self.dimension}, "
            f"nodes={self.num_nodes}, leaf_size={self.leaf_size}, "
            f"rearranges={self._rearranges}, metric={self.metric.name!r})"
        )


__all__ = [
    "KDTree",
    "NodeStat",
    "NodeStatistics",
    "Ownership",
    "SpatialTree",
    "as_points",
]
