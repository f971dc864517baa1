from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Protocol, Tuple

import numpy as np

from rannx import config as cx_config

ArrayLike = Any


class PairwiseKernel(Protocol):
    def __call__(self, lhs: np.ndarray, rhs: np.ndarray) -> np.ndarray:
        ...


class PointwiseKernel(Protocol):
    def __call__(self, lhs: np.ndarray, rhs: np.ndarray) -> float:
        ...


@dataclass(frozen=True)
class Metric:
    """Container for distance kernels used by the search rules.

    ``power`` is the Minkowski exponent of the metric. Trees use it to turn
    per-dimension gaps between bounding boxes into distance bounds; metrics
    without one can still be used for naive search.
    """

    name: str
    pointwise_kernel: PointwiseKernel
    pairwise_kernel: Optional[PairwiseKernel] = None
    power: Optional[float] = None

    def evaluate(self, lhs: ArrayLike, rhs: ArrayLike) -> float:
        return float(self.pointwise_kernel(np.asarray(lhs), np.asarray(rhs)))

    def pairwise(self, lhs: ArrayLike, rhs: ArrayLike) -> np.ndarray:
        lhs_arr = _ensure_2d(lhs)
        rhs_arr = _ensure_2d(rhs)
        if lhs_arr.shape[0] == 0 or rhs_arr.shape[0] == 0:
            return np.zeros((lhs_arr.shape[0], rhs_arr.shape[0]), dtype=np.float64)
        if self.pairwise_kernel is not None:
            return np.asarray(self.pairwise_kernel(lhs_arr, rhs_arr), dtype=np.float64)
        out = np.empty((lhs_arr.shape[0], rhs_arr.shape[0]), dtype=np.float64)
        for i, row in enumerate(lhs_arr):
            for j, col in enumerate(rhs_arr):
                out[i, j] = self.pointwise_kernel(row, col)
        return out

    @property
    def supports_bounds(self) -> bool:
        return self.power is not None

    def norm(self, gaps: np.ndarray) -> float:
        """Collapse non-negative per-dimension gaps into a distance."""

        if self.power is None:
            raise ValueError(f"Metric '{self.name}' does not define a Minkowski power.")
        return float(np.linalg.norm(np.asarray(gaps, dtype=np.float64), ord=self.power))


class MetricRegistry:
    """Minimal registry for runtime-selectable metrics."""

    def __init__(self) -> None:
        self._metrics: Dict[str, Metric] = {}

    def register(self, metric: Metric, *, overwrite: bool = False) -> None:
        name = metric.name.lower()
        if not overwrite and name in self._metrics:
            raise ValueError(f"Metric '{metric.name}' already registered.")
        self._metrics[name] = metric

    def get(self, name: str) -> Metric:
        key = name.lower()
        if key not in self._metrics:
            raise KeyError(f"Metric '{name}' not registered.")
        return self._metrics[key]

    def names(self) -> Tuple[str, ...]:
        return tuple(sorted(self._metrics.keys()))


def _ensure_2d(array: ArrayLike) -> np.ndarray:
    arr = np.asarray(array, dtype=np.float64)
    if arr.ndim == 1:
        arr = arr[None, :]
    return arr


def _minkowski_kernels(power: float) -> Tuple[PointwiseKernel, PairwiseKernel]:
    def pointwise(lhs: np.ndarray, rhs: np.ndarray) -> float:
        lhs_arr = np.asarray(lhs, dtype=np.float64)
        rhs_arr = np.asarray(rhs, dtype=np.float64)
        if lhs_arr.shape != rhs_arr.shape:
            raise ValueError("Pointwise metric operands must have identical shapes.")
        return float(np.linalg.norm(np.ravel(lhs_arr - rhs_arr), ord=power))

    def pairwise(lhs: np.ndarray, rhs: np.ndarray) -> np.ndarray:
        diff = np.abs(lhs[:, None, :] - rhs[None, :, :])
        if math.isinf(power):
            return np.max(diff, axis=-1)
        if power == 1:
            return np.sum(diff, axis=-1)
        if power == 2:
            return np.sqrt(np.sum(diff * diff, axis=-1))
        return np.sum(diff**power, axis=-1) ** (1.0 / power)

    return pointwise, pairwise


def minkowski_metric(name: str, power: float) -> Metric:
    """Build an L-``power`` metric usable with bounding-box trees."""

    if not power >= 1:
        raise ValueError(f"Minkowski power must be >= 1, got {power}.")
    pointwise, pairwise = _minkowski_kernels(float(power))
    return Metric(name=name, pointwise_kernel=pointwise, pairwise_kernel=pairwise, power=float(power))


def _load_runtime_registry() -> MetricRegistry:
    registry = MetricRegistry()
    registry.register(minkowski_metric("euclidean", 2.0))
    registry.register(minkowski_metric("manhattan", 1.0))
    registry.register(minkowski_metric("chebyshev", math.inf))
    return registry


_REGISTRY = _load_runtime_registry()


def get_metric(name: str | None = None) -> Metric:
    """Return a registered metric, defaulting to the runtime-selected metric."""

    if name is None:
        name = cx_config.runtime_config().metric
    return _REGISTRY.get(name)


def resolve_metric(metric: Metric | str | None) -> Metric:
    if isinstance(metric, Metric):
        return metric
    return get_metric(metric)


def register_metric(metric: Metric, *, overwrite: bool = False) -> None:
    _REGISTRY.register(metric, overwrite=overwrite)


def custom_metric(
    name: str,
    function: Callable[[np.ndarray, np.ndarray], float],
) -> Metric:
    """Wrap an arbitrary ``evaluate(a, b)`` callable (naive search only)."""

    return Metric(name=name, pointwise_kernel=function)


def available_metrics() -> Tuple[str, ...]:
    return _REGISTRY.names()


__all__ = [
    "Metric",
    "MetricRegistry",
    "available_metrics",
    "custom_metric",
    "get_metric",
    "minkowski_metric",
    "register_metric",
    "resolve_metric",
]
