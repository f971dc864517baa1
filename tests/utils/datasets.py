from __future__ import annotations

from typing import Tuple

import numpy as np
from numpy.random import Generator, default_rng

Array = np.ndarray


def _ensure_rng(rng: Generator | None) -> Generator:
    return rng or default_rng()


def gaussian_points(
    rng: Generator | None,
    count: int,
    dimension: int,
    *,
    dtype: np.dtype | type[np.floating] = np.float64,
) -> Array:
    """Sample `count` Gaussian points with the requested dimensionality."""

    generator = _ensure_rng(rng)
    if count <= 0 or dimension <= 0:
        return np.zeros((max(count, 0), max(dimension, 0)), dtype=dtype)
    samples = generator.normal(loc=0.0, scale=1.0, size=(count, dimension))
    return np.asarray(samples, dtype=dtype)


def gaussian_dataset(
    rng: Generator | None,
    *,
    tree_points: int,
    queries: int,
    dimension: int,
    dtype: np.dtype | type[np.floating] = np.float64,
) -> Tuple[Array, Array]:
    """Return a tuple `(points, queries)` drawn from the same Gaussian."""

    generator = _ensure_rng(rng)
    points = gaussian_points(generator, tree_points, dimension, dtype=dtype)
    query_points = gaussian_points(generator, queries, dimension, dtype=dtype)
    return points, query_points


def line_points(coordinates: Tuple[float, ...] | list[float]) -> Array:
    """One-dimensional points as an ``(n, 1)`` array."""

    return np.asarray(coordinates, dtype=np.float64).reshape(-1, 1)


def clustered_points(
    rng: Generator | None,
    *,
    clusters: int,
    per_cluster: int,
    dimension: int,
    spread: float = 0.05,
) -> Array:
    """Tight Gaussian blobs around uniformly placed centres."""

    generator = _ensure_rng(rng)
    centres = generator.uniform(-10.0, 10.0, size=(clusters, dimension))
    offsets = generator.normal(scale=spread, size=(clusters, per_cluster, dimension))
    return (centres[:, None, :] + offsets).reshape(clusters * per_cluster, dimension)
