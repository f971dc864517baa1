"""Sample-size bounds and distinct uniform sampling for rank-approximate search.

A sample of ``m`` reference points drawn uniformly without replacement from a
population of ``n`` contains ``X ~ Hypergeometric(n, t, m)`` points from the
top ``t = ceil(tau * n)`` ranks. The search guarantee holds when
``P(X >= k) >= alpha``; :func:`minimum_samples_required` returns the smallest
such ``m``.
"""

from __future__ import annotations

import math

import numpy as np
from numpy.random import Generator, default_rng
from scipy.stats import hypergeom

# Guards ``ceil(tau * n)`` against float noise such as 0.05 * 100 -> 5.000000000000001.
_RANK_EPS = 1e-9


def as_generator(seed: int | Generator | None) -> Generator:
    if isinstance(seed, Generator):
        return seed
    return default_rng(seed)


def top_rank_count(population_size: int, tau: float) -> int:
    """Number of ranks ``ceil(tau * n)`` that count as a success."""

    return min(int(math.ceil(tau * population_size - _RANK_EPS)), int(population_size))


def success_probability(population_size: int, k: int, samples: int, top: int) -> float:
    """Probability that ``samples`` draws hit at least ``k`` of the top ``top`` ranks."""

    if samples <= 0 or top <= 0:
        return 0.0 if k > 0 else 1.0
    return float(hypergeom.sf(k - 1, population_size, top, samples))


def minimum_samples_required(population_size: int, k: int, tau: float, alpha: float) -> int:
    """Smallest sample size meeting the rank-approximation guarantee.

    Degenerate requests (``tau * n < 1``, ``alpha >= 1``, ``k >= n`` or fewer
    than ``k`` qualifying ranks) return ``n``, i.e. exhaustive search.
    """

    n = int(population_size)
    if n < 0:
        raise ValueError("population_size must be non-negative.")
    if k <= 0:
        raise ValueError("k must be positive.")
    if not (math.isfinite(tau) and math.isfinite(alpha)):
        raise ValueError("tau and alpha must be finite.")
    if alpha < 0.0:
        raise ValueError("alpha must be non-negative.")
    if n == 0:
        return 0
    if alpha >= 1.0 or k >= n or tau * n < 1.0:
        return n
    top = top_rank_count(n, tau)
    if top < k:
        return n

    # P(X >= k) is non-decreasing in the number of draws, so bisect on it.
    lower, upper = k, n
    while lower < upper:
        mid = (lower + upper) // 2
        if success_probability(n, k, mid, top) >= alpha:
            upper = mid
        else:
            lower = mid + 1
    return max(0, min(lower, n))


def sample_distinct(count: int, population_size: int, rng: Generator) -> np.ndarray:
    """Draw ``min(count, population_size)`` distinct indices, returned sorted."""

    population = int(population_size)
    size = min(max(int(count), 0), population)
    if size == 0:
        return np.empty(0, dtype=np.int64)
    if size == population:
        return np.arange(population, dtype=np.int64)
    chosen = rng.choice(population, size=size, replace=False)
    return np.sort(np.asarray(chosen, dtype=np.int64))


__all__ = [
    "as_generator",
    "minimum_samples_required",
    "sample_distinct",
    "success_probability",
    "top_rank_count",
]
