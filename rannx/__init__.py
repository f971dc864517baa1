"""rannx: rank-approximate nearest-neighbour search.

Quick Start
-----------
>>> import numpy as np
>>> from rannx import RankApproxSearch, Runtime
>>>
>>> points = np.random.default_rng(0).normal(size=(10000, 3))
>>> ras = RankApproxSearch(Runtime(tau=0.05, alpha=0.95, seed=7)).fit(points)
>>> indices, distances = ras.knn(points[:100], k=5)

Every returned neighbour lies, with probability at least ``alpha``, within the
top ``tau`` fraction of the true ranking for its query.

Classes
-------
RankApproxSearch : Façade pairing a runtime with a fitted searcher.
RASearch : Searcher with naive, single-tree and dual-tree modes.
KDTree : Arena-backed space-partitioning tree used by the tree modes.
Runtime : Configuration overrides for metric, sampling and diagnostics.
"""

from importlib.metadata import version as _pkg_version

try:
    __version__ = _pkg_version("rannx")
except Exception:  # pragma: no cover - best effort during local development
    __version__ = "0.1.0"

from .api import RankApproxSearch, Runtime
from .algo import minimum_samples_required
from .core import (
    FURTHEST,
    NEAREST,
    KDTree,
    Metric,
    Ownership,
    SortPolicy,
    available_metrics,
    get_metric,
)
from .core.persistence import PersistenceError, load_search, save_search
from .queries import InvalidModeError, RASearch, SearchMode, brute_force_knn

__all__ = [
    "__version__",
    "RankApproxSearch",
    "Runtime",
    "RASearch",
    "SearchMode",
    "InvalidModeError",
    "KDTree",
    "Ownership",
    "Metric",
    "SortPolicy",
    "NEAREST",
    "FURTHEST",
    "available_metrics",
    "get_metric",
    "minimum_samples_required",
    "brute_force_knn",
    "PersistenceError",
    "load_search",
    "save_search",
]
