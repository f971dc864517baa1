from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Tuple

import numpy as np

from rannx.api.runtime import Runtime
from rannx.core.persistence import load_search, save_search
from rannx.core.tree import SpatialTree
from rannx.queries.search import RASearch


@dataclass(frozen=True)
class RankApproxSearch:
    """Thin façade pairing a :class:`Runtime` with a fitted :class:`RASearch`.

    >>> import numpy as np
    >>> from rannx import RankApproxSearch, Runtime
    >>> points = np.random.default_rng(0).normal(size=(1000, 3))
    >>> ras = RankApproxSearch(Runtime(tau=0.05, alpha=0.95, seed=7)).fit(points)
    >>> indices, distances = ras.knn(points[:10], k=3)
    """

    runtime: Runtime = field(default_factory=Runtime)
    mode: str = "dual"
    searcher: RASearch | None = None

    def __post_init__(self) -> None:
        if self.mode not in ("naive", "single", "dual"):
            raise ValueError(f"mode must be 'naive', 'single' or 'dual', got {self.mode!r}.")

    def fit(self, points: Any, *, rearrange: bool = True) -> "RankApproxSearch":
        self.runtime.activate()
        searcher = RASearch(
            points,
            naive=self.mode == "naive",
            single_mode=self.mode == "single",
            rearrange=rearrange,
        )
        return replace(self, searcher=searcher)

    def fit_tree(self, tree: SpatialTree) -> "RankApproxSearch":
        if self.mode == "naive":
            raise ValueError("Naive search does not use a reference tree.")
        self.runtime.activate()
        searcher = RASearch.from_tree(tree, single_mode=self.mode == "single")
        return replace(self, searcher=searcher)

    def knn(self, query_points: Any, *, k: int) -> Tuple[np.ndarray, np.ndarray]:
        searcher = self._require_searcher()
        self.runtime.activate()
        return searcher.search(query_points, k)

    def knn_self(self, *, k: int) -> Tuple[np.ndarray, np.ndarray]:
        searcher = self._require_searcher()
        self.runtime.activate()
        return searcher.search_monochromatic(k)

    def nearest(self, query_points: Any) -> Tuple[np.ndarray, np.ndarray]:
        return self.knn(query_points, k=1)

    def save(self, path: str | os.PathLike[str]) -> Path:
        return save_search(self._require_searcher(), path)

    @classmethod
    def load(
        cls, path: str | os.PathLike[str], *, runtime: Runtime | None = None
    ) -> "RankApproxSearch":
        searcher = load_search(path)
        mode = searcher.mode.value.split("_")[0]
        return cls(runtime=runtime or Runtime(), mode=mode, searcher=searcher)

    def _require_searcher(self) -> RASearch:
        if self.searcher is None:
            raise ValueError("RankApproxSearch requires a fitted searcher; call fit() first.")
        return self.searcher


__all__ = ["RankApproxSearch"]
