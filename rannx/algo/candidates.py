from __future__ import annotations

from typing import Iterator, Tuple

import numpy as np

from rannx.core.sort_policy import SortPolicy

EMPTY_INDEX = -1


class CandidateList:
    """Fixed-capacity ``(distance, index)`` list kept sorted by a sort policy.

    Instances are views over one row of the search's output buffers, so every
    accepted insert lands directly in the result arrays. Unused slots hold the
    policy's worst distance and index ``-1``.
    """

    __slots__ = ("_distances", "_indices", "_policy")

    def __init__(self, distances: np.ndarray, indices: np.ndarray, policy: SortPolicy) -> None:
        if distances.shape != indices.shape or distances.ndim != 1:
            raise ValueError("Candidate buffers must be matching 1-D arrays.")
        if distances.shape[0] == 0:
            raise ValueError("Candidate lists need at least one slot.")
        self._distances = distances
        self._indices = indices
        self._policy = policy

    @classmethod
    def empty(cls, k: int, policy: SortPolicy) -> "CandidateList":
        distances = np.full(k, policy.worst_distance, dtype=np.float64)
        indices = np.full(k, EMPTY_INDEX, dtype=np.int64)
        return cls(distances, indices, policy)

    @property
    def k(self) -> int:
        return int(self._distances.shape[0])

    @property
    def policy(self) -> SortPolicy:
        return self._policy

    def worst(self) -> float:
        """Current k-th distance, the bound any new candidate has to beat."""

        return float(self._distances[-1])

    def best(self) -> float:
        return float(self._distances[0])

    def try_insert(self, distance: float, index: int) -> bool:
        if not self._policy.is_better(distance, self._distances[-1]):
            return False
        keys = self._policy.sort_key(self._distances)
        # side="right" keeps earlier entries ahead of equal-distance newcomers.
        position = int(np.searchsorted(keys, self._policy.sort_key(distance), side="right"))
        self._distances[position + 1 :] = self._distances[position:-1]
        self._indices[position + 1 :] = self._indices[position:-1]
        self._distances[position] = distance
        self._indices[position] = index
        return True

    def __len__(self) -> int:
        return int(np.count_nonzero(self._indices != EMPTY_INDEX))

    def __iter__(self) -> Iterator[Tuple[float, int]]:
        for distance, index in zip(self._distances, self._indices):
            if index == EMPTY_INDEX:
                break
            yield float(distance), int(index)

    def as_arrays(self) -> Tuple[np.ndarray, np.ndarray]:
        return self._indices.copy(), self._distances.copy()


__all__ = ["CandidateList", "EMPTY_INDEX"]
