from .exact import brute_force_knn, neighbour_ranks, success_rate
from .search import InvalidModeError, RASearch, SearchDiagnostics, SearchMode, SearchSettings

__all__ = [
    "InvalidModeError",
    "RASearch",
    "SearchDiagnostics",
    "SearchMode",
    "SearchSettings",
    "brute_force_knn",
    "neighbour_ranks",
    "success_rate",
]
