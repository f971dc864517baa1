"""Public ergonomic façade for rannx."""

from .runtime import Runtime
from .search import RankApproxSearch

__all__ = [
    "RankApproxSearch",
    "Runtime",
]
