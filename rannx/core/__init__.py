"""Core data structures: metrics, sort policies and spatial trees."""

from .metrics import (
    Metric,
    MetricRegistry,
    available_metrics,
    custom_metric,
    get_metric,
    register_metric,
)
from .sort_policy import FURTHEST, NEAREST, SortPolicy, get_sort_policy
from .tree import KDTree, NodeStat, NodeStatistics, Ownership, SpatialTree

__all__ = [
    "FURTHEST",
    "NEAREST",
    "KDTree",
    "Metric",
    "MetricRegistry",
    "NodeStat",
    "NodeStatistics",
    "Ownership",
    "SortPolicy",
    "SpatialTree",
    "available_metrics",
    "custom_metric",
    "get_metric",
    "get_sort_policy",
    "register_metric",
]
