from .candidates import EMPTY_INDEX, CandidateList
from .rules import PRUNE, SearchRules
from .sampling import minimum_samples_required, sample_distinct
from .traverse import DualTreeTraverser, SingleTreeTraverser, TraversalCounters

__all__ = [
    "EMPTY_INDEX",
    "PRUNE",
    "CandidateList",
    "DualTreeTraverser",
    "SearchRules",
    "SingleTreeTraverser",
    "TraversalCounters",
    "minimum_samples_required",
    "sample_distinct",
]
