from __future__ import annotations

from dataclasses import dataclass
from typing import List, Tuple

from rannx.algo.rules import PRUNE, SearchRules
from rannx.logging import get_logger

LOGGER = get_logger("algo.traverse")


@dataclass
class TraversalCounters:
    """Work counters accumulated across traversals."""

    num_scores: int = 0
    num_prunes: int = 0
    num_visited: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "scores": self.num_scores,
            "prunes": self.num_prunes,
            "visited": self.num_visited,
        }


def _ordered(scored: List[Tuple[float, int, int]]) -> List[Tuple[float, int, int]]:
    # Ties keep child order so runs are reproducible.
    return sorted(scored, key=lambda item: (item[0], item[1]))


class SingleTreeTraverser:
    """Depth-first walk of the reference tree for one query point at a time.

    Children are scored up front, visited best score first and re-scored just
    before descending since earlier siblings may have tightened the bound.
    """

    def __init__(self, rules: SearchRules) -> None:
        if rules.reference_tree is None:
            raise ValueError("Single-tree traversal needs a reference tree.")
        self.rules = rules
        self.tree = rules.reference_tree
        self.counters = TraversalCounters()

    def traverse(self, query: int, node: int) -> None:
        tree = self.tree
        self.counters.num_visited += 1
        if tree.is_leaf(node):
            self.rules.base_cases(query, tree.descendants(node))
            return

        scored = []
        for order, child in enumerate(tree.children(node)):
            scored.append((self.rules.score(query, child), order, child))
            self.counters.num_scores += 1
        for score, _, child in _ordered(scored):
            if score == PRUNE:
                self.counters.num_prunes += 1
                continue
            score = self.rules.rescore(query, child, score)
            if score == PRUNE:
                self.counters.num_prunes += 1
                continue
            self.traverse(query, child)


class DualTreeTraverser:
    """Simultaneous walk of a query tree and a reference tree."""

    def __init__(self, rules: SearchRules) -> None:
        if rules.reference_tree is None or rules.query_tree is None:
            raise ValueError("Dual-tree traversal needs both a query and a reference tree.")
        self.rules = rules
        self.query_tree = rules.query_tree
        self.reference_tree = rules.reference_tree
        self.counters = TraversalCounters()

    def traverse(self, query_node: int, reference_node: int) -> None:
        query_tree = self.query_tree
        reference_tree = self.reference_tree
        rules = self.rules
        self.counters.num_visited += 1

        query_is_leaf = query_tree.is_leaf(query_node)
        if query_is_leaf and reference_tree.is_leaf(reference_node):
            references = reference_tree.descendants(reference_node)
            for query in query_tree.descendants(query_node).tolist():
                rules.base_cases(query, references)
            return

        query_children = query_tree.children(query_node) or (query_node,)
        reference_children = reference_tree.children(reference_node) or (reference_node,)
        for query_child in query_children:
            scored = []
            for order, reference_child in enumerate(reference_children):
                scored.append((rules.score_nodes(query_child, reference_child), order, reference_child))
                self.counters.num_scores += 1
            for score, _, reference_child in _ordered(scored):
                if score == PRUNE:
                    self.counters.num_prunes += 1
                    continue
                score = rules.rescore_nodes(query_child, reference_child, score)
                if score == PRUNE:
                    self.counters.num_prunes += 1
                    continue
                self.traverse(query_child, reference_child)

        if not query_is_leaf:
            rules.update_after_recursion(query_node)


__all__ = ["DualTreeTraverser", "SingleTreeTraverser", "TraversalCounters"]
