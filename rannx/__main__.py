#!/usr/bin/env python
"""Quick-start guide for rannx library usage.

Run with: python -m rannx

This module intentionally avoids importing rannx internals to provide
a fast, clean startup for displaying help text.
"""

from __future__ import annotations

QUICKSTART = """\
================================================================================
                                   RANNX
        Rank-approximate nearest-neighbour search (naive / single / dual)
================================================================================

INSTALLATION
------------
    pip install rannx

BASIC USAGE
-----------
    import numpy as np
    from rannx import RankApproxSearch, Runtime

    points = np.random.default_rng(0).normal(size=(10000, 3))

    # Every neighbour is in the top 5% with probability >= 0.95
    runtime = Runtime(tau=0.05, alpha=0.95, seed=7)
    ras = RankApproxSearch(runtime).fit(points)
    indices, distances = ras.knn(points[:100], k=5)

    # All points against each other (self pairs excluded)
    indices, distances = ras.knn_self(k=5)

SEARCH MODES
------------
    RankApproxSearch(runtime, mode="dual")    # query tree vs reference tree
    RankApproxSearch(runtime, mode="single")  # one tree walk per query
    RankApproxSearch(runtime, mode="naive")   # one uniform sample, brute force

LOWER-LEVEL API
---------------
    from rannx import KDTree, RASearch

    tree = KDTree(points, leaf_size=20)
    searcher = RASearch.from_tree(tree, tau=0.05, alpha=0.95, seed=7)
    indices, distances = searcher.search(points[:100], k=5)  # tree order

    rannx.save_search(searcher, "searcher.npz")
    restored = rannx.load_search("searcher.npz")

CONFIGURATION
-------------
    RANNX_TAU, RANNX_ALPHA, RANNX_SEED, RANNX_LEAF_SIZE, RANNX_METRIC,
    RANNX_SORT_POLICY, RANNX_SINGLE_SAMPLE_LIMIT, RANNX_SAMPLE_AT_LEAVES,
    RANNX_FIRST_LEAF_EXACT, RANNX_LOG_LEVEL, RANNX_ENABLE_DIAGNOSTICS

COMMAND LINE
------------
    python -m cli.rann search --points 20000 --queries 200 --k 5 --mode dual
    python -m cli.rann recall --points 2000 --queries 100 --tau 0.05

================================================================================
"""


def main() -> None:
    """Print quick-start guide."""
    print(QUICKSTART)


if __name__ == "__main__":
    main()
