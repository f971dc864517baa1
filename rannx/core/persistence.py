"""Save and restore configured rank-approximate searchers.

An archive is a single ``.npz`` file with a JSON ``header`` entry and exactly
one payload selected by ``header["kind"]``:

``"dataset"``
    naive searchers; the raw reference set is stored as ``reference_set``.
``"tree"``
    tree searchers; the reference tree arena is stored as ``tree_*`` arrays,
    including its ``old_from_new`` map.

Archives are read with ``allow_pickle=False``. A restored searcher always owns
its reference data.
"""

from __future__ import annotations

import enum
import json
import os
from pathlib import Path
from typing import Any, Dict

import numpy as np

from rannx.core.metrics import available_metrics
from rannx.core.tree import KDTree
from rannx.logging import get_logger
from rannx.queries.search import RASearch, SearchSettings

LOGGER = get_logger("core.persistence")

ARCHIVE_FORMAT = "rannx.ra_search.v1"
_TREE_PREFIX = "tree_"
_REQUIRED_HEADER_KEYS = frozenset(
    {
        "naive",
        "single_mode",
        "tau",
        "alpha",
        "sample_at_leaves",
        "first_leaf_exact",
        "single_sample_limit",
        "seed",
        "metric",
        "sort_policy",
        "leaf_size",
    }
)


class PersistenceError(ValueError):
    """Raised when a searcher cannot be written to or read from an archive."""


class ArchiveKind(enum.Enum):
    DATASET = "dataset"
    TREE = "tree"


def _header(searcher: RASearch, kind: ArchiveKind) -> Dict[str, Any]:
    settings = searcher.settings
    return {
        "format": ARCHIVE_FORMAT,
        "kind": kind.value,
        "naive": searcher.naive,
        "single_mode": searcher.single_mode,
        "tau": settings.tau,
        "alpha": settings.alpha,
        "sample_at_leaves": settings.sample_at_leaves,
        "first_leaf_exact": settings.first_leaf_exact,
        "single_sample_limit": settings.single_sample_limit,
        "seed": settings.seed,
        "metric": searcher.metric.name,
        "sort_policy": searcher.sort_policy.name,
        "leaf_size": searcher.leaf_size,
    }


def save_search(searcher: RASearch, path: str | os.PathLike[str]) -> Path:
    """Write ``searcher`` to ``path`` and return the path written."""

    if searcher.metric.name not in available_metrics():
        raise PersistenceError(
            f"Metric '{searcher.metric.name}' is not registered; it cannot be restored on load."
        )
    payload: Dict[str, np.ndarray] = {}
    if searcher.naive:
        kind = ArchiveKind.DATASET
        payload["reference_set"] = np.asarray(searcher.reference_set)
    else:
        tree = searcher.reference_tree
        if not isinstance(tree, KDTree):
            raise PersistenceError(
                f"Only KDTree reference trees can be saved, got {type(tree).__name__}."
            )
        kind = ArchiveKind.TREE
        payload.update({_TREE_PREFIX + name: value for name, value in tree.to_arrays().items()})

    target = Path(path)
    header = json.dumps(_header(searcher, kind), sort_keys=True)
    with target.open("wb") as handle:
        np.savez(handle, header=np.asarray(header), **payload)
    LOGGER.info("Saved %s searcher to %s", kind.value, target)
    return target


def _read_header(archive: Any) -> Dict[str, Any]:
    if "header" not in archive.files:
        raise PersistenceError("Archive has no header entry.")
    try:
        header = json.loads(str(archive["header"].item()))
    except (TypeError, ValueError) as exc:
        raise PersistenceError("Archive header is not valid JSON.") from exc
    if header.get("format") != ARCHIVE_FORMAT:
        raise PersistenceError(f"Unsupported archive format {header.get('format')!r}.")
    return header


def load_search(path: str | os.PathLike[str]) -> RASearch:
    """Rebuild the searcher saved by :func:`save_search`."""

    source = Path(path)
    try:
        archive = np.load(source, allow_pickle=False)
    except (OSError, ValueError) as exc:
        raise PersistenceError(f"Cannot read searcher archive {source}: {exc}") from exc

    with archive:
        header = _read_header(archive)
        try:
            kind = ArchiveKind(header["kind"])
        except (KeyError, ValueError) as exc:
            raise PersistenceError(f"Unknown archive kind {header.get('kind')!r}.") from exc
        tree_entries = [name for name in archive.files if name.startswith(_TREE_PREFIX)]
        has_dataset = "reference_set" in archive.files
        if has_dataset == bool(tree_entries):
            raise PersistenceError("Archive must hold exactly one reference payload.")

        if kind is ArchiveKind.DATASET and not has_dataset:
            raise PersistenceError("Dataset archive is missing 'reference_set'.")
        if kind is ArchiveKind.TREE and not tree_entries:
            raise PersistenceError("Tree archive is missing the tree arrays.")
        missing = sorted(_REQUIRED_HEADER_KEYS.difference(header))
        if missing:
            raise PersistenceError(f"Archive header is missing {', '.join(missing)}.")

        settings = SearchSettings(
            tau=float(header["tau"]),
            alpha=float(header["alpha"]),
            sample_at_leaves=bool(header["sample_at_leaves"]),
            first_leaf_exact=bool(header["first_leaf_exact"]),
            single_sample_limit=int(header["single_sample_limit"]),
            seed=header["seed"],
        )
        if kind is ArchiveKind.DATASET:
            reference_set = np.array(archive["reference_set"], dtype=np.float64)
            reference_set.setflags(write=False)
            reference_tree = None
        else:
            arrays = {name[len(_TREE_PREFIX) :]: np.array(archive[name]) for name in tree_entries}
            try:
                reference_tree = KDTree.from_arrays(arrays, metric=header["metric"])
            except (KeyError, ValueError) as exc:
                raise PersistenceError(f"Tree arrays are incomplete: {exc}") from exc
            reference_set = None

    LOGGER.info("Loaded %s searcher from %s", kind.value, source)
    return RASearch._restore(
        reference_set=reference_set,
        reference_tree=reference_tree,
        naive=kind is ArchiveKind.DATASET,
        single_mode=bool(header["single_mode"]),
        metric=header["metric"],
        sort_policy=header["sort_policy"],
        leaf_size=int(header["leaf_size"]),
        settings=settings,
    )


__all__ = ["ARCHIVE_FORMAT", "ArchiveKind", "PersistenceError", "load_search", "save_search"]
