from __future__ import annotations

import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

import numpy as np
from numpy.random import default_rng
import typer
from typing_extensions import Annotated

from rannx import RankApproxSearch, Runtime
from rannx.queries.exact import neighbour_ranks, success_rate
from tests.utils.datasets import gaussian_dataset

_SHAPE_PANEL = "Data shape"
_SEARCH_PANEL = "Search controls"
_OUTPUT_PANEL = "Output"


@dataclass
class SearchCLIOptions:
    points: int = 2_048
    queries: int = 128
    dimension: int = 3
    k: int = 5
    mode: str = "dual"
    tau: float = 0.05
    alpha: float = 0.95
    seed: int = 0
    leaf_size: int = 20
    single_sample_limit: int = 20
    sample_at_leaves: bool = False
    first_leaf_exact: bool = False
    metric: str = "euclidean"
    sort_policy: str = "nearest"
    reference_file: Path | None = None
    query_file: Path | None = None
    diagnostics: bool | None = None
    log_level: str | None = None

    def runtime(self, *, seed: int | None = None) -> Runtime:
        return Runtime(
            metric=self.metric,
            sort_policy=self.sort_policy,
            diagnostics=self.diagnostics,
            log_level=self.log_level,
            seed=self.seed if seed is None else seed,
            leaf_size=self.leaf_size,
            tau=self.tau,
            alpha=self.alpha,
            single_sample_limit=self.single_sample_limit,
            sample_at_leaves=self.sample_at_leaves,
            first_leaf_exact=self.first_leaf_exact,
        )


app = typer.Typer(
    add_completion=False,
    pretty_exceptions_enable=False,
    rich_markup_mode="rich",
    context_settings={"help_option_names": ["-h", "--help"]},
    help="Run rank-approximate nearest-neighbour searches and recall checks.",
)


def _load_points(path: Path) -> np.ndarray:
    try:
        data = np.load(path, allow_pickle=False)
    except (OSError, ValueError) as exc:
        raise typer.BadParameter(f"Cannot read {path}: {exc}") from exc
    return np.asarray(data, dtype=np.float64)


def _resolve_data(options: SearchCLIOptions) -> Tuple[np.ndarray, np.ndarray]:
    reference, queries = gaussian_dataset(
        default_rng(options.seed),
        tree_points=options.points,
        queries=options.queries,
        dimension=options.dimension,
    )
    if options.reference_file is not None:
        reference = _load_points(options.reference_file)
    if options.query_file is not None:
        queries = _load_points(options.query_file)
    elif options.reference_file is not None:
        queries = reference[: options.queries]
    return reference, queries


def _fit(options: SearchCLIOptions, reference: np.ndarray, *, seed: int | None = None) -> RankApproxSearch:
    try:
        return RankApproxSearch(options.runtime(seed=seed), mode=options.mode).fit(reference)
    except (KeyError, ValueError) as exc:
        raise typer.BadParameter(str(exc)) from exc


def run_search(options: SearchCLIOptions, *, output: Path | None = None) -> None:
    reference, queries = _resolve_data(options)
    ras = _fit(options, reference)
    start = time.perf_counter()
    indices, distances = ras.knn(queries, k=options.k)
    elapsed_ms = (time.perf_counter() - start) * 1e3
    diagnostics = ras.searcher.last_diagnostics if ras.searcher is not None else None

    typer.echo(
        f"mode={options.mode} reference={reference.shape[0]} queries={queries.shape[0]} "
        f"k={options.k} tau={options.tau:g} alpha={options.alpha:g} elapsed_ms={elapsed_ms:.3f}"
    )
    if diagnostics is not None:
        per_query = diagnostics.distance_computations / max(diagnostics.num_queries, 1)
        typer.echo(
            f"samples_required={diagnostics.samples_required} "
            f"distance_computations={diagnostics.distance_computations} "
            f"per_query={per_query:.1f} scores={diagnostics.scores} prunes={diagnostics.prunes}"
        )
    empty = int(np.count_nonzero(indices < 0))
    if empty:
        typer.echo(f"empty_slots={empty}")
    if output is not None:
        with output.open("wb") as handle:
            np.savez(handle, indices=indices, distances=distances)
        typer.echo(f"results={output}")


def run_recall(options: SearchCLIOptions, *, trials: int) -> float:
    reference, queries = _resolve_data(options)
    hits = []
    for trial in range(trials):
        ras = _fit(options, reference, seed=options.seed + trial)
        indices, _ = ras.knn(queries, k=options.k)
        ranks = neighbour_ranks(
            reference,
            queries,
            indices,
            metric=options.metric,
            sort_policy=options.sort_policy,
        )
        hits.append(success_rate(ranks, reference.shape[0], options.tau))
    rate = float(np.mean(hits)) if hits else 1.0
    typer.echo(
        f"mode={options.mode} trials={trials} queries={queries.shape[0]} k={options.k} "
        f"tau={options.tau:g} alpha={options.alpha:g} success_rate={rate:.4f}"
    )
    return rate


_PointsOpt = Annotated[
    int,
    typer.Option("--points", help="Reference points to generate.", rich_help_panel=_SHAPE_PANEL),
]
_QueriesOpt = Annotated[
    int,
    typer.Option("--queries", help="Query points to generate.", rich_help_panel=_SHAPE_PANEL),
]
_DimensionOpt = Annotated[
    int,
    typer.Option("--dimension", help="Dimensionality of generated points.", rich_help_panel=_SHAPE_PANEL),
]
_ReferenceFileOpt = Annotated[
    Optional[Path],
    typer.Option(
        "--reference-file",
        help="Load reference points from a .npy file instead of generating them.",
        rich_help_panel=_SHAPE_PANEL,
    ),
]
_QueryFileOpt = Annotated[
    Optional[Path],
    typer.Option(
        "--query-file",
        help="Load query points from a .npy file.",
        rich_help_panel=_SHAPE_PANEL,
    ),
]
_KOpt = Annotated[
    int,
    typer.Option("--k", help="Neighbours per query.", rich_help_panel=_SEARCH_PANEL),
]
_ModeOpt = Annotated[
    str,
    typer.Option("--mode", help="Search mode: naive, single or dual.", rich_help_panel=_SEARCH_PANEL),
]
_TauOpt = Annotated[
    float,
    typer.Option("--tau", help="Accepted rank fraction (0.05 = top 5%).", rich_help_panel=_SEARCH_PANEL),
]
_AlphaOpt = Annotated[
    float,
    typer.Option("--alpha", help="Required success probability.", rich_help_panel=_SEARCH_PANEL),
]
_SeedOpt = Annotated[
    int,
    typer.Option("--seed", help="Seed for data generation and sampling.", rich_help_panel=_SEARCH_PANEL),
]
_LeafSizeOpt = Annotated[
    int,
    typer.Option("--leaf-size", help="Maximum points per tree leaf.", rich_help_panel=_SEARCH_PANEL),
]
_SampleLimitOpt = Annotated[
    int,
    typer.Option(
        "--single-sample-limit",
        help="Largest sample drawn from an internal node instead of descending.",
        rich_help_panel=_SEARCH_PANEL,
    ),
]
_SampleAtLeavesOpt = Annotated[
    bool,
    typer.Option(
        "--sample-at-leaves/--scan-leaves",
        help="Sample inside leaves instead of scanning them.",
        rich_help_panel=_SEARCH_PANEL,
    ),
]
_FirstLeafExactOpt = Annotated[
    bool,
    typer.Option(
        "--first-leaf-exact/--no-first-leaf-exact",
        help="Scan the first leaf each query reaches exhaustively.",
        rich_help_panel=_SEARCH_PANEL,
    ),
]
_MetricOpt = Annotated[
    str,
    typer.Option("--metric", help="Registered metric name.", rich_help_panel=_SEARCH_PANEL),
]
_SortPolicyOpt = Annotated[
    str,
    typer.Option("--sort-policy", help="nearest or furthest.", rich_help_panel=_SEARCH_PANEL),
]
_DiagnosticsOpt = Annotated[
    Optional[bool],
    typer.Option(
        "--diagnostics/--no-diagnostics",
        help="Sample CPU and RSS usage in operation logs.",
        rich_help_panel=_OUTPUT_PANEL,
    ),
]
_LogLevelOpt = Annotated[
    Optional[str],
    typer.Option("--log-level", help="Logging level for the rannx logger.", rich_help_panel=_OUTPUT_PANEL),
]


@app.command("search")
def search_command(
    points: _PointsOpt = 2_048,
    queries: _QueriesOpt = 128,
    dimension: _DimensionOpt = 3,
    reference_file: _ReferenceFileOpt = None,
    query_file: _QueryFileOpt = None,
    k: _KOpt = 5,
    mode: _ModeOpt = "dual",
    tau: _TauOpt = 0.05,
    alpha: _AlphaOpt = 0.95,
    seed: _SeedOpt = 0,
    leaf_size: _LeafSizeOpt = 20,
    single_sample_limit: _SampleLimitOpt = 20,
    sample_at_leaves: _SampleAtLeavesOpt = False,
    first_leaf_exact: _FirstLeafExactOpt = False,
    metric: _MetricOpt = "euclidean",
    sort_policy: _SortPolicyOpt = "nearest",
    diagnostics: _DiagnosticsOpt = None,
    log_level: _LogLevelOpt = None,
    output: Annotated[
        Optional[Path],
        typer.Option("--output", help="Write indices and distances to this .npz file.", rich_help_panel=_OUTPUT_PANEL),
    ] = None,
) -> None:
    """Run one rank-approximate search and print a summary."""

    options = SearchCLIOptions(
        points=points,
        queries=queries,
        dimension=dimension,
        k=k,
        mode=mode,
        tau=tau,
        alpha=alpha,
        seed=seed,
        leaf_size=leaf_size,
        single_sample_limit=single_sample_limit,
        sample_at_leaves=sample_at_leaves,
        first_leaf_exact=first_leaf_exact,
        metric=metric,
        sort_policy=sort_policy,
        reference_file=reference_file,
        query_file=query_file,
        diagnostics=diagnostics,
        log_level=log_level,
    )
    run_search(options, output=output)


@app.command("recall")
def recall_command(
    points: _PointsOpt = 1_024,
    queries: _QueriesOpt = 64,
    dimension: _DimensionOpt = 3,
    reference_file: _ReferenceFileOpt = None,
    query_file: _QueryFileOpt = None,
    k: _KOpt = 1,
    mode: _ModeOpt = "dual",
    tau: _TauOpt = 0.05,
    alpha: _AlphaOpt = 0.95,
    seed: _SeedOpt = 0,
    leaf_size: _LeafSizeOpt = 20,
    single_sample_limit: _SampleLimitOpt = 20,
    sample_at_leaves: _SampleAtLeavesOpt = False,
    first_leaf_exact: _FirstLeafExactOpt = False,
    metric: _MetricOpt = "euclidean",
    sort_policy: _SortPolicyOpt = "nearest",
    diagnostics: _DiagnosticsOpt = None,
    log_level: _LogLevelOpt = None,
    trials: Annotated[
        int,
        typer.Option("--trials", min=1, help="Independent sampling seeds to average over.", rich_help_panel=_SEARCH_PANEL),
    ] = 1,
    min_rate: Annotated[
        Optional[float],
        typer.Option("--min-rate", help="Exit with status 1 when the success rate falls below this.", rich_help_panel=_OUTPUT_PANEL),
    ] = None,
) -> None:
    """Compare against brute force and report the empirical success rate."""

    options = SearchCLIOptions(
        points=points,
        queries=queries,
        dimension=dimension,
        k=k,
        mode=mode,
        tau=tau,
        alpha=alpha,
        seed=seed,
        leaf_size=leaf_size,
        single_sample_limit=single_sample_limit,
        sample_at_leaves=sample_at_leaves,
        first_leaf_exact=first_leaf_exact,
        metric=metric,
        sort_policy=sort_policy,
        reference_file=reference_file,
        query_file=query_file,
        diagnostics=diagnostics,
        log_level=log_level,
    )
    rate = run_recall(options, trials=trials)
    if min_rate is not None and rate < min_rate:
        typer.echo(f"success_rate {rate:.4f} is below --min-rate {min_rate:g}", err=True)
        raise typer.Exit(code=1)


def main() -> None:
    app()


__all__ = ["SearchCLIOptions", "app", "main", "run_recall", "run_search"]
