"""
Command-line interface for the clustering pipeline.

This module provides CLI commands for scanning k, clustering tickers,
running the sliding-window stability analysis, and comparing cluster
performance with a benchmark index.
"""

import argparse
import logging
import sys
from typing import Optional
import pandas as pd

from stockclusters.analytics.clustering import elbow_scan
from stockclusters.analytics.composition import dominant_sectors, sector_composition
from stockclusters.analytics.performance import evaluate_performance
from stockclusters.analytics.preprocess import fit_preprocessor
from stockclusters.analytics.stability import label_counts, run_windowed_analysis
from stockclusters.cache import DataCache
from stockclusters.config import PipelineConfig, load_config
from stockclusters.data_sources.metadata import load_ticker_metadata
from stockclusters.data_sources.prices import (
    adjusted_close_frame,
    get_benchmark_prices,
    load_price_table,
)
from stockclusters.errors import ClusterAnalysisError
from stockclusters.pipeline import build_features, run_pipeline


def _config(args) -> PipelineConfig:
    """Build the run config from --config plus command-line overrides."""
    overrides = {
        "method": getattr(args, "method", None),
        "distance": getattr(args, "distance", None),
        "n_clusters": getattr(args, "k", None),
        "min_cluster_size": getattr(args, "min_cluster_size", None),
        "window_years": getattr(args, "window_years", None),
        "benchmark": getattr(args, "benchmark", None),
    }
    if args.config:
        return load_config(args.config, **overrides)
    return PipelineConfig(**{k: v for k, v in overrides.items() if v is not None})


def _price_frame(path: str, start: Optional[str] = None, end: Optional[str] = None) -> pd.DataFrame:
    print(f"  Loading prices from {path}...")
    frame = adjusted_close_frame(load_price_table(path))
    if start:
        frame = frame.loc[frame.index >= pd.Timestamp(start)]
    if end:
        frame = frame.loc[frame.index < pd.Timestamp(end)]
    print(f"    {frame.shape[1]} tickers, {frame.shape[0]} trading days")
    return frame


def _write(table: pd.DataFrame, path: Optional[str], index: bool = True) -> None:
    if path:
        table.to_csv(path, index=index)
        print(f"  Saved to: {path}")


def elbow_command(args):
    """Print total within-cluster sum of squares for k = 1..k_max."""
    config = _config(args)
    frame = _price_frame(args.prices, args.start, args.end)

    _, features, excluded = build_features(frame, config)
    print(f"  Extracted features for {len(features)} tickers ({len(excluded)} excluded)")
    preprocessor = fit_preprocessor(
        features,
        use_pca=config.use_pca,
        variance_threshold=config.variance_threshold,
        near_constant_tol=config.near_constant_tol,
    )
    matrix = preprocessor.transform(features)

    scan = elbow_scan(matrix, k_max=args.k_max or config.k_max,
                      n_init=config.n_init, random_state=config.random_state)
    table = scan.to_frame()
    print("\n" + table.to_string(index=False))
    _write(table, args.output, index=False)


def cluster_command(args):
    """Cluster tickers over one date range."""
    config = _config(args)
    print(f"Clustering with {config.method} ({config.distance})...")
    frame = _price_frame(args.prices, args.start, args.end)

    result = run_pipeline(frame, config)
    assignment = result.assignment

    print(f"\n✓ {assignment!r}")
    if result.preprocessor is not None and result.preprocessor.pca is not None:
        print(f"  PCA components: {result.preprocessor.n_components} "
              f"({result.preprocessor.explained_variance:.1%} variance)")
    for ticker, stage in sorted(result.excluded.items()):
        print(f"  Excluded {ticker} at {stage}")
    print("\n" + assignment.sizes().rename("tickers").to_string())

    if args.metadata:
        composition = sector_composition(assignment, load_ticker_metadata(args.metadata))
        print("\n" + composition.to_string())
        print("\n" + dominant_sectors(composition).to_string())

    _write(assignment.to_frame(), args.output, index=False)


def stability_command(args):
    """Cluster every sliding window and summarize membership stability."""
    config = _config(args)
    print(f"Running {config.window_years}-year windows with {config.method}...")
    frame = _price_frame(args.prices)

    result = run_windowed_analysis(frame, config, n_jobs=args.n_jobs)
    print(f"  Clustered {len(result.assignments)} of {len(result.windows)} windows")
    for label, reason in result.skipped.items():
        print(f"    ✗ {label}: {reason}")

    summary = result.summary()
    print("\n" + summary.describe().to_string())

    _write(result.history.table, args.output)
    _write(summary.join(label_counts(result.history).add_prefix("count_")), args.summary_output)


def performance_command(args):
    """Cluster over a date range and compare clusters with the benchmark."""
    config = _config(args)
    print(f"Evaluating clusters against {config.benchmark} from {args.start} to {args.end}...")
    frame = _price_frame(args.prices, args.start, args.end)

    result = run_pipeline(frame, config)
    benchmark = get_benchmark_prices(
        config.benchmark, args.start, args.end, cache=DataCache(args.cache_dir, namespace="benchmark")
    )
    report = evaluate_performance(result.assignment, frame, benchmark, args.start, args.end)

    print("\n" + report.cluster_summary.to_string())
    _write(report.ticker_stats, args.output)
    _write(report.records, args.records_output, index=False)


def main(argv=None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Stock Price Shape Clustering",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument("--config", help="YAML config file")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    def add_common(sub, dated=True):
        sub.add_argument("prices", help="Price table CSV")
        if dated:
            sub.add_argument("--start", default=None, help="Start date (YYYY-MM-DD)")
            sub.add_argument("--end", default=None, help="End date (YYYY-MM-DD, exclusive)")
        sub.add_argument("--output", help="Output CSV")

    def add_clustering(sub):
        sub.add_argument("--method", choices=["kmeans", "hdbscan"], help="Clustering method")
        sub.add_argument("--distance", choices=["features", "dtw"], help="Distance basis")
        sub.add_argument("--k", type=int, help="Number of clusters (kmeans)")
        sub.add_argument("--min-cluster-size", type=int, help="Minimum cluster size (hdbscan)")

    elbow_parser = subparsers.add_parser("elbow", help="Scan k for the elbow plot")
    add_common(elbow_parser)
    elbow_parser.add_argument("--k-max", type=int, help="Largest k (default: 15)")

    cluster_parser = subparsers.add_parser("cluster", help="Cluster tickers")
    add_common(cluster_parser)
    add_clustering(cluster_parser)
    cluster_parser.add_argument("--metadata", help="Ticker metadata CSV for sector composition")

    stability_parser = subparsers.add_parser("stability", help="Sliding-window stability analysis")
    add_common(stability_parser, dated=False)
    add_clustering(stability_parser)
    stability_parser.add_argument("--window-years", type=int, help="Window length in years")
    stability_parser.add_argument("--n-jobs", type=int, default=1, help="Parallel windows")
    stability_parser.add_argument("--summary-output", help="Per-ticker summary CSV")

    performance_parser = subparsers.add_parser("performance", help="Compare clusters with a benchmark")
    add_common(performance_parser)
    add_clustering(performance_parser)
    performance_parser.add_argument("--benchmark", help="Benchmark symbol (default: ^GSPC)")
    performance_parser.add_argument("--records-output", help="Monthly records CSV")
    performance_parser.add_argument("--cache-dir", default=".cache", help="Download cache directory")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    commands = {
        "elbow": elbow_command,
        "cluster": cluster_command,
        "stability": stability_command,
        "performance": performance_command,
    }
    if args.command not in commands:
        parser.print_help()
        sys.exit(1)

    if args.command == "performance" and not (args.start and args.end):
        parser.error("performance requires --start and --end")

    try:
        commands[args.command](args)
    except (ClusterAnalysisError, ValueError) as e:
        print(f"\n✗ Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
