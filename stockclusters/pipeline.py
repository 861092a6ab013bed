"""
End-to-end clustering pipeline over one date range.

raw prices -> standardized series -> features -> preprocessed matrix ->
cluster labels. Each stage produces a new artifact keyed by ticker; tickers
failing a stage are excluded and recorded rather than aborting the run.
"""

from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple
import logging
import pandas as pd
from stockclusters.analytics.clustering import cluster_matrix, dtw_distance_matrix
from stockclusters.analytics.features import extract_feature_table
from stockclusters.analytics.normalize import normalize_prices
from stockclusters.analytics.preprocess import FittedPreprocessor, fit_preprocessor
from stockclusters.config import PipelineConfig
from stockclusters.entities import ClusterAssignment, StandardizedSeries
from stockclusters.errors import InsufficientDataError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineResult:
    """
    Artifacts of one pipeline run.

    Attributes:
        standardized: StandardizedSeries keyed by ticker
        features: Feature table (one row per ticker)
        preprocessor: Preprocessor used for the matrix (None in DTW mode)
        matrix: Matrix passed to the cluster engine
        assignment: Resulting ClusterAssignment
        excluded: Ticker -> stage at which it was excluded
    """
    standardized: Dict[str, StandardizedSeries]
    features: pd.DataFrame
    preprocessor: Optional[FittedPreprocessor]
    matrix: pd.DataFrame
    assignment: ClusterAssignment
    excluded: Dict[str, str] = field(default_factory=dict)


def build_features(
    frame: pd.DataFrame,
    config: PipelineConfig
) -> Tuple[Dict[str, StandardizedSeries], pd.DataFrame, Dict[str, str]]:
    """
    Run normalization and feature extraction on a wide price frame.

    Returns:
        (standardized series, feature table, excluded ticker -> stage)
    """
    standardized, degenerate = normalize_prices(frame)
    excluded = {ticker: "normalize" for ticker in degenerate}

    features, failed = extract_feature_table(standardized, min_length=config.min_series_length)
    excluded.update({ticker: "features" for ticker in failed})
    standardized = {t: s for t, s in standardized.items() if t in features.index}
    return standardized, features, excluded


def run_pipeline(
    frame: pd.DataFrame,
    config: PipelineConfig = None,
    preprocessor: Optional[FittedPreprocessor] = None,
    window_label: Optional[str] = None
) -> PipelineResult:
    """
    Cluster the tickers of a wide adjusted-close frame.

    When a fitted preprocessor is given it is reused as-is; otherwise one is
    fitted on this run's feature table. In DTW mode the cluster engine runs
    on DTW distances between the standardized series instead of features.

    Preconditions:
        - frame is indexed by date with one column per ticker

    Postconditions:
        - every ticker of frame is either in result.assignment or in result.excluded

    Args:
        frame: Wide date x ticker price frame
        config: Pipeline parameters (defaults to PipelineConfig())
        preprocessor: Reference-fitted preprocessor to reuse
        window_label: Label attached to the resulting assignment

    Returns:
        PipelineResult

    Raises:
        InsufficientDataError: If too few tickers survive to cluster
    """
    config = config or PipelineConfig()
    standardized, features, excluded = build_features(frame, config)

    if features.empty:
        raise InsufficientDataError("no ticker has enough data for feature extraction")

    if config.distance == "dtw":
        matrix = dtw_distance_matrix(standardized, window=config.dtw_window)
        preprocessor = None
    else:
        if preprocessor is None:
            preprocessor = fit_preprocessor(
                features,
                use_pca=config.use_pca,
                variance_threshold=config.variance_threshold,
                near_constant_tol=config.near_constant_tol,
            )
        matrix = preprocessor.transform(features)

    assignment = cluster_matrix(matrix, config, window_label=window_label)
    logger.info(
        "clustered %d tickers (%d excluded): %r", len(assignment), len(excluded), assignment
    )

    return PipelineResult(
        standardized=standardized,
        features=features,
        preprocessor=preprocessor,
        matrix=matrix,
        assignment=assignment,
        excluded=excluded,
    )
