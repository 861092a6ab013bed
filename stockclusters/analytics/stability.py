"""
Temporal stability of cluster membership.

Repeats the clustering pipeline over sliding windows of whole calendar years
and merges the per-window assignments into a per-ticker label history, from
which membership-change statistics are derived.
"""

from collections import Counter
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple
import logging
import pandas as pd
import numpy as np
from joblib import Parallel, delayed
from stockclusters.analytics.preprocess import FittedPreprocessor, fit_preprocessor
from stockclusters.config import PipelineConfig
from stockclusters.entities import ClusterAssignment, Window, WindowedClusterHistory
from stockclusters.errors import DataError, NumericInstabilityError
from stockclusters.pipeline import build_features, run_pipeline

logger = logging.getLogger(__name__)

# A history starting this many days into January still counts as a full first year
FIRST_YEAR_GRACE_DAYS = 7


def generate_windows(
    calendar: pd.DatetimeIndex,
    window_years: int,
    step_years: int = 1
) -> List[Window]:
    """
    Generate sliding windows of whole calendar years over a trading calendar.

    Window i covers [Jan 1 of year s_i, Jan 1 of year s_i + window_years),
    with s_i stepping by step_years. The first start year is the first year
    of history, or the following one when history begins after the first
    days of January; windows whose span would run past the last observed
    year are not generated.

    Args:
        calendar: Sorted trading dates
        window_years: Window length in calendar years
        step_years: Step between window starts in calendar years

    Returns:
        Windows in chronological order (possibly empty)
    """
    if window_years < 1 or step_years < 1:
        raise ValueError("window_years and step_years must be at least 1")
    if len(calendar) == 0:
        return []

    first, last = calendar[0], calendar[-1]
    first_start = first.year
    if first > pd.Timestamp(first.year, 1, 1) + pd.Timedelta(days=FIRST_YEAR_GRACE_DAYS):
        first_start += 1

    windows = []
    for start_year in range(first_start, last.year - window_years + 2, step_years):
        end_year = start_year + window_years
        windows.append(Window(
            label=f"{start_year}-{end_year - 1}",
            start=pd.Timestamp(start_year, 1, 1),
            end=pd.Timestamp(end_year, 1, 1),
        ))
    return windows


def _evaluate_window(
    frame: pd.DataFrame,
    window: Window,
    config: PipelineConfig,
    preprocessor: Optional[FittedPreprocessor]
) -> Tuple[str, Optional[ClusterAssignment], Optional[str]]:
    try:
        result = run_pipeline(window.slice(frame), config, preprocessor, window_label=window.label)
    except (DataError, NumericInstabilityError) as e:
        return window.label, None, str(e)
    return window.label, result.assignment, None


@dataclass(frozen=True)
class StabilityResult:
    """
    Outcome of a sliding-window analysis.

    Attributes:
        windows: Windows evaluated, in chronological order
        assignments: Window label -> ClusterAssignment for windows that clustered
        skipped: Window label -> reason for windows that could not be clustered
        history: Outer-joined per-ticker label history
        preprocessor: Reference preprocessor shared by every window (None in DTW mode)
    """
    windows: List[Window]
    assignments: Dict[str, ClusterAssignment]
    skipped: Dict[str, str]
    history: WindowedClusterHistory
    preprocessor: Optional[FittedPreprocessor] = None

    def summary(self) -> pd.DataFrame:
        return summarize_history(self.history)


def run_windowed_analysis(
    frame: pd.DataFrame,
    config: PipelineConfig = None,
    preprocessor: Optional[FittedPreprocessor] = None,
    min_cluster_sizes: Optional[Dict[str, int]] = None,
    n_jobs: int = 1
) -> StabilityResult:
    """
    Cluster every sliding window of a price history.

    Each window runs the full pipeline on its own date range. Feature
    preprocessing is not refitted per window: the given preprocessor (or,
    when None, one fitted on the full history) is reused so that windows are
    projected onto the same axes. Windows that cannot be clustered (too few
    tickers with enough data) are skipped and reported.

    Windows share only the read-only price frame, so they are evaluated
    independently; n_jobs > 1 spreads them over joblib workers.

    Args:
        frame: Wide date x ticker price frame covering the full history
        config: Pipeline parameters (window_years, step_years and clustering)
        preprocessor: Reference-fitted preprocessor
        min_cluster_sizes: Per-window min_cluster_size overrides, by window label
        n_jobs: Number of joblib workers

    Returns:
        StabilityResult
    """
    config = config or PipelineConfig()
    min_cluster_sizes = min_cluster_sizes or {}

    if preprocessor is None and config.distance == "features":
        _, reference, _ = build_features(frame, config)
        preprocessor = fit_preprocessor(
            reference,
            use_pca=config.use_pca,
            variance_threshold=config.variance_threshold,
            near_constant_tol=config.near_constant_tol,
        )

    calendar = pd.DatetimeIndex(frame.dropna(how="all").index).sort_values()
    windows = generate_windows(calendar, config.window_years, config.step_years)
    logger.info("evaluating %d windows of %d years", len(windows), config.window_years)

    outcomes = Parallel(n_jobs=n_jobs)(
        delayed(_evaluate_window)(
            frame,
            window,
            config.replace(min_cluster_size=min_cluster_sizes.get(window.label, config.min_cluster_size)),
            preprocessor,
        )
        for window in windows
    )

    assignments = {}
    skipped = {}
    for label, assignment, reason in outcomes:
        if assignment is None:
            logger.warning("skipping window %s: %s", label, reason)
            skipped[label] = reason
        else:
            assignments[label] = assignment

    return StabilityResult(
        windows=windows,
        assignments=assignments,
        skipped=skipped,
        history=build_history(assignments),
        preprocessor=preprocessor,
    )


def build_history(assignments: Dict[str, ClusterAssignment]) -> WindowedClusterHistory:
    """
    Merge per-window assignments into a ticker x window history.

    This is an outer join keyed by ticker: a ticker absent from a window has
    no entry for it (missing), not a default label. Window order follows the
    order of the assignments mapping.
    """
    columns = [assignment.labels.rename(label) for label, assignment in assignments.items()]
    if not columns:
        return WindowedClusterHistory(pd.DataFrame(dtype="Int64"))
    table = pd.concat(columns, axis=1, join="outer").sort_index()
    return WindowedClusterHistory(table[list(assignments)])


def modal_label(labels: Sequence[int]) -> int:
    """
    Most frequent label; ties go to the lowest label.

    Noise (0) is counted like any other label.
    """
    if len(labels) == 0:
        raise ValueError("labels cannot be empty")
    counts = Counter(int(label) for label in labels)
    top = max(counts.values())
    return min(label for label, count in counts.items() if count == top)


def summarize_history(history: WindowedClusterHistory) -> pd.DataFrame:
    """
    Per-ticker stability statistics.

    Columns:
        n_windows: Windows the ticker appears in
        memberships: Distinct labels across those windows
        changes: Label changes between consecutive windows the ticker appears in
        modal_cluster: Most frequent label (ties to the lowest)
    """
    records = []
    for ticker in history.tickers:
        labels = [label for _, label in history.entries(ticker)]
        if not labels:
            continue
        records.append({
            "ticker": ticker,
            "n_windows": len(labels),
            "memberships": len(set(labels)),
            "changes": int(np.sum(np.diff(labels) != 0)),
            "modal_cluster": modal_label(labels),
        })
    columns = ["ticker", "n_windows", "memberships", "changes", "modal_cluster"]
    return pd.DataFrame(records, columns=columns).set_index("ticker")


def label_counts(history: WindowedClusterHistory) -> pd.DataFrame:
    """Count of each label value per ticker (ticker x label, zeros where absent)."""
    long = history.to_long()
    if long.empty:
        return pd.DataFrame(dtype=int)
    counts = long.groupby(["ticker", "cluster_label"]).size().unstack(fill_value=0)
    counts.columns.name = "cluster_label"
    return counts.astype(int)
