"""
Cluster performance against a benchmark index.

For every ticker in a ClusterAssignment, monthly returns are compared with
the benchmark's monthly returns over the same range using CAPM-style
statistics (alpha and beta from an OLS regression, active premium, tracking
error, information ratio). Results aggregate to per-cluster medians.
"""

from dataclasses import asdict, dataclass, fields
from typing import Dict, List, Optional
import logging
import pandas as pd
import numpy as np
from statsmodels.api import OLS, add_constant
from stockclusters.analytics.returns import (
    DateLike,
    MONTHS_PER_YEAR,
    align_returns,
    annualized_return,
    monthly_returns,
)
from stockclusters.entities import ClusterAssignment, Window

logger = logging.getLogger(__name__)

SUMMARY_COLUMNS = [
    "cluster", "n_tickers", "n_evaluated", "median_active_premium",
    "median_annualized_return", "median_beta", "cluster_active_premium",
]


@dataclass
class CAPMStatistics:
    """
    Performance of one return series against a benchmark.

    Attributes:
        n_observations: Number of aligned periods
        annualized_return: Geometric annualized return of the asset
        benchmark_annualized_return: Same for the benchmark
        active_premium: annualized_return - benchmark_annualized_return
        alpha: Per-period intercept of the CAPM regression
        beta: Slope of the CAPM regression
        r_squared: R-squared of the regression
        tracking_error: Annualized std of the return difference
        information_ratio: active_premium / tracking_error
    """
    n_observations: int
    annualized_return: float
    benchmark_annualized_return: float
    active_premium: float
    alpha: float
    beta: float
    r_squared: float
    tracking_error: float
    information_ratio: float

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)

    def __repr__(self) -> str:
        return (
            f"CAPMStatistics(n={self.n_observations}, "
            f"active_premium={self.active_premium:.4f}, beta={self.beta:.2f})"
        )


def active_premium(
    returns: pd.Series,
    benchmark_returns: pd.Series,
    periods_per_year: int = MONTHS_PER_YEAR
) -> float:
    """
    Annualized asset return minus annualized benchmark return, over the
    periods both series have.
    """
    asset, benchmark = align_returns(returns, benchmark_returns)
    return (
        annualized_return(asset, periods_per_year)
        - annualized_return(benchmark, periods_per_year)
    )


def capm_statistics(
    returns: pd.Series,
    benchmark_returns: pd.Series,
    risk_free: float = 0.0,
    periods_per_year: int = MONTHS_PER_YEAR,
    min_observations: int = 3
) -> CAPMStatistics:
    """
    CAPM performance statistics of an asset against a benchmark.

    Missing data never raises: statistics that cannot be computed are NaN.
    The regression needs min_observations aligned periods and a benchmark
    with non-zero variance.

    Preconditions:
        - returns and benchmark_returns share the same period index type
        - risk_free is a per-period rate

    Args:
        returns: Asset periodic returns
        benchmark_returns: Benchmark periodic returns
        risk_free: Per-period risk-free rate subtracted before the regression
        periods_per_year: Periods per year used for annualization
        min_observations: Minimum aligned periods for the regression

    Returns:
        CAPMStatistics
    """
    asset, benchmark = align_returns(returns, benchmark_returns)
    n = len(asset)

    asset_annual = annualized_return(asset, periods_per_year)
    benchmark_annual = annualized_return(benchmark, periods_per_year)
    premium = asset_annual - benchmark_annual

    alpha = beta = r_squared = float("nan")
    if n >= min_observations and benchmark.var(ddof=1) > 0:
        y = (asset - risk_free).values
        X = add_constant((benchmark - risk_free).values, has_constant="add")
        results = OLS(y, X).fit()
        alpha = float(results.params[0])
        beta = float(results.params[1])
        r_squared = float(results.rsquared)

    tracking_error = information_ratio = float("nan")
    if n >= 2:
        tracking_error = float((asset - benchmark).std(ddof=1) * np.sqrt(periods_per_year))
        if tracking_error > 0:
            information_ratio = premium / tracking_error

    return CAPMStatistics(
        n_observations=n,
        annualized_return=asset_annual,
        benchmark_annualized_return=benchmark_annual,
        active_premium=premium,
        alpha=alpha,
        beta=beta,
        r_squared=r_squared,
        tracking_error=tracking_error,
        information_ratio=information_ratio,
    )


@dataclass
class PerformanceReport:
    """
    Per-ticker and per-cluster performance over one date range.

    Attributes:
        window_label: Window label of the evaluated assignment, if any
        start: Inclusive start of the evaluated range (None for open)
        end: Exclusive end of the evaluated range (None for open)
        ticker_stats: One row per ticker: cluster label plus CAPMStatistics fields
        cluster_summary: One row per cluster label
        cluster_returns: Equal-weight monthly return per cluster (period x cluster)
        records: Long table {ticker, cluster, period, return, active_premium}
    """
    window_label: Optional[str]
    start: Optional[pd.Timestamp]
    end: Optional[pd.Timestamp]
    ticker_stats: pd.DataFrame
    cluster_summary: pd.DataFrame
    cluster_returns: pd.DataFrame
    records: pd.DataFrame


def _empty_returns() -> pd.Series:
    return pd.Series(dtype=float, index=pd.PeriodIndex([], freq="M", name="period"))


def _ticker_returns(prices: pd.DataFrame, ticker: str, start, end) -> pd.Series:
    if ticker not in prices.columns:
        logger.warning("no prices for %s, performance statistics will be missing", ticker)
        return _empty_returns()
    try:
        return monthly_returns(prices[ticker], start, end)
    except ValueError as e:
        logger.warning("cannot compute returns for %s: %s", ticker, e)
        return _empty_returns()


def evaluate_performance(
    assignment: ClusterAssignment,
    prices: pd.DataFrame,
    benchmark: pd.Series,
    start: Optional[DateLike] = None,
    end: Optional[DateLike] = None,
    window_label: Optional[str] = None
) -> PerformanceReport:
    """
    Compare every cluster's constituents with a benchmark over a date range.

    A ticker missing from the price table, or without returns in range, gets
    NaN statistics; cluster aggregates skip NaN values. The noise label (0)
    is summarized like any other label.

    Preconditions:
        - prices is a wide date x ticker frame of daily adjusted closes
        - benchmark is a daily price series indexed by date

    Postconditions:
        - ticker_stats has one row per ticker of assignment
        - cluster_summary has one row per label of assignment

    Args:
        assignment: ClusterAssignment to evaluate
        prices: Daily prices of the constituents
        benchmark: Daily benchmark prices
        start: Inclusive start date (None for the full history)
        end: Exclusive end date (None for the full history)
        window_label: Label tagging the report (defaults to assignment.window_label)

    Returns:
        PerformanceReport
    """
    window_label = window_label or assignment.window_label
    try:
        benchmark_returns = monthly_returns(benchmark, start, end)
    except ValueError as e:
        logger.warning("cannot compute benchmark returns: %s", e)
        benchmark_returns = _empty_returns()
    if benchmark_returns.empty:
        logger.warning("benchmark has no returns in range, statistics will be missing")

    labels = assignment.labels
    rows = []
    series = {}
    for ticker, label in labels.items():
        returns = _ticker_returns(prices, ticker, start, end)
        stats = capm_statistics(returns, benchmark_returns)
        rows.append({"ticker": ticker, "cluster": int(label), **stats.to_dict()})
        series[ticker] = returns

    columns = ["ticker", "cluster"] + [f.name for f in fields(CAPMStatistics)]
    ticker_stats = pd.DataFrame(rows, columns=columns).set_index("ticker")

    returns_frame = pd.DataFrame(series)
    if returns_frame.empty:
        cluster_returns = pd.DataFrame(dtype=float)
    else:
        cluster_returns = returns_frame.T.groupby(labels.reindex(returns_frame.columns)).mean().T
    cluster_returns.columns.name = "cluster"

    summary_rows = []
    for label, group in ticker_stats.groupby("cluster"):
        cluster_series = cluster_returns[label] if label in cluster_returns.columns else _empty_returns()
        summary_rows.append({
            "cluster": int(label),
            "n_tickers": len(group),
            "n_evaluated": int(group["active_premium"].notna().sum()),
            "median_active_premium": group["active_premium"].median(skipna=True),
            "median_annualized_return": group["annualized_return"].median(skipna=True),
            "median_beta": group["beta"].median(skipna=True),
            "cluster_active_premium": active_premium(cluster_series, benchmark_returns),
        })
    cluster_summary = pd.DataFrame(summary_rows, columns=SUMMARY_COLUMNS).set_index("cluster")

    records = _long_records(series, ticker_stats)

    return PerformanceReport(
        window_label=window_label,
        start=pd.Timestamp(start) if start is not None else None,
        end=pd.Timestamp(end) if end is not None else None,
        ticker_stats=ticker_stats,
        cluster_summary=cluster_summary,
        cluster_returns=cluster_returns,
        records=records,
    )


def _long_records(series: Dict[str, pd.Series], ticker_stats: pd.DataFrame) -> pd.DataFrame:
    frames = []
    for ticker, returns in series.items():
        if returns.empty:
            continue
        frames.append(pd.DataFrame({
            "ticker": ticker,
            "cluster": ticker_stats.at[ticker, "cluster"],
            "period": returns.index.astype(str),
            "return": returns.values,
            "active_premium": ticker_stats.at[ticker, "active_premium"],
        }))
    columns = ["ticker", "cluster", "period", "return", "active_premium"]
    if not frames:
        return pd.DataFrame(columns=columns)
    return pd.concat(frames, ignore_index=True)[columns]


def evaluate_windowed_performance(
    assignments: Dict[str, ClusterAssignment],
    windows: List[Window],
    prices: pd.DataFrame,
    benchmark: pd.Series
) -> Dict[str, PerformanceReport]:
    """
    Evaluate each window's assignment over that window's own date range.

    Windows without an assignment are skipped.
    """
    reports = {}
    for window in windows:
        assignment = assignments.get(window.label)
        if assignment is None:
            continue
        reports[window.label] = evaluate_performance(
            assignment, prices, benchmark,
            start=window.start, end=window.end, window_label=window.label,
        )
    return reports
