"""
Price normalization.

Brings every ticker onto a shared trading calendar and z-scores it over its
own observed range, so that feature extraction sees the shape of a price
history rather than its level.
"""

from typing import Dict, List, Tuple
import logging
import pandas as pd
import numpy as np
from stockclusters.entities import StandardizedSeries
from stockclusters.errors import DegenerateSeriesError

logger = logging.getLogger(__name__)

# Relative tolerance on std below which a price series counts as constant
ZERO_VARIANCE_TOL = 1e-12


def build_calendar(frame: pd.DataFrame) -> pd.DatetimeIndex:
    """
    Return the shared trading calendar: every date on which any ticker traded.

    Args:
        frame: Wide date x ticker price frame

    Returns:
        Sorted DatetimeIndex without duplicates
    """
    observed = frame.dropna(how="all")
    return pd.DatetimeIndex(observed.index).unique().sort_values()


def carry_down(series: pd.Series, calendar: pd.DatetimeIndex) -> pd.Series:
    """
    Reindex a price series onto the calendar, filling gaps downward.

    The last known price persists until a new observation arrives. Dates
    before the first observation have nothing to carry and stay missing.

    Preconditions:
        - series index is a DatetimeIndex without duplicates

    Postconditions:
        - result index equals calendar
        - result is NaN exactly on calendar dates before the first observation
    """
    return series.dropna().reindex(calendar).ffill()


def standardize(series: pd.Series, ticker: str = None) -> StandardizedSeries:
    """
    Z-score a price series over its observed values.

    Uses the population standard deviation, so the observed standardized
    values have mean 0 and standard deviation 1 (ddof=0).

    Preconditions:
        - series is a pd.Series of prices (NaN allowed, treated as missing)

    Postconditions:
        - missing values stay missing
        - observed values have mean ~0 and population std ~1

    Args:
        series: Price series on the shared calendar
        ticker: Ticker symbol (defaults to series.name)

    Returns:
        StandardizedSeries

    Raises:
        DegenerateSeriesError: If the series has no observations or zero variance
    """
    ticker = ticker or series.name
    observed = series.dropna()
    if observed.empty:
        raise DegenerateSeriesError(f"{ticker}: no observations to standardize")

    mean = float(observed.mean())
    std = float(observed.std(ddof=0))
    if not np.isfinite(std) or std <= ZERO_VARIANCE_TOL * max(1.0, abs(mean)):
        raise DegenerateSeriesError(f"{ticker}: zero price variance")

    values = (series - mean) / std
    values.name = ticker
    return StandardizedSeries(ticker=ticker, values=values, mean=mean, std=std)


def normalize_prices(
    frame: pd.DataFrame,
    calendar: pd.DatetimeIndex = None
) -> Tuple[Dict[str, StandardizedSeries], List[str]]:
    """
    Carry down and standardize every ticker of a wide price frame.

    Tickers without observations or with zero variance are excluded from the
    result and reported, rather than aborting the batch.

    Args:
        frame: Wide date x ticker price frame
        calendar: Shared calendar (defaults to build_calendar(frame))

    Returns:
        (standardized series keyed by ticker, excluded tickers)
    """
    if calendar is None:
        calendar = build_calendar(frame)

    standardized = {}
    excluded = []
    for ticker in frame.columns:
        filled = carry_down(frame[ticker], calendar)
        try:
            standardized[ticker] = standardize(filled, ticker=ticker)
        except DegenerateSeriesError as e:
            logger.warning("excluding ticker: %s", e)
            excluded.append(ticker)

    logger.debug("standardized %d tickers, excluded %d", len(standardized), len(excluded))
    return standardized, excluded
