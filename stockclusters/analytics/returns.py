"""
Functions for computing periodic returns and annualizing them.

This module provides pure functions for return calculations and alignment
of return series, following functional programming principles where possible.
"""

from datetime import date, datetime
from typing import Optional, Tuple, Union
import pandas as pd
import numpy as np

DateLike = Union[str, date, datetime, pd.Timestamp]

MONTHS_PER_YEAR = 12


def compute_returns(prices: pd.Series) -> pd.Series:
    """
    Compute simple returns from a price series.

    Preconditions:
        - prices is a pd.Series with positive numeric values

    Postconditions:
        - Returns a pd.Series with the same index as prices
        - First observation is NaN (no prior price to compute return from)

    Raises:
        TypeError: If prices is not a pd.Series
        ValueError: If prices contains non-positive values
    """
    if not isinstance(prices, pd.Series):
        raise TypeError("prices must be a pd.Series")

    if (prices <= 0).any():
        raise ValueError("prices must be positive")

    return (prices / prices.shift(1)) - 1


def restrict_range(
    series: pd.Series,
    start: Optional[DateLike] = None,
    end: Optional[DateLike] = None
) -> pd.Series:
    """Return the part of a date-indexed series in [start, end)."""
    mask = np.ones(len(series), dtype=bool)
    if start is not None:
        mask &= series.index >= pd.Timestamp(start)
    if end is not None:
        mask &= series.index < pd.Timestamp(end)
    return series[mask]


def monthly_returns(
    prices: pd.Series,
    start: Optional[DateLike] = None,
    end: Optional[DateLike] = None
) -> pd.Series:
    """
    Month-end to month-end simple returns over a date range.

    The first month's return is measured from the first price in range,
    so a range starting mid-month still yields a (partial) first month.

    Preconditions:
        - prices is indexed by date; NaN prices are ignored
        - prices in range are positive

    Postconditions:
        - index is a monthly PeriodIndex named "period", one entry per month
          with at least one price
        - empty when fewer than one month-end observation is available

    Args:
        prices: Daily price series
        start: Inclusive start date
        end: Exclusive end date

    Returns:
        Series of monthly returns

    Raises:
        ValueError: If prices in range are not positive
    """
    prices = restrict_range(prices.dropna().sort_index(), start, end)
    if prices.empty:
        return pd.Series(dtype=float, index=pd.PeriodIndex([], freq="M", name="period"))

    if (prices <= 0).any():
        raise ValueError("prices must be positive")

    month_end = prices.resample("ME").last().dropna()
    # first price in range anchors the first month
    levels = pd.Series(np.concatenate([[prices.iloc[0]], month_end.values]))
    returns = compute_returns(levels).iloc[1:]

    index = pd.PeriodIndex(month_end.index.to_period("M"), name="period")
    return pd.Series(returns.values, index=index, name=prices.name)


def annualized_return(returns: pd.Series, periods_per_year: int = MONTHS_PER_YEAR) -> float:
    """
    Geometric annualized return: prod(1 + r) ** (periods_per_year / n) - 1.

    Missing returns are skipped; an empty series gives NaN.
    """
    r = pd.Series(returns, dtype=float).dropna()
    if r.empty:
        return float("nan")
    growth = float(np.prod(1 + r.values))
    if growth <= 0:
        return -1.0
    return growth ** (periods_per_year / len(r)) - 1


def align_returns(returns: pd.Series, benchmark: pd.Series) -> Tuple[pd.Series, pd.Series]:
    """
    Align two return series on their common periods, dropping periods where
    either is missing.
    """
    joined = pd.concat([returns.rename("asset"), benchmark.rename("benchmark")], axis=1, join="inner")
    joined = joined.dropna()
    return joined["asset"], joined["benchmark"]
