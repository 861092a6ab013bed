"""
Core entity classes (ADTs) for the clustering pipeline.

These classes represent the fundamental data structures passed between
pipeline stages, with strong encapsulation and representation invariants.
Every entity is created once from its inputs and never mutated afterwards.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple
import pandas as pd
import numpy as np


class TickerSeries:
    """
    A ticker's adjusted-close price history.

    Attributes:
        ticker: Ticker symbol (e.g., "AAPL")
        prices: Adjusted-close prices (pd.Series indexed by date)

    Representation Invariants:
        - ticker is non-empty
        - dates are sorted in strictly increasing order
        - dates contain no duplicates and no NaT values
        - series is non-empty
    """

    def __init__(self, ticker: str, prices: pd.Series):
        """
        Initialize a TickerSeries.

        Preconditions:
            - prices is a pd.Series whose index is convertible to dates

        Postconditions:
            - self.prices is sorted and deduplicated (first observation kept)
            - missing prices are dropped
        """
        if not ticker:
            raise ValueError("ticker cannot be empty")
        if not isinstance(prices, pd.Series):
            raise TypeError("prices must be a pd.Series")

        index = pd.DatetimeIndex(prices.index)
        series = pd.Series(prices.values, index=index, dtype=float).dropna()
        series = series[~series.index.isna()]
        series = series.sort_index(kind="stable")
        series = series[~series.index.duplicated(keep="first")]

        if len(series) == 0:
            raise ValueError(f"price series for {ticker} is empty")

        series.name = ticker
        self._ticker = ticker
        self._prices = series

        self._check_invariants()

    def _check_invariants(self):
        """Check representation invariants."""
        if not self._prices.index.is_monotonic_increasing:
            raise ValueError("dates must be sorted in ascending order")
        if self._prices.index.has_duplicates:
            raise ValueError("dates must not contain duplicates")

    @property
    def ticker(self) -> str:
        """Return the ticker symbol."""
        return self._ticker

    @property
    def prices(self) -> pd.Series:
        """Return a copy of the price series."""
        return self._prices.copy()

    @property
    def dates(self) -> pd.DatetimeIndex:
        """Return the observation dates."""
        return self._prices.index

    def __len__(self) -> int:
        return len(self._prices)

    def __repr__(self) -> str:
        return f"TickerSeries({self._ticker}, {len(self)} obs)"


@dataclass(frozen=True)
class StandardizedSeries:
    """
    A z-scored price series on the shared trading calendar.

    Attributes:
        ticker: Ticker symbol
        values: Standardized values indexed by calendar date; leading dates
            before the first observation are NaN
        mean: Mean of the observed prices
        std: Population standard deviation of the observed prices

    Representation Invariants:
        - std > 0
        - values has at least one finite observation
    """
    ticker: str
    values: pd.Series
    mean: float
    std: float

    def __post_init__(self):
        if not self.ticker:
            raise ValueError("ticker cannot be empty")
        if not self.std > 0:
            raise ValueError("std must be positive")
        if self.values.notna().sum() == 0:
            raise ValueError("standardized series has no observations")

    def observed(self) -> pd.Series:
        """Return the values with leading gaps removed."""
        first = self.values.first_valid_index()
        return self.values.loc[first:].copy()

    def __len__(self) -> int:
        return int(self.values.notna().sum())


@dataclass(frozen=True)
class Window:
    """
    A calendar window used in sliding-window analysis.

    Attributes:
        label: Human-readable label, e.g. "2015-2017"
        start: Inclusive start date
        end: Exclusive end date
    """
    label: str
    start: pd.Timestamp
    end: pd.Timestamp

    def __post_init__(self):
        if not self.start < self.end:
            raise ValueError("window start must precede its end")

    def slice(self, frame: pd.DataFrame) -> pd.DataFrame:
        """Return the rows of a date-indexed frame that fall inside the window."""
        mask = (frame.index >= self.start) & (frame.index < self.end)
        return frame.loc[mask]


class ClusterAssignment:
    """
    Mapping from ticker to cluster label.

    Label 0 is reserved for noise (density clustering); positive integers
    denote genuine clusters.

    Attributes:
        labels: Integer labels indexed by ticker
        method: Clustering method that produced the labels
        params: Method parameters
        window_label: Label of the window the assignment belongs to, if any

    Representation Invariants:
        - tickers are unique
        - labels are non-negative integers
    """

    NOISE = 0

    def __init__(
        self,
        labels: pd.Series,
        method: str,
        params: Optional[Dict] = None,
        window_label: Optional[str] = None
    ):
        if labels.index.has_duplicates:
            raise ValueError("tickers must be unique")
        values = np.asarray(labels.values)
        if len(values) and (values < 0).any():
            raise ValueError("cluster labels must be non-negative")

        self._labels = pd.Series(values.astype(int), index=labels.index.copy(), name="cluster_label")
        self._labels.index.name = "ticker"
        self._method = method
        self._params = dict(params or {})
        self._window_label = window_label

    @property
    def labels(self) -> pd.Series:
        """Return a copy of the label series."""
        return self._labels.copy()

    @property
    def method(self) -> str:
        return self._method

    @property
    def params(self) -> Dict:
        return dict(self._params)

    @property
    def window_label(self) -> Optional[str]:
        return self._window_label

    @property
    def tickers(self) -> List[str]:
        return list(self._labels.index)

    def clusters(self) -> List[int]:
        """Return the sorted non-noise cluster labels."""
        return sorted(int(c) for c in self._labels.unique() if c != self.NOISE)

    def members(self, label: int) -> List[str]:
        """Return the tickers carrying the given label."""
        return list(self._labels.index[self._labels == label])

    def sizes(self) -> pd.Series:
        """Return the number of tickers per label (noise included)."""
        return self._labels.value_counts().sort_index()

    @property
    def n_noise(self) -> int:
        return int((self._labels == self.NOISE).sum())

    def to_frame(self) -> pd.DataFrame:
        """Export as a {ticker, cluster_label} table."""
        return self._labels.reset_index()

    def __len__(self) -> int:
        return len(self._labels)

    def __repr__(self) -> str:
        window = f", window={self._window_label}" if self._window_label else ""
        return (
            f"ClusterAssignment({self._method}, n={len(self)}, "
            f"clusters={len(self.clusters())}, noise={self.n_noise}{window})"
        )


class WindowedClusterHistory:
    """
    Per-ticker cluster label history across sliding windows.

    Stored as a ticker x window table with a nullable integer dtype; a ticker
    absent from a window has a missing entry there, never a default label.

    Representation Invariants:
        - window labels are unique and kept in chronological order
        - present entries are non-negative integers
    """

    def __init__(self, table: pd.DataFrame):
        if table.columns.has_duplicates:
            raise ValueError("window labels must be unique")
        self._table = table.astype("Int64")
        self._table.index.name = "ticker"
        self._table.columns.name = "window"

    @property
    def windows(self) -> List[str]:
        return list(self._table.columns)

    @property
    def tickers(self) -> List[str]:
        return list(self._table.index)

    @property
    def table(self) -> pd.DataFrame:
        """Return a copy of the ticker x window table."""
        return self._table.copy()

    def entries(self, ticker: str) -> List[Tuple[str, int]]:
        """Return the (window, label) pairs present for a ticker, in window order."""
        row = self._table.loc[ticker]
        return [(window, int(label)) for window, label in row.items() if not pd.isna(label)]

    def to_long(self) -> pd.DataFrame:
        """Export as a {ticker, window, cluster_label} table of present entries."""
        long = self._table.reset_index().melt(
            id_vars="ticker", var_name="window", value_name="cluster_label"
        )
        long = long.dropna(subset=["cluster_label"]).reset_index(drop=True)
        return long.astype({"cluster_label": int})

    def __len__(self) -> int:
        return len(self._table)

    def __repr__(self) -> str:
        return f"WindowedClusterHistory({len(self)} tickers, {len(self.windows)} windows)"
