"""
Price data loading and benchmark download.

Constituent prices arrive as a long CSV table produced by an external
acquisition step (one row per ticker and trading day). Benchmark index prices
are downloaded from yfinance on demand, with caching to avoid repeated
network calls.
"""

from datetime import date, datetime
from pathlib import Path
from typing import Dict, Optional, Union
import logging
import pandas as pd
import yfinance as yf
from stockclusters.cache import DataCache
from stockclusters.entities import TickerSeries
from stockclusters.errors import DataError

logger = logging.getLogger(__name__)

PRICE_COLUMNS = [
    "ticker", "ref.date", "price.open", "price.high", "price.low", "price.close",
    "volume", "price.adjusted", "ret.adjusted.prices", "ret.closing.prices",
]
REQUIRED_PRICE_COLUMNS = ["ticker", "ref.date", "price.adjusted"]


def load_price_table(path: Union[str, Path]) -> pd.DataFrame:
    """
    Load the long-format daily price table.

    Preconditions:
        - path points to a comma-separated file with a header row
        - the file has at least the columns ticker, ref.date, price.adjusted

    Postconditions:
        - ref.date is parsed to datetime
        - rows are sorted by (ticker, ref.date)
        - rows with a missing ticker, date or adjusted price are dropped

    Args:
        path: Path to the CSV file

    Returns:
        DataFrame with the columns present in the file

    Raises:
        DataError: If the file cannot be read or required columns are missing
    """
    try:
        table = pd.read_csv(path)
    except (OSError, pd.errors.ParserError, pd.errors.EmptyDataError) as e:
        raise DataError(f"Failed to read price table {path}: {e}") from e

    missing = [col for col in REQUIRED_PRICE_COLUMNS if col not in table.columns]
    if missing:
        raise DataError(f"Price table is missing columns: {', '.join(missing)}")

    table["ref.date"] = pd.to_datetime(table["ref.date"])
    before = len(table)
    table = table.dropna(subset=REQUIRED_PRICE_COLUMNS)
    if len(table) < before:
        logger.warning("dropped %d price rows with missing values", before - len(table))

    if table.empty:
        raise DataError(f"Price table {path} contains no usable rows")

    return table.sort_values(["ticker", "ref.date"], kind="stable").reset_index(drop=True)


def ticker_series_from_table(table: pd.DataFrame) -> Dict[str, TickerSeries]:
    """
    Build one TickerSeries per ticker from the long price table.

    Duplicate (ticker, date) rows keep their first occurrence, as enforced by
    TickerSeries.

    Args:
        table: Long table as returned by load_price_table

    Returns:
        Dict of ticker -> TickerSeries, in sorted ticker order
    """
    series = {}
    for ticker, rows in table.groupby("ticker", sort=True):
        prices = pd.Series(rows["price.adjusted"].to_numpy(), index=rows["ref.date"])
        series[ticker] = TickerSeries(str(ticker), prices)
        n_duplicates = len(rows) - len(series[ticker])
        if n_duplicates:
            logger.warning("ticker %s: dropped %d duplicate dates", ticker, n_duplicates)
    return series


def frame_from_ticker_series(series: Dict[str, TickerSeries]) -> pd.DataFrame:
    """
    Align TickerSeries into a wide date x ticker frame.

    Dates a ticker did not trade are NaN; no filling happens here.

    Returns:
        DataFrame indexed by date (sorted), one column per ticker (sorted)
    """
    if not series:
        raise DataError("no ticker series to align")
    frame = pd.concat({ticker: s.prices for ticker, s in series.items()}, axis=1)
    frame.index = pd.DatetimeIndex(frame.index, name="date")
    return frame.sort_index().sort_index(axis=1).astype(float)


def adjusted_close_frame(table: pd.DataFrame) -> pd.DataFrame:
    """
    Pivot the long price table into a wide date x ticker frame.

    Args:
        table: Long table as returned by load_price_table

    Returns:
        DataFrame indexed by date (sorted), one column per ticker (sorted)
    """
    return frame_from_ticker_series(ticker_series_from_table(table))


def get_benchmark_prices(
    symbol: str,
    start: Union[str, date, datetime],
    end: Union[str, date, datetime],
    cache: Optional[DataCache] = None,
    use_cache: bool = True
) -> pd.Series:
    """
    Download daily close prices for a benchmark index.

    yfinance history is split- and dividend-adjusted by default, matching the
    adjusted prices of the constituent table.

    Preconditions:
        - symbol is a non-empty yfinance symbol (e.g., "^GSPC")
        - start < end
        - If cache is provided, it's a valid DataCache instance

    Postconditions:
        - Returns a Series of close prices indexed by timezone-naive dates
        - Dates are sorted in ascending order without duplicates

    Args:
        symbol: Index or ETF symbol
        start: Start date (string "YYYY-MM-DD" or date/datetime)
        end: End date (exclusive)
        cache: Optional DataCache instance for caching
        use_cache: Whether to use cache if available

    Returns:
        Series of daily close prices named after the symbol

    Raises:
        DataError: If the download fails or returns empty data
    """
    if not symbol:
        raise ValueError("symbol cannot be empty")

    start_str = start.strftime("%Y-%m-%d") if isinstance(start, (date, datetime)) else str(start)
    end_str = end.strftime("%Y-%m-%d") if isinstance(end, (date, datetime)) else str(end)

    query_params = {"symbol": symbol, "start": start_str, "end": end_str, "interval": "1d"}

    if use_cache and cache is not None:
        cached = cache.get(query_params)
        if cached is not None:
            return cached

    try:
        history = yf.Ticker(symbol).history(start=start_str, end=end_str, interval="1d")
    except Exception as e:
        raise DataError(f"Failed to download benchmark data for {symbol}: {e}") from e

    if history is None or history.empty or "Close" not in history.columns:
        raise DataError(f"No data returned for {symbol}")

    prices = history["Close"].astype(float)
    index = pd.DatetimeIndex(prices.index)
    if index.tz is not None:
        index = index.tz_localize(None)
    prices.index = index.normalize()
    prices = prices[~prices.index.duplicated(keep="first")].sort_index()
    prices.name = symbol

    if cache is not None:
        cache.set(query_params, prices)

    return prices
