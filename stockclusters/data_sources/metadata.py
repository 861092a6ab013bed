"""
Ticker metadata loading (company name, sector, subsector).
"""

from pathlib import Path
from typing import Union
import logging
import pandas as pd
from stockclusters.errors import DataError

logger = logging.getLogger(__name__)

REQUIRED_METADATA_COLUMNS = ["Symbol", "Sector"]


def load_ticker_metadata(path: Union[str, Path]) -> pd.DataFrame:
    """
    Load the constituent metadata table, indexed by ticker symbol.

    Duplicate symbols keep their first row.

    Raises:
        DataError: If the file cannot be read or lacks Symbol/Sector columns
    """
    try:
        table = pd.read_csv(path)
    except (OSError, pd.errors.ParserError, pd.errors.EmptyDataError) as e:
        raise DataError(f"Failed to read metadata table {path}: {e}") from e

    missing = [col for col in REQUIRED_METADATA_COLUMNS if col not in table.columns]
    if missing:
        raise DataError(f"Metadata table is missing columns: {', '.join(missing)}")

    table = table.dropna(subset=["Symbol"])
    table["Symbol"] = table["Symbol"].astype(str).str.strip()
    duplicated = table["Symbol"].duplicated(keep="first")
    if duplicated.any():
        logger.warning("dropped %d duplicate metadata symbols", int(duplicated.sum()))
        table = table[~duplicated]

    return table.set_index("Symbol")
