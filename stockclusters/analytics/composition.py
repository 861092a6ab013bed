"""
Sector composition of clusters.

Joins a ClusterAssignment with the ticker metadata table to see whether
clusters line up with business sectors.
"""

import logging
import pandas as pd
from stockclusters.entities import ClusterAssignment
from stockclusters.errors import MissingJoinKeyError

logger = logging.getLogger(__name__)


def sector_composition(
    assignment: ClusterAssignment,
    metadata: pd.DataFrame,
    column: str = "Sector"
) -> pd.DataFrame:
    """
    Count tickers per (cluster, sector).

    Tickers absent from the metadata are excluded from the counts and logged.

    Preconditions:
        - metadata is indexed by ticker symbol

    Args:
        assignment: ClusterAssignment to describe
        metadata: Metadata table as returned by load_ticker_metadata
        column: Metadata column to group by (e.g. "Sector" or "Subsector")

    Returns:
        DataFrame indexed by cluster label with one column per sector

    Raises:
        MissingJoinKeyError: If column is not in the metadata table
    """
    if column not in metadata.columns:
        raise MissingJoinKeyError(f"metadata has no column {column}")

    labels = assignment.labels
    known = labels.index.isin(metadata.index)
    if not known.all():
        missing = list(labels.index[~known])
        logger.warning("%d tickers missing from metadata: %s", len(missing), ", ".join(missing))
    labels = labels[known]

    sectors = metadata.loc[labels.index, column].fillna("Unknown")
    table = pd.crosstab(labels.values, sectors.values)
    table.index.name = "cluster"
    table.columns.name = column
    return table


def dominant_sectors(composition: pd.DataFrame) -> pd.DataFrame:
    """
    Most frequent sector per cluster and its share of the cluster.

    Ties go to the alphabetically first sector.
    """
    rows = []
    for label, counts in composition.iterrows():
        total = counts.sum()
        if total == 0:
            continue
        ordered = counts.sort_index()
        top = ordered.idxmax()
        rows.append({
            "cluster": label,
            "sector": top,
            "count": int(ordered[top]),
            "share": float(ordered[top] / total),
        })
    return pd.DataFrame(rows, columns=["cluster", "sector", "count", "share"]).set_index("cluster")
