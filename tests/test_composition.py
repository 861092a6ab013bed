"""
Tests for sector composition of clusters.
"""

import pytest
import pandas as pd
from stockclusters.analytics.composition import dominant_sectors, sector_composition
from stockclusters.entities import ClusterAssignment
from stockclusters.errors import MissingJoinKeyError


def create_metadata() -> pd.DataFrame:
    """Helper to create a metadata table indexed by symbol."""
    return pd.DataFrame({
        "Symbol": ["AAPL", "MSFT", "XOM", "CVX", "JPM"],
        "Sector": ["Information Technology", "Information Technology", "Energy", "Energy", "Financials"],
    }).set_index("Symbol")


class TestSectorComposition:
    """Tests for sector_composition and dominant_sectors."""

    def test_counts(self):
        """Test ticker counts per (cluster, sector), skipping unknown tickers."""
        labels = pd.Series([1, 1, 2, 2, 2, 0], index=["AAPL", "MSFT", "XOM", "CVX", "JPM", "NEW"])
        composition = sector_composition(ClusterAssignment(labels, "hdbscan"), create_metadata())

        assert composition.index.name == "cluster"
        assert list(composition.index) == [1, 2]
        assert composition.loc[1, "Information Technology"] == 2
        assert composition.loc[2, "Energy"] == 2
        assert composition.loc[2, "Financials"] == 1
        assert composition.values.sum() == 5

    def test_dominant_sector(self):
        """Test the most frequent sector per cluster and its share."""
        labels = pd.Series([1, 1, 2, 2, 2], index=["AAPL", "MSFT", "XOM", "CVX", "JPM"])
        dominant = dominant_sectors(sector_composition(ClusterAssignment(labels, "kmeans"), create_metadata()))

        assert dominant.loc[1, "sector"] == "Information Technology"
        assert dominant.loc[1, "share"] == 1.0
        assert dominant.loc[2, "sector"] == "Energy"
        assert dominant.loc[2, "share"] == pytest.approx(2 / 3)

    def test_tie_goes_to_first_sector(self):
        """Test that equal counts resolve alphabetically."""
        labels = pd.Series([1, 1], index=["XOM", "JPM"])
        dominant = dominant_sectors(sector_composition(ClusterAssignment(labels, "kmeans"), create_metadata()))
        assert dominant.loc[1, "sector"] == "Energy"

    def test_missing_column_raises(self):
        """Test that an unknown grouping column is rejected."""
        labels = pd.Series([1], index=["AAPL"])
        with pytest.raises(MissingJoinKeyError, match="Subsector"):
            sector_composition(ClusterAssignment(labels, "kmeans"), create_metadata(), column="Subsector")
