"""
Tests for price normalization.

Tests cover:
- Shared calendar construction
- Carry-down of missing prices
- Z-scoring over the observed range
- Exclusion of degenerate tickers
"""

import pytest
import pandas as pd
import numpy as np
from stockclusters.analytics.normalize import (
    build_calendar,
    carry_down,
    normalize_prices,
    standardize,
)
from stockclusters.errors import DegenerateSeriesError


def create_frame():
    """Helper to create a small wide price frame with a late listing and a gap."""
    dates = pd.date_range("2023-01-02", periods=6, freq="B")
    return pd.DataFrame({
        "AAPL": [10.0, 11.0, np.nan, 13.0, 14.0, 15.0],
        "LATE": [np.nan, np.nan, 5.0, 6.0, np.nan, 8.0],
    }, index=dates)


class TestCalendar:
    """Tests for calendar construction and carry-down."""

    def test_calendar_is_union_of_dates(self):
        """Test that the calendar covers every date with any price."""
        frame = create_frame()
        frame.loc[pd.Timestamp("2023-01-10")] = [np.nan, np.nan]
        calendar = build_calendar(frame)

        assert len(calendar) == 6
        assert pd.Timestamp("2023-01-10") not in calendar
        assert calendar.is_monotonic_increasing

    def test_carry_down_fills_forward_only(self):
        """Test that gaps take the last known price and leading dates stay missing."""
        frame = create_frame()
        calendar = build_calendar(frame)

        late = carry_down(frame["LATE"], calendar)

        assert late.isna().sum() == 2
        assert late.iloc[2] == 5.0
        assert late.iloc[4] == 6.0
        assert late.index.equals(calendar)


class TestStandardize:
    """Tests for standardize function."""

    def test_mean_zero_std_one(self):
        """Test that observed values have mean 0 and population std 1."""
        series = pd.Series([1.0, 2.0, 3.0, 4.0, 10.0], name="AAPL")
        result = standardize(series)

        assert result.ticker == "AAPL"
        assert abs(result.values.mean()) < 1e-12
        assert abs(result.values.std(ddof=0) - 1.0) < 1e-12
        assert result.mean == pytest.approx(4.0)

    def test_leading_gap_preserved(self):
        """Test that missing values stay missing."""
        series = pd.Series([np.nan, 1.0, 3.0])
        result = standardize(series, ticker="X")

        assert np.isnan(result.values.iloc[0])
        np.testing.assert_allclose(result.values.iloc[1:].values, [-1.0, 1.0])

    def test_constant_series_raises(self):
        """Test that a zero-variance series is rejected."""
        with pytest.raises(DegenerateSeriesError, match="zero price variance"):
            standardize(pd.Series([5.0] * 10), ticker="FLAT")

    def test_empty_series_raises(self):
        """Test that a series without observations is rejected."""
        with pytest.raises(DegenerateSeriesError, match="no observations"):
            standardize(pd.Series([np.nan, np.nan]), ticker="EMPTY")


class TestNormalizePrices:
    """Tests for batch normalization."""

    def test_excludes_degenerate_tickers(self):
        """Test that constant tickers are reported, not fatal."""
        frame = create_frame()
        frame["FLAT"] = 7.0

        standardized, excluded = normalize_prices(frame)

        assert set(standardized) == {"AAPL", "LATE"}
        assert excluded == ["FLAT"]

    def test_standardized_on_shared_calendar(self):
        """Test that every series is aligned to the same calendar."""
        standardized, _ = normalize_prices(create_frame())

        assert standardized["AAPL"].values.index.equals(standardized["LATE"].values.index)
        assert len(standardized["LATE"]) == 4
