"""
Tests for returns computation and annualization.

Tests cover:
- Simple return computation
- Month-end returns anchored at the first price in range
- Geometric annualization
- Series alignment
"""

import pytest
import pandas as pd
import numpy as np
from stockclusters.analytics.returns import (
    align_returns,
    annualized_return,
    compute_returns,
    monthly_returns,
    restrict_range,
)


class TestComputeReturns:
    """Tests for compute_returns function."""

    def test_simple_returns_basic(self):
        """Test simple returns on simple price series."""
        prices = pd.Series([100, 110, 121, 110], index=pd.date_range("2023-01-01", periods=4))
        returns = compute_returns(prices)

        assert pd.isna(returns.iloc[0])
        assert abs(returns.iloc[1] - 0.1) < 1e-6

    def test_returns_zero_prices_raises(self):
        """Test that zero prices raise ValueError."""
        prices = pd.Series([100, 0], index=pd.date_range("2023-01-01", periods=2))
        with pytest.raises(ValueError, match="prices must be positive"):
            compute_returns(prices)

    def test_returns_non_series_raises(self):
        """Test that a plain list is rejected."""
        with pytest.raises(TypeError):
            compute_returns([100, 110])


class TestMonthlyReturns:
    """Tests for monthly_returns function."""

    def create_prices(self) -> pd.Series:
        """Helper: 10% per month, first price mid-January."""
        dates = pd.to_datetime(["2023-01-16", "2023-01-31", "2023-02-15", "2023-02-28", "2023-03-31"])
        return pd.Series([100.0, 110.0, 115.0, 121.0, 133.1], index=dates, name="AAPL")

    def test_first_month_from_first_price(self):
        """Test that the partial first month is measured from the first price."""
        returns = monthly_returns(self.create_prices())

        assert list(returns.index.astype(str)) == ["2023-01", "2023-02", "2023-03"]
        assert returns.index.name == "period"
        assert returns.name == "AAPL"
        np.testing.assert_allclose(returns.values, [0.1, 0.1, 0.1])

    def test_range_restriction(self):
        """Test that start is inclusive, end exclusive, and re-anchors the first month."""
        returns = monthly_returns(self.create_prices(), start="2023-02-01", end="2023-03-31")

        assert list(returns.index.astype(str)) == ["2023-02"]
        assert returns.iloc[0] == pytest.approx(121.0 / 115.0 - 1)

    def test_empty_range(self):
        """Test that a range without prices yields an empty series."""
        returns = monthly_returns(self.create_prices(), start="2024-01-01")
        assert returns.empty
        assert isinstance(returns.index, pd.PeriodIndex)

    def test_missing_prices_ignored(self):
        """Test that NaN prices do not break the month-end selection."""
        prices = self.create_prices()
        prices.iloc[1] = np.nan

        returns = monthly_returns(prices)

        # January's last valid price is the first one
        assert returns.iloc[0] == 0.0

    def test_non_positive_raises(self):
        """Test that non-positive prices raise ValueError."""
        prices = self.create_prices()
        prices.iloc[2] = 0.0
        with pytest.raises(ValueError, match="prices must be positive"):
            monthly_returns(prices)


class TestAnnualizedReturn:
    """Tests for annualized_return function."""

    def test_geometric(self):
        """Test geometric annualization over three months."""
        returns = pd.Series([0.01, 0.02, -0.01])
        expected = (1.01 * 1.02 * 0.99) ** 4 - 1
        assert annualized_return(returns) == pytest.approx(expected)

    def test_full_year(self):
        """Test that twelve months compound exactly once."""
        assert annualized_return(pd.Series([0.01] * 12)) == pytest.approx(1.01 ** 12 - 1)

    def test_empty_is_nan(self):
        """Test that no returns give NaN."""
        assert np.isnan(annualized_return(pd.Series([], dtype=float)))
        assert np.isnan(annualized_return(pd.Series([np.nan, np.nan])))

    def test_total_loss(self):
        """Test that a wipeout annualizes to -100%."""
        assert annualized_return(pd.Series([-1.0, 0.1])) == -1.0


class TestAlignment:
    """Tests for restrict_range and align_returns."""

    def test_restrict_range_half_open(self):
        """Test that start is kept and end dropped."""
        series = pd.Series(range(5), index=pd.date_range("2023-01-01", periods=5))
        restricted = restrict_range(series, "2023-01-02", "2023-01-04")
        assert list(restricted.values) == [1, 2]

    def test_align_common_periods(self):
        """Test alignment drops periods either series lacks."""
        index = pd.period_range("2023-01", periods=4, freq="M")
        a = pd.Series([0.1, 0.2, np.nan, 0.4], index=index)
        b = pd.Series([0.0, 0.1, 0.2], index=index[1:])

        asset, benchmark = align_returns(a, b)

        assert list(asset.index.astype(str)) == ["2023-02", "2023-04"]
        assert list(benchmark.values) == [0.0, 0.2]
