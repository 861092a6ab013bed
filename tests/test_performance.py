"""
Tests for cluster performance against a benchmark.

Tests cover:
- Active premium on literal returns
- CAPM regression statistics
- Per-cluster aggregation with missing tickers
- Windowed evaluation
"""

import pytest
import pandas as pd
import numpy as np
from stockclusters.analytics.performance import (
    active_premium,
    capm_statistics,
    evaluate_performance,
    evaluate_windowed_performance,
)
from stockclusters.entities import ClusterAssignment, Window


def create_market(seed: int = 42):
    """Helper to create two years of daily benchmark and constituent prices."""
    np.random.seed(seed)
    dates = pd.bdate_range("2021-01-01", "2022-12-31")
    n = len(dates)
    market = np.random.normal(0.0004, 0.01, n)
    benchmark = pd.Series(100 * np.cumprod(1 + market), index=dates, name="^GSPC")
    prices = pd.DataFrame({
        "BENCH": benchmark.values,
        "LEVER": 50 * np.cumprod(1 + 2 * market),
        "IDIO": 30 * np.cumprod(1 + np.random.normal(0.0002, 0.01, n)),
    }, index=dates)
    return prices, benchmark


class TestActivePremium:
    """Tests for active_premium."""

    def test_literal(self):
        """Test annualized asset minus annualized benchmark over three months."""
        index = pd.period_range("2023-01", periods=3, freq="M")
        asset = pd.Series([0.01, 0.02, -0.01], index=index)
        benchmark = pd.Series([0.0, 0.01, 0.0], index=index)

        expected = ((1.01 * 1.02 * 0.99) ** 4 - 1) - (1.01 ** 4 - 1)
        assert active_premium(asset, benchmark) == pytest.approx(expected)

    def test_only_common_periods(self):
        """Test that periods missing from either side are ignored."""
        index = pd.period_range("2023-01", periods=3, freq="M")
        asset = pd.Series([0.01, 0.02, -0.01], index=index)
        benchmark = pd.Series([0.0, 0.01], index=index[:2])

        expected = ((1.01 * 1.02) ** 6 - 1) - (1.01 ** 6 - 1)
        assert active_premium(asset, benchmark) == pytest.approx(expected)


class TestCAPMStatistics:
    """Tests for capm_statistics."""

    def test_leveraged_beta(self):
        """Test that returns exactly twice the benchmark give beta 2 and alpha 0."""
        index = pd.period_range("2022-01", periods=12, freq="M")
        np.random.seed(0)
        benchmark = pd.Series(np.random.normal(0.01, 0.04, 12), index=index)

        stats = capm_statistics(2 * benchmark, benchmark)

        assert stats.n_observations == 12
        assert stats.beta == pytest.approx(2.0)
        assert stats.alpha == pytest.approx(0.0, abs=1e-12)
        assert stats.r_squared == pytest.approx(1.0)
        assert stats.tracking_error > 0

    def test_too_few_observations(self):
        """Test that a short overlap gives NaN regression statistics."""
        index = pd.period_range("2022-01", periods=2, freq="M")
        benchmark = pd.Series([0.01, 0.02], index=index)

        stats = capm_statistics(benchmark * 1.5, benchmark)

        assert stats.n_observations == 2
        assert np.isnan(stats.beta)
        assert np.isnan(stats.alpha)
        assert not np.isnan(stats.active_premium)

    def test_empty_returns(self):
        """Test that no overlap gives NaN everywhere without raising."""
        empty = pd.Series(dtype=float, index=pd.PeriodIndex([], freq="M"))
        stats = capm_statistics(empty, empty)

        assert stats.n_observations == 0
        assert np.isnan(stats.active_premium)
        assert np.isnan(stats.tracking_error)


class TestEvaluatePerformance:
    """Tests for evaluate_performance."""

    def create_assignment(self) -> ClusterAssignment:
        labels = pd.Series([1, 1, 2, 2], index=["BENCH", "LEVER", "IDIO", "GONE"])
        return ClusterAssignment(labels, "kmeans", window_label="2021-2022")

    def test_ticker_stats(self):
        """Test per-ticker statistics, including the benchmark against itself."""
        prices, benchmark = create_market()
        report = evaluate_performance(self.create_assignment(), prices, benchmark)

        stats = report.ticker_stats
        assert list(stats.index) == ["BENCH", "LEVER", "IDIO", "GONE"]
        assert stats.loc["BENCH", "beta"] == pytest.approx(1.0)
        assert stats.loc["BENCH", "active_premium"] == pytest.approx(0.0, abs=1e-12)
        assert stats.loc["LEVER", "beta"] > 1.5
        assert stats.loc["BENCH", "n_observations"] == 24
        assert report.window_label == "2021-2022"

    def test_missing_ticker_is_nan(self):
        """Test that a ticker without prices gets NaN and does not affect medians."""
        prices, benchmark = create_market()
        report = evaluate_performance(self.create_assignment(), prices, benchmark)

        stats = report.ticker_stats
        assert np.isnan(stats.loc["GONE", "active_premium"])

        summary = report.cluster_summary
        assert summary.loc[2, "n_tickers"] == 2
        assert summary.loc[2, "n_evaluated"] == 1
        assert summary.loc[2, "median_active_premium"] == pytest.approx(stats.loc["IDIO", "active_premium"])
        assert summary.loc[1, "median_active_premium"] == pytest.approx(
            stats.loc[["BENCH", "LEVER"], "active_premium"].mean()
        )

    def test_records(self):
        """Test the long monthly records table."""
        prices, benchmark = create_market()
        report = evaluate_performance(
            self.create_assignment(), prices, benchmark, start="2022-01-01", end="2023-01-01"
        )

        records = report.records
        assert list(records.columns) == ["ticker", "cluster", "period", "return", "active_premium"]
        assert set(records["ticker"]) == {"BENCH", "LEVER", "IDIO"}
        assert len(records) == 36
        assert records["period"].iloc[0] == "2022-01"

    def test_cluster_returns(self):
        """Test that cluster returns are equal-weight means of members."""
        prices, benchmark = create_market()
        report = evaluate_performance(self.create_assignment(), prices, benchmark)

        expected = report.records.query("cluster == 1").groupby("period")["return"].mean()
        np.testing.assert_allclose(report.cluster_returns[1].values, expected.values)

    def test_empty_assignment(self):
        """Test that an assignment without tickers gives empty tables."""
        prices, benchmark = create_market()
        empty = ClusterAssignment(pd.Series([], dtype=int), "hdbscan")

        report = evaluate_performance(empty, prices, benchmark)

        assert report.ticker_stats.empty
        assert "active_premium" in report.ticker_stats.columns
        assert report.cluster_summary.empty
        assert "median_active_premium" in report.cluster_summary.columns
        assert report.records.empty


class TestEvaluateWindowedPerformance:
    """Tests for evaluate_windowed_performance."""

    def test_each_window_uses_own_range(self):
        """Test that windows are evaluated over their own dates and missing ones skipped."""
        prices, benchmark = create_market()
        windows = [
            Window("2021", pd.Timestamp("2021-01-01"), pd.Timestamp("2022-01-01")),
            Window("2022", pd.Timestamp("2022-01-01"), pd.Timestamp("2023-01-01")),
            Window("2023", pd.Timestamp("2023-01-01"), pd.Timestamp("2024-01-01")),
        ]
        labels = pd.Series([1, 2], index=["BENCH", "LEVER"])
        assignments = {
            "2021": ClusterAssignment(labels, "kmeans", window_label="2021"),
            "2022": ClusterAssignment(labels, "kmeans", window_label="2022"),
        }

        reports = evaluate_windowed_performance(assignments, windows, prices, benchmark)

        assert set(reports) == {"2021", "2022"}
        assert reports["2022"].start == pd.Timestamp("2022-01-01")
        assert reports["2021"].ticker_stats.loc["BENCH", "n_observations"] == 12
