"""
Tests for the command-line interface.

Tests cover:
- cluster and elbow commands on a generated price table
- Exit status on errors
"""

import pytest
import pandas as pd
import numpy as np
from stockclusters.cli import main


def write_long_prices(path, n_days: int = 300, seed: int = 42):
    """Helper to write a long price table for four trending and four oscillating tickers."""
    np.random.seed(seed)
    dates = pd.bdate_range("2020-01-01", periods=n_days)
    t = np.arange(n_days)
    rows = []
    for i in range(4):
        trend = 50 + (0.1 + 0.02 * i) * t + np.random.normal(0, 0.3, n_days)
        wave = 100 + 10 * np.sin(2 * np.pi * t / 60 + 0.3 * i) + np.random.normal(0, 0.3, n_days)
        for ticker, values in ((f"LIN{i}", trend), (f"SIN{i}", wave)):
            rows.append(pd.DataFrame({"ticker": ticker, "ref.date": dates, "price.adjusted": values}))
    pd.concat(rows).to_csv(path, index=False)
    return path


class TestCLI:
    """Tests for main()."""

    def test_cluster_command(self, tmp_path, capsys):
        """Test that the cluster command writes one label per ticker."""
        prices = write_long_prices(tmp_path / "prices.csv")
        output = tmp_path / "labels.csv"

        main(["cluster", str(prices), "--k", "2", "--output", str(output)])

        labels = pd.read_csv(output)
        assert list(labels.columns) == ["ticker", "cluster_label"]
        assert len(labels) == 8
        assert set(labels["cluster_label"]) == {1, 2}
        assert "ClusterAssignment(kmeans" in capsys.readouterr().out

    def test_elbow_command(self, tmp_path):
        """Test that the elbow command writes k = 1..k_max."""
        prices = write_long_prices(tmp_path / "prices.csv")
        output = tmp_path / "elbow.csv"

        main(["elbow", str(prices), "--k-max", "4", "--output", str(output)])

        table = pd.read_csv(output)
        assert list(table["k"]) == [1, 2, 3, 4]

    def test_config_file(self, tmp_path):
        """Test that a YAML config is applied."""
        prices = write_long_prices(tmp_path / "prices.csv")
        config = tmp_path / "config.yaml"
        config.write_text("method: hdbscan\nmin_cluster_size: 3\n")
        output = tmp_path / "labels.csv"

        main(["--config", str(config), "cluster", str(prices), "--output", str(output)])

        assert len(pd.read_csv(output)) == 8

    def test_missing_file_exits(self, tmp_path, capsys):
        """Test that a data error exits with status 1."""
        with pytest.raises(SystemExit) as excinfo:
            main(["cluster", str(tmp_path / "missing.csv")])

        assert excinfo.value.code == 1
        assert "Error" in capsys.readouterr().err

    def test_no_command_exits(self):
        """Test that running without a command exits with status 1."""
        with pytest.raises(SystemExit) as excinfo:
            main([])
        assert excinfo.value.code == 1
