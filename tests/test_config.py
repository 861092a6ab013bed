"""
Tests for pipeline configuration.

Tests cover:
- Defaults and validation
- YAML loading and overrides
"""

import pytest
from stockclusters.config import PipelineConfig, load_config
from stockclusters.errors import ConfigError


class TestPipelineConfig:
    """Tests for PipelineConfig."""

    def test_defaults(self):
        """Test default parameter values."""
        config = PipelineConfig()
        assert config.method == "kmeans"
        assert config.n_clusters == 4
        assert config.min_cluster_size == 5
        assert config.variance_threshold == 0.95
        assert config.window_years == 3

    def test_dtw_requires_density(self):
        """Test that DTW distances are only allowed with hdbscan."""
        with pytest.raises(ValueError, match="requires method"):
            PipelineConfig(method="kmeans", distance="dtw")
        assert PipelineConfig(method="hdbscan", distance="dtw").distance == "dtw"

    def test_invalid_values_raise(self):
        """Test that out-of-range values are rejected."""
        with pytest.raises(ValueError, match="min_cluster_size"):
            PipelineConfig(min_cluster_size=1)
        with pytest.raises(ValueError, match="n_init"):
            PipelineConfig(n_init=5)
        with pytest.raises(ValueError, match="variance_threshold"):
            PipelineConfig(variance_threshold=0.0)
        with pytest.raises(ValueError, match="invalid method"):
            PipelineConfig(method="dbscan")

    def test_replace_returns_new_config(self):
        """Test that replace leaves the original untouched."""
        config = PipelineConfig()
        other = config.replace(n_clusters=7)
        assert other.n_clusters == 7
        assert config.n_clusters == 4


class TestLoadConfig:
    """Tests for load_config."""

    def test_load_yaml(self, tmp_path):
        """Test that file keys override defaults."""
        path = tmp_path / "config.yaml"
        path.write_text("method: hdbscan\nmin_cluster_size: 8\nwindow_years: 2\n")

        config = load_config(path)

        assert config.method == "hdbscan"
        assert config.min_cluster_size == 8
        assert config.window_years == 2
        assert config.n_clusters == 4

    def test_overrides_take_precedence(self, tmp_path):
        """Test that keyword overrides win and None overrides are ignored."""
        path = tmp_path / "config.yaml"
        path.write_text("n_clusters: 6\nwindow_years: 2\n")

        config = load_config(path, n_clusters=3, window_years=None)

        assert config.n_clusters == 3
        assert config.window_years == 2

    def test_empty_file_gives_defaults(self, tmp_path):
        """Test that an empty file yields the default config."""
        path = tmp_path / "config.yaml"
        path.write_text("")
        assert load_config(path) == PipelineConfig()

    def test_unknown_key_raises(self, tmp_path):
        """Test that unknown keys are rejected."""
        path = tmp_path / "config.yaml"
        path.write_text("n_clusters: 3\nlinkage: ward\n")
        with pytest.raises(ConfigError, match="Unknown config keys: linkage"):
            load_config(path)

    def test_invalid_value_raises(self, tmp_path):
        """Test that invalid values surface as ConfigError."""
        path = tmp_path / "config.yaml"
        path.write_text("min_cluster_size: 1\n")
        with pytest.raises(ConfigError, match="min_cluster_size"):
            load_config(path)

    def test_non_mapping_raises(self, tmp_path):
        """Test that a YAML list is rejected."""
        path = tmp_path / "config.yaml"
        path.write_text("- kmeans\n- hdbscan\n")
        with pytest.raises(ConfigError, match="mapping"):
            load_config(path)

    def test_missing_file_raises(self, tmp_path):
        """Test that a missing file raises ConfigError."""
        with pytest.raises(ConfigError, match="Failed to read"):
            load_config(tmp_path / "missing.yaml")
