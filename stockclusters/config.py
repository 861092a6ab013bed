"""
Pipeline configuration.

A single frozen PipelineConfig is passed explicitly through every stage;
YAML files may override any of its defaults.
"""

from dataclasses import dataclass, fields, replace as dataclass_replace
from pathlib import Path
from typing import Optional, Union
import yaml
from stockclusters.errors import ConfigError


METHODS = ("kmeans", "hdbscan")
DISTANCES = ("features", "dtw")


@dataclass(frozen=True)
class PipelineConfig:
    """
    Parameters for one run of the clustering pipeline.

    Attributes:
        method: "kmeans" (centroid mode) or "hdbscan" (density mode)
        distance: "features" to cluster feature vectors, "dtw" to run density
            clustering over dynamic time warping distances
        n_clusters: k for centroid mode
        min_cluster_size: Minimum cluster size for density mode
        n_init: Random restarts for centroid mode
        random_state: Seed for centroid mode
        use_pca: Project standardized features onto principal components
        variance_threshold: Cumulative explained variance to retain
        near_constant_tol: Relative std below which a feature column is dropped
        min_series_length: Minimum observations for feature extraction
        window_years: Length of each sliding window in calendar years
        step_years: Step between consecutive windows in calendar years
        k_max: Largest k evaluated by the elbow scan
        dtw_window: Sakoe-Chiba band half width for DTW (None for unbounded)
        benchmark: Benchmark index symbol

    Representation Invariants:
        - method in METHODS, distance in DISTANCES
        - n_clusters >= 1, min_cluster_size >= 2, n_init >= 10
        - 0 < variance_threshold <= 1
        - window_years >= 1, step_years >= 1, k_max >= 1
        - distance == "dtw" only with method == "hdbscan"
    """
    method: str = "kmeans"
    distance: str = "features"
    n_clusters: int = 4
    min_cluster_size: int = 5
    n_init: int = 25
    random_state: int = 42
    use_pca: bool = True
    variance_threshold: float = 0.95
    near_constant_tol: float = 1e-8
    min_series_length: int = 60
    window_years: int = 3
    step_years: int = 1
    k_max: int = 15
    dtw_window: Optional[int] = None
    benchmark: str = "^GSPC"

    def __post_init__(self):
        """Validate representation invariants."""
        if self.method not in METHODS:
            raise ValueError(f"invalid method: {self.method}")
        if self.distance not in DISTANCES:
            raise ValueError(f"invalid distance: {self.distance}")
        if self.distance == "dtw" and self.method != "hdbscan":
            raise ValueError("dtw distance requires method 'hdbscan'")
        if self.n_clusters < 1:
            raise ValueError("n_clusters must be at least 1")
        if self.min_cluster_size < 2:
            raise ValueError("min_cluster_size must be at least 2")
        if self.n_init < 10:
            raise ValueError("n_init must be at least 10")
        if not 0 < self.variance_threshold <= 1:
            raise ValueError("variance_threshold must be in (0, 1]")
        if self.near_constant_tol < 0:
            raise ValueError("near_constant_tol must be non-negative")
        if self.min_series_length < 20:
            raise ValueError("min_series_length must be at least 20")
        if self.window_years < 1 or self.step_years < 1:
            raise ValueError("window_years and step_years must be at least 1")
        if self.k_max < 1:
            raise ValueError("k_max must be at least 1")
        if self.dtw_window is not None and self.dtw_window < 0:
            raise ValueError("dtw_window must be non-negative")

    def replace(self, **overrides) -> "PipelineConfig":
        """Return a new config with the given fields overridden."""
        return dataclass_replace(self, **overrides)


def load_config(path: Union[str, Path], **overrides) -> PipelineConfig:
    """
    Load a PipelineConfig from a YAML file.

    Keys in the file override the defaults; keyword overrides (ignored when
    None) take precedence over the file.

    Raises:
        ConfigError: If the file cannot be read, is not a mapping, contains
            unknown keys or invalid values
    """
    path = Path(path)
    try:
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Failed to read config file {path}: {e}") from e

    if not isinstance(raw, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")

    known = {f.name for f in fields(PipelineConfig)}
    unknown = sorted(set(raw) - known)
    if unknown:
        raise ConfigError(f"Unknown config keys: {', '.join(unknown)}")

    raw.update({k: v for k, v in overrides.items() if v is not None})
    try:
        return PipelineConfig(**raw)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid config in {path}: {e}") from e
