"""
Cluster engine.

Partitions tickers using either centroid clustering (k-means with random
restarts) or density-based hierarchical clustering (HDBSCAN) on a numeric
matrix with one row per ticker. Density clustering can also run on a
precomputed dynamic time warping distance matrix between standardized
series.

Labels follow one convention for both modes: 0 is noise (density mode only)
and genuine clusters are numbered from 1.
"""

from typing import Dict, Iterator, Optional, Tuple
import logging
import pandas as pd
import numpy as np
from sklearn.cluster import HDBSCAN, KMeans
from tslearn.metrics import cdist_dtw, dtw
from tslearn.utils import to_time_series_dataset
from stockclusters.config import PipelineConfig
from stockclusters.entities import ClusterAssignment, StandardizedSeries
from stockclusters.errors import InsufficientDataError

logger = logging.getLogger(__name__)


def _canonical_labels(raw: np.ndarray) -> np.ndarray:
    """
    Renumber clusters 1..m by order of first appearance; noise (-1) becomes 0.
    """
    mapping = {}
    labels = np.zeros(len(raw), dtype=int)
    for i, label in enumerate(raw):
        if label < 0:
            continue
        if label not in mapping:
            mapping[label] = len(mapping) + 1
        labels[i] = mapping[label]
    return labels


def kmeans_cluster(
    matrix: pd.DataFrame,
    k: int,
    n_init: int = 25,
    random_state: int = 42,
    window_label: Optional[str] = None
) -> ClusterAssignment:
    """
    Partition rows into k clusters minimizing within-cluster sum of squares.

    The best of n_init random restarts is kept. Cluster labels are numbered
    1..k by first appearance in row order, so identical input and seed give
    identical labels.

    Preconditions:
        - matrix has one row per ticker and only finite values
        - k >= 1, n_init >= 10

    Postconditions:
        - every ticker gets a label in 1..k
        - params["total_within_ss"] holds the total within-cluster sum of squares

    Args:
        matrix: Numeric matrix indexed by ticker
        k: Number of clusters
        n_init: Number of random restarts
        random_state: Seed for the restarts
        window_label: Window the assignment belongs to, if any

    Returns:
        ClusterAssignment

    Raises:
        InsufficientDataError: If there are fewer rows than k
    """
    if k < 1:
        raise ValueError("k must be at least 1")
    if n_init < 10:
        raise ValueError("n_init must be at least 10")
    if len(matrix) < k:
        raise InsufficientDataError(
            f"Insufficient population: {len(matrix)} tickers for k={k}"
        )

    model = KMeans(n_clusters=k, n_init=n_init, random_state=random_state)
    raw = model.fit_predict(matrix.to_numpy(dtype=float))

    labels = pd.Series(_canonical_labels(raw), index=matrix.index)
    return ClusterAssignment(
        labels,
        method="kmeans",
        params={
            "k": k,
            "n_init": n_init,
            "random_state": random_state,
            "total_within_ss": float(model.inertia_),
        },
        window_label=window_label,
    )


class ElbowScan:
    """
    Total within-cluster sum of squares for k = 1..k_max.

    A finite, restartable sequence of (k, total_within_ss) pairs: every
    iteration recomputes from k = 1, and k stops at the number of rows. No
    elbow is chosen here; picking k is left to the caller.
    """

    def __init__(
        self,
        matrix: pd.DataFrame,
        k_max: int = 15,
        n_init: int = 25,
        random_state: int = 42
    ):
        if k_max < 1:
            raise ValueError("k_max must be at least 1")
        self.matrix = matrix
        self.k_max = min(k_max, len(matrix))
        self.n_init = n_init
        self.random_state = random_state

    def __iter__(self) -> Iterator[Tuple[int, float]]:
        for k in range(1, self.k_max + 1):
            assignment = kmeans_cluster(
                self.matrix, k, n_init=self.n_init, random_state=self.random_state
            )
            yield k, assignment.params["total_within_ss"]

    def __len__(self) -> int:
        return self.k_max

    def to_frame(self) -> pd.DataFrame:
        """Evaluate the whole scan as a {k, total_within_ss} table."""
        return pd.DataFrame(list(self), columns=["k", "total_within_ss"])


def elbow_scan(
    matrix: pd.DataFrame,
    k_max: int = 15,
    n_init: int = 25,
    random_state: int = 42
) -> ElbowScan:
    """Return the (k, total_within_ss) scan over k = 1..k_max."""
    return ElbowScan(matrix, k_max=k_max, n_init=n_init, random_state=random_state)


def density_cluster(
    matrix: pd.DataFrame,
    min_cluster_size: int = 5,
    metric: str = "euclidean",
    window_label: Optional[str] = None
) -> ClusterAssignment:
    """
    Extract a flat clustering of maximal stability from an HDBSCAN hierarchy.

    Points that do not belong with enough confidence to any extracted
    cluster are labeled 0 (noise). No randomness is involved.

    Preconditions:
        - matrix has one row per ticker and only finite values
        - for metric="precomputed", matrix is a square, symmetric distance
          matrix with zero diagonal and matching index/columns
        - min_cluster_size >= 2

    Postconditions:
        - every ticker gets exactly one label; 0 is noise, clusters are 1..m
        - every non-noise cluster has at least min_cluster_size members

    Args:
        matrix: Numeric matrix (or distance matrix) indexed by ticker
        min_cluster_size: Smallest group HDBSCAN may report as a cluster
        metric: Distance metric, or "precomputed"
        window_label: Window the assignment belongs to, if any

    Returns:
        ClusterAssignment

    Raises:
        InsufficientDataError: If there are fewer rows than 2 * min_cluster_size
    """
    if min_cluster_size < 2:
        raise ValueError("min_cluster_size must be at least 2")
    if len(matrix) < 2 * min_cluster_size:
        raise InsufficientDataError(
            f"Insufficient population: {len(matrix)} tickers for "
            f"min_cluster_size={min_cluster_size}"
        )
    if metric == "precomputed" and matrix.shape[0] != matrix.shape[1]:
        raise ValueError("precomputed distance matrix must be square")

    model = HDBSCAN(min_cluster_size=min_cluster_size, metric=metric)
    raw = model.fit_predict(matrix.to_numpy(dtype=float))

    labels = pd.Series(_canonical_labels(raw), index=matrix.index)
    assignment = ClusterAssignment(
        labels,
        method="hdbscan",
        params={"min_cluster_size": min_cluster_size, "metric": metric},
        window_label=window_label,
    )
    logger.debug("HDBSCAN found %d clusters, %d noise", len(assignment.clusters()), assignment.n_noise)
    return assignment


def _normalize_dtw(distance: np.ndarray, n: np.ndarray, m: np.ndarray) -> np.ndarray:
    """Scale a warping cost so pairs of different lengths are comparable."""
    return distance / np.sqrt(n + m)


def _dtw_constraint(window: Optional[int]) -> dict:
    if window is None:
        return {}
    return {"global_constraint": "sakoe_chiba", "sakoe_chiba_radius": int(window)}


def dtw_distance(a: np.ndarray, b: np.ndarray, window: Optional[int] = None) -> float:
    """
    Length-normalized dynamic time warping distance between two series.

    The warping cost is tslearn's DTW (square root of the summed squared
    differences along the cheapest path), divided by sqrt(len(a) + len(b)).
    Two pairs with the same shape and offset therefore score the same
    whatever their length.

    Args:
        a: First series
        b: Second series
        window: Sakoe-Chiba radius; None for an unconstrained path.
            For unequal lengths the band is widened so a path exists.

    Returns:
        Normalized distance (inf if either series is empty)
    """
    a = np.asarray(a, dtype=float)
    b = np.asarray(b, dtype=float)
    if len(a) == 0 or len(b) == 0:
        return float("inf")
    cost = dtw(a.reshape(-1, 1), b.reshape(-1, 1), **_dtw_constraint(window))
    return float(_normalize_dtw(cost, len(a), len(b)))


def dtw_distance_matrix(
    standardized: Dict[str, StandardizedSeries],
    window: Optional[int] = None,
    n_jobs: Optional[int] = None
) -> pd.DataFrame:
    """
    Pairwise normalized DTW distances between the observed parts of standardized series.

    Series keep their own lengths (a late listing is compared over the
    dates it has); see dtw_distance for the normalization.

    Returns:
        Symmetric ticker x ticker DataFrame with zero diagonal
    """
    tickers = list(standardized)
    values = [standardized[t].observed().to_numpy(dtype=float) for t in tickers]
    if len(tickers) < 2:
        return pd.DataFrame(np.zeros((len(tickers), len(tickers))), index=tickers, columns=tickers)

    costs = cdist_dtw(to_time_series_dataset(values), n_jobs=n_jobs, **_dtw_constraint(window))
    lengths = np.array([len(v) for v in values], dtype=float)
    distances = _normalize_dtw(costs, lengths[:, None], lengths[None, :])
    np.fill_diagonal(distances, 0.0)
    logger.debug("DTW matrix over %d tickers (window=%s)", len(tickers), window)
    return pd.DataFrame(distances, index=tickers, columns=tickers)


def cluster_matrix(
    matrix: pd.DataFrame,
    config: PipelineConfig,
    window_label: Optional[str] = None
) -> ClusterAssignment:
    """
    Cluster a matrix with the method chosen in config.

    A DTW configuration expects matrix to be the precomputed distance matrix.
    """
    if config.method == "kmeans":
        return kmeans_cluster(
            matrix,
            config.n_clusters,
            n_init=config.n_init,
            random_state=config.random_state,
            window_label=window_label,
        )
    metric = "precomputed" if config.distance == "dtw" else "euclidean"
    return density_cluster(
        matrix,
        min_cluster_size=config.min_cluster_size,
        metric=metric,
        window_label=window_label,
    )
