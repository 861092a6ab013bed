"""
Feature preprocessing: population-level standardization and PCA.

The fitted state is an explicit FittedPreprocessor value. It is fitted once
on a reference population and passed to later stages, so windowed
sub-populations are projected with the same scaling and the same principal
axes instead of being refitted.
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence
import logging
import pandas as pd
import numpy as np
from sklearn.decomposition import PCA
from sklearn.preprocessing import StandardScaler
from stockclusters.errors import (
    InsufficientDataError,
    MissingJoinKeyError,
    NumericInstabilityError,
)

logger = logging.getLogger(__name__)


def near_constant_columns(features: pd.DataFrame, tol: float = 1e-8) -> List[str]:
    """
    Return the feature columns that are effectively constant across tickers.

    A column is near-constant when its population standard deviation is at
    most tol * max(1, |mean|).
    """
    std = features.std(ddof=0)
    scale = np.maximum(1.0, features.mean().abs())
    return list(features.columns[(std <= tol * scale).values])


def choose_n_components(explained_variance_ratio: Sequence[float], threshold: float = 0.95) -> int:
    """
    Smallest number of components whose cumulative explained variance
    reaches the threshold.

    Preconditions:
        - explained_variance_ratio is non-empty, non-negative, in decreasing order
        - 0 < threshold <= 1

    Postconditions:
        - cumulative[k - 1] >= threshold and (k == 1 or cumulative[k - 2] < threshold),
          except when rounding leaves the total short of the threshold, in
          which case every component is kept

    Args:
        explained_variance_ratio: Per-component explained variance ratios
        threshold: Cumulative explained variance to reach

    Returns:
        Number of components k >= 1
    """
    ratios = np.asarray(explained_variance_ratio, dtype=float)
    if ratios.size == 0:
        raise ValueError("explained_variance_ratio cannot be empty")
    if not 0 < threshold <= 1:
        raise ValueError("threshold must be in (0, 1]")

    cumulative = np.cumsum(ratios)
    reached = np.flatnonzero(cumulative >= threshold)
    if len(reached) == 0:
        return int(ratios.size)
    return int(reached[0] + 1)


@dataclass(frozen=True)
class FittedPreprocessor:
    """
    Population-fitted feature transform.

    Attributes:
        columns: Feature columns kept (near-constant columns removed)
        dropped_columns: Feature columns removed as near-constant
        scaler: StandardScaler fitted on the kept columns
        pca: PCA fitted on the scaled features, or None when PCA is disabled
        n_components: Number of principal components retained (0 without PCA)
        variance_threshold: Threshold used to choose n_components

    Representation Invariants:
        - columns is non-empty
        - pca is None iff n_components == 0
    """
    columns: List[str]
    dropped_columns: List[str]
    scaler: StandardScaler
    pca: Optional[PCA]
    n_components: int
    variance_threshold: float

    def __post_init__(self):
        if not self.columns:
            raise ValueError("columns cannot be empty")
        if (self.pca is None) != (self.n_components == 0):
            raise ValueError("pca and n_components disagree")

    @property
    def output_columns(self) -> List[str]:
        if self.pca is None:
            return list(self.columns)
        return [f"PC{i + 1}" for i in range(self.n_components)]

    @property
    def explained_variance(self) -> float:
        """Cumulative explained variance ratio of the retained components."""
        if self.pca is None:
            return 1.0
        return float(np.sum(self.pca.explained_variance_ratio_[:self.n_components]))

    def transform(self, features: pd.DataFrame) -> pd.DataFrame:
        """
        Project a feature table with the fitted state (no refitting).

        Preconditions:
            - features contains every column in self.columns
            - features has no missing values

        Postconditions:
            - rows keep the input ticker order
            - columns are self.output_columns

        Raises:
            MissingJoinKeyError: If a kept column is missing from features
            NumericInstabilityError: If the projection produces non-finite values
        """
        missing = [col for col in self.columns if col not in features.columns]
        if missing:
            raise MissingJoinKeyError(f"feature table is missing columns: {', '.join(missing)}")

        if features.empty:
            return pd.DataFrame(columns=self.output_columns, index=features.index, dtype=float)

        scaled = self.scaler.transform(features[self.columns].to_numpy(dtype=float))
        if self.pca is not None:
            scaled = self.pca.transform(scaled)[:, :self.n_components]

        if not np.isfinite(scaled).all():
            raise NumericInstabilityError("preprocessed features contain non-finite values")

        return pd.DataFrame(scaled, index=features.index, columns=self.output_columns)


def fit_preprocessor(
    features: pd.DataFrame,
    use_pca: bool = True,
    variance_threshold: float = 0.95,
    near_constant_tol: float = 1e-8
) -> FittedPreprocessor:
    """
    Fit standardization (and optionally PCA) on a reference feature table.

    Preconditions:
        - features has one row per ticker and no missing values
        - at least 2 tickers

    Postconditions:
        - near-constant columns are excluded before scaling
        - the PCA component count is the smallest reaching variance_threshold

    Args:
        features: Reference feature table
        use_pca: Whether to fit a PCA projection
        variance_threshold: Cumulative explained variance to retain
        near_constant_tol: Tolerance for near-constant column detection

    Returns:
        FittedPreprocessor

    Raises:
        InsufficientDataError: If fewer than 2 tickers or no informative columns
        NumericInstabilityError: If features contain non-finite values
    """
    if len(features) < 2:
        raise InsufficientDataError(
            f"Need at least 2 tickers to fit preprocessing, got {len(features)}"
        )
    if not np.isfinite(features.to_numpy(dtype=float)).all():
        raise NumericInstabilityError("feature table contains non-finite values")

    dropped = near_constant_columns(features, tol=near_constant_tol)
    if dropped:
        logger.info("dropping near-constant feature columns: %s", ", ".join(dropped))
    columns = [col for col in features.columns if col not in dropped]
    if not columns:
        raise InsufficientDataError("every feature column is near-constant")

    values = features[columns].to_numpy(dtype=float)
    scaler = StandardScaler().fit(values)

    pca = None
    n_components = 0
    if use_pca:
        pca = PCA(svd_solver="full").fit(scaler.transform(values))
        n_components = choose_n_components(pca.explained_variance_ratio_, variance_threshold)
        logger.info(
            "PCA keeps %d of %d components (%.1f%% variance)",
            n_components, len(pca.explained_variance_ratio_),
            100 * np.sum(pca.explained_variance_ratio_[:n_components]),
        )

    return FittedPreprocessor(
        columns=columns,
        dropped_columns=dropped,
        scaler=scaler,
        pca=pca,
        n_components=n_components,
        variance_threshold=variance_threshold,
    )
