"""Custom exceptions for the clustering pipeline."""


class ClusterAnalysisError(Exception):
    """Base exception for clustering pipeline errors."""
    pass


class DataError(ClusterAnalysisError):
    """Raised when data is missing, invalid, or insufficient."""
    pass


class InsufficientDataError(DataError):
    """Raised when a series, window or population is too small to analyze."""
    pass


class DegenerateSeriesError(DataError):
    """Raised when a series has zero variance and cannot be standardized."""
    pass


class MissingJoinKeyError(DataError):
    """Raised when a ticker or column expected in one table is absent from another."""
    pass


class NumericInstabilityError(ClusterAnalysisError):
    """Raised when a computation produces non-finite values."""
    pass


class CacheError(ClusterAnalysisError):
    """Raised when caching operations fail."""
    pass


class ConfigError(ClusterAnalysisError):
    """Raised when a configuration file is malformed or has unknown keys."""
    pass
