"""
Time-series feature extraction.

Maps a standardized price series to a fixed vector of 22 descriptors
named after the catch22 set. They are numpy/scipy approximations of those
features, not a reference implementation, so values differ from pycatch22:

- CO_HistogramAMI_even_2_5 bins over the exact data range, without padding
- CO_Embed2_Dist_tau_d_expfit_meandiff caps the embedding lag at len(y) // 10
- the spectral and fluctuation descriptors use scipy/statsmodels estimators

Each descriptor is a pure, deterministic function of the ordered series
values.
"""

from typing import Dict, List, Tuple, Union
import logging
import pandas as pd
import numpy as np
from scipy import signal
from statsmodels.tsa.stattools import acf
from stockclusters.entities import StandardizedSeries
from stockclusters.errors import (
    DataError,
    DegenerateSeriesError,
    InsufficientDataError,
    NumericInstabilityError,
)

logger = logging.getLogger(__name__)

FEATURE_NAMES = [
    "DN_HistogramMode_5",
    "DN_HistogramMode_10",
    "CO_f1ecac",
    "CO_FirstMin_ac",
    "CO_HistogramAMI_even_2_5",
    "CO_trev_1_num",
    "MD_hrv_classic_pnn40",
    "SB_BinaryStats_mean_longstretch1",
    "SB_TransitionMatrix_3ac_sumdiagcov",
    "PD_PeriodicityWang_th0_01",
    "CO_Embed2_Dist_tau_d_expfit_meandiff",
    "IN_AutoMutualInfoStats_40_gaussian_fmmi",
    "FC_LocalSimple_mean1_tauresrat",
    "DN_OutlierInclude_p_001_mdrmd",
    "DN_OutlierInclude_n_001_mdrmd",
    "SP_Summaries_welch_rect_area_5_1",
    "SB_BinaryStats_diff_longstretch0",
    "SB_MotifThree_quantile_hh",
    "SC_FluctAnal_2_rsrangefit_50_1_logi_prop_r1",
    "SC_FluctAnal_2_dfa_50_1_2_logi_prop_r1",
    "SP_Summaries_welch_rect_centroid",
    "FC_LocalSimple_mean3_stderr",
]

# Shortest series any descriptor is defined on
MIN_SERIES_LENGTH = 20


# --------------------------------------------------------------------------
# Shared helpers
# --------------------------------------------------------------------------

def _autocorrelation(y: np.ndarray, nlags: int = None) -> np.ndarray:
    """Biased autocorrelation function, lag 0 included."""
    if nlags is None:
        nlags = len(y) - 1
    return acf(y, nlags=nlags, fft=True)


def _first_zero_crossing(ac: np.ndarray) -> int:
    crossings = np.flatnonzero(ac[1:] <= 0)
    return int(crossings[0] + 1) if len(crossings) else len(ac)


def _longest_stretch(mask: np.ndarray) -> int:
    longest = run = 0
    for flag in mask:
        run = run + 1 if flag else 0
        if run > longest:
            longest = run
    return longest


def _coarse_grain(y: np.ndarray, n_groups: int) -> np.ndarray:
    """Map values to quantile groups 0..n_groups-1."""
    edges = np.quantile(y, np.linspace(0, 1, n_groups + 1)[1:-1])
    return np.digitize(y, edges)


def _histogram_mode(y: np.ndarray, n_bins: int) -> float:
    counts, edges = np.histogram(y, bins=n_bins)
    centers = (edges[:-1] + edges[1:]) / 2
    return float(centers[counts == counts.max()].mean())


def _welch_spectrum(y: np.ndarray) -> Tuple[np.ndarray, np.ndarray, float]:
    """Rectangular-window Welch spectrum over angular frequency, normalized to unit area."""
    freqs, power = signal.welch(y, fs=1.0, window="boxcar", nperseg=min(len(y), 256))
    omega = 2 * np.pi * freqs
    d_omega = omega[1] - omega[0]
    total = power.sum() * d_omega
    if total > 0:
        power = power / total
    return omega, power, d_omega


# --------------------------------------------------------------------------
# Descriptors
# --------------------------------------------------------------------------

def _f1ecac(ac: np.ndarray) -> float:
    threshold = 1 / np.e
    for i in range(1, len(ac)):
        if ac[i] < threshold:
            previous = ac[i - 1]
            return float(i - 1 + (previous - threshold) / (previous - ac[i]))
    return float(len(ac))


def _first_min_ac(ac: np.ndarray) -> float:
    for i in range(1, len(ac) - 1):
        if ac[i] < ac[i - 1] and ac[i] < ac[i + 1]:
            return float(i)
    return float(len(ac))


def _histogram_ami(y: np.ndarray, tau: int = 2, n_bins: int = 5) -> float:
    edges = np.linspace(y.min(), y.max(), n_bins + 1)
    joint, _, _ = np.histogram2d(y[:-tau], y[tau:], bins=[edges, edges])
    p = joint / joint.sum()
    outer = np.outer(p.sum(axis=1), p.sum(axis=0))
    nonzero = p > 0
    return float(np.sum(p[nonzero] * np.log(p[nonzero] / outer[nonzero])))


def _transition_matrix_sumdiagcov(y: np.ndarray, ac: np.ndarray) -> float:
    tau = _first_zero_crossing(ac)
    downsampled = y[::tau]
    if len(downsampled) < 3:
        return 0.0
    symbols = _coarse_grain(downsampled, 3)
    transitions = np.zeros((3, 3))
    for a, b in zip(symbols[:-1], symbols[1:]):
        transitions[a, b] += 1
    transitions /= len(symbols) - 1
    return float(np.var(transitions, axis=0, ddof=1).sum())


def _periodicity_wang(y: np.ndarray, threshold: float = 0.01) -> float:
    t = np.linspace(0, 1, len(y))
    residual = y - np.polyval(np.polyfit(t, y, 3), t)
    if residual.std() < 1e-12:
        return 0.0
    ac = _autocorrelation(residual, nlags=len(y) // 3)
    for i in range(2, len(ac) - 1):
        is_peak = ac[i] > ac[i - 1] and ac[i] >= ac[i + 1]
        if is_peak and ac[i] > threshold and ac[i] - ac[1:i].min() > threshold:
            return float(i)
    return 0.0


def _embed2_expfit_meandiff(y: np.ndarray, ac: np.ndarray) -> float:
    tau = max(1, min(_first_zero_crossing(ac), len(y) // 10))
    distances = np.hypot(np.diff(y[:-tau]), np.diff(y[tau:]))
    if len(distances) < 2 or np.ptp(distances) <= 1e-9 * max(1.0, distances.mean()):
        return 0.0
    rate = 1 / distances.mean()
    density, edges = np.histogram(distances, bins="scott", density=True)
    centers = (edges[:-1] + edges[1:]) / 2
    return float(np.mean(np.abs(density - rate * np.exp(-rate * centers))))


def _gaussian_ami_first_min(ac: np.ndarray, max_lag: int = 40) -> float:
    max_lag = max(2, min(max_lag, (len(ac) - 1) // 2))
    r = np.clip(ac[1:max_lag + 1], -0.999999, 0.999999)
    ami = -0.5 * np.log(1 - r ** 2)
    for i in range(1, len(ami) - 1):
        if ami[i] < ami[i - 1] and ami[i] < ami[i + 1]:
            return float(i + 1)
    return float(max_lag)


def _local_mean1_tauresrat(y: np.ndarray, ac: np.ndarray) -> float:
    residuals = y[1:] - y[:-1]
    if residuals.std() < 1e-12:
        return 0.0
    return _first_zero_crossing(_autocorrelation(residuals)) / _first_zero_crossing(ac)


def _local_mean3_stderr(y: np.ndarray) -> float:
    # Mean of the three preceding values forecasts each point from index 3 on
    forecasts = np.convolve(y, np.ones(3) / 3, mode="valid")[:-1]
    return float(np.std(y[3:] - forecasts, ddof=1))


def _outlier_include_mdrmd(y: np.ndarray, sign: int, increment: float = 0.01) -> float:
    x = sign * y
    n = len(x)
    if x.max() <= 0:
        return 0.0
    medians = []
    for threshold in np.arange(0, x.max(), increment):
        events = np.flatnonzero(x >= threshold)
        # thresholds exceeded by under 2% of the series are trimmed
        if len(events) < max(2, 0.02 * n):
            continue
        medians.append(np.median(events + 1) / (n / 2) - 1)
    if not medians:
        return 0.0
    return float(np.median(medians))


def _welch_area_5_1(y: np.ndarray) -> float:
    _, power, d_omega = _welch_spectrum(y)
    return float(power[:max(1, len(power) // 5)].sum() * d_omega)


def _welch_centroid(y: np.ndarray) -> float:
    omega, power, d_omega = _welch_spectrum(y)
    cumulative = np.cumsum(power) * d_omega
    if cumulative[-1] <= 0:
        return 0.0
    return float(omega[np.argmax(cumulative >= 0.5 * cumulative[-1])])


def _motif_three_entropy(y: np.ndarray) -> float:
    symbols = _coarse_grain(y, 3)
    words = symbols[:-1] * 3 + symbols[1:]
    p = np.bincount(words, minlength=9) / len(words)
    p = p[p > 0]
    return float(-np.sum(p * np.log(p)))


def _fluctuation_prop_r1(y: np.ndarray, method: str, n_scales: int = 50) -> float:
    """
    Fraction of scales in the first linear regime of a two-segment fit to
    log fluctuation versus log scale.

    method is "rsrange" (range of detrended segment) or "dfa" (RMS of
    detrended segment).
    """
    profile = np.cumsum(y)
    n = len(profile)
    scales = np.unique(np.round(np.exp(np.linspace(np.log(5), np.log(n / 2), n_scales))).astype(int))
    if len(scales) < 6:
        return 0.0

    fluctuations = np.empty(len(scales))
    for i, tau in enumerate(scales):
        n_segments = n // tau
        segments = profile[:n_segments * tau].reshape(n_segments, tau)
        t = np.arange(tau)
        slope, intercept = np.polyfit(t, segments.T, 1)
        residuals = segments - (np.outer(slope, t) + intercept[:, None])
        if method == "rsrange":
            per_segment = np.ptp(residuals, axis=1)
        else:
            per_segment = np.sqrt(np.mean(residuals ** 2, axis=1))
        fluctuations[i] = np.sqrt(np.mean(per_segment ** 2))

    if (fluctuations <= 0).any():
        return 0.0

    log_scales = np.log(scales)
    log_fluct = np.log(fluctuations)
    n_total = len(scales)

    best_split, best_error = None, np.inf
    for split in range(3, n_total - 2):
        error = 0.0
        for part in (slice(0, split), slice(split - 1, n_total)):
            coeffs = np.polyfit(log_scales[part], log_fluct[part], 1)
            error += np.sum((np.polyval(coeffs, log_scales[part]) - log_fluct[part]) ** 2)
        if error < best_error:
            best_split, best_error = split, error

    return float(best_split / n_total)


# --------------------------------------------------------------------------
# Public API
# --------------------------------------------------------------------------

def _as_array(series: Union[StandardizedSeries, pd.Series, np.ndarray]) -> np.ndarray:
    if isinstance(series, StandardizedSeries):
        values = series.observed().to_numpy(dtype=float)
    elif isinstance(series, pd.Series):
        values = series.to_numpy(dtype=float)
    else:
        values = np.asarray(series, dtype=float)

    finite = np.flatnonzero(np.isfinite(values))
    if len(finite) == 0:
        return values[:0]
    values = values[finite[0]:]
    if not np.isfinite(values).all():
        raise DataError("series has gaps after its first observation")
    return values


def extract_features(
    series: Union[StandardizedSeries, pd.Series, np.ndarray],
    min_length: int = 60
) -> pd.Series:
    """
    Compute the 22 canonical descriptors of one series.

    Leading missing values (dates before a ticker's first observation) are
    dropped; the remaining values are z-scored before computing descriptors.

    Preconditions:
        - series values are ordered in time
        - no gaps after the first observation

    Postconditions:
        - result index equals FEATURE_NAMES, in order
        - all values are finite
        - identical input yields identical output

    Args:
        series: StandardizedSeries, pd.Series or array of values
        min_length: Minimum number of observations (floored at MIN_SERIES_LENGTH)

    Returns:
        Series of feature values indexed by feature name

    Raises:
        InsufficientDataError: If the series is shorter than min_length
        DegenerateSeriesError: If the series is constant
        NumericInstabilityError: If any descriptor is non-finite
    """
    name = series.ticker if isinstance(series, StandardizedSeries) else getattr(series, "name", None)
    y = _as_array(series)

    required = max(min_length, MIN_SERIES_LENGTH)
    if len(y) < required:
        raise InsufficientDataError(
            f"{name or 'series'}: {len(y)} observations, need at least {required}"
        )

    std = y.std()
    if std < 1e-12:
        raise DegenerateSeriesError(f"{name or 'series'}: constant series")
    y = (y - y.mean()) / std

    ac = _autocorrelation(y)
    values = [
        _histogram_mode(y, 5),
        _histogram_mode(y, 10),
        _f1ecac(ac),
        _first_min_ac(ac),
        _histogram_ami(y),
        float(np.mean(np.diff(y) ** 3)),
        float(np.mean(np.abs(np.diff(y)) * 1000 > 40)),
        float(_longest_stretch(y > 0)),
        _transition_matrix_sumdiagcov(y, ac),
        _periodicity_wang(y),
        _embed2_expfit_meandiff(y, ac),
        _gaussian_ami_first_min(ac),
        _local_mean1_tauresrat(y, ac),
        _outlier_include_mdrmd(y, 1),
        _outlier_include_mdrmd(y, -1),
        _welch_area_5_1(y),
        float(_longest_stretch(np.diff(y) < 0)),
        _motif_three_entropy(y),
        _fluctuation_prop_r1(y, "rsrange"),
        _fluctuation_prop_r1(y, "dfa"),
        _welch_centroid(y),
        _local_mean3_stderr(y),
    ]

    features = pd.Series(values, index=FEATURE_NAMES, name=name, dtype=float)
    bad = features.index[~np.isfinite(features.values)]
    if len(bad):
        raise NumericInstabilityError(
            f"{name or 'series'}: non-finite features {', '.join(bad)}"
        )
    return features


def extract_feature_table(
    standardized: Dict[str, StandardizedSeries],
    min_length: int = 60
) -> Tuple[pd.DataFrame, List[str]]:
    """
    Extract features for a batch of tickers.

    Tickers whose series are too short, constant or numerically unstable
    are excluded and reported instead of failing the batch.

    Args:
        standardized: StandardizedSeries keyed by ticker
        min_length: Minimum observations per ticker

    Returns:
        (feature table with one row per ticker and FEATURE_NAMES columns,
         excluded tickers)
    """
    rows = {}
    excluded = []
    for ticker, series in standardized.items():
        try:
            rows[ticker] = extract_features(series, min_length=min_length)
        except (DataError, NumericInstabilityError) as e:
            logger.warning("excluding ticker from features: %s", e)
            excluded.append(ticker)

    table = pd.DataFrame.from_dict(rows, orient="index", columns=FEATURE_NAMES)
    table.index.name = "ticker"
    return table.astype(float), excluded
