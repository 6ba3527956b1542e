"""
Core computation functions for standardized index calculation.

Includes the trailing-window aggregation of daily series (with missing-value
tolerance and interpolation) and the construction of historical reference
samples of the same aggregate across years.

---
Author: Benny Istanto, GOST/DEC Data Group/The World Bank
---
"""

from typing import Callable, Iterable, List, Optional, Union

import numpy as np
import pandas as pd

from .config import (
    DEFAULT_AGG_FUN,
    DEFAULT_NA_THRESHOLD,
    DEFAULT_REF_LENGTH,
    ConfigurationError,
    Interpolation,
    ReferencePolicy,
    check_threshold,
    get_logger,
    resolve_aggregation_function,
    resolve_reference_policy,
)
from .diagnostics import DiagnosticKind, Diagnostics, ensure_diagnostics
from .utils import as_daily_series, representative_date, series_covers, window_bounds

# Module logger
_logger = get_logger(__name__)


class AggregationError(RuntimeError):
    """The reduction function failed on an aggregation window."""

    def __init__(self, date: pd.Timestamp, message: str):
        self.date = date
        super().__init__(f"Aggregation failed for window ending {date:%Y-%m-%d}: {message}")


# =============================================================================
# VALIDATION
# =============================================================================

def validate_agg_length(agg_length) -> int:
    """
    Check that an aggregation length is a non-negative integer number of days.

    :param agg_length: window length in days
    :return: the length as int
    :raises ValueError: for negative or non-integer lengths
    """
    if isinstance(agg_length, (bool, np.bool_)):
        raise ValueError(f"agg_length must be an integer, got: {agg_length!r}")
    try:
        length = int(agg_length)
    except (TypeError, ValueError):
        raise ValueError(f"agg_length must be an integer, got: {agg_length!r}")
    if length != agg_length:
        raise ValueError(f"agg_length must be an integer, got: {agg_length!r}")
    if length < 0:
        raise ValueError(f"agg_length must be >= 0, got: {agg_length}")
    return length


# =============================================================================
# INTERPOLATION
# =============================================================================

def fill_missing(values: np.ndarray, interpolation: Interpolation) -> np.ndarray:
    """
    Treat missing values of a window according to an interpolation policy.

    The window must contain at least one observed value.

    :param values: 1-D array of window values, NaN where missing
    :param interpolation: policy to apply
    :return: array without missing values (shorter for Interpolation.none)
    """
    missing = np.isnan(values)
    if not missing.any():
        return values

    if interpolation == Interpolation.none:
        return values[~missing]
    elif interpolation == Interpolation.linear:
        positions = np.arange(len(values))
        filled = values.copy()
        # np.interp holds the edge values constant outside the observed range
        filled[missing] = np.interp(positions[missing], positions[~missing], values[~missing])
        return filled
    elif interpolation == Interpolation.mean:
        filled = values.copy()
        filled[missing] = np.mean(values[~missing])
        return filled
    elif interpolation == Interpolation.zeros:
        filled = values.copy()
        filled[missing] = 0.0
        return filled
    raise ConfigurationError(f"Unsupported interpolation: {interpolation}")


# =============================================================================
# WINDOW AGGREGATION
# =============================================================================

def _aggregate_window(
    date: pd.Timestamp,
    series: pd.Series,
    agg_length: int,
    reducer: Callable,
    agg_na_threshold: float,
    interpolation: Interpolation,
    period_warn: bool,
    diagnostics: Diagnostics
) -> Optional[float]:
    """Aggregate one window of an already validated series."""
    if agg_length == 0:
        return np.nan

    start, end = window_bounds(date, agg_length)

    out_of_range = not (series_covers(series, start) and series_covers(series, end))
    if out_of_range:
        if not period_warn:
            return None
        diagnostics.add(
            DiagnosticKind.OUT_OF_RANGE,
            f"window {start:%Y-%m-%d} to {end:%Y-%m-%d} extends beyond the data",
            date,
        )

    window_dates = pd.date_range(start, end, freq='D')
    window = series.reindex(window_dates)

    if len(series) > 0:
        covered = (window_dates >= series.index[0]) & (window_dates <= series.index[-1])
        n_absent = int(np.sum(covered & ~window_dates.isin(series.index)))
        if n_absent > 0:
            diagnostics.add(
                DiagnosticKind.MISSING_DATES,
                f"{n_absent} dates absent from the data were treated as missing",
                date,
            )

    values = window.to_numpy(dtype=float)
    if len(values) == 0:
        return np.nan

    n_missing = int(np.sum(np.isnan(values)))
    if n_missing == len(values):
        return np.nan

    pct_missing = n_missing / agg_length * 100
    if pct_missing > agg_na_threshold:
        diagnostics.add(
            DiagnosticKind.NA_THRESHOLD,
            f"{pct_missing:.1f}% missing exceeds tolerance of {agg_na_threshold}%",
            date,
        )
    elif n_missing > 0:
        values = fill_missing(values, interpolation)

    try:
        result = reducer(values)
        return float(result)
    except Exception as exc:
        raise AggregationError(date, f"{type(exc).__name__}: {exc}") from exc


def aggregated_value(
    date,
    data: pd.Series,
    agg_length: int,
    agg_fun: Union[str, Callable] = DEFAULT_AGG_FUN,
    agg_na_threshold: float = DEFAULT_NA_THRESHOLD,
    agg_interpolation: Union[str, Interpolation] = 'none',
    period_warn: bool = True,
    diagnostics: Optional[Diagnostics] = None
) -> Optional[float]:
    """
    Aggregate the trailing window of a daily series ending at a date.

    The window covers ``[date - agg_length + 1, date]``, one value per
    calendar day; days absent from the series count as missing.

    When the share of missing values is within ``agg_na_threshold`` the
    missing values are treated according to ``agg_interpolation`` before the
    reduction. Beyond the tolerance the values are passed to the reduction
    with the missing values in place, so NaN-propagating reductions such as
    'sum' return NaN. A window without any observed value is always NaN.

    :param date: last day of the window
    :param data: daily pandas Series with a DatetimeIndex
    :param agg_length: window length in days
    :param agg_fun: reduction, a callable or one of 'sum', 'mean', 'median',
        'min', 'max'
    :param agg_na_threshold: tolerated percentage of missing values
    :param agg_interpolation: 'none', 'linear', 'mean' or 'zeros'
    :param period_warn: when the window reaches outside the data, record a
        diagnostic and continue (True) or reject the window (False)
    :param diagnostics: optional collector for non-fatal conditions
    :return: aggregate (NaN when missing), or None for a rejected window
    :raises ValueError: for an invalid agg_length or series
    :raises AggregationError: if the reduction fails
    """
    agg_length = validate_agg_length(agg_length)
    reducer, _ = resolve_aggregation_function(agg_fun)
    interpolation = Interpolation.from_string(agg_interpolation)
    agg_na_threshold = check_threshold('agg_na_threshold', agg_na_threshold)
    series = as_daily_series(data)

    return _aggregate_window(
        pd.Timestamp(date).normalize(),
        series,
        agg_length,
        reducer,
        agg_na_threshold,
        interpolation,
        period_warn,
        ensure_diagnostics(diagnostics),
    )


def aggregate_series(
    dates: Iterable,
    data: pd.Series,
    agg_length: int,
    agg_fun: Union[str, Callable] = DEFAULT_AGG_FUN,
    agg_na_threshold: float = DEFAULT_NA_THRESHOLD,
    agg_interpolation: Union[str, Interpolation] = 'none',
    diagnostics: Optional[Diagnostics] = None
) -> pd.Series:
    """
    Aggregate the trailing window ending at each of several dates.

    Windows reaching outside the data are kept as partially missing. A failing
    reduction yields NaN for that date and an AGGREGATION_FAILED diagnostic.

    :param dates: dates to aggregate at
    :param data: daily pandas Series with a DatetimeIndex
    :param agg_length: window length in days
    :param agg_fun: reduction, callable or name
    :param agg_na_threshold: tolerated percentage of missing values
    :param agg_interpolation: 'none', 'linear', 'mean' or 'zeros'
    :param diagnostics: optional collector for non-fatal conditions
    :return: Series of aggregates indexed by date
    """
    agg_length = validate_agg_length(agg_length)
    reducer, _ = resolve_aggregation_function(agg_fun)
    interpolation = Interpolation.from_string(agg_interpolation)
    agg_na_threshold = check_threshold('agg_na_threshold', agg_na_threshold)
    series = as_daily_series(data)
    diagnostics = ensure_diagnostics(diagnostics)

    index = pd.DatetimeIndex(list(dates)).normalize()
    result = np.full(len(index), np.nan)
    for i, date in enumerate(index):
        try:
            value = _aggregate_window(
                date, series, agg_length, reducer, agg_na_threshold,
                interpolation, True, diagnostics,
            )
        except AggregationError as exc:
            diagnostics.add(DiagnosticKind.AGGREGATION_FAILED, str(exc), date)
            continue
        if value is not None:
            result[i] = value

    return pd.Series(result, index=index, name='aggregate')


# =============================================================================
# REFERENCE SAMPLES
# =============================================================================

def reference_years_for(
    date: pd.Timestamp,
    series: pd.Series,
    policy: ReferencePolicy,
    years: Optional[List[int]] = None,
    ref_length: int = DEFAULT_REF_LENGTH
) -> List[int]:
    """
    Years contributing to the reference sample of a target date.

    :param date: target date
    :param series: reference series
    :param policy: reference year policy
    :param years: explicit years for ReferencePolicy.explicit
    :param ref_length: number of preceding years for ReferencePolicy.trailing
    :return: sorted list of years
    """
    target_year = pd.Timestamp(date).year

    if policy == ReferencePolicy.all:
        if len(series) == 0:
            return []
        present = np.unique(series.index.year)
        return [int(y) for y in present if y != target_year]
    elif policy == ReferencePolicy.trailing:
        return list(range(target_year - ref_length, target_year))
    elif policy == ReferencePolicy.explicit:
        if years is None:
            raise ConfigurationError("Explicit reference policy requires a list of years")
        return sorted(years)
    raise ConfigurationError(f"Unsupported reference policy: {policy}")


def validate_ref_length(ref_length) -> int:
    """Check that ref_length is a positive integer number of years."""
    if isinstance(ref_length, (bool, np.bool_)):
        raise ConfigurationError(f"ref_length must be a positive integer, got: {ref_length!r}")
    try:
        length = int(ref_length)
    except (TypeError, ValueError):
        raise ConfigurationError(f"ref_length must be a positive integer, got: {ref_length!r}")
    if length != ref_length or length < 1:
        raise ConfigurationError(f"ref_length must be a positive integer, got: {ref_length!r}")
    return length


def build_reference_sample(
    date: pd.Timestamp,
    series: pd.Series,
    agg_length: int,
    reducer: Callable,
    policy: ReferencePolicy,
    years: Optional[List[int]],
    ref_length: int,
    agg_na_threshold: float,
    interpolation: Interpolation,
    period_warn: bool,
    diagnostics: Diagnostics
) -> pd.Series:
    """Build the reference sample of one date from an already validated series."""
    rep_dates = []
    values = []
    for year in reference_years_for(date, series, policy, years, ref_length):
        rep = representative_date(date, year)
        value = _aggregate_window(
            rep, series, agg_length, reducer, agg_na_threshold,
            interpolation, period_warn, diagnostics,
        )
        if value is None:
            continue
        rep_dates.append(rep)
        values.append(value)

    _logger.debug(
        f"Reference sample for {date:%Y-%m-%d}: {len(values)} years "
        f"({policy} policy)"
    )
    return pd.Series(
        np.asarray(values, dtype=float),
        index=pd.DatetimeIndex(rep_dates),
        name='value',
    )


def reference_values(
    date,
    ref_data: pd.Series,
    agg_length: int,
    agg_fun: Union[str, Callable] = DEFAULT_AGG_FUN,
    ref_years=None,
    ref_length: int = DEFAULT_REF_LENGTH,
    agg_na_threshold: float = DEFAULT_NA_THRESHOLD,
    agg_interpolation: Union[str, Interpolation] = 'none',
    period_warn: Optional[bool] = None,
    diagnostics: Optional[Diagnostics] = None
) -> pd.Series:
    """
    Build the historical reference sample for a target date.

    For every reference year the trailing window ending on the same month and
    day is aggregated (February 29 becomes February 28 in non-leap years).

    Reference years:
        - None or 'all': every year of ``ref_data`` except the target year
        - 'trailing' or NaN: the ``ref_length`` years before the target year
        - list of ints: exactly those years

    By default, windows reaching outside ``ref_data`` are dropped for the
    'all' policy and kept as partially missing for the other policies.

    :param date: target date
    :param ref_data: daily pandas Series with a DatetimeIndex
    :param agg_length: window length in days
    :param agg_fun: reduction, callable or name
    :param ref_years: reference year selection (see above)
    :param ref_length: number of years for the trailing policy
    :param agg_na_threshold: tolerated percentage of missing values per window
    :param agg_interpolation: 'none', 'linear', 'mean' or 'zeros'
    :param period_warn: override the out-of-range behaviour of the policy
    :param diagnostics: optional collector for non-fatal conditions
    :return: Series of aggregates indexed by representative date, NaN
        aggregates kept
    :raises AggregationError: if the reduction fails for any reference year
    """
    agg_length = validate_agg_length(agg_length)
    reducer, _ = resolve_aggregation_function(agg_fun)
    interpolation = Interpolation.from_string(agg_interpolation)
    agg_na_threshold = check_threshold('agg_na_threshold', agg_na_threshold)
    policy, years = resolve_reference_policy(ref_years)
    if policy == ReferencePolicy.trailing:
        ref_length = validate_ref_length(ref_length)
    if period_warn is None:
        period_warn = policy.default_period_warn()
    series = as_daily_series(ref_data, name='ref_data')

    return build_reference_sample(
        pd.Timestamp(date).normalize(),
        series,
        agg_length,
        reducer,
        policy,
        years,
        ref_length,
        agg_na_threshold,
        interpolation,
        period_warn,
        ensure_diagnostics(diagnostics),
    )
