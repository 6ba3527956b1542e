"""
Standardized index calculation module.

High-level API for computing standardized indices (SPI, SPEI, SSI, ...) from
daily series, with support for saving and loading fitting parameters.

For every requested date the trailing-window aggregate is compared with the
distribution fitted to the same aggregate in the reference years, and the
resulting cumulative probability is mapped to the standard normal scale.

---
Author: Benny Istanto, GOST/DEC Data Group/The World Bank
---

References:
    - McKee, T.B., Doesken, N.J., Kleist, J. (1993). The relationship of drought
      frequency and duration to time scales. 8th Conference on Applied Climatology.
    - Stagge, J.H., Tallaksen, L.M., Gudmundsson, L., Van Loon, A.F., Stahl, K.
      (2015). Candidate Distributions for Climatological Drought Indices (SPI
      and SPEI). International Journal of Climatology, 35(13), 4027-4040.
"""

import os
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple, Union

import numpy as np
import pandas as pd
import xarray as xr
from scipy import stats

from .config import (
    DEFAULT_AGG_FUN,
    DEFAULT_DIGITS,
    DEFAULT_DISTRIBUTION,
    DEFAULT_NA_THRESHOLD,
    DEFAULT_REF_LENGTH,
    NC_FILL_VALUE,
    ConfigurationError,
    Interpolation,
    ReferencePolicy,
    check_threshold,
    get_logger,
    get_variable_attributes,
    resolve_aggregation_function,
    resolve_reference_policy,
)
from .compute import (
    AggregationError,
    aggregate_series,
    build_reference_sample,
    validate_agg_length,
    validate_ref_length,
)
from .diagnostics import Diagnostic, DiagnosticKind, Diagnostics, ensure_diagnostics
from .distributions import (
    DistributionType,
    FittedDistribution,
    FittingMethod,
    fit_distribution,
    resolve_method,
    table_columns,
    undefined_fit,
)
from .utils import (
    as_daily_series,
    format_series_summary,
    summarize_data_completeness,
    to_timestamps,
)

# Module logger
_logger = get_logger(__name__)


# =============================================================================
# RESULT TYPES
# =============================================================================

@dataclass(frozen=True)
class IndexDiagnostics:
    """Intermediate results of a standardized index computation."""
    reference_values: Dict[pd.Timestamp, pd.Series]
    aggregates: pd.Series
    params: pd.DataFrame
    fits: Dict[pd.Timestamp, FittedDistribution]
    data_attrs: dict = field(default_factory=dict)
    ref_data_attrs: dict = field(default_factory=dict)


@dataclass(frozen=True)
class IndexResult:
    """
    Standardized index values with the settings that produced them.

    ``values`` holds the rounded index per requested date (NaN where no value
    could be computed), ``warnings`` the non-fatal conditions met along the
    way, and ``details`` the intermediate results when requested.
    """
    values: pd.Series
    metadata: dict
    warnings: List[Diagnostic] = field(default_factory=list)
    details: Optional[IndexDiagnostics] = None

    @property
    def params(self) -> Optional[pd.DataFrame]:
        return None if self.details is None else self.details.params

    def to_dataarray(self) -> xr.DataArray:
        """
        Convert to an xarray DataArray along 'time' with metadata attributes.

        :return: DataArray named 'value'
        """
        return xr.DataArray(
            data=self.values.to_numpy(dtype=float),
            dims=('time',),
            coords={'time': self.values.index.to_numpy()},
            name='value',
            attrs=get_variable_attributes(self.metadata),
        )

    def summary(self, n: int = 5) -> str:
        """Head and tail of the values followed by the metadata."""
        metadata = dict(self.metadata)
        metadata['warnings'] = len(self.warnings)
        return format_series_summary(self.values, metadata, n=n)

    def __str__(self):
        return self.summary()


# =============================================================================
# PER-DATE FITTING
# =============================================================================

def _fit_date(
    date: pd.Timestamp,
    ref_series: pd.Series,
    agg_length: int,
    reducer: Callable,
    policy: ReferencePolicy,
    years: Optional[List[int]],
    ref_length: int,
    agg_na_threshold: float,
    interpolation: Interpolation,
    distribution: DistributionType,
    method: FittingMethod,
    ref_na_threshold: float
) -> Tuple[FittedDistribution, Optional[pd.Series], Diagnostics]:
    """
    Build the reference sample of one date and fit the distribution to it.

    Owns its Diagnostics so that dates can be processed concurrently.
    """
    diagnostics = Diagnostics()
    try:
        sample = build_reference_sample(
            date, ref_series, agg_length, reducer, policy, years, ref_length,
            agg_na_threshold, interpolation, policy.default_period_warn(), diagnostics,
        )
    except AggregationError as exc:
        diagnostics.add(DiagnosticKind.AGGREGATION_FAILED, str(exc), date)
        return undefined_fit(distribution, method, ref_na_threshold), None, diagnostics

    fitted = fit_distribution(
        sample.to_numpy(),
        distribution=distribution,
        method=method,
        na_threshold=ref_na_threshold,
        diagnostics=diagnostics,
        date=date,
    )
    return fitted, sample, diagnostics


def _fit_dates(
    dates: pd.DatetimeIndex,
    parallel: bool,
    **kwargs
) -> List[Tuple[FittedDistribution, Optional[pd.Series], Diagnostics]]:
    """Fit every date, optionally on dask's threaded scheduler."""
    if not parallel or len(dates) < 2:
        return [_fit_date(date, **kwargs) for date in dates]

    import dask

    _logger.info(f"Fitting {len(dates)} dates in parallel (dask threads)")
    tasks = [dask.delayed(_fit_date)(date, **kwargs) for date in dates]
    return list(dask.compute(*tasks, scheduler='threads'))


# =============================================================================
# PARAMETER TABLES
# =============================================================================

def _validate_params_table(
    params: pd.DataFrame,
    distribution: DistributionType,
    method: FittingMethod
) -> pd.DataFrame:
    """Check a supplied parameter table and index it by day."""
    if not isinstance(params, pd.DataFrame):
        raise ConfigurationError(f"params must be a pandas DataFrame, got: {type(params)}")

    table_distribution = params.attrs.get('distribution')
    if table_distribution is not None and \
            DistributionType.from_string(table_distribution) != distribution:
        raise ConfigurationError(
            f"Parameter table was fitted with '{table_distribution}', "
            f"not '{distribution}'"
        )
    table_method = params.attrs.get('method')
    if table_method is not None and FittingMethod.from_string(table_method) != method:
        raise ConfigurationError(
            f"Parameter table was fitted with method '{table_method}', not '{method}'"
        )

    missing = [name for name in distribution.param_names(method) if name not in params.columns]
    if missing:
        raise ConfigurationError(
            f"Parameter table lacks columns for '{distribution}' ({method}): {missing}"
        )

    table = params.copy()
    table.index = to_timestamps(params.index)
    if table.index.has_duplicates:
        raise ConfigurationError("Parameter table has duplicated dates")
    return table


def _params_frame(
    dates: pd.DatetimeIndex,
    rows: Dict[pd.Timestamp, Dict[str, float]],
    columns: Tuple[str, ...]
) -> pd.DataFrame:
    """Assemble parameter rows in the order of the requested dates."""
    frame = pd.DataFrame(
        [[rows[date].get(col, np.nan) for col in columns] for date in dates],
        index=pd.DatetimeIndex(dates, name='date'),
        columns=list(columns),
        dtype=float,
    )
    return frame


# =============================================================================
# TRANSFORMATION
# =============================================================================

def _standardize(
    date: pd.Timestamp,
    value: float,
    row: pd.Series,
    distribution: DistributionType,
    method: FittingMethod,
    ks_threshold: Optional[float],
    ad_threshold: Optional[float],
    diagnostics: Diagnostics
) -> float:
    """Map one aggregate to the standard normal scale through a parameter row."""
    if ks_threshold is not None and not row['ks_pval'] >= ks_threshold:
        diagnostics.add(
            DiagnosticKind.REJECTED_FIT,
            f"Kolmogorov-Smirnov p-value {row['ks_pval']:.4f} below threshold {ks_threshold}",
            date,
        )
        return np.nan
    if ad_threshold is not None and not row['ad_pval'] >= ad_threshold:
        diagnostics.add(
            DiagnosticKind.REJECTED_FIT,
            f"Anderson-Darling p-value {row['ad_pval']:.4f} below threshold {ad_threshold}",
            date,
        )
        return np.nan

    if np.isnan(value):
        return np.nan

    fitted = FittedDistribution.from_row(row, distribution, method)
    if not fitted.is_valid():
        return np.nan

    try:
        probability = float(fitted.cdf(value))
    except (ValueError, TypeError, OverflowError) as exc:
        diagnostics.add(DiagnosticKind.CDF_FAILED, f"CDF evaluation failed: {exc}", date)
        return np.nan
    if np.isnan(probability):
        diagnostics.add(DiagnosticKind.CDF_FAILED, f"CDF undefined at {value}", date)
        return np.nan

    if distribution.zero_bounded:
        prob_zero = fitted.prob_zero
        probability = prob_zero + (1 - prob_zero) * probability

    with np.errstate(all='ignore'):
        index_value = float(stats.norm.ppf(probability))
    return index_value if np.isfinite(index_value) else np.nan


# =============================================================================
# STANDARDIZED INDEX CALCULATION
# =============================================================================

def standardized_index(
    data: pd.Series,
    dates,
    agg_length: int,
    agg_fun: Union[str, Callable] = DEFAULT_AGG_FUN,
    ref_data: Optional[pd.Series] = None,
    distribution: Union[str, DistributionType] = DEFAULT_DISTRIBUTION,
    method: Optional[Union[str, FittingMethod]] = None,
    params: Optional[pd.DataFrame] = None,
    ks_threshold: Optional[float] = None,
    ad_threshold: Optional[float] = None,
    ref_years=None,
    ref_length: int = DEFAULT_REF_LENGTH,
    ref_na_threshold: float = DEFAULT_NA_THRESHOLD,
    agg_na_threshold: Optional[float] = None,
    agg_interpolation: Union[str, Interpolation] = 'none',
    digits: int = DEFAULT_DIGITS,
    return_details: bool = False,
    parallel: bool = False,
    diagnostics: Optional[Diagnostics] = None
) -> IndexResult:
    """
    Calculate standardized index values for a daily series.

    For every date in ``dates``:
        1. the reference sample of the aggregate over ``agg_length`` days is
           built from ``ref_data`` (see compute.reference_values),
        2. the distribution is fitted to it, unless a row for the date is
           supplied in ``params``,
        3. the aggregate of ``data`` ending at the date is mapped through the
           fitted CDF (blended with the probability of zero for gamma and
           weibull) and the inverse standard normal CDF.

    Problems for one date (too many missing values, failed fits, rejected
    goodness of fit) give NaN for that date and a diagnostic in
    ``IndexResult.warnings``; other dates are unaffected.

    :param data: daily pandas Series with a DatetimeIndex
    :param dates: date or dates to compute the index for
    :param agg_length: aggregation window in days
    :param agg_fun: reduction, a callable or one of 'sum', 'mean', 'median',
        'min', 'max'
    :param ref_data: daily series for the reference samples (default: data)
    :param distribution: 'gamma', 'gamma3', 'weibull', 'weibull3', 'gev' or
        'glogis'
    :param method: 'mle' or 'lmom' (default depends on the distribution)
    :param params: parameter table indexed by date, as returned in
        ``IndexResult.params``; dates found in it are not refitted
    :param ks_threshold: minimum Kolmogorov-Smirnov p-value of an accepted fit
    :param ad_threshold: minimum Anderson-Darling p-value of an accepted fit
    :param ref_years: None/'all', 'trailing' or a list of years
    :param ref_length: number of preceding years for 'trailing'
    :param ref_na_threshold: percentage of missing reference values at which
        no distribution is fitted
    :param agg_na_threshold: tolerated percentage of missing values per window
        (default: ref_na_threshold)
    :param agg_interpolation: 'none', 'linear', 'mean' or 'zeros'
    :param digits: number of decimals of the index values
    :param return_details: include reference samples, aggregates, parameter
        table and fits in the result
    :param parallel: fit dates concurrently with dask's threaded scheduler
    :param diagnostics: optional collector receiving all diagnostics
    :return: IndexResult
    :raises ConfigurationError: for invalid settings, before any computation
    :raises ValueError: for invalid series
    """
    # validate configuration before any work
    distribution = DistributionType.from_string(distribution)
    method = resolve_method(distribution, method)
    agg_length = validate_agg_length(agg_length)
    reducer, agg_fun_name = resolve_aggregation_function(agg_fun)
    interpolation = Interpolation.from_string(agg_interpolation)
    policy, years = resolve_reference_policy(ref_years)
    if policy == ReferencePolicy.trailing:
        ref_length = validate_ref_length(ref_length)
    ks_threshold = check_threshold('ks_threshold', ks_threshold, upper=1.0)
    ad_threshold = check_threshold('ad_threshold', ad_threshold, upper=1.0)
    ref_na_threshold = check_threshold('ref_na_threshold', ref_na_threshold)
    if ref_na_threshold is None:
        raise ConfigurationError("ref_na_threshold must be set")
    if agg_na_threshold is None:
        agg_na_threshold = ref_na_threshold
    agg_na_threshold = check_threshold('agg_na_threshold', agg_na_threshold)
    if isinstance(digits, bool) or not isinstance(digits, (int, np.integer)) or digits < 0:
        raise ConfigurationError(f"digits must be a non-negative integer, got: {digits!r}")

    table = None
    if params is not None:
        table = _validate_params_table(params, distribution, method)

    series = as_daily_series(data)
    ref_series = series if ref_data is None else as_daily_series(ref_data, name='ref_data')
    dates = to_timestamps(dates)
    if dates.has_duplicates:
        raise ValueError("dates must not contain duplicates")

    diagnostics = ensure_diagnostics(diagnostics)
    n_before = len(diagnostics)

    report = summarize_data_completeness(ref_series)
    _logger.info(
        f"Standardized index: {distribution} ({method}), {agg_length}-day {agg_fun_name}, "
        f"{len(dates)} dates, reference {report['first_year']}-{report['last_year']} "
        f"({report['completeness']:.1f}% complete)"
    )

    # partition into supplied and fitted dates
    if table is not None:
        supplied = dates[dates.isin(table.index)]
    else:
        supplied = dates[:0]
    to_fit = dates[~dates.isin(supplied)]
    _logger.info(f"{len(supplied)} dates with supplied parameters, {len(to_fit)} to fit")

    outcomes = _fit_dates(
        to_fit,
        parallel,
        ref_series=ref_series,
        agg_length=agg_length,
        reducer=reducer,
        policy=policy,
        years=years,
        ref_length=ref_length,
        agg_na_threshold=agg_na_threshold,
        interpolation=interpolation,
        distribution=distribution,
        method=method,
        ref_na_threshold=ref_na_threshold,
    )

    columns = table_columns(distribution, method)
    rows: Dict[pd.Timestamp, Dict[str, float]] = {}
    fits: Dict[pd.Timestamp, FittedDistribution] = {}
    samples: Dict[pd.Timestamp, pd.Series] = {}
    for date in supplied:
        rows[date] = table.loc[date].to_dict()
    for date, (fitted, sample, fit_diagnostics) in zip(to_fit, outcomes):
        diagnostics.extend(fit_diagnostics)
        rows[date] = fitted.to_row()
        fits[date] = fitted
        if sample is not None:
            samples[date] = sample
    param_table = _params_frame(dates, rows, columns)

    aggregates = aggregate_series(
        dates, series, agg_length, reducer, agg_na_threshold, interpolation, diagnostics,
    )

    values = np.full(len(dates), np.nan)
    for i, date in enumerate(dates):
        values[i] = _standardize(
            date, aggregates[date], param_table.loc[date], distribution, method,
            ks_threshold, ad_threshold, diagnostics,
        )
    values = pd.Series(np.round(values, digits), index=dates, name='value')

    n_valid = int(values.notna().sum())
    _logger.info(f"Computed {n_valid} of {len(dates)} index values")

    metadata = {
        'agg_length': agg_length,
        'agg_fun': agg_fun_name,
        'distr': distribution.label(method),
        'method': method.value,
        'ks_thres': ks_threshold,
        'ad_thres': ad_threshold,
        'ref_years': years if years is not None else policy.name,
        'ref_length': ref_length,
        'ref_na_thres': ref_na_threshold,
        'agg_na_thres': agg_na_threshold,
        'agg_interpolation': interpolation.name,
        'digits': int(digits),
    }

    details = None
    if return_details:
        details = IndexDiagnostics(
            reference_values=samples,
            aggregates=aggregates,
            params=param_table,
            fits=fits,
            data_attrs=dict(series.attrs),
            ref_data_attrs=dict(ref_series.attrs),
        )

    return IndexResult(
        values=values,
        metadata=metadata,
        warnings=diagnostics.to_list()[n_before:],
        details=details,
    )


# =============================================================================
# CLASSIFICATION
# =============================================================================

# Class boundaries and labels after McKee et al. (1993)
INDEX_CLASSES = (
    (-np.inf, -2.0, -3, 'Extremely dry'),
    (-2.0, -1.5, -2, 'Severely dry'),
    (-1.5, -1.0, -1, 'Moderately dry'),
    (-1.0, 1.0, 0, 'Near normal'),
    (1.0, 1.5, 1, 'Moderately wet'),
    (1.5, 2.0, 2, 'Very wet'),
    (2.0, np.inf, 3, 'Extremely wet'),
)


def classify_index(
    index_values: Union[np.ndarray, pd.Series]
) -> Union[np.ndarray, pd.Series]:
    """
    Classify standardized index values into dry/wet categories.

    :param index_values: index values
    :return: integer categories from -3 (extremely dry) to 3 (extremely wet),
        NaN where the index is NaN

    McKee et al. (1993) classification:
        >= 2.0:  Extremely wet (3)
        1.5 to 2.0: Very wet (2)
        1.0 to 1.5: Moderately wet (1)
        -1.0 to 1.0: Near normal (0)
        -1.5 to -1.0: Moderately dry (-1)
        -2.0 to -1.5: Severely dry (-2)
        <= -2.0: Extremely dry (-3)
    """
    values = np.asarray(index_values, dtype=float)
    categories = np.full(values.shape, np.nan)

    for lower, upper, category, _ in INDEX_CLASSES:
        if lower == -np.inf:
            mask = values <= upper
        elif upper == np.inf:
            mask = values >= lower
        elif upper <= -1.0:
            mask = (values > lower) & (values <= upper)
        elif lower >= 1.0:
            mask = (values >= lower) & (values < upper)
        else:
            mask = (values > lower) & (values < upper)
        categories = np.where(mask, category, categories)

    if isinstance(index_values, pd.Series):
        return pd.Series(categories, index=index_values.index, name='category')
    return categories


# =============================================================================
# FITTING PARAMETERS I/O
# =============================================================================

def _global_attributes(title: str, extra_attrs: Optional[Dict] = None) -> Dict:
    from . import __version__

    attrs = {
        'title': title,
        'institution': 'GOST/DEC Data Group, The World Bank',
        'source': f'stdindex v{__version__}',
        'history': f'Created {datetime.now():%Y-%m-%d %H:%M:%S}',
        'Conventions': 'CF-1.8',
    }
    if extra_attrs:
        attrs.update(extra_attrs)
    return attrs


def save_fitting_params(
    params: pd.DataFrame,
    filepath: str,
    distribution: Union[str, DistributionType],
    method: Optional[Union[str, FittingMethod]] = None,
    metadata: Optional[Dict] = None,
    global_attrs: Optional[Dict] = None
) -> str:
    """
    Save a parameter table to NetCDF for later reuse.

    The table can be loaded with load_fitting_params() and passed back as
    ``params`` to standardized_index() to skip refitting.

    :param params: parameter table indexed by date (IndexResult.params)
    :param filepath: output NetCDF file path
    :param distribution: distribution the table was fitted with
    :param method: fitting method (default depends on the distribution)
    :param metadata: optional result metadata stored as global attributes
    :param global_attrs: optional additional global attributes
    :return: filepath of saved file
    """
    distribution = DistributionType.from_string(distribution)
    method = resolve_method(distribution, method)
    _logger.info(f"Saving {distribution} fitting parameters to: {filepath}")

    index = to_timestamps(params.index)
    ds = xr.Dataset(coords={'time': index.to_numpy()})
    for column in table_columns(distribution, method):
        if column not in params.columns:
            _logger.warning(f"Parameter '{column}' not found in table")
            continue
        ds[column] = xr.DataArray(
            data=params[column].to_numpy(dtype=float),
            dims=('time',),
            attrs={'long_name': f"{distribution} {column}"},
        )

    extra = {'distribution': distribution.value, 'method': method.value}
    if metadata:
        extra.update({
            key: value for key, value in get_variable_attributes(metadata).items()
            if key not in ('long_name', 'units', 'distr', 'method')
        })
    if global_attrs:
        extra.update(global_attrs)
    ds.attrs = _global_attributes(f"{distribution} distribution fitting parameters", extra)

    # Ensure directory exists
    dir_path = os.path.dirname(os.path.abspath(filepath))
    if dir_path:
        os.makedirs(dir_path, exist_ok=True)

    encoding = {}
    for var in ds.data_vars:
        encoding[var] = {
            'dtype': 'float64',
            '_FillValue': NC_FILL_VALUE,
            'zlib': True,
            'complevel': 4
        }

    ds.to_netcdf(filepath, encoding=encoding)
    _logger.info(f"Fitting parameters saved: {filepath}")

    return filepath


def load_fitting_params(filepath: str) -> pd.DataFrame:
    """
    Load a parameter table from NetCDF.

    The distribution and method are stored in ``DataFrame.attrs`` and checked
    by standardized_index() when the table is supplied as ``params``.

    :param filepath: path to NetCDF file written by save_fitting_params()
    :return: parameter table indexed by date
    :raises FileNotFoundError: if file doesn't exist
    :raises KeyError: if required variables not found
    """
    _logger.info(f"Loading fitting parameters from: {filepath}")

    if not os.path.exists(filepath):
        raise FileNotFoundError(f"Fitting parameters file not found: {filepath}")

    with xr.open_dataset(filepath) as ds:
        distribution = DistributionType.from_string(ds.attrs['distribution'])
        method = resolve_method(distribution, ds.attrs.get('method'))

        data = {}
        for column in table_columns(distribution, method):
            if column not in ds:
                raise KeyError(
                    f"Variable '{column}' not found in {filepath}. "
                    f"Available variables: {list(ds.data_vars)}"
                )
            data[column] = ds[column].values.astype(float)
        index = pd.DatetimeIndex(ds['time'].values, name='date')

    table = pd.DataFrame(data, index=index)
    table.attrs = {'distribution': distribution.value, 'method': method.value}

    _logger.info(f"Loaded {distribution} parameters for {len(table)} dates")
    return table


def save_index_to_netcdf(
    data: Union[IndexResult, xr.DataArray, xr.Dataset],
    filepath: str,
    compress: bool = True,
    complevel: int = 5
) -> str:
    """
    Save standardized index results to NetCDF file with proper encoding.

    :param data: IndexResult, DataArray or Dataset to save
    :param filepath: output file path
    :param compress: whether to use compression
    :param complevel: compression level (1-9)
    :return: filepath of saved file
    """
    _logger.info(f"Saving to: {filepath}")

    # Ensure directory exists
    dir_path = os.path.dirname(os.path.abspath(filepath))
    if dir_path:
        os.makedirs(dir_path, exist_ok=True)

    if isinstance(data, IndexResult):
        data = data.to_dataarray()
    if isinstance(data, xr.DataArray):
        data = data.to_dataset()

    encoding = {}
    for var in data.data_vars:
        encoding[var] = {
            'dtype': 'float32',
            '_FillValue': NC_FILL_VALUE,
        }
        if compress:
            encoding[var]['zlib'] = True
            encoding[var]['complevel'] = complevel

    data.to_netcdf(filepath, encoding=encoding)
    _logger.info(f"Saved: {filepath}")

    return filepath
