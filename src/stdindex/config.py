"""
Configuration module for standardized index calculation.

Contains enums, default settings, configuration errors and logging setup.

---
Author: Benny Istanto, GOST/DEC Data Group/The World Bank
---
"""

import logging
import math
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Union

import numpy as np


# =============================================================================
# ERRORS
# =============================================================================

class ConfigurationError(ValueError):
    """Invalid combination of settings, raised before anything is computed."""


# =============================================================================
# ENUMS
# =============================================================================

class Interpolation(Enum):
    """
    Treatment of missing values inside a single aggregation window.

    'none': missing values are removed before aggregation
    'linear': linear interpolation between the neighbouring observed values,
        values at the window edges are held constant
    'mean': missing values are replaced by the mean of the observed values
    'zeros': missing values are replaced by zero
    """

    none = 'none'
    linear = 'linear'
    mean = 'mean'
    zeros = 'zeros'

    def __str__(self):
        return self.name

    @staticmethod
    def from_string(s: Union[str, 'Interpolation']) -> 'Interpolation':
        """
        Convert string to Interpolation enum.

        :param s: string value ('none', 'linear', 'mean' or 'zeros')
        :return: Interpolation enum value
        :raises ConfigurationError: if string doesn't match any interpolation
        """
        if isinstance(s, Interpolation):
            return s
        try:
            return Interpolation[str(s).lower()]
        except KeyError:
            raise ConfigurationError(
                f"Invalid interpolation: '{s}'. "
                f"Must be one of: {[i.name for i in Interpolation]}."
            )


class ReferencePolicy(Enum):
    """
    Selection of the reference years used to build a reference sample.

    'all': every year present in the reference data, except the year of the
        target date
    'trailing': the ref_length years immediately preceding the year of the
        target date
    'explicit': a caller-supplied list of years
    """

    all = 'all'
    trailing = 'trailing'
    explicit = 'explicit'

    def __str__(self):
        return self.name

    def default_period_warn(self) -> bool:
        """
        Default out-of-range behaviour for aggregation windows of this policy.

        Windows reaching outside the reference data are skipped when all years
        are used, and kept as partially missing otherwise.
        """
        return self != ReferencePolicy.all


def resolve_reference_policy(
    ref_years
) -> Tuple[ReferencePolicy, Optional[List[int]]]:
    """
    Resolve a ref_years argument to a policy and an explicit year list.

    :param ref_years: None or 'all' (all years), 'trailing' or NaN (trailing
        ref_length years, also a list holding only NaN), or an iterable of
        integer years
    :return: tuple of (ReferencePolicy, list of years or None)
    :raises ConfigurationError: for unrecognized values
    """
    if ref_years is None:
        return ReferencePolicy.all, None
    if isinstance(ref_years, str):
        try:
            policy = ReferencePolicy[ref_years.lower()]
        except KeyError:
            policy = None
        if policy is None or policy == ReferencePolicy.explicit:
            raise ConfigurationError(
                f"Invalid ref_years: '{ref_years}'. "
                f"Use None/'all', 'trailing' or a list of years."
            )
        return policy, None
    if isinstance(ref_years, float) and math.isnan(ref_years):
        return ReferencePolicy.trailing, None
    if isinstance(ref_years, Iterable):
        candidates = list(ref_years)
        if not candidates:
            raise ConfigurationError("ref_years must not be an empty list")
        # a list holding only NaN selects the trailing years, like a bare NaN
        if all(isinstance(y, (float, np.floating)) and math.isnan(y) for y in candidates):
            return ReferencePolicy.trailing, None
        years = []
        for year in candidates:
            if isinstance(year, (bool, np.bool_, str)):
                raise ConfigurationError(f"Reference years must be integers, got: {year!r}")
            try:
                as_int = int(year)
            except (TypeError, ValueError, OverflowError):
                raise ConfigurationError(f"Reference years must be integers, got: {year!r}")
            if as_int != year:
                raise ConfigurationError(f"Reference years must be integers, got: {year!r}")
            years.append(as_int)
        return ReferencePolicy.explicit, sorted(set(years))
    raise ConfigurationError(f"Invalid ref_years: {ref_years!r}")


# =============================================================================
# CONSTANTS
# =============================================================================

# Default percentage of missing values tolerated in reference samples and
# aggregation windows
DEFAULT_NA_THRESHOLD = 10.0

# Default number of years preceding the target date for the trailing policy
DEFAULT_REF_LENGTH = 30

# Default number of digits for rounding index values
DEFAULT_DIGITS = 2

DEFAULT_DISTRIBUTION = 'gamma'

DEFAULT_AGG_FUN = 'sum'

# Fill value for missing data in NetCDF files
NC_FILL_VALUE = -9999.0

# Named reductions accepted in place of a callable agg_fun
AGGREGATION_FUNCTIONS: Dict[str, Callable] = {
    'sum': np.sum,
    'mean': np.mean,
    'median': np.median,
    'min': np.min,
    'max': np.max,
}

# Column names of the parameter table besides the distribution parameters
FIT_PROPERTY_NAMES = ('prob_zero', 'n_obs', 'n_na', 'pct_na', 'ks_pval', 'ad_pval')

# Metadata keys attached to every standardized index result
METADATA_KEYS = (
    'agg_length', 'agg_fun', 'distr', 'method', 'ks_thres', 'ad_thres',
    'ref_years', 'ref_length', 'ref_na_thres', 'agg_na_thres',
    'agg_interpolation', 'digits',
)


def resolve_aggregation_function(
    agg_fun: Union[str, Callable]
) -> Tuple[Callable, str]:
    """
    Resolve a reduction given by name or callable.

    :param agg_fun: one of the names in AGGREGATION_FUNCTIONS or a callable
    :return: tuple of (callable, display name)
    :raises ConfigurationError: for unknown names or non-callables
    """
    if isinstance(agg_fun, str):
        try:
            return AGGREGATION_FUNCTIONS[agg_fun.lower()], agg_fun.lower()
        except KeyError:
            raise ConfigurationError(
                f"Unknown aggregation function: '{agg_fun}'. "
                f"Use a callable or one of: {sorted(AGGREGATION_FUNCTIONS)}"
            )
    if not callable(agg_fun):
        raise ConfigurationError(f"agg_fun must be callable, got: {type(agg_fun)}")
    return agg_fun, getattr(agg_fun, '__name__', repr(agg_fun))


def check_threshold(name: str, value: Optional[float], upper: float = 100.0) -> Optional[float]:
    """Validate an optional percentage or p-value threshold."""
    if value is None:
        return None
    value = float(value)
    if math.isnan(value) or value < 0 or value > upper:
        raise ConfigurationError(f"{name} must be within [0, {upper}], got: {value}")
    return value


# =============================================================================
# LOGGING
# =============================================================================

def get_logger(
    name: str,
    level: int = logging.INFO
) -> logging.Logger:
    """
    Set up and return a logger with consistent formatting.

    :param name: logger name (typically __name__ of calling module)
    :param level: logging level (default: logging.INFO)
    :return: configured logger instance
    """
    logging.basicConfig(
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logger = logging.getLogger(name)
    logger.setLevel(level)
    return logger


# =============================================================================
# METADATA
# =============================================================================

def get_long_name(distribution: str, agg_length: int) -> str:
    """
    Generate long descriptive name for output attributes.

    :param distribution: distribution name (e.g. 'gamma')
    :param agg_length: aggregation length in days
    :return: formatted long name
    """
    return f"Standardized Index ({distribution}), {agg_length}-day aggregation"


def get_variable_attributes(metadata: dict) -> dict:
    """
    Generate NetCDF-safe variable attributes for a standardized index result.

    Entries that are None are dropped and sequences are stored as arrays,
    since NetCDF attributes cannot hold either.

    :param metadata: result metadata (see METADATA_KEYS)
    :return: dictionary of attributes
    """
    attrs = {
        'long_name': get_long_name(metadata['distr'], metadata['agg_length']),
        'units': '1',
    }
    for key in METADATA_KEYS:
        value = metadata.get(key)
        if value is None:
            continue
        if isinstance(value, (list, tuple)):
            value = np.asarray(value)
        attrs[key] = value
    return attrs
