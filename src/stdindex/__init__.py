"""
Standardized Index Package - SPI, SPEI, SSI and related indices from daily data

Compute standardized indices for any daily univariate series (precipitation,
climatic water balance, streamflow, ...) by fitting one of six parametric
distributions to the same trailing-window aggregate in historical reference
years and mapping the observed aggregate to the standard normal scale.

The indices work for both climate extremes:
- Negative values indicate dry conditions (drought)
- Positive values indicate wet conditions (flooding/excess precipitation)

Author: Benny Istanto
Organization: GOST/DEC Data Group, The World Bank

References:
    McKee, T.B., Doesken, N.J., Kleist, J. (1993). The relationship of drought
    frequency and duration to time scales. 8th Conference on Applied Climatology.

    Stagge, J.H., Tallaksen, L.M., Gudmundsson, L., Van Loon, A.F., Stahl, K.
    (2015). Candidate Distributions for Climatological Drought Indices (SPI and
    SPEI). International Journal of Climatology, 35(13), 4027-4040.

Example:
    >>> from stdindex import standardized_index, save_fitting_params
    >>>
    >>> # 30-day SPI for every day of 2020, reference: all other years
    >>> dates = pd.date_range('2020-01-01', '2020-12-31', freq='D')
    >>> result = standardized_index(precip, dates, agg_length=30, return_details=True)
    >>> print(result.summary())
    >>>
    >>> # Save parameters for reuse
    >>> save_fitting_params(result.params, 'spi30_params.nc', distribution='gamma')
"""

__version__ = "2026.1"
__author__ = "Benny Istanto"
__email__ = "bistanto@worldbank.org"

# Core index function
from .indices import (
    IndexDiagnostics,
    IndexResult,
    standardized_index,
)

# Parameter I/O
from .indices import (
    load_fitting_params,
    save_fitting_params,
)

# Output utilities
from .indices import (
    classify_index,
    save_index_to_netcdf,
)

# Configuration
from .config import (
    AGGREGATION_FUNCTIONS,
    DEFAULT_DIGITS,
    DEFAULT_NA_THRESHOLD,
    DEFAULT_REF_LENGTH,
    ConfigurationError,
    Interpolation,
    ReferencePolicy,
)

# Diagnostics
from .diagnostics import (
    Diagnostic,
    DiagnosticKind,
    Diagnostics,
)

# Aggregation and reference samples
from .compute import (
    AggregationError,
    aggregate_series,
    aggregated_value,
    reference_values,
)

# Distributions
from .distributions import (
    DistributionType,
    FittedDistribution,
    FittingMethod,
    compute_lmoments,
    distribution_cdf,
    distribution_ppf,
    distribution_rvs,
    fit_distribution,
)

# Utilities
from .utils import (
    as_daily_series,
    format_series_summary,
    representative_date,
    summarize_data_completeness,
)

# Visualization
from .visualization import (
    plot_fit,
    plot_index,
)


__all__ = [
    # Version
    "__version__",
    # Core function
    "standardized_index",
    "IndexResult",
    "IndexDiagnostics",
    # Parameter I/O
    "save_fitting_params",
    "load_fitting_params",
    # Output utilities
    "save_index_to_netcdf",
    "classify_index",
    # Configuration
    "AGGREGATION_FUNCTIONS",
    "DEFAULT_DIGITS",
    "DEFAULT_NA_THRESHOLD",
    "DEFAULT_REF_LENGTH",
    "ConfigurationError",
    "Interpolation",
    "ReferencePolicy",
    # Diagnostics
    "Diagnostic",
    "DiagnosticKind",
    "Diagnostics",
    # Aggregation and reference samples
    "AggregationError",
    "aggregate_series",
    "aggregated_value",
    "reference_values",
    # Distributions
    "DistributionType",
    "FittedDistribution",
    "FittingMethod",
    "compute_lmoments",
    "distribution_cdf",
    "distribution_ppf",
    "distribution_rvs",
    "fit_distribution",
    # Utilities
    "as_daily_series",
    "format_series_summary",
    "representative_date",
    "summarize_data_completeness",
    # Visualization
    "plot_fit",
    "plot_index",
]
