"""
Visualization functions for standardized indices and distribution fits.

Provides a goodness-of-fit plot comparing the empirical CDF of a reference
sample with its fitted distribution, and a classified time series plot of
standardized index values.

---
Author: Benny Istanto, GOST/DEC Data Group/The World Bank
---
"""

import os
from typing import Optional, Tuple, Union

import matplotlib.patches as mpatches
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import xarray as xr
from matplotlib.dates import DateFormatter

from .config import FIT_PROPERTY_NAMES, get_logger
from .distributions import FittedDistribution
from .indices import INDEX_CLASSES, IndexResult, classify_index

# Module logger
_logger = get_logger(__name__)

# Number of variates drawn to trace the fitted CDF
FIT_SAMPLE_SIZE = 10000

# Colors per class of classify_index(), dry to wet
CLASS_COLORS = {
    -3: '#760005',
    -2: '#ec0013',
    -1: '#ffa938',
    0: '#d9d9d9',
    1: '#00b44a',
    2: '#008180',
    3: '#2a23eb',
}


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================

def _png_filename(filename: str) -> str:
    """Append a .png extension if missing and make sure the directory exists."""
    if not filename.lower().endswith('.png'):
        filename = f"{filename}.png"
    dir_path = os.path.dirname(os.path.abspath(filename))
    if dir_path:
        os.makedirs(dir_path, exist_ok=True)
    return filename


def _empirical_cdf(values: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Sorted values and their empirical cumulative probabilities."""
    x = np.sort(values)
    return x, np.arange(1, len(x) + 1) / len(x)


# =============================================================================
# GOODNESS-OF-FIT PLOTS
# =============================================================================

def plot_fit(
    fitted: FittedDistribution,
    date=None,
    title: Optional[str] = None,
    xlabel: str = 'data',
    filename: Optional[str] = None,
    figsize: Tuple[float, float] = (6.5, 6.5),
    random_state=None,
    ax: Optional[plt.Axes] = None
) -> plt.Axes:
    """
    Plot the empirical CDF of a fitted sample against the fitted distribution.

    The fitted CDF is traced from random variates of the fitted distribution.
    Parameters, sample properties and goodness-of-fit p-values are listed in
    the lower right corner.

    :param fitted: result of fit_distribution()
    :param date: optional date shown above the properties
    :param title: plot title (optional)
    :param xlabel: label of the x axis
    :param filename: save the figure as PNG (extension added if missing)
    :param figsize: figure size (width, height) in inches
    :param random_state: seed for the variates of the fitted distribution
    :param ax: existing axes to plot on (optional)
    :return: matplotlib Axes object

    Example:
        >>> fit = fit_distribution(sample, distribution='gamma')
        >>> ax = plot_fit(fit, title='SPI-30 reference sample')
        >>> plt.show()
    """
    sample = np.asarray(fitted.sample, dtype=float)
    if fitted.distribution.zero_bounded:
        sample = sample[sample != 0]

    if ax is None:
        fig, ax = plt.subplots(figsize=figsize)

    if len(sample) > 0:
        x, ecdf = _empirical_cdf(sample)
        ax.scatter(x, ecdf, facecolors='none', edgecolors='black', s=20,
                   label=f'empirical CDF (n={len(sample)})')

    if fitted.is_valid():
        variates = fitted.rvs(FIT_SAMPLE_SIZE, random_state=random_state)
        variates = variates[np.isfinite(variates)]
        x, ecdf = _empirical_cdf(variates)
        ax.plot(x, ecdf, color='red', linewidth=1.2, label='fitted CDF')
    else:
        ax.text(0.5, 0.85, 'no distribution fitted', transform=ax.transAxes,
                color='red', fontweight='bold', ha='center')

    props = []
    if date is not None:
        props.append(f"date: {pd.Timestamp(date):%d-%m-%Y}")
    props.append(f"distribution: {fitted.distribution}")
    props.append(f"fit method: {fitted.method}")
    props.append(f"na threshold: {fitted.na_threshold}")
    props.append('parameters:')
    props.extend(f"   {name}: {value:.3f}" for name, value in fitted.params.items())
    props.append('goodness-of-fit:')
    row = fitted.to_row()
    props.extend(f"   {name}: {row[name]:.3f}" for name in FIT_PROPERTY_NAMES)
    ax.text(0.98, 0.02, '\n'.join(props), transform=ax.transAxes,
            fontsize=8, ha='right', va='bottom', family='monospace')

    ax.set_xlabel(xlabel, fontsize=12)
    ax.set_ylabel('CDF', fontsize=12)
    ax.grid(True, alpha=0.3)
    ax.legend(loc='upper left', frameon=False)
    if title:
        ax.set_title(title, fontsize=14, fontweight='bold')

    if filename is not None:
        filename = _png_filename(filename)
        ax.figure.savefig(filename, dpi=150, bbox_inches='tight')
        _logger.info(f"Saved fit plot: {filename}")

    return ax


# =============================================================================
# INDEX TIME SERIES PLOTS
# =============================================================================

def plot_index(
    index_values: Union[IndexResult, pd.Series, xr.DataArray, np.ndarray],
    threshold: float = -1.0,
    title: Optional[str] = None,
    figsize: Tuple[float, float] = (14, 6),
    colors: Optional[dict] = None,
    filename: Optional[str] = None,
    ax: Optional[plt.Axes] = None
) -> plt.Axes:
    """
    Plot standardized index time series colored by McKee classification.

    :param index_values: IndexResult, Series or 1-D array of index values
    :param threshold: event threshold for reference line (default: -1.0)
    :param title: plot title (optional, defaults to the result description)
    :param figsize: figure size (width, height) in inches
    :param colors: custom color per class (-3 to 3), see CLASS_COLORS
    :param filename: save the figure as PNG (extension added if missing)
    :param ax: existing axes to plot on (optional)
    :return: matplotlib Axes object

    Example:
        >>> result = standardized_index(precip, dates, agg_length=30)
        >>> ax = plot_index(result, threshold=-1.5)
        >>> plt.show()
    """
    # Extract time index and values
    time_index = None
    if isinstance(index_values, IndexResult):
        meta = index_values.metadata
        if title is None:
            title = f"Standardized index ({meta['distr']}, {meta['agg_length']}-day {meta['agg_fun']})"
        index_values = index_values.values
    if isinstance(index_values, xr.DataArray):
        if 'time' in index_values.dims:
            time_index = pd.to_datetime(index_values.time.values)
        values = index_values.values
    elif isinstance(index_values, pd.Series):
        time_index = index_values.index
        values = index_values.values
    else:
        values = np.asarray(index_values, dtype=float)

    if time_index is None:
        time_index = np.arange(len(values))

    if colors is None:
        colors = CLASS_COLORS

    if ax is None:
        fig, ax = plt.subplots(figsize=figsize)

    categories = classify_index(np.asarray(values, dtype=float))
    valid = ~np.isnan(categories)
    if valid.any():
        if isinstance(time_index, pd.DatetimeIndex) and len(time_index) > 1:
            width = 0.8 * float(np.median(np.diff(time_index.values).astype('timedelta64[D]').astype(float)))
        else:
            width = 0.8
        ax.bar(
            np.asarray(time_index)[valid],
            np.asarray(values, dtype=float)[valid],
            width=max(width, 0.8),
            color=[colors[int(c)] for c in categories[valid]],
            edgecolor='none',
            alpha=0.9,
        )
    else:
        _logger.warning("No valid index values to plot")

    # Add threshold line
    ax.axhline(y=threshold, color='red', linestyle='--', linewidth=1.5,
               label=f'Threshold ({threshold})')
    ax.axhline(y=0, color='black', linestyle='-', linewidth=0.8)

    ax.set_ylabel('Index Value', fontsize=12)
    ax.set_xlabel('Time', fontsize=12)
    ax.grid(True, alpha=0.3, axis='y')

    if title:
        ax.set_title(title, fontsize=14, fontweight='bold')

    if isinstance(time_index, pd.DatetimeIndex):
        ax.xaxis.set_major_formatter(DateFormatter('%Y-%m'))

    legend_elements = [
        mpatches.Patch(color=colors[category], label=label)
        for _, _, category, label in INDEX_CLASSES
    ]
    ax.legend(handles=legend_elements, loc='upper left', bbox_to_anchor=(1.02, 1),
              fontsize=9, framealpha=0.9)

    ax.figure.tight_layout()

    if filename is not None:
        filename = _png_filename(filename)
        ax.figure.savefig(filename, dpi=150, bbox_inches='tight')
        _logger.info(f"Saved index plot: {filename}")

    return ax
