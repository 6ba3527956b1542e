"""
Shared fixtures for the stdindex test suite.

Synthetic daily precipitation stands in for station data: gamma-distributed
amounts on wet days, with a fixed seed so every run sees the same series.
"""

import matplotlib

matplotlib.use('Agg')

import numpy as np
import pandas as pd
import pytest


def make_daily_precip(start='1981-01-01', end='2020-12-31', seed=42, wet_fraction=0.6):
    """Daily precipitation with dry days as exact zeros."""
    dates = pd.date_range(start, end, freq='D')
    rng = np.random.default_rng(seed)
    amounts = rng.gamma(shape=0.8, scale=6.0, size=len(dates))
    wet = rng.uniform(size=len(dates)) < wet_fraction
    series = pd.Series(np.where(wet, amounts, 0.0), index=dates, name='precip')
    series.attrs = {'station': 'synthetic', 'units': 'mm/day'}
    return series


@pytest.fixture(scope='session')
def daily_precip():
    """40 years (1981-2020) of synthetic daily precipitation."""
    return make_daily_precip()


@pytest.fixture
def ramp_series():
    """One year of daily values 1, 2, 3, ... for exact aggregation checks."""
    dates = pd.date_range('2000-01-01', '2000-12-31', freq='D')
    return pd.Series(np.arange(1, len(dates) + 1, dtype=float), index=dates)
