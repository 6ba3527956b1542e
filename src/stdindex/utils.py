"""
Utility functions for standardized index calculation.

Includes validation of daily series, calendar helpers for aggregation windows
and reference years, data completeness reporting and text summaries of
index results.

---
Author: Benny Istanto, GOST/DEC Data Group/The World Bank
---
"""

import calendar
from typing import Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd


# =============================================================================
# SERIES VALIDATION
# =============================================================================

def as_daily_series(
    data: Union[pd.Series, Sequence[float], np.ndarray],
    dates: Optional[Sequence] = None,
    name: str = 'data'
) -> pd.Series:
    """
    Validate and return a daily series indexed by dates.

    The input is never modified. Series metadata in ``attrs`` is carried over.
    Gaps between dates are allowed; absent days are treated as missing by the
    aggregation.

    :param data: pandas Series with a DatetimeIndex, or a sequence of values
        when ``dates`` is given
    :param dates: dates matching ``data`` when it is not a Series
    :param name: label used in error messages
    :return: float Series with a day-resolution DatetimeIndex
    :raises ValueError: if the index is not daily, not strictly increasing or
        the lengths don't match
    """
    if isinstance(data, pd.Series) and dates is None:
        series = data
    else:
        if dates is None:
            raise ValueError(f"{name}: dates are required when values are not a pandas Series")
        values = np.asarray(data, dtype=float)
        if values.ndim != 1:
            raise ValueError(f"{name}: expected 1-D values, got shape {values.shape}")
        if len(values) != len(dates):
            raise ValueError(
                f"{name}: {len(values)} values but {len(dates)} dates"
            )
        series = pd.Series(values, index=pd.DatetimeIndex(dates))
        if isinstance(data, pd.Series):
            series.attrs = dict(data.attrs)

    if not isinstance(series.index, pd.DatetimeIndex):
        try:
            index = pd.DatetimeIndex(series.index)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"{name}: index must contain dates") from exc
    else:
        index = series.index

    if index.tz is not None:
        index = index.tz_localize(None)
    if len(index) > 0 and not (index == index.normalize()).all():
        raise ValueError(f"{name}: dates must be whole days (daily data)")
    if index.has_duplicates:
        raise ValueError(f"{name}: duplicated dates in index")
    if not index.is_monotonic_increasing:
        raise ValueError(f"{name}: dates must be strictly increasing")

    try:
        values = series.to_numpy(dtype=float, na_value=np.nan)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{name}: values must be numeric") from exc

    result = pd.Series(values, index=index, name=series.name)
    result.attrs = dict(series.attrs)
    return result


def series_covers(series: pd.Series, date: pd.Timestamp) -> bool:
    """Check whether a date lies within the first and last date of a series."""
    if len(series) == 0:
        return False
    return series.index[0] <= date <= series.index[-1]


# =============================================================================
# CALENDAR HELPERS
# =============================================================================

def window_bounds(date: pd.Timestamp, agg_length: int) -> Tuple[pd.Timestamp, pd.Timestamp]:
    """
    Inclusive bounds of the trailing aggregation window ending at a date.

    :param date: last day of the window
    :param agg_length: number of days in the window
    :return: tuple of (start, end)
    """
    end = pd.Timestamp(date).normalize()
    start = end - pd.Timedelta(days=max(agg_length, 1) - 1)
    return start, end


def representative_date(date: pd.Timestamp, year: int) -> pd.Timestamp:
    """
    Same month and day as ``date`` in another year.

    February 29 maps to February 28 when the target year is not a leap year.

    :param date: target date
    :param year: reference year
    :return: date in the reference year
    """
    date = pd.Timestamp(date)
    day = date.day
    if date.month == 2 and day == 29 and not calendar.isleap(year):
        day = 28
    return pd.Timestamp(year=year, month=date.month, day=day)


def to_timestamps(dates) -> pd.DatetimeIndex:
    """Normalize a date, list of dates or index to a day-resolution DatetimeIndex."""
    if isinstance(dates, (str, pd.Timestamp, np.datetime64)) or not hasattr(dates, '__len__'):
        dates = [dates]
    index = pd.DatetimeIndex(dates)
    if index.tz is not None:
        index = index.tz_localize(None)
    return index.normalize()


# =============================================================================
# DATA COMPLETENESS REPORTING
# =============================================================================

def summarize_data_completeness(series: pd.Series) -> dict:
    """
    Report completeness of a daily series over its calendar span.

    Days absent from the index count as missing, as do explicit NaN values.

    :param series: daily series
    :return: dictionary with completeness statistics
    """
    if len(series) == 0:
        return {
            'start': None,
            'end': None,
            'calendar_days': 0,
            'present_days': 0,
            'absent_days': 0,
            'missing_values': 0,
            'valid_days': 0,
            'completeness': 0.0,
            'first_year': None,
            'last_year': None,
        }

    start, end = series.index[0], series.index[-1]
    calendar_days = int((end - start).days) + 1
    present = len(series)
    missing_values = int(series.isna().sum())
    valid = present - missing_values

    return {
        'start': start,
        'end': end,
        'calendar_days': calendar_days,
        'present_days': present,
        'absent_days': calendar_days - present,
        'missing_values': missing_values,
        'valid_days': valid,
        'completeness': valid / calendar_days * 100,
        'first_year': int(start.year),
        'last_year': int(end.year),
    }


# =============================================================================
# TEXT SUMMARIES
# =============================================================================

def format_series_summary(
    values: pd.Series,
    metadata: Optional[dict] = None,
    n: int = 5
) -> str:
    """
    Format the head and tail of a series followed by its metadata.

    :param values: series to summarize
    :param metadata: optional mapping printed after the values
    :param n: number of rows to show at each end
    :return: multi-line text block
    """
    lines = []
    if len(values) <= 2 * n:
        lines.append(values.to_string())
    else:
        lines.append(values.head(n).to_string())
        lines.append('...')
        lines.append(values.tail(n).to_string(header=False))

    if metadata:
        lines.append('')
        width = max(len(str(k)) for k in metadata)
        for key, value in metadata.items():
            if isinstance(value, (list, tuple, np.ndarray)):
                value = ', '.join(str(v) for v in value)
            lines.append(f"{str(key).ljust(width)} : {value}")

    return '\n'.join(lines)
