"""
Tests for series validation, calendar helpers and the diagnostics collector.
"""

import numpy as np
import pandas as pd
import pytest

from stdindex.diagnostics import Diagnostic, DiagnosticKind, Diagnostics
from stdindex.utils import (
    as_daily_series,
    format_series_summary,
    representative_date,
    series_covers,
    summarize_data_completeness,
    to_timestamps,
    window_bounds,
)


class TestAsDailySeries:

    def test_values_with_dates(self):
        series = as_daily_series([1, 2, 3], dates=['2000-01-01', '2000-01-02', '2000-01-04'])
        assert series.dtype == float
        assert list(series.index) == list(pd.to_datetime(['2000-01-01', '2000-01-02', '2000-01-04']))

    def test_keeps_attrs_without_modifying_input(self, daily_precip):
        series = as_daily_series(daily_precip)
        assert series.attrs == daily_precip.attrs
        series.attrs['units'] = 'in/day'
        assert daily_precip.attrs['units'] == 'mm/day'

    @pytest.mark.parametrize('index', [
        ['2000-01-02', '2000-01-01'],
        ['2000-01-01', '2000-01-01'],
        ['2000-01-01 00:00', '2000-01-01 12:00'],
    ])
    def test_invalid_index(self, index):
        with pytest.raises(ValueError):
            as_daily_series(pd.Series([1.0, 2.0], index=pd.to_datetime(index)))

    def test_length_mismatch(self):
        with pytest.raises(ValueError):
            as_daily_series([1.0, 2.0], dates=['2000-01-01'])

    def test_values_without_dates(self):
        with pytest.raises(ValueError):
            as_daily_series(np.arange(3.0))


class TestCalendarHelpers:

    def test_window_bounds(self):
        start, end = window_bounds(pd.Timestamp('2000-03-01'), 30)
        assert start == pd.Timestamp('2000-02-01')
        assert end == pd.Timestamp('2000-03-01')

    def test_representative_date(self):
        assert representative_date('2020-02-29', 2019) == pd.Timestamp('2019-02-28')
        assert representative_date('2020-02-29', 2016) == pd.Timestamp('2016-02-29')
        assert representative_date('2020-07-04', 1999) == pd.Timestamp('1999-07-04')

    def test_series_covers(self, ramp_series):
        assert series_covers(ramp_series, pd.Timestamp('2000-06-01'))
        assert not series_covers(ramp_series, pd.Timestamp('2001-01-01'))
        assert not series_covers(ramp_series[:0], pd.Timestamp('2000-06-01'))

    def test_to_timestamps(self):
        index = to_timestamps('2020-06-30 15:00')
        assert list(index) == [pd.Timestamp('2020-06-30')]


class TestSummaries:

    def test_completeness(self, ramp_series):
        series = ramp_series.drop(pd.to_datetime(['2000-02-01', '2000-02-02']))
        series['2000-03-01'] = np.nan
        report = summarize_data_completeness(series)
        assert report['calendar_days'] == 366
        assert report['absent_days'] == 2
        assert report['missing_values'] == 1
        assert report['valid_days'] == 363
        assert report['first_year'] == report['last_year'] == 2000

    def test_empty_completeness(self):
        report = summarize_data_completeness(pd.Series([], index=pd.DatetimeIndex([]), dtype=float))
        assert report['completeness'] == 0.0

    def test_series_summary(self, ramp_series):
        text = format_series_summary(ramp_series, {'agg_length': 30, 'ref_years': [1990, 2000]}, n=3)
        assert '...' in text
        assert 'ref_years' in text
        assert '1990, 2000' in text


class TestDiagnostics:

    def test_collect_and_filter(self):
        diagnostics = Diagnostics()
        diagnostics.add(DiagnosticKind.OUT_OF_RANGE, 'window outside data', '2020-01-01')
        diagnostics.add(DiagnosticKind.FIT_FAILED, 'optimizer failed', '2020-01-02')
        assert len(diagnostics) == 2
        assert diagnostics.has(DiagnosticKind.FIT_FAILED)
        assert not diagnostics.has(DiagnosticKind.CDF_FAILED)
        records = diagnostics.of_kind(DiagnosticKind.OUT_OF_RANGE)
        assert records[0].date == pd.Timestamp('2020-01-01')

    def test_extend_and_frame(self):
        first = Diagnostics()
        first.add(DiagnosticKind.REJECTED_FIT, 'p-value too low')
        second = Diagnostics([Diagnostic(DiagnosticKind.GOF_FAILED, 'test failed')])
        first.extend(second)
        frame = first.to_frame()
        assert list(frame.columns) == ['kind', 'date', 'message']
        assert list(frame['kind']) == ['rejected_fit', 'gof_failed']

    def test_empty_collector_is_falsy(self):
        assert not Diagnostics()

    def test_str(self):
        record = Diagnostic(DiagnosticKind.NA_THRESHOLD, 'too many gaps', pd.Timestamp('2020-05-01'))
        assert str(record) == '[na_threshold] 2020-05-01: too many gaps'
