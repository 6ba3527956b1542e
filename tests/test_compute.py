"""
Tests for window aggregation and reference samples.
"""

import numpy as np
import pandas as pd
import pytest

from stdindex.compute import (
    AggregationError,
    aggregate_series,
    aggregated_value,
    reference_values,
)
from stdindex.config import ConfigurationError
from stdindex.diagnostics import DiagnosticKind, Diagnostics


# =============================================================================
# WINDOW AGGREGATION
# =============================================================================

class TestAggregatedValue:

    def test_window_equals_direct_reduction(self, ramp_series):
        date = pd.Timestamp('2000-03-10')
        expected = ramp_series['2000-03-01':'2000-03-10'].sum()
        assert aggregated_value(date, ramp_series, 10) == pytest.approx(expected)

    def test_named_and_callable_reductions(self, ramp_series):
        date = '2000-01-05'
        assert aggregated_value(date, ramp_series, 5, agg_fun='mean') == pytest.approx(3.0)
        assert aggregated_value(date, ramp_series, 5, agg_fun='max') == pytest.approx(5.0)
        assert aggregated_value(date, ramp_series, 5, agg_fun=lambda v: v[0]) == pytest.approx(1.0)

    def test_does_not_modify_input(self, ramp_series):
        series = ramp_series.copy()
        series.iloc[10] = np.nan
        before = series.copy()
        aggregated_value('2000-01-15', series, 10, agg_na_threshold=20, agg_interpolation='zeros')
        pd.testing.assert_series_equal(series, before)

    def test_all_missing_window_is_nan(self, ramp_series):
        series = ramp_series.copy()
        series['2000-02-01':'2000-02-10'] = np.nan
        for interpolation in ('none', 'linear', 'mean', 'zeros'):
            value = aggregated_value(
                '2000-02-10', series, 10,
                agg_na_threshold=100, agg_interpolation=interpolation,
            )
            assert np.isnan(value)

    def test_linear_without_missing_matches_none(self, ramp_series):
        date = '2000-06-30'
        assert aggregated_value(date, ramp_series, 30, agg_interpolation='linear') == \
            aggregated_value(date, ramp_series, 30, agg_interpolation='none')

    def test_linear_interpolation_fills_gaps(self):
        dates = pd.date_range('2000-01-01', periods=5, freq='D')
        series = pd.Series([1.0, np.nan, 3.0, 4.0, np.nan], index=dates)
        value = aggregated_value(
            '2000-01-05', series, 5, agg_na_threshold=50, agg_interpolation='linear'
        )
        # interior gap interpolated to 2, trailing gap held at 4
        assert value == pytest.approx(1 + 2 + 3 + 4 + 4)

    def test_zeros_and_mean_keep_window_length(self, ramp_series):
        series = ramp_series.copy()
        series['2000-01-03'] = np.nan
        kwargs = dict(agg_fun=len, agg_na_threshold=20)
        assert aggregated_value('2000-01-05', series, 5, agg_interpolation='zeros', **kwargs) == 5
        assert aggregated_value('2000-01-05', series, 5, agg_interpolation='mean', **kwargs) == 5
        assert aggregated_value('2000-01-05', series, 5, agg_interpolation='none', **kwargs) == 4

    def test_mean_interpolation_value(self):
        dates = pd.date_range('2000-01-01', periods=4, freq='D')
        series = pd.Series([2.0, np.nan, 4.0, 6.0], index=dates)
        value = aggregated_value(
            '2000-01-04', series, 4, agg_na_threshold=25, agg_interpolation='mean'
        )
        assert value == pytest.approx(2 + 4 + 4 + 6)

    def test_missing_beyond_tolerance_propagates(self, ramp_series):
        series = ramp_series.copy()
        series['2000-01-01':'2000-01-02'] = np.nan
        diagnostics = Diagnostics()
        value = aggregated_value(
            '2000-01-10', series, 10, agg_na_threshold=10,
            agg_interpolation='zeros', diagnostics=diagnostics,
        )
        assert np.isnan(value)
        assert diagnostics.has(DiagnosticKind.NA_THRESHOLD)

    def test_missing_within_tolerance_is_interpolated(self, ramp_series):
        series = ramp_series.copy()
        series['2000-01-01'] = np.nan
        value = aggregated_value('2000-01-10', series, 10, agg_na_threshold=10)
        assert value == pytest.approx(sum(range(2, 11)))

    def test_out_of_range_rejected_without_period_warn(self, ramp_series):
        assert aggregated_value('2000-01-05', ramp_series, 10, period_warn=False) is None

    def test_out_of_range_with_period_warn(self, ramp_series):
        diagnostics = Diagnostics()
        value = aggregated_value(
            '2000-01-05', ramp_series, 10, agg_na_threshold=100,
            period_warn=True, diagnostics=diagnostics,
        )
        assert value == pytest.approx(1 + 2 + 3 + 4 + 5)
        assert diagnostics.has(DiagnosticKind.OUT_OF_RANGE)

    def test_absent_dates_count_as_missing(self, ramp_series):
        series = ramp_series.drop(pd.Timestamp('2000-01-08'))
        diagnostics = Diagnostics()
        value = aggregated_value(
            '2000-01-10', series, 10, agg_na_threshold=10, diagnostics=diagnostics
        )
        assert value == pytest.approx(sum(range(1, 11)) - 8)
        assert diagnostics.has(DiagnosticKind.MISSING_DATES)

    def test_zero_length_window(self, ramp_series):
        assert np.isnan(aggregated_value('2000-03-01', ramp_series, 0))

    @pytest.mark.parametrize('agg_length', [-1, 2.5, 'ten'])
    def test_invalid_length(self, ramp_series, agg_length):
        with pytest.raises(ValueError):
            aggregated_value('2000-03-01', ramp_series, agg_length)

    def test_invalid_interpolation(self, ramp_series):
        with pytest.raises(ConfigurationError):
            aggregated_value('2000-03-01', ramp_series, 5, agg_interpolation='spline')

    def test_failing_reduction(self, ramp_series):
        def broken(values):
            raise ZeroDivisionError('boom')

        with pytest.raises(AggregationError):
            aggregated_value('2000-03-01', ramp_series, 5, agg_fun=broken)

    def test_unsorted_series_rejected(self, ramp_series):
        with pytest.raises(ValueError):
            aggregated_value('2000-03-01', ramp_series[::-1], 5)


class TestAggregateSeries:

    def test_many_dates(self, ramp_series):
        dates = pd.to_datetime(['2000-01-10', '2000-02-10'])
        result = aggregate_series(dates, ramp_series, 10)
        assert result.loc['2000-01-10'] == pytest.approx(sum(range(1, 11)))
        assert result.loc['2000-02-10'] == pytest.approx(sum(range(32, 42)))

    def test_failing_reduction_is_scoped(self, ramp_series):
        def picky(values):
            if values.max() > 100:
                raise ValueError('too large')
            return values.sum()

        diagnostics = Diagnostics()
        result = aggregate_series(
            ['2000-01-10', '2000-06-10'], ramp_series, 10, agg_fun=picky,
            diagnostics=diagnostics,
        )
        assert result.iloc[0] == pytest.approx(55.0)
        assert np.isnan(result.iloc[1])
        assert diagnostics.has(DiagnosticKind.AGGREGATION_FAILED)


# =============================================================================
# REFERENCE SAMPLES
# =============================================================================

class TestReferenceValues:

    def test_all_years_exclude_target_year(self, daily_precip):
        sample = reference_values('2020-03-15', daily_precip, 30)
        years = list(sample.index.year)
        assert years == list(range(1981, 2020))
        assert all(d.month == 3 and d.day == 15 for d in sample.index)

    def test_all_years_drop_out_of_range_windows(self, daily_precip):
        sample = reference_values('2020-01-10', daily_precip, 30)
        assert list(sample.index.year) == list(range(1982, 2020))

    def test_values_match_aggregation(self, daily_precip):
        sample = reference_values('2020-03-15', daily_precip, 30)
        expected = daily_precip['1995-02-14':'1995-03-15'].sum()
        assert sample.loc['1995-03-15'] == pytest.approx(expected)

    def test_trailing_years(self, daily_precip):
        sample = reference_values('2020-07-01', daily_precip, 30, ref_years='trailing', ref_length=10)
        assert list(sample.index.year) == list(range(2010, 2020))

    def test_trailing_nan_selects_trailing_policy(self, daily_precip):
        sample = reference_values('2020-07-01', daily_precip, 30, ref_years=float('nan'), ref_length=5)
        assert list(sample.index.year) == list(range(2015, 2020))

    def test_trailing_keeps_years_outside_data(self, daily_precip):
        sample = reference_values('1985-06-01', daily_precip, 30, ref_years='trailing', ref_length=10)
        assert len(sample) == 10
        assert sample.loc[:'1980-12-31'].isna().all()
        assert sample.loc['1981-01-01':].notna().all()

    def test_explicit_years(self, daily_precip):
        sample = reference_values('2020-07-01', daily_precip, 30, ref_years=[1995, 1990])
        assert list(sample.index.year) == [1990, 1995]

    def test_feb29_maps_to_feb28(self, daily_precip):
        sample = reference_values('2020-02-29', daily_precip, 30, ref_years=[2016, 2019])
        assert list(sample.index) == [pd.Timestamp('2016-02-29'), pd.Timestamp('2019-02-28')]

    def test_all_years_skips_out_of_range_window(self, daily_precip):
        sample = reference_values('2020-01-10', daily_precip, 30)
        assert len(sample) == 38
        assert sample.index[0] == pd.Timestamp('1982-01-10')

    def test_period_warn_override(self, daily_precip):
        sample = reference_values('2020-01-10', daily_precip, 30, period_warn=True)
        assert len(sample) == 39
        # 20 of 30 days before the data start exceed the 10% tolerance
        assert np.isnan(sample.loc['1981-01-10'])
        assert sample.loc['1982-01-10':].notna().all()

    def test_invalid_ref_years(self, daily_precip):
        with pytest.raises(ConfigurationError):
            reference_values('2020-07-01', daily_precip, 30, ref_years='recent')

    @pytest.mark.parametrize('ref_years', [[1990, np.nan], [1990.5], ['1990']])
    def test_non_integer_ref_years(self, daily_precip, ref_years):
        with pytest.raises(ConfigurationError):
            reference_values('2020-07-01', daily_precip, 30, ref_years=ref_years)

    def test_nan_list_selects_trailing_policy(self, daily_precip):
        sample = reference_values('2020-07-01', daily_precip, 30, ref_years=[np.nan], ref_length=5)
        assert list(sample.index.year) == list(range(2015, 2020))

    def test_invalid_ref_length(self, daily_precip):
        with pytest.raises(ConfigurationError):
            reference_values('2020-07-01', daily_precip, 30, ref_years='trailing', ref_length=0)
