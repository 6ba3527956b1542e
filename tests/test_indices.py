"""
Tests for standardized index calculation, parameter reuse and NetCDF output.
"""

import numpy as np
import pandas as pd
import pytest
import xarray as xr
from scipy import stats

from stdindex import (
    ConfigurationError,
    DiagnosticKind,
    Diagnostics,
    classify_index,
    load_fitting_params,
    save_fitting_params,
    save_index_to_netcdf,
    standardized_index,
)
from stdindex.config import METADATA_KEYS


@pytest.fixture(scope='module')
def monthly_dates():
    return pd.to_datetime([f'2020-{month:02d}-15' for month in range(3, 13)])


# =============================================================================
# END-TO-END
# =============================================================================

class TestStandardizedIndex:

    def test_single_date(self, daily_precip):
        result = standardized_index(daily_precip, '2020-06-30', 30)
        assert len(result.values) == 1
        value = result.values.iloc[0]
        assert np.isfinite(value)
        assert -4 < value < 4

    def test_values_are_roughly_standard_normal(self, daily_precip, monthly_dates):
        result = standardized_index(daily_precip, monthly_dates, 30)
        assert result.values.notna().all()
        assert abs(result.values.mean()) < 1.0

    def test_rounding(self, daily_precip):
        full = standardized_index(daily_precip, '2020-06-30', 30, digits=6)
        rounded = standardized_index(daily_precip, '2020-06-30', 30, digits=1)
        assert rounded.values.iloc[0] == pytest.approx(round(full.values.iloc[0], 1))

    def test_separate_reference_data(self, daily_precip):
        ref = daily_precip[:'2010-12-31']
        result = standardized_index(
            daily_precip, '2020-06-30', 30, ref_data=ref, return_details=True
        )
        sample = result.details.reference_values[pd.Timestamp('2020-06-30')]
        assert list(sample.index.year) == list(range(1981, 2011))

    def test_trailing_reference(self, daily_precip):
        result = standardized_index(
            daily_precip, '2020-06-30', 30, ref_years='trailing', ref_length=20,
            return_details=True,
        )
        sample = result.details.reference_values[pd.Timestamp('2020-06-30')]
        assert list(sample.index.year) == list(range(2000, 2020))
        assert result.metadata['ref_years'] == 'trailing'

    @pytest.mark.parametrize('distribution', ['gamma3', 'weibull', 'glogis'])
    def test_other_distributions(self, daily_precip, distribution):
        result = standardized_index(daily_precip, '2020-06-30', 90, distribution=distribution)
        assert np.isfinite(result.values.iloc[0])

    def test_parallel_matches_serial(self, daily_precip, monthly_dates):
        serial = standardized_index(daily_precip, monthly_dates, 30)
        parallel = standardized_index(daily_precip, monthly_dates, 30, parallel=True)
        pd.testing.assert_series_equal(serial.values, parallel.values)

    def test_shared_diagnostics_collector(self, daily_precip):
        diagnostics = Diagnostics()
        result = standardized_index(
            daily_precip, '2020-06-30', 30, ks_threshold=1.0, diagnostics=diagnostics
        )
        assert diagnostics.has(DiagnosticKind.REJECTED_FIT)
        assert len(result.warnings) == len(diagnostics)


# =============================================================================
# PER-DATE FAILURES
# =============================================================================

class TestDateFailures:

    def test_too_many_missing_reference_years(self, daily_precip):
        data = daily_precip.copy()
        for year in range(1985, 1990):
            data[f'{year}-06-01':f'{year}-06-30'] = np.nan
        result = standardized_index(data, ['2020-06-30', '2020-09-30'], 30)
        # 5 of 39 reference aggregates missing is above the 10% tolerance
        assert np.isnan(result.values.iloc[0])
        assert np.isfinite(result.values.iloc[1])
        kinds = {(w.kind, w.date) for w in result.warnings}
        assert (DiagnosticKind.INSUFFICIENT_DATA, pd.Timestamp('2020-06-30')) in kinds

    def test_missing_aggregation_window_gives_nan(self, daily_precip):
        data = daily_precip.copy()
        data['2020-06-20':'2020-06-25'] = np.nan
        diagnostics = Diagnostics()
        result = standardized_index(
            data, ['2020-06-30', '2020-09-30'], 30, diagnostics=diagnostics
        )
        # 6 of 30 window days missing is above the 10% tolerance
        assert np.isnan(result.values.iloc[0])
        assert np.isfinite(result.values.iloc[1])
        assert diagnostics.has(DiagnosticKind.NA_THRESHOLD)

    def test_relaxed_reference_tolerance(self, daily_precip):
        data = daily_precip.copy()
        for year in range(1985, 1990):
            data[f'{year}-06-01':f'{year}-06-30'] = np.nan
        result = standardized_index(
            data, '2020-06-30', 30, ref_na_threshold=20, agg_na_threshold=10
        )
        assert np.isfinite(result.values.iloc[0])

    def test_rejected_fit(self, daily_precip):
        result = standardized_index(daily_precip, '2020-06-30', 30, ks_threshold=1.0)
        assert np.isnan(result.values.iloc[0])
        assert any(w.kind == DiagnosticKind.REJECTED_FIT for w in result.warnings)

    def test_lenient_thresholds_accept(self, daily_precip):
        result = standardized_index(
            daily_precip, '2020-06-30', 30, ks_threshold=0.0, ad_threshold=0.0
        )
        assert np.isfinite(result.values.iloc[0])

    def test_failing_reduction_is_scoped_to_date(self, daily_precip):
        data = daily_precip.copy()
        data['1990-03-05'] = 1000.0

        def picky(values):
            if np.max(values) > 500:
                raise ValueError('implausible value')
            return np.sum(values)

        result = standardized_index(data, ['2020-03-10', '2020-09-10'], 30, agg_fun=picky)
        assert np.isnan(result.values.iloc[0])
        assert np.isfinite(result.values.iloc[1])
        assert any(w.kind == DiagnosticKind.AGGREGATION_FAILED for w in result.warnings)
        assert result.metadata['agg_fun'] == 'picky'


# =============================================================================
# SUPPLIED PARAMETERS
# =============================================================================

class TestSuppliedParameters:

    def test_probability_of_zero_blending(self):
        dates = pd.date_range('2000-01-01', '2000-01-10', freq='D')
        data = pd.Series(1.0, index=dates)
        data['2000-01-05'] = np.log(2)
        data['2000-01-06'] = 0.0

        targets = pd.to_datetime(['2000-01-05', '2000-01-06'])
        params = pd.DataFrame(
            {'shape': 1.0, 'rate': 1.0, 'prob_zero': 0.5,
             'n_obs': 30.0, 'n_na': 0.0, 'pct_na': 0.0,
             'ks_pval': 0.5, 'ad_pval': 0.5},
            index=targets,
        )
        params.attrs = {'distribution': 'gamma', 'method': 'mle'}

        result = standardized_index(data, targets, 1, params=params)
        # F(ln 2) = 0.5, blended 0.5 + 0.5 * 0.5 = 0.75
        assert result.values.iloc[0] == pytest.approx(0.67)
        assert result.values.iloc[1] == pytest.approx(0.0)

    def test_no_blending_for_unbounded_family(self):
        dates = pd.date_range('2000-01-01', '2000-01-10', freq='D')
        data = pd.Series(11.0, index=dates)
        target = pd.to_datetime(['2000-01-05'])
        params = pd.DataFrame(
            {'shape': 0.1, 'scale': 2.0, 'location': 10.0, 'prob_zero': 0.5,
             'n_obs': 30.0, 'n_na': 0.0, 'pct_na': 0.0,
             'ks_pval': 0.5, 'ad_pval': 0.5},
            index=target,
        )
        params.attrs = {'distribution': 'gev', 'method': 'mle'}

        result = standardized_index(data, target, 1, distribution='gev', params=params, digits=6)
        expected = stats.norm.ppf(stats.genextreme.cdf(11.0, -0.1, loc=10.0, scale=2.0))
        assert result.values.iloc[0] == pytest.approx(expected, abs=1e-6)

    def test_reused_params_give_same_values(self, daily_precip, monthly_dates):
        first = standardized_index(daily_precip, monthly_dates, 30, return_details=True)
        second = standardized_index(daily_precip, monthly_dates, 30, params=first.params)
        pd.testing.assert_series_equal(first.values, second.values)

    def test_partially_supplied_params(self, daily_precip, monthly_dates):
        first = standardized_index(daily_precip, monthly_dates, 30, return_details=True)
        partial = first.params.iloc[:3]
        second = standardized_index(
            daily_precip, monthly_dates, 30, params=partial, return_details=True
        )
        pd.testing.assert_series_equal(first.values, second.values)
        assert set(second.details.fits) == set(monthly_dates[3:])

    def test_mismatched_table_distribution(self, daily_precip):
        first = standardized_index(daily_precip, '2020-06-30', 30, return_details=True)
        params = first.params.copy()
        params.attrs = {'distribution': 'weibull', 'method': 'mle'}
        with pytest.raises(ConfigurationError):
            standardized_index(daily_precip, '2020-06-30', 30, params=params)

    def test_table_without_parameter_columns(self, daily_precip):
        params = pd.DataFrame({'prob_zero': [0.1]}, index=pd.to_datetime(['2020-06-30']))
        with pytest.raises(ConfigurationError):
            standardized_index(daily_precip, '2020-06-30', 30, params=params)


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================

class TestConfiguration:

    @pytest.mark.parametrize('kwargs', [
        {'distribution': 'lognormal'},
        {'distribution': 'gamma3', 'method': 'mle'},
        {'method': 'moments'},
        {'agg_fun': 'mode'},
        {'ks_threshold': 1.5},
        {'ad_threshold': -0.1},
        {'ref_na_threshold': 120},
        {'ref_years': 'recent'},
        {'ref_years': []},
        {'ref_years': 'trailing', 'ref_length': 0},
        {'agg_interpolation': 'cubic'},
        {'digits': -1},
    ])
    def test_invalid_settings(self, daily_precip, kwargs):
        with pytest.raises(ConfigurationError):
            standardized_index(daily_precip, '2020-06-30', 30, **kwargs)

    def test_invalid_agg_length(self, daily_precip):
        with pytest.raises(ValueError):
            standardized_index(daily_precip, '2020-06-30', -5)

    def test_duplicated_dates(self, daily_precip):
        with pytest.raises(ValueError):
            standardized_index(daily_precip, ['2020-06-30', '2020-06-30'], 30)

    def test_unsorted_data(self, daily_precip):
        with pytest.raises(ValueError):
            standardized_index(daily_precip[::-1], '2020-06-30', 30)


# =============================================================================
# RESULT OBJECT
# =============================================================================

class TestIndexResult:

    def test_metadata(self, daily_precip):
        result = standardized_index(
            daily_precip, '2020-06-30', 30, ref_years=[1990, 2000, 2010], agg_fun='mean'
        )
        assert set(result.metadata) == set(METADATA_KEYS)
        assert result.metadata['distr'] == 'gamma'
        assert result.metadata['method'] == 'mle'
        assert result.metadata['agg_fun'] == 'mean'
        assert result.metadata['ref_years'] == [1990, 2000, 2010]
        assert result.metadata['agg_na_thres'] == result.metadata['ref_na_thres']

    def test_glo_label_for_lmoment_glogis(self, daily_precip):
        lmom = standardized_index(daily_precip, '2020-06-30', 90, distribution='glogis', method='lmom')
        mle = standardized_index(daily_precip, '2020-06-30', 90, distribution='glogis')
        assert lmom.metadata['distr'] == 'glo'
        assert lmom.metadata['method'] == 'lmoments'
        assert mle.metadata['distr'] == 'glogis'

    def test_details(self, daily_precip, monthly_dates):
        result = standardized_index(daily_precip, monthly_dates, 30, return_details=True)
        details = result.details
        assert list(details.params.index) == list(monthly_dates)
        assert {'shape', 'rate', 'prob_zero', 'ks_pval', 'ad_pval'} <= set(details.params.columns)
        assert len(details.aggregates) == len(monthly_dates)
        assert all(len(s) == 39 for s in details.reference_values.values())
        assert details.data_attrs['units'] == 'mm/day'

    def test_no_details_by_default(self, daily_precip):
        result = standardized_index(daily_precip, '2020-06-30', 30)
        assert result.details is None
        assert result.params is None

    def test_to_dataarray(self, daily_precip, monthly_dates):
        da = standardized_index(daily_precip, monthly_dates, 30).to_dataarray()
        assert da.name == 'value'
        assert da.dims == ('time',)
        assert da.attrs['distr'] == 'gamma'
        assert da.attrs['ref_years'] == 'all'
        assert 'ks_thres' not in da.attrs

    def test_summary(self, daily_precip, monthly_dates):
        text = standardized_index(daily_precip, monthly_dates, 30).summary(n=2)
        assert '...' in text
        assert 'agg_length' in text
        assert 'warnings' in text


# =============================================================================
# CLASSIFICATION
# =============================================================================

class TestClassification:

    def test_categories(self):
        values = np.array([-2.5, -2.0, -1.7, -1.2, 0.0, 1.0, 1.7, 2.0, np.nan])
        expected = [-3, -3, -2, -1, 0, 1, 2, 3]
        categories = classify_index(values)
        np.testing.assert_array_equal(categories[:-1], expected)
        assert np.isnan(categories[-1])

    def test_series_input(self):
        values = pd.Series([-1.2, 0.3], index=pd.to_datetime(['2020-01-01', '2020-01-02']))
        categories = classify_index(values)
        assert isinstance(categories, pd.Series)
        assert list(categories) == [-1, 0]


# =============================================================================
# NETCDF I/O
# =============================================================================

class TestNetCDF:

    def test_fitting_params_round_trip(self, daily_precip, monthly_dates, tmp_path):
        first = standardized_index(daily_precip, monthly_dates, 30, return_details=True)
        path = tmp_path / 'params' / 'spi30_params.nc'
        save_fitting_params(first.params, str(path), distribution='gamma', metadata=first.metadata)
        assert path.exists()

        loaded = load_fitting_params(str(path))
        assert loaded.attrs == {'distribution': 'gamma', 'method': 'mle'}
        assert list(loaded.index) == list(first.params.index)
        np.testing.assert_allclose(loaded.to_numpy(), first.params[loaded.columns].to_numpy())

        second = standardized_index(daily_precip, monthly_dates, 30, params=loaded)
        pd.testing.assert_series_equal(first.values, second.values)

    def test_loaded_params_checked_against_distribution(self, daily_precip, tmp_path):
        first = standardized_index(daily_precip, '2020-06-30', 30, return_details=True)
        path = str(tmp_path / 'params.nc')
        save_fitting_params(first.params, path, distribution='gamma')
        with pytest.raises(ConfigurationError):
            standardized_index(
                daily_precip, '2020-06-30', 30, distribution='gev', params=load_fitting_params(path)
            )

    def test_missing_params_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_fitting_params(str(tmp_path / 'absent.nc'))

    def test_save_index(self, daily_precip, monthly_dates, tmp_path):
        result = standardized_index(daily_precip, monthly_dates, 30)
        path = str(tmp_path / 'spi30.nc')
        save_index_to_netcdf(result, path)
        with xr.open_dataset(path) as ds:
            assert ds['value'].attrs['agg_length'] == 30
            np.testing.assert_allclose(ds['value'].values, result.values.to_numpy(), atol=1e-6)
