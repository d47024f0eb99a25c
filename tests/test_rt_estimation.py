import numpy as np
import pandas as pd
import pytest

from rt_cohort.aggregation import aggregate_cohort, estimate_all
from rt_cohort.config import AnalysisConfig
from rt_cohort.numba_utils import NumbaKernelError
from rt_cohort.rt_estimation import (
    EstimationError,
    discretize_serial_interval,
    estimate_rt,
    estimate_rt_summary,
    overall_infectivity,
)

from conftest import START, make_incidence


def test_serial_interval_is_normalized_pmf():
    pmf = discretize_serial_interval(4.7, 2.9, 30)
    assert pmf.shape == (31,)
    assert pmf[0] == 0.
    assert (pmf >= 0).all()
    assert pmf.sum() == pytest.approx(1.0)
    # Mean close to the continuous one (truncation is negligible at 30 days)
    assert (np.arange(31) * pmf).sum() == pytest.approx(4.7, abs=0.05)


@pytest.mark.parametrize("mean, std", [(1.0, 2.0), (0.5, 1.0), (4.0, 0.)])
def test_serial_interval_rejects_invalid_parameters(mean, std):
    with pytest.raises(ValueError):
        discretize_serial_interval(mean, std, 20)


def test_overall_infectivity_convolution():
    incid = np.array([10., 0., 0., 0.])
    pmf = np.array([0., 0.5, 0.3, 0.2])
    lam = overall_infectivity(incid, pmf)
    assert np.isnan(lam[0])
    np.testing.assert_allclose(lam[1:], [5., 3., 2.])


def test_overall_infectivity_kernel_error_is_raised():
    with pytest.raises(NumbaKernelError):
        overall_infectivity(np.array([1., 2.]), np.array([0.]))


@pytest.mark.parametrize("num_days", [8, 20, 90])
def test_output_length_is_series_length_minus_window(config, num_days):
    incid = make_incidence(np.full(num_days, 25.))
    rt = estimate_rt(incid, config)
    assert rt.shape[0] == num_days - config.window_len
    assert rt.index[0] == incid.index[config.window_len]
    assert rt.index[-1] == incid.index[-1]
    assert rt.name == incid.name
    assert rt.notna().all()


def test_window_length_is_configurable(config):
    cfg = AnalysisConfig(
        analysis_start_date=config.analysis_start_date,
        serial_interval_mean=5.2, serial_interval_std=3.4,
        cohort_names=(), focal_country="Brazil", window_len=14)
    incid = make_incidence(np.full(40, 25.))
    assert estimate_rt(incid, cfg).shape[0] == 40 - 14


@pytest.mark.parametrize("num_days", [0, 1, 7])
def test_short_series_raises_insufficient_data(config, num_days):
    incid = make_incidence(np.full(num_days, 25.))
    with pytest.raises(EstimationError):
        estimate_rt(incid, config)


def test_all_zero_series_raises(config):
    with pytest.raises(EstimationError, match="zero"):
        estimate_rt(make_incidence(np.zeros(60)), config)


def test_non_contiguous_dates_raise(config):
    incid = make_incidence(np.full(30, 10.))
    incid = incid.drop(incid.index[10])
    with pytest.raises(EstimationError, match="contiguous"):
        estimate_rt(incid, config)


def test_missing_and_negative_counts_are_zeroed(config):
    values = np.full(40, 20.)
    values[15] = np.nan
    values[25] = -30.
    rt = estimate_rt(make_incidence(values), config)
    assert rt.notna().all()
    assert (rt > 0).all()


def test_constant_incidence_gives_rt_near_one(config):
    rt = estimate_rt(make_incidence(np.full(90, 100.)), config)
    assert rt.iloc[-30:].sub(1.0).abs().max() < 0.05


def test_growing_and_declining_incidence(config):
    t = np.arange(70)
    growing = estimate_rt(make_incidence(100 * np.exp(0.05 * t)), config)
    declining = estimate_rt(make_incidence(5000 * np.exp(-0.05 * t)), config)
    assert (growing.iloc[-30:] > 1.1).all()
    assert (declining.iloc[-30:] < 0.9).all()


def test_summary_statistics_are_ordered(config):
    summary = estimate_rt_summary(make_incidence(np.arange(10, 80, dtype=float)), config)
    assert list(summary.columns) == ["median", "mean", "std", "q0.025", "q0.975"]
    assert (summary["q0.025"] <= summary["median"]).all()
    assert (summary["median"] <= summary["q0.975"]).all()
    assert (summary["std"] > 0).all()


def test_non_date_index_raises(config):
    incid = pd.Series(np.full(20, 5.), name="AAA")
    with pytest.raises(EstimationError):
        estimate_rt(incid, config)


def test_windows_without_past_incidence_are_nan(config):
    values = np.concatenate([np.zeros(20), np.full(40, 50.)])
    summary = estimate_rt_summary(make_incidence(values), config)

    # Windows ending up to day index 20 have no past incidence
    assert summary.loc[summary.index <= START + pd.Timedelta("20D")].isna().all().all()
    later = summary.loc[summary.index > START + pd.Timedelta("20D")]
    assert later.notna().all().all()
    assert summary.shape[0] == 60 - config.window_len


def test_uninformed_windows_stay_out_of_cohort_statistics(config):
    late_starter = np.concatenate([np.zeros(20), np.full(40, 50.)])
    successes, _ = estimate_all(
        {"ARG": make_incidence(np.full(60, 30.), name="ARG"),
         "CHL": make_incidence(late_starter, name="CHL")},
        config)
    focal = estimate_rt(make_incidence(np.full(60, 40.), name="BRA"), config)
    df = aggregate_cohort(focal, successes)

    early = df.iloc[:5]
    assert (early["num_contributing"] == 1).all()
    np.testing.assert_array_equal(early["cohort_median"], successes["ARG"].iloc[:5].values)


def test_incidence_only_on_last_day_raises(config):
    values = np.zeros(30)
    values[-1] = 10.
    with pytest.raises(EstimationError, match="past incidence"):
        estimate_rt(make_incidence(values), config)
