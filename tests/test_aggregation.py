import numpy as np
import pandas as pd
import pytest

from rt_cohort.aggregation import (
    SUMMARY_COLUMNS,
    AlignmentError,
    FocalEstimationError,
    aggregate_cohort,
    estimate_all,
    estimate_focal,
    join_by_date,
)
from rt_cohort.rt_estimation import estimate_rt

from conftest import START, make_incidence


def rt_series(values, start=START, name="AAA"):
    return make_incidence(values, start=start, name=name)


def test_percentiles_are_ordered_with_ties():
    focal = rt_series([1.0] * 5, name="BRA")
    members = {
        "ARG": rt_series([1.2, 1.0, 0.8, 1.1, 1.1], name="ARG"),
        "CHL": rt_series([1.2, 1.0, 0.9, 1.1, 0.7], name="CHL"),
        "PER": rt_series([1.2, 1.3, 0.9, 1.1, 0.7], name="PER"),
    }
    df = aggregate_cohort(focal, members)
    assert list(df.columns) == SUMMARY_COLUMNS
    assert (df["cohort_p10"] <= df["cohort_median"]).all()
    assert (df["cohort_median"] <= df["cohort_p90"]).all()
    # First date: all members tie
    assert df["cohort_p10"].iloc[0] == pytest.approx(1.2)
    assert df["cohort_p90"].iloc[0] == pytest.approx(1.2)


def test_linear_interpolation_between_members():
    focal = rt_series([1.0], name="BRA")
    members = {
        "ARG": rt_series([1.0], name="ARG"),
        "CHL": rt_series([2.0], name="CHL"),
    }
    row = aggregate_cohort(focal, members).iloc[0]
    assert row["cohort_median"] == pytest.approx(1.5)
    assert row["cohort_p10"] == pytest.approx(1.1)
    assert row["cohort_p90"] == pytest.approx(1.9)


def test_single_member_statistics_equal_the_member():
    focal = rt_series([0.9, 1.0, 1.1], name="BRA")
    member = rt_series([1.3, 1.2, 1.1], name="ARG")
    df = aggregate_cohort(focal, {"ARG": member})
    np.testing.assert_allclose(df["cohort_median"], member.values)
    np.testing.assert_allclose(df["cohort_p10"], member.values)
    np.testing.assert_allclose(df["cohort_p90"], member.values)


def test_focal_country_is_excluded_from_cohort_statistics():
    focal = rt_series([50.0, 50.0], name="BRA")
    members = {
        "BRA": focal,
        "ARG": rt_series([1.0, 1.0], name="ARG"),
        "CHL": rt_series([1.2, 1.2], name="CHL"),
    }
    df = aggregate_cohort(focal, members, focal_code="BRA")
    assert (df["cohort_p90"] < 2.).all()
    assert (df["num_contributing"] == 2).all()
    np.testing.assert_allclose(df["focal_rt"], 50.0)


def test_different_start_dates_are_joined_by_date():
    focal = rt_series([1.0, 1.0, 1.0, 1.0], name="BRA")
    late = rt_series([2.0, 2.0], start=START + pd.Timedelta("2D"), name="ARG")
    early = rt_series([0.5, 0.5, 0.5, 0.5], name="CHL")
    df = aggregate_cohort(focal, {"ARG": late, "CHL": early})

    assert df.shape[0] == 4
    assert df.index[0] == START
    assert df["incomplete"].tolist() == [True, True, False, False]
    assert df["num_contributing"].tolist() == [1, 1, 2, 2]
    # Before ARG starts, statistics come from CHL alone
    assert df["cohort_median"].iloc[0] == pytest.approx(0.5)
    assert df["cohort_median"].iloc[-1] == pytest.approx(1.25)


def test_drop_incomplete_removes_flagged_rows():
    focal = rt_series([1.0] * 4, name="BRA")
    late = rt_series([2.0, 2.0], start=START + pd.Timedelta("2D"), name="ARG")
    df = aggregate_cohort(focal, {"ARG": late}, drop_incomplete=True)
    assert df.shape[0] == 2
    assert not df["incomplete"].any()


@pytest.mark.filterwarnings("error")
def test_strict_alignment_reports_offset():
    focal = rt_series([1.0] * 4, name="BRA")
    late = rt_series([2.0, 2.0], start=START + pd.Timedelta("2D"), name="ARG")
    with pytest.raises(AlignmentError, match=r"\+2 days"):
        aggregate_cohort(focal, {"ARG": late}, strict_alignment=True)


def test_duplicated_dates_raise():
    sr = rt_series([1.0, 1.1, 1.2], name="ARG")
    sr.index = pd.DatetimeIndex([START, START, START + pd.Timedelta("1D")])
    with pytest.raises(AlignmentError, match="duplicated"):
        join_by_date({"ARG": sr})


def test_positional_index_raises():
    with pytest.raises(AlignmentError):
        join_by_date({"ARG": pd.Series([1.0, 1.1])})


def test_empty_cohort_gives_nan_statistics():
    focal = rt_series([1.0, 1.1], name="BRA")
    df = aggregate_cohort(focal, dict())
    assert df["cohort_median"].isna().all()
    assert (df["num_contributing"] == 0).all()


def test_failed_member_is_dropped_and_rows_kept(config):
    series = {
        "ARG": make_incidence(np.full(40, 30.), name="ARG"),
        "CHL": make_incidence(np.zeros(40), name="CHL"),
        "PER": make_incidence(np.full(40, 60.), name="PER"),
    }
    successes, failures = estimate_all(series, config)
    assert list(successes) == ["ARG", "PER"]
    assert list(failures) == ["CHL"]

    focal = estimate_focal(make_incidence(np.full(40, 45.), name="BRA"), config)
    df = aggregate_cohort(focal["median"].rename("BRA"), successes)
    assert df.shape[0] == 40 - config.window_len
    assert (df["num_contributing"] == 2).all()


def test_focal_failure_raises(config):
    with pytest.raises(FocalEstimationError):
        estimate_focal(make_incidence(np.full(5, 10.), name="BRA"), config)


def test_rising_focal_above_constant_cohort(config):
    t = np.arange(60)
    focal = estimate_rt(make_incidence(100 * np.exp(0.04 * t), name="BRA"), config)
    members = {
        code: estimate_rt(make_incidence(np.full(60, level), name=code), config)
        for code, level in [("ARG", 50.), ("CHL", 200.), ("PER", 800.)]
    }
    df = aggregate_cohort(focal, members)
    late = df.iloc[-20:]
    assert (late["focal_rt"] > late["cohort_p90"]).all()
    assert late["cohort_median"].sub(1.).abs().max() < 0.1


def test_parallel_estimation_matches_sequential(config):
    series = {
        "ARG": make_incidence(np.full(40, 30.), name="ARG"),
        "CHL": make_incidence(np.zeros(40), name="CHL"),
        "PER": make_incidence(np.arange(20., 60.), name="PER"),
    }
    seq_ok, seq_fail = estimate_all(series, config, ncpus=1)
    par_ok, par_fail = estimate_all(series, config, ncpus=2)

    assert list(par_ok) == list(seq_ok) == ["ARG", "PER"]
    for code in seq_ok:
        pd.testing.assert_series_equal(par_ok[code], seq_ok[code])
    assert par_fail == seq_fail
    assert par_fail["CHL"].startswith("EstimationError")


def test_linear_focal_against_constant_member(config):
    num_days = 50
    successes, failures = estimate_all(
        {"BBB": make_incidence(np.full(num_days, 10.), name="BBB")}, config)
    assert not failures

    focal = estimate_focal(
        make_incidence(10. + 2. * np.arange(num_days), name="AAA"), config)
    df = aggregate_cohort(focal["median"].rename("AAA"), successes)

    assert df.shape[0] == num_days - config.window_len
    assert (df["focal_rt"].iloc[-10:] > 1.).all()
    np.testing.assert_array_equal(df["cohort_median"], successes["BBB"].values)
    np.testing.assert_array_equal(df["cohort_p10"], successes["BBB"].values)
    np.testing.assert_array_equal(df["cohort_p90"], successes["BBB"].values)
