"""
Estimation of R(t) for all countries of a cohort and aggregation into
cohort summary statistics (median and 10/90 percentiles) per date.

Per-country series are combined through an explicit join on their
dates, never by position.
"""

import pandas as pd

from rt_cohort.numba_utils import NumbaKernelError
from rt_cohort.reporting import get_rt_cohort_logger
from rt_cohort.rt_estimation import EstimationError, estimate_rt, estimate_rt_summary
from rt_cohort.utils import map_parallel_or_sequential

_LOGGER = get_rt_cohort_logger().getChild(__name__)

COHORT_QUANTILES = dict(cohort_p10=0.10, cohort_median=0.50, cohort_p90=0.90)
SUMMARY_COLUMNS = [
    "focal_rt", "cohort_median", "cohort_p10", "cohort_p90",
    "num_contributing", "incomplete",
]


class AlignmentError(ValueError):
    """A per-country estimate series can't be placed on a date axis."""


class FocalEstimationError(EstimationError):
    """R(t) could not be estimated for the focal country."""


# -------------------------------------------------------------------
# ESTIMATION OVER THE COHORT
# -------------------------------------------------------------------

def estimate_all(series_dict, config, ncpus=1):
    """Estimates R(t) for each incidence series in `series_dict`
    (keyed by country code). A failure drops the country and the loop
    goes on.

    Returns
    -------
    successes : dict
        Country code -> R(t) median series, in input order.
    failures : dict
        Country code -> failure reason.
    """

    def country_task(item):
        code, incid_sr = item
        try:
            return code, estimate_rt(incid_sr, config), None
        except (EstimationError, NumbaKernelError) as err:
            return code, None, err

    results = map_parallel_or_sequential(country_task, series_dict.items(), ncpus=ncpus)

    successes, failures = dict(), dict()
    for code, rt_sr, err in results:
        if err is None:
            successes[code] = rt_sr
        else:
            failures[code] = f"{err.__class__.__name__}: {err}"
            _LOGGER.warning(f"[{code}] R(t) estimation failed, country dropped: {err}")

    if failures:
        _LOGGER.warning(
            f"{len(failures)} out of {len(results)} countries did not "
            f"produce R(t) estimates: {list(failures)}")

    return successes, failures


def estimate_focal(incid_sr, config, focal_code=None):
    """Estimates R(t) statistics for the focal country. There is no
    fallback: failure raises FocalEstimationError.
    """
    focal_code = focal_code or incid_sr.name
    try:
        return estimate_rt_summary(incid_sr, config)
    except (EstimationError, NumbaKernelError) as err:
        msg = f"R(t) estimation failed for the focal country {focal_code}: {err}"
        _LOGGER.critical(msg)
        raise FocalEstimationError(msg) from err


# -------------------------------------------------------------------
# ALIGNMENT AND AGGREGATION
# -------------------------------------------------------------------

def check_estimate_series(code, rt_sr: pd.Series):
    """Checks that a series can be joined by date: date index, strictly
    increasing, no duplicates. Raises AlignmentError otherwise.
    """
    if not isinstance(rt_sr.index, pd.DatetimeIndex):
        raise AlignmentError(
            f"[{code}] Estimate series must be indexed by dates, but the "
            f"index is a {type(rt_sr.index).__name__}.")

    dup = rt_sr.index.duplicated()
    if dup.any():
        raise AlignmentError(
            f"[{code}] Estimate series has duplicated dates, first on "
            f"{rt_sr.index[dup][0].date()}.")

    if not rt_sr.index.is_monotonic_increasing:
        diffs = rt_sr.index[1:] - rt_sr.index[:-1]
        i_bad = int((diffs <= pd.Timedelta(0)).argmax()) + 1
        raise AlignmentError(
            f"[{code}] Estimate series dates are not increasing at "
            f"{rt_sr.index[i_bad].date()}.")


def check_same_start(series_dict, ref_code):
    """Requires all series to start on the same date as `ref_code`.
    Raises AlignmentError naming the first misaligned country and its
    offset in days.
    """
    ref_start = series_dict[ref_code].index.min()
    for code, sr in series_dict.items():
        start = sr.index.min()
        if start != ref_start:
            offset = (start - ref_start) // pd.Timedelta("1D")
            raise AlignmentError(
                f"[{code}] Estimate series starts on {start.date()}, offset by "
                f"{offset:+d} days from {ref_code} ({ref_start.date()}).")


def join_by_date(series_dict) -> pd.DataFrame:
    """Joins the series (keyed by country code) into a wide data frame
    indexed by the union of their dates. Dates missing from a series
    are NaN in its column.
    """
    for code, sr in series_dict.items():
        check_estimate_series(code, sr)

    if not series_dict:
        return pd.DataFrame(index=pd.DatetimeIndex([], name="date"))

    df = pd.concat(
        [sr.rename(code) for code, sr in series_dict.items()],
        axis=1, join="outer", sort=True,
    )
    df.index.name = "date"
    return df


def aggregate_cohort(
        focal_rt: pd.Series,
        member_rts: dict,
        focal_code=None,
        drop_incomplete=False,
        strict_alignment=False,
) -> pd.DataFrame:
    """Builds the summary table of the focal country R(t) and the cohort
    statistics, per date.

    Parameters
    ----------
    focal_rt : pd.Series
        R(t) estimates of the focal country, indexed by date.
    member_rts : dict
        Country code -> R(t) estimates of successfully estimated cohort
        members. The focal country, if present, is ignored.
    focal_code : str, optional
        Code of the focal country. Defaults to `focal_rt.name`.
    drop_incomplete : bool
        If True, dates where not all members have an estimate are
        removed. Otherwise they are kept and flagged in the "incomplete"
        column.
    strict_alignment : bool
        If True, all series must start on the same date (AlignmentError
        otherwise) instead of being joined over the union of dates.

    Returns
    -------
    pd.DataFrame
        Indexed by "date", with columns "focal_rt", "cohort_median",
        "cohort_p10", "cohort_p90", "num_contributing" (number of
        members with an estimate on the date) and "incomplete".
        Cohort statistics use linear interpolation between order
        statistics over the contributing members only.
    """
    focal_code = focal_code or focal_rt.name
    members = {
        code: sr for code, sr in member_rts.items() if code != focal_code}
    all_series = {focal_code: focal_rt, **members}

    if strict_alignment:
        for code, sr in all_series.items():
            check_estimate_series(code, sr)
        check_same_start(all_series, focal_code)

    wide = join_by_date(all_series)
    member_df = wide[list(members)]
    num_members = member_df.shape[1]

    df = pd.DataFrame(index=wide.index)
    df["focal_rt"] = wide[focal_code]

    if num_members:
        q_df = member_df.quantile(list(COHORT_QUANTILES.values()), axis=1).T
        for col, q in COHORT_QUANTILES.items():
            df[col] = q_df[q]
    else:
        _LOGGER.warning("The cohort has no members with R(t) estimates.")
        for col in COHORT_QUANTILES:
            df[col] = float("nan")

    df["num_contributing"] = member_df.notna().sum(axis=1).astype(int)
    df["incomplete"] = df["num_contributing"] < num_members

    n_incomplete = int(df["incomplete"].sum())
    if n_incomplete:
        _LOGGER.info(
            f"{n_incomplete} dates have estimates from fewer than "
            f"{num_members} cohort members.")
        if drop_incomplete:
            df = df.loc[~df["incomplete"]]

    return df[SUMMARY_COLUMNS]
