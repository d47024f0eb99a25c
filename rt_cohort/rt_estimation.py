"""
Estimation of the effective reproduction number R(t) from daily
incidence, with a parametric serial interval distribution.

Uses the Bayesian sliding window method (Cori et al., 2013, Am. J.
Epidemiol. 178(9):1505-1512): for each window of `window_len` days, the
incidence is Poisson with mean R * Lambda(t), where Lambda(t) is the
total infectiousness (past incidence convolved with the serial
interval). A Gamma prior on R gives a Gamma posterior, from which one
scalar (the median) is taken per day.
"""
import numba as nb
import numpy as np
import pandas as pd
import scipy.stats

from rt_cohort.numba_utils import wrap_numba_error
from rt_cohort.reporting import get_rt_cohort_logger

_LOGGER = get_rt_cohort_logger().getChild(__name__)


class EstimationError(Exception):
    """The estimator could not produce R(t) for an incidence series."""


# -------------------------------------------------------------------
# SERIAL INTERVAL
# -------------------------------------------------------------------

def discretize_serial_interval(mean, std, max_days):
    """Discretizes a gamma serial interval distribution, offset by one
    day, into a PMF over days 0, 1, ..., max_days.

    CONVENTION: pmf[0] = 0 (no same-day transmission) and the PMF is
    renormalized to sum 1 after truncation at `max_days`.

    Parameters
    ----------
    mean : float
        Mean of the serial interval, in days. Must be greater than 1.
    std : float
        Standard deviation of the serial interval, in days.
    max_days : int
        Last day of the discretized support.

    Returns
    -------
    np.ndarray
        Array of size max_days + 1.
    """
    if mean <= 1:
        raise ValueError(
            f"The serial interval mean must be greater than 1, but {mean} "
            f"was given.")
    if std <= 0:
        raise ValueError(
            f"The serial interval std must be positive, but {std} was given.")
    if max_days < 1:
        raise ValueError(f"`max_days` must be at least 1, but {max_days} was given.")

    shape = ((mean - 1) / std) ** 2
    scale = std ** 2 / (mean - 1)
    k = np.arange(max_days + 1, dtype=float)

    def cdf(x, a):
        return scipy.stats.gamma.cdf(x, a=a, scale=scale)

    # Linear interpolation of the continuous CDF between integer days
    pmf = (k * cdf(k, shape) + (k - 2) * cdf(k - 2, shape)
           - 2 * (k - 1) * cdf(k - 1, shape))
    pmf += shape * scale * (
        2 * cdf(k - 1, shape + 1) - cdf(k - 2, shape + 1) - cdf(k, shape + 1))
    pmf = np.clip(pmf, 0., None)
    pmf[0] = 0.

    total = pmf.sum()
    if total <= 0:
        raise ValueError(
            "Discretized serial interval has no mass. Check the parameters "
            f"(mean={mean}, std={std}, max_days={max_days}).")

    return pmf / total


# -------------------------------------------------------------------
# NUMBA KERNELS
# -------------------------------------------------------------------

@wrap_numba_error
@nb.njit
def _overall_infectivity(
    incid_array: np.ndarray,
    si_pmf_array: np.ndarray,  # EXPECTED: a[s] = P(si = s), s = 0, ..., si_max
):
    """"""
    # NOTE: lambda[0] is undefined (no past incidence), set to nan.
    n_steps = incid_array.shape[0]
    si_max = si_pmf_array.shape[0] - 1
    lambda_array = np.full(n_steps, np.nan)

    if n_steps < 1:
        return lambda_array, "Array `incid_array` must have at least 1 element."

    if si_max < 1:
        return lambda_array, (
            "Array `si_pmf_array` must have at least 2 elements (days 0 and 1).")

    for i_t in range(1, n_steps):
        tot_infec = 0.
        for s in range(1, min(i_t, si_max) + 1):
            tot_infec += incid_array[i_t - s] * si_pmf_array[s]
        lambda_array[i_t] = tot_infec

    return lambda_array, ""


def overall_infectivity(incid_array, si_pmf_array):
    """Total infectiousness Lambda(t) = sum_s I(t - s) w(s), s >= 1."""
    return _overall_infectivity(
        np.asarray(incid_array, dtype=float),
        np.asarray(si_pmf_array, dtype=float),
    )


# -------------------------------------------------------------------
# R(t) ESTIMATION
# -------------------------------------------------------------------

def _prepare_incidence(incid_sr: pd.Series, min_history: int):
    """Checks the incidence series and returns a clean float copy.
    Missing and negative counts are replaced with zeros.
    """
    name = incid_sr.name

    if not isinstance(incid_sr.index, pd.DatetimeIndex):
        raise EstimationError(
            f"[{name}] Incidence series must be indexed by dates, but the "
            f"index is a {type(incid_sr.index).__name__}.")

    if incid_sr.shape[0] == 0:
        raise EstimationError(f"[{name}] Incidence series is empty.")

    if incid_sr.shape[0] < min_history:
        raise EstimationError(
            f"[{name}] Insufficient data: incidence series has "
            f"{incid_sr.shape[0]} days, but at least {min_history} are required.")

    expected_index = pd.date_range(
        incid_sr.index[0], periods=incid_sr.shape[0], freq="D")
    if not incid_sr.index.equals(expected_index):
        raise EstimationError(
            f"[{name}] Incidence series dates must be contiguous and "
            f"increasing daily, starting on {incid_sr.index[0].date()}.")

    sr = incid_sr.astype(float)

    nas = sr.isna()
    if nas.any():
        _LOGGER.warning(
            f"[{name}] There are {nas.sum()} missing values in the incidence. "
            f"Dates: {nas[nas].index.map(lambda x: x.strftime('%Y-%m-%d')).to_list()}. "
            f"Handled with method: fill with zeros.")
        sr = sr.fillna(0.)

    negs = sr < 0
    if negs.any():
        _LOGGER.warning(
            f"[{name}] There are {negs.sum()} negative values in the incidence "
            f"(data corrections). Handled with method: set to zero.")
        sr[negs] = 0.

    if sr.sum() <= 0:
        raise EstimationError(
            f"[{name}] Degenerate data: total incidence is zero.")

    return sr


def estimate_rt_summary(incid_sr: pd.Series, config, quantiles=(0.025, 0.975)):
    """Estimates R(t) posterior statistics for each day from a daily
    incidence series.

    Parameters
    ----------
    incid_sr : pd.Series
        Daily incidence, indexed by contiguous dates.
    config : AnalysisConfig
        Provides the serial interval parameters, the window length and
        the prior of R.
    quantiles : Sequence[float]
        Extra posterior quantiles to report, as columns named "q{value}".

    Returns
    -------
    pd.DataFrame
        Indexed by the last date of each window (from the day of index
        `window_len` to the last day of the series), with columns
        "median", "mean", "std" and one column per quantile. Windows
        without past incidence (zero total infectiousness) are NaN.

    Raises
    ------
    EstimationError
        If the series is too short or degenerate (zero total incidence,
        or no window with past incidence).
    """
    window_len = config.window_len
    sr = _prepare_incidence(incid_sr, config.min_history)
    incid_array = sr.to_numpy()
    n_steps = incid_array.shape[0]

    si_pmf = discretize_serial_interval(
        config.serial_interval_mean, config.serial_interval_std, n_steps)
    lambda_array = overall_infectivity(incid_array, si_pmf)
    lambda_array[0] = 0.  # Only for the cumulative sums

    # Window sums, from cumulative sums. Window ending at i_t: (i_t - window_len, i_t]
    incid_cs = np.concatenate(([0.], np.cumsum(incid_array)))
    lambda_cs = np.concatenate(([0.], np.cumsum(lambda_array)))
    i_end = np.arange(window_len, n_steps)
    incid_sums = incid_cs[i_end + 1] - incid_cs[i_end + 1 - window_len]
    lambda_sums = lambda_cs[i_end + 1] - lambda_cs[i_end + 1 - window_len]

    # Gamma posterior
    prior_shape = (config.prior_mean / config.prior_std) ** 2
    prior_scale = config.prior_std ** 2 / config.prior_mean
    post_shape = prior_shape + incid_sums
    post_scale = 1. / (1. / prior_scale + lambda_sums)
    posterior = scipy.stats.gamma(a=post_shape, scale=post_scale)

    d = dict(
        median=posterior.median(),
        mean=posterior.mean(),
        std=posterior.std(),
    )
    for q in quantiles:
        d[f"q{q}"] = posterior.ppf(q)

    df = pd.DataFrame(d, index=sr.index[i_end])
    df.index.name = "date"

    # No infectiousness in the window: the posterior is just the prior
    no_info = lambda_sums <= 0
    if no_info.all():
        raise EstimationError(
            f"[{sr.name}] Degenerate data: no window has past incidence.")
    if no_info.any():
        _LOGGER.debug(
            f"[{sr.name}] {no_info.sum()} windows without past incidence. "
            f"Estimates set to NaN.")
        df.loc[no_info] = np.nan

    return df


def estimate_rt(incid_sr: pd.Series, config):
    """Estimates the posterior median of R(t) for each eligible day.

    Returns a pd.Series named as the incidence series, with length
    `len(incid_sr) - config.window_len` (NaN where no past incidence
    informs the window). Raises EstimationError if the
    series is too short or degenerate.
    """
    rt_sr = estimate_rt_summary(incid_sr, config, quantiles=())["median"]
    rt_sr.name = incid_sr.name
    return rt_sr
