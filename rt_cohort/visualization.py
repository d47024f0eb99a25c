"""
Charts of the cohort Rt report.
"""
import matplotlib.dates as mdates
import matplotlib.pyplot as plt
import pandas as pd

from rt_cohort.reporting import get_rt_cohort_logger

_LOGGER = get_rt_cohort_logger().getChild(__name__)

FOCAL_COLOR = "#C0392B"
COHORT_COLOR = "#2471A3"
PEER_COLOR = "#AAAAAA"


def calc_per_capita_rolling(
        table: pd.DataFrame,
        population: pd.Series,
        codes,
        focal_code=None,
        start_date=None,
        window=7,
        per_capita=1E6,
        min_population=0.,
        col="cases",
) -> pd.DataFrame:
    """Calculates the trailing rolling average of new cases per
    `per_capita` inhabitants, for countries in `codes` with population
    of at least `min_population`. The focal country is always kept.

    Returns a wide data frame indexed by date, one column per country.
    """
    codes = list(codes)
    keep = list()
    for code in codes:
        pop = population.get(code, float("nan"))
        if code == focal_code and pd.notna(pop):
            keep.append(code)
        elif pd.notna(pop) and pop >= min_population:
            keep.append(code)
        else:
            _LOGGER.debug(f"[{code}] Excluded from the case trends chart (population = {pop}).")

    if not keep:
        return pd.DataFrame(index=pd.DatetimeIndex([], name="date"))

    sub = table.loc[table.index.get_level_values("code").isin(keep), col]
    wide = sub.unstack("code").reindex(columns=keep)
    if start_date is not None:
        wide = wide.loc[wide.index >= pd.Timestamp(start_date)]

    wide = wide.clip(lower=0) / population.reindex(keep) * per_capita
    return wide.rolling(window, min_periods=1).mean()


def plot_rt_comparison(
        summary_df: pd.DataFrame,
        focal_label,
        focal_band_df: pd.DataFrame = None,
        ax: plt.Axes = None,
        title=None,
):
    """Plots the focal R(t) against the cohort median and the 10-90%
    percentile ribbon.

    Parameters
    ----------
    summary_df : pd.DataFrame
        Summary table, with columns "focal_rt", "cohort_median",
        "cohort_p10" and "cohort_p90".
    focal_label : str
        Name of the focal country, for the legend.
    focal_band_df : pd.DataFrame, optional
        If informed, columns "q0.025" and "q0.975" are plotted as the
        credible interval of the focal estimate.
    """
    if ax is None:
        fig, ax = plt.subplots(figsize=(10, 5))
    else:
        fig = ax.get_figure()

    t = summary_df.index

    ax.fill_between(
        t, summary_df["cohort_p10"], summary_df["cohort_p90"],
        color=COHORT_COLOR, alpha=0.25, linewidth=0,
        label="Cohort 10-90th percentile")
    ax.plot(t, summary_df["cohort_median"], color=COHORT_COLOR, label="Cohort median")

    if focal_band_df is not None:
        band = focal_band_df.reindex(t)
        ax.fill_between(
            t, band["q0.025"], band["q0.975"],
            color=FOCAL_COLOR, alpha=0.15, linewidth=0,
            label=f"{focal_label} 95% CrI")

    ax.plot(t, summary_df["focal_rt"], color=FOCAL_COLOR, linewidth=2, label=focal_label)
    ax.axhline(1.0, color="k", linestyle="--", linewidth=0.8)

    ax.set_ylabel("$R_t$ (posterior median)")
    ax.set_title(title or f"Effective reproduction number: {focal_label} vs. cohort")
    ax.xaxis.set_major_formatter(mdates.ConciseDateFormatter(ax.xaxis.get_major_locator()))
    ax.legend(loc="upper right")

    return fig, ax


def plot_case_trends(
        rolling_df: pd.DataFrame,
        focal_code,
        focal_label=None,
        names=None,
        ax: plt.Axes = None,
        per_capita=1E6,
        window=7,
):
    """Plots the rolling average of new cases per capita of each country,
    highlighting the focal one.
    """
    if ax is None:
        fig, ax = plt.subplots(figsize=(10, 5))
    else:
        fig = ax.get_figure()

    names = names or dict()

    for code in rolling_df.columns:
        if code == focal_code:
            continue
        ax.plot(rolling_df.index, rolling_df[code], color=PEER_COLOR, linewidth=0.8)

    if focal_code in rolling_df.columns:
        ax.plot(rolling_df.index, rolling_df[focal_code], color=FOCAL_COLOR,
                linewidth=2, label=focal_label or focal_code)
        ax.legend(loc="upper left")

    ax.set_ylabel(f"New cases per {per_capita:,.0f} ({window}-day average)")
    ax.set_title("New cases: focal country vs. cohort members")
    ax.xaxis.set_major_formatter(mdates.ConciseDateFormatter(ax.xaxis.get_major_locator()))

    # Label the peers at their last value
    for code in rolling_df.columns:
        if code == focal_code:
            continue
        sr = rolling_df[code].dropna()
        if sr.shape[0]:
            ax.text(sr.index[-1], sr.iloc[-1], names.get(code, code),
                    fontsize=6, color=PEER_COLOR)

    return fig, ax
