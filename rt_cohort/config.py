"""
Parameters of the cohort Rt analysis.

Script-level parameters are organized in sections (`general`, `data`,
`rt_estimation`, `aggregation`, `plotting`), read from a YAML input
file and completed with the defaults defined here. The core routines
(cohort resolution and Rt estimation) receive a single `AnalysisConfig`
instead of the whole parameter set.
"""
from dataclasses import dataclass
from typing import Tuple

import pandas as pd


# DEFAULT PARAMETERS
# ------------------
DEFAULT_PARAMS_GENERAL = dict(
    focal_country="Brazil",
    cohort_names=[],
    analysis_start_date="2020-03-01",
)

DEFAULT_PARAMS_DATA = dict(
    source_url="https://covid.ourworldindata.org/data/owid-covid-data.csv",
    cache_path="data/owid-covid-data.csv",
    use_cache=False,  # Use the last fetched file instead of downloading
    fallback_to_cache=True,  # On fetch failure, use the cached file if any
    request_timeout=60,
    code_col="iso_code",
    date_col="date",
    cases_col="new_cases",
    deaths_col="new_deaths",
    population_col="population",
)

DEFAULT_PARAMS_RT_ESTIMATION = dict(
    serial_interval_mean=4.7,  # Days
    serial_interval_std=2.9,   # Days
    window_len=7,              # Days in each sliding window
    prior_mean=5.0,            # Gamma prior of R
    prior_std=5.0,
)

DEFAULT_PARAMS_AGGREGATION = dict(
    drop_incomplete=False,  # Remove dates where not all cohort members contribute
    strict_alignment=False,  # Require all R(t) series to start on the same date
)

DEFAULT_PARAMS_PLOTTING = dict(
    min_population_for_chart=1_000_000,
    rolling_window=7,
    per_capita=1E6,
    show=False,
)

DEFAULT_SECTIONS = dict(
    general=DEFAULT_PARAMS_GENERAL,
    data=DEFAULT_PARAMS_DATA,
    rt_estimation=DEFAULT_PARAMS_RT_ESTIMATION,
    aggregation=DEFAULT_PARAMS_AGGREGATION,
    plotting=DEFAULT_PARAMS_PLOTTING,
)


def fill_section_defaults(params):
    """Completes each parameter section (dict attributes of `params`)
    with the default values of keys that were not informed. Sections
    missing entirely are created.
    """
    for section, defaults in DEFAULT_SECTIONS.items():
        d = getattr(params, section, None) or dict()
        for key, val in defaults.items():
            if key not in d:
                d[key] = val
        setattr(params, section, d)

    return params


@dataclass(frozen=True)
class AnalysisConfig:
    """Explicit configuration of the estimation and cohort selection."""

    analysis_start_date: pd.Timestamp
    serial_interval_mean: float
    serial_interval_std: float
    cohort_names: Tuple[str, ...]
    focal_country: str
    min_population_for_chart: float = 0.

    # Estimator tunables
    window_len: int = 7
    prior_mean: float = 5.0
    prior_std: float = 5.0

    def __post_init__(self):
        # Normalize types (frozen: bypass with object.__setattr__)
        object.__setattr__(
            self, "analysis_start_date", pd.Timestamp(self.analysis_start_date))
        object.__setattr__(self, "cohort_names", tuple(self.cohort_names))
        object.__setattr__(self, "window_len", int(self.window_len))

        if self.serial_interval_mean <= 1:
            raise ValueError(
                "Parameter `serial_interval_mean` must be greater than 1 "
                f"(days), but {self.serial_interval_mean} was given.")
        if self.serial_interval_std <= 0:
            raise ValueError(
                "Parameter `serial_interval_std` must be positive, but "
                f"{self.serial_interval_std} was given.")
        if self.window_len < 1:
            raise ValueError(
                f"Parameter `window_len` must be at least 1, but "
                f"{self.window_len} was given.")
        if self.prior_mean <= 0 or self.prior_std <= 0:
            raise ValueError(
                "The prior mean and standard deviation of R must be "
                "positive.")
        if not self.focal_country or not str(self.focal_country).strip():
            raise ValueError("A focal country must be informed.")

    @property
    def min_history(self):
        """Minimum number of days of incidence for an estimate."""
        return self.window_len + 1

    @classmethod
    def from_params(cls, params):
        """Builds the config from the script parameter sections."""
        general = params.general
        rt = params.rt_estimation
        return cls(
            analysis_start_date=general["analysis_start_date"],
            serial_interval_mean=float(rt["serial_interval_mean"]),
            serial_interval_std=float(rt["serial_interval_std"]),
            cohort_names=general["cohort_names"] or (),
            focal_country=general["focal_country"],
            min_population_for_chart=float(
                params.plotting["min_population_for_chart"]),
            window_len=rt["window_len"],
            prior_mean=float(rt["prior_mean"]),
            prior_std=float(rt["prior_std"]),
        )
