import matplotlib

matplotlib.use("Agg")

import numpy as np
import pandas as pd
import pytest

from rt_cohort.config import AnalysisConfig


START = pd.Timestamp("2020-03-01")


def make_incidence(values, start=START, name="AAA"):
    """Daily incidence series from a sequence of counts."""
    values = np.asarray(values, dtype=float)
    index = pd.date_range(start, periods=values.shape[0], freq="D", name="date")
    return pd.Series(values, index=index, name=name)


def make_owid_frame(series_by_code, population=None):
    """Raw OWID-like data frame from a dict of incidence series."""
    population = population or dict()
    frames = list()
    for code, sr in series_by_code.items():
        frames.append(pd.DataFrame({
            "iso_code": code,
            "location": code,
            "date": sr.index.strftime("%Y-%m-%d"),
            "new_cases": sr.values,
            "new_deaths": 0.,
            "population": population.get(code, 5E6),
        }))
    return pd.concat(frames, ignore_index=True)


@pytest.fixture
def config():
    return AnalysisConfig(
        analysis_start_date=START,
        serial_interval_mean=4.7,
        serial_interval_std=2.9,
        cohort_names=("Argentina", "Chile"),
        focal_country="Brazil",
        min_population_for_chart=1E6,
    )
