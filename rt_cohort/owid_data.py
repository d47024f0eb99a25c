"""
Utilities to download and parse daily COVID-19 case counts per country
from the Our World in Data (OWID) dataset.

Contains a function to fetch the raw data, with an optional local cache
(`load_owid_data`), a function that converts it into a long table keyed
by (country code, date) (`parse_owid_table`) and a function to extract
the daily incidence series of one country (`make_incidence_series`).

If run as a script, it downloads the data and saves it to the cache file.
Example:
```bash
python -m rt_cohort.owid_data --cache-path data/owid-covid-data.csv
```
"""
import argparse
import io
from pathlib import Path

import pandas as pd
import requests

from rt_cohort.reporting import get_rt_cohort_logger

_LOGGER = get_rt_cohort_logger().getChild(__name__)

OWID_DATA_URL = "https://covid.ourworldindata.org/data/owid-covid-data.csv"
OWID_AGGREGATE_PREFIX = "OWID_"  # Continents, income groups, World...


class DataFetchError(Exception):
    """The remote dataset could not be obtained and no cache is usable."""


def send_and_check_request(request_url, request_params=None, timeout=60) -> requests.Response:
    _LOGGER.info(f"Requesting from {request_url}...")
    try:
        response = requests.get(request_url, params=request_params, timeout=timeout)
    except requests.exceptions.RequestException as err:
        raise DataFetchError(
            f"An error ({err.__class__.__name__}) occurred during the request:\n{str(err)}"
        ) from err

    try:
        response.raise_for_status()
    except requests.exceptions.HTTPError as http_err:
        raise DataFetchError(
            f"An HTTP error occurred: {http_err}\n"
            f"Response content: {response.text[:500]}"
        ) from http_err
    else:
        _LOGGER.info("Request successful")

    return response


def load_owid_data(
        source_url=OWID_DATA_URL,
        cache_path=None,
        use_cache=False,
        fallback_to_cache=True,
        request_timeout=60,
) -> pd.DataFrame:
    """Loads the raw OWID dataset, either from the remote source or from
    the local cache file.

    Parameters
    ----------
    source_url : str
        URL of the OWID CSV file.
    cache_path : Union[str, Path], optional
        Path of the local copy of the last fetched file. If None,
        caching is disabled.
    use_cache : bool
        If True and the cache file exists, it is loaded and no request
        is made.
    fallback_to_cache : bool
        If True and the request fails, loads the cache file (if it
        exists) instead of raising.
    request_timeout : float
        Timeout of the request, in seconds.

    Returns
    -------
    pd.DataFrame
        The raw data frame, as read from the CSV.

    Raises
    ------
    DataFetchError
        If the request fails and no cache can be used.
    """
    cache_path = Path(cache_path) if cache_path is not None else None
    cache_exists = cache_path is not None and cache_path.is_file()

    if use_cache and cache_exists:
        _LOGGER.info(f"Loading cached data from {cache_path}")
        return pd.read_csv(cache_path)

    if use_cache:
        _LOGGER.warning(
            f"Cache was requested, but no file was found at {cache_path}. "
            f"Fetching from the remote source.")

    try:
        response = send_and_check_request(source_url, timeout=request_timeout)

    except DataFetchError as err:
        if fallback_to_cache and cache_exists:
            _LOGGER.warning(
                f"Fetching data failed ({err}). Falling back to the "
                f"cached file {cache_path}.")
            return pd.read_csv(cache_path)
        _LOGGER.error("Fetching data failed and no cached file is available.")
        raise

    _LOGGER.info("Parsing response as a data frame...")
    raw_df = pd.read_csv(io.BytesIO(response.content))

    if cache_path is not None:
        cache_path.parent.mkdir(parents=True, exist_ok=True)
        with open(cache_path, "wb") as fp:
            fp.write(response.content)
        _LOGGER.info(f"Fetched data was cached at {cache_path}")

    return raw_df


def parse_owid_table(
        raw_df: pd.DataFrame,
        code_col="iso_code",
        date_col="date",
        cases_col="new_cases",
        deaths_col="new_deaths",
        population_col="population",
):
    """Converts the raw OWID data frame into a long table of daily counts
    and a population series.

    Returns
    -------
    table : pd.DataFrame
        Indexed by ("code", "date"), sorted, with columns "cases" and
        "deaths". Deaths are NaN if the column is absent.
    population : pd.Series
        Population of each country code (last non-null value). Empty
        if the column is absent.
    """
    for col in (code_col, date_col, cases_col):
        if col not in raw_df.columns:
            raise KeyError(
                f"Hey, column \"{col}\" is required in the dataset, but was "
                f"not found. Available columns: {list(raw_df.columns)}")

    df = pd.DataFrame({
        "code": raw_df[code_col].astype("string"),
        "date": pd.to_datetime(raw_df[date_col]),
        "cases": pd.to_numeric(raw_df[cases_col], errors="coerce"),
    })
    if deaths_col in raw_df.columns:
        df["deaths"] = pd.to_numeric(raw_df[deaths_col], errors="coerce")
    else:
        df["deaths"] = float("nan")

    # Remove aggregate entities and rows without a code
    mask = df["code"].notna() & ~df["code"].str.startswith(OWID_AGGREGATE_PREFIX, na=False)
    if population_col in raw_df.columns:
        pop_df = pd.DataFrame({
            "code": df["code"],
            "population": pd.to_numeric(raw_df[population_col], errors="coerce"),
        }).loc[mask]
        population = (
            pop_df.dropna().groupby("code")["population"].last().astype(float))
    else:
        population = pd.Series(dtype=float)
    population.index = population.index.astype(str)
    population.name = "population"

    df = df.loc[mask].copy()
    df["code"] = df["code"].astype(str)

    dup = df.duplicated(["code", "date"])
    if dup.any():
        _LOGGER.warning(
            f"There are {dup.sum()} duplicated (code, date) entries in the "
            f"dataset. Only the last entry of each is kept.")
        df = df.drop_duplicates(["code", "date"], keep="last")

    table = df.set_index(["code", "date"]).sort_index()

    return table, population


def make_incidence_series(table: pd.DataFrame, code, start_date=None, col="cases"):
    """Gets the daily series of one country, from `start_date` (or its
    first available date, whatever comes later) until its last available
    date. The series is reindexed to contiguous days; missing days are
    NaN.
    """
    try:
        sr = table.xs(code, level="code")[col]
    except KeyError:
        sr = pd.Series(dtype=float, index=pd.DatetimeIndex([], name="date"))

    if start_date is not None:
        sr = sr.loc[sr.index >= pd.Timestamp(start_date)]

    if sr.shape[0]:
        full_index = pd.date_range(sr.index.min(), sr.index.max(), freq="D", name="date")
        n_missing = full_index.shape[0] - sr.shape[0]
        if n_missing:
            _LOGGER.debug(f"[{code}] {n_missing} missing days in the data.")
        sr = sr.reindex(full_index)

    sr = sr.astype(float)
    sr.name = code
    return sr


# ==========================================================


if __name__ == "__main__":

    def parse_args():
        parser = argparse.ArgumentParser(
            description="Fetch the OWID COVID-19 dataset and save it to "
                        "the local cache file.",
        )
        parser.add_argument(
            "--source-url", type=str, default=OWID_DATA_URL,
            help="URL of the OWID CSV file.",
        )
        parser.add_argument(
            "--cache-path", type=Path, default="data/owid-covid-data.csv",
            help="File path to save the fetched data on.",
        )
        return parser.parse_args()

    def main():
        from rt_cohort.reporting import config_rt_cohort_logger
        config_rt_cohort_logger("INFO")
        args = parse_args()
        df = load_owid_data(
            source_url=args.source_url, cache_path=args.cache_path,
            use_cache=False, fallback_to_cache=False)
        print(f"Fetched {df.shape[0]} rows.")

    main()
